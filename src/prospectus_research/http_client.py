"""
HTTP plumbing shared by the resolvers and the document acquirer.

requests is synchronous; calls are pushed onto a worker thread so the
pipeline only suspends at network boundaries.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

# JSONP wrapper used by some exchange endpoints: callback({...});
_JSONP_PATTERN = re.compile(r"^\s*[\w.$]+\((.*)\)\s*;?\s*$", re.DOTALL)


def get_requests_session(user_agent: str, retries: int = 2) -> requests.Session:
    """
    Creates a requests session with automatic retries for rate limits and server errors.

    Uses exponential backoff between retries on HTTP 429 and 5xx responses.
    Per-call timeouts are passed by the caller.

    Args:
        user_agent: User-Agent header sent with every request
        retries: Total retries per request

    Returns:
        Configured requests.Session with retry logic
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["HEAD", "GET", "POST", "OPTIONS"],
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": user_agent})

    return session


async def fetch(
    session: requests.Session,
    method: str,
    url: str,
    timeout: float,
    **kwargs: Any,
) -> requests.Response:
    """Run one HTTP request in a worker thread.

    Raises:
        requests.RequestException: On transport errors, timeouts and
            non-2xx status codes.
    """
    logger.debug(f"{method} {url}")
    response = await asyncio.to_thread(
        session.request, method, url, timeout=timeout, **kwargs
    )
    response.raise_for_status()
    return response


def parse_json_body(body: str) -> Any:
    """Decode a JSON or JSONP response body."""
    match = _JSONP_PATTERN.match(body)
    payload: Optional[str] = match.group(1) if match else body
    return json.loads(payload)
