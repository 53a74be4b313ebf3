"""
Configuration for the prospectus research pipeline.

Every field can be overridden from the environment (or a .env file).
Timeouts bound every network call; the pacing interval spaces out
reasoning-engine calls inside a batch.
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class ResearchConfig:
    """Configuration for acquisition, analysis and pacing."""
    
    # Network bounds (seconds)
    fetch_timeout_seconds: float = field(
        default_factory=lambda: _env_float("FETCH_TIMEOUT_SECONDS", 30.0)
    )
    search_timeout_seconds: float = field(
        default_factory=lambda: _env_float("SEARCH_TIMEOUT_SECONDS", 15.0)
    )
    reasoning_timeout_seconds: float = field(
        default_factory=lambda: _env_float("REASONING_TIMEOUT_SECONDS", 120.0)
    )
    
    # Minimum gap between reasoning-engine calls in a batch
    pacing_interval_seconds: float = field(
        default_factory=lambda: _env_float("PACING_INTERVAL_SECONDS", 1.0)
    )
    
    # Reasoning engine
    analysis_model: str = field(
        default_factory=lambda: os.getenv("ANALYSIS_MODEL", "claude-sonnet-4-20250514")
    )
    analysis_max_tokens: int = field(
        default_factory=lambda: _env_int("ANALYSIS_MAX_TOKENS", 2000)
    )
    analysis_temperature: float = field(
        default_factory=lambda: _env_float("ANALYSIS_TEMPERATURE", 0.3)
    )
    
    # Document handling
    document_prefix_chars: int = field(
        default_factory=lambda: _env_int("DOCUMENT_PREFIX_CHARS", 8000)
    )
    min_document_chars: int = field(
        default_factory=lambda: _env_int("MIN_DOCUMENT_CHARS", 100)
    )
    
    max_search_results: int = field(
        default_factory=lambda: _env_int("MAX_SEARCH_RESULTS", 20)
    )
    
    # SEC ticker directory is reloaded once older than this
    sec_directory_ttl_seconds: float = field(
        default_factory=lambda: _env_float("SEC_DIRECTORY_TTL_SECONDS", 3600.0)
    )
    
    # SEC asks for "AppName email@domain.com"; other exchanges accept a browser UA
    user_agent: str = field(
        default_factory=lambda: os.getenv("SEC_USER_AGENT", DEFAULT_USER_AGENT)
    )
    
    @classmethod
    def from_env(cls) -> "ResearchConfig":
        """Create config from environment variables."""
        return cls()


# Global default config
default_config = ResearchConfig()
