"""
Tests for environment-driven configuration.
"""
from unittest.mock import patch

from prospectus_research.config import ResearchConfig


class TestResearchConfig:
    """Tests for ResearchConfig."""

    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            config = ResearchConfig()

        assert config.fetch_timeout_seconds == 30.0
        assert config.search_timeout_seconds == 15.0
        assert config.reasoning_timeout_seconds == 120.0
        assert config.pacing_interval_seconds == 1.0
        assert config.document_prefix_chars == 8000
        assert config.min_document_chars == 100
        assert config.sec_directory_ttl_seconds == 3600.0

    def test_env_overrides(self):
        env = {
            "PACING_INTERVAL_SECONDS": "0.25",
            "DOCUMENT_PREFIX_CHARS": "4000",
            "SEC_DIRECTORY_TTL_SECONDS": "60",
            "SEC_USER_AGENT": "ProspectusResearch research@example.com",
        }
        with patch.dict("os.environ", env, clear=True):
            config = ResearchConfig.from_env()

        assert config.pacing_interval_seconds == 0.25
        assert config.document_prefix_chars == 4000
        assert config.sec_directory_ttl_seconds == 60.0
        assert config.user_agent == "ProspectusResearch research@example.com"

    def test_explicit_values_win(self):
        with patch.dict("os.environ", {"FETCH_TIMEOUT_SECONDS": "99"}, clear=True):
            config = ResearchConfig(fetch_timeout_seconds=5.0)
        assert config.fetch_timeout_seconds == 5.0
