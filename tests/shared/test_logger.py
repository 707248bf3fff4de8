"""
Tests for Logging Setup
=======================

Version: 0.1.0
"""

from shared.logging.logger import REDACTED, _censor_secrets, setup_logging


class TestCensorSecrets:
    """Tests for the redaction processor."""

    def test_redacts_nested_headers(self) -> None:
        """Test credentials inside source request headers are hidden."""
        event = {
            "event": "source_request",
            "source": "openfda-food-enforcement",
            "headers": {"X-Api-Key": "abc123", "User-Agent": "RegWatch/0.1"},
            "endpoints": [{"url": "https://example.gov", "token": "t"}],
        }

        censored = _censor_secrets(None, "info", event)

        assert censored["headers"]["X-Api-Key"] == REDACTED
        assert censored["headers"]["User-Agent"] == "RegWatch/0.1"
        assert censored["endpoints"][0]["token"] == REDACTED
        assert censored["source"] == "openfda-food-enforcement"

    def test_top_level_keys(self) -> None:
        """Test top-level secret keys are hidden regardless of case."""
        censored = _censor_secrets(None, "info", {"Authorization": "Bearer x", "event": "e"})

        assert censored == {"Authorization": REDACTED, "event": "e"}


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_and_console_modes(self) -> None:
        """Test both renderers configure without error."""
        setup_logging(log_level="DEBUG", json_logs=True, service_name="alert-ingestion")
        setup_logging(log_level="INFO", json_logs=False, service_name="alert-ingestion")
