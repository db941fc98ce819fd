"""
Tests for the speech token service and its background monitor.
"""

from unittest.mock import Mock

import pytest
import requests

from reading_assessor.errors import ProviderUnavailableError
from reading_assessor.providers.token import SpeechTokenMonitor, SpeechTokenService


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def token_response(text="issued-token"):
    response = Mock()
    response.text = text
    response.raise_for_status = Mock()
    return response


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def http():
    session = Mock()
    session.post.return_value = token_response()
    return session


class TestSpeechTokenService:
    """Test token issuing and caching."""

    def test_issues_token_from_regional_endpoint(self, http, clock):
        service = SpeechTokenService("key-123", "eastus", session=http, clock=clock)
        token = service.get_token()

        assert token.token == "issued-token"
        assert token.region == "eastus"
        args, kwargs = http.post.call_args
        assert args[0] == "https://eastus.api.cognitive.microsoft.com/sts/v1.0/issueToken"
        assert kwargs['headers'] == {'Ocp-Apim-Subscription-Key': 'key-123'}

    def test_token_is_cached(self, http, clock):
        service = SpeechTokenService("key", "eastus", session=http, clock=clock)
        first = service.get_token()
        clock.now += 60
        assert service.get_token() is first
        assert http.post.call_count == 1

    def test_refreshes_within_margin(self, http, clock):
        service = SpeechTokenService("key", "eastus", session=http, lifetime=540,
                                     refresh_margin=30, clock=clock)
        service.get_token()
        clock.now += 515
        assert service.is_token_expiring_soon()
        service.get_token()
        assert http.post.call_count == 2

    def test_missing_credentials(self, http):
        service = SpeechTokenService("", "eastus", session=http)
        assert not service.configured
        with pytest.raises(ProviderUnavailableError) as exc_info:
            service.get_token()
        assert exc_info.value.processing_error.error_code == "AUTH_001"
        http.post.assert_not_called()

    def test_network_failure(self, http, clock):
        http.post.side_effect = requests.ConnectionError("connection refused")
        service = SpeechTokenService("key", "eastus", session=http, clock=clock)
        with pytest.raises(ProviderUnavailableError) as exc_info:
            service.get_token()
        assert exc_info.value.processing_error.error_code == "PROVIDER_001"

    def test_http_error(self, http, clock):
        response = token_response()
        response.raise_for_status.side_effect = requests.HTTPError("401 Client Error: Unauthorized")
        http.post.return_value = response
        service = SpeechTokenService("bad-key", "eastus", session=http, clock=clock)
        with pytest.raises(ProviderUnavailableError) as exc_info:
            service.get_token()
        assert exc_info.value.processing_error.error_code == "AUTH_001"

    def test_empty_token(self, http, clock):
        http.post.return_value = token_response("   ")
        service = SpeechTokenService("key", "eastus", session=http, clock=clock)
        with pytest.raises(ProviderUnavailableError):
            service.get_token()

    def test_token_status(self, http, clock):
        service = SpeechTokenService("key", "eastus", session=http, clock=clock)
        assert service.get_token_status()['valid'] is False
        service.get_token()
        status = service.get_token_status()
        assert status['configured'] is True
        assert status['valid'] is True
        assert status['expires_at'] is not None


class TestSpeechTokenMonitor:
    """Test the background refresh monitor."""

    def test_not_started_without_credentials(self):
        service = Mock(configured=False)
        monitor = SpeechTokenMonitor(service)
        monitor.start()
        assert not monitor.is_running

    def test_start_and_stop(self):
        service = Mock(configured=True)
        service.is_token_expiring_soon.return_value = False
        monitor = SpeechTokenMonitor(service, check_interval_seconds=3600)
        monitor.start()
        try:
            assert monitor.is_running
        finally:
            monitor.stop()
        assert not monitor.is_running
        monitor.stop()

    def test_refreshes_expiring_token(self):
        service = Mock()
        service.is_token_expiring_soon.return_value = True
        assert SpeechTokenMonitor(service).check_and_refresh()
        service.refresh.assert_called_once()

    def test_skips_valid_token(self):
        service = Mock()
        service.is_token_expiring_soon.return_value = False
        assert SpeechTokenMonitor(service).check_and_refresh()
        service.refresh.assert_not_called()

    def test_refresh_failure_is_swallowed(self):
        service = Mock()
        service.is_token_expiring_soon.return_value = True
        service.refresh.side_effect = RuntimeError("boom")
        assert SpeechTokenMonitor(service).check_and_refresh() is False
