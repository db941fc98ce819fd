"""
Short-lived authorization tokens for the cloud speech service.

Tokens are issued by exchanging the subscription key at the regional STS
endpoint, cached, and refreshed once they come within the refresh margin
of expiry. SpeechTokenMonitor keeps the cache warm in the background so a
recording attempt rarely waits on a token round-trip.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import requests
from apscheduler.schedulers.background import BackgroundScheduler

from ..config import Config
from .base import provider_unavailable


logger = logging.getLogger(__name__)


TOKEN_URL_TEMPLATE = "https://{region}.api.cognitive.microsoft.com/sts/v1.0/issueToken"


@dataclass
class SpeechToken:
    """Bearer token for the speech service with its absolute expiry (epoch seconds)."""
    token: str
    region: str
    expires_at: float

    def expires_within(self, seconds: float, now: float) -> bool:
        return self.expires_at - now <= seconds


class SpeechTokenService:
    """Issues and caches speech service tokens."""

    def __init__(self,
                 subscription_key: str,
                 region: str,
                 session: Optional[requests.Session] = None,
                 lifetime: int = Config.SPEECH_TOKEN_LIFETIME,
                 refresh_margin: int = Config.SPEECH_TOKEN_REFRESH_MARGIN,
                 timeout: int = Config.SPEECH_TOKEN_TIMEOUT,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the token service.

        Args:
            subscription_key: Speech resource key
            region: Speech resource region, e.g. "eastus"
            session: HTTP session, injectable for tests
            lifetime: Token lifetime in seconds assumed when issuing
            refresh_margin: Refresh tokens this many seconds before expiry
            timeout: HTTP timeout in seconds
            clock: Time source returning epoch seconds
        """
        self.subscription_key = subscription_key or ""
        self.region = region or ""
        self.session = session or requests.Session()
        self.lifetime = lifetime
        self.refresh_margin = refresh_margin
        self.timeout = timeout
        self.clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[SpeechToken] = None

    @classmethod
    def from_config(cls, **kwargs) -> 'SpeechTokenService':
        return cls(Config.speech_key(), Config.speech_region(), **kwargs)

    @property
    def configured(self) -> bool:
        return bool(self.subscription_key and self.region)

    @property
    def token_url(self) -> str:
        return TOKEN_URL_TEMPLATE.format(region=self.region)

    def get_token(self) -> SpeechToken:
        """
        Return a cached token, refreshing it when it is close to expiry.

        Raises:
            ProviderUnavailableError: If no token can be issued
        """
        with self._lock:
            cached = self._cached
            if cached is not None and not cached.expires_within(self.refresh_margin, self.clock()):
                return cached
            return self._issue()

    def refresh(self) -> SpeechToken:
        """Force a new token regardless of the cache."""
        with self._lock:
            return self._issue()

    def is_token_expiring_soon(self) -> bool:
        cached = self._cached
        return cached is None or cached.expires_within(self.refresh_margin, self.clock())

    def get_token_status(self) -> Dict[str, Any]:
        cached = self._cached
        return {
            'configured': self.configured,
            'valid': cached is not None and cached.expires_at > self.clock(),
            'expires_at': datetime.fromtimestamp(cached.expires_at).isoformat() if cached else None,
        }

    def _issue(self) -> SpeechToken:
        if not self.configured:
            raise provider_unavailable(
                RuntimeError("Speech credential missing: set AZURE_SPEECH_KEY and AZURE_SPEECH_REGION"),
                "azure"
            )
        try:
            response = self.session.post(
                self.token_url,
                headers={'Ocp-Apim-Subscription-Key': self.subscription_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise provider_unavailable(e, "azure") from e

        token = response.text.strip()
        if not token:
            raise provider_unavailable(RuntimeError("Token endpoint returned an empty token"), "azure")

        self._cached = SpeechToken(token=token, region=self.region, expires_at=self.clock() + self.lifetime)
        logger.debug(f"Issued speech token for region {self.region}, valid {self.lifetime}s")
        return self._cached


class SpeechTokenMonitor:
    """
    Background monitor that refreshes the speech token before it expires.

    Runs an APScheduler BackgroundScheduler job at a fixed interval.
    """

    def __init__(self, token_service: SpeechTokenService,
                 check_interval_seconds: int = Config.SPEECH_TOKEN_CHECK_INTERVAL):
        self.token_service = token_service
        self.check_interval_seconds = check_interval_seconds
        self.scheduler: Optional[BackgroundScheduler] = None
        self._is_running = False

    def start(self) -> None:
        """Start the background refresh job and run an initial check."""
        if self._is_running:
            logger.warning("SpeechTokenMonitor is already running")
            return
        if not self.token_service.configured:
            logger.info("SpeechTokenMonitor not started: speech credentials are not configured")
            return

        self.scheduler = BackgroundScheduler(daemon=True)
        self.scheduler.add_job(
            func=self.check_and_refresh,
            trigger='interval',
            seconds=self.check_interval_seconds,
            id='speech_token_monitor',
            name='Speech Token Refresh Monitor',
            replace_existing=True
        )
        self.scheduler.start()
        self._is_running = True
        logger.info(f"SpeechTokenMonitor started - checking every {self.check_interval_seconds} seconds")

        self.check_and_refresh()

    def stop(self) -> None:
        """Stop the scheduler. Safe to call multiple times."""
        if not self._is_running:
            return
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
        self._is_running = False
        logger.info("SpeechTokenMonitor stopped")

    def check_and_refresh(self) -> bool:
        """
        Refresh the token if it is expiring soon.

        Failures are logged rather than raised so the scheduler keeps running.

        Returns:
            False if a needed refresh failed, True otherwise
        """
        if not self.token_service.is_token_expiring_soon():
            logger.debug("SpeechTokenMonitor: token is valid and not expiring soon")
            return True
        try:
            self.token_service.refresh()
            logger.info("SpeechTokenMonitor: token refreshed")
            return True
        except Exception as e:
            # Never propagate into the scheduler thread
            logger.error(f"SpeechTokenMonitor: refresh failed: {e}")
            return False

    @property
    def is_running(self) -> bool:
        return self._is_running
