"""
State of one streaming recognition attempt.

Provider SDK callbacks arrive on their own threads. Every handler checks
the attempt's cancellation token first and returns without touching the
aggregate when the attempt is stale. Finalization happens exactly once,
triggered by the idle timer, the ceiling timer, a cancellation event, or
the caller.
"""

import logging
import threading
from typing import Optional

from ..alignment.languages import LanguageProfile, ENGLISH
from ..config import RecognitionTimeouts
from ..models import AggregateResult, SpeechSegment
from .aggregation import SegmentAggregator
from .base import CancellationToken, cancelled_error, provider_unavailable


logger = logging.getLogger(__name__)


class StreamingAttempt:
    """Accumulates recognized segments until the attempt is finalized."""

    def __init__(self,
                 token: CancellationToken,
                 provider_name: str,
                 timeouts: Optional[RecognitionTimeouts] = None,
                 profile: LanguageProfile = ENGLISH):
        self.token = token
        self.provider_name = provider_name
        self.timeouts = timeouts or RecognitionTimeouts()
        self.aggregator = SegmentAggregator(profile)
        self.interim_text = ""
        self.cancel_details: Optional[str] = None

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._finished = False
        self._error: Optional[Exception] = None
        self._idle_timer: Optional[threading.Timer] = None
        self._ceiling_timer: Optional[threading.Timer] = None

        token.on_close(self.finish)

    @property
    def finished(self) -> bool:
        return self._finished

    def start(self) -> None:
        """Arm the ceiling timer and the initial idle timer."""
        with self._lock:
            if self._finished:
                return
            self._ceiling_timer = self._timer(self.timeouts.max_duration, "ceiling")
        self._bump_idle()

    def _timer(self, seconds: float, reason: str) -> threading.Timer:
        def _fire():
            logger.debug(f"Attempt {self.token.attempt_id}: {reason} timer fired")
            self.finish()

        timer = threading.Timer(seconds, _fire)
        timer.daemon = True
        timer.start()
        return timer

    def _bump_idle(self) -> None:
        with self._lock:
            if self._finished:
                return
            if self._idle_timer is not None:
                self._idle_timer.cancel()
            self._idle_timer = self._timer(self.timeouts.idle_timeout, "idle")

    def handle_recognized(self, segment: SpeechSegment) -> None:
        if not self.token.is_active() or self._finished:
            logger.debug(f"Dropping segment for stale attempt {self.token.attempt_id}")
            return
        self.aggregator.add(segment)
        self._bump_idle()

    def handle_recognizing(self, text: str) -> None:
        if not self.token.is_active() or self._finished:
            return
        if text:
            self.interim_text = text
        self._bump_idle()

    def handle_canceled(self, error_details: Optional[str] = None) -> None:
        if not self.token.is_active():
            return
        if error_details:
            logger.warning(f"Recognition canceled: {error_details}")
            self.cancel_details = error_details
        self.finish()

    def handle_error(self, error: Exception) -> None:
        if not self.token.is_active():
            return
        with self._lock:
            if self._error is None:
                self._error = error
        self.finish()

    def finish(self) -> None:
        """Finalize the attempt. Only the first call has an effect."""
        with self._lock:
            if self._finished:
                return
            self._finished = True
            for timer in (self._idle_timer, self._ceiling_timer):
                if timer is not None:
                    timer.cancel()
            self._idle_timer = self._ceiling_timer = None
        self._done.set()

    def wait(self, timeout: Optional[float] = None) -> AggregateResult:
        """
        Block until finalization and return the merged result.

        Raises:
            RecognitionCancelledError: If the attempt was superseded
            ProviderUnavailableError: If the stream failed before any words arrived
            NoSpeechDetectedError: If the attempt ended without words
        """
        if timeout is None:
            timeout = self.timeouts.max_duration + self.timeouts.idle_timeout
        if not self._done.wait(timeout):
            self.finish()

        if not self.token.is_active():
            raise cancelled_error(self.token.attempt_id)
        if self._error is not None:
            raise provider_unavailable(self._error, self.provider_name)
        if self.cancel_details and self.aggregator.total_words == 0:
            raise provider_unavailable(RuntimeError(self.cancel_details), self.provider_name)
        return self.aggregator.finalize(self.provider_name)
