"""
Transcription provider interface and attempt cancellation.

Every recording attempt gets a CancellationToken from the shared
RecognitionAttempts registry. Providers and their event handlers check
the token before touching shared state, so a superseded attempt can never
leak results into the attempt that replaced it.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from ..errors import (
    error_handler, ProviderUnavailableError, RecognitionCancelledError, NoSpeechDetectedError
)
from ..models import AggregateResult


logger = logging.getLogger(__name__)


class CancellationToken:
    """Validity flag for one recording attempt."""

    def __init__(self, attempt_id: int, registry: 'RecognitionAttempts'):
        self.attempt_id = attempt_id
        self._registry = registry
        self._closed = False
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def is_active(self) -> bool:
        """True while this is the newest attempt and it has not been closed."""
        return not self._closed and self._registry.current_id == self.attempt_id

    def on_close(self, callback: Callable[[], None]) -> None:
        """Register a callback run once when the token closes."""
        with self._lock:
            if not self._closed:
                self._callbacks.append(callback)
                return
        callback()

    def close(self) -> None:
        """Close the token. Closing twice is a no-op."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            callbacks, self._callbacks = self._callbacks, []
        logger.debug(f"Attempt {self.attempt_id} closed")
        for callback in callbacks:
            callback()

    def raise_if_cancelled(self) -> None:
        if not self.is_active():
            raise cancelled_error(self.attempt_id)


class RecognitionAttempts:
    """Monotonic attempt counter; beginning an attempt closes the previous one."""

    def __init__(self):
        self._lock = threading.Lock()
        self._current_id = 0
        self._current: Optional[CancellationToken] = None

    @property
    def current_id(self) -> int:
        return self._current_id

    def begin(self) -> CancellationToken:
        with self._lock:
            previous = self._current
            self._current_id += 1
            token = CancellationToken(self._current_id, self)
            self._current = token
        if previous is not None:
            previous.close()
        return token

    def cancel_current(self) -> None:
        with self._lock:
            token, self._current = self._current, None
        if token is not None:
            token.close()


def cancelled_error(attempt_id: int) -> RecognitionCancelledError:
    return RecognitionCancelledError(error_handler.handle_cancelled_attempt(attempt_id))


def no_speech_error(provider_name: str) -> NoSpeechDetectedError:
    processing_error = error_handler.handle_no_speech(provider_name)
    error_handler.add_error(processing_error)
    return NoSpeechDetectedError(processing_error)


def provider_unavailable(error: Exception, provider_name: str) -> ProviderUnavailableError:
    processing_error = error_handler.handle_provider_error(error, {'provider': provider_name})
    error_handler.add_error(processing_error)
    return ProviderUnavailableError(processing_error)


class TranscriptionProvider(ABC):
    """
    A speech recognizer that turns one recording attempt into an AggregateResult.

    Implementations raise ProviderUnavailableError when the backend cannot
    be used, NoSpeechDetectedError when nothing was recognized, and
    RecognitionCancelledError when the attempt token was invalidated.
    """

    name = "provider"

    @abstractmethod
    def recognize(self, sentence: str, token: CancellationToken, recording) -> AggregateResult:
        """
        Recognize the reader's attempt at ``sentence``.

        Args:
            sentence: Expected sentence the recognition is scoped to
            token: Cancellation token of the current attempt
            recording: Active RecordingSession owning the microphone
        """

    def is_available(self) -> bool:
        return True
