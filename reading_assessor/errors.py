"""
Error handling system for the reading assessment engine.

This module provides centralized error definitions and actionable
error messages for capture, recognition, scoring and session handling.
"""

import logging
from enum import Enum
from typing import List, Optional, Dict, Any
from dataclasses import dataclass


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors that can occur during an assessment."""
    INPUT_VALIDATION = "input_validation"
    AUTHENTICATION = "authentication"
    PROVIDER = "provider"
    SPEECH = "speech"
    AUDIO_DEVICE = "audio_device"
    SESSION = "session"
    CONTENT = "content"
    PERSISTENCE = "persistence"


@dataclass
class ProcessingError:
    """Represents an assessment error with context and guidance."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    details: str
    suggested_actions: List[str]
    error_code: str
    context: Dict[str, Any] = None

    def __post_init__(self):
        if self.context is None:
            self.context = {}


class ReadingAssessmentError(Exception):
    """Base exception for reading assessment errors."""

    def __init__(self, processing_error: ProcessingError):
        self.processing_error = processing_error
        super().__init__(processing_error.message)

    @property
    def recoverable(self) -> bool:
        return self.processing_error.severity in (ErrorSeverity.INFO, ErrorSeverity.WARNING)


class ProviderUnavailableError(ReadingAssessmentError):
    """Raised when the primary transcription service cannot be reached."""
    pass


class NoSpeechDetectedError(ReadingAssessmentError):
    """Raised when an attempt finished without any recognized words."""
    pass


class RecognitionCancelledError(ReadingAssessmentError):
    """Raised when an attempt was superseded or cancelled."""
    pass


class MicrophonePermissionDeniedError(ReadingAssessmentError):
    """Raised when microphone access is refused."""
    pass


class AudioDeviceError(ReadingAssessmentError):
    """Raised when the audio device fails during capture."""
    pass


class SessionAlreadyCompletedError(ReadingAssessmentError):
    """Raised when a locked session was already completed."""
    pass


class SessionStateError(ReadingAssessmentError):
    """Raised when a session transition is not allowed from the current state."""
    pass


class TeacherFeedbackRequiredError(SessionStateError):
    """Raised when a locked session is saved without teacher feedback."""
    pass


class ContentError(ReadingAssessmentError):
    """Raised when card content cannot be loaded."""
    pass


class PersistenceError(ReadingAssessmentError):
    """Raised when session results cannot be stored or fetched."""
    pass


class ErrorHandler:
    """
    Centralized error handling and reporting system.

    Provides error categorization and actionable guidance for every
    stage of an assessment attempt.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.errors: List[ProcessingError] = []
        self.warnings: List[ProcessingError] = []

    def add_error(self, error: ProcessingError) -> None:
        """Add an error to the collection."""
        if error.severity in [ErrorSeverity.ERROR, ErrorSeverity.CRITICAL]:
            self.errors.append(error)
        elif error.severity == ErrorSeverity.WARNING:
            self.warnings.append(error)

        log_level = {
            ErrorSeverity.INFO: logging.INFO,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.CRITICAL: logging.CRITICAL
        }[error.severity]

        self.logger.log(log_level, f"[{error.error_code}] {error.message}")
        if error.details:
            self.logger.log(log_level, f"Details: {error.details}")

    def has_errors(self) -> bool:
        """Check if any errors have been recorded."""
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        """Check if any warnings have been recorded."""
        return len(self.warnings) > 0

    def get_error_summary(self) -> Dict[str, Any]:
        """Get a summary of all errors and warnings."""
        return {
            'error_count': len(self.errors),
            'warning_count': len(self.warnings),
            'errors': [self._format_error_for_summary(e) for e in self.errors],
            'warnings': [self._format_error_for_summary(e) for e in self.warnings]
        }

    def _format_error_for_summary(self, error: ProcessingError) -> Dict[str, Any]:
        """Format error for summary display."""
        return {
            'code': error.error_code,
            'category': error.category.value,
            'severity': error.severity.value,
            'message': error.message,
            'suggested_actions': error.suggested_actions
        }

    def clear_errors(self) -> None:
        """Clear all recorded errors and warnings."""
        self.errors.clear()
        self.warnings.clear()

    def handle_provider_error(self, error: Exception, context: Dict[str, Any] = None) -> ProcessingError:
        """Handle failures reaching the primary transcription service."""
        error_str = str(error).lower()

        if any(term in error_str for term in ['401', '403', 'unauthorized', 'forbidden', 'token', 'credential']):
            return ProcessingError(
                category=ErrorCategory.AUTHENTICATION,
                severity=ErrorSeverity.WARNING,
                message="Speech service authentication failed",
                details=f"The speech service rejected the credentials: {error}",
                suggested_actions=[
                    "Check AZURE_SPEECH_KEY and AZURE_SPEECH_REGION",
                    "The local recognizer will be used for this attempt"
                ],
                error_code="AUTH_001",
                context=context
            )

        if any(term in error_str for term in ['connection', 'timeout', 'network', 'unreachable', 'dns']):
            return ProcessingError(
                category=ErrorCategory.PROVIDER,
                severity=ErrorSeverity.WARNING,
                message="Speech service unreachable",
                details=f"Network error contacting the speech service: {error}",
                suggested_actions=[
                    "Check your internet connection",
                    "The local recognizer will be used for this attempt"
                ],
                error_code="PROVIDER_001",
                context=context
            )

        return ProcessingError(
            category=ErrorCategory.PROVIDER,
            severity=ErrorSeverity.WARNING,
            message="Speech service failed",
            details=f"Unexpected speech service error: {error}",
            suggested_actions=[
                "Try again in a moment",
                "The local recognizer will be used for this attempt"
            ],
            error_code="PROVIDER_002",
            context=context
        )

    def handle_no_speech(self, provider_name: str, context: Dict[str, Any] = None) -> ProcessingError:
        """Handle an attempt that produced no recognized words."""
        return ProcessingError(
            category=ErrorCategory.SPEECH,
            severity=ErrorSeverity.WARNING,
            message="No speech detected. Please try again.",
            details=f"The {provider_name} recognizer finished without recognizing any words",
            suggested_actions=[
                "Speak clearly and close to the microphone",
                "Start reading right after pressing record"
            ],
            error_code="SPEECH_001",
            context=context
        )

    def handle_cancelled_attempt(self, attempt_id: int, context: Dict[str, Any] = None) -> ProcessingError:
        """Describe an attempt that was superseded by a newer one."""
        return ProcessingError(
            category=ErrorCategory.SPEECH,
            severity=ErrorSeverity.INFO,
            message="Recording attempt was cancelled",
            details=f"Attempt {attempt_id} was superseded or stopped before finishing",
            suggested_actions=[],
            error_code="SPEECH_002",
            context=context
        )

    def handle_audio_device_error(self, error: Exception, context: Dict[str, Any] = None) -> ProcessingError:
        """Handle microphone acquisition and capture failures."""
        error_str = str(error).lower()

        if any(term in error_str for term in ['permission', 'denied', 'not allowed', 'access']):
            return ProcessingError(
                category=ErrorCategory.AUDIO_DEVICE,
                severity=ErrorSeverity.ERROR,
                message="Microphone permission not granted",
                details=f"Access to the microphone was refused: {error}",
                suggested_actions=[
                    "Allow microphone access for this application",
                    "Check the operating system privacy settings"
                ],
                error_code="AUDIO_001",
                context=context
            )

        if any(term in error_str for term in ['no default', 'device unavailable', 'invalid device', 'no such device']):
            return ProcessingError(
                category=ErrorCategory.AUDIO_DEVICE,
                severity=ErrorSeverity.ERROR,
                message="No microphone available",
                details=f"No usable input device was found: {error}",
                suggested_actions=[
                    "Connect a microphone",
                    "Select a default input device"
                ],
                error_code="AUDIO_002",
                context=context
            )

        return ProcessingError(
            category=ErrorCategory.AUDIO_DEVICE,
            severity=ErrorSeverity.ERROR,
            message="Microphone error",
            details=f"Audio capture failed: {error}",
            suggested_actions=[
                "Reconnect the microphone and try again",
                "Close other applications using the microphone"
            ],
            error_code="AUDIO_003",
            context=context
        )

    def handle_audio_save_error(self, error: Exception, context: Dict[str, Any] = None) -> ProcessingError:
        """Handle failures writing a captured attempt to disk. The attempt itself still counts."""
        return ProcessingError(
            category=ErrorCategory.AUDIO_DEVICE,
            severity=ErrorSeverity.WARNING,
            message="Could not save attempt audio",
            details=f"Writing the WAV file failed: {error}",
            suggested_actions=["Check that the audio directory is writable"],
            error_code="AUDIO_004",
            context=context
        )

    def handle_session_completed(self, student_id: str, context: Dict[str, Any] = None) -> ProcessingError:
        """Handle entry into a session that is already locked as completed."""
        return ProcessingError(
            category=ErrorCategory.SESSION,
            severity=ErrorSeverity.ERROR,
            message="This remedial session was already completed for this student.",
            details=f"Session lock for student {student_id} is marked completed",
            suggested_actions=[
                "Choose another student",
                "Ask an administrator to reset the session"
            ],
            error_code="SESSION_001",
            context=context
        )

    def handle_level_mismatch(self, student_level: str, expected_level: str,
                              context: Dict[str, Any] = None) -> ProcessingError:
        """Handle a student whose phonemic level differs from the activity level."""
        return ProcessingError(
            category=ErrorCategory.SESSION,
            severity=ErrorSeverity.ERROR,
            message=(
                f"This student is assigned to {student_level} and cannot take "
                f"{expected_level} level."
            ),
            details="Student phonemic level does not match the activity level",
            suggested_actions=["Choose a student assigned to this level"],
            error_code="SESSION_002",
            context=context
        )

    def handle_invalid_transition(self, action: str, state: str,
                                  context: Dict[str, Any] = None) -> ProcessingError:
        """Handle a session operation requested from the wrong state."""
        return ProcessingError(
            category=ErrorCategory.SESSION,
            severity=ErrorSeverity.ERROR,
            message=f"Cannot {action} while the session is {state}",
            details=f"Transition '{action}' is not allowed from state '{state}'",
            suggested_actions=["Select a student and start the session first"],
            error_code="SESSION_003",
            context=context
        )

    def handle_missing_feedback(self, context: Dict[str, Any] = None) -> ProcessingError:
        """Handle saving a locked session without teacher feedback."""
        return ProcessingError(
            category=ErrorCategory.INPUT_VALIDATION,
            severity=ErrorSeverity.ERROR,
            message="Teacher feedback is required before saving this session.",
            details="Locked sessions require non-empty teacher feedback on save",
            suggested_actions=["Write a short comment about the student's reading"],
            error_code="SESSION_004",
            context=context
        )

    def handle_content_error(self, error: Exception, context: Dict[str, Any] = None) -> ProcessingError:
        """Handle unreadable card content."""
        return ProcessingError(
            category=ErrorCategory.CONTENT,
            severity=ErrorSeverity.WARNING,
            message="Failed to load flashcard content",
            details=f"Stored content could not be read, defaults will be used: {error}",
            suggested_actions=[
                "Check the content file is valid JSON",
                "Each card needs a 'sentence' and a 'highlights' list"
            ],
            error_code="CONTENT_001",
            context=context
        )

    def handle_persistence_error(self, error: Exception, context: Dict[str, Any] = None) -> ProcessingError:
        """Handle failures storing or fetching session results."""
        error_str = str(error).lower()

        if '409' in error_str or 'conflict' in error_str:
            return ProcessingError(
                category=ErrorCategory.PERSISTENCE,
                severity=ErrorSeverity.ERROR,
                message="Session was already completed on the server",
                details=f"The server refused the update: {error}",
                suggested_actions=["Reload the student list"],
                error_code="PERSIST_001",
                context=context
            )

        return ProcessingError(
            category=ErrorCategory.PERSISTENCE,
            severity=ErrorSeverity.ERROR,
            message="Failed to save remedial session",
            details=f"Persistence request failed: {error}",
            suggested_actions=[
                "Check the connection to the portal",
                "Try saving the session again"
            ],
            error_code="PERSIST_002",
            context=context
        )


# Global error handler instance
error_handler = ErrorHandler()
