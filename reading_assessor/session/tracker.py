"""
Session tracker: the per-student, per-card state machine.

The tracker owns the card cursor, the recorded slide scores and the
session lock. Every mutation goes through one of its transition methods;
callers never edit the score set or the lock directly.
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from ..alignment.languages import LanguageProfile, ENGLISH
from ..alignment.normalizer import word_count
from ..errors import (
    error_handler, PersistenceError, SessionAlreadyCompletedError, SessionStateError,
    TeacherFeedbackRequiredError
)
from ..models import (
    ExpectedCard, PerformanceEntry, SessionContext, SessionStatus, SessionSummary, SlideScore
)
from ..scoring.engine import ScoreResult
from ..scoring.reading_speed import grade_reading_speed
from ..scoring.rounding import clamp_score, round_half_up
from .lock_store import SessionLockStore, build_lock_key
from .persistence import PersistenceSink, slide_from_payload


logger = logging.getLogger(__name__)


SCORE_REQUIRED_MESSAGE = "Please record a score before moving to the next card."


class SessionState(Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    BLOCKED = "blocked"
    RECORDING = "recording"
    SCORED = "scored"
    SUMMARY = "summary"
    SAVED = "saved"


def normalize_level(label: Optional[str]) -> str:
    return " ".join((label or "").split()).lower()


class SessionTracker:
    """
    State machine for one remedial reading session.

    States run Idle -> Selecting -> Recording <-> Scored -> Summary -> Saved,
    with Blocked as a dead end for completed sessions and level mismatches.
    ``stop()`` returns to Idle from anywhere.
    """

    def __init__(self,
                 cards: Sequence[ExpectedCard],
                 context: Optional[SessionContext] = None,
                 lock_store: Optional[SessionLockStore] = None,
                 sink: Optional[PersistenceSink] = None,
                 profile: LanguageProfile = ENGLISH,
                 start_index: int = 0):
        if not cards:
            raise ValueError("A session needs at least one card")
        self.cards = list(cards)
        self.context = context or SessionContext()
        self.lock_store = lock_store
        self.sink = sink
        self.profile = profile
        self.start_index = start_index

        self.state = SessionState.IDLE
        self.student_id: Optional[str] = None
        self.current_index = self._clamp_index(start_index)
        self.message: Optional[str] = None
        self.statuses: Dict[str, SessionStatus] = {}
        self.last_result: Optional[ScoreResult] = None
        self._scores: Dict[int, SlideScore] = {}
        self._pending_entry: Optional[PerformanceEntry] = None
        self._slides_saved = False

    # -- queries ---------------------------------------------------------

    @property
    def lock_enabled(self) -> bool:
        return self.context.lock_enabled and self.lock_store is not None

    @property
    def lock_key(self) -> Optional[str]:
        if not self.student_id:
            return None
        return build_lock_key(self.context.subject, self.context.activity, self.student_id)

    @property
    def current_card(self) -> ExpectedCard:
        return self.cards[self.current_index]

    @property
    def scores(self) -> List[SlideScore]:
        """Recorded slides ordered by card index."""
        return [self._scores[index] for index in sorted(self._scores)]

    def has_score(self, card_index: Optional[int] = None) -> bool:
        index = self.current_index if card_index is None else card_index
        return index in self._scores

    @property
    def is_last_card(self) -> bool:
        return self.current_index >= len(self.cards) - 1

    def _clamp_index(self, index: int) -> int:
        return min(max(index, 0), max(0, len(self.cards) - 1))

    def _require(self, action: str, *states: SessionState) -> None:
        if self.state not in states:
            processing_error = error_handler.handle_invalid_transition(action, self.state.value)
            error_handler.add_error(processing_error)
            raise SessionStateError(processing_error)

    # -- selection -------------------------------------------------------

    def refresh_statuses(self, student_ids: Sequence[str]) -> Dict[str, SessionStatus]:
        """Fetch completion/progress flags for a roster from the persistence sink."""
        if self.sink is None:
            return {}
        self.statuses.update(self.sink.fetch_session_status(student_ids, self.context))
        return {student_id: self.statuses[student_id] for student_id in student_ids if student_id in self.statuses}

    def select_student(self, student_id: str, student_level: Optional[str] = None) -> SessionState:
        """
        Choose the student and position the cursor.

        Blocks on a phonemic level mismatch or a completed lock, otherwise
        resumes after the furthest recorded card.
        """
        self._require("select a student", SessionState.IDLE, SessionState.BLOCKED, SessionState.SAVED)
        self.state = SessionState.SELECTING
        self.student_id = student_id
        self.message = None
        self.last_result = None
        self._scores.clear()
        self._discard_pending_save()

        expected = normalize_level(self.context.expected_level)
        actual = normalize_level(student_level)
        if expected and actual and expected != actual:
            processing_error = error_handler.handle_level_mismatch(student_level, self.context.expected_level)
            error_handler.add_error(processing_error)
            return self._block(processing_error.message)

        if not self.lock_enabled:
            self.current_index = self._clamp_index(self.start_index)
            self.state = SessionState.RECORDING
            return self.state

        lock = self.lock_store.read(self.lock_key)
        status = self.statuses.get(student_id)
        if (status is not None and status.completed) or (lock is not None and lock.completed):
            processing_error = error_handler.handle_session_completed(student_id)
            error_handler.add_error(processing_error)
            return self._block(processing_error.message)

        resume = self.start_index
        last_index = None
        if lock is not None:
            last_index = lock.last_index
            resume = max(resume, lock.last_index + 1)

        max_saved = self._restore_saved_slides(student_id)
        if max_saved is not None:
            resume = max(resume, max_saved + 1)
            last_index = max_saved if last_index is None else max(last_index, max_saved)
            self.lock_store.update(self.lock_key, last_index)

        self.current_index = self._clamp_index(resume)
        self.state = SessionState.SCORED if self.has_score() else SessionState.RECORDING
        logger.info(f"Session for student {student_id} starts at card {self.current_index}")
        return self.state

    def _block(self, message: str) -> SessionState:
        self.message = message
        self.state = SessionState.BLOCKED
        return self.state

    def _restore_saved_slides(self, student_id: str) -> Optional[int]:
        if self.sink is None:
            return None
        try:
            payloads = self.sink.load_session_slides(student_id, self.context)
        except PersistenceError as e:
            logger.warning(f"Could not load saved slides for {student_id}: {e}")
            return None
        if not payloads:
            return None

        sentences = [card.sentence for card in self.cards]
        for payload in payloads:
            try:
                slide = slide_from_payload(payload, sentences, self.profile)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed saved slide: {e}")
                continue
            self._scores[slide.card_index] = slide
        if not self._scores:
            return None
        logger.info(f"Restored {len(self._scores)} saved slides for student {student_id}")
        return max(self._scores)

    def ensure_can_record(self) -> None:
        """
        Raises:
            SessionAlreadyCompletedError: If the session is blocked
            SessionStateError: If no card is open for recording
        """
        if self.state is SessionState.BLOCKED:
            processing_error = error_handler.handle_session_completed(self.student_id or "")
            processing_error.message = self.message or processing_error.message
            raise SessionAlreadyCompletedError(processing_error)
        self._require("record", SessionState.RECORDING, SessionState.SCORED)

    # -- recording -------------------------------------------------------

    def begin_recording(self) -> int:
        self.ensure_can_record()
        self.state = SessionState.RECORDING
        self.message = None
        return self.current_index

    def record_score(self, slide: SlideScore, result: Optional[ScoreResult] = None) -> None:
        """Insert or replace the slide for its card index, which must be the current card."""
        self._require("record a score", SessionState.RECORDING, SessionState.SCORED)
        if slide.card_index != self.current_index:
            processing_error = error_handler.handle_invalid_transition(
                f"record a score for card {slide.card_index}",
                f"on card {self.current_index}",
                {'card_index': slide.card_index, 'current_index': self.current_index},
            )
            error_handler.add_error(processing_error)
            raise SessionStateError(processing_error)
        replaced = slide.card_index in self._scores
        self._scores[slide.card_index] = slide
        self._discard_pending_save()
        self.last_result = result
        self.state = SessionState.SCORED
        self.message = None
        logger.debug(f"{'Replaced' if replaced else 'Recorded'} score for card {slide.card_index}")

        if self.lock_enabled and self.student_id:
            self.lock_store.update(self.lock_key, max(self._scores))

    # -- navigation ------------------------------------------------------

    def advance(self) -> bool:
        """
        Move to the next card, or to the summary after the last card.

        Returns:
            False if the current card has no score yet
        """
        self._require("advance", SessionState.RECORDING, SessionState.SCORED)
        if not self.has_score():
            self.message = SCORE_REQUIRED_MESSAGE
            return False

        self.message = None
        self.last_result = None
        self._discard_pending_save()
        if self.is_last_card:
            self.state = SessionState.SUMMARY
            return True

        self.current_index += 1
        self.state = SessionState.SCORED if self.has_score() else SessionState.RECORDING
        return True

    def previous(self) -> bool:
        """Step back one card. Only allowed when the session is not locked."""
        self._require("go back", SessionState.RECORDING, SessionState.SCORED, SessionState.SUMMARY)
        if self.lock_enabled:
            return False
        self._discard_pending_save()
        if self.state is SessionState.SUMMARY:
            self.state = SessionState.SCORED if self.has_score() else SessionState.RECORDING
            return True
        if self.current_index == 0:
            return False
        self.current_index -= 1
        self.last_result = None
        self.state = SessionState.SCORED if self.has_score() else SessionState.RECORDING
        return True

    # -- summary and save ------------------------------------------------

    def summary(self) -> SessionSummary:
        slides = self.scores
        n = max(1, len(slides))

        def average(values) -> int:
            return round_half_up(sum(values) / n)

        return SessionSummary(
            pronunciation_avg=average(s.pron_score for s in slides),
            accuracy_avg=average(s.correctness for s in slides),
            fluency_avg=average(s.fluency_score for s in slides),
            reading_speed_avg=average(s.reading_speed_wpm for s in slides),
            overall_average=average(s.average_score for s in slides),
            slide_count=len(slides),
        )

    def build_performance_entry(self) -> Optional[PerformanceEntry]:
        """Flat record of the latest attempt, or None when nothing was scored."""
        if not self.student_id:
            return None
        result = self.last_result
        latest = self._scores.get(self.current_index)
        if latest is None and self._scores:
            latest = self.scores[-1]
        if result is None and latest is None:
            return None

        in_summary = self.state is SessionState.SUMMARY
        sentence = latest.sentence if latest is not None else self.current_card.sentence
        words = word_count(sentence, self.profile)

        if result is not None:
            pron = result.pron_score
            correctness = result.correctness
            speed_score = result.reading_speed_score
        else:
            pron = latest.pron_score
            correctness = latest.correctness
            speed_score = latest.reading_speed_score
        if self._scores:
            overall = self.summary().overall_average
        else:
            overall = clamp_score((pron + correctness + speed_score) / 3)

        return PerformanceEntry(
            id=f"perf-{uuid.uuid4().hex[:12]}",
            student_id=self.student_id,
            timestamp=datetime.now().isoformat(),
            pron_score=pron,
            fluency_score=result.fluency_score if result is not None else latest.fluency_score,
            phoneme_accuracy=result.phoneme_accuracy if result is not None else float(pron),
            wpm=result.wpm if result is not None else latest.reading_speed_wpm,
            card_index=-1 if in_summary else self.current_index,
            sentence=sentence,
            correctness=correctness,
            reading_speed_score=speed_score,
            reading_speed_label=(
                result.reading_speed_label if result is not None
                else grade_reading_speed(latest.reading_speed_wpm, words).label
            ),
            word_count=result.word_count if result is not None else words,
            overall_average=overall,
        )

    def save_session(self, teacher_feedback: Optional[str] = None) -> bool:
        """
        Persist the session and finish it.

        Returns:
            True if the session lock is now completed

        Raises:
            TeacherFeedbackRequiredError: Saving a locked session from the summary without feedback
            PersistenceError: If the sink failed; the session stays open for a retry
        """
        self._require("save the session", SessionState.RECORDING, SessionState.SCORED, SessionState.SUMMARY)
        in_summary = self.state is SessionState.SUMMARY
        if in_summary and self.lock_enabled and not (teacher_feedback or "").strip():
            processing_error = error_handler.handle_missing_feedback({'student_id': self.student_id})
            error_handler.add_error(processing_error)
            self.message = processing_error.message
            raise TeacherFeedbackRequiredError(processing_error)

        # A failed save is retried with the same entry; slides already stored are not resent
        if self._pending_entry is None:
            self._pending_entry = self.build_performance_entry()
        entry = self._pending_entry

        saved = not self.lock_enabled
        if self._slides_saved:
            saved = True
        elif self.lock_enabled and self.student_id and self._scores and self.sink is not None:
            try:
                self.sink.save_session_slides(
                    self.student_id, self.context, self.scores, teacher_feedback, in_summary
                )
                saved = True
                self._slides_saved = True
                self.statuses[self.student_id] = SessionStatus(completed=in_summary, has_progress=True)
            except SessionAlreadyCompletedError as e:
                logger.warning(f"Session not saved: {e}")
        elif self.lock_enabled and self.sink is None:
            saved = True

        if entry is not None and self.sink is not None:
            self.sink.save_performance(entry)

        completed = False
        if self.lock_enabled and saved and self.student_id:
            existing = self.lock_store.read(self.lock_key)
            reached = max(self._scores) if self._scores else self.current_index
            if existing is not None:
                reached = max(existing.last_index, reached)
            completed = (
                bool(self._scores)
                and reached >= len(self.cards) - 1
                and (in_summary or self.is_last_card)
            )
            completed = self.lock_store.update(self.lock_key, reached, completed).completed

        self.state = SessionState.SAVED
        self._reset_cursor()
        logger.info(f"Session saved for student {self.student_id} (completed={completed})")
        return completed

    def stop(self) -> None:
        """Abandon the session without saving."""
        self.state = SessionState.IDLE
        self.student_id = None
        self.message = None
        self._reset_cursor()

    def _reset_cursor(self) -> None:
        self._scores.clear()
        self._discard_pending_save()
        self.last_result = None
        self.current_index = self._clamp_index(self.start_index)

    def _discard_pending_save(self) -> None:
        self._pending_entry = None
        self._slides_saved = False
