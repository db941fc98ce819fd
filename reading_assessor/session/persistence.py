"""
Persistence sinks for performance entries and session slides.

Two implementations share one interface: a local JSON store used by the
command line and tests, and an HTTP client for the portal API. Both
refuse to overwrite a session that is already completed.
"""

import hashlib
import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..alignment.languages import LanguageProfile, ENGLISH
from ..alignment.normalizer import word_count
from ..config import Config
from ..errors import error_handler, PersistenceError, SessionAlreadyCompletedError
from ..models import PerformanceEntry, SessionContext, SessionStatus, SlideScore
from ..scoring.reading_speed import grade_reading_speed


logger = logging.getLogger(__name__)


def slide_to_payload(slide: SlideScore) -> Dict[str, Any]:
    """Wire format of one slide."""
    return {
        'flashcardIndex': slide.card_index,
        'expectedText': slide.sentence,
        'pronunciationScore': slide.pron_score,
        'accuracyScore': slide.correctness,
        'fluencyScore': slide.fluency_score or 0,
        'completenessScore': slide.completeness_score or 0,
        'readingSpeedWpm': slide.reading_speed_wpm,
        'slideAverage': slide.average_score,
        'transcription': slide.transcription,
    }


def slide_from_payload(payload: Dict[str, Any],
                       sentences: Sequence[str] = (),
                       profile: LanguageProfile = ENGLISH) -> SlideScore:
    """
    Rebuild a slide from its wire format.

    The reading-speed score is not stored, so it is regraded from the
    saved wpm and the expected sentence length.
    """
    index = int(payload['flashcardIndex'])
    sentence = payload.get('expectedText')
    if sentence is None:
        sentence = sentences[index] if 0 <= index < len(sentences) else ""
    wpm = int(payload.get('readingSpeedWpm') or 0)
    grade = grade_reading_speed(wpm, max(1, word_count(sentence, profile)))
    return SlideScore(
        card_index=index,
        sentence=sentence,
        pron_score=int(payload.get('pronunciationScore') or 0),
        correctness=int(payload.get('accuracyScore') or 0),
        fluency_score=int(payload.get('fluencyScore') or 0),
        completeness_score=int(payload.get('completenessScore') or 0),
        reading_speed_wpm=wpm,
        reading_speed_score=grade.score,
        average_score=int(payload.get('slideAverage') or 0),
        transcription=payload.get('transcription'),
    )


def session_payload(student_id: str,
                    context: SessionContext,
                    slides: Sequence[SlideScore],
                    teacher_feedback: Optional[str],
                    completed: bool) -> Dict[str, Any]:
    return {
        'studentId': student_id,
        'approvedScheduleId': context.approved_schedule_id,
        'subjectId': context.subject_id,
        'gradeId': context.grade_id,
        'subjectName': context.subject_name,
        'phonemicId': context.phonemic_id,
        'materialId': context.material_id,
        'completed': completed,
        'slides': [slide_to_payload(slide) for slide in slides],
        'teacherFeedback': (teacher_feedback or "").strip() or None,
    }


def _already_completed(student_id: str) -> SessionAlreadyCompletedError:
    processing_error = error_handler.handle_session_completed(student_id)
    error_handler.add_error(processing_error)
    return SessionAlreadyCompletedError(processing_error)


def _persistence_error(error: Exception, context: Dict[str, Any] = None) -> PersistenceError:
    processing_error = error_handler.handle_persistence_error(error, context)
    error_handler.add_error(processing_error)
    return PersistenceError(processing_error)


class PersistenceSink(ABC):
    """Where finished sessions and performance records go."""

    @abstractmethod
    def save_performance(self, entry: PerformanceEntry) -> None:
        """Store one flat performance record."""

    @abstractmethod
    def save_session_slides(self,
                            student_id: str,
                            context: SessionContext,
                            slides: Sequence[SlideScore],
                            teacher_feedback: Optional[str],
                            completed: bool) -> bool:
        """
        Store the slides of a session.

        Returns:
            Whether the stored session is now completed

        Raises:
            SessionAlreadyCompletedError: If the session was completed before
            PersistenceError: If the slides could not be stored
        """

    @abstractmethod
    def fetch_session_status(self, student_ids: Sequence[str],
                             context: SessionContext) -> Dict[str, SessionStatus]:
        """Return completion/progress flags for each requested student."""

    @abstractmethod
    def load_session_slides(self, student_id: str, context: SessionContext) -> Optional[List[Dict[str, Any]]]:
        """Return saved slide payloads for a student, or None if nothing was saved."""


class JsonFilePersistenceSink(PersistenceSink):
    """Local JSON store: one file per (student, schedule) plus a performance log per student."""

    def __init__(self, storage_dir: Optional[Path] = None):
        self.storage_dir = Path(storage_dir or Config.RESULTS_DIR).resolve()
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @staticmethod
    def _digest(*parts: Any) -> str:
        key = ":".join("" if part is None else str(part) for part in parts)
        return hashlib.sha256(key.encode('utf-8')).hexdigest()[:32]

    def _session_file(self, student_id: str, context: SessionContext) -> Path:
        return self.storage_dir / f"session_{self._digest(student_id, context.approved_schedule_id, context.activity)}.json"

    def _performance_file(self, student_id: str) -> Path:
        return self.storage_dir / f"performance_{self._digest(student_id)}.json"

    def _read_json(self, path: Path, default):
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise _persistence_error(e, {'path': str(path)}) from e

    def _write_json(self, path: Path, data) -> None:
        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise _persistence_error(e, {'path': str(path)}) from e

    def save_performance(self, entry: PerformanceEntry) -> None:
        with self._lock:
            path = self._performance_file(entry.student_id)
            entries = [e for e in self._read_json(path, []) if e.get('id') != entry.id]
            entries.append(entry.to_dict())
            self._write_json(path, entries)
        logger.info(f"Saved performance entry {entry.id} for student {entry.student_id}")

    def save_session_slides(self, student_id, context, slides, teacher_feedback, completed) -> bool:
        with self._lock:
            path = self._session_file(student_id, context)
            existing = self._read_json(path, None)
            if existing and existing.get('completed'):
                raise _already_completed(student_id)
            payload = session_payload(student_id, context, slides, teacher_feedback, completed)
            payload['updatedAt'] = datetime.now().isoformat()
            self._write_json(path, payload)
        logger.info(f"Saved {len(slides)} slides for student {student_id} (completed={completed})")
        return completed

    def fetch_session_status(self, student_ids, context) -> Dict[str, SessionStatus]:
        statuses = {}
        for student_id in student_ids:
            stored = self._read_json(self._session_file(student_id, context), None) or {}
            statuses[student_id] = SessionStatus(
                completed=bool(stored.get('completed')),
                has_progress=bool(stored.get('slides')),
            )
        return statuses

    def load_session_slides(self, student_id, context) -> Optional[List[Dict[str, Any]]]:
        stored = self._read_json(self._session_file(student_id, context), None)
        if not stored or not isinstance(stored.get('slides'), list):
            return None
        return stored['slides']


class HttpPersistenceSink(PersistenceSink):
    """Client for the portal's remedial session API."""

    def __init__(self, base_url: str,
                 session: Optional[requests.Session] = None,
                 timeout: int = Config.HTTP_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise _persistence_error(e, {'path': path}) from e

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    def save_performance(self, entry: PerformanceEntry) -> None:
        response = self._request('POST', Config.PERFORMANCE_PATH, json=entry.to_dict())
        if not response.ok:
            raise _persistence_error(
                RuntimeError(f"HTTP {response.status_code}: {response.reason}"),
                {'path': Config.PERFORMANCE_PATH}
            )

    def save_session_slides(self, student_id, context, slides, teacher_feedback, completed) -> bool:
        body = session_payload(student_id, context, slides, teacher_feedback, completed)
        response = self._request('POST', Config.SESSION_PATH, json=body)
        if response.status_code == 409:
            raise _already_completed(student_id)
        payload = self._json(response)
        if not response.ok or not payload.get('success'):
            raise _persistence_error(
                RuntimeError(payload.get('error') or f"HTTP {response.status_code}: {response.reason}"),
                {'path': Config.SESSION_PATH, 'student_id': student_id}
            )
        return bool(payload.get('completed'))

    def fetch_session_status(self, student_ids, context) -> Dict[str, SessionStatus]:
        ids = list(student_ids)
        if not ids:
            return {}
        response = self._request('POST', Config.SESSION_STATUS_PATH, json={
            'studentIds': ids,
            'approvedScheduleId': context.approved_schedule_id,
        })
        payload = self._json(response)
        if not response.ok or not payload.get('success'):
            raise _persistence_error(
                RuntimeError(payload.get('error') or f"HTTP {response.status_code}: {response.reason}"),
                {'path': Config.SESSION_STATUS_PATH}
            )
        by_student = payload.get('statusByStudent') or {}
        return {
            student_id: SessionStatus(
                completed=bool((by_student.get(student_id) or {}).get('completed')),
                has_progress=bool((by_student.get(student_id) or {}).get('hasProgress')),
            )
            for student_id in ids
        }

    def load_session_slides(self, student_id, context) -> Optional[List[Dict[str, Any]]]:
        if not context.approved_schedule_id:
            return None
        response = self._request('GET', Config.SESSION_PATH, params={
            'studentId': student_id,
            'approvedScheduleId': context.approved_schedule_id,
        })
        payload = self._json(response)
        if not response.ok or not payload.get('success') or not payload.get('found'):
            return None
        slides = payload.get('slides')
        return slides if isinstance(slides, list) else None
