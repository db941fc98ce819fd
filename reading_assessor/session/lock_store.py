"""
Persistence of session locks.

A lock records how far a student got in a remedial activity and whether
the activity was completed. Updates are monotone: ``last_index`` never
decreases and ``completed`` never reverts to False. Stored data that does
not match the schema is treated as absent.
"""

import hashlib
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..config import Config
from ..models import SessionLockState


logger = logging.getLogger(__name__)


def build_lock_key(subject: str, activity: str, student_id: str) -> str:
    """``remedial-session:<subject>:<activity>:<student>`` with placeholders for blanks."""
    subject_key = (subject or "").strip() or "subject"
    activity_key = (activity or "").strip() or "activity"
    return f"remedial-session:{subject_key}:{activity_key}:{student_id}"


class SessionLockStore:
    """One JSON file per lock key."""

    def __init__(self, storage_dir: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            storage_dir: Directory for lock files, defaults to Config.SESSION_LOCK_DIR
        """
        self.storage_dir = Path(storage_dir or Config.SESSION_LOCK_DIR).resolve()
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _get_lock_file_path(self, key: str) -> Path:
        # Hashing keeps arbitrary student ids out of the file system path
        digest = hashlib.sha256(key.encode('utf-8')).hexdigest()[:32]
        return self.storage_dir / f"lock_{digest}.json"

    def read(self, key: str) -> Optional[SessionLockState]:
        """Return the stored lock, or None if absent or malformed."""
        lock_file = self._get_lock_file_path(key)
        if not lock_file.exists():
            return None
        try:
            with open(lock_file, 'r', encoding='utf-8') as f:
                return SessionLockState.from_dict(json.load(f))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session lock for {key}: {e}")
            return None

    def update(self, key: str, last_index: int, completed: bool = False) -> SessionLockState:
        """
        Merge progress into the stored lock.

        The stored ``last_index`` becomes the larger of old and new, and a
        completed lock stays completed.
        """
        with self._lock:
            existing = self.read(key)
            if existing is not None:
                if last_index <= existing.last_index and (existing.completed or not completed):
                    return existing
                last_index = max(existing.last_index, last_index)
                completed = existing.completed or completed

            state = SessionLockState(completed=completed, last_index=last_index, updated_at=datetime.now())
            self._write(key, state)
            logger.debug(f"Session lock {key}: last_index={last_index}, completed={completed}")
            return state

    def _write(self, key: str, state: SessionLockState) -> None:
        lock_file = self._get_lock_file_path(key)
        with open(lock_file, 'w', encoding='utf-8') as f:
            json.dump(state.to_dict(), f, indent=2)

    def clear(self, key: str) -> bool:
        """Administrative reset of a lock."""
        lock_file = self._get_lock_file_path(key)
        if lock_file.exists():
            lock_file.unlink()
            return True
        return False
