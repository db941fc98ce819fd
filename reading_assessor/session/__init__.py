"""
Session module: lock persistence, result sinks and the session state machine.
"""

from .lock_store import SessionLockStore, build_lock_key
from .persistence import PersistenceSink, JsonFilePersistenceSink, HttpPersistenceSink
from .tracker import SessionTracker, SessionState

__all__ = [
    'SessionLockStore',
    'build_lock_key',
    'PersistenceSink',
    'JsonFilePersistenceSink',
    'HttpPersistenceSink',
    'SessionTracker',
    'SessionState'
]
