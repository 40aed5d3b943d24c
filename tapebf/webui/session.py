from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass

from tapebf.visualizer import VisualizerSession

logger = logging.getLogger(__name__)


@dataclass
class SessionRecord:
    session_id: str
    session: VisualizerSession
    total_steps: int = 0
    total_steps_capped: bool = False


class SessionStore:
    """Thread-safe registry of debugger sessions.

    Lookups refresh a session; once ``max_sessions`` is exceeded the least
    recently used one is dropped.
    """

    def __init__(self, max_sessions: int = 64) -> None:
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, SessionRecord] = OrderedDict()
        self._lock = threading.Lock()

    def add(
        self,
        session: VisualizerSession,
        *,
        total_steps: int = 0,
        total_steps_capped: bool = False,
    ) -> SessionRecord:
        record = SessionRecord(uuid.uuid4().hex, session, total_steps, total_steps_capped)
        with self._lock:
            self._sessions[record.session_id] = record
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.info("Evicted debugger session %s", evicted)
        return record

    def get(self, session_id: str) -> SessionRecord:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                raise KeyError(f"Unknown session id: {session_id}")
            self._sessions.move_to_end(session_id)
            return record

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions


__all__ = ["SessionRecord", "SessionStore"]
