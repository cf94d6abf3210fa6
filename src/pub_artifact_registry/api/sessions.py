import logging
import threading
import time
from typing import Callable, Optional

from cachetools import TLRUCache

from pub_artifact_registry.domain.models.models import UploadSession

logger = logging.getLogger(__name__)


class SessionStore:
    """Thread-safe table of upload sessions waiting to be finalized.

    A session expires ``ttl_seconds`` after it was first stored. A
    ``ttl_seconds`` of ``None`` or 0 keeps sessions until they are taken.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = 3600,
        clock: Callable[[], float] = time.monotonic,
        max_sessions: int = 1000,
    ):
        self.ttl_seconds = ttl_seconds if ttl_seconds and ttl_seconds > 0 else None
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions = TLRUCache(maxsize=max_sessions, ttu=self._expires_at, timer=clock)

    def _expires_at(self, _session_id, session: UploadSession, _now: float) -> float:
        if self.ttl_seconds is None:
            return float("inf")
        return session.created_at + self.ttl_seconds

    def put(self, session: UploadSession) -> None:
        with self._lock:
            session.created_at = self._clock()
            self._sessions[session.session_id] = session

    def restore(self, session: UploadSession) -> bool:
        """Put back a taken session, keeping its original expiry.

        Returns False when the session has expired meanwhile or its id was
        reused by a newer upload.
        """
        with self._lock:
            if session.session_id in self._sessions:
                logger.info(
                    "Upload session %s was replaced while finalizing", session.session_id
                )
                return False
            self._sessions[session.session_id] = session
            return session.session_id in self._sessions

    def get(self, session_id: str) -> Optional[UploadSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def take(self, session_id: str) -> Optional[UploadSession]:
        """Remove and return a session in one step"""
        with self._lock:
            return self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            self._sessions.expire()
            return len(self._sessions)
