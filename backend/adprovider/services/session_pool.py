"""Session pool for reusing WinRM command and file-copy sessions."""
import threading
from contextlib import contextmanager
from typing import Dict, List

from adprovider.logger import get_logger

logger = get_logger("services.session_pool")


class SessionPool:
    """Two FIFO queues of idle sessions behind a single lock.

    A leased session belongs to exactly one caller until it is released.
    Acquire creates a new session when the queue is empty; release appends
    it back. The pool only shrinks when it is closed.
    """

    def __init__(self, factory):
        self.factory = factory
        self._command_sessions: List = []
        self._file_sessions: List = []
        self._lock = threading.Lock()
        self._closed = False

    def acquire_command(self):
        """Lease a command session, creating one if none is idle."""
        with self._lock:
            if self._command_sessions:
                return self._command_sessions.pop(0)
        # created outside the lock; a failed create never enters the pool
        logger.debug("No idle command session, creating a new one")
        return self.factory.command_session()

    def release_command(self, session) -> None:
        with self._lock:
            if not self._closed:
                self._command_sessions.append(session)
                return
        session.close()

    def acquire_file(self):
        """Lease a file-copy session, creating one if none is idle."""
        with self._lock:
            if self._file_sessions:
                return self._file_sessions.pop(0)
        logger.debug("No idle file session, creating a new one")
        return self.factory.file_session()

    def release_file(self, session) -> None:
        with self._lock:
            if not self._closed:
                self._file_sessions.append(session)
                return
        session.close()

    @contextmanager
    def command_session(self):
        session = self.acquire_command()
        try:
            yield session
        finally:
            self.release_command(session)

    @contextmanager
    def file_session(self):
        session = self.acquire_file()
        try:
            yield session
        finally:
            self.release_file(session)

    def idle_counts(self) -> Dict[str, int]:
        """Number of idle sessions per kind."""
        with self._lock:
            return {"command": len(self._command_sessions), "file": len(self._file_sessions)}

    def close(self) -> None:
        """Close every idle session; sessions released afterwards are closed on return."""
        with self._lock:
            self._closed = True
            sessions = self._command_sessions + self._file_sessions
            self._command_sessions = []
            self._file_sessions = []
        for session in sessions:
            session.close()
