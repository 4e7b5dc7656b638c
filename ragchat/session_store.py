"""
In-memory conversation history keyed by session id.

Sessions live only in process memory and expire after a period of
inactivity. The mapping is guarded by one lock and each session's message list
by its own lock; neither is ever held across an ``await``, so slow backend
calls never block other sessions or the sweep.

A request leases its session for its whole duration; the sweep skips leased
sessions, so a handler never works on a session that was deleted under it.
Requests on the same session additionally take the session's ``turn_lock``
so their user/assistant turns are stored in order.
"""

import asyncio
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional

from . import config
from .models.rag_models import ChatMessage, Role, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Session:
    id: str
    messages: List[ChatMessage] = field(default_factory=list)
    last_active_at: datetime = field(default_factory=utcnow)
    leases: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    # One request at a time per session; other sessions are unaffected
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def snapshot(self) -> List[ChatMessage]:
        with self.lock:
            return list(self.messages)


class SessionStore:
    """Owns every live Session; nothing else mutates them.

    Args:
        expiration_seconds: Idle time after which the sweep deletes a session.
        clock: Returns the current tz-aware time.
        system_message: If set, every new session starts with this system message.
    """

    def __init__(self, expiration_seconds: int = None, clock=utcnow, system_message: str = None):
        seconds = expiration_seconds if expiration_seconds is not None else config.SESSION_EXPIRATION_SECONDS
        self.expiration = timedelta(seconds=seconds)
        self.system_message = system_message
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def _new_session(self, session_id: str) -> Session:
        # Caller holds self._lock
        now = self._clock()
        session = Session(id=session_id, last_active_at=now)
        if self.system_message:
            session.messages.append(ChatMessage(role=Role.SYSTEM, content=self.system_message, created_at=now))
        self._sessions[session_id] = session
        logger.info(f"[SESSIONS] Created session {session_id}")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        """Return the session, creating it on first reference."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = self._new_session(session_id)
            return session

    def create_session(self) -> str:
        """Create a session under a fresh random id and return the id."""
        with self._lock:
            session_id = str(uuid.uuid4())
            while session_id in self._sessions:
                session_id = str(uuid.uuid4())
            self._new_session(session_id)
        return session_id

    def append(self, session_id: str, role: Role, content: str) -> ChatMessage:
        """Append a message and refresh the session's activity time."""
        session = self.get_or_create(session_id)
        message = ChatMessage(role=role, content=content, created_at=self._clock())
        with session.lock:
            session.messages.append(message)
            session.last_active_at = message.created_at
        return message

    def history(self, session_id: str) -> Optional[List[ChatMessage]]:
        session = self.get(session_id)
        return session.snapshot() if session else None

    @contextmanager
    def lease(self, session_id: str) -> Iterator[Session]:
        """Hold a session for the duration of a request.

        The session cannot be swept while leased. The lease is a counter, not a
        lock: concurrent requests for the same session may hold it together,
        and serialize their turns on ``session.turn_lock``.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = self._new_session(session_id)
            session.leases += 1
            session.last_active_at = self._clock()
        try:
            yield session
        finally:
            with self._lock:
                session.leases -= 1
                session.last_active_at = self._clock()

    def sweep(self, now: datetime = None) -> List[str]:
        """Delete sessions idle longer than the expiration window.

        Returns:
            Ids of the deleted sessions.
        """
        now = now or self._clock()
        cutoff = now - self.expiration
        with self._lock:
            expired = [
                sid for sid, s in self._sessions.items()
                if s.leases == 0 and s.last_active_at < cutoff
            ]
            for sid in expired:
                del self._sessions[sid]
        for sid in expired:
            logger.info(f"[SESSIONS] Session {sid} removed after inactivity")
        return expired


async def run_periodic_sweep(store: SessionStore, interval_seconds: float) -> None:
    """Sweep expired sessions every ``interval_seconds`` until cancelled."""
    logger.info(f"[SESSIONS] Sweep task started (every {interval_seconds}s)")
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = store.sweep()
            if removed:
                logger.info(f"[SESSIONS] Swept {len(removed)} expired sessions, {len(store)} active")
    except asyncio.CancelledError:
        logger.info("[SESSIONS] Sweep task cancelled")
        raise
