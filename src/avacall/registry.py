import asyncio
import logging
import time
from typing import Optional

from avacall.errors import SessionExists, SessionNotFound
from avacall.session import CallSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """In-memory map of call id -> CallSession, shared by every call task and the reaper.

    All mutations go through one asyncio.Lock. The raw dict is never handed
    out; ``snapshot()`` returns a copy for iteration.
    """

    def __init__(self):
        self._sessions: dict[str, CallSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_sid: str) -> bool:
        return call_sid in self._sessions

    async def create(self, call_sid: str, caller_number: str, **kwargs) -> CallSession:
        if not call_sid:
            raise ValueError("call_sid is required")
        async with self._lock:
            if call_sid in self._sessions:
                raise SessionExists(call_sid)
            session = CallSession(call_sid=call_sid, caller_number=caller_number, **kwargs)
            self._sessions[call_sid] = session
        logger.info("Session created: %s from %s (%d active)", call_sid, caller_number, len(self._sessions))
        return session

    async def get(self, call_sid: str) -> CallSession:
        async with self._lock:
            session = self._sessions.get(call_sid)
        if session is None:
            raise SessionNotFound(call_sid)
        return session

    async def touch(self, call_sid: str, now: Optional[float] = None) -> CallSession:
        async with self._lock:
            session = self._sessions.get(call_sid)
            if session is None:
                raise SessionNotFound(call_sid)
            session.touch(now)
        return session

    async def remove(self, call_sid: str) -> CallSession:
        """Delete and return the session. The caller owns its teardown."""
        async with self._lock:
            session = self._sessions.pop(call_sid, None)
        if session is None:
            raise SessionNotFound(call_sid)
        logger.info("Session removed: %s (%d active)", call_sid, len(self._sessions))
        return session

    async def discard(self, call_sid: str) -> Optional[CallSession]:
        """Like remove(), but returns None when the session is already gone."""
        try:
            return await self.remove(call_sid)
        except SessionNotFound:
            return None

    async def remove_if_idle(
        self,
        call_sid: str,
        threshold: float,
        now: Optional[float] = None,
    ) -> Optional[CallSession]:
        """Compare-and-remove for the reaper.

        Removes the session only if it has been idle longer than ``threshold``
        seconds and no frame is being relayed for it right now. The check and
        the delete happen with no suspension point in between, so a relay task
        cannot start a frame on a session that is being reaped.
        """
        now = time.monotonic() if now is None else now
        async with self._lock:
            session = self._sessions.get(call_sid)
            if session is None or session.in_flight > 0:
                return None
            if session.idle_for(now) <= threshold:
                return None
            del self._sessions[call_sid]
        return session

    async def snapshot(self) -> list[CallSession]:
        async with self._lock:
            return list(self._sessions.values())
