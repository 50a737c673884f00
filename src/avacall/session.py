import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from avacall.classification import classify_priority, classify_system_type
from avacall.states import State

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("call_type", "name", "address", "issue_description")


@dataclass
class IntakeRecord:
    call_type: str = ""
    name: str = ""
    address: str = ""
    issue_description: str = ""
    system_type: str = ""
    priority: str = ""

    # Optional intake detail
    property_type: str = ""
    system_brand: str = ""
    system_age: str = ""
    access_instructions: str = ""
    scheduling_preference: str = ""
    onsite_contact: str = ""
    referral_source: str = ""
    email: str = ""
    notes: str = ""

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, name).strip() for name in REQUIRED_FIELDS)

    @property
    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if not getattr(self, name).strip()]

    def fill(self, **values: str) -> None:
        """Set fields that are still empty; already-collected values are kept."""
        for name, value in values.items():
            if value and not getattr(self, name):
                setattr(self, name, value)

    def with_defaults(self) -> "IntakeRecord":
        """Return a copy whose priority and system type are classified from the issue if unset."""
        return replace(
            self,
            priority=self.priority or classify_priority(self.issue_description),
            system_type=self.system_type or classify_system_type(self.issue_description),
        )


@dataclass
class CallSession:
    call_sid: str
    caller_number: str
    state: State = State.GREETING
    record: IntakeRecord = field(default_factory=IntakeRecord)

    # Relay metadata
    stream_sid: str = ""
    peer: Optional[Any] = None
    start_time: float = field(default_factory=time.time)
    last_active_at: float = field(default_factory=time.monotonic)

    # Lifecycle
    saved: bool = False
    in_flight: int = 0
    turn_count: int = 0
    transcript_log: list = field(default_factory=list)

    _peer_closed: bool = field(default=False, init=False, repr=False)

    def __setattr__(self, name, value):
        # caller_number is captured once at call start
        if name == "caller_number" and "caller_number" in self.__dict__:
            raise AttributeError("caller_number is immutable once the call has started")
        super().__setattr__(name, value)

    def touch(self, now: Optional[float] = None) -> None:
        self.last_active_at = time.monotonic() if now is None else now

    def idle_for(self, now: Optional[float] = None) -> float:
        now = time.monotonic() if now is None else now
        return now - self.last_active_at

    @contextmanager
    def activity(self):
        """Mark a frame as being relayed so the reaper leaves this session alone."""
        self.in_flight += 1
        try:
            yield self
        finally:
            self.in_flight -= 1

    def log_turn(self, role: str, content: str) -> None:
        self.transcript_log.append({
            "role": role,
            "content": content,
            "timestamp": time.time(),
            "state": self.state.value,
        })

    async def close_peer(self) -> bool:
        """Close the AI-backend connection. Returns True only for the call that closed it."""
        if self._peer_closed or self.peer is None:
            return False
        self._peer_closed = True
        try:
            await self.peer.close()
        except Exception as e:
            logger.warning("Closing peer for %s failed: %s", self.call_sid, e)
        return True
