"""Volatile call registry backing the signaling engine."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, Optional

from ..core.errors import InvalidState, NotFound


class CallStatus(str, enum.Enum):
    RINGING = "ringing"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ENDED = "ended"

    @property
    def terminal(self) -> bool:
        return self in (CallStatus.REJECTED, CallStatus.ENDED)


class CallEndReason(str, enum.Enum):
    HANGUP = "hangup"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    EXPIRED = "expired"


ALLOWED_TRANSITIONS: dict[CallStatus, frozenset[CallStatus]] = {
    CallStatus.RINGING: frozenset({CallStatus.ACCEPTED, CallStatus.REJECTED, CallStatus.ENDED}),
    CallStatus.ACCEPTED: frozenset({CallStatus.ENDED}),
    CallStatus.REJECTED: frozenset(),
    CallStatus.ENDED: frozenset(),
}


@dataclass
class Call:
    """Signaling session between a caller and a callee."""

    call_id: str
    channel_name: str
    caller_id: str
    callee_id: str
    created_at: datetime
    status: CallStatus = CallStatus.RINGING
    accepted_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    ended_by: Optional[str] = None
    end_reason: Optional[CallEndReason] = None

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.caller_id, self.callee_id)

    def can_transition(self, target: CallStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def to_dict(self) -> dict:
        return {
            "callId": self.call_id,
            "channelName": self.channel_name,
            "callerId": self.caller_id,
            "calleeId": self.callee_id,
            "status": self.status.value,
            "createdAt": self.created_at,
            "acceptedAt": self.accepted_at,
            "endedAt": self.ended_at,
            "endedBy": self.ended_by,
            "endReason": self.end_reason.value if self.end_reason else None,
        }


class CallRegistry:
    """Call records keyed by call id; written only by the signaling engine."""

    def __init__(self) -> None:
        self._calls: Dict[str, Call] = {}

    def add(self, call: Call) -> None:
        if call.call_id in self._calls:
            raise InvalidState(f"Call {call.call_id} already exists")
        self._calls[call.call_id] = call

    def get(self, call_id: str) -> Optional[Call]:
        return self._calls.get(call_id)

    def require(self, call_id: str) -> Call:
        call = self._calls.get(call_id)
        if call is None:
            raise NotFound(f"Call {call_id} not found")
        return call

    def remove(self, call_id: str) -> Optional[Call]:
        return self._calls.pop(call_id, None)

    def active_for(self, user_id: str) -> list[Call]:
        """Return non-terminal calls where ``user_id`` is a participant."""

        return [call for call in self._calls.values() if not call.status.terminal and call.is_party(user_id)]

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def __iter__(self) -> Iterator[Call]:
        return iter(list(self._calls.values()))
