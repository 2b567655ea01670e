from __future__ import annotations

from datetime import datetime, timezone

import pytest

from callrelay.core.errors import InvalidState, NotFound
from callrelay.services.calls import Call, CallRegistry, CallStatus


def _call(call_id: str, caller: str = "alice", callee: str = "bob") -> Call:
    return Call(
        call_id=call_id,
        channel_name=call_id,
        caller_id=caller,
        callee_id=callee,
        created_at=datetime(2026, 1, 5, tzinfo=timezone.utc),
    )


def test_add_rejects_duplicate_ids():
    registry = CallRegistry()
    registry.add(_call("c-1"))

    with pytest.raises(InvalidState):
        registry.add(_call("c-1", caller="mallory"))

    assert registry.require("c-1").caller_id == "alice"
    assert len(registry) == 1


def test_require_unknown_call():
    with pytest.raises(NotFound):
        CallRegistry().require("nope")


def test_active_for_skips_terminal_calls():
    registry = CallRegistry()
    live = _call("c-1")
    done = _call("c-2")
    done.status = CallStatus.ENDED
    other = _call("c-3", caller="carol", callee="dave")
    for call in (live, done, other):
        registry.add(call)

    assert registry.active_for("bob") == [live]
    assert registry.remove("c-2") is done
    assert "c-2" not in registry


def test_transitions_are_monotonic():
    call = _call("c-1")

    assert call.can_transition(CallStatus.ACCEPTED)
    call.status = CallStatus.ACCEPTED
    assert not call.can_transition(CallStatus.REJECTED)
    assert call.can_transition(CallStatus.ENDED)
    call.status = CallStatus.ENDED
    assert call.status.terminal
    assert not any(call.can_transition(status) for status in CallStatus)
