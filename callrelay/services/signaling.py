"""Call signaling engine: the two-party ring/accept/reject/end state machine."""
from __future__ import annotations

import asyncio
import itertools
import logging
import re
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from ..core.config import Settings
from ..core.errors import Forbidden, InvalidState, require_text
from .calls import Call, CallEndReason, CallRegistry, CallStatus
from .presence import PresenceConnection, PresenceRegistry, SendCallable
from .tokens import RtcToken, TokenIssuer

INCOMING_CALL = "incomingCall"
CALL_ACCEPTED = "callAccepted"
CALL_REJECTED = "callRejected"
CALL_ENDED = "callEnded"

_UNSAFE_CHANNEL_CHARS = re.compile(r"[^A-Za-z0-9_-]+")

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Notifier(Protocol):
    async def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        ...


@dataclass(slots=True)
class CallStarted:
    call_id: str
    channel_name: str
    token: RtcToken


@dataclass(slots=True)
class CallAccepted:
    call_id: str
    channel_name: str
    token: RtcToken


class SignalingEngine:
    """Orchestrate call lifecycles between two parties.

    The engine is the only writer of the call registry. Transitions are validated and applied
    under a single lock, and notifications go out after the lock is released as background
    tasks, so a slow peer never delays the request that triggered them. A failed validation
    leaves both the registry and the presence layer untouched.
    """

    def __init__(
        self,
        presence: PresenceRegistry,
        calls: CallRegistry,
        issuer: TokenIssuer,
        *,
        notifier: Notifier | None = None,
        clock: Clock = _utcnow,
        ring_timeout: float = 60,
        max_duration: float = 3600,
        retention: float = 300,
    ) -> None:
        self._presence = presence
        self._calls = calls
        self._issuer = issuer
        self._notifier: Notifier = notifier or presence
        self._clock = clock
        self._ring_timeout = timedelta(seconds=ring_timeout)
        self._max_duration = timedelta(seconds=max_duration)
        self._retention = timedelta(seconds=retention)
        self._sequence = itertools.count(1)
        self._lock = asyncio.Lock()
        self._deliveries: set[asyncio.Task[None]] = set()

    @property
    def issuer(self) -> TokenIssuer:
        return self._issuer

    async def start_call(
        self,
        caller_id: str,
        callee_id: str,
        requested_channel: str | None = None,
    ) -> CallStarted:
        """Ring ``callee_id`` and hand the caller a credential for the new channel."""

        caller_id = require_text(caller_id, "callerId")
        callee_id = require_text(callee_id, "calleeId")
        requested = requested_channel.strip() if isinstance(requested_channel, str) else ""

        async with self._lock:
            now = self._clock()
            call_id = self._new_call_id(caller_id, callee_id, now)
            channel_name = requested or call_id
            token = self._issuer.issue(channel_name, caller_id)
            call = Call(
                call_id=call_id,
                channel_name=channel_name,
                caller_id=caller_id,
                callee_id=callee_id,
                created_at=now,
            )
            self._calls.add(call)

        logger.info("Call %s ringing: %s -> %s", call_id, caller_id, callee_id)
        self._dispatch(
            callee_id,
            INCOMING_CALL,
            {"callId": call_id, "channelName": channel_name, "from": caller_id},
        )
        return CallStarted(call_id=call_id, channel_name=channel_name, token=token)

    async def accept_call(self, call_id: str, callee_id: str) -> CallAccepted:
        call_id = require_text(call_id, "callId")
        callee_id = require_text(callee_id, "calleeId")

        async with self._lock:
            call = self._calls.require(call_id)
            self._require_callee(call, callee_id)
            self._require_status(call, CallStatus.RINGING, "accept")
            token = self._issuer.issue(call.channel_name, callee_id)
            call.status = CallStatus.ACCEPTED
            call.accepted_at = self._clock()

        logger.info("Call %s accepted by %s", call_id, callee_id)
        self._dispatch(
            call.caller_id,
            CALL_ACCEPTED,
            {"callId": call_id, "channelName": call.channel_name, "from": callee_id},
        )
        return CallAccepted(call_id=call_id, channel_name=call.channel_name, token=token)

    async def reject_call(self, call_id: str, callee_id: str) -> None:
        call_id = require_text(call_id, "callId")
        callee_id = require_text(callee_id, "calleeId")

        async with self._lock:
            call = self._calls.require(call_id)
            self._require_callee(call, callee_id)
            self._require_status(call, CallStatus.RINGING, "reject")
            self._finish(call, CallStatus.REJECTED, by=callee_id, reason=CallEndReason.REJECTED)

        logger.info("Call %s rejected by %s", call_id, callee_id)
        self._dispatch(call.caller_id, CALL_REJECTED, {"callId": call_id, "from": callee_id})

    async def end_call(self, call_id: str, acting_user_id: str) -> None:
        """Hang up an accepted call; either party may do so and both are told."""

        call_id = require_text(call_id, "callId")
        acting_user_id = require_text(acting_user_id, "userId")

        async with self._lock:
            call = self._calls.require(call_id)
            if not call.is_party(acting_user_id):
                raise Forbidden(f"{acting_user_id} is not a participant of call {call_id}")
            self._require_status(call, CallStatus.ACCEPTED, "end")
            self._finish(call, CallStatus.ENDED, by=acting_user_id, reason=CallEndReason.HANGUP)

        logger.info("Call %s ended by %s", call_id, acting_user_id)
        self._announce_end(call, include_reason=False)

    async def cancel_call(self, call_id: str, caller_id: str) -> None:
        """Let the caller withdraw a call that is still ringing."""

        call_id = require_text(call_id, "callId")
        caller_id = require_text(caller_id, "callerId")

        async with self._lock:
            call = self._calls.require(call_id)
            if call.caller_id != caller_id:
                raise Forbidden(f"Only the caller may cancel call {call_id}")
            self._require_status(call, CallStatus.RINGING, "cancel")
            self._finish(call, CallStatus.ENDED, by=caller_id, reason=CallEndReason.CANCELLED)

        logger.info("Call %s cancelled by %s", call_id, caller_id)
        self._announce_end(call)

    async def connect(self, connection_id: str, send: SendCallable) -> None:
        """Track a new transport connection before it registers a user."""

        await self._presence.attach(PresenceConnection(connection_id=connection_id, send=send))

    def owner_of(self, connection_id: str) -> Optional[str]:
        return self._presence.owner_of(connection_id)

    async def register_presence(self, connection_id: str, user_id: str) -> None:
        await self._presence.register(user_id, connection_id)
        logger.info("Connection %s registered as %s", connection_id, user_id)

    async def disconnect(self, connection_id: str) -> Optional[str]:
        """Tear down a closed connection.

        When the owner has no live connection left, calls they are still ringing out are
        cancelled so the callee stops ringing.
        """

        user_id = await self._presence.disconnect(connection_id)
        if user_id is None:
            return None

        abandoned: list[Call] = []
        async with self._lock:
            if not self._presence.is_online(user_id):
                for call in self._calls.active_for(user_id):
                    if call.caller_id == user_id and call.status is CallStatus.RINGING:
                        self._finish(call, CallStatus.ENDED, by=user_id, reason=CallEndReason.CANCELLED)
                        abandoned.append(call)

        for call in abandoned:
            logger.info("Call %s cancelled: caller %s went offline", call.call_id, user_id)
            self._announce_end(call)
        return user_id

    async def sweep(self) -> list[Call]:
        """Time out stale calls and forget terminal ones past retention."""

        finished: list[Call] = []
        async with self._lock:
            now = self._clock()
            for call in self._calls:
                if call.status is CallStatus.RINGING and now - call.created_at >= self._ring_timeout:
                    self._finish(call, CallStatus.ENDED, by=None, reason=CallEndReason.TIMEOUT)
                    finished.append(call)
                elif (
                    call.status is CallStatus.ACCEPTED
                    and call.accepted_at is not None
                    and now - call.accepted_at >= self._max_duration
                ):
                    self._finish(call, CallStatus.ENDED, by=None, reason=CallEndReason.EXPIRED)
                    finished.append(call)
                elif call.status.terminal and call.ended_at is not None and now - call.ended_at >= self._retention:
                    self._calls.remove(call.call_id)

        for call in finished:
            logger.info("Call %s ended by sweeper (%s)", call.call_id, call.end_reason.value)
            self._announce_end(call)
        return finished

    def get_call(self, call_id: str) -> Call:
        """Return a detached snapshot of a call."""

        return replace(self._calls.require(require_text(call_id, "callId")))

    def presence_of(self, user_id: str) -> dict[str, Any]:
        return {
            "userId": user_id,
            "online": self._presence.is_online(user_id),
            "connections": len(self._presence.connections_for(user_id)),
        }

    def _new_call_id(self, caller_id: str, callee_id: str, now: datetime) -> str:
        stamp = int(now.timestamp() * 1000)
        caller = _UNSAFE_CHANNEL_CHARS.sub("-", caller_id)
        callee = _UNSAFE_CHANNEL_CHARS.sub("-", callee_id)
        return f"call_{caller}_{callee}_{stamp}_{next(self._sequence)}{secrets.token_hex(3)}"

    def _finish(
        self,
        call: Call,
        status: CallStatus,
        *,
        by: str | None,
        reason: CallEndReason,
    ) -> None:
        if not call.can_transition(status):
            raise InvalidState(f"Call {call.call_id} cannot move from {call.status.value} to {status.value}")
        call.status = status
        call.ended_at = self._clock()
        call.ended_by = by
        call.end_reason = reason

    async def drain(self) -> None:
        """Wait until every notification dispatched so far has been delivered or dropped."""

        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    def _dispatch(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._notifier.notify(user_id, event, payload))
        self._deliveries.add(task)
        task.add_done_callback(self._delivered)

    def _delivered(self, task: asyncio.Task[None]) -> None:
        self._deliveries.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Notification delivery failed: %s", task.exception())

    def _announce_end(self, call: Call, include_reason: bool = True) -> None:
        payload: dict[str, Any] = {"callId": call.call_id, "by": call.ended_by}
        if include_reason and call.end_reason is not None:
            payload["reason"] = call.end_reason.value
        for user_id in dict.fromkeys((call.caller_id, call.callee_id)):
            self._dispatch(user_id, CALL_ENDED, payload)

    @staticmethod
    def _require_callee(call: Call, callee_id: str) -> None:
        if call.callee_id != callee_id:
            raise Forbidden(f"{callee_id} is not the callee of call {call.call_id}")

    @staticmethod
    def _require_status(call: Call, expected: CallStatus, action: str) -> None:
        if call.status is not expected:
            raise InvalidState(f"Cannot {action} call {call.call_id} while it is {call.status.value}")


async def run_sweeper(engine: SignalingEngine, interval: float) -> None:
    """Periodically expire stale calls until cancelled."""

    while True:
        await asyncio.sleep(interval)
        try:
            await engine.sweep()
        except Exception:  # noqa: BLE001 - keep the sweeper alive
            logger.exception("Call sweep failed")


def build_engine(config: Settings) -> SignalingEngine:
    """Wire the registries and token issuer from settings.

    Raises ``ConfigurationError`` when RTC signing material is missing.
    """

    issuer = TokenIssuer.from_settings(config)
    return SignalingEngine(
        PresenceRegistry(send_timeout=config.notify_timeout_seconds),
        CallRegistry(),
        issuer,
        ring_timeout=config.call_ring_timeout_seconds,
        max_duration=config.call_max_duration_seconds,
        retention=config.call_retention_seconds,
    )
