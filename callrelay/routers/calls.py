"""Token issuance and call signaling endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..core.deps import get_engine
from ..schemas import calls as schemas
from ..services.signaling import SignalingEngine

router = APIRouter()


@router.post("/token", response_model=schemas.TokenResponse)
async def create_token(
    payload: schemas.TokenRequest,
    engine: SignalingEngine = Depends(get_engine),
) -> schemas.TokenResponse:
    """Return a publisher credential for a media channel."""

    token = engine.issuer.issue(payload.channel_name, payload.uid, ttl_seconds=payload.ttl_seconds)
    return schemas.TokenResponse(token=token.token, expire_at=token.expire_at)


@router.post("/start-call", response_model=schemas.CallTokenResponse)
async def start_call(
    payload: schemas.StartCallRequest,
    engine: SignalingEngine = Depends(get_engine),
) -> schemas.CallTokenResponse:
    """Ring the callee and return the caller's channel credential."""

    started = await engine.start_call(payload.caller_id, payload.callee_id, payload.requested_channel)
    return schemas.CallTokenResponse(
        call_id=started.call_id,
        channel_name=started.channel_name,
        token=started.token.token,
        expire_at=started.token.expire_at,
    )


@router.post("/accept-call", response_model=schemas.CallTokenResponse)
async def accept_call(
    payload: schemas.CalleeActionRequest,
    engine: SignalingEngine = Depends(get_engine),
) -> schemas.CallTokenResponse:
    """Accept a ringing call and return the callee's channel credential."""

    accepted = await engine.accept_call(payload.call_id, payload.callee_id)
    return schemas.CallTokenResponse(
        call_id=accepted.call_id,
        channel_name=accepted.channel_name,
        token=accepted.token.token,
        expire_at=accepted.token.expire_at,
    )


@router.post("/reject-call", response_model=schemas.SuccessResponse)
async def reject_call(
    payload: schemas.CalleeActionRequest,
    engine: SignalingEngine = Depends(get_engine),
) -> schemas.SuccessResponse:
    await engine.reject_call(payload.call_id, payload.callee_id)
    return schemas.SuccessResponse()


@router.post("/end-call", response_model=schemas.SuccessResponse)
async def end_call(
    payload: schemas.EndCallRequest,
    engine: SignalingEngine = Depends(get_engine),
) -> schemas.SuccessResponse:
    await engine.end_call(payload.call_id, payload.user_id)
    return schemas.SuccessResponse()


@router.post("/cancel-call", response_model=schemas.SuccessResponse)
async def cancel_call(
    payload: schemas.CancelCallRequest,
    engine: SignalingEngine = Depends(get_engine),
) -> schemas.SuccessResponse:
    """Withdraw a call that has not been answered yet."""

    await engine.cancel_call(payload.call_id, payload.caller_id)
    return schemas.SuccessResponse()


@router.get("/calls/{call_id}", response_model=schemas.CallSnapshot)
async def get_call(call_id: str, engine: SignalingEngine = Depends(get_engine)) -> schemas.CallSnapshot:
    """Return the current state of a call for diagnostics."""

    return schemas.CallSnapshot.model_validate(engine.get_call(call_id).to_dict())


@router.get("/presence/{user_id}", response_model=schemas.PresenceResponse)
async def get_presence(user_id: str, engine: SignalingEngine = Depends(get_engine)) -> schemas.PresenceResponse:
    return schemas.PresenceResponse.model_validate(engine.presence_of(user_id))
