"""FastAPI dependencies for accessing the signaling engine."""
from __future__ import annotations

from fastapi import FastAPI, Request

from .errors import ConfigurationError
from ..services.signaling import SignalingEngine


def engine_for(app: FastAPI) -> SignalingEngine:
    """Return the engine wired during application startup."""

    engine = getattr(app.state, "engine", None)
    if engine is None:
        raise ConfigurationError("Signaling engine is not initialised")
    return engine


def get_engine(request: Request) -> SignalingEngine:
    """FastAPI dependency to provide the signaling engine."""

    return engine_for(request.app)
