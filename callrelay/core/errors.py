"""Error taxonomy shared by the signaling services and the API layer."""
from __future__ import annotations


class SignalingError(Exception):
    """Base class for errors reported back to the requesting client."""

    code = "signaling_error"
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(SignalingError):
    """A required field was missing or malformed."""

    code = "validation_error"
    status_code = 400


class NotFound(SignalingError):
    """The referenced call or connection does not exist."""

    code = "not_found"
    status_code = 404


class Forbidden(SignalingError):
    """The acting user is not allowed to touch this call."""

    code = "forbidden"
    status_code = 403


class InvalidState(SignalingError):
    """The requested transition is not legal from the call's current status."""

    code = "invalid_state"
    status_code = 409


class ConfigurationError(SignalingError):
    """Token signing material is missing; raised at startup."""

    code = "configuration_error"
    status_code = 500


def require_text(value: str | None, field: str) -> str:
    """Return ``value`` stripped, raising ``ValidationError`` when it is blank."""

    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()
