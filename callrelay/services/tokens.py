"""RTC credential issuance.

Channel credentials are HS256 JWTs signed with the application certificate. They carry the
same claims a vendor media SDK token does (app id, channel, participant, role, expiry), so
the media layer can validate them without calling back into this service.
"""
from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Any, Callable
from uuid import uuid4

import jwt

from ..core.config import Settings, settings as default_settings
from ..core.errors import ConfigurationError, ValidationError, require_text

ALGORITHM = "HS256"

Clock = Callable[[], float]


class Role(str, enum.Enum):
    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"


@dataclass(slots=True)
class RtcToken:
    token: str
    expires_in: int
    expire_at: int


class TokenIssuer:
    """Mint time-scoped channel credentials for call participants."""

    def __init__(
        self,
        app_id: str,
        app_certificate: str,
        *,
        default_ttl: int = 3600,
        clock: Clock = time.time,
    ) -> None:
        if not app_id or not app_certificate:
            raise ConfigurationError("RTC app id and certificate must be configured")
        if default_ttl <= 0:
            raise ConfigurationError("RTC token TTL must be positive")
        self._app_id = app_id
        self._secret = app_certificate
        self._default_ttl = default_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, config: Settings | None = None, *, clock: Clock = time.time) -> "TokenIssuer":
        """Build an issuer from settings, failing fast when signing material is absent."""

        config = config or default_settings
        return cls(
            config.rtc_app_id.strip(),
            config.rtc_app_certificate.strip(),
            default_ttl=config.rtc_token_ttl_seconds,
            clock=clock,
        )

    def issue(
        self,
        channel_name: str,
        participant: str,
        role: Role = Role.PUBLISHER,
        ttl_seconds: int | None = None,
    ) -> RtcToken:
        """Return a credential valid for ``role`` on ``channel_name`` until now + ttl."""

        channel_name = require_text(channel_name, "channelName")
        participant = require_text(participant, "uid")
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValidationError("ttlSeconds must be positive")

        issued_at = int(self._clock())
        expire_at = issued_at + ttl
        claims = {
            "iss": self._app_id,
            "sub": participant,
            "channel": channel_name,
            "role": Role(role).value,
            "iat": issued_at,
            "nbf": issued_at,
            "exp": expire_at,
            "jti": uuid4().hex,
        }
        token = jwt.encode(claims, self._secret, algorithm=ALGORITHM)
        return RtcToken(token=token, expires_in=ttl, expire_at=expire_at)

    def decode(self, token: str) -> dict[str, Any]:
        """Verify a credential minted by this issuer and return its claims."""

        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self._app_id,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.InvalidTokenError as exc:
            raise ValidationError(f"Invalid RTC token: {exc}") from exc
