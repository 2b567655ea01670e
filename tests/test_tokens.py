"""Tests for RTC credential issuance."""
from __future__ import annotations

import jwt
import pytest

from callrelay.core.config import Settings
from callrelay.core.errors import ConfigurationError, ValidationError
from callrelay.services.tokens import Role, TokenIssuer

from conftest import APP_CERTIFICATE, APP_ID


def test_issue_token_carries_channel_claims(issuer):
    token = issuer.issue("room-1", "alice")

    claims = issuer.decode(token.token)

    assert claims["iss"] == APP_ID
    assert claims["sub"] == "alice"
    assert claims["channel"] == "room-1"
    assert claims["role"] == "publisher"
    assert claims["exp"] - claims["iat"] == 3600
    assert token.expires_in == 3600
    assert token.expire_at == claims["exp"]


def test_issue_token_uses_clock_and_ttl():
    issuer = TokenIssuer(APP_ID, APP_CERTIFICATE, clock=lambda: 1_700_000_000.7)

    token = issuer.issue("room-1", "bob", Role.SUBSCRIBER, ttl_seconds=120)

    claims = jwt.decode(token.token, options={"verify_signature": False})
    assert claims["iat"] == 1_700_000_000
    assert claims["exp"] == 1_700_000_120
    assert claims["role"] == "subscriber"
    assert token.expire_at == 1_700_000_120


def test_repeated_issue_yields_independent_tokens(issuer):
    first = issuer.issue("room-1", "alice")
    second = issuer.issue("room-1", "alice")

    assert first.token != second.token
    assert issuer.decode(first.token)["jti"] != issuer.decode(second.token)["jti"]


@pytest.mark.parametrize(
    ("channel", "uid", "ttl"),
    [("", "alice", None), ("room", "  ", None), ("room", "alice", 0)],
)
def test_issue_token_rejects_bad_input(issuer, channel, uid, ttl):
    with pytest.raises(ValidationError):
        issuer.issue(channel, uid, ttl_seconds=ttl)


def test_from_settings_requires_signing_material():
    config = Settings(_env_file=None, rtc_app_id="app", rtc_app_certificate="")

    with pytest.raises(ConfigurationError):
        TokenIssuer.from_settings(config)


def test_decode_rejects_foreign_signature(issuer):
    other = TokenIssuer(APP_ID, "another-certificate-abcdef0123456789abcdef")
    token = other.issue("room-1", "alice")

    with pytest.raises(ValidationError):
        issuer.decode(token.token)
