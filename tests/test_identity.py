from __future__ import annotations

import asyncio

import pytest
from jose import jwt

from db.base import build_engine
from db.models import SessionRecord
from db.store import KeyValueStore
from signaling.errors import InvalidAssertionError, InvalidCredentialError, MissingCredentialError
from signaling.identity import IdentityConfig, IdentityResolver
from signaling.tokens import decrypt_identifier, derive_identity, encrypt_identifier


def _assertion(settings, claims: dict) -> str:
    payload = {"iss": "api.accounts.firefox.com", "aud": "app://loop.example", **claims}
    return jwt.encode(payload, settings.assertion_verification_key, algorithm="HS256")


def _run(settings, clock, steps):
    async def scenario():
        engine = build_engine(settings.database_url)
        sessions = KeyValueStore(engine, SessionRecord, unique=("session_identity",))
        resolver = IdentityResolver(sessions, IdentityConfig.from_settings(settings), clock=clock)
        try:
            return await steps(resolver, sessions)
        finally:
            await engine.dispose()

    return asyncio.run(scenario())


def test_same_identifier_yields_same_user_identity(settings, clock):
    assertion = _assertion(settings, {"fxa-verifiedEmail": "alice@example.com"})

    async def steps(resolver, sessions):
        first = await resolver.resolve_verified_identity(assertion)
        second = await resolver.resolve_verified_identity(assertion)
        return first, second

    first, second = _run(settings, clock, steps)

    assert first.user_identity == second.user_identity
    assert first.session_identity != second.session_identity
    assert first.session_token != second.session_token
    assert first.is_bound and first.is_new


def test_phone_claim_under_idp_claims_is_accepted(settings, clock):
    assertion = _assertion(settings, {"idpClaims": {"verifiedMSISDN": "+41791234567"}})

    async def steps(resolver, sessions):
        return await resolver.resolve_verified_identity(assertion)

    session = _run(settings, clock, steps)

    assert session.user_identity == derive_identity("+41791234567", settings.user_secret)


def test_untrusted_issuer_is_rejected(settings, clock):
    assertion = _assertion(settings, {"iss": "evil.example", "fxa-verifiedEmail": "alice@example.com"})

    async def steps(resolver, sessions):
        await resolver.resolve_verified_identity(assertion)

    with pytest.raises(InvalidAssertionError):
        _run(settings, clock, steps)


def test_assertion_without_identifier_is_rejected(settings, clock):
    assertion = _assertion(settings, {"sub": "someone"})

    async def steps(resolver, sessions):
        await resolver.resolve_verified_identity(assertion)

    with pytest.raises(InvalidAssertionError):
        _run(settings, clock, steps)


def test_badly_signed_assertion_is_rejected(settings, clock):
    assertion = jwt.encode(
        {"iss": "api.accounts.firefox.com", "aud": "app://loop.example", "fxa-verifiedEmail": "a@b.c"},
        "another-key",
        algorithm="HS256",
    )

    async def steps(resolver, sessions):
        await resolver.resolve_verified_identity(assertion)

    with pytest.raises(InvalidAssertionError):
        _run(settings, clock, steps)


def test_known_session_token_is_refreshed(settings, clock):
    async def steps(resolver, sessions):
        created = await resolver.resolve_session(None)
        clock.advance(60)
        again = await resolver.resolve_session(created.session_token)
        record = await sessions.find_one(session_identity=created.session_identity)
        return created, again, record

    created, again, record = _run(settings, clock, steps)

    assert created.is_new and not created.is_bound
    assert again.session_identity == created.session_identity
    assert not again.is_new
    assert record.last_activity == int(clock.now)


def test_unknown_token_mints_a_session_only_when_allowed(settings, clock):
    async def steps(resolver, sessions):
        minted = await resolver.resolve_session("not-a-real-token")
        with pytest.raises(InvalidCredentialError):
            await resolver.resolve_session("not-a-real-token", create=False)
        with pytest.raises(MissingCredentialError):
            await resolver.resolve_session(None, create=False)
        return minted

    minted = _run(settings, clock, steps)

    assert minted.is_new
    assert minted.session_token != "not-a-real-token"


def test_idle_session_is_forgotten(settings, clock):
    async def steps(resolver, sessions):
        created = await resolver.resolve_session(None)
        clock.advance(settings.session_duration_seconds + 1)
        with pytest.raises(InvalidCredentialError):
            await resolver.resolve_session(created.session_token, create=False)
        return await sessions.find()

    assert _run(settings, clock, steps) == []


def test_identifier_is_only_revealed_with_the_session_token(settings, clock):
    assertion = _assertion(settings, {"fxa-verifiedEmail": "alice@example.com"})

    async def steps(resolver, sessions):
        session = await resolver.resolve_verified_identity(assertion)
        record = await sessions.find_one(session_identity=session.session_identity)
        return resolver, session, record

    resolver, session, record = _run(settings, clock, steps)

    assert "alice" not in record.encrypted_identifier
    assert resolver.reveal_identifier(session, session.session_token) == "alice@example.com"
    assert resolver.reveal_identifier(session, "wrong-token") is None


def test_identifier_encryption_is_bound_to_the_token():
    ciphertext = encrypt_identifier("token-a", "bob@example.com")

    assert decrypt_identifier("token-a", ciphertext) == "bob@example.com"
    with pytest.raises(ValueError):
        decrypt_identifier("token-b", ciphertext)
