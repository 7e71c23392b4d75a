"""Pseudonymous identity and session resolution.

Two identity namespaces exist. A *session identity* is derived from the opaque
session token a device presents; a *user identity* is derived from a verified
external identifier (an e-mail address or phone number) and is shared by every
session that person opens. Neither derivation can be reversed: the real
identifier is only kept encrypted under a key derived from the session token, so
only a holder of that token can recover it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from jose import JWTError, jwt

from config.settings import Settings
from db.models import SessionRecord
from db.store import KeyValueStore
from signaling.errors import InvalidAssertionError, InvalidCredentialError, MissingCredentialError
from signaling.tokens import decrypt_identifier, derive_identity, encrypt_identifier, random_hex

LOGGER = logging.getLogger(__name__)

IDENTIFIER_CLAIMS = ("fxa-verifiedEmail", "verifiedMSISDN")
SESSION_TOKEN_BYTES = 32


@dataclass(frozen=True)
class IdentityConfig:
    session_secret: str
    user_secret: str
    session_duration: int
    trusted_issuers: tuple[str, ...]
    audiences: tuple[str, ...]
    verification_key: str
    algorithms: tuple[str, ...] = ("HS256",)

    @classmethod
    def from_settings(cls, settings: Settings) -> IdentityConfig:
        return cls(
            session_secret=settings.session_secret,
            user_secret=settings.user_secret,
            session_duration=settings.session_duration_seconds,
            trusted_issuers=tuple(settings.assertion_trusted_issuers),
            audiences=tuple(settings.assertion_audiences),
            verification_key=settings.assertion_verification_key,
            algorithms=tuple(settings.assertion_algorithms),
        )


@dataclass(frozen=True)
class ResolvedSession:
    session_identity: str
    user_identity: str | None = None
    encrypted_identifier: str | None = None
    is_new: bool = False
    # Only set when this resolution minted the session; it must be handed back to the client.
    session_token: str | None = None

    @property
    def identity(self) -> str:
        """Identity that owns endpoints, call URLs and calls."""

        return self.user_identity or self.session_identity

    @property
    def is_bound(self) -> bool:
        return self.user_identity is not None


class IdentityResolver:
    def __init__(
        self,
        sessions: KeyValueStore[SessionRecord],
        config: IdentityConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions = sessions
        self._config = config
        self._clock = clock

    def session_identity_for(self, session_token: str) -> str:
        return derive_identity(session_token, self._config.session_secret)

    def user_identity_for(self, identifier: str) -> str:
        return derive_identity(identifier, self._config.user_secret)

    async def resolve_session(self, credential: str | None, *, create: bool = True) -> ResolvedSession:
        """Return the session behind ``credential``.

        A known credential refreshes the session's activity timestamp. A missing,
        unknown or idle-expired credential mints a brand new session when
        ``create`` is true and fails otherwise.
        """

        now = int(self._clock())
        if credential:
            session_identity = self.session_identity_for(credential)
            record = await self._sessions.find_one(session_identity=session_identity)
            if record is not None and now - record.last_activity > self._config.session_duration:
                LOGGER.info("Session %s expired after inactivity", session_identity[:8])
                await self._sessions.delete(session_identity=session_identity)
                record = None

            if record is not None:
                await self._sessions.update_or_create(
                    {"session_identity": session_identity},
                    {"last_activity": now},
                )
                return ResolvedSession(
                    session_identity=record.session_identity,
                    user_identity=record.user_identity,
                    encrypted_identifier=record.encrypted_identifier,
                )
            if not create:
                raise InvalidCredentialError()
        elif not create:
            raise MissingCredentialError()

        return await self._mint_session()

    async def resolve_verified_identity(self, assertion: str) -> ResolvedSession:
        """Verify ``assertion`` and open a new session bound to its user identity."""

        identifier = self.verify_assertion(assertion)
        return await self._mint_session(identifier=identifier)

    def verify_assertion(self, assertion: str) -> str:
        """Return the verified identifier carried by a signed assertion."""

        try:
            claims = jwt.decode(
                assertion,
                self._config.verification_key,
                algorithms=list(self._config.algorithms),
                options={"verify_aud": False},
            )
        except JWTError as exc:
            LOGGER.info("Rejected assertion: %s", exc)
            raise InvalidAssertionError() from exc

        if claims.get("iss") not in self._config.trusted_issuers:
            raise InvalidAssertionError("Assertion issuer is not trusted.")

        audience = claims.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if self._config.audiences and not set(audiences) & set(self._config.audiences):
            raise InvalidAssertionError("Assertion audience is not accepted.")

        identifier = _identifier_claim(claims)
        if identifier is None:
            raise InvalidAssertionError("Assertion carries no verified identifier.")
        return identifier

    def reveal_identifier(self, session: ResolvedSession, session_token: str | None) -> str | None:
        """Decrypt the real identifier bound to ``session``, if any."""

        if not session.encrypted_identifier or not session_token:
            return None
        try:
            return decrypt_identifier(session_token, session.encrypted_identifier)
        except ValueError:
            LOGGER.warning("Could not decrypt identifier for session %s", session.session_identity[:8])
            return None

    async def _mint_session(self, *, identifier: str | None = None) -> ResolvedSession:
        session_token = random_hex(SESSION_TOKEN_BYTES)
        session_identity = self.session_identity_for(session_token)
        user_identity = self.user_identity_for(identifier) if identifier else None
        encrypted = encrypt_identifier(session_token, identifier) if identifier else None

        await self._sessions.add(
            SessionRecord(
                session_identity=session_identity,
                user_identity=user_identity,
                encrypted_identifier=encrypted,
                last_activity=int(self._clock()),
            )
        )
        if user_identity:
            LOGGER.info("Session %s bound to user %s", session_identity[:8], user_identity[:8])
        else:
            LOGGER.info("Anonymous session %s created", session_identity[:8])

        return ResolvedSession(
            session_identity=session_identity,
            user_identity=user_identity,
            encrypted_identifier=encrypted,
            is_new=True,
            session_token=session_token,
        )


def _identifier_claim(claims: dict[str, Any]) -> str | None:
    idp_claims = claims.get("idpClaims") or {}
    for name in IDENTIFIER_CLAIMS:
        value = claims.get(name) or idp_claims.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
