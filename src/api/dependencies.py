"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, Request, Response

from signaling.errors import UnsupportedAuthSchemeError
from signaling.identity import ResolvedSession
from signaling.services import SignalingServices

SESSION_TOKEN_HEADER = "Session-Token"
AUTH_SCHEMES = ("BrowserID", "Bearer")


def get_services(request: Request) -> SignalingServices:
    return request.app.state.services


Services = Annotated[SignalingServices, Depends(get_services)]


@dataclass(frozen=True)
class Caller:
    """The resolved session plus the raw token that unlocks its identifier."""

    session: ResolvedSession
    session_token: str | None

    @property
    def identity(self) -> str:
        return self.session.identity


def _parse_authorization(header: str | None) -> tuple[str, str] | None:
    if not header or not header.strip():
        return None
    scheme, _, value = header.strip().partition(" ")
    for known in AUTH_SCHEMES:
        if scheme.lower() == known.lower() and value.strip():
            return known, value.strip()
    raise UnsupportedAuthSchemeError()


async def _resolve(
    services: SignalingServices,
    response: Response,
    authorization: str | None,
    *,
    create: bool,
) -> Caller:
    credential = _parse_authorization(authorization)
    if credential is not None and credential[0] == "BrowserID":
        session = await services.identity.resolve_verified_identity(credential[1])
    else:
        token = credential[1] if credential else None
        session = await services.identity.resolve_session(token, create=create)

    if session.is_new:
        response.headers[SESSION_TOKEN_HEADER] = session.session_token or ""
        return Caller(session=session, session_token=session.session_token)
    return Caller(session=session, session_token=credential[1] if credential else None)


async def attach_or_create_session(
    services: Services,
    response: Response,
    authorization: Annotated[str | None, Header()] = None,
) -> Caller:
    """Resolve the caller, opening an anonymous session when none is presented."""

    return await _resolve(services, response, authorization, create=True)


async def require_session(
    services: Services,
    response: Response,
    authorization: Annotated[str | None, Header()] = None,
) -> Caller:
    return await _resolve(services, response, authorization, create=False)


async def optional_session(
    services: Services,
    response: Response,
    authorization: Annotated[str | None, Header()] = None,
) -> Caller | None:
    if not authorization:
        return None
    return await _resolve(services, response, authorization, create=False)


def progress_url(request: Request, services: Services) -> str:
    """Websocket URL the real-time channel listens on."""

    base = services.settings.public_base_url or str(request.base_url)
    base = base.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/websocket"
