"""FastAPI routes exposing the signaling core."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from api.dependencies import (
    Caller,
    Services,
    attach_or_create_session,
    optional_session,
    progress_url,
    require_session,
)
from api.schemas import (
    CalleeInfoResponse,
    CallListResponse,
    CallSetupResponse,
    CallStateResponse,
    CallSummaryResponse,
    CallUrlCreateRequest,
    CallUrlResponse,
    CallUrlUpdateRequest,
    CallUrlUpdateResponse,
    DirectCallRequest,
    DirectCallResponse,
    HeartbeatResponse,
    RegistrationRequest,
    ServiceInfoResponse,
    TokenCallRequest,
)
from signaling.calls import CallSetup

LOGGER = logging.getLogger(__name__)

router = APIRouter()

SessionCaller = Annotated[Caller, Depends(require_session)]


def _setup_response(setup: CallSetup) -> CallSetupResponse:
    return CallSetupResponse(
        call_id=setup.call_id,
        websocket_token=setup.websocket_token,
        session_id=setup.session_id,
        session_token=setup.session_token,
        api_key=setup.api_key,
        progress_url=setup.progress_url,
    )


@router.get("/", response_model=ServiceInfoResponse)
async def service_info(request: Request, services: Services) -> ServiceInfoResponse:
    settings = services.settings
    return ServiceInfoResponse(
        name=settings.app_name,
        description="Session and call orchestration for a call-signaling backend.",
        version=settings.app_version if settings.display_version else None,
        endpoint=str(request.base_url).rstrip("/"),
        fake_provider=services.provider.is_fake,
    )


@router.get("/__heartbeat__", response_model=HeartbeatResponse)
async def heartbeat(services: Services):
    health = await services.ping()
    if not all(health.values()):
        LOGGER.warning("Heartbeat degraded: %s", health)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=health)
    return HeartbeatResponse(**health)


# Push endpoints


@router.post("/registration", status_code=status.HTTP_200_OK)
async def register(
    payload: RegistrationRequest,
    services: Services,
    caller: Annotated[Caller, Depends(attach_or_create_session)],
) -> dict:
    await services.calls.register_endpoint(caller.identity, payload.simple_push_url)
    return {}


@router.delete("/registration", status_code=status.HTTP_204_NO_CONTENT)
async def unregister(payload: RegistrationRequest, services: Services, caller: SessionCaller) -> None:
    await services.calls.unregister_endpoint(caller.identity, payload.simple_push_url)


# Call URLs


@router.post("/call-url", response_model=CallUrlResponse)
async def create_call_url(
    payload: CallUrlCreateRequest,
    services: Services,
    caller: SessionCaller,
) -> CallUrlResponse:
    record = await services.call_urls.create_token(
        caller.identity,
        payload.issuer,
        caller_id=payload.caller_id,
        expires_in=payload.expires_in,
    )
    return CallUrlResponse(call_url=services.call_urls.url_for(record.token), expires_at=record.expires_at)


@router.put("/call-url/{token}", response_model=CallUrlUpdateResponse)
async def update_call_url(
    token: str,
    payload: CallUrlUpdateRequest,
    services: Services,
    caller: SessionCaller,
) -> CallUrlUpdateResponse:
    record = await services.call_urls.update_token(
        token,
        caller.identity,
        callee_display_name=payload.issuer,
        caller_id=payload.caller_id,
        expires_in=payload.expires_in,
    )
    return CallUrlUpdateResponse(expires_at=record.expires_at)


@router.delete("/call-url/{token}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_call_url(token: str, services: Services, caller: SessionCaller) -> None:
    await services.call_urls.revoke_token(token, caller.identity)


# Calls


@router.get("/calls", response_model=CallListResponse)
async def list_calls(
    request: Request,
    services: Services,
    caller: SessionCaller,
    version: Annotated[int, Query(ge=0)],
) -> CallListResponse:
    summaries = await services.calls.list_calls(
        caller.identity,
        version,
        progress_url=progress_url(request, services),
    )
    return CallListResponse(
        calls=[
            CallSummaryResponse(
                call_id=summary.call_id,
                call_type=summary.call_type,
                caller_id=summary.caller_id,
                websocket_token=summary.websocket_token,
                session_id=summary.session_id,
                session_token=summary.session_token,
                api_key=summary.api_key,
                call_url=summary.call_url,
                url_creation_date=summary.url_creation_date,
                progress_url=summary.progress_url,
                version=summary.version,
            )
            for summary in summaries
        ]
    )


@router.post("/calls", response_model=DirectCallResponse)
async def call_recipients(
    payload: DirectCallRequest,
    request: Request,
    services: Services,
    caller: SessionCaller,
) -> DirectCallResponse:
    recipients = [services.identity.user_identity_for(identifier) for identifier in payload.recipients()]
    setups = await services.calls.initiate_call(
        recipients,
        payload.call_type,
        caller_id=services.identity.reveal_identifier(caller.session, caller.session_token),
        caller_identity=caller.identity,
        progress_url=progress_url(request, services),
    )
    return DirectCallResponse(calls=[_setup_response(setup) for setup in setups])


@router.get("/calls/id/{call_id}", response_model=CallStateResponse)
async def get_call(call_id: str, services: Services) -> CallStateResponse:
    call = await services.calls.get_call(call_id)
    return CallStateResponse(
        call_id=call.call_id,
        call_type=call.call_type,
        state=call.state,
        callee_friendly_name=call.callee_display_name,
    )


@router.delete("/calls/id/{call_id}", status_code=status.HTTP_204_NO_CONTENT)
async def terminate_call(call_id: str, services: Services) -> None:
    await services.calls.terminate_call(call_id)


@router.get("/calls/{token}", response_model=CalleeInfoResponse)
async def callee_info(token: str, services: Services) -> CalleeInfoResponse:
    record = await services.call_urls.resolve_token(token)
    return CalleeInfoResponse(
        callee_friendly_name=record.callee_display_name,
        url_creation_date=record.created_at,
    )


@router.post("/calls/{token}", response_model=CallSetupResponse)
async def call_token_owner(
    token: str,
    payload: TokenCallRequest,
    request: Request,
    services: Services,
    caller: Annotated[Caller | None, Depends(optional_session)],
) -> CallSetupResponse:
    record = await services.call_urls.resolve_token(token)

    caller_id = None
    if caller is not None:
        caller_id = services.identity.reveal_identifier(caller.session, caller.session_token)
    caller_id = caller_id or record.caller_id

    (setup,) = await services.calls.initiate_call(
        [record.owner_identity],
        payload.call_type,
        caller_id=caller_id,
        caller_identity=caller.identity if caller is not None else None,
        call_url=record,
        progress_url=progress_url(request, services),
    )
    return _setup_response(setup)
