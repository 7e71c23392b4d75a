"""API-facing Pydantic models.

Attribute names are snake_case; the wire names are the camelCase aliases.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegistrationRequest(ApiModel):
    simple_push_url: str


class CallUrlCreateRequest(ApiModel):
    caller_id: str = Field(alias="callerId", min_length=1)
    expires_in: Any = Field(default=None, alias="expiresIn", description="Lifetime in hours.")
    issuer: str = Field(default="", description="Name shown to whoever opens the invitation.")


class CallUrlUpdateRequest(ApiModel):
    caller_id: str | None = Field(default=None, alias="callerId")
    expires_in: Any = Field(default=None, alias="expiresIn")
    issuer: str | None = None


class CallUrlResponse(ApiModel):
    call_url: str = Field(alias="callUrl")
    expires_at: int | None = Field(default=None, alias="expiresAt")


class CallUrlUpdateResponse(ApiModel):
    expires_at: int | None = Field(default=None, alias="expiresAt")


class CalleeInfoResponse(ApiModel):
    callee_friendly_name: str = Field(alias="calleeFriendlyName")
    url_creation_date: int = Field(alias="urlCreationDate")


class TokenCallRequest(ApiModel):
    call_type: str = Field(alias="callType")


class DirectCallRequest(ApiModel):
    callee_id: str | list[str] = Field(alias="calleeId")
    call_type: str = Field(alias="callType")

    def recipients(self) -> list[str]:
        return [self.callee_id] if isinstance(self.callee_id, str) else list(self.callee_id)


class CallSetupResponse(ApiModel):
    call_id: str = Field(alias="callId")
    websocket_token: str = Field(alias="websocketToken")
    session_id: str = Field(alias="sessionId")
    session_token: str = Field(alias="sessionToken")
    api_key: str = Field(alias="apiKey")
    progress_url: str | None = Field(default=None, alias="progressURL")


class DirectCallResponse(ApiModel):
    calls: list[CallSetupResponse]


class CallSummaryResponse(ApiModel):
    call_id: str = Field(alias="callId")
    call_type: str = Field(alias="callType")
    caller_id: str | None = Field(default=None, alias="callerId")
    websocket_token: str = Field(alias="websocketToken")
    session_id: str = Field(alias="sessionId")
    session_token: str = Field(alias="sessionToken")
    api_key: str = Field(alias="apiKey")
    call_url: str | None = Field(default=None, alias="callUrl")
    url_creation_date: int | None = Field(default=None, alias="urlCreationDate")
    progress_url: str | None = Field(default=None, alias="progressURL")
    version: int


class CallListResponse(ApiModel):
    calls: list[CallSummaryResponse]


class CallStateResponse(ApiModel):
    call_id: str = Field(alias="callId")
    call_type: str = Field(alias="callType")
    state: str
    callee_friendly_name: str | None = Field(default=None, alias="calleeFriendlyName")


class HeartbeatResponse(ApiModel):
    storage: bool
    provider: bool


class ServiceInfoResponse(ApiModel):
    name: str
    description: str
    version: str | None = None
    endpoint: str
    fake_provider: bool = Field(alias="fakeTokBox")
