"""Call initiation, listing and termination.

A call is created in the ``init`` state for every recipient that has at least one
registered push endpoint. It stays answerable for the supervisory duration; past
that deadline an ``init`` call is abandoned. The deadline is not a timer: readers
(``list_calls``, ``get_call``, ``terminate_call``) and the sweeper evaluate it
lazily and release abandoned records as they find them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from config.settings import Settings
from db.models import Call, CallUrl, PushEndpoint
from db.store import KeyValueStore
from integrations.media_provider import BaseMediaProvider
from integrations.push import PushNotifier
from signaling.call_urls import CallUrlManager
from signaling.errors import NoRecipientError, NotFoundError, SignalingError, ValidationError
from signaling.tokens import random_hex

LOGGER = logging.getLogger(__name__)

CALL_TYPES: tuple[str, ...] = ("audio", "audio-video")


class CallState(str, Enum):
    INIT = "init"
    ANSWERED = "answered"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Reaching one of these destroys the record.
RELEASING_STATES = frozenset({CallState.REJECTED, CallState.CANCELLED, CallState.EXPIRED})


@dataclass(frozen=True)
class CallConfig:
    supervisory_duration: int = 10
    max_push_endpoints: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> CallConfig:
        return cls(
            supervisory_duration=settings.supervisory_duration_seconds,
            max_push_endpoints=settings.max_push_endpoints,
        )


@dataclass(frozen=True)
class CallSetup:
    """What the placing side needs to join one initiated call."""

    call_id: str
    callee_identity: str
    websocket_token: str
    session_id: str
    session_token: str
    api_key: str
    progress_url: str | None


@dataclass(frozen=True)
class CallSummary:
    """What the answering side needs to join a pending call."""

    call_id: str
    call_type: str
    state: str
    caller_id: str | None
    websocket_token: str
    session_id: str
    session_token: str
    api_key: str
    call_url: str | None
    url_creation_date: int | None
    progress_url: str | None
    version: int


class CallOrchestrator:
    def __init__(
        self,
        push_endpoints: KeyValueStore[PushEndpoint],
        calls: KeyValueStore[Call],
        provider: BaseMediaProvider,
        notifier: PushNotifier,
        call_urls: CallUrlManager,
        config: CallConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._push_endpoints = push_endpoints
        self._calls = calls
        self._provider = provider
        self._notifier = notifier
        self._call_urls = call_urls
        self._config = config
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # Push endpoints

    async def register_endpoint(self, identity: str, url: str) -> None:
        if not url.startswith(("http://", "https://")):
            raise ValidationError.for_field("body", "simple_push_url", "simple_push_url should be a valid url")

        registered = {endpoint.url for endpoint in await self._push_endpoints.find(identity=identity)}
        if url not in registered and len(registered) >= self._config.max_push_endpoints:
            raise ValidationError.for_field(
                "body",
                "simple_push_url",
                f"no more than {self._config.max_push_endpoints} endpoints may be registered",
            )

        await self._push_endpoints.update_or_create(
            {"identity": identity, "url": url},
            {"created_at": int(self._clock())},
        )

    async def unregister_endpoint(self, identity: str, url: str) -> None:
        await self._push_endpoints.delete(identity=identity, url=url)

    async def endpoints_for(self, identity: str) -> list[str]:
        return [endpoint.url for endpoint in await self._push_endpoints.find(identity=identity)]

    # Calls

    async def initiate_call(
        self,
        recipients: Sequence[str],
        call_type: str,
        *,
        caller_id: str | None = None,
        caller_identity: str | None = None,
        call_url: CallUrl | None = None,
        progress_url: str | None = None,
    ) -> list[CallSetup]:
        """Create one call per reachable recipient and notify its devices.

        Recipients without endpoints are skipped. Calling the same recipients
        twice creates two independent calls. A recipient whose call could not be
        set up is left out of the result; only when every recipient failed is the
        first failure raised.
        """

        if call_type not in CALL_TYPES:
            raise ValidationError.for_field("body", "callType", "Should be 'audio' or 'audio-video'")

        unique_recipients = list(dict.fromkeys(recipients))
        endpoint_sets = await asyncio.gather(*(self.endpoints_for(r) for r in unique_recipients))

        reachable: list[tuple[str, list[str]]] = []
        for recipient, urls in zip(unique_recipients, endpoint_sets):
            if urls:
                reachable.append((recipient, urls))
            else:
                LOGGER.info("Recipient %s has no registered endpoint; dropped", recipient[:8])

        if not reachable:
            raise NoRecipientError()

        outcomes = await asyncio.gather(
            *(
                self._call_recipient(
                    recipient,
                    urls,
                    call_type,
                    caller_id=caller_id,
                    caller_identity=caller_identity,
                    call_url=call_url,
                    progress_url=progress_url,
                )
                for recipient, urls in reachable
            ),
            return_exceptions=True,
        )

        setups: list[CallSetup] = []
        failures: list[BaseException] = []
        for (recipient, _), outcome in zip(reachable, outcomes):
            if isinstance(outcome, CallSetup):
                setups.append(outcome)
            elif isinstance(outcome, SignalingError):
                LOGGER.error("Call to %s failed: %s", recipient[:8], outcome.detail)
                failures.append(outcome)
            else:
                raise outcome

        if not setups:
            raise failures[0]
        return setups

    async def _call_recipient(
        self,
        callee_identity: str,
        urls: list[str],
        call_type: str,
        *,
        caller_id: str | None,
        caller_identity: str | None,
        call_url: CallUrl | None,
        progress_url: str | None,
    ) -> CallSetup:
        session = await self._provider.allocate_session()
        version = self._now_ms()

        call = await self._calls.add(
            Call(
                call_id=random_hex(16),
                callee_identity=callee_identity,
                caller_id=caller_id,
                caller_identity=caller_identity,
                callee_display_name=call_url.callee_display_name if call_url else None,
                call_type=call_type,
                state=CallState.INIT.value,
                created_at=version,
                provider_session_id=session.session_id,
                provider_callee_token=session.callee_token,
                ws_callee_token=random_hex(16),
                ws_caller_token=random_hex(16),
                call_token=call_url.token if call_url else None,
                url_creation_date=call_url.created_at if call_url else None,
            )
        )
        delivered = await self._notifier.notify_all(urls, version)
        LOGGER.info(
            "Call %s initiated for %s (%d/%d endpoints notified)",
            call.call_id,
            callee_identity[:8],
            delivered,
            len(urls),
        )

        return CallSetup(
            call_id=call.call_id,
            callee_identity=callee_identity,
            websocket_token=call.ws_caller_token,
            session_id=session.session_id,
            session_token=session.caller_token,
            api_key=self._provider.api_key,
            progress_url=progress_url,
        )

    async def list_calls(
        self,
        identity: str,
        since_version: int,
        *,
        progress_url: str | None = None,
    ) -> list[CallSummary]:
        """Pending calls for ``identity`` stamped at or after ``since_version``.

        Answered calls belong to the real-time channel and are not listed.
        """

        now = self._now_ms()
        summaries: list[CallSummary] = []
        for call in await self._calls.find(callee_identity=identity, state=CallState.INIT.value):
            if self.is_abandoned(call, now):
                await self._release_abandoned(call)
                continue
            if call.created_at < since_version:
                continue
            summaries.append(self._summary(call, progress_url))
        return summaries

    async def get_call(self, call_id: str) -> Call:
        call = await self._calls.find_one(call_id=call_id)
        if call is None:
            raise NotFoundError(f"Call {call_id} not found.")
        if self.is_abandoned(call, self._now_ms()):
            await self._release_abandoned(call)
            raise NotFoundError(f"Call {call_id} not found.")
        return call

    async def terminate_call(self, call_id: str) -> None:
        """Reject or cancel a call; the record is deleted outright."""

        await self.get_call(call_id)
        if not await self._calls.delete(call_id=call_id):
            raise NotFoundError(f"Call {call_id} not found.")
        LOGGER.info("Call %s terminated", call_id)

    async def transition(self, call_id: str, state: str) -> CallState:
        """Apply a state change reported by the real-time channel."""

        try:
            target = CallState(state)
        except ValueError as exc:
            raise ValidationError.for_field("body", "state", f"unknown call state {state!r}") from exc

        call = await self.get_call(call_id)
        current = CallState(call.state)
        if current is not CallState.INIT or target is CallState.INIT:
            raise ValidationError(f"Call {call_id} cannot go from {current.value} to {target.value}.")

        # Both writes only match a call still in init; losing a race leaves nothing to change.
        if target in RELEASING_STATES:
            changed = await self._calls.delete(call_id=call_id, state=CallState.INIT.value)
        else:
            changed = await self._calls.update({"state": target.value}, call_id=call_id, state=CallState.INIT.value)
        if not changed:
            raise NotFoundError(f"Call {call_id} not found.")
        LOGGER.info("Call %s moved to %s", call_id, target.value)
        return target

    async def sweep_expired(self) -> int:
        """Release every abandoned call; return how many were removed."""

        now = self._now_ms()
        released = 0
        for call in await self._calls.find(state=CallState.INIT.value):
            if self.is_abandoned(call, now):
                released += await self._release_abandoned(call)
        return released

    def deadline(self, call: Call) -> int:
        return call.created_at + self._config.supervisory_duration * 1000

    def is_abandoned(self, call: Call, now_ms: int) -> bool:
        return call.state == CallState.INIT.value and now_ms >= self.deadline(call)

    async def _release_abandoned(self, call: Call) -> int:
        # Conditional on the state so an answer racing the deadline wins.
        released = await self._calls.delete(call_id=call.call_id, state=CallState.INIT.value)
        if released:
            LOGGER.info("Call %s expired unanswered", call.call_id)
        return released

    def _summary(self, call: Call, progress_url: str | None) -> CallSummary:
        return CallSummary(
            call_id=call.call_id,
            call_type=call.call_type,
            state=call.state,
            caller_id=call.caller_id,
            websocket_token=call.ws_callee_token,
            session_id=call.provider_session_id,
            session_token=call.provider_callee_token,
            api_key=self._provider.api_key,
            call_url=self._call_urls.url_for(call.call_token) if call.call_token else None,
            url_creation_date=call.url_creation_date,
            progress_url=progress_url,
            version=call.created_at,
        )
