from __future__ import annotations

import asyncio

import httpx
import pytest

from integrations.push import PushConfig, PushNotifier


def test_notify_all_counts_accepted_notifications(push_recorder):
    push_recorder.failing.add("https://push.example/gone")
    notifier = push_recorder.notifier()

    delivered = asyncio.run(
        notifier.notify_all(["https://push.example/1", "https://push.example/gone"], 1700000000000)
    )

    assert delivered == 1
    assert sorted(push_recorder.urls) == ["https://push.example/1", "https://push.example/gone"]
    assert all(request.method == "PUT" for request in push_recorder.requests)
    assert push_recorder.requests[0].content == b"version=1700000000000"


def test_notify_all_with_no_endpoints_sends_nothing(push_recorder):
    assert asyncio.run(push_recorder.notifier().notify_all([], 1)) == 0
    assert push_recorder.requests == []


def test_slow_endpoint_is_bounded_by_timeout():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200)

    notifier = PushNotifier(PushConfig(timeout=0.05), transport=httpx.MockTransport(handler))

    assert asyncio.run(notifier.notify_all(["https://push.example/slow"], 1)) == 0


def test_notify_raises_for_a_single_failing_endpoint(push_recorder):
    push_recorder.failing.add("https://push.example/gone")

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(push_recorder.notifier().notify("https://push.example/gone", 1))
