"""Tests for pingsched/scheduler/actions.py"""
from __future__ import annotations

import json

import httpx
import pytest

from pingsched.core.errors import ActionExecutionError
from pingsched.scheduler.actions import ActionRegistry, HttpAction
from pingsched.scheduler.job import JobType


def _transport(status: int = 200, seen: list | None = None, exc: Exception | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if exc is not None:
            raise exc
        return httpx.Response(status, text="upstream says no" if status >= 400 else "ok")

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
class TestHttpAction:
    async def test_posts_json_payload(self):
        seen: list[httpx.Request] = []
        action = HttpAction(transport=_transport(seen=seen))
        await action.execute("https://api.example.com/charge", {"amount": 5})
        await action.close()

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.example.com/charge"
        assert json.loads(request.content) == {"amount": 5}
        assert request.headers["content-type"] == "application/json"
        assert request.headers["user-agent"] == "PingPay-Scheduler/1.0"

    async def test_custom_user_agent(self):
        seen: list[httpx.Request] = []
        action = HttpAction(user_agent="custom/2.0", transport=_transport(seen=seen))
        await action.execute("https://api.example.com/x", None)
        await action.close()
        assert seen[0].headers["user-agent"] == "custom/2.0"

    async def test_non_2xx_fails(self):
        action = HttpAction(transport=_transport(status=503))
        with pytest.raises(ActionExecutionError) as exc:
            await action.execute("https://api.example.com/charge", {})
        await action.close()
        assert exc.value.status_code == 503
        assert exc.value.message == "Request failed with status code 503"
        assert exc.value.details["body"] == "upstream says no"
        assert exc.value.retryable

    async def test_timeout_fails(self):
        action = HttpAction(
            timeout=0.5, transport=_transport(exc=httpx.ReadTimeout("slow"))
        )
        with pytest.raises(ActionExecutionError) as exc:
            await action.execute("https://api.example.com/charge", {})
        await action.close()
        assert "timed out" in exc.value.message

    async def test_connection_error_fails(self):
        action = HttpAction(transport=_transport(exc=httpx.ConnectError("refused")))
        with pytest.raises(ActionExecutionError) as exc:
            await action.execute("https://api.example.com/charge", {})
        await action.close()
        assert exc.value.target == "https://api.example.com/charge"
        assert exc.value.status_code is None


@pytest.mark.asyncio
class TestActionRegistry:
    async def test_get_registered(self):
        registry = ActionRegistry()
        action = HttpAction(transport=_transport())
        registry.register(JobType.HTTP, action)
        assert registry.get("http") is action
        await registry.close()

    async def test_unsupported_type(self):
        registry = ActionRegistry()
        with pytest.raises(ActionExecutionError) as exc:
            registry.get("grpc")
        assert exc.value.message == "Unsupported job type: grpc"
        assert exc.value.retryable is False
