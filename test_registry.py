"""
Tests for the request lifecycle registry: start, settle, abort and cleanup.
"""

import asyncio
import re

import httpx
import pytest

from agentstream.registry import RequestLifecycleRegistry, RequestState
from agentstream.streaming.dispatcher import EventDispatcher
from agentstream.streaming.models import ContentDelta, Outcome, RequestKind
from conftest import SCENARIO_A, sse_response

ROUTES = {
    RequestKind.COMPLETION: "/llm/chat-stream",
    RequestKind.AGENT_RUN: "/agent/run-stream",
}


class FakeServer:
    """Scripted stream server recording every request path."""

    def __init__(
        self, chunks=(SCENARIO_A,), hold=None, stream_status=200, abort_status=200,
        abort_error=None,
    ):
        self.chunks = list(chunks)
        self.hold = hold
        self.stream_status = stream_status
        self.abort_status = abort_status
        self.abort_error = abort_error
        self.paths = []

    def __call__(self, request):
        self.paths.append(request.url.path)
        if "/abort/" in request.url.path:
            if self.abort_error is not None:
                raise self.abort_error
            return httpx.Response(self.abort_status)
        if self.stream_status != 200:
            return httpx.Response(self.stream_status)
        return sse_response(self.chunks, hold=self.hold)

    @property
    def stream_calls(self):
        return [p for p in self.paths if "/abort/" not in p]

    @property
    def abort_calls(self):
        return [p for p in self.paths if "/abort/" in p]


def make_registry(server, **kwargs):
    client = httpx.AsyncClient(
        base_url="http://stream.test/api", transport=httpx.MockTransport(server)
    )
    kwargs.setdefault("abort_route", "/agent/abort")
    return RequestLifecycleRegistry(EventDispatcher(client), ROUTES, **kwargs)


class TestSettle:

    @pytest.mark.asyncio
    async def test_agent_run_scenario(self):
        server = FakeServer()
        registry = make_registry(server)
        seen = []

        request = registry.start(RequestKind.AGENT_RUN, {"user_message": "hi"}, seen.append)
        assert request.request_id in registry
        assert registry.get(request.request_id) is request.handle
        result = await asyncio.wait_for(request.result, 1)

        assert result.to_dict() == {
            "success": True,
            "content": "Hi",
            "tools_used": ["search"],
            "tool_rounds": 1,
            "total_usage": {"tokens": 5},
        }
        assert len(seen) == 3
        assert request.request_id not in registry
        assert request.state is RequestState.SETTLED
        assert server.stream_calls == ["/api/agent/run-stream"]
        assert registry.get_stats()["completed"] == 1
        assert registry.get_stats()["removed"] == 1

    @pytest.mark.asyncio
    async def test_completion_route_and_id_prefix(self):
        server = FakeServer(chunks=[b"data: Hel\n\ndata: lo\n\n"])
        registry = make_registry(server)

        request = registry.start(RequestKind.COMPLETION, {"messages": []})
        result = await request.result

        assert result.content == "Hello"
        assert server.stream_calls == ["/api/llm/chat-stream"]
        assert re.fullmatch(r"chat_\d+_\d+_[0-9a-f]{8}", request.request_id)

    @pytest.mark.asyncio
    async def test_server_error_settles_failed(self):
        registry = make_registry(FakeServer(stream_status=500))

        result = await registry.start(RequestKind.AGENT_RUN, {}).result

        assert result.outcome is Outcome.FAILED
        assert result.to_dict() == {
            "success": False,
            "error": "HTTP 500: Internal Server Error",
        }
        assert len(registry) == 0
        assert registry.get_stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_break_aggregation(self):
        registry = make_registry(FakeServer())

        def on_event(event):
            raise RuntimeError("ui gone")

        result = await registry.start(RequestKind.AGENT_RUN, {}, on_event).result

        assert result.success
        assert result.content == "Hi"
        assert result.tools_used == {"search"}

    @pytest.mark.asyncio
    async def test_unrouted_kind_is_rejected(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(FakeServer()))
        registry = RequestLifecycleRegistry(
            EventDispatcher(client), {RequestKind.COMPLETION: "/llm/chat-stream"}
        )

        with pytest.raises(ValueError, match="agent_run"):
            registry.start(RequestKind.AGENT_RUN, {})
        assert len(registry) == 0


class TestAbort:

    @pytest.mark.asyncio
    async def test_abort_mid_stream(self):
        hold = asyncio.Event()
        server = FakeServer(chunks=[b'data: {"type":"content","content":"H"}\n\n'], hold=hold)
        registry = make_registry(server)
        first_delta = asyncio.Event()

        def on_event(event):
            if isinstance(event, ContentDelta) and event.content == "H":
                first_delta.set()

        request = registry.start(RequestKind.AGENT_RUN, {}, on_event)
        await asyncio.wait_for(first_delta.wait(), 1)

        assert request.state is RequestState.STREAMING
        assert registry.abort(request.request_id) is True
        result = await asyncio.wait_for(request.result, 1)
        await registry.wait_closed()

        assert result.aborted
        assert result.to_dict() == {"success": False, "error": "aborted"}
        assert request.request_id not in registry
        assert registry.get_stats()["removed"] == 1
        assert registry.get_stats()["aborted"] == 1
        assert server.abort_calls == [f"/api/agent/abort/{request.request_id}"]

    @pytest.mark.asyncio
    async def test_abort_before_first_read(self):
        server = FakeServer()
        registry = make_registry(server)

        request = registry.start(RequestKind.AGENT_RUN, {})
        assert registry.abort(request.request_id) is True
        result = await request.result
        await registry.wait_closed()

        assert result.aborted
        assert server.stream_calls == []
        assert registry.get_stats()["removed"] == 1

    @pytest.mark.asyncio
    async def test_abort_unknown_id_is_ignored(self):
        server = FakeServer()
        registry = make_registry(server)

        assert registry.abort("agent_0_0_deadbeef") is False
        await registry.wait_closed()

        assert server.paths == []
        assert registry.get_stats()["removed"] == 0

    @pytest.mark.asyncio
    async def test_abort_after_settle_is_ignored(self):
        server = FakeServer()
        registry = make_registry(server)

        request = registry.start(RequestKind.AGENT_RUN, {})
        result = await request.result

        assert registry.abort(request.request_id) is False
        assert result.success
        assert server.abort_calls == []
        assert registry.get_stats()["removed"] == 1

    @pytest.mark.asyncio
    async def test_second_abort_is_ignored(self):
        hold = asyncio.Event()
        registry = make_registry(FakeServer(hold=hold), notify_remote_abort=False)

        request = registry.start(RequestKind.AGENT_RUN, {})
        await asyncio.sleep(0)
        assert registry.abort(request.request_id) is True
        assert registry.abort(request.request_id) is False
        assert (await request.result).aborted

    @pytest.mark.asyncio
    async def test_failed_remote_notification_does_not_change_result(self):
        hold = asyncio.Event()
        server = FakeServer(hold=hold, abort_status=500)
        registry = make_registry(server)

        request = registry.start(RequestKind.COMPLETION, {})
        await asyncio.sleep(0.01)
        registry.abort(request.request_id)
        result = await request.result
        await registry.wait_closed()

        assert result.aborted
        assert len(server.abort_calls) == 1

    @pytest.mark.asyncio
    async def test_remote_notification_can_be_disabled(self):
        hold = asyncio.Event()
        server = FakeServer(hold=hold)
        registry = make_registry(server, notify_remote_abort=False)

        request = registry.start(RequestKind.AGENT_RUN, {})
        registry.abort(request.request_id)
        await request.result
        await registry.wait_closed()

        assert server.abort_calls == []

    @pytest.mark.asyncio
    async def test_caller_timeout_aborts_request(self):
        server = FakeServer(hold=asyncio.Event())
        registry = make_registry(server)

        request = registry.start(RequestKind.AGENT_RUN, {})
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(request.result, 0.05)
        await registry.wait_closed()

        assert request.result.cancelled()
        assert request.request_id not in registry
        stats = registry.get_stats()
        assert stats["aborted"] == 1
        assert stats["removed"] == 1
        assert server.abort_calls == [f"/api/agent/abort/{request.request_id}"]

    @pytest.mark.asyncio
    async def test_result_cancelled_before_it_runs(self):
        server = FakeServer()
        registry = make_registry(server)

        request = registry.start(RequestKind.AGENT_RUN, {})
        request.result.cancel()
        await asyncio.gather(request.result, return_exceptions=True)
        await registry.wait_closed()

        assert len(registry) == 0
        stats = registry.get_stats()
        assert stats["aborted"] == 1
        assert stats["removed"] == 1
        assert server.stream_calls == []
        assert server.abort_calls == [f"/api/agent/abort/{request.request_id}"]

    @pytest.mark.asyncio
    async def test_crashing_remote_notification_is_contained(self):
        server = FakeServer(hold=asyncio.Event(), abort_error=ValueError("client gone"))
        registry = make_registry(server)

        request = registry.start(RequestKind.AGENT_RUN, {})
        await asyncio.sleep(0.01)
        registry.abort(request.request_id)
        notification = next(
            task for task in asyncio.all_tasks()
            if task.get_name() == f"abort:{request.request_id}"
        )

        await notification
        assert (await request.result).aborted
        assert len(server.abort_calls) == 1

    @pytest.mark.asyncio
    async def test_many_concurrent_requests_abort_cleanly(self):
        hold = asyncio.Event()
        registry = make_registry(FakeServer(hold=hold), notify_remote_abort=False)

        requests = [registry.start(RequestKind.AGENT_RUN, {}) for _ in range(10_000)]
        ids = {r.request_id for r in requests}
        assert len(ids) == 10_000
        assert len(registry) == 10_000

        aborted = registry.abort_all()
        results = await asyncio.gather(*(r.result for r in requests))

        assert len(aborted) == 10_000
        assert all(result.aborted for result in results)
        assert len(registry) == 0
        assert registry.get_stats()["removed"] == 10_000


def test_abort_outside_event_loop_skips_notification():
    server = FakeServer(hold=asyncio.Event())
    registry = make_registry(server)
    loop = asyncio.new_event_loop()

    async def begin():
        return registry.start(RequestKind.AGENT_RUN, {})

    try:
        request = loop.run_until_complete(begin())
        assert registry.abort(request.request_id) is True
        result = loop.run_until_complete(request.result)
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()

    assert result.aborted
    assert request.request_id not in registry
    assert server.abort_calls == []
