"""
Lifecycle tracking for in-flight streaming requests.

Every streaming call gets a generated request id and a cancellation handle.
The registry maps one to the other for as long as the call is in flight, so
any request can be aborted from outside by id. Entries are removed exactly
once: either by abort() or when the request settles, whichever comes first.

Settled results are tagged structurally: a request whose handle was
cancelled always settles as Outcome.ABORTED, whatever the read loop raised
while unwinding.

Cancelling a request's `result` task directly (a caller timeout, say) goes
through the same abort path before the cancellation propagates.
"""

from __future__ import annotations

import asyncio
import functools
import itertools
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from .exceptions import CancellationError
from .logging_utils import ContextualLogger, StreamErrorHandler
from .streaming.aggregator import CompletionAggregator, create_aggregator
from .streaming.dispatcher import EventDispatcher
from .streaming.models import AggregateResult, Outcome, RequestKind, StreamEvent

logger = structlog.get_logger(__name__)

DEFAULT_ID_PREFIXES = {
    RequestKind.COMPLETION: "chat",
    RequestKind.AGENT_RUN: "agent",
}


class RequestState(Enum):
    STREAMING = "streaming"
    SETTLED = "settled"


class CancellationHandle:
    """Cooperative cancellation signal for one streaming request."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self._cancelled = False
        self._task: asyncio.Future[Any] | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, task: asyncio.Future[Any]) -> None:
        """Bind the read loop; a handle cancelled earlier cancels it at once."""
        self._task = task
        if self._cancelled:
            task.cancel()

    def cancel(self) -> bool:
        """Signal cancellation. Returns False if already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancellationError(self.request_id)


@dataclass(frozen=True)
class StreamRequest:
    """A started streaming request; await `result` for its aggregate."""
    request_id: str
    kind: RequestKind
    handle: CancellationHandle
    result: asyncio.Task[AggregateResult]

    @property
    def state(self) -> RequestState:
        return RequestState.SETTLED if self.result.done() else RequestState.STREAMING


class RequestLifecycleRegistry:
    """
    Table of in-flight streaming requests keyed by generated request id.

    The id -> handle map is the only state shared between concurrent
    requests; every insert and delete happens under one lock. start() must be
    called from the event loop that runs the requests; abort() called outside
    it still cancels locally but skips the remote notification.
    """

    def __init__(
        self,
        dispatcher: EventDispatcher,
        routes: dict[RequestKind, str],
        *,
        abort_route: str | None = None,
        notify_remote_abort: bool = True,
        id_prefixes: dict[RequestKind, str] | None = None,
    ):
        self._dispatcher = dispatcher
        self._routes = dict(routes)
        self._abort_route = abort_route
        self.notify_remote_abort = notify_remote_abort
        self._id_prefixes = {**DEFAULT_ID_PREFIXES, **(id_prefixes or {})}

        self._entries: dict[str, CancellationHandle] = {}
        self._lock = threading.Lock()
        self._sequence = itertools.count()
        self._running: set[asyncio.Task[AggregateResult]] = set()
        self._notifications: set[asyncio.Task[None]] = set()
        self.stats = {
            'started': 0,
            'completed': 0,
            'failed': 0,
            'aborted': 0,
            'removed': 0,
        }

    def start(
        self,
        kind: RequestKind,
        payload: Any,
        on_event: Callable[[StreamEvent], Any] | None = None,
    ) -> StreamRequest:
        """
        Register and launch a streaming request.

        Args:
            kind: Request kind; selects the route and the aggregator
            payload: JSON body posted to the route
            on_event: Live observer, called once per event in arrival order

        Returns:
            StreamRequest whose `result` task settles with the aggregate

        Raises:
            ValueError: If no route is configured for the kind
            RuntimeError: If called outside a running event loop
        """
        if kind not in self._routes:
            raise ValueError(f"No route configured for request kind '{kind.value}'")
        loop = asyncio.get_running_loop()
        aggregator = create_aggregator(kind)

        with self._lock:
            request_id = self._new_request_id(kind)
            handle = CancellationHandle(request_id)
            self._entries[request_id] = handle
            self.stats['started'] += 1

        task = loop.create_task(
            self._run(kind, payload, handle, aggregator, on_event),
            name=f"stream:{request_id}",
        )
        self._running.add(task)
        task.add_done_callback(self._running.discard)
        task.add_done_callback(functools.partial(self._settle_cancelled, request_id))
        return StreamRequest(request_id, kind, handle, task)

    def abort(self, request_id: str) -> bool:
        """
        Cancel a registered request and drop its entry.

        Unknown or already settled ids are ignored. Returns True when a live
        request was aborted.
        """
        with self._lock:
            handle = self._entries.pop(request_id, None)
            if handle is not None:
                self.stats['removed'] += 1

        if handle is None:
            logger.debug("Abort ignored for inactive request", request_id=request_id)
            return False

        handle.cancel()
        logger.info("Stream request aborted", request_id=request_id)
        self._notify_remote_abort(request_id)
        return True

    def abort_all(self) -> list[str]:
        """Abort every active request; returns the aborted ids."""
        with self._lock:
            request_ids = list(self._entries)
        return [rid for rid in request_ids if self.abort(rid)]

    async def wait_closed(self) -> None:
        """Wait for running requests and pending abort notifications."""
        pending = [*self._running, *self._notifications]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def get(self, request_id: str) -> CancellationHandle | None:
        with self._lock:
            return self._entries.get(request_id)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> dict[str, int]:
        """Get lifecycle statistics for monitoring."""
        with self._lock:
            return self.stats.copy()

    async def _run(
        self,
        kind: RequestKind,
        payload: Any,
        handle: CancellationHandle,
        aggregator: CompletionAggregator,
        on_event: Callable[[StreamEvent], Any] | None,
    ) -> AggregateResult:
        request_id = handle.request_id
        log = ContextualLogger({"request_id": request_id, "kind": kind.value})

        def observe(event: StreamEvent) -> None:
            aggregator.observe(event)
            if on_event is not None:
                on_event(event)

        read: asyncio.Future[list[StreamEvent]] | None = None
        try:
            try:
                handle.raise_if_cancelled()
                read = asyncio.ensure_future(
                    self._dispatcher.post_collect(self._routes[kind], payload, observe)
                )
                handle.attach(read)
                events = await read
            except (asyncio.CancelledError, CancellationError):
                if not handle.cancelled:
                    # The result task itself was cancelled, e.g. by a caller timeout
                    self._abort_cancelled(request_id)
                    if read is not None:
                        await asyncio.wait([read])
                    raise
                result = aggregator.abort()
            except Exception as e:
                if handle.cancelled:
                    result = aggregator.abort()
                else:
                    log.warning(
                        "Stream request failed", **StreamErrorHandler.describe(e)
                    )
                    result = aggregator.fail(e)
            else:
                # An abort that lands after the last read still wins
                if handle.cancelled:
                    result = aggregator.abort()
                else:
                    result = aggregator.finalize(events)
        finally:
            self._release(request_id, handle)

        self._record(result.outcome)
        log.debug(
            "Stream request settled",
            outcome=result.outcome.value,
            events=aggregator.event_count,
            tool_rounds=result.tool_rounds,
        )
        return result

    def _new_request_id(self, kind: RequestKind) -> str:
        # Sequence keeps ids unique within the process; the random part keeps
        # them unique across processes sharing one server.
        return (
            f"{self._id_prefixes[kind]}_{int(time.time() * 1000)}"
            f"_{next(self._sequence)}_{uuid.uuid4().hex[:8]}"
        )

    def _release(self, request_id: str, handle: CancellationHandle) -> None:
        with self._lock:
            if self._entries.get(request_id) is handle:
                del self._entries[request_id]
                self.stats['removed'] += 1

    def _record(self, outcome: Outcome) -> None:
        key = {
            Outcome.COMPLETED: 'completed',
            Outcome.FAILED: 'failed',
            Outcome.ABORTED: 'aborted',
        }[outcome]
        with self._lock:
            self.stats[key] += 1

    def _abort_cancelled(self, request_id: str) -> None:
        if self.abort(request_id):
            self._record(Outcome.ABORTED)

    def _settle_cancelled(self, request_id: str, task: asyncio.Task[Any]) -> None:
        # A task cancelled before its first step never enters _run
        if task.cancelled():
            self._abort_cancelled(request_id)

    def _notify_remote_abort(self, request_id: str) -> None:
        if not self.notify_remote_abort or not self._abort_route:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "Remote abort notification skipped outside an event loop",
                request_id=request_id,
            )
            return
        task = loop.create_task(
            self._send_abort(request_id), name=f"abort:{request_id}"
        )
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _send_abort(self, request_id: str) -> None:
        path = f"{self._abort_route.rstrip('/')}/{quote(request_id, safe='')}"
        try:
            response = await self._dispatcher.client.post(path)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Remote abort notification failed",
                request_id=request_id,
                **StreamErrorHandler.describe(e),
            )
        except Exception as e:
            logger.error(
                "Remote abort notification crashed",
                request_id=request_id,
                **StreamErrorHandler.describe(e),
            )
