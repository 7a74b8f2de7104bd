"""
Event dispatch over streaming HTTP responses.

One dispatcher drives the read -> frame -> decode -> deliver loop for any
number of responses. Each response gets its own framer, reads are strictly
sequential, and every decoded event reaches the observer in arrival order
before the next chunk is read.

Two modes share that loop:
- collect: bounded calls, returns the ordered event list once drained
- subscribe: unbounded channels, runs until the server closes the stream or
  the returned stop function is called
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from ..exceptions import TransportError
from ..logging_utils import StreamErrorHandler
from .decoder import decode_record
from .framer import RecordFramer
from .models import StreamEvent

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"
STREAM_HEADERS = {"Accept": EVENT_STREAM_MEDIA_TYPE}

Observer = Callable[[StreamEvent], Any]

logger = structlog.get_logger(__name__)


class EventDispatcher:
    """Frames, decodes and delivers events from streaming responses."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        chunk_size: int | None = None,
        decoder: Callable[[str], StreamEvent | None] = decode_record,
    ):
        self.client = client
        self.chunk_size = chunk_size
        self._decode = decoder
        self._subscriptions: set[asyncio.Task[None]] = set()
        self.stats = {
            'records': 0,
            'events': 0,
            'empty_records': 0,
            'observer_errors': 0,
        }

    async def post_collect(
        self,
        path: str,
        payload: Any,
        observer: Observer | None = None,
    ) -> list[StreamEvent]:
        """POST a JSON body and collect the streamed events to completion."""
        try:
            async with self.client.stream(
                "POST", path, json=payload, headers=STREAM_HEADERS
            ) as response:
                return await self.collect(response, observer)
        except httpx.HTTPError as e:
            raise TransportError(f"Stream error: {e}", path=path) from e

    async def collect(
        self,
        response: httpx.Response,
        observer: Observer | None = None,
    ) -> list[StreamEvent]:
        """Drain an open response, delivering and returning every event."""
        events: list[StreamEvent] = []

        def deliver(event: StreamEvent) -> None:
            events.append(event)
            self._notify(observer, event)

        await self._pump(response, deliver)
        return events

    def subscribe(self, path: str, observer: Observer) -> Callable[[], None]:
        """
        Open a GET subscription in the background and return its stop function.

        Must be called from a running event loop. Stopping an already closed
        subscription does nothing.
        """
        task = asyncio.get_running_loop().create_task(
            self._run_subscription(path, observer)
        )
        self._subscriptions.add(task)
        task.add_done_callback(self._subscriptions.discard)

        def stop() -> None:
            if not task.done():
                task.cancel()

        return stop

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    async def stop_all(self) -> None:
        """Stop every open subscription and wait for them to unwind."""
        tasks = list(self._subscriptions)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_subscription(self, path: str, observer: Observer) -> None:
        try:
            async with self.client.stream(
                "GET", path, headers=STREAM_HEADERS
            ) as response:
                await self._pump(response, lambda event: self._notify(observer, event))
            logger.debug("Subscription closed by server", path=path)
        except asyncio.CancelledError:
            logger.debug("Subscription stopped", path=path)
            raise
        except Exception as e:
            logger.error(
                "Subscription failed", path=path, **StreamErrorHandler.describe(e)
            )

    async def _pump(
        self,
        response: httpx.Response,
        deliver: Callable[[StreamEvent], None],
    ) -> None:
        if not response.is_success:
            raise TransportError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                path=_request_path(response),
                status_code=response.status_code,
            )

        framer = RecordFramer()
        try:
            async for chunk in response.aiter_bytes(self.chunk_size):
                for record in framer.feed(chunk):
                    self._emit(record, deliver)
        except asyncio.CancelledError:
            self._drain(framer, deliver)
            raise
        except httpx.HTTPError as e:
            raise TransportError(
                f"Stream error: {e}", path=_request_path(response)
            ) from e

        self._drain(framer, deliver)

    def _drain(
        self, framer: RecordFramer, deliver: Callable[[StreamEvent], None]
    ) -> None:
        if (record := framer.flush()) is not None:
            self._emit(record, deliver)

    def _emit(self, record: str, deliver: Callable[[StreamEvent], None]) -> None:
        self.stats['records'] += 1
        event = self._decode(record)
        if event is None:
            self.stats['empty_records'] += 1
            return
        self.stats['events'] += 1
        deliver(event)

    def _notify(self, observer: Observer | None, event: StreamEvent) -> None:
        if observer is None:
            return
        try:
            observer(event)
        except Exception:
            self.stats['observer_errors'] += 1
            logger.exception("Stream observer failed", event_kind=event.kind.value)

    def get_stats(self) -> dict[str, int]:
        """Get dispatch statistics for monitoring."""
        return self.stats.copy()


def _request_path(response: httpx.Response) -> str | None:
    try:
        return response.request.url.path
    except RuntimeError:
        # Response built without a request
        return None
