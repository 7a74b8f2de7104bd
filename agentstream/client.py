"""
Streaming API client.

Wires configuration, the shared httpx client, the event dispatcher and the
request registry into one entry point for streamed chat completions, agent
runs, progress subscriptions and aborts.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx

from .config import Configuration
from .exceptions import TransportError
from .logging_utils import log_operation, operation_context, set_log_level
from .models import AgentContext, AgentRunRequest, ChatStreamRequest, PromptConfig
from .progress import ProgressSnapshot
from .registry import RequestLifecycleRegistry, StreamRequest
from .streaming.decoder import extract_payload, normalize_keys
from .streaming.dispatcher import STREAM_HEADERS, EventDispatcher
from .streaming.models import RequestKind, StreamEvent

EventCallback = Callable[[StreamEvent], Any]


class StreamClient:
    """HTTP client for streamed, cancellable requests against the API server."""

    def __init__(
        self,
        configuration: Configuration | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.configuration = configuration or Configuration()

        http_config = self.configuration.get_http_client_config()
        self.routes = self.configuration.get_routes_config()
        registry_config = self.configuration.get_registry_config()

        if level := self.configuration.get_logging_config().get("level"):
            set_log_level(level)

        self.client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=http_config["base_url"] + http_config["api_prefix"],
            timeout=httpx.Timeout(
                connect=http_config["connect_timeout"],
                read=http_config["read_timeout"],
                write=http_config["write_timeout"],
                pool=http_config["pool_timeout"],
            ),
            transport=transport,
        )
        self.dispatcher = EventDispatcher(
            self.client, chunk_size=http_config["chunk_size"]
        )
        self.registry = RequestLifecycleRegistry(
            self.dispatcher,
            {
                RequestKind.COMPLETION: self.routes["chat_stream"],
                RequestKind.AGENT_RUN: self.routes["agent_run_stream"],
            },
            abort_route=self.routes["agent_abort"],
            notify_remote_abort=registry_config["notify_remote_abort"],
            id_prefixes=registry_config["request_id_prefixes"],
        )

    @log_operation("json_request")
    async def request(self, method: str, path: str, data: Any = None) -> Any:
        """Send a JSON request and return the decoded JSON response.

        Raises:
            TransportError: On network failure or a non-2xx status.
        """
        try:
            response = await self.client.request(method, path, json=data)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code}: {e.response.reason_phrase}",
                path=path,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error: {e}", path=path) from e
        return response.json()

    def chat_stream(
        self,
        messages: list[dict[str, Any]],
        options: dict[str, Any] | None = None,
        on_event: EventCallback | None = None,
    ) -> StreamRequest:
        """Start a streamed chat completion."""
        payload = ChatStreamRequest(messages=messages, options=options or {})
        return self.registry.start(RequestKind.COMPLETION, payload.to_wire(), on_event)

    def run_agent_stream(
        self,
        user_message: str,
        context: AgentContext | dict[str, Any] | None = None,
        on_event: EventCallback | None = None,
        *,
        history_messages: list[Any] | None = None,
        chat_type: str | None = None,
        prompt_config: PromptConfig | dict[str, Any] | None = None,
        locale: str | None = None,
    ) -> StreamRequest:
        """Start a streamed, tool-using agent run.

        Args:
            user_message: The question for the agent
            context: Analysis scope; camelCase or snake_case keys accepted
            on_event: Live observer for every decoded event
            history_messages: Previous conversation turns
            chat_type: Chat type of the analysed session ("group" by default)
            prompt_config: Role definition and response rules
            locale: Response locale

        Returns:
            StreamRequest; its id can be passed to abort()
        """
        payload = AgentRunRequest.build(
            user_message,
            context,
            history_messages=history_messages,
            chat_type=chat_type,
            prompt_config=prompt_config,
            locale=locale,
        )
        return self.registry.start(RequestKind.AGENT_RUN, payload.to_wire(), on_event)

    def abort(self, request_id: str) -> bool:
        """Abort an in-flight streaming request; unknown ids are ignored."""
        return self.registry.abort(request_id)

    def on_export_progress(self, callback: EventCallback) -> Callable[[], None]:
        """Subscribe to export progress events; returns the stop function."""
        return self.dispatcher.subscribe(self.routes["export_progress"], callback)

    async def read_import_progress(self) -> ProgressSnapshot | None:
        """Read the current import progress snapshot.

        Returns:
            The snapshot, or None when the server sent no parsable payload.

        Raises:
            TransportError: On network failure or a non-2xx status.
        """
        path = self.routes["import_progress"]
        async with operation_context("read_import_progress", context={"path": path}):
            try:
                response = await self.client.get(path, headers=STREAM_HEADERS)
            except httpx.HTTPError as e:
                raise TransportError(f"HTTP error: {e}", path=path) from e
            if not response.is_success:
                raise TransportError(
                    f"HTTP {response.status_code}: {response.reason_phrase}",
                    path=path,
                    status_code=response.status_code,
                )

            payload = extract_payload(response.text.replace("\r\n", "\n"))
            if not payload:
                return None
            try:
                fields = normalize_keys(json.loads(payload))
            except (ValueError, RecursionError):
                return None
            if not isinstance(fields, dict):
                return None
            return ProgressSnapshot.from_fields(fields)

    async def close(self) -> None:
        """Abort active requests, stop subscriptions and close the HTTP client."""
        self.registry.abort_all()
        await self.dispatcher.stop_all()
        await self.registry.wait_closed()
        await self.client.aclose()

    async def __aenter__(self) -> StreamClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
