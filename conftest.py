"""
Shared helpers for the agentstream tests.

Streaming bodies are served through httpx.MockTransport so every test runs
the real read loop over scripted chunks.
"""

import asyncio
import copy
from collections.abc import AsyncIterator, Iterable

import httpx
import pytest
import yaml

from agentstream.config import Configuration

BASE_CONFIG = {
    "http_client": {
        "base_url": "http://stream.test",
        "api_prefix": "/api",
        "connect_timeout": 5.0,
        "read_timeout": None,
        "write_timeout": 5.0,
        "pool_timeout": 5.0,
        "chunk_size": None,
    },
    "routes": {
        "chat_stream": "/llm/chat-stream",
        "agent_run_stream": "/agent/run-stream",
        "agent_abort": "/agent/abort",
        "export_progress": "/ai/export-progress",
        "import_progress": "/chat/import-progress",
    },
    "registry": {
        "notify_remote_abort": True,
        "request_id_prefixes": {"completion": "chat", "agent_run": "agent"},
    },
    "logging": {"level": "WARNING"},
}

SCENARIO_A = (
    b'data: {"type":"content","content":"Hi"}\n\n'
    b'data: {"type":"tool_start","toolName":"search"}\n\n'
    b'data: {"type":"done","usage":{"tokens":5}}\n\n'
)


def sse_response(
    chunks: Iterable[bytes],
    *,
    hold: asyncio.Event | None = None,
    status_code: int = 200,
) -> httpx.Response:
    """Streaming response yielding `chunks`, then waiting on `hold` if given."""

    async def body() -> AsyncIterator[bytes]:
        for chunk in chunks:
            yield chunk
            await asyncio.sleep(0)
        if hold is not None:
            await hold.wait()

    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        content=body(),
    )


def write_config(tmp_path, *, drop: Iterable[str] = (), **sections) -> str:
    """
    Write BASE_CONFIG, with sections replaced or merged, to a YAML file.

    `drop` names "section.key" entries to remove after merging.
    """
    config = copy.deepcopy(BASE_CONFIG)
    for name, value in sections.items():
        if value is None:
            config.pop(name, None)
        elif isinstance(value, dict) and isinstance(config.get(name), dict):
            config[name].update(value)
        else:
            config[name] = value
    for dotted in drop:
        section, key = dotted.split(".", 1)
        del config[section][key]
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config))
    return str(path)


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("AGENTSTREAM_BASE_URL", raising=False)
    return write_config(tmp_path)


@pytest.fixture
def configuration(config_path):
    return Configuration(config_path)
