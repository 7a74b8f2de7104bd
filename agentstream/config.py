"""Configuration management for the agentstream client."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv

from .streaming.models import RequestKind

BASE_URL_ENV = "AGENTSTREAM_BASE_URL"


class Configuration:
    """Manages configuration and environment variables for the stream client."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables.

        Args:
            config_path: YAML file to load; defaults to the packaged config.yaml.
        """
        self.load_env()  # Load .env for the base URL override
        self._config = self._load_yaml_config(config_path)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self, config_path: str | None) -> dict[str, Any]:
        """Load configuration from YAML file."""
        if config_path is None:
            config_path = os.path.join(os.path.dirname(__file__), "config.yaml")
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    def get_http_client_config(self) -> dict[str, Any]:
        """Get HTTP client configuration.

        The base URL may be overridden with the AGENTSTREAM_BASE_URL
        environment variable. ``read_timeout`` and ``chunk_size`` accept null.

        Returns:
            HTTP client configuration dictionary with validated values.

        Raises:
            ValueError: If required HTTP client parameters are missing or invalid.
        """
        http_config = self._config.get("http_client", {})

        required_keys = [
            "base_url", "api_prefix", "connect_timeout", "read_timeout",
            "write_timeout", "pool_timeout", "chunk_size"
        ]
        for key in required_keys:
            if key not in http_config:
                raise ValueError(
                    f"{key} must be explicitly configured in config.yaml "
                    "under http_client"
                )

        base_url = os.getenv(BASE_URL_ENV) or http_config["base_url"]
        if not base_url or not str(base_url).startswith(("http://", "https://")):
            raise ValueError("http_client.base_url must be an http(s) URL")

        for key in ["connect_timeout", "write_timeout", "pool_timeout"]:
            if http_config[key] is None or http_config[key] <= 0:
                raise ValueError(f"http_client.{key} must be positive")

        read_timeout = http_config["read_timeout"]
        if read_timeout is not None and read_timeout <= 0:
            raise ValueError("http_client.read_timeout must be positive or null")

        chunk_size = http_config["chunk_size"]
        if chunk_size is not None and (
            not isinstance(chunk_size, int) or chunk_size < 1
        ):
            raise ValueError("http_client.chunk_size must be a positive integer or null")

        prefix = str(http_config["api_prefix"] or "").strip("/")

        return {
            "base_url": str(base_url).rstrip("/"),
            "api_prefix": f"/{prefix}" if prefix else "",
            "connect_timeout": http_config["connect_timeout"],
            "read_timeout": read_timeout,
            "write_timeout": http_config["write_timeout"],
            "pool_timeout": http_config["pool_timeout"],
            "chunk_size": chunk_size,
        }

    def get_routes_config(self) -> dict[str, str]:
        """Get streaming route paths, relative to the API prefix.

        Returns:
            Mapping of route name to path.

        Raises:
            ValueError: If a route is missing or not an absolute path.
        """
        routes = self._config.get("routes", {})

        required_keys = [
            "chat_stream", "agent_run_stream", "agent_abort",
            "export_progress", "import_progress"
        ]
        for key in required_keys:
            if key not in routes:
                raise ValueError(
                    f"{key} must be explicitly configured in config.yaml "
                    "under routes"
                )
            if not isinstance(routes[key], str) or not routes[key].startswith("/"):
                raise ValueError(f"routes.{key} must be a path starting with '/'")

        return {key: routes[key] for key in required_keys}

    def get_registry_config(self) -> dict[str, Any]:
        """Get request registry configuration.

        Returns:
            Dictionary with ``notify_remote_abort`` and ``request_id_prefixes``
            (keyed by RequestKind).

        Raises:
            ValueError: If required registry parameters are missing or invalid.
        """
        registry_config = self._config.get("registry", {})

        for key in ["notify_remote_abort", "request_id_prefixes"]:
            if key not in registry_config:
                raise ValueError(
                    f"{key} must be explicitly configured in config.yaml "
                    "under registry"
                )

        notify = registry_config["notify_remote_abort"]
        if not isinstance(notify, bool):
            raise ValueError("registry.notify_remote_abort must be a boolean")

        prefixes_config = registry_config["request_id_prefixes"] or {}
        prefixes: dict[RequestKind, str] = {}
        for kind in RequestKind:
            prefix = prefixes_config.get(kind.value)
            if not isinstance(prefix, str) or not prefix:
                raise ValueError(
                    f"request_id_prefixes.{kind.value} must be explicitly "
                    "configured in config.yaml under registry"
                )
            prefixes[kind] = prefix

        return {
            "notify_remote_abort": notify,
            "request_id_prefixes": prefixes,
        }

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML.

        Returns:
            Logging configuration dictionary.
        """
        return self._config.get("logging", {})
