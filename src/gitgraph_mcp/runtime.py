"""Runtime configuration helpers."""

from __future__ import annotations

import ipaddress
import logging
import math
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import yaml

from .actions import ActionCatalog, builtin_catalog_provider
from .constants import (
    DEFAULT_GIT_BINARY,
    DEFAULT_GREP_CHUNK_SIZE,
    DEFAULT_LOG_LIMIT,
    DEFAULT_REMOTE_NAME,
    REPO_CONFIG_FILE_NAME,
)

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
TRANSPORTS = {"stdio", "streamable-http"}
LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}

# settings key -> environment variable
SETTINGS_ENV_KEYS = {
    "git_binary": "GITGRAPH_GIT_BINARY",
    "default_remote_name": "GITGRAPH_DEFAULT_REMOTE",
    "log_limit": "GITGRAPH_LOG_LIMIT",
    "grep_chunk_size": "GITGRAPH_GREP_CHUNK_SIZE",
    "command_timeout_seconds": "GITGRAPH_COMMAND_TIMEOUT_SECONDS",
    "actions_file": "GITGRAPH_ACTIONS_FILE",
    "log_level": "GITGRAPH_LOG_LEVEL",
}


@dataclass(frozen=True)
class RuntimeSettings:
    """Effective settings merged from defaults, a YAML file and the environment."""

    git_binary: str = DEFAULT_GIT_BINARY
    default_remote_name: str = DEFAULT_REMOTE_NAME
    log_limit: int = DEFAULT_LOG_LIMIT
    grep_chunk_size: int = DEFAULT_GREP_CHUNK_SIZE
    command_timeout_seconds: float = 0.0
    actions_file: str = ""
    log_level: str = "WARNING"
    config_file: str = ""

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


def get_runtime_settings(
    env: Mapping[str, str] | None = None,
    config_path: Path | str | None = None,
    repo_path: Path | str | None = None,
) -> RuntimeSettings:
    """Validate and return settings; environment values win over the YAML file.

    The YAML file is ``config_path`` when given, else `GITGRAPH_CONFIG_FILE`,
    else `.gitgraph.yaml` inside ``repo_path`` when it exists.
    """
    source = os.environ if env is None else env

    resolved_config_path = _resolve_config_path(source, config_path, repo_path)
    merged: dict[str, Any] = {}
    if resolved_config_path is not None:
        merged.update(load_settings_file(resolved_config_path))
    for key, env_key in SETTINGS_ENV_KEYS.items():
        raw = source.get(env_key)
        if raw is not None and str(raw).strip():
            merged[key] = str(raw).strip()

    git_binary = str(merged.get("git_binary") or DEFAULT_GIT_BINARY).strip()
    default_remote_name = str(merged.get("default_remote_name") or DEFAULT_REMOTE_NAME).strip()
    log_level = str(merged.get("log_level") or "WARNING").strip().upper()
    if log_level not in LOG_LEVELS:
        allowed = ", ".join(sorted(LOG_LEVELS))
        raise ValueError(f"log_level must be one of: {allowed}.")

    return RuntimeSettings(
        git_binary=git_binary or DEFAULT_GIT_BINARY,
        default_remote_name=default_remote_name or DEFAULT_REMOTE_NAME,
        log_limit=_parse_int_value(merged, "log_limit", DEFAULT_LOG_LIMIT, min_value=1),
        grep_chunk_size=_parse_int_value(
            merged, "grep_chunk_size", DEFAULT_GREP_CHUNK_SIZE, min_value=1
        ),
        command_timeout_seconds=_parse_float_value(
            merged, "command_timeout_seconds", 0.0, min_value=0.0
        ),
        actions_file=str(merged.get("actions_file") or "").strip(),
        log_level=log_level,
        config_file=str(resolved_config_path) if resolved_config_path else "",
    )


def load_settings_file(path: Path) -> dict[str, Any]:
    """Read a YAML settings mapping; unknown keys are rejected."""
    try:
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
    except OSError as exc:
        raise ValueError(f"Unable to read config file {path}.") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Config file {path} is not valid YAML.") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {path} must contain a mapping.")
    unknown = sorted(str(key) for key in loaded if key not in SETTINGS_ENV_KEYS)
    if unknown:
        raise ValueError(f"Config file {path} has unknown keys: {', '.join(unknown)}.")
    return dict(loaded)


def build_catalog(settings: RuntimeSettings) -> ActionCatalog:
    """Return the user catalog when configured, else the shared built-in one."""
    if settings.actions_file:
        return ActionCatalog.from_file(Path(settings.actions_file).expanduser())
    return builtin_catalog_provider.get()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_server_defaults(env: Mapping[str, str] | None = None) -> tuple[str, str, int]:
    """Validate and return MCP server transport defaults from environment variables."""
    source = os.environ if env is None else env

    transport_default = source.get("GITGRAPH_MCP_TRANSPORT", "stdio")
    if transport_default not in TRANSPORTS:
        raise ValueError("GITGRAPH_MCP_TRANSPORT must be 'stdio' or 'streamable-http'.")

    host_default = source.get("GITGRAPH_MCP_HOST", "127.0.0.1")

    port_env = source.get("GITGRAPH_MCP_PORT", "8000")
    try:
        port_default = int(port_env)
    except ValueError as exc:
        raise ValueError("GITGRAPH_MCP_PORT must be an integer.") from exc
    if not (1 <= port_default <= 65535):
        raise ValueError("GITGRAPH_MCP_PORT must be between 1 and 65535.")

    allow_public_http = _parse_bool_env(source, "GITGRAPH_MCP_ALLOW_PUBLIC_HTTP", default=False)
    validate_streamable_http_binding(
        transport=transport_default,
        host=host_default,
        allow_public_http=allow_public_http,
    )
    return transport_default, host_default, port_default


def validate_streamable_http_binding(transport: str, host: str, allow_public_http: bool) -> None:
    """Validate host exposure policy for streamable HTTP transport."""
    if transport != "streamable-http":
        return
    if not host.strip():
        raise ValueError("Host must not be empty when using streamable-http transport.")
    if not is_loopback_host(host) and not allow_public_http:
        raise ValueError(
            "Refusing non-loopback streamable-http binding without explicit opt-in. "
            "Set --allow-public-http or GITGRAPH_MCP_ALLOW_PUBLIC_HTTP=true."
        )


def is_loopback_host(host: str) -> bool:
    """Return whether a host value maps to a loopback interface."""
    normalized = host.strip().lower().strip("[]")
    if normalized in {"localhost", "127.0.0.1", "::1"}:
        return True
    try:
        return ipaddress.ip_address(normalized).is_loopback
    except ValueError:
        return False


def allow_public_http_default(env: Mapping[str, str] | None = None) -> bool:
    source = os.environ if env is None else env
    return _parse_bool_env(source, "GITGRAPH_MCP_ALLOW_PUBLIC_HTTP", default=False)


def _resolve_config_path(
    source: Mapping[str, str],
    config_path: Path | str | None,
    repo_path: Path | str | None,
) -> Path | None:
    if config_path:
        return Path(config_path).expanduser()
    env_path = source.get("GITGRAPH_CONFIG_FILE", "").strip()
    if env_path:
        return Path(env_path).expanduser()
    if repo_path:
        candidate = Path(repo_path) / REPO_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def _parse_bool_env(source: Mapping[str, str], key: str, default: bool) -> bool:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    normalized = str(raw).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be a boolean value (true/false).")


def _parse_int_value(
    source: Mapping[str, Any],
    key: str,
    default: int,
    min_value: int | None = None,
) -> int:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    if isinstance(raw, bool):
        raise ValueError(f"{key} must be an integer.")
    try:
        parsed = int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer.") from exc
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{key} must be >= {min_value}.")
    return parsed


def _parse_float_value(
    source: Mapping[str, Any],
    key: str,
    default: float,
    min_value: float | None = None,
) -> float:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        parsed = float(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"{key} must be a number.") from exc
    if not math.isfinite(parsed):
        raise ValueError(f"{key} must be a finite number.")
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{key} must be >= {min_value}.")
    return parsed
