"""Shared configuration loader for evm-broadcast."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".evm-broadcast.yaml"
DEFAULT_RECEIPT_POLL_INTERVAL = 1.0
DEFAULT_RPC_TIMEOUT = 30.0


@dataclass
class BroadcastConfig:
    """Resolved settings for a single broadcast run."""

    rpc_url: str
    resume: bool = False
    legacy: bool = False
    receipt_poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL
    max_nonce_offset: int | None = None
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(
            f"Expected {path} to contain a YAML object with a 'broadcast' section"
        )
    return loaded


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def _coerce_float(raw: Any, *, name: str, source: str) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {name} in {source}: {raw}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} in {source} must be positive, got {raw}")
    return value


def _coerce_offset(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid max_nonce_offset in {source}: {raw}") from exc
    if value < 0:
        raise ConfigurationError(f"max_nonce_offset in {source} cannot be negative: {raw}")
    return value


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _validate_endpoint(raw: str) -> str:
    parsed = urlparse(raw)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    return raw


def load_broadcast_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> BroadcastConfig:
    """Load broadcast settings from overrides, environment variables and optional YAML."""

    env_map = os.environ if env is None else env
    path = Path(config_path).expanduser() if config_path is not None else DEFAULT_CONFIG_PATH

    file_config = _load_config_file(path, required=config_path is not None)
    section = file_config.get("broadcast", {})
    if section is None:
        section = {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected 'broadcast' to be a mapping in {path}")

    override_map = {key: value for key, value in (overrides or {}).items() if value is not None}

    env_endpoint = env_map.get("EVM_BROADCAST_RPC_URL") or env_map.get("ETH_RPC_URL")
    resolved_endpoint = _first_value(
        override_map.get("rpc_url"), env_endpoint, section.get("rpc_url")
    )
    if not resolved_endpoint:
        raise ConfigurationError(
            "You must provide an RPC URL (see --rpc-url, ETH_RPC_URL or the 'broadcast.rpc_url' config key)"
        )

    resolved_resume = _first_value(
        _coerce_bool(override_map.get("resume")),
        _coerce_bool(env_map.get("EVM_BROADCAST_RESUME")),
        _coerce_bool(section.get("resume")),
        False,
    )
    resolved_legacy = _first_value(
        _coerce_bool(override_map.get("legacy")),
        _coerce_bool(env_map.get("EVM_BROADCAST_LEGACY")),
        _coerce_bool(section.get("legacy")),
        False,
    )
    resolved_poll = _first_value(
        _coerce_float(override_map.get("receipt_poll_interval"), name="poll interval", source="overrides"),
        _coerce_float(env_map.get("EVM_BROADCAST_POLL_INTERVAL"), name="poll interval", source="environment"),
        _coerce_float(section.get("receipt_poll_interval"), name="poll interval", source=str(path)),
        DEFAULT_RECEIPT_POLL_INTERVAL,
    )
    resolved_offset = _first_value(
        _coerce_offset(override_map.get("max_nonce_offset"), source="overrides"),
        _coerce_offset(env_map.get("EVM_BROADCAST_MAX_NONCE_OFFSET"), source="environment"),
        _coerce_offset(section.get("max_nonce_offset"), source=str(path)),
    )
    resolved_timeout = _first_value(
        _coerce_float(override_map.get("rpc_timeout"), name="RPC timeout", source="overrides"),
        _coerce_float(env_map.get("EVM_BROADCAST_RPC_TIMEOUT"), name="RPC timeout", source="environment"),
        _coerce_float(section.get("rpc_timeout"), name="RPC timeout", source=str(path)),
        DEFAULT_RPC_TIMEOUT,
    )

    return BroadcastConfig(
        rpc_url=_validate_endpoint(str(resolved_endpoint)),
        resume=bool(resolved_resume),
        legacy=bool(resolved_legacy),
        receipt_poll_interval=resolved_poll,
        max_nonce_offset=resolved_offset,
        rpc_timeout=resolved_timeout,
    )
