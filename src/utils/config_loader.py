from __future__ import annotations

import logging
import os
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml

from src.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)

_cache_lock = threading.Lock()
_cached: dict[str, Any] | None = None
_cached_path: str | None = None


def _project_root() -> Path:
    # src/utils/config_loader.py -> src/utils -> src -> project root
    return Path(__file__).resolve().parents[2]


def default_config_path() -> Path:
    return _project_root() / "config" / "config.yaml"


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    """
    Override selected YAML settings with environment variables.

    Env names match the ones operators already set for the bot (`SOLANA_RPC_ENDPOINTS`, ...).
    """
    rpc = cfg.setdefault("rpc", {})
    if os.getenv("SOLANA_RPC_ENDPOINTS", "").strip():
        rpc["endpoints"] = [u.strip() for u in os.environ["SOLANA_RPC_ENDPOINTS"].split(",") if u.strip()]
    if os.getenv("RPC_RETRY_ATTEMPTS"):
        rpc["retry_attempts"] = int(os.environ["RPC_RETRY_ATTEMPTS"])
    if os.getenv("RPC_RETRY_DELAY_MS"):
        rpc["retry_delay_ms"] = int(os.environ["RPC_RETRY_DELAY_MS"])
    if os.getenv("RPC_TIMEOUT_SECONDS"):
        rpc["timeout_seconds"] = float(os.environ["RPC_TIMEOUT_SECONDS"])

    stream = cfg.setdefault("stream", {})
    if os.getenv("PUMPFUN_WEBSOCKET_URL"):
        stream["url"] = os.environ["PUMPFUN_WEBSOCKET_URL"]
    if os.getenv("PUMPFUN_NATS_USER"):
        stream["user"] = os.environ["PUMPFUN_NATS_USER"]
    if os.getenv("PUMPFUN_NATS_PASS"):
        stream["password"] = os.environ["PUMPFUN_NATS_PASS"]
    if os.getenv("PUMPFUN_RECONNECT_DELAY_SECONDS"):
        stream["reconnect_delay_seconds"] = float(os.environ["PUMPFUN_RECONNECT_DELAY_SECONDS"])

    log_cfg = cfg.setdefault("logging", {})
    if os.getenv("PUMPFUN_LOG_LEVEL"):
        log_cfg["level"] = os.environ["PUMPFUN_LOG_LEVEL"].upper()


def validate_config(cfg: dict[str, Any]) -> None:
    """
    Fail fast on configuration the sessions cannot run with.
    There is no degraded mode: a bad endpoint list or stream URL stops startup.
    """
    required_top = ["rpc", "stream"]
    missing = [k for k in required_top if k not in cfg]
    if missing:
        raise ConfigurationError(f"Missing required config sections: {', '.join(missing)}")

    rpc = cfg.get("rpc") or {}
    endpoints = rpc.get("endpoints") or []
    if isinstance(endpoints, str):
        endpoints = endpoints.split(",")
    if not isinstance(endpoints, list) or not [e for e in endpoints if str(e or "").strip()]:
        raise ConfigurationError("No RPC endpoints configured (rpc.endpoints / SOLANA_RPC_ENDPOINTS)")
    if int(rpc.get("retry_attempts", 3)) < 1:
        raise ConfigurationError("rpc.retry_attempts must be >= 1")
    if int(rpc.get("retry_delay_ms", 1000)) < 0:
        raise ConfigurationError("rpc.retry_delay_ms must be >= 0")

    stream = cfg.get("stream") or {}
    if not str(stream.get("url") or "").strip():
        raise ConfigurationError("Missing stream.url in config (or PUMPFUN_WEBSOCKET_URL)")


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigurationError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}
    if not isinstance(doc, dict):
        raise ConfigurationError(f"Config must be a YAML mapping (dict); got {type(doc).__name__}")
    return doc


def load_config(config_path: str | Path | None = None, *, force_reload: bool = False) -> dict[str, Any]:
    """
    Return the bot configuration: `rpc`, `stream` and `logging` sections.

    The file is read and validated on first use; env overrides (`SOLANA_RPC_ENDPOINTS`,
    `PUMPFUN_WEBSOCKET_URL`, ...) are folded in before validation, so a bad endpoint list
    fails here whichever source it came from. Later calls for the same path get a deep copy
    of the cached result; `force_reload=True` re-reads the file and the environment.
    """
    global _cached, _cached_path

    path = Path(config_path) if config_path else default_config_path()
    key = str(path.resolve())

    with _cache_lock:
        if _cached is None or _cached_path != key or force_reload:
            cfg = _read_yaml(path)
            _apply_env_overrides(cfg)
            validate_config(cfg)
            _cached, _cached_path = cfg, key
            endpoints = cfg["rpc"]["endpoints"]
            logger.info(
                "Loaded config from %s (%s RPC endpoint(s), stream %s)",
                key,
                len(endpoints) if isinstance(endpoints, list) else len(str(endpoints).split(",")),
                cfg["stream"]["url"],
            )
        return deepcopy(_cached)
