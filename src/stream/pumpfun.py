from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from src.domain.errors import ConfigurationError
from src.domain.models import SubscriptionDescriptor
from src.ports.stream import Connector
from src.stream.payload import DEFAULT_IDENTIFIER_FIELDS
from src.stream.session import (
    DEFAULT_KEEPALIVE_INTERVAL_SECONDS,
    DEFAULT_RECONNECT_DELAY_SECONDS,
    SubscriptionSession,
)

logger = logging.getLogger(__name__)

# Subscriptions of the reference deployment; only graduations reach the consumers.
DEFAULT_SUBSCRIPTIONS: tuple[SubscriptionDescriptor, ...] = (
    SubscriptionDescriptor(topic="coinImageUpdated.>", sid="1"),
    SubscriptionDescriptor(topic="advancedCoinGraduated", sid="2", dispatch=True),
    SubscriptionDescriptor(topic="advancedNewCoinCreated", sid="3"),
)


@dataclass(frozen=True)
class StreamConfig:
    url: str
    user: str
    password: str
    client_lang: str
    client_version: str
    verbose: bool
    reconnect_delay_seconds: float
    keepalive_interval_seconds: float
    subscriptions: tuple[SubscriptionDescriptor, ...]
    identifier_fields: tuple[str, ...]


def _load_subscriptions(raw: Any) -> tuple[SubscriptionDescriptor, ...]:
    if not raw:
        return DEFAULT_SUBSCRIPTIONS
    if not isinstance(raw, list):
        raise ConfigurationError("stream.subscriptions must be a list")
    subs = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("topic") or item.get("sid") is None:
            raise ConfigurationError(f"Invalid subscription entry: {item!r}")
        subs.append(
            SubscriptionDescriptor(
                topic=str(item["topic"]).strip(),
                sid=str(item["sid"]).strip(),
                dispatch=bool(item.get("dispatch", False)),
            )
        )
    return tuple(subs)


def load_stream_config(config: dict) -> StreamConfig:
    s = (config.get("stream") or {}) if isinstance(config, dict) else {}
    url = str(s.get("url") or "").strip()
    if not url:
        raise ConfigurationError("stream.url (PUMPFUN_WEBSOCKET_URL) is not set")
    fields = s.get("identifier_fields") or list(DEFAULT_IDENTIFIER_FIELDS)
    return StreamConfig(
        url=url,
        user=str(s.get("user", "")),
        password=str(s.get("password", "")),
        client_lang=str(s.get("client_lang", "nats.ws")),
        client_version=str(s.get("client_version", "1.29.2")),
        verbose=bool(s.get("verbose", True)),
        reconnect_delay_seconds=float(s.get("reconnect_delay_seconds", DEFAULT_RECONNECT_DELAY_SECONDS)),
        keepalive_interval_seconds=float(s.get("keepalive_interval_seconds", DEFAULT_KEEPALIVE_INTERVAL_SECONDS)),
        subscriptions=_load_subscriptions(s.get("subscriptions")),
        identifier_fields=tuple(str(f) for f in fields),
    )


def build_connect_options(cfg: StreamConfig) -> dict[str, Any]:
    options: dict[str, Any] = {
        "no_responders": True,
        "protocol": 1,
        "verbose": cfg.verbose,
        "pedantic": False,
        "lang": cfg.client_lang,
        "version": cfg.client_version,
        "headers": True,
    }
    if cfg.user:
        options["user"] = cfg.user
        options["pass"] = cfg.password
    return options


def build_listener(cfg: StreamConfig, *, connector: Connector | None = None) -> SubscriptionSession:
    return SubscriptionSession(
        cfg.url,
        cfg.subscriptions,
        build_connect_options(cfg),
        reconnect_delay_seconds=cfg.reconnect_delay_seconds,
        keepalive_interval_seconds=cfg.keepalive_interval_seconds,
        identifier_fields=cfg.identifier_fields,
        connector=connector,
        name="PumpFunListener",
    )
