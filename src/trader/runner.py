import asyncio
import logging
import signal
from typing import Any

import httpx

from src.domain.errors import ConfigurationError
from src.rpc.client import build_executor, load_rpc_config
from src.rpc.executor import describe_executor
from src.rpc.solana_service import SolanaService
from src.stream.pumpfun import build_listener, load_stream_config

# Prefer a shared config loader (single source of truth).
from src.utils.config_loader import load_config

logger = logging.getLogger(__name__)

# Bound on how long shutdown waits for in-flight token handlers.
SHUTDOWN_DRAIN_SECONDS = 10.0


def configure_logging(config: dict | None = None) -> None:
    level_name = str(((config or {}).get("logging") or {}).get("level") or "INFO").upper()
    # Idempotent; safe if configured elsewhere.
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger().setLevel(getattr(logging, level_name, logging.INFO))
    # Keep library chatter (per-frame pings, per-request lines) out of the bot log.
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def make_token_handler(solana: SolanaService):
    """
    Consumer handed to the listener: the boundary to the analysis pipeline.

    Returns a coroutine per token so the listener schedules it instead of waiting on RPC.
    """

    async def handle_new_token(token_address: str, token_data: Any) -> None:
        logger.info("Processing new token: %s", token_address)
        supply = await solana.get_token_supply(token_address)
        if supply is None:
            logger.warning("Token supply unavailable for %s; skipping analysis", token_address)
            return
        name = token_data.get("name") if isinstance(token_data, dict) else None
        logger.info("Token %s (%s) supply: %s", token_address, name or "?", supply)

    return handle_new_token


async def run(config: dict) -> None:
    rpc_cfg = load_rpc_config(config)
    stream_cfg = load_stream_config(config)

    stop_evt = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_evt.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt.
            pass

    async with httpx.AsyncClient(timeout=rpc_cfg.timeout_seconds) as http_client:
        executor = build_executor(rpc_cfg, http_client)
        logger.info("RPC executor ready: %s", describe_executor(executor))
        solana = SolanaService(executor)

        listener = build_listener(stream_cfg)
        listener.add_token_callback(make_token_handler(solana))
        listener.start()

        logger.info("Bot is now running and listening for new tokens...")
        logger.info("Press Ctrl+C to stop.")
        try:
            await stop_evt.wait()
            logger.info("Shutdown signal received. Shutting down bot...")
        finally:
            await listener.stop()
            await listener.registry.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
            logger.info(
                "Listener stats: %s events dispatched, %s frames dropped, %s reconnects",
                listener.events_dispatched,
                listener.frames_dropped,
                listener.reconnect_count,
            )


def main() -> None:
    configure_logging()

    try:
        config = load_config()
    except ConfigurationError as e:
        logger.error("CRITICAL: %s. Bot cannot operate.", e)
        raise SystemExit(1) from e
    configure_logging(config)

    logger.info("----------------------------------------------------")
    logger.info("--- Solana Sniper Bot Starting ---")
    logger.info("----------------------------------------------------")
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
