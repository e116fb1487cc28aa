"""
Service entry point: polls every enabled account until SIGINT/SIGTERM.
"""

from __future__ import annotations
import asyncio
import os
import signal
from typing import Optional

from dotenv import load_dotenv

from mailwatch.config import Config, _init_config_store, _init_source, _load_env
from mailwatch.engine import PollerEngine
from mailwatch.errors import ConfigurationError, CycleError
from mailwatch.health import HealthCheckServer
from mailwatch.logging import logger, setup_logging
from mailwatch.models import Account
from mailwatch.sinks.base import Sink
from mailwatch.sinks.log import LoggingSink
from mailwatch.storage.config_store import ConfigStore


def _log_cycle_error(account: Account, error: CycleError) -> None:
    if error.cause is not None:
        logger.debug(f"[{account.account_id}] cause: {error.cause!r}")


def start_enabled_accounts(engine: PollerEngine, store: ConfigStore, sink: Sink) -> int:
    """Start polling every enabled account in the store; returns how many were started."""
    started = 0
    for account in store.list_accounts():
        if not account.enabled:
            logger.info(f"[{account.account_id}] Disabled, not polling")
            continue
        try:
            engine.start(account, sink)
        except ConfigurationError as e:
            logger.error(f"[{account.account_id}] Not polling, invalid configuration: {e}")
            continue
        started += 1
    return started


async def run_service(
    cfg: Config,
    *,
    engine: Optional[PollerEngine] = None,
    store: Optional[ConfigStore] = None,
    sink: Optional[Sink] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """
    Run the polling service until ``stop_event`` is set or a signal arrives.

    Collaborators default to the ones described by ``cfg``.
    """
    if store is None:
        store = _init_config_store(cfg)
    if engine is None:
        engine = PollerEngine(_init_source(cfg), on_error=_log_cycle_error)
    if sink is None:
        sink = LoggingSink()
    if stop_event is None:
        stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    handled_signals = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            handled_signals.append(sig)
        except (NotImplementedError, RuntimeError):
            # not on the main thread, or not supported by this platform
            pass

    health_server = None
    if cfg["HEALTH_CHECK_ENABLED"]:
        try:
            health_server = HealthCheckServer(port=cfg["HEALTH_CHECK_PORT"], health_func=engine.get_health)
            health_server.start()
        except OSError as e:
            logger.warning(f"Failed to start health check server: {e}")
            health_server = None

    try:
        started = start_enabled_accounts(engine, store, sink)
        if not started:
            logger.warning("No enabled accounts configured; set ACCOUNTS_FILE or MAIL_ACCOUNT")
        else:
            logger.info(f"Polling {started} account(s)")
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        await engine.shutdown()
        if health_server:
            health_server.stop()
        for sig in handled_signals:
            loop.remove_signal_handler(sig)
        logger.info("Service stopped")


def main() -> None:
    """Main service entry point."""
    # logging first, so config loading can log
    load_dotenv()
    setup_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        log_file=os.getenv("LOG_FILE", "").strip() or None,
    )

    try:
        cfg = _load_env()
        logger.info("Starting mailwatch service")
        asyncio.run(run_service(cfg))
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.exception(f"Service failed: {e}")
        raise


if __name__ == "__main__":
    main()
