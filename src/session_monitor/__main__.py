"""Entry point for the user session monitor."""

import argparse
import asyncio
import logging
import logging.handlers
import os
import signal
import sys
from enum import Enum
from pathlib import Path

from .alerts.manager import NotifierManager
from .alerts.notifiers import create_notifiers
from .core.bus import EventBus
from .core.config import Config, LoggingConfig
from .core.errors import MonitorError
from .monitors.auth_log import AuthLogMonitor
from .monitors.server import ServerInfoProvider
from .monitors.system import SystemMonitor

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
DEFAULT_CONFIG_PATH = "/etc/user-session-monitor/config.toml"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def configure_logging(config: LoggingConfig, level_override: str | None = None) -> int:
    """Configure root logging; adds a rotating file handler when possible."""
    log_level = getattr(logging, level_override or config.level)
    logging.basicConfig(level=log_level, format=LOG_FORMAT)

    if config.file:
        log_dir = Path(config.file).parent
        if os.access(log_dir, os.W_OK):
            handler = logging.handlers.RotatingFileHandler(
                config.file,
                maxBytes=config.max_size_mb * 1024 * 1024,
                backupCount=config.backup_count,
            )
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logging.getLogger().addHandler(handler)
        else:
            logger.warning(
                "Log directory %s is not writable, logging to stderr only", log_dir
            )

    return log_level


def _initialize_components(
    config: Config,
) -> tuple[EventBus, ServerInfoProvider, AuthLogMonitor, NotifierManager]:
    """Initialize all system components."""
    bus = EventBus(buffer_size=config.bus.buffer_size)

    server_info = ServerInfoProvider()
    server_info.refresh()

    notifiers = create_notifiers(config.alerts)
    if not notifiers:
        logger.warning("No notifiers enabled, session events will only be logged")
    manager = NotifierManager(notifiers)

    monitor = AuthLogMonitor(
        bus,
        server_info=server_info,
        log_path=config.monitoring.log_file,
        follower=config.monitoring.follower,
        dedup_window=config.deduplication.window_seconds,
        janitor_interval=config.deduplication.janitor_interval_seconds,
        stop_timeout=config.monitoring.stop_timeout_seconds,
    )
    logger.info(
        "Logout deduplication window: %ss", config.deduplication.window_seconds
    )
    return bus, server_info, monitor, manager


def _setup_signal_handlers() -> asyncio.Event:
    """Setup signal handlers for graceful shutdown."""
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    return shutdown_event


async def _shutdown_tasks(tasks: list[asyncio.Task]):
    """Cancel background tasks and wait for them."""
    for task in tasks:
        task.cancel()

    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def main_loop(config: Config) -> int:
    """Main monitoring loop. Returns the process exit code."""
    logger.info(f"Starting user session monitor {VERSION}")
    logger.info("Current configuration: %s", config.masked())

    bus, server_info, monitor, manager = _initialize_components(config)
    subscription = bus.subscribe()
    await monitor.start()

    manager_task = asyncio.create_task(manager.run(subscription))
    background = [
        asyncio.create_task(
            server_info.run(config.monitoring.server_refresh_seconds)
        )
    ]
    if config.monitoring.system_enabled:
        system_monitor = SystemMonitor(
            interval=config.monitoring.system_interval_seconds
        )
        background.append(asyncio.create_task(system_monitor.run()))

    shutdown_event = _setup_signal_handlers()
    shutdown_waiter = asyncio.create_task(shutdown_event.wait())
    monitor_waiter = asyncio.create_task(monitor.wait_closed())

    try:
        done, _ = await asyncio.wait(
            {shutdown_waiter, monitor_waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        logger.info("Shutting down...")
        await monitor.stop()
        bus.close()
        try:
            await asyncio.wait_for(
                manager_task, timeout=config.monitoring.stop_timeout_seconds
            )
        except TimeoutError:
            logger.warning("Pending notifications abandoned at shutdown")
        await _shutdown_tasks(background + [shutdown_waiter, monitor_waiter])
        await manager.close()
        logger.info("Shutdown complete")

    if shutdown_waiter in done:
        return 0
    logger.error("Auth log monitor stopped unexpectedly")
    return 1


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="User Session Monitor - SSH login/logout notifications"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        default=None,
        help="Logging level (overrides the configuration file)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    args = parser.parse_args()

    try:
        config = Config.load(args.config)
        log_level = configure_logging(config.logging, args.log_level)

        logger.info(f"Configuration loaded from: {args.config}")
        logger.info("Logging level set to: %s", logging.getLevelName(log_level))

        sys.exit(asyncio.run(main_loop(config)))

    except FileNotFoundError as e:
        logger.error(f"Configuration file not found: {e}")
        sys.exit(1)
    except MonitorError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
