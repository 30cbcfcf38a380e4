#!/usr/bin/env python3
"""Backup lifecycle runner.

Runs the backup scheduler as a long-lived service, or performs a single
action and exits:

    backup-lifecycle                      # start scheduler, block until SIGINT/SIGTERM
    backup-lifecycle --once               # run one backup now and print the result
    backup-lifecycle --status             # print status JSON
    backup-lifecycle --exchange-code CODE # store a remote credential from an OAuth code
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Any, Optional, Sequence

from backup_lifecycle.api.logging_config import configure_logging, get_logger
from backup_lifecycle.api.settings import Settings
from backup_lifecycle.backend.services.lifecycle.config_provider import JsonFileConfigProvider
from backup_lifecycle.backend.services.lifecycle.errors import BackupError
from backup_lifecycle.backend.services.lifecycle.manager import BackupManager
from backup_lifecycle.backend.services.lifecycle.schedule_trigger import APSchedulerTrigger, SchedulerTrigger
from backup_lifecycle.backend.services.lifecycle.storage.factory import build_local_store, build_remote_client

logger = get_logger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 300


def setup_logging(settings: Settings) -> None:
    """Configure logging, falling back to console-only basicConfig."""

    try:
        configure_logging(
            log_dir=settings.LOG_DIR,
            log_level=settings.LOG_LEVEL,
            debug=settings.DEBUG,
            log_filename=settings.LOG_FILENAME,
        )
    except (OSError, ValueError):
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def build_manager(settings: Settings, *, trigger: Optional[SchedulerTrigger] = None) -> BackupManager:
    """Wire a BackupManager from settings.

    Args:
        settings: Process settings.
        trigger: Scheduler override (defaults to APScheduler).

    Returns:
        BackupManager: Ready-to-start manager.
    """

    return BackupManager(
        source_path=settings.SOURCE_DB_PATH,
        local_store=build_local_store(settings),
        trigger=trigger or APSchedulerTrigger(),
        config_provider=JsonFileConfigProvider(
            settings.CONFIG_PATH,
            encryption_key=settings.get_config_encryption_key(),
        ),
        remote_client=build_remote_client(settings),
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def serve(manager: BackupManager, stop_event: threading.Event, *, schedule: Optional[str] = None) -> None:
    """Start the scheduler and block until `stop_event` is set.

    On shutdown, future ticks are cancelled and an in-flight run is awaited.
    """

    try:
        manager.start(schedule)
        if not manager.is_running():
            logger.warning("Backup scheduler not started (backups disabled); waiting for shutdown signal")

        stop_event.wait()

        logger.info("Shutting down backup runner...")
        manager.stop()
        if not manager.wait_for_idle(timeout=SHUTDOWN_TIMEOUT_SECONDS):
            logger.warning("In-flight backup did not finish within %ss", SHUTDOWN_TIMEOUT_SECONDS)
    finally:
        manager.trigger.shutdown()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point."""

    parser = argparse.ArgumentParser(description="Backup lifecycle runner")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--once", action="store_true", help="Run one backup now and exit")
    group.add_argument("--status", action="store_true", help="Print backup status and exit")
    group.add_argument("--exchange-code", metavar="CODE", help="Exchange an OAuth authorization code and store the credential")
    parser.add_argument("--schedule", help="Crontab expression overriding the configured schedule")
    args = parser.parse_args(argv)

    settings = Settings()
    setup_logging(settings)
    manager = build_manager(settings)

    try:
        if args.once:
            _print_json(manager.run_backup().to_dict())
            return 0

        if args.status:
            _print_json(manager.get_status())
            return 0

        if args.exchange_code:
            manager.connect_remote(args.exchange_code)
            logger.info("Remote credential stored")
            return 0

        stop_event = threading.Event()

        def _handle_signal(signum, _frame) -> None:
            logger.info("Received signal %s", signum)
            stop_event.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        serve(manager, stop_event, schedule=args.schedule)
        return 0
    except BackupError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        if manager.remote_client is not None:
            manager.remote_client.close()


if __name__ == "__main__":
    sys.exit(main())
