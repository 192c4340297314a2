"""
Lectio Sync - command line entry point.

Commands:
    serve    Run the HTTP API (engine starts with the app)
    run      Run the engine headless until SIGINT/SIGTERM
    sync     One manual sync (target date plus read-ahead)
    preload  Fill the missing dates of the cache window
    status   Print scheduler/cache status and metrics as JSON
    trim     Delete cached days outside the window
"""

import argparse
import json
import logging
import signal
import sys
import time
from datetime import date
from typing import Optional

from dotenv import load_dotenv

from lectio_sync.engine import SyncEngine, SyncEngineError
from lectio_sync.infra.logging_config import setup_logging
from lectio_sync.infra.settings import Settings


logger = logging.getLogger("lectio_sync.cli")

# Graceful shutdown support for `run`
shutdown_requested = False


def signal_handler(signum, frame):
    """
    SIGINT / SIGTERM handler - stop after in-flight syncs complete
    """
    global shutdown_requested
    signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
    logger.info(f"{signal_name} received - stopping after in-flight syncs complete")
    shutdown_requested = True


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {value}")


def parse_args(argv: Optional[list] = None):
    parser = argparse.ArgumentParser(
        description="Offline-first liturgical readings sync engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # HTTP API with scheduled sync
  python main.py serve --host 127.0.0.1 --port 8000

  # Headless engine
  python main.py run

  # Sync Christmas (and the day after) now
  python main.py sync --date 2025-12-25

  # Fill the cache window
  python main.py preload --batch-size 5
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Bind address")
    serve.add_argument("--port", type=int, default=8000, help="Bind port")

    run = subparsers.add_parser("run", help="Run the engine headless")
    run.add_argument(
        "--poll-seconds",
        type=float,
        default=1.0,
        help="Shutdown flag polling interval"
    )

    sync = subparsers.add_parser("sync", help="Run one manual sync")
    sync.add_argument(
        "--date",
        type=_parse_date,
        default=None,
        help="Invocation date (YYYY-MM-DD). Default: today"
    )

    preload = subparsers.add_parser("preload", help="Fill the cache window")
    preload.add_argument("--batch-size", type=int, default=5, help="Dates per batch")

    status = subparsers.add_parser("status", help="Print status as JSON")
    status.add_argument("--days", type=int, default=7, help="Metrics window in days")
    status.add_argument("--jobs", type=int, default=10, help="Recent jobs to include")

    subparsers.add_parser("trim", help="Trim the cache window")

    return parser.parse_args(argv)


def run_serve(settings: Settings, host: str, port: int) -> int:
    """Uvicorn handles SIGINT/SIGTERM; the app lifespan stops the engine."""
    import uvicorn
    from lectio_sync.api.main import create_app

    app = create_app(lambda: SyncEngine.create(settings))
    uvicorn.run(app, host=host, port=port)
    return 0


def run_headless(settings: Settings, poll_seconds: float) -> int:
    global shutdown_requested

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    engine = SyncEngine.create(settings)
    recovery_stats = engine.start()
    logger.info(f"Recovery: {recovery_stats}")
    logger.info(f"Status: {engine.get_status()}")

    try:
        while not shutdown_requested:
            time.sleep(poll_seconds)
    finally:
        engine.stop()
    return 0


def run_sync(settings: Settings, target_date: Optional[date]) -> int:
    engine = SyncEngine.create(settings)
    try:
        result = engine.trigger_manual_sync(target_date)
    except SyncEngineError as e:
        logger.error(f"Manual sync failed: {e}")
        return 1
    finally:
        engine.close()

    print(json.dumps(result.to_dict(), indent=2))
    return 0


def run_preload(settings: Settings, batch_size: int) -> int:
    engine = SyncEngine.create(settings)
    try:
        stats = engine.preload_window(batch_size=batch_size)
    finally:
        engine.close()

    print(json.dumps(stats, indent=2))
    return 0 if stats["failed"] == 0 else 1


def run_status(settings: Settings, days: int, jobs: int) -> int:
    engine = SyncEngine.create(settings)
    try:
        report = {
            "scheduler": engine.get_status(),
            "cache": engine.get_cache_stats(),
            "metrics": engine.get_performance_metrics(window_days=days),
            "is_data_stale": engine.scheduler.is_data_stale(),
            "recent_jobs": [job.to_dict() for job in engine.get_recent_sync_jobs(jobs)],
        }
    finally:
        engine.close()

    print(json.dumps(report, indent=2, ensure_ascii=False))
    return 0


def run_trim(settings: Settings) -> int:
    engine = SyncEngine.create(settings)
    try:
        removed = engine.trim_cache()
    finally:
        engine.close()

    print(json.dumps({"removed_days": removed}))
    return 0


def main(argv: Optional[list] = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_dir)

    if args.command == "serve":
        return run_serve(settings, args.host, args.port)
    if args.command == "run":
        return run_headless(settings, args.poll_seconds)
    if args.command == "sync":
        return run_sync(settings, args.date)
    if args.command == "preload":
        return run_preload(settings, args.batch_size)
    if args.command == "status":
        return run_status(settings, args.days, args.jobs)
    return run_trim(settings)


if __name__ == "__main__":
    sys.exit(main())
