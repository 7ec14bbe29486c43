"""
Standalone recheck worker: ``python -m farewatch.worker``.

Runs the scheduler without the HTTP host. SIGINT/SIGTERM stop new ticks and
wait up to ``shutdown_timeout_seconds`` for running checks.
"""
import asyncio
import logging
import signal

from farewatch.config import get_settings, validate_settings
from farewatch.database import create_tables
from farewatch.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run_worker(stop_event: asyncio.Event | None = None) -> None:
    settings = get_settings()
    validate_settings(settings)

    if settings.database_url.startswith("sqlite"):
        create_tables()

    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # No signal support on this loop (Windows, non-main thread)
            pass

    await start_scheduler()
    logger.info("Recheck worker running. Press Ctrl+C to stop.")

    await stop_event.wait()

    logger.info("Shutting down recheck worker...")
    await stop_scheduler()


def main() -> None:
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Recheck worker stopped.")


if __name__ == "__main__":
    main()
