"""
Expiration sweep worker.

Runs the expiration sweeper on a fixed cadence until SIGTERM/SIGINT.

Run as: python -m backoffice.workers.expiration_sweep_worker

Configuration:
- SWEEP_POLL_INTERVAL_SECONDS: Seconds between cycles (default: 3600)
"""

import logging
import signal
import time

from backoffice.config.settings import get_settings
from backoffice.database.session import get_db_session_sync

logger = logging.getLogger(__name__)

_shutdown = False


def _handle_signal(signum, frame):
    global _shutdown
    logger.info("Shutdown signal received", extra={"signal": signum})
    _shutdown = True


def run_cycle() -> int:
    """Run one sweep. Returns the number of transitions applied."""
    db_gen = get_db_session_sync()
    db = next(db_gen)
    try:
        from backoffice.jobs.expiration_sweeper import ExpirationSweeper

        stats = ExpirationSweeper(db).run()

        if stats.processed or stats.errors:
            logger.info(
                "Expiration sweep cycle complete",
                extra={"processed": stats.processed, "error_count": len(stats.errors)},
            )
        return stats.processed

    except Exception:
        logger.error("Expiration sweep cycle failed", exc_info=True)
        db.rollback()
        return 0
    finally:
        db.close()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    poll_interval = get_settings().sweep_poll_interval_seconds
    logger.info(
        "Expiration sweep worker started",
        extra={"poll_interval": poll_interval},
    )

    while not _shutdown:
        run_cycle()
        for _ in range(poll_interval):
            if _shutdown:
                break
            time.sleep(1)

    logger.info("Expiration sweep worker stopped")


if __name__ == "__main__":
    main()
