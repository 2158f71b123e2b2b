"""
Expiration sweeper job.

Finds every restaurant and temporary upgrade whose time box has elapsed and
drives the matching transition:

1. trials past subscription_trial_ends_at   -> downgrade ('trial_expired')
2. active/trial past subscription_expires_at -> downgrade ('subscription_expired')
3. active temporary upgrades past expires_at -> restore the snapshot

Each candidate is processed on its own; one failure is logged and the scan
moves on. The due condition is re-checked under the restaurant lock, so a
second run straight after the first finds nothing to do.

Scans run in the order above. A demotion closes any active overlay, so an
overlay whose restaurant was demoted in the same run is not restored.

Usage:
    python -m backoffice.jobs.expiration_sweeper
"""

import logging
import sys
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from backoffice.platform.clock import Clock, get_clock
from backoffice.repositories.temporary_upgrades_repo import TemporaryUpgradesRepository
from backoffice.repositories.tenants_repo import TenantsRepository
from backoffice.services.temporal_overlay import RestoreTrigger, TemporalOverlayManager

logger = logging.getLogger(__name__)


class SweepStats:
    """Track sweep run results."""

    def __init__(self, clock: Clock):
        self._clock = clock
        self.start_time = clock.now()
        self.expired_trials: List[str] = []
        self.expired_subscriptions: List[str] = []
        self.expired_temporary_upgrades: List[str] = []
        self.errors: List[dict] = []

    @property
    def processed(self) -> int:
        return (
            len(self.expired_trials)
            + len(self.expired_subscriptions)
            + len(self.expired_temporary_upgrades)
        )

    def to_dict(self) -> dict:
        duration = (self._clock.now() - self.start_time).total_seconds()
        return {
            "expired_trials": list(self.expired_trials),
            "expired_subscriptions": list(self.expired_subscriptions),
            "expired_temporary_upgrades": list(self.expired_temporary_upgrades),
            "processed": self.processed,
            "errors": list(self.errors),
            "duration_seconds": duration,
        }


class ExpirationSweeper:
    """
    Runs the three expiry scans against one session.

    Args:
        db_session: Database session
        manager: Overlay manager used for every transition
        clock: Time source; defaults to the manager's clock
    """

    def __init__(
        self,
        db_session: Session,
        manager: Optional[TemporalOverlayManager] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db_session
        self.clock = clock or (manager.clock if manager else get_clock())
        self.manager = manager or TemporalOverlayManager(db_session, clock=self.clock)
        self.tenants = TenantsRepository(db_session)
        self.overlays = TemporaryUpgradesRepository(db_session)

    def run(self) -> SweepStats:
        """Run all three scans in order."""
        stats = SweepStats(self.clock)
        logger.info("Starting expiration sweep")

        self.sweep_trials(stats)
        self.sweep_subscriptions(stats)
        self.sweep_temporary_upgrades(stats)

        logger.info("Expiration sweep completed", extra={
            "processed": stats.processed,
            "error_count": len(stats.errors),
        })
        return stats

    def sweep_trials(self, stats: SweepStats) -> None:
        self._scan(
            "trials",
            self.tenants.find_trials_due,
            self.manager.expire_trial_if_due,
            stats.expired_trials,
            stats,
        )

    def sweep_subscriptions(self, stats: SweepStats) -> None:
        self._scan(
            "subscriptions",
            self.tenants.find_subscriptions_due,
            self.manager.expire_subscription_if_due,
            stats.expired_subscriptions,
            stats,
        )

    def sweep_temporary_upgrades(self, stats: SweepStats) -> None:
        self._scan(
            "temporary_upgrades",
            self.overlays.find_due,
            self._restore_if_due,
            stats.expired_temporary_upgrades,
            stats,
        )

    def _restore_if_due(self, overlay_id: str) -> bool:
        overlay = self.overlays.get_by_id(overlay_id)
        if overlay is None or not overlay.is_active or not overlay.is_expired(self.clock.now()):
            return False
        return self.manager.restore_original_plan(overlay_id, trigger=RestoreTrigger.EXPIRED)

    def _scan(
        self,
        scan: str,
        find_candidates: Callable,
        transition: Callable[[str], bool],
        processed: List[str],
        stats: SweepStats,
    ) -> None:
        try:
            candidates = find_candidates(self.clock.now())
        except Exception as e:
            logger.error("Expiration scan query failed", exc_info=True, extra={"scan": scan})
            self.db.rollback()
            stats.errors.append({"scan": scan, "id": None, "error": str(e)})
            return

        for candidate_id in candidates:
            try:
                if transition(candidate_id):
                    processed.append(candidate_id)
            except Exception as e:
                logger.error("Expiration sweep failed for candidate", exc_info=True, extra={
                    "scan": scan,
                    "candidate_id": candidate_id,
                })
                stats.errors.append({"scan": scan, "id": candidate_id, "error": str(e)})

        if candidates:
            logger.info("Expiration scan finished", extra={
                "scan": scan,
                "candidates": len(candidates),
                "processed": len(processed),
            })


def run_sweep(db_session: Optional[Session] = None, clock: Optional[Clock] = None) -> dict:
    """
    Run one sweep and return its statistics.

    Opens its own session when none is given.
    """
    if db_session is not None:
        return ExpirationSweeper(db_session, clock=clock).run().to_dict()

    from backoffice.database.session import get_db_session_sync

    db_gen = get_db_session_sync()
    session = next(db_gen)
    try:
        return ExpirationSweeper(session, clock=clock).run().to_dict()
    finally:
        session.close()


def main():
    """Entry point for running the sweep from cron."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        result = run_sweep()
        print(f"Expiration sweep completed: {result}")
        sys.exit(0)
    except Exception as e:
        logger.error("Expiration sweep failed", exc_info=True)
        print(f"Expiration sweep failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
