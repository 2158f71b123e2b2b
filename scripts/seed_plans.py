"""
Seed the plan catalog from config/plans.yml.

Usage:
    python scripts/seed_plans.py [--dry-run] [--config PATH]

Requires DATABASE_URL. Safe to re-run: plans are upserted by slug and
feature flags by key.
"""

import argparse
import logging
import sys

from backoffice.config.plan_catalog_seed import get_plan_catalog_seed_loader, seed_catalog
from backoffice.database.session import get_db_session_sync

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the plan catalog")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without writing")
    parser.add_argument("--config", help="Path to plans.yml")
    args = parser.parse_args()

    loader = get_plan_catalog_seed_loader(args.config)

    db_gen = get_db_session_sync()
    db = next(db_gen)
    try:
        result = seed_catalog(db, loader, dry_run=args.dry_run)
        print(f"Seed {'dry run' if args.dry_run else 'applied'}: {result.to_dict()}")
        return 0
    except Exception as e:
        logger.error("Seeding failed", exc_info=True)
        db.rollback()
        print(f"Seeding failed: {e}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
