"""
Plan catalog seed loader.

Loads the initial plan catalog, feature flag catalog and trial
configuration from config/plans.yml and applies them idempotently
(upsert by plan slug and feature key).

Consumers:
  - scripts/seed_plans.py

Usage:
    from backoffice.config.plan_catalog_seed import get_plan_catalog_seed_loader, seed_catalog

    loader = get_plan_catalog_seed_loader()
    result = seed_catalog(db_session, loader)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

import yaml
from sqlalchemy.orm import Session

from backoffice.config.settings import get_settings

logger = logging.getLogger(__name__)

_PLAN_FIELDS = (
    "name", "description", "price_monthly", "price_yearly", "currency",
    "features", "limits", "is_visible", "is_legacy", "sort_order",
)


class PlanCatalogSeedLoader:
    """
    Thread-safe singleton loader for config/plans.yml.

    The path comes from the constructor, else PLAN_CATALOG_PATH (via
    SubscriptionSettings), else config/plans.yml at the repository root
    or the working directory.
    """

    _instance: Optional["PlanCatalogSeedLoader"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path or get_settings().plan_catalog_path
        self._raw: Dict[str, Any] = {}
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            Path(__file__).parent.parent.parent / "config" / "plans.yml",
            Path(os.getcwd()) / "config" / "plans.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"plans.yml not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        with self._load_lock:
            try:
                path = self._resolve_path()
                logger.info("Loading plan catalog seed from %s", path)

                with open(path, "r") as f:
                    self._raw = yaml.safe_load(f) or {}

                logger.info(
                    "Loaded plan catalog seed: plans=%d, feature_flags=%d",
                    len(self._raw.get("plans", [])),
                    len(self._raw.get("feature_flags", [])),
                )
            except FileNotFoundError:
                logger.warning("plans.yml not found, seed catalog is empty")
                self._raw = {}

    def reload(self) -> None:
        """Re-read the YAML from disk."""
        self._load()

    def get_plans(self) -> List[Dict[str, Any]]:
        return list(self._raw.get("plans", []))

    def get_feature_flags(self) -> List[Dict[str, Any]]:
        return list(self._raw.get("feature_flags", []))

    def get_trial(self) -> Dict[str, Any]:
        """Trial settings; trial_plan is a plan slug."""
        return dict(self._raw.get("trial", {}))


def get_plan_catalog_seed_loader(
    config_path: Optional[str] = None,
) -> PlanCatalogSeedLoader:
    """Return the singleton PlanCatalogSeedLoader."""
    return PlanCatalogSeedLoader(config_path)


def reset_plan_catalog_seed_loader() -> None:
    """Reset singleton (for tests only)."""
    PlanCatalogSeedLoader._instance = None


@dataclass
class SeedResult:
    plans_created: List[str] = field(default_factory=list)
    plans_updated: List[str] = field(default_factory=list)
    feature_flags_created: List[str] = field(default_factory=list)
    feature_flags_updated: List[str] = field(default_factory=list)
    trial_configured: bool = False

    def to_dict(self) -> dict:
        return {
            "plans_created": list(self.plans_created),
            "plans_updated": list(self.plans_updated),
            "feature_flags_created": list(self.feature_flags_created),
            "feature_flags_updated": list(self.feature_flags_updated),
            "trial_configured": self.trial_configured,
        }


def seed_catalog(
    db_session: Session,
    loader: PlanCatalogSeedLoader,
    dry_run: bool = False,
) -> SeedResult:
    """
    Upsert the seed catalog.

    With dry_run, reports what would change and writes nothing.
    """
    from backoffice.models.feature_flag import FeatureFlag
    from backoffice.services.plan_catalog import PlanCatalog

    catalog = PlanCatalog(db_session)
    result = SeedResult()

    for entry in loader.get_plans():
        slug = entry["slug"]
        fields = {key: entry[key] for key in _PLAN_FIELDS if key in entry}
        existing = catalog.repo.get_by_slug(slug)
        if existing is None:
            result.plans_created.append(slug)
            if not dry_run:
                catalog.create_plan(slug=slug, **fields)
        else:
            result.plans_updated.append(slug)
            if not dry_run:
                catalog.update_plan(existing.id, fields)

    for entry in loader.get_feature_flags():
        key = entry["key"]
        flag = db_session.query(FeatureFlag).filter(FeatureFlag.key == key).first()
        values = {
            "name": entry.get("name", key),
            "description": entry.get("description"),
            "category": entry.get("category") or key.split(".", 1)[0],
            "requires_permission": entry.get("requires_permission"),
            "is_active": entry.get("is_active", True),
        }
        if flag is None:
            result.feature_flags_created.append(key)
            if not dry_run:
                db_session.add(FeatureFlag(key=key, **values))
        else:
            result.feature_flags_updated.append(key)
            if not dry_run:
                for attr, value in values.items():
                    setattr(flag, attr, value)
    if not dry_run:
        db_session.commit()

    trial = loader.get_trial()
    if trial:
        result.trial_configured = True
        if not dry_run:
            trial_plan_id = None
            if trial.get("trial_plan"):
                trial_plan_id = catalog.get_by_slug(trial["trial_plan"]).id
            catalog.update_trial_configuration(
                enabled=trial.get("enabled"),
                days=trial.get("days"),
                trial_plan_id=trial_plan_id,
            )

    logger.info("Plan catalog seed applied", extra={"dry_run": dry_run, **result.to_dict()})
    return result
