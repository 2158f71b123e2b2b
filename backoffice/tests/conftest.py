"""
Root test configuration and fixtures.

Every test gets a fresh SQLite in-memory database (StaticPool, so all
sessions share the one connection) and a FixedClock, so expiry logic is
driven by advancing the clock rather than sleeping.

Shared fixtures:
- db_engine / db_session: isolated database per test
- clock: FixedClock at 2026-01-15 12:00 UTC
- settings: SubscriptionSettings with a test operator token
- plans: free / starter / pro / enterprise catalog, trial enabled on free
- make_tenant: factory for restaurants
- catalog / manager / resolver: services wired to the fixtures above
- temp_config_dir / make_yaml_config: YAML files for the seed loader
"""

import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from backoffice.config.settings import SubscriptionSettings
from backoffice.entitlements.audit import SubscriptionEventLogger
from backoffice.entitlements.resolver import EntitlementResolver
from backoffice.models.plan import Plan
from backoffice.models.tenant import Tenant, SubscriptionStatus
from backoffice.platform.clock import FixedClock
from backoffice.services.plan_catalog import PlanCatalog
from backoffice.services.temporal_overlay import TemporalOverlayManager

# Set test environment
os.environ.setdefault("ENV", "test")

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
TEST_OPERATOR_TOKEN = "test-operator-token"


@pytest.fixture
def db_engine():
    """SQLite in-memory engine with all tables created."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from backoffice.db_base import Base
    import backoffice.models  # noqa: F401 - registers all model metadata

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def settings() -> SubscriptionSettings:
    return SubscriptionSettings(
        baseline_plan_slug="free",
        max_batch_size=5,
        quota_warning_threshold_pct=80,
        sweep_poll_interval_seconds=60,
        admin_api_token=TEST_OPERATOR_TOKEN,
    )


# =============================================================================
# Catalog and restaurant helpers
# =============================================================================


def create_plan(
    db: Session,
    slug: str,
    features=None,
    limits=None,
    price_monthly="0",
    **extra,
) -> Plan:
    plan = Plan(
        slug=slug,
        name=slug.replace("-", " ").title(),
        price_monthly=Decimal(price_monthly),
        price_yearly=Decimal(price_monthly) * 10,
        features=list(features or []),
        limits=dict(limits or {}),
        **extra,
    )
    db.add(plan)
    db.commit()
    return plan


def create_tenant(
    db: Session,
    name: str = "Trattoria Test",
    plan: Plan = None,
    status: str = SubscriptionStatus.ACTIVE.value,
    **extra,
) -> Tenant:
    tenant = Tenant(
        name=name,
        owner_email=f"{name.lower().replace(' ', '.')}@example.com",
        subscription_plan_id=plan.id if plan is not None else None,
        subscription_status=status,
        **extra,
    )
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def plans(db_session) -> dict:
    """
    Baseline catalog:
    - free: analytics.basic, small limits, trial enabled (14 days of pro)
    - starter: menu.* and orders.*
    - pro: analytics.* plus staff.manage
    - enterprise: everything
    """
    free = create_plan(
        db_session, "free",
        features=["analytics.basic", "menu.view"],
        limits={"staff_members": 1, "products": 50, "tables": 5},
        price_monthly="0",
    )
    starter = create_plan(
        db_session, "starter",
        features=["menu.*", "orders.*", "analytics.basic"],
        limits={"staff_members": 3, "products": 200, "tables": 20},
        price_monthly="19.00",
        sort_order=1,
    )
    pro = create_plan(
        db_session, "pro",
        features=["menu.*", "orders.*", "analytics.*", "staff.manage"],
        limits={"staff_members": 10, "products": -1, "tables": 50},
        price_monthly="49.00",
        sort_order=2,
    )
    enterprise = create_plan(
        db_session, "enterprise",
        features=["*"],
        limits={"staff_members": -1, "products": -1, "tables": -1},
        price_monthly="99.00",
        sort_order=3,
    )
    free.trial_enabled = True
    free.trial_days = 14
    free.trial_plan_id = pro.id
    db_session.commit()
    return {"free": free, "starter": starter, "pro": pro, "enterprise": enterprise}


@pytest.fixture
def make_tenant(db_session):
    """Factory: make_tenant(name=..., plan=..., status=..., **columns)."""
    def _make(name: str = "Trattoria Test", plan: Plan = None, **kwargs) -> Tenant:
        return create_tenant(db_session, name=name, plan=plan, **kwargs)
    return _make


@pytest.fixture
def events(db_session, clock) -> SubscriptionEventLogger:
    return SubscriptionEventLogger(db_session, clock)


@pytest.fixture
def catalog(db_session, settings, events) -> PlanCatalog:
    return PlanCatalog(db_session, settings=settings, events=events)


@pytest.fixture
def manager(db_session, catalog, clock, events, settings) -> TemporalOverlayManager:
    return TemporalOverlayManager(
        db_session,
        catalog=catalog,
        clock=clock,
        events=events,
        settings=settings,
    )


@pytest.fixture
def resolver(db_session, events, settings) -> EntitlementResolver:
    return EntitlementResolver(db_session, events=events, settings=settings)


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow-running")


# =============================================================================
# Shared Config Fixtures
# =============================================================================


@pytest.fixture
def temp_config_dir():
    """Create a temporary directory for YAML config files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_yaml_config(temp_config_dir):
    """
    Factory fixture that writes a YAML config file and returns its path.

    Usage:
        config_path = make_yaml_config("plans.yml", {"plans": [...]})
    """
    def _make(filename: str, config: dict) -> Path:
        config_path = temp_config_dir / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make
