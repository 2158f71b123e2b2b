"""
Tests for the temporal overlay manager.

Tests cover:
- Temporary upgrade round trip (grant, restore, idempotent restore)
- Replacement of an active overlay (snapshot inherited)
- Input validation before any write
- Batch grants with partial failure and the batch ceiling
- Restaurant selection filters
- Trial assignment and the free-plan fallback
- Demotion on trial / subscription expiry
- Operator status and plan changes
"""

from datetime import datetime, timedelta, timezone

import pytest

from backoffice.entitlements.errors import (
    BatchTooLargeError,
    InvalidInputError,
    OverlayNotFoundError,
    PlanNotFoundError,
    TenantNotFoundError,
    TrialAlreadyUsedError,
)
from backoffice.models.subscription_event import SubscriptionEventType
from backoffice.models.temporary_upgrade import TemporaryUpgrade
from backoffice.models.tenant import SubscriptionStatus
from backoffice.repositories.subscription_events_repo import SubscriptionEventsRepository
from backoffice.repositories.tenants_repo import TenantFilter

from conftest import T0


def _events(db_session, restaurant_id, event_type):
    return SubscriptionEventsRepository(db_session).list_recent(
        restaurant_id=restaurant_id, event_type=event_type
    )


def _active_overlays(db_session, restaurant_id):
    return (
        db_session.query(TemporaryUpgrade)
        .filter(
            TemporaryUpgrade.restaurant_id == restaurant_id,
            TemporaryUpgrade.is_active == True,  # noqa: E712
        )
        .all()
    )


# =============================================================================
# Temporary upgrades
# =============================================================================


class TestTemporaryUpgradeRoundTrip:

    def test_restore_keeps_subscription_expiry(self, manager, plans, make_tenant):
        ends = T0 + timedelta(days=30)
        tenant = make_tenant(plan=plans["starter"], subscription_expires_at=ends)
        overlay = manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 7)

        manager.restore_original_plan(overlay.id)

        assert tenant.subscription_plan_id == plans["starter"].id
        assert tenant.subscription_expires_at == ends

    def test_grant_swaps_plan_and_keeps_status(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["starter"])

        overlay = manager.create_temporary_upgrade(
            tenant.id, plans["enterprise"].id, 7, reason="festival", created_by="ops@example.com"
        )

        assert tenant.subscription_plan_id == plans["enterprise"].id
        assert tenant.subscription_status == SubscriptionStatus.ACTIVE.value
        assert overlay.original_plan_id == plans["starter"].id
        assert overlay.original_status == SubscriptionStatus.ACTIVE.value
        assert overlay.temporary_plan_id == plans["enterprise"].id
        assert overlay.expires_at == T0 + timedelta(days=7)
        assert overlay.is_active is True
        assert overlay.created_by == "ops@example.com"

    def test_restore_writes_snapshot_back(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["starter"])
        overlay = manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 7)

        assert manager.restore_original_plan(overlay.id) is True

        assert tenant.subscription_plan_id == plans["starter"].id
        assert tenant.subscription_status == SubscriptionStatus.ACTIVE.value
        assert overlay.is_active is False
        assert overlay.deactivated_at is not None

        events = _events(db_session, tenant.id, SubscriptionEventType.TEMP_UPGRADE_EXPIRED)
        assert len(events) == 1
        assert events[0].event_data["trigger"] == "manual"
        assert events[0].event_data["original_plan_id"] == plans["starter"].id

    def test_restore_is_idempotent(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["starter"])
        overlay = manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 7)

        assert manager.restore_original_plan(overlay.id) is True
        assert manager.restore_original_plan(overlay.id) is False

        assert tenant.subscription_plan_id == plans["starter"].id
        assert len(_events(db_session, tenant.id, SubscriptionEventType.TEMP_UPGRADE_EXPIRED)) == 1

    def test_trial_status_survives_round_trip(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["free"])
        manager.assign_trial(tenant.id)
        assert tenant.subscription_status == SubscriptionStatus.TRIAL.value

        overlay = manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 3)
        assert tenant.subscription_status == SubscriptionStatus.TRIAL.value

        manager.restore_original_plan(overlay.id)
        assert tenant.subscription_plan_id == plans["pro"].id
        assert tenant.subscription_status == SubscriptionStatus.TRIAL.value

    def test_restaurant_without_plan_restores_to_none(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=None)
        overlay = manager.create_temporary_upgrade(tenant.id, plans["pro"].id, 1)
        assert overlay.original_plan_id is None

        manager.restore_original_plan(overlay.id)
        assert tenant.subscription_plan_id is None

    def test_restore_unknown_overlay(self, manager):
        with pytest.raises(OverlayNotFoundError):
            manager.restore_original_plan("no-such-overlay")

    def test_grant_event(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["free"])
        overlay = manager.create_temporary_upgrade(
            tenant.id, plans["pro"].id, 14, reason="onboarding", created_by="ops"
        )

        events = _events(db_session, tenant.id, SubscriptionEventType.TEMPORARY_UPGRADE)
        assert len(events) == 1
        data = events[0].event_data
        assert data["temporary_upgrade_id"] == overlay.id
        assert data["original_plan_id"] == plans["free"].id
        assert data["duration_days"] == 14
        assert data["reason"] == "onboarding"
        assert data["replaced_upgrade_id"] is None


class TestOverlappingUpgrades:
    """A second grant replaces the first and inherits its snapshot."""

    def test_replacement_keeps_nominal_snapshot(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["starter"])
        first = manager.create_temporary_upgrade(tenant.id, plans["pro"].id, 7)
        second = manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 30)

        assert first.is_active is False
        assert second.is_active is True
        assert second.original_plan_id == plans["starter"].id
        assert tenant.subscription_plan_id == plans["enterprise"].id
        assert [o.id for o in _active_overlays(db_session, tenant.id)] == [second.id]

        superseded = _events(db_session, tenant.id, SubscriptionEventType.TEMPORARY_UPGRADE_SUPERSEDED)
        assert len(superseded) == 1
        assert superseded[0].event_data == {
            "temporary_upgrade_id": first.id,
            "replaced_by": second.id,
        }

        manager.restore_original_plan(second.id)
        assert tenant.subscription_plan_id == plans["starter"].id

    def test_restoring_replaced_overlay_is_noop(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["starter"])
        first = manager.create_temporary_upgrade(tenant.id, plans["pro"].id, 7)
        manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 30)

        assert manager.restore_original_plan(first.id) is False
        assert tenant.subscription_plan_id == plans["enterprise"].id

    def test_nominal_plan_rejected_while_overlay_active(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["starter"])
        manager.create_temporary_upgrade(tenant.id, plans["pro"].id, 7)

        with pytest.raises(InvalidInputError):
            manager.create_temporary_upgrade(tenant.id, plans["starter"].id, 7)


class TestTemporaryUpgradeValidation:

    def test_same_plan_rejected(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["pro"])
        with pytest.raises(InvalidInputError):
            manager.create_temporary_upgrade(tenant.id, plans["pro"].id, 7)
        assert _active_overlays(db_session, tenant.id) == []

    @pytest.mark.parametrize("duration", [0, -1, True, 1.5, "7"])
    def test_duration_must_be_positive_int(self, manager, plans, make_tenant, duration):
        tenant = make_tenant(plan=plans["free"])
        with pytest.raises(InvalidInputError):
            manager.create_temporary_upgrade(tenant.id, plans["pro"].id, duration)

    def test_inactive_plan_rejected(self, manager, catalog, plans, make_tenant):
        catalog.soft_delete_plan(plans["starter"].id)
        tenant = make_tenant(plan=plans["free"])
        with pytest.raises(InvalidInputError):
            manager.create_temporary_upgrade(tenant.id, plans["starter"].id, 7)

    def test_unknown_plan(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["free"])
        with pytest.raises(PlanNotFoundError):
            manager.create_temporary_upgrade(tenant.id, "no-such-plan", 7)

    def test_unknown_restaurant(self, manager, plans):
        with pytest.raises(TenantNotFoundError):
            manager.create_temporary_upgrade("no-such-restaurant", plans["pro"].id, 7)


class TestActiveOverlayQueries:

    def test_active_overlay_hidden_once_expired(self, manager, plans, make_tenant, clock):
        tenant = make_tenant(plan=plans["free"])
        overlay = manager.create_temporary_upgrade(tenant.id, plans["pro"].id, 2)

        assert manager.get_active_temporary_upgrade(tenant.id).id == overlay.id

        clock.advance(days=2, seconds=1)
        assert manager.get_active_temporary_upgrade(tenant.id) is None

    def test_list_filters(self, manager, plans, make_tenant):
        a = make_tenant("Alpha", plan=plans["free"])
        b = make_tenant("Bravo", plan=plans["free"])
        first = manager.create_temporary_upgrade(a.id, plans["pro"].id, 2)
        manager.restore_original_plan(first.id)
        manager.create_temporary_upgrade(a.id, plans["pro"].id, 2)
        manager.create_temporary_upgrade(b.id, plans["pro"].id, 2)

        assert len(manager.list_temporary_upgrades()) == 3
        assert len(manager.list_temporary_upgrades(tenant_id=a.id)) == 2
        assert len(manager.list_temporary_upgrades(tenant_id=a.id, active_only=True)) == 1
        assert len(manager.list_temporary_upgrades(limit=1)) == 1


# =============================================================================
# Batch grants
# =============================================================================


class TestMassTemporaryUpgrades:

    def test_partial_failure_does_not_abort(self, manager, plans, make_tenant, db_session):
        ok_1 = make_tenant("One", plan=plans["free"])
        already = make_tenant("Two", plan=plans["enterprise"])
        ok_2 = make_tenant("Three", plan=plans["starter"])

        result = manager.create_mass_temporary_upgrades(
            [ok_1.id, already.id, "missing-id", ok_2.id],
            plans["enterprise"].id,
            7,
            reason="spring promo",
        )

        assert result.succeeded == [ok_1.id, ok_2.id]
        assert [f["restaurant_id"] for f in result.failed] == [already.id, "missing-id"]
        assert all(f["error"] for f in result.failed)

        assert ok_1.subscription_plan_id == plans["enterprise"].id
        assert ok_2.subscription_plan_id == plans["enterprise"].id
        assert _active_overlays(db_session, already.id) == []

        summary = result.to_dict()
        assert summary["succeeded_count"] == 2
        assert summary["failed_count"] == 2

    def test_duplicates_processed_once(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["free"])
        result = manager.create_mass_temporary_upgrades(
            [tenant.id, tenant.id], plans["pro"].id, 7
        )
        assert result.succeeded == [tenant.id]
        assert result.failed == []

    def test_batch_ceiling(self, manager, plans, make_tenant, db_session):
        tenants = [make_tenant(f"R{i}", plan=plans["free"]) for i in range(6)]

        with pytest.raises(BatchTooLargeError) as exc_info:
            manager.create_mass_temporary_upgrades([t.id for t in tenants], plans["pro"].id, 7)

        assert exc_info.value.details == {"size": 6, "max_size": 5}
        assert db_session.query(TemporaryUpgrade).count() == 0

    def test_invalid_duration_fails_every_item(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["free"])
        result = manager.create_mass_temporary_upgrades([tenant.id], plans["pro"].id, 0)
        assert result.succeeded == []
        assert len(result.failed) == 1


class TestSelectTenantIds:

    @pytest.fixture
    def restaurants(self, plans, make_tenant):
        return {
            "free_active": make_tenant("Osteria Uno", plan=plans["free"]),
            "free_cancelled": make_tenant(
                "Bistro Due", plan=plans["free"], status=SubscriptionStatus.CANCELLED.value
            ),
            "pro": make_tenant("Taverna Tre", plan=plans["pro"]),
            "none": make_tenant("Osteria Quattro", plan=None),
        }

    def test_by_plan(self, manager, plans, restaurants):
        ids = manager.select_tenant_ids(TenantFilter(plan_id=plans["free"].id))
        assert set(ids) == {restaurants["free_active"].id, restaurants["free_cancelled"].id}

    def test_no_plan(self, manager, restaurants):
        assert manager.select_tenant_ids(TenantFilter(no_plan=True)) == [restaurants["none"].id]

    def test_by_plan_and_status(self, manager, plans, restaurants):
        ids = manager.select_tenant_ids(TenantFilter(
            plan_id=plans["free"].id, status=SubscriptionStatus.CANCELLED.value
        ))
        assert ids == [restaurants["free_cancelled"].id]

    def test_search_is_case_insensitive(self, manager, restaurants):
        ids = manager.select_tenant_ids(TenantFilter(search="OSTERIA"))
        assert set(ids) == {restaurants["free_active"].id, restaurants["none"].id}

    def test_search_matches_email(self, manager, restaurants):
        ids = manager.select_tenant_ids(TenantFilter(search="taverna.tre@"))
        assert ids == [restaurants["pro"].id]

    def test_plan_and_no_plan_conflict(self, manager, plans, restaurants):
        with pytest.raises(InvalidInputError):
            manager.select_tenant_ids(TenantFilter(plan_id=plans["free"].id, no_plan=True))


# =============================================================================
# Trials
# =============================================================================


class TestAssignTrial:

    def test_trial_closes_active_temporary_upgrade(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["free"])
        overlay = manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 7)

        manager.assign_trial(tenant.id)

        assert overlay.is_active is False
        assert _active_overlays(db_session, tenant.id) == []
        assert tenant.subscription_plan_id == plans["pro"].id
        events = _events(db_session, tenant.id, SubscriptionEventType.TRIAL_STARTED)
        assert events[0].event_data["closed_temporary_upgrade_id"] == overlay.id

    def test_free_plan_closes_active_temporary_upgrade(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["starter"], subscription_expires_at=T0 + timedelta(days=3))
        overlay = manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 7)

        manager.assign_free_plan(tenant.id)

        assert overlay.is_active is False
        assert _active_overlays(db_session, tenant.id) == []
        assert tenant.subscription_plan_id == plans["free"].id
        assert tenant.subscription_expires_at is None
        events = _events(db_session, tenant.id, SubscriptionEventType.ASSIGNED)
        assert events[0].event_data["closed_temporary_upgrade_id"] == overlay.id

    def test_assign_trial(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=None)

        manager.assign_trial(tenant.id)

        assert tenant.subscription_plan_id == plans["pro"].id
        assert tenant.subscription_status == SubscriptionStatus.TRIAL.value
        assert tenant.subscription_trial_ends_at == T0 + timedelta(days=14)
        assert tenant.is_trial_used is True
        assert tenant.trial_days_remaining(T0) == 14

        events = _events(db_session, tenant.id, SubscriptionEventType.TRIAL_STARTED)
        assert len(events) == 1
        assert events[0].event_data["trial_days"] == 14

    def test_trial_only_once(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=None)
        manager.assign_trial(tenant.id)

        with pytest.raises(TrialAlreadyUsedError):
            manager.assign_trial(tenant.id)

    def test_disabled_trial_assigns_free_plan(self, manager, catalog, plans, make_tenant, db_session):
        catalog.update_trial_configuration(enabled=False)
        tenant = make_tenant(plan=None)

        manager.assign_trial(tenant.id)

        assert tenant.subscription_plan_id == plans["free"].id
        assert tenant.subscription_status == SubscriptionStatus.ACTIVE.value
        assert tenant.subscription_trial_ends_at is None
        assert tenant.is_trial_used is False

        events = _events(db_session, tenant.id, SubscriptionEventType.ASSIGNED)
        assert events[0].event_data["reason"] == "trial_disabled"

    def test_disabled_trial_still_rejects_used_trial(self, manager, catalog, plans, make_tenant):
        tenant = make_tenant(plan=plans["starter"], is_trial_used=True)
        catalog.update_trial_configuration(enabled=False)

        with pytest.raises(TrialAlreadyUsedError):
            manager.assign_trial(tenant.id)

    def test_inactive_trial_plan(self, manager, plans, make_tenant, db_session):
        plans["pro"].is_active = False
        db_session.commit()
        tenant = make_tenant(plan=None)

        with pytest.raises(InvalidInputError):
            manager.assign_trial(tenant.id)
        assert tenant.is_trial_used is False

    def test_unknown_restaurant(self, manager, plans):
        with pytest.raises(TenantNotFoundError):
            manager.assign_trial("no-such-restaurant")


# =============================================================================
# Demotion
# =============================================================================


class TestDowngrade:

    def test_trial_not_due(self, manager, plans, make_tenant, clock):
        tenant = make_tenant(plan=None)
        manager.assign_trial(tenant.id)

        clock.advance(days=13)
        assert manager.expire_trial_if_due(tenant.id) is False
        assert tenant.subscription_status == SubscriptionStatus.TRIAL.value

    def test_trial_due(self, manager, plans, make_tenant, clock, db_session):
        tenant = make_tenant(plan=None)
        manager.assign_trial(tenant.id)

        clock.advance(days=15)
        assert manager.expire_trial_if_due(tenant.id) is True

        assert tenant.subscription_plan_id == plans["free"].id
        assert tenant.subscription_status == SubscriptionStatus.ACTIVE.value
        assert tenant.subscription_trial_ends_at is None
        assert tenant.is_trial_used is True

        events = _events(db_session, tenant.id, SubscriptionEventType.DOWNGRADED)
        assert len(events) == 1
        assert events[0].event_data["reason"] == "trial_expired"
        assert events[0].event_data["previous_status"] == SubscriptionStatus.TRIAL.value

    def test_subscription_due(self, manager, plans, make_tenant):
        tenant = make_tenant(
            plan=plans["pro"], subscription_expires_at=T0 - timedelta(days=1)
        )
        assert manager.expire_subscription_if_due(tenant.id) is True
        assert tenant.subscription_plan_id == plans["free"].id
        assert tenant.subscription_expires_at is None

    def test_cancelled_subscription_is_not_demoted(self, manager, plans, make_tenant):
        tenant = make_tenant(
            plan=plans["pro"],
            status=SubscriptionStatus.CANCELLED.value,
            subscription_expires_at=T0 - timedelta(days=1),
        )
        assert manager.expire_subscription_if_due(tenant.id) is False
        assert tenant.subscription_plan_id == plans["pro"].id

    def test_downgrade_closes_active_overlay(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["starter"])
        overlay = manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 30)

        manager.downgrade_to_free(tenant.id, reason="chargeback")

        assert tenant.subscription_plan_id == plans["free"].id
        assert overlay.is_active is False
        assert manager.restore_original_plan(overlay.id) is False
        assert tenant.subscription_plan_id == plans["free"].id

        events = _events(db_session, tenant.id, SubscriptionEventType.DOWNGRADED)
        assert events[0].event_data["closed_temporary_upgrade_id"] == overlay.id


# =============================================================================
# Operator changes
# =============================================================================


class TestSetSubscriptionStatus:

    def test_status_change(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["pro"])

        manager.set_subscription_status(tenant.id, "suspended", reason="unpaid invoice")

        assert tenant.subscription_status == "suspended"
        events = _events(db_session, tenant.id, SubscriptionEventType.STATUS_CHANGED)
        assert events[0].event_data == {
            "previous_status": "active",
            "new_status": "suspended",
            "reason": "unpaid invoice",
        }

    def test_cancel(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["pro"])

        manager.cancel_subscription(tenant.id, reason="closing down")

        assert tenant.subscription_status == SubscriptionStatus.CANCELLED.value
        assert tenant.subscription_cancelled_at == T0
        assert len(_events(db_session, tenant.id, SubscriptionEventType.CANCELLED)) == 1

    def test_unchanged_status_records_nothing(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["pro"])
        manager.set_subscription_status(tenant.id, "active")
        assert _events(db_session, tenant.id, SubscriptionEventType.STATUS_CHANGED) == []

    @pytest.mark.parametrize("status", ["trial", "bogus", ""])
    def test_rejects_invalid_status(self, manager, plans, make_tenant, status):
        tenant = make_tenant(plan=plans["pro"])
        with pytest.raises(InvalidInputError):
            manager.set_subscription_status(tenant.id, status)

    def test_status_survives_overlay_restore(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["starter"])
        overlay = manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 7)

        manager.set_subscription_status(tenant.id, "suspended")
        assert overlay.original_status == "suspended"

        manager.restore_original_plan(overlay.id)
        assert tenant.subscription_status == "suspended"
        assert tenant.subscription_plan_id == plans["starter"].id


class TestChangePlan:

    def test_sets_subscription_expiry(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["free"])
        ends = T0 + timedelta(days=30)

        manager.change_plan(tenant.id, plans["pro"].id, expires_at=ends)

        assert tenant.subscription_expires_at == ends
        events = _events(db_session, tenant.id, SubscriptionEventType.UPGRADED)
        assert events[0].event_data["expires_at"] == ends.isoformat()

    def test_naive_expiry_read_as_utc(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["free"])
        manager.change_plan(tenant.id, plans["pro"].id, expires_at=datetime(2026, 3, 1))
        assert tenant.subscription_expires_at == datetime(2026, 3, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("offset", [timedelta(0), timedelta(days=-1)])
    def test_rejects_expiry_not_in_future(self, manager, plans, make_tenant, db_session, offset):
        tenant = make_tenant(plan=plans["free"])

        with pytest.raises(InvalidInputError):
            manager.change_plan(tenant.id, plans["pro"].id, expires_at=T0 + offset)

        assert tenant.subscription_plan_id == plans["free"].id
        assert _events(db_session, tenant.id, SubscriptionEventType.UPGRADED) == []

    def test_without_expiry_clears_previous_one(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["starter"], subscription_expires_at=T0 + timedelta(days=3))
        manager.change_plan(tenant.id, plans["pro"].id)
        assert tenant.subscription_expires_at is None

    def test_upgrade(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["free"])

        manager.change_plan(tenant.id, plans["pro"].id, reason="sales call")

        assert tenant.subscription_plan_id == plans["pro"].id
        assert tenant.subscription_started_at == T0
        events = _events(db_session, tenant.id, SubscriptionEventType.UPGRADED)
        assert events[0].event_data["old_plan_id"] == plans["free"].id
        assert events[0].event_data["new_plan_name"] == "Pro"

    def test_downgrade(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["pro"])
        manager.change_plan(tenant.id, plans["starter"].id)
        assert len(_events(db_session, tenant.id, SubscriptionEventType.DOWNGRADED)) == 1

    def test_same_plan_rejected(self, manager, plans, make_tenant):
        tenant = make_tenant(plan=plans["pro"])
        with pytest.raises(InvalidInputError):
            manager.change_plan(tenant.id, plans["pro"].id)

    def test_inactive_plan_rejected(self, manager, catalog, plans, make_tenant):
        catalog.soft_delete_plan(plans["starter"].id)
        tenant = make_tenant(plan=plans["free"])
        with pytest.raises(InvalidInputError):
            manager.change_plan(tenant.id, plans["starter"].id)

    def test_closes_active_overlay(self, manager, plans, make_tenant, db_session):
        tenant = make_tenant(plan=plans["free"])
        overlay = manager.create_temporary_upgrade(tenant.id, plans["enterprise"].id, 7)

        manager.change_plan(tenant.id, plans["pro"].id)

        assert overlay.is_active is False
        assert tenant.subscription_plan_id == plans["pro"].id
        assert _active_overlays(db_session, tenant.id) == []
