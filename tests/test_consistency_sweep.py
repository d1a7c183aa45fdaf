"""Tests for ConsistencySweeper."""

import pytest
from structlog.testing import capture_logs

from homeplus.exceptions import PartialWriteError
from homeplus.repositories.interfaces import HOUSEHOLDS, USERS
from homeplus.services.consistency import Link


@pytest.fixture
async def shared(membership, household, bob, sign_in):
    await sign_in(bob)
    await membership.join(household.invite_code, bob.uid)
    return household


class TestSweep:
    async def test_consistent_store(self, sweeper, shared):
        report = await sweeper.sweep()

        assert report.is_consistent
        assert report.households_scanned == 1
        assert report.users_scanned == 2
        assert report.repaired == 0

    async def test_empty_store(self, sweeper):
        report = await sweeper.sweep()

        assert report.is_consistent
        assert report.households_scanned == 0

    async def test_repairs_missing_back_reference_after_failed_join(
        self, store, registry, membership, sweeper, household, bob, sign_in
    ):
        await sign_in(bob)
        store.fail_user_writes = True
        with pytest.raises(PartialWriteError):
            await membership.join(household.invite_code, bob.uid)
        store.fail_user_writes = False

        report = await sweeper.sweep()

        assert report.missing_backrefs == [Link(bob.uid, household.id)]
        assert report.repaired == 1
        assert (await registry.get_user_profile(bob.uid)).household_ids == [household.id]
        assert (await sweeper.sweep()).is_consistent

    async def test_removes_back_reference_to_deleted_household(
        self, store, registry, sweeper, shared, bob
    ):
        await store.delete(HOUSEHOLDS, shared.id)

        report = await sweeper.sweep()

        assert Link(bob.uid, shared.id) in report.dangling_backrefs
        assert (await registry.get_user_profile(bob.uid)).household_ids == []

    async def test_removes_back_reference_without_member_entry(
        self, store, registry, sweeper, shared, bob
    ):
        await store.delete_field(HOUSEHOLDS, shared.id, f"members.{bob.uid}")

        report = await sweeper.sweep()

        assert report.dangling_backrefs == [Link(bob.uid, shared.id)]
        assert (await registry.get_user_profile(bob.uid)).household_ids == []

    async def test_orphan_members_are_reported_only(
        self, store, registry, sweeper, shared, bob
    ):
        await store.delete(USERS, bob.uid)

        with capture_logs() as logs:
            report = await sweeper.sweep()

        assert report.orphan_members == [Link(bob.uid, shared.id)]
        assert not report.is_consistent
        assert (await registry.get_household(shared.id)).is_member(bob.uid)
        assert any(log["event"] == "orphan_member" for log in logs)

    async def test_dry_run_changes_nothing(self, store, registry, sweeper, shared, bob):
        await store.remove_from_set_field(USERS, bob.uid, "householdIds", shared.id)

        report = await sweeper.sweep(repair=False)

        assert report.missing_backrefs == [Link(bob.uid, shared.id)]
        assert report.repaired == 0
        assert (await registry.get_user_profile(bob.uid)).household_ids == []

    async def test_logs_summary(self, sweeper, shared):
        with capture_logs() as logs:
            await sweeper.sweep()

        entry = next(log for log in logs if log["event"] == "consistency_sweep_finished")
        assert entry["households"] == 1
        assert entry["users"] == 2


def run_before_user_scan(monkeypatch, store, action):
    """Run action once, after the households are read and before the users are."""
    list_all = store.list_all
    action_holder = {"action": action}

    async def once(collection):
        if collection == USERS and "action" in action_holder:
            await action_holder.pop("action")()
        return await list_all(collection)

    monkeypatch.setattr(store, "list_all", once)


class TestSweepOverlappingWrites:
    async def test_join_between_scans_keeps_back_reference(
        self, monkeypatch, store, registry, membership, sweeper, household, bob, sign_in
    ):
        await sign_in(bob)
        run_before_user_scan(
            monkeypatch, store, lambda: membership.join(household.invite_code, bob.uid)
        )

        with capture_logs() as logs:
            report = await sweeper.sweep()

        assert report.dangling_backrefs == [Link(bob.uid, household.id)]
        assert report.repaired == 0
        assert (await registry.get_household(household.id)).is_member(bob.uid)
        assert (await registry.get_user_profile(bob.uid)).household_ids == [household.id]
        assert any(log["event"] == "repair_skipped_stale" for log in logs)
        assert (await sweeper.sweep()).is_consistent

    async def test_leave_between_scans_does_not_restore_back_reference(
        self, monkeypatch, store, registry, membership, sweeper, shared, bob
    ):
        run_before_user_scan(
            monkeypatch, store, lambda: membership.leave_household(shared.id, bob.uid)
        )

        report = await sweeper.sweep()

        assert report.missing_backrefs == [Link(bob.uid, shared.id)]
        assert report.repaired == 0
        assert not (await registry.get_household(shared.id)).is_member(bob.uid)
        assert (await registry.get_user_profile(bob.uid)).household_ids == []
        assert (await sweeper.sweep()).is_consistent
