"""Tests for MembershipManager: joining, leaving and removing members."""

from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from homeplus.domain.households import MemberRole, MemberStatus, Membership
from homeplus.exceptions import (
    AlreadyMemberError,
    CapacityExceededError,
    FounderProtectedError,
    HouseholdNotFoundError,
    IdentityMismatchError,
    InvalidInputError,
    InviteCodeExpiredError,
    InviteCodeNotFoundError,
    MemberNotFoundError,
    NotAuthenticatedError,
    NotHouseholdAdminError,
    PartialWriteError,
    UserNotFoundError,
    WriteContentionError,
)
from homeplus.repositories.households import membership_to_document
from homeplus.repositories.interfaces import HOUSEHOLDS, USERS


def concurrent_join(store, household_id, user_id, clock):
    """A write from another client adding user_id to the member map."""

    async def write():
        membership = Membership(role=MemberRole.MEMBER, joined_at=clock())
        await store.update_fields(
            HOUSEHOLDS, household_id, {f"members.{user_id}": membership_to_document(membership)}
        )

    return write


class TestAppartCentreVilleScenario:
    async def test_create_join_regenerate_and_leave(
        self, registry, membership, household, alice, bob, sign_in
    ):
        await sign_in(bob)
        joined = await membership.join(household.invite_code, bob.uid, "Bob")

        assert joined.member_count == 2
        assert joined.members[bob.uid].role == MemberRole.MEMBER
        assert (await registry.get_user_profile(bob.uid)).household_ids == [household.id]

        await sign_in(alice)
        new_code = await registry.regenerate_invite_code(household.id, alice.uid)
        assert new_code != household.invite_code

        await sign_in(bob)
        with pytest.raises(InviteCodeNotFoundError):
            await membership.join(household.invite_code, bob.uid)

        await membership.leave_household(household.id, bob.uid)

        after = await registry.get_household(household.id)
        assert list(after.members) == [alice.uid]
        assert (await registry.get_user_profile(bob.uid)).household_ids == []


class TestJoin:
    async def test_adds_active_member_and_back_reference(
        self, registry, membership, household, bob, sign_in, clock
    ):
        await sign_in(bob)

        joined = await membership.join(household.invite_code, bob.uid, "Bob")

        member = joined.members[bob.uid]
        assert member.role == MemberRole.MEMBER
        assert member.status == MemberStatus.ACTIVE
        assert member.joined_at == clock.now
        assert member.display_name == "Bob"
        assert (await registry.get_user_profile(bob.uid)).belongs_to(household.id)

    async def test_returns_fresh_household(self, registry, membership, household, bob, sign_in):
        await sign_in(bob)

        joined = await membership.join(household.invite_code, bob.uid)

        assert joined == await registry.get_household(household.id)

    async def test_accepts_untidy_code(self, membership, household, bob, sign_in):
        await sign_in(bob)

        joined = await membership.join(f" {household.invite_code.lower()}\n", bob.uid)

        assert joined.is_member(bob.uid)

    async def test_unknown_code(self, membership, household, bob, sign_in):
        await sign_in(bob)

        with pytest.raises(InviteCodeNotFoundError):
            await membership.join("ZZZZZZ", bob.uid)

    async def test_malformed_code_is_not_found(self, membership, household, bob, sign_in):
        await sign_in(bob)

        with pytest.raises(InviteCodeNotFoundError):
            await membership.join("hello!", bob.uid)

    async def test_code_valid_until_just_before_expiry(
        self, membership, household, bob, sign_in, clock
    ):
        await sign_in(bob)
        clock.advance(days=7, seconds=-1)

        joined = await membership.join(household.invite_code, bob.uid)

        assert joined.is_member(bob.uid)

    async def test_expired_code_rejected(
        self, registry, membership, household, bob, sign_in, clock
    ):
        await sign_in(bob)
        clock.advance(days=7)

        with pytest.raises(InviteCodeExpiredError):
            await membership.join(household.invite_code, bob.uid)

        assert (await registry.get_household(household.id)).member_count == 1
        assert (await registry.get_user_profile(bob.uid)).household_ids == []

    async def test_regenerated_code_is_valid_again(
        self, registry, membership, household, alice, bob, sign_in, clock
    ):
        clock.advance(days=10)
        await sign_in(alice)
        code = await registry.regenerate_invite_code(household.id, alice.uid)

        await sign_in(bob)
        joined = await membership.join(code, bob.uid)

        assert joined.is_member(bob.uid)

    async def test_household_without_expiry_accepts_code(
        self, store, membership, household, bob, sign_in, clock
    ):
        await store.update_fields(HOUSEHOLDS, household.id, {"inviteCodeExpiry": None})
        clock.advance(days=365)
        await sign_in(bob)

        joined = await membership.join(household.invite_code, bob.uid)

        assert joined.is_member(bob.uid)

    async def test_already_member(self, registry, membership, household, alice, sign_in):
        await sign_in(alice)

        with pytest.raises(AlreadyMemberError):
            await membership.join(household.invite_code, alice.uid)

        profile = await registry.get_user_profile(alice.uid)
        assert profile.household_ids == [household.id]

    async def test_already_member_checked_after_expiry(
        self, membership, household, alice, sign_in, clock
    ):
        await sign_in(alice)
        clock.advance(days=8)

        with pytest.raises(InviteCodeExpiredError):
            await membership.join(household.invite_code, alice.uid)

    async def test_capacity_of_ten(
        self, registry, membership, household, register_user, sign_in
    ):
        for i in range(9):
            user = await register_user(f"Member{i}")
            await membership.join(household.invite_code, user.uid)
        assert (await registry.get_household(household.id)).member_count == 10

        eleventh = await register_user("Eleventh")
        with pytest.raises(CapacityExceededError) as exc_info:
            await membership.join(household.invite_code, eleventh.uid)

        assert exc_info.value.context["max_members"] == 10
        assert (await registry.get_household(household.id)).member_count == 10
        assert (await registry.get_user_profile(eleventh.uid)).household_ids == []

    async def test_requires_signed_in_user(self, membership, identity, household, bob):
        await identity.logout()

        with pytest.raises(NotAuthenticatedError):
            await membership.join(household.invite_code, bob.uid)

    async def test_cannot_join_on_behalf_of_someone_else(
        self, registry, membership, household, bob, carol, sign_in
    ):
        await sign_in(carol)

        with pytest.raises(IdentityMismatchError):
            await membership.join(household.invite_code, bob.uid)

        assert not (await registry.get_household(household.id)).is_member(bob.uid)

    async def test_user_without_profile_rejected(
        self, registry, store, membership, household, bob, sign_in
    ):
        await sign_in(bob)
        await store.delete(USERS, bob.uid)

        with pytest.raises(UserNotFoundError):
            await membership.join(household.invite_code, bob.uid)

        assert (await registry.get_household(household.id)).member_count == 1

    async def test_logs_join(self, membership, household, bob, sign_in):
        await sign_in(bob)

        with capture_logs() as logs:
            await membership.join(household.invite_code, bob.uid)

        entry = next(log for log in logs if log["event"] == "member_joined")
        assert entry["household_id"] == household.id
        assert entry["user_id"] == bob.uid
        assert entry["member_count"] == 2


class TestJoinUnderContention:
    async def test_conflict_is_retried(
        self, store, registry, membership, household, bob, carol, sign_in, clock
    ):
        store.interleaved_writes.append(concurrent_join(store, household.id, carol.uid, clock))
        await sign_in(bob)

        with capture_logs() as logs:
            joined = await membership.join(household.invite_code, bob.uid)

        assert joined.is_member(bob.uid)
        assert joined.is_member(carol.uid)
        assert [log["event"] for log in logs].count("membership_write_conflict") == 1

    async def test_capacity_rechecked_after_conflict(
        self, store, registry, membership, household, register_user, clock
    ):
        for i in range(8):
            user = await register_user(f"Member{i}")
            await membership.join(household.invite_code, user.uid)
        racer = await register_user("Racer")
        late = await register_user("Late")
        store.interleaved_writes.append(concurrent_join(store, household.id, racer.uid, clock))

        with pytest.raises(CapacityExceededError):
            await membership.join(household.invite_code, late.uid)

        stored = await registry.get_household(household.id)
        assert stored.member_count == 10
        assert not stored.is_member(late.uid)

    async def test_persistent_contention_gives_up(
        self, store, settings, membership, household, bob, sign_in
    ):
        async def rename():
            await store.update_fields(HOUSEHOLDS, household.id, {"name": "Busy"})

        store.interleaved_writes.extend([rename] * settings.membership_write_retries)
        await sign_in(bob)

        with pytest.raises(WriteContentionError) as exc_info:
            await membership.join(household.invite_code, bob.uid)

        assert exc_info.value.context["attempts"] == settings.membership_write_retries

    async def test_back_reference_failure_is_partial_write(
        self, store, registry, membership, household, bob, sign_in
    ):
        await sign_in(bob)
        store.fail_user_writes = True

        with pytest.raises(PartialWriteError) as exc_info:
            await membership.join(household.invite_code, bob.uid)

        assert exc_info.value.context["operation"] == "join"
        assert (await registry.get_household(household.id)).is_member(bob.uid)
        assert (await registry.get_user_profile(bob.uid)).household_ids == []


@pytest.fixture
async def shared(membership, household, bob, sign_in):
    """Household with Alice (founder) and Bob (member); Bob is signed in."""
    await sign_in(bob)
    await membership.join(household.invite_code, bob.uid)
    return household


class TestRemoveMember:
    async def test_admin_removes_member_from_both_sides(
        self, registry, membership, shared, alice, bob, sign_in
    ):
        await sign_in(alice)

        await membership.remove_member(shared.id, bob.uid, alice.uid)

        assert not (await registry.get_household(shared.id)).is_member(bob.uid)
        assert (await registry.get_user_profile(bob.uid)).household_ids == []

    async def test_non_admin_cannot_remove(self, membership, shared, alice, bob, sign_in):
        await sign_in(bob)

        with pytest.raises(NotHouseholdAdminError):
            await membership.remove_member(shared.id, alice.uid, bob.uid)

    async def test_founder_cannot_be_removed(
        self, registry, membership, shared, alice, bob, sign_in
    ):
        await sign_in(alice)

        with pytest.raises(FounderProtectedError):
            await membership.remove_member(shared.id, alice.uid, alice.uid)

        assert (await registry.get_household(shared.id)).is_member(alice.uid)

    async def test_target_must_be_member(self, membership, shared, alice, carol, sign_in):
        await sign_in(alice)

        with pytest.raises(MemberNotFoundError):
            await membership.remove_member(shared.id, carol.uid, alice.uid)

    async def test_unknown_household(self, membership, shared, alice, bob, sign_in):
        await sign_in(alice)

        with pytest.raises(HouseholdNotFoundError):
            await membership.remove_member("missing", bob.uid, alice.uid)

    async def test_removing_member_without_profile(
        self, store, registry, membership, shared, alice, bob, sign_in
    ):
        await store.delete(USERS, bob.uid)
        await sign_in(alice)

        with capture_logs() as logs:
            await membership.remove_member(shared.id, bob.uid, alice.uid)

        assert not (await registry.get_household(shared.id)).is_member(bob.uid)
        assert any(log["event"] == "member_profile_missing" for log in logs)

    async def test_back_reference_failure_is_partial_write(
        self, store, registry, membership, shared, alice, bob, sign_in
    ):
        await sign_in(alice)
        store.fail_user_writes = True

        with pytest.raises(PartialWriteError):
            await membership.remove_member(shared.id, bob.uid, alice.uid)

        assert not (await registry.get_household(shared.id)).is_member(bob.uid)
        assert (await registry.get_user_profile(bob.uid)).household_ids == [shared.id]


class TestLeaveHousehold:
    async def test_member_leaves(self, registry, membership, shared, bob, sign_in):
        await sign_in(bob)

        await membership.leave_household(shared.id, bob.uid)

        assert not (await registry.get_household(shared.id)).is_member(bob.uid)
        assert (await registry.get_user_profile(bob.uid)).household_ids == []

    async def test_founder_cannot_leave(self, registry, membership, shared, alice, sign_in):
        await sign_in(alice)

        with pytest.raises(FounderProtectedError):
            await membership.leave_household(shared.id, alice.uid)

        assert (await registry.get_user_profile(alice.uid)).household_ids == [shared.id]

    async def test_non_member_cannot_leave(self, membership, shared, carol, sign_in):
        await sign_in(carol)

        with pytest.raises(MemberNotFoundError):
            await membership.leave_household(shared.id, carol.uid)

    async def test_cannot_leave_for_someone_else(self, membership, shared, bob, carol, sign_in):
        await sign_in(carol)

        with pytest.raises(IdentityMismatchError):
            await membership.leave_household(shared.id, bob.uid)

    async def test_rejoin_after_leaving(self, membership, shared, bob, sign_in):
        await sign_in(bob)
        await membership.leave_household(shared.id, bob.uid)

        rejoined = await membership.join(shared.invite_code, bob.uid)

        assert rejoined.is_member(bob.uid)


class TestSetMemberStatus:
    async def test_admin_deactivates_member(
        self, registry, membership, shared, alice, bob, sign_in
    ):
        await sign_in(alice)

        updated = await membership.set_member_status(shared.id, bob.uid, "inactive", alice.uid)

        assert updated.members[bob.uid].status == MemberStatus.INACTIVE
        stored = await registry.get_household(shared.id)
        assert stored.members[bob.uid].status == MemberStatus.INACTIVE
        assert stored.is_member(bob.uid)

    async def test_founder_stays_active(self, membership, shared, alice, sign_in):
        await sign_in(alice)

        with pytest.raises(FounderProtectedError):
            await membership.set_member_status(shared.id, alice.uid, "inactive", alice.uid)

    async def test_non_admin_rejected(self, membership, shared, alice, bob, sign_in):
        await sign_in(bob)

        with pytest.raises(NotHouseholdAdminError):
            await membership.set_member_status(shared.id, alice.uid, "active", bob.uid)

    async def test_unknown_status_rejected(self, membership, shared, alice, bob, sign_in):
        await sign_in(alice)

        with pytest.raises(InvalidInputError):
            await membership.set_member_status(shared.id, bob.uid, "away", alice.uid)

    async def test_conflict_is_retried(
        self, store, registry, membership, shared, alice, bob, carol, sign_in, clock
    ):
        store.interleaved_writes.append(concurrent_join(store, shared.id, carol.uid, clock))
        await sign_in(alice)

        await membership.set_member_status(shared.id, bob.uid, MemberStatus.INACTIVE, alice.uid)

        stored = await registry.get_household(shared.id)
        assert stored.members[bob.uid].status == MemberStatus.INACTIVE
        assert stored.is_member(carol.uid)


class TestExpiryBoundary:
    async def test_expiry_is_seven_days_after_creation(self, household, clock):
        assert household.invite_code_expiry - household.created_at == timedelta(days=7)
