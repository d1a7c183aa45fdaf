"""Membership Manager: join, leave and removal of household members.

Each transition touches two documents: the household's member map and the
user's householdIds back-reference. The household write always goes first
and is awaited before the user write is issued. If the second write fails,
PartialWriteError is raised and the link stays broken until retried or
repaired by ConsistencySweeper.

The admission checks (expiry, duplicate member, capacity) and the member
insert form one conditional write on the household document: the insert is
applied only if the document version is still the one the checks ran
against, otherwise the household is re-read and the checks re-run.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from homeplus.config import Settings, get_settings
from homeplus.domain.households import (
    Household,
    MemberRole,
    MemberStatus,
    Membership,
    validate_user_id,
)
from homeplus.domain.invite_codes import is_valid_invite_code, normalize_invite_code
from homeplus.exceptions import (
    AlreadyMemberError,
    CapacityExceededError,
    DocumentNotFoundError,
    FounderProtectedError,
    HouseholdNotFoundError,
    InviteCodeExpiredError,
    InviteCodeNotFoundError,
    MemberNotFoundError,
    NotHouseholdAdminError,
    PartialWriteError,
    StorageFailureError,
    UserNotFoundError,
    VersionConflictError,
    WriteContentionError,
)
from homeplus.logging_config import get_logger
from homeplus.repositories.households import HouseholdRepository, UserProfileRepository
from homeplus.repositories.interfaces import DocumentStore
from homeplus.services.identity import IdentityProvider, require_identity

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class MembershipManager:
    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityProvider,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._households = HouseholdRepository(store)
        self._users = UserProfileRepository(store)
        self._identity = identity
        self._settings = settings or get_settings()
        self._clock = clock

    async def join(
        self, invite_code: str, user_id: str, display_name: str | None = None
    ) -> Household:
        """Join the household carrying invite_code as a plain member.

        Returns the household re-read after both writes.

        Raises:
            InviteCodeNotFoundError: no household has this code.
            InviteCodeExpiredError: the code's validity window is over.
            AlreadyMemberError: user_id is already in the member map.
            CapacityExceededError: the household is at settings.max_members.
            UserNotFoundError: the user has no profile to hold the back-reference.
            WriteContentionError: concurrent writers kept winning the race.
            PartialWriteError: the member was added but the back-reference failed.
        """
        validate_user_id(user_id)
        require_identity(self._identity, user_id)
        code = normalize_invite_code(invite_code)
        if not is_valid_invite_code(code):
            raise InviteCodeNotFoundError(code)

        attempts = self._settings.membership_write_retries
        household: Household | None = None
        for attempt in range(1, attempts + 1):
            found = await self._households.find_by_invite_code(code)
            if found is None:
                raise InviteCodeNotFoundError(code)
            household, version = found

            now = self._clock()
            self._check_admission(household, code, user_id, now)
            if attempt == 1 and not await self._users.exists(user_id):
                raise UserNotFoundError(user_id)

            membership = Membership(
                role=MemberRole.MEMBER,
                joined_at=now,
                status=MemberStatus.ACTIVE,
                display_name=display_name,
            )
            try:
                await self._households.add_member(
                    household.id, user_id, membership, expected_version=version
                )
                break
            except VersionConflictError:
                logger.info(
                    "membership_write_conflict",
                    household_id=household.id,
                    user_id=user_id,
                    attempt=attempt,
                )
        else:
            assert household is not None
            raise WriteContentionError(household.id, attempts)

        await self._write_backref(
            lambda: self._users.add_household(user_id, household.id),
            household.id,
            user_id,
            "join",
        )
        logger.info(
            "member_joined",
            household_id=household.id,
            user_id=user_id,
            member_count=household.member_count + 1,
        )

        refreshed = await self._households.get(household.id)
        if refreshed is None:
            raise HouseholdNotFoundError(household.id)
        return refreshed

    def _check_admission(
        self, household: Household, code: str, user_id: str, now: datetime
    ) -> None:
        if household.invite_code_expired(now):
            assert household.invite_code_expiry is not None
            raise InviteCodeExpiredError(code, household.invite_code_expiry.isoformat())
        if household.is_member(user_id):
            raise AlreadyMemberError(household.id, user_id)
        if household.is_full:
            raise CapacityExceededError(household.id, household.settings.max_members)

    async def remove_member(
        self, household_id: str, target_user_id: str, requester_id: str
    ) -> None:
        """Remove another member; admin only, never the founder."""
        require_identity(self._identity, requester_id)
        household = await self._get_household(household_id)
        if not household.is_admin(requester_id):
            raise NotHouseholdAdminError(household_id, requester_id, "remove members")
        if household.is_founder(target_user_id):
            raise FounderProtectedError(household_id, "remove_member")
        if not household.is_member(target_user_id):
            raise MemberNotFoundError(household_id, target_user_id)

        await self._detach(household_id, target_user_id, "remove_member")
        logger.info(
            "member_removed",
            household_id=household_id,
            user_id=target_user_id,
            requester_id=requester_id,
        )

    async def leave_household(self, household_id: str, user_id: str) -> None:
        """Leave a household. The founder cannot leave."""
        require_identity(self._identity, user_id)
        household = await self._get_household(household_id)
        if household.is_founder(user_id):
            raise FounderProtectedError(household_id, "leave_household")
        if not household.is_member(user_id):
            raise MemberNotFoundError(household_id, user_id)

        await self._detach(household_id, user_id, "leave_household")
        logger.info("member_left", household_id=household_id, user_id=user_id)

    async def set_member_status(
        self,
        household_id: str,
        target_user_id: str,
        status: MemberStatus | str,
        requester_id: str,
    ) -> Household:
        """Switch a member between active and inactive; admin only.

        The founder always stays active.
        """
        status = MemberStatus.parse(status, "status")
        require_identity(self._identity, requester_id)

        attempts = self._settings.membership_write_retries
        for attempt in range(1, attempts + 1):
            found = await self._households.get_versioned(household_id)
            if found is None:
                raise HouseholdNotFoundError(household_id)
            household, version = found
            if not household.is_admin(requester_id):
                raise NotHouseholdAdminError(household_id, requester_id, "change member status")
            if household.is_founder(target_user_id) and status != MemberStatus.ACTIVE:
                raise FounderProtectedError(household_id, "deactivate")
            if not household.is_member(target_user_id):
                raise MemberNotFoundError(household_id, target_user_id)

            try:
                await self._households.set_member_status(
                    household_id, target_user_id, status, expected_version=version
                )
            except VersionConflictError:
                logger.info(
                    "membership_write_conflict", household_id=household_id, attempt=attempt
                )
                continue

            household.members[target_user_id].status = status
            logger.info(
                "member_status_changed",
                household_id=household_id,
                user_id=target_user_id,
                status=status.value,
            )
            return household

        raise WriteContentionError(household_id, attempts)

    async def _get_household(self, household_id: str) -> Household:
        household = await self._households.get(household_id)
        if household is None:
            raise HouseholdNotFoundError(household_id)
        return household

    async def _detach(self, household_id: str, user_id: str, operation: str) -> None:
        await self._households.remove_member(household_id, user_id)
        try:
            await self._users.remove_household(user_id, household_id)
        except DocumentNotFoundError:
            # No profile means there is no back-reference to remove.
            logger.warning(
                "member_profile_missing", household_id=household_id, user_id=user_id
            )
            return
        except StorageFailureError as exc:
            self._log_partial_write(operation, household_id, user_id, exc)
            raise PartialWriteError(household_id, user_id, operation) from exc

    async def _write_backref(
        self,
        write: Callable[[], Awaitable[None]],
        household_id: str,
        user_id: str,
        operation: str,
    ) -> None:
        try:
            await write()
        except (StorageFailureError, DocumentNotFoundError) as exc:
            self._log_partial_write(operation, household_id, user_id, exc)
            raise PartialWriteError(household_id, user_id, operation) from exc

    def _log_partial_write(
        self, operation: str, household_id: str, user_id: str, exc: Exception
    ) -> None:
        logger.error(
            "membership_backref_write_failed",
            operation=operation,
            household_id=household_id,
            user_id=user_id,
            error=str(exc),
        )
