"""Household Registry: creation, lookup and invite-code rotation."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from homeplus.config import Settings, get_settings
from homeplus.domain.households import (
    Household,
    HouseholdSettings,
    HouseholdType,
    validate_household_name,
    validate_user_id,
)
from homeplus.domain.invite_codes import (
    InviteCodeGenerator,
    generate_invite_code,
    is_valid_invite_code,
    normalize_invite_code,
)
from homeplus.domain.users import UserProfile
from homeplus.exceptions import (
    DocumentNotFoundError,
    HouseholdNotFoundError,
    InviteCodeExhaustedError,
    NotHouseholdAdminError,
    PartialWriteError,
    StorageFailureError,
    UserNotFoundError,
)
from homeplus.logging_config import LogContext, get_logger
from homeplus.repositories.households import HouseholdRepository, UserProfileRepository
from homeplus.repositories.interfaces import DocumentStore
from homeplus.services.identity import IdentityProvider, require_identity

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class HouseholdRegistry:
    """Authoritative creation and lookup of household documents.

    Holds only a handle to the document store; construct one per
    application (see Container) and pass it to callers.
    """

    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityProvider,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utc_now,
        code_generator: InviteCodeGenerator = generate_invite_code,
    ) -> None:
        self._households = HouseholdRepository(store)
        self._users = UserProfileRepository(store)
        self._identity = identity
        self._settings = settings or get_settings()
        self._clock = clock
        self._generate_code = code_generator

    @property
    def invite_code_ttl(self) -> timedelta:
        return timedelta(days=self._settings.invite_code_ttl_days)

    async def mint_invite_code(self) -> str:
        """Draw codes until one is not used by any stored household.

        Raises:
            InviteCodeExhaustedError: every attempt collided.
        """
        attempts = self._settings.invite_code_max_attempts
        for attempt in range(1, attempts + 1):
            code = self._generate_code()
            if not await self._households.invite_code_exists(code):
                return code
            logger.warning("invite_code_collision", code=code, attempt=attempt)
        raise InviteCodeExhaustedError(attempts)

    async def create_household(
        self,
        name: str,
        household_type: HouseholdType | str,
        founder_id: str,
        founder_display_name: str | None = None,
    ) -> Household:
        """Create a household with the founder as its only (admin) member.

        The household document is written first, then the household id is
        appended to the founder's householdIds.

        Raises:
            InvalidInputError: blank name, unknown type or malformed founder id.
            NotAuthenticatedError, IdentityMismatchError: founder is not signed in.
            UserNotFoundError: the founder has no user profile.
            InviteCodeExhaustedError: no unique invite code could be minted.
            PartialWriteError: the household exists but the back-reference failed.
        """
        name = validate_household_name(name)
        household_type = HouseholdType.parse(household_type, "type")
        validate_user_id(founder_id, "founder_id")
        require_identity(self._identity, founder_id)

        if not await self._users.exists(founder_id):
            raise UserNotFoundError(founder_id)

        code = await self.mint_invite_code()
        settings = HouseholdSettings(
            max_members=self._settings.default_max_members,
            modules=list(self._settings.default_modules),
        )
        household = Household.found(
            name=name,
            household_type=household_type,
            founder_id=founder_id,
            invite_code=code,
            now=self._clock(),
            invite_code_ttl=self.invite_code_ttl,
            settings=settings,
            founder_display_name=founder_display_name,
        )

        await self._households.add(household)
        try:
            await self._users.add_household(founder_id, household.id)
        except (StorageFailureError, DocumentNotFoundError) as exc:
            logger.error(
                "membership_backref_write_failed",
                operation="create_household",
                household_id=household.id,
                user_id=founder_id,
                error=str(exc),
            )
            raise PartialWriteError(household.id, founder_id, "create_household") from exc

        logger.info(
            "household_created",
            household_id=household.id,
            household_type=household_type.value,
            founder_id=founder_id,
        )
        return household

    async def regenerate_invite_code(self, household_id: str, requester_id: str) -> str:
        """Replace the invite code and restart its validity window.

        The previous code stops matching any household as soon as this
        returns.

        Raises:
            HouseholdNotFoundError: no such household.
            NotHouseholdAdminError: requester is not an admin of it.
        """
        require_identity(self._identity, requester_id)
        household = await self._households.get(household_id)
        if household is None:
            raise HouseholdNotFoundError(household_id)
        if not household.is_admin(requester_id):
            raise NotHouseholdAdminError(
                household_id, requester_id, "regenerate the invite code"
            )

        with LogContext(household_id=household_id):
            code = await self.mint_invite_code()
            household.rotate_invite_code(code, self._clock(), self.invite_code_ttl)
            await self._households.update_invite_code(
                household_id, household.invite_code, household.invite_code_expiry
            )

        logger.info("invite_code_regenerated", household_id=household_id, requester_id=requester_id)
        return code

    async def rename_household(
        self, household_id: str, name: str, requester_id: str
    ) -> Household:
        name = validate_household_name(name)
        require_identity(self._identity, requester_id)
        household = await self._households.get(household_id)
        if household is None:
            raise HouseholdNotFoundError(household_id)
        if not household.is_admin(requester_id):
            raise NotHouseholdAdminError(household_id, requester_id, "rename the household")

        await self._households.rename(household_id, name)
        household.name = name
        logger.info("household_renamed", household_id=household_id, requester_id=requester_id)
        return household

    async def get_household(self, household_id: str) -> Household | None:
        return await self._households.get(household_id)

    async def find_by_invite_code(self, code: str) -> Household | None:
        code = normalize_invite_code(code)
        if not is_valid_invite_code(code):
            return None
        found = await self._households.find_by_invite_code(code)
        return found[0] if found else None

    async def invite_code_exists(self, code: str) -> bool:
        return await self._households.invite_code_exists(normalize_invite_code(code))

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        return await self._users.get(user_id)

    async def get_user_households(self, user_id: str) -> list[Household]:
        """Resolve the user's householdIds, skipping ids that no longer resolve.

        A user without a profile has no households. Store failures still
        propagate; only missing households are dropped.
        """
        profile = await self._users.get(user_id)
        if profile is None:
            return []

        households: list[Household] = []
        for household_id in profile.household_ids:
            household = await self._households.get(household_id)
            if household is None:
                logger.warning(
                    "dangling_household_reference", user_id=user_id, household_id=household_id
                )
                continue
            households.append(household)
        return households
