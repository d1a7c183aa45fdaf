"""Household domain model: shared groups joined through invite codes."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import uuid4

from homeplus.exceptions import InvalidInputError

DEFAULT_MAX_MEMBERS = 10
DEFAULT_MODULES = ("tasks", "finances", "chat")


def _utc_now() -> datetime:
    return datetime.now(UTC)


class _ClosedEnum(str, Enum):
    """String enum that rejects unknown values with InvalidInputError."""

    @classmethod
    def parse(cls, value: "str | _ClosedEnum", field_name: str):
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise InvalidInputError(
                field_name, f"must be one of: {allowed}", value
            ) from None


class HouseholdType(_ClosedEnum):
    COLOCATION = "colocation"
    COUPLE = "couple"
    FAMILY = "family"
    OTHER = "other"


class MemberRole(_ClosedEnum):
    ADMIN = "admin"
    MEMBER = "member"
    CHILD = "child"


class MemberStatus(_ClosedEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


def validate_household_name(name: str) -> str:
    """Return the trimmed name, rejecting blank input."""
    if not isinstance(name, str) or not name.strip():
        raise InvalidInputError("name", "must not be empty")
    return name.strip()


def validate_user_id(user_id: str, field_name: str = "user_id") -> str:
    # Ids are used as keys in dotted field paths (members.<uid>).
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidInputError(field_name, "must not be empty")
    if "." in user_id:
        raise InvalidInputError(field_name, "must not contain '.'", user_id)
    return user_id


@dataclass
class Membership:
    """One entry of a household's member map."""

    role: MemberRole
    joined_at: datetime = field(default_factory=_utc_now)
    status: MemberStatus = MemberStatus.ACTIVE
    display_name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN


@dataclass
class HouseholdSettings:
    max_members: int = DEFAULT_MAX_MEMBERS
    modules: list[str] = field(default_factory=lambda: list(DEFAULT_MODULES))


@dataclass
class Household:
    """A named group of users with roles and an invite code.

    The founder (created_by) is always present in members with role admin.
    The invite code is valid for joining strictly before invite_code_expiry;
    households stored without an expiry accept their code indefinitely.
    """

    name: str
    household_type: HouseholdType
    created_by: str
    invite_code: str
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_utc_now)
    invite_code_expiry: datetime | None = None
    members: dict[str, Membership] = field(default_factory=dict)
    settings: HouseholdSettings = field(default_factory=HouseholdSettings)

    @classmethod
    def found(
        cls,
        name: str,
        household_type: HouseholdType,
        founder_id: str,
        invite_code: str,
        now: datetime,
        invite_code_ttl: timedelta,
        settings: HouseholdSettings | None = None,
        founder_display_name: str | None = None,
    ) -> "Household":
        """Build a new household seeded with its founder as sole admin."""
        return cls(
            name=name,
            household_type=household_type,
            created_by=founder_id,
            invite_code=invite_code,
            created_at=now,
            invite_code_expiry=now + invite_code_ttl,
            members={
                founder_id: Membership(
                    role=MemberRole.ADMIN,
                    joined_at=now,
                    status=MemberStatus.ACTIVE,
                    display_name=founder_display_name,
                )
            },
            settings=settings or HouseholdSettings(),
        )

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def is_full(self) -> bool:
        return self.member_count >= self.settings.max_members

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def role_of(self, user_id: str) -> MemberRole | None:
        membership = self.members.get(user_id)
        return membership.role if membership else None

    def is_admin(self, user_id: str) -> bool:
        return self.role_of(user_id) == MemberRole.ADMIN

    def is_founder(self, user_id: str) -> bool:
        return user_id == self.created_by

    def invite_code_expired(self, now: datetime) -> bool:
        if self.invite_code_expiry is None:
            return False
        return now >= self.invite_code_expiry

    def rotate_invite_code(self, code: str, now: datetime, ttl: timedelta) -> None:
        self.invite_code = code
        self.invite_code_expiry = now + ttl
