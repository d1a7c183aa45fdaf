from homeplus.domain.households import (
    Household,
    HouseholdSettings,
    HouseholdType,
    MemberRole,
    MemberStatus,
    Membership,
)
from homeplus.domain.invite_codes import (
    INVITE_CODE_ALPHABET,
    INVITE_CODE_LENGTH,
    generate_invite_code,
)
from homeplus.domain.users import UserProfile

__all__ = [
    "INVITE_CODE_ALPHABET",
    "INVITE_CODE_LENGTH",
    "Household",
    "HouseholdSettings",
    "HouseholdType",
    "MemberRole",
    "MemberStatus",
    "Membership",
    "UserProfile",
    "generate_invite_code",
]
