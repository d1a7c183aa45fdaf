from homeplus.domain.households import (
    Household,
    HouseholdSettings,
    HouseholdType,
    MemberRole,
    MemberStatus,
    Membership,
)
from homeplus.domain.users import UserProfile

__all__ = [
    "Household",
    "HouseholdSettings",
    "HouseholdType",
    "MemberRole",
    "MemberStatus",
    "Membership",
    "UserProfile",
]

__version__ = "0.1.0"
