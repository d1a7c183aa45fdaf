from homeplus.services.consistency import ConsistencySweeper, SweepReport
from homeplus.services.identity import (
    IdentityProvider,
    LocalIdentityProvider,
    require_identity,
)
from homeplus.services.membership import MembershipManager
from homeplus.services.registry import HouseholdRegistry

__all__ = [
    "ConsistencySweeper",
    "HouseholdRegistry",
    "IdentityProvider",
    "LocalIdentityProvider",
    "MembershipManager",
    "SweepReport",
    "require_identity",
]
