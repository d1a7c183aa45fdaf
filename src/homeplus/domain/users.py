"""User profile: the mutable extension of an external identity."""

from dataclasses import dataclass, field
from datetime import UTC, datetime


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class UserProfile:
    uid: str
    email: str
    display_name: str
    created_at: datetime = field(default_factory=_utc_now)
    # Back-references to every household the user belongs to; order is not meaningful.
    household_ids: list[str] = field(default_factory=list)

    def belongs_to(self, household_id: str) -> bool:
        return household_id in self.household_ids
