"""Reconciliation of household member maps with user back-references.

The member map is authoritative: membership writes land on the household
first, so a failed second write leaves either a member without a
back-reference (join) or a back-reference without a member (leave/remove).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from homeplus.exceptions import DocumentNotFoundError
from homeplus.logging_config import get_logger
from homeplus.repositories.households import HouseholdRepository, UserProfileRepository
from homeplus.repositories.interfaces import DocumentStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class Link:
    user_id: str
    household_id: str


@dataclass
class SweepReport:
    households_scanned: int = 0
    users_scanned: int = 0
    # Member of the household, but the id is missing from the user's householdIds.
    missing_backrefs: list[Link] = field(default_factory=list)
    # Listed in householdIds, but the household is gone or does not list the user.
    dangling_backrefs: list[Link] = field(default_factory=list)
    # Member entries whose user profile does not exist; reported, never touched.
    orphan_members: list[Link] = field(default_factory=list)
    repaired: int = 0

    @property
    def is_consistent(self) -> bool:
        return not (self.missing_backrefs or self.dangling_backrefs or self.orphan_members)


class ConsistencySweeper:
    def __init__(self, store: DocumentStore) -> None:
        self._households = HouseholdRepository(store)
        self._users = UserProfileRepository(store)

    async def sweep(self, repair: bool = True) -> SweepReport:
        """Compare both sides of every membership link.

        With repair=True, missing back-references are added and dangling ones
        removed, using idempotent set updates on the user documents only. Each
        link is re-read from its household before the write, and a link that
        a concurrent join or leave has already settled is left alone.
        """
        report = SweepReport()
        households = {h.id: h for h in await self._households.list_all()}
        users = {u.uid: u for u in await self._users.list_all()}
        report.households_scanned = len(households)
        report.users_scanned = len(users)

        for household in households.values():
            for user_id in household.members:
                profile = users.get(user_id)
                if profile is None:
                    report.orphan_members.append(Link(user_id, household.id))
                elif not profile.belongs_to(household.id):
                    report.missing_backrefs.append(Link(user_id, household.id))

        for profile in users.values():
            for household_id in profile.household_ids:
                household = households.get(household_id)
                if household is None or not household.is_member(profile.uid):
                    report.dangling_backrefs.append(Link(profile.uid, household_id))

        if repair:
            await self._repair(report)

        logger.info(
            "consistency_sweep_finished",
            households=report.households_scanned,
            users=report.users_scanned,
            missing_backrefs=len(report.missing_backrefs),
            dangling_backrefs=len(report.dangling_backrefs),
            orphan_members=len(report.orphan_members),
            repaired=report.repaired,
        )
        return report

    async def _repair(self, report: SweepReport) -> None:
        for link in report.missing_backrefs:
            household = await self._households.get(link.household_id)
            if household is None or not household.is_member(link.user_id):
                logger.info("repair_skipped_stale", **asdict(link))
                continue
            try:
                await self._users.add_household(link.user_id, link.household_id)
            except DocumentNotFoundError:
                logger.warning("repair_skipped_profile_gone", **asdict(link))
                continue
            report.repaired += 1
            logger.info("backref_added", user_id=link.user_id, household_id=link.household_id)

        for link in report.dangling_backrefs:
            household = await self._households.get(link.household_id)
            if household is not None and household.is_member(link.user_id):
                logger.info("repair_skipped_stale", **asdict(link))
                continue
            try:
                await self._users.remove_household(link.user_id, link.household_id)
            except DocumentNotFoundError:
                logger.warning("repair_skipped_profile_gone", **asdict(link))
                continue
            report.repaired += 1
            logger.info("backref_removed", user_id=link.user_id, household_id=link.household_id)

        for link in report.orphan_members:
            logger.warning(
                "orphan_member", user_id=link.user_id, household_id=link.household_id
            )
