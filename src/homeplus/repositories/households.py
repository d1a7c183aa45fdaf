"""Typed access to the households and users collections.

Documents keep the camelCase field names of the shared schema (createdBy,
inviteCodeExpiry, householdIds, ...); domain objects use snake_case.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from homeplus.domain.households import (
    Household,
    HouseholdSettings,
    HouseholdType,
    MemberRole,
    MemberStatus,
    Membership,
)
from homeplus.domain.users import UserProfile
from homeplus.logging_config import get_logger
from homeplus.repositories.interfaces import HOUSEHOLDS, USERS, DocumentStore, StoredDocument

logger = get_logger(__name__)


def membership_to_document(membership: Membership) -> dict[str, Any]:
    document: dict[str, Any] = {
        "role": membership.role.value,
        "joinedAt": membership.joined_at,
        "status": membership.status.value,
    }
    if membership.display_name:
        document["displayName"] = membership.display_name
    return document


def household_to_document(household: Household) -> dict[str, Any]:
    return {
        "id": household.id,
        "name": household.name,
        "type": household.household_type.value,
        "createdBy": household.created_by,
        "createdAt": household.created_at,
        "inviteCode": household.invite_code,
        "inviteCodeExpiry": household.invite_code_expiry,
        "members": {
            user_id: membership_to_document(membership)
            for user_id, membership in household.members.items()
        },
        "settings": {
            "maxMembers": household.settings.max_members,
            "modules": list(household.settings.modules),
        },
    }


def household_from_document(document_id: str, data: dict[str, Any]) -> Household:
    settings = data.get("settings") or {}
    return Household(
        id=document_id,
        name=data["name"],
        household_type=HouseholdType.parse(data["type"], "type"),
        created_by=data["createdBy"],
        created_at=data["createdAt"],
        invite_code=data["inviteCode"],
        invite_code_expiry=data.get("inviteCodeExpiry"),
        members={
            user_id: Membership(
                role=MemberRole.parse(entry["role"], "role"),
                joined_at=entry["joinedAt"],
                status=MemberStatus.parse(entry.get("status", "active"), "status"),
                display_name=entry.get("displayName"),
            )
            for user_id, entry in (data.get("members") or {}).items()
        },
        settings=HouseholdSettings(
            max_members=settings.get("maxMembers", HouseholdSettings().max_members),
            modules=list(settings.get("modules", HouseholdSettings().modules)),
        ),
    )


def user_to_document(profile: UserProfile) -> dict[str, Any]:
    return {
        "uid": profile.uid,
        "email": profile.email,
        "displayName": profile.display_name,
        "createdAt": profile.created_at,
        "householdIds": list(profile.household_ids),
    }


def user_from_document(data: dict[str, Any]) -> UserProfile:
    return UserProfile(
        uid=data["uid"],
        email=data.get("email", ""),
        display_name=data.get("displayName", ""),
        created_at=data["createdAt"],
        household_ids=list(data.get("householdIds") or []),
    )


class HouseholdRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def add(self, household: Household) -> int:
        return await self._store.put(HOUSEHOLDS, household.id, household_to_document(household))

    async def get(self, household_id: str) -> Household | None:
        versioned = await self.get_versioned(household_id)
        return versioned[0] if versioned else None

    async def get_versioned(self, household_id: str) -> tuple[Household, int] | None:
        stored = await self._store.get_document(HOUSEHOLDS, household_id)
        if stored is None:
            return None
        return self._from_stored(stored)

    async def find_by_invite_code(self, code: str) -> tuple[Household, int] | None:
        matches = await self._store.query(HOUSEHOLDS, {"inviteCode": code})
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "duplicate_invite_code",
                code=code,
                household_ids=[m.id for m in matches],
            )
        return self._from_stored(matches[0])

    async def invite_code_exists(self, code: str) -> bool:
        return bool(await self._store.query(HOUSEHOLDS, {"inviteCode": code}))

    async def list_all(self) -> Iterable[Household]:
        return [self._from_stored(stored)[0] for stored in await self._store.list_all(HOUSEHOLDS)]

    async def add_member(
        self,
        household_id: str,
        user_id: str,
        membership: Membership,
        expected_version: int | None = None,
    ) -> int:
        return await self._store.update_fields(
            HOUSEHOLDS,
            household_id,
            {f"members.{user_id}": membership_to_document(membership)},
            expected_version=expected_version,
        )

    async def remove_member(self, household_id: str, user_id: str) -> int:
        return await self._store.delete_field(HOUSEHOLDS, household_id, f"members.{user_id}")

    async def set_member_status(
        self, household_id: str, user_id: str, status: MemberStatus, expected_version: int
    ) -> int:
        return await self._store.update_fields(
            HOUSEHOLDS,
            household_id,
            {f"members.{user_id}.status": status.value},
            expected_version=expected_version,
        )

    async def update_invite_code(
        self, household_id: str, code: str, expiry: datetime | None
    ) -> int:
        return await self._store.update_fields(
            HOUSEHOLDS, household_id, {"inviteCode": code, "inviteCodeExpiry": expiry}
        )

    async def rename(self, household_id: str, name: str) -> int:
        return await self._store.update_fields(HOUSEHOLDS, household_id, {"name": name})

    def _from_stored(self, stored: StoredDocument) -> tuple[Household, int]:
        return household_from_document(stored.id, stored.data), stored.version


class UserProfileRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def add(self, profile: UserProfile) -> None:
        await self._store.put(USERS, profile.uid, user_to_document(profile))

    async def get(self, uid: str) -> UserProfile | None:
        data = await self._store.get(USERS, uid)
        if data is None:
            return None
        return user_from_document(data)

    async def exists(self, uid: str) -> bool:
        return await self._store.get_document(USERS, uid) is not None

    async def list_all(self) -> Iterable[UserProfile]:
        return [user_from_document(stored.data) for stored in await self._store.list_all(USERS)]

    async def add_household(self, uid: str, household_id: str) -> None:
        await self._store.add_to_set_field(USERS, uid, "householdIds", household_id)

    async def remove_household(self, uid: str, household_id: str) -> None:
        await self._store.remove_from_set_field(USERS, uid, "householdIds", household_id)
