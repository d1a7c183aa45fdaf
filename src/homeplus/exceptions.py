"""Domain exception hierarchy for HomePlus.

All domain-specific exceptions inherit from HomePlusError. Each concrete
error belongs to exactly one kind (NotFound, Forbidden, AlreadyMember,
CapacityExceeded, Expired, InvalidInput, ResourceExhausted, StorageFailure)
so the presentation layer can pick a message without inspecting classes.
"""

from typing import Any


class HomePlusError(Exception):
    """Base exception for all HomePlus errors.

    Includes an error_code for API responses, the error kind and extra
    context (household id, invite code, limits) used to render messages.
    """

    kind: str = "Error"
    error_code: str = "HOMEPLUS_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.error_code,
            "kind": self.kind,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# NotFound
# =============================================================================


class NotFoundError(HomePlusError):
    """Base exception for missing households, users or members."""

    kind = "NotFound"
    error_code = "NOT_FOUND"
    status_code = 404


class HouseholdNotFoundError(NotFoundError):
    """Raised when a household cannot be found."""

    error_code = "HOUSEHOLD_NOT_FOUND"

    def __init__(self, household_id: str) -> None:
        super().__init__(
            f"Household not found: {household_id}",
            context={"household_id": household_id},
        )


class UserNotFoundError(NotFoundError):
    """Raised when a user profile cannot be found."""

    error_code = "USER_NOT_FOUND"

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"User not found: {user_id}",
            context={"user_id": user_id},
        )


class InviteCodeNotFoundError(NotFoundError):
    """Raised when no household carries the given invite code."""

    error_code = "INVITE_CODE_NOT_FOUND"

    def __init__(self, code: str) -> None:
        super().__init__(
            f"No household matches invite code: {code}",
            context={"code": code},
        )


class MemberNotFoundError(NotFoundError):
    """Raised when a user is not a member of the household."""

    error_code = "MEMBER_NOT_FOUND"

    def __init__(self, household_id: str, user_id: str) -> None:
        super().__init__(
            f"User {user_id} is not a member of household {household_id}",
            context={"household_id": household_id, "user_id": user_id},
        )


class DocumentNotFoundError(NotFoundError):
    """Raised by a document store when mutating a missing document."""

    error_code = "DOCUMENT_NOT_FOUND"

    def __init__(self, collection: str, document_id: str) -> None:
        super().__init__(
            f"Document not found: {collection}/{document_id}",
            context={"collection": collection, "document_id": document_id},
        )


# =============================================================================
# Forbidden
# =============================================================================


class ForbiddenError(HomePlusError):
    """Base exception for authorization failures."""

    kind = "Forbidden"
    error_code = "FORBIDDEN"
    status_code = 403


class NotHouseholdAdminError(ForbiddenError):
    """Raised when a non-admin attempts an admin-only operation."""

    error_code = "NOT_HOUSEHOLD_ADMIN"

    def __init__(self, household_id: str, user_id: str, action: str) -> None:
        super().__init__(
            f"Only household admins can {action}",
            context={"household_id": household_id, "user_id": user_id, "action": action},
        )


class FounderProtectedError(ForbiddenError):
    """Raised when an operation would remove the founder from the household."""

    error_code = "FOUNDER_PROTECTED"

    def __init__(self, household_id: str, action: str) -> None:
        super().__init__(
            f"The household founder cannot be subject to: {action}",
            context={"household_id": household_id, "action": action},
        )


class NotAuthenticatedError(ForbiddenError):
    """Raised when a privileged call is made without a signed-in user."""

    error_code = "NOT_AUTHENTICATED"
    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class IdentityMismatchError(ForbiddenError):
    """Raised when a caller-supplied user id differs from the signed-in user."""

    error_code = "IDENTITY_MISMATCH"

    def __init__(self, claimed_user_id: str) -> None:
        super().__init__(
            "Caller identity does not match the signed-in user",
            context={"user_id": claimed_user_id},
        )


# =============================================================================
# Membership rule violations
# =============================================================================


class AlreadyMemberError(HomePlusError):
    """Raised when a user tries to join a household they already belong to."""

    kind = "AlreadyMember"
    error_code = "ALREADY_MEMBER"
    status_code = 409

    def __init__(self, household_id: str, user_id: str) -> None:
        super().__init__(
            f"User {user_id} is already a member of household {household_id}",
            context={"household_id": household_id, "user_id": user_id},
        )


class CapacityExceededError(HomePlusError):
    """Raised when a household has reached its maximum number of members."""

    kind = "CapacityExceeded"
    error_code = "CAPACITY_EXCEEDED"
    status_code = 409

    def __init__(self, household_id: str, max_members: int) -> None:
        super().__init__(
            f"Household {household_id} has reached its limit of {max_members} members",
            context={"household_id": household_id, "max_members": max_members},
        )


class InviteCodeExpiredError(HomePlusError):
    """Raised when joining with an invite code at or after its expiry."""

    kind = "Expired"
    error_code = "INVITE_CODE_EXPIRED"
    status_code = 410

    def __init__(self, code: str, expired_at: str) -> None:
        super().__init__(
            f"Invite code {code} expired at {expired_at}",
            context={"code": code, "expired_at": expired_at},
        )


# =============================================================================
# InvalidInput
# =============================================================================


class InvalidInputError(HomePlusError):
    """Raised when caller input is malformed or outside a closed enumeration."""

    kind = "InvalidInput"
    error_code = "INVALID_INPUT"
    status_code = 422

    def __init__(self, field: str, reason: str, value: Any = None) -> None:
        context: dict[str, Any] = {"field": field, "reason": reason}
        if value is not None:
            context["value"] = str(value)
        super().__init__(f"Invalid {field}: {reason}", context=context)


class InvalidCredentialsError(InvalidInputError):
    """Raised when login credentials are wrong."""

    error_code = "INVALID_CREDENTIALS"
    status_code = 401

    def __init__(self) -> None:
        super().__init__("credentials", "email or password is incorrect")


# =============================================================================
# ResourceExhausted
# =============================================================================


class ResourceExhaustedError(HomePlusError):
    """Base exception for bounded retries that ran out."""

    kind = "ResourceExhausted"
    error_code = "RESOURCE_EXHAUSTED"
    status_code = 503


class InviteCodeExhaustedError(ResourceExhaustedError):
    """Raised when no unique invite code was found within the attempt cap."""

    error_code = "INVITE_CODE_EXHAUSTED"

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"Could not mint a unique invite code after {attempts} attempts",
            context={"attempts": attempts},
        )


class WriteContentionError(ResourceExhaustedError):
    """Raised when a conditional household write kept conflicting."""

    error_code = "WRITE_CONTENTION"

    def __init__(self, household_id: str, attempts: int) -> None:
        super().__init__(
            f"Household {household_id} was modified concurrently {attempts} times",
            context={"household_id": household_id, "attempts": attempts},
        )


# =============================================================================
# StorageFailure
# =============================================================================


class StorageFailureError(HomePlusError):
    """Raised when the document store fails. Always propagated."""

    kind = "StorageFailure"
    error_code = "STORAGE_FAILURE"
    status_code = 500


class VersionConflictError(StorageFailureError):
    """Raised when a conditional write finds a newer document version."""

    error_code = "VERSION_CONFLICT"
    status_code = 409

    def __init__(
        self, collection: str, document_id: str, expected: int, actual: int
    ) -> None:
        super().__init__(
            f"Version conflict on {collection}/{document_id}: "
            f"expected {expected}, found {actual}",
            context={
                "collection": collection,
                "document_id": document_id,
                "expected_version": expected,
                "actual_version": actual,
            },
        )


class PartialWriteError(StorageFailureError):
    """Raised when the household write landed but the user back-reference did not.

    The household/user link is inconsistent until the back-reference is
    retried or the consistency sweep repairs it.
    """

    error_code = "PARTIAL_WRITE"

    def __init__(self, household_id: str, user_id: str, operation: str) -> None:
        super().__init__(
            f"{operation} updated household {household_id} but not the profile "
            f"of user {user_id}",
            context={
                "household_id": household_id,
                "user_id": user_id,
                "operation": operation,
                "needs_repair": True,
            },
        )
