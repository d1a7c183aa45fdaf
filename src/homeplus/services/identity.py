"""Identity provider seam.

Authentication is owned by an external provider; the household services only
need to know who is signed in. LocalIdentityProvider is an in-process
implementation used by the CLI, development setups and tests.
"""

import hashlib
import secrets
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import uuid4

from homeplus.domain.users import UserProfile
from homeplus.exceptions import (
    IdentityMismatchError,
    InvalidCredentialsError,
    InvalidInputError,
    NotAuthenticatedError,
)
from homeplus.logging_config import bind_context, get_logger, unbind_context
from homeplus.repositories.households import UserProfileRepository

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6


def _utc_now() -> datetime:
    return datetime.now(UTC)


class PasswordHasher:
    """Secure password hashing using PBKDF2."""

    ALGORITHM = "pbkdf2_sha256"
    ITERATIONS = 600_000  # OWASP 2023 recommendation
    SALT_LENGTH = 32

    @classmethod
    def hash(cls, password: str, iterations: int | None = None) -> str:
        """Hash a password.

        Returns:
            Hash string in format: algorithm$iterations$salt$hash
        """
        iterations = iterations or cls.ITERATIONS
        salt = secrets.token_hex(cls.SALT_LENGTH)
        hash_bytes = hashlib.pbkdf2_hmac(
            "sha256",
            password.encode("utf-8"),
            salt.encode("utf-8"),
            iterations,
        )
        return f"{cls.ALGORITHM}${iterations}${salt}${hash_bytes.hex()}"

    @classmethod
    def verify(cls, password: str, hash_string: str) -> bool:
        try:
            algorithm, iterations, salt, stored_hash = hash_string.split("$")
            if algorithm != cls.ALGORITHM:
                return False

            hash_bytes = hashlib.pbkdf2_hmac(
                "sha256",
                password.encode("utf-8"),
                salt.encode("utf-8"),
                int(iterations),
            )
            # Constant-time comparison to prevent timing attacks
            return secrets.compare_digest(hash_bytes.hex(), stored_hash)
        except (ValueError, AttributeError):
            return False


class IdentityProvider(ABC):
    """Opaque identity source: who is signed in right now."""

    @property
    @abstractmethod
    def current_user_id(self) -> str | None:
        pass

    @abstractmethod
    async def register(self, email: str, password: str, display_name: str) -> UserProfile:
        pass

    @abstractmethod
    async def login(self, email: str, password: str) -> str:
        pass

    @abstractmethod
    async def logout(self) -> None:
        pass


def require_identity(identity: IdentityProvider, user_id: str) -> str:
    """Check that user_id is the signed-in user before a privileged call.

    Raises:
        NotAuthenticatedError: nobody is signed in.
        IdentityMismatchError: user_id is someone else.
    """
    current = identity.current_user_id
    if current is None:
        raise NotAuthenticatedError()
    if current != user_id:
        logger.warning("identity_mismatch", claimed_user_id=user_id, current_user_id=current)
        raise IdentityMismatchError(user_id)
    return current


class LocalIdentityProvider(IdentityProvider):
    """Keeps credentials in memory and profiles in the users collection.

    Registration writes the user profile document with an empty householdIds
    list, mirroring what the hosted provider's sign-up hook does.
    """

    def __init__(
        self,
        users: UserProfileRepository,
        clock: Callable[[], datetime] = _utc_now,
        hash_iterations: int | None = None,
    ) -> None:
        self._users = users
        self._clock = clock
        self._hash_iterations = hash_iterations
        self._credentials: dict[str, tuple[str, str]] = {}
        self._current_user_id: str | None = None

    @property
    def current_user_id(self) -> str | None:
        return self._current_user_id

    async def register(self, email: str, password: str, display_name: str) -> UserProfile:
        email = email.lower().strip()
        if "@" not in email or "." not in email:
            raise InvalidInputError("email", "invalid format", email)
        if email in self._credentials:
            raise InvalidInputError("email", "already in use", email)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidInputError(
                "password", f"must be at least {MIN_PASSWORD_LENGTH} characters"
            )

        profile = UserProfile(
            uid=uuid4().hex,
            email=email,
            display_name=display_name.strip(),
            created_at=self._clock(),
        )
        await self._users.add(profile)
        self._credentials[email] = (
            profile.uid,
            PasswordHasher.hash(password, self._hash_iterations),
        )
        self._sign_in(profile.uid)

        logger.info("user_registered", user_id=profile.uid, email=email)
        return profile

    async def login(self, email: str, password: str) -> str:
        entry = self._credentials.get(email.lower().strip())
        if entry is None or not PasswordHasher.verify(password, entry[1]):
            logger.info("login_failed", email=email)
            raise InvalidCredentialsError()
        self._sign_in(entry[0])
        return entry[0]

    async def logout(self) -> None:
        if self._current_user_id is not None:
            logger.info("user_logged_out", user_id=self._current_user_id)
        self._current_user_id = None
        unbind_context("user_id")

    def _sign_in(self, uid: str) -> None:
        self._current_user_id = uid
        bind_context(user_id=uid)
