"""Invite code generation and validation.

Codes are 6 characters drawn uniformly from 32 symbols: uppercase letters
and digits without the look-alikes I, O, 0 and 1.
"""

import secrets
from collections.abc import Callable

INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_LENGTH = 6

InviteCodeGenerator = Callable[[], str]


def generate_invite_code(choice: Callable[[str], str] = secrets.choice) -> str:
    """Draw a new invite code, one independent character at a time."""
    return "".join(choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def normalize_invite_code(code: str) -> str:
    """Normalize user-typed input for lookup (surrounding space, case)."""
    return code.strip().upper()


def is_valid_invite_code(code: str) -> bool:
    return len(code) == INVITE_CODE_LENGTH and all(
        c in INVITE_CODE_ALPHABET for c in code
    )
