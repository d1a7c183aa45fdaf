"""Localized user-facing messages for HomePlus errors.

The core only raises typed errors carrying a kind and context; screens call
render_error() to turn them into text.
"""

from typing import Any

from homeplus.config import get_settings
from homeplus.exceptions import HomePlusError

MESSAGES: dict[str, dict[str, str]] = {
    "fr": {
        "HOUSEHOLD_NOT_FOUND": "Foyer introuvable",
        "USER_NOT_FOUND": "Utilisateur introuvable",
        "INVITE_CODE_NOT_FOUND": "Code d'invitation invalide",
        "MEMBER_NOT_FOUND": "Cet utilisateur n'est pas membre du foyer",
        "DOCUMENT_NOT_FOUND": "Donnée introuvable",
        "NOT_HOUSEHOLD_ADMIN": "Seuls les administrateurs peuvent effectuer cette action",
        "FOUNDER_PROTECTED": (
            "Le créateur ne peut pas quitter le foyer. "
            "Supprimez-le ou transférez la propriété."
        ),
        "FOUNDER_PROTECTED.remove_member": "Impossible de retirer le créateur du foyer",
        "FOUNDER_PROTECTED.deactivate": "Impossible de désactiver le créateur du foyer",
        "NOT_AUTHENTICATED": "Vous devez être connecté",
        "IDENTITY_MISMATCH": "Action non autorisée pour cet utilisateur",
        "ALREADY_MEMBER": "Vous êtes déjà membre de ce foyer",
        "CAPACITY_EXCEEDED": (
            "Ce foyer a atteint le nombre maximum de membres ({max_members})"
        ),
        "INVITE_CODE_EXPIRED": "Code d'invitation expiré",
        "INVALID_INPUT": "Valeur invalide pour {field}",
        "INVALID_CREDENTIALS": "Email ou mot de passe incorrect",
        "INVITE_CODE_EXHAUSTED": "Impossible de générer un code d'invitation, réessayez",
        "WRITE_CONTENTION": "Le foyer est très sollicité, réessayez",
        "VERSION_CONFLICT": "Le foyer a été modifié entre-temps, réessayez",
        "PARTIAL_WRITE": "Opération partiellement enregistrée, réessayez",
        "STORAGE_FAILURE": "Erreur de connexion, réessayez plus tard",
    },
    "en": {
        "HOUSEHOLD_NOT_FOUND": "Household not found",
        "USER_NOT_FOUND": "User not found",
        "INVITE_CODE_NOT_FOUND": "Invalid invite code",
        "MEMBER_NOT_FOUND": "This user is not a member of the household",
        "DOCUMENT_NOT_FOUND": "Record not found",
        "NOT_HOUSEHOLD_ADMIN": "Only admins can perform this action",
        "FOUNDER_PROTECTED": (
            "The founder cannot leave the household. "
            "Delete it or transfer ownership."
        ),
        "FOUNDER_PROTECTED.remove_member": "The founder cannot be removed from the household",
        "FOUNDER_PROTECTED.deactivate": "The founder cannot be deactivated",
        "NOT_AUTHENTICATED": "You must be signed in",
        "IDENTITY_MISMATCH": "Action not allowed for this user",
        "ALREADY_MEMBER": "You are already a member of this household",
        "CAPACITY_EXCEEDED": (
            "This household has reached its maximum of {max_members} members"
        ),
        "INVITE_CODE_EXPIRED": "Invite code expired",
        "INVALID_INPUT": "Invalid value for {field}",
        "INVALID_CREDENTIALS": "Incorrect email or password",
        "INVITE_CODE_EXHAUSTED": "Could not generate an invite code, please retry",
        "WRITE_CONTENTION": "The household is busy, please retry",
        "VERSION_CONFLICT": "The household changed in the meantime, please retry",
        "PARTIAL_WRITE": "The operation was only partly saved, please retry",
        "STORAGE_FAILURE": "Connection error, please try again later",
    },
}

# Fallback per kind when a subclass has no dedicated entry.
_KIND_FALLBACKS = {
    "NotFound": "DOCUMENT_NOT_FOUND",
    "Forbidden": "NOT_HOUSEHOLD_ADMIN",
    "InvalidInput": "INVALID_INPUT",
    "ResourceExhausted": "WRITE_CONTENTION",
    "StorageFailure": "STORAGE_FAILURE",
}


def render_error(error: HomePlusError, locale: str | None = None) -> str:
    """Render a localized message for an error.

    An entry keyed "<error_code>.<action>" takes precedence when the error
    context names the action that was refused.

    Args:
        error: Any HomePlusError raised by the core.
        locale: "fr" or "en". Defaults to the configured locale.

    Returns:
        The message with context values substituted.
    """
    catalog = MESSAGES.get(locale or get_settings().default_locale, MESSAGES["fr"])
    template = catalog.get(f"{error.error_code}.{error.context.get('action')}")
    if template is None:
        template = catalog.get(error.error_code)
    if template is None:
        fallback = _KIND_FALLBACKS.get(error.kind)
        template = catalog.get(fallback, error.message) if fallback else error.message
    return template.format_map(_SafeContext(error.context))


class _SafeContext(dict[str, Any]):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"
