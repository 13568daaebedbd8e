"""
Validators
==========

Common validation utilities and the account password policy.
"""

import re
from typing import Optional

from ancretoi.core.errors import ErrorCodes, ValidationError

_EMAIL = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def validate_email(email: str, code: str = ErrorCodes.VALIDATION_ERROR) -> str:
    """
    Validate email format.

    Args:
        email: Email address to validate
        code: Error code raised on failure

    Returns:
        Validated email (trimmed, lowercase)

    Raises:
        ValidationError: If email is invalid
    """
    candidate = (email or "").strip()
    if not _EMAIL.match(candidate):
        raise ValidationError(
            message="Adresse e-mail invalide.",
            field="email",
            code=code,
        )
    return candidate.lower()


def normalize_hex_color(value: Optional[str], field_name: str = "color") -> Optional[str]:
    """
    Normalize ``#rgb`` / ``#rrggbb`` to lowercase ``#rrggbb``.

    Empty input yields None.
    """
    if value is None or not value.strip():
        return None
    color = value.strip()
    if not _HEX_COLOR.match(color):
        raise ValidationError(
            message="Couleur invalide (format #rgb ou #rrggbb).",
            field=field_name,
        )
    if len(color) == 4:
        color = "#" + "".join(ch * 2 for ch in color[1:])
    return color.lower()


def validate_local_path(value: Optional[str], field_name: str = "imagePath") -> Optional[str]:
    """
    Accept only site-local asset paths.

    Remote URLs and parent-directory segments are refused. A missing
    leading slash is added and a ``public/`` prefix removed.
    """
    if value is None or not value.strip():
        return None
    path = value.strip()
    lowered = path.lower()
    if lowered.startswith(("http:", "https:", "//", "data:")) or ".." in path:
        raise ValidationError(
            message="Chemin d'image local uniquement (ex: /images/blog/cover.jpg).",
            field=field_name,
        )
    if path.startswith("public/"):
        path = path[len("public"):]
    if not path.startswith("/"):
        path = "/" + path
    return path


# =============================================================================
# Password policy
# =============================================================================

PASSWORD_MIN_LENGTH = 12
RESET_PASSWORD_MIN_LENGTH = 8

COMMON_PASSWORDS = frozenset({
    "123456", "123456789", "12345678", "password", "motdepasse", "qwerty",
    "azerty", "admin", "welcome", "letmein", "iloveyou", "dragon", "princess",
    "football", "abc123", "monkey", "000000", "password1", "password1!",
    "p@ssw0rd", "1q2w3e4r",
})
KEYBOARD_RUNS = ("abcdef", "qwerty", "azerty", "123456", "654321", "qwertz", "poiuy", "asdfgh", "zxcvbn")

_SYMBOL = re.compile(r"[^\w\s]")
_REPEATS = re.compile(r"(.)\1{2,}")


def _has_sequence(password: str) -> bool:
    lowered = password.lower()
    if any(run in lowered for run in KEYBOARD_RUNS):
        return True
    codes = [ord(c) for c in lowered]
    for i in range(len(codes) - 3):
        steps = {codes[i + k + 1] - codes[i + k] for k in range(3)}
        if steps in ({1}, {-1}):
            return True
    return False


def password_issues(password: str, email: Optional[str] = None, name: Optional[str] = None) -> list[str]:
    """
    Weaknesses of ``password``, in a stable order.

    Issues: too_short, no_lower, no_upper, no_digit, no_symbol, has_space,
    contains_email, contains_name, repeats, sequence, common.
    """
    issues = []
    if len(password) < PASSWORD_MIN_LENGTH:
        issues.append("too_short")
    if not re.search(r"[a-z]", password):
        issues.append("no_lower")
    if not re.search(r"[A-Z]", password):
        issues.append("no_upper")
    if not re.search(r"[0-9]", password):
        issues.append("no_digit")
    if not _SYMBOL.search(password):
        issues.append("no_symbol")
    if re.search(r"\s", password):
        issues.append("has_space")

    lowered = password.lower()
    local_part = (email or "").lower().split("@")[0]
    if len(local_part) >= 3 and local_part in lowered:
        issues.append("contains_email")
    name_tokens = [t for t in (name or "").lower().split() if len(t) >= 3]
    if any(t in lowered for t in name_tokens):
        issues.append("contains_name")

    if _REPEATS.search(password):
        issues.append("repeats")
    if _has_sequence(password):
        issues.append("sequence")
    if lowered in COMMON_PASSWORDS:
        issues.append("common")
    return issues


def validate_strong_password(password: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
    """
    Enforce the account password policy.

    At least 12 characters with a lowercase letter, an uppercase letter, a
    digit and a symbol, no whitespace, and none of the high-risk issues.

    Raises:
        ValidationError: ``AUTH_WEAK_PASSWORD`` listing every issue found
    """
    issues = password_issues(password, email, name)
    if issues:
        raise ValidationError(
            message="Mot de passe trop faible.",
            field="password",
            code=ErrorCodes.AUTH_WEAK_PASSWORD,
            issues=issues,
        )
    return password
