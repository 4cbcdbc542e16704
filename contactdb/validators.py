"""
Whitelist validation for text that ends up inside SQL statements.

SQLite cannot bind schema, table or column names as parameters, so every
identifier is checked against these predicates before it is concatenated
into SQL text. All functions are pure and never raise.
"""

import re
from typing import Optional

IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]+$")
NAME_RE = re.compile(r"^[A-Za-z '\-]+$")
PHONE_RE = re.compile(r"^\+?[0-9]+$")


def validate_identifier(value: Optional[str]) -> bool:
    """
    Check a username or group name.

    Args:
        value: Candidate identifier

    Returns:
        True if ``value`` is non-blank and contains only ASCII letters,
        digits and underscores
    """
    if not isinstance(value, str) or not value.strip():
        return False
    return IDENTIFIER_RE.fullmatch(value) is not None


def validate_name(value: Optional[str]) -> bool:
    """
    Check a first name or surname.

    Only letters, spaces, hyphens and apostrophes are accepted. Accepted
    values still need :func:`escape_quotes` before they go into SQL text.
    """
    if not isinstance(value, str):
        return False
    return NAME_RE.fullmatch(value) is not None


def validate_phone(value: Optional[str]) -> bool:
    """
    Check a phone number: digits only, with at most one leading ``+``.
    """
    if not isinstance(value, str):
        return False
    return PHONE_RE.fullmatch(value) is not None


def validate_password(value: Optional[str]) -> bool:
    """Check that a password is a string that can be stored as UTF-8."""
    if not isinstance(value, str):
        return False
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def escape_quotes(value: str) -> str:
    """Double every apostrophe so ``value`` is safe inside a quoted literal."""
    return value.replace("'", "''")


__all__ = [
    "validate_identifier",
    "validate_name",
    "validate_phone",
    "validate_password",
    "escape_quotes",
]
