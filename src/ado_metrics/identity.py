"""Identity normalization used to match authors, reviewers and people."""

from __future__ import annotations

from typing import Any, Optional


def clean_string(value: Any) -> Optional[str]:
    """Return ``value`` trimmed, or ``None`` when it is not a non-empty string."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_key(value: Any) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def equals_ignore_case(left: Any, right: str) -> bool:
    return isinstance(left, str) and left.strip().casefold() == right.strip().casefold()


def _field(identity: Any, name: str) -> Any:
    if isinstance(identity, dict):
        return identity.get(name)
    return getattr(identity, name, None)


def identity_key(identity: Any) -> Optional[str]:
    """Build the matching key for an identity reference.

    Priority: ``uniqueName``/``mailAddress``, then ``id``, then ``displayName``;
    the result is trimmed and lower-cased. Accepts schema objects or dicts.
    """
    if identity is None or isinstance(identity, (str, int, float, bool)):
        return None
    unique = clean_string(_field(identity, "uniqueName")) or clean_string(_field(identity, "mailAddress"))
    key = unique or clean_string(_field(identity, "id")) or clean_string(_field(identity, "displayName"))
    return key.lower() if key else None


def display_name(identity: Any) -> Optional[str]:
    """Return a display string for an assignee value (string or identity)."""
    if isinstance(identity, str):
        return clean_string(identity)
    if identity is None:
        return None
    return (
        clean_string(_field(identity, "displayName"))
        or clean_string(_field(identity, "uniqueName"))
        or clean_string(_field(identity, "mailAddress"))
    )
