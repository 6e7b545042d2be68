"""Configuration parsing and validation for the ADO metrics core."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from dotenv import load_dotenv

from .errors import AuthenticationError, ConfigurationError

DEFAULT_MAX_CONCURRENCY = 6
MAX_CONCURRENCY_LIMIT = 32
DEFAULT_REQUEST_TIMEOUT_MS = 60_000
DEFAULT_CACHE_TTL_MS = 86_400_000
DEFAULT_CACHE_MAX_ENTRIES = 500


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used by the metrics core."""

    organization: str
    project: str
    repo_id: str
    pat: str
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS
    cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES
    exclude_users_regex: Optional[str] = None
    exclude_users: Tuple[str, ...] = field(default_factory=tuple)


def _require(name: str, value: Optional[str]) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ConfigurationError(f"Missing required setting '{name}'.")
    return cleaned


def _positive(name: str, value: int, upper: Optional[int] = None) -> int:
    if value <= 0:
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer greater than 0.")
    if upper is not None and value > upper:
        raise ConfigurationError(f"Invalid value for '{name}': expected at most {upper}.")
    return value


def load_config(
    organization: str,
    project: str,
    repo_id: str,
    pat: Optional[str] = None,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS,
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS,
    cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
    exclude_users_regex: Optional[str] = None,
    exclude_users: Sequence[str] = (),
) -> Config:
    """Build and validate application configuration.

    Args:
        organization: Azure DevOps organization name.
        project: Azure DevOps project name.
        repo_id: Repository identifier used for pull request queries.
        pat: Personal access token; falls back to ``ADO_PAT`` when omitted.
        max_concurrency: Process-wide cap on in-flight HTTP requests (1-32).
        request_timeout_ms: Per-attempt timeout in milliseconds.
        cache_ttl_ms: Time-to-live of cached responses in milliseconds.
        cache_max_entries: LRU capacity of the response cache.
        exclude_users_regex: Pattern flagging directory users as service accounts.
        exclude_users: Identities always flagged as service accounts.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If a required value is missing or out of range.
        AuthenticationError: If no personal access token is configured.
    """
    token = (pat if pat is not None else os.getenv("ADO_PAT", "")).strip()
    if not token:
        raise AuthenticationError(
            "Missing required Azure DevOps Personal Access Token. "
            "Set the 'ADO_PAT' environment variable before running."
        )

    if exclude_users_regex:
        try:
            re.compile(exclude_users_regex)
        except re.error as exc:
            raise ConfigurationError(
                f"Invalid value for 'EXCLUDE_USERS_REGEX': {exc}"
            ) from exc

    return Config(
        organization=_require("ADO_ORG", organization),
        project=_require("ADO_PROJECT", project),
        repo_id=_require("ADO_REPO_ID", repo_id),
        pat=token,
        max_concurrency=_positive("APP_MAX_CONCURRENCY", max_concurrency, MAX_CONCURRENCY_LIMIT),
        request_timeout_ms=_positive("APP_REQUEST_TIMEOUT_MS", request_timeout_ms),
        cache_ttl_ms=_positive("APP_CACHE_TTL_MS", cache_ttl_ms),
        cache_max_entries=_positive("APP_CACHE_MAX_ENTRIES", cache_max_entries),
        exclude_users_regex=exclude_users_regex or None,
        exclude_users=tuple(user.strip() for user in exclude_users if user.strip()),
    )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer.") from exc


def load_config_from_env() -> Config:
    """Load configuration from the process environment (and a local ``.env``)."""
    load_dotenv()
    return load_config(
        organization=os.getenv("ADO_ORG", ""),
        project=os.getenv("ADO_PROJECT", ""),
        repo_id=os.getenv("ADO_REPO_ID", ""),
        pat=os.getenv("ADO_PAT", ""),
        max_concurrency=_int_env("APP_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
        request_timeout_ms=_int_env("APP_REQUEST_TIMEOUT_MS", DEFAULT_REQUEST_TIMEOUT_MS),
        cache_ttl_ms=_int_env("APP_CACHE_TTL_MS", DEFAULT_CACHE_TTL_MS),
        cache_max_entries=_int_env("APP_CACHE_MAX_ENTRIES", DEFAULT_CACHE_MAX_ENTRIES),
        exclude_users_regex=os.getenv("EXCLUDE_USERS_REGEX") or None,
        exclude_users=os.getenv("EXCLUDE_USERS", "").split(","),
    )
