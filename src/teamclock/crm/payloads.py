"""Directory payload normalization -- the only place that guesses shapes.

The CRM returns user listings in several envelopes depending on API
generation and endpoint:

- bare array:            ``[{...}, {...}]``
- wrapped under a key:   ``{"users": [...]}``, ``{"data": [...]}``, ``{"items": [...]}``
- doubly wrapped:        ``{"data": {"users": [...]}}``

classify_payload() detects which of these shapes a payload has and returns
the flat list. normalize_record() turns one raw user into a
NormalizedRecord or a SkipReason; it never raises for bad data.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.teamclock.identity.schemas import FetchScope, NormalizedRecord

UNKNOWN_NAME = "Unknown"

_WRAPPER_KEYS = ("users", "data", "items", "results")


# ── Payload Shapes ──────────────────────────────────────────────────────────


class PayloadShape(str, Enum):
    """Known envelopes of a directory listing."""

    BARE = "bare"
    WRAPPED = "wrapped"
    NESTED = "nested"
    UNKNOWN = "unknown"


def classify_payload(payload: Any) -> tuple[PayloadShape, list[Any]]:
    """Classify ``payload`` and return its shape with the raw user list.

    Unknown shapes yield an empty list so the scope contributes zero records.
    """
    if isinstance(payload, list):
        return PayloadShape.BARE, payload

    if isinstance(payload, dict):
        for key in _WRAPPER_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return PayloadShape.WRAPPED, value
        for key in _WRAPPER_KEYS:
            value = payload.get(key)
            if isinstance(value, dict):
                for inner in _WRAPPER_KEYS:
                    if isinstance(value.get(inner), list):
                        return PayloadShape.NESTED, value[inner]

    return PayloadShape.UNKNOWN, []


# ── Record Normalization ────────────────────────────────────────────────────


class SkipKind(str, Enum):
    MISSING_ID = "missing_id"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class SkipReason:
    """Why a raw record was excluded from synchronization."""

    kind: SkipKind
    record_id: str | None
    detail: str


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def display_name_of(raw: dict[str, Any]) -> str:
    """Explicit name, else "first last", else "Unknown"."""
    name = _text(raw.get("name"))
    if name:
        return name
    composed = " ".join(
        part for part in (_text(raw.get("firstName")), _text(raw.get("lastName"))) if part
    )
    return composed or UNKNOWN_NAME


def record_location_of(raw: dict[str, Any]) -> str | None:
    """Location the external record itself declares, if any."""
    location = _text(raw.get("locationId"))
    if location:
        return location
    candidates = raw.get("locationIds")
    roles = raw.get("roles")
    if not isinstance(candidates, list) and isinstance(roles, dict):
        candidates = roles.get("locationIds")
    if isinstance(candidates, list):
        for candidate in candidates:
            if _text(candidate):
                return _text(candidate)
    return None


def is_placeholder_record(name: str, email: str, email_heuristic: bool = True) -> bool:
    """Unresolved template variables, or the "test" + "@" email heuristic.

    The email heuristic also excludes legitimate addresses such as
    ``contest@acme.com``; callers can disable it via settings.
    """
    for value in (name, email):
        if "{{" in value or "}}" in value:
            return True
    if email_heuristic and "test" in email.lower() and "@" in email:
        return True
    return False


def normalize_record(
    raw: dict[str, Any],
    scope: FetchScope,
    scope_location_id: str | None,
    email_heuristic: bool = True,
) -> NormalizedRecord | SkipReason:
    """Convert one raw directory user into a NormalizedRecord.

    Args:
        raw: User object as returned by the CRM.
        scope: Credential scope the record was fetched through.
        scope_location_id: Effective location id of the run (placeholders removed).
        email_heuristic: Apply the "test" + "@" exclusion.

    Returns:
        NormalizedRecord, or SkipReason when the record must be excluded.
    """
    record_id = _text(raw.get("id"))
    if not record_id:
        return SkipReason(SkipKind.MISSING_ID, None, "record has no id")

    name = display_name_of(raw)
    email = _text(raw.get("email"))

    if is_placeholder_record(name, email, email_heuristic):
        return SkipReason(SkipKind.PLACEHOLDER, record_id, f"placeholder record {name} <{email}>")

    return NormalizedRecord(
        id=record_id,
        display_name=name,
        email=email,
        source_location_id=record_location_of(raw) or scope_location_id or None,
        scope=scope,
        raw=raw,
    )
