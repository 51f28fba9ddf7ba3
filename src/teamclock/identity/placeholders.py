"""Unresolved launch-URL location values."""

from __future__ import annotations

# Launch-URL values the CRM leaves behind when it fails to substitute the location
PLACEHOLDER_LOCATION_TOKENS = frozenset({"location", "{location.id}", "{{location.id}}"})


def is_placeholder_location(value: str | None) -> bool:
    """Exact, case-insensitive match against the known placeholder tokens."""
    if value is None:
        return False
    return value.strip().lower() in PLACEHOLDER_LOCATION_TOKENS
