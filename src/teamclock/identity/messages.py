"""User-facing validation messages.

The dashboard ships in Romanian first; English is kept for operators and
tests. Unknown locales fall back to English.
"""

from __future__ import annotations

from src.teamclock.config import get_settings

MESSAGES: dict[str, dict[str, str]] = {
    "missing_scope": {
        "ro": "Lipsește Location ID sau Company ID.",
        "en": "Missing Location ID or Company ID.",
    },
    "placeholder_location": {
        "ro": "Location ID nu a fost rezolvat de CRM (placeholder). Adăugați Company ID sau deschideți aplicația dintr-o sub-locație.",
        "en": "Location ID is an unresolved CRM placeholder. Provide a Company ID or open the app from a sub-account.",
    },
    "missing_keys": {
        "ro": "Lipsește cheia API (nicio cheie trimisă sau salvată).",
        "en": "Missing API key (none provided or saved).",
    },
    "sync_failed": {
        "ro": "Sincronizarea a eșuat.",
        "en": "Synchronization failed.",
    },
}


def message(code: str, locale: str | None = None) -> str:
    """Return the localized message for ``code``.

    Args:
        code: Key in MESSAGES.
        locale: Language code; defaults to Settings.LOCALE.

    Returns:
        The message text, or the code itself when unknown.
    """
    entry = MESSAGES.get(code)
    if entry is None:
        return code
    lang = locale or get_settings().LOCALE
    return entry.get(lang) or entry["en"]
