"""Error taxonomy for identity synchronization.

- ValidationError: missing/placeholder identifiers or credentials (HTTP 400)
- ExternalAPIError: non-success response from the CRM directory, any generation
- PerRecordError: a single malformed external record
- PersistenceError: the identity/credential store is unavailable (HTTP 500)
- OwnershipError: ownership transfer from an identity that is not the owner (HTTP 409)

Only ValidationError and PersistenceError ever escape a synchronization run;
ExternalAPIError and PerRecordError are recorded in the run log and counted.
"""

from __future__ import annotations


class IdentitySyncError(Exception):
    """Base class for all identity synchronization errors.

    ``logs`` holds the run log up to the failure so the caller can still
    show what happened.
    """

    def __init__(self, *args: object) -> None:
        super().__init__(*args)
        self.logs: list[str] = []


class ValidationError(IdentitySyncError):
    """Caller input cannot start a run. Carries a user-facing message."""

    def __init__(self, message: str, code: str = "invalid_request") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


class ExternalAPIError(IdentitySyncError):
    """The external CRM directory answered with a non-success response."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        generation: str | None = None,
        detail: str = "",
    ) -> None:
        self.status_code = status_code
        self.generation = generation
        self.detail = detail
        super().__init__(message)


class PerRecordError(IdentitySyncError):
    """Processing one external user record failed."""

    def __init__(self, record_id: str | None, message: str) -> None:
        self.record_id = record_id
        super().__init__(f"Record {record_id or '<no id>'}: {message}")


class PersistenceError(IdentitySyncError):
    """The backing store could not be read or written."""


class OwnershipError(IdentitySyncError):
    """An ownership transfer names a current owner that does not hold the flag."""
