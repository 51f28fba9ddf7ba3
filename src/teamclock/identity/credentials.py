"""Credential resolution for synchronization runs.

Turns caller-supplied keys and scope identifiers into the active pair of
keys a run will use, persisting any newly supplied key on the way:

1. Reject requests without a usable location or company id.
2. Active key = trimmed input if non-empty, else the stored value.
3. Reject when neither a location key nor an agency key is available.
4. Upsert the credential record keyed by location id, else company id.

All validation happens here, before any external call is made.
"""

from __future__ import annotations

import structlog

from src.teamclock.identity.exceptions import ValidationError
from src.teamclock.identity.messages import message
from src.teamclock.identity.placeholders import is_placeholder_location
from src.teamclock.identity.repository import CredentialRepository
from src.teamclock.identity.schemas import (
    ActiveCredentials,
    CredentialStatus,
    CredentialUpdate,
    SyncRequest,
    SyncRun,
)

logger = structlog.get_logger(__name__)


def _clean(value: str | None) -> str:
    return (value or "").strip()


class CredentialResolver:
    """Resolves and persists the keys of one tenant scope.

    Args:
        repository: Credential store.
    """

    def __init__(self, repository: CredentialRepository) -> None:
        self._repository = repository

    async def resolve(self, request: SyncRequest, run: SyncRun | None = None) -> ActiveCredentials:
        """Validate ``request`` and return the active credentials.

        Raises:
            ValidationError: Missing/placeholder scope or no key available.
        """
        location_id = _clean(request.location_id) or None
        company_id = _clean(request.company_id) or None

        if not location_id and not company_id:
            raise ValidationError(message("missing_scope"), code="missing_scope")

        placeholder = is_placeholder_location(location_id)
        if placeholder and not company_id:
            raise ValidationError(message("placeholder_location"), code="placeholder_location")

        record_location = None if placeholder else location_id
        stored = await self._repository.find(location_id=record_location, company_id=company_id)

        input_location_key = _clean(request.location_api_key)
        input_agency_key = _clean(request.agency_api_key)

        location_key = input_location_key or _clean(stored.location_api_key if stored else None)
        agency_key = input_agency_key or _clean(stored.agency_api_key if stored else None)

        if not location_key and not agency_key:
            raise ValidationError(message("missing_keys"), code="missing_keys")

        if run is not None:
            run.log(
                f"Location key: {'request' if input_location_key else 'stored' if location_key else 'none'}; "
                f"agency key: {'request' if input_agency_key else 'stored' if agency_key else 'none'}"
            )
            if placeholder:
                run.log(f"Location ID '{location_id}' is a placeholder; using company {company_id}")

        record = await self._repository.upsert(
            location_id=record_location,
            company_id=company_id,
            data=CredentialUpdate(
                location_api_key=input_location_key or None,
                agency_api_key=input_agency_key or None,
                company_id=company_id,
                updated_by=request.triggered_by,
            ),
        )

        logger.info(
            "credentials.resolved",
            location_id=location_id,
            company_id=company_id or record.company_id,
            has_location_key=bool(location_key),
            has_agency_key=bool(agency_key),
        )

        return ActiveCredentials(
            location_id=location_id,
            company_id=company_id or record.company_id,
            location_api_key=location_key,
            agency_api_key=agency_key,
        )

    async def status(
        self, location_id: str | None, company_id: str | None
    ) -> CredentialStatus:
        """Presence flags of the stored record for a scope. Never returns keys."""
        location_id = _clean(location_id) or None
        company_id = _clean(company_id) or None
        placeholder = is_placeholder_location(location_id)

        if not location_id and not company_id:
            return CredentialStatus()

        record = await self._repository.find(
            location_id=None if placeholder else location_id,
            company_id=company_id,
        )
        if record is None:
            return CredentialStatus(is_placeholder=placeholder)

        return CredentialStatus(
            has_key=bool(_clean(record.location_api_key)),
            has_agency_key=bool(_clean(record.agency_api_key)),
            has_company_id=bool(record.company_id),
            company_id=record.company_id,
            is_placeholder=placeholder,
        )
