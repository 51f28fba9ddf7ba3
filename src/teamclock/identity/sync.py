"""Identity reconciliation engine -- CRM directory into the local identity store.

One run:
1. Resolve active credentials (request keys, else stored keys).
2. Fetch the directory once per available scope (location key, agency key).
   The two fetches run concurrently; a failure in one never aborts the other.
3. Normalize each raw record, dropping placeholders and records without id.
4. Resolve the role (agency supremacy, CRM role markers).
5. Upsert into the identity store, elevation-only.

Upserts are sequential, in a fixed scope order (location, then agency), so the
run log is deterministic. Every upsert re-reads the identity before writing,
which keeps the elevation-only rule intact even when two runs interleave.

Only ValidationError (before any external call) and PersistenceError escape
run(); external and per-record failures are accumulated in the SyncRun.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog

from src.teamclock.core.monitoring import identity_sync_records_total, track_sync_run
from src.teamclock.crm.client import DirectoryClient, DirectoryFetch
from src.teamclock.crm.payloads import SkipReason, normalize_record
from src.teamclock.identity.credentials import CredentialResolver
from src.teamclock.identity.exceptions import (
    ExternalAPIError,
    PerRecordError,
    PersistenceError,
    ValidationError,
)
from src.teamclock.identity.placeholders import is_placeholder_location
from src.teamclock.identity.repository import IdentityRepository
from src.teamclock.identity.roles import apply_elevation, resolve_role
from src.teamclock.identity.schemas import (
    ActiveCredentials,
    FetchScope,
    IdentityCreate,
    IdentityUpdate,
    NormalizedRecord,
    SyncRequest,
    SyncRun,
)

logger = structlog.get_logger(__name__)

ADDED = "added"
UPDATED = "updated"


class ReconciliationEngine:
    """Orchestrates credential resolution, directory fetch and identity upsert.

    Args:
        identities: Identity store.
        resolver: Credential resolver (also persists newly supplied keys).
        directory: CRM directory client.
        email_heuristic: Exclude emails containing "test" and "@".
    """

    def __init__(
        self,
        identities: IdentityRepository,
        resolver: CredentialResolver,
        directory: DirectoryClient,
        email_heuristic: bool = True,
    ) -> None:
        self._identities = identities
        self._resolver = resolver
        self._directory = directory
        self._email_heuristic = email_heuristic

    async def run(self, request: SyncRequest) -> SyncRun:
        """Execute one synchronization run.

        Args:
            request: Trigger input with optional fresh keys and scope ids.

        Returns:
            SyncRun with stats and the ordered run log.

        Raises:
            ValidationError: Missing/placeholder identifiers or no credentials.
            PersistenceError: The store is unavailable.
        """
        run = SyncRun(triggered_by=request.triggered_by)

        logger.info(
            "sync.run_started",
            location_id=request.location_id,
            company_id=request.company_id,
            triggered_by=request.triggered_by,
        )
        with track_sync_run() as tracker:
            run.log(
                f"Sync started (location={request.location_id or '-'}, "
                f"company={request.company_id or '-'}, by={request.triggered_by or 'unknown'})"
            )
            try:
                credentials = await self._resolver.resolve(request, run)
                fetches = await self._fetch_all(credentials, run)
                for fetch in fetches:
                    await self._apply(fetch, credentials.effective_location_id, run)
            except ValidationError as exc:
                tracker["outcome"] = "rejected"
                run.log(f"Validation failed: {exc.message}")
                exc.logs = list(run.logs)
                raise
            except PersistenceError as exc:
                run.log(f"Store unavailable: {exc}")
                exc.logs = list(run.logs)
                raise

            stats = run.stats
            run.log(
                f"Sync finished: total={stats.total} added={stats.added} "
                f"updated={stats.updated} skipped={stats.skipped} errors={len(stats.errors)}"
            )
            tracker["outcome"] = "partial" if stats.errors else "success"

        logger.info(
            "sync.run_complete",
            location_id=credentials.location_id,
            company_id=credentials.company_id,
            total=run.stats.total,
            added=run.stats.added,
            updated=run.stats.updated,
            skipped=run.stats.skipped,
            errors=len(run.stats.errors),
        )
        return run

    # ── Fetch ───────────────────────────────────────────────────────────────

    async def _fetch_all(
        self, credentials: ActiveCredentials, run: SyncRun
    ) -> list[DirectoryFetch]:
        """Fetch every available scope concurrently, isolating failures."""
        scopes: list[tuple[FetchScope, str]] = []
        if credentials.location_api_key:
            scopes.append((FetchScope.LOCATION, credentials.location_api_key))
        if credentials.agency_api_key:
            scopes.append((FetchScope.AGENCY, credentials.agency_api_key))

        results = await asyncio.gather(
            *(
                self._directory.list_users(
                    scope,
                    key,
                    location_id=credentials.effective_location_id,
                    company_id=credentials.company_id,
                )
                for scope, key in scopes
            ),
            return_exceptions=True,
        )

        fetches: list[DirectoryFetch] = []
        for (scope, _), result in zip(scopes, results):
            if isinstance(result, DirectoryFetch):
                for note in result.notes:
                    run.log(note)
                run.log(
                    f"{scope.value}: {len(result.users)} users from API {result.generation.value}"
                )
                fetches.append(result)
            elif isinstance(result, ExternalAPIError):
                run.error(f"{scope.value} fetch failed: {result}")
                logger.warning("sync.fetch_failed", scope=scope.value, error=str(result))
            elif isinstance(result, Exception):
                run.error(f"{scope.value} fetch failed unexpectedly: {result}")
                logger.error("sync.fetch_crashed", scope=scope.value, error=str(result))
            else:
                # BaseException such as CancelledError: the caller aborted
                raise result
        return fetches

    # ── Upsert ──────────────────────────────────────────────────────────────

    async def _apply(
        self, fetch: DirectoryFetch, scope_location_id: str | None, run: SyncRun
    ) -> None:
        """Normalize and upsert every record of one scope, one at a time."""
        stats = run.stats
        for raw in fetch.users:
            stats.total += 1
            try:
                outcome = normalize_record(
                    raw, fetch.scope, scope_location_id, email_heuristic=self._email_heuristic
                )
                if isinstance(outcome, SkipReason):
                    stats.skipped += 1
                    run.log(f"Skipped ({outcome.kind.value}): {outcome.detail}")
                    identity_sync_records_total.labels(
                        scope=fetch.scope.value, result="skipped"
                    ).inc()
                    continue

                result = await self.upsert(outcome)
            except PersistenceError:
                raise
            except Exception as exc:
                error = PerRecordError(str(raw.get("id") or "") or None, str(exc))
                run.error(str(error))
                logger.warning("sync.record_failed", scope=fetch.scope.value, error=str(error))
                identity_sync_records_total.labels(scope=fetch.scope.value, result="error").inc()
                continue

            if result == ADDED:
                stats.added += 1
            else:
                stats.updated += 1
            if fetch.scope == FetchScope.AGENCY:
                stats.agency_users += 1
            else:
                stats.location_users += 1
            run.log(f"{result.capitalize()}: {outcome.display_name} ({outcome.id}) [{fetch.scope.value}]")
            identity_sync_records_total.labels(scope=fetch.scope.value, result=result).inc()

    async def upsert(self, record: NormalizedRecord) -> str:
        """Create or update one identity from a normalized record.

        Returns:
            "added" or "updated".
        """
        resolved = resolve_role(record.raw, record.scope)
        existing = await self._identities.get(record.id)

        if existing is None:
            try:
                await self._identities.create(
                    IdentityCreate(
                        id=record.id,
                        display_name=record.display_name,
                        email=record.email,
                        role=resolved,
                        tenant_scope=record.source_location_id,
                    )
                )
                return ADDED
            except PersistenceError:
                # A concurrent run may have created it first; fall through to update
                existing = await self._identities.get(record.id)
                if existing is None:
                    raise

        update = IdentityUpdate(
            display_name=record.display_name,
            email=record.email,
            last_seen_at=datetime.now(timezone.utc),
        )
        if record.source_location_id and (
            not existing.tenant_scope or is_placeholder_location(existing.tenant_scope)
        ):
            update.tenant_scope = record.source_location_id

        role = apply_elevation(existing.role, resolved)
        if role != existing.role:
            update.role = role

        await self._identities.update(record.id, update)
        return UPDATED
