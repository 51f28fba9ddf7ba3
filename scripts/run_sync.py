#!/usr/bin/env python3
"""CLI script to run one identity synchronization pass.

Usage:
    uv run python scripts/run_sync.py --location-id abc123
    uv run python scripts/run_sync.py --company-id co_1 --agency-key pit-xxxx --triggered-by ops

Connects directly to the database using DATABASE_URL from environment or .env file.
Keys passed on the command line are stored for the scope, exactly as when the
sync is triggered from the dashboard; omitted keys fall back to stored ones.
Exits non-zero when the run is rejected or the store fails.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.teamclock
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def run_sync(args: argparse.Namespace) -> int:
    """Build the engine the way the app lifespan does and run it once."""
    from src.teamclock.api.middleware.logging import configure_structlog
    from src.teamclock.config import get_settings
    from src.teamclock.core.database import close_db, get_session, init_db
    from src.teamclock.crm.client import DirectoryClient
    from src.teamclock.identity.credentials import CredentialResolver
    from src.teamclock.identity.exceptions import PersistenceError, ValidationError
    from src.teamclock.identity.repository import CredentialRepository, IdentityRepository
    from src.teamclock.identity.schemas import SyncRequest
    from src.teamclock.identity.sync import ReconciliationEngine

    settings = get_settings()
    configure_structlog()
    await init_db()

    engine = ReconciliationEngine(
        identities=IdentityRepository(session_factory=get_session),
        resolver=CredentialResolver(CredentialRepository(session_factory=get_session)),
        directory=DirectoryClient.from_settings(settings),
        email_heuristic=settings.PLACEHOLDER_EMAIL_HEURISTIC,
    )
    request = SyncRequest(
        location_api_key=args.location_key,
        agency_api_key=args.agency_key,
        location_id=args.location_id,
        company_id=args.company_id,
        triggered_by=args.triggered_by,
    )

    try:
        run = await engine.run(request)
    except (ValidationError, PersistenceError) as exc:
        for line in exc.logs:
            print(f"  {line}")
        print(f"Sync failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await close_db()

    for line in run.logs:
        print(f"  {line}")
    stats = run.stats
    print("Sync complete:")
    print(f"  Total:    {stats.total}")
    print(f"  Added:    {stats.added}")
    print(f"  Updated:  {stats.updated}")
    print(f"  Skipped:  {stats.skipped}")
    print(f"  Location: {stats.location_users}")
    print(f"  Agency:   {stats.agency_users}")
    print(f"  Errors:   {len(stats.errors)}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Synchronize CRM users into the identity store")
    parser.add_argument("--location-id", default=None, help="CRM location (sub-account) id")
    parser.add_argument("--company-id", default=None, help="CRM company (agency) id")
    parser.add_argument("--location-key", default=None, help="Location-scoped API key")
    parser.add_argument("--agency-key", default=None, help="Agency-scoped API key")
    parser.add_argument("--triggered-by", default="cli", help="Recorded as the updater of stored keys")
    args = parser.parse_args()

    if not args.location_id and not args.company_id:
        parser.error("--location-id or --company-id is required")

    sys.exit(asyncio.run(run_sync(args)))


if __name__ == "__main__":
    main()
