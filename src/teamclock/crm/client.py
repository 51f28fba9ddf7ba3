"""Async HTTP client for the CRM user directory.

Reads user listings through two API generations:
- current (``services.leadconnectorhq.com``): versioned headers, supports
  ``locationId`` / ``companyId`` filters
- legacy (``rest.gohighlevel.com/v1``): location API keys only, no filters

list_users() tries the current generation first and falls back to the legacy
one when the current endpoint answers with a non-success status. Transient
failures (transport errors, 429, 5xx) are retried with tenacity and
exponential backoff before a generation is considered failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.teamclock.config import Settings
from src.teamclock.core.monitoring import crm_directory_requests_total
from src.teamclock.crm.payloads import classify_payload
from src.teamclock.identity.exceptions import ExternalAPIError
from src.teamclock.identity.schemas import FetchScope

logger = structlog.get_logger(__name__)


class ApiGeneration(str, Enum):
    CURRENT = "v2"
    LEGACY = "v1"


@dataclass
class DirectoryFetch:
    """Raw users returned for one scope, with how they were obtained."""

    scope: FetchScope
    generation: ApiGeneration
    users: list[dict[str, Any]]
    shape: str
    notes: list[str] = field(default_factory=list)


class _TransientStatus(Exception):
    """Retryable HTTP status (429 / 5xx)."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


class DirectoryClient:
    """Authenticated reads against the CRM user-listing endpoints.

    Args:
        base_url: Current-generation API root.
        legacy_base_url: Legacy-generation API root.
        api_version: Value of the ``Version`` header on current-generation calls.
        timeout: Per-request timeout in seconds; bounds how long a slow CRM
            can hold up one scope of a run.
        max_retries: Attempts per generation on transient failures.
        backoff: Exponential backoff multiplier in seconds (0 disables waiting).
    """

    def __init__(
        self,
        base_url: str = "https://services.leadconnectorhq.com",
        legacy_base_url: str = "https://rest.gohighlevel.com/v1",
        api_version: str = "2021-07-28",
        timeout: float = 15.0,
        max_retries: int = 3,
        backoff: float = 1.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._legacy_base_url = legacy_base_url.rstrip("/")
        self._api_version = api_version
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff = backoff

    @classmethod
    def from_settings(cls, settings: Settings) -> DirectoryClient:
        return cls(
            base_url=settings.CRM_BASE_URL,
            legacy_base_url=settings.CRM_LEGACY_BASE_URL,
            api_version=settings.CRM_API_VERSION,
            timeout=settings.CRM_TIMEOUT,
            max_retries=settings.CRM_MAX_RETRIES,
        )

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the configured timeout."""
        return httpx.AsyncClient(timeout=self._timeout)

    async def _send(
        self, url: str, params: dict[str, str] | None, headers: dict[str, str]
    ) -> httpx.Response:
        """One GET attempt. Raises _TransientStatus on 429 / 5xx."""
        async with self._client() as client:
            response = await client.get(url, params=params, headers=headers)
        if response.status_code == 429 or response.status_code >= 500:
            raise _TransientStatus(response)
        return response

    async def _get(
        self,
        url: str,
        *,
        api_key: str,
        params: dict[str, str] | None,
        generation: ApiGeneration,
        scope: FetchScope,
    ) -> Any:
        """GET ``url`` and return the decoded JSON body.

        Raises:
            ExternalAPIError: Non-success status, unreachable host, or invalid JSON.
        """
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        if generation == ApiGeneration.CURRENT:
            headers["Version"] = self._api_version

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._backoff, max=10),
            retry=retry_if_exception_type((httpx.TransportError, _TransientStatus)),
            reraise=True,
        )
        try:
            response = await retrying(self._send, url, params, headers)
        except _TransientStatus as exc:
            response = exc.response
        except httpx.TransportError as exc:
            crm_directory_requests_total.labels(
                generation=generation.value, scope=scope.value, status="unreachable"
            ).inc()
            raise ExternalAPIError(
                f"CRM {generation.value} unreachable: {exc.__class__.__name__}",
                generation=generation.value,
                detail=str(exc),
            ) from exc

        crm_directory_requests_total.labels(
            generation=generation.value, scope=scope.value, status=str(response.status_code)
        ).inc()

        if not response.is_success:
            raise ExternalAPIError(
                f"CRM {generation.value} returned HTTP {response.status_code}",
                status_code=response.status_code,
                generation=generation.value,
                detail=response.text[:500],
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ExternalAPIError(
                f"CRM {generation.value} returned invalid JSON",
                status_code=response.status_code,
                generation=generation.value,
            ) from exc

    async def fetch_current(
        self,
        scope: FetchScope,
        api_key: str,
        location_id: str | None = None,
        company_id: str | None = None,
    ) -> Any:
        """Current-generation listing with the filter that fits ``scope``.

        Location scope lists the users of one location; agency scope searches
        the whole company.
        """
        if scope == FetchScope.AGENCY:
            url = f"{self._base_url}/users/search"
            params = {"companyId": company_id} if company_id else {}
            if location_id:
                params["locationId"] = location_id
        else:
            url = f"{self._base_url}/users/"
            params = {"locationId": location_id} if location_id else {}
        return await self._get(
            url,
            api_key=api_key,
            params=params or None,
            generation=ApiGeneration.CURRENT,
            scope=scope,
        )

    async def fetch_legacy(self, scope: FetchScope, api_key: str) -> Any:
        """Legacy-generation listing; the key alone determines what is visible."""
        return await self._get(
            f"{self._legacy_base_url}/users/",
            api_key=api_key,
            params=None,
            generation=ApiGeneration.LEGACY,
            scope=scope,
        )

    async def list_users(
        self,
        scope: FetchScope,
        api_key: str,
        location_id: str | None = None,
        company_id: str | None = None,
    ) -> DirectoryFetch:
        """Fetch the raw users visible to ``api_key`` for ``scope``.

        Raises:
            ExternalAPIError: Both generations failed. The message names both
                failures.
        """
        notes: list[str] = []
        try:
            payload = await self.fetch_current(scope, api_key, location_id, company_id)
            generation = ApiGeneration.CURRENT
        except ExternalAPIError as current_exc:
            logger.warning(
                "crm.fallback_legacy",
                scope=scope.value,
                status_code=current_exc.status_code,
                error=str(current_exc),
            )
            notes.append(f"{scope.value}: {current_exc}; trying legacy API")
            try:
                payload = await self.fetch_legacy(scope, api_key)
            except ExternalAPIError as legacy_exc:
                raise ExternalAPIError(
                    f"{current_exc}; legacy fallback: {legacy_exc}",
                    status_code=legacy_exc.status_code,
                    generation=ApiGeneration.LEGACY.value,
                    detail=legacy_exc.detail,
                ) from legacy_exc
            generation = ApiGeneration.LEGACY

        shape, users = classify_payload(payload)
        users = [u for u in users if isinstance(u, dict)]
        logger.info(
            "crm.users_listed",
            scope=scope.value,
            generation=generation.value,
            shape=shape.value,
            count=len(users),
        )
        return DirectoryFetch(
            scope=scope,
            generation=generation,
            users=users,
            shape=shape.value,
            notes=notes,
        )
