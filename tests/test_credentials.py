"""Tests for credential resolution and the key-free status view."""

from __future__ import annotations

import pytest

from src.teamclock.identity.exceptions import ValidationError
from src.teamclock.identity.messages import message
from src.teamclock.identity.schemas import CredentialUpdate, SyncRequest, SyncRun


class TestSyncRequest:
    @pytest.mark.parametrize("field", ["locationApiKey", "apiKey", "location_api_key"])
    def test_location_key_field_names(self, field):
        request = SyncRequest.model_validate({"locationId": "loc1", field: "abc"})
        assert request.location_api_key == "abc"
        assert request.location_id == "loc1"


class TestResolve:
    async def test_request_keys_win_over_stored(self, resolver, credential_repo):
        await credential_repo.upsert("loc-1", None, CredentialUpdate(location_api_key="old"))

        active = await resolver.resolve(SyncRequest(location_id="loc-1", location_api_key="new"))

        assert active.location_api_key == "new"
        assert (await credential_repo.find(location_id="loc-1")).location_api_key == "new"

    async def test_blank_request_key_keeps_stored(self, resolver, credential_repo):
        await credential_repo.upsert(
            "loc-1", None, CredentialUpdate(location_api_key="stored", agency_api_key="agency")
        )

        active = await resolver.resolve(SyncRequest(location_id="loc-1", location_api_key="   "))

        assert active.location_api_key == "stored"
        assert active.agency_api_key == "agency"
        record = await credential_repo.find(location_id="loc-1")
        assert record.location_api_key == "stored"

    async def test_company_only_record(self, resolver, credential_repo):
        active = await resolver.resolve(
            SyncRequest(location_id="{location.id}", company_id="co-1", agency_api_key="agency")
        )

        assert active.effective_location_id is None
        assert active.company_id == "co-1"
        assert credential_repo.records[0].location_id is None
        assert credential_repo.records[0].company_id == "co-1"

    async def test_company_id_is_remembered_for_location(self, resolver, credential_repo):
        await resolver.resolve(
            SyncRequest(location_id="loc-1", company_id="co-1", location_api_key="k")
        )

        active = await resolver.resolve(SyncRequest(location_id="loc-1"))

        assert active.company_id == "co-1"
        assert active.location_api_key == "k"

    async def test_run_log_names_key_sources(self, resolver, credential_repo):
        await credential_repo.upsert("loc-1", None, CredentialUpdate(agency_api_key="agency"))
        run = SyncRun()

        await resolver.resolve(SyncRequest(location_id="loc-1", location_api_key="fresh"), run)

        assert run.logs == ["Location key: request; agency key: stored"]

    async def test_missing_keys_message_is_localized(self, resolver):
        with pytest.raises(ValidationError) as exc_info:
            await resolver.resolve(SyncRequest(location_id="loc-1"))

        assert exc_info.value.message == message("missing_keys")


class TestStatus:
    async def test_status_never_exposes_keys(self, resolver, credential_repo):
        await credential_repo.upsert(
            "loc-1", "co-1", CredentialUpdate(location_api_key="secret", company_id="co-1")
        )

        status = await resolver.status("loc-1", None)
        body = status.model_dump(by_alias=True)

        assert body == {
            "hasKey": True,
            "hasAgencyKey": False,
            "hasCompanyId": True,
            "companyId": "co-1",
            "isPlaceholder": False,
        }
        assert "secret" not in str(body)

    async def test_unknown_scope(self, resolver):
        status = await resolver.status("{{location.id}}", None)
        assert status.has_key is False
        assert status.is_placeholder is True

    async def test_no_identifiers(self, resolver):
        status = await resolver.status(None, None)
        assert status.has_key is False
        assert status.is_placeholder is False


class TestMessages:
    def test_english_fallback(self):
        assert message("missing_scope", locale="de") == "Missing Location ID or Company ID."

    def test_unknown_code(self):
        assert message("nope", locale="en") == "nope"
