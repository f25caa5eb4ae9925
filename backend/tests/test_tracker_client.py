"""
Unit Tests for the Tracker API Client

Uses httpx.MockTransport; no network access.

Run with: pytest tests/test_tracker_client.py -v
"""

import json
import pytest
from datetime import date

import httpx

from reconciliation.clients.tracker_client import (
    TrackerAPIError,
    TrackerAuthError,
    TrackerClient,
    TrackerConnectionError,
    TrackerPayloadError,
)

BASE_URL = "http://tracker.test/api"


def make_client(handler, token="secret-token"):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TrackerClient(BASE_URL, token=token, http_client=http_client)


class RecordingHandler:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status_code=200, payload=None, content=None):
        self.status_code = status_code
        self.payload = payload
        self.content = content
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.content is not None:
            return httpx.Response(self.status_code, content=self.content)
        if self.payload is None:
            return httpx.Response(self.status_code)
        return httpx.Response(self.status_code, json=self.payload)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_body(self):
        return json.loads(self.last.content)


class TestRequests:
    """Test request construction."""

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self):
        handler = RecordingHandler(payload=[])
        await make_client(handler).fetch_unmatched_leads()

        assert handler.last.headers["Authorization"] == "Bearer secret-token"
        assert handler.last.url.path == "/api/leads/unmatched"

    @pytest.mark.asyncio
    async def test_no_token_no_header(self):
        handler = RecordingHandler(payload=[])
        await make_client(handler, token="").fetch_unmatched_leads()

        assert "Authorization" not in handler.last.headers

    @pytest.mark.asyncio
    async def test_drivers_by_date_params(self):
        handler = RecordingHandler(payload={"data": [{"driverId": "D1"}]})
        client = make_client(handler)

        drivers = await client.fetch_drivers_by_date(
            date(2024, 1, 5), "park-1", endpoint="/yango-transactions/drivers-by-date"
        )

        assert drivers == [{"driverId": "D1"}]
        assert handler.last.url.path == "/api/yango-transactions/drivers-by-date"
        assert handler.last.url.params["date"] == "2024-01-05"
        assert handler.last.url.params["parkId"] == "park-1"

    @pytest.mark.asyncio
    async def test_assign_lead_body(self):
        handler = RecordingHandler()
        await make_client(handler).assign_lead("EXT-1", "D1")

        assert handler.last.method == "POST"
        assert handler.last.url.path == "/api/leads/manual-match"
        assert handler.last_body == {"externalId": "EXT-1", "driverId": "D1"}

    @pytest.mark.asyncio
    async def test_assign_registration_body(self):
        handler = RecordingHandler()
        await make_client(handler).assign_scout_registration(10, "D1")

        assert handler.last.url.path == "/api/scout-registrations/manual-match"
        assert handler.last_body == {"registrationId": 10, "driverId": "D1"}

    @pytest.mark.asyncio
    async def test_assign_single_transaction(self):
        handler = RecordingHandler()
        await make_client(handler).assign_transaction(7, "D1")

        assert handler.last.url.path == "/api/yango-transactions/7/match"
        assert handler.last_body == {"driverId": "D1"}

    @pytest.mark.asyncio
    async def test_batch_match_with_milestones(self):
        handler = RecordingHandler(payload={"matchedCount": 2})
        result = await make_client(handler).assign_transactions_batch([1, 2], "D1", [100])

        assert result.matched_count == 2
        assert handler.last_body == {
            "transactionIds": [1, 2],
            "driverId": "D1",
            "milestoneInstanceIds": [100],
        }

    @pytest.mark.asyncio
    async def test_batch_match_without_milestones(self):
        handler = RecordingHandler(payload={"matchedCount": 1})
        await make_client(handler).assign_transactions_batch([3], "D1")

        assert "milestoneInstanceIds" not in handler.last_body

    @pytest.mark.asyncio
    async def test_discard_lead(self):
        handler = RecordingHandler()
        await make_client(handler).discard_lead("EXT-9")

        assert handler.last.url.path == "/api/leads/discard"
        assert handler.last_body == {"externalId": "EXT-9"}


class TestResponses:
    """Test response parsing."""

    @pytest.mark.asyncio
    async def test_leads_parsed_from_camel_case(self):
        handler = RecordingHandler(payload=[{
            "externalId": "EXT-1",
            "leadFirstName": "Ana",
            "leadLastName": "Diaz",
            "leadPhone": "999",
            "leadCreatedAt": "2024-01-01T10:00:00",
        }])

        leads = await make_client(handler).fetch_unmatched_leads()

        assert leads[0].external_id == "EXT-1"
        assert leads[0].full_name == "Ana Diaz"

    @pytest.mark.asyncio
    async def test_transaction_groups_flattened(self):
        handler = RecordingHandler(payload={"data": [
            {"driverNameFromComment": "Juan", "transactions": [
                {"id": 1, "driverNameFromComment": "Juan"},
                {"id": 2, "driverNameFromComment": "Juan"},
            ]},
            {"driverNameFromComment": None, "transactions": [{"id": 3}]},
        ]})

        transactions = await make_client(handler).fetch_unmatched_transactions()

        assert [t.id for t in transactions] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_null_data_is_empty(self):
        handler = RecordingHandler(payload={"data": None})

        assert await make_client(handler).fetch_unmatched_transactions() == []

    @pytest.mark.asyncio
    async def test_milestones(self):
        handler = RecordingHandler(payload=[
            {"id": 1, "driverId": "D1", "milestoneType": 5, "periodDays": 7, "tripCount": 6},
        ])

        milestones = await make_client(handler).fetch_driver_milestones("D1")

        assert handler.last.url.path == "/api/milestones/driver/D1"
        assert milestones[0].milestone_type == 5
        assert milestones[0].trip_count == 6

    @pytest.mark.asyncio
    async def test_reprocess_unwraps_data(self):
        handler = RecordingHandler(payload={"data": {
            "totalTransactions": 4, "matchedCount": 3, "unmatchedCount": 1, "message": "ok"
        }})

        result = await make_client(handler).reprocess_unmatched_transactions()

        assert result.total_transactions == 4
        assert result.unmatched_count == 1

    @pytest.mark.asyncio
    async def test_cleanup_unwraps_data(self):
        handler = RecordingHandler(payload={"data": {
            "duplicateGroups": 1, "totalDuplicates": 2, "deleted": 1, "kept": 1
        }})

        result = await make_client(handler).cleanup_duplicate_transactions()

        assert result.deleted == 1
        assert handler.last.url.path == "/api/yango-transactions/cleanup-duplicates"

    @pytest.mark.asyncio
    async def test_upload_metadata(self):
        handler = RecordingHandler(payload={
            "lastUploadDate": "2024-01-01T00:00:00",
            "totalRecords": 10,
            "sourceDescription": {"title": "Upload", "source": "csv"},
        })

        metadata = await make_client(handler).fetch_upload_metadata("/leads")

        assert handler.last.url.path == "/api/leads/upload-metadata"
        assert metadata.total_records == 10
        assert metadata.source_description.source == "csv"


class TestErrors:
    """Test error mapping."""

    @pytest.mark.asyncio
    async def test_auth_error(self):
        handler = RecordingHandler(status_code=401, payload={"message": "expired"})

        with pytest.raises(TrackerAuthError) as exc_info:
            await make_client(handler).fetch_unmatched_leads()

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_server_message_used(self):
        handler = RecordingHandler(status_code=409, payload={"message": "Lead already matched"})

        with pytest.raises(TrackerAPIError) as exc_info:
            await make_client(handler).assign_lead("EXT-1", "D1")

        assert exc_info.value.message == "Lead already matched"
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_fallback_message(self):
        handler = RecordingHandler(status_code=500, content=b"oops")

        with pytest.raises(TrackerAPIError) as exc_info:
            await make_client(handler).fetch_unmatched_leads()

        assert exc_info.value.message == "Error 500: Internal Server Error"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TrackerConnectionError):
            await make_client(handler).fetch_unmatched_leads()

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TrackerConnectionError):
            await make_client(handler).fetch_unmatched_leads()

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        handler = RecordingHandler(content=b"<html>")

        with pytest.raises(TrackerPayloadError):
            await make_client(handler).fetch_unmatched_leads()

    @pytest.mark.asyncio
    async def test_non_list_payload(self):
        handler = RecordingHandler(payload={"data": {"unexpected": True}})

        with pytest.raises(TrackerPayloadError):
            await make_client(handler).fetch_drivers_by_date(date(2024, 1, 1))

    @pytest.mark.asyncio
    async def test_invalid_record(self):
        handler = RecordingHandler(payload=[{"leadFirstName": "no id"}])

        with pytest.raises(TrackerPayloadError):
            await make_client(handler).fetch_unmatched_leads()

    @pytest.mark.asyncio
    async def test_malformed_batch_result(self):
        handler = RecordingHandler(payload={"matchedCount": "two"})

        with pytest.raises(TrackerPayloadError):
            await make_client(handler).assign_transactions_batch([1, 2], "D1")

    def test_all_errors_share_base(self):
        for error in (TrackerAuthError, TrackerConnectionError, TrackerPayloadError):
            assert issubclass(error, TrackerAPIError)
