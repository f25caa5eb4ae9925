"""
Contractor Tracker API Client

Thin async client for the remote tracker service that owns leads, scout
registrations, payment transactions, drivers and milestones.

Contract:
- Base URL and bearer token come from settings (TRACKER_API_*)
- JSON bodies are camelCase; list responses may be wrapped in {"data": [...]}
- Every failure surfaces as a TrackerAPIError subclass

Transport retries are not attempted here; callers decide how a failed
call affects their state.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from reconciliation.models import (
    BatchMatchResult,
    CleanupResult,
    Lead,
    MilestoneInstance,
    ReprocessResult,
    ScoutRegistration,
    Transaction,
    UploadMetadata,
)

logger = logging.getLogger(__name__)


# ==================== EXCEPTIONS ====================

class TrackerAPIError(Exception):
    """Base exception for tracker API failures"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TrackerAuthError(TrackerAPIError):
    """Raised on 401/403: the session expired or lacks permissions"""
    pass


class TrackerConnectionError(TrackerAPIError):
    """Raised when the tracker cannot be reached or times out"""
    pass


class TrackerPayloadError(TrackerAPIError):
    """Raised when a response body is not what the contract promises"""
    pass


# ==================== CLIENT ====================

class TrackerClient:
    """
    Client for the contractor tracker REST API.

    An httpx.AsyncClient may be injected (tests use httpx.MockTransport);
    otherwise one short-lived client is opened per request.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._http_client = http_client

        logger.info(f"TrackerClient initialized with URL: {self.base_url}")

    @classmethod
    def from_settings(cls, settings) -> "TrackerClient":
        return cls(
            base_url=settings.TRACKER_API_BASE_URL,
            token=settings.TRACKER_API_TOKEN,
            timeout=settings.TRACKER_API_TIMEOUT,
        )

    async def aclose(self):
        if self._http_client is not None:
            await self._http_client.aclose()

    # ==================== SOURCE RECORDS ====================

    async def fetch_unmatched_leads(self) -> List[Lead]:
        payload = await self._request("GET", "/leads/unmatched")
        return self._parse_list(Lead, self._unwrap_list(payload))

    async def fetch_unmatched_scout_registrations(self) -> List[ScoutRegistration]:
        payload = await self._request("GET", "/scout-registrations/unmatched")
        return self._parse_list(ScoutRegistration, self._unwrap_list(payload))

    async def fetch_unmatched_transactions(self) -> List[Transaction]:
        """
        Unmatched transactions as one flat, ordered list.

        The tracker may answer with pre-built groups; they are flattened so
        grouping stays a local, fully recomputed concern.
        """
        payload = await self._request("GET", "/yango-transactions/unmatched")
        flat: List[Dict[str, Any]] = []
        for item in self._unwrap_list(payload):
            if isinstance(item, dict) and isinstance(item.get("transactions"), list):
                flat.extend(item["transactions"])
            else:
                flat.append(item)

        try:
            return [Transaction.from_payload(raw) for raw in flat]
        except (ValidationError, TypeError) as e:
            raise TrackerPayloadError(f"Malformed transaction payload: {e}")

    # ==================== DRIVERS & MILESTONES ====================

    async def fetch_drivers_by_date(
        self,
        day: date,
        park_id: Optional[str] = None,
        endpoint: str = "/leads/drivers-by-date"
    ) -> List[Dict[str, Any]]:
        """
        Raw driver payloads for one day. Field spellings vary between
        endpoints; canonicalization is left to the driver aggregator.
        """
        params = {"date": day.isoformat()}
        if park_id:
            params["parkId"] = park_id

        payload = await self._request("GET", endpoint, params=params)
        return self._unwrap_list(payload)

    async def fetch_driver_milestones(self, driver_id: str) -> List[MilestoneInstance]:
        payload = await self._request("GET", f"/milestones/driver/{driver_id}")
        return self._parse_list(MilestoneInstance, self._unwrap_list(payload))

    # ==================== ASSIGNMENTS ====================

    async def assign_lead(self, external_id: str, driver_id: str) -> None:
        await self._request(
            "POST", "/leads/manual-match",
            json={"externalId": external_id, "driverId": driver_id},
            expect_body=False
        )

    async def assign_scout_registration(self, registration_id: int, driver_id: str) -> None:
        await self._request(
            "POST", "/scout-registrations/manual-match",
            json={"registrationId": registration_id, "driverId": driver_id},
            expect_body=False
        )

    async def assign_transaction(self, transaction_id: int, driver_id: str) -> None:
        await self._request(
            "POST", f"/yango-transactions/{transaction_id}/match",
            json={"driverId": driver_id},
            expect_body=False
        )

    async def assign_transactions_batch(
        self,
        transaction_ids: Sequence[int],
        driver_id: str,
        milestone_instance_ids: Optional[Sequence[int]] = None
    ) -> BatchMatchResult:
        body: Dict[str, Any] = {
            "transactionIds": list(transaction_ids),
            "driverId": driver_id,
        }
        if milestone_instance_ids:
            body["milestoneInstanceIds"] = list(milestone_instance_ids)

        payload = await self._request("POST", "/yango-transactions/batch-match", json=body)
        if not isinstance(payload, dict):
            return BatchMatchResult()
        return self._parse_one(BatchMatchResult, payload)

    # ==================== DESTRUCTIVE OPERATIONS ====================

    async def discard_lead(self, external_id: str) -> None:
        await self._request(
            "POST", "/leads/discard",
            json={"externalId": external_id},
            expect_body=False
        )

    async def reprocess_unmatched_transactions(self) -> ReprocessResult:
        payload = await self._request("POST", "/yango-transactions/reprocess")
        return self._parse_one(ReprocessResult, self._unwrap_data(payload))

    async def cleanup_duplicate_transactions(self) -> CleanupResult:
        payload = await self._request("POST", "/yango-transactions/cleanup-duplicates")
        return self._parse_one(CleanupResult, self._unwrap_data(payload))

    # ==================== METADATA ====================

    async def fetch_upload_metadata(self, api_prefix: str) -> UploadMetadata:
        payload = await self._request("GET", f"{api_prefix}/upload-metadata")
        return self._parse_one(UploadMetadata, payload)

    # ==================== INTERNALS ====================

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        expect_body: bool = True
    ) -> Any:
        url = f"{self.base_url}{path}"

        try:
            if self._http_client is not None:
                response = await self._http_client.request(
                    method, url, params=params, json=json, headers=self._headers()
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(
                        method, url, params=params, json=json, headers=self._headers()
                    )
        except httpx.TimeoutException:
            logger.error(f"Tracker request timed out: {method} {path}")
            raise TrackerConnectionError("Tracker request timed out")
        except httpx.RequestError as e:
            logger.error(f"Tracker request error: {method} {path}: {e}")
            raise TrackerConnectionError(f"Cannot connect to tracker: {str(e)[:100]}")

        if response.status_code in (401, 403):
            raise TrackerAuthError(
                "Session expired or not authorized. Please sign in again.",
                status_code=response.status_code
            )

        if not response.is_success:
            raise TrackerAPIError(
                self._error_message(response),
                status_code=response.status_code
            )

        if not expect_body or not response.content:
            return None

        try:
            return response.json()
        except ValueError:
            raise TrackerPayloadError(
                f"Tracker returned a non-JSON body for {method} {path}",
                status_code=response.status_code
            )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"Error {response.status_code}: {response.reason_phrase}"

    @staticmethod
    def _unwrap_data(payload: Any) -> Any:
        if isinstance(payload, dict) and "data" in payload:
            return payload["data"]
        return payload

    @classmethod
    def _unwrap_list(cls, payload: Any) -> List[Any]:
        if payload is None:
            return []
        payload = cls._unwrap_data(payload)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise TrackerPayloadError(
                f"Expected a list from tracker, got {type(payload).__name__}"
            )
        return payload

    @staticmethod
    def _parse_list(model, items: List[Any]) -> list:
        try:
            return [model.model_validate(item) for item in items]
        except ValidationError as e:
            raise TrackerPayloadError(f"Malformed {model.__name__} payload: {e.error_count()} errors")

    @staticmethod
    def _parse_one(model, payload: Any):
        if payload is None:
            raise TrackerPayloadError(f"Empty {model.__name__} payload")
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise TrackerPayloadError(f"Malformed {model.__name__} payload: {e.error_count()} errors")
