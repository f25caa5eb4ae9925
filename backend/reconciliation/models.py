"""
Reconciliation Domain Models

Wire-facing pydantic models for the records exchanged with the tracker
service. The tracker speaks camelCase JSON; models accept both the wire
spelling and the Python field name, and dump snake_case.

Drivers are deliberately NOT parsed here: their payloads arrive under
several spellings and are canonicalized in one place by the driver
aggregator (see services/driver_aggregator.py).
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from reconciliation.comment_parser import (
    extract_driver_name,
    extract_milestone_type,
    milestone_amount,
)


class WireModel(BaseModel):
    """Base for immutable records received from the tracker API."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


# ==================== SOURCE RECORDS ====================

class Lead(WireModel):
    """A marketing lead waiting for a driver assignment."""
    external_id: str
    first_name: Optional[str] = Field(default=None, alias="leadFirstName")
    last_name: Optional[str] = Field(default=None, alias="leadLastName")
    phone: Optional[str] = Field(default=None, alias="leadPhone")
    created_at: Optional[str] = Field(default=None, alias="leadCreatedAt")
    match_score: Optional[float] = None
    is_discarded: bool = False

    @property
    def source_id(self) -> str:
        return self.external_id

    @property
    def full_name(self) -> str:
        parts = [p.strip() for p in (self.first_name, self.last_name) if p and p.strip()]
        return " ".join(parts)

    @property
    def record_date(self) -> Optional[str]:
        return self.created_at


class ScoutRegistration(WireModel):
    """A scout-driven registration waiting for a driver assignment."""
    id: int
    scout_id: Optional[str] = None
    scout_name: str = ""
    registration_date: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    driver_license: Optional[str] = None
    acquisition_medium: Optional[str] = None
    match_score: Optional[float] = None

    @property
    def source_id(self) -> int:
        return self.id

    @property
    def full_name(self) -> str:
        return self.driver_name or ""

    @property
    def record_date(self) -> Optional[str]:
        return self.registration_date


class Transaction(WireModel):
    """A single payment-platform event."""
    id: int
    transaction_date: Optional[str] = None
    scout_id: Optional[str] = None
    driver_id: Optional[str] = None
    driver_name_from_comment: Optional[str] = None
    milestone_type: Optional[int] = None
    amount_yango: Optional[float] = None
    comment: Optional[str] = None
    category: Optional[str] = None
    is_matched: bool = False

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> "Transaction":
        """
        Build a transaction from a tracker payload.

        When the payload carries a comment but no parsed driver name or
        milestone, they are derived from the comment.
        """
        data = dict(raw)
        comment = data.get("comment")
        if comment:
            if "driverNameFromComment" not in data and "driver_name_from_comment" not in data:
                data["driverNameFromComment"] = extract_driver_name(comment)
            if "milestoneType" not in data and "milestone_type" not in data:
                data["milestoneType"] = extract_milestone_type(comment)
        return cls.model_validate(data)


# ==================== DRIVERS ====================

class Driver(BaseModel):
    """Canonical candidate driver. Every field is a string, never None."""
    model_config = ConfigDict(frozen=True)

    driver_id: str
    full_name: str = ""
    phone: str = ""
    hire_date: str = ""
    license_number: str = ""


class MilestoneInstance(WireModel):
    """A driver's trip-count achievement."""
    id: int
    driver_id: Optional[str] = None
    park_id: Optional[str] = None
    milestone_type: int
    period_days: int
    fulfillment_date: Optional[str] = None
    trip_count: Optional[int] = None


# ==================== OPERATION RESULTS ====================

class SourceDescription(WireModel):
    title: str = ""
    source: str = ""
    url: Optional[str] = None
    details: str = ""


class UploadMetadata(WireModel):
    """Provenance of the last upload for a record kind."""
    last_upload_date: Optional[str] = None
    data_date_from: Optional[str] = None
    data_date_to: Optional[str] = None
    total_records: int = 0
    matched_count: int = 0
    unmatched_count: int = 0
    source_description: Optional[SourceDescription] = None


class BatchMatchResult(WireModel):
    matched_count: int = 0


class ReprocessResult(WireModel):
    total_transactions: int = 0
    matched_count: int = 0
    unmatched_count: int = 0
    message: str = ""

    def summary(self) -> str:
        return (
            f"Reprocessed {self.total_transactions} transactions: "
            f"{self.matched_count} matched, {self.unmatched_count} unmatched"
        )


class CleanupResult(WireModel):
    duplicate_groups: int = 0
    total_duplicates: int = 0
    deleted: int = 0
    kept: int = 0

    def summary(self) -> str:
        return (
            f"Cleanup completed: {self.deleted} duplicates removed "
            f"of {self.total_duplicates} found"
        )


# ==================== DERIVED ====================

class TransactionGroup(BaseModel):
    """
    Transactions sharing a parsed driver name. Transient: rebuilt on
    every reload of the unmatched pool, never persisted.
    """
    model_config = ConfigDict(frozen=True)

    key: str
    driver_name_from_comment: Optional[str] = None
    transactions: Tuple[Transaction, ...]

    @property
    def count(self) -> int:
        return len(self.transactions)

    @property
    def transaction_ids(self) -> List[int]:
        return [t.id for t in self.transactions]

    @property
    def expected_amount(self) -> Decimal:
        """Sum of the milestone payouts implied by the members' comments."""
        return sum((milestone_amount(t.milestone_type) for t in self.transactions), Decimal("0"))
