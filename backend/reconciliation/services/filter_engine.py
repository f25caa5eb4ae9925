"""
Filter Engine

Pure, AND-combined text and date-range predicates over the operator views:
leads, scout registrations, transaction groups and drivers.

- text: case-insensitive substring over the kind's searchable fields
- date_from: rejects items earlier than the start of that day
- date_to: extended to 23:59:59.999 of that day, rejects items later

Every predicate is optional. Items whose date is missing or unparseable are
not rejected by the date predicates.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from dateutil import parser as date_parser

from reconciliation.models import Driver, Lead, ScoutRegistration, Transaction, TransactionGroup

logger = logging.getLogger(__name__)

T = TypeVar("T")

END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class FilterCriteria:
    """One side's filter inputs. Blank fields are inactive."""
    term: str = ""
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @property
    def is_active(self) -> bool:
        return bool(self.term) or self.date_from is not None or self.date_to is not None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "term": self.term,
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
        }


# ==================== FIELD ACCESSORS ====================

def _lead_text(lead: Lead) -> Tuple[Optional[str], ...]:
    return (lead.external_id, lead.first_name, lead.last_name, lead.phone)


def _registration_text(reg: ScoutRegistration) -> Tuple[Optional[str], ...]:
    return (reg.scout_name, reg.driver_name, reg.driver_phone, reg.driver_license)


def _transaction_text(trans: Transaction) -> Tuple[Optional[str], ...]:
    return (trans.driver_name_from_comment, trans.comment)


def _driver_text(driver: Driver) -> Tuple[Optional[str], ...]:
    return (driver.driver_id, driver.full_name, driver.phone, driver.license_number)


# ==================== PREDICATES ====================

def parse_item_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a record timestamp into a naive local datetime.

    Returns None for missing or unparseable values.
    """
    if not value:
        return None
    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError, TypeError):
        logger.debug(f"Unparseable record date: {value!r}")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def matches_text(values: Iterable[Optional[str]], term: str) -> bool:
    if not term:
        return True
    needle = term.lower()
    return any(value and needle in value.lower() for value in values)


def matches_date_range(
    value: Optional[str],
    date_from: Optional[date],
    date_to: Optional[date]
) -> bool:
    if date_from is None and date_to is None:
        return True

    moment = parse_item_date(value)
    if moment is None:
        return True

    if date_from is not None and moment < datetime.combine(date_from, time.min):
        return False
    if date_to is not None and moment > datetime.combine(date_to, END_OF_DAY):
        return False
    return True


def _apply(
    items: Sequence[T],
    criteria: FilterCriteria,
    text_of: Callable[[T], Iterable[Optional[str]]],
    date_of: Callable[[T], Optional[str]]
) -> List[T]:
    return [
        item for item in items
        if matches_text(text_of(item), criteria.term)
        and matches_date_range(date_of(item), criteria.date_from, criteria.date_to)
    ]


# ==================== PUBLIC API ====================

def filter_leads(leads: Sequence[Lead], criteria: FilterCriteria) -> List[Lead]:
    return _apply(leads, criteria, _lead_text, lambda lead: lead.created_at)


def filter_registrations(
    registrations: Sequence[ScoutRegistration],
    criteria: FilterCriteria
) -> List[ScoutRegistration]:
    return _apply(registrations, criteria, _registration_text, lambda reg: reg.registration_date)


def filter_drivers(drivers: Sequence[Driver], criteria: FilterCriteria) -> List[Driver]:
    return _apply(drivers, criteria, _driver_text, lambda driver: driver.hire_date)


def filter_groups(groups: Sequence[TransactionGroup], criteria: FilterCriteria) -> List[TransactionGroup]:
    """
    A group passes the text predicate when any member's comment or parsed
    name matches, and the date predicate when any member's date is in range.
    """
    result = []
    for group in groups:
        if criteria.term and not any(
            matches_text(_transaction_text(t), criteria.term) for t in group.transactions
        ):
            continue
        if (criteria.date_from or criteria.date_to) and not any(
            matches_date_range(t.transaction_date, criteria.date_from, criteria.date_to)
            for t in group.transactions
        ):
            continue
        result.append(group)
    return result


def filter_sources(records: Sequence, criteria: FilterCriteria) -> list:
    """Dispatch on record type for the single-assignment kinds."""
    if not records:
        return []
    if isinstance(records[0], Lead):
        return filter_leads(records, criteria)
    return filter_registrations(records, criteria)
