"""
Date Range Driver Aggregator

Builds the candidate driver pool for an operator-chosen date span from a
tracker API that only answers one day at a time.

Rules:
- no boundary: idle, empty pool, nothing fetched
- one boundary: a single fetch for that date, returned as-is
- both boundaries: one fetch per calendar day, sequentially, then
  dedupe by driver_id (later day wins, first position kept)

A failed day is logged and skipped; already-fetched days are kept.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterator, List, Optional, Tuple

from reconciliation.clients.tracker_client import TrackerAPIError, TrackerClient
from reconciliation.models import Driver

logger = logging.getLogger(__name__)


# Accepted spellings per canonical field, in lookup order
DRIVER_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "driver_id": ("driver_id", "driverId"),
    "full_name": ("full_name", "fullName"),
    "phone": ("phone",),
    "hire_date": ("hire_date", "hireDate"),
    "license_number": ("license_number", "licenseNumber"),
}


def _first_present(raw: Dict[str, Any], keys: Tuple[str, ...]) -> str:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return str(value)
    return ""


def canonicalize_driver(raw: Any, fetched_on: Optional[date] = None) -> Optional[Driver]:
    """
    Map any accepted driver payload shape onto the canonical Driver.

    Missing fields become "". A missing hire date falls back to the day the
    record was fetched for. Non-mapping payloads are rejected (None).
    """
    if not isinstance(raw, dict):
        return None

    values = {
        name: _first_present(raw, keys)
        for name, keys in DRIVER_FIELD_ALIASES.items()
    }
    if not values["hire_date"] and fetched_on is not None:
        values["hire_date"] = fetched_on.isoformat()

    return Driver(**values)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Every calendar day from start to end inclusive (nothing if start > end)."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


@dataclass
class DriverPool:
    """Outcome of one aggregation."""
    drivers: Tuple[Driver, ...] = ()
    requested_dates: List[date] = field(default_factory=list)
    failed_dates: List[date] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_dates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "drivers": len(self.drivers),
            "requested_dates": [d.isoformat() for d in self.requested_dates],
            "failed_dates": [d.isoformat() for d in self.failed_dates],
        }


class DateRangeDriverAggregator:
    """
    Assembles a deduplicated driver pool for a closed date interval.

    The day loop is deliberately sequential: it bounds load on the
    tracker service and keeps per-day error accounting simple.
    """

    def __init__(self, client: TrackerClient, park_id: str, drivers_endpoint: str):
        self.client = client
        self.park_id = park_id
        self.drivers_endpoint = drivers_endpoint

    async def aggregate(
        self,
        date_from: Optional[date],
        date_to: Optional[date]
    ) -> DriverPool:
        """
        Fetch and merge drivers for [date_from, date_to].

        Raises:
            TrackerAPIError: only in single-date mode, where the one fetch
                is the whole operation.
        """
        if date_from is None and date_to is None:
            return DriverPool()

        if date_from is None or date_to is None:
            single = date_from or date_to
            drivers = await self._fetch_day(single)
            logger.info(f"Loaded {len(drivers)} drivers for {single.isoformat()}")
            return DriverPool(drivers=tuple(drivers), requested_dates=[single])

        if date_from > date_to:
            logger.warning(
                f"Driver range is inverted ({date_from.isoformat()} > {date_to.isoformat()}); nothing to fetch"
            )
            return DriverPool()

        merged: Dict[str, Driver] = {}
        requested: List[date] = []
        failed: List[date] = []

        for day in iter_days(date_from, date_to):
            requested.append(day)
            try:
                drivers = await self._fetch_day(day)
            except TrackerAPIError as e:
                failed.append(day)
                logger.warning(f"Could not load drivers for {day.isoformat()}: {e}")
                continue

            for driver in drivers:
                # Re-assigning an existing key keeps its original position
                merged[driver.driver_id] = driver
            logger.debug(f"Loaded {len(drivers)} drivers for {day.isoformat()}")

        pool = DriverPool(
            drivers=tuple(merged.values()),
            requested_dates=requested,
            failed_dates=failed,
        )
        logger.info(
            f"Loaded {len(pool.drivers)} unique drivers for "
            f"{date_from.isoformat()}..{date_to.isoformat()} "
            f"({len(failed)} of {len(requested)} days failed)"
        )
        return pool

    async def _fetch_day(self, day: date) -> List[Driver]:
        payload = await self.client.fetch_drivers_by_date(
            day, self.park_id, endpoint=self.drivers_endpoint
        )
        drivers = []
        for raw in payload:
            driver = canonicalize_driver(raw, fetched_on=day)
            if driver is None:
                logger.warning(f"Skipping malformed driver record for {day.isoformat()} ({type(raw).__name__})")
                continue
            drivers.append(driver)
        return drivers
