"""
Unit Tests for the Date Range Driver Aggregator

Covers:
- Boundary modes (none, single, range, inverted)
- Last-day-wins deduplication with first-position ordering
- Per-day failure tolerance
- Driver payload canonicalization

Run with: pytest tests/test_driver_aggregator.py -v
"""

import pytest
from datetime import date
from unittest.mock import AsyncMock, MagicMock

from reconciliation.clients.tracker_client import TrackerAPIError, TrackerConnectionError
from reconciliation.services.driver_aggregator import (
    DateRangeDriverAggregator,
    canonicalize_driver,
    iter_days,
)


def make_client(by_day):
    """Client whose drivers-by-date answer comes from a {date: payload|Exception} map."""
    async def fetch(day, park_id=None, endpoint=None):
        result = by_day.get(day, [])
        if isinstance(result, Exception):
            raise result
        return result

    client = MagicMock()
    client.fetch_drivers_by_date = AsyncMock(side_effect=fetch)
    return client


def make_aggregator(client):
    return DateRangeDriverAggregator(client, park_id="park-1", drivers_endpoint="/leads/drivers-by-date")


class TestCanonicalizeDriver:
    """Test driver payload canonicalization."""

    def test_snake_case_payload(self):
        driver = canonicalize_driver({
            "driver_id": "D1",
            "full_name": "Ana Diaz",
            "phone": "999",
            "hire_date": "2024-01-02",
            "license_number": "Q123",
        })

        assert driver.driver_id == "D1"
        assert driver.full_name == "Ana Diaz"
        assert driver.license_number == "Q123"

    def test_camel_case_payload(self):
        driver = canonicalize_driver({
            "driverId": "D2",
            "fullName": "Luis Soto",
            "hireDate": "2024-02-01",
            "licenseNumber": "L9",
        })

        assert driver.driver_id == "D2"
        assert driver.full_name == "Luis Soto"
        assert driver.hire_date == "2024-02-01"
        assert driver.license_number == "L9"

    def test_missing_fields_become_empty_strings(self):
        driver = canonicalize_driver({"driver_id": "D3"})

        assert driver.full_name == ""
        assert driver.phone == ""
        assert driver.hire_date == ""
        assert driver.license_number == ""

    def test_missing_hire_date_falls_back_to_fetched_day(self):
        driver = canonicalize_driver({"driver_id": "D4"}, fetched_on=date(2024, 3, 5))

        assert driver.hire_date == "2024-03-05"

    def test_non_mapping_rejected(self):
        assert canonicalize_driver("D5") is None
        assert canonicalize_driver(None) is None


class TestIterDays:
    """Test calendar day iteration."""

    def test_inclusive_range(self):
        days = list(iter_days(date(2024, 1, 30), date(2024, 2, 2)))
        assert days == [date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1), date(2024, 2, 2)]

    def test_inverted_range_is_empty(self):
        assert list(iter_days(date(2024, 1, 2), date(2024, 1, 1))) == []


class TestBoundaryModes:
    """Test how the date boundaries drive fetching."""

    @pytest.mark.asyncio
    async def test_no_boundaries_fetches_nothing(self):
        client = make_client({})
        pool = await make_aggregator(client).aggregate(None, None)

        assert pool.drivers == ()
        client.fetch_drivers_by_date.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_boundary_returns_day_verbatim(self):
        day = date(2024, 1, 1)
        client = make_client({day: [
            {"driver_id": "D1", "full_name": "First"},
            {"driver_id": "D1", "full_name": "Second"},
        ]})

        pool = await make_aggregator(client).aggregate(day, None)

        # Not deduplicated in single-date mode
        assert [d.full_name for d in pool.drivers] == ["First", "Second"]
        client.fetch_drivers_by_date.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_only_date_to_given(self):
        day = date(2024, 1, 9)
        client = make_client({day: [{"driver_id": "D9"}]})

        pool = await make_aggregator(client).aggregate(None, day)

        assert [d.driver_id for d in pool.drivers] == ["D9"]
        assert pool.requested_dates == [day]

    @pytest.mark.asyncio
    async def test_single_boundary_failure_propagates(self):
        day = date(2024, 1, 1)
        client = make_client({day: TrackerConnectionError("down")})

        with pytest.raises(TrackerAPIError):
            await make_aggregator(client).aggregate(day, None)

    @pytest.mark.asyncio
    async def test_same_day_range_fetches_once(self):
        day = date(2024, 1, 1)
        client = make_client({day: [{"driver_id": "D1"}]})

        pool = await make_aggregator(client).aggregate(day, day)

        assert len(pool.drivers) == 1
        assert client.fetch_drivers_by_date.await_count == 1

    @pytest.mark.asyncio
    async def test_inverted_range_fetches_nothing(self):
        client = make_client({})
        pool = await make_aggregator(client).aggregate(date(2024, 1, 5), date(2024, 1, 1))

        assert pool.drivers == ()
        client.fetch_drivers_by_date.assert_not_called()

    @pytest.mark.asyncio
    async def test_passes_park_and_endpoint(self):
        day = date(2024, 1, 1)
        client = make_client({})

        await make_aggregator(client).aggregate(day, day)

        client.fetch_drivers_by_date.assert_awaited_once_with(
            day, "park-1", endpoint="/leads/drivers-by-date"
        )


class TestRangeAggregation:
    """Test multi-day merging."""

    @pytest.mark.asyncio
    async def test_last_day_wins_dedup(self):
        """Same driver on day 1 and day 3: one record, day 3's name."""
        client = make_client({
            date(2024, 1, 1): [{"driver_id": "D1", "full_name": "Old Name"}],
            date(2024, 1, 2): [{"driver_id": "D2", "full_name": "Other"}],
            date(2024, 1, 3): [{"driver_id": "D1", "full_name": "New Name"}],
        })

        pool = await make_aggregator(client).aggregate(date(2024, 1, 1), date(2024, 1, 3))

        assert [d.driver_id for d in pool.drivers] == ["D1", "D2"]
        assert pool.drivers[0].full_name == "New Name"
        assert client.fetch_drivers_by_date.await_count == 3

    @pytest.mark.asyncio
    async def test_days_fetched_in_order(self):
        client = make_client({})
        await make_aggregator(client).aggregate(date(2024, 1, 1), date(2024, 1, 3))

        days = [c.args[0] for c in client.fetch_drivers_by_date.await_args_list]
        assert days == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]

    @pytest.mark.asyncio
    async def test_failed_day_is_skipped(self):
        client = make_client({
            date(2024, 1, 1): [{"driver_id": "D1"}],
            date(2024, 1, 2): TrackerAPIError("boom", status_code=500),
            date(2024, 1, 3): [{"driver_id": "D3"}],
        })

        pool = await make_aggregator(client).aggregate(date(2024, 1, 1), date(2024, 1, 3))

        assert [d.driver_id for d in pool.drivers] == ["D1", "D3"]
        assert pool.failed_dates == [date(2024, 1, 2)]
        assert pool.is_partial

    @pytest.mark.asyncio
    async def test_all_days_failing_yields_empty_pool(self):
        error = TrackerConnectionError("down")
        client = make_client({
            date(2024, 1, 1): error,
            date(2024, 1, 2): error,
        })

        pool = await make_aggregator(client).aggregate(date(2024, 1, 1), date(2024, 1, 2))

        assert pool.drivers == ()
        assert len(pool.failed_dates) == 2

    @pytest.mark.asyncio
    async def test_idempotent_for_same_upstream(self):
        client = make_client({
            date(2024, 1, 1): [{"driver_id": "D1", "full_name": "A"}],
            date(2024, 1, 2): [{"driverId": "D2", "fullName": "B"}],
        })
        aggregator = make_aggregator(client)

        first = await aggregator.aggregate(date(2024, 1, 1), date(2024, 1, 2))
        second = await aggregator.aggregate(date(2024, 1, 1), date(2024, 1, 2))

        assert first.drivers == second.drivers

    @pytest.mark.asyncio
    async def test_malformed_records_are_skipped(self):
        client = make_client({date(2024, 1, 1): ["junk", {"driver_id": "D1"}]})

        pool = await make_aggregator(client).aggregate(date(2024, 1, 1), date(2024, 1, 1))

        assert [d.driver_id for d in pool.drivers] == ["D1"]

    @pytest.mark.asyncio
    async def test_hire_date_defaults_to_fetched_day(self):
        client = make_client({date(2024, 1, 2): [{"driver_id": "D1"}]})

        pool = await make_aggregator(client).aggregate(date(2024, 1, 1), date(2024, 1, 2))

        assert pool.drivers[0].hire_date == "2024-01-02"
