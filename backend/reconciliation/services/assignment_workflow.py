"""
Selection & Assignment Workflow

Orchestrates one reconciliation view: loads the unmatched pool and the
candidate driver pool, holds the operator's selection, and submits
assignments and confirmation-gated destructive operations to the tracker.

Flow:
1. initialize(): pool, drivers and upload metadata
2. operator selects a source (or transaction ids) and a driver
3. assign(): remote call, then clear the selection and reload the pool

Records leave the unmatched pool only through a reload after a successful
remote call; nothing is removed locally.
"""

import inspect
import logging
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from reconciliation.clients.tracker_client import TrackerAPIError, TrackerClient
from reconciliation.matching_rules import field_match_highlighter
from reconciliation.models import Driver, Lead, ScoutRegistration, Transaction
from reconciliation.services import workflow_state as ws
from reconciliation.services.driver_aggregator import DateRangeDriverAggregator
from reconciliation.services.filter_engine import (
    FilterCriteria,
    filter_drivers,
    filter_groups,
    filter_sources,
)
from reconciliation.source_registry import AssignmentMode, KindConfig, RecordKind, source_registry

logger = logging.getLogger(__name__)

# A plain bool, or a callable receiving the prompt (sync or async)
Confirmation = Union[bool, Callable[[str], Union[bool, Awaitable[bool]]]]


# ==================== AUDIT LOGGING ====================

class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    POOL_LOADED = "reconciliation.pool_loaded"
    DRIVERS_LOADED = "reconciliation.drivers_loaded"
    ASSIGNMENT_REQUESTED = "reconciliation.assignment_requested"
    ASSIGNMENT_SUCCEEDED = "reconciliation.assignment_succeeded"
    ASSIGNMENT_FAILED = "reconciliation.assignment_failed"
    LEAD_DISCARDED = "reconciliation.lead_discarded"
    TRANSACTIONS_REPROCESSED = "reconciliation.transactions_reprocessed"
    DUPLICATES_CLEANED = "reconciliation.duplicates_cleaned"
    STALE_RESULT_DROPPED = "reconciliation.stale_result_dropped"


def log_reconciliation_event(
    event_type: str,
    kind: RecordKind,
    details: Dict[str, Any],
    actor: str = "operator"
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "kind": kind.value,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Reconciliation event: {event_type}", extra=log_entry)


async def confirmed(confirm: Confirmation, prompt: str) -> bool:
    """Resolve a confirmation that may be a bool or a (sync/async) callable."""
    if callable(confirm):
        answer = confirm(prompt)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)
    return bool(confirm)


class RecordNotFoundError(LookupError):
    """Raised when a selection refers to a record that is not in the current pool"""
    pass


# ==================== BASE WORKFLOW ====================

class ReconciliationWorkflow:
    """
    Shared shape of the three reconciliation views.

    Subclasses provide the pool fetch and the assignment call.
    """

    def __init__(
        self,
        config: KindConfig,
        client: TrackerClient,
        park_id: str,
        today: Callable[[], date] = date.today
    ):
        self.config = config
        self.client = client
        self.aggregator = DateRangeDriverAggregator(client, park_id, config.drivers_endpoint)
        self.state = ws.WorkflowState(kind=config.kind)
        self._today = today

    @property
    def kind(self) -> RecordKind:
        return self.config.kind

    @property
    def phase(self) -> ws.WorkflowPhase:
        return ws.phase(self.state)

    # ==================== LOADING ====================

    async def initialize(self):
        await self.reload()
        await self.load_drivers()
        await self.load_upload_metadata()

    async def _fetch_pool(self) -> Sequence[ws.PoolRecord]:
        raise NotImplementedError

    async def reload(self) -> bool:
        """
        Refetch the unmatched pool. On failure the previous pool is kept
        and the error slot is set.
        """
        self.state = replace(self.state, error=None)
        try:
            records = await self._fetch_pool()
        except TrackerAPIError as e:
            logger.error(f"Could not load {self.config.display_name}: {e.message}")
            self.state = replace(
                self.state,
                error=f"Could not load {self.config.display_name}: {e.message}"
            )
            return False

        self.state = ws.with_pool(self.state, records)
        log_reconciliation_event(
            ReconciliationAuditEvent.POOL_LOADED,
            self.kind,
            {"records": len(records), "groups": len(self.state.groups)}
        )
        return True

    async def load_drivers(self) -> bool:
        """
        Rebuild the driver pool for the current driver date range.

        A result that arrives after a newer load was started is dropped.
        """
        self.state = replace(ws.next_driver_generation(self.state), error=None)
        generation = self.state.driver_generation
        criteria = self.state.driver_filter

        try:
            pool = await self.aggregator.aggregate(criteria.date_from, criteria.date_to)
        except TrackerAPIError as e:
            if generation != self.state.driver_generation:
                self._log_stale("drivers", generation, self.state.driver_generation)
                return False
            logger.error(f"Could not load drivers: {e.message}")
            self.state = replace(self.state, error=f"Could not load drivers: {e.message}")
            return False

        if generation != self.state.driver_generation:
            self._log_stale("drivers", generation, self.state.driver_generation)
            return False

        self.state = ws.with_drivers(
            self.state,
            pool.drivers,
            failed_dates=[d.isoformat() for d in pool.failed_dates]
        )
        log_reconciliation_event(
            ReconciliationAuditEvent.DRIVERS_LOADED,
            self.kind,
            pool.to_dict()
        )
        return True

    async def load_upload_metadata(self):
        try:
            metadata = await self.client.fetch_upload_metadata(self.config.api_prefix)
        except TrackerAPIError as e:
            logger.warning(f"Could not load upload metadata for {self.kind.value}: {e.message}")
            self.state = replace(self.state, upload_metadata=None)
            return
        self.state = replace(self.state, upload_metadata=metadata)

    def _log_stale(self, what: str, generation: int, current: int):
        logger.warning(f"Dropping stale {what} result (generation {generation}, current {current})")
        log_reconciliation_event(
            ReconciliationAuditEvent.STALE_RESULT_DROPPED,
            self.kind,
            {"result": what, "generation": generation, "current": current}
        )

    # ==================== FILTERS ====================

    def set_source_filter(self, criteria: FilterCriteria):
        self.state = replace(self.state, source_filter=criteria)

    async def set_driver_filter(self, criteria: FilterCriteria):
        """Changing the driver date range refetches the driver pool."""
        previous = self.state.driver_filter
        self.state = replace(self.state, driver_filter=criteria)
        if (previous.date_from, previous.date_to) != (criteria.date_from, criteria.date_to):
            await self.load_drivers()

    async def sync_driver_dates(self):
        """Copy the source-side date range onto the driver range and reload drivers."""
        source = self.state.source_filter
        await self.set_driver_filter(
            FilterCriteria(
                term=self.state.driver_filter.term,
                date_from=source.date_from,
                date_to=source.date_to,
            )
        )

    # ==================== SELECTION ====================

    def _find_source(self, source_id: Any) -> ws.SourceRecord:
        for record in self.state.pool:
            if str(record.source_id) == str(source_id):
                return record
        raise RecordNotFoundError(f"Record {source_id} not found in {self.config.display_name}")

    def _find_driver(self, driver_id: str) -> Driver:
        for driver in self.state.drivers:
            if driver.driver_id == driver_id:
                return driver
        raise RecordNotFoundError(f"Driver {driver_id} not found")

    def select_source(self, source_id: Optional[Any]):
        record = None if source_id is None else self._find_source(source_id)
        self.state = ws.select_source(self.state, record)

    async def select_driver(self, driver_id: Optional[str]):
        driver = None if driver_id is None else self._find_driver(driver_id)
        self.state = ws.select_driver(self.state, driver)

    def clear_selection(self):
        self.state = ws.clear_selection(self.state)

    # ==================== ASSIGNMENT ====================

    async def _submit_assignment(self) -> str:
        """Perform the remote call; return the operator-facing summary."""
        raise NotImplementedError

    def _assignment_details(self) -> Dict[str, Any]:
        selection = self.state.selection
        return {
            "source_id": getattr(selection.source, "source_id", None),
            "driver_id": selection.driver.driver_id if selection.driver else None,
        }

    async def assign(self) -> bool:
        """
        Submit the current selection.

        Returns False without side effects when the selection is incomplete
        or an assignment is already in flight.
        """
        if not ws.can_assign(self.state):
            logger.debug(f"Assign ignored for {self.kind.value}: phase is {self.phase.value}")
            return False

        details = self._assignment_details()
        self.state = ws.begin_assignment(self.state)
        log_reconciliation_event(ReconciliationAuditEvent.ASSIGNMENT_REQUESTED, self.kind, details)

        try:
            summary = await self._submit_assignment()
        except TrackerAPIError as e:
            self.state = ws.assignment_failed(self.state, f"Could not assign: {e.message}")
            log_reconciliation_event(
                ReconciliationAuditEvent.ASSIGNMENT_FAILED,
                self.kind,
                {**details, "error": e.message, "status_code": e.status_code}
            )
            return False
        except Exception as e:
            self.state = ws.assignment_failed(self.state, "Could not assign: unexpected error")
            logger.exception(f"Unexpected error assigning {self.kind.value}: {e}")
            log_reconciliation_event(
                ReconciliationAuditEvent.ASSIGNMENT_FAILED,
                self.kind,
                {**details, "error": type(e).__name__}
            )
            raise

        self.state = ws.assignment_succeeded(self.state, summary, self._now())
        log_reconciliation_event(ReconciliationAuditEvent.ASSIGNMENT_SUCCEEDED, self.kind, details)
        await self.reload()
        return True

    async def _run_confirmed(
        self,
        confirm: Confirmation,
        prompt: str,
        operation: Callable[[], Awaitable[str]],
        event_type: str
    ) -> bool:
        """Run a destructive operation only after explicit confirmation."""
        if not await confirmed(confirm, prompt):
            logger.info(f"Operation declined by operator: {prompt}")
            return False

        self.state = replace(self.state, error=None, summary=None)
        try:
            summary = await operation()
        except TrackerAPIError as e:
            self.state = replace(self.state, error=e.message)
            logger.error(f"{event_type} failed: {e.message}")
            return False

        self.state = replace(self.state, summary=summary, last_updated_at=self._now())
        log_reconciliation_event(event_type, self.kind, {"summary": summary})
        await self.reload()
        return True

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # ==================== VIEWS ====================

    def visible_sources(self) -> list:
        return filter_sources(self.state.pool, self.state.source_filter)

    def visible_drivers(self) -> List[Dict[str, Any]]:
        """Filtered drivers with the advisory highlight for the selected source."""
        source = self.state.selection.source
        rows = []
        for driver in filter_drivers(self.state.drivers, self.state.driver_filter):
            signals = field_match_highlighter.signals(source, driver) if source is not None else None
            rows.append({
                **driver.model_dump(),
                "highlight": bool(signals and signals.any),
                "signals": signals.to_dict() if signals else None,
            })
        return rows

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the workflow for the operator console."""
        state = self.state
        selection = state.selection
        return {
            "kind": self.kind.value,
            "phase": self.phase.value,
            "sources": [r.model_dump() for r in self.visible_sources()],
            "total_sources": len(state.pool),
            "drivers": self.visible_drivers(),
            "total_drivers": len(state.drivers),
            "failed_driver_dates": list(state.failed_driver_dates),
            "selection": {
                "source_id": getattr(selection.source, "source_id", None),
                "driver_id": selection.driver.driver_id if selection.driver else None,
            },
            "source_filter": state.source_filter.to_dict(),
            "driver_filter": state.driver_filter.to_dict(),
            "error": state.error,
            "summary": state.summary,
            "last_updated_at": state.last_updated_at.isoformat() if state.last_updated_at else None,
            "upload_metadata": state.upload_metadata.model_dump() if state.upload_metadata else None,
        }


# ==================== LEADS ====================

class LeadWorkflow(ReconciliationWorkflow):

    async def _fetch_pool(self) -> List[Lead]:
        return await self.client.fetch_unmatched_leads()

    async def _submit_assignment(self) -> str:
        lead = self.state.selection.source
        driver = self.state.selection.driver
        await self.client.assign_lead(lead.external_id, driver.driver_id)
        return f"Lead {lead.external_id} assigned to driver {driver.driver_id}"

    async def discard(self, confirm: Confirmation, external_id: Optional[str] = None) -> bool:
        """
        Discard a lead (the selected one unless an id is given).

        No-op when there is no lead or the operator declines.
        """
        if external_id is None:
            source = self.state.selection.source
            if source is None:
                return False
            external_id = source.external_id

        async def operation() -> str:
            await self.client.discard_lead(external_id)
            return f"Lead {external_id} discarded"

        return await self._run_confirmed(
            confirm,
            f"Discard lead {external_id}? It will no longer appear for matching.",
            operation,
            ReconciliationAuditEvent.LEAD_DISCARDED
        )


# ==================== SCOUT REGISTRATIONS ====================

class ScoutRegistrationWorkflow(ReconciliationWorkflow):

    async def _fetch_pool(self) -> List[ScoutRegistration]:
        return await self.client.fetch_unmatched_scout_registrations()

    async def _submit_assignment(self) -> str:
        registration = self.state.selection.source
        driver = self.state.selection.driver
        await self.client.assign_scout_registration(registration.id, driver.driver_id)
        return f"Registration {registration.id} assigned to driver {driver.driver_id}"


# ==================== TRANSACTIONS ====================

class TransactionWorkflow(ReconciliationWorkflow):
    """
    Batch assignment of transaction groups, with the selected driver's
    milestones attached to the batch.
    """

    def __init__(
        self,
        config: KindConfig,
        client: TrackerClient,
        park_id: str,
        lookback_days: int = 30,
        today: Callable[[], date] = date.today
    ):
        super().__init__(config, client, park_id, today=today)
        self.lookback_days = lookback_days

    async def initialize(self):
        criteria = self.state.driver_filter
        if criteria.date_from is None and criteria.date_to is None:
            today = self._today()
            self.state = replace(
                self.state,
                driver_filter=FilterCriteria(
                    term=criteria.term,
                    date_from=today - timedelta(days=self.lookback_days),
                    date_to=today,
                )
            )
        await super().initialize()

    async def _fetch_pool(self) -> List[Transaction]:
        return await self.client.fetch_unmatched_transactions()

    # ==================== SELECTION ====================

    def toggle_transaction(self, transaction_id: int):
        if not any(t.id == transaction_id for t in self.state.pool):
            raise RecordNotFoundError(f"Transaction {transaction_id} not found")
        self.state = ws.toggle_transaction(self.state, transaction_id)

    def _require_group(self, key: str):
        if not any(g.key == key for g in self.state.groups):
            raise RecordNotFoundError(f"Transaction group {key} not found")

    def select_all_in_group(self, key: str):
        self._require_group(key)
        self.state = ws.select_all_in_group(self.state, key)

    def deselect_all_in_group(self, key: str):
        self._require_group(key)
        self.state = ws.deselect_all_in_group(self.state, key)

    def toggle_group(self, key: str):
        self._require_group(key)
        self.state = ws.toggle_group(self.state, key)

    async def select_driver(self, driver_id: Optional[str]):
        await super().select_driver(driver_id)
        # Invalidate any milestone load still in flight
        self.state = ws.next_milestone_generation(self.state)
        if driver_id is not None and self.config.loads_milestones:
            await self.load_milestones(driver_id)

    async def load_milestones(self, driver_id: str):
        """Milestones for the selected driver; a failure yields an empty list."""
        generation = self.state.milestone_generation
        try:
            milestones = await self.client.fetch_driver_milestones(driver_id)
        except TrackerAPIError as e:
            logger.warning(f"Could not load milestones for driver {driver_id}: {e.message}")
            milestones = []

        if generation != self.state.milestone_generation:
            self._log_stale("milestones", generation, self.state.milestone_generation)
            return
        self.state = ws.with_milestones(self.state, milestones)

    # ==================== ASSIGNMENT ====================

    def _assignment_details(self) -> Dict[str, Any]:
        selection = self.state.selection
        return {
            "transaction_ids": ws.ordered_selected_ids(self.state),
            "driver_id": selection.driver.driver_id if selection.driver else None,
            "milestone_ids": [m.id for m in self.state.milestones],
        }

    async def _submit_assignment(self) -> str:
        transaction_ids = ws.ordered_selected_ids(self.state)
        driver = self.state.selection.driver
        milestone_ids = [m.id for m in self.state.milestones] or None

        result = await self.client.assign_transactions_batch(
            transaction_ids,
            driver.driver_id,
            milestone_instance_ids=milestone_ids
        )
        return f"{result.matched_count} transactions assigned to driver {driver.driver_id}"

    # ==================== DESTRUCTIVE OPERATIONS ====================

    async def reprocess(self, confirm: Confirmation) -> bool:
        async def operation() -> str:
            result = await self.client.reprocess_unmatched_transactions()
            return result.summary()

        return await self._run_confirmed(
            confirm,
            "Reprocess all unmatched transactions against current drivers?",
            operation,
            ReconciliationAuditEvent.TRANSACTIONS_REPROCESSED
        )

    async def cleanup_duplicates(self, confirm: Confirmation) -> bool:
        async def operation() -> str:
            result = await self.client.cleanup_duplicate_transactions()
            return result.summary()

        return await self._run_confirmed(
            confirm,
            "Remove duplicate transactions? The oldest record of each duplicate set is kept.",
            operation,
            ReconciliationAuditEvent.DUPLICATES_CLEANED
        )

    # ==================== VIEWS ====================

    def visible_sources(self) -> list:
        return [t for g in self.visible_groups() for t in g.transactions]

    def visible_groups(self) -> list:
        return filter_groups(self.state.groups, self.state.source_filter)

    def snapshot(self) -> Dict[str, Any]:
        data = super().snapshot()
        selection = self.state.selection
        data.pop("sources")
        data["groups"] = [
            {
                "key": group.key,
                "driver_name_from_comment": group.driver_name_from_comment,
                "count": group.count,
                "expected_amount": str(group.expected_amount),
                "expanded": group.key in selection.expanded_groups,
                "transactions": [t.model_dump() for t in group.transactions],
            }
            for group in self.visible_groups()
        ]
        data["selection"]["transaction_ids"] = ws.ordered_selected_ids(self.state)
        data["milestones"] = [m.model_dump() for m in self.state.milestones]
        return data


# ==================== FACTORY ====================

# Single-record kinds; batch kinds use TransactionWorkflow
_WORKFLOW_CLASSES = {
    RecordKind.LEADS: LeadWorkflow,
    RecordKind.SCOUT_REGISTRATIONS: ScoutRegistrationWorkflow,
}


def create_workflow(kind: RecordKind, client: TrackerClient, settings) -> ReconciliationWorkflow:
    config = source_registry.get_config(kind)
    if config.assignment_mode == AssignmentMode.BATCH:
        return TransactionWorkflow(
            config, client, settings.DEFAULT_PARK_ID,
            lookback_days=settings.DRIVER_LOOKBACK_DAYS
        )
    return _WORKFLOW_CLASSES[kind](config, client, settings.DEFAULT_PARK_ID)
