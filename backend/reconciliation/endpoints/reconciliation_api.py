"""
Reconciliation API Endpoints

Operator console for the manual driver reconciliation workflows:
- GET  /api/reconciliation/status - Module status
- GET  /api/reconciliation/{kind}/state - Workflow state and filtered views
- POST /api/reconciliation/{kind}/reload - Reload the unmatched pool
- POST /api/reconciliation/{kind}/filters - Set source/driver filters
- POST /api/reconciliation/{kind}/sync-dates - Copy source dates to the driver range
- POST /api/reconciliation/{kind}/select-source - Select a lead or registration
- POST /api/reconciliation/{kind}/select-driver - Select a candidate driver
- POST /api/reconciliation/{kind}/clear-selection - Clear the selection
- POST /api/reconciliation/{kind}/assign - Submit the assignment
- GET  /api/reconciliation/{kind}/upload-metadata - Last upload provenance
- POST /api/reconciliation/transactions/... - Transaction/group selection
- POST /api/reconciliation/leads/discard - Discard a lead (confirmed)
- POST /api/reconciliation/transactions/reprocess - Reprocess (confirmed)
- POST /api/reconciliation/transactions/cleanup-duplicates - Cleanup (confirmed)

{kind} is one of: leads, scout-registrations, transactions
"""

import logging
from datetime import date, datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from reconciliation.services.assignment_workflow import (
    LeadWorkflow,
    ReconciliationWorkflow,
    RecordNotFoundError,
    TransactionWorkflow,
)
from reconciliation.services.filter_engine import FilterCriteria
from reconciliation.source_registry import RecordKind, source_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


# ==================== Request Models ====================

class FilterInput(BaseModel):
    """Text and date-range filter for one side of the console."""
    term: str = Field(default="", description="Case-insensitive search text")
    date_from: Optional[date] = Field(default=None, description="Inclusive start day")
    date_to: Optional[date] = Field(default=None, description="Inclusive end day")

    def to_criteria(self) -> FilterCriteria:
        return FilterCriteria(term=self.term, date_from=self.date_from, date_to=self.date_to)


class SetFiltersRequest(BaseModel):
    """Request to change filters. Omitted sides are left untouched."""
    source: Optional[FilterInput] = None
    driver: Optional[FilterInput] = None


class SelectSourceRequest(BaseModel):
    source_id: Optional[str] = Field(default=None, description="Lead external id or registration id; null clears")


class SelectDriverRequest(BaseModel):
    driver_id: Optional[str] = Field(default=None, description="Driver id; null clears")


class ToggleTransactionRequest(BaseModel):
    transaction_id: int


class ConfirmRequest(BaseModel):
    """Destructive operations run only with confirm=true."""
    confirm: bool = False


class DiscardLeadRequest(ConfirmRequest):
    external_id: Optional[str] = Field(default=None, description="Defaults to the selected lead")


# ==================== Dependencies ====================

def get_workflows(request: Request) -> Dict[RecordKind, ReconciliationWorkflow]:
    """Workflows built at startup (see server lifespan)."""
    workflows = getattr(request.app.state, "workflows", None)
    if not workflows:
        raise HTTPException(status_code=503, detail="Reconciliation workflows not initialized")
    return workflows


def get_workflow(
    kind: str,
    workflows: Dict[RecordKind, ReconciliationWorkflow] = Depends(get_workflows)
) -> ReconciliationWorkflow:
    config = source_registry.find(kind)
    if config is None or config.kind not in workflows:
        raise HTTPException(status_code=404, detail=f"Unknown record kind: {kind}")
    return workflows[config.kind]


def get_transaction_workflow(
    workflows: Dict[RecordKind, ReconciliationWorkflow] = Depends(get_workflows)
) -> TransactionWorkflow:
    return workflows[RecordKind.TRANSACTIONS]


def get_lead_workflow(
    workflows: Dict[RecordKind, ReconciliationWorkflow] = Depends(get_workflows)
) -> LeadWorkflow:
    return workflows[RecordKind.LEADS]


def _not_found(e: RecordNotFoundError):
    raise HTTPException(status_code=404, detail=str(e))


def _require_capability(workflow: ReconciliationWorkflow, enabled: bool, operation: str):
    if not enabled:
        raise HTTPException(
            status_code=405,
            detail=f"{operation} is not supported for {workflow.config.display_name}"
        )


# ==================== Module ====================

@router.get("/status", summary="Module status")
async def get_module_status():
    """
    Get reconciliation module status.

    Returns configuration and availability information.
    """
    return {
        "module": "reconciliation",
        "status": "operational",
        "version": "1.0.0",
        "features": {
            "date_range_driver_pool": True,
            "match_highlighting": True,
            "transaction_grouping": True,
            "batch_assignment": True,
        },
        "kinds": [cfg.to_dict() for cfg in source_registry.get_all_configs()],
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# ==================== Transactions ====================

@router.post("/transactions/toggle-transaction", summary="Toggle one transaction")
async def toggle_transaction(
    body: ToggleTransactionRequest,
    workflow: TransactionWorkflow = Depends(get_transaction_workflow)
):
    try:
        workflow.toggle_transaction(body.transaction_id)
    except RecordNotFoundError as e:
        _not_found(e)
    return workflow.snapshot()


@router.post("/transactions/groups/{key}/select-all", summary="Select every transaction in a group")
async def select_all_in_group(key: str, workflow: TransactionWorkflow = Depends(get_transaction_workflow)):
    try:
        workflow.select_all_in_group(key)
    except RecordNotFoundError as e:
        _not_found(e)
    return workflow.snapshot()


@router.post("/transactions/groups/{key}/deselect-all", summary="Deselect every transaction in a group")
async def deselect_all_in_group(key: str, workflow: TransactionWorkflow = Depends(get_transaction_workflow)):
    try:
        workflow.deselect_all_in_group(key)
    except RecordNotFoundError as e:
        _not_found(e)
    return workflow.snapshot()


@router.post("/transactions/groups/{key}/toggle", summary="Expand or collapse a group")
async def toggle_group(key: str, workflow: TransactionWorkflow = Depends(get_transaction_workflow)):
    try:
        workflow.toggle_group(key)
    except RecordNotFoundError as e:
        _not_found(e)
    return workflow.snapshot()


@router.post("/transactions/reprocess", summary="Reprocess unmatched transactions")
async def reprocess_transactions(
    body: ConfirmRequest,
    workflow: TransactionWorkflow = Depends(get_transaction_workflow)
):
    _require_capability(workflow, workflow.config.supports_reprocess, "Reprocess")
    done = await workflow.reprocess(body.confirm)
    return {"performed": done, "state": workflow.snapshot()}


@router.post("/transactions/cleanup-duplicates", summary="Remove duplicate transactions")
async def cleanup_duplicates(
    body: ConfirmRequest,
    workflow: TransactionWorkflow = Depends(get_transaction_workflow)
):
    _require_capability(workflow, workflow.config.supports_reprocess, "Duplicate cleanup")
    done = await workflow.cleanup_duplicates(body.confirm)
    return {"performed": done, "state": workflow.snapshot()}


# ==================== Leads ====================

@router.post("/leads/discard", summary="Discard a lead")
async def discard_lead(
    body: DiscardLeadRequest,
    workflow: LeadWorkflow = Depends(get_lead_workflow)
):
    _require_capability(workflow, workflow.config.supports_discard, "Discard")
    done = await workflow.discard(body.confirm, external_id=body.external_id)
    return {"performed": done, "state": workflow.snapshot()}


# ==================== Per-kind ====================

@router.get("/{kind}/state", summary="Workflow state")
async def get_state(workflow: ReconciliationWorkflow = Depends(get_workflow)):
    return workflow.snapshot()


@router.post("/{kind}/reload", summary="Reload unmatched pool")
async def reload_pool(workflow: ReconciliationWorkflow = Depends(get_workflow)):
    await workflow.reload()
    return workflow.snapshot()


@router.post("/{kind}/filters", summary="Set filters")
async def set_filters(body: SetFiltersRequest, workflow: ReconciliationWorkflow = Depends(get_workflow)):
    """
    Update source and/or driver filters.

    A changed driver date range refetches the driver pool.
    """
    if body.source is not None:
        workflow.set_source_filter(body.source.to_criteria())
    if body.driver is not None:
        await workflow.set_driver_filter(body.driver.to_criteria())
    return workflow.snapshot()


@router.post("/{kind}/sync-dates", summary="Use source dates for drivers")
async def sync_dates(workflow: ReconciliationWorkflow = Depends(get_workflow)):
    await workflow.sync_driver_dates()
    return workflow.snapshot()


@router.post("/{kind}/select-source", summary="Select a source record")
async def select_source(body: SelectSourceRequest, workflow: ReconciliationWorkflow = Depends(get_workflow)):
    if isinstance(workflow, TransactionWorkflow):
        raise HTTPException(
            status_code=400,
            detail="Transactions are selected with toggle-transaction or group select-all"
        )
    try:
        workflow.select_source(body.source_id)
    except RecordNotFoundError as e:
        _not_found(e)
    return workflow.snapshot()


@router.post("/{kind}/select-driver", summary="Select a candidate driver")
async def select_driver(body: SelectDriverRequest, workflow: ReconciliationWorkflow = Depends(get_workflow)):
    try:
        await workflow.select_driver(body.driver_id)
    except RecordNotFoundError as e:
        _not_found(e)
    return workflow.snapshot()


@router.post("/{kind}/clear-selection", summary="Clear selection")
async def clear_selection(workflow: ReconciliationWorkflow = Depends(get_workflow)):
    workflow.clear_selection()
    return workflow.snapshot()


@router.post("/{kind}/assign", summary="Assign selection to driver")
async def assign(workflow: ReconciliationWorkflow = Depends(get_workflow)):
    """
    Submit the current selection.

    An incomplete selection is a no-op ({"assigned": false}); a remote
    failure is reported in state.error with the selection preserved.
    """
    assigned = await workflow.assign()
    return {"assigned": assigned, "state": workflow.snapshot()}


@router.get("/{kind}/upload-metadata", summary="Upload metadata")
async def upload_metadata(workflow: ReconciliationWorkflow = Depends(get_workflow)):
    await workflow.load_upload_metadata()
    metadata = workflow.state.upload_metadata
    return {"upload_metadata": metadata.model_dump() if metadata else None}
