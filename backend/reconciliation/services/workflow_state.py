"""
Workflow State

Immutable selection/assignment state for one reconciliation view plus the
pure transitions over it. Every transition returns a new WorkflowState;
nothing is mutated in place.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, FrozenSet, Iterable, Optional, Sequence, Tuple, Union

from reconciliation.models import (
    Driver,
    Lead,
    MilestoneInstance,
    ScoutRegistration,
    Transaction,
    TransactionGroup,
    UploadMetadata,
)
from reconciliation.services.filter_engine import FilterCriteria
from reconciliation.services.transaction_grouper import group_transactions
from reconciliation.source_registry import RecordKind

SourceRecord = Union[Lead, ScoutRegistration]
PoolRecord = Union[Lead, ScoutRegistration, Transaction]


class WorkflowPhase(str, Enum):
    IDLE = "idle"
    SOURCE_SELECTED = "source_selected"
    DRIVER_SELECTED = "driver_selected"
    READY_TO_ASSIGN = "ready_to_assign"
    ASSIGNING = "assigning"


@dataclass(frozen=True)
class SelectionState:
    """What the operator has picked. Transaction ids are only used by the transactions view."""
    source: Optional[SourceRecord] = None
    transaction_ids: FrozenSet[int] = frozenset()
    driver: Optional[Driver] = None
    expanded_groups: FrozenSet[str] = frozenset()

    @property
    def has_source(self) -> bool:
        return self.source is not None or bool(self.transaction_ids)


@dataclass(frozen=True)
class WorkflowState:
    kind: RecordKind
    pool: Tuple[PoolRecord, ...] = ()
    groups: Tuple[TransactionGroup, ...] = ()
    drivers: Tuple[Driver, ...] = ()
    milestones: Tuple[MilestoneInstance, ...] = ()
    selection: SelectionState = field(default_factory=SelectionState)
    source_filter: FilterCriteria = field(default_factory=FilterCriteria)
    driver_filter: FilterCriteria = field(default_factory=FilterCriteria)
    assigning: bool = False
    error: Optional[str] = None
    summary: Optional[str] = None
    last_updated_at: Optional[datetime] = None
    upload_metadata: Optional[UploadMetadata] = None
    failed_driver_dates: Tuple[str, ...] = ()
    driver_generation: int = 0
    milestone_generation: int = 0


# ==================== DERIVED ====================

def phase(state: WorkflowState) -> WorkflowPhase:
    if state.assigning:
        return WorkflowPhase.ASSIGNING

    has_source = state.selection.has_source
    has_driver = state.selection.driver is not None
    if has_source and has_driver:
        return WorkflowPhase.READY_TO_ASSIGN
    if has_source:
        return WorkflowPhase.SOURCE_SELECTED
    if has_driver:
        return WorkflowPhase.DRIVER_SELECTED
    return WorkflowPhase.IDLE


def can_assign(state: WorkflowState) -> bool:
    return phase(state) == WorkflowPhase.READY_TO_ASSIGN


def ordered_selected_ids(state: WorkflowState) -> list:
    """Selected transaction ids in pool order."""
    selected = state.selection.transaction_ids
    return [t.id for t in state.pool if isinstance(t, Transaction) and t.id in selected]


def _record_key(record: PoolRecord) -> Any:
    if isinstance(record, Lead):
        return record.external_id
    return record.id


# ==================== POOL TRANSITIONS ====================

def with_pool(state: WorkflowState, records: Sequence[PoolRecord]) -> WorkflowState:
    """
    Replace the unmatched pool.

    Transaction groups are rebuilt from scratch and all start expanded.
    Selections that point at records no longer in the pool are dropped.
    """
    pool = tuple(records)
    selection = state.selection
    present = {_record_key(r) for r in pool}

    if selection.source is not None and _record_key(selection.source) not in present:
        selection = replace(selection, source=None)

    groups: Tuple[TransactionGroup, ...] = ()
    if state.kind == RecordKind.TRANSACTIONS:
        groups = tuple(group_transactions(pool))
        selection = replace(
            selection,
            transaction_ids=frozenset(i for i in selection.transaction_ids if i in present),
            expanded_groups=frozenset(g.key for g in groups),
        )

    return replace(state, pool=pool, groups=groups, selection=selection)


def with_drivers(state: WorkflowState, drivers: Iterable[Driver], failed_dates: Iterable[str] = ()) -> WorkflowState:
    return replace(state, drivers=tuple(drivers), failed_driver_dates=tuple(failed_dates))


def with_milestones(state: WorkflowState, milestones: Iterable[MilestoneInstance]) -> WorkflowState:
    return replace(state, milestones=tuple(milestones))


def next_driver_generation(state: WorkflowState) -> WorkflowState:
    return replace(state, driver_generation=state.driver_generation + 1)


def next_milestone_generation(state: WorkflowState) -> WorkflowState:
    return replace(state, milestone_generation=state.milestone_generation + 1)


# ==================== SELECTION TRANSITIONS ====================

def select_source(state: WorkflowState, source: Optional[SourceRecord]) -> WorkflowState:
    return replace(state, selection=replace(state.selection, source=source))


def select_driver(state: WorkflowState, driver: Optional[Driver]) -> WorkflowState:
    """Milestones are dropped whenever the selected driver changes."""
    current = state.selection.driver
    new_state = replace(state, selection=replace(state.selection, driver=driver))
    if driver is None or current is None or current.driver_id != driver.driver_id:
        new_state = replace(new_state, milestones=())
    return new_state


def clear_selection(state: WorkflowState) -> WorkflowState:
    selection = SelectionState(expanded_groups=state.selection.expanded_groups)
    return replace(state, selection=selection, milestones=())


def toggle_transaction(state: WorkflowState, transaction_id: int) -> WorkflowState:
    ids = state.selection.transaction_ids
    if transaction_id in ids:
        ids = ids - {transaction_id}
    else:
        ids = ids | {transaction_id}
    return replace(state, selection=replace(state.selection, transaction_ids=ids))


def _group_ids(state: WorkflowState, key: str) -> FrozenSet[int]:
    for group in state.groups:
        if group.key == key:
            return frozenset(group.transaction_ids)
    return frozenset()


def select_all_in_group(state: WorkflowState, key: str) -> WorkflowState:
    ids = state.selection.transaction_ids | _group_ids(state, key)
    return replace(state, selection=replace(state.selection, transaction_ids=ids))


def deselect_all_in_group(state: WorkflowState, key: str) -> WorkflowState:
    ids = state.selection.transaction_ids - _group_ids(state, key)
    return replace(state, selection=replace(state.selection, transaction_ids=ids))


def toggle_group(state: WorkflowState, key: str) -> WorkflowState:
    """Expand/collapse; never touches the selected ids."""
    expanded = state.selection.expanded_groups
    expanded = expanded - {key} if key in expanded else expanded | {key}
    return replace(state, selection=replace(state.selection, expanded_groups=expanded))


# ==================== ASSIGNMENT TRANSITIONS ====================

def begin_assignment(state: WorkflowState) -> WorkflowState:
    return replace(state, assigning=True, error=None, summary=None)


def assignment_succeeded(state: WorkflowState, summary: str, at: datetime) -> WorkflowState:
    return replace(
        clear_selection(state),
        assigning=False,
        summary=summary,
        last_updated_at=at,
    )


def assignment_failed(state: WorkflowState, message: str) -> WorkflowState:
    return replace(state, assigning=False, error=message)
