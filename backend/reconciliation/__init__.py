"""
Driver Reconciliation Module

Manual reconciliation of imported records against the driver registry:
- Date-range driver pool assembled from a day-granular tracker API
- Advisory phone/name/license match highlighting
- Transaction grouping by the driver name parsed from comments
- Selection/assignment workflows for leads, scout registrations and
  transactions, with confirmation-gated destructive operations
"""

from reconciliation.source_registry import (
    RecordKind,
    AssignmentMode,
    KindConfig,
    SourceRegistry,
    source_registry
)
from reconciliation.matching_rules import (
    FieldMatchHighlighter,
    MatchSignals,
    field_match_highlighter
)
from reconciliation.services.assignment_workflow import (
    ReconciliationWorkflow,
    LeadWorkflow,
    ScoutRegistrationWorkflow,
    TransactionWorkflow,
    create_workflow
)
from reconciliation.endpoints.reconciliation_api import router as reconciliation_router

__all__ = [
    # Source Registry
    'RecordKind',
    'AssignmentMode',
    'KindConfig',
    'SourceRegistry',
    'source_registry',
    # Matching Rules
    'FieldMatchHighlighter',
    'MatchSignals',
    'field_match_highlighter',
    # Workflows
    'ReconciliationWorkflow',
    'LeadWorkflow',
    'ScoutRegistrationWorkflow',
    'TransactionWorkflow',
    'create_workflow',
    # Router
    'reconciliation_router'
]
