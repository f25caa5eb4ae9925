"""
Reconciliation Source Registry

Central registry of the record kinds the operator can reconcile
against the driver registry.
Each kind has:
- Unique identifier
- Display name
- Tracker API route prefix
- Drivers-by-date endpoint used to build its candidate pool
- Assignment mode (single record or batch of transactions)

Supported Kinds:
- LEADS: marketing leads awaiting a driver
- SCOUT_REGISTRATIONS: scout-driven registrations
- TRANSACTIONS: payment-platform transactions
"""

from enum import Enum
from typing import Dict, Any, List, Optional
from dataclasses import dataclass


class RecordKind(str, Enum):
    """
    Recognised source collections.
    """
    LEADS = "leads"
    SCOUT_REGISTRATIONS = "scout-registrations"
    TRANSACTIONS = "transactions"


class AssignmentMode(str, Enum):
    """
    How a kind is linked to a driver.
    """
    SINGLE = "SINGLE"   # One source id and one driver id per call
    BATCH = "BATCH"     # A set of transaction ids, one driver, optional milestones


@dataclass
class KindConfig:
    """
    Configuration for a record kind.
    """
    kind: RecordKind
    display_name: str
    api_prefix: str
    drivers_endpoint: str
    assignment_mode: AssignmentMode
    supports_discard: bool
    supports_reprocess: bool
    loads_milestones: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "display_name": self.display_name,
            "api_prefix": self.api_prefix,
            "drivers_endpoint": self.drivers_endpoint,
            "assignment_mode": self.assignment_mode.value,
            "supports_discard": self.supports_discard,
            "supports_reprocess": self.supports_reprocess,
            "loads_milestones": self.loads_milestones,
        }


class SourceRegistry:
    """
    Lookup table for record kinds.
    """

    _default_configs: Dict[RecordKind, KindConfig] = {
        RecordKind.LEADS: KindConfig(
            kind=RecordKind.LEADS,
            display_name="unmatched leads",
            api_prefix="/leads",
            drivers_endpoint="/leads/drivers-by-date",
            assignment_mode=AssignmentMode.SINGLE,
            supports_discard=True,
            supports_reprocess=False,
            loads_milestones=False,
        ),
        RecordKind.SCOUT_REGISTRATIONS: KindConfig(
            kind=RecordKind.SCOUT_REGISTRATIONS,
            display_name="unmatched scout registrations",
            api_prefix="/scout-registrations",
            drivers_endpoint="/leads/drivers-by-date",
            assignment_mode=AssignmentMode.SINGLE,
            supports_discard=False,
            supports_reprocess=False,
            loads_milestones=False,
        ),
        RecordKind.TRANSACTIONS: KindConfig(
            kind=RecordKind.TRANSACTIONS,
            display_name="unmatched transactions",
            api_prefix="/yango-transactions",
            drivers_endpoint="/yango-transactions/drivers-by-date",
            assignment_mode=AssignmentMode.BATCH,
            supports_discard=False,
            supports_reprocess=True,
            loads_milestones=True,
        ),
    }

    def __init__(self):
        self._configs = dict(self._default_configs)

    def get_config(self, kind: RecordKind) -> KindConfig:
        """Get configuration for a kind."""
        return self._configs[kind]

    def get_all_configs(self) -> List[KindConfig]:
        """Get all kind configurations."""
        return list(self._configs.values())

    def find(self, value: str) -> Optional[KindConfig]:
        """Resolve a kind by its string value; None when unknown."""
        try:
            return self._configs.get(RecordKind(value))
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        """Export registry as dictionary."""
        return {
            kind.value: cfg.to_dict()
            for kind, cfg in self._configs.items()
        }


source_registry = SourceRegistry()
