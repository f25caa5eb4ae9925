"""
Transaction Grouper

Partitions the unmatched transaction pool into operator units keyed by the
driver name parsed from each transaction's comment.
"""

from typing import Dict, List, Sequence

from reconciliation.models import Transaction, TransactionGroup


def group_key(transaction: Transaction) -> str:
    """Parsed driver name, or single-<id> when there is none."""
    name = transaction.driver_name_from_comment
    if name and name.strip():
        return name
    return f"single-{transaction.id}"


def group_transactions(transactions: Sequence[Transaction]) -> List[TransactionGroup]:
    """
    Group transactions by key.

    Every transaction lands in exactly one group. Groups are ordered by first
    appearance and members keep pool order.
    """
    buckets: Dict[str, List[Transaction]] = {}
    for transaction in transactions:
        buckets.setdefault(group_key(transaction), []).append(transaction)

    groups = []
    for key, members in buckets.items():
        name = members[0].driver_name_from_comment
        groups.append(TransactionGroup(
            key=key,
            driver_name_from_comment=name if name and name.strip() else None,
            transactions=tuple(members),
        ))
    return groups
