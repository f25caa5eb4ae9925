"""
Unit Tests for Transaction Grouping

Run with: pytest tests/test_transaction_grouper.py -v
"""

from reconciliation.models import Transaction
from reconciliation.services.transaction_grouper import group_key, group_transactions


def txn(id, name=None, comment=None):
    return Transaction(id=id, driver_name_from_comment=name, comment=comment)


class TestGroupKey:
    """Test group key derivation."""

    def test_named(self):
        assert group_key(txn(1, "Juan Perez")) == "Juan Perez"

    def test_missing_name(self):
        assert group_key(txn(7)) == "single-7"

    def test_blank_name(self):
        assert group_key(txn(8, "   ")) == "single-8"


class TestGroupTransactions:
    """Test partitioning of the unmatched pool."""

    def test_groups_by_parsed_name(self):
        pool = [
            txn(1, "Juan Perez", "pago Juan Perez"),
            txn(2, "Juan Perez", "pago Juan Perez"),
            txn(3, None, None),
        ]

        groups = group_transactions(pool)

        assert [(g.key, g.count) for g in groups] == [("Juan Perez", 2), ("single-3", 1)]
        assert groups[0].driver_name_from_comment == "Juan Perez"
        assert groups[1].driver_name_from_comment is None

    def test_every_transaction_in_exactly_one_group(self):
        pool = [
            txn(1, "A"), txn(2, None), txn(3, "B"), txn(4, "A"),
            txn(5, ""), txn(6, "B"), txn(7, "C"),
        ]

        groups = group_transactions(pool)
        ids = [t.id for g in groups for t in g.transactions]

        assert sorted(ids) == [1, 2, 3, 4, 5, 6, 7]
        assert len(ids) == len(set(ids))

    def test_first_appearance_order_and_member_order(self):
        pool = [txn(5, "B"), txn(1, "A"), txn(3, "B"), txn(2, "A")]

        groups = group_transactions(pool)

        assert [g.key for g in groups] == ["B", "A"]
        assert groups[0].transaction_ids == [5, 3]
        assert groups[1].transaction_ids == [1, 2]

    def test_empty_pool(self):
        assert group_transactions([]) == []
