"""Transaction log queries: ordering, filters, paging and sums."""

from datetime import timedelta
from decimal import Decimal

import pytest

from credit_ledger.core.exceptions import BadRequestError, NotFoundError
from credit_ledger.models.ledger import Transaction, TransactionType, utcnow
from credit_ledger.services.transactions import TransactionLog


async def test_history_is_newest_first(ledger):
    for amount in ("1", "2", "3"):
        await ledger.add_credits("alice", Decimal(amount))
    page = await ledger.get_transaction_history("alice")
    assert [tx.amount for tx in page.items] == [Decimal("3"), Decimal("2"), Decimal("1")]
    assert [tx.balance_after for tx in page.items] == [Decimal("6"), Decimal("3"), Decimal("1")]


async def test_history_filters_by_type(ledger):
    await ledger.add_credits("alice", Decimal("20"))
    await ledger.deduct_credits("alice", Decimal("5"))
    await ledger.deduct_credits("alice", Decimal("5"))
    page = await ledger.get_transaction_history("alice", tx_type=TransactionType.USAGE)
    assert page.total == 2
    assert all(tx.type == TransactionType.USAGE for tx in page.items)


async def test_history_paging(ledger):
    for _ in range(5):
        await ledger.add_credits("alice", Decimal("1"))
    page = await ledger.get_transaction_history("alice", limit=2, offset=4)
    assert page.total == 5
    assert len(page.items) == 1
    assert page.limit == 2


async def test_history_limit_is_clamped(ledger):
    await ledger.add_credits("alice", Decimal("1"))
    page = await ledger.get_transaction_history("alice", limit=1000)
    assert page.limit == 100


async def test_history_date_range(ledger):
    await ledger.add_credits("alice", Decimal("1"))
    now = utcnow()
    inside = await ledger.get_transaction_history("alice", start=now - timedelta(hours=1), end=now + timedelta(hours=1))
    assert inside.total == 1
    later = await ledger.get_transaction_history("alice", start=now + timedelta(hours=1))
    assert later.total == 0


async def test_history_rejects_inverted_range(ledger):
    now = utcnow()
    with pytest.raises(BadRequestError):
        await ledger.get_transaction_history("alice", start=now, end=now - timedelta(days=1))


async def test_get_transaction_is_scoped_to_owner(ledger):
    result = await ledger.add_credits("alice", Decimal("1"))
    tx = await ledger.get_transaction("alice", result.transaction.id)
    assert tx.id == result.transaction.id
    with pytest.raises(NotFoundError):
        await ledger.get_transaction("bob", result.transaction.id)
    with pytest.raises(NotFoundError):
        await ledger.get_transaction("alice", "missing")


async def test_sums_and_counts(ledger):
    await ledger.add_credits("alice", Decimal("20"))
    await ledger.deduct_credits("alice", Decimal("7.5"))
    journal = ledger.journal
    assert await journal.sum_by_type("alice", TransactionType.PURCHASE) == Decimal("20")
    assert await journal.sum_by_type("alice", TransactionType.USAGE) == Decimal("-7.5")
    assert await journal.sum_all("alice") == Decimal("12.5")
    assert await journal.count_by_user("alice") == 2
    assert await journal.count_by_user("alice", TransactionType.USAGE) == 1
    assert await journal.latest_activity("alice") is not None
    assert await journal.latest_activity("bob") is None


def test_append_stamps_id_and_time(backend):
    tx = TransactionLog(backend).append(Transaction(user_id="alice", type=TransactionType.PURCHASE, amount=Decimal("1")))
    assert tx.id
    assert tx.created_at is not None


def test_transaction_sign_must_match_type():
    with pytest.raises(ValueError):
        Transaction(user_id="alice", type=TransactionType.USAGE, amount=Decimal("1"))
    with pytest.raises(ValueError):
        Transaction(user_id="alice", type=TransactionType.ADJUSTMENT, amount=Decimal("0"))


async def test_same_timestamp_history_ordered_by_id(ledger, monkeypatch):
    fixed = utcnow()
    monkeypatch.setattr("credit_ledger.services.transactions.utcnow", lambda: fixed)
    committed = [(await ledger.add_credits("alice", Decimal("1"))).transaction.id for _ in range(6)]
    page = await ledger.get_transaction_history("alice")
    ids = [tx.id for tx in page.items]
    assert all(tx.created_at == fixed for tx in page.items)
    assert ids == sorted(ids, reverse=True)
    assert ids == committed[::-1]
    assert [tx.balance_after for tx in page.items] == [Decimal(n) for n in range(6, 0, -1)]


def test_transaction_ids_increase(backend):
    journal = TransactionLog(backend)
    ids = [
        journal.append(Transaction(user_id="alice", type=TransactionType.PURCHASE, amount=Decimal("1"))).id
        for _ in range(50)
    ]
    assert ids == sorted(ids)
    assert len(set(ids)) == 50


async def test_repeated_reads_return_the_same_history(ledger):
    await ledger.add_credits("alice", Decimal("20"))
    await ledger.deduct_credits("alice", Decimal("7.5"))
    await ledger.transfer("alice", "bob", Decimal("2"))
    first = await ledger.get_transaction_history("alice")
    second = await ledger.get_transaction_history("alice")
    assert first == second
    assert await ledger.journal.query_by_user("alice") == await ledger.journal.query_by_user("alice")
    assert await ledger.get_balance("alice") == await ledger.get_balance("alice") == Decimal("10.5")
    assert await ledger.get_transaction_history("alice") == first
