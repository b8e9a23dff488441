"""Per-user and system-wide analytics."""

from decimal import Decimal


async def test_spending_pattern_for_new_user(ledger):
    pattern = await ledger.get_user_spending_pattern("ghost")
    assert pattern.total_added == Decimal("0")
    assert pattern.transaction_count == 0
    assert pattern.average_per_transaction == Decimal("0")
    assert pattern.most_recent_activity is None


async def test_spending_pattern(ledger):
    await ledger.add_credits("alice", Decimal("100"))
    await ledger.deduct_credits("alice", Decimal("20"))
    await ledger.transfer("alice", "bob", Decimal("10"))
    await ledger.transfer("bob", "alice", Decimal("4"))
    pattern = await ledger.get_user_spending_pattern("alice")
    assert pattern.total_added == Decimal("100")
    assert pattern.total_deducted == Decimal("20")
    assert pattern.total_transferred_out == Decimal("10")
    assert pattern.total_transferred_in == Decimal("4")
    assert pattern.transaction_count == 2
    assert pattern.average_per_transaction == Decimal("60")
    assert pattern.most_recent_activity is not None


async def test_user_summary(ledger):
    await ledger.add_credits("alice", Decimal("30"))
    await ledger.deduct_credits("alice", Decimal("12.25"))
    summary = await ledger.get_user_summary("alice")
    assert summary.balance == Decimal("17.75")
    assert summary.total_purchased == Decimal("30")
    assert summary.total_used == Decimal("12.25")
    assert summary.transaction_count == 2


async def test_overall_analytics(ledger):
    await ledger.add_credits("alice", Decimal("100"))
    await ledger.add_credits("bob", Decimal("50"))
    await ledger.deduct_credits("alice", Decimal("10"))
    await ledger.transfer("bob", "carol", Decimal("20"))
    await ledger.adjust_credits("carol", Decimal("-5"), "Correction")
    stats = await ledger.get_overall_analytics()
    assert stats.total_users == 3
    assert stats.total_credits_in_circulation == Decimal("135")
    assert stats.total_transactions == 6
    assert stats.total_purchased == Decimal("150")
    assert stats.total_used == Decimal("10")
    assert stats.total_transferred == Decimal("20")
    assert stats.total_adjusted == Decimal("-5")
    assert stats.average_balance == Decimal("45")
    assert stats.transactions_by_type == {
        "purchase": 2,
        "usage": 1,
        "transfer_out": 1,
        "transfer_in": 1,
        "adjustment": 1,
    }


async def test_overall_analytics_empty(ledger):
    stats = await ledger.get_overall_analytics()
    assert stats.total_users == 0
    assert stats.average_balance == Decimal("0")
