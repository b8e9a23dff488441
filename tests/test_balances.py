"""Balance store: applying deltas, bounds, idempotency and the audit trail."""

from decimal import Decimal

import pytest

from credit_ledger.core.exceptions import (
    AccountNotFoundError,
    BalanceOutOfRangeError,
    InsufficientFundsError,
    InvalidAmountError,
)
from credit_ledger.models.ledger import AlertLevel, TransactionType


async def test_get_balance_defaults_to_zero_without_row(ledger, backend):
    assert await ledger.get_balance("ghost") == Decimal("0")
    assert await backend.get_account("ghost") is None


async def test_add_credits_creates_account_and_row(ledger):
    result = await ledger.add_credits("alice", Decimal("100"), "Starter pack", package_id="pkg-1")
    assert result.balance == Decimal("100")
    assert result.transaction.type == TransactionType.PURCHASE
    assert result.transaction.amount == Decimal("100")
    assert result.transaction.balance_after == Decimal("100")
    assert result.transaction.package_id == "pkg-1"
    page = await ledger.get_transaction_history("alice")
    assert page.total == 1


async def test_deduct_credits_stores_negative_amount(ledger):
    await ledger.add_credits("alice", Decimal("100"))
    result = await ledger.deduct_credits("alice", Decimal("25.5"), "Chat completion")
    assert result.balance == Decimal("74.5")
    assert result.transaction.type == TransactionType.USAGE
    assert result.transaction.amount == Decimal("-25.5")


async def test_deduct_requires_account(ledger):
    with pytest.raises(AccountNotFoundError):
        await ledger.deduct_credits("ghost", Decimal("1"))


async def test_balance_may_land_exactly_on_bounds(ledger):
    await ledger.add_credits("alice", Decimal("500"))
    await ledger.add_credits("alice", Decimal("500"))
    assert await ledger.get_balance("alice") == Decimal("1000")
    await ledger.deduct_credits("alice", Decimal("500"))
    result = await ledger.deduct_credits("alice", Decimal("500"))
    assert result.balance == Decimal("0")


async def test_credit_past_maximum_is_rejected(ledger):
    await ledger.add_credits("alice", Decimal("500"))
    await ledger.add_credits("alice", Decimal("499.9999"))
    with pytest.raises(BalanceOutOfRangeError) as exc:
        await ledger.add_credits("alice", Decimal("0.02"))
    assert exc.value.code == "BALANCE_OUT_OF_RANGE"
    assert await ledger.get_balance("alice") == Decimal("999.9999")
    assert (await ledger.get_transaction_history("alice")).total == 2


async def test_debit_past_minimum_is_insufficient_funds(ledger):
    await ledger.add_credits("alice", Decimal("10"))
    with pytest.raises(InsufficientFundsError):
        await ledger.deduct_credits("alice", Decimal("10.01"))
    assert await ledger.get_balance("alice") == Decimal("10")
    assert (await ledger.get_transaction_history("alice")).total == 1


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("0.001"), Decimal("500.01"), Decimal("-5")])
async def test_invalid_purchase_amounts(ledger, amount):
    with pytest.raises(InvalidAmountError):
        await ledger.add_credits("alice", amount)
    assert await ledger.get_balance("alice") == Decimal("0")


async def test_adjustment_is_signed(ledger):
    await ledger.add_credits("alice", Decimal("50"))
    down = await ledger.adjust_credits("alice", Decimal("-20"), "Refund reversal")
    assert down.balance == Decimal("30")
    assert down.transaction.type == TransactionType.ADJUSTMENT
    up = await ledger.adjust_credits("alice", Decimal("5"), "Goodwill")
    assert up.balance == Decimal("35")


async def test_negative_adjustment_needs_account(ledger):
    with pytest.raises(AccountNotFoundError):
        await ledger.adjust_credits("ghost", Decimal("-1"), "Correction")


async def test_idempotent_add_applies_once(ledger):
    first = await ledger.add_credits("alice", Decimal("40"), idempotency_key="order-1")
    second = await ledger.add_credits("alice", Decimal("40"), idempotency_key="order-1")
    assert second.replayed is True
    assert second.transaction.id == first.transaction.id
    assert await ledger.get_balance("alice") == Decimal("40")
    assert (await ledger.get_transaction_history("alice")).total == 1


async def test_idempotency_keys_are_per_user(ledger):
    await ledger.add_credits("alice", Decimal("40"), idempotency_key="order-1")
    await ledger.add_credits("bob", Decimal("40"), idempotency_key="order-1")
    assert await ledger.get_balance("bob") == Decimal("40")


async def test_low_balance_alert_after_debit(ledger):
    await ledger.add_credits("alice", Decimal("12"))
    low = await ledger.deduct_credits("alice", Decimal("3"))
    assert low.alert_level == AlertLevel.LOW
    critical = await ledger.deduct_credits("alice", Decimal("5"))
    assert critical.alert_level == AlertLevel.CRITICAL


async def test_metadata_is_whitelisted(ledger):
    await ledger.add_credits("alice", Decimal("10"))
    result = await ledger.deduct_credits(
        "alice",
        Decimal("1"),
        metadata={
            "model": "m" * 150,
            "provider": "unknown-vendor",
            "operation": "generate",
            "tokens": {"prompt": 10, "completion": 5, "total": 15},
            "secret": "drop me",
        },
    )
    metadata = result.transaction.metadata
    assert len(metadata["model"]) == 100
    assert "provider" not in metadata
    assert "secret" not in metadata
    assert metadata["operation"] == "generate"
    assert metadata["tokens"]["total"] == 15


async def test_audit_entries_recorded_with_transaction(ledger):
    await ledger.add_credits("alice", Decimal("30"))
    result = await ledger.deduct_credits("alice", Decimal("10"))
    audit = await ledger.get_audit_trail("alice")
    assert [a.action for a in audit] == ["credit_deducted", "credit_added"]
    assert audit[0].balance_before == Decimal("30")
    assert audit[0].balance_after == Decimal("20")
    assert audit[0].amount == Decimal("10")
    assert audit[0].transaction_id == result.transaction.id


async def test_rejected_change_leaves_no_audit(ledger):
    await ledger.add_credits("alice", Decimal("5"))
    with pytest.raises(InsufficientFundsError):
        await ledger.deduct_credits("alice", Decimal("6"))
    assert len(await ledger.get_audit_trail("alice")) == 1


async def test_credit_status(ledger):
    status = await ledger.get_credit_status("ghost")
    assert status.status == "exhausted"
    assert status.can_use_paid_models is False
    await ledger.add_credits("alice", Decimal("7"))
    status = await ledger.get_credit_status("alice")
    assert status.status == "low"
    assert status.available == Decimal("7")
    assert status.can_use_paid_models is True


@pytest.mark.parametrize("amount", [Decimal("1.00005"), Decimal("0.12345")])
async def test_sub_precision_amounts_rejected(ledger, amount):
    await ledger.add_credits("alice", Decimal("10"))
    with pytest.raises(InvalidAmountError):
        await ledger.add_credits("alice", amount)
    with pytest.raises(InvalidAmountError):
        await ledger.deduct_credits("alice", amount)
    assert await ledger.get_balance("alice") == Decimal("10")
    assert (await ledger.get_transaction_history("alice")).total == 1


async def test_balance_reads_are_stable(ledger):
    await ledger.add_credits("alice", Decimal("12.3456"))
    reads = [await ledger.get_balance("alice") for _ in range(3)]
    assert reads == [Decimal("12.3456")] * 3
    assert await ledger.get_credit_status("alice") == await ledger.get_credit_status("alice")
