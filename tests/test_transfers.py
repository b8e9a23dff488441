"""Transfers: both sides move together or not at all."""

import asyncio
from decimal import Decimal

import pytest

from credit_ledger.core.exceptions import (
    AccountNotFoundError,
    BalanceOutOfRangeError,
    InsufficientFundsError,
    InvalidAmountError,
    SelfTransferNotAllowedError,
)
from credit_ledger.models.ledger import AlertLevel, TransactionType


async def test_first_purchase_creates_balance(ledger):
    result = await ledger.add_credits("user", Decimal("100"))
    assert result.balance == Decimal("100")
    page = await ledger.get_transaction_history("user")
    assert [tx.type for tx in page.items] == [TransactionType.PURCHASE]


async def test_transfer_moves_credits_and_writes_both_rows(ledger):
    await ledger.add_credits("user", Decimal("100"))
    result = await ledger.transfer("user", "other", Decimal("30"), "gift")
    assert result.from_balance == Decimal("70")
    assert result.to_balance == Decimal("30")
    assert await ledger.get_balance("user") == Decimal("70")
    assert await ledger.get_balance("other") == Decimal("30")

    out_tx = (await ledger.get_transaction_history("user", tx_type=TransactionType.TRANSFER_OUT)).items
    in_tx = (await ledger.get_transaction_history("other")).items
    assert len(out_tx) == 1 and len(in_tx) == 1
    assert out_tx[0].amount == Decimal("-30")
    assert in_tx[0].amount == Decimal("30")
    assert out_tx[0].reference_id == in_tx[0].reference_id == result.transfer_id
    assert out_tx[0].counterparty_id == "other"
    assert in_tx[0].counterparty_id == "user"
    assert out_tx[0].description == "gift"


async def test_transfer_with_insufficient_funds_changes_nothing(ledger):
    await ledger.add_credits("user", Decimal("10"))
    with pytest.raises(InsufficientFundsError):
        await ledger.transfer("user", "other", Decimal("50"), "too much")
    assert await ledger.get_balance("user") == Decimal("10")
    assert await ledger.get_balance("other") == Decimal("0")
    assert (await ledger.get_transaction_history("user")).total == 1
    assert (await ledger.get_transaction_history("other")).total == 0


async def test_receiver_over_maximum_rolls_back_sender(ledger):
    await ledger.add_credits("user", Decimal("100"))
    await ledger.add_credits("other", Decimal("500"))
    await ledger.add_credits("other", Decimal("450"))
    with pytest.raises(BalanceOutOfRangeError):
        await ledger.transfer("user", "other", Decimal("60"))
    assert await ledger.get_balance("user") == Decimal("100")
    assert await ledger.get_balance("other") == Decimal("950")
    assert (await ledger.get_transaction_history("user")).total == 1


async def test_self_transfer_rejected(ledger):
    await ledger.add_credits("user", Decimal("10"))
    with pytest.raises(SelfTransferNotAllowedError):
        await ledger.transfer("user", "user", Decimal("1"))


async def test_sender_without_account_not_found(ledger):
    with pytest.raises(AccountNotFoundError):
        await ledger.transfer("ghost", "other", Decimal("1"))


async def test_transfer_amount_validated(ledger):
    await ledger.add_credits("user", Decimal("10"))
    with pytest.raises(InvalidAmountError):
        await ledger.transfer("user", "other", Decimal("0"))


async def test_transfer_reports_sender_alert(ledger):
    await ledger.add_credits("user", Decimal("20"))
    result = await ledger.transfer("user", "other", Decimal("16"))
    assert result.from_alert_level == AlertLevel.CRITICAL


async def test_opposite_transfers_do_not_deadlock(ledger):
    await ledger.add_credits("a", Decimal("500"))
    await ledger.add_credits("b", Decimal("500"))
    jobs = []
    for _ in range(20):
        jobs.append(ledger.transfer("a", "b", Decimal("3")))
        jobs.append(ledger.transfer("b", "a", Decimal("2")))
    await asyncio.wait_for(asyncio.gather(*jobs), timeout=10)
    assert await ledger.get_balance("a") == Decimal("480")
    assert await ledger.get_balance("b") == Decimal("520")
    assert await ledger.get_balance("a") + await ledger.get_balance("b") == Decimal("1000")
    assert len(ledger.locks) == 0


async def test_ledger_stays_consistent_after_transfers(ledger):
    await ledger.add_credits("user", Decimal("100"))
    await ledger.transfer("user", "other", Decimal("30"))
    for uid in ("user", "other"):
        check = await ledger.verify_user_ledger(uid)
        assert check.consistent
