"""Batch grants: every operation stands on its own."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from credit_ledger.core.config import CreditRules
from credit_ledger.core.exceptions import BadRequestError
from credit_ledger.services.batch import MAX_BATCH_SIZE, BatchOperation
from credit_ledger.services.credits import CreditsService


@pytest.fixture
def wide_ledger(backend) -> CreditsService:
    # Transaction cap above the balance cap, so the balance check is what fails.
    rules = CreditRules(maximum_balance=Decimal("1000"), maximum_transaction=Decimal("5000"))
    return CreditsService(backend, rules, retry_base_delay=0)


async def test_batch_partial_failure(wide_ledger):
    results = await wide_ledger.batch_add(
        [
            BatchOperation(user_id="u1", amount=Decimal("50")),
            BatchOperation(user_id="u2", amount=Decimal("2000")),
        ]
    )
    assert [r.success for r in results] == [True, False]
    assert results[0].balance == Decimal("50")
    assert results[0].transaction_id
    assert results[1].error.code == "BALANCE_OUT_OF_RANGE"
    assert await wide_ledger.get_balance("u1") == Decimal("50")
    assert await wide_ledger.get_balance("u2") == Decimal("0")


async def test_batch_reports_invalid_amounts_per_item(ledger):
    results = await ledger.batch_add(
        [
            BatchOperation(user_id="u1", amount=Decimal("0")),
            BatchOperation(user_id="u2", amount=Decimal("10"), description="Promo"),
        ]
    )
    assert results[0].error.code == "INVALID_AMOUNT"
    assert results[1].success
    history = await ledger.get_transaction_history("u2")
    assert history.items[0].description == "Promo"


async def test_batch_applies_in_order_for_same_user(ledger):
    results = await ledger.batch_add([BatchOperation(user_id="u1", amount=Decimal("400")) for _ in range(3)])
    assert [r.success for r in results] == [True, True, False]
    assert await ledger.get_balance("u1") == Decimal("800")


async def test_batch_size_limit(ledger):
    ops = [BatchOperation(user_id="u", amount=Decimal("1"))] * (MAX_BATCH_SIZE + 1)
    with pytest.raises(BadRequestError):
        await ledger.batch_add(ops)


def test_batch_operation_needs_user_id():
    with pytest.raises(ValidationError):
        BatchOperation(user_id="", amount=Decimal("10"))


async def test_batch_route_rejects_empty_user_id(client, login, ledger):
    login(client, "root", role="admin")
    r = await client.post("/v1/admin/credits/batch-add", json={"operations": [{"user_id": "", "amount": "10"}]})
    assert r.status_code == 422
    assert await ledger.backend.list_user_ids() == []
