"""Administrative bulk credit grants.

Each operation is validated and committed on its own: a failed item is reported
in the result list and never undoes or blocks the others.
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from credit_ledger.core.exceptions import BadRequestError, LedgerError
from credit_ledger.core.logging import get_logger
from credit_ledger.models.ledger import TransactionType
from credit_ledger.services.balances import BalanceStore

log = get_logger(__name__)

MAX_BATCH_SIZE = 1000


class BatchOperation(BaseModel):
    user_id: str = Field(min_length=1)
    amount: Decimal
    description: str = "Administrative credit grant"
    reference_id: str | None = None
    package_id: str | None = None


class BatchItemError(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = {}


class BatchItemResult(BaseModel):
    operation: BatchOperation
    success: bool
    balance: Decimal | None = None
    transaction_id: str | None = None
    error: BatchItemError | None = None


class BatchProcessor:
    def __init__(self, balances: BalanceStore):
        self.balances = balances

    async def batch_add(self, operations: list[BatchOperation]) -> list[BatchItemResult]:
        """Apply grants in order; one result per operation, successes and failures alike."""
        if len(operations) > MAX_BATCH_SIZE:
            raise BadRequestError(f"At most {MAX_BATCH_SIZE} operations per batch", {"count": len(operations)})
        results = []
        for op in operations:
            try:
                applied = await self.balances.apply_delta(
                    op.user_id,
                    op.amount,
                    TransactionType.PURCHASE,
                    op.description,
                    reference_id=op.reference_id,
                    package_id=op.package_id,
                )
            except LedgerError as e:
                results.append(
                    BatchItemResult(
                        operation=op,
                        success=False,
                        error=BatchItemError(code=e.code, message=e.message, details=e.details),
                    )
                )
                continue
            results.append(
                BatchItemResult(
                    operation=op,
                    success=True,
                    balance=applied.balance,
                    transaction_id=applied.transaction.id,
                )
            )
        succeeded = sum(1 for r in results if r.success)
        log.info("batch_add_completed", total=len(results), succeeded=succeeded, failed=len(results) - succeeded)
        return results
