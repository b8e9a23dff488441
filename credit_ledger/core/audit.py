"""Audit entries for balance-affecting events; stored in the same commit as the transaction."""

from decimal import Decimal
from typing import Any

from credit_ledger.models.ledger import AuditEntry, Transaction, TransactionType

ACTIONS = {
    TransactionType.PURCHASE: "credit_added",
    TransactionType.USAGE: "credit_deducted",
    TransactionType.ADJUSTMENT: "credit_adjusted",
    TransactionType.TRANSFER_OUT: "transfer_out",
    TransactionType.TRANSFER_IN: "transfer_in",
}


def build_audit_entry(
    tx: Transaction,
    balance_before: Decimal,
    balance_after: Decimal,
    reservation_id: str | None = None,
    context: dict[str, Any] | None = None,
) -> AuditEntry:
    """Audit record for one posting; transaction_id is filled in by the backend."""
    ctx = {"description": tx.description}
    if tx.reference_id:
        ctx["reference_id"] = tx.reference_id
    if tx.counterparty_id:
        ctx["counterparty_id"] = tx.counterparty_id
    ctx.update(context or {})
    action = "reservation_confirmed" if reservation_id else ACTIONS[tx.type]
    return AuditEntry(
        user_id=tx.user_id,
        action=action,
        amount=abs(tx.amount),
        balance_before=balance_before,
        balance_after=balance_after,
        reservation_id=reservation_id,
        context=ctx,
    )
