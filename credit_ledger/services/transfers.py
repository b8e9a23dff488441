"""Peer-to-peer credit transfers: two balances and two log rows, all or nothing."""

import uuid
from decimal import Decimal

from pydantic import BaseModel

from credit_ledger.core.exceptions import AccountNotFoundError, LedgerError, SelfTransferNotAllowedError
from credit_ledger.core.logging import get_logger
from credit_ledger.models.ledger import AlertLevel, Transaction, TransactionType
from credit_ledger.services.balances import Accounts, AtomicUnit, BalanceStore

log = get_logger(__name__)


class TransferResult(BaseModel):
    transfer_id: str
    from_user_id: str
    to_user_id: str
    amount: Decimal
    from_balance: Decimal
    to_balance: Decimal
    from_alert_level: AlertLevel = AlertLevel.NORMAL
    transactions: list[Transaction]


class TransferCoordinator:
    def __init__(self, balances: BalanceStore):
        self.balances = balances
        self.rules = balances.rules

    async def transfer(
        self,
        from_user_id: str,
        to_user_id: str,
        amount: Decimal,
        description: str | None = None,
    ) -> TransferResult:
        """Move `amount` from sender to receiver.

        Both resulting balances are validated before anything is written; the two
        balance updates and the TRANSFER_OUT / TRANSFER_IN rows commit as one unit.
        The sender must already hold an account; the receiver's is created on demand.
        """
        if from_user_id == to_user_id:
            raise SelfTransferNotAllowedError()
        value = self.rules.validate_transaction_amount(amount)
        transfer_id = uuid.uuid4().hex
        note = description or ""

        async def build(accounts: Accounts) -> AtomicUnit:
            sender = accounts[from_user_id]
            if sender is None:
                raise AccountNotFoundError(from_user_id)
            out_tx = Transaction(
                user_id=from_user_id,
                type=TransactionType.TRANSFER_OUT,
                amount=-value,
                description=note or f"Transfer to {to_user_id}",
                reference_id=transfer_id,
                counterparty_id=to_user_id,
            )
            in_tx = Transaction(
                user_id=to_user_id,
                type=TransactionType.TRANSFER_IN,
                amount=value,
                description=note or f"Transfer from {from_user_id}",
                reference_id=transfer_id,
                counterparty_id=from_user_id,
            )
            held = await self.balances.held_amount(from_user_id)
            return AtomicUnit(
                postings=[
                    self.balances.stage(sender, out_tx, held=held),
                    self.balances.stage(accounts[to_user_id], in_tx),
                ]
            )

        try:
            stored = await self.balances.run_atomic([from_user_id, to_user_id], build)
        except LedgerError as e:
            log.info(
                "transfer_rejected",
                from_user_id=from_user_id,
                to_user_id=to_user_id,
                amount=str(value),
                code=e.code,
            )
            raise
        out_tx, in_tx = stored
        from_level = self.rules.classify_alert_level(out_tx.balance_after)
        log.info(
            "transfer_completed",
            transfer_id=transfer_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=str(value),
        )
        if from_level != AlertLevel.NORMAL:
            log.warning("balance_alert", user_id=from_user_id, level=from_level.value, balance=str(out_tx.balance_after))
        return TransferResult(
            transfer_id=transfer_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=value,
            from_balance=out_tx.balance_after,
            to_balance=in_tx.balance_after,
            from_alert_level=from_level,
            transactions=stored,
        )
