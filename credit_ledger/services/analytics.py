"""Read-only aggregates over committed ledger entries."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from credit_ledger.models.ledger import CREDIT_QUANTUM, TransactionType
from credit_ledger.services.transactions import TransactionLog
from credit_ledger.storage.base import LedgerBackend

ZERO = Decimal("0")


class SpendingPattern(BaseModel):
    user_id: str
    total_added: Decimal = ZERO
    total_deducted: Decimal = ZERO
    total_transferred_in: Decimal = ZERO
    total_transferred_out: Decimal = ZERO
    transaction_count: int = 0
    average_per_transaction: Decimal = ZERO
    most_recent_activity: datetime | None = None


class UserSummary(BaseModel):
    user_id: str
    balance: Decimal = ZERO
    total_purchased: Decimal = ZERO
    total_used: Decimal = ZERO
    transaction_count: int = 0


class OverallAnalytics(BaseModel):
    total_users: int = 0
    total_credits_in_circulation: Decimal = ZERO
    total_transactions: int = 0
    total_purchased: Decimal = ZERO
    total_used: Decimal = ZERO
    total_transferred: Decimal = ZERO
    total_adjusted: Decimal = ZERO
    average_balance: Decimal = ZERO
    transactions_by_type: dict[str, int] = {}


class AnalyticsAggregator:
    def __init__(self, backend: LedgerBackend, journal: TransactionLog | None = None):
        self.backend = backend
        self.journal = journal or TransactionLog(backend)

    async def get_user_spending_pattern(self, user_id: str) -> SpendingPattern:
        """Purchases vs usage for one user; zeroed for a user with no history.

        `transaction_count` and the average cover PURCHASE and USAGE entries only.
        """
        added = await self.journal.sum_by_type(user_id, TransactionType.PURCHASE)
        used = abs(await self.journal.sum_by_type(user_id, TransactionType.USAGE))
        transferred_in = await self.journal.sum_by_type(user_id, TransactionType.TRANSFER_IN)
        transferred_out = abs(await self.journal.sum_by_type(user_id, TransactionType.TRANSFER_OUT))
        count = (
            await self.journal.count_by_user(user_id, TransactionType.PURCHASE)
            + await self.journal.count_by_user(user_id, TransactionType.USAGE)
        )
        average = ((added + used) / count).quantize(CREDIT_QUANTUM) if count else ZERO
        return SpendingPattern(
            user_id=user_id,
            total_added=added,
            total_deducted=used,
            total_transferred_in=transferred_in,
            total_transferred_out=transferred_out,
            transaction_count=count,
            average_per_transaction=average,
            most_recent_activity=await self.journal.latest_activity(user_id),
        )

    async def get_user_summary(self, user_id: str) -> UserSummary:
        account = await self.backend.get_account(user_id)
        return UserSummary(
            user_id=user_id,
            balance=account.amount if account else ZERO,
            total_purchased=await self.journal.sum_by_type(user_id, TransactionType.PURCHASE),
            total_used=abs(await self.journal.sum_by_type(user_id, TransactionType.USAGE)),
            transaction_count=await self.journal.count_by_user(user_id),
        )

    async def get_overall_analytics(self) -> OverallAnalytics:
        totals = await self.backend.ledger_totals()
        by_type = totals.totals_by_type
        average = (
            (totals.total_credits_in_circulation / totals.total_users).quantize(CREDIT_QUANTUM)
            if totals.total_users
            else ZERO
        )
        return OverallAnalytics(
            total_users=totals.total_users,
            total_credits_in_circulation=totals.total_credits_in_circulation,
            total_transactions=totals.total_transactions,
            total_purchased=by_type.get(TransactionType.PURCHASE, ZERO),
            total_used=abs(by_type.get(TransactionType.USAGE, ZERO)),
            total_transferred=by_type.get(TransactionType.TRANSFER_IN, ZERO),
            total_adjusted=by_type.get(TransactionType.ADJUSTMENT, ZERO),
            average_balance=average,
            transactions_by_type={t.value: n for t, n in totals.counts_by_type.items()},
        )
