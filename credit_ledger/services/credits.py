"""Credits ledger facade: the single entry point routers and jobs talk to."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from credit_ledger.core.config import CreditRules, Settings, get_settings
from credit_ledger.core.exceptions import NotFoundError
from credit_ledger.core.logging import get_logger
from credit_ledger.core.pagination import Page
from credit_ledger.models.ledger import AlertLevel, AuditEntry, Reservation, Transaction, TransactionType
from credit_ledger.services.analytics import AnalyticsAggregator, OverallAnalytics, SpendingPattern, UserSummary
from credit_ledger.services.balances import BalanceStore, LedgerResult
from credit_ledger.services.batch import BatchItemResult, BatchOperation, BatchProcessor
from credit_ledger.services.locks import KeyedLock
from credit_ledger.services.reservations import ReservationService
from credit_ledger.services.rules import RuleEngine
from credit_ledger.services.transactions import TransactionLog
from credit_ledger.services.transfers import TransferCoordinator, TransferResult
from credit_ledger.storage.base import LedgerBackend, get_backend

log = get_logger(__name__)


class CreditStatus(BaseModel):
    user_id: str
    balance: Decimal
    reserved: Decimal
    available: Decimal
    status: str
    alert_level: AlertLevel
    can_use_paid_models: bool


class LedgerCheck(BaseModel):
    user_id: str
    balance: Decimal
    journal_total: Decimal
    transaction_count: int
    consistent: bool


class CreditsService:
    def __init__(
        self,
        backend: LedgerBackend,
        rules: CreditRules,
        max_retries: int = 3,
        retry_base_delay: float = 0.1,
        reservation_ttl_seconds: int = 300,
        max_reservations_per_user: int = 5,
    ):
        self.backend = backend
        self.rules = RuleEngine(rules)
        self.journal = TransactionLog(backend)
        self.locks = KeyedLock()
        self.balances = BalanceStore(
            backend,
            self.rules,
            journal=self.journal,
            locks=self.locks,
            max_retries=max_retries,
            retry_base_delay=retry_base_delay,
        )
        self.transfers = TransferCoordinator(self.balances)
        self.batch = BatchProcessor(self.balances)
        self.analytics = AnalyticsAggregator(backend, self.journal)
        self.reservations = ReservationService(
            self.balances,
            ttl_seconds=reservation_ttl_seconds,
            max_per_user=max_reservations_per_user,
        )

    # Balances

    async def get_balance(self, user_id: str) -> Decimal:
        return await self.balances.get_balance(user_id)

    async def get_credit_status(self, user_id: str) -> CreditStatus:
        """Balance net of pending reservations (never below zero), with a coarse health label."""
        balance = await self.balances.get_balance(user_id)
        reserved = await self.reservations.get_total_reserved(user_id)
        available = max(balance - reserved, Decimal("0"))
        limits = self.rules.rules
        if available <= 0:
            status = "exhausted"
        elif available < limits.critical_balance_threshold:
            status = "critical"
        elif available < limits.low_balance_threshold:
            status = "low"
        else:
            status = "healthy"
        return CreditStatus(
            user_id=user_id,
            balance=balance,
            reserved=reserved,
            available=available,
            status=status,
            alert_level=self.rules.classify_alert_level(available),
            can_use_paid_models=available >= 1,
        )

    # Mutations

    async def add_credits(
        self,
        user_id: str,
        amount: Decimal,
        description: str = "Credit purchase",
        reference_id: str | None = None,
        package_id: str | None = None,
        idempotency_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerResult:
        return await self.balances.apply_delta(
            user_id,
            amount,
            TransactionType.PURCHASE,
            description,
            reference_id=reference_id,
            package_id=package_id,
            idempotency_key=idempotency_key,
            metadata=metadata,
        )

    async def deduct_credits(
        self,
        user_id: str,
        amount: Decimal,
        description: str = "Credit usage",
        reference_id: str | None = None,
        idempotency_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Charge `amount` (positive) as USAGE. The user must already hold an account."""
        return await self.balances.apply_delta(
            user_id,
            -Decimal(str(amount)),
            TransactionType.USAGE,
            description,
            reference_id=reference_id,
            idempotency_key=idempotency_key,
            metadata=metadata,
            require_account=True,
        )

    async def adjust_credits(
        self,
        user_id: str,
        amount: Decimal,
        description: str = "Administrative adjustment",
        reference_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerResult:
        """Signed correction; negative amounts require an existing account."""
        return await self.balances.apply_delta(
            user_id,
            amount,
            TransactionType.ADJUSTMENT,
            description,
            reference_id=reference_id,
            idempotency_key=idempotency_key,
            require_account=Decimal(str(amount)) < 0,
        )

    async def transfer(
        self,
        from_user_id: str,
        to_user_id: str,
        amount: Decimal,
        description: str | None = None,
    ) -> TransferResult:
        return await self.transfers.transfer(from_user_id, to_user_id, amount, description)

    async def batch_add(self, operations: list[BatchOperation]) -> list[BatchItemResult]:
        return await self.batch.batch_add(operations)

    # History

    async def get_transaction_history(
        self,
        user_id: str,
        tx_type: TransactionType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page[Transaction]:
        return await self.journal.page_by_user(user_id, tx_type, start, end, limit, offset)

    async def get_transaction(self, user_id: str, transaction_id: str) -> Transaction:
        """One of the user's own transactions; another user's id reads as not found."""
        tx = await self.journal.get(transaction_id)
        if tx is None or tx.user_id != user_id:
            raise NotFoundError("Transaction not found")
        return tx

    async def get_audit_trail(self, user_id: str, limit: int = 100) -> list[AuditEntry]:
        return await self.backend.audit_entries(user_id, limit)

    # Analytics

    async def get_user_spending_pattern(self, user_id: str) -> SpendingPattern:
        return await self.analytics.get_user_spending_pattern(user_id)

    async def get_user_summary(self, user_id: str) -> UserSummary:
        return await self.analytics.get_user_summary(user_id)

    async def get_overall_analytics(self) -> OverallAnalytics:
        return await self.analytics.get_overall_analytics()

    async def verify_user_ledger(self, user_id: str) -> LedgerCheck:
        """Compare the stored balance with the signed sum of the user's transactions."""
        balance = await self.balances.get_balance(user_id)
        total = await self.journal.sum_all(user_id)
        check = LedgerCheck(
            user_id=user_id,
            balance=balance,
            journal_total=total,
            transaction_count=await self.journal.count_by_user(user_id),
            consistent=balance == total,
        )
        if not check.consistent:
            log.error("ledger_mismatch", user_id=user_id, balance=str(balance), journal_total=str(total))
        return check

    async def reconcile_all(self) -> list[LedgerCheck]:
        """Check every account; returns only the inconsistent ones."""
        mismatches = []
        for user_id in await self.backend.list_user_ids():
            check = await self.verify_user_ledger(user_id)
            if not check.consistent:
                mismatches.append(check)
        return mismatches

    # Reservations

    async def create_reservation(
        self,
        user_id: str,
        amount: Decimal,
        ttl_seconds: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Reservation:
        return await self.reservations.create_reservation(user_id, amount, ttl_seconds, metadata)

    async def confirm_reservation(self, user_id: str, reservation_id: str, actual_amount: Decimal | None = None) -> LedgerResult:
        await self._own_reservation(user_id, reservation_id)
        return await self.reservations.confirm_reservation(reservation_id, actual_amount)

    async def release_reservation(self, user_id: str, reservation_id: str) -> Reservation:
        await self._own_reservation(user_id, reservation_id)
        return await self.reservations.release_reservation(reservation_id)

    async def get_user_reservations(self, user_id: str) -> list[Reservation]:
        return await self.reservations.get_user_reservations(user_id)

    async def cleanup_expired_reservations(self, now: datetime | None = None) -> int:
        return await self.reservations.cleanup_expired_reservations(now)

    async def _own_reservation(self, user_id: str, reservation_id: str) -> Reservation:
        reservation = await self.reservations.get_reservation(reservation_id)
        if reservation.user_id != user_id:
            raise NotFoundError("Reservation not found")
        return reservation

    async def close(self) -> None:
        await self.backend.close()


def build_credits_service(
    settings: Settings | None = None,
    backend: LedgerBackend | None = None,
) -> CreditsService:
    """Wire the ledger from settings. Raises InvalidConfigurationError on bad credit rules."""
    settings = settings or get_settings()
    rules = settings.credit_rules()
    return CreditsService(
        backend or get_backend(settings),
        rules,
        max_retries=settings.ledger_max_retries,
        retry_base_delay=settings.ledger_retry_base_delay_ms / 1000,
        reservation_ttl_seconds=settings.reservation_ttl_seconds,
        max_reservations_per_user=settings.max_reservations_per_user,
    )
