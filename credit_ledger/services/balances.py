"""Balance store: per-user current balance with serialized read-modify-write.

Every balance change is staged as a Posting and committed together with its
transaction row, so the stored balance always equals the signed sum of the
user's transactions.
"""

import asyncio
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from credit_ledger.core.audit import build_audit_entry
from credit_ledger.core.exceptions import AccountNotFoundError, InvalidAmountError, LedgerError, StorageFailureError
from credit_ledger.core.logging import get_logger
from credit_ledger.models.ledger import (
    CREDIT_TYPES,
    DEBIT_TYPES,
    AccountSnapshot,
    AlertLevel,
    Posting,
    Reservation,
    ReservationStatus,
    Transaction,
    TransactionMetadata,
    TransactionType,
    utcnow,
)
from credit_ledger.services.locks import KeyedLock
from credit_ledger.services.rules import RuleEngine
from credit_ledger.services.transactions import TransactionLog
from credit_ledger.storage.base import LedgerBackend, WriteConflict

log = get_logger(__name__)

ZERO = Decimal("0")


class AtomicUnit(BaseModel):
    """What one attempt wants committed. `replay` short-circuits with an already stored result."""

    postings: list[Posting] = Field(default_factory=list)
    reservation: Reservation | None = None
    replay: list[Transaction] | None = None


class LedgerResult(BaseModel):
    transaction: Transaction
    balance: Decimal
    alert_level: AlertLevel = AlertLevel.NORMAL
    replayed: bool = False


Accounts = dict[str, AccountSnapshot | None]
UnitBuilder = Callable[[Accounts], Awaitable[AtomicUnit]]


class BalanceStore:
    def __init__(
        self,
        backend: LedgerBackend,
        rules: RuleEngine,
        journal: TransactionLog | None = None,
        locks: KeyedLock | None = None,
        max_retries: int = 3,
        retry_base_delay: float = 0.1,
    ):
        self.backend = backend
        self.rules = rules
        self.journal = journal or TransactionLog(backend)
        self.locks = locks or KeyedLock()
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    async def get_balance(self, user_id: str) -> Decimal:
        """Current balance; 0 for a user with no row. Never creates a row."""
        account = await self.backend.get_account(user_id)
        return account.amount if account else ZERO

    async def account_exists(self, user_id: str) -> bool:
        return await self.backend.get_account(user_id) is not None

    async def held_amount(self, user_id: str, exclude: str | None = None) -> Decimal:
        """Credits held by the user's pending, unexpired reservations, leaving out `exclude`."""
        now = utcnow()
        pending = await self.backend.find_reservations(user_id=user_id, status=ReservationStatus.PENDING)
        return sum((r.amount for r in pending if r.id != exclude and r.is_active(now)), ZERO)

    def stage(
        self,
        account: AccountSnapshot | None,
        tx: Transaction,
        reservation_id: str | None = None,
        held: Decimal = ZERO,
    ) -> Posting:
        """Validate the resulting balance for `tx` and build its posting. Raises rule errors.

        A debit must also leave `held` (credits under pending reservations) untouched.
        """
        tx = self.journal.append(tx)
        before = account.amount if account else ZERO
        after = before + tx.amount
        if tx.amount < 0:
            self.rules.validate_resulting_balance(after - held, debit=True)
        else:
            self.rules.validate_resulting_balance(after)
        return Posting(
            user_id=tx.user_id,
            expected_version=account.version if account else 0,
            new_amount=after,
            transaction=tx,
            audit=build_audit_entry(tx, before, after, reservation_id=reservation_id),
        )

    async def run_atomic(self, user_ids: list[str], build: UnitBuilder) -> list[Transaction]:
        """Lock the accounts in sorted order, then read, build and commit with bounded retry.

        Rule errors raised by `build` propagate immediately. Write conflicts re-run the
        whole unit from a fresh read; after `max_retries` retries StorageFailureError is raised.
        """
        async with self.locks.acquire(*user_ids):
            for attempt in range(self.max_retries + 1):
                accounts = {uid: await self.backend.get_account(uid) for uid in user_ids}
                unit = await build(accounts)
                if unit.replay is not None:
                    return unit.replay
                try:
                    return await self.backend.commit(unit.postings, reservation=unit.reservation)
                except WriteConflict as e:
                    log.warning("ledger_write_conflict", user_ids=user_ids, attempt=attempt + 1, reason=str(e))
                    if attempt < self.max_retries:
                        await asyncio.sleep(self.retry_base_delay * 2 ** attempt)
        log.error("storage_failure", user_ids=user_ids, attempts=self.max_retries + 1)
        raise StorageFailureError(
            "Ledger write kept conflicting with concurrent updates",
            {"attempts": self.max_retries + 1},
        )

    async def apply_delta(
        self,
        user_id: str,
        amount: Decimal,
        tx_type: TransactionType,
        description: str = "",
        *,
        reference_id: str | None = None,
        package_id: str | None = None,
        idempotency_key: str | None = None,
        metadata: dict[str, Any] | None = None,
        require_account: bool = False,
    ) -> LedgerResult:
        """Apply a signed amount to one balance and journal it, atomically.

        Raises InvalidAmountError, BalanceOutOfRangeError / InsufficientFundsError,
        AccountNotFoundError (when `require_account`) or StorageFailureError. On any
        failure the balance is unchanged and no transaction is recorded.
        """
        signed = self._check_amount(amount, tx_type)
        clean_metadata = TransactionMetadata.clean(metadata)
        replayed = False

        async def build(accounts: Accounts) -> AtomicUnit:
            nonlocal replayed
            if idempotency_key:
                existing = await self.backend.find_by_idempotency_key(user_id, idempotency_key)
                if existing is not None:
                    replayed = True
                    return AtomicUnit(replay=[existing])
            account = accounts[user_id]
            if require_account and account is None:
                raise AccountNotFoundError(user_id)
            tx = Transaction(
                user_id=user_id,
                type=tx_type,
                amount=signed,
                description=description,
                reference_id=reference_id,
                package_id=package_id,
                idempotency_key=idempotency_key,
                metadata=clean_metadata,
            )
            held = await self.held_amount(user_id) if signed < 0 else ZERO
            return AtomicUnit(postings=[self.stage(account, tx, held=held)])

        try:
            stored = await self.run_atomic([user_id], build)
        except LedgerError as e:
            log.info("credits_rejected", user_id=user_id, type=tx_type.value, amount=str(signed), code=e.code)
            raise
        if replayed:
            return self.result_for(stored[0], balance=await self.get_balance(user_id), replayed=True)
        return self.result_for(stored[0])

    def result_for(
        self,
        tx: Transaction,
        balance: Decimal | None = None,
        replayed: bool = False,
    ) -> LedgerResult:
        """Wrap a committed transaction; logs it, with a low or critical balance alert after debits."""
        if balance is None:
            balance = tx.balance_after if tx.balance_after is not None else ZERO
        level = self.rules.classify_alert_level(balance)
        if not replayed:
            log.info(
                "credits_applied",
                user_id=tx.user_id,
                type=tx.type.value,
                amount=str(tx.amount),
                balance=str(balance),
                transaction_id=tx.id,
            )
            if tx.amount < 0 and level != AlertLevel.NORMAL:
                log.warning("balance_alert", user_id=tx.user_id, level=level.value, balance=str(balance))
        return LedgerResult(transaction=tx, balance=balance, alert_level=level, replayed=replayed)

    def _check_amount(self, amount: Decimal, tx_type: TransactionType) -> Decimal:
        """Validate the magnitude against transaction bounds and the sign against the type."""
        try:
            negative = Decimal(str(amount)) < 0
        except ArithmeticError as e:
            raise InvalidAmountError("Amount must be a valid number", {"amount": str(amount)}) from e
        magnitude = self.rules.validate_transaction_amount(abs(Decimal(str(amount))))
        if tx_type in CREDIT_TYPES and negative:
            raise InvalidAmountError(f"{tx_type.value} amount must be positive", {"amount": str(amount)})
        if tx_type in DEBIT_TYPES and not negative:
            raise InvalidAmountError(f"{tx_type.value} amount must be negative", {"amount": str(amount)})
        return -magnitude if negative else magnitude
