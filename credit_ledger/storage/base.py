from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from credit_ledger.core.config import Settings, get_settings
from credit_ledger.models.ledger import (
    AccountSnapshot,
    AuditEntry,
    Posting,
    Reservation,
    ReservationStatus,
    Transaction,
    TransactionType,
)


class WriteConflict(Exception):
    """A commit lost a race with a concurrent writer; nothing was written."""


class TransactionFilter(BaseModel):
    user_id: str
    type: TransactionType | None = None
    start: datetime | None = None
    end: datetime | None = None


class LedgerTotals(BaseModel):
    total_users: int = 0
    total_credits_in_circulation: Decimal = Decimal("0")
    total_transactions: int = 0
    totals_by_type: dict[TransactionType, Decimal] = Field(default_factory=dict)
    counts_by_type: dict[TransactionType, int] = Field(default_factory=dict)


class LedgerBackend(ABC):
    """Durable balances, transaction log, reservations and audit trail.

    This is the only code that writes balances. Every balance write goes through
    `commit`, which journals the matching transactions in the same atomic unit.
    """

    @abstractmethod
    async def get_account(self, user_id: str) -> AccountSnapshot | None:
        """Stored balance row, or None when the user has never been credited."""
        ...

    @abstractmethod
    async def commit(
        self,
        postings: list[Posting],
        reservation: Reservation | None = None,
    ) -> list[Transaction]:
        """Apply all postings and append their transactions and audit entries atomically.

        Raises WriteConflict if any account version moved since it was read.
        An optional reservation state change rides in the same unit.
        Returns the stored transactions with id and created_at assigned.
        """
        ...

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        ...

    @abstractmethod
    async def find_by_idempotency_key(self, user_id: str, key: str) -> Transaction | None:
        ...

    @abstractmethod
    async def find_transactions(self, flt: TransactionFilter, limit: int, offset: int) -> list[Transaction]:
        """Newest first; ties on created_at broken by id, descending."""
        ...

    @abstractmethod
    async def count_transactions(self, flt: TransactionFilter) -> int:
        ...

    @abstractmethod
    async def sum_transactions(self, flt: TransactionFilter) -> Decimal:
        """Signed sum of matching amounts."""
        ...

    @abstractmethod
    async def latest_transaction_at(self, user_id: str) -> datetime | None:
        ...

    @abstractmethod
    async def ledger_totals(self) -> LedgerTotals:
        ...

    @abstractmethod
    async def list_user_ids(self) -> list[str]:
        ...

    @abstractmethod
    async def audit_entries(self, user_id: str, limit: int = 100) -> list[AuditEntry]:
        ...

    # Reservations

    @abstractmethod
    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        ...

    @abstractmethod
    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        ...

    @abstractmethod
    async def update_reservation_status(
        self,
        reservation_id: str,
        expected: ReservationStatus,
        new: ReservationStatus,
    ) -> bool:
        """Compare-and-set on status; False if the reservation moved on."""
        ...

    @abstractmethod
    async def find_reservations(
        self,
        user_id: str | None = None,
        status: ReservationStatus | None = None,
        expires_before: datetime | None = None,
    ) -> list[Reservation]:
        ...

    async def close(self) -> None:
        return None


def get_backend(settings: Settings | None = None) -> LedgerBackend:
    settings = settings or get_settings()
    if settings.ledger_backend == "memory":
        from credit_ledger.storage.memory import InMemoryLedgerBackend
        return InMemoryLedgerBackend()
    from credit_ledger.storage.mongo import MongoLedgerBackend
    return MongoLedgerBackend()
