from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from credit_ledger.models.ledger import (
    AccountSnapshot,
    AuditEntry,
    Posting,
    Reservation,
    ReservationStatus,
    Transaction,
    as_utc,
    new_transaction_id,
    utcnow,
)
from credit_ledger.storage.base import LedgerBackend, LedgerTotals, TransactionFilter, WriteConflict


def _matches(tx: Transaction, flt: TransactionFilter) -> bool:
    if tx.user_id != flt.user_id:
        return False
    if flt.type is not None and tx.type != flt.type:
        return False
    if flt.start is not None and tx.created_at < as_utc(flt.start):
        return False
    if flt.end is not None and tx.created_at > as_utc(flt.end):
        return False
    return True


class InMemoryLedgerBackend(LedgerBackend):
    """Process-local ledger for tests and single-process development.

    Methods never await between reading and writing shared state, so each call
    is atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, AccountSnapshot] = {}
        self._transactions: list[Transaction] = []
        self._by_id: dict[str, Transaction] = {}
        self._by_user: dict[str, list[Transaction]] = defaultdict(list)
        self._audit: list[AuditEntry] = []
        self._reservations: dict[str, Reservation] = {}

    async def get_account(self, user_id: str) -> AccountSnapshot | None:
        return self._accounts.get(user_id)

    async def commit(
        self,
        postings: list[Posting],
        reservation: Reservation | None = None,
    ) -> list[Transaction]:
        # Validate the whole unit before touching anything.
        for p in postings:
            current = self._accounts.get(p.user_id)
            version = current.version if current else 0
            if version != p.expected_version:
                raise WriteConflict(f"account {p.user_id} moved from version {p.expected_version} to {version}")
            key = p.transaction.idempotency_key
            if key and any(t.idempotency_key == key for t in self._by_user.get(p.user_id, ())):
                raise WriteConflict(f"idempotency key {key} already used for {p.user_id}")
        if reservation is not None:
            stored = self._reservations.get(reservation.id)
            if stored is None or stored.status != ReservationStatus.PENDING:
                raise WriteConflict(f"reservation {reservation.id} is no longer pending")

        now = utcnow()
        stored_txs = []
        for p in postings:
            tx = p.transaction.model_copy(
                update={
                    "id": p.transaction.id or new_transaction_id(),
                    "created_at": p.transaction.created_at or now,
                    "balance_after": p.new_amount,
                }
            )
            self._accounts[p.user_id] = AccountSnapshot(
                user_id=p.user_id,
                amount=p.new_amount,
                version=p.expected_version + 1,
                updated_at=now,
            )
            self._transactions.append(tx)
            self._by_id[tx.id] = tx
            self._by_user[p.user_id].append(tx)
            self._audit.append(p.audit.model_copy(update={"transaction_id": tx.id, "created_at": now}))
            stored_txs.append(tx)
        if reservation is not None:
            self._reservations[reservation.id] = reservation.model_copy(
                update={
                    "status": ReservationStatus.CONFIRMED,
                    "transaction_id": stored_txs[0].id if stored_txs else None,
                }
            )
        return stored_txs

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self._by_id.get(transaction_id)

    async def find_by_idempotency_key(self, user_id: str, key: str) -> Transaction | None:
        for tx in self._by_user.get(user_id, ()):
            if tx.idempotency_key == key:
                return tx
        return None

    def _select(self, flt: TransactionFilter) -> list[Transaction]:
        return [tx for tx in self._by_user.get(flt.user_id, ()) if _matches(tx, flt)]

    async def find_transactions(self, flt: TransactionFilter, limit: int, offset: int) -> list[Transaction]:
        rows = sorted(self._select(flt), key=lambda t: (t.created_at, t.id), reverse=True)
        return rows[offset:offset + limit]

    async def count_transactions(self, flt: TransactionFilter) -> int:
        return len(self._select(flt))

    async def sum_transactions(self, flt: TransactionFilter) -> Decimal:
        return sum((tx.amount for tx in self._select(flt)), Decimal("0"))

    async def latest_transaction_at(self, user_id: str) -> datetime | None:
        rows = self._by_user.get(user_id)
        return max(tx.created_at for tx in rows) if rows else None

    async def ledger_totals(self) -> LedgerTotals:
        totals = LedgerTotals(
            total_users=len(self._accounts),
            total_credits_in_circulation=sum((a.amount for a in self._accounts.values()), Decimal("0")),
            total_transactions=len(self._transactions),
        )
        for tx in self._transactions:
            totals.totals_by_type[tx.type] = totals.totals_by_type.get(tx.type, Decimal("0")) + tx.amount
            totals.counts_by_type[tx.type] = totals.counts_by_type.get(tx.type, 0) + 1
        return totals

    async def list_user_ids(self) -> list[str]:
        return sorted(self._accounts)

    async def audit_entries(self, user_id: str, limit: int = 100) -> list[AuditEntry]:
        rows = [e for e in self._audit if e.user_id == user_id]
        return list(reversed(rows))[:limit]

    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        self._reservations[reservation.id] = reservation
        return reservation

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        return self._reservations.get(reservation_id)

    async def update_reservation_status(
        self,
        reservation_id: str,
        expected: ReservationStatus,
        new: ReservationStatus,
    ) -> bool:
        stored = self._reservations.get(reservation_id)
        if stored is None or stored.status != expected:
            return False
        self._reservations[reservation_id] = stored.model_copy(update={"status": new})
        return True

    async def find_reservations(
        self,
        user_id: str | None = None,
        status: ReservationStatus | None = None,
        expires_before: datetime | None = None,
    ) -> list[Reservation]:
        rows = []
        for r in self._reservations.values():
            if user_id is not None and r.user_id != user_id:
                continue
            if status is not None and r.status != status:
                continue
            if expires_before is not None and as_utc(r.expires_at) > as_utc(expires_before):
                continue
            rows.append(r)
        return sorted(rows, key=lambda r: r.expires_at, reverse=True)
