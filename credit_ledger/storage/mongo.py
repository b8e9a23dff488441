from datetime import datetime
from decimal import Decimal
from typing import Any

import pymongo
from bson import Decimal128
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from credit_ledger.core.exceptions import StorageFailureError
from credit_ledger.core.logging import get_logger
from credit_ledger.db.init import close_db, get_client
from credit_ledger.models.audit_log import AuditLog
from credit_ledger.models.credit_balance import CreditBalance
from credit_ledger.models.credit_reservation import CreditReservation
from credit_ledger.models.credit_transaction import CreditTransaction
from credit_ledger.models.ledger import (
    AccountSnapshot,
    AuditEntry,
    Posting,
    Reservation,
    ReservationStatus,
    Transaction,
    TransactionType,
    new_transaction_id,
    utcnow,
)
from credit_ledger.storage.base import LedgerBackend, LedgerTotals, TransactionFilter, WriteConflict

log = get_logger(__name__)

_NEWEST_FIRST = [("created_at", pymongo.DESCENDING), ("_id", pymongo.DESCENDING)]


def _d128(value: Decimal) -> Decimal128:
    return Decimal128(str(value))


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value or 0))


def _query(flt: TransactionFilter) -> dict[str, Any]:
    q: dict[str, Any] = {"user_id": flt.user_id}
    if flt.type is not None:
        q["type"] = flt.type.value
    if flt.start is not None or flt.end is not None:
        created: dict[str, datetime] = {}
        if flt.start is not None:
            created["$gte"] = flt.start
        if flt.end is not None:
            created["$lte"] = flt.end
        q["created_at"] = created
    return q


class MongoLedgerBackend(LedgerBackend):
    """Ledger on MongoDB. Commits run in a multi-document transaction (replica set required)."""

    async def get_account(self, user_id: str) -> AccountSnapshot | None:
        try:
            doc = await CreditBalance.find_one(CreditBalance.user_id == user_id)
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "get_account"}) from e
        return doc.to_snapshot() if doc else None

    async def commit(
        self,
        postings: list[Posting],
        reservation: Reservation | None = None,
    ) -> list[Transaction]:
        now = utcnow()
        client = get_client()
        try:
            async with await client.start_session() as session:
                async with session.start_transaction(
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                ):
                    stored = []
                    for p in postings:
                        await self._write_balance(p, now, session)
                        tx = p.transaction.model_copy(
                            update={
                                "id": p.transaction.id or new_transaction_id(),
                                "created_at": p.transaction.created_at or now,
                                "balance_after": p.new_amount,
                            }
                        )
                        await CreditTransaction.from_domain(tx).insert(session=session)
                        audit = p.audit.model_copy(update={"transaction_id": tx.id, "created_at": now})
                        await AuditLog.from_domain(audit).insert(session=session)
                        stored.append(tx)
                    if reservation is not None:
                        await self._confirm_reservation(reservation, stored, session)
            return stored
        except DuplicateKeyError as e:
            # First credit raced with another first credit, or an idempotency key was reused.
            raise WriteConflict(str(e)) from e
        except PyMongoError as e:
            if e.has_error_label("TransientTransactionError"):
                raise WriteConflict(str(e)) from e
            log.error("storage_failure", op="commit", error=str(e))
            raise StorageFailureError(details={"op": "commit"}) from e

    async def _write_balance(self, p: Posting, now: datetime, session) -> None:
        if p.expected_version == 0:
            await CreditBalance(
                user_id=p.user_id,
                amount=p.new_amount,
                version=1,
                updated_at=now,
            ).insert(session=session)
            return
        result = await CreditBalance.get_motor_collection().update_one(
            {"user_id": p.user_id, "version": p.expected_version},
            {"$set": {"amount": _d128(p.new_amount), "updated_at": now}, "$inc": {"version": 1}},
            session=session,
        )
        if result.matched_count == 0:
            raise WriteConflict(f"account {p.user_id} moved past version {p.expected_version}")

    async def _confirm_reservation(self, reservation: Reservation, stored: list[Transaction], session) -> None:
        result = await CreditReservation.get_motor_collection().update_one(
            {"_id": reservation.id, "status": ReservationStatus.PENDING.value},
            {
                "$set": {
                    "status": ReservationStatus.CONFIRMED.value,
                    "transaction_id": stored[0].id if stored else None,
                }
            },
            session=session,
        )
        if result.matched_count == 0:
            raise WriteConflict(f"reservation {reservation.id} is no longer pending")

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        try:
            doc = await CreditTransaction.get(transaction_id)
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "get_transaction"}) from e
        return doc.to_domain() if doc else None

    async def find_by_idempotency_key(self, user_id: str, key: str) -> Transaction | None:
        try:
            doc = await CreditTransaction.find_one(
                CreditTransaction.user_id == user_id,
                CreditTransaction.idempotency_key == key,
            )
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "find_by_idempotency_key"}) from e
        return doc.to_domain() if doc else None

    async def find_transactions(self, flt: TransactionFilter, limit: int, offset: int) -> list[Transaction]:
        try:
            docs = (
                await CreditTransaction.find(_query(flt))
                .sort(_NEWEST_FIRST)
                .skip(offset)
                .limit(limit)
                .to_list()
            )
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "find_transactions"}) from e
        return [d.to_domain() for d in docs]

    async def count_transactions(self, flt: TransactionFilter) -> int:
        try:
            return await CreditTransaction.find(_query(flt)).count()
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "count_transactions"}) from e

    async def sum_transactions(self, flt: TransactionFilter) -> Decimal:
        pipeline = [
            {"$match": _query(flt)},
            {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
        ]
        try:
            rows = await CreditTransaction.get_motor_collection().aggregate(pipeline).to_list(length=1)
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "sum_transactions"}) from e
        return _to_decimal(rows[0]["total"]) if rows else Decimal("0")

    async def latest_transaction_at(self, user_id: str) -> datetime | None:
        try:
            doc = await CreditTransaction.find(CreditTransaction.user_id == user_id).sort(_NEWEST_FIRST).first_or_none()
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "latest_transaction_at"}) from e
        return doc.created_at if doc else None

    async def ledger_totals(self) -> LedgerTotals:
        try:
            balances = await CreditBalance.get_motor_collection().aggregate(
                [{"$group": {"_id": None, "users": {"$sum": 1}, "total": {"$sum": "$amount"}}}]
            ).to_list(length=1)
            by_type = await CreditTransaction.get_motor_collection().aggregate(
                [{"$group": {"_id": "$type", "count": {"$sum": 1}, "total": {"$sum": "$amount"}}}]
            ).to_list(length=None)
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "ledger_totals"}) from e
        totals = LedgerTotals()
        if balances:
            totals.total_users = balances[0]["users"]
            totals.total_credits_in_circulation = _to_decimal(balances[0]["total"])
        for row in by_type:
            tx_type = TransactionType(row["_id"])
            totals.totals_by_type[tx_type] = _to_decimal(row["total"])
            totals.counts_by_type[tx_type] = row["count"]
            totals.total_transactions += row["count"]
        return totals

    async def list_user_ids(self) -> list[str]:
        try:
            ids = await CreditBalance.get_motor_collection().distinct("user_id")
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "list_user_ids"}) from e
        return sorted(ids)

    async def audit_entries(self, user_id: str, limit: int = 100) -> list[AuditEntry]:
        docs = (
            await AuditLog.find(AuditLog.user_id == user_id)
            .sort(_NEWEST_FIRST)
            .limit(limit)
            .to_list()
        )
        return [d.to_domain() for d in docs]

    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        try:
            await CreditReservation.from_domain(reservation).insert()
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "insert_reservation"}) from e
        return reservation

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        doc = await CreditReservation.get(reservation_id)
        return doc.to_domain() if doc else None

    async def update_reservation_status(
        self,
        reservation_id: str,
        expected: ReservationStatus,
        new: ReservationStatus,
    ) -> bool:
        try:
            result = await CreditReservation.get_motor_collection().update_one(
                {"_id": reservation_id, "status": expected.value},
                {"$set": {"status": new.value}},
            )
        except PyMongoError as e:
            raise StorageFailureError(details={"op": "update_reservation_status"}) from e
        return result.matched_count == 1

    async def find_reservations(
        self,
        user_id: str | None = None,
        status: ReservationStatus | None = None,
        expires_before: datetime | None = None,
    ) -> list[Reservation]:
        q: dict[str, Any] = {}
        if user_id is not None:
            q["user_id"] = user_id
        if status is not None:
            q["status"] = status.value
        if expires_before is not None:
            q["expires_at"] = {"$lte": expires_before}
        docs = await CreditReservation.find(q).sort([("expires_at", pymongo.DESCENDING)]).to_list()
        return [d.to_domain() for d in docs]

    async def close(self) -> None:
        close_db()
