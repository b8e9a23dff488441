"""Transaction log: append-only journal of balance changes, and its read side."""

from datetime import datetime
from decimal import Decimal

from credit_ledger.core.exceptions import BadRequestError
from credit_ledger.core.pagination import Page, paginate
from credit_ledger.models.ledger import Transaction, TransactionType, as_utc, new_transaction_id, utcnow
from credit_ledger.storage.base import LedgerBackend, TransactionFilter


class TransactionLog:
    def __init__(self, backend: LedgerBackend):
        self.backend = backend

    def append(self, tx: Transaction) -> Transaction:
        """Stamp id and created_at (if absent) on an entry about to be committed.

        The log never writes a row on its own: an entry becomes durable only in the
        commit that also moves its owner's balance, so the two cannot diverge.
        """
        return tx.model_copy(
            update={
                "id": tx.id or new_transaction_id(),
                "created_at": tx.created_at or utcnow(),
            }
        )

    @staticmethod
    def _filter(
        user_id: str,
        tx_type: TransactionType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> TransactionFilter:
        start = as_utc(start) if start else None
        end = as_utc(end) if end else None
        if start and end and start > end:
            raise BadRequestError("start must not be after end", {"start": start.isoformat(), "end": end.isoformat()})
        return TransactionFilter(user_id=user_id, type=tx_type, start=start, end=end)

    async def query_by_user(
        self,
        user_id: str,
        tx_type: TransactionType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """Newest first; equal timestamps ordered by id, descending."""
        limit, offset = paginate(limit, offset)
        return await self.backend.find_transactions(self._filter(user_id, tx_type, start, end), limit, offset)

    async def page_by_user(
        self,
        user_id: str,
        tx_type: TransactionType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page[Transaction]:
        limit, offset = paginate(limit, offset)
        flt = self._filter(user_id, tx_type, start, end)
        items = await self.backend.find_transactions(flt, limit, offset)
        total = await self.backend.count_transactions(flt)
        return Page[Transaction](items=items, limit=limit, offset=offset, total=total)

    async def sum_by_type(self, user_id: str, tx_type: TransactionType) -> Decimal:
        """Signed total of one type (USAGE and TRANSFER_OUT sum negative)."""
        return await self.backend.sum_transactions(TransactionFilter(user_id=user_id, type=tx_type))

    async def sum_all(self, user_id: str) -> Decimal:
        """Signed total of every entry; equals the stored balance."""
        return await self.backend.sum_transactions(TransactionFilter(user_id=user_id))

    async def count_by_user(self, user_id: str, tx_type: TransactionType | None = None) -> int:
        return await self.backend.count_transactions(TransactionFilter(user_id=user_id, type=tx_type))

    async def get(self, transaction_id: str) -> Transaction | None:
        return await self.backend.get_transaction(transaction_id)

    async def latest_activity(self, user_id: str) -> datetime | None:
        return await self.backend.latest_transaction_at(user_id)
