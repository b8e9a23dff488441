"""Credit holds for pending AI operations.

A pending reservation lowers the user's available credits without touching the
stored balance. Confirming it charges a USAGE transaction and flips its status in
the same commit; releasing or expiring it frees the hold.
"""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from credit_ledger.core.exceptions import (
    AccountNotFoundError,
    InvalidAmountError,
    ReservationNotFoundError,
    ReservationStateError,
)
from credit_ledger.core.logging import get_logger
from credit_ledger.models.ledger import (
    Reservation,
    ReservationStatus,
    Transaction,
    TransactionMetadata,
    TransactionType,
    utcnow,
)
from credit_ledger.services.balances import Accounts, AtomicUnit, BalanceStore, LedgerResult

log = get_logger(__name__)


class ReservationService:
    def __init__(self, balances: BalanceStore, ttl_seconds: int = 300, max_per_user: int = 5):
        self.balances = balances
        self.backend = balances.backend
        self.rules = balances.rules
        self.ttl_seconds = ttl_seconds
        self.max_per_user = max_per_user

    async def _active(self, user_id: str, now: datetime) -> list[Reservation]:
        pending = await self.backend.find_reservations(user_id=user_id, status=ReservationStatus.PENDING)
        return [r for r in pending if r.is_active(now)]

    async def create_reservation(
        self,
        user_id: str,
        amount: Decimal,
        ttl_seconds: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Reservation:
        value = self.rules.validate_transaction_amount(amount)
        ttl = ttl_seconds or self.ttl_seconds
        async with self.balances.locks.acquire(user_id):
            account = await self.backend.get_account(user_id)
            if account is None:
                raise AccountNotFoundError(user_id)
            now = utcnow()
            active = await self._active(user_id, now)
            if len(active) >= self.max_per_user:
                raise ReservationStateError(
                    "Too many active reservations",
                    {"active": len(active), "maximum": self.max_per_user},
                )
            reserved = sum((r.amount for r in active), Decimal("0"))
            self.rules.validate_resulting_balance(account.amount - reserved - value, debit=True)
            reservation = Reservation(
                id=uuid.uuid4().hex,
                user_id=user_id,
                amount=value,
                expires_at=now + timedelta(seconds=ttl),
                created_at=now,
                metadata=TransactionMetadata.clean(metadata),
            )
            await self.backend.insert_reservation(reservation)
        log.info("reservation_created", reservation_id=reservation.id, user_id=user_id, amount=str(value), ttl=ttl)
        return reservation

    async def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = await self.backend.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    async def confirm_reservation(
        self,
        reservation_id: str,
        actual_amount: Decimal | None = None,
    ) -> LedgerResult:
        """Charge the hold (or `actual_amount`, at most the held amount) as USAGE."""
        reservation = await self.get_reservation(reservation_id)
        if reservation.status != ReservationStatus.PENDING:
            raise ReservationStateError(
                f"Reservation is {reservation.status.value}",
                {"reservation_id": reservation_id},
            )
        if not reservation.is_active(utcnow()):
            await self.backend.update_reservation_status(
                reservation_id, ReservationStatus.PENDING, ReservationStatus.EXPIRED
            )
            raise ReservationStateError("Reservation has expired", {"reservation_id": reservation_id})
        charge = reservation.amount
        if actual_amount is not None:
            charge = self.rules.validate_transaction_amount(actual_amount)
            if charge > reservation.amount:
                raise InvalidAmountError(
                    "Charge exceeds reserved amount",
                    {"amount": str(charge), "reserved": str(reservation.amount)},
                )
        user_id = reservation.user_id

        async def build(accounts: Accounts) -> AtomicUnit:
            current = await self.get_reservation(reservation_id)
            if current.status != ReservationStatus.PENDING:
                raise ReservationStateError(
                    f"Reservation is {current.status.value}",
                    {"reservation_id": reservation_id},
                )
            account = accounts[user_id]
            if account is None:
                raise AccountNotFoundError(user_id)
            tx = Transaction(
                user_id=user_id,
                type=TransactionType.USAGE,
                amount=-charge,
                description=f"Reserved usage {reservation_id}",
                reference_id=reservation_id,
                metadata=current.metadata,
            )
            return AtomicUnit(
                postings=[
                    self.balances.stage(
                        account,
                        tx,
                        reservation_id=reservation_id,
                        held=await self.balances.held_amount(user_id, exclude=reservation_id),
                    )
                ],
                reservation=current,
            )

        stored = await self.balances.run_atomic([user_id], build)
        log.info("reservation_confirmed", reservation_id=reservation_id, user_id=user_id, amount=str(charge))
        return self.balances.result_for(stored[0])

    async def release_reservation(self, reservation_id: str) -> Reservation:
        """Free the hold without charging. Releasing twice is a no-op."""
        reservation = await self.get_reservation(reservation_id)
        if reservation.status in (ReservationStatus.RELEASED, ReservationStatus.EXPIRED):
            return reservation
        released = await self.backend.update_reservation_status(
            reservation_id, ReservationStatus.PENDING, ReservationStatus.RELEASED
        )
        current = await self.get_reservation(reservation_id)
        if not released and current.status == ReservationStatus.CONFIRMED:
            raise ReservationStateError("Reservation already confirmed", {"reservation_id": reservation_id})
        if released:
            log.info("reservation_released", reservation_id=reservation_id, user_id=current.user_id)
        return current

    async def get_user_reservations(self, user_id: str) -> list[Reservation]:
        """Pending, unexpired holds, latest expiry first."""
        return await self._active(user_id, utcnow())

    async def get_total_reserved(self, user_id: str) -> Decimal:
        return await self.balances.held_amount(user_id)

    async def cleanup_expired_reservations(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        expired = await self.backend.find_reservations(status=ReservationStatus.PENDING, expires_before=now)
        cleaned = 0
        for r in expired:
            if await self.backend.update_reservation_status(r.id, ReservationStatus.PENDING, ReservationStatus.EXPIRED):
                cleaned += 1
                log.info("reservation_expired", reservation_id=r.id, user_id=r.user_id)
        if cleaned:
            log.info("reservations_cleanup", cleaned=cleaned)
        return cleaned
