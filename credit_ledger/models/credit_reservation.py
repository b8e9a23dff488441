from datetime import datetime
from typing import Any

from beanie import DecimalAnnotation, Document, Indexed
from pydantic import Field

from credit_ledger.models.ledger import Reservation, ReservationStatus, utcnow


class CreditReservation(Document):
    """Hold on a user's available credits for a pending AI operation."""
    id: str
    user_id: Indexed(str)
    amount: DecimalAnnotation
    status: ReservationStatus = ReservationStatus.PENDING
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)
    transaction_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Settings:
        name = "credit_reservations"
        indexes = [[("status", 1), ("expires_at", 1)]]

    @classmethod
    def from_domain(cls, r: Reservation) -> "CreditReservation":
        return cls(**r.model_dump())

    def to_domain(self) -> Reservation:
        return Reservation.model_validate(self.model_dump())
