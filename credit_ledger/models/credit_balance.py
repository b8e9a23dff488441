from datetime import datetime

from beanie import DecimalAnnotation, Document, Indexed
from pydantic import Field

from credit_ledger.models.ledger import AccountSnapshot, utcnow


class CreditBalance(Document):
    """Current balance per user; written only inside a ledger commit."""
    user_id: Indexed(str, unique=True)
    amount: DecimalAnnotation
    version: int = 0  # bumped on every commit, guards concurrent writers
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "credit_balances"

    def to_snapshot(self) -> AccountSnapshot:
        return AccountSnapshot(
            user_id=self.user_id,
            amount=self.amount,
            version=self.version,
            updated_at=self.updated_at,
        )
