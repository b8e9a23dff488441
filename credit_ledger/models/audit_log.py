from datetime import datetime
from typing import Any

from beanie import DecimalAnnotation, Document
from pydantic import Field

from credit_ledger.models.ledger import AuditEntry, utcnow


class AuditLog(Document):
    user_id: str
    action: str  # credit_added, credit_deducted, transfer_out, reservation_confirmed, ...
    amount: DecimalAnnotation
    balance_before: DecimalAnnotation
    balance_after: DecimalAnnotation
    transaction_id: str | None = None
    reservation_id: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "credit_audit_logs"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("action", 1)],
        ]

    @classmethod
    def from_domain(cls, entry: AuditEntry) -> "AuditLog":
        return cls(**entry.model_dump(exclude={"created_at"}), created_at=entry.created_at or utcnow())

    def to_domain(self) -> AuditEntry:
        return AuditEntry.model_validate(self.model_dump(exclude={"id", "revision_id"}))
