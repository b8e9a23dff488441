from datetime import datetime
from decimal import Decimal
from typing import Any

import pymongo
from beanie import DecimalAnnotation, Document
from pydantic import Field
from pymongo import IndexModel

from credit_ledger.models.ledger import Transaction, TransactionType, utcnow


class CreditTransaction(Document):
    """Append-only; never updated or deleted."""
    id: str
    user_id: str
    type: TransactionType
    amount: DecimalAnnotation  # positive = credit, negative = debit
    balance_after: DecimalAnnotation
    description: str = ""
    reference_id: str | None = None
    package_id: str | None = None
    counterparty_id: str | None = None
    idempotency_key: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            IndexModel([("user_id", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING), ("_id", pymongo.DESCENDING)]),
            IndexModel([("user_id", pymongo.ASCENDING), ("type", pymongo.ASCENDING)]),
            IndexModel(
                [("user_id", pymongo.ASCENDING), ("idempotency_key", pymongo.ASCENDING)],
                unique=True,
                partialFilterExpression={"idempotency_key": {"$type": "string"}},
            ),
        ]

    @classmethod
    def from_domain(cls, tx: Transaction) -> "CreditTransaction":
        return cls(
            id=tx.id,
            user_id=tx.user_id,
            type=tx.type,
            amount=tx.amount,
            balance_after=tx.balance_after if tx.balance_after is not None else Decimal("0"),
            description=tx.description,
            reference_id=tx.reference_id,
            package_id=tx.package_id,
            counterparty_id=tx.counterparty_id,
            idempotency_key=tx.idempotency_key,
            metadata=tx.metadata,
            created_at=tx.created_at or utcnow(),
        )

    def to_domain(self) -> Transaction:
        return Transaction(
            id=self.id,
            user_id=self.user_id,
            type=self.type,
            amount=self.amount,
            balance_after=self.balance_after,
            description=self.description,
            reference_id=self.reference_id,
            package_id=self.package_id,
            counterparty_id=self.counterparty_id,
            idempotency_key=self.idempotency_key,
            metadata=self.metadata,
            created_at=self.created_at,
        )
