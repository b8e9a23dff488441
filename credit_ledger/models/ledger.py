"""Backend-neutral ledger types shared by services and storage backends."""

import time
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

CREDIT_QUANTUM = Decimal("0.0001")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_last_stamp = 0


def new_transaction_id() -> str:
    """Time-ordered id: a nanosecond stamp, strictly increasing in this process, plus a random suffix.

    Ids sort in commit order, so history can break created_at ties by id.
    """
    global _last_stamp
    _last_stamp = max(_last_stamp + 1, time.time_ns())
    return f"{_last_stamp:016x}{uuid.uuid4().hex[:16]}"


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_credits(value: Any) -> Decimal:
    """Coerce to a Decimal credit amount with 4 decimal places."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CREDIT_QUANTUM, rounding=ROUND_HALF_EVEN)


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    ADJUSTMENT = "adjustment"


# Amounts are stored signed: credits positive, debits negative.
CREDIT_TYPES = frozenset({TransactionType.PURCHASE, TransactionType.TRANSFER_IN})
DEBIT_TYPES = frozenset({TransactionType.USAGE, TransactionType.TRANSFER_OUT})


class AlertLevel(str, Enum):
    NORMAL = "normal"
    LOW = "low"
    CRITICAL = "critical"


class Transaction(BaseModel):
    """Immutable ledger entry. `amount` is signed; `balance_after` is the owner's balance once applied."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    user_id: str
    type: TransactionType
    amount: Decimal
    balance_after: Decimal | None = None
    description: str = ""
    reference_id: str | None = None  # payment id, transfer id, reservation id
    package_id: str | None = None
    counterparty_id: str | None = None  # other side of a transfer
    idempotency_key: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @field_validator("amount", "balance_after", mode="before")
    @classmethod
    def _quantize(cls, v: Any) -> Any:
        return None if v is None else to_credits(v)

    @field_validator("amount")
    @classmethod
    def _sign_matches_type(cls, v: Decimal, info) -> Decimal:
        tx_type = info.data.get("type")
        if tx_type in CREDIT_TYPES and v <= 0:
            raise ValueError(f"{tx_type.value} amount must be positive")
        if tx_type in DEBIT_TYPES and v >= 0:
            raise ValueError(f"{tx_type.value} amount must be negative")
        if v == 0:
            raise ValueError("amount must be non-zero")
        return v


class AccountSnapshot(BaseModel):
    """Stored balance row for one user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    amount: Decimal
    version: int
    updated_at: datetime


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    action: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    transaction_id: str | None = None
    reservation_id: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class Posting(BaseModel):
    """One account's share of an atomic commit.

    The row is written only if the stored version still equals `expected_version`
    (0 for an account that has no row yet).
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    expected_version: int
    new_amount: Decimal
    transaction: Transaction
    audit: AuditEntry


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"


class Reservation(BaseModel):
    id: str
    user_id: str
    amount: Decimal
    status: ReservationStatus = ReservationStatus.PENDING
    expires_at: datetime
    created_at: datetime
    transaction_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def is_active(self, now: datetime) -> bool:
        return self.status == ReservationStatus.PENDING and as_utc(self.expires_at) > now


class TokenUsage(BaseModel):
    prompt: int = 0
    completion: int = 0
    total: int = 0


class TransactionMetadata(BaseModel):
    """Whitelisted usage context stored on a transaction; unknown keys are dropped."""

    model_config = ConfigDict(extra="ignore")

    model: str | None = None
    provider: Literal["openai", "anthropic", "groq"] | None = None
    operation: Literal["generate", "stream", "embedding"] | None = None
    request_id: str | None = None
    tokens: TokenUsage | None = None
    session_id: str | None = None
    chat_id: str | None = None
    ip_address: str | None = None

    @field_validator("model", mode="before")
    @classmethod
    def _trim_model(cls, v: Any) -> Any:
        return v[:100] if isinstance(v, str) else v

    @field_validator("request_id", "session_id", "chat_id", mode="before")
    @classmethod
    def _trim_ids(cls, v: Any) -> Any:
        return v[:36] if isinstance(v, str) else v

    @field_validator("ip_address", mode="before")
    @classmethod
    def _trim_ip(cls, v: Any) -> Any:
        return v[:45] if isinstance(v, str) else v

    @field_validator("provider", "operation", mode="before")
    @classmethod
    def _drop_unknown_choice(cls, v: Any, info) -> Any:
        allowed = {
            "provider": ("openai", "anthropic", "groq"),
            "operation": ("generate", "stream", "embedding"),
        }[info.field_name]
        return v if v in allowed else None

    @classmethod
    def clean(cls, raw: dict[str, Any] | None) -> dict[str, Any]:
        if not raw:
            return {}
        return cls.model_validate(raw).model_dump(exclude_none=True)
