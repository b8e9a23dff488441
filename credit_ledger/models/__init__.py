from credit_ledger.models.audit_log import AuditLog
from credit_ledger.models.credit_balance import CreditBalance
from credit_ledger.models.credit_reservation import CreditReservation
from credit_ledger.models.credit_transaction import CreditTransaction
from credit_ledger.models.failed_job import FailedJob
from credit_ledger.models.ledger import (
    AccountSnapshot,
    AlertLevel,
    AuditEntry,
    Reservation,
    ReservationStatus,
    Transaction,
    TransactionMetadata,
    TransactionType,
)

__all__ = [
    "AuditLog",
    "CreditBalance",
    "CreditReservation",
    "CreditTransaction",
    "FailedJob",
    "AccountSnapshot",
    "AlertLevel",
    "AuditEntry",
    "Reservation",
    "ReservationStatus",
    "Transaction",
    "TransactionMetadata",
    "TransactionType",
]
