import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from credit_ledger.core.config import get_settings
from credit_ledger.models.audit_log import AuditLog
from credit_ledger.models.credit_balance import CreditBalance
from credit_ledger.models.credit_reservation import CreditReservation
from credit_ledger.models.credit_transaction import CreditTransaction
from credit_ledger.models.failed_job import FailedJob

DOCUMENT_MODELS = [
    CreditBalance,
    CreditTransaction,
    CreditReservation,
    AuditLog,
    FailedJob,
]

_client: AsyncIOMotorClient | None = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(uri: str | None = None, db_name: str | None = None) -> AsyncIOMotorClient:
    """Connect motor, register ledger documents with beanie and return the client.

    Ledger commits use multi-document transactions, so the server must be a replica set.
    """
    global _client
    settings = get_settings()
    uri = uri or settings.mongodb_uri
    kwargs = {"tz_aware": True}
    if _use_tls(uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(uri, **kwargs)
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    _client = client
    return client


def get_client() -> AsyncIOMotorClient:
    if _client is None:
        raise RuntimeError("init_db() has not been awaited")
    return _client


def close_db() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
