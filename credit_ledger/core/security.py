import hashlib
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from credit_ledger.core.config import get_settings
from credit_ledger.core.exceptions import BadRequestError

SESSION_MAX_AGE = 7 * 24 * 3600


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="credit-ledger-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    serializer = get_session_serializer()
    return serializer.dumps(payload)


def load_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=SESSION_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return None


def normalize_idempotency_key(key: str | None) -> str | None:
    """Optional Idempotency-Key header: stripped, None when absent."""
    if key is None:
        return None
    key = key.strip()
    if not key:
        raise BadRequestError("Idempotency-Key header must not be blank")
    if len(key) > 255:
        raise BadRequestError("Idempotency-Key header is too long")
    return key
