import os
from decimal import Decimal
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-process ledger for tests
os.environ["LEDGER_BACKEND"] = "memory"
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")

from credit_ledger.core.config import CreditRules  # noqa: E402
from credit_ledger.core.security import create_session_cookie  # noqa: E402
from credit_ledger.deps import SESSION_COOKIE_NAME  # noqa: E402
from credit_ledger.services.credits import CreditsService  # noqa: E402
from credit_ledger.storage.memory import InMemoryLedgerBackend  # noqa: E402


@pytest.fixture
def rules() -> CreditRules:
    return CreditRules(
        minimum_balance=Decimal("0"),
        maximum_balance=Decimal("1000"),
        minimum_transaction=Decimal("0.01"),
        maximum_transaction=Decimal("500"),
        low_balance_threshold=Decimal("10"),
        critical_balance_threshold=Decimal("5"),
    )


@pytest.fixture
def backend() -> InMemoryLedgerBackend:
    return InMemoryLedgerBackend()


@pytest.fixture
def ledger(backend, rules) -> CreditsService:
    return CreditsService(backend, rules, retry_base_delay=0)


@pytest_asyncio.fixture
async def client(ledger) -> AsyncGenerator[AsyncClient, None]:
    from credit_ledger.main import app
    app.state.ledger = ledger
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.state.ledger = None


@pytest.fixture
def login() -> Callable[[AsyncClient, str, str], None]:
    """Set a signed session cookie on the client for `user_id`."""

    def _login(client: AsyncClient, user_id: str, role: str = "user") -> None:
        client.cookies.set(SESSION_COOKIE_NAME, create_session_cookie({"user_id": user_id, "role": role}))

    return _login
