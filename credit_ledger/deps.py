"""Shared FastAPI dependencies."""

from fastapi import Request
from pydantic import BaseModel

from credit_ledger.core.exceptions import ForbiddenError, UnauthorizedError
from credit_ledger.core.logging import bind_user_id
from credit_ledger.core.security import load_session_cookie
from credit_ledger.services.credits import CreditsService

SESSION_COOKIE_NAME = "credit_ledger_session"


class CurrentUser(BaseModel):
    """Caller identity as established by the session layer; trusted as-is."""

    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_current_user(request: Request) -> CurrentUser:
    """Dependency: load session from cookie and return the caller."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    bind_user_id(str(user_id))
    return CurrentUser(user_id=str(user_id), role=payload.get("role") or "user")


async def require_admin(request: Request) -> CurrentUser:
    """Dependency: require current user to have role admin."""
    user = await get_current_user(request)
    if not user.is_admin:
        raise ForbiddenError("Admin only")
    return user


def get_ledger(request: Request) -> CreditsService:
    return request.app.state.ledger
