from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from credit_ledger.deps import CurrentUser, get_current_user, get_ledger
from credit_ledger.models.ledger import TransactionType
from credit_ledger.services.credits import CreditsService

router = APIRouter()


class TransferRequest(BaseModel):
    to_user_id: str = Field(min_length=1)
    amount: Decimal
    description: str | None = Field(default=None, max_length=500)


class ReservationRequest(BaseModel):
    amount: Decimal
    ttl_seconds: int | None = Field(default=None, ge=1, le=3600)
    metadata: dict[str, Any] | None = None


class ConfirmReservationRequest(BaseModel):
    actual_amount: Decimal | None = None


@router.get("/balance")
async def credits_balance(
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditsService = Depends(get_ledger),
):
    """Return current balance, reserved and available credits."""
    status = await ledger.get_credit_status(user.user_id)
    return status.model_dump(mode="json")


@router.get("/summary")
async def credits_summary(
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditsService = Depends(get_ledger),
):
    summary = await ledger.get_user_summary(user.user_id)
    status = await ledger.get_credit_status(user.user_id)
    return {**summary.model_dump(mode="json"), "status": status.model_dump(mode="json")}


@router.get("/history")
async def credits_history(
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditsService = Depends(get_ledger),
    type: TransactionType | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Return transactions for current user (newest first)."""
    page = await ledger.get_transaction_history(user.user_id, type, start_date, end_date, limit, offset)
    return page.model_dump(mode="json")


@router.get("/history/{transaction_id}")
async def credits_transaction(
    transaction_id: str,
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditsService = Depends(get_ledger),
):
    tx = await ledger.get_transaction(user.user_id, transaction_id)
    return tx.model_dump(mode="json")


@router.get("/analytics/personal")
async def credits_personal_analytics(
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditsService = Depends(get_ledger),
):
    pattern = await ledger.get_user_spending_pattern(user.user_id)
    return pattern.model_dump(mode="json")


@router.post("/transfer")
async def credits_transfer(
    body: TransferRequest,
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditsService = Depends(get_ledger),
):
    """Send credits from the caller to another user."""
    result = await ledger.transfer(user.user_id, body.to_user_id, body.amount, body.description)
    return result.model_dump(mode="json")


@router.post("/reservations")
async def credits_reserve(
    body: ReservationRequest,
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditsService = Depends(get_ledger),
):
    """Hold credits for a pending operation."""
    reservation = await ledger.create_reservation(user.user_id, body.amount, body.ttl_seconds, body.metadata)
    return reservation.model_dump(mode="json")


@router.get("/reservations")
async def credits_reservations(
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditsService = Depends(get_ledger),
):
    reservations = await ledger.get_user_reservations(user.user_id)
    return {"reservations": [r.model_dump(mode="json") for r in reservations]}


@router.post("/reservations/{reservation_id}/confirm")
async def credits_reservation_confirm(
    reservation_id: str,
    body: ConfirmReservationRequest | None = None,
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditsService = Depends(get_ledger),
):
    """Charge a held reservation, optionally for less than was held."""
    actual = body.actual_amount if body else None
    result = await ledger.confirm_reservation(user.user_id, reservation_id, actual)
    return result.model_dump(mode="json")


@router.post("/reservations/{reservation_id}/release")
async def credits_reservation_release(
    reservation_id: str,
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditsService = Depends(get_ledger),
):
    reservation = await ledger.release_reservation(user.user_id, reservation_id)
    return reservation.model_dump(mode="json")
