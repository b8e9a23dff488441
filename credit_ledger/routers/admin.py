from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from credit_ledger.core.security import normalize_idempotency_key
from credit_ledger.deps import CurrentUser, get_ledger, require_admin
from credit_ledger.services.batch import MAX_BATCH_SIZE, BatchOperation
from credit_ledger.services.credits import CreditsService

router = APIRouter()


class AddCreditsRequest(BaseModel):
    user_id: str = Field(min_length=1)
    amount: Decimal
    description: str = Field(default="Administrative credit grant", max_length=500)
    reference_id: str | None = None
    package_id: str | None = None
    metadata: dict[str, Any] | None = None


class BatchAddRequest(BaseModel):
    operations: list[BatchOperation] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


class AdjustCreditsRequest(BaseModel):
    user_id: str = Field(min_length=1)
    amount: Decimal
    description: str = Field(min_length=1, max_length=500)
    reference_id: str | None = None


@router.post("/add")
async def admin_add_credits(
    body: AddCreditsRequest,
    admin: CurrentUser = Depends(require_admin),
    ledger: CreditsService = Depends(get_ledger),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Admin: grant credits to a user. Replays with the same Idempotency-Key return the first result."""
    result = await ledger.add_credits(
        body.user_id,
        body.amount,
        body.description,
        reference_id=body.reference_id,
        package_id=body.package_id,
        idempotency_key=normalize_idempotency_key(idempotency_key),
        metadata=body.metadata,
    )
    return result.model_dump(mode="json")


@router.post("/batch-add")
async def admin_batch_add(
    body: BatchAddRequest,
    admin: CurrentUser = Depends(require_admin),
    ledger: CreditsService = Depends(get_ledger),
):
    """Admin: grant credits to many users; failures are reported per item."""
    results = await ledger.batch_add(body.operations)
    succeeded = sum(1 for r in results if r.success)
    return {
        "results": [r.model_dump(mode="json") for r in results],
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
    }


@router.post("/adjust")
async def admin_adjust_credits(
    body: AdjustCreditsRequest,
    admin: CurrentUser = Depends(require_admin),
    ledger: CreditsService = Depends(get_ledger),
):
    """Admin: signed balance correction."""
    result = await ledger.adjust_credits(body.user_id, body.amount, body.description, reference_id=body.reference_id)
    return result.model_dump(mode="json")


@router.get("/analytics")
async def admin_analytics(
    admin: CurrentUser = Depends(require_admin),
    ledger: CreditsService = Depends(get_ledger),
):
    analytics = await ledger.get_overall_analytics()
    return analytics.model_dump(mode="json")


@router.get("/users/{user_id}/summary")
async def admin_user_summary(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    ledger: CreditsService = Depends(get_ledger),
):
    summary = await ledger.get_user_summary(user_id)
    pattern = await ledger.get_user_spending_pattern(user_id)
    audit = await ledger.get_audit_trail(user_id, limit=20)
    return {
        **summary.model_dump(mode="json"),
        "spending": pattern.model_dump(mode="json"),
        "recent_audit": [a.model_dump(mode="json") for a in audit],
    }


@router.get("/users/{user_id}/verify")
async def admin_verify_ledger(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    ledger: CreditsService = Depends(get_ledger),
):
    """Admin: check that the stored balance equals the sum of the user's transactions."""
    check = await ledger.verify_user_ledger(user_id)
    return check.model_dump(mode="json")
