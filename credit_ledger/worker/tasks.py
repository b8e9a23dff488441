"""ARQ job definitions."""

import uuid
from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings

from credit_ledger.core.config import get_settings
from credit_ledger.core.logging import configure_logging, get_logger
from credit_ledger.db.init import init_db
from credit_ledger.services.credits import CreditsService, build_credits_service

log = get_logger(__name__)


async def _run_with_dlq(
    ctx: dict[str, Any],
    job_name: str,
    args: list[Any],
    kwargs: dict[str, Any],
    coro,
) -> Any:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    try:
        return await coro
    except Exception as e:
        fid = job_id or str(uuid.uuid4())
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        if ctx.get("mongo"):
            from credit_ledger.models.failed_job import FailedJob
            await FailedJob(
                job_name=job_name,
                job_id=fid,
                args=args,
                kwargs=kwargs,
                reason=str(e)[:2000],
                retries=ctx.get("job_try", 1) - 1,
            ).insert()
        raise


def _ledger(ctx: dict[str, Any]) -> CreditsService:
    return ctx["ledger"]


async def cleanup_expired_reservations(ctx: dict[str, Any]) -> int:
    """Cron job: mark pending reservations past their expiry as expired."""

    async def _run() -> int:
        cleaned = await _ledger(ctx).cleanup_expired_reservations()
        log.info("job_done", job="cleanup_expired_reservations", cleaned=cleaned)
        return cleaned

    return await _run_with_dlq(ctx, "cleanup_expired_reservations", [], {}, _run())


async def reconcile_ledgers(ctx: dict[str, Any]) -> int:
    """Cron job: compare every stored balance with its transaction log; returns mismatches."""

    async def _run() -> int:
        mismatches = await _ledger(ctx).reconcile_all()
        if mismatches:
            log.error("reconcile_mismatches", count=len(mismatches), user_ids=[m.user_id for m in mismatches])
        log.info("job_done", job="reconcile_ledgers", mismatches=len(mismatches))
        return len(mismatches)

    return await _run_with_dlq(ctx, "reconcile_ledgers", [], {}, _run())


async def startup(ctx: dict) -> None:
    settings = get_settings()
    configure_logging(debug=settings.debug)
    ctx["mongo"] = settings.ledger_backend == "mongo"
    if ctx["mongo"]:
        await init_db()
    ctx["ledger"] = build_credits_service(settings)


async def shutdown(ctx: dict) -> None:
    ledger = ctx.pop("ledger", None)
    if ledger is not None:
        await ledger.close()


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/") or 0) if u.path else 0,
    )
