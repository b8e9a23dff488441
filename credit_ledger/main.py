import time
import uuid

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from credit_ledger.core.config import get_credit_rules, get_settings
from credit_ledger.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from credit_ledger.core.logging import bind_request_id, configure_logging, get_logger
from credit_ledger.db.init import init_db
from credit_ledger.routers import admin, credits
from credit_ledger.services.credits import build_credits_service

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="Credit Ledger API",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(credits.router, prefix="/v1/credits", tags=["credits"])
app.include_router(admin.router, prefix="/v1/admin/credits", tags=["admin"])


@app.on_event("startup")
async def startup():
    # Bad credit rules abort startup before any connection is opened.
    rules = get_credit_rules()
    log.info("startup", msg="Credit rules loaded", **{k: str(v) for k, v in rules.model_dump().items()})
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    if settings.ledger_backend == "mongo":
        await init_db()
        log.info("startup", msg="DB connected")
    if getattr(app.state, "ledger", None) is None:
        app.state.ledger = build_credits_service(settings)
    log.info("startup", msg="Ledger ready", backend=settings.ledger_backend)


@app.on_event("shutdown")
async def shutdown():
    ledger = getattr(app.state, "ledger", None)
    if ledger is not None:
        await ledger.close()
        app.state.ledger = None


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}
