import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from app.activities.enrichment import EnrichmentService, Extractor, ReviewSource
from app.api.responses import INTERNAL_ERROR_MESSAGE, ApiError, error_response
from app.api.routes import carts, health, products, reports, users
from app.config import settings
from app.logging import configure_logging
from app.models.contracts import ErrorCode
from app.utils.database import create_engine, create_sessionmaker
from app.utils.exa import ExaConfig, ReviewSearcher
from app.utils.firecrawl import FirecrawlConfig, ProductExtractor
from app.utils.gemini_report import (
    GeminiConfig,
    ReportConfigError,
    ReportGenerator,
)
from app.utils.tasks import BackgroundTaskRunner
from app.workflows.cart_lifecycle import CartRuleViolation

configure_logging()

logger = structlog.get_logger()

SHUTDOWN_GRACE_SECONDS = 10.0


def init_app_state(
    app: FastAPI,
    *,
    engine: AsyncEngine,
    extractor: Extractor,
    searcher: ReviewSource,
    report_generator: ReportGenerator | None,
) -> None:
    """Attach the engine, session factory, adapters and task runner to ``app.state``."""
    sessionmaker = create_sessionmaker(engine)
    runner = BackgroundTaskRunner()
    app.state.engine = engine
    app.state.sessionmaker = sessionmaker
    app.state.task_runner = runner
    app.state.report_generator = report_generator
    app.state.enrichment = EnrichmentService(sessionmaker, runner, extractor, searcher)


def _build_report_generator() -> ReportGenerator | None:
    try:
        return ReportGenerator(GeminiConfig(api_key=settings.gemini_api_key, model=settings.gemini_model))
    except ReportConfigError as exc:
        logger.error("report_generator_disabled", reason=str(exc))
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    extractor = ProductExtractor(
        FirecrawlConfig(api_key=settings.firecrawl_api_key, base_url=settings.firecrawl_base_url)
    )
    searcher = ReviewSearcher(
        ExaConfig(api_key=settings.exa_api_key, base_url=settings.exa_base_url)
    )
    engine = create_engine(settings.database_url)
    init_app_state(
        app,
        engine=engine,
        extractor=extractor,
        searcher=searcher,
        report_generator=_build_report_generator(),
    )

    if settings.recover_pending_on_startup:
        await app.state.enrichment.recover_stale_pending(settings.pending_recovery_minutes)

    logger.info("api_started", environment=settings.environment)
    try:
        yield
    finally:
        await app.state.task_runner.shutdown(SHUTDOWN_GRACE_SECONDS)
        await extractor.aclose()
        await searcher.aclose()
        await engine.dispose()
        logger.info("api_stopped")


app = FastAPI(
    title="Rfrnce API",
    version=health.VERSION,
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"chrome-extension://.*",
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "X-User-UUID", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request ID to every request for log correlation.

    Bound into structlog context vars (so it appears on every log line for
    the request, including the enrichment task the request spawns) and
    echoed in the X-Request-ID response header.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _with_request_id(request: Request, response: JSONResponse) -> JSONResponse:
    response.headers["X-Request-ID"] = getattr(
        request.state, "request_id", request.headers.get("X-Request-ID", "")
    )
    return response


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    logger.info("api_error", path=request.url.path, status=exc.status, code=exc.code.value)
    return _with_request_id(request, error_response(exc.status, exc.code, exc.message))


@app.exception_handler(CartRuleViolation)
async def cart_rule_handler(request: Request, exc: CartRuleViolation) -> JSONResponse:
    logger.info("cart_rule_rejected", path=request.url.path, code=exc.code.value)
    return _with_request_id(request, error_response(exc.status, exc.code, exc.message))


# Field name (as sent on the wire) -> the error code clients already branch on
_FIELD_ERROR_CODES = {
    "uuid": ErrorCode.INVALID_UUID,
    "url": ErrorCode.INVALID_URL,
    "targetCartId": ErrorCode.INVALID_TARGET_CART,
    "cart_id": ErrorCode.INVALID_CART_ID,
}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Render validation failures in the standard error envelope with status 400.

    FastAPI's default is a 422 with ``{"detail": [...]}``; the extension
    expects one error shape for everything.
    """
    messages = []
    code = ErrorCode.INVALID_REQUEST
    for err in exc.errors():
        loc = [str(part) for part in err["loc"]]
        messages.append(f"{' → '.join(loc)}: {err['msg']}")
        if code is ErrorCode.INVALID_REQUEST:
            code = next(
                (_FIELD_ERROR_CODES[p] for p in loc if p in _FIELD_ERROR_CODES),
                ErrorCode.INVALID_REQUEST,
            )
    return _with_request_id(request, error_response(400, code, "; ".join(messages)))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the failure server-side; the client only gets a generic INTERNAL_ERROR."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return _with_request_id(
        request, error_response(500, ErrorCode.INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE)
    )


@app.get("/", include_in_schema=False)
async def root() -> PlainTextResponse:
    return PlainTextResponse("Rfrnce API")


app.include_router(health.router)
app.include_router(users.router, prefix="/api")
app.include_router(carts.router, prefix="/api")
app.include_router(products.router, prefix="/api")
app.include_router(reports.router, prefix="/api")
