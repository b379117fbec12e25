"""HTTP server exposing query normalization and execution via FastAPI.

Endpoints implement a thin HTTP transport over ``QueryService`` and the
normalization functions shared with the CLI. CORS is configurable via
environment variables; metrics sources come from the JSON file named by
``QUERYNORM_CONFIG``.
"""

from __future__ import annotations

import importlib
import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import psutil
from pydantic import BaseModel, Field, ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .. import __domain_model_version__, __version__
from ..adapters import (
    get_adapter,
    get_available_source_ids,
    log_adapter_status,
    register_adapter,
)
from ..adapters.in_memory import InMemoryAdapter
from ..config.models import AppConfig, EnvSettings
from ..domain.errors import QueryError
from ..domain.utils.period import SUPPORTED_PERIODS
from ..domain.utils.timestamps import resolve_time_range, utc_now
from ..observability import setup_logging
from ..utils.correlation import (
    CORRELATION_HEADER,
    get_request_id,
    new_request_id,
    set_request_id,
)
from ..utils.partial_results import format_failure_summary
from .app import QueryService, SourceNotFoundError, annotations_to_frame
from .models import (
    AnnotationRequest,
    AnnotationResponse,
    MigrateRequest,
    MigrateResponse,
    NormalizeRequest,
    NormalizeResponse,
    QueryFailure,
    QueryRequest,
    QueryResponse,
    TimeRangeRequest,
)

logger = logging.getLogger(__name__)

IN_MEMORY_SOURCE_TYPES = ("in-memory", "memory", "fixture")


class RequestLoggingMiddleware(
    BaseHTTPMiddleware
):  # pylint: disable=too-few-public-methods
    """Assign a correlation id to every request and log its outcome."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        req_id = request.headers.get(CORRELATION_HEADER) or new_request_id()
        set_request_id(req_id)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "http.request.failed",
                extra={
                    "req_id": req_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
                exc_info=True,
            )
            raise

        response.headers[CORRELATION_HEADER] = req_id
        logger.info(
            "http.request.completed",
            extra={
                "req_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        return response


class HealthResponse(BaseModel):
    """Simple health/readiness response model."""

    status: str


class ErrorResponse(BaseModel):
    """Structured JSON error response for HTTP endpoints.

    Fields
    ------
    detail: str
        Human-readable explanation of the error.
    error_type: str
        Machine-readable error classification.
    available_options: list[str] | None
        Optional list of valid options when the error is about an invalid
        input value (e.g., unknown `source_id`).
    """

    detail: str = Field(..., description="Human-readable error detail")
    error_type: str = Field(..., description="Machine-readable error type")
    available_options: List[str] | None = Field(
        default=None, description="Optional list of valid alternative options"
    )


class CapabilitiesResponse(BaseModel):
    """Server capabilities summary for diagnostics and clients."""

    domain_version: str = Field("1.0.0")
    cors_origins: List[str]
    endpoints: List[str]
    features: Dict[str, bool]
    supported_periods: List[int]
    sources: List[str]


ENDPOINTS = [
    "/api/queries/normalize",
    "/api/queries/migrate",
    "/api/query",
    "/api/annotations",
]

ERROR_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _load_fastapi():
    """Dynamically import FastAPI pieces to keep deps optional."""
    fastapi_mod = importlib.import_module("fastapi")
    cors_mod = importlib.import_module("fastapi.middleware.cors")
    exc_mod = importlib.import_module("fastapi.exceptions")
    resp_mod = importlib.import_module("fastapi.responses")
    st_exc_mod = importlib.import_module("starlette.exceptions")
    return {
        "fastapi_cls": getattr(fastapi_mod, "FastAPI"),
        "http_exc": getattr(fastapi_mod, "HTTPException"),
        "cors_mw": getattr(cors_mod, "CORSMiddleware"),
        "validation_exc": getattr(exc_mod, "RequestValidationError"),
        "json_response": getattr(resp_mod, "JSONResponse"),
        "starlette_http_exc": getattr(st_exc_mod, "HTTPException"),
    }


def _build_app(fastapi_cls: Any, lifespan: Any | None = None):
    """Create base FastAPI app (optionally with lifespan)."""
    if lifespan is not None:
        return fastapi_cls(
            title="Query Normalization Service", version=__version__, lifespan=lifespan
        )
    return fastapi_cls(title="Query Normalization Service", version=__version__)


def _cors_origins() -> List[str]:
    origins = os.environ.get("QUERYNORM_CORS_ORIGINS", "")
    return [o.strip() for o in origins.split(",") if o.strip()]


def _apply_cors_env(app: Any, cors_middleware_cls: Any) -> None:
    """Enable CORS if QUERYNORM_CORS_ORIGINS is set."""
    allow_origins = _cors_origins()
    if allow_origins:
        app.add_middleware(
            cors_middleware_cls,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[CORRELATION_HEADER],
        )


def _bad_request(http_exc: Any, exc: Exception, error_type: str):
    err = ErrorResponse(detail=str(exc), error_type=error_type)
    return http_exc(status_code=400, detail=err.model_dump())


def _source_not_found(http_exc: Any, exc: SourceNotFoundError):
    err = ErrorResponse(
        detail=str(exc),
        error_type="unknown_source_id",
        available_options=exc.available or None,
    )
    return http_exc(status_code=404, detail=err.model_dump())


def _time_range(http_exc: Any, req: TimeRangeRequest) -> Tuple[Any, Any, Any]:
    """Parse the request's time range, mapping failures to HTTP 400."""
    now = utc_now()
    try:
        start, end = resolve_time_range(req.start, req.end, now=now)
    except ValueError as exc:
        raise _bad_request(http_exc, exc, "invalid_time_range") from exc
    return start, end, now


def _register_health(app: Any, service: QueryService) -> None:
    """Register health and readiness endpoints."""

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Liveness probe",
    )
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get(
        "/ready",
        response_model=HealthResponse,
        summary="Readiness probe",
    )
    async def ready() -> HealthResponse:
        return HealthResponse(status="ready" if service.started else "starting")


def _register_capabilities(app: Any, service: QueryService) -> None:
    """Register server capabilities endpoint."""

    @app.get(
        "/capabilities",
        response_model=CapabilitiesResponse,
        summary="Server capabilities summary",
    )
    async def capabilities() -> CapabilitiesResponse:  # noqa: D401
        return CapabilitiesResponse(
            domain_version=__domain_model_version__,
            cors_origins=_cors_origins(),
            endpoints=ENDPOINTS,
            features={"dynamic_labels": service.dynamic_labels_enabled},
            supported_periods=list(SUPPORTED_PERIODS),
            sources=get_available_source_ids(),
        )


def _register_normalize(app: Any, service: QueryService, http_exc: Any) -> None:
    """Register batch normalization and label migration endpoints."""

    @app.post(
        "/api/queries/normalize",
        response_model=NormalizeResponse,
        summary="Normalize a batch of raw queries",
        description=(
            "Returns the canonical form of every valid query, in input order. "
            "Malformed queries are reported per refId in 'errors' and do not "
            "fail the batch."
        ),
        responses=ERROR_RESPONSES,
    )
    async def normalize_queries(req: NormalizeRequest) -> NormalizeResponse:
        start, end, now = _time_range(http_exc, req)
        result = service.normalize(req.queries, start, end, now=now)
        if result.has_failures:
            logger.info(
                "http.normalize.partial",
                extra={
                    "req_id": get_request_id(),
                    "summary": format_failure_summary(result, "query"),
                },
            )
        return NormalizeResponse(
            queries=list(result.successes.values()),
            errors=[QueryFailure.from_failure(f) for f in result.failures],
        )

    @app.post(
        "/api/queries/migrate",
        response_model=MigrateResponse,
        summary="Migrate legacy aliases to dynamic labels",
    )
    async def migrate_queries(req: MigrateRequest) -> MigrateResponse:
        return MigrateResponse(
            queries=[dict(q) for q in service.migrate(req.queries)],
            dynamic_labels_enabled=service.dynamic_labels_enabled,
        )


def _register_query(app: Any, service: QueryService, http_exc: Any) -> None:
    """Register the time series query endpoint."""

    @app.post(
        "/api/query",
        response_model=QueryResponse,
        summary="Normalize and execute a batch of metric queries",
        responses=ERROR_RESPONSES,
    )
    async def api_query(req: QueryRequest) -> QueryResponse:
        start, end, now = _time_range(http_exc, req)
        try:
            result = await service.execute_time_series(
                req.queries, start, end, source_id=req.source_id, now=now
            )
        except SourceNotFoundError as exc:
            raise _source_not_found(http_exc, exc) from exc
        return QueryResponse(
            results=result.successes,
            errors=[QueryFailure.from_failure(f) for f in result.failures],
        )


def _register_annotations(app: Any, service: QueryService, http_exc: Any) -> None:
    """Register the alarm annotation endpoint."""

    @app.post(
        "/api/annotations",
        response_model=AnnotationResponse,
        summary="Alarm state changes as annotation events",
        responses=ERROR_RESPONSES,
    )
    async def api_annotations(req: AnnotationRequest) -> AnnotationResponse:
        start, end, now = _time_range(http_exc, req)
        ref_id = req.ref_id
        try:
            events = await service.execute_annotations(
                req.query, ref_id, start, end, source_id=req.source_id, now=now
            )
        except QueryError as exc:
            raise _bad_request(http_exc, exc, exc.code.value) from exc
        except SourceNotFoundError as exc:
            raise _source_not_found(http_exc, exc) from exc
        frame_name = ref_id or str(req.query.get("refId") or "")
        return AnnotationResponse(frame=annotations_to_frame(events, frame_name))


def register_sources(cfg: AppConfig) -> List[str]:
    """Register an adapter for every configured source.

    Returns the ``source_id:type`` labels of the registered sources.
    """
    registered: List[str] = []
    for source_id, sc in cfg.sources.items():
        if sc.type not in IN_MEMORY_SOURCE_TYPES:
            logger.warning(
                "http.startup.unknown_source_type",
                extra={"source_id": source_id, "type": sc.type},
            )
            continue
        adapter = (
            InMemoryAdapter.from_file(sc.fixture)
            if sc.fixture is not None
            else InMemoryAdapter()
        )
        register_adapter(source_id, adapter)
        registered.append(f"{source_id}:{sc.type}")
    return registered


def _load_config() -> Tuple[Optional[Path], Optional[AppConfig], Optional[str]]:
    cfg_env = os.environ.get("QUERYNORM_CONFIG")
    cfg_path = Path(cfg_env) if cfg_env else None
    if cfg_path is None or not cfg_path.exists():
        return cfg_path, None, None
    try:
        return cfg_path, AppConfig.load(cfg_path), None
    except (OSError, ValueError, ValidationError) as exc:  # config parse/load error
        return cfg_path, None, str(exc)


def _log_startup_memory() -> None:
    process = psutil.Process()
    mem_info = process.memory_info()
    logger.info(
        "http.startup.memory",
        extra={
            "rss_mb": round(mem_info.rss / 1024 / 1024, 1),
            "vms_mb": round(mem_info.vms / 1024 / 1024, 1),
        },
    )


def create_app():
    """Create and configure the FastAPI application.

    The HTTP layer is intentionally thin and defers to ``QueryService`` and
    the shared normalization functions.
    """
    settings = EnvSettings()
    # Respect prior logging configuration from CLI; otherwise use env setting
    if not logging.getLogger().hasHandlers():
        setup_logging(settings.log_level)
    parts = _load_fastapi()

    cfg_path, cfg, config_error = _load_config()
    adapters_initialized: List[str] = []
    if cfg is not None:
        try:
            adapters_initialized = register_sources(cfg)
        except (OSError, ValueError, ValidationError) as exc:  # fixture load error
            config_error = str(exc)
    service = QueryService(
        settings,
        dynamic_labels_enabled=bool(cfg and cfg.features.dynamic_labels),
    )

    @asynccontextmanager
    async def lifespan(_app: Any):
        logger.info("http.startup")
        try:
            _log_startup_memory()
        except (psutil.Error, OSError):  # pragma: no cover
            pass
        await service.start()
        try:
            yield
        finally:
            logger.info("http.shutdown")
            await service.stop()

    app = _build_app(parts["fastapi_cls"], lifespan=lifespan)
    # Global exception handlers to ensure structured error responses
    request_validation_error_cls = parts["validation_exc"]
    jr = parts["json_response"]
    starlette_http_exception_cls = parts["starlette_http_exc"]

    @app.exception_handler(request_validation_error_cls)
    async def validation_exception_handler(_request: Any, exc: Exception):  # noqa: D401
        err = ErrorResponse(
            detail=str(exc), error_type="validation_error", available_options=None
        )
        return jr(status_code=400, content={"detail": err.model_dump()})

    @app.exception_handler(starlette_http_exception_cls)
    async def http_exception_handler(_request: Any, exc: Any):  # noqa: D401
        # Pass through existing HTTP errors but ensure structured payload
        detail = getattr(exc, "detail", "")
        if isinstance(detail, dict) and {"detail", "error_type"} <= detail.keys():
            payload = {"detail": detail}
        else:
            payload = {
                "detail": ErrorResponse(
                    detail=str(detail) or "HTTP error",
                    error_type="http_error",
                    available_options=None,
                ).model_dump()
            }
        return jr(status_code=exc.status_code, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Any, exc: Exception):  # noqa: D401
        # Avoid leaking internals; log server-side, return generic error
        logger.error("http.unhandled_exception", exc_info=exc)
        err = ErrorResponse(
            detail="Internal error. See server logs for request id.",
            error_type="internal_server_error",
            available_options=None,
        )
        return jr(status_code=500, content={"detail": err.model_dump()})

    # Mark handlers as intentionally used (registered via decorators)
    _ = (
        validation_exception_handler,
        http_exception_handler,
        unhandled_exception_handler,
    )

    app.add_middleware(RequestLoggingMiddleware)
    _apply_cors_env(app, parts["cors_mw"])
    http_exc = parts["http_exc"]
    _register_health(app, service)
    _register_capabilities(app, service)
    _register_normalize(app, service, http_exc)
    _register_query(app, service, http_exc)
    _register_annotations(app, service, http_exc)

    logger.info(
        "http.startup.settings",
        extra={
            "log_level": settings.log_level,
            "cors_origins": os.environ.get("QUERYNORM_CORS_ORIGINS", ""),
            "config_path": str(cfg_path) if cfg_path else None,
            "config_found": cfg is not None,
            "config_error": config_error,
            "adapters_initialized": adapters_initialized,
            "dynamic_labels_enabled": service.dynamic_labels_enabled,
        },
    )
    if config_error:
        logger.warning(
            "http.startup.config_error",
            extra={
                "config_path": str(cfg_path) if cfg_path else None,
                "error": config_error,
                "suggestion": "Validate JSON format and fixture paths.",
            },
        )
    adapters_detail = [
        {"id": sid, "type": type(get_adapter(sid)).__name__}
        for sid in get_available_source_ids()
    ]
    if adapters_detail:
        logger.info("http.startup.adapters_detail", extra={"adapters": adapters_detail})
    log_adapter_status()
    return app
