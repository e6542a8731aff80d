import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from skillcoach.api import routes
from skillcoach.utils.errors import (
    ErrorCode,
    SkillCoachError,
    build_error_payload,
    error_code_for_http_status,
    http_status_for_error,
)
from skillcoach.utils.logging_setup import configure_logging
from skillcoach.utils.metrics import (
    Timer,
    inc_counter,
    observe_histogram,
    render_prometheus,
)
from skillcoach.utils.observability import get_request_id_from_headers, log_event
from skillcoach.utils.settings import get_settings

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str | None:
    return getattr(
        getattr(request, "state", None), "request_id", None
    ) or get_request_id_from_headers(request.headers)


def _validate_cors(settings) -> None:
    env = str(getattr(settings, "app_env", "dev") or "dev").strip().lower()
    origins = getattr(settings, "allow_origins", None) or []
    if not isinstance(origins, list):
        origins = [str(origins)]
    origins_norm = [str(o or "").strip() for o in origins if str(o or "").strip()]
    if env in {"prod", "production"}:
        if not origins_norm or any(o == "*" for o in origins_norm):
            raise RuntimeError(
                "CORS is not explicitly configured for production. "
                "Set ALLOW_ORIGINS to an explicit allowlist (no '*')."
            )


def create_app() -> FastAPI:
    settings = get_settings()
    _validate_cors(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ARG001
        log_path = configure_logging(settings)
        log_event(
            logger,
            "app_started",
            app_env=settings.app_env,
            qbank_backend=settings.qbank_backend,
            performance_backend=settings.performance_backend,
            parser_dialect=settings.qbank_parser_dialect,
            agent_configured=bool(settings.skillcoach_practice_url),
            log_file=str(log_path) if log_path else None,
        )
        yield

    app = FastAPI(title="SkillCoach", version="1.0.0", lifespan=lifespan)

    @app.middleware("http")
    async def _request_id_middleware(request: Request, call_next):
        t = Timer()
        request_id = _request_id(request) or f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = str(request_id)

        response = await call_next(request)
        response.headers["X-Request-Id"] = str(request_id)

        # Best-effort request metrics (do not raise).
        try:
            route = request.scope.get("route")
            path = str(getattr(route, "path", None) or request.url.path or "")
            method = str(request.method or "")
            inc_counter(
                "http_requests_total",
                labels={
                    "path": path,
                    "method": method,
                    "status": str(getattr(response, "status_code", 0)),
                },
            )
            observe_histogram(
                "http_request_duration_seconds",
                value=t.elapsed_seconds(),
                buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
                labels={"path": path, "method": method},
            )
        except Exception as e:
            logger.debug("request metrics failed: %s", e)
        return response

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics(
        x_metrics_token: str | None = Header(default=None, alias="X-Metrics-Token")
    ):
        expected = str(get_settings().metrics_token or "").strip()
        if expected and str(x_metrics_token or "").strip() != expected:
            return PlainTextResponse("forbidden\n", status_code=403)
        return PlainTextResponse(
            render_prometheus(), media_type="text/plain; version=0.0.4"
        )

    @app.exception_handler(SkillCoachError)
    async def _domain_exception_handler(request: Request, exc: SkillCoachError):
        status_code, code = http_status_for_error(exc)
        log_event(
            logger,
            "request_failed",
            level="warning" if status_code < 500 else "error",
            path=str(request.url.path),
            error_type=exc.__class__.__name__,
            error=str(exc),
            status_code=status_code,
        )
        payload = build_error_payload(
            code=code, message=str(exc), request_id=_request_id(request)
        )
        return JSONResponse(status_code=status_code, content=payload)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        code = error_code_for_http_status(int(exc.status_code))
        detail = exc.detail
        # Keep FastAPI's default `detail` for compatibility, but also add our canonical payload.
        if isinstance(detail, dict):
            message = str(detail.get("error") or detail.get("message") or detail)
            details = detail
        else:
            message = str(detail)
            details = None
        payload = {"detail": detail}
        payload.update(
            build_error_payload(
                code=code,
                message=message,
                details=details,
                request_id=_request_id(request),
            )
        )
        return JSONResponse(status_code=int(exc.status_code), content=payload)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        errors = jsonable_errors(exc)
        payload = {"detail": errors}
        payload.update(
            build_error_payload(
                code=ErrorCode.VALIDATION_ERROR,
                message="Validation error",
                details={"errors": errors},
                request_id=_request_id(request),
            )
        )
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        payload = build_error_payload(
            code=ErrorCode.SERVICE_ERROR,
            message="Internal server error",
            request_id=_request_id(request),
        )
        return JSONResponse(status_code=500, content=payload)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(routes.router, prefix="/api")
    return app


def jsonable_errors(exc: RequestValidationError):
    """Validation errors may carry exception objects in `ctx`; stringify them."""
    out = []
    for err in exc.errors():
        e = dict(err)
        ctx = e.get("ctx")
        if isinstance(ctx, dict):
            e["ctx"] = {k: str(v) for k, v in ctx.items()}
        e.pop("input", None)
        out.append(e)
    return out


app = create_app()
