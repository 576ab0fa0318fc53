from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import UUID, uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from console_memories.app.api.routes import router
from console_memories.app.config import AppSettings
from console_memories.app.dependencies import get_database, get_settings, get_telemetry
from console_memories.app.errors import NotFoundError, StorageError, ValidationError
from console_memories.app.logging_config import configure_application_logging
from console_memories.app.models.article_contracts import ErrorResponse
from console_memories.app.telemetry import TelemetryEvent

LOGGER = logging.getLogger("console_memories.api")


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    get_database()
    if settings.admin_token is None:
        LOGGER.warning("no admin token configured; article writes are disabled")
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Console Memories API", version="0.1.0", lifespan=app_lifespan)
    settings = get_settings()

    async def visitor_identity_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        presented = request.cookies.get(settings.visitor_cookie_name)
        visitor_id = _parse_visitor_token(presented)
        minted = visitor_id is None
        if visitor_id is None:
            visitor_id = str(uuid4())
        request.state.visitor_id = visitor_id

        response = await call_next(request)
        if minted:
            _set_visitor_cookie(response, visitor_id=visitor_id, settings=settings)
        return response

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            TelemetryEvent.REQUEST_START,
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                TelemetryEvent.REQUEST_ERROR,
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.emit(
                TelemetryEvent.REQUEST_FINISH,
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    # Registered last, runs first.
    app.middleware("http")(visitor_identity_middleware)
    app.middleware("http")(request_context_middleware)
    _register_exception_handlers(app)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )

    return app


def _parse_visitor_token(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(UUID(value.strip()))
    except ValueError:
        return None


def _set_visitor_cookie(response: Response, *, visitor_id: str, settings: AppSettings) -> None:
    response.set_cookie(
        key=settings.visitor_cookie_name,
        value=visitor_id,
        max_age=settings.visitor_cookie_max_age_seconds,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.visitor_cookie_secure,
    )


def _error_response(status_code: int, message: str, *, field: str | None = None) -> Response:
    body = ErrorResponse(error=message, field=field)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def handle_validation_error(_: Request, exc: ValidationError) -> Response:
        return _error_response(400, exc.message, field=exc.field)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(
        _: Request, exc: RequestValidationError
    ) -> Response:
        errors = exc.errors()
        field: str | None = None
        message = "Invalid request"
        if errors:
            first = errors[0]
            location = [str(part) for part in first.get("loc", ()) if part != "body"]
            field = ".".join(location) or None
            message = str(first.get("msg", message))
        return _error_response(400, message, field=field)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(_: Request, exc: NotFoundError) -> Response:
        return _error_response(404, f"{exc.resource.capitalize()} not found")

    @app.exception_handler(StorageError)
    async def handle_storage_error(_: Request, exc: StorageError) -> Response:
        LOGGER.error("storage unavailable error=%s", exc)
        return _error_response(503, "Storage unavailable")


app = create_app()
