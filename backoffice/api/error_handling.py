from __future__ import annotations

from fastapi import FastAPI, Request

from backoffice.api import flash as flashes
from backoffice.api.views import redirect, render, templates
from backoffice.config import get_settings
from backoffice.logging import get_correlation_id, get_logger
from backoffice.service.errors import (
    AuthenticationError,
    CsrfError,
    ForbiddenError,
    ServiceError,
    SessionExpiredError,
)
from backoffice.storage.errors import ConstraintViolation

logger = get_logger(__name__)

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."
CSRF_FAILED_MESSAGE = "Invalid CSRF token."


def _ctx(request: Request):
    return getattr(request.state, "auth_ctx", None)


def register_exception_handlers(app: FastAPI) -> None:
    """Translate service and storage errors into redirects or error pages."""

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        ctx = _ctx(request)
        if isinstance(exc, SessionExpiredError) and ctx is not None:
            flashes.flash(ctx, flashes.ERROR, SESSION_EXPIRED_MESSAGE)
        logger.info(
            "authentication_required",
            path=request.url.path,
            method=request.method,
            expired=isinstance(exc, SessionExpiredError),
        )
        return redirect("/login")

    @app.exception_handler(CsrfError)
    async def handle_csrf_error(request: Request, exc: CsrfError):
        ctx = _ctx(request)
        if ctx is not None:
            flashes.flash(ctx, flashes.ERROR_PERSISTENT, CSRF_FAILED_MESSAGE)
        return redirect("/login")

    @app.exception_handler(ForbiddenError)
    async def handle_forbidden(request: Request, exc: ForbiddenError):
        logger.debug(
            "forbidden",
            path=request.url.path,
            method=request.method,
            permission=exc.detail.get("permission"),
        )
        return render(
            request,
            "errors/403.html",
            {"permission": exc.detail.get("permission")},
            status_code=403,
        )

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return render(
            request,
            "errors/error.html",
            {"status_code": 409, "message": exc.message},
            status_code=409,
        )

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            detail=exc.detail,
        )
        return render(
            request,
            "errors/error.html",
            {"status_code": exc.status_code, "message": exc.message},
            status_code=exc.status_code,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        debug = get_settings().app_debug
        return templates.TemplateResponse(
            request,
            "errors/500.html",
            {
                "detail": f"{type(exc).__name__}: {exc}" if debug else None,
                "correlation_id": get_correlation_id(),
                "flashes": {},
                "user_name": None,
            },
            status_code=500,
        )
