from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from fastapi import Request

from backoffice.logging import get_logger, log_security_event
from backoffice.service.errors import (
    AuthenticationError,
    CsrfError,
    ForbiddenError,
    SessionExpiredError,
)
from backoffice.service.runtime import get_runtime
from backoffice.service.session import RequestContext

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequireAuth:
    pass


@dataclass(frozen=True)
class RequirePermission:
    name: str


@dataclass(frozen=True)
class RequireCsrf:
    field: str = "csrf_token"


Guard = Union[RequireAuth, RequirePermission, RequireCsrf]


def get_request_context(request: Request) -> RequestContext:
    ctx = getattr(request.state, "auth_ctx", None)
    if ctx is None:
        raise RuntimeError("session middleware did not run for this request")
    return ctx


def _require_auth(ctx: RequestContext) -> None:
    if get_runtime().sessions.check(ctx):
        return
    if ctx.expired:
        raise SessionExpiredError("session expired")
    raise AuthenticationError("login required")


async def _require_csrf(request: Request, ctx: RequestContext, field: str) -> None:
    form = await request.form()
    if get_runtime().csrf.validate(ctx, form.get(field)):
        return
    log_security_event(
        "csrf_validation_failed",
        logger,
        ip=ctx.client_address,
        path=request.url.path,
        method=request.method,
    )
    raise CsrfError("invalid csrf token")


def guarded(*guards: Guard) -> Callable[[Request], Awaitable[RequestContext]]:
    """Build a dependency that evaluates ``guards`` in order.

    Returns the request context so handlers can declare it directly.
    """

    async def dependency(request: Request) -> RequestContext:
        ctx = get_request_context(request)
        for guard in guards:
            if isinstance(guard, RequireAuth):
                _require_auth(ctx)
            elif isinstance(guard, RequirePermission):
                _require_auth(ctx)
                if not get_runtime().authz.can(ctx, guard.name):
                    raise ForbiddenError(
                        "permission denied", detail={"permission": guard.name}
                    )
            elif isinstance(guard, RequireCsrf):
                await _require_csrf(request, ctx, guard.field)
            else:
                raise TypeError(f"unsupported guard: {guard!r}")
        return ctx

    return dependency
