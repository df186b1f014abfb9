from __future__ import annotations

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import Response

from backoffice.api import flash as flashes
from backoffice.api.guards import (
    RequireAuth,
    RequireCsrf,
    RequirePermission,
    get_request_context,
    guarded,
)
from backoffice.api.views import redirect, render
from backoffice.logging import get_logger, log_security_event
from backoffice.service.auth import LoginFailure
from backoffice.service.errors import AuthenticationError
from backoffice.service.runtime import get_runtime
from backoffice.service.session import RequestContext
from backoffice.storage.models import Account

logger = get_logger(__name__)

router = APIRouter()

# Generic on purpose for the credential cases; the login must not be enumerable
FAILURE_MESSAGES = {
    LoginFailure.RATE_LIMITED: "Too many failed attempts.",
    LoginFailure.INVALID_CREDENTIALS: "Invalid login or password.",
    LoginFailure.ACCOUNT_DISABLED: "Account disabled.",
    LoginFailure.IP_NOT_ALLOWED: "Access from this IP address is not allowed.",
}
REQUIRED_FIELDS_MESSAGE = "Login and password are required."
CSRF_FAILED_MESSAGE = "Invalid CSRF token."
LOGIN_SUCCESS_MESSAGE = "You have logged in successfully."
LOGOUT_MESSAGE = "You have been logged out."

_LAST_LOGIN_KEY = "last_login_attempt"


def _current_account(ctx: RequestContext) -> Account:
    runtime = get_runtime()
    account = runtime.sessions.current_user(ctx)
    if account is None:
        # Bound account was deleted since login
        runtime.sessions.terminate(ctx)
        raise AuthenticationError("account no longer available")
    return account


@router.get("/")
async def index(ctx: RequestContext = Depends(get_request_context)) -> Response:
    if get_runtime().sessions.check(ctx):
        return redirect("/admin")
    return redirect("/login")


@router.get("/login")
async def show_login(request: Request, ctx: RequestContext = Depends(get_request_context)):
    runtime = get_runtime()
    if runtime.sessions.check(ctx):
        return redirect("/admin")

    csrf_token = runtime.csrf.generate(ctx)
    limiter = runtime.rate_limiter(ctx)
    blocked_until = limiter.get_blocked_until(ctx.client_address)
    return render(
        request,
        "auth/login.html",
        {
            "csrf_token": csrf_token,
            "login": ctx.get(_LAST_LOGIN_KEY) or "",
            "is_blocked": blocked_until is not None,
            "blocked_until": int(blocked_until.timestamp()) if blocked_until else None,
        },
    )


@router.post("/login")
async def login(
    request: Request,
    login: str = Form(""),
    password: str = Form(""),
    csrf_token: str = Form(""),
    ctx: RequestContext = Depends(get_request_context),
) -> Response:
    runtime = get_runtime()
    if not runtime.csrf.validate(ctx, csrf_token):
        log_security_event(
            "csrf_validation_failed",
            logger,
            ip=ctx.client_address,
            path=request.url.path,
            method=request.method,
        )
        flashes.flash(ctx, flashes.ERROR_PERSISTENT, CSRF_FAILED_MESSAGE)
        return redirect("/login")

    login = login.strip()
    ctx.set(_LAST_LOGIN_KEY, login)

    if not login or not password:
        flashes.flash(ctx, flashes.ERROR_PERSISTENT, REQUIRED_FIELDS_MESSAGE)
        return redirect("/login")

    limiter = runtime.rate_limiter(ctx)
    ip = ctx.client_address
    if limiter.is_blocked(ip):
        log_security_event("login_rate_limited", logger, ip=ip, login=login)
        flashes.flash(
            ctx, flashes.ERROR_RATE_LIMIT, FAILURE_MESSAGES[LoginFailure.RATE_LIMITED]
        )
        return redirect("/login")

    result = runtime.auth.attempt(ctx, login, password, limiter)
    if result.ok:
        ctx.pop(_LAST_LOGIN_KEY)
        flashes.flash(ctx, flashes.SUCCESS, LOGIN_SUCCESS_MESSAGE)
        return redirect("/admin")

    if result.reason is not LoginFailure.RATE_LIMITED:
        limiter.log_attempt(ip, login)
    if result.reason is LoginFailure.RATE_LIMITED or limiter.is_blocked(ip):
        # This failure may itself have tipped the address into a block
        flashes.flash(
            ctx, flashes.ERROR_RATE_LIMIT, FAILURE_MESSAGES[LoginFailure.RATE_LIMITED]
        )
    else:
        flashes.flash(ctx, flashes.ERROR_PERSISTENT, FAILURE_MESSAGES[result.reason])
    return redirect("/login")


@router.post("/logout")
async def logout(
    ctx: RequestContext = Depends(guarded(RequireAuth(), RequireCsrf())),
) -> Response:
    runtime = get_runtime()
    user_id = ctx.get("user_id")
    runtime.sessions.terminate(ctx)
    log_security_event("logout", logger, ip=ctx.client_address, user_id=user_id)
    # Terminate left no session; the flash starts a fresh one
    flashes.flash(ctx, flashes.SUCCESS, LOGOUT_MESSAGE)
    return redirect("/login")


@router.get("/admin")
async def dashboard(
    request: Request,
    ctx: RequestContext = Depends(guarded(RequireAuth())),
):
    runtime = get_runtime()
    account = _current_account(ctx)
    return render(
        request,
        "admin/dashboard.html",
        {
            "account": account,
            "csrf_token": runtime.csrf.generate(ctx),
        },
    )


@router.get("/admin/access")
async def access(
    request: Request,
    ctx: RequestContext = Depends(guarded(RequireAuth())),
):
    runtime = get_runtime()
    account = _current_account(ctx)
    return render(
        request,
        "admin/access.html",
        {
            "account": account,
            "permissions": sorted(runtime.authz.permission_names(ctx)),
            "csrf_token": runtime.csrf.generate(ctx),
        },
    )


@router.get("/admin/roles")
async def roles(
    request: Request,
    ctx: RequestContext = Depends(guarded(RequireAuth(), RequirePermission("role_view"))),
):
    runtime = get_runtime()
    return render(
        request,
        "admin/roles.html",
        {
            "roles": runtime.store.list_roles(),
            "csrf_token": runtime.csrf.generate(ctx),
        },
    )
