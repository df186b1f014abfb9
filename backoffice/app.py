from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI, Request

from backoffice.api.error_handling import register_exception_handlers
from backoffice.api.routes import router
from backoffice.logging import get_logger, set_correlation_id
from backoffice.service.runtime import get_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release its connections on shutdown."""
    get_runtime()
    yield
    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Back-office", version=__version__, lifespan=lifespan)


# Registered first so it runs innermost, after correlation id and headers
@app.middleware("http")
async def bind_session(request: Request, call_next):
    """Open the session before the handler and commit it afterwards."""
    sessions = get_runtime().sessions
    cookie_name = sessions.settings.session_cookie_name
    client_address = request.client.host if request.client else "unknown"
    ctx = await sessions.open(request.cookies.get(cookie_name), client_address)
    request.state.auth_ctx = ctx
    response = await call_next(request)
    await sessions.commit(ctx, response)
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Pages carry per-user data and CSRF tokens
    response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    response.headers.setdefault(
        "Content-Security-Policy",
        "default-src 'self'; style-src 'self' 'unsafe-inline'; script-src 'self' 'unsafe-inline'; "
        "frame-ancestors 'none'; base-uri 'self'; form-action 'self'",
    )
    return response


@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    """Tag each request with an X-Request-ID, reusing the client's if provided."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}

    async def _run_bounded(label: str, func) -> bool:
        try:
            await asyncio.wait_for(asyncio.to_thread(func), HEALTH_CHECK_TIMEOUT_SECONDS)
            return True
        except asyncio.TimeoutError:
            logger.error(
                "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except Exception as exc:
            logger.error(f"health_check_{label}_failed", error=str(exc))
        return False

    db_ok = await _run_bounded("database", runtime.store.verify_connection)
    checks["database"] = {
        "status": "healthy" if db_ok else "unhealthy",
        "type": "memory" if runtime.settings.use_memory_store else "postgres",
    }
    verify_sessions = getattr(runtime.session_store, "verify_connection", None)
    if verify_sessions is not None:
        sessions_ok = await _run_bounded("session_store", verify_sessions)
    else:
        sessions_ok = True
    checks["session_store"] = {
        "status": "healthy" if sessions_ok else "unhealthy",
        "backend": runtime.settings.session_backend.value,
    }

    return {
        "status": "healthy" if db_ok and sessions_ok else "unhealthy",
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def create_app() -> FastAPI:
    return app
