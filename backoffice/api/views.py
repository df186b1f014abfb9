from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from backoffice.api.flash import pop_flashes
from backoffice.service.csrf import SESSION_KEY as CSRF_SESSION_KEY
from backoffice.service.session import RequestContext

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def render(
    request: Request,
    template: str,
    context: Optional[Dict[str, Any]] = None,
    *,
    status_code: int = 200,
) -> HTMLResponse:
    """Render ``template`` with pending flash messages and the session user."""
    ctx: Optional[RequestContext] = getattr(request.state, "auth_ctx", None)
    page: Dict[str, Any] = {
        "flashes": pop_flashes(ctx) if ctx is not None else {},
        "user_name": ctx.get("user_name") if ctx is not None else None,
        "csrf_token": (ctx.get(CSRF_SESSION_KEY) if ctx is not None else None) or "",
    }
    page.update(context or {})
    return templates.TemplateResponse(request, template, page, status_code=status_code)


def redirect(url: str) -> RedirectResponse:
    # 303 so browsers follow a POST with a GET
    return RedirectResponse(url, status_code=303)
