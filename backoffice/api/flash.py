from __future__ import annotations

from typing import Any, Dict

from backoffice.service.session import RequestContext

SUCCESS = "success"
ERROR = "error"
ERROR_PERSISTENT = "error_persistent"
ERROR_RATE_LIMIT = "error_rate_limit"

_KINDS = (SUCCESS, ERROR, ERROR_PERSISTENT, ERROR_RATE_LIMIT)
_SESSION_KEY = "flash"


def flash(ctx: RequestContext, kind: str, message: str) -> None:
    """Queue a one-shot message for the next rendered page.

    ``error_persistent`` accumulates; every other kind keeps the latest message.
    """
    if kind not in _KINDS:
        raise ValueError(f"unknown flash kind: {kind}")
    messages: Dict[str, Any] = dict(ctx.get(_SESSION_KEY) or {})
    if kind == ERROR_PERSISTENT:
        messages[kind] = list(messages.get(kind) or []) + [message]
    else:
        messages[kind] = message
    ctx.set(_SESSION_KEY, messages)


def pop_flashes(ctx: RequestContext) -> Dict[str, Any]:
    return ctx.pop(_SESSION_KEY) or {}
