from __future__ import annotations

import hmac
import secrets
from typing import Any

from backoffice.service.session import RequestContext

SESSION_KEY = "csrf_token"
# 32 random bytes, hex encoded
TOKEN_BYTES = 32


class CsrfGuard:
    """Session-scoped synchronizer token; not rotated after validation."""

    def generate(self, ctx: RequestContext) -> str:
        token = ctx.get(SESSION_KEY)
        if not token:
            token = secrets.token_hex(TOKEN_BYTES)
            ctx.set(SESSION_KEY, token)
        return token

    def token(self, ctx: RequestContext) -> str:
        return ctx.get(SESSION_KEY) or ""

    def validate(self, ctx: RequestContext, supplied: Any) -> bool:
        stored = ctx.get(SESSION_KEY)
        if not stored or not isinstance(supplied, str) or not supplied:
            return False
        # surrogatepass: form input may carry lone surrogates
        return hmac.compare_digest(
            stored.encode("utf-8"), supplied.encode("utf-8", errors="surrogatepass")
        )
