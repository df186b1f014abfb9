from __future__ import annotations

from typing import Set

from backoffice.logging import get_logger
from backoffice.service.session import CredentialStore, RequestContext, SessionManager

logger = get_logger(__name__)


class PermissionEvaluator:
    """Answers "may the session identity do X" from role grants.

    Nothing is cached between calls so role and flag changes apply on the
    next check.
    """

    def __init__(self, sessions: SessionManager, store: CredentialStore) -> None:
        self.sessions = sessions
        self.store = store

    def can(self, ctx: RequestContext, permission_name: str) -> bool:
        account = self.sessions.current_user(ctx)
        if account is None:
            return False
        if account.is_superadmin:
            return True
        if account.role_id is None:
            logger.debug("permission_denied", user_id=account.id, permission=permission_name, reason="no_role")
            return False
        allowed = permission_name in self.store.get_permission_names_for_role(account.role_id)
        if not allowed:
            logger.debug("permission_denied", user_id=account.id, permission=permission_name, role_id=account.role_id)
        return allowed

    def permission_names(self, ctx: RequestContext) -> Set[str]:
        """All permission names granted to the session identity's role."""
        account = self.sessions.current_user(ctx)
        if account is None or account.role_id is None:
            return set()
        return self.store.get_permission_names_for_role(account.role_id)
