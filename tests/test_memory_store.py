import pytest

from backoffice.storage.errors import ConstraintViolation
from backoffice.storage.models import LoginAttempt


class TestAccounts:
    def test_lookup_by_login_is_exact(self, store):
        account = store.create_account("Alice", "hash")
        assert store.find_account_by_login("Alice").id == account.id
        assert store.find_account_by_login("alice") is None

    def test_soft_deleted_accounts_are_invisible(self, store):
        account = store.create_account("bob", "hash")
        assert store.soft_delete_account(account.id) is True
        assert store.find_account_by_login("bob") is None
        assert store.find_account_by_id(account.id) is None
        assert store.soft_delete_account(account.id) is False

    def test_duplicate_live_login_is_rejected(self, store):
        store.create_account("carol", "hash")
        with pytest.raises(ConstraintViolation):
            store.create_account("carol", "other")

    def test_login_can_be_reused_after_soft_delete(self, store):
        first = store.create_account("dave", "hash")
        store.soft_delete_account(first.id)
        second = store.create_account("dave", "hash2")
        assert second.id != first.id
        assert store.find_account_by_login("dave").id == second.id

    def test_returned_accounts_are_copies(self, store):
        account = store.create_account("erin", "hash")
        fetched = store.find_account_by_id(account.id)
        fetched.is_active = False
        assert store.find_account_by_id(account.id).is_active is True

    def test_role_name_is_joined(self, store):
        role = store.create_role("manager", "Manager")
        account = store.create_account("frank", "hash", role_id=role.id)
        assert store.find_account_by_id(account.id).role_name == "manager"

    def test_unknown_role_is_rejected(self, store):
        with pytest.raises(ConstraintViolation):
            store.create_account("gina", "hash", role_id=999)

    def test_update_last_login(self, store, clock):
        account = store.create_account("hank", "hash")
        store.update_last_login(account.id, clock())
        assert store.find_account_by_id(account.id).last_login == clock()


class TestPermissions:
    def test_only_allowed_live_permissions_are_returned(self, store):
        role = store.create_role("ops")
        granted = store.create_permission("role_view")
        denied = store.create_permission("role_delete")
        retired = store.create_permission("legacy_export")
        store.set_role_permission(role.id, granted.id)
        store.set_role_permission(role.id, denied.id, is_allowed=False)
        store.set_role_permission(role.id, retired.id)
        store.soft_delete_permission(retired.id)

        assert store.get_permission_names_for_role(role.id) == {"role_view"}

    def test_unknown_role_has_no_permissions(self, store):
        assert store.get_permission_names_for_role(42) == set()

    def test_revoke(self, store):
        role = store.create_role("ops")
        perm = store.create_permission("role_view")
        store.set_role_permission(role.id, perm.id)
        store.revoke_role_permission(role.id, perm.id)
        assert store.get_permission_names_for_role(role.id) == set()

    def test_list_roles_sorted_by_display_name(self, store):
        store.create_role("zeta", "Zeta")
        store.create_role("alpha", "Alpha")
        assert [r.name for r in store.list_roles()] == ["alpha", "zeta"]


class TestLoginAttempts:
    def test_save_is_an_upsert_by_address(self, store):
        first = store.save_login_attempt(LoginAttempt(ip="192.0.2.5", attempts=1))
        again = store.save_login_attempt(LoginAttempt(ip="192.0.2.5", attempts=2))
        assert again.id == first.id
        assert store.get_login_attempt("192.0.2.5").attempts == 2

    def test_get_returns_a_copy(self, store):
        store.save_login_attempt(LoginAttempt(ip="192.0.2.5", attempts=1))
        record = store.get_login_attempt("192.0.2.5")
        record.attempts = 99
        assert store.get_login_attempt("192.0.2.5").attempts == 1
