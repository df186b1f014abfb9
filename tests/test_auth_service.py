"""Unit tests for AuthService.attempt and the superadmin IP policy."""

import pytest

from backoffice.service.auth import AuthService, LoginFailure, SuperadminIpPolicy

TEST_PASSWORD = "Correct-Horse-42"


class TestPasswordHashing:
    def test_hash_is_argon2id_and_salted(self, auth):
        first = auth.hash_password("Secret-123")
        second = auth.hash_password("Secret-123")
        assert first.startswith("$argon2id$")
        assert first != second
        assert auth.verify_password(first, "Secret-123") is True
        assert auth.verify_password(first, "secret-123") is False

    def test_garbage_hash_does_not_raise(self, auth):
        assert auth.verify_password("not-a-hash", "anything") is False

    def test_missing_hash_never_verifies(self, auth):
        assert auth.verify_password(None, "anything") is False
        assert auth.verify_password("", "") is False


class TestAttempt:
    def test_success_establishes_session_and_clears_counter(
        self, auth, ctx, active_account, limiter_factory, store
    ):
        limiter_factory().log_attempt(ctx.client_address, "alice")
        result = auth.attempt(ctx, "alice", TEST_PASSWORD, limiter_factory(ctx))

        assert result.ok is True
        assert result.reason is None
        assert result.account.id == active_account.id
        assert ctx.get("user_id") == active_account.id
        assert store.get_login_attempt(ctx.client_address).attempts == 0
        assert limiter_factory().is_blocked(ctx.client_address) is False

    def test_unknown_login_and_wrong_password_are_indistinguishable(
        self, auth, ctx, active_account, limiter_factory
    ):
        missing = auth.attempt(ctx, "doesNotExist", "x", limiter_factory(ctx))
        wrong = auth.attempt(ctx, "alice", "wrongPassword", limiter_factory(ctx))

        assert missing.ok is False and wrong.ok is False
        assert missing.reason is wrong.reason is LoginFailure.INVALID_CREDENTIALS
        assert missing.account is None and wrong.account is None

    def test_inactive_account_is_rejected(self, auth, ctx, store, active_account, limiter_factory):
        store.set_account_active(active_account.id, False)
        result = auth.attempt(ctx, "alice", TEST_PASSWORD, limiter_factory(ctx))
        assert result.reason is LoginFailure.ACCOUNT_DISABLED
        assert "user_id" not in ctx.data

    def test_legacy_bcrypt_hash_is_refused_and_left_alone(
        self, auth, ctx, store, limiter_factory
    ):
        legacy = "$2y$10$abcdefghijklmnopqrstuuQ0l7v0cZP5a8x7H2mLq0nYb1Tt6YkKa"
        account = store.create_account("legacy", legacy)

        result = auth.attempt(ctx, "legacy", TEST_PASSWORD, limiter_factory(ctx))

        assert result.reason is LoginFailure.INVALID_CREDENTIALS
        assert store.find_account_by_id(account.id).password_hash == legacy
        assert "user_id" not in ctx.data

    def test_soft_deleted_account_looks_missing(self, auth, ctx, store, active_account, limiter_factory):
        store.soft_delete_account(active_account.id)
        result = auth.attempt(ctx, "alice", TEST_PASSWORD, limiter_factory(ctx))
        assert result.reason is LoginFailure.INVALID_CREDENTIALS

    def test_blocked_address_short_circuits(self, auth, ctx, active_account, limiter_factory, store):
        for _ in range(3):
            limiter_factory().log_attempt(ctx.client_address, "alice")
        result = auth.attempt(ctx, "alice", TEST_PASSWORD, limiter_factory(ctx))

        assert result.reason is LoginFailure.RATE_LIMITED
        assert "user_id" not in ctx.data
        # Gate rejections are not counted again
        assert store.get_login_attempt(ctx.client_address).attempts == 3

    def test_attempt_does_not_log_failures_itself(self, auth, ctx, active_account, limiter_factory):
        auth.attempt(ctx, "alice", "nope", limiter_factory(ctx))
        assert limiter_factory().get_attempts(ctx.client_address) == 0

    def test_successful_login_after_failures_resets_state(
        self, auth, ctx, active_account, limiter_factory
    ):
        for _ in range(2):
            limiter_factory().log_attempt(ctx.client_address, "alice")
        assert auth.attempt(ctx, "alice", TEST_PASSWORD, limiter_factory(ctx)).ok
        limiter = limiter_factory()
        assert limiter.is_blocked(ctx.client_address) is False
        assert limiter.get_attempts(ctx.client_address) == 0


class TestSuperadminIpGate:
    @pytest.fixture
    def superadmin(self, store, hasher):
        return store.create_account("root", hasher.hash(TEST_PASSWORD), is_superadmin=True)

    def test_empty_allow_list_permits_everyone(self, auth, ctx, superadmin, limiter_factory):
        result = auth.attempt(ctx, "root", TEST_PASSWORD, limiter_factory(ctx))
        assert result.ok
        assert ctx.get("is_superadmin") is True

    def test_address_outside_allow_list_is_rejected(
        self, store, sessions, hasher, ctx, superadmin, limiter_factory
    ):
        service = AuthService(
            store, sessions, ip_policy=SuperadminIpPolicy(["10.0.0.0/8"]), hasher=hasher
        )
        result = service.attempt(ctx, "root", TEST_PASSWORD, limiter_factory(ctx))
        assert result.reason is LoginFailure.IP_NOT_ALLOWED
        assert "user_id" not in ctx.data

    def test_gate_only_applies_to_superadmins(
        self, store, sessions, hasher, ctx, active_account, limiter_factory
    ):
        service = AuthService(
            store, sessions, ip_policy=SuperadminIpPolicy(["10.0.0.0/8"]), hasher=hasher
        )
        assert service.attempt(ctx, "alice", TEST_PASSWORD, limiter_factory(ctx)).ok


class TestSuperadminIpPolicy:
    def test_matches_single_addresses_and_networks(self, active_account):
        policy = SuperadminIpPolicy(["192.0.2.1", "10.1.0.0/16", "2001:db8::/32"])
        assert policy.is_allowed(active_account, "192.0.2.1")
        assert policy.is_allowed(active_account, "10.1.200.3")
        assert policy.is_allowed(active_account, "2001:db8::5")
        assert not policy.is_allowed(active_account, "192.0.2.2")

    def test_unparseable_client_address_is_denied(self, active_account):
        policy = SuperadminIpPolicy(["192.0.2.1"])
        assert policy.is_allowed(active_account, "testclient") is False

    def test_invalid_entry_is_a_configuration_error(self):
        with pytest.raises(ValueError):
            SuperadminIpPolicy(["not-an-ip"])
