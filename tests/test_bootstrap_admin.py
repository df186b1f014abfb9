import importlib.util
from pathlib import Path

import pytest

from backoffice.service.runtime import get_runtime

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"


@pytest.fixture(scope="module")
def bootstrap():
    spec = importlib.util.spec_from_file_location("bootstrap_admin", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.parametrize(
    "password,ok",
    [
        ("short1!A", False),
        ("alllowercaseletters", False),
        ("lowercase-with-digits-1", True),
        ("Mixed-Case-Password", True),
    ],
)
def test_validate_password(bootstrap, password, ok):
    assert bootstrap.validate_password(password) is ok


def test_creates_superadmin(bootstrap):
    runtime = get_runtime()
    result = bootstrap.bootstrap_superadmin(runtime, "root", "Sup3r-Secret-Pass", name="Ops")

    assert result["status"] == "created"
    account = runtime.store.find_account_by_login("root")
    assert account.is_superadmin is True
    assert account.name == "Ops"
    assert runtime.auth.verify_password(account.password_hash, "Sup3r-Secret-Pass")


def test_promotes_existing_account(bootstrap):
    runtime = get_runtime()
    account = runtime.store.create_account("ops", runtime.auth.hash_password("x"))

    result = bootstrap.bootstrap_superadmin(runtime, "ops", "Sup3r-Secret-Pass")

    assert result == {"account_id": account.id, "login": "ops", "status": "promoted"}
    assert runtime.store.find_account_by_id(account.id).is_superadmin is True


def test_second_run_is_a_no_op(bootstrap):
    runtime = get_runtime()
    bootstrap.bootstrap_superadmin(runtime, "root", "Sup3r-Secret-Pass")
    result = bootstrap.bootstrap_superadmin(runtime, "root", "Sup3r-Secret-Pass")
    assert result["status"] == "already_superadmin"


def test_dry_run_changes_nothing(bootstrap):
    runtime = get_runtime()
    result = bootstrap.bootstrap_superadmin(runtime, "root", "Sup3r-Secret-Pass", dry_run=True)

    assert result["status"] == "dry_run"
    assert runtime.store.find_account_by_login("root") is None
