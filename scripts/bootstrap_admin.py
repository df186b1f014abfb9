#!/usr/bin/env python3
"""Create a superadmin back-office account, or promote an existing one.

Usage:
    # Using environment variables:
    ADMIN_LOGIN=root ADMIN_PASSWORD='SecurePassword123!' python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --login root --password 'SecurePassword123!' --name "Ops"

Environment Variables:
    ADMIN_LOGIN: Login name for the superadmin
    ADMIN_PASSWORD: Password (must meet complexity requirements)
    DATABASE_URL: PostgreSQL connection string (memory store is used if not set)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports when run from a checkout
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


def bootstrap_superadmin(
    runtime, login: str, password: str, name: str = "", dry_run: bool = False
) -> dict:
    """Create or promote a superadmin.

    Returns:
        dict with account_id, login, and status
        ('created', 'promoted', 'already_superadmin' or 'dry_run')
    """
    existing = runtime.store.find_account_by_login(login)

    if existing:
        if existing.is_superadmin:
            print(f"Account {login} is already a superadmin (id: {existing.id})")
            return {"account_id": existing.id, "login": login, "status": "already_superadmin"}

        if dry_run:
            print(f"[DRY RUN] Would promote existing account {login} to superadmin")
            return {"account_id": existing.id, "login": login, "status": "dry_run"}

        runtime.store.set_superadmin(existing.id, True)
        print(f"Promoted existing account {login} to superadmin (id: {existing.id})")
        return {"account_id": existing.id, "login": login, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create superadmin account: {login}")
        return {"account_id": None, "login": login, "status": "dry_run"}

    account = runtime.store.create_account(
        login,
        runtime.auth.hash_password(password),
        name=name,
        is_superadmin=True,
    )
    print(f"Created superadmin account: {login} (id: {account.id})")
    return {"account_id": account.id, "login": login, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap a superadmin back-office account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--login",
        default=os.environ.get("ADMIN_LOGIN"),
        help="Superadmin login (or set ADMIN_LOGIN env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Superadmin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument("--name", default="", help="Display name")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.login or not args.login.strip():
        print("Error: --login or ADMIN_LOGIN environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    if not validate_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    # Import here to avoid loading config before env vars are set
    from backoffice.service.runtime import Runtime

    try:
        result = bootstrap_superadmin(
            Runtime(), args.login.strip(), args.password, args.name, args.dry_run
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nSuperadmin created successfully!")
        print(f"  Login: {result['login']}")
        print(f"  Account ID: {result['account_id']}")
    elif result["status"] == "promoted":
        print("\nExisting account promoted to superadmin!")
    elif result["status"] == "already_superadmin":
        print("\nNo changes needed - account is already a superadmin.")


if __name__ == "__main__":
    main()
