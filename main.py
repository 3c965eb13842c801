#!/usr/bin/env python3
"""
SchoolGate -- admin command line for the account store.

Usage:
  python main.py seed-superadmin --username admin --email admin@example.com --password SecurePass123
  python main.py unlock admin
  python main.py unlock admin@example.com --database-url sqlite:///schoolgate_auth.db

Environment variables:
  SUPERADMIN_USERNAME   Default for --username (falls back to "superadmin")
  SUPERADMIN_EMAIL      Default for --email
  SUPERADMIN_PASSWORD   Default for --password
  DATABASE_URL          Account store location when --database-url is omitted
"""

import argparse
import os
import sys
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.lockout import LoginGuard
from auth.models import ROLE_SUPERADMIN, Account
from auth.store import AccountStore
from auth.tokens import hash_password
from core.config import get_settings

MIN_SEED_PASSWORD_LENGTH = 8


def seed_superadmin(store: AccountStore, username: str, email: Optional[str], password: Optional[str]) -> int:
    """Create the seeded superadmin account. Returns a process exit code.

    Seeded accounts cannot change their password through the API; rotate it
    by re-seeding against a fresh store instead.
    """
    if not email:
        print("  [!] Email is required. Use --email <email> or set SUPERADMIN_EMAIL.", file=sys.stderr)
        return 1
    if not password:
        print("  [!] Password is required. Use --password <password> or set SUPERADMIN_PASSWORD.", file=sys.stderr)
        return 1
    if len(password) < MIN_SEED_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {MIN_SEED_PASSWORD_LENGTH} characters long.", file=sys.stderr)
        return 1

    existing = store.exists(username, email)
    if existing is not None:
        if existing.username == username:
            print(f'  [!] User with username "{username}" already exists.', file=sys.stderr)
        else:
            print(f'  [!] User with email "{email}" already exists.', file=sys.stderr)
        return 1

    account = Account(
        username=username,
        email=email,
        role=ROLE_SUPERADMIN,
        hashed_password=hash_password(password),
        is_seeded=True,
    )
    try:
        account.id = store.create_account(account)
    except IntegrityError:
        print("  [!] Username or email already exists.", file=sys.stderr)
        return 1

    print("\nSuperadmin created")
    print("─" * 40)
    print(f"  ID:       {account.id}")
    print(f"  Username: {account.username}")
    print(f"  Email:    {account.email}")
    print(f"  Role:     {account.role}\n")
    return 0


def unlock_account(store: AccountStore, guard: LoginGuard, identifier: str) -> int:
    """Clear the failed-attempt counter and lockout of one account."""
    account = store.find_by_login(identifier)
    if account is None:
        print(f"  [!] No account matches '{identifier}'.", file=sys.stderr)
        return 1
    guard.record_success(account)
    print(f"  Account {account.username} unlocked.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="schoolgate",
        description="Account administration for the SchoolGate auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed-superadmin --email admin@example.com --password SecurePass123
  SUPERADMIN_EMAIL=admin@example.com SUPERADMIN_PASSWORD=SecurePass123 python main.py seed-superadmin
  python main.py unlock principal_jane
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy URL of the account store (default: DATABASE_URL setting)",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    seed = commands.add_parser("seed-superadmin", help="Create the seeded superadmin account")
    seed.add_argument("--username", default=os.environ.get("SUPERADMIN_USERNAME") or "superadmin")
    seed.add_argument("--email", default=os.environ.get("SUPERADMIN_EMAIL"))
    seed.add_argument("--password", default=os.environ.get("SUPERADMIN_PASSWORD"))

    unlock = commands.add_parser("unlock", help="Reset the lockout state of an account")
    unlock.add_argument("identifier", metavar="USERNAME_OR_EMAIL")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    store = AccountStore(args.database_url or settings.database_url)
    try:
        if args.command == "seed-superadmin":
            return seed_superadmin(store, args.username, args.email, args.password)
        guard = LoginGuard(
            store,
            threshold=settings.max_login_attempts,
            lockout_duration=timedelta(milliseconds=settings.lockout_duration_ms),
        )
        return unlock_account(store, guard, args.identifier)
    except SQLAlchemyError as e:
        print(f"  [!] Account store error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
