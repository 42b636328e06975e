#!/usr/bin/env python3
"""
ParkingPilot -- operator command line.

Usage:
  python main.py create-admin --username admin --email admin@vnrvjiet.in
  python main.py create-admin --username admin --email admin@vnrvjiet.in --password 's3cret!'

Self-registration through the API always creates "user" accounts. This is the
only way to create an administrator. When --password is omitted it is read
with getpass so it never lands in shell history.

Environment variables:
  JWT_SECRET    Required (at least 32 characters), as for the API.
  DATABASE_URL  Account database, default sqlite:///parkingpilot.db
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.models import Account
from auth.passwords import MAX_PASSWORD_BYTES, PasswordHasher
from auth.store import AccountStore
from core.config import get_settings
from core.errors import DuplicateAccount
from core.sanitize import sanitize_email, sanitize_text

_MIN_PASSWORD_LENGTH = 6


def _read_password() -> Optional[str]:
    password = getpass.getpass("  Password: ")
    if password != getpass.getpass("  Confirm password: "):
        print("  [!] Passwords do not match.")
        return None
    return password


def create_admin(username: str, email: str, password: str, store: AccountStore) -> int:
    """Create an admin account and return its ID.

    Raises DuplicateAccount if the username or email is taken.
    """
    settings = get_settings()
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    return store.create_account(
        Account(
            username=sanitize_text(username),
            email=sanitize_email(email),
            password_hash=hasher.hash(password),
            role="admin",
        )
    )


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="ParkingPilot operator commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    commands = parser.add_subparsers(dest="command")

    admin = commands.add_parser("create-admin", help="Create an administrator account")
    admin.add_argument("--username", required=True, help="Login name (3-50 characters)")
    admin.add_argument("--email", required=True, help="Email address used to sign in")
    admin.add_argument("--password", help="Password (prompted when omitted)")

    args = parser.parse_args(argv)
    if args.command != "create-admin":
        parser.print_help()
        return 1

    if not 3 <= len(args.username.strip()) <= 50:
        print("  [!] Username must be 3-50 characters.")
        return 1

    password = args.password if args.password is not None else _read_password()
    if password is None:
        return 1
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return 1
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return 1

    store = AccountStore(get_settings().database_url)
    try:
        account_id = create_admin(args.username, args.email, password, store)
    except DuplicateAccount:
        print("  [!] An account with that username or email already exists.")
        return 1
    finally:
        store.close()

    print(f"  Admin account created (id={account_id}).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
