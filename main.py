#!/usr/bin/env python3
"""
TripDesk -- operator command line.

Usage:
  python main.py create-user --email owner@sunrise-tours.com --role AGENCY --tenant-id 3
  python main.py create-user --email ops@tripdesk.com --role SUPER_ADMIN --name "Ops"
  python main.py purge-tokens

The password for create-user is always prompted (twice), never taken from the
command line where it would land in shell history.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the TripDesk database (default: sqlite:///tripdesk.db)
  SECRET_KEY    Required unless DEBUG=true. Must match the running server so
                reset-token hashes line up.
"""

import argparse
import getpass
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.errors import ValidationError
from auth.models import Role, User
from auth.policy import validate_password
from auth.reset import PasswordResetManager
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.mailer import Mailer


def _prompt_password() -> Optional[str]:
    """Prompt twice and apply the password policy. Returns None on mismatch or violation."""
    password = getpass.getpass("  Password: ")
    confirm = getpass.getpass("  Confirm password: ")
    if password != confirm:
        print("  [!] Passwords do not match.")
        return None
    try:
        validate_password(password)
    except ValidationError as exc:
        print(f"  [!] {exc.message}")
        return None
    return password


def create_user(store: UserStore, email: str, role: str, tenant_id: Optional[int], name: Optional[str]) -> int:
    """Create one account. Returns a process exit code."""
    if role in (Role.AGENCY.value, Role.STAFF.value) and tenant_id is None:
        print(f"  [!] --tenant-id is required for role {role}.")
        return 2
    if tenant_id is not None and store.get_agency(tenant_id) is None:
        print(f"  [!] No agency with id {tenant_id}.")
        return 2

    password = _prompt_password()
    if password is None:
        return 1

    user = User(
        email=email,
        role=role,
        hashed_password=hash_password(password),
        tenant_id=tenant_id,
        display_name=name,
    )
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email '{email}' already exists.")
        return 1
    print(f"  Created {role} user {email} (id {user_id}).")
    return 0


def purge_tokens(store: UserStore) -> int:
    settings = get_settings()
    manager = PasswordResetManager(store, Mailer(settings), settings)
    removed = manager.purge_expired()
    print(f"  Removed {removed} expired reset token(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tripdesk",
        description="TripDesk account administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email owner@sunrise-tours.com --role AGENCY --tenant-id 3 --name "Jo Owner"
  python main.py create-user --email ops@tripdesk.com --role SUPER_ADMIN
  python main.py purge-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create an account (password is prompted)")
    create.add_argument("--email", required=True, help="Login email address")
    create.add_argument(
        "--role",
        required=True,
        choices=[r.value for r in Role],
        metavar="ROLE",
        help="One of: " + ", ".join(r.value for r in Role),
    )
    create.add_argument("--tenant-id", type=int, default=None, help="Agency id (required for AGENCY and STAFF)")
    create.add_argument("--name", default=None, help="Display name")

    sub.add_parser("purge-tokens", help="Delete expired password-reset tokens")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    store = UserStore(get_settings().database_url)
    try:
        if args.command == "create-user":
            return create_user(store, args.email, args.role, args.tenant_id, args.name)
        return purge_tokens(store)
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
