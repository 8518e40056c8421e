#!/usr/bin/env python3
"""
SecureWatch -- administration CLI.

Usage:
  python main.py init-db
  python main.py create-admin --email admin@example.com --name "Site Admin"
  python main.py create-admin --email admin@example.com --name "Site Admin" --password '...'

The API itself is served with:  uvicorn asgi:app

Environment variables (see core/config.py):
  DATABASE_URL   SQLAlchemy URL. Default: sqlite:///securewatch.db
  SECRET_KEY     Required unless DEBUG=true.
"""

import argparse
import getpass
import sys

from auth.models import User
from auth.passwords import hash_password
from auth.service import AuthFailure, check_new_password
from auth.store import UserStore, normalize_email
from core.config import get_settings
from core.database import create_schema, make_engine


def _init_db(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = make_engine(settings.database_url)
    create_schema(engine)
    engine.dispose()
    print(f"Schema ready at {settings.database_url}")
    return 0


def _read_password() -> str:
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return ""
    return first


def _create_admin(args: argparse.Namespace) -> int:
    """Create an admin account, or promote and re-activate an existing one."""
    email = normalize_email(args.email)
    name = args.name.strip()
    if not email or not name:
        print("  [!] --email and --name must not be empty.")
        return 2

    password = args.password if args.password is not None else _read_password()
    try:
        check_new_password(password)
    except AuthFailure as exc:
        print(f"  [!] {exc.message}")
        return 2

    store = UserStore(make_engine(get_settings().database_url))
    try:
        existing = store.get_by_email(email)
        if existing is None:
            user_id = store.create_user(
                User(email=email, name=name, role="admin", password_hash=hash_password(password))
            )
            print(f"Created admin {email} (id={user_id}).")
        else:
            store.update_user(
                existing.id,
                name=name,
                role="admin",
                is_active=True,
                password_hash=hash_password(password),
            )
            print(f"Updated {email} (id={existing.id}): admin role, active, new password.")
    finally:
        store.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="securewatch",
        description="SecureWatch administration commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    init_db = commands.add_parser("init-db", help="Create every table that does not exist yet.")
    init_db.set_defaults(handler=_init_db)

    create_admin = commands.add_parser("create-admin", help="Create or re-activate an admin account.")
    create_admin.add_argument("--email", required=True, help="Login email (stored lower-cased).")
    create_admin.add_argument("--name", required=True, help="Display name.")
    create_admin.add_argument(
        "--password",
        default=None,
        help="Account password. Prompted for when omitted (preferred: keeps it out of shell history).",
    )
    create_admin.set_defaults(handler=_create_admin)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
