#!/usr/bin/env python3
"""
stocktrack auth -- administrative command line.

Creates the first super_admin of a tenant. Every later account is created
through the API by an admin of that tenant (or by self-registration).

Usage:
  python main.py create-admin --tenant-id 1 --email owner@example.com
  python main.py create-admin --tenant-id 1 --email owner@example.com --first-name Ada --last-name Lovelace

The password is prompted for (twice) unless --password is given. Reads
DATABASE_URL, SECRET_KEY and PASSWORD_HASH_ROUNDS like the API does.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.hashing import hash_secret
from auth.models import Principal, PrincipalStatus, Role
from auth.store import PrincipalStore

_MIN_PASSWORD = 8


def _read_password(given: str | None) -> str:
    if given:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        raise SystemExit("  [!] Passwords do not match.")
    return first


def create_admin(args: argparse.Namespace) -> int:
    password = _read_password(args.password)
    if len(password) < _MIN_PASSWORD:
        print(f"  [!] Password must be at least {_MIN_PASSWORD} characters.")
        return 2

    store = PrincipalStore(args.database_url) if args.database_url else PrincipalStore()
    try:
        if store.email_taken(args.tenant_id, args.email):
            print(f"  [!] {args.email} already exists in tenant {args.tenant_id}.")
            return 1
        principal_id = store.create_principal(
            Principal(
                tenant_id=args.tenant_id,
                email=args.email,
                password_hash=hash_secret(password),
                role=Role.SUPER_ADMIN,
                status=PrincipalStatus.ACTIVE,
                first_name=args.first_name,
                last_name=args.last_name,
            )
        )
    except IntegrityError:
        print(f"  [!] {args.email} already exists in tenant {args.tenant_id}.")
        return 1
    finally:
        store.close()

    print(f"  Created super_admin {args.email} (id {principal_id}) in tenant {args.tenant_id}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="stocktrack auth administration")
    sub = parser.add_subparsers(dest="command", required=True)

    admin = sub.add_parser("create-admin", help="Create the first super_admin of a tenant")
    admin.add_argument("--tenant-id", type=int, required=True)
    admin.add_argument("--email", required=True, type=lambda s: s.strip().lower())
    admin.add_argument("--password", help="Skip the interactive prompt (avoid in shared shells)")
    admin.add_argument("--first-name", default="")
    admin.add_argument("--last-name", default="")
    admin.add_argument("--database-url", help="Override DATABASE_URL")
    admin.set_defaults(func=create_admin)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
