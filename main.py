#!/usr/bin/env python3
"""
KM Portal identity -- administration CLI.

Bootstraps and maintains accounts directly against the credential store,
without going through the HTTP API. Useful for creating the first
administrator and for clearing a lockout when no administrator can log in.

Usage:
  python main.py create-admin alice alice@example.com
  python main.py create-admin alice alice@example.com --full-name "Alice Kim"
  python main.py unlock alice
  python main.py roles

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the identity database (default: local SQLite file)
  SECRET_KEY    Token signing key; required unless DEBUG=true
"""

import argparse
import getpass
from typing import Optional

from auth.results import Failure
from auth.roles import RoleName, RoleResolver
from auth.service import AuthSessionService, build_auth_service
from auth.store import CredentialStore
from auth.validation import RegistrationInput
from core.config import get_settings


def _prompt_password() -> Optional[str]:
    """Prompt twice for a password. Returns None if the two entries differ."""
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def create_admin(service: AuthSessionService, username: str, email: str, full_name: Optional[str]) -> int:
    password = _prompt_password()
    if password is None:
        return 1
    result = service.register(
        RegistrationInput(
            username=username,
            email=email,
            password=password,
            full_name=full_name or username,
            role_name=RoleName.ADMIN.value,
        ),
        self_service=False,
    )
    if isinstance(result, Failure):
        print(f"  [!] {result.message}")
        for err in result.field_errors:
            print(f"      {err.field}: {err.message}")
        return 1
    print(f"  Created administrator {result.identity.username} (id={result.identity_id}).")
    return 0


def unlock(service: AuthSessionService, username: str) -> int:
    identity = service.store.find_by_username(username)
    if identity is None:
        print(f"  [!] No account named '{username}'.")
        return 1
    service.unlock(identity.id)
    print(f"  Unlocked {username}; failed-attempt counter reset.")
    return 0


def list_roles(service: AuthSessionService) -> int:
    print(f"  {'PRIORITY':>8}  {'ROLE':<26} {'SELF':<5} {'ACTIVE':<6} DISPLAY NAME")
    for role in service.store.list_roles():
        self_assignable = "yes" if RoleResolver.is_self_assignable(role.name) else "-"
        active = "yes" if role.is_active else "no"
        print(f"  {role.priority:>8}  {role.name:<26} {self_assignable:<5} {active:<6} {role.display_name}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="kmportal-admin",
        description="Administer KM Portal accounts directly against the identity database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin alice alice@example.com --full-name "Alice Kim"
  python main.py unlock alice
  python main.py roles
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="Override DATABASE_URL for this invocation",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_admin = sub.add_parser("create-admin", help="Create an active account holding ROLE_ADMIN")
    p_admin.add_argument("username")
    p_admin.add_argument("email")
    p_admin.add_argument("--full-name", metavar="NAME", default=None, help="Display name (default: the username)")

    p_unlock = sub.add_parser("unlock", help="Clear a lock and reset the failed-attempt counter")
    p_unlock.add_argument("username")

    sub.add_parser("roles", help="List the role catalog in priority order")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    settings = get_settings()
    store = CredentialStore(db_url=args.database_url or settings.database_url)
    try:
        service = build_auth_service(store, settings)
        if args.command == "create-admin":
            return create_admin(service, args.username, args.email, args.full_name)
        if args.command == "unlock":
            return unlock(service, args.username)
        return list_roles(service)
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
