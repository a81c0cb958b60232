#!/usr/bin/env python3
"""
Passport -- administration command line.

Usage:
  python main.py create-user --username admin --name "Site Admin" --email admin@example.com
  python main.py create-user --username ops1 --name "Ops" --email ops@example.com --role ops --profile Operators
  python main.py generate-password
  python main.py generate-password --length 20

create-user bootstraps an account directly against the configured database,
which is how the first administrator is created. The role and profile are
created when missing. The generated password is printed once and is also
handed to the configured notifier.

Environment variables:
  DATABASE_URL, PASSWORD_SALT, DEBUG and the rest of core/config.py apply.
"""

import argparse
import sys
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from admin.services import AdminService
from auth.errors import PassportError
from auth.mailer import ResetPasswordRequested, UserCreated, build_notifier
from auth.passwords import PasswordEncoder, PasswordGenerator
from auth.store import UserStore
from core.config import get_settings


class _CapturingNotifier:
    """Forward events to the configured notifier and keep the last UserCreated."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.created: Optional[UserCreated] = None

    def reset_password_requested(self, event: ResetPasswordRequested) -> None:
        self.inner.reset_password_requested(event)

    def user_created(self, event: UserCreated) -> None:
        self.created = event
        self.inner.user_created(event)


def _create_user(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = UserStore(settings.database_url)
    notifier = _CapturingNotifier(build_notifier(settings))
    admin = AdminService(
        store,
        PasswordEncoder.from_settings(settings),
        PasswordGenerator(settings.password_generator_length),
        notifier,
    )
    try:
        profile = admin.ensure_admin_profile(args.role, profile_name=args.profile)
        user = admin.create_user(args.username, args.name, args.email, [profile.id])
    except PassportError as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        return 1
    except SQLAlchemyError as exc:
        print(f"  [!] Database error: {exc}", file=sys.stderr)
        return 1
    finally:
        close = getattr(notifier.inner, "close", None)
        if close is not None:
            close()
        store.close()

    print(f"\nUser '{user.username}' created (id={user.id}) with profile '{profile.name}' granting '{args.role}'.")
    if notifier.created is not None:
        print(f"Generated password: {notifier.created.password}")
        print("It will not be shown again.")
    return 0


def _generate_password(args: argparse.Namespace) -> int:
    length = args.length or get_settings().password_generator_length
    try:
        generator = PasswordGenerator(length)
    except ValueError as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        return 1
    print(generator.generate())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="passport",
        description="Passport administration commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --username admin --name "Site Admin" --email admin@example.com
  python main.py generate-password --length 16
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a user with a generated password")
    create.add_argument("--username", required=True, help="Login name, 4-15 characters")
    create.add_argument("--name", required=True, help="Display name")
    create.add_argument("--email", required=True, help="E-mail address used to log in")
    create.add_argument(
        "--role",
        default=None,
        metavar="ROLE",
        help="Role granted through the profile (default: ADMIN_ROLE setting)",
    )
    create.add_argument(
        "--profile",
        default="Administrators",
        metavar="PROFILE",
        help="Profile to attach; created with ROLE if missing (default: Administrators)",
    )
    create.set_defaults(handler=_create_user)

    gen = sub.add_parser("generate-password", help="Print one generated password")
    gen.add_argument(
        "--length",
        type=int,
        default=None,
        help="Password length, at least 4 (default: PASSWORD_GENERATOR_LENGTH setting)",
    )
    gen.set_defaults(handler=_generate_password)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 0
    if args.command == "create-user":
        if not 4 <= len(args.username) <= 15:
            print("  [!] --username must be 4-15 characters.", file=sys.stderr)
            return 1
        if args.role is None:
            args.role = get_settings().admin_role
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
