#!/usr/bin/env python3
"""
Assetra auth -- operator commands for the user store.

Roles can only be changed here; the HTTP API never grants them.

Usage:
  python main.py create-user "Ann Lee" ann@example.com 'Str0ng!Pass'
  python main.py create-user "Root Admin" root@example.com 'Str0ng!Pass' --role admin
  python main.py grant-role ann@example.com admin
  python main.py revoke-role ann@example.com admin
  python main.py unlock ann@example.com

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default: sqlite file in the repo root)
  BCRYPT_ROUNDS  bcrypt cost factor for create-user (default: 12)
"""

import argparse
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import ValidationError
from auth.models import SignUpCandidate, User
from auth.passwords import PasswordHasher
from auth.store import UserRepository, UserStore, make_engine
from auth.validators import normalize_email, sanitize_name, validate_sign_up
from core.config import get_settings

logger = logging.getLogger("assetra.cli")


def create_user(
    users: UserRepository,
    hasher: PasswordHasher,
    name: str,
    email: str,
    password: str,
    roles: list[str],
) -> int:
    email = normalize_email(email)
    try:
        validate_sign_up(SignUpCandidate(name=name, email=email, password=password))
    except ValidationError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1

    user = User(
        username=sanitize_name(name),
        email=email,
        hashed_password=hasher.hash(password),
        roles=list(dict.fromkeys(["user", *roles])),
    )
    try:
        user = users.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email '{email}' or name '{user.username}' already exists.", file=sys.stderr)
        return 1

    logger.info("Created user %s (id=%s) roles=%s", email, user.id, user.roles)
    print(f"Created user '{user.username}' <{email}> with roles {', '.join(user.roles)}.")
    return 0


def _load(users: UserRepository, email: str) -> Optional[User]:
    user = users.get_by_email(normalize_email(email))
    if user is None:
        print(f"  [!] No user with email '{email}'.", file=sys.stderr)
    return user


def grant_role(users: UserRepository, email: str, role: str) -> int:
    user = _load(users, email)
    if user is None:
        return 1
    if role in user.roles:
        print(f"'{user.email}' already has role '{role}'.")
        return 0
    users.set_roles(user.id or "", user.roles + [role])
    logger.info("Granted role %s to %s", role, user.email)
    print(f"Granted '{role}' to '{user.email}'.")
    return 0


def revoke_role(users: UserRepository, email: str, role: str) -> int:
    user = _load(users, email)
    if user is None:
        return 1
    if role == "user":
        print("  [!] The 'user' role cannot be revoked.", file=sys.stderr)
        return 1
    if role not in user.roles:
        print(f"'{user.email}' does not have role '{role}'.")
        return 0
    users.set_roles(user.id or "", [r for r in user.roles if r != role])
    logger.info("Revoked role %s from %s", role, user.email)
    print(f"Revoked '{role}' from '{user.email}'.")
    return 0


def unlock(users: UserRepository, email: str) -> int:
    user = _load(users, email)
    if user is None:
        return 1
    users.reset_failed_login_attempts(user.email)
    logger.info("Cleared lockout for %s", user.email)
    print(f"Unlocked '{user.email}'.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assetra-auth",
        description="Operator commands for the Assetra user store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-user", help="Create a user (e.g. the first admin)")
    p.add_argument("name", help="Display name / username (2-50 chars)")
    p.add_argument("email", help="Email address")
    p.add_argument("password", help="Password (8-128 chars, mixed case, digit, symbol)")
    p.add_argument(
        "--role",
        action="append",
        default=[],
        metavar="ROLE",
        help="Extra role to grant; repeatable. 'user' is always present.",
    )

    for name, help_text in (("grant-role", "Add a role to a user"), ("revoke-role", "Remove a role from a user")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("email")
        p.add_argument("role")

    p = sub.add_parser("unlock", help="Clear failed sign-in attempts and any lockout")
    p.add_argument("email")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    args = build_parser().parse_args(argv)
    settings = get_settings()

    engine = make_engine(settings.database_url, settings.db_statement_timeout_seconds)
    users = UserStore(engine)
    try:
        if args.command == "create-user":
            hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
            return create_user(users, hasher, args.name, args.email, args.password, args.role)
        if args.command == "grant-role":
            return grant_role(users, args.email, args.role)
        if args.command == "revoke-role":
            return revoke_role(users, args.email, args.role)
        return unlock(users, args.email)
    except SQLAlchemyError:
        logger.exception("Database error running %s", args.command)
        print("  [!] Database error; see log for details.", file=sys.stderr)
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
