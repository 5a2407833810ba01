#!/usr/bin/env python3
"""
Identity Service -- operator command line.

Runs against the same database as the API (DATABASE_URL) for tasks that
must not go through HTTP: bootstrapping the first administrator, reading
account statistics, and ending every session of a compromised account.

Usage:
  python main.py create-admin --email admin@example.com --password 'S3cure!pass'
  python main.py stats
  python main.py revoke-sessions --email alice@example.com

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the account database (default: sqlite:///identity.db)
  SECRET_KEY    Required unless DEBUG=true (shared with the API settings)
"""

from __future__ import annotations

import argparse
import dataclasses
import getpass
import json
import logging
import sys
from typing import Optional

from auth.engine import IdentityEngine
from auth.models import RequestContext
from auth.notifier import build_notifier
from auth.passwords import PasswordHasher
from auth.store import AccountStore
from auth.tokens import TokenService, utcnow
from core.config import Settings, get_settings
from core.errors import ServiceError

logger = logging.getLogger("identity.cli")

_CLI_CONTEXT = RequestContext(ip_address="127.0.0.1", user_agent="identity-cli")


def _build(settings: Settings) -> tuple[AccountStore, IdentityEngine]:
    store = AccountStore(settings.database_url, timeout_seconds=settings.db_timeout_seconds)
    engine = IdentityEngine(
        repository=store,
        tokens=TokenService(settings),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        notifier=build_notifier(settings),
        settings=settings,
    )
    return store, engine


def _create_admin(engine: IdentityEngine, args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Password: ")
    account = engine.bootstrap_admin(args.email, password, context=_CLI_CONTEXT)
    print(f"Administrator created: id={account.id} email={account.email}")
    return 0


def _stats(store: AccountStore) -> int:
    stats = store.get_statistics(utcnow())
    print(json.dumps(dataclasses.asdict(stats), indent=2))
    return 0


def _revoke_sessions(engine: IdentityEngine, args: argparse.Namespace) -> int:
    count = engine.revoke_sessions(args.email, context=_CLI_CONTEXT)
    print(f"Revoked {count} session(s) for {args.email.strip().lower()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="identity-service",
        description="Operator commands for the identity service database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com
  python main.py stats
  python main.py revoke-sessions --email alice@example.com
  DATABASE_URL=sqlite:///prod.db python main.py stats
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-admin", help="Create an active, verified administrator account")
    create.add_argument("--email", required=True, help="Administrator email address")
    create.add_argument(
        "--password",
        default=None,
        help="Administrator password (prompted for when omitted, so it stays out of shell history)",
    )

    sub.add_parser("stats", help="Print account statistics as JSON")

    revoke = sub.add_parser("revoke-sessions", help="Revoke every refresh token of an account")
    revoke.add_argument("--email", required=True, help="Email address of the account")
    return parser


def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    store, engine = _build(settings or get_settings())
    try:
        if args.command == "create-admin":
            return _create_admin(engine, args)
        if args.command == "stats":
            return _stats(store)
        return _revoke_sessions(engine, args)
    except ServiceError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        if isinstance(exc.detail, list):
            for item in exc.detail:
                print(f"      - {item}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
