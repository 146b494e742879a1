#!/usr/bin/env python3
"""
authcore -- operator command line.

Usage:
  python main.py bootstrap
  python main.py create-user --name "Ops Admin" --email ops@example.com --role super_admin
  python main.py create-user --name Alice --email alice@example.com --verified
  python main.py serve --host 0.0.0.0 --port 8000

Environment variables (see core/config.py for the full list):
  DATABASE_URL   SQLAlchemy URL of the user directory (default: sqlite:///authcore.db)
  SECRET_KEY     Signing key, 32+ characters. Required unless DEBUG=true.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.errors import AuthError
from auth.passwords import PasswordHasher
from auth.registry import RoleName, bootstrap, roles
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

logger = logging.getLogger("authcore.cli")


def _open_store() -> UserStore:
    store = UserStore(db_url=get_settings().database_url)
    bootstrap(store)
    return store


def cmd_bootstrap(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        for role in store.list_roles():
            print(f"  {role.name:<14} rank {role.rank}")
    finally:
        store.close()
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    settings = get_settings()
    password: Optional[str] = args.password
    if password is None:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Confirm password: "):
            print("  [!] Passwords do not match.", file=sys.stderr)
            return 1

    store = _open_store()
    try:
        service = AuthService(store, TokenCodec(settings.secret_key), PasswordHasher(rounds=settings.bcrypt_rounds))
        user = service.register_local_user(args.name, args.email, password, role=args.role)
        if args.verified:
            store.activate(user.id)
    except AuthError as exc:
        print(f"  [!] {exc.message} ({exc.error_code})", file=sys.stderr)
        return 1
    finally:
        store.close()

    print(f"  Created user id={user.id} role={user.role.name} verified={args.verified}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authcore",
        description="Identity and access management core: operator commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py bootstrap
  python main.py create-user --name "Ops Admin" --email ops@example.com --role super_admin --verified
  DEBUG=true python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("bootstrap", help="Create the built-in roles and platforms (idempotent)")

    create = sub.add_parser("create-user", help="Create a local (Self platform) account")
    create.add_argument("--name", required=True, help="Display name")
    create.add_argument("--email", required=True, help="Email address, the login identifier")
    create.add_argument(
        "--password",
        default=None,
        help="Password (prompted when omitted; avoid passing it on shared shells)",
    )
    create.add_argument(
        "--role",
        choices=[r.name for r in roles.ordered()],
        default=RoleName.GUEST.value,
        help="Role to assign (default: guest)",
    )
    create.add_argument(
        "--verified",
        action="store_true",
        help="Mark the email as verified immediately",
    )

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")

    handlers = {
        "bootstrap": cmd_bootstrap,
        "create-user": cmd_create_user,
        "serve": cmd_serve,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 0
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
