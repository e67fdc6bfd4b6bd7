#!/usr/bin/env python3
"""
Gatekeeper -- operator command line.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 8000] [--reload]
  python main.py seed
  python main.py create-user EMAIL PASSWORD [--username NAME] [--role admin ...]
  python main.py sweep-sessions

Configuration comes from the environment or .env (see core/config.py):
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL. Defaults to a SQLite file in auth/.
"""

import argparse
import logging
import sys

from auth.seed import DEFAULT_USERS, seed_defaults
from auth.service import AuthService
from core.config import get_settings
from core.errors import ApiError

logger = logging.getLogger("gatekeeper.cli")


def _service() -> AuthService:
    return AuthService.from_settings(get_settings())


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_seed(args: argparse.Namespace) -> int:
    service = _service()
    try:
        counts = seed_defaults(service)
    finally:
        service.close()
    print(f"  Seeded {counts['roles']} role(s) and {counts['users']} user(s).")
    if counts["users"]:
        print("  Default accounts:")
        for email, password, _, _, _, role in DEFAULT_USERS:
            print(f"    {role:<6} {email} / {password}")
        print("  Change these passwords before exposing this server.")
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    service = _service()
    try:
        user = service.provision_user(
            args.email,
            args.password,
            username=args.username,
            first_name=args.first_name,
            last_name=args.last_name,
            role_names=args.role or (),
        )
    except ApiError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        service.close()
    roles = ", ".join(user.role_names) or "none"
    print(f"  Created user {user.id}: {user.email} (roles: {roles})")
    return 0


def cmd_sweep_sessions(args: argparse.Namespace) -> int:
    service = _service()
    try:
        removed = service.sweep_sessions()
    finally:
        service.close()
    print(f"  Removed {removed} expired or revoked session(s).")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="gatekeeper",
        description="JWT authentication backend: server and maintenance commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  DEBUG=true python main.py serve --reload
  python main.py seed
  python main.py create-user ops@example.com 's3cret-pass' --role admin
  python main.py sweep-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve.set_defaults(func=cmd_serve)

    seed = sub.add_parser("seed", help="Create system roles and the default admin and test users")
    seed.set_defaults(func=cmd_seed)

    create = sub.add_parser("create-user", help="Create a user account")
    create.add_argument("email", help="Email address (login name)")
    create.add_argument("password", help="Initial password")
    create.add_argument("--username", default=None, help="Optional unique username")
    create.add_argument("--first-name", default=None)
    create.add_argument("--last-name", default=None)
    create.add_argument(
        "--role",
        action="append",
        metavar="NAME",
        help="Role to assign; repeat for several (roles must exist, see 'seed')",
    )
    create.set_defaults(func=cmd_create_user)

    sweep = sub.add_parser("sweep-sessions", help="Delete expired and revoked sessions now")
    sweep.set_defaults(func=cmd_sweep_sessions)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
