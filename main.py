"""Command-line interface for the messagely service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from messagely.config import Settings, load_settings
from messagely.database import Database
from messagely.errors import MessagelyError

logger = logging.getLogger("messagely.main")

MIN_PASSWORD_LENGTH = 8


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="messagely service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the messagely database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port for the HTTP API (default: 3000)",
    )

    user_parser = subparsers.add_parser("create-user", help="Register a user from the command line")
    user_parser.add_argument("username", help="Unique, case-sensitive username")
    user_parser.add_argument("--first-name", default="", help="Given name")
    user_parser.add_argument("--last-name", default="", help="Family name")
    user_parser.add_argument("--phone", default="", help="Contact phone number")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "create-user"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str, port: int) -> None:
    from messagely.service import create_app
    import uvicorn

    logger.info("Starting messagely API on http://%s:%s", host, port)
    app = create_app(settings=settings, database=database, initialize_database=False)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _prompt_for_password() -> str:
    for _ in range(3):
        password = getpass("Password: ")
        confirm = getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < MIN_PASSWORD_LENGTH:
            print(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def _create_user(settings: Settings, database: Database, args: argparse.Namespace) -> int:
    from messagely.identity import IdentityService
    from messagely.security import PasswordHasher, TokenSigner

    password = _prompt_for_password()
    identity = IdentityService(
        database,
        PasswordHasher(settings.bcrypt_work_factor),
        TokenSigner(settings.secret_key),
    )
    try:
        user = identity.register(
            args.username.strip(),
            password,
            first_name=args.first_name.strip(),
            last_name=args.last_name.strip(),
            phone=args.phone.strip(),
        )
    except MessagelyError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created user {user.username}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        settings = load_settings()
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(settings=settings, database=database, host=args.host, port=args.port)
    elif args.command == "create-user":
        return _create_user(settings, database, args)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
