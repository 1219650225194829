"""Command-line interface for the client desk."""

from __future__ import annotations
import argparse
import asyncio
import logging
import os
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from clientdesk.application import Services, build_services
from clientdesk.config import Settings, load_settings
from clientdesk.errors import ClientDeskError
from clientdesk.local_store import AUTH_TOKEN_KEY, LocalStore
from clientdesk.orchestrator import (
    AlwaysConfirm,
    ConfirmationProvider,
    ConsoleConfirmation,
    ResetStage,
    ResetState,
)

logger = logging.getLogger("clientdesk.main")


def _split_global_options(args: Sequence[str]) -> tuple[list[str], list[str]]:
    """Separate ``--config`` (either form) from the options of the implicit command."""

    global_args: list[str] = []
    rest: list[str] = []
    index = 0
    while index < len(args):
        arg = args[index]
        if arg == "--config" and index + 1 < len(args):
            global_args.extend(args[index : index + 2])
            index += 2
            continue
        if arg.startswith("--config=") or arg == "--config":
            global_args.append(arg)
        else:
            rest.append(arg)
        index += 1
    return global_args, rest


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Client desk utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration (defaults to CLIENTDESK_CONFIG or config/clientdesk.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-store", help="Initialise the local store")

    serve_parser = subparsers.add_parser("serve", help="Start the JSON API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port for the API (default: 8000)")

    subparsers.add_parser("list-clients", help="List clients using the configured routing")

    reset_parser = subparsers.add_parser(
        "reset-admin", help="Delete ALL users and register a new administrator"
    )
    reset_parser.add_argument("--email", default="admin@example.com", help="Administrator email")
    reset_parser.add_argument("--name", default="Admin", help="Administrator display name")
    reset_parser.add_argument("--phone", default="0830000000", help="Administrator phone number")
    reset_parser.add_argument(
        "--yes",
        action="store_true",
        help="Skip the interactive confirmation prompt",
    )

    token_parser = subparsers.add_parser(
        "set-token", help="Store the bearer token attached to API requests"
    )
    token_parser.add_argument(
        "--clear",
        action="store_true",
        help="Remove the stored token instead of setting one",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-store", "list-clients", "reset-admin", "set-token"}

    if any(flag in args_list for flag in ("-h", "--help")):
        return parser.parse_args(args_list)
    if not any(arg in known_commands for arg in args_list):
        global_args, serve_args = _split_global_options(args_list)
        args_list = [*global_args, "serve", *serve_args]

    return parser.parse_args(args_list)


def _load_settings(config: str | None) -> Settings:
    return load_settings(Path(config).expanduser() if config else None)


def _initialise_store(settings: Settings) -> LocalStore:
    store = LocalStore(settings.store_path)
    store.initialize()
    logger.info("Local store initialised at %s", settings.store_path)
    return store


def _serve(settings: Settings, *, host: str, port: int) -> None:
    from clientdesk.application import create_application
    import uvicorn

    logger.info("Starting client desk API on http://%s:%s", host, port)
    uvicorn.run(create_application(settings), host=host, port=port, log_level="info")


async def _list_clients(services: Services) -> int:
    try:
        clients = await services.repository.list()
    except ClientDeskError as exc:
        print(f"Failed to load clients: {exc}")
        return 1
    finally:
        await services.aclose()

    if not clients:
        print("No clients found.")
        return 0

    print(f"{len(clients)} client(s) found:")
    print(f"{'ID':<26}  {'Name':<24}  {'Email':<32}  Banned")
    print("-" * 96)
    for client in clients:
        banned = "yes" if client.is_banned else "no"
        print(f"{client.id:<26}  {client.name:<24}  {client.email:<32}  {banned}")
    return 0


def _print_transition(stage: ResetStage, state: ResetState) -> None:
    if stage is ResetStage.FETCHING:
        print("Loading users...")
    elif stage is ResetStage.DELETING:
        print("Deleting users...")
    elif stage is ResetStage.CREATING:
        print("Creating admin user...")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass("Admin password: ")
        if not password:
            print("Password must not be empty. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


async def _reset_admin(services: Services, *, email: str, name: str, phone: str, password: str) -> int:
    orchestrator = services.orchestrator
    orchestrator.form.email = email
    orchestrator.form.name = name
    orchestrator.form.phone = phone
    orchestrator.form.password = password
    try:
        state = await orchestrator.execute()
    except ValueError as exc:
        print(f"Error: {exc}")
        return 1
    finally:
        await services.aclose()

    if state.stage is ResetStage.IDLE:
        print("Admin reset cancelled.")
        return 0
    print(state.message)
    return 0 if state.success else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = _load_settings(args.config)

    if args.command == "serve":
        _serve(settings, host=args.host, port=args.port)
        return 0

    if args.command == "init-store":
        _initialise_store(settings)
        print("Local store initialisation complete.")
        return 0

    if args.command == "set-token":
        store = _initialise_store(settings)
        if args.clear:
            store.remove(AUTH_TOKEN_KEY)
            print("Stored token removed.")
            return 0
        token = os.getenv("CLIENTDESK_TOKEN") or getpass("Bearer token: ")
        if not token.strip():
            print("No token provided.")
            return 1
        store.set(AUTH_TOKEN_KEY, token.strip())
        print("Token stored.")
        return 0

    if args.command == "list-clients":
        return asyncio.run(_list_clients(build_services(settings)))

    if args.command == "reset-admin":
        password = _prompt_for_password()
        if password is None:
            print("Aborted admin reset.")
            return 1
        confirmation: ConfirmationProvider = AlwaysConfirm() if args.yes else ConsoleConfirmation()
        services = build_services(settings, confirmation=confirmation, on_transition=_print_transition)
        return asyncio.run(
            _reset_admin(services, email=args.email, name=args.name, phone=args.phone, password=password)
        )

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
