"""Command-line entry point for the cube authenticator."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import List, Optional

from . import AuthenticatorEngine, AuthenticatorSettings, PlaywrightBridge
from .errors import AuthenticatorError
from .physical import PromptStateProvider
from .scramble import set_scramble
from .storage import CredentialStoreError


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cube-backed WebAuthn authenticator")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    bridge = commands.add_parser("bridge", help="Open Chromium with the authenticator hooked in")
    bridge.add_argument("--url", required=True, help="Target URL to open in Chromium")
    bridge.add_argument("--headless", action="store_true", help="Run Chromium headless")

    scramble = commands.add_parser("set-scramble", help="Record the fixed cube scramble")
    scramble.add_argument(
        "--no-calibrate",
        action="store_true",
        help="Keep the stored iteration count instead of timing PBKDF2",
    )

    credentials = commands.add_parser("credentials", help="Inspect stored credentials")
    credential_commands = credentials.add_subparsers(dest="action", required=True)
    listing = credential_commands.add_parser("list", help="List stored credentials")
    listing.add_argument("--site", help="Only show credentials for this hostname")
    delete = credential_commands.add_parser("delete", help="Delete a stored credential")
    delete.add_argument("credential_id")

    secret = commands.add_parser("secret", help="Manage the entropy secret")
    secret.add_argument("action", choices=["show", "reset"])
    return parser.parse_args(argv)


def run_bridge(engine: AuthenticatorEngine, args: argparse.Namespace) -> None:
    bridge = PlaywrightBridge(engine, args.url, headless=args.headless)
    try:
        asyncio.run(bridge.run())
    except KeyboardInterrupt:
        pass


def run_set_scramble(engine: AuthenticatorEngine, args: argparse.Namespace) -> None:
    state = PromptStateProvider().read_state("set-scramble", "Cube state to use as scramble")
    record = set_scramble(
        state,
        engine.vault,
        calibrate=not args.no_calibrate,
        credentials_exist=bool(engine.store.list_all()),
    )
    print(json.dumps(record.model_dump(), indent=2))


def run_credentials(engine: AuthenticatorEngine, args: argparse.Namespace) -> None:
    if args.action == "list":
        print(json.dumps(engine.list_credentials(args.site), indent=2))
    else:
        engine.delete_credential(args.credential_id)
        print(f"Deleted {args.credential_id}")


def run_secret(engine: AuthenticatorEngine, args: argparse.Namespace) -> None:
    if args.action == "reset":
        if engine.store.list_all():
            raise SystemExit("Refusing to reset the secret while credentials exist")
        engine.vault.clear_secret()
    print(engine.vault.get_secret())


COMMANDS = {
    "bridge": run_bridge,
    "set-scramble": run_set_scramble,
    "credentials": run_credentials,
    "secret": run_secret,
}


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s"
    )
    with AuthenticatorEngine(AuthenticatorSettings()) as engine:
        try:
            COMMANDS[args.command](engine, args)
        except (AuthenticatorError, CredentialStoreError) as exc:
            raise SystemExit(str(exc)) from exc


if __name__ == "__main__":
    main()
