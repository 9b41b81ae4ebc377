"""``tenant-auth`` command line: login, logout and token.

    tenant-auth login    # device-code login, stores the token pair
    tenant-auth token    # prints a valid access token, refreshing if needed
    tenant-auth logout   # deletes stored credentials

Configuration comes from the environment (see ``CliSettings``). Every
failure prints its reason to stderr and exits with status 1.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from .config import CliSettings
from .credentials import FileCredentialStore
from .device_flow import DeviceAuthorizationClient
from .errors import AuthError
from .refresh import CredentialRefreshManager

logger = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tenant-auth",
        description="Log in to the service and manage stored credentials",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log HTTP and cache activity to stderr.",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Log in with the device-code flow.")
    login.add_argument(
        "--no-browser",
        action="store_true",
        help="Do not try to open the verification page in a browser.",
    )
    sub.add_parser("logout", help="Delete stored credentials.")
    sub.add_parser("token", help="Print a valid access token.")

    return parser.parse_args(args=argv)


def _login(settings: CliSettings, store: FileCredentialStore, args: argparse.Namespace) -> int:
    client = DeviceAuthorizationClient(
        settings.domain,
        settings.client_id,
        settings.audience,
        scope=settings.scope,
        timeout=settings.http_timeout,
        open_browser=not args.no_browser,
    )
    pair = client.login()
    store.save(pair.to_credentials())
    print("Logged in.")
    return 0


def _logout(settings: CliSettings, store: FileCredentialStore, args: argparse.Namespace) -> int:
    if not store.delete():
        print("No credentials found.")
        return 0
    print("Logged out.")
    return 0


def _token(settings: CliSettings, store: FileCredentialStore, args: argparse.Namespace) -> int:
    manager = CredentialRefreshManager(
        settings.domain, settings.client_id, timeout=settings.http_timeout
    )
    token = manager.ensure_access_token(store)
    if token is None:
        print("Not logged in. Run 'tenant-auth login' first.", file=sys.stderr)
        return 1
    print(token)
    return 0


_COMMANDS = {
    "login": _login,
    "logout": _logout,
    "token": _token,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = CliSettings.from_env()
        store = FileCredentialStore(settings.credentials_file)
        return _COMMANDS[args.command](settings, store, args)
    except AuthError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
