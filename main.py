#!/usr/bin/env python3
"""
tokenward -- command-line bootstrap for the authentication stack.

Usage:
  python main.py keys
  python main.py keys --public rsa_keys/pubkey.pem --private rsa_keys/privkey.pem
  python main.py register alice@example.com

Environment variables (or .env): see core/config.py. DATABASE_URL, PUBLIC_KEY,
PRIVATE_KEY, ISSUER, IDENTIFIER_FIELD and BCRYPT_ROUNDS all apply here exactly
as they do to the API server.
"""

import argparse
import asyncio
import getpass
import sys
from typing import Optional

from auth.errors import AuthError
from auth.keys import KeyProvider
from auth.service import build_auth_service
from core.config import get_settings


def _cmd_keys(public: Optional[str], private: Optional[str]) -> int:
    """Load, validate or generate the signing keypair and print its fingerprint."""
    settings = get_settings()
    provider = KeyProvider(public or settings.public_key, private or settings.private_key)
    print(f"  RSA keypair ready. Public key SHA-256: {provider.keys.fingerprint()}")
    return 0


async def _register(identifier: str, password: str) -> str:
    service = build_auth_service(get_settings())
    try:
        return await service.register(identifier, password)
    finally:
        service.close()


def _cmd_register(identifier: str) -> int:
    """Prompt for a password twice and register the identifier."""
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        print("  [!] Passwords do not match.")
        return 1
    registered = asyncio.run(_register(identifier, password))
    print(f"  Registered {registered}.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tokenward",
        description="Provision signing keys and register accounts for tokenward.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py keys
  python main.py keys --public /etc/tokenward/pub.pem --private /etc/tokenward/priv.pem
  IDENTIFIER_FIELD=username python main.py register alice
        """,
    )
    sub = parser.add_subparsers(dest="command")

    keys_parser = sub.add_parser("keys", help="Load or generate the RSA signing keypair")
    keys_parser.add_argument(
        "--public", metavar="PATH", help="Public key file (default: PUBLIC_KEY or rsa_keys/pubkey.pem)"
    )
    keys_parser.add_argument(
        "--private", metavar="PATH", help="Private key file (default: PRIVATE_KEY or rsa_keys/privkey.pem)"
    )

    register_parser = sub.add_parser("register", help="Register a new account (password is prompted)")
    register_parser.add_argument("identifier", metavar="IDENTIFIER", help="Email address or username")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        if args.command == "keys":
            return _cmd_keys(args.public, args.private)
        return _cmd_register(args.identifier)
    except AuthError as exc:
        print(f"  [!] {exc.client_message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
