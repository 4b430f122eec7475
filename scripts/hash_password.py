#!/usr/bin/env python3
"""Print credentials material for seeding and manual testing.

Usage:
    # argon2id hash for an ``account.password`` column:
    python scripts/hash_password.py --password 'correct horse'

    # Or read the password from the environment:
    SEED_PASSWORD='correct horse' python scripts/hash_password.py

    # Magic-link token for an email (needs the three signing secrets):
    SECRET_KEY=... REFRESH_SECRET_KEY=... MAGIC_LINK_SECRET=... \
        python scripts/hash_password.py --magic-link user@example.com

Environment Variables:
    SEED_PASSWORD: Password to hash when --password is not given
    SECRET_KEY, REFRESH_SECRET_KEY, MAGIC_LINK_SECRET: signing secrets
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def hash_password(password: str) -> str:
    from sessionauth.service.credentials import CredentialVerifier
    from sessionauth.storage.accounts import MemoryAccountStore

    digest, _ = CredentialVerifier(MemoryAccountStore()).hash_password(password)
    return digest


def issue_magic_link(email: str) -> str:
    # Import here to avoid loading config before env vars are set
    from sessionauth.config import get_settings
    from sessionauth.service.magic_link import MagicLinkCodec

    settings = get_settings()
    codec = MagicLinkCodec(
        settings.magic_link_secret, ttl_ms=settings.magic_link_ttl_seconds * 1000
    )
    return codec.issue(email)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--password", help="Password to hash")
    parser.add_argument("--magic-link", metavar="EMAIL", help="Issue a magic-link token")
    args = parser.parse_args()

    if args.magic_link:
        from sessionauth.service.errors import ConfigurationError

        try:
            token = issue_magic_link(args.magic_link)
        except ConfigurationError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        if not token:
            print("Error: email must not be empty", file=sys.stderr)
            return 1
        print(token)
        return 0

    password = args.password or os.getenv("SEED_PASSWORD")
    if not password:
        print("Error: --password or SEED_PASSWORD is required", file=sys.stderr)
        return 1
    print(hash_password(password))
    return 0


if __name__ == "__main__":
    sys.exit(main())
