#!/usr/bin/env python3
"""Pool Wallet Account Tool — generate keys, derive from a phrase, check addresses.

A standalone CLI utility:

    # Generate a new account (recovery phrase + keys + address)
    python -m pool_wallet.tools.account_tool generate [--show-secret]

    # Derive keys from an existing 12-word recovery phrase
    python -m pool_wallet.tools.account_tool derive "<twelve words>" [--show-secret]

    # Validate an address and print its checksummed form
    python -m pool_wallet.tools.account_tool address-check <address>

    # Show indexer health and the latest indexed block
    python -m pool_wallet.tools.account_tool status [indexer_url]

Secrets (phrase and private key) are only printed with --show-secret.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pool_wallet.keys.account import AccountKeys

SHOW_SECRET = "--show-secret"


def _print_keys(keys: AccountKeys, *, show_secret: bool) -> None:
    print("=" * 60)
    print("POOL WALLET ACCOUNT")
    print("=" * 60)
    print()
    print(f"Address:         {keys.derived_address}")
    print(f"Public key:      {keys.public_key}")
    print(f"Public key hash: {keys.public_key_hash}")
    if show_secret:
        print()
        print(f"Recovery phrase: {keys.phrase}")
        print(f"Private key:     {keys.private_key}")
    else:
        print()
        print(f"(run with {SHOW_SECRET} to print the recovery phrase and private key)")


def _cmd_generate(show_secret: bool) -> None:
    """Generate a new account from fresh entropy."""
    from pool_wallet.keys.account import generate_account_keys

    _print_keys(generate_account_keys(), show_secret=show_secret)


def _cmd_derive(phrase: str, show_secret: bool) -> None:
    """Derive keys from an existing recovery phrase."""
    from pool_wallet.errors.wallet_errors import ValidationError
    from pool_wallet.keys.account import derive_account_keys

    try:
        keys = derive_account_keys(phrase)
    except ValidationError as exc:
        print(f"Error: {exc.message}")
        sys.exit(1)
    _print_keys(keys, show_secret=show_secret)


def _cmd_address_check(address: str) -> None:
    """Validate an address (EIP-55 checksum for mixed case)."""
    from pool_wallet.keys.address import to_checksum_address, validate_address

    if not validate_address(address):
        print(f"INVALID  {address}")
        sys.exit(1)
    print(f"VALID    {to_checksum_address(address)}")


def _cmd_status(url: str | None) -> None:
    """Print indexer health and the latest indexed block."""
    from pool_wallet.config.settings import IndexerConfig
    from pool_wallet.indexer.service import IndexerService

    config = IndexerConfig(url=url) if url else IndexerConfig()

    async def _run() -> None:
        indexer = IndexerService(config)
        await indexer.connect()
        try:
            healthy = await indexer.health_check()
            print(f"Indexer:       {config.url}")
            print(f"Healthy:       {'yes' if healthy else 'no'}")
            if healthy:
                print(f"Latest block:  {await indexer.get_latest_indexed_block():,}")
        finally:
            await indexer.close()

    asyncio.run(_run())


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = list(sys.argv[1:] if argv is None else argv)
    show_secret = SHOW_SECRET in args
    args = [a for a in args if a != SHOW_SECRET]

    if not args:
        print(__doc__)
        sys.exit(1)

    cmd = args[0].lower()

    if cmd == "generate":
        _cmd_generate(show_secret)
    elif cmd == "derive":
        if len(args) < 2:
            print('Usage: account_tool derive "<twelve words>" [--show-secret]')
            sys.exit(1)
        _cmd_derive(" ".join(args[1:]), show_secret)
    elif cmd == "address-check":
        if len(args) < 2:
            print("Usage: account_tool address-check <address>")
            sys.exit(1)
        _cmd_address_check(args[1])
    elif cmd == "status":
        _cmd_status(args[1] if len(args) > 1 else None)
    else:
        print(f"Unknown command: {cmd}")
        print(__doc__)
        sys.exit(1)


if __name__ == "__main__":
    main()
