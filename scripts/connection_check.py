#!/usr/bin/env python
"""Check that the RSA DEX backend is reachable and report per-module sync state."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Add src to path so we can import the modules
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))


async def check_connection() -> int:
    from rsa_client.async_rest import AsyncRestClient
    from rsa_client.schemas import Module
    from utils.credentials import DEFAULT_SERVICE_NAME, TokenStore

    print("=" * 60)
    print("RSA DEX - Connection Check")
    print("=" * 60)

    async with AsyncRestClient(token_store=TokenStore(DEFAULT_SERVICE_NAME)) as client:
        print("\n✓ Client initialized")
        print(f"  Base URL: {client.base_url}")
        print(f"  Admin API URL: {client.admin_api_url}")
        print(f"  Timeout: {client.timeout}s")
        print(f"  Token loaded: {'yes' if client.get_token() else 'no'}")

        print("\n" + "-" * 60)
        print("Health check...")
        print("-" * 60)
        health = await client.health_check()
        if not health.success:
            print(f"✗ Backend unreachable: {health.error}")
            return 1
        print("✓ Backend is up")

        print("\n" + "-" * 60)
        print("Module sync status...")
        print("-" * 60)
        failures = 0
        for module in Module:
            response = await client.get_sync_status(module)
            if response.success:
                synced = "synced" if response.field("synced") else "not synced"
                print(f"  {module.display_name}: {synced}")
            else:
                failures += 1
                print(f"  {module.display_name}: ✗ {response.error}")

    print("\n" + "=" * 60)
    print("Check complete!")
    print("=" * 60)
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(check_connection()))
