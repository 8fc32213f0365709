#!/usr/bin/env python3
"""
Manual Token Refresh Script
============================
Refresh one user's stored provider token outside the web app, e.g. when a
connection looks stale and you want to see what the provider answers.

Usage:
    python scripts/refresh_token.py --user-id USER_ID --provider strava

    # Only show the stored token status:
    python scripts/refresh_token.py --user-id USER_ID --provider fitbit --status-only

Requirements:
    - DATABASE_URL and ENCRYPTION_KEY matching the running app
    - <PROVIDER>_CLIENT_ID and <PROVIDER>_CLIENT_SECRET for the provider
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import httpx

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from health_timeline.config import get_settings  # noqa: E402
from health_timeline.database import dispose_engine, get_session_factory  # noqa: E402
from health_timeline.providers import PROVIDERS  # noqa: E402
from health_timeline.services import token_store  # noqa: E402
from health_timeline.services.token_service import mask_token, should_refresh_now  # noqa: E402
from health_timeline.utils.logging_config import get_logger, setup_logging  # noqa: E402

logger = get_logger("refresh_token")


def print_header(text: str):
    print(f"\n{'='*60}")
    print(f" {text}")
    print(f"{'='*60}\n")


def print_step(step: int, text: str):
    print(f"\n[Step {step}] {text}")
    print("-" * 40)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manually refresh a stored provider OAuth token")
    parser.add_argument("--user-id", required=True, help="Health Timeline user id")
    parser.add_argument("--provider", required=True, choices=sorted(PROVIDERS), help="Provider to refresh")
    parser.add_argument(
        "--status-only",
        action="store_true",
        help="Show the stored token status without contacting the provider",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    """Returns the process exit code."""
    settings = get_settings()
    provider = PROVIDERS[args.provider]

    print_header(f"{provider.display_name} Token Refresh")
    print(f"Timestamp: {datetime.now(timezone.utc).isoformat()}")

    print_step(1, "Validating configuration")
    if not provider.is_configured(settings):
        print(f"ERROR: {provider.client_id_setting} and {provider.client_secret_setting} must be set")
        return 1
    if not settings.ENCRYPTION_KEY:
        print("ERROR: ENCRYPTION_KEY must be set to read stored tokens")
        return 1
    print("Configuration OK")
    logger.info(f"Manual {provider.name} refresh for user {args.user_id}")

    async with get_session_factory()() as db:
        token = await token_store.get_token_record(db, args.user_id, provider)
        if token is None:
            print(f"ERROR: no {provider.display_name} tokens stored for user {args.user_id}")
            return 1

        print_step(2, "Stored token")
        print(f"  Expires at: {token.expires_at.isoformat()}")
        print(f"  Refresh due: {should_refresh_now(token.expires_at)}")
        if args.status_only:
            return 0

        print_step(3, f"Refreshing {provider.display_name} access token")
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
            result = await token_store.refresh_stored_token(db, args.user_id, provider, client, token=token)

    if not result.is_success:
        print(f"Token refresh failed: {result.status.value}")
        print(f"Error: {result.error_message}")
        if result.requires_reauthorization:
            print("\nThe refresh token was rejected and the connection removed.")
            print(f"The user has to reconnect at {provider.connect_path}")
        return 1

    print("Token refresh successful")
    print(f"  Access token: {mask_token(result.access_token)}")
    print(f"  Refresh token: {mask_token(result.refresh_token)}")
    print(f"  Expires at: {result.expires_at.isoformat() if result.expires_at else 'Unknown'}")
    return 0


async def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(json_format=False)
    try:
        return await run(args)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
