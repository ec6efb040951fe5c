#!/usr/bin/env python3
"""Create a user account from the command line.

Usage:
    # Using environment variables:
    USER_EMAIL=ops@example.com USER_PASSWORD=password123 python scripts/create_user.py

    # Or with command line args:
    python scripts/create_user.py --email ops@example.com --password password123 --requires-2fa

Environment Variables:
    USER_EMAIL: Email for the new account
    USER_PASSWORD: Password for the new account
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def create_user(
    email: str, password: str, requires_2fa: bool = False, dry_run: bool = False
) -> dict:
    """Sign up one account through the auth service.

    Returns:
        dict with email, requires_2fa and status ('created', 'exists' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from authservice.service.errors import UserAlreadyExistsError
    from authservice.service.runtime import get_runtime

    if dry_run:
        print(f"[DRY RUN] Would create user: {email}")
        return {"email": email, "requires_2fa": requires_2fa, "status": "dry_run"}

    runtime = get_runtime()
    try:
        await runtime.auth.signup(email, password, requires_2fa)
    except UserAlreadyExistsError:
        print(f"User {email} already exists")
        return {"email": email, "requires_2fa": requires_2fa, "status": "exists"}
    finally:
        await runtime.close()

    print(f"Created user: {email}")
    return {"email": email, "requires_2fa": requires_2fa, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Create a user account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("USER_EMAIL"),
        help="Account email (or set USER_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("USER_PASSWORD"),
        help="Account password (or set USER_PASSWORD env var)",
    )
    parser.add_argument(
        "--requires-2fa",
        action="store_true",
        help="Require an emailed 2FA code at login",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or USER_EMAIL environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or USER_PASSWORD environment variable required")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        os.environ.setdefault("TEST_MODE", "true")
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    from authservice.service.errors import ServiceError

    try:
        result = asyncio.run(
            create_user(args.email, args.password, args.requires_2fa, args.dry_run)
        )
    except ServiceError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nUser created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  2FA required: {result['requires_2fa']}")


if __name__ == "__main__":
    main()
