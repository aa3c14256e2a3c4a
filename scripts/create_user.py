#!/usr/bin/env python3
"""Register a Chirpy user from the command line.

Usage:
    # Using environment variables:
    CHIRPY_EMAIL=walt@example.com CHIRPY_PASSWORD=Heisenberg99 python scripts/create_user.py

    # Or with command line args:
    python scripts/create_user.py --email walt@example.com --password Heisenberg99

Environment Variables:
    CHIRPY_EMAIL: Email for the new user
    CHIRPY_PASSWORD: Password for the new user (at least 8 characters)
    DB_URL: PostgreSQL connection string (optional, uses memory store if not set)
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


async def create_user(email: str, password: str, dry_run: bool = False) -> dict:
    """Register ``email`` unless it already exists.

    The email is normalized the way the HTTP API normalizes it.

    Returns:
        dict with user_id, email, and status ('created', 'exists' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from chirpy.api.schemas import UserCredentialsRequest
    from chirpy.service.runtime import get_runtime

    # Same trimming and lower-casing as POST /api/users, so the user can log in
    credentials = UserCredentialsRequest(email=email, password=password)
    email, password = credentials.email, credentials.password

    runtime = get_runtime()
    try:
        existing_user = runtime.store.get_user_by_email(email)
        if existing_user:
            print(f"User {email} already exists (id: {existing_user.id})")
            return {"user_id": existing_user.id, "email": email, "status": "exists"}

        if dry_run:
            print(f"[DRY RUN] Would create user: {email}")
            return {"user_id": None, "email": email, "status": "dry_run"}

        user = await runtime.auth.register_user(email, password)
        print(f"Created user: {email} (id: {user.id})")
        return {"user_id": user.id, "email": email, "status": "created"}
    finally:
        runtime.close()


def main():
    parser = argparse.ArgumentParser(
        description="Register a Chirpy user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("CHIRPY_EMAIL"),
        help="User email (or set CHIRPY_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("CHIRPY_PASSWORD"),
        help="User password (or set CHIRPY_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or CHIRPY_EMAIL environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or CHIRPY_PASSWORD environment variable required")
        sys.exit(1)

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/chirpy-cli"

    if not os.environ.get("DB_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DB_URL for persistence)")

    try:
        result = asyncio.run(create_user(args.email, args.password, args.dry_run))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nUser created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "exists":
        print("\nNo changes needed - user already exists.")


if __name__ == "__main__":
    main()
