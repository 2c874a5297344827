#!/usr/bin/env python3
"""Create or promote the first admin account.

Registration of new accounts is admin-only, so a fresh deployment needs one
admin created out of band.

Usage:
    ADMIN_USERNAME=root ADMIN_PASSWORD=changeme123 python scripts/bootstrap_admin.py
    python scripts/bootstrap_admin.py --username root --password changeme123 [--phone 13800138000]

Environment Variables:
    ADMIN_USERNAME, ADMIN_PASSWORD, ADMIN_PHONE: account fields
    DATABASE_URL: PostgreSQL connection string (memory store when unset)
    JWT_SECRET: signing secret (required unless TEST_MODE is on)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

MIN_PASSWORD_LENGTH = 6


async def bootstrap_admin(
    runtime, username: str, password: str, phone: str | None = None, *, dry_run: bool = False
) -> dict:
    """Create ``username`` as admin, or promote it if it already exists.

    Returns:
        dict with user_id, username and status
        ('created', 'promoted', 'already_admin' or 'dry_run')
    """
    from sessionguard.storage.models import UserRole

    existing = runtime.store.find_by_credential(username)
    if existing and existing.username == username:
        if existing.role == UserRole.ADMIN:
            return {"user_id": existing.id, "username": username, "status": "already_admin"}
        if dry_run:
            return {"user_id": existing.id, "username": username, "status": "dry_run"}
        await runtime.users.set_role(existing.id, UserRole.ADMIN)
        return {"user_id": existing.id, "username": username, "status": "promoted"}

    if dry_run:
        return {"user_id": None, "username": username, "status": "dry_run"}
    user = runtime.auth.register(username, password, phone, role=UserRole.ADMIN)
    return {"user_id": user.id, "username": username, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin account for sessionguard",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--username", default=os.environ.get("ADMIN_USERNAME"))
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    parser.add_argument("--phone", default=os.environ.get("ADMIN_PHONE"))
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if not args.username:
        print("Error: --username or ADMIN_USERNAME environment variable required")
        sys.exit(1)
    if not args.password or len(args.password) < MIN_PASSWORD_LENGTH:
        print(f"Error: password of at least {MIN_PASSWORD_LENGTH} characters required")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    from sessionguard.service.runtime import get_runtime

    try:
        result = asyncio.run(
            bootstrap_admin(
                get_runtime(), args.username, args.password, args.phone, dry_run=args.dry_run
            )
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    messages = {
        "created": "Admin account created",
        "promoted": "Existing account promoted to admin",
        "already_admin": "No changes needed - account is already an admin",
        "dry_run": "[DRY RUN] No changes made",
    }
    print(f"{messages[result['status']]}: {result['username']} (id: {result['user_id']})")


if __name__ == "__main__":
    main()
