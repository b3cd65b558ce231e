#!/usr/bin/env python3
"""
Sync PgBouncer Userlist Script

Rewrites the PgBouncer auth_file from pg_authid once and exits. Useful as a
container entrypoint step that must finish before PgBouncer starts.

Usage:
    python scripts/sync_userlist.py [--path PATH] [--no-reload]

Exit codes: 0 synced or skipped (no login roles), 1 on failure.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from provisioner.config import get_settings  # noqa: E402
from provisioner.database import close_admin_pool, create_admin_pool  # noqa: E402
from provisioner.exceptions import AppError  # noqa: E402
from provisioner.services.userlist_sync import UserlistSync  # noqa: E402


async def run(path: str | None, reload: bool) -> int:
    settings = get_settings()
    if path:
        settings = settings.model_copy(update={"userlist_path": path})

    pool = await create_admin_pool(settings)
    try:
        userlist_sync = UserlistSync(settings, pool)
        result = await userlist_sync.sync(reload=reload)
    except AppError as e:
        print(f"Userlist sync failed: {e.detail}", file=sys.stderr)
        return 1
    finally:
        await close_admin_pool(pool)

    print(f"Userlist {result.status}: {result.entries_written} users -> {settings.userlist_path}")
    if reload:
        print(f"PgBouncer reloaded: {'yes' if result.reloaded else 'no'}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Sync the PgBouncer userlist from pg_authid")
    parser.add_argument("--path", help="Userlist path (defaults to USERLIST_PATH)")
    parser.add_argument(
        "--no-reload", action="store_true", help="Do not send RELOAD to PgBouncer"
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(run(args.path, reload=not args.no_reload)))


if __name__ == "__main__":
    main()
