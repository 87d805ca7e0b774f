#!/usr/bin/env python3
"""CLI script to push one local record to Salesforce now.

Usage:
    uv run python scripts/push_record.py --object-type post --id 42
    uv run python scripts/push_record.py --object-type post --id 42 --method DELETE

Connects directly to the database and Redis using DATABASE_URL / REDIS_URL
from environment or .env file. Runs the same manual push as the
POST|PUT|DELETE /api/v1/push/{object_type}/{local_id} endpoint and prints
every per-fieldmap result. Exits non-zero unless the push fully succeeded.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.objectsync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def push(object_type: str, local_id: int, method: str) -> int:
    """Run one manual push and print its results. Returns the coarse code."""
    from src.objectsync.api.middleware.logging import configure_structlog
    from src.objectsync.config import get_settings
    from src.objectsync.core.database import close_db, get_session
    from src.objectsync.core.redis import close_redis, get_redis_pool
    from src.objectsync.push.engine import build_push_engine

    configure_structlog()
    settings = get_settings()
    try:
        engine = await build_push_engine(
            settings,
            redis_client=get_redis_pool(),
            session_factory=get_session,
        )
        outcome = await engine.orchestrator.manual_push(object_type, local_id, method)
    finally:
        await close_db()
        await close_redis()

    print(f"{method} {object_type} {local_id}: {outcome.code}")
    for result in outcome.results:
        print(f"  [{result.status.value}] {result.title}")
        if result.message:
            print(f"      {result.message}")
    return outcome.code


def main() -> None:
    parser = argparse.ArgumentParser(description="Push one local record to Salesforce")
    parser.add_argument("--object-type", required=True, help="Local object type, e.g. 'post'")
    parser.add_argument("--id", type=int, required=True, help="Local record id")
    parser.add_argument(
        "--method",
        default="POST",
        choices=["POST", "PUT", "DELETE"],
        help="POST creates, PUT updates, DELETE deletes (default: POST)",
    )
    args = parser.parse_args()

    code = asyncio.run(push(args.object_type, args.id, args.method))
    sys.exit(0 if code in (201, 204) else 1)


if __name__ == "__main__":
    main()
