#!/usr/bin/env python3
"""CLI script to run one reconciliation pass over meetings stuck in provisioning.

Usage:
    uv run python scripts/reconcile_meetings.py
    uv run python scripts/reconcile_meetings.py --stale-seconds 0 --batch-limit 200

Connects directly to the database using DATABASE_URL from environment or .env file.
Finishes provisioning of pending meetings or rolls them back, exactly as the
background task started by the API does.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.agentmeet
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def reconcile(stale_seconds: int | None, batch_limit: int | None) -> int:
    """Run one pass and return the number of meetings still pending."""
    from src.agentmeet.api.middleware.logging import configure_structlog
    from src.agentmeet.config import get_settings
    from src.agentmeet.core.database import close_db
    from src.agentmeet.main import build_services

    settings = get_settings()
    if stale_seconds is not None:
        settings = settings.model_copy(update={"RECONCILIATION_STALE_SECONDS": stale_seconds})
    if batch_limit is not None:
        settings = settings.model_copy(update={"RECONCILIATION_BATCH_LIMIT": batch_limit})
    configure_structlog()

    reconciler = build_services(settings)["reconciler"]
    try:
        report = await reconciler.run_once()
    finally:
        await close_db()

    print(f"Examined:  {report.examined}")
    print(f"  Rolled back: {len(report.rolled_back)}")
    print(f"  Ready:     {len(report.ready)}")
    print(f"  Retry:     {len(report.retry)}")
    print(f"  Abandoned: {len(report.abandoned)}")
    return len(report.retry)


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile meetings stuck in provisioning")
    parser.add_argument(
        "--stale-seconds",
        type=int,
        default=None,
        help="Minimum age of a pending meeting (default: RECONCILIATION_STALE_SECONDS)",
    )
    parser.add_argument(
        "--batch-limit",
        type=int,
        default=None,
        help="Meetings examined in this pass (default: RECONCILIATION_BATCH_LIMIT)",
    )
    args = parser.parse_args()

    remaining = asyncio.run(reconcile(args.stale_seconds, args.batch_limit))
    sys.exit(1 if remaining else 0)


if __name__ == "__main__":
    main()
