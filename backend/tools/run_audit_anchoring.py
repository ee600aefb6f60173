"""Run audit Merkle anchoring batches (for cron/CronJob execution)."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence
from datetime import UTC, datetime

from herdledger.core.logging import configure_logging
from herdledger.db.session import close_db, create_schema, get_session_factory, init_db
from herdledger.modules.audit.errors import AuditTrailError
from herdledger.modules.audit.facade import AuditTrail
from herdledger.modules.audit.sql import SqlAuditRepository


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Anchor unanchored audit hash-chain entries.")
    parser.add_argument(
        "--max-batches",
        type=int,
        default=None,
        help="Optional safety cap for batches anchored in one run.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report how many entries are waiting to be anchored.",
    )
    return parser.parse_args(argv)


async def run_anchoring(
    audit_trail: AuditTrail,
    *,
    max_batches: int | None = None,
    dry_run: bool = False,
) -> dict[str, object]:
    """Anchor pending entries and return a JSON-serializable summary."""
    pending_before = await audit_trail.repository.count_unanchored()
    summary: dict[str, object] = {
        "ran_at": datetime.now(UTC).isoformat(),
        "ledger": audit_trail.ledger_client.name,
        "pending_before": pending_before,
        "anchored": [],
        "errors": [],
    }
    if dry_run:
        return summary

    anchored: list[dict[str, object]] = []
    errors: list[str] = []
    # One cycle at a time so batches committed before a failure are still reported.
    while max_batches is None or len(anchored) < max_batches:
        try:
            result = await audit_trail.run_anchor_cycle()
        except AuditTrailError as exc:
            errors.append(str(exc))
            break
        snapshot = result.snapshot
        if snapshot is None:
            break
        anchored.append(
            {
                "snapshot_id": str(snapshot.id),
                "entry_count": snapshot.entry_count,
                "merkle_root": snapshot.merkle_root,
                "transaction_id": snapshot.transaction_id,
                "explorer_url": snapshot.explorer_url,
            }
        )
    summary["anchored"] = anchored
    summary["errors"] = errors
    summary["pending_after"] = await audit_trail.repository.count_unanchored()
    return summary


async def _main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging()
    await init_db()
    try:
        await create_schema()
        audit_trail = AuditTrail(SqlAuditRepository(get_session_factory()))
        summary = await run_anchoring(
            audit_trail,
            max_batches=args.max_batches,
            dry_run=args.dry_run,
        )
        print(json.dumps(summary, indent=2))
        return 0 if not summary["errors"] else 1
    finally:
        await close_db()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
