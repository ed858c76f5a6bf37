#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Movidesk → Postgres incremental ticket backup

Run order:
  discover  – ticket IDs from /tickets and /tickets/past
  diff      – minus the IDs already in `tickets`
  checkpoint – pending IDs written to CHECKPOINT_FILE (full rewrite)
  iterate   – per ID: fetch (throttled) → normalize → persist → drop from checkpoint

Per-ticket failures are logged and leave the checkpoint line in place; only
connection/discovery failures abort the run.

Usage examples:
  python -m movidesk_backup.sync
  python -m movidesk_backup.sync --init-schema
  python -m movidesk_backup.sync --dry-run --checkpoint /tmp/pending.txt
"""

import argparse
import enum
import logging
import sys
from dataclasses import dataclass, field
from typing import List, Optional

import psycopg

from . import settings
from .checkpoint import CheckpointFile
from .client import MovideskClient, fetch_ticket_detail
from .db import get_db, init_schema
from .diff import pending_ticket_ids, stored_ticket_ids
from .errors import MalformedTicketError, TicketSourceError
from .normalize import normalize_ticket
from .throttle import FixedWindowThrottle
from .upsert import persist_ticket

log = logging.getLogger(__name__)


class SyncPhase(enum.Enum):
    DISCOVERING = "discovering"
    DIFFING = "diffing"
    CHECKPOINTING = "checkpointing"
    ITERATING = "iterating"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class SyncReport:
    phase: SyncPhase = SyncPhase.DISCOVERING
    discovered: int = 0
    already_stored: int = 0
    pending: int = 0
    stored: int = 0
    failed: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.failed)


def discover_ticket_ids(client: MovideskClient) -> List[str]:
    ids = client.list_ticket_ids()
    ids += client.list_ticket_ids(past=True)
    log.info("Total IDs found: %d", len(ids))
    return ids


def sync_one(conn, client: MovideskClient, throttle: FixedWindowThrottle, ticket_id: str) -> bool:
    try:
        payload = fetch_ticket_detail(client, throttle, ticket_id)
        ticket = normalize_ticket(payload)
    except TicketSourceError as e:
        log.warning("Fetch failed for ticket %s, kept for next run: %s", ticket_id, e)
        return False
    except MalformedTicketError as e:
        log.error("Malformed payload for ticket %s, kept for next run: %s", ticket_id, e)
        return False

    return persist_ticket(conn, ticket)


def run_sync(conn, client: MovideskClient, checkpoint: CheckpointFile,
             throttle: FixedWindowThrottle, dry_run: bool = False) -> SyncReport:
    report = SyncReport()
    try:
        discovered = discover_ticket_ids(client)
        report.discovered = len(discovered)

        report.phase = SyncPhase.DIFFING
        stored = stored_ticket_ids(conn)
        pending = pending_ticket_ids(discovered, stored)
        report.already_stored = len(set(discovered) & stored)
        report.pending = len(pending)
        log.info("Total IDs to be inserted: %d", len(pending))

        report.phase = SyncPhase.CHECKPOINTING
        checkpoint.initialize(pending)
    except Exception:
        report.phase = SyncPhase.ABORTED
        raise

    if dry_run:
        report.phase = SyncPhase.DONE
        log.info("Dry run: %d ticket(s) left in %s, nothing fetched.", len(pending), checkpoint.path)
        return report

    report.phase = SyncPhase.ITERATING
    for n, ticket_id in enumerate(pending, start=1):
        log.info("[%d/%d] Ticket %s", n, len(pending), ticket_id)
        try:
            ok = sync_one(conn, client, throttle, ticket_id)
        except Exception:
            report.phase = SyncPhase.ABORTED
            raise
        if ok:
            checkpoint.remove(ticket_id)
            report.stored += 1
        else:
            report.failed.append(ticket_id)

    report.phase = SyncPhase.DONE
    return report


# ----------------------------
# CLI
# ----------------------------
def setup_logging(level: str = settings.LOG_LEVEL):
    logging.basicConfig(level=level, format="%(asctime)s | %(levelname)s | %(message)s", stream=sys.stdout)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Incremental Movidesk ticket backup into Postgres.")
    ap.add_argument("--checkpoint", default=settings.CHECKPOINT_FILE,
                    help="Pending ticket IDs file (rewritten every run).")
    ap.add_argument("--init-schema", action="store_true", help="CREATE TABLE IF NOT EXISTS before syncing.")
    ap.add_argument("--dry-run", action="store_true", help="Discover, diff and write the checkpoint only.")
    args = ap.parse_args(argv)

    setup_logging()
    client = MovideskClient(settings.MOVIDESK_TOKEN)
    checkpoint = CheckpointFile(args.checkpoint)
    throttle = FixedWindowThrottle(settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECS)

    try:
        conn = get_db()
    except psycopg.OperationalError as e:
        log.error("Database connection error: %s", e)
        return 1
    log.info("Database connection established.")

    with conn:
        if args.init_schema:
            init_schema(conn)
        try:
            report = run_sync(conn, client, checkpoint, throttle, dry_run=args.dry_run)
        except TicketSourceError as e:
            log.error("HTTP request error, run aborted: %s", e)
            return 1
        except psycopg.Error as e:
            log.error("Database error, run aborted: %s", e)
            return 1

    log.info("✅ Movidesk backup complete: %d discovered, %d pending, %d stored, %d kept for next run.",
             report.discovered, report.pending, report.stored, report.skipped)
    if report.failed:
        log.info("Kept in %s: %s", checkpoint.path, ", ".join(report.failed))
    return 0


if __name__ == "__main__":
    sys.exit(main())
