#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Rebuild `ticket_actions` rows from the `tickets.actions_json` blob (append-only, idempotent).

Actions are best-effort during sync: one dropped on a foreign-key error is
still present in its ticket's blob and can be put back from here.

Usage examples:
  python -m movidesk_backup.restore
  python -m movidesk_backup.restore --ticket 12345
  python -m movidesk_backup.restore --limit 500 --offset 1000
  python -m movidesk_backup.restore --dry-run
"""

import argparse
import json
import logging
from typing import Any, Dict, List, Optional

import psycopg

from .db import get_db
from .errors import MalformedTicketError
from .normalize import normalize_action
from .sync import setup_logging
from .upsert import raise_if_broken, insert_action

log = logging.getLogger(__name__)


def load_ticket_blobs(conn, ticket_id: Optional[str] = None, limit: Optional[int] = None,
                      offset: int = 0) -> List[Dict[str, Any]]:
    with conn.cursor() as cur:
        sql = "SELECT id, actions_json FROM tickets"
        params: Dict[str, Any] = {}
        if ticket_id:
            sql += " WHERE id = %(id)s"
            params["id"] = ticket_id
        sql += " ORDER BY id"
        if limit is not None:
            sql += " LIMIT %(limit)s OFFSET %(offset)s"
            params.update({"limit": limit, "offset": offset})
        cur.execute(sql, params)
        return cur.fetchall()


def _blob_entries(raw: Any) -> List[Any]:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="ignore")
    if isinstance(raw, str):
        raw = json.loads(raw)
    return raw or []


def restore_actions(conn, ticket_id: Optional[str] = None, limit: Optional[int] = None,
                    offset: int = 0, dry_run: bool = False) -> int:
    restored = 0
    for row in load_ticket_blobs(conn, ticket_id, limit, offset):
        tid = str(row["id"])
        try:
            entries = _blob_entries(row["actions_json"])
        except ValueError as e:
            log.error("Failed parsing actions blob for ticket %s: %s", tid, e)
            continue

        for entry in entries:
            try:
                action = normalize_action(entry)
            except MalformedTicketError as e:
                log.error("Skipping blob entry for ticket %s: %s", tid, e)
                continue
            if dry_run:
                restored += 1
                continue
            try:
                restored += insert_action(conn, tid, action)
            except psycopg.Error as e:
                raise_if_broken(conn, e)
                log.error("Error restoring action %s for ticket %s: %s", action.id, tid, e)

    return restored


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Rebuild ticket_actions from tickets.actions_json.")
    ap.add_argument("--ticket", default=None, help="Only this ticket ID.")
    ap.add_argument("--limit", type=int, default=None, help="Limit tickets scanned.")
    ap.add_argument("--offset", type=int, default=0, help="Offset into tickets (ordered by id).")
    ap.add_argument("--dry-run", action="store_true", help="Do not write, just count blob entries.")
    args = ap.parse_args(argv)

    setup_logging()
    log.info("Starting action rebuild | ticket=%s, limit=%s, offset=%s, dry_run=%s",
             args.ticket, args.limit, args.offset, args.dry_run)
    with get_db() as conn:
        n = restore_actions(conn, args.ticket, args.limit, args.offset, args.dry_run)
    log.info("✅ Action rebuild finished: %d action(s) %s.", n, "counted" if args.dry_run else "inserted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
