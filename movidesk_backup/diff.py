from typing import Iterable, List, Set


def stored_ticket_ids(conn) -> Set[str]:
    with conn.cursor() as cur:
        cur.execute("SELECT id FROM tickets")
        return {str(row["id"]) for row in cur.fetchall()}


def pending_ticket_ids(discovered: Iterable[str], stored: Iterable[str]) -> List[str]:
    """discovered − stored, duplicates collapsed, first-discovery order kept."""
    skip = set(stored)
    pending, seen = [], set()
    for ticket_id in discovered:
        if ticket_id in skip or ticket_id in seen:
            continue
        seen.add(ticket_id)
        pending.append(ticket_id)
    return pending
