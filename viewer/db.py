import psycopg
from psycopg.rows import dict_row

from . import settings


# ---------- Connection ----------
def get_conn():
    """
    Connect to Postgres using psycopg3.
    - prepare_threshold=None disables server-side prepared statements
      (avoids 'prepared statement already exists' collisions).
    - row_factory=dict_row returns dict rows.
    """
    return psycopg.connect(settings.DATABASE_URL, row_factory=dict_row, prepare_threshold=None)


# ---------- Basic helpers ----------
def fetch_all(sql, params=None):
    with get_conn() as conn, conn.cursor() as cur:
        cur.execute(sql, params or (), prepare=False)
        return cur.fetchall()


def fetch_one(sql, params=None):
    with get_conn() as conn, conn.cursor() as cur:
        cur.execute(sql, params or (), prepare=False)
        return cur.fetchone()


# ---------- Actions with actor info ----------
def fetch_ticket_actions_with_actors(ticket_id: str):
    """
    Actions of a ticket, oldest first, with the actor's display name when the
    actor is a known person.
    """
    rows = fetch_all(
        """
        SELECT
            a.id,
            a.ticket_id,
            a.type,
            a.origin,
            a.status,
            a.description,
            a.html_description,
            a.justification,
            a.created_date,
            a.created_by_id,
            a.is_deleted,
            p.business_name AS actor_name,
            p.email AS actor_email
        FROM ticket_actions a
        LEFT JOIN persons p ON p.id = a.created_by_id
        WHERE a.ticket_id = %s
        ORDER BY a.created_date ASC NULLS LAST, a.id ASC
        """,
        (ticket_id,),
    )
    for r in rows:
        r["actor_display"] = (
            r.get("actor_name")
            or r.get("actor_email")
            or (f"Person #{r.get('created_by_id')}" if r.get("created_by_id") else "Unknown")
        )
    return rows
