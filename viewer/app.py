from math import ceil
from datetime import datetime, timezone
from flask import Flask, render_template, request, redirect, url_for, abort
import humanize

from movidesk_backup.checkpoint import CheckpointFile
from movidesk_backup.normalize import parse_int

from .db import fetch_all, fetch_one, fetch_ticket_actions_with_actors
from . import settings

app = Flask(__name__)

PERSON_ROLES = (
    ("owner_id", "Owner"),
    ("created_by_id", "Created by"),
    ("sla_solution_changed_by_id", "SLA changed by"),
    ("client_id", "Client"),
)


# -----------------------
# Helpers / Jinja filters
# -----------------------
def _parse_dt(val):
    if not val:
        return None
    if isinstance(val, datetime):
        return val
    try:
        return datetime.fromisoformat(str(val))
    except ValueError:
        return None


@app.template_filter("humants")
def j_humants(val):
    dt = _parse_dt(val)
    if not dt:
        return "—"

    # Normalize both to timezone-aware UTC for subtraction
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    now = datetime.now(timezone.utc)

    delta = now - dt
    # show date if older than 2 days, else relative
    return humanize.naturaldate(dt) if delta.days >= 2 else humanize.naturaltime(delta)


@app.template_filter("yesno")
def j_yesno(val):
    if val is None:
        return "—"
    return "yes" if val else "no"


def paginate(total, page, per_page):
    pages = max(1, ceil(total / per_page)) if total else 1
    page = max(1, min(page, pages))
    return page, pages


def _page_args():
    page = request.args.get("page", 1, type=int) or 1
    per_page = request.args.get("per_page", settings.PER_PAGE_DEFAULT, type=int) or settings.PER_PAGE_DEFAULT
    return page, per_page


# -----------------------
# Routes
# -----------------------
@app.route("/")
def home():
    return redirect(url_for("tickets"))


# ---- Tickets ----
@app.route("/tickets")
def tickets():
    q = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip().lower()
    page, per_page = _page_args()

    where = []
    params = {}

    if q:
        where.append("(t.id = %(qid)s OR t.subject ILIKE %(qs)s OR t.protocol = %(qid)s)")
        params.update({"qid": q, "qs": f"%{q}%"})
    if status:
        where.append("LOWER(t.base_status) = %(st)s")
        params["st"] = status

    where_sql = ("WHERE " + " AND ".join(where)) if where else ""
    total = fetch_one(f"SELECT COUNT(*) AS c FROM tickets t {where_sql}", params)["c"]
    page, pages = paginate(total, page, per_page)
    offset = (page - 1) * per_page

    rows = fetch_all(
        f"""
        SELECT t.id, t.protocol, t.subject, t.status, t.base_status, t.urgency, t.category,
               t.created_date, t.last_update, t.action_count,
               o.business_name AS owner_name, c.business_name AS client_name
        FROM tickets t
        LEFT JOIN persons o ON o.id = t.owner_id
        LEFT JOIN persons c ON c.id = t.client_id
        {where_sql}
        ORDER BY t.last_update DESC NULLS LAST
        LIMIT %(limit)s OFFSET %(offset)s
        """,
        {**params, "limit": per_page, "offset": offset},
    )

    return render_template(
        "tickets_list.html",
        rows=rows, q=q, status=status,
        page=page, pages=pages, total=total, per_page=per_page
    )


@app.route("/tickets/<ticket_id>")
def ticket_detail(ticket_id: str):
    t = fetch_one("SELECT * FROM tickets WHERE id=%s", (ticket_id,))
    if not t:
        abort(404)

    people = []
    for col, label in PERSON_ROLES:
        if t.get(col):
            person = fetch_one("SELECT * FROM persons WHERE id=%s", (t[col],))
            people.append((label, t[col], person))

    actions = fetch_ticket_actions_with_actors(ticket_id)
    # actions still only in the blob (dropped or not yet rebuilt)
    stored_ids = {a["id"] for a in actions}
    blob_only = [a for a in (t.get("actions_json") or [])
                 if isinstance(a, dict) and parse_int(a.get("id")) not in stored_ids]

    return render_template("ticket_detail.html", t=t, people=people, actions=actions, blob_only=blob_only)


# ---- Persons ----
@app.route("/persons")
def persons():
    q = (request.args.get("q") or "").strip()
    page, per_page = _page_args()

    where = []
    params = {}
    if q:
        where.append("(p.id = %(qid)s OR p.business_name ILIKE %(qs)s OR p.email ILIKE %(qs)s)")
        params.update({"qid": q, "qs": f"%{q}%"})
    where_sql = ("WHERE " + " AND ".join(where)) if where else ""

    total = fetch_one(f"SELECT COUNT(*) AS c FROM persons p {where_sql}", params)["c"]
    page, pages = paginate(total, page, per_page)
    offset = (page - 1) * per_page

    rows = fetch_all(
        f"""
        SELECT p.id, p.business_name, p.email, p.phone, p.person_type, p.profile_type, p.is_deleted,
               p.organization_id, o.business_name AS organization_name
        FROM persons p
        LEFT JOIN persons o ON o.id = p.organization_id
        {where_sql}
        ORDER BY p.business_name ASC NULLS LAST
        LIMIT %(limit)s OFFSET %(offset)s
        """,
        {**params, "limit": per_page, "offset": offset},
    )
    return render_template("persons_list.html",
        rows=rows, q=q, page=page, pages=pages, total=total, per_page=per_page
    )


@app.route("/persons/<person_id>")
def person_detail(person_id: str):
    p = fetch_one("SELECT * FROM persons WHERE id=%s", (person_id,))
    if not p:
        abort(404)

    org = fetch_one("SELECT * FROM persons WHERE id=%s", (p["organization_id"],)) if p.get("organization_id") else None
    members = fetch_all(
        "SELECT id, business_name, email FROM persons WHERE organization_id=%s ORDER BY business_name LIMIT 200",
        (person_id,),
    )
    tickets = fetch_all(
        """
        SELECT id, subject, status, created_date, last_update
        FROM tickets
        WHERE owner_id=%(pid)s OR created_by_id=%(pid)s OR sla_solution_changed_by_id=%(pid)s OR client_id=%(pid)s
        ORDER BY last_update DESC NULLS LAST
        LIMIT 50
        """,
        {"pid": person_id},
    )
    return render_template("person_detail.html", p=p, org=org, members=members, tickets=tickets)


# ---- Checkpoint ----
@app.route("/pending")
def pending():
    checkpoint = CheckpointFile(settings.CHECKPOINT_FILE)
    return render_template("pending.html", ids=checkpoint.read(), path=str(checkpoint.path),
                           exists=checkpoint.exists())


# -----------------------
if __name__ == "__main__":
    app.run(host="127.0.0.1", port=5050, debug=True)
