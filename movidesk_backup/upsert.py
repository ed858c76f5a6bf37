"""
Write policies, in foreign-key order per ticket:

1. persons  – ON CONFLICT (id) DO UPDATE, last write wins. The organization row
              goes first, in the same transaction as the person pointing at it.
2. tickets  – ON CONFLICT (id) DO NOTHING, first write wins.
3. actions  – append-only on (id, ticket_id); a missing ticket row is logged
              and the action dropped.

Owner / createdBy / slaSolutionChangedBy / each client are separate units: one
of them failing does not roll back the others or the ticket.
"""

import logging
from typing import Any, Dict

import psycopg
from psycopg.errors import ForeignKeyViolation
from psycopg.types.json import Jsonb

from .models import Action, Person, Ticket

log = logging.getLogger(__name__)

PERSON_UPSERT_SQL = """
    INSERT INTO persons (id, business_name, email, phone, person_type, profile_type, is_deleted, organization_id)
    VALUES (%(id)s, %(business_name)s, %(email)s, %(phone)s, %(person_type)s, %(profile_type)s,
            %(is_deleted)s, %(organization_id)s)
    ON CONFLICT (id) DO UPDATE SET
      business_name=EXCLUDED.business_name, email=EXCLUDED.email, phone=EXCLUDED.phone,
      person_type=EXCLUDED.person_type, profile_type=EXCLUDED.profile_type,
      is_deleted=EXCLUDED.is_deleted, organization_id=EXCLUDED.organization_id
"""

TICKET_COLUMNS = (
    "id", "protocol", "type", "subject", "category", "urgency", "status", "base_status", "justification",
    "origin", "created_date", "origin_email_account", "owner_id", "owner_team", "created_by_id",
    "service_first_level_id", "service_first_level", "service_second_level", "service_third_level",
    "contact_form", "cc", "resolved_in", "reopened_in", "closed_in", "last_action_date", "action_count",
    "last_update", "lifetime_working_time", "stopped_time", "stopped_time_working_time",
    "resolved_in_first_call", "chat_widget", "chat_group", "chat_talk_time", "chat_waiting_time",
    "sla_agreement", "sla_agreement_rule", "sla_solution_time", "sla_response_time",
    "sla_solution_changed_by_user", "sla_solution_changed_by_id", "sla_solution_date",
    "sla_solution_date_is_paused", "sla_response_date", "sla_real_response_date", "client_id", "actions_json",
)

TICKET_INSERT_SQL = (
    f"INSERT INTO tickets ({', '.join(TICKET_COLUMNS)})\n"
    f"    VALUES ({', '.join(f'%({c})s' for c in TICKET_COLUMNS)})\n"
    "    ON CONFLICT (id) DO NOTHING"
)

ACTION_EXISTS_SQL = "SELECT 1 FROM ticket_actions WHERE id = %(id)s AND ticket_id = %(ticket_id)s"

ACTION_INSERT_SQL = """
    INSERT INTO ticket_actions (id, ticket_id, type, origin, description, html_description, status,
                                justification, created_date, created_by_id, is_deleted)
    VALUES (%(id)s, %(ticket_id)s, %(type)s, %(origin)s, %(description)s, %(html_description)s, %(status)s,
            %(justification)s, %(created_date)s, %(created_by_id)s, %(is_deleted)s)
"""


def raise_if_broken(conn, e: psycopg.Error):
    # A dead connection is not a per-item problem: let the run abort
    if getattr(conn, "broken", False):
        raise e


def person_params(p: Person) -> Dict[str, Any]:
    return {
        "id": p.id, "business_name": p.business_name, "email": p.email, "phone": p.phone,
        "person_type": p.person_type, "profile_type": p.profile_type,
        "is_deleted": p.is_deleted, "organization_id": p.organization_id,
    }


def ticket_params(t: Ticket) -> Dict[str, Any]:
    return {
        "id": t.id, "protocol": t.protocol, "type": t.type, "subject": t.subject, "category": t.category,
        "urgency": t.urgency, "status": t.status, "base_status": t.base_status,
        "justification": t.justification, "origin": t.origin, "created_date": t.created_date,
        "origin_email_account": t.origin_email_account,
        "owner_id": t.owner.id if t.owner else None,
        "owner_team": t.owner_team,
        "created_by_id": t.created_by.id if t.created_by else None,
        "service_first_level_id": t.service_first_level_id, "service_first_level": t.service_first_level,
        "service_second_level": t.service_second_level, "service_third_level": t.service_third_level,
        "contact_form": t.contact_form, "cc": t.cc, "resolved_in": t.resolved_in,
        "reopened_in": t.reopened_in, "closed_in": t.closed_in, "last_action_date": t.last_action_date,
        "action_count": t.action_count, "last_update": t.last_update,
        "lifetime_working_time": t.lifetime_working_time, "stopped_time": t.stopped_time,
        "stopped_time_working_time": t.stopped_time_working_time,
        "resolved_in_first_call": t.resolved_in_first_call, "chat_widget": t.chat_widget,
        "chat_group": t.chat_group, "chat_talk_time": t.chat_talk_time,
        "chat_waiting_time": t.chat_waiting_time, "sla_agreement": t.sla_agreement,
        "sla_agreement_rule": t.sla_agreement_rule, "sla_solution_time": t.sla_solution_time,
        "sla_response_time": t.sla_response_time,
        "sla_solution_changed_by_user": t.sla_solution_changed_by_user,
        "sla_solution_changed_by_id": t.sla_solution_changed_by.id if t.sla_solution_changed_by else None,
        "sla_solution_date": t.sla_solution_date,
        "sla_solution_date_is_paused": t.sla_solution_date_is_paused,
        "sla_response_date": t.sla_response_date, "sla_real_response_date": t.sla_real_response_date,
        "client_id": t.client_id,
        "actions_json": Jsonb(t.actions_blob),
    }


def action_params(ticket_id: str, a: Action) -> Dict[str, Any]:
    return {
        "id": a.id, "ticket_id": ticket_id, "type": a.type, "origin": a.origin,
        "description": a.description, "html_description": a.html_description, "status": a.status,
        "justification": a.justification, "created_date": a.created_date,
        "created_by_id": a.created_by_id, "is_deleted": a.is_deleted,
    }


def upsert_person(conn, person: Person) -> bool:
    try:
        with conn.transaction(), conn.cursor() as cur:
            if person.organization is not None:
                cur.execute(PERSON_UPSERT_SQL, person_params(person.organization))
            cur.execute(PERSON_UPSERT_SQL, person_params(person))
    except psycopg.Error as e:
        raise_if_broken(conn, e)
        log.error("Error upserting person %s (organization %s): %s", person.id, person.organization_id, e)
        return False
    return True


def insert_ticket(conn, ticket: Ticket) -> bool:
    """True when the row is in the store afterwards (inserted now or earlier)."""
    try:
        with conn.transaction(), conn.cursor() as cur:
            cur.execute(TICKET_INSERT_SQL, ticket_params(ticket))
            inserted = cur.rowcount == 1
    except psycopg.Error as e:
        raise_if_broken(conn, e)
        log.error("Error inserting ticket %s, rolled back: %s", ticket.id, e)
        return False
    if inserted:
        log.info("Ticket with ID %s inserted.", ticket.id)
    else:
        log.info("Ticket with ID %s already stored, left untouched.", ticket.id)
    return True


def insert_action(conn, ticket_id: str, action: Action) -> bool:
    """True only when a new row was written."""
    params = action_params(ticket_id, action)
    with conn.cursor() as cur:
        cur.execute(ACTION_EXISTS_SQL, params)
        if cur.fetchone():
            log.info("Action %s already exists for Ticket %s. Ignoring insertion.", action.id, ticket_id)
            return False
    try:
        with conn.transaction(), conn.cursor() as cur:
            cur.execute(ACTION_INSERT_SQL, params)
    except ForeignKeyViolation as e:
        log.warning("Action %s references missing ticket %s, dropped: %s", action.id, ticket_id, e)
        return False
    return True


def persist_ticket(conn, ticket: Ticket) -> bool:
    """
    Write one ticket with everything it references.

    Returns whether the ticket row is committed; the caller only clears the
    checkpoint entry on True. Person and action failures are logged and do not
    change the result.
    """
    present = {role for role, _ in ticket.related_persons()}
    for role in ("owner", "createdBy", "slaSolutionChangedBy"):
        if role not in present:
            log.info("No %s found for Ticket ID: %s", role, ticket.id)
    for role, person in ticket.related_persons():
        if upsert_person(conn, person):
            log.info("%s with ID %s inserted/updated.", role, person.id)

    if not ticket.clients:
        log.info("No clients found for Ticket ID: %s", ticket.id)
    for client in ticket.clients:
        if upsert_person(conn, client):
            log.info("Client %s (organization %s) inserted/updated.", client.id, client.organization_id)

    if not insert_ticket(conn, ticket):
        return False

    inserted = 0
    for action in ticket.actions:
        try:
            inserted += insert_action(conn, ticket.id, action)
        except psycopg.Error as e:
            raise_if_broken(conn, e)
            log.error("Error inserting action %s for ticket %s: %s", action.id, ticket.id, e)
    log.info("Ticket %s: %d/%d action(s) inserted.", ticket.id, inserted, len(ticket.actions))
    return True
