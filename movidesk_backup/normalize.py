"""
Raw Movidesk ticket payload → Ticket / Person / Action records.

Rules applied here:
- mandatory ticket fields: id, subject, status, baseStatus, origin
- absent or unparseable dates become None, never a sentinel date
- organizations nest one level only; an organization carrying its own
  organization is a malformed payload
- duplicate clients / actions (same id) collapse to the first occurrence
- a negative stoppedTime is treated as absent
"""

import re
import datetime as dt
from typing import Any, Dict, List, Optional

from .errors import MalformedTicketError
from .models import Action, Person, Ticket

MANDATORY_TICKET_FIELDS = ("id", "subject", "status", "baseStatus", "origin")

_FRACTION = re.compile(r"\.(\d{1,6})\d*")


def parse_dt(s: Optional[str]) -> Optional[str]:
    if not s:
        return None
    try:
        # Movidesk sends 1 to 7 fractional digits; fromisoformat wants exactly 6 before 3.11
        value = _FRACTION.sub(lambda m: "." + m.group(1).ljust(6, "0"), str(s).replace("Z", "+00:00"), count=1)
        return dt.datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None


def parse_int(v: Any) -> Optional[int]:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v)
    if isinstance(v, str) and v.strip():
        try:
            return int(float(v.strip())) if "." in v else int(v.strip())
        except ValueError:
            return None
    return None


def parse_bool(v: Any) -> Optional[bool]:
    if v is None:
        return None
    if isinstance(v, str):
        return v.strip().lower() in ("true", "1", "yes")
    return bool(v)


def _text(v: Any) -> Optional[str]:
    if v is None:
        return None
    return str(v)


def normalize_person(data: Any, nested_organization_allowed: bool = True) -> Optional[Person]:
    if not data:
        return None
    if not isinstance(data, dict):
        raise MalformedTicketError(f"Expected a person object, got {type(data).__name__}")

    pid = data.get("id")
    if pid is None or str(pid).strip() == "":
        raise MalformedTicketError("Person without id")

    org_data = data.get("organization")
    if org_data and not nested_organization_allowed:
        raise MalformedTicketError(f"Organization {pid} nests another organization")

    return Person(
        id=str(pid),
        business_name=_text(data.get("businessName")),
        email=_text(data.get("email")),
        phone=_text(data.get("phone")),
        person_type=parse_int(data.get("personType")),
        profile_type=parse_int(data.get("profileType")),
        is_deleted=bool(parse_bool(data.get("isDeleted"))),
        organization=normalize_person(org_data, nested_organization_allowed=False)
        if nested_organization_allowed else None,
    )


def normalize_action(data: Any) -> Action:
    if not isinstance(data, dict):
        raise MalformedTicketError(f"Expected an action object, got {type(data).__name__}")
    action_id = parse_int(data.get("id"))
    if action_id is None:
        raise MalformedTicketError(f"Action without a numeric id: {data.get('id')!r}")
    return Action(
        id=action_id,
        type=parse_int(data.get("type")),
        origin=parse_int(data.get("origin")),
        description=_text(data.get("description")),
        html_description=_text(data.get("htmlDescription")),
        status=_text(data.get("status")),
        justification=_text(data.get("justification")),
        created_date=parse_dt(data.get("createdDate")),
        created_by=normalize_person(data.get("createdBy")),
        is_deleted=bool(parse_bool(data.get("isDeleted"))),
    )


def _unique_clients(raw: List[Any]) -> List[Person]:
    clients, seen = [], set()
    for c in raw:
        if c is None:
            continue
        person = normalize_person(c)
        if person.id in seen:
            continue
        seen.add(person.id)
        clients.append(person)
    return clients


def _unique_actions(raw: List[Any]) -> List[Action]:
    actions, seen = [], set()
    for a in raw:
        action = normalize_action(a)
        if action.id in seen:
            continue
        seen.add(action.id)
        actions.append(action)
    return actions


def _list_field(payload: Dict[str, Any], key: str) -> List[Any]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedTicketError(f"'{key}' must be a list, got {type(value).__name__}")
    return value


def normalize_ticket(payload: Any) -> Ticket:
    if isinstance(payload, list) and len(payload) == 1:
        payload = payload[0]
    if not isinstance(payload, dict):
        raise MalformedTicketError(f"Expected a ticket object, got {type(payload).__name__}")

    missing = [k for k in MANDATORY_TICKET_FIELDS if payload.get(k) is None]
    if missing:
        raise MalformedTicketError(
            f"Ticket {payload.get('id')!r} missing mandatory field(s): {', '.join(missing)}"
        )
    origin = parse_int(payload.get("origin"))
    if origin is None:
        raise MalformedTicketError(f"Ticket {payload['id']!r} has a non-numeric origin")

    raw_actions = _list_field(payload, "actions")
    stopped_time = parse_int(payload.get("stoppedTime"))

    return Ticket(
        id=str(payload["id"]),
        subject=str(payload["subject"]),
        status=str(payload["status"]),
        base_status=str(payload["baseStatus"]),
        origin=origin,
        protocol=_text(payload.get("protocol")),
        type=parse_int(payload.get("type")),
        category=_text(payload.get("category")),
        urgency=_text(payload.get("urgency")),
        justification=_text(payload.get("justification")),
        created_date=parse_dt(payload.get("createdDate")),
        origin_email_account=_text(payload.get("originEmailAccount")),
        owner=normalize_person(payload.get("owner")),
        owner_team=_text(payload.get("ownerTeam")),
        created_by=normalize_person(payload.get("createdBy")),
        service_first_level_id=parse_int(payload.get("serviceFirstLevelId")),
        service_first_level=_text(payload.get("serviceFirstLevel")),
        service_second_level=_text(payload.get("serviceSecondLevel")),
        service_third_level=_text(payload.get("serviceThirdLevel")),
        contact_form=_text(payload.get("contactForm")),
        cc=_text(payload.get("cc")),
        resolved_in=parse_dt(payload.get("resolvedIn")),
        reopened_in=parse_dt(payload.get("reopenedIn")),
        closed_in=parse_dt(payload.get("closedIn")),
        last_action_date=parse_dt(payload.get("lastActionDate")),
        action_count=parse_int(payload.get("actionCount")),
        last_update=parse_dt(payload.get("lastUpdate")),
        lifetime_working_time=parse_int(payload.get("lifetimeWorkingTime")),
        stopped_time=stopped_time if stopped_time is not None and stopped_time >= 0 else None,
        stopped_time_working_time=parse_int(payload.get("stoppedTimeWorkingTime")),
        resolved_in_first_call=parse_bool(payload.get("resolvedInFirstCall")),
        chat_widget=_text(payload.get("chatWidget")),
        chat_group=_text(payload.get("chatGroup")),
        chat_talk_time=parse_int(payload.get("chatTalkTime")),
        chat_waiting_time=parse_int(payload.get("chatWaitingTime")),
        sla_agreement=_text(payload.get("slaAgreement")),
        sla_agreement_rule=_text(payload.get("slaAgreementRule")),
        sla_solution_time=parse_int(payload.get("slaSolutionTime")),
        sla_response_time=parse_int(payload.get("slaResponseTime")),
        sla_solution_changed_by_user=parse_bool(payload.get("slaSolutionChangedByUser")),
        sla_solution_changed_by=normalize_person(payload.get("slaSolutionChangedBy")),
        sla_solution_date=parse_dt(payload.get("slaSolutionDate")),
        sla_solution_date_is_paused=parse_bool(payload.get("slaSolutionDateIsPaused")),
        sla_response_date=parse_dt(payload.get("slaResponseDate")),
        sla_real_response_date=parse_dt(payload.get("slaRealResponseDate")),
        clients=_unique_clients(_list_field(payload, "clients")),
        actions=_unique_actions(raw_actions),
        actions_blob=raw_actions,
    )
