"""
Records produced by the normalizer and consumed by the upsert layer.

Owner, CreatedBy, SlaSolutionChangedBy, Client and Organization all share the
`Person` shape; the role is only known where the record is used.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Person:
    id: str
    business_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    person_type: Optional[int] = None
    profile_type: Optional[int] = None
    is_deleted: bool = False
    # Never carries an organization of its own when used as an organization
    organization: Optional["Person"] = None

    @property
    def organization_id(self) -> Optional[str]:
        return self.organization.id if self.organization else None


@dataclass
class Action:
    id: int
    type: Optional[int] = None
    origin: Optional[int] = None
    description: Optional[str] = None
    html_description: Optional[str] = None
    status: Optional[str] = None
    justification: Optional[str] = None
    created_date: Optional[str] = None
    created_by: Optional[Person] = None
    is_deleted: bool = False

    @property
    def created_by_id(self) -> Optional[str]:
        return self.created_by.id if self.created_by else None


@dataclass
class Ticket:
    id: str
    subject: str
    status: str
    base_status: str
    origin: int
    protocol: Optional[str] = None
    type: Optional[int] = None
    category: Optional[str] = None
    urgency: Optional[str] = None
    justification: Optional[str] = None
    created_date: Optional[str] = None
    origin_email_account: Optional[str] = None
    owner: Optional[Person] = None
    owner_team: Optional[str] = None
    created_by: Optional[Person] = None
    service_first_level_id: Optional[int] = None
    service_first_level: Optional[str] = None
    service_second_level: Optional[str] = None
    service_third_level: Optional[str] = None
    contact_form: Optional[str] = None
    cc: Optional[str] = None
    resolved_in: Optional[str] = None
    reopened_in: Optional[str] = None
    closed_in: Optional[str] = None
    last_action_date: Optional[str] = None
    action_count: Optional[int] = None
    last_update: Optional[str] = None
    lifetime_working_time: Optional[int] = None
    stopped_time: Optional[int] = None
    stopped_time_working_time: Optional[int] = None
    resolved_in_first_call: Optional[bool] = None
    chat_widget: Optional[str] = None
    chat_group: Optional[str] = None
    chat_talk_time: Optional[int] = None
    chat_waiting_time: Optional[int] = None
    sla_agreement: Optional[str] = None
    sla_agreement_rule: Optional[str] = None
    sla_solution_time: Optional[int] = None
    sla_response_time: Optional[int] = None
    sla_solution_changed_by_user: Optional[bool] = None
    sla_solution_changed_by: Optional[Person] = None
    sla_solution_date: Optional[str] = None
    sla_solution_date_is_paused: Optional[bool] = None
    sla_response_date: Optional[str] = None
    sla_real_response_date: Optional[str] = None
    clients: List[Person] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)
    actions_blob: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def client_id(self) -> Optional[str]:
        # Storage keeps a single client link: the first one listed
        return self.clients[0].id if self.clients else None

    def related_persons(self):
        """(role, person) pairs for the single-valued person roles that are present."""
        roles = (
            ("owner", self.owner),
            ("createdBy", self.created_by),
            ("slaSolutionChangedBy", self.sla_solution_changed_by),
        )
        return [(role, p) for role, p in roles if p is not None]
