import logging

import psycopg
from psycopg.rows import dict_row

from . import settings

log = logging.getLogger(__name__)


def get_db(dsn: str = settings.DATABASE_URL):
    """
    One connection for the whole run.
    - row_factory=dict_row gives dict rows
    - prepare_threshold=None disables server-side prepared statements
      (pgbouncer/Supabase poolers reject them)
    - autocommit: grouped writes open their own conn.transaction() block,
      so one failing ticket never poisons the next one
    """
    conn = psycopg.connect(dsn, row_factory=dict_row, prepare_threshold=None)
    conn.autocommit = True
    return conn


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS persons (
  id TEXT PRIMARY KEY,
  business_name TEXT,
  email TEXT,
  phone TEXT,
  person_type INT,
  profile_type INT,
  is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
  organization_id TEXT REFERENCES persons (id)
);

CREATE TABLE IF NOT EXISTS tickets (
  id TEXT PRIMARY KEY,
  protocol TEXT,
  type INT,
  subject TEXT NOT NULL,
  category TEXT,
  urgency TEXT,
  status TEXT NOT NULL,
  base_status TEXT NOT NULL,
  justification TEXT,
  origin INT NOT NULL,
  created_date TIMESTAMP,
  origin_email_account TEXT,
  owner_id TEXT REFERENCES persons (id),
  owner_team TEXT,
  created_by_id TEXT REFERENCES persons (id),
  service_first_level_id INT,
  service_first_level TEXT,
  service_second_level TEXT,
  service_third_level TEXT,
  contact_form TEXT,
  cc TEXT,
  resolved_in TIMESTAMP,
  reopened_in TIMESTAMP,
  closed_in TIMESTAMP,
  last_action_date TIMESTAMP,
  action_count INT,
  last_update TIMESTAMP,
  lifetime_working_time INT,
  stopped_time INT,
  stopped_time_working_time INT,
  resolved_in_first_call BOOLEAN,
  chat_widget TEXT,
  chat_group TEXT,
  chat_talk_time INT,
  chat_waiting_time INT,
  sla_agreement TEXT,
  sla_agreement_rule TEXT,
  sla_solution_time INT,
  sla_response_time INT,
  sla_solution_changed_by_user BOOLEAN,
  sla_solution_changed_by_id TEXT REFERENCES persons (id),
  sla_solution_date TIMESTAMP,
  sla_solution_date_is_paused BOOLEAN,
  sla_response_date TIMESTAMP,
  sla_real_response_date TIMESTAMP,
  client_id TEXT REFERENCES persons (id),
  actions_json JSONB NOT NULL DEFAULT '[]'::jsonb
);

CREATE TABLE IF NOT EXISTS ticket_actions (
  id INT NOT NULL,
  ticket_id TEXT NOT NULL REFERENCES tickets (id),
  type INT,
  origin INT,
  description TEXT,
  html_description TEXT,
  status TEXT,
  justification TEXT,
  created_date TIMESTAMP,
  created_by_id TEXT,
  is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
  PRIMARY KEY (id, ticket_id)
);
"""


def init_schema(conn):
    with conn.transaction(), conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)
    log.info("Schema ready (persons, tickets, ticket_actions).")
