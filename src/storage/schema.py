"""
Schema bootstrap for the routing tables.

The directory tables (users, teams, team_members) are owned by the CRUD
layer; they are created here only so a fresh database can run the router
standalone. All statements are idempotent.
"""

import logging

from src.storage.database import Database

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    user_id         BIGINT PRIMARY KEY,
    login           TEXT NOT NULL,
    email           TEXT,
    role            TEXT NOT NULL DEFAULT 'ANALYST',
    open_case_count INTEGER NOT NULL DEFAULT 0,
    active          BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE TABLE IF NOT EXISTS teams (
    team_id     BIGINT PRIMARY KEY,
    name        TEXT NOT NULL,
    active      BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE TABLE IF NOT EXISTS team_members (
    team_id     BIGINT NOT NULL REFERENCES teams(team_id) ON DELETE CASCADE,
    user_id     BIGINT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    position    INTEGER NOT NULL DEFAULT 0,
    is_lead     BOOLEAN NOT NULL DEFAULT FALSE,
    PRIMARY KEY (team_id, user_id)
);

-- A team has zero or one lead
CREATE UNIQUE INDEX IF NOT EXISTS uq_team_members_lead
    ON team_members(team_id) WHERE is_lead;

CREATE TABLE IF NOT EXISTS rule_assignments (
    rule_id     TEXT PRIMARY KEY,
    rule_name   TEXT,
    description TEXT,
    severity    TEXT NOT NULL DEFAULT 'MEDIUM',
    category    TEXT NOT NULL DEFAULT 'OPERATIONAL',
    strategy    TEXT NOT NULL DEFAULT 'MANUAL',
    active      BOOLEAN NOT NULL DEFAULT TRUE,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS rule_assignment_users (
    rule_id     TEXT NOT NULL REFERENCES rule_assignments(rule_id) ON DELETE CASCADE,
    user_id     BIGINT NOT NULL,
    PRIMARY KEY (rule_id, user_id)
);

CREATE TABLE IF NOT EXISTS rule_assignment_teams (
    rule_id     TEXT NOT NULL REFERENCES rule_assignments(rule_id) ON DELETE CASCADE,
    team_id     BIGINT NOT NULL,
    PRIMARY KEY (rule_id, team_id)
);

CREATE INDEX IF NOT EXISTS idx_rule_assignment_users_user
    ON rule_assignment_users(user_id);
CREATE INDEX IF NOT EXISTS idx_rule_assignment_teams_team
    ON rule_assignment_teams(team_id);

CREATE TABLE IF NOT EXISTS assignment_cursors (
    rule_id     TEXT PRIMARY KEY REFERENCES rule_assignments(rule_id) ON DELETE CASCADE,
    position    BIGINT NOT NULL DEFAULT 0,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS notification_preferences (
    user_id             BIGINT PRIMARY KEY,
    severity_threshold  TEXT NOT NULL DEFAULT 'MEDIUM',
    enabled_types       TEXT[] NOT NULL DEFAULT '{}',
    quiet_hours_start   SMALLINT,
    quiet_hours_end     SMALLINT,
    timezone            TEXT NOT NULL DEFAULT 'UTC',
    in_app              BOOLEAN NOT NULL DEFAULT TRUE,
    desktop             BOOLEAN NOT NULL DEFAULT TRUE,
    email               BOOLEAN NOT NULL DEFAULT FALSE,
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS notifications (
    id                  BIGSERIAL PRIMARY KEY,
    recipient_id        BIGINT NOT NULL,
    rule_id             TEXT NOT NULL,
    external_event_id   TEXT NOT NULL,
    severity            TEXT NOT NULL,
    type                TEXT NOT NULL,
    title               TEXT NOT NULL DEFAULT '',
    message             TEXT NOT NULL DEFAULT '',
    payload             JSONB NOT NULL DEFAULT '{}',
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    read_at             TIMESTAMPTZ,
    CONSTRAINT uq_notifications_dedup
        UNIQUE (rule_id, external_event_id, recipient_id)
);

CREATE INDEX IF NOT EXISTS idx_notifications_recipient_id
    ON notifications(recipient_id, id);
CREATE INDEX IF NOT EXISTS idx_notifications_unread
    ON notifications(recipient_id) WHERE read_at IS NULL;
"""


async def create_tables(db: Database) -> None:
    """Create the routing schema if it does not exist."""
    await db.execute(SCHEMA_SQL)
    logger.info("Routing tables created/verified")
