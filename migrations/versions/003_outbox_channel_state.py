"""Outbox events, per-(property, kind) channel state and integration log.

Only one pending row may exist per dedupe key; emitters coalesce into it.

Revision ID: 003_outbox_channel_state
Revises: 002_reservations_allocations
Create Date: 2026-01-29
"""

from __future__ import annotations

from alembic import op


revision = "003_outbox_channel_state"
down_revision = "002_reservations_allocations"
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("""
        CREATE TABLE outbox_events (
            id               BIGSERIAL PRIMARY KEY,
            property_id      TEXT NOT NULL,
            room_type_id     TEXT,
            rate_plan_id     TEXT,
            date_from        DATE,
            date_to          DATE,
            kind             TEXT NOT NULL
                CHECK (kind IN ('property_data', 'rate', 'inventory', 'availability')),
            dedupe_key       TEXT NOT NULL,
            payload          JSONB NOT NULL,
            status           TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'sent', 'failed')),
            version          INT NOT NULL DEFAULT 1,
            attempt_count    INT NOT NULL DEFAULT 0,
            last_error       TEXT,
            last_response    JSONB,
            next_attempt_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
            leased_until     TIMESTAMPTZ,
            correlation_id   TEXT,
            created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
            sent_at          TIMESTAMPTZ
        )
    """)
    conn.exec_driver_sql("""
        CREATE UNIQUE INDEX uq_outbox_events_pending_dedupe
            ON outbox_events(dedupe_key)
            WHERE status = 'pending'
    """)
    conn.exec_driver_sql("""
        CREATE INDEX idx_outbox_events_due
            ON outbox_events(next_attempt_at, id)
            WHERE status = 'pending'
    """)
    conn.exec_driver_sql("""
        CREATE INDEX idx_outbox_events_failed
            ON outbox_events(property_id, updated_at)
            WHERE status = 'failed'
    """)
    conn.exec_driver_sql("""
        CREATE TABLE channel_state (
            property_id        TEXT NOT NULL,
            kind               TEXT NOT NULL,
            last_success_at    TIMESTAMPTZ,
            last_payload_hash  TEXT,
            last_error         TEXT,
            last_error_at      TIMESTAMPTZ,
            last_attempt_at    TIMESTAMPTZ,
            updated_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (property_id, kind)
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE integration_log (
            id                BIGSERIAL PRIMARY KEY,
            property_id       TEXT,
            direction         TEXT NOT NULL CHECK (direction IN ('inbound', 'outbound')),
            channel           TEXT NOT NULL,
            reference         TEXT,
            correlation_id    TEXT,
            request_payload   JSONB,
            response_payload  JSONB,
            http_status       INT,
            status            TEXT NOT NULL,
            created_at        TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    conn.exec_driver_sql("""
        CREATE INDEX idx_integration_log_property
            ON integration_log(property_id, created_at DESC)
    """)


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("DROP TABLE IF EXISTS integration_log")
    conn.exec_driver_sql("DROP TABLE IF EXISTS channel_state")
    conn.exec_driver_sql("DROP TABLE IF EXISTS outbox_events")
