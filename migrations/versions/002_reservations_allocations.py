"""Reservations, lines, room allocations and the no-overlap exclusion constraint.

The EXCLUDE USING GIST constraint is the second, absolute layer of the
no-double-allocation guarantee. The first layer is the per-room row lock taken
by the allocation engine before its overlap check.

daterange('[)') makes checkout_A == checkin_B a valid same-day turnover.
Only active allocations participate; release flips active to false.

Revision ID: 002_reservations_allocations
Revises: 001_core_schema
Create Date: 2026-01-27
"""

from __future__ import annotations

from alembic import op


revision = "002_reservations_allocations"
down_revision = "001_core_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("CREATE EXTENSION IF NOT EXISTS btree_gist")
    conn.exec_driver_sql("""
        CREATE TABLE reservations (
            id                      UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            property_id             TEXT NOT NULL REFERENCES properties(id),
            guest_name              TEXT,
            guest_email             TEXT,
            guest_phone             TEXT,
            checkin                 DATE NOT NULL,
            checkout                DATE NOT NULL,
            status                  TEXT NOT NULL CHECK (status IN (
                'hold', 'confirmed', 'cancelled', 'expired', 'checked_in', 'checked_out'
            )),
            hold_expires_at         TIMESTAMPTZ,
            payment_state           TEXT,
            reconciliation_note     TEXT,
            cancel_reason           TEXT,
            total_amount            NUMERIC(12, 2) NOT NULL DEFAULT 0,
            currency                CHAR(3) NOT NULL,
            create_idempotency_key  TEXT,
            created_at              TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at              TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT reservations_dates CHECK (checkin < checkout),
            CONSTRAINT reservations_hold_ttl CHECK ((status = 'hold') = (hold_expires_at IS NOT NULL))
        )
    """)
    conn.exec_driver_sql("""
        CREATE UNIQUE INDEX uq_reservations_idempotency
            ON reservations(property_id, create_idempotency_key)
            WHERE create_idempotency_key IS NOT NULL
    """)
    conn.exec_driver_sql("""
        CREATE INDEX idx_reservations_hold_expiry
            ON reservations(hold_expires_at)
            WHERE status = 'hold'
    """)
    conn.exec_driver_sql("""
        CREATE TABLE reservation_lines (
            id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            reservation_id    UUID NOT NULL REFERENCES reservations(id),
            property_id       TEXT NOT NULL,
            room_type_id      TEXT NOT NULL,
            rate_plan_id      TEXT NOT NULL,
            quantity          INT NOT NULL CHECK (quantity > 0),
            occupancy         SMALLINT NOT NULL,
            pricing_snapshot  JSONB NOT NULL,
            total_amount      NUMERIC(12, 2) NOT NULL,
            created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
            FOREIGN KEY (property_id, room_type_id) REFERENCES room_types(property_id, id),
            FOREIGN KEY (property_id, rate_plan_id) REFERENCES rate_plans(property_id, id)
        )
    """)
    # Guest is charged what was quoted: the snapshot never changes once written
    conn.exec_driver_sql("""
        CREATE FUNCTION reservation_lines_snapshot_immutable() RETURNS trigger AS $$
        BEGIN
            IF NEW.pricing_snapshot IS DISTINCT FROM OLD.pricing_snapshot
               OR NEW.total_amount IS DISTINCT FROM OLD.total_amount THEN
                RAISE EXCEPTION 'pricing snapshot of reservation line %% is immutable', OLD.id;
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)
    conn.exec_driver_sql("""
        CREATE TRIGGER trg_reservation_lines_snapshot_immutable
            BEFORE UPDATE ON reservation_lines
            FOR EACH ROW EXECUTE FUNCTION reservation_lines_snapshot_immutable()
    """)
    conn.exec_driver_sql("""
        CREATE TABLE room_allocations (
            id                   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            property_id          TEXT NOT NULL,
            reservation_id       UUID NOT NULL REFERENCES reservations(id),
            reservation_line_id  UUID NOT NULL REFERENCES reservation_lines(id),
            room_id              TEXT NOT NULL,
            room_type_id         TEXT NOT NULL,
            checkin              DATE NOT NULL,
            checkout             DATE NOT NULL,
            active               BOOLEAN NOT NULL DEFAULT true,
            released_at          TIMESTAMPTZ,
            created_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
            FOREIGN KEY (property_id, room_id) REFERENCES rooms(property_id, id),
            CONSTRAINT room_allocations_dates CHECK (checkin < checkout),
            CONSTRAINT no_room_allocation_overlap EXCLUDE USING gist (
                property_id WITH =,
                room_id WITH =,
                daterange(checkin, checkout, '[)') WITH &&
            ) WHERE (active)
        )
    """)
    conn.exec_driver_sql("""
        CREATE INDEX idx_room_allocations_type_dates
            ON room_allocations(property_id, room_type_id, checkin, checkout)
            WHERE active
    """)
    conn.exec_driver_sql(
        "CREATE INDEX idx_room_allocations_reservation ON room_allocations(reservation_id)"
    )
    conn.exec_driver_sql("""
        CREATE TABLE payment_outcomes (
            property_id      TEXT NOT NULL,
            idempotency_key  TEXT NOT NULL,
            reservation_id   UUID NOT NULL REFERENCES reservations(id),
            outcome          TEXT NOT NULL CHECK (outcome IN ('succeeded', 'failed')),
            result_status    TEXT,
            created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (property_id, idempotency_key)
        )
    """)


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("DROP TABLE IF EXISTS payment_outcomes")
    conn.exec_driver_sql("DROP TABLE IF EXISTS room_allocations")
    conn.exec_driver_sql("DROP TABLE IF EXISTS reservation_lines")
    conn.exec_driver_sql("DROP FUNCTION IF EXISTS reservation_lines_snapshot_immutable()")
    conn.exec_driver_sql("DROP TABLE IF EXISTS reservations")
    # btree_gist is intentionally kept: other indexes may depend on it.
