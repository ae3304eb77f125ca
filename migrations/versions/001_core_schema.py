"""Core catalogue schema: properties, room types, rooms, rate plans, nightly rates.

Revision ID: 001_core_schema
Revises:
Create Date: 2026-01-26
"""

from __future__ import annotations

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_core_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("CREATE EXTENSION IF NOT EXISTS pgcrypto")
    conn.exec_driver_sql("""
        CREATE TABLE properties (
            id                    TEXT PRIMARY KEY,
            name                  TEXT NOT NULL,
            timezone              TEXT NOT NULL DEFAULT 'UTC',
            currency              CHAR(3) NOT NULL,
            pricing_display_mode  TEXT NOT NULL DEFAULT 'tax_exclusive'
                CHECK (pricing_display_mode IN ('tax_exclusive', 'tax_inclusive')),
            tax_percent           NUMERIC(5, 2) NOT NULL DEFAULT 0,
            fee_per_stay          NUMERIC(12, 2) NOT NULL DEFAULT 0,
            active                BOOLEAN NOT NULL DEFAULT true,
            created_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at            TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE room_types (
            property_id  TEXT NOT NULL REFERENCES properties(id),
            id           TEXT NOT NULL,
            name         TEXT NOT NULL,
            active       BOOLEAN NOT NULL DEFAULT true,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (property_id, id)
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE rooms (
            property_id   TEXT NOT NULL REFERENCES properties(id),
            id            TEXT NOT NULL,
            room_type_id  TEXT NOT NULL,
            label         TEXT NOT NULL,
            status        TEXT NOT NULL DEFAULT 'active'
                CHECK (status IN ('active', 'out_of_service')),
            created_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (property_id, id),
            FOREIGN KEY (property_id, room_type_id) REFERENCES room_types(property_id, id)
        )
    """)
    conn.exec_driver_sql(
        "CREATE INDEX idx_rooms_type_label ON rooms(property_id, room_type_id, label)"
    )
    conn.exec_driver_sql("""
        CREATE TABLE rate_plans (
            property_id             TEXT NOT NULL REFERENCES properties(id),
            id                      TEXT NOT NULL,
            name                    TEXT NOT NULL,
            pricing_mode            TEXT NOT NULL
                CHECK (pricing_mode IN ('explicit_table', 'derived_from_base')),
            base_rate_plan_id       TEXT,
            modifier_type           TEXT
                CHECK (modifier_type IN ('percent', 'amount_per_night', 'amount_per_stay')),
            modifier_value          NUMERIC(12, 4),
            rounding_rule           TEXT,
            visibility              TEXT NOT NULL DEFAULT 'public'
                CHECK (visibility IN ('public', 'private')),
            require_login           BOOLEAN NOT NULL DEFAULT false,
            eligible_tiers          TEXT[] NOT NULL DEFAULT '{}',
            corporate_account_ids   TEXT[] NOT NULL DEFAULT '{}',
            promo_code              TEXT,
            allow_loyalty_discount  BOOLEAN NOT NULL DEFAULT false,
            active                  BOOLEAN NOT NULL DEFAULT true,
            created_at              TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at              TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (property_id, id),
            FOREIGN KEY (property_id, base_rate_plan_id) REFERENCES rate_plans(property_id, id),
            CONSTRAINT rate_plans_derivation_shape CHECK (
                (pricing_mode = 'explicit_table' AND base_rate_plan_id IS NULL)
                OR (
                    pricing_mode = 'derived_from_base'
                    AND base_rate_plan_id IS NOT NULL
                    AND base_rate_plan_id <> id
                    AND modifier_type IS NOT NULL
                    AND modifier_value IS NOT NULL
                )
            )
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE room_type_rate_plans (
            property_id   TEXT NOT NULL,
            room_type_id  TEXT NOT NULL,
            rate_plan_id  TEXT NOT NULL,
            sort_order    INT NOT NULL DEFAULT 0,
            active        BOOLEAN NOT NULL DEFAULT true,
            PRIMARY KEY (property_id, room_type_id, rate_plan_id),
            FOREIGN KEY (property_id, room_type_id) REFERENCES room_types(property_id, id),
            FOREIGN KEY (property_id, rate_plan_id) REFERENCES rate_plans(property_id, id)
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE nightly_rates (
            property_id          TEXT NOT NULL,
            room_type_id         TEXT NOT NULL,
            rate_plan_id         TEXT NOT NULL,
            date                 DATE NOT NULL,
            occupancy            SMALLINT NOT NULL CHECK (occupancy BETWEEN 1 AND 8),
            amount               NUMERIC(12, 2) NOT NULL CHECK (amount >= 0),
            currency             CHAR(3) NOT NULL,
            per_stay_adjustment  NUMERIC(12, 2),
            updated_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (property_id, room_type_id, rate_plan_id, date, occupancy),
            FOREIGN KEY (property_id, rate_plan_id) REFERENCES rate_plans(property_id, id)
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE promo_codes (
            property_id    TEXT NOT NULL REFERENCES properties(id),
            code           TEXT NOT NULL,
            discount_type  TEXT NOT NULL CHECK (discount_type IN ('percent', 'amount')),
            value          NUMERIC(12, 2) NOT NULL CHECK (value >= 0),
            valid_from     DATE,
            valid_to       DATE,
            active         BOOLEAN NOT NULL DEFAULT true,
            PRIMARY KEY (property_id, code)
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE quote_locks (
            token         UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            property_id   TEXT NOT NULL REFERENCES properties(id),
            room_type_id  TEXT NOT NULL,
            rate_plan_id  TEXT NOT NULL,
            checkin       DATE NOT NULL,
            checkout      DATE NOT NULL,
            occupancy     SMALLINT NOT NULL,
            quote         JSONB NOT NULL,
            expires_at    TIMESTAMPTZ NOT NULL,
            created_at    TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)


def downgrade() -> None:
    conn = op.get_bind()
    for table in (
        "quote_locks",
        "promo_codes",
        "nightly_rates",
        "room_type_rate_plans",
        "rate_plans",
        "rooms",
        "room_types",
        "properties",
    ):
        conn.exec_driver_sql(f"DROP TABLE IF EXISTS {table}")
