"""Initial schema: user_integrations, fitbit_activities, fitbit_weights, fitbit_foods, fitbit_sleep

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

RECORD_TABLES = ("fitbit_activities", "fitbit_weights", "fitbit_foods", "fitbit_sleep")


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _record_key_columns() -> list[sa.Column]:
    return [
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date, nullable=False),
    ]


def _synced_at_column() -> sa.Column:
    return sa.Column(
        "synced_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    # Ensure pgcrypto is available for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # --- user_integrations (credentials + sync status) ---
    op.create_table(
        "user_integrations",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("refresh_token", sa.Text, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "consecutive_failures", sa.Integer, nullable=False, server_default=sa.text("0")
        ),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("user_id", "provider", name="uq_user_integrations_user_provider"),
        sa.CheckConstraint("consecutive_failures >= 0", name="chk_consecutive_failures"),
    )
    op.create_index(
        "idx_user_integrations_active", "user_integrations", ["provider", "is_active"]
    )

    # updated_at trigger
    op.execute("""
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_user_integrations_updated_at
            BEFORE UPDATE ON user_integrations
            FOR EACH ROW
            EXECUTE FUNCTION update_updated_at_column();
    """)

    # --- per-day canonical records, one row per (user_id, date) ---
    op.create_table(
        "fitbit_activities",
        *_record_key_columns(),
        sa.Column("steps", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("distance", sa.Float, nullable=False, server_default=sa.text("0")),
        sa.Column("calories", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("active_minutes", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column(
            "activities", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        _synced_at_column(),
        sa.UniqueConstraint("user_id", "date", name="uq_fitbit_activities_user_date"),
        sa.CheckConstraint("steps >= 0", name="chk_fitbit_activities_steps"),
    )

    op.create_table(
        "fitbit_weights",
        *_record_key_columns(),
        sa.Column("weight", sa.Float, nullable=False),
        sa.Column("bmi", sa.Float, nullable=True),
        sa.Column("fat_percentage", sa.Float, nullable=True),
        _synced_at_column(),
        sa.UniqueConstraint("user_id", "date", name="uq_fitbit_weights_user_date"),
    )

    op.create_table(
        "fitbit_foods",
        *_record_key_columns(),
        sa.Column("calories", sa.Float, nullable=False, server_default=sa.text("0")),
        sa.Column(
            "foods", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column("water", sa.Float, nullable=False, server_default=sa.text("0")),
        _synced_at_column(),
        sa.UniqueConstraint("user_id", "date", name="uq_fitbit_foods_user_date"),
    )

    op.create_table(
        "fitbit_sleep",
        *_record_key_columns(),
        sa.Column("duration", sa.Integer, nullable=False),
        sa.Column("efficiency", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("start_time", sa.DateTime(timezone=False), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=False), nullable=True),
        sa.Column(
            "stages", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
        _synced_at_column(),
        sa.UniqueConstraint("user_id", "date", name="uq_fitbit_sleep_user_date"),
        sa.CheckConstraint("duration >= 0", name="chk_fitbit_sleep_duration"),
    )

    for table in RECORD_TABLES:
        op.create_index(f"idx_{table}_user_date", table, ["user_id", sa.text("date DESC")])


def downgrade() -> None:
    for table in reversed(RECORD_TABLES):
        op.drop_table(table)
    op.execute("DROP TRIGGER IF EXISTS trg_user_integrations_updated_at ON user_integrations")
    op.execute("DROP FUNCTION IF EXISTS update_updated_at_column")
    op.drop_table("user_integrations")
