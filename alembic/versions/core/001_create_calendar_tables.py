"""create_calendar_tables

Revision ID: core_001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "core_001"
down_revision = None
branch_labels = ("core",)
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS calendar_integrations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            access_token TEXT,
            refresh_token TEXT,
            expires_at TIMESTAMPTZ,
            is_active BOOLEAN NOT NULL DEFAULT true,
            last_synced_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_calendar_integrations_user_provider UNIQUE (user_id, provider)
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_calendar_integrations_due
        ON calendar_integrations (last_synced_at)
        WHERE is_active = true
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS calendar_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            external_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            location TEXT,
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ NOT NULL,
            timezone TEXT,
            is_all_day BOOLEAN NOT NULL DEFAULT false,
            status TEXT,
            attendees JSONB NOT NULL DEFAULT '[]',
            reminders JSONB NOT NULL DEFAULT '[]',
            recurrence JSONB,
            color TEXT,
            html_link TEXT,
            metadata JSONB NOT NULL DEFAULT '{}',
            last_synced_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_calendar_events_user_provider_external
                UNIQUE (user_id, provider, external_id)
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_calendar_events_user_window
        ON calendar_events (user_id, start_time, end_time)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS calendar_events")
    op.execute("DROP TABLE IF EXISTS calendar_integrations")
