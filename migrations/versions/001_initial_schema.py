"""Initial schema.

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- profiles ---
    op.create_table(
        "profiles",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("user_ref", sa.VARCHAR(), nullable=False),
        sa.Column("display_name", sa.VARCHAR(), nullable=True),
        sa.Column("phone", sa.VARCHAR(), nullable=True),
        sa.Column("city", sa.VARCHAR(), nullable=True),
        sa.Column("neighbourhood", sa.VARCHAR(), nullable=True),
        sa.Column("location_lat", sa.FLOAT(), nullable=True),
        sa.Column("location_lng", sa.FLOAT(), nullable=True),
        sa.Column("radius", sa.INTEGER(), nullable=False, server_default="500"),
        sa.Column("skills", sa.VARCHAR(), nullable=True),
        sa.Column("availability", sa.VARCHAR(), nullable=False, server_default="now"),
        sa.Column("credits", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("tasks_completed", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("reliability_score", sa.FLOAT(), nullable=False, server_default="5.0"),
        sa.Column("trust_tier", sa.VARCHAR(), nullable=False, server_default="tier_0"),
        sa.Column("is_demo", sa.BOOLEAN(), nullable=False, server_default="0"),
        sa.Column("key_hash", sa.VARCHAR(), nullable=True),
        sa.Column("key_fingerprint", sa.VARCHAR(), nullable=True),
        sa.Column("deleted_at", sa.DATETIME(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profiles_user_ref", "profiles", ["user_ref"], unique=True)
    op.create_index("ix_profiles_key_fingerprint", "profiles", ["key_fingerprint"])

    # --- verification_events (append-only) ---
    op.create_table(
        "verification_events",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("profile_id", sa.VARCHAR(), nullable=False),
        sa.Column("verification_type", sa.VARCHAR(), nullable=False),
        sa.Column("details", sa.VARCHAR(), nullable=True),
        sa.Column("verified_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"]),
    )
    op.create_index("ix_verification_events_profile_id", "verification_events", ["profile_id"])
    op.create_index(
        "ix_verification_events_profile_type",
        "verification_events",
        ["profile_id", "verification_type"],
        unique=True,
    )

    # --- tasks ---
    op.create_table(
        "tasks",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("owner_id", sa.VARCHAR(), nullable=False),
        sa.Column("helper_id", sa.VARCHAR(), nullable=True),
        sa.Column("title", sa.VARCHAR(), nullable=False),
        sa.Column("description", sa.VARCHAR(), nullable=True),
        sa.Column("original_description", sa.VARCHAR(), nullable=True),
        sa.Column("category", sa.VARCHAR(), nullable=False, server_default="other"),
        sa.Column("urgency", sa.VARCHAR(), nullable=False, server_default="normal"),
        sa.Column("status", sa.VARCHAR(), nullable=False, server_default="open"),
        sa.Column("time_estimate", sa.VARCHAR(), nullable=True),
        sa.Column("physical_effort", sa.VARCHAR(), nullable=True),
        sa.Column("people_needed", sa.INTEGER(), nullable=False, server_default="1"),
        sa.Column("location_lat", sa.FLOAT(), nullable=True),
        sa.Column("location_lng", sa.FLOAT(), nullable=True),
        sa.Column("approx_address", sa.VARCHAR(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.Column("completed_at", sa.DATETIME(), nullable=True),
        sa.Column("cancelled_at", sa.DATETIME(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["owner_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["helper_id"], ["profiles.id"]),
    )
    op.create_index("ix_tasks_owner_id", "tasks", ["owner_id"])
    op.create_index("ix_tasks_helper_id", "tasks", ["helper_id"])
    op.create_index("ix_tasks_category", "tasks", ["category"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_created_at", "tasks", ["created_at"])
    op.create_index("ix_tasks_status_created_at", "tasks", ["status", "created_at"])

    # --- matches ---
    op.create_table(
        "matches",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("task_id", sa.VARCHAR(), nullable=False),
        sa.Column("helper_id", sa.VARCHAR(), nullable=False),
        sa.Column("status", sa.VARCHAR(), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.Column("accepted_at", sa.DATETIME(), nullable=True),
        sa.Column("arrived_at", sa.DATETIME(), nullable=True),
        sa.Column("completed_at", sa.DATETIME(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
        sa.ForeignKeyConstraint(["helper_id"], ["profiles.id"]),
    )
    op.create_index("ix_matches_task_id", "matches", ["task_id"])
    op.create_index("ix_matches_helper_id", "matches", ["helper_id"])
    # At most one live match per task
    op.create_index(
        "ux_matches_active_task",
        "matches",
        ["task_id"],
        unique=True,
        sqlite_where=sa.text("status != 'cancelled'"),
        postgresql_where=sa.text("status != 'cancelled'"),
    )

    # --- messages ---
    op.create_table(
        "messages",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("match_id", sa.VARCHAR(), nullable=False),
        sa.Column("sender_id", sa.VARCHAR(), nullable=False),
        sa.Column("content", sa.VARCHAR(), nullable=False),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["match_id"], ["matches.id"]),
        sa.ForeignKeyConstraint(["sender_id"], ["profiles.id"]),
    )
    op.create_index("ix_messages_match_created", "messages", ["match_id", "created_at"])

    # --- endorsements ---
    op.create_table(
        "endorsements",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("endorser_id", sa.VARCHAR(), nullable=False),
        sa.Column("endorsed_id", sa.VARCHAR(), nullable=True),
        sa.Column("token", sa.VARCHAR(), nullable=False),
        sa.Column("status", sa.VARCHAR(), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DATETIME(), nullable=False),
        sa.Column("accepted_at", sa.DATETIME(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["endorser_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["endorsed_id"], ["profiles.id"]),
    )
    op.create_index("ix_endorsements_endorser_id", "endorsements", ["endorser_id"])
    op.create_index("ix_endorsements_endorsed_id", "endorsements", ["endorsed_id"])
    op.create_index("ix_endorsements_token", "endorsements", ["token"], unique=True)

    # --- credit_ledger ---
    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("profile_id", sa.VARCHAR(), nullable=False),
        sa.Column("amount", sa.INTEGER(), nullable=False),
        sa.Column("reason", sa.VARCHAR(), nullable=False),
        sa.Column("task_id", sa.VARCHAR(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
    )
    op.create_index("ix_credit_ledger_profile_id", "credit_ledger", ["profile_id"])
    op.create_index(
        "ix_credit_ledger_profile_created", "credit_ledger", ["profile_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("credit_ledger")
    op.drop_table("endorsements")
    op.drop_table("messages")
    op.drop_table("matches")
    op.drop_table("tasks")
    op.drop_table("verification_events")
    op.drop_table("profiles")
