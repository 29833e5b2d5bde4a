"""Initial schema: student documents and sync run tracking.

Revision ID: 001
Revises:
Create Date: 2026-10-18

- student_document: per-email aggregate with JSON student info and courses
- sync_run: one row per pipeline run with window and summary counts
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "student_document",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False, comment="Lowercase, trimmed email"),
        sa.Column(
            "customer_email",
            sa.String(),
            nullable=True,
            comment="Lookup field used by earlier document shapes",
        ),
        sa.Column("student_info", sa.JSON(), nullable=False),
        sa.Column("courses", sa.JSON(), nullable=False),
        sa.Column("synced", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "version",
            sa.Integer(),
            nullable=False,
            server_default="1",
            comment="Optimistic concurrency token, bumped on every merge",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(
        op.f("ix_student_document_email"),
        "student_document",
        ["email"],
        unique=True,
    )
    op.create_index(
        op.f("ix_student_document_customer_email"),
        "student_document",
        ["customer_email"],
        unique=False,
    )

    op.create_table(
        "sync_run",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("trigger", sa.String(), nullable=False),
        sa.Column("window_start", sa.DateTime(), nullable=True),
        sa.Column("window_end", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("orders_fetched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("courses_mapped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("persisted_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("merged_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("invalid_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )
    # Query pattern: "most recent run"
    op.create_index(
        "ix_sync_run_started_at",
        "sync_run",
        ["started_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_sync_run_started_at", table_name="sync_run")
    op.drop_table("sync_run")
    op.drop_index(op.f("ix_student_document_customer_email"), table_name="student_document")
    op.drop_index(op.f("ix_student_document_email"), table_name="student_document")
    op.drop_table("student_document")
