"""Create projects, versions and drafts tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Initial schema: projects, their versions, and autosaved drafts.
How:   Portable column types only (TEXT, JSON, BIGINT) so the same revision
       runs on PostgreSQL and SQLite.

Rollback: downgrade() drops all three tables (all data lost).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("original_note", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column(
            "timestamp",
            sa.BigInteger(),
            nullable=False,
            comment="Last modification time, epoch milliseconds",
        ),
        sa.Column("main_image_url", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    # Library screen lists newest first
    op.create_index("idx_projects_timestamp", "projects", [sa.text("timestamp DESC")])

    op.create_table(
        "versions",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("project_id", sa.String(128), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("title", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("content", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "style",
            sa.String(32),
            nullable=False,
            server_default=sa.text("'standard'"),
            comment="standard, detailed, story, analysis or minimalist",
        ),
        sa.Column("is_recommended", sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", "project_id"),
    )
    op.create_index("ix_versions_project_id", "versions", ["project_id"])

    op.create_table(
        "drafts",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_drafts_timestamp", "drafts", [sa.text("timestamp DESC")])


def downgrade() -> None:
    op.drop_index("idx_drafts_timestamp", table_name="drafts")
    op.drop_table("drafts")
    op.drop_index("ix_versions_project_id", table_name="versions")
    op.drop_table("versions")
    op.drop_index("idx_projects_timestamp", table_name="projects")
    op.drop_table("projects")
