"""create clone progress tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "clone_progress",
        sa.Column("page_slug", sa.String(length=255), primary_key=True),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("record", sa.JSON(), nullable=False),
    )
    op.create_index("ix_clone_progress_status", "clone_progress", ["status"])
    op.create_table(
        "clone_progress_archive",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("page_slug", sa.String(length=255), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("record", sa.JSON(), nullable=False),
    )
    op.create_index("ix_clone_progress_archive_page_slug", "clone_progress_archive", ["page_slug"])

def downgrade():
    op.drop_index("ix_clone_progress_archive_page_slug", table_name="clone_progress_archive")
    op.drop_table("clone_progress_archive")
    op.drop_index("ix_clone_progress_status", table_name="clone_progress")
    op.drop_table("clone_progress")
