"""create_video_pool

Revision ID: 001
Revises:
Create Date: 2026-10-19

Create the video_pool table used by the batch transcoding pipeline.
On an existing deployment the table is already owned by the upload code;
stamp this revision instead of running it there.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "video_pool",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("video_url", sa.Text, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ready"),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column("original_filename", sa.String(255), nullable=True),
        sa.Column("format", sa.String(20), nullable=True),
        sa.Column("file_size", sa.BigInteger, nullable=True),
        sa.Column("height", sa.Integer, nullable=True),
        sa.Column("assigned_to_section_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('ready', 'processing', 'error')", name="ck_video_pool_status"),
    )
    op.create_index("ix_video_pool_status", "video_pool", ["status"])
    op.create_index("ix_video_pool_project_id", "video_pool", ["project_id"])
    op.create_index("ix_video_pool_assigned_section", "video_pool", ["assigned_to_section_id"])


def downgrade() -> None:
    op.drop_index("ix_video_pool_assigned_section", table_name="video_pool")
    op.drop_index("ix_video_pool_project_id", table_name="video_pool")
    op.drop_index("ix_video_pool_status", table_name="video_pool")
    op.drop_table("video_pool")
