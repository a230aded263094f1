from datetime import datetime, timezone

import sqlalchemy as sa
from databases import Database

from config import DATABASE_URL

# Create database instance - works with PostgreSQL or SQLite
database = Database(DATABASE_URL)
metadata = sa.MetaData()


async def configure_database():
    """
    Configure database-specific settings after connection.
    PostgreSQL needs nothing; SQLite gets foreign keys switched on.
    """
    if database.url.dialect == "sqlite":
        await database.execute("PRAGMA foreign_keys = ON")


# Video pool: uploaded inspection videos waiting to be assigned to a section.
#
# STATE SEMANTICS:
# ----------------
# - ready + metadata.needsTranscoding = true: eligible for batch transcoding
#   (only while assigned_to_section_id IS NULL)
# - processing: submitted to MediaConvert, metadata.jobId holds the job handle
# - ready + metadata.transcoded = true: video_url points at the transcoded MP4
# - error: submission or remote job failed, metadata.transcodeError says why
#
# The row is created and assigned by the upload/project code. The transcoding
# pipeline only touches status, video_url and metadata, always by primary key.
#
# See api/pool_video.py for the metadata keys each status carries.
video_pool = sa.Table(
    "video_pool",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("project_id", sa.String(36), nullable=False),
    sa.Column("user_id", sa.String(36), nullable=True),
    sa.Column("video_url", sa.Text, nullable=False),
    sa.Column(
        "status",
        sa.String(20),
        sa.CheckConstraint(
            "status IN ('ready', 'processing', 'error')",
            name="ck_video_pool_status",
        ),
        nullable=False,
        default="ready",
    ),  # ready, processing, error
    sa.Column("metadata", sa.JSON, nullable=True),
    sa.Column("original_filename", sa.String(255), nullable=True),
    sa.Column("format", sa.String(20), nullable=True),
    sa.Column("file_size", sa.BigInteger, nullable=True),
    sa.Column("height", sa.Integer, nullable=True),
    sa.Column("assigned_to_section_id", sa.String(36), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),  # stamped by PoolVideoStore writes
    sa.Index("ix_video_pool_status", "status"),
    sa.Index("ix_video_pool_project_id", "project_id"),
    sa.Index("ix_video_pool_assigned_section", "assigned_to_section_id"),
)
