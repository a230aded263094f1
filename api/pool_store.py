"""
Read/update access to the video_pool table for the transcoding pipeline.

Every write addresses a single row by primary key and is last-writer-wins;
there is no version check. Reads used by the batch scanner are bounded.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from databases import Database

from api.db_retry import db_execute_with_retry, fetch_all_with_retry, fetch_one_with_retry
from api.enums import PoolVideoStatus
from api.pool_video import KEY_NEEDS_TRANSCODING, PoolVideo, load_metadata
from config import TRANSCODE_BATCH_SIZE

logger = logging.getLogger(__name__)

_UNSET = object()


class PoolVideoStore:
    """Database-backed store for pool videos."""

    def __init__(self, db: Optional[Database] = None):
        """
        Args:
            db: Database to use. Defaults to api.database.database, resolved
                on each call so a reloaded module is picked up.
        """
        self._db = db

    @property
    def db(self) -> Database:
        if self._db is not None:
            return self._db
        from api import database as database_module

        return database_module.database

    @staticmethod
    def _table():
        from api.database import video_pool

        return video_pool

    async def find_eligible(
        self, project_id: Optional[str] = None, limit: int = TRANSCODE_BATCH_SIZE
    ) -> List[PoolVideo]:
        """
        Ready, unassigned videos flagged needsTranscoding, oldest first.

        Never returns more than ``limit`` rows.
        """
        video_pool = self._table()
        meta = video_pool.c["metadata"]
        query = (
            sa.select(video_pool)
            .where(video_pool.c.status == PoolVideoStatus.READY.value)
            .where(meta[KEY_NEEDS_TRANSCODING].as_boolean().is_(True))
            .where(video_pool.c.assigned_to_section_id.is_(None))
        )
        if project_id:
            query = query.where(video_pool.c.project_id == project_id)
        query = query.order_by(video_pool.c.created_at, video_pool.c.id).limit(limit)

        rows = await fetch_all_with_retry(self.db, query)
        return [PoolVideo.from_mapping(row) for row in rows]

    async def find_processing(self, project_id: Optional[str] = None) -> List[PoolVideo]:
        """All videos currently marked processing, optionally for one project."""
        video_pool = self._table()
        query = sa.select(video_pool).where(video_pool.c.status == PoolVideoStatus.PROCESSING.value)
        if project_id:
            query = query.where(video_pool.c.project_id == project_id)
        query = query.order_by(video_pool.c.created_at, video_pool.c.id)

        rows = await fetch_all_with_retry(self.db, query)
        return [PoolVideo.from_mapping(row) for row in rows]

    async def get(self, video_id: str) -> Optional[PoolVideo]:
        video_pool = self._table()
        row = await fetch_one_with_retry(self.db, sa.select(video_pool).where(video_pool.c.id == video_id))
        return PoolVideo.from_mapping(row) if row else None

    async def update_video(
        self,
        video_id: str,
        *,
        status: Optional[PoolVideoStatus] = None,
        video_url: Optional[str] = None,
        metadata: Any = _UNSET,
    ) -> None:
        """
        Write the given fields of one video. ``metadata`` replaces the whole
        JSON object; callers build it from the previous value when merging.
        """
        values: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if status is not None:
            values["status"] = PoolVideoStatus(status).value
        if video_url is not None:
            values["video_url"] = video_url
        if metadata is not _UNSET:
            values["metadata"] = metadata

        video_pool = self._table()
        await db_execute_with_retry(
            self.db, video_pool.update().where(video_pool.c.id == video_id).values(values)
        )

    async def project_status_rows(self, project_id: str) -> List[Dict[str, Any]]:
        """Status and metadata of every pool video in a project."""
        video_pool = self._table()
        query = sa.select(video_pool.c.id, video_pool.c.status, video_pool.c["metadata"]).where(
            video_pool.c.project_id == project_id
        )
        rows = await fetch_all_with_retry(self.db, query)
        return [
            {"id": row["id"], "status": row["status"], "metadata": load_metadata(row["metadata"])}
            for row in rows
        ]
