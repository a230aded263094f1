"""Persist the outcome of a finished transcode job onto its pool video."""

import logging
from typing import Optional

from api.enums import PoolVideoStatus
from api.errors import truncate_error
from api.pool_store import PoolVideoStore
from api.pool_video import ErrorMeta, ReadyMeta, utcnow

logger = logging.getLogger(__name__)


class ResultReconciler:
    def __init__(self, store: PoolVideoStore):
        self.store = store

    async def on_complete(self, pool_video_id: str, transcoded_url: str, original_url: str) -> None:
        """
        Point the video at the transcoded file and mark it ready.

        The metadata object is replaced, not merged, so repeating the call
        leaves the row in the same state apart from transcodedAt.
        """
        meta = ReadyMeta.after_transcode(original_url, transcoded_url, now=utcnow())
        await self.store.update_video(
            pool_video_id,
            status=PoolVideoStatus.READY,
            video_url=transcoded_url,
            metadata=meta.to_dict(),
        )
        logger.info(f"Pool video {pool_video_id} transcoded: {transcoded_url}")

    async def on_failure(
        self,
        pool_video_id: str,
        error_message: str,
        final_job_status: Optional[str] = None,
    ) -> None:
        """Mark the video errored, keeping what its metadata already held."""
        video = await self.store.get(pool_video_id)
        previous = video.metadata if video else {}
        meta = ErrorMeta.failed(
            previous,
            truncate_error(error_message),
            now=utcnow(),
            final_job_status=final_job_status,
        )
        await self.store.update_video(pool_video_id, status=PoolVideoStatus.ERROR, metadata=meta.to_dict())
        logger.error(f"Pool video {pool_video_id} failed transcoding: {meta.transcode_error}")
