"""
Submit one pool video to MediaConvert.

The row is moved to processing (with transcodeStartedAt) before the
CreateJob call, so a crash mid-submission leaves a record the status
checker can find. Any failure of the call itself moves the row to error
in the same invocation; nothing is retried here.
"""

import logging

from api.enums import LocalJobStatus, PoolVideoStatus
from api.errors import error_for_log, truncate_error
from api.pool_store import PoolVideoStore
from api.pool_video import ErrorMeta, PoolVideo, ProcessingMeta, utcnow
from worker.mediaconvert import MediaConvertService, build_job_settings
from worker.pool_jobs import (
    TranscodeJob,
    TranscodeSettings,
    build_destination,
    build_output_key,
    build_output_url,
    compute_target_height,
    source_height,
)

logger = logging.getLogger(__name__)


class JobSubmitter:
    def __init__(self, store: PoolVideoStore, service: MediaConvertService, settings: TranscodeSettings):
        self.store = store
        self.service = service
        self.settings = settings

    def job_settings_for(self, video: PoolVideo) -> tuple:
        """Return (CreateJob request, predicted output URL) for a video."""
        height = source_height(video)
        target_height = compute_target_height(height, self.settings.max_height)
        output_url = build_output_url(video.project_id, video.video_url, target_height, self.settings)

        request = build_job_settings(
            input_url=video.video_url,
            destination=build_destination(video.project_id, self.settings),
            target_height=target_height,
            user_metadata={
                "poolVideoId": video.id,
                "projectId": video.project_id,
                "userId": video.user_id,
                "targetHeight": target_height,
                "sourceHeight": height,
                "originalFormat": video.format,
                "originalSize": video.file_size,
                "outputKey": build_output_key(video.project_id, video.video_url),
                "isPoolVideo": "true",
            },
        )
        return request, output_url

    async def submit(self, video: PoolVideo) -> TranscodeJob:
        """
        Start a transcode for ``video``.

        Returns a started TranscodeJob carrying the job id and predicted
        output URL, or a failed one carrying the error message.
        """
        logger.info(f"Starting transcode for pool video {video.id} ({video.original_filename})")
        started = ProcessingMeta.started(video.metadata, now=utcnow())

        try:
            await self.store.update_video(
                video.id, status=PoolVideoStatus.PROCESSING, metadata=started.to_dict()
            )
            request, output_url = self.job_settings_for(video)
            submitted = await self.service.create_job(request)
        except Exception as e:
            message = truncate_error(e)
            logger.error(f"Transcode submission failed for pool video {video.id}: {error_for_log(e)}")
            try:
                await self._mark_failed(video, started, message)
            except Exception:
                logger.exception(f"Could not record submission failure on pool video {video.id}")
            return TranscodeJob(
                pool_video_id=video.id,
                original_filename=video.original_filename,
                status=LocalJobStatus.FAILED,
                error=message,
            )

        logger.info(f"Created MediaConvert job {submitted.job_id} for pool video {video.id}")

        # The job exists remotely from here on; a failed stamp must not hide it from the monitor
        try:
            await self.store.update_video(video.id, metadata=started.with_job(submitted.job_id, output_url).to_dict())
        except Exception:
            logger.exception(f"Could not record job {submitted.job_id} on pool video {video.id}")

        return TranscodeJob(
            pool_video_id=video.id,
            original_filename=video.original_filename,
            job_id=submitted.job_id,
            output_url=output_url,
            original_url=video.video_url,
            status=LocalJobStatus.STARTED,
        )

    async def _mark_failed(self, video: PoolVideo, started: ProcessingMeta, message: str) -> None:
        meta = ErrorMeta.failed(started.to_dict(), message, now=utcnow())
        await self.store.update_video(video.id, status=PoolVideoStatus.ERROR, metadata=meta.to_dict())
