"""
Out-of-band reconciliation of videos already marked processing.

Works only from what is persisted (metadata.jobId, metadata.outputUrl), so it
can run after a restart or alongside a batch run. Each video is described at
most once per call; running it repeatedly is safe.
"""

import logging
from dataclasses import asdict, dataclass
from typing import List, Optional

from api.enums import RemoteJobStatus, UnknownJobStatusError
from api.errors import error_for_log
from api.pool_store import PoolVideoStore
from api.pool_video import PoolVideo, ProcessingMeta, utcnow
from worker.job_monitor import REMOTE_FAILURE_MESSAGE
from worker.mediaconvert import MediaConvertService, RateLimitedError
from worker.pool_jobs import TranscodeSettings, predicted_output_url
from worker.rate_limit import RateLimiter
from worker.reconciler import ResultReconciler

logger = logging.getLogger(__name__)

NO_JOB_ID_MESSAGE = "No job ID found"


@dataclass
class CheckSummary:
    """
    checked: processing videos looked at
    updated: videos moved out of processing (to ready or error)
    failed: videos moved to error, orphans included
    possibly_stuck: videos still running past the stuck threshold
    orphaned: processing videos without a job id that were failed
    """

    checked: int = 0
    updated: int = 0
    failed: int = 0
    possibly_stuck: int = 0
    orphaned: int = 0

    def to_dict(self):
        data = asdict(self)
        data["possiblyStuck"] = data.pop("possibly_stuck")
        return data


class StatusChecker:
    def __init__(
        self,
        store: PoolVideoStore,
        service: MediaConvertService,
        reconciler: ResultReconciler,
        rate_limiter: RateLimiter,
        settings: TranscodeSettings,
    ):
        self.store = store
        self.service = service
        self.reconciler = reconciler
        self.rate_limiter = rate_limiter
        self.settings = settings

    async def recheck(self, project_id: Optional[str] = None, videos: Optional[List[PoolVideo]] = None) -> CheckSummary:
        if videos is None:
            videos = await self.store.find_processing(project_id)
        summary = CheckSummary(checked=len(videos))
        logger.info(f"Checking {len(videos)} processing pool video(s)")

        for video in videos:
            try:
                if video.job_id:
                    await self._check_job(video, summary)
                else:
                    await self._check_orphan(video, summary)
            except Exception:
                logger.exception(f"Could not reconcile pool video {video.id}")

        return summary

    async def _check_orphan(self, video: PoolVideo, summary: CheckSummary) -> None:
        started_at = video.meta.started_at
        if started_at is not None:
            age = (utcnow() - started_at).total_seconds()
            if age < self.settings.orphan_grace_period:
                # Submission may still be in flight in another run
                return

        logger.warning(f"Pool video {video.id} is processing without a job id")
        await self.reconciler.on_failure(video.id, NO_JOB_ID_MESSAGE)
        summary.orphaned += 1
        summary.failed += 1
        summary.updated += 1

    async def _check_job(self, video: PoolVideo, summary: CheckSummary) -> None:
        meta = video.meta

        await self.rate_limiter.wait()
        try:
            report = await self.service.get_job(meta.job_id)
        except RateLimitedError:
            await self.rate_limiter.backoff()
            return
        except UnknownJobStatusError as e:
            logger.error(f"Job {meta.job_id} for pool video {video.id}: {e}")
            return
        except Exception as e:
            logger.warning(f"Error checking job {meta.job_id}: {error_for_log(e)}")
            return

        logger.info(f"Job {meta.job_id}: {report.status.value}")
        if not report.status.is_terminal:
            await self._flag_if_stuck(video, meta, summary)
            return

        if report.status == RemoteJobStatus.COMPLETE:
            transcoded_url = meta.output_url or predicted_output_url(video, self.settings)
            await self.reconciler.on_complete(video.id, transcoded_url, video.video_url)
            summary.updated += 1
        else:
            await self.reconciler.on_failure(
                video.id,
                report.error_message or REMOTE_FAILURE_MESSAGE,
                final_job_status=report.status.value,
            )
            summary.updated += 1
            summary.failed += 1

    async def _flag_if_stuck(self, video: PoolVideo, meta: ProcessingMeta, summary: CheckSummary) -> None:
        started_at = meta.started_at
        if started_at is None:
            return

        now = utcnow()
        elapsed = (now - started_at).total_seconds()
        if elapsed <= self.settings.stuck_job_timeout:
            return

        minutes = int(elapsed // 60)
        stuck = meta.mark_stuck(now, minutes)
        if meta.stuck_detected_at:
            stuck.stuck_detected_at = meta.stuck_detected_at
        await self.store.update_video(video.id, metadata=stuck.to_dict())
        summary.possibly_stuck += 1
        logger.warning(f"Job {meta.job_id} for pool video {video.id} has been processing for {minutes} minutes")
