"""
Poll a batch of MediaConvert jobs until each one resolves or the attempt
budget runs out.

Each round sleeps check_interval, then describes every still-active job
once (rate limited). COMPLETE and ERROR/CANCELED are reconciled as soon as
they are seen; anything else stays active. Jobs still active when the
budget is spent are reported as failed for this run but left processing
in the database for the status checker.
"""

import asyncio
import logging
from typing import Dict, List

from api.enums import LocalJobStatus, RemoteJobStatus, UnknownJobStatusError
from api.errors import error_for_log
from worker.mediaconvert import MediaConvertService, RateLimitedError
from worker.pool_jobs import JobResult, TranscodeJob, TranscodeSettings
from worker.rate_limit import RateLimiter
from worker.reconciler import ResultReconciler

logger = logging.getLogger(__name__)

STILL_PROCESSING_MESSAGE = "Job still processing - check status later"
SUBMISSION_FAILED_MESSAGE = "Failed to start transcode job"
REMOTE_FAILURE_MESSAGE = "Job failed"


class JobMonitor:
    def __init__(
        self,
        service: MediaConvertService,
        reconciler: ResultReconciler,
        rate_limiter: RateLimiter,
        settings: TranscodeSettings,
    ):
        self.service = service
        self.reconciler = reconciler
        self.rate_limiter = rate_limiter
        self.settings = settings
        self.rounds = 0

    async def monitor(self, jobs: List[TranscodeJob]) -> List[JobResult]:
        results: List[JobResult] = []
        active: Dict[str, TranscodeJob] = {}

        for job in jobs:
            if job.job_id:
                active[job.job_id] = job
            else:
                results.append(
                    JobResult(job.pool_video_id, success=False, error=job.error or SUBMISSION_FAILED_MESSAGE)
                )

        if active:
            logger.info(f"Monitoring {len(active)} MediaConvert job(s)")

        self.rounds = 0
        while active and self.rounds < self.settings.max_check_attempts:
            self.rounds += 1
            await asyncio.sleep(self.settings.check_interval)
            logger.debug(
                f"Status round {self.rounds}/{self.settings.max_check_attempts}, {len(active)} active job(s)"
            )

            for job_id, job in list(active.items()):
                result = await self._poll(job)
                if result is not None:
                    results.append(result)
                    del active[job_id]

        for job in active.values():
            logger.warning(
                f"Job {job.job_id} for pool video {job.pool_video_id} still running after "
                f"{self.rounds} checks, leaving it for the status checker"
            )
            results.append(
                JobResult(
                    job.pool_video_id,
                    success=False,
                    error=STILL_PROCESSING_MESSAGE,
                    extra={"jobId": job.job_id},
                )
            )

        return results

    async def _poll(self, job: TranscodeJob):
        """Describe one job; return its JobResult once it has resolved, else None."""
        await self.rate_limiter.wait()
        try:
            report = await self.service.get_job(job.job_id)
        except RateLimitedError:
            await self.rate_limiter.backoff()
            return None
        except UnknownJobStatusError as e:
            logger.error(f"Job {job.job_id} for pool video {job.pool_video_id}: {e}")
            return JobResult(job.pool_video_id, success=False, error=str(e), extra={"jobId": job.job_id})
        except Exception as e:
            logger.warning(f"Error checking job {job.job_id}: {error_for_log(e)}")
            return None

        logger.info(f"Job {job.job_id}: {report.status.value} ({report.percent_complete}%)")
        if not report.status.is_terminal:
            return None

        try:
            if report.status == RemoteJobStatus.COMPLETE:
                await self.reconciler.on_complete(job.pool_video_id, job.output_url, job.original_url)
                job.status = LocalJobStatus.SUCCESS
                return JobResult(job.pool_video_id, success=True, transcoded_url=job.output_url)

            message = report.error_message or REMOTE_FAILURE_MESSAGE
            await self.reconciler.on_failure(job.pool_video_id, message, final_job_status=report.status.value)
            job.status = LocalJobStatus.FAILED
            return JobResult(job.pool_video_id, success=False, error=message)
        except Exception:
            logger.exception(f"Could not record outcome of job {job.job_id} for pool video {job.pool_video_id}")

        return None
