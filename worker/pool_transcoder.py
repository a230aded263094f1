"""
Batch transcoding of pool videos through AWS MediaConvert.

Entry points:
    process_pool_videos_for_transcoding(project_id)  scan -> submit -> monitor, once
    check_processing_videos(project_id)              reconcile rows left in processing
    get_pool_transcoding_status(project_id)          read-only counts for a project

All three return a plain dict with a "success" key and never raise; setup
failures (database, endpoint discovery) come back as {"success": False, "error": ...}.

Run as a long-lived worker with:
    python -m worker.pool_transcoder
"""

import asyncio
import logging
import signal
from typing import Any, Dict, List, Optional

from api.database import configure_database, database
from api.enums import PoolVideoStatus
from api.errors import truncate_error
from api.pool_store import PoolVideoStore
from api.pool_video import KEY_NEEDS_TRANSCODING, KEY_POSSIBLY_STUCK, KEY_TRANSCODED_AT, parse_iso, utcnow
from config import LOG_LEVEL, WORKER_SCAN_INTERVAL
from worker.job_monitor import JobMonitor
from worker.job_submitter import JobSubmitter
from worker.mediaconvert import MediaConvertService
from worker.pool_jobs import JobResult, TranscodeSettings
from worker.rate_limit import RateLimiter
from worker.reconciler import ResultReconciler
from worker.status_checker import CheckSummary, StatusChecker

logger = logging.getLogger(__name__)


class BatchScanner:
    """Pulls eligible videos in bounded batches and splits them into windows."""

    def __init__(self, store: PoolVideoStore, settings: TranscodeSettings):
        self.store = store
        self.settings = settings

    async def find_eligible_videos(self, project_id: Optional[str] = None):
        videos = await self.store.find_eligible(project_id, limit=self.settings.batch_size)
        # The store applies the limit; this guards stores that do not
        return videos[: self.settings.batch_size]

    def windows(self, videos: List[Any]) -> List[List[Any]]:
        size = self.settings.max_concurrent_jobs
        return [videos[i : i + size] for i in range(0, len(videos), size)]


async def process_pool_videos_for_transcoding(
    project_id: Optional[str] = None,
    *,
    store: Optional[PoolVideoStore] = None,
    service: Optional[MediaConvertService] = None,
    settings: Optional[TranscodeSettings] = None,
) -> Dict[str, Any]:
    """
    Transcode up to one batch of eligible pool videos.

    Videos are submitted window by window; each window is monitored to
    completion (or the attempt budget) before the next one is submitted.
    """
    settings = settings or TranscodeSettings.from_config()
    store = store or PoolVideoStore()

    try:
        logger.info("Starting batch transcoding" + (f" for project {project_id}" if project_id else ""))
        scanner = BatchScanner(store, settings)
        videos = await scanner.find_eligible_videos(project_id)

        if not videos:
            logger.info("No pool videos need transcoding")
            return {"success": True, "message": "No videos to process", "processed": 0}

        logger.info(f"Found {len(videos)} pool video(s) to transcode")

        service = service or MediaConvertService()
        await service.connect()

        rate_limiter = RateLimiter(settings.api_call_delay, settings.rate_limit_backoff)
        submitter = JobSubmitter(store, service, settings)
        monitor = JobMonitor(service, ResultReconciler(store), rate_limiter, settings)

        results: List[JobResult] = []
        windows = scanner.windows(videos)
        for number, window in enumerate(windows, start=1):
            logger.info(f"Processing window {number}/{len(windows)} ({len(window)} videos)")
            jobs = []
            for video in window:
                await rate_limiter.wait()
                jobs.append(await submitter.submit(video))
            results.extend(await monitor.monitor(jobs))

        successful = [r.to_dict() for r in results if r.success]
        failed = [r.to_dict() for r in results if not r.success]
        logger.info(f"Batch transcoding done. Success: {len(successful)}, Failed: {len(failed)}")

        return {
            "success": True,
            "results": {"successful": successful, "failed": failed, "total": len(videos)},
            "message": f"Processed {len(videos)} videos: {len(successful)} successful, {len(failed)} failed",
        }

    except Exception as e:
        logger.exception("Batch transcoding failed")
        return {"success": False, "error": truncate_error(e)}


async def check_processing_videos(
    project_id: Optional[str] = None,
    *,
    store: Optional[PoolVideoStore] = None,
    service: Optional[MediaConvertService] = None,
    settings: Optional[TranscodeSettings] = None,
) -> Dict[str, Any]:
    """Reconcile every processing video against MediaConvert once."""
    settings = settings or TranscodeSettings.from_config()
    store = store or PoolVideoStore()

    try:
        processing = await store.find_processing(project_id)
        if not processing:
            return {
                "success": True,
                "message": "No videos in processing state",
                "details": CheckSummary().to_dict(),
            }

        service = service or MediaConvertService()
        await service.connect()

        checker = StatusChecker(
            store,
            service,
            ResultReconciler(store),
            RateLimiter(settings.api_call_delay, settings.rate_limit_backoff),
            settings,
        )
        summary = await checker.recheck(project_id, videos=processing)

        message = f"Checked {summary.checked} videos, updated {summary.updated}"
        if summary.possibly_stuck:
            message += f", {summary.possibly_stuck} possibly stuck"
        logger.info(message)
        return {"success": True, "message": message, "details": summary.to_dict()}

    except Exception as e:
        logger.exception("Checking processing videos failed")
        return {"success": False, "error": truncate_error(e)}


async def get_pool_transcoding_status(
    project_id: str,
    *,
    store: Optional[PoolVideoStore] = None,
    settings: Optional[TranscodeSettings] = None,
) -> Dict[str, Any]:
    """Counts of a project's pool videos by state. Read-only."""
    settings = settings or TranscodeSettings.from_config()
    store = store or PoolVideoStore()

    try:
        rows = await store.project_status_rows(project_id)
    except Exception as e:
        logger.exception(f"Could not load pool status for project {project_id}")
        return {"success": False, "error": truncate_error(e)}

    stats = {
        "total": len(rows),
        "ready": 0,
        "processing": 0,
        "error": 0,
        "needsTranscoding": 0,
        "possiblyStuck": 0,
        "recentlyCompleted": 0,
    }
    now = utcnow()

    for row in rows:
        status = row["status"]
        metadata = row["metadata"] or {}

        if status in (PoolVideoStatus.READY.value, PoolVideoStatus.PROCESSING.value, PoolVideoStatus.ERROR.value):
            stats[status] += 1
        else:
            logger.warning(f"Pool video {row['id']} has unknown status {status!r}")

        if status == PoolVideoStatus.READY.value and metadata.get(KEY_NEEDS_TRANSCODING):
            stats["needsTranscoding"] += 1
        if status == PoolVideoStatus.PROCESSING.value and metadata.get(KEY_POSSIBLY_STUCK):
            stats["possiblyStuck"] += 1

        transcoded_at = parse_iso(metadata.get(KEY_TRANSCODED_AT))
        if transcoded_at and (now - transcoded_at).total_seconds() < settings.recently_completed_window:
            stats["recentlyCompleted"] += 1

    return {"success": True, "stats": stats}


class PoolTranscodeWorker:
    """Runs the status check and a batch run on a fixed interval."""

    def __init__(
        self,
        project_id: Optional[str] = None,
        scan_interval: float = WORKER_SCAN_INTERVAL,
        store: Optional[PoolVideoStore] = None,
        service: Optional[MediaConvertService] = None,
        settings: Optional[TranscodeSettings] = None,
    ):
        self.project_id = project_id
        self.scan_interval = scan_interval
        self.store = store or PoolVideoStore()
        self.service = service or MediaConvertService()
        self.settings = settings or TranscodeSettings.from_config()
        self.running = False
        self.passes = 0
        self._stop_event = asyncio.Event()

    async def run_once(self) -> None:
        check = await check_processing_videos(
            self.project_id, store=self.store, service=self.service, settings=self.settings
        )
        if not check["success"]:
            logger.error(f"Status check failed: {check['error']}")

        batch = await process_pool_videos_for_transcoding(
            self.project_id, store=self.store, service=self.service, settings=self.settings
        )
        if not batch["success"]:
            logger.error(f"Batch transcoding failed: {batch['error']}")
        self.passes += 1

    async def start(self) -> None:
        """Start the worker main loop."""
        logger.info("Starting pool transcode worker")
        self.running = True
        self._stop_event.clear()

        while self.running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("Pool transcode worker cancelled")
                break

            if not self.running:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.scan_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Pool transcode worker stopped")

    def stop(self) -> None:
        """Signal the worker to stop after the current pass."""
        logger.info("Stopping pool transcode worker")
        self.running = False
        self._stop_event.set()


async def run_pool_worker(project_id: Optional[str] = None) -> None:
    await database.connect()
    await configure_database()

    worker = PoolTranscodeWorker(project_id=project_id)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.start()
    finally:
        await database.disconnect()


def main() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_pool_worker())


if __name__ == "__main__":
    main()
