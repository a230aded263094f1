"""
In-memory job records and tunables for a pool transcoding run.

TranscodeJob and JobResult only live for the duration of one batch run;
the persisted job handle is metadata.jobId on the video_pool row.
"""

import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import config
from api.enums import LocalJobStatus
from api.pool_video import KEY_HEIGHT, PoolVideo


@dataclass
class TranscodeSettings:
    """Tunables for one orchestration run. Tests pass small values here."""

    batch_size: int = 20
    max_concurrent_jobs: int = 5
    check_interval: float = 15.0
    max_check_attempts: int = 60
    api_call_delay: float = 0.5
    rate_limit_backoff: float = 5.0
    max_height: int = 720
    stuck_job_timeout: int = 900
    orphan_grace_period: int = 300
    recently_completed_window: int = 300
    output_bucket: str = "video-analysis-transcoded"
    s3_region: str = "eu-west-2"
    output_prefix: str = "transcoded/pool"

    @classmethod
    def from_config(cls) -> "TranscodeSettings":
        return cls(
            batch_size=config.TRANSCODE_BATCH_SIZE,
            max_concurrent_jobs=config.TRANSCODE_MAX_CONCURRENT_JOBS,
            check_interval=config.TRANSCODE_CHECK_INTERVAL,
            max_check_attempts=config.TRANSCODE_MAX_CHECK_ATTEMPTS,
            api_call_delay=config.TRANSCODE_API_CALL_DELAY,
            rate_limit_backoff=config.TRANSCODE_RATE_LIMIT_BACKOFF,
            max_height=config.TRANSCODE_MAX_HEIGHT,
            stuck_job_timeout=config.STUCK_JOB_TIMEOUT,
            orphan_grace_period=config.ORPHAN_GRACE_PERIOD,
            recently_completed_window=config.RECENTLY_COMPLETED_WINDOW,
            output_bucket=config.S3_OUTPUT_BUCKET,
            s3_region=config.S3_REGION,
            output_prefix=config.TRANSCODED_PREFIX,
        )


@dataclass
class TranscodeJob:
    """A submission made during this run (or a failed attempt at one)."""

    pool_video_id: str
    original_filename: Optional[str] = None
    job_id: Optional[str] = None
    output_url: Optional[str] = None
    original_url: Optional[str] = None
    status: LocalJobStatus = LocalJobStatus.STARTED
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status != LocalJobStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {
                "poolVideoId": self.pool_video_id,
                "originalFilename": self.original_filename,
                "success": False,
                "error": self.error,
            }
        return {
            "poolVideoId": self.pool_video_id,
            "jobId": self.job_id,
            "outputUrl": self.output_url,
            "originalUrl": self.original_url,
            "originalFilename": self.original_filename,
            "status": self.status.value,
        }


@dataclass
class JobResult:
    """Outcome of one job as reported back to the caller of a batch run."""

    pool_video_id: str
    success: bool
    transcoded_url: Optional[str] = None
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"poolVideoId": self.pool_video_id, "success": self.success}
        if self.transcoded_url is not None:
            data["transcodedUrl"] = self.transcoded_url
        if self.error is not None:
            data["error"] = self.error
        data.update(self.extra)
        return data


def source_height(video: PoolVideo) -> int:
    """Height of the source: the height column, then metadata.height, then 720."""
    for candidate in (video.height, video.metadata.get(KEY_HEIGHT)):
        try:
            value = int(candidate)
        except (TypeError, ValueError):
            continue
        if value > 0:
            return value
    return 720


def compute_target_height(height: int, max_height: int = 720) -> int:
    """Never upscale; cap at ``max_height``."""
    return min(int(height), max_height)


def source_filename_stem(video_url: str) -> str:
    """Last path segment of the video URL without its extension."""
    path = urlparse(video_url).path or video_url
    name = posixpath.basename(path.rstrip("/"))
    stem, _ = posixpath.splitext(name)
    return stem or name


def build_output_key(project_id: Optional[str], video_url: str) -> str:
    return f"pool/{project_id}/{source_filename_stem(video_url)}"


def build_output_prefix(project_id: Optional[str], settings: TranscodeSettings) -> str:
    return f"{settings.output_prefix}/{project_id}/"


def build_destination(project_id: Optional[str], settings: TranscodeSettings) -> str:
    """s3:// prefix MediaConvert writes the output file under."""
    return f"s3://{settings.output_bucket}/{build_output_prefix(project_id, settings)}"


def build_output_url(
    project_id: Optional[str], video_url: str, target_height: int, settings: TranscodeSettings
) -> str:
    """Public URL the transcoded MP4 will have once the job completes."""
    key = build_output_key(project_id, video_url)
    return (
        f"https://{settings.output_bucket}.s3.{settings.s3_region}.amazonaws.com/"
        f"{build_output_prefix(project_id, settings)}{key}-{target_height}p.mp4"
    )


def predicted_output_url(video: PoolVideo, settings: TranscodeSettings) -> str:
    """Output URL for a video whose metadata lost its outputUrl."""
    target = compute_target_height(source_height(video), settings.max_height)
    return build_output_url(video.project_id, video.video_url, target, settings)
