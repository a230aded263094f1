"""
Pool video records and their status-keyed metadata.

The video_pool.metadata column is a free-form JSON object shared with the
upload/ingestion code. This module gives each pool status its own view of
that object so the transcoding pipeline only reads and writes the keys that
belong to the current state:

    READY      -> ReadyMeta       (needsTranscoding, or the transcode result)
    PROCESSING -> ProcessingMeta  (transcodeStartedAt, jobId, outputUrl, stuck markers)
    ERROR      -> ErrorMeta       (transcodeError, transcodeFailedAt, plus what processing left)

Keys a variant does not know about are kept in ``extra`` and written back
unchanged, except on the ready-after-transcode path which replaces the whole
object. Failure keeps the previous job keys for forensics.

Usage:
    video = PoolVideo.from_mapping(row)
    meta = video.meta                       # variant chosen by video.status
    started = ProcessingMeta.started(video.metadata, now=utcnow())
    await store.update_video(video.id, status=PoolVideoStatus.PROCESSING, metadata=started.to_dict())
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from api.enums import PoolVideoStatus

logger = logging.getLogger(__name__)

# Metadata keys as stored in the JSON column
KEY_NEEDS_TRANSCODING = "needsTranscoding"
KEY_JOB_ID = "jobId"
KEY_OUTPUT_URL = "outputUrl"
KEY_STARTED_AT = "transcodeStartedAt"
KEY_FAILED_AT = "transcodeFailedAt"
KEY_ERROR = "transcodeError"
KEY_FINAL_JOB_STATUS = "finalJobStatus"
KEY_POSSIBLY_STUCK = "possiblyStuck"
KEY_STUCK_DETECTED_AT = "stuckDetectedAt"
KEY_PROCESSING_MINUTES = "processingTimeMinutes"
KEY_ORIGINAL_URL = "original_url"
KEY_TRANSCODED_URL = "transcoded_url"
KEY_TRANSCODED_AT = "transcodedAt"
KEY_TRANSCODED = "transcoded"
KEY_FORMAT = "format"
KEY_CODEC = "codec"
KEY_HEIGHT = "height"

TRANSCODED_FORMAT = "mp4"
TRANSCODED_CODEC = "h264"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


def parse_iso(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp from metadata into a UTC datetime.

    Accepts a trailing 'Z' (as written by JavaScript clients). Naive values
    are assumed to be UTC. Returns None for missing or unparseable values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            logger.warning(f"Unparseable metadata timestamp: {value!r}")
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _split(raw: Optional[Mapping[str, Any]], known: tuple) -> tuple:
    """Split a raw metadata mapping into (known values, everything else)."""
    data = dict(raw or {})
    values = {key: data.pop(key) for key in known if key in data}
    return values, data


def _compact(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


@dataclass
class ReadyMeta:
    """Metadata for a READY video, either awaiting transcode or already transcoded."""

    needs_transcoding: bool = False
    transcoded: bool = False
    original_url: Optional[str] = None
    transcoded_url: Optional[str] = None
    transcoded_at: Optional[str] = None
    format: Optional[str] = None
    codec: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = (
        KEY_NEEDS_TRANSCODING,
        KEY_TRANSCODED,
        KEY_ORIGINAL_URL,
        KEY_TRANSCODED_URL,
        KEY_TRANSCODED_AT,
        KEY_FORMAT,
        KEY_CODEC,
    )

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "ReadyMeta":
        values, extra = _split(raw, cls._KNOWN)
        return cls(
            needs_transcoding=bool(values.get(KEY_NEEDS_TRANSCODING, False)),
            transcoded=bool(values.get(KEY_TRANSCODED, False)),
            original_url=values.get(KEY_ORIGINAL_URL),
            transcoded_url=values.get(KEY_TRANSCODED_URL),
            transcoded_at=values.get(KEY_TRANSCODED_AT),
            format=values.get(KEY_FORMAT),
            codec=values.get(KEY_CODEC),
            extra=extra,
        )

    @classmethod
    def after_transcode(cls, original_url: str, transcoded_url: str, now: datetime) -> "ReadyMeta":
        """Build the replacement metadata written once a transcode completes."""
        return cls(
            needs_transcoding=False,
            transcoded=True,
            original_url=original_url,
            transcoded_url=transcoded_url,
            transcoded_at=to_iso(now),
            format=TRANSCODED_FORMAT,
            codec=TRANSCODED_CODEC,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update(
            _compact(
                {
                    KEY_ORIGINAL_URL: self.original_url,
                    KEY_TRANSCODED_URL: self.transcoded_url,
                    KEY_TRANSCODED_AT: self.transcoded_at,
                    KEY_FORMAT: self.format,
                    KEY_CODEC: self.codec,
                }
            )
        )
        data[KEY_TRANSCODED] = self.transcoded
        data[KEY_NEEDS_TRANSCODING] = self.needs_transcoding
        return data


@dataclass
class ProcessingMeta:
    """Metadata for a PROCESSING video with an outstanding (or just failed) submission."""

    transcode_started_at: Optional[str] = None
    job_id: Optional[str] = None
    output_url: Optional[str] = None
    possibly_stuck: bool = False
    stuck_detected_at: Optional[str] = None
    processing_time_minutes: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = (
        KEY_STARTED_AT,
        KEY_JOB_ID,
        KEY_OUTPUT_URL,
        KEY_POSSIBLY_STUCK,
        KEY_STUCK_DETECTED_AT,
        KEY_PROCESSING_MINUTES,
    )

    # Left over from an earlier failed attempt, dropped when a new attempt starts
    _STALE_ON_START = (KEY_ERROR, KEY_FAILED_AT, KEY_FINAL_JOB_STATUS)

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "ProcessingMeta":
        values, extra = _split(raw, cls._KNOWN)
        return cls(
            transcode_started_at=values.get(KEY_STARTED_AT),
            job_id=values.get(KEY_JOB_ID) or None,
            output_url=values.get(KEY_OUTPUT_URL),
            possibly_stuck=bool(values.get(KEY_POSSIBLY_STUCK, False)),
            stuck_detected_at=values.get(KEY_STUCK_DETECTED_AT),
            processing_time_minutes=values.get(KEY_PROCESSING_MINUTES),
            extra=extra,
        )

    @classmethod
    def started(cls, previous: Optional[Mapping[str, Any]], now: datetime) -> "ProcessingMeta":
        """
        Metadata for a video that is about to be submitted.

        Any job handle from an earlier attempt is cleared so the new jobId is
        the only one on record.
        """
        _, extra = _split(previous, cls._KNOWN + cls._STALE_ON_START)
        return cls(transcode_started_at=to_iso(now), extra=extra)

    def with_job(self, job_id: str, output_url: str) -> "ProcessingMeta":
        return ProcessingMeta(
            transcode_started_at=self.transcode_started_at,
            job_id=job_id,
            output_url=output_url,
            extra=dict(self.extra),
        )

    def mark_stuck(self, now: datetime, minutes: int) -> "ProcessingMeta":
        return ProcessingMeta(
            transcode_started_at=self.transcode_started_at,
            job_id=self.job_id,
            output_url=self.output_url,
            possibly_stuck=True,
            stuck_detected_at=to_iso(now),
            processing_time_minutes=minutes,
            extra=dict(self.extra),
        )

    @property
    def started_at(self) -> Optional[datetime]:
        return parse_iso(self.transcode_started_at)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update(
            _compact(
                {
                    KEY_STARTED_AT: self.transcode_started_at,
                    KEY_JOB_ID: self.job_id,
                    KEY_OUTPUT_URL: self.output_url,
                    KEY_STUCK_DETECTED_AT: self.stuck_detected_at,
                    KEY_PROCESSING_MINUTES: self.processing_time_minutes,
                }
            )
        )
        if self.possibly_stuck:
            data[KEY_POSSIBLY_STUCK] = True
        return data


@dataclass
class ErrorMeta:
    """Metadata for an ERROR video. Keeps whatever the failed attempt recorded."""

    transcode_error: str = ""
    transcode_failed_at: Optional[str] = None
    final_job_status: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = (KEY_ERROR, KEY_FAILED_AT, KEY_FINAL_JOB_STATUS)

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "ErrorMeta":
        values, extra = _split(raw, cls._KNOWN)
        return cls(
            transcode_error=values.get(KEY_ERROR) or "",
            transcode_failed_at=values.get(KEY_FAILED_AT),
            final_job_status=values.get(KEY_FINAL_JOB_STATUS),
            extra=extra,
        )

    @classmethod
    def failed(
        cls,
        previous: Optional[Mapping[str, Any]],
        error: str,
        now: datetime,
        final_job_status: Optional[str] = None,
    ) -> "ErrorMeta":
        """Error metadata merged over the previous metadata (jobId/outputUrl survive)."""
        _, extra = _split(previous, cls._KNOWN)
        extra.pop(KEY_POSSIBLY_STUCK, None)
        return cls(
            transcode_error=error,
            transcode_failed_at=to_iso(now),
            final_job_status=final_job_status,
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data[KEY_ERROR] = self.transcode_error
        data.update(
            _compact(
                {
                    KEY_FAILED_AT: self.transcode_failed_at,
                    KEY_FINAL_JOB_STATUS: self.final_job_status,
                }
            )
        )
        return data


PoolMeta = Union[ReadyMeta, ProcessingMeta, ErrorMeta]

_META_BY_STATUS = {
    PoolVideoStatus.READY: ReadyMeta,
    PoolVideoStatus.PROCESSING: ProcessingMeta,
    PoolVideoStatus.ERROR: ErrorMeta,
}


def parse_metadata(status: PoolVideoStatus, raw: Optional[Mapping[str, Any]]) -> PoolMeta:
    """Return the metadata variant that belongs to ``status``."""
    return _META_BY_STATUS[PoolVideoStatus(status)].from_dict(raw)


def load_metadata(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (str, bytes)):
        try:
            loaded = json.loads(value)
        except ValueError:
            logger.warning("video_pool.metadata is not valid JSON, treating as empty")
            return {}
        return loaded if isinstance(loaded, dict) else {}
    return {}


@dataclass
class PoolVideo:
    """
    The video_pool fields the transcoding pipeline reads.

    Built from a database row mapping; ``metadata`` stays the raw dict so
    callers can hand it to the metadata variant constructors.
    """

    id: str
    project_id: Optional[str]
    user_id: Optional[str]
    video_url: str
    status: PoolVideoStatus
    metadata: Dict[str, Any] = field(default_factory=dict)
    original_filename: Optional[str] = None
    format: Optional[str] = None
    file_size: Optional[int] = None
    height: Optional[int] = None
    assigned_to_section_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "PoolVideo":
        def get(key):
            try:
                return row[key]
            except KeyError:
                return None

        return cls(
            id=str(row["id"]),
            project_id=get("project_id"),
            user_id=get("user_id"),
            video_url=get("video_url") or "",
            status=PoolVideoStatus(row["status"]),
            metadata=load_metadata(get("metadata")),
            original_filename=get("original_filename"),
            format=get("format"),
            file_size=get("file_size"),
            height=get("height"),
            assigned_to_section_id=get("assigned_to_section_id"),
        )

    @property
    def meta(self) -> PoolMeta:
        return parse_metadata(self.status, self.metadata)

    @property
    def job_id(self) -> Optional[str]:
        return self.metadata.get(KEY_JOB_ID) or None
