"""
Pytest fixtures for pool transcoder tests.

Orchestration tests run against an in-memory store and a scripted
MediaConvert stand-in; store tests use a temporary SQLite database.
"""

import itertools
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
import sqlalchemy as sa
from databases import Database

os.environ["POOLTX_TEST_MODE"] = "1"

from api.enums import PoolVideoStatus, RemoteJobStatus  # noqa: E402
from api.pool_video import PoolVideo, load_metadata, to_iso  # noqa: E402
from worker.mediaconvert import JobStatusReport, SubmittedJob  # noqa: E402
from worker.pool_jobs import TranscodeSettings  # noqa: E402

_UNSET = object()


class FakePoolStore:
    """In-memory stand-in for PoolVideoStore with the same update semantics."""

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.writes: List[Dict[str, Any]] = []
        self._order = itertools.count()

    def add(self, **fields) -> Dict[str, Any]:
        row = {
            "id": fields.pop("id", None) or str(uuid.uuid4()),
            "project_id": "project-1",
            "user_id": "user-1",
            "video_url": "https://uploads.s3.eu-west-2.amazonaws.com/raw/inspection.avi",
            "status": PoolVideoStatus.READY.value,
            "metadata": {"needsTranscoding": True},
            "original_filename": "inspection.avi",
            "format": "avi",
            "file_size": 1024,
            "height": 1080,
            "assigned_to_section_id": None,
            "_order": next(self._order),
        }
        row.update(fields)
        self.rows[row["id"]] = row
        return row

    def video(self, video_id: str) -> PoolVideo:
        return PoolVideo.from_mapping(self.rows[video_id])

    async def find_eligible(self, project_id=None, limit=20):
        rows = [
            row
            for row in sorted(self.rows.values(), key=lambda r: r["_order"])
            if row["status"] == PoolVideoStatus.READY.value
            and (row["metadata"] or {}).get("needsTranscoding") is True
            and row["assigned_to_section_id"] is None
            and (project_id is None or row["project_id"] == project_id)
        ]
        return [PoolVideo.from_mapping(row) for row in rows[:limit]]

    async def find_processing(self, project_id=None):
        return [
            PoolVideo.from_mapping(row)
            for row in sorted(self.rows.values(), key=lambda r: r["_order"])
            if row["status"] == PoolVideoStatus.PROCESSING.value
            and (project_id is None or row["project_id"] == project_id)
        ]

    async def get(self, video_id):
        row = self.rows.get(video_id)
        return PoolVideo.from_mapping(row) if row else None

    async def update_video(self, video_id, *, status=None, video_url=None, metadata=_UNSET):
        row = self.rows[video_id]
        write: Dict[str, Any] = {"id": video_id}
        if status is not None:
            row["status"] = write["status"] = PoolVideoStatus(status).value
        if video_url is not None:
            row["video_url"] = write["video_url"] = video_url
        if metadata is not _UNSET:
            row["metadata"] = write["metadata"] = dict(metadata)
        self.writes.append(write)

    async def project_status_rows(self, project_id):
        return [
            {"id": row["id"], "status": row["status"], "metadata": load_metadata(row["metadata"])}
            for row in self.rows.values()
            if row["project_id"] == project_id
        ]


class FakeTranscodeService:
    """
    Scripted MediaConvert stand-in.

    ``script`` maps a job id to the sequence of outcomes GetJob returns, one
    per call; the last entry repeats. Outcomes are RemoteJobStatus values or
    exceptions to raise. ``default_script`` applies to jobs without one.
    """

    def __init__(self, default_script=None):
        self.default_script = list(default_script or [RemoteJobStatus.COMPLETE])
        self.script: Dict[str, list] = {}
        self.submit_errors: Dict[str, Exception] = {}
        self.submit_error: Optional[Exception] = None
        self.created: List[Dict[str, Any]] = []
        self.polls: Dict[str, int] = {}
        self.error_message = "Input file could not be read"
        self.connected = False
        self._ids = itertools.count(1)

    async def connect(self):
        self.connected = True
        return self

    async def create_job(self, job_settings):
        video_id = job_settings["UserMetadata"].get("poolVideoId")
        if self.submit_error is not None:
            raise self.submit_error
        if video_id in self.submit_errors:
            raise self.submit_errors[video_id]
        self.created.append(job_settings)
        return SubmittedJob(job_id=f"job-{next(self._ids)}", status="SUBMITTED")

    async def get_job(self, job_id):
        count = self.polls.get(job_id, 0)
        self.polls[job_id] = count + 1
        outcomes = self.script.get(job_id, self.default_script)
        outcome = outcomes[min(count, len(outcomes) - 1)]
        if isinstance(outcome, Exception):
            raise outcome
        status = RemoteJobStatus.parse(outcome)
        return JobStatusReport(
            job_id=job_id,
            status=status,
            percent_complete=100 if status == RemoteJobStatus.COMPLETE else 50,
            error_message=self.error_message if status in (RemoteJobStatus.ERROR, RemoteJobStatus.CANCELED) else None,
        )


def ago(**kwargs) -> str:
    return to_iso(datetime.now(timezone.utc) - timedelta(**kwargs))


@pytest.fixture
def fake_store() -> FakePoolStore:
    return FakePoolStore()


@pytest.fixture
def fake_service() -> FakeTranscodeService:
    return FakeTranscodeService()


@pytest.fixture
def fast_settings() -> TranscodeSettings:
    """Default tunables with every sleep removed."""
    return TranscodeSettings(
        check_interval=0,
        api_call_delay=0,
        rate_limit_backoff=0,
        output_bucket="video-analysis-transcoded",
        s3_region="eu-west-2",
        output_prefix="transcoded/pool",
    )


@pytest.fixture
async def sqlite_database(tmp_path):
    """Fresh SQLite database with the video_pool table."""
    from api.database import metadata

    db_url = f"sqlite:///{tmp_path / 'pool.db'}"
    engine = sa.create_engine(db_url)
    metadata.create_all(engine)
    engine.dispose()

    database = Database(db_url)
    await database.connect()
    yield database
    await database.disconnect()


@pytest.fixture
async def insert_video(sqlite_database):
    """Insert a video_pool row and return its id."""
    from api.database import video_pool

    counter = itertools.count()

    async def _insert(**fields) -> str:
        values = {
            "id": str(uuid.uuid4()),
            "project_id": "project-1",
            "user_id": "user-1",
            "video_url": "https://uploads.s3.eu-west-2.amazonaws.com/raw/inspection.avi",
            "status": PoolVideoStatus.READY.value,
            "metadata": {"needsTranscoding": True},
            "original_filename": "inspection.avi",
            "height": 1080,
            "assigned_to_section_id": None,
            "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=next(counter)),
        }
        values.update(fields)
        await sqlite_database.execute(video_pool.insert().values(**values))
        return values["id"]

    return _insert
