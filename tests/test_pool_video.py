"""Tests for pool video records and the status-keyed metadata variants."""

from datetime import datetime, timezone

import pytest

from api.enums import PoolVideoStatus, RemoteJobStatus, UnknownJobStatusError
from api.pool_video import (
    ErrorMeta,
    PoolVideo,
    ProcessingMeta,
    ReadyMeta,
    load_metadata,
    parse_iso,
    parse_metadata,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestRemoteJobStatus:
    @pytest.mark.parametrize("raw", ["COMPLETE", "complete", " Complete "])
    def test_parse_normalizes(self, raw):
        assert RemoteJobStatus.parse(raw) == RemoteJobStatus.COMPLETE

    def test_unknown_status_fails_loudly(self):
        with pytest.raises(UnknownJobStatusError) as exc_info:
            RemoteJobStatus.parse("PAUSED")
        assert exc_info.value.value == "PAUSED"

    def test_missing_status_is_unknown(self):
        with pytest.raises(UnknownJobStatusError):
            RemoteJobStatus.parse(None)

    def test_classification(self):
        assert RemoteJobStatus.ERROR.is_terminal
        assert RemoteJobStatus.CANCELED.is_terminal
        assert RemoteJobStatus.COMPLETE.is_terminal
        assert not RemoteJobStatus.PROGRESSING.is_terminal
        assert not RemoteJobStatus.SUBMITTED.is_terminal


class TestProcessingMeta:
    def test_started_keeps_unrelated_keys(self):
        previous = {"needsTranscoding": True, "uploadSource": "mobile"}

        meta = ProcessingMeta.started(previous, now=NOW)

        data = meta.to_dict()
        assert data["transcodeStartedAt"] == "2026-03-01T12:00:00+00:00"
        assert data["uploadSource"] == "mobile"
        assert data["needsTranscoding"] is True
        assert "jobId" not in data

    def test_started_clears_previous_attempt(self):
        previous = {
            "jobId": "old-job",
            "outputUrl": "https://old",
            "transcodeError": "boom",
            "transcodeFailedAt": "2026-01-01T00:00:00+00:00",
            "possiblyStuck": True,
        }

        data = ProcessingMeta.started(previous, now=NOW).to_dict()

        for key in ("jobId", "outputUrl", "transcodeError", "transcodeFailedAt", "possiblyStuck"):
            assert key not in data

    def test_with_job_stamps_handle(self):
        meta = ProcessingMeta.started({}, now=NOW).with_job("job-1", "https://out/a-720p.mp4")

        data = meta.to_dict()
        assert data["jobId"] == "job-1"
        assert data["outputUrl"] == "https://out/a-720p.mp4"
        assert data["transcodeStartedAt"] == "2026-03-01T12:00:00+00:00"

    def test_mark_stuck(self):
        meta = ProcessingMeta.from_dict({"jobId": "job-1", "transcodeStartedAt": "2026-03-01T11:00:00Z"})

        data = meta.mark_stuck(NOW, 60).to_dict()

        assert data["possiblyStuck"] is True
        assert data["processingTimeMinutes"] == 60
        assert data["jobId"] == "job-1"

    def test_started_at_parses_javascript_timestamps(self):
        meta = ProcessingMeta.from_dict({"transcodeStartedAt": "2026-03-01T11:30:00.000Z"})
        assert meta.started_at == datetime(2026, 3, 1, 11, 30, tzinfo=timezone.utc)


class TestErrorMeta:
    def test_failed_merges_and_keeps_job_handle(self):
        previous = {"jobId": "job-1", "outputUrl": "https://out", "transcodeStartedAt": "x", "possiblyStuck": True}

        meta = ErrorMeta.failed(previous, "Job failed", now=NOW, final_job_status="ERROR")

        data = meta.to_dict()
        assert data["transcodeError"] == "Job failed"
        assert data["transcodeFailedAt"] == "2026-03-01T12:00:00+00:00"
        assert data["finalJobStatus"] == "ERROR"
        assert data["jobId"] == "job-1"
        assert data["outputUrl"] == "https://out"
        assert "possiblyStuck" not in data


class TestReadyMeta:
    def test_after_transcode_replaces_everything(self):
        data = ReadyMeta.after_transcode("https://in/a.avi", "https://out/a-720p.mp4", now=NOW).to_dict()

        assert data == {
            "original_url": "https://in/a.avi",
            "transcoded_url": "https://out/a-720p.mp4",
            "transcodedAt": "2026-03-01T12:00:00+00:00",
            "transcoded": True,
            "needsTranscoding": False,
            "format": "mp4",
            "codec": "h264",
        }

    def test_from_dict_round_trips_unknown_keys(self):
        raw = {"needsTranscoding": True, "duration": 93.2}
        assert ReadyMeta.from_dict(raw).to_dict() == {"needsTranscoding": True, "transcoded": False, "duration": 93.2}


class TestParsing:
    def test_parse_metadata_picks_variant_by_status(self):
        assert isinstance(parse_metadata(PoolVideoStatus.READY, {}), ReadyMeta)
        assert isinstance(parse_metadata(PoolVideoStatus.PROCESSING, {}), ProcessingMeta)
        assert isinstance(parse_metadata("error", {}), ErrorMeta)

    def test_load_metadata_accepts_json_text(self):
        assert load_metadata('{"jobId": "job-1"}') == {"jobId": "job-1"}

    def test_load_metadata_rejects_garbage(self):
        assert load_metadata("not json") == {}
        assert load_metadata("[1, 2]") == {}
        assert load_metadata(None) == {}

    def test_parse_iso_handles_naive_and_invalid(self):
        assert parse_iso("2026-03-01T12:00:00") == NOW
        assert parse_iso("yesterday") is None
        assert parse_iso("") is None

    def test_pool_video_from_mapping(self):
        video = PoolVideo.from_mapping(
            {
                "id": "v1",
                "project_id": "p1",
                "video_url": "https://in/a.avi",
                "status": "processing",
                "metadata": '{"jobId": "job-9"}',
                "height": 480,
            }
        )

        assert video.status == PoolVideoStatus.PROCESSING
        assert video.job_id == "job-9"
        assert video.height == 480
        assert video.user_id is None
        assert isinstance(video.meta, ProcessingMeta)
