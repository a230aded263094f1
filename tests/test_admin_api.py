"""
Tests for the admin API endpoints.

The batch functions are patched out; these tests cover routing, response
shapes, status codes, and rate limiting.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from api.admin import app, limiter
from api.db_retry import DatabaseRetryableError


@pytest.fixture
def db_mock():
    with patch("api.admin.database") as database, patch("api.admin.configure_database", new_callable=AsyncMock):
        database.connect = AsyncMock()
        database.disconnect = AsyncMock()
        database.fetch_one = AsyncMock(return_value=(1,))
        yield database


@pytest.fixture
def admin_client(db_mock):
    limiter.enabled = False
    with TestClient(app) as client:
        yield client
    limiter.enabled = True


class TestLifespan:
    def test_connects_and_disconnects(self, db_mock):
        with TestClient(app):
            db_mock.connect.assert_awaited_once()
        db_mock.disconnect.assert_awaited_once()


class TestHealth:
    def test_healthy(self, admin_client):
        response = admin_client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "checks": {"database": True}}

    def test_database_down(self, admin_client, db_mock):
        db_mock.fetch_one.side_effect = ConnectionRefusedError("connection refused")

        response = admin_client.get("/api/health")

        assert response.status_code == 503
        assert response.json()["checks"]["database"] is False


class TestTranscodeEndpoint:
    def test_batch_result(self, admin_client):
        result = {
            "success": True,
            "message": "Processed 2 videos: 1 successful, 1 failed",
            "results": {
                "successful": [{"poolVideoId": "v1", "success": True, "transcodedUrl": "https://out/a-720p.mp4"}],
                "failed": [
                    {
                        "poolVideoId": "v2",
                        "success": False,
                        "error": "Job still processing - check status later",
                        "jobId": "job-2",
                    }
                ],
                "total": 2,
            },
        }

        with patch("api.admin.process_pool_videos_for_transcoding", AsyncMock(return_value=result)) as run:
            response = admin_client.post("/api/pool/transcode", params={"project_id": "p1"})

        run.assert_awaited_once_with("p1")
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["results"]["successful"][0] == {
            "poolVideoId": "v1",
            "success": True,
            "transcodedUrl": "https://out/a-720p.mp4",
        }
        assert data["results"]["failed"][0]["jobId"] == "job-2"
        assert data["results"]["total"] == 2

    def test_nothing_to_process(self, admin_client):
        result = {"success": True, "message": "No videos to process", "processed": 0}

        with patch("api.admin.process_pool_videos_for_transcoding", AsyncMock(return_value=result)) as run:
            response = admin_client.post("/api/pool/transcode")

        run.assert_awaited_once_with(None)
        assert response.json() == result

    def test_setup_failure_is_bad_gateway(self, admin_client):
        result = {"success": False, "error": "No MediaConvert endpoints returned"}

        with patch("api.admin.process_pool_videos_for_transcoding", AsyncMock(return_value=result)):
            response = admin_client.post("/api/pool/transcode")

        assert response.status_code == 502
        assert response.json()["detail"] == "No MediaConvert endpoints returned"

    def test_database_unavailable(self, admin_client):
        with patch(
            "api.admin.process_pool_videos_for_transcoding",
            AsyncMock(side_effect=DatabaseRetryableError("too many connections")),
        ):
            response = admin_client.post("/api/pool/transcode")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"

    def test_project_id_length_validated(self, admin_client):
        response = admin_client.post("/api/pool/transcode", params={"project_id": "x" * 37})

        assert response.status_code == 422


class TestCheckEndpoint:
    def test_check_summary(self, admin_client):
        result = {
            "success": True,
            "message": "Checked 2 videos, updated 1, 1 possibly stuck",
            "details": {"checked": 2, "updated": 1, "failed": 0, "possiblyStuck": 1, "orphaned": 0},
        }

        with patch("api.admin.check_processing_videos", AsyncMock(return_value=result)):
            response = admin_client.post("/api/pool/check")

        assert response.status_code == 200
        assert response.json() == result

    def test_check_failure(self, admin_client):
        with patch("api.admin.check_processing_videos", AsyncMock(return_value={"success": False, "error": "boom"})):
            response = admin_client.post("/api/pool/check")

        assert response.status_code == 502


class TestStatusEndpoint:
    def test_status(self, admin_client):
        stats = {
            "total": 4,
            "ready": 2,
            "processing": 1,
            "error": 1,
            "needsTranscoding": 1,
            "possiblyStuck": 0,
            "recentlyCompleted": 1,
        }

        with patch(
            "api.admin.get_pool_transcoding_status", AsyncMock(return_value={"success": True, "stats": stats})
        ) as status:
            response = admin_client.get("/api/pool/project-9/status")

        status.assert_awaited_once_with("project-9")
        assert response.json() == {"success": True, "stats": stats}


class TestRateLimiting:
    def test_transcode_is_rate_limited(self, db_mock):
        result = {"success": True, "message": "No videos to process", "processed": 0}
        limiter.reset()
        limiter.enabled = True

        with TestClient(app) as client:
            with patch("api.admin.process_pool_videos_for_transcoding", AsyncMock(return_value=result)):
                codes = [client.post("/api/pool/transcode").status_code for _ in range(7)]

        limiter.reset()
        assert codes[:6] == [200] * 6
        assert codes[6] == 429
