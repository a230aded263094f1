"""Tests for config.py environment variable parsing helpers."""

import logging
import os
from unittest import mock


class TestGetIntEnv:
    """Tests for get_int_env helper function."""

    def test_returns_default_when_env_not_set(self):
        from config import get_int_env

        with mock.patch.dict(os.environ, {}, clear=True):
            assert get_int_env("NONEXISTENT_VAR", 42) == 42

    def test_parses_valid_integer(self):
        from config import get_int_env

        with mock.patch.dict(os.environ, {"TEST_INT": "123"}):
            assert get_int_env("TEST_INT", 0) == 123

    def test_returns_default_on_invalid_value(self, caplog):
        from config import get_int_env

        with mock.patch.dict(os.environ, {"TEST_INT": "abc"}):
            with caplog.at_level(logging.WARNING):
                assert get_int_env("TEST_INT", 42) == 42
                assert "Invalid TEST_INT='abc'" in caplog.text
                assert "using default 42" in caplog.text

    def test_min_validation_enforced(self, caplog):
        from config import get_int_env

        with mock.patch.dict(os.environ, {"TEST_INT": "0"}):
            with caplog.at_level(logging.WARNING):
                assert get_int_env("TEST_INT", 20, min_val=1) == 20
                assert "below minimum" in caplog.text

    def test_max_validation_enforced(self, caplog):
        from config import get_int_env

        with mock.patch.dict(os.environ, {"TEST_INT": "4320"}):
            with caplog.at_level(logging.WARNING):
                assert get_int_env("TEST_INT", 720, max_val=2160) == 720
                assert "above maximum" in caplog.text

    def test_value_within_range_accepted(self):
        from config import get_int_env

        with mock.patch.dict(os.environ, {"TEST_INT": "480"}):
            assert get_int_env("TEST_INT", 720, min_val=144, max_val=2160) == 480


class TestGetFloatEnv:
    """Tests for get_float_env helper function."""

    def test_parses_valid_float(self):
        from config import get_float_env

        with mock.patch.dict(os.environ, {"TEST_FLOAT": "0.25"}):
            assert get_float_env("TEST_FLOAT", 0.5) == 0.25

    def test_parses_integer_as_float(self):
        from config import get_float_env

        with mock.patch.dict(os.environ, {"TEST_FLOAT": "15"}):
            assert get_float_env("TEST_FLOAT", 1.0) == 15.0

    def test_returns_default_on_invalid_value(self, caplog):
        from config import get_float_env

        with mock.patch.dict(os.environ, {"TEST_FLOAT": "fast"}):
            with caplog.at_level(logging.WARNING):
                assert get_float_env("TEST_FLOAT", 15.0) == 15.0
                assert "Invalid TEST_FLOAT='fast'" in caplog.text

    def test_min_validation_enforced(self, caplog):
        from config import get_float_env

        with mock.patch.dict(os.environ, {"TEST_FLOAT": "-1"}):
            with caplog.at_level(logging.WARNING):
                assert get_float_env("TEST_FLOAT", 0.5, min_val=0.0) == 0.5
                assert "below minimum" in caplog.text

    def test_rejects_infinity(self, caplog):
        from config import get_float_env

        with mock.patch.dict(os.environ, {"TEST_FLOAT": "inf"}):
            with caplog.at_level(logging.WARNING):
                assert get_float_env("TEST_FLOAT", 5.0) == 5.0
                assert "special float" in caplog.text

    def test_rejects_nan(self, caplog):
        from config import get_float_env

        with mock.patch.dict(os.environ, {"TEST_FLOAT": "nan"}):
            with caplog.at_level(logging.WARNING):
                assert get_float_env("TEST_FLOAT", 5.0) == 5.0


class TestDefaults:
    """Transcode tunables default to the documented batch behaviour."""

    def test_transcode_defaults(self):
        import config

        assert config.TRANSCODE_BATCH_SIZE == 20
        assert config.TRANSCODE_MAX_CONCURRENT_JOBS == 5
        assert config.TRANSCODE_CHECK_INTERVAL == 15.0
        assert config.TRANSCODE_MAX_CHECK_ATTEMPTS == 60
        assert config.TRANSCODE_API_CALL_DELAY == 0.5
        assert config.TRANSCODE_RATE_LIMIT_BACKOFF == 5.0
        assert config.TRANSCODE_MAX_HEIGHT == 720

    def test_transcode_settings_from_config(self):
        import config
        from worker.pool_jobs import TranscodeSettings

        settings = TranscodeSettings.from_config()

        assert settings.batch_size == config.TRANSCODE_BATCH_SIZE
        assert settings.max_check_attempts == config.TRANSCODE_MAX_CHECK_ATTEMPTS
        assert settings.output_bucket == config.S3_OUTPUT_BUCKET
        assert settings.output_prefix == "transcoded/pool"
