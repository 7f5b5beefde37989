"""
Core Tests - configuration, error taxonomy and background tasks.

Run with:
    python -m pytest tests/test_core.py -v
"""

import asyncio
import logging
import os
import sys
from unittest.mock import patch

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class TestConfig:

    def test_env_overrides(self):
        from core.config import Config

        env = {
            "DATABASE_URL": "postgresql://localhost/flowgate",
            "FLOW_PROXY_CREATE_URL": "https://proxy/create",
            "FLOW_PROXY_STATUS_URL": "https://proxy/status",
            "FLOW_PROXY_AUTH": "Bearer x",
            "ACCOUNT_DEFAULT_USAGE_LIMIT": "80",
            "FLOW_HTTP_TIMEOUT": "30",
        }
        with patch.dict(os.environ, env):
            config = Config.from_env()

        assert config.pool.default_usage_limit == 80
        assert config.flow.http_timeout == 30.0
        assert config.validate() == []

    def test_missing_settings_are_reported(self):
        from core.config import Config

        with patch.dict(os.environ, {}, clear=True):
            issues = Config.from_env().validate()

        assert any("DATABASE_URL" in issue for issue in issues)
        assert any("FLOW_PROXY_AUTH" in issue for issue in issues)

    def test_defaults(self):
        from core.config import PollingConfig, ReconciliationConfig

        assert PollingConfig().interval_seconds == 5.0
        assert ReconciliationConfig().video_stuck_after_minutes == 60


class TestErrors:

    def test_upstream_error_dict(self):
        from core.errors import UpstreamError

        error = UpstreamError("rate limited", status_code=429, account_id="a1")

        assert error.to_dict() == {
            "error": True,
            "message": "rate limited",
            "error_code": "UPSTREAM_429",
            "category": "transient",
            "status_code": 429,
            "account_id": "a1",
        }

    def test_categories(self):
        from core.errors import InvalidRequest, MissingTaskId, NoAccountsAvailable, ReferenceUploadFailed

        assert InvalidRequest("x").category == "invalid_request"
        assert NoAccountsAvailable().category == "pool_exhausted"
        assert MissingTaskId().category == "fatal"
        assert ReferenceUploadFailed().error_code == "REFERENCE_UPLOAD_FAILED"

    def test_is_retryable(self):
        from core.errors import is_retryable

        assert is_retryable(401)
        assert is_retryable(None, "RESOURCE_EXHAUSTED")
        assert not is_retryable(404)
        assert not is_retryable(None)


class TestBackground:

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        from core.background import drain, fire_and_forget

        async def boom():
            raise RuntimeError("increment failed")

        with caplog.at_level(logging.WARNING, logger="core.background"):
            task = fire_and_forget(boom(), name="usage-a1")
            await drain()
            await asyncio.sleep(0)

        assert task.done()
        assert "usage-a1" in caplog.text
        assert "increment failed" in caplog.text

    @pytest.mark.asyncio
    async def test_drain_waits_for_tasks(self):
        from core.background import drain, fire_and_forget

        done = []

        async def work():
            await asyncio.sleep(0.01)
            done.append(True)

        fire_and_forget(work())
        await drain()

        assert done == [True]
