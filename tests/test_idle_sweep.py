import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from app.db_utils import utcnow
from app.main import _idle_sweep_loop, _is_env_enabled, run_idle_sweep


class TestRunIdleSweep:
    @patch("app.main.SessionLocal")
    def test_closes_across_tenants(self, mock_session_local, db, make_conversation):
        mock_session_local.return_value = db
        make_conversation(phone="5511900000001", last_inbound_at=utcnow() - timedelta(hours=48))
        make_conversation(phone="5511900000002", last_inbound_at=utcnow() - timedelta(hours=1))

        assert run_idle_sweep() == 1


class TestIdleSweepLoop:
    @patch("app.main.alert_critical")
    @patch("app.main.asyncio.sleep", new_callable=AsyncMock)
    @patch("app.main.run_in_threadpool", new_callable=AsyncMock)
    def test_alerts_after_three_failures(self, mock_run, mock_sleep, mock_alert):
        mock_run.side_effect = [RuntimeError("db down")] * 3 + [asyncio.CancelledError()]

        asyncio.run(_idle_sweep_loop())

        mock_alert.assert_called_once()
        assert mock_run.call_count == 4

    @patch("app.main.alert_critical")
    @patch("app.main.asyncio.sleep", new_callable=AsyncMock)
    @patch("app.main.run_in_threadpool", new_callable=AsyncMock)
    def test_success_resets_failures(self, mock_run, mock_sleep, mock_alert):
        failure = RuntimeError("db down")
        mock_run.side_effect = [failure, failure, 0, failure, failure, asyncio.CancelledError()]

        asyncio.run(_idle_sweep_loop())

        mock_alert.assert_not_called()


class TestEnvFlags:
    def test_defaults(self):
        assert _is_env_enabled(None) is True
        assert _is_env_enabled(None, default=False) is False

    def test_false_values(self):
        for value in ("0", "false", "No", " off "):
            assert _is_env_enabled(value) is False
