"""Tests for the maintenance scheduler."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import func, select

import app.services.scheduler as scheduler_module
from app.models import LoginCode
from app.services.auth_sessions import auth_sessions


class TestSchedulerStartup:
    """Tests for scheduler startup and shutdown behavior."""

    @patch("app.services.scheduler.AsyncIOScheduler")
    def test_scheduler_starts_successfully(self, mock_scheduler_class):
        """Both cleanup jobs are registered before the scheduler starts."""
        mock_scheduler = MagicMock()
        mock_scheduler.running = False
        mock_scheduler_class.return_value = mock_scheduler

        scheduler = scheduler_module.MaintenanceScheduler()
        scheduler.start(sweep_seconds=30, purge_minutes=5)

        mock_scheduler.start.assert_called_once()
        add_job_calls = mock_scheduler.add_job.call_args_list
        assert [call.args[0] for call in add_job_calls] == [
            scheduler_module.sweep_auth_sessions_task,
            scheduler_module.purge_login_codes_task,
        ]
        assert [call.kwargs["id"] for call in add_job_calls] == [
            "auth_session_sweep",
            "login_code_purge",
        ]
        for call in add_job_calls:
            assert isinstance(call.kwargs["trigger"], IntervalTrigger)
            assert call.kwargs["replace_existing"] is True

    @patch("app.services.scheduler.AsyncIOScheduler")
    def test_intervals_default_to_settings(self, mock_scheduler_class):
        mock_scheduler = MagicMock()
        mock_scheduler_class.return_value = mock_scheduler

        scheduler = scheduler_module.MaintenanceScheduler()
        scheduler.start()

        sweep_trigger = mock_scheduler.add_job.call_args_list[0].kwargs["trigger"]
        purge_trigger = mock_scheduler.add_job.call_args_list[1].kwargs["trigger"]
        config = scheduler_module.settings
        assert sweep_trigger.interval == timedelta(seconds=config.auth_session_sweep_seconds)
        assert purge_trigger.interval == timedelta(minutes=config.login_code_purge_minutes)

    @patch("app.services.scheduler.AsyncIOScheduler")
    def test_scheduler_stops_gracefully(self, mock_scheduler_class):
        """Scheduler shutdown should stop underlying APScheduler instance."""
        mock_scheduler = MagicMock()
        mock_scheduler.running = False
        mock_scheduler_class.return_value = mock_scheduler

        scheduler = scheduler_module.MaintenanceScheduler()
        scheduler.start()

        mock_scheduler.running = True
        scheduler.stop()

        mock_scheduler.shutdown.assert_called_once_with(wait=False)

    @patch("app.services.scheduler.AsyncIOScheduler")
    def test_stop_when_not_running_is_noop(self, mock_scheduler_class):
        mock_scheduler = MagicMock()
        mock_scheduler.running = False
        mock_scheduler_class.return_value = mock_scheduler

        scheduler_module.MaintenanceScheduler().stop()

        mock_scheduler.shutdown.assert_not_called()

    @patch("app.services.scheduler.AsyncIOScheduler")
    def test_next_run_time(self, mock_scheduler_class):
        mock_scheduler = MagicMock()
        next_run = datetime(2030, 1, 1, tzinfo=UTC)
        mock_scheduler.get_job.side_effect = lambda job_id: (
            MagicMock(next_run_time=next_run) if job_id == "login_code_purge" else None
        )
        mock_scheduler_class.return_value = mock_scheduler

        scheduler = scheduler_module.MaintenanceScheduler()

        assert scheduler.get_next_run_time("login_code_purge") == next_run
        assert scheduler.get_next_run_time("missing") is None


class TestMaintenanceTasks:
    async def test_sweep_drops_expired_sessions(self):
        await auth_sessions.create(
            code_verifier="v", nonce="n", redirect_uri="https://x/cb", ttl=timedelta(seconds=-1)
        )
        await auth_sessions.create(
            code_verifier="v", nonce="n", redirect_uri="https://x/cb", ttl=timedelta(minutes=5)
        )

        await scheduler_module.sweep_auth_sessions_task()

        assert len(auth_sessions) == 1

    async def test_sweep_errors_are_contained(self, monkeypatch):
        async def broken_sweep():
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(auth_sessions, "sweep_expired", broken_sweep)

        await scheduler_module.sweep_auth_sessions_task()

    async def test_purge_deletes_expired_codes(self, db_session, viewer_user):
        now = datetime.now(UTC)
        db_session.add_all(
            [
                LoginCode(code="a" * 64, user_id=viewer_user.id, expires_at=now - timedelta(minutes=1)),
                LoginCode(
                    code="b" * 64,
                    user_id=viewer_user.id,
                    expires_at=now - timedelta(minutes=1),
                    used=True,
                ),
                LoginCode(code="c" * 64, user_id=viewer_user.id, expires_at=now + timedelta(minutes=5)),
            ]
        )
        await db_session.commit()

        await scheduler_module.purge_login_codes_task()

        remaining = await db_session.execute(select(LoginCode.code))
        assert remaining.scalars().all() == ["c" * 64]

    async def test_purge_errors_are_contained(self, db_session, monkeypatch):
        from app.services.login_codes import login_codes

        async def broken_purge(db):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(login_codes, "purge_expired", broken_purge)

        await scheduler_module.purge_login_codes_task()

        count = await db_session.execute(select(func.count()).select_from(LoginCode))
        assert count.scalar() == 0
