"""Tests for the drug-monitor entry point: startup failures, --check-now and shutdown."""

import logging
from unittest.mock import MagicMock, call

import pytest

from drug_monitor import commands, config, db, main, scheduling
from drug_monitor.telegram_api import TransportStartupError


@pytest.fixture
def app(monkeypatch):
    """Patch every collaborator main() wires together and hand back the mocks."""
    monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setattr(config, "DRUGS_TO_CHECK", ["Пентаса"])
    monkeypatch.setattr(config, "CRON_SCHEDULE", "0 9 * * 1-5")
    monkeypatch.setattr(config, "CRON_TIMEZONE", "Europe/Moscow")

    mocks = MagicMock()
    mocks.client = MagicMock()
    mocks.client.get_me.return_value = {"id": 1, "username": "drugs_bot"}
    mocks.monitor = MagicMock()
    mocks.scheduler = MagicMock()
    mocks.get_statistics.return_value = {"active": 1, "inactive": 0, "total": 1}

    monkeypatch.setattr(config, "validate", mocks.validate)
    monkeypatch.setattr(db, "init_db", mocks.init_db)
    monkeypatch.setattr(db, "get_statistics", mocks.get_statistics)
    monkeypatch.setattr(main, "TelegramClient", MagicMock(return_value=mocks.client))
    monkeypatch.setattr(main, "DrugMonitor", MagicMock(return_value=mocks.monitor))
    monkeypatch.setattr(scheduling, "start_scheduler", MagicMock(return_value=mocks.scheduler))
    monkeypatch.setattr(commands, "poll_commands", mocks.poll_commands)
    return mocks


def test_config_errors_are_all_logged_and_exit_1(app, caplog):
    app.validate.side_effect = config.ConfigError(
        ["TELEGRAM_BOT_TOKEN is not set", "CRON_SCHEDULE is not set"]
    )

    with caplog.at_level(logging.ERROR), pytest.raises(SystemExit) as exc:
        main.main([])

    assert exc.value.code == 1
    assert "TELEGRAM_BOT_TOKEN is not set" in caplog.text
    assert "CRON_SCHEDULE is not set" in caplog.text
    app.init_db.assert_not_called()
    main.TelegramClient.assert_not_called()


def test_transport_startup_failure_exits_1(app):
    app.client.get_me.side_effect = TransportStartupError("getMe failed: 401 Unauthorized")

    with pytest.raises(SystemExit) as exc:
        main.main([])

    assert exc.value.code == 1
    app.init_db.assert_called_once_with()
    main.DrugMonitor.assert_not_called()
    scheduling.start_scheduler.assert_not_called()


def test_check_now_runs_once_without_scheduler(app):
    main.main(["--check-now"])

    main.DrugMonitor.assert_called_once_with(["Пентаса"], transport=app.client)
    app.monitor.run_checks.assert_called_once_with()
    scheduling.start_scheduler.assert_not_called()
    app.poll_commands.assert_called_once()
    assert app.poll_commands.call_args.args[0] is app.client
    app.monitor.shutdown.assert_called_once_with()
    app.client.close.assert_called_once_with()


def test_scheduled_mode_starts_scheduler_and_runs_first_check(app):
    main.main([])

    scheduling.start_scheduler.assert_called_once_with(
        app.monitor, "0 9 * * 1-5", timezone="Europe/Moscow",
    )
    app.monitor.run_checks.assert_called_once_with()
    app.scheduler.shutdown.assert_called_once_with(wait=False)
    app.monitor.shutdown.assert_called_once_with()


def test_interrupt_still_shuts_everything_down(app):
    order = MagicMock()
    app.monitor.run_checks.side_effect = KeyboardInterrupt
    app.scheduler.shutdown.side_effect = lambda **kw: order("scheduler")
    app.monitor.shutdown.side_effect = lambda: order("monitor")
    app.client.close.side_effect = lambda: order("client")

    main.main([])

    assert order.call_args_list == [call("scheduler"), call("monitor"), call("client")]
