"""Unit tests for the uvicorn runner's command line."""

import pytest

import run
from staffsync.config.settings import settings


@pytest.fixture
def uvicorn_calls(monkeypatch):
    calls = []
    monkeypatch.setattr(run.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setattr(settings, "audit_enabled", True)
    monkeypatch.setattr(settings, "log_level", "INFO")
    monkeypatch.setenv("AUDIT_ENABLED", "true")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    return calls


class TestRunner:
    """Tests for run.main."""

    def test_defaults_come_from_settings(self, uvicorn_calls, monkeypatch):
        monkeypatch.setattr("sys.argv", ["run.py"])

        run.main()

        app, kwargs = uvicorn_calls[0]
        assert app == "staffsync.main:app"
        assert kwargs["host"] == settings.api_host
        assert kwargs["port"] == settings.api_port
        assert kwargs["log_level"] == "info"
        assert settings.audit_enabled is True

    def test_no_scheduler_disables_audits(self, uvicorn_calls, monkeypatch):
        monkeypatch.setattr("sys.argv", ["run.py", "--no-scheduler", "--port", "9001"])

        run.main()

        assert uvicorn_calls[0][1]["port"] == 9001
        assert settings.audit_enabled is False
        assert run.os.environ["AUDIT_ENABLED"] == "false"

    def test_log_level_is_normalised(self, uvicorn_calls, monkeypatch):
        monkeypatch.setattr("sys.argv", ["run.py", "--log-level", "debug"])

        run.main()

        assert uvicorn_calls[0][1]["log_level"] == "debug"
        assert settings.log_level == "DEBUG"
