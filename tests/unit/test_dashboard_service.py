"""Unit tests for the dashboard service entry point."""
from unittest.mock import patch

from digiprobe.dashboard_service import build_app, main, parse_args
from digiprobe.models import Config


def test_parse_args_defaults():
    args = parse_args([])
    assert args.host == "0.0.0.0"
    assert args.port is None
    assert args.config is None


def test_build_app_honours_url_prefix():
    config = Config.default()
    config.database.path = ":memory:"
    config.dashboard.url_prefix = "/digiprobe"

    client = build_app(config).test_client()
    assert client.get("/digiprobe/api/sessions").status_code == 200
    assert client.get("/api/sessions").status_code == 404


def test_main_runs_app_on_overridden_port(monkeypatch):
    monkeypatch.setenv("DB_PATH", ":memory:")
    with patch("flask.Flask.run") as run:
        main(["--port", "9191", "--host", "127.0.0.1"])
    run.assert_called_once_with(host="127.0.0.1", port=9191)
