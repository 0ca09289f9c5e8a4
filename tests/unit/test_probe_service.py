"""Unit tests for the probe service entry point."""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import FakeTransport
from digiprobe.models import Config, TestMode
from digiprobe.orchestrator import TestOrchestrator
from digiprobe.probe_service import build_orchestrator, main, parse_args, run_session
from digiprobe.recorder import SessionRecorder
from digiprobe.wakelock import InhibitWakeLock


def test_parse_args_defaults():
    args = parse_args(["--operator", "Telkomsel", "--poi", "Tugu Jogja"])
    assert args.operator == "Telkomsel"
    assert args.mode == "static"
    assert args.poi == "Tugu Jogja"
    assert args.config is None


def test_parse_args_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        parse_args(["--operator", "XL", "--mode", "flying"])


def test_parse_args_requires_operator():
    with pytest.raises(SystemExit):
        parse_args([])


def test_build_orchestrator_wires_recorder(db):
    recorder = SessionRecorder(db)
    orchestrator = build_orchestrator(Config.default(), TestMode.DRIVE, recorder)

    assert isinstance(orchestrator, TestOrchestrator)
    assert orchestrator.mode is TestMode.DRIVE
    assert orchestrator.on_sample == recorder.on_sample
    assert orchestrator.on_complete == recorder.on_complete
    assert isinstance(orchestrator.wake_lock, InhibitWakeLock)


def test_main_rejects_static_test_without_poi(monkeypatch):
    monkeypatch.setenv("DB_PATH", ":memory:")
    with patch("digiprobe.probe_service.run_session") as run:
        assert main(["--operator", "Telkomsel", "--mode", "static"]) == 2
    run.assert_not_called()


def test_main_runs_session(monkeypatch):
    monkeypatch.setenv("DB_PATH", ":memory:")
    recorder = MagicMock(session_id=1, result_ids=[1, 2], markers=[])
    with patch("digiprobe.probe_service.run_session", new=AsyncMock(return_value=recorder)) as run:
        assert main(["--operator", "XL Axiata", "--mode", "drive"]) == 0

    test_config = run.call_args.args[1]
    assert test_config.operator_label == "XL Axiata"
    assert test_config.test_mode is TestMode.DRIVE


def test_run_session_records_a_static_test_offline(static_config):
    config = Config.default()
    config.database.path = ":memory:"
    config.orchestrator.static_pause_seconds = 0
    config.orchestrator.settle_seconds = 0

    with patch("digiprobe.probe_service.HttpTransport", side_effect=lambda **kw: FakeTransport(fail=True)):
        recorder = asyncio.run(run_session(config, static_config))

    assert recorder.session_id is not None
    assert len(recorder.result_ids) == 5
    assert recorder.db.count(recorder.session_id) == 5
    assert recorder.db.get_session(recorder.session_id).is_active is False
    assert ("success", "Test completed and saved!") in recorder.notifications
