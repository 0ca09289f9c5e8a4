"""Unit tests for the Database component."""
import pytest
from datetime import datetime, timedelta, timezone

from digiprobe.database import Database
from digiprobe.models import (
    CategoryColor,
    GeoPosition,
    Metrics,
    Sample,
    TestConfiguration,
    TestMode,
)


def make_sample(
    timestamp: datetime,
    download: float = 25.0,
    ping: float = 12.0,
    mos: float = 4.6,
    position: GeoPosition = None,
    loop: int = 1,
) -> Sample:
    return Sample(
        metrics=Metrics(
            ping=ping,
            download_speed=download,
            upload_speed=5.0,
            browsing_time=400.0,
            video_mos=mos,
        ),
        timestamp=timestamp,
        position=position,
        loop=loop,
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def test_create_session_returns_id(db, static_config):
    session_id = db.create_session(static_config, "PT Telkomsel", "203.0.113.7")
    assert isinstance(session_id, int)
    assert session_id >= 1


def test_created_session_is_active_and_preserves_fields(db, static_config):
    session_id = db.create_session(static_config, "PT Telkomsel", "203.0.113.7")
    session = db.get_session(session_id)

    assert session.is_active is True
    assert session.operator_label == "Telkomsel"
    assert session.test_mode == TestMode.STATIC
    assert session.isp_name == "PT Telkomsel"
    assert session.public_ip == "203.0.113.7"
    assert session.activity == "Routine Monitoring"
    assert session.poi_name == "Tugu Jogja"


def test_blank_optional_fields_are_stored_as_null(db, drive_config):
    session_id = db.create_session(drive_config, "", "")
    session = db.get_session(session_id)
    assert session.remark is None
    assert session.poi_name is None
    assert session.isp_name is None
    assert session.public_ip is None


def test_close_session_marks_inactive(db, static_config):
    session_id = db.create_session(static_config)
    assert db.close_session(session_id) is True
    assert db.get_session(session_id).is_active is False


def test_close_unknown_session_returns_false(db):
    assert db.close_session(999) is False


def test_get_unknown_session_returns_none(db):
    assert db.get_session(42) is None


def test_list_sessions_newest_first(db, static_config, drive_config):
    first = db.create_session(static_config)
    second = db.create_session(drive_config)
    sessions = db.list_sessions()
    assert [s.id for s in sessions] == [second, first]
    assert len(db.list_sessions(limit=1)) == 1


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

def test_append_result_returns_row_id(db, static_config, sample):
    session_id = db.create_session(static_config)
    result_id = db.append_result(session_id, sample)
    assert isinstance(result_id, int)
    assert db.count() == 1
    assert db.count(session_id) == 1


def test_append_result_stores_derived_color(db, static_config, sample):
    session_id = db.create_session(static_config)
    db.append_result(session_id, sample)
    stored = db.get_results(session_id)[0]
    assert stored.category_color == sample.category_color == CategoryColor.BLUE


def test_results_without_position_have_null_coordinates(db, static_config):
    session_id = db.create_session(static_config)
    db.append_result(session_id, make_sample(datetime(2024, 1, 1)))
    stored = db.get_results(session_id)[0]
    assert stored.lat is None
    assert stored.lng is None


def test_get_results_ordered_and_scoped_to_session(db, static_config, drive_config):
    a = db.create_session(static_config)
    b = db.create_session(drive_config)
    base = datetime(2024, 1, 1, 8, 0)
    for minutes in [3, 1, 2]:
        db.append_result(a, make_sample(base + timedelta(minutes=minutes)))
    db.append_result(b, make_sample(base))

    results = db.get_results(a)
    assert len(results) == 3
    timestamps = [r.created_at for r in results]
    assert timestamps == sorted(timestamps)
    assert all(r.session_id == a for r in results)


def test_roundtrip_preserves_metrics(db, static_config):
    session_id = db.create_session(static_config)
    original = make_sample(
        datetime(2024, 6, 15, 10, 30, 45),
        download=3.123,
        ping=33.3,
        mos=3.456,
        position=GeoPosition(-7.79, 110.36),
    )
    db.append_result(session_id, original)
    stored = db.get_results(session_id)[0]

    assert stored.created_at == original.timestamp
    assert stored.metrics == original.metrics
    assert stored.lat == -7.79
    assert stored.lng == 110.36
    assert stored.category_color == CategoryColor.GREEN


# ---------------------------------------------------------------------------
# Markers
# ---------------------------------------------------------------------------

def test_markers_only_for_positioned_results(db, drive_config):
    session_id = db.create_session(drive_config)
    db.append_result(session_id, make_sample(datetime(2024, 1, 1, 8, 0), position=GeoPosition(-7.8, 110.4)))
    db.append_result(session_id, make_sample(datetime(2024, 1, 1, 8, 1)))

    markers = db.get_markers(session_id)
    assert len(markers) == 1
    marker = markers[0]
    assert marker.letter == "X"
    assert marker.letter_color == "#a855f7"
    assert marker.category_color == CategoryColor.BLUE
    assert marker.border_color == "#0EA5E9"
    assert marker.operator_label == "XL Axiata"


def test_markers_for_unknown_session_empty(db):
    assert db.get_markers(123) == []


# ---------------------------------------------------------------------------
# cleanup_old_data
# ---------------------------------------------------------------------------

def _age_session(db, session_id, days):
    old = (datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=days)).isoformat()
    db._execute("UPDATE test_sessions SET created_at = ? WHERE id = ?", (old, session_id), write=True)


def test_cleanup_zero_retention_keeps_all_data(db, static_config, sample):
    session_id = db.create_session(static_config)
    db.append_result(session_id, sample)
    _age_session(db, session_id, 365)
    assert db.cleanup_old_data(retention_days=0) == 0
    assert db.count() == 1


def test_cleanup_deletes_old_sessions_and_their_results(db, static_config, drive_config, sample):
    old = db.create_session(static_config)
    recent = db.create_session(drive_config)
    db.append_result(old, sample)
    db.append_result(recent, sample)
    _age_session(db, old, 100)

    deleted = db.cleanup_old_data(retention_days=30)

    assert deleted == 1
    assert db.get_session(old) is None
    assert db.get_session(recent) is not None
    assert db.count() == 1


# ---------------------------------------------------------------------------
# Persistence across reconnect
# ---------------------------------------------------------------------------

def test_persistence_survives_reconnect(tmp_path, static_config, sample):
    db_file = str(tmp_path / "test.db")
    db1 = Database(db_file)
    session_id = db1.create_session(static_config)
    db1.append_result(session_id, sample)

    db2 = Database(db_file)
    results = db2.get_results(session_id)
    assert len(results) == 1
    assert results[0].download_speed == pytest.approx(25.0)
