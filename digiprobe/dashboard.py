"""Flask dashboard: read-only REST API feeding the map, trend chart and result list."""
import logging

from flask import Blueprint, Flask, abort, jsonify, request

from digiprobe.database import Database
from digiprobe.models import Statistics, TestSession

logger = logging.getLogger(__name__)

DEFAULT_SESSION_LIMIT = 50
MAX_SESSION_LIMIT = 500
# MOS (1-5) is drawn on the same axis as speeds and ping
MOS_CHART_SCALE = 20


def create_app(db: Database, url_prefix: str = "") -> Flask:
    """Create and configure the Flask application.

    Args:
        db: Database instance
        url_prefix: URL prefix for reverse proxy routing (e.g., '/digiprobe')
    """
    app = Flask(__name__)
    app.config["DB"] = db

    if url_prefix:
        app.config["APPLICATION_ROOT"] = url_prefix

    bp = Blueprint("dashboard", __name__, url_prefix=url_prefix)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _db() -> Database:
        return app.config["DB"]

    def _session_or_404(session_id: int) -> TestSession:
        session = _db().get_session(session_id)
        if session is None:
            abort(404, description=f"Session {session_id} not found")
        return session

    # ------------------------------------------------------------------
    # API endpoints
    # ------------------------------------------------------------------

    @bp.route("/api/sessions")
    def list_sessions():
        """Return recent sessions, newest first.

        Query params:
          limit – maximum number of sessions (default 50)
        """
        try:
            limit = int(request.args.get("limit", DEFAULT_SESSION_LIMIT))
        except ValueError:
            abort(400, description="'limit' must be an integer")
        if not (1 <= limit <= MAX_SESSION_LIMIT):
            abort(400, description=f"'limit' must be between 1 and {MAX_SESSION_LIMIT}")
        return jsonify([s.to_dict() for s in _db().list_sessions(limit)])

    @bp.route("/api/sessions/<int:session_id>")
    def get_session(session_id: int):
        return jsonify(_session_or_404(session_id).to_dict())

    @bp.route("/api/sessions/<int:session_id>/results")
    def get_results(session_id: int):
        _session_or_404(session_id)
        return jsonify([r.to_dict() for r in _db().get_results(session_id)])

    @bp.route("/api/sessions/<int:session_id>/markers")
    def get_markers(session_id: int):
        _session_or_404(session_id)
        return jsonify([m.to_dict() for m in _db().get_markers(session_id)])

    @bp.route("/api/sessions/<int:session_id>/trend")
    def get_trend(session_id: int):
        """Per-run series for the trend chart."""
        _session_or_404(session_id)
        results = _db().get_results(session_id)
        return jsonify([
            {
                "name": f"#{index}",
                "ping": r.ping,
                "download": r.download_speed,
                "upload": r.upload_speed,
                "mos": r.video_mos * MOS_CHART_SCALE,
            }
            for index, r in enumerate(results, start=1)
        ])

    @bp.route("/api/sessions/<int:session_id>/stats")
    def get_statistics(session_id: int):
        """Return aggregate statistics (avg/min/max) for a session."""
        _session_or_404(session_id)
        stats = Statistics.from_results(_db().get_results(session_id))
        if stats is None:
            return jsonify(None), 200
        return jsonify(stats.to_dict())

    app.register_blueprint(bp)

    return app
