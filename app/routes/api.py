# File: app/routes/api.py
from flask import Blueprint, current_app, jsonify
from app.extensions import db
from app.services.jellyfin_service import jellyfin_service

bp = Blueprint('api', __name__)


@bp.route('/health')
def health():
    """Liveness probe. Reports database reachability and whether Jellyfin is connected."""
    database_ok = True
    try:
        db.session.execute(db.text('SELECT 1'))
    except Exception as e:
        current_app.logger.warning(f"Health check: database unreachable: {e}")
        database_ok = False

    return jsonify({
        'status': 'ok' if database_ok else 'degraded',
        'app': current_app.config.get('APP_NAME', 'iFilm'),
        'version': current_app.config.get('APP_VERSION'),
        'database': database_ok,
        'jellyfinInitialized': jellyfin_service.is_initialized(),
    }), 200 if database_ok else 503
