# File: app/routes/admin.py
from flask import Blueprint, current_app, jsonify, request

from app.errors import InfrastructureError, MediaGatewayError, UpstreamError
from app.services.jellyfin_config_service import JellyfinConfigService
from app.services.jellyfin_service import jellyfin_service
from app.services.library_sync import LibrarySyncService
from app.utils.connection_tester import check_jellyfin
from app.utils.helpers import admin_token_required, ensure_jellyfin_initialized

bp = Blueprint('admin', __name__)


def _credentials_from_body():
    data = request.get_json(silent=True) or {}
    server_url = (data.get('serverUrl') or '').strip()
    api_key = (data.get('apiKey') or '').strip()
    return server_url, api_key


def _missing_credentials():
    return jsonify({'success': False, 'message': 'Server URL and API Key are required'}), 400


@bp.route('/jellyfin/test', methods=['POST'])
@admin_token_required
def test_jellyfin_connection():
    server_url, api_key = _credentials_from_body()
    if not server_url or not api_key:
        return _missing_credentials()

    success, message, server_info = check_jellyfin(server_url, api_key)
    if not success:
        current_app.logger.warning(f"Jellyfin connection test failed for {server_url}: {message}")
        return jsonify({'success': False, 'message': message}), 500

    return jsonify({
        'success': True,
        'message': 'Successfully connected to Jellyfin server',
        'serverInfo': {
            'name': server_info.get('ServerName') or 'Jellyfin Server',
            'version': server_info.get('Version') or 'Unknown',
        },
    })


@bp.route('/jellyfin/save', methods=['POST'])
@admin_token_required
def save_jellyfin_config():
    server_url, api_key = _credentials_from_body()
    if not server_url or not api_key:
        return _missing_credentials()

    success, message, server_info = check_jellyfin(server_url, api_key)
    if not success:
        return jsonify({'success': False, 'message': message}), 500

    config = JellyfinConfigService.save_config(
        server_url,
        api_key,
        server_info.get('ServerName'),
        server_info.get('Version'),
    )
    jellyfin_service.initialize(config.server_url, config.api_key)

    libraries = []
    try:
        libraries = LibrarySyncService.sync(config.id, jellyfin_service.client)
    except MediaGatewayError as e:
        # The configuration is saved either way
        current_app.logger.error(f"Library sync after saving configuration failed: {e.message}")

    return jsonify({
        'success': True,
        'message': 'Jellyfin configuration saved successfully',
        'config': config.to_dict(),
        'libraries': libraries,
    })


@bp.route('/jellyfin/config', methods=['GET'])
@admin_token_required
def get_jellyfin_config():
    config = JellyfinConfigService.load_active_config()
    if not config:
        return jsonify({'success': True, 'config': None, 'message': 'Jellyfin not configured'})
    return jsonify({'success': True, 'config': config.to_dict()})


@bp.route('/jellyfin/libraries', methods=['GET'])
@admin_token_required
def get_jellyfin_libraries():
    config = JellyfinConfigService.load_active_config()
    if not config:
        return jsonify({'success': False, 'message': 'Jellyfin not configured'}), 400
    libraries = LibrarySyncService.get_libraries(config.id)
    return jsonify({'success': True, 'libraries': [lib.to_dict() for lib in libraries]})


@bp.route('/jellyfin/libraries/sync', methods=['POST'])
@admin_token_required
def sync_jellyfin_libraries():
    config = JellyfinConfigService.load_active_config()
    if not config:
        return jsonify({'success': False, 'message': 'Jellyfin not configured. Please configure Jellyfin first.'}), 400
    if not jellyfin_service.is_initialized():
        jellyfin_service.initialize(config.server_url, config.api_key)

    try:
        libraries = LibrarySyncService.sync(config.id, jellyfin_service.client)
    except UpstreamError as e:
        current_app.logger.error(f"Sync libraries error: {e.message}")
        return jsonify({'success': False, 'message': 'Failed to sync libraries', 'detailedError': e.error or e.message}), e.status_code
    except InfrastructureError as e:
        current_app.logger.error(f"Sync libraries database error: {e.message} ({e.error})")
        return jsonify({'success': False, 'message': 'Failed to sync libraries', 'detailedError': e.error or e.message}), 500

    if not libraries:
        return jsonify({
            'success': True,
            'message': 'No libraries found to sync. Make sure Jellyfin has libraries configured.',
            'libraries': [],
        })

    count = len(libraries)
    return jsonify({
        'success': True,
        'message': f"Successfully synced {count} librar{'y' if count == 1 else 'ies'}",
        'libraries': libraries,
    })


@bp.route('/libraries/<int:record_id>/visibility', methods=['PUT'])
@admin_token_required
def update_library_visibility(record_id):
    data = request.get_json(silent=True) or {}
    is_visible = data.get('isVisible')
    if not isinstance(is_visible, bool):
        return jsonify({'success': False, 'message': 'isVisible must be a boolean'}), 400

    if not LibrarySyncService.update_visibility(record_id, is_visible):
        return jsonify({'success': False, 'message': 'Library not found'}), 404

    # Listings are filtered by visibility, drop what was cached under the old set
    jellyfin_service.cache.flush_all()
    return jsonify({'success': True, 'message': 'Library visibility updated successfully'})


@bp.route('/cache/clear', methods=['POST'])
@admin_token_required
def clear_cache():
    data = request.get_json(silent=True) or {}
    cache_type = data.get('cacheType') or 'jellyfin'
    if cache_type not in ('jellyfin', 'all'):
        return jsonify({'success': False, 'message': f"Unsupported cache type '{cache_type}'"}), 400

    jellyfin_service.cache.flush_all()
    jellyfin_service.tokens.reset()
    current_app.logger.info("Jellyfin response cache and stream token cleared by admin request")
    return jsonify({
        'success': True,
        'message': 'All caches cleared successfully',
        'results': {'jellyfin': {'success': True, 'message': 'Jellyfin cache cleared successfully'}},
    })


@bp.route('/stats', methods=['GET'])
@admin_token_required
def get_system_stats():
    total_movies = 0
    total_series = 0
    jellyfin_status = 'disconnected'

    if ensure_jellyfin_initialized():
        try:
            client = jellyfin_service.client
            total_movies = client.get_items({'includeItemTypes': 'Movie', 'limit': 1}).get('TotalRecordCount', 0)
            total_series = client.get_items({'includeItemTypes': 'Series', 'limit': 1}).get('TotalRecordCount', 0)
            jellyfin_status = 'connected'
        except MediaGatewayError as e:
            current_app.logger.error(f"Error fetching Jellyfin stats: {e.message}")
            jellyfin_status = 'error'

    return jsonify({
        'totalMovies': total_movies,
        'totalSeries': total_series,
        'jellyfinStatus': jellyfin_status,
        'cache': jellyfin_service.cache.stats(),
        'streamTokenCached': jellyfin_service.tokens.get_cached() is not None,
    })
