# File: app/utils/helpers.py
import hmac
from functools import wraps
from flask import current_app, request, jsonify
from app.errors import NotConfiguredError
from app.services.jellyfin_service import jellyfin_service


def ensure_jellyfin_initialized() -> bool:
    """Connect the upstream client from stored config if nothing connected it yet."""
    if jellyfin_service.is_initialized():
        return True
    from app.services.jellyfin_config_service import JellyfinConfigService
    try:
        config = JellyfinConfigService.load_active_config()
    except Exception as e:
        current_app.logger.error(f"Error loading Jellyfin config: {e}", exc_info=True)
        return False
    if not config:
        return False
    jellyfin_service.initialize(config.server_url, config.api_key)
    return True


def jellyfin_required(f):
    """
    Decorator for routes that talk to Jellyfin. Loads the stored configuration
    on first use; answers 503 when there is none.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not ensure_jellyfin_initialized():
            raise NotConfiguredError()
        return f(*args, **kwargs)
    return decorated_function


def admin_token_required(f):
    """Guards admin routes with the X-Admin-Token header when ADMIN_API_TOKEN is set."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('ADMIN_API_TOKEN')
        if expected:
            supplied = request.headers.get('X-Admin-Token', '')
            if not hmac.compare_digest(supplied.encode(), expected.encode()):
                current_app.logger.warning(f"Rejected admin request to {request.path} from {request.remote_addr}")
                return jsonify({'success': False, 'message': 'Admin token required'}), 401
        return f(*args, **kwargs)
    return decorated_function


def parse_positive_int(value, default: int, maximum: int = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number < 1:
        return default
    if maximum is not None:
        number = min(number, maximum)
    return number


def is_truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in ['true', '1', 'yes']
