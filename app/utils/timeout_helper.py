"""
Centralized timeout management utility
"""
from flask import current_app, has_app_context


def _config_timeout(key: str, fallback: int) -> int:
    if not has_app_context():
        return fallback
    try:
        return int(current_app.config.get(key, fallback))
    except (ValueError, TypeError):
        current_app.logger.warning(f"Invalid {key} setting, using fallback: {fallback}")
        return fallback


def get_api_timeout() -> int:
    """
    Timeout for ordinary metadata calls to Jellyfin.

    Returns:
        int: Timeout value in seconds (default: 10)
    """
    return _config_timeout('JELLYFIN_TIMEOUT', 10)


def get_api_timeout_with_fallback(fallback: int = 10) -> int:
    """
    Get the metadata API timeout with a custom fallback value.

    Args:
        fallback (int): Fallback timeout value if the setting is invalid

    Returns:
        int: Timeout value in seconds
    """
    return _config_timeout('JELLYFIN_TIMEOUT', fallback)


def get_stream_timeout() -> int:
    """Timeout for manifest and segment fetches. The first segment can be slow to produce."""
    return _config_timeout('JELLYFIN_STREAM_TIMEOUT', 30)


def get_validation_timeout() -> int:
    """Timeout for item existence checks."""
    return _config_timeout('JELLYFIN_VALIDATION_TIMEOUT', 1)
