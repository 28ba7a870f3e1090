# File: app/errors.py
"""
Error taxonomy for the media gateway.

Every failure that reaches an HTTP client is rendered as JSON with a
human-readable ``message`` and, where useful, an ``error`` detail.
"""
from flask import jsonify
from werkzeug.exceptions import HTTPException


NOT_CONFIGURED_MESSAGE = 'Jellyfin server not configured. Please configure in Admin Panel.'
NOT_INITIALIZED_DETAIL = 'Jellyfin client not initialized'


class MediaGatewayError(Exception):
    """Base class for errors surfaced to API clients."""
    status_code = 500
    default_message = 'Internal server error'

    def __init__(self, message=None, error=None, status_code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.error = error
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        payload = {'message': self.message}
        if self.error:
            payload['error'] = self.error
        return payload


class NotConfiguredError(MediaGatewayError):
    """No upstream credentials are stored."""
    status_code = 503
    default_message = NOT_CONFIGURED_MESSAGE

    def __init__(self, message=None, error=NOT_INITIALIZED_DETAIL):
        super().__init__(message, error)


class NotInitializedError(MediaGatewayError):
    """The upstream client has not been connected yet."""
    status_code = 503
    default_message = NOT_CONFIGURED_MESSAGE

    def __init__(self, message=None, error=NOT_INITIALIZED_DETAIL):
        super().__init__(message, error)


class NotFoundError(MediaGatewayError):
    status_code = 404
    default_message = 'Item not found'


class ValidationMismatchError(MediaGatewayError):
    """An internal consistency check failed (e.g. episode not in series)."""
    status_code = 400
    default_message = 'Validation mismatch'


class UpstreamError(MediaGatewayError):
    """Any other upstream failure. Carries the upstream status when there is one."""
    status_code = 502
    default_message = 'Upstream request failed'


class InfrastructureError(MediaGatewayError):
    """Database or storage failure that is not an expected constraint case."""
    status_code = 500
    default_message = 'Infrastructure error'


def register_error_handlers(app):
    @app.errorhandler(MediaGatewayError)
    def media_gateway_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{error.__class__.__name__}: {error.message} ({error.error})")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({'message': error.description or error.name}), error.code

    @app.errorhandler(Exception)
    def unexpected_error(error):
        app.logger.error(f"Unhandled error: {error}", exc_info=True)
        return jsonify({'message': 'Internal server error', 'error': str(error)}), 500
