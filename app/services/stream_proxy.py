"""
HLS stream proxy.

Playback traffic never goes to Jellyfin directly: the proxy authenticates
with a low-privilege account, fetches manifests and segments on the
client's behalf and rewrites every URL inside a manifest so that it points
back at the proxy.
"""

import re
import threading
import time
from typing import Dict, Mapping, Optional
from urllib.parse import urlencode, urlsplit

import requests
from cachetools import TTLCache
from flask import Response, current_app, has_app_context, has_request_context, url_for

from app.errors import MediaGatewayError, NotFoundError, UpstreamError
from app.utils.timeout_helper import get_stream_timeout
from app.utils.upstream_paths import is_safe_id, is_safe_sub_path

MANIFEST_EXTENSION = '.m3u8'
SEGMENT_EXTENSION = '.ts'
MASTER_MANIFEST = 'master.m3u8'
TIMING_PARAMS = ('runtimeTicks', 'actualSegmentLengthTicks')

PROXY_PATH_PREFIX = '/api/media/stream'
PROXY_PATH_MARKER = PROXY_PATH_PREFIX + '/'
UPSTREAM_MEDIA_PATH = '/Videos/'
_UPSTREAM_MEDIA_TAIL = re.compile(r'/Videos/[^/]+/(.+)$')

MANIFEST_CONTENT_TYPE = 'application/vnd.apple.mpegurl'
SEGMENT_CONTENT_TYPE = 'video/mp2t'
DEFAULT_CONTENT_TYPE = 'application/octet-stream'

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type',
}
NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}

STREAM_CHUNK_SIZE = 64 * 1024


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _log(level: str, message: str, **kwargs):
    if has_app_context():
        getattr(current_app.logger, level)(f"[STREAM] {message}", **kwargs)


def _mask(token: Optional[str]) -> str:
    if not token:
        return '<none>'
    return f"{token[:4]}..."


class TokenStore:
    """
    Process-wide cache of the playback session token.

    One authentication round trip per TTL window. Concurrent misses may each
    authenticate; the last write wins.
    """

    def __init__(self, ttl: int = 3600, timer=time.monotonic):
        self._timer = timer
        self._lock = threading.Lock()
        self.auth_attempts = 0
        self.configure(ttl)

    def configure(self, ttl: int):
        self.ttl = ttl
        self._tokens = TTLCache(maxsize=8, ttl=ttl, timer=self._timer)

    def cache_key(self) -> str:
        return f"jellyfin_user_token_{_config('JELLYFIN_STREAM_USERNAME', 'public')}"

    def get_cached(self) -> Optional[str]:
        with self._lock:
            return self._tokens.get(self.cache_key())

    def get_token(self, client) -> str:
        """Cached token, else a fresh one, else the static API key."""
        token = self.get_cached()
        if token:
            _log('debug', "Using cached Jellyfin user token")
            return token

        token = self.authenticate(client)
        if token:
            with self._lock:
                self._tokens[self.cache_key()] = token
            return token
        return client.api_key

    def authenticate(self, client) -> Optional[str]:
        username = _config('JELLYFIN_STREAM_USERNAME', 'public')
        password = _config('JELLYFIN_STREAM_PASSWORD', 'public')
        client_name = _config('JELLYFIN_CLIENT_NAME', 'iFilm')
        device_name = _config('JELLYFIN_DEVICE_NAME', 'Web Browser')
        device_id = _config('JELLYFIN_DEVICE_ID', 'ifilm-web')
        version = _config('JELLYFIN_CLIENT_VERSION', '1.0.0')

        self.auth_attempts += 1
        _log('info', f"Authenticating with Jellyfin user '{username}'")
        try:
            response = client.request(
                'POST',
                '/Users/authenticatebyname',
                json={'Username': username, 'Pw': password},
                headers={
                    'X-Emby-Client': client_name,
                    'X-Emby-Device-Name': device_name,
                    'X-Emby-Device-Id': device_id,
                    'X-Emby-Client-Version': version,
                    'X-Emby-Authorization': (
                        f'MediaBrowser Client="{client_name}", Device="{device_name}", '
                        f'DeviceId="{device_id}", Version="{version}"'
                    ),
                },
            )
            response.raise_for_status()
            token = (response.json() or {}).get('AccessToken')
        except (requests.exceptions.RequestException, ValueError) as e:
            _log('warning', f"Failed to authenticate stream user, using API key: {e}")
            return None

        if not token:
            _log('warning', "Authentication response carried no AccessToken, using API key")
            return None
        _log('info', f"Authenticated stream user '{username}'")
        return token

    def invalidate(self):
        with self._lock:
            self._tokens.pop(self.cache_key(), None)

    def reset(self):
        with self._lock:
            self._tokens.clear()


class PlaylistRewriteContext:
    """Per-request state for one proxied stream request."""

    def __init__(self, item_id: str, file_path: Optional[str], token: str,
                 media_source_id: Optional[str], proxy_base: str):
        self.item_id = item_id
        self.file_path = file_path or ''
        self.token = token
        self.media_source_id = media_source_id
        self.proxy_base = proxy_base.rstrip('/')

    @property
    def is_master(self) -> bool:
        return not self.file_path

    @property
    def is_manifest(self) -> bool:
        return self.is_master or self.file_path.endswith(MANIFEST_EXTENSION)

    @property
    def is_segment(self) -> bool:
        return self.file_path.endswith(SEGMENT_EXTENSION)

    def __repr__(self):
        return f'<PlaylistRewriteContext {self.item_id}/{self.file_path or MASTER_MANIFEST}>'


def build_proxy_base(item_id: str) -> str:
    """Proxy URL for ``item_id``, including any prefix a reverse proxy announced."""
    public_base = (_config('PUBLIC_BASE_URL', '') or '').rstrip('/')
    if has_request_context():
        path = url_for('media.proxy_stream', item_id=item_id)
    else:
        path = f"{PROXY_PATH_PREFIX}/{item_id}"
    return f"{public_base}{path}"


def validate_stream_path(item_id: str, file_path: Optional[str]):
    """Raise NotFoundError unless the request stays under /Videos/<item_id>/ upstream."""
    if not is_safe_id(item_id):
        raise NotFoundError('Stream not found', error=f"Invalid item id {item_id!r}")
    if file_path and not is_safe_sub_path(file_path):
        raise NotFoundError('Stream not found', error=f"Invalid stream path {file_path!r}")


def build_target_url(server_url: str, context: PlaylistRewriteContext, inbound_args: Optional[Mapping[str, str]] = None) -> str:
    """
    Upstream URL for a proxied request.

    Master manifest and variant playlists carry the token and media source.
    Segments also forward the two playback timing parameters when the client
    sent them.
    """
    server_url = server_url.rstrip('/')
    inbound_args = inbound_args or {}
    params = [('api_key', context.token)]

    if context.is_segment:
        for name in TIMING_PARAMS:
            value = inbound_args.get(name)
            if value is not None:
                params.append((name, value))

    if context.media_source_id:
        params.append(('MediaSourceId', context.media_source_id))

    path = context.file_path or MASTER_MANIFEST
    return f"{server_url}/Videos/{context.item_id}/{path}?{urlencode(params)}"


def rewrite_line(line: str, context: PlaylistRewriteContext) -> str:
    """Point one manifest line at the proxy. Lines that can't be classified are returned unchanged."""
    stripped = line.strip()
    if not stripped or stripped.startswith('#'):
        return line

    if PROXY_PATH_MARKER in stripped:
        return line

    path, has_query, query = stripped.partition('?')
    suffix = f"?{query}" if has_query else ''
    base = context.proxy_base

    if path.startswith(('http://', 'https://')):
        match = _UPSTREAM_MEDIA_TAIL.search(urlsplit(path).path)
        if match:
            return f"{base}/{match.group(1)}{suffix}"
        return line

    if path.startswith(UPSTREAM_MEDIA_PATH):
        match = _UPSTREAM_MEDIA_TAIL.search(path)
        if match:
            return f"{base}/{match.group(1)}{suffix}"
        return line

    if not path.startswith('/'):
        return f"{base}/{path}{suffix}"

    parts = [part for part in path.split('/') if part]
    if parts:
        return f"{base}/{'/'.join(parts)}{suffix}"

    return line


def rewrite_playlist(content: str, context: PlaylistRewriteContext) -> str:
    return '\n'.join(rewrite_line(line, context) for line in content.split('\n'))


def resolve_media_source_id(client, item_id: str, token: str, requested: Optional[str] = None) -> Optional[str]:
    """Media source for the item. Failures are logged and never fatal."""
    media_source_id = None
    try:
        sources = client.get_media_sources(item_id, token=token)
        source_ids = [source.get('Id') for source in sources if source.get('Id')]
        if requested and requested in source_ids:
            media_source_id = requested
        elif source_ids:
            media_source_id = source_ids[0]
            if requested:
                _log('info', f"Requested media source {requested} not found on {item_id}, using {media_source_id}")
    except (MediaGatewayError, requests.exceptions.RequestException) as e:
        _log('warning', f"Failed to resolve media source for {item_id}, continuing without it: {e}")

    if requested and not media_source_id:
        media_source_id = requested
    return media_source_id


def guess_content_type(file_path: str) -> str:
    if not file_path or file_path.endswith(MANIFEST_EXTENSION):
        return MANIFEST_CONTENT_TYPE
    if file_path.endswith(SEGMENT_EXTENSION):
        return SEGMENT_CONTENT_TYPE
    return DEFAULT_CONTENT_TYPE


def _fetch(client, target_url: str, token: str, stream: bool) -> requests.Response:
    try:
        return client.session.get(
            target_url,
            headers={'X-Emby-Token': token},
            stream=stream,
            timeout=get_stream_timeout(),
        )
    except requests.exceptions.RequestException as e:
        _log('error', f"Upstream fetch failed for {target_url.split('?')[0]}: {e}")
        raise UpstreamError('Failed to proxy stream', error=str(e))


def options_response() -> Response:
    return Response(status=204, headers=CORS_HEADERS)


def proxy_stream(service, item_id: str, file_path: Optional[str], inbound_args: Mapping[str, str]) -> Response:
    """Fetch a manifest or segment from Jellyfin and hand it back to the client."""
    try:
        validate_stream_path(item_id, file_path)
    except NotFoundError as e:
        _log('warning', f"Rejected stream request: {e.error}")
        raise
    client = service.client
    token = service.tokens.get_token(client)
    media_source_id = resolve_media_source_id(client, item_id, token, inbound_args.get('mediaSourceId'))
    context = PlaylistRewriteContext(item_id, file_path, token, media_source_id, build_proxy_base(item_id))

    target_url = build_target_url(client.url, context, inbound_args)
    _log('debug', f"Proxying {context!r} with token {_mask(token)}")
    upstream = _fetch(client, target_url, token, stream=not context.is_manifest)

    if upstream.status_code in (401, 403) and token != client.api_key:
        _log('warning', f"Jellyfin rejected the cached token ({upstream.status_code}), re-authenticating")
        upstream.close()
        service.tokens.invalidate()
        context.token = service.tokens.get_token(client)
        target_url = build_target_url(client.url, context, inbound_args)
        upstream = _fetch(client, target_url, context.token, stream=not context.is_manifest)

    if upstream.status_code >= 400:
        reason = upstream.reason or 'Upstream error'
        upstream.close()
        _log('error', f"Jellyfin returned {upstream.status_code} for {context!r}")
        raise UpstreamError('Failed to proxy stream', error=f"{upstream.status_code} {reason}", status_code=upstream.status_code)

    if context.is_manifest:
        playlist = upstream.content.decode('utf-8', errors='replace')
        upstream.close()
        headers = dict(CORS_HEADERS)
        headers.update(NO_CACHE_HEADERS)
        return Response(rewrite_playlist(playlist, context), status=200, mimetype=MANIFEST_CONTENT_TYPE, headers=headers)

    content_type = upstream.headers.get('Content-Type') or guess_content_type(context.file_path)
    headers: Dict[str, str] = dict(CORS_HEADERS)
    content_length = upstream.headers.get('Content-Length')
    if content_length:
        headers['Content-Length'] = content_length

    def generate():
        try:
            for chunk in upstream.iter_content(chunk_size=STREAM_CHUNK_SIZE):
                if chunk:
                    yield chunk
        finally:
            upstream.close()

    return Response(generate(), status=upstream.status_code, content_type=content_type, headers=headers, direct_passthrough=True)
