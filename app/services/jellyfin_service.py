"""
Jellyfin Media Service Implementation
Thin client over the Jellyfin REST API with a short-lived response cache.
"""

import requests
from typing import List, Dict, Any, Optional
from urllib.parse import quote
from flask import current_app, has_app_context
from app.errors import NotInitializedError, NotFoundError, UpstreamError
from app.services.response_cache import ResponseCache, derive_items_cache_key, CACHE_BUSTING_PARAMS
from app.services.stream_proxy import TokenStore
from app.utils.timeout_helper import get_api_timeout_with_fallback, get_validation_timeout
from app.utils.upstream_paths import is_safe_id

ITEM_FIELDS = 'Genres,Overview,ProductionYear,CommunityRating,RunTimeTicks,BackdropImageTags'

# Item types whose listings must drop externally deleted content quickly
SHORT_LIVED_ITEM_TYPES = {'Series', 'Movie'}

# camelCase filter names used by the routes -> Jellyfin query parameter names
FILTER_PARAM_NAMES = {
    'parentId': 'ParentId',
    'includeItemTypes': 'IncludeItemTypes',
    'excludeItemTypes': 'ExcludeItemTypes',
    'limit': 'Limit',
    'startIndex': 'StartIndex',
    'sortBy': 'SortBy',
    'sortOrder': 'SortOrder',
    'searchTerm': 'SearchTerm',
    'genres': 'Genres',
    'ids': 'Ids',
}


def extract_library_list(payload: Any) -> List[Dict[str, Any]]:
    """
    Decode the virtual folder listing.

    Jellyfin versions disagree on the shape: a bare array, an object with an
    ``Items`` or ``Libraries`` array, or some other object holding the array.
    Known shapes are tried in order, then the first array-valued field wins.
    """
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    for known_key in ('Items', 'Libraries'):
        if isinstance(payload.get(known_key), list):
            return payload[known_key]
    for value in payload.values():
        if isinstance(value, list):
            return value
    return []


def _is_truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes')


def _targets_short_lived_types(filters: Dict[str, Any]) -> bool:
    item_types = filters.get('includeItemTypes') or ''
    if isinstance(item_types, (list, tuple)):
        requested = set(item_types)
    else:
        requested = {t.strip() for t in str(item_types).split(',') if t.strip()}
    return bool(requested & SHORT_LIVED_ITEM_TYPES)


def _check_item_id(item_id):
    # ids are interpolated into upstream paths
    if not is_safe_id(item_id):
        raise NotFoundError(f"Item {item_id} not found", error='Invalid item id')


def _query_value(value):
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (list, tuple)):
        return ','.join(str(v) for v in value)
    return value


class JellyfinClient:
    """A client bound to one Jellyfin server. Only exists once credentials are known."""

    def __init__(self, server_url: str, api_key: str, cache: ResponseCache,
                 short_ttl: int = 10, validate_list_items: bool = False,
                 session: Optional[requests.Session] = None):
        self.url = server_url.rstrip('/')
        self.api_key = api_key
        self.cache = cache
        self.short_ttl = short_ttl
        self.validate_list_items = validate_list_items
        self.session = session or requests.Session()
        self.session.headers.update({
            'X-Emby-Token': self.api_key,
            'Accept': 'application/json'
        })

    def log_info(self, message: str):
        if has_app_context():
            current_app.logger.info(f"[JELLYFIN] {message}")

    def log_warning(self, message: str):
        if has_app_context():
            current_app.logger.warning(f"[JELLYFIN] {message}")

    def log_error(self, message: str, exc_info=False):
        if has_app_context():
            current_app.logger.error(f"[JELLYFIN] {message}", exc_info=exc_info)

    def request(self, method: str, path: str, token: Optional[str] = None, timeout=None, **kwargs) -> requests.Response:
        """Raw request against the server. ``token`` overrides the API key header for this call."""
        headers = dict(kwargs.pop('headers', None) or {})
        if token:
            headers['X-Emby-Token'] = token
        return self.session.request(
            method,
            f"{self.url}{path}",
            headers=headers,
            timeout=timeout or get_api_timeout_with_fallback(10),
            **kwargs
        )

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None, token: Optional[str] = None, timeout=None) -> Any:
        try:
            response = self.request('GET', path, token=token, timeout=timeout, params=params)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else 502
            raise UpstreamError(f"Jellyfin returned {status} for {path}", error=str(e), status_code=status)
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Could not reach Jellyfin for {path}", error=str(e))
        except ValueError as e:
            raise UpstreamError(f"Jellyfin returned invalid JSON for {path}", error=str(e))

    def test_connection(self) -> Dict[str, Any]:
        """Fetch /System/Info. Raises UpstreamError when the server is unreachable or rejects the key."""
        info = self.get_json('/System/Info')
        self.log_info(f"Connected to '{info.get('ServerName', 'Unknown')}' (v{info.get('Version', 'Unknown')})")
        return info

    def get_libraries(self) -> List[Dict[str, Any]]:
        cache_key = 'libraries'
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        libraries = extract_library_list(self.get_json('/Library/VirtualFolders'))
        self.log_info(f"Retrieved {len(libraries)} libraries from Jellyfin")
        self.cache.set(cache_key, libraries)
        return libraries

    def get_items(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Query /Items recursively. Series and Movie queries are cached briefly."""
        filters = dict(filters or {})
        bypass_cache = _is_truthy(filters.get('bypassCache', False))
        cache_key = derive_items_cache_key(filters)

        if not bypass_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        params = {'Recursive': 'true', 'Fields': ITEM_FIELDS}
        for key, value in filters.items():
            if key in CACHE_BUSTING_PARAMS or value is None or value == '':
                continue
            params[FILTER_PARAM_NAMES.get(key, key)] = _query_value(value)

        payload = self.get_json('/Items', params=params)
        items = payload.get('Items') if isinstance(payload, dict) else payload
        items = items if isinstance(items, list) else []
        total = payload.get('TotalRecordCount', len(items)) if isinstance(payload, dict) else len(items)

        if self.validate_list_items and items:
            before = len(items)
            items = [item for item in items if self.item_exists(item.get('Id'))]
            if len(items) != before:
                self.log_info(f"Dropped {before - len(items)} items that no longer exist upstream")
                total = max(0, total - (before - len(items)))

        result = {'Items': items, 'TotalRecordCount': total}
        ttl = self.short_ttl if _targets_short_lived_types(filters) else self.cache.default_ttl
        self.cache.set(cache_key, result, ttl)
        return result

    def item_exists(self, item_id: Optional[str]) -> bool:
        """Cheap existence check. Anything but a 404 counts as existing."""
        if not is_safe_id(item_id):
            return False
        try:
            response = self.request('GET', f'/Items/{item_id}', timeout=get_validation_timeout())
            return response.status_code != 404
        except requests.exceptions.RequestException as e:
            self.log_warning(f"Existence check for {item_id} failed, keeping item: {e}")
            return True

    def get_user_id(self, token: Optional[str] = None) -> Optional[str]:
        """Id of the first Jellyfin user, used for user-scoped item paths."""
        try:
            users = self.get_json('/Users', token=token)
        except UpstreamError as e:
            self.log_warning(f"Could not list users: {e.message}")
            return None
        if isinstance(users, dict):
            users = users.get('Items') or []
        if isinstance(users, list) and users:
            return users[0].get('Id')
        return None

    def get_item_details(self, item_id: str, bypass_cache: bool = False) -> Dict[str, Any]:
        """Full item metadata. A 404 is definitive: the cached copy is dropped and NotFoundError raised."""
        _check_item_id(item_id)
        cache_key = f'item_{item_id}'
        if not bypass_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        item = None
        user_id = self.get_user_id()
        if user_id:
            try:
                item = self.get_json(f'/Users/{user_id}/Items/{item_id}')
            except UpstreamError as e:
                if e.status_code == 404:
                    self.cache.delete(cache_key)
                    self.log_info(f"Item {item_id} no longer exists upstream")
                    raise NotFoundError(f"Item {item_id} not found", error=e.message)
                self.log_warning(f"User-scoped lookup for {item_id} failed, trying /Items: {e.message}")

        if item is None:
            try:
                item = self.get_json(f'/Items/{item_id}')
            except UpstreamError as e:
                if e.status_code == 404:
                    self.cache.delete(cache_key)
                    raise NotFoundError(f"Item {item_id} not found", error=e.message)
                raise

        if not isinstance(item, dict) or not item.get('Id'):
            self.cache.delete(cache_key)
            raise NotFoundError(f"Item {item_id} not found", error='Invalid item payload')

        self.cache.set(cache_key, item, self.short_ttl)
        return item

    def get_seasons(self, series_id: str) -> List[Dict[str, Any]]:
        _check_item_id(series_id)
        payload = self.get_json(f'/Shows/{series_id}/Seasons')
        return payload.get('Items', []) if isinstance(payload, dict) else []

    def get_episodes(self, series_id: str, season_id: Optional[str] = None) -> List[Dict[str, Any]]:
        _check_item_id(series_id)
        params = {'Fields': 'Overview'}
        if season_id:
            params['SeasonId'] = season_id
        payload = self.get_json(f'/Shows/{series_id}/Episodes', params=params)
        return payload.get('Items', []) if isinstance(payload, dict) else []

    def search(self, term: str, limit: int = 50) -> List[Dict[str, Any]]:
        result = self.get_items({
            'searchTerm': term,
            'includeItemTypes': 'Movie,Series',
            'limit': limit,
        })
        return result.get('Items', [])

    def get_media_sources(self, item_id: str, token: Optional[str] = None) -> List[Dict[str, Any]]:
        """MediaSources of an item, user-scoped when a user can be resolved."""
        _check_item_id(item_id)
        user_id = self.get_user_id(token=token)
        item = None
        if user_id:
            try:
                item = self.get_json(f'/Users/{user_id}/Items/{item_id}', token=token)
            except UpstreamError as e:
                self.log_warning(f"User endpoint failed for {item_id}, trying /Items: {e.message}")
        if item is None:
            item = self.get_json(f'/Items/{item_id}', token=token)
        sources = item.get('MediaSources') if isinstance(item, dict) else None
        return sources if isinstance(sources, list) else []

    def get_image_url(self, item_id: str, image_type: str = 'Primary') -> str:
        return f"{self.url}/Items/{item_id}/Images/{image_type}?api_key={quote(self.api_key)}"

    def get_stream_url(self, item_id: str) -> str:
        return f"{self.url}/Videos/{item_id}/stream?static=true&api_key={quote(self.api_key)}"

    def get_hls_url(self, item_id: str) -> str:
        return f"{self.url}/Videos/{item_id}/master.m3u8?api_key={quote(self.api_key)}"


class JellyfinService:
    """
    Application-wide holder for the upstream client, the response cache and
    the stream token store. Created unconfigured; ``initialize`` connects it.
    """

    def __init__(self, cache: Optional[ResponseCache] = None):
        self.cache = cache or ResponseCache()
        self.tokens = TokenStore()
        self.short_ttl = 10
        self.validate_list_items = False
        self._client: Optional[JellyfinClient] = None

    def init_app(self, app):
        self.cache = ResponseCache(
            default_ttl=app.config.get('CACHE_DEFAULT_TTL', 300),
            maxsize=app.config.get('CACHE_MAX_ENTRIES', 10000),
        )
        self.tokens.configure(ttl=app.config.get('STREAM_TOKEN_TTL', 3600))
        self.short_ttl = app.config.get('CACHE_SHORT_TTL', 10)
        self.validate_list_items = app.config.get('JELLYFIN_VALIDATE_LIST_ITEMS', False)
        self._client = None
        app.extensions['jellyfin_service'] = self

    def initialize(self, server_url: str, api_key: str, session: Optional[requests.Session] = None) -> JellyfinClient:
        """Connect to a (possibly different) server. Cached data and tokens from the previous one are dropped."""
        self.cache.flush_all()
        self.tokens.reset()
        self._client = JellyfinClient(
            server_url,
            api_key,
            self.cache,
            short_ttl=self.short_ttl,
            validate_list_items=self.validate_list_items,
            session=session,
        )
        if has_app_context():
            current_app.logger.info(f"[JELLYFIN] Client initialized for {self._client.url}")
        return self._client

    def reset(self):
        self.cache.flush_all()
        self.tokens.reset()
        self._client = None

    def is_initialized(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> JellyfinClient:
        if self._client is None:
            raise NotInitializedError()
        return self._client


jellyfin_service = JellyfinService()
