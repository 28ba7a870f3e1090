# File: app/routes/media.py
import math
from typing import Any, Dict, List, Optional

import requests
from flask import Blueprint, Response, current_app, jsonify, request, url_for

from app.errors import MediaGatewayError, NotFoundError, UpstreamError, ValidationMismatchError
from app.services.jellyfin_config_service import JellyfinConfigService
from app.services.jellyfin_service import jellyfin_service
from app.services.library_sync import LibrarySyncService
from app.services import stream_proxy
from app.utils.helpers import jellyfin_required, parse_positive_int, is_truthy
from app.utils.timeout_helper import get_api_timeout
from app.utils.upstream_paths import is_safe_id

bp = Blueprint('media', __name__)

TICKS_PER_SECOND = 10_000_000
NON_MOVIE_TYPES = ('Series', 'Episode', 'Season')
MAX_PAGE_SIZE = 100
LIBRARY_FETCH_LIMIT = 10000
IMAGE_PASSTHROUGH_PARAMS = ('maxWidth', 'maxHeight', 'fillWidth', 'fillHeight', 'quality', 'tag')


def _image_url(item_id: str, image_type: str = 'Primary') -> str:
    return url_for('media.proxy_image', item_id=item_id, image_type=image_type)


def _duration_minutes(item: Dict[str, Any]) -> int:
    ticks = item.get('RunTimeTicks') or 0
    return int(ticks // TICKS_PER_SECOND // 60)


def serialize_item(item: Dict[str, Any], item_type: Optional[str] = None) -> Dict[str, Any]:
    """List/detail shape shared by movies, series and search results."""
    if item_type is None:
        item_type = 'movie' if item.get('Type') == 'Movie' else 'series'
    backdrop_type = 'Backdrop' if item.get('BackdropImageTags') else 'Primary'
    return {
        'id': item.get('Id'),
        'title': item.get('Name'),
        'type': item_type,
        'overview': item.get('Overview') or '',
        'posterUrl': _image_url(item.get('Id'), 'Primary'),
        'backdropUrl': _image_url(item.get('Id'), backdrop_type),
        'year': item.get('ProductionYear') or 0,
        'rating': item.get('CommunityRating') or 0,
        'duration': _duration_minutes(item),
        'genres': item.get('Genres') or [],
    }


def serialize_episode(episode: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': episode.get('Id'),
        'name': episode.get('Name'),
        'overview': episode.get('Overview') or '',
        'episodeNumber': episode.get('IndexNumber') or 0,
        'seasonNumber': episode.get('ParentIndexNumber') or 0,
        'duration': _duration_minutes(episode),
        'thumbnailUrl': _image_url(episode.get('Id'), 'Primary'),
        'posterUrl': _image_url(episode.get('Id'), 'Primary'),
    }


def _empty_page(page: int) -> Dict[str, Any]:
    return {'items': [], 'total': 0, 'page': page, 'pages': 0}


def _list_visible_items(item_type: str, collection_types: tuple, response_type: str) -> Dict[str, Any]:
    """
    One page of items of ``item_type`` restricted to visible libraries.

    A single visible library is paged upstream. Several libraries are
    fetched one by one, merged, sorted by title and paged here.
    """
    page = parse_positive_int(request.args.get('page'), 1)
    limit = parse_positive_int(request.args.get('limit'), current_app.config.get('DEFAULT_ITEMS_PER_PAGE', 20), MAX_PAGE_SIZE)
    start_index = (page - 1) * limit
    bypass_cache = is_truthy(request.args.get('bypassCache'))
    if bypass_cache:
        jellyfin_service.cache.flush_all()

    client = jellyfin_service.client
    config = JellyfinConfigService.load_active_config()
    base_filters = {'includeItemTypes': item_type, 'sortBy': 'SortName', 'sortOrder': 'Ascending'}

    if config is None:
        result = client.get_items(dict(base_filters, startIndex=start_index, limit=limit))
        total = result.get('TotalRecordCount', 0)
        items = result.get('Items', [])
    else:
        visible = [
            lib for lib in LibrarySyncService.get_visible_libraries(config.id)
            if lib.collection_type in collection_types
        ]
        if not visible:
            current_app.logger.info(f"No visible {'/'.join(collection_types)} libraries, returning empty {response_type} list")
            return _empty_page(page)

        if len(visible) == 1:
            result = client.get_items(dict(base_filters, parentId=visible[0].library_id, startIndex=start_index, limit=limit))
            total = result.get('TotalRecordCount', 0)
            items = result.get('Items', [])
        else:
            merged = _merge_library_items(client, item_type, visible, base_filters, limit)
            total = len(merged)
            items = merged[start_index:start_index + limit]

    items = [item for item in items if item.get('Id') and item.get('Name')]
    return {
        'items': [serialize_item(item, response_type) for item in items],
        'total': total,
        'page': page,
        'pages': math.ceil(total / limit) if total else 0,
    }


def _merge_library_items(client, item_type: str, libraries, base_filters: Dict[str, Any], limit: int) -> List[Dict[str, Any]]:
    library_ids = [lib.library_id for lib in libraries]
    unique: Dict[str, Dict[str, Any]] = {}

    for library in libraries:
        try:
            result = client.get_items(dict(base_filters, parentId=library.library_id, limit=LIBRARY_FETCH_LIMIT))
        except UpstreamError as e:
            current_app.logger.warning(f"Could not fetch {item_type} items from library '{library.library_name}': {e.message}")
            continue
        for item in result.get('Items', []):
            if item.get('Id'):
                unique.setdefault(item['Id'], item)

    if not unique:
        # parentId may not match a folder on some servers; fall back to the CollectionFolders hint
        result = client.get_items(dict(base_filters, limit=limit * 10))
        for item in result.get('Items', []):
            folders = item.get('CollectionFolders')
            if item.get('Id') and isinstance(folders, list) and any(folder in library_ids for folder in folders):
                unique.setdefault(item['Id'], item)

    return sorted(unique.values(), key=lambda item: (item.get('Name') or '').lower())


def _stream_payload(item_id: str) -> Dict[str, Any]:
    audio_tracks = []
    default_media_source_id = None
    try:
        sources = jellyfin_service.client.get_media_sources(item_id)
        for source in sources:
            if default_media_source_id is None:
                default_media_source_id = source.get('Id')
            for stream in source.get('MediaStreams') or []:
                if stream.get('Type') != 'Audio':
                    continue
                language = stream.get('Language') or stream.get('LanguageTag') or 'Unknown'
                codec = stream.get('Codec') or 'Unknown'
                if any(t['language'] == language and t['codec'] == codec for t in audio_tracks):
                    continue
                audio_tracks.append({
                    'index': stream.get('Index', len(audio_tracks)),
                    'language': language,
                    'name': stream.get('DisplayTitle') or stream.get('Title') or f"{language} ({codec})",
                    'codec': codec,
                    'mediaSourceId': source.get('Id'),
                })
    except MediaGatewayError as e:
        current_app.logger.warning(f"Could not read audio tracks for {item_id}: {e.message}")
        audio_tracks = []

    return {
        'streamUrl': url_for('media.proxy_stream', item_id=item_id, file_path=stream_proxy.MASTER_MANIFEST),
        'type': 'hls',
        'audioTracks': audio_tracks,
        'defaultMediaSourceId': default_media_source_id,
    }


@bp.route('/movies')
@jellyfin_required
def get_movies():
    return jsonify(_list_visible_items('Movie', ('movies', 'mixed'), 'movie'))


@bp.route('/movies/<item_id>')
@jellyfin_required
def get_movie_details(item_id):
    item = jellyfin_service.client.get_item_details(item_id)
    if item.get('Type') in NON_MOVIE_TYPES:
        current_app.logger.info(f"Item {item_id} is a {item.get('Type')}, not a movie")
        raise NotFoundError('Movie not found')
    return jsonify(serialize_item(item, 'movie'))


@bp.route('/movies/<item_id>/related')
@jellyfin_required
def get_related_movies(item_id):
    limit = parse_positive_int(request.args.get('limit'), 12, MAX_PAGE_SIZE)
    client = jellyfin_service.client
    try:
        genres = client.get_item_details(item_id).get('Genres') or []
    except NotFoundError:
        genres = []

    random_filters = {'includeItemTypes': 'Movie', 'startIndex': 0, 'sortBy': 'Random'}
    candidates = client.get_items(dict(random_filters, limit=limit * 5 if genres else limit)).get('Items', [])
    candidates = [item for item in candidates if item.get('Id') and item.get('Id') != item_id]

    related = [item for item in candidates if set(item.get('Genres') or []) & set(genres)][:limit]
    chosen = {item['Id'] for item in related}
    for item in candidates:
        if len(related) >= limit:
            break
        if item['Id'] not in chosen:
            related.append(item)
            chosen.add(item['Id'])

    if len(related) < limit:
        extra = client.get_items(dict(random_filters, limit=limit - len(related), bypassCache=True)).get('Items', [])
        for item in extra:
            if len(related) >= limit:
                break
            if item.get('Id') and item['Id'] != item_id and item['Id'] not in chosen:
                related.append(item)
                chosen.add(item['Id'])

    return jsonify({'items': [serialize_item(item, 'movie') for item in related]})


@bp.route('/movies/<item_id>/stream')
@jellyfin_required
def get_stream_url(item_id):
    return jsonify(_stream_payload(item_id))


@bp.route('/stream/<item_id>', methods=['GET'], defaults={'file_path': None}, provide_automatic_options=False)
@bp.route('/stream/<item_id>/<path:file_path>', methods=['GET'], provide_automatic_options=False)
@jellyfin_required
def proxy_stream(item_id, file_path):
    return stream_proxy.proxy_stream(jellyfin_service, item_id, file_path, request.args)


@bp.route('/stream/<item_id>', methods=['OPTIONS'], defaults={'file_path': None})
@bp.route('/stream/<item_id>/<path:file_path>', methods=['OPTIONS'])
def proxy_stream_options(item_id, file_path):
    return stream_proxy.options_response()


@bp.route('/series')
@jellyfin_required
def get_series():
    return jsonify(_list_visible_items('Series', ('tvshows', 'mixed'), 'series'))


@bp.route('/series/<series_id>')
@jellyfin_required
def get_series_details(series_id):
    client = jellyfin_service.client
    item = client.get_item_details(series_id)
    seasons = client.get_seasons(series_id)
    data = serialize_item(item, 'series')
    data.pop('duration', None)
    data['seasons'] = [
        {'id': season.get('Id'), 'name': season.get('Name'), 'seasonNumber': season.get('IndexNumber') or 0}
        for season in seasons
    ]
    return jsonify(data)


@bp.route('/series/<series_id>/episodes')
@jellyfin_required
def get_episodes(series_id):
    season_id = request.args.get('seasonId')
    episodes = jellyfin_service.client.get_episodes(series_id, season_id)
    current_app.logger.debug(f"Found {len(episodes)} episodes for series {series_id} (season {season_id})")
    return jsonify({'episodes': [serialize_episode(episode) for episode in episodes]})


@bp.route('/series/<series_id>/episodes/<episode_id>/stream')
@jellyfin_required
def get_episode_stream_url(series_id, episode_id):
    episode = jellyfin_service.client.get_item_details(episode_id)
    if episode.get('Type') != 'Episode' or episode.get('SeriesId') != series_id:
        current_app.logger.warning(
            f"Stream request for {episode_id} under series {series_id} does not match (type={episode.get('Type')}, series={episode.get('SeriesId')})"
        )
        raise ValidationMismatchError(
            'Episode does not belong to this series',
            error=f"expected series {series_id}, got {episode.get('SeriesId')}"
        )
    return jsonify(_stream_payload(episode_id))


@bp.route('/search')
@jellyfin_required
def search_media():
    term = (request.args.get('q') or '').strip()
    if not term:
        return jsonify({'message': 'Search query is required'}), 400
    results = jellyfin_service.client.search(term)
    return jsonify({'items': [serialize_item(item) for item in results if item.get('Id')]})


@bp.route('/images/<item_id>/<image_type>')
@jellyfin_required
def proxy_image(item_id, image_type):
    """Proxy Jellyfin images so the API key never reaches the browser"""
    if not is_safe_id(item_id) or not is_safe_id(image_type):
        raise NotFoundError('Image not found', error=f"Invalid image path {item_id}/{image_type}")
    client = jellyfin_service.client
    params = {name: request.args[name] for name in IMAGE_PASSTHROUGH_PARAMS if name in request.args}
    try:
        img_response = client.request(
            'GET', f'/Items/{item_id}/Images/{image_type}', params=params, stream=True, timeout=get_api_timeout()
        )
        img_response.raise_for_status()
    except requests.exceptions.HTTPError as e_http:
        status = e_http.response.status_code
        current_app.logger.warning(f"Image proxy: HTTPError ({status}) for item {item_id} ({image_type})")
        raise UpstreamError('Failed to proxy image', error=str(e_http), status_code=status)
    except requests.exceptions.RequestException as e_req:
        current_app.logger.error(f"Image proxy: RequestException for item {item_id}: {e_req}")
        raise UpstreamError('Failed to proxy image', error=str(e_req))

    def generate():
        try:
            for chunk in img_response.iter_content(chunk_size=stream_proxy.STREAM_CHUNK_SIZE):
                if chunk:
                    yield chunk
        finally:
            img_response.close()

    return Response(
        generate(),
        content_type=img_response.headers.get('Content-Type', 'image/jpeg'),
        headers={
            'Cache-Control': 'public, max-age=86400',
            'Access-Control-Allow-Origin': '*',
        },
        direct_passthrough=True,
    )
