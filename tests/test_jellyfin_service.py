import pytest

from app.errors import NotFoundError, NotInitializedError, UpstreamError
from app.services.jellyfin_service import JellyfinClient, JellyfinService, extract_library_list, jellyfin_service
from app.services.response_cache import ResponseCache

from conftest import API_KEY, SERVER_URL, FakeResponse, FakeSession


@pytest.fixture
def timed_client(app, clock):
    session = FakeSession()
    cache = ResponseCache(default_ttl=300, timer=clock)
    return JellyfinClient(SERVER_URL + '/', API_KEY, cache, short_ttl=10, session=session), session


class TestExtractLibraryList:
    def test_bare_array(self):
        assert extract_library_list([{'Name': 'Movies'}]) == [{'Name': 'Movies'}]

    def test_items_key(self):
        assert extract_library_list({'Items': [{'Name': 'Shows'}], 'TotalRecordCount': 1}) == [{'Name': 'Shows'}]

    def test_libraries_key(self):
        assert extract_library_list({'Libraries': [{'Name': 'Music'}]}) == [{'Name': 'Music'}]

    def test_first_array_valued_field(self):
        payload = {'ServerId': 'abc', 'Folders': [{'Name': 'Kids'}], 'Other': [{'Name': 'Ignored'}]}
        assert extract_library_list(payload) == [{'Name': 'Kids'}]

    def test_unrecognised_shapes(self):
        assert extract_library_list({'Count': 0}) == []
        assert extract_library_list(None) == []
        assert extract_library_list('nope') == []


def test_client_sends_token_header_and_strips_trailing_slash(timed_client):
    client, session = timed_client
    assert client.url == SERVER_URL
    assert session.headers['X-Emby-Token'] == API_KEY


def test_get_libraries_is_cached(timed_client):
    client, session = timed_client
    session.add('GET', '/Library/VirtualFolders', FakeResponse(200, {'Items': [{'Name': 'Movies', 'ItemId': 'lib1'}]}))

    assert client.get_libraries() == [{'Name': 'Movies', 'ItemId': 'lib1'}]
    assert client.get_libraries() == [{'Name': 'Movies', 'ItemId': 'lib1'}]
    assert len(session.calls_to('GET', '/Library/VirtualFolders')) == 1


def test_get_items_forces_recursive_query_with_extended_fields(timed_client):
    client, session = timed_client
    session.add('GET', '/Items', FakeResponse(200, {'Items': [{'Id': 'm1'}], 'TotalRecordCount': 1}))

    result = client.get_items({'includeItemTypes': 'Movie', 'parentId': 'lib1', 'limit': 5, '_t': 99})

    assert result == {'Items': [{'Id': 'm1'}], 'TotalRecordCount': 1}
    params = session.calls_to('GET', '/Items')[0]['params']
    assert params['Recursive'] == 'true'
    assert params['Fields'] == 'Genres,Overview,ProductionYear,CommunityRating,RunTimeTicks,BackdropImageTags'
    assert params['IncludeItemTypes'] == 'Movie'
    assert params['ParentId'] == 'lib1'
    assert params['Limit'] == '5'
    assert '_t' not in params


def test_get_items_cache_ignores_timestamp_param(timed_client):
    client, session = timed_client
    session.add('GET', '/Items', FakeResponse(200, {'Items': [], 'TotalRecordCount': 0}))

    client.get_items({'includeItemTypes': 'BoxSet', '_t': 1})
    client.get_items({'includeItemTypes': 'BoxSet', '_t': 2})

    assert len(session.calls_to('GET', '/Items')) == 1


def test_bypass_cache_refetches_and_refreshes_entry(timed_client):
    client, session = timed_client
    session.add('GET', '/Items', [
        FakeResponse(200, {'Items': [{'Id': 'old'}], 'TotalRecordCount': 1}),
        FakeResponse(200, {'Items': [{'Id': 'new'}], 'TotalRecordCount': 1}),
    ])

    client.get_items({'includeItemTypes': 'BoxSet'})
    refreshed = client.get_items({'includeItemTypes': 'BoxSet', 'bypassCache': 'true'})
    cached = client.get_items({'includeItemTypes': 'BoxSet'})

    assert refreshed['Items'] == [{'Id': 'new'}]
    assert cached['Items'] == [{'Id': 'new'}]
    assert len(session.calls_to('GET', '/Items')) == 2


def test_movie_and_series_queries_use_short_ttl(timed_client, clock):
    client, session = timed_client
    session.add('GET', '/Items', FakeResponse(200, {'Items': [], 'TotalRecordCount': 0}))

    client.get_items({'includeItemTypes': 'Movie'})
    client.get_items({'includeItemTypes': 'Audio'})
    clock.advance(11)
    client.get_items({'includeItemTypes': 'Movie'})
    client.get_items({'includeItemTypes': 'Audio'})

    assert len(session.calls_to('GET', '/Items')) == 3


def test_item_details_resolve_user_scope(timed_client):
    client, session = timed_client
    session.add('GET', '/Users', FakeResponse(200, [{'Id': 'u1'}]))
    session.add('GET', '/Users/u1/Items/m1', FakeResponse(200, {'Id': 'm1', 'Name': 'Heat'}))

    assert client.get_item_details('m1')['Name'] == 'Heat'
    assert client.get_item_details('m1')['Name'] == 'Heat'
    assert len(session.calls_to('GET', '/Users/u1/Items/m1')) == 1


def test_item_details_accepts_wrapped_user_list(timed_client):
    client, session = timed_client
    session.add('GET', '/Users', FakeResponse(200, {'Items': [{'Id': 'u2'}]}))
    session.add('GET', '/Users/u2/Items/m1', FakeResponse(200, {'Id': 'm1'}))

    assert client.get_item_details('m1') == {'Id': 'm1'}


def test_item_details_fall_back_to_unscoped_path_without_user(timed_client):
    client, session = timed_client
    session.add('GET', '/Users', FakeResponse(200, []))
    session.add('GET', '/Items/m1', FakeResponse(200, {'Id': 'm1', 'Name': 'Ronin'}))

    assert client.get_item_details('m1')['Name'] == 'Ronin'


def test_item_details_fall_back_when_user_path_errors(timed_client):
    client, session = timed_client
    session.add('GET', '/Users', FakeResponse(200, [{'Id': 'u1'}]))
    session.add('GET', '/Users/u1/Items/m1', FakeResponse(500, {'message': 'boom'}))
    session.add('GET', '/Items/m1', FakeResponse(200, {'Id': 'm1'}))

    assert client.get_item_details('m1') == {'Id': 'm1'}


def test_item_details_404_clears_cache_and_raises_not_found(timed_client):
    client, session = timed_client
    session.add('GET', '/Users', FakeResponse(200, [{'Id': 'u1'}]))
    session.add('GET', '/Users/u1/Items/gone', [
        FakeResponse(200, {'Id': 'gone', 'Name': 'Deleted Later'}),
        FakeResponse(404, {'message': 'Not Found'}),
    ])

    client.get_item_details('gone')
    assert 'item_gone' in client.cache

    with pytest.raises(NotFoundError):
        client.get_item_details('gone', bypass_cache=True)

    assert 'item_gone' not in client.cache
    assert session.calls_to('GET', '/Items/gone') == []


def test_item_details_without_id_is_not_found(timed_client):
    client, session = timed_client
    session.add('GET', '/Users', FakeResponse(200, [{'Id': 'u1'}]))
    session.add('GET', '/Users/u1/Items/m1', FakeResponse(200, {'Name': 'no id'}))

    with pytest.raises(NotFoundError):
        client.get_item_details('m1')
    assert 'item_m1' not in client.cache


def test_upstream_failures_surface_as_upstream_error(timed_client):
    client, session = timed_client
    session.add('GET', '/Shows/s1/Seasons', FakeResponse(502, {'message': 'bad gateway'}))

    with pytest.raises(UpstreamError) as excinfo:
        client.get_seasons('s1')
    assert excinfo.value.status_code == 502


def test_seasons_episodes_and_search(timed_client):
    client, session = timed_client
    session.add('GET', '/Shows/s1/Seasons', FakeResponse(200, {'Items': [{'Id': 'season1'}]}))
    session.add('GET', '/Shows/s1/Episodes', FakeResponse(200, {'Items': [{'Id': 'e1'}]}))
    session.add('GET', '/Items', FakeResponse(200, {'Items': [{'Id': 'm1', 'Type': 'Movie'}], 'TotalRecordCount': 1}))

    assert client.get_seasons('s1') == [{'Id': 'season1'}]
    assert client.get_episodes('s1', 'season1') == [{'Id': 'e1'}]
    assert session.calls_to('GET', '/Shows/s1/Episodes')[0]['params']['SeasonId'] == 'season1'
    assert client.search('heat') == [{'Id': 'm1', 'Type': 'Movie'}]
    search_params = session.calls_to('GET', '/Items')[0]['params']
    assert search_params['SearchTerm'] == 'heat'
    assert search_params['IncludeItemTypes'] == 'Movie,Series'
    assert search_params['Limit'] == '50'


def test_list_validation_drops_missing_items_when_enabled(app, clock):
    session = FakeSession()
    client = JellyfinClient(SERVER_URL, API_KEY, ResponseCache(timer=clock), validate_list_items=True, session=session)
    session.add('GET', '/Items', FakeResponse(200, {'Items': [{'Id': 'a'}, {'Id': 'b'}], 'TotalRecordCount': 2}))
    session.add('GET', '/Items/a', FakeResponse(200, {'Id': 'a'}))
    session.add('GET', '/Items/b', FakeResponse(404, {}))

    result = client.get_items({'includeItemTypes': 'Movie'})

    assert result == {'Items': [{'Id': 'a'}], 'TotalRecordCount': 1}
    assert session.calls_to('GET', '/Items/a')[0]['timeout'] == 1


def test_url_builders_are_pure(timed_client):
    client, session = timed_client
    assert client.get_image_url('m1') == f'{SERVER_URL}/Items/m1/Images/Primary?api_key={API_KEY}'
    assert client.get_image_url('m1', 'Backdrop') == f'{SERVER_URL}/Items/m1/Images/Backdrop?api_key={API_KEY}'
    assert client.get_stream_url('m1') == f'{SERVER_URL}/Videos/m1/stream?static=true&api_key={API_KEY}'
    assert client.get_hls_url('m1') == f'{SERVER_URL}/Videos/m1/master.m3u8?api_key={API_KEY}'
    assert session.calls == []


def test_service_requires_initialization(app):
    service = JellyfinService()
    assert not service.is_initialized()
    with pytest.raises(NotInitializedError) as excinfo:
        service.client
    assert excinfo.value.status_code == 503


def test_initialize_flushes_cache_and_tokens(app, upstream):
    jellyfin_service.initialize(SERVER_URL, API_KEY, session=upstream)
    jellyfin_service.cache.set('items_{}', {'Items': [{'Id': 'from-old-server'}]})
    with jellyfin_service.tokens._lock:
        jellyfin_service.tokens._tokens[jellyfin_service.tokens.cache_key()] = 'old-token'

    client = jellyfin_service.initialize('http://other-server:8096', 'other-key', session=FakeSession())

    assert jellyfin_service.cache.get('items_{}') is None
    assert jellyfin_service.tokens.get_cached() is None
    assert client.url == 'http://other-server:8096'
