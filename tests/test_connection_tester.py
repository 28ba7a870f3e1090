import requests

from app.utils import connection_tester
from app.utils.connection_tester import check_jellyfin, handle_connection_error

from conftest import API_KEY, SERVER_URL, FakeResponse


def test_check_jellyfin_reads_system_info(app, monkeypatch):
    seen = {}

    def fake_get(url, headers=None, timeout=None):
        seen.update(url=url, headers=headers, timeout=timeout)
        return FakeResponse(200, {'ServerName': 'Home', 'Version': '10.9.0'})

    monkeypatch.setattr(connection_tester.requests, 'get', fake_get)

    success, message, info = check_jellyfin(SERVER_URL + '/', API_KEY)

    assert success is True
    assert message == "Successfully connected to Jellyfin server 'Home' (v10.9.0)"
    assert info['Version'] == '10.9.0'
    assert seen['url'] == f'{SERVER_URL}/System/Info'
    assert seen['headers'] == {'X-Emby-Token': API_KEY}
    assert seen['timeout'] == 10


def test_check_jellyfin_rejected_key(app, monkeypatch):
    monkeypatch.setattr(connection_tester.requests, 'get', lambda *a, **kw: FakeResponse(401, {}))

    success, message, info = check_jellyfin(SERVER_URL, 'wrong')

    assert success is False
    assert message == 'Invalid API key. Please check your Jellyfin API key.'
    assert info == {}


def test_connection_error_messages():
    assert handle_connection_error(requests.exceptions.ConnectTimeout()) == 'Connection timeout. Please check the server URL.'
    assert handle_connection_error(requests.exceptions.ConnectionError()) == 'Cannot reach Jellyfin server. Please check the server URL.'
    assert handle_connection_error(requests.exceptions.ReadTimeout()).startswith('Request to Jellyfin timed out')
    assert handle_connection_error(RuntimeError('boom')) == 'Failed to connect to Jellyfin server: boom'
