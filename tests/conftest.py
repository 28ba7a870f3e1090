import json
from urllib.parse import urlsplit, parse_qsl

import pytest
import requests

from app import create_app
from app.extensions import db
from app.services.jellyfin_service import jellyfin_service

SERVER_URL = 'http://jellyfin.local:8096'
API_KEY = 'static-api-key'


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=None, headers=None, reason=None):
        self.status_code = status_code
        self._json = json_data
        if content is None and json_data is not None:
            content = json.dumps(json_data).encode()
        if isinstance(content, str):
            content = content.encode()
        self.content = content or b''
        self.headers = headers or {}
        self.reason = reason or ('OK' if status_code < 400 else 'Error')
        self.closed = False

    def json(self):
        if self._json is None:
            return json.loads(self.content.decode())
        return self._json

    @property
    def text(self):
        return self.content.decode()

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} {self.reason}", response=self)

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Stands in for requests.Session. Routes are matched on (method, path)."""

    def __init__(self):
        self.headers = {}
        self.routes = {}
        self.calls = []

    def add(self, method, path, response):
        """``response`` is a FakeResponse, a list of them (served in order) or a callable."""
        self.routes[(method.upper(), path)] = response

    def calls_to(self, method, path):
        return [c for c in self.calls if c['method'] == method.upper() and c['path'] == path]

    def request(self, method, url, headers=None, params=None, json=None, timeout=None, stream=False, **kwargs):
        parts = urlsplit(url)
        query = dict(parse_qsl(parts.query))
        query.update({k: str(v) for k, v in (params or {}).items()})
        merged_headers = dict(self.headers)
        merged_headers.update(headers or {})
        call = {
            'method': method.upper(),
            'url': url,
            'path': parts.path,
            'params': query,
            'headers': merged_headers,
            'json': json,
            'timeout': timeout,
            'stream': stream,
        }
        self.calls.append(call)

        handler = self.routes.get((method.upper(), parts.path))
        if handler is None:
            return FakeResponse(404, {'message': f'no route for {parts.path}'})
        if isinstance(handler, list):
            return handler.pop(0) if len(handler) > 1 else handler[0]
        if callable(handler):
            result = handler(call)
            if isinstance(result, Exception):
                raise result
            return result
        return handler

    def get(self, url, **kwargs):
        return self.request('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self.request('POST', url, **kwargs)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    jellyfin_service.reset()
    jellyfin_service.tokens.auth_attempts = 0


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def upstream():
    return FakeSession()


@pytest.fixture
def jf_client(app, upstream):
    """Jellyfin client connected to the fake upstream."""
    return jellyfin_service.initialize(SERVER_URL, API_KEY, session=upstream)


@pytest.fixture
def clock():
    return FakeClock()
