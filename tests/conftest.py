import json

import pytest

from erp_portal import create_app
from erp_portal.utils.api_client import ApiClient
from erp_portal.utils.page_session import BRANCH_ID_KEY, ROLE_KEY, SESSION_ID_KEY, STUDENT_ID_KEY, TOKEN_KEY

API_BASE = "http://erp.test"


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        if text is None:
            text = json.dumps(body) if body is not None else ""
        self.text = text
        self.content = text.encode("utf-8")
        self.closed = False
        self.body_read = False

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        self.body_read = True
        if self._body is None:
            raise ValueError("No JSON object could be decoded")
        return self._body

    def close(self):
        self.closed = True


class FakeHttp:
    """Stands in for requests.Session: maps (METHOD, path) to canned responses and records calls."""

    def __init__(self, base=API_BASE):
        self.base = base
        self.routes = {}
        self.calls = []
        self.responses = []

    def add(self, method, path, body=None, status=200, text=None):
        self.routes[(method, path)] = lambda: FakeResponse(status, body, text)
        return self

    def fail(self, method, path, exc):
        def _raise():
            raise exc
        self.routes[(method, path)] = _raise
        return self

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        path = url[len(self.base):] if url.startswith(self.base) else url
        self.calls.append({"method": method, "path": path, "json": json, "params": params, "headers": headers})
        handler = self.routes.get((method, path))
        if handler is None:
            response = FakeResponse(404, {"message": f"No route for {method} {path}"})
        else:
            response = handler()
        self.responses.append(response)
        return response

    def called(self, method, path):
        return [c for c in self.calls if c["method"] == method and c["path"] == path]


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def api(http):
    return ApiClient(API_BASE, token="tok-123", session=http)


@pytest.fixture
def app(http):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "ERP_API_BASE": API_BASE,
        "ENRICHMENT_WORKERS": 2,
        "MAIL_DEFAULT_SENDER": "office@school.test",
    })
    app.extensions["erp_http"] = http
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def login_as(client, role="Admin", **extra):
    with client.session_transaction() as sess:
        sess[TOKEN_KEY] = "tok-123"
        sess[ROLE_KEY] = role
        sess[SESSION_ID_KEY] = "sess-1"
        sess[BRANCH_ID_KEY] = "branch-1"
        sess["username"] = "office"
        for key, value in extra.items():
            sess[key] = value
    return client


@pytest.fixture
def admin_client(client):
    return login_as(client)


@pytest.fixture
def student_client(client):
    return login_as(client, role="Student", **{STUDENT_ID_KEY: "42"})
