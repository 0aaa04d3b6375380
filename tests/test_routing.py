import pytest

from starlette.requests import HTTPConnection

from gemini_proxy.routing import Route, classify, route_for


@pytest.mark.parametrize(
    "headers,path,expected",
    [
        ({"Upgrade": "websocket"}, "/ws/live", Route.RELAY),
        ({"upgrade": "WebSocket"}, "/v1beta/models", Route.RELAY),
        ({}, "/v1beta/models/gemini-pro:generateContent", Route.DIRECT),
        ({}, "/v1/models", Route.DIRECT),
        ({}, "/v1/chat/completions", Route.DIRECT),
        ({}, "/chat/completions", Route.COMPAT),
        ({}, "/openai/embeddings", Route.COMPAT),
        ({}, "/models", Route.COMPAT),
        ({}, "/", Route.STATIC),
        ({}, "/app.js", Route.STATIC),
        ({"Upgrade": "h2c"}, "/index.html", Route.STATIC),
    ],
)
def test_classify(headers, path, expected):
    assert classify("GET", headers, path) is expected


def test_classify_is_deterministic():
    for path in ("/", "/v1beta/x", "/a/models", "/ws"):
        first = classify("POST", {"Upgrade": "websocket"}, path)
        assert classify("POST", {"Upgrade": "websocket"}, path) is first
        assert classify("POST", {}, path) is classify("POST", {}, path)


def test_upgrade_header_wins_over_path():
    assert classify("GET", {"Upgrade": "websocket"}, "/chat/completions") is Route.RELAY


def _scope(kind, path, headers=(), method="GET"):
    scope = {
        "type": kind,
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers],
    }
    if kind == "http":
        scope["method"] = method
    return HTTPConnection(scope)


def test_websocket_scope_is_relay_without_upgrade_header():
    assert route_for(_scope("websocket", "/chat/completions")) is Route.RELAY


def test_http_scope_goes_through_the_same_rules():
    assert route_for(_scope("http", "/v1beta/models", method="POST")) is Route.DIRECT
    assert route_for(_scope("http", "/openai/embeddings", method="POST")) is Route.COMPAT
    assert route_for(_scope("http", "/ws", headers=[("Upgrade", "websocket")])) is Route.RELAY
    assert route_for(_scope("http", "/style.css")) is Route.STATIC
