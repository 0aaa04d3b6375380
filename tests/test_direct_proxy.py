import httpx
from fastapi.testclient import TestClient

from conftest import mock_client
from gemini_proxy.app import create_app
from gemini_proxy.proxy.direct import normalize_path, target_url
from gemini_proxy.proxy.headers import bearer_token, upstream_headers


def _app(test_config, handler):
    return create_app(config=test_config, http_client=mock_client(handler))


def test_rewrites_credentials_and_streams_body(test_config):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = request.content
        return httpx.Response(
            200,
            headers=[("content-type", "application/json"), ("x-upstream", "a"), ("x-upstream", "b")],
            content=b'{"candidates": []}',
        )

    with TestClient(_app(test_config, handler)) as client:
        response = client.post(
            "/v1beta/models/gemini-pro:generateContent?alt=json",
            content=b'{"contents": []}',
            headers={
                "Authorization": "Bearer secret-key",
                "Content-Type": "application/json",
                "x-goog-api-client": "python/whatever",
            },
        )

    assert response.status_code == 200
    assert response.content == b'{"candidates": []}'
    assert response.headers.get_list("x-upstream") == ["a", "b"]

    assert seen["url"] == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-pro:generateContent?alt=json"
    )
    headers = seen["headers"]
    assert headers["x-goog-api-key"] == "secret-key"
    assert headers["x-goog-api-client"] == "genai-js/0.21.0"
    assert "authorization" not in headers
    assert headers["host"] != "testserver"
    assert seen["body"] == b'{"contents": []}'


def test_doubled_prefix_is_collapsed(test_config):
    urls = []

    def handler(request):
        urls.append(str(request.url))
        return httpx.Response(200, content=b"ok")

    with TestClient(_app(test_config, handler)) as client:
        response = client.get("/v1/v1beta/models?pageSize=5")

    assert response.status_code == 200
    assert urls == ["https://generativelanguage.googleapis.com/v1beta/models?pageSize=5"]


def test_upstream_status_and_redirects_pass_through(test_config):
    def handler(request):
        if request.url.path.endswith("missing"):
            return httpx.Response(404, json={"error": {"code": 404}})
        return httpx.Response(302, headers={"location": "https://elsewhere.test/"})

    with TestClient(_app(test_config, handler)) as client:
        missing = client.get("/v1beta/models/missing")
        moved = client.get("/v1beta/models/moved", follow_redirects=False)

    assert missing.status_code == 404
    assert missing.json() == {"error": {"code": 404}}
    assert moved.status_code == 302
    assert moved.headers["location"] == "https://elsewhere.test/"


def test_network_failure_is_500_plain_text(test_config):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with TestClient(_app(test_config, handler)) as client:
        response = client.get("/v1beta/models")

    assert response.status_code == 500
    assert response.text == "connection refused"
    assert response.headers["content-type"] == "text/plain;charset=UTF-8"


def test_normalize_path_only_touches_doubled_prefix():
    assert normalize_path("/v1/v1beta/models") == "/v1beta/models"
    assert normalize_path("/v1beta/models") == "/v1beta/models"
    assert normalize_path("/v1/models") == "/v1/models"


def test_target_url_keeps_query():
    assert target_url("https://g.test/", "/v1/models", "a=1") == "https://g.test/v1/models?a=1"
    assert target_url("https://g.test", "/v1/models") == "https://g.test/v1/models"


def test_bearer_token():
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("Bearer") is None
    assert bearer_token(None) is None


def test_inbound_api_key_kept_without_bearer():
    out = dict(upstream_headers([("Host", "proxy"), ("x-goog-api-key", "k1")], "client/1"))
    assert out == {"x-goog-api-key": "k1", "x-goog-api-client": "client/1"}


def test_bearer_replaces_inbound_api_key():
    out = upstream_headers(
        [("x-goog-api-key", "k1"), ("authorization", "Bearer k2"), ("Connection", "keep-alive")],
        "client/1",
    )
    assert out == [("x-goog-api-key", "k2"), ("x-goog-api-client", "client/1")]


def test_non_network_failure_is_plain_text_too(test_config):
    def handler(request):
        raise RuntimeError("upload aborted")

    with TestClient(_app(test_config, handler)) as client:
        response = client.post("/v1beta/files", content=b"partial")

    assert response.status_code == 500
    assert response.text == "upload aborted"
    assert response.headers["content-type"] == "text/plain;charset=UTF-8"
