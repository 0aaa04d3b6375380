from fastapi.testclient import TestClient

from conftest import mock_client
from gemini_proxy.app import create_app
from gemini_proxy.static import content_type, resolve, serve_static


def _unused_upstream(request):
    raise AssertionError(f"unexpected upstream call: {request.url}")


def _client(test_config):
    return TestClient(create_app(config=test_config, http_client=mock_client(_unused_upstream)))


def test_serves_file_with_content_type_and_exact_bytes(test_config):
    with _client(test_config) as client:
        response = client.get("/app.js")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/javascript;charset=UTF-8"
    assert response.content == b"console.log('hi');\n"


def test_root_and_index_map_to_index_document(test_config):
    with _client(test_config) as client:
        root = client.get("/")
        index = client.get("/index.html")
    assert root.status_code == index.status_code == 200
    assert root.content == index.content == b"<html><body>console</body></html>"
    assert root.headers["content-type"] == "text/html;charset=UTF-8"


def test_missing_file_is_404_not_found(test_config):
    with _client(test_config) as client:
        response = client.get("/missing.xyz")
    assert response.status_code == 404
    assert response.text == "Not Found"
    assert response.headers["content-type"] == "text/plain;charset=UTF-8"


def test_parent_segments_are_rejected(static_root):
    assert resolve(static_root, "/../secret.txt") is None
    assert resolve(static_root, "/sub/../../secret.txt") is None
    response = serve_static(static_root, "/../secret.txt")
    assert response.status_code == 404
    assert response.body == b"Not Found"


def test_directory_is_not_found(static_root):
    (static_root / "assets").mkdir()
    assert serve_static(static_root, "/assets").status_code == 404


def test_content_type_lookup():
    assert content_type("/a/b/logo.PNG") == "image/png"
    assert content_type("photo.jpeg") == "image/jpeg"
    assert content_type("styles.css") == "text/css"
    assert content_type("data.json") == "application/json"
    assert content_type("README") == "text/plain"
    assert content_type("archive.tar.xyz") == "text/plain"
