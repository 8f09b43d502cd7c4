"""
HTTP boundary tests for the /api/links endpoints.
"""
from urllib.parse import quote

from fastapi.testclient import TestClient

from tubelinks.main import create_app

from .conftest import VIDEO_A, VIDEO_B, VIDEO_C


def test_get_empty(client):
    response = client.get("/api/links")

    assert response.status_code == 200
    assert response.json() == {"success": True, "links": [], "totalCount": 0}
    assert response.headers["access-control-allow-origin"] == "*"


def test_post_then_get(client, sample_links):
    response = client.post("/api/links", json={"links": sample_links})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["addedCount"] == 3
    assert data["totalCount"] == 3

    links = client.get("/api/links").json()["links"]
    assert [l["url"] for l in links] == [VIDEO_A, VIDEO_B, VIDEO_C]


def test_post_merges_and_dedupes(client):
    client.post("/api/links", json={"links": [{"url": "A"}]})
    data = client.post("/api/links", json={"links": [{"url": "A"}, {"url": "B"}]}).json()

    assert data["addedCount"] == 1
    assert data["totalCount"] == 2


def test_post_without_links_key_adds_nothing(client):
    data = client.post("/api/links", json={}).json()
    assert data["addedCount"] == 0


def test_malformed_json_is_400_and_server_keeps_serving(client):
    response = client.post(
        "/api/links",
        content="{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Invalid JSON format in request body"

    assert client.get("/api/links").status_code == 200


def test_links_must_be_array(client):
    response = client.post("/api/links", json={"links": "A"})

    assert response.status_code == 400
    assert response.json()["error"] == "Bad Request"


def test_delete_one_url_encoded(client, sample_links):
    client.post("/api/links", json={"links": sample_links})

    response = client.delete(f"/api/links/{quote(VIDEO_B, safe='')}")

    assert response.status_code == 200
    assert response.json()["deleted"] is True
    assert response.json()["totalCount"] == 2
    remaining = [l["url"] for l in client.get("/api/links").json()["links"]]
    assert remaining == [VIDEO_A, VIDEO_C]


def test_delete_missing_is_404_with_body(client):
    response = client.delete("/api/links/nothing-here")

    assert response.status_code == 404
    assert response.json()["deleted"] is False


def test_clear_all_twice(client, sample_links):
    client.post("/api/links", json={"links": sample_links})

    assert client.delete("/api/links").status_code == 200
    assert client.delete("/api/links").json()["success"] is True
    assert client.get("/api/links").json()["links"] == []


def test_options_preflight(client):
    response = client.options("/api/links")
    assert response.status_code == 204
    assert response.content == b""
    assert "DELETE" in response.headers["access-control-allow-methods"]

    cors = client.options(
        "/api/links/abc",
        headers={"Origin": "https://example.com", "Access-Control-Request-Method": "DELETE"},
    )
    assert cors.status_code == 204
    assert cors.content == b""
    assert cors.headers["access-control-allow-origin"] == "*"
    assert cors.headers["access-control-allow-headers"] == "Content-Type, X-Requested-With"


def test_preflight_skips_the_store(settings):
    class Exploding:
        def __getattr__(self, name):
            raise AssertionError(f"store touched: {name}")

    client = TestClient(create_app(settings, Exploding()))
    response = client.options(
        "/api/links",
        headers={"Origin": "https://example.com", "Access-Control-Request-Method": "POST"},
    )
    assert response.status_code == 204
    assert response.content == b""


def test_method_not_allowed(client):
    response = client.put("/api/links", json={"links": []})

    assert response.status_code == 405
    assert response.json()["error"] == "Method Not Allowed"
    assert response.headers["allow"] == "GET, POST, DELETE, OPTIONS"

    item = client.patch("/api/links/abc")
    assert item.status_code == 405
    assert item.headers["allow"] == "DELETE, OPTIONS"


def test_unconfigured_store_returns_503(settings, unconfigured_service):
    client = TestClient(create_app(settings, unconfigured_service))

    assert client.get("/api/links").json()["links"] == []
    response = client.post("/api/links", json={"links": [{"url": "A"}]})
    assert response.status_code == 503
    assert response.json()["success"] is False


def test_always_ok_policy(lenient_client):
    response = lenient_client.post("/api/links", json={"links": [{"url": "A"}]})
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["warning"]

    assert lenient_client.delete("/api/links/A").status_code == 200
    assert lenient_client.delete("/api/links").status_code == 200


def test_unexpected_errors_are_wrapped(settings, service):
    async def explode():
        raise RuntimeError("boom")

    service.get_all = explode
    client = TestClient(create_app(settings, service))

    response = client.get("/api/links")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Internal Server Error"
    assert "boom" not in body["message"]
    assert response.headers["x-error-reference"] == body["referenceId"]
    assert response.headers["access-control-allow-origin"] == "*"


def test_health(client):
    data = client.get("/api/health").json()
    assert data == {"success": True, "configured": True, "backend": "memory", "storageKey": "youtube_links"}
