from fastapi.testclient import TestClient

from api.main import app


client = TestClient(app)


def test_preflight_allows_known_origin() -> None:
    response = client.options(
        "/api/sync/all-contacts",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_csrf_middleware_blocks_unknown_origin_with_cookie() -> None:
    response = client.post(
        "/api/sync/all-contacts",
        headers={"Origin": "https://evil.example", "Cookie": "session=abc"},
    )

    assert response.status_code == 403
    assert response.json() == {"success": False, "error": "CSRF validation failed"}


def test_csrf_middleware_allows_non_cookie_requests_from_unknown_origin() -> None:
    response = client.post(
        "/api/does-not-exist",
        headers={"Origin": "https://evil.example"},
        json={"payload": "ok"},
    )

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_error_responses_carry_cors_headers_for_known_origin() -> None:
    response = client.post(
        "/api/sync/brightlocal",
        headers={"Origin": "http://localhost:3000"},
    )

    assert response.status_code == 401
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
