import logging

from fastapi.testclient import TestClient

from api.main import app


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


client = TestClient(app)


def test_health_check() -> None:
    response = client.get("/health")
    logger.info(
        "Health check response",
        extra={"status_code": response.status_code, "body": response.json()},
    )
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_api_health_reports_pool_status() -> None:
    response = client.get("/api/health")
    logger.info(
        "API health check response",
        extra={"status_code": response.status_code, "body": response.json()},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert "pool" in payload


def test_openapi_schema_available() -> None:
    response = client.get("/openapi.json")
    logger.info("OpenAPI response", extra={"status_code": response.status_code})
    assert response.status_code == 200
    payload = response.json()
    assert payload["info"]["title"] == "Agency Hub API"
    assert "/api/sync/all-contacts" in payload["paths"]
    assert "/api/hubspot/contacts/{contact_id}" in payload["paths"]
