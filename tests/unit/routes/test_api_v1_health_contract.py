import pytest
from flask import Response

from pulse.api.v1.resources.base import BaseResource


@pytest.mark.unit
def test_api_v1_health_ping(client) -> None:
    response = client.get("/api/v1/health/ping")

    assert response.status_code == 200
    assert response.mimetype == "application/json"
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["data"] == {"status": "ok"}


@pytest.mark.unit
def test_base_resource_success_returns_response_with_status(app) -> None:
    with app.test_request_context():
        response = BaseResource().success(data={"dry_run": True}, message="已开始", status=202)

    assert isinstance(response, Response)
    assert response.status_code == 202
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["data"] == {"dry_run": True}
    assert payload["message"] == "已开始"


@pytest.mark.unit
def test_api_v1_openapi_lists_partition_routes(client) -> None:
    response = client.get("/api/v1/openapi.json")

    assert response.status_code == 200
    paths = response.get_json()["paths"]
    for path in ("health", "list", "status", "maintenance", "create", "analyze", "vacuum", "cleanup"):
        assert f"/partitions/{path}" in paths
