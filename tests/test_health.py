def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200

    payload = response.json()
    assert payload["status_code"] == 200
    assert payload["status"] == "success"
    assert payload["message"] == "Service is healthy"
    assert payload["data"]["status"] == "ok"
    assert payload["data"]["service"] == "Storefront Scan"
    assert payload["data"]["ai_enabled"] is False


def test_health_check_under_api_prefix(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200


def test_root_info(client):
    response = client.get("/")
    assert response.status_code == 200
    payload = response.json()
    assert payload["app_name"] == "Storefront Scan API"
    assert payload["version"] == "1.0.0"
    assert payload["docs_url"] == "/docs"
    assert payload["api_base"] == "/api/v1"
