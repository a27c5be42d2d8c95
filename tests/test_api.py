import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from archon_node.core.config import settings
from archon_node.core.exceptions import ResourceNotFoundError
from archon_node.schemas.deploy import DeployResponse, LogsResponse, MessageResponse, SiteStatus, SiteStatusResponse
from archon_node.schemas.health import DockerInfo, ProxyInfo
from archon_node.services.deploy_service import get_deploy_service
from main import app

SITE_ID = uuid.UUID("7c9e6679-7425-40de-944b-e07fc1f90ae7")


@pytest.fixture
def deploy_service():
    service = MagicMock()
    service.deploy_site = AsyncMock(return_value=DeployResponse(
        site_id=SITE_ID, status=SiteStatus.RUNNING, container_id="abc", message="Site deployed successfully"
    ))
    service.get_site_status = AsyncMock(return_value=SiteStatusResponse(
        site_id=SITE_ID, status=SiteStatus.RUNNING, is_running=True
    ))
    service.stop_site = AsyncMock(return_value=MessageResponse(message="Site stopped"))
    service.restart_site = AsyncMock(return_value=MessageResponse(message="Site restarted"))
    service.delete_site = AsyncMock(return_value=MessageResponse(message="Site deleted"))
    service.get_site_logs = AsyncMock(return_value=LogsResponse(site_id=SITE_ID, logs=["ready"]))
    service.renew_certificates = AsyncMock(return_value=MessageResponse(message="No renewals were attempted."))
    service.docker_client.get_docker_info = AsyncMock(return_value=DockerInfo(version="27.0.3"))
    service.proxy_manager.get_info = AsyncMock(return_value=ProxyInfo(type="nginx", routers_count=3))
    return service


@pytest.fixture
def client(deploy_service):
    # 不触发startup事件, 避免连接Docker
    app.dependency_overrides[get_deploy_service] = lambda: deploy_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    """测试健康检查"""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["docker"]["version"] == "27.0.3"
    assert data["proxy"]["routers_count"] == 3
    assert "cpu_percent" in data["system_info"]


def test_deploy(client, deploy_service):
    payload = {
        "id": str(SITE_ID),
        "name": "demo",
        "docker": {"image": "nginx:alpine"},
        "domain_mappings": [{"domain": "demo.example.com", "port": 8080}],
    }

    response = client.post("/api/v1/sites/deploy", json=payload)

    assert response.status_code == 200
    assert response.json()["status"] == "running"
    request = deploy_service.deploy_site.await_args.args[0]
    assert request.resource_name == "archon-demo"


@pytest.mark.parametrize("port", [0, 70000])
def test_deploy_rejects_invalid_port(client, port):
    payload = {
        "id": str(SITE_ID),
        "name": "demo",
        "domain_mappings": [{"domain": "demo.example.com", "port": port}],
    }
    assert client.post("/api/v1/sites/deploy", json=payload).status_code == 422


def test_site_operations(client, deploy_service):
    assert client.get(f"/api/v1/sites/{SITE_ID}/status").json()["is_running"] is True
    assert client.post(f"/api/v1/sites/{SITE_ID}/stop").json()["message"] == "Site stopped"
    assert client.post(f"/api/v1/sites/{SITE_ID}/restart").json()["message"] == "Site restarted"
    assert client.get(f"/api/v1/sites/{SITE_ID}/logs?lines=5").json()["logs"] == ["ready"]
    deploy_service.get_site_logs.assert_awaited_once_with(SITE_ID, 5)

    response = client.delete(f"/api/v1/sites/{SITE_ID}?domain=demo.example.com")
    assert response.status_code == 200
    deploy_service.delete_site.assert_awaited_once_with(SITE_ID, "demo.example.com")


def test_missing_site_is_404(client, deploy_service):
    deploy_service.stop_site.side_effect = ResourceNotFoundError("container not found")

    response = client.post(f"/api/v1/sites/{SITE_ID}/stop")

    assert response.status_code == 404
    assert response.json()["detail"] == "container not found"


def test_renew(client):
    response = client.post("/api/v1/ssl/renew")
    assert response.status_code == 200
    assert response.json()["data"]["output"] == "No renewals were attempted."


def test_compose_ports(client):
    """测试Compose端口检测"""
    content = "services:\n  web:\n    ports: ['8080:80']\n  dns:\n    ports: ['53:53/udp']\n"

    response = client.post("/api/v1/compose/ports", json={"compose_content": content})

    assert response.status_code == 200
    data = response.json()
    assert data["default_port"] == 80
    assert data["ports"][1] == {"service_name": "dns", "container_port": 53, "host_port": 53, "protocol": "udp"}


def test_compose_ports_invalid(client):
    response = client.post("/api/v1/compose/ports", json={"compose_content": "version: '3'"})
    assert response.status_code == 400


def test_api_key_required(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret-key")

    assert client.get(f"/api/v1/sites/{SITE_ID}/status").status_code == 401
    assert client.get(
        f"/api/v1/sites/{SITE_ID}/status", headers={"Authorization": "Bearer secret-key"}
    ).status_code == 200
    assert client.get(f"/api/v1/sites/{SITE_ID}/status", headers={"X-API-Key": "secret-key"}).status_code == 200
    assert client.get(f"/api/v1/sites/{SITE_ID}/status", headers={"X-API-Key": "wrong"}).status_code == 401
    # 健康检查不需要密钥
    assert client.get("/health").status_code == 200
