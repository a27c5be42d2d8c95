import asyncio
import base64
import gc
import os
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from archon_node.core.exceptions import ExternalToolError
from archon_node.schemas.deploy import SiteStatus
from archon_node.services.compose_executor import ComposeExecutor
from archon_node.services.deploy_service import DeployService
from archon_node.services.docker_client import LABEL_COMPOSE_PROJECT, DockerClient
from archon_node.services.proxy import NginxProxyManager
from archon_node.services.ssl_service import SSLService


@pytest.fixture
def shell():
    """nginx -t 和 reload 命令"""
    with patch("archon_node.services.proxy.nginx.run_command", new=AsyncMock(return_value="")) as nginx_test, \
            patch("archon_node.services.proxy.base.run_command", new=AsyncMock(return_value="")) as reload:
        yield nginx_test, reload


@pytest.fixture
def service(docker_sdk, tmp_path):
    ssl_service = SSLService(mode="manual", cert_dir=str(tmp_path / "ssl"))
    proxy_manager = NginxProxyManager(
        config_dir=str(tmp_path / "nginx"),
        reload_command="nginx -s reload",
        ssl_mode="manual",
        ssl_lookup=ssl_service,
    )
    return DeployService(
        docker_client=DockerClient(client=docker_sdk),
        compose_executor=ComposeExecutor(str(tmp_path / "data")),
        ssl_service=ssl_service,
        proxy_manager=proxy_manager,
        data_dir=str(tmp_path / "data"),
        dns_interval=0.01,
        dns_timeout=0.05,
    )


async def test_end_to_end_success(service, docker_sdk, request_factory, shell):
    """测试部署单容器站点 demo: 全部阶段通过, 状态为 running"""
    nginx_test, reload = shell
    request = request_factory()
    events = []

    response = await service.deploy_site(request, on_progress=lambda stage, event, msg: events.append((stage, event)))

    assert response.status == SiteStatus.RUNNING
    assert response.container_id == "new-container-id"
    assert docker_sdk.containers.create.call_args.kwargs["name"] == "archon-demo"
    docker_sdk.containers.create.return_value.start.assert_called_once()

    config_path = service.proxy_manager.config_path("demo.example.com")
    with open(config_path) as f:
        assert "proxy_pass http://127.0.0.1:8080;" in f.read()
    reload.assert_awaited_once_with("nginx -s reload")

    assert [stage for stage, event in events if event == "completed"] == [
        "validation", "port-check", "ssl-setup", "deployment", "proxy-config"
    ]


async def test_end_to_end_port_conflict(service, docker_sdk, request_factory, container_factory, shell):
    """测试端口被其他站点占用: PortCheck失败, 不部署也不回滚"""
    other = container_factory("archon-other", uuid.uuid4(), host_ports=[8080])
    docker_sdk.containers.list.return_value = [other]
    events = []

    response = await service.deploy_site(
        request_factory(),
        on_progress=lambda stage, event, msg: events.append((stage, event)),
    )

    assert response.status == SiteStatus.FAILED
    assert response.message.startswith("stage port-check failed:")
    assert "archon-other" in response.message
    docker_sdk.images.pull.assert_not_called()
    docker_sdk.containers.create.assert_not_called()
    assert not os.path.exists(service.proxy_manager.config_path("demo.example.com"))
    assert not any(event == "rollback" for _, event in events)


async def test_validation_failure_runs_nothing(service, docker_sdk, request_factory, shell):
    response = await service.deploy_site(request_factory(docker={"image": ""}))

    assert response.status == SiteStatus.FAILED
    assert response.message == "stage validation failed: docker image is required for container deployments"
    docker_sdk.containers.list.assert_not_called()


async def test_proxy_failure_rolls_back_container(service, docker_sdk, request_factory, container_factory, shell):
    """测试代理配置失败时删除已部署的容器"""
    nginx_test, _ = shell
    nginx_test.side_effect = ExternalToolError("nginx -t", "emerg: invalid", 1)
    request = request_factory()
    deployed = container_factory("archon-demo", request.id)

    def list_containers(all=True, filters=None):
        # 端口检查时没有容器, 回滚时按站点ID能找到刚部署的容器
        if filters == {"label": f"archon.site.id={request.id}"}:
            return [deployed]
        return []

    docker_sdk.containers.list.side_effect = list_containers

    response = await service.deploy_site(request)

    assert response.status == SiteStatus.FAILED
    assert response.message.startswith("stage proxy-config failed:")
    deployed.remove.assert_called_once_with(force=True)


async def test_manual_ssl_deploy_writes_certificates(service, request_factory, shell):
    request = request_factory(
        ssl_enabled=True,
        ssl_cert=base64.b64encode(b"CERT").decode(),
        ssl_key=base64.b64encode(b"KEY").decode(),
    )

    with patch("archon_node.pipeline.stages.ssl.SSLStage.resolve", new=AsyncMock()):
        response = await service.deploy_site(request)

    assert response.status == SiteStatus.RUNNING
    cert_dir = service.ssl_service.site_cert_dir(request.id)
    with open(service.proxy_manager.config_path("demo.example.com")) as f:
        assert f"ssl_certificate {cert_dir}/cert.pem;" in f.read()


async def test_cancelled_deploy(service, docker_sdk, request_factory, shell):
    cancel_event = asyncio.Event()
    cancel_event.set()

    response = await service.deploy_site(request_factory(), cancel_event=cancel_event)

    assert response.status == SiteStatus.FAILED
    assert "cancelled" in response.message
    docker_sdk.containers.list.assert_not_called()


async def test_delete_cleans_everything(service, docker_sdk, request_factory, shell, tmp_path):
    """测试删除站点: 容器不存在也继续清理代理配置、证书和数据目录"""
    request = request_factory()
    site_dir = tmp_path / "data" / "sites" / str(request.id)
    site_dir.mkdir(parents=True)
    cert_dir = tmp_path / "ssl" / str(request.id)
    cert_dir.mkdir(parents=True)
    os.makedirs(service.proxy_manager.config_dir)
    with open(service.proxy_manager.config_path("demo.example.com"), "w") as f:
        f.write("server {}")

    result = await service.delete_site(request.id, "demo.example.com")

    assert result.success is True
    assert not site_dir.exists()
    assert not cert_dir.exists()
    assert not os.path.exists(service.proxy_manager.config_path("demo.example.com"))


async def test_unknown_site_status_is_inactive(service):
    """测试不存在的站点状态为 inactive, 而不是报错"""
    status = await service.get_site_status(uuid.uuid4())

    assert status.status == SiteStatus.INACTIVE
    assert status.is_running is False
    assert status.message == "Container not found"


async def test_site_locks_released_after_operations(service, request_factory, shell):
    """测试部署和删除结束后不再保留站点锁"""
    request = request_factory()

    await service.deploy_site(request)
    gc.collect()
    assert request.id not in service._locks

    await service.delete_site(request.id, "demo.example.com")
    gc.collect()
    assert len(service._locks) == 0


async def test_site_lock_shared_while_held(service):
    site_id = uuid.uuid4()
    async with service._lock(site_id):
        assert service._lock(site_id) is service._locks[site_id]
        assert service._lock(site_id).locked()


async def test_compose_site_operations_use_project(service, docker_sdk, container_factory):
    site_id = uuid.uuid4()
    docker_sdk.containers.list.return_value = [
        container_factory("archon-demo-web-1", site_id, labels={LABEL_COMPOSE_PROJECT: "archon-demo"})
    ]
    service.compose_executor = MagicMock()
    service.compose_executor.stop_site = AsyncMock()
    service.compose_executor.get_logs = AsyncMock(return_value=["hello"])

    await service.stop_site(site_id)
    logs = await service.get_site_logs(site_id, 10)

    service.compose_executor.stop_site.assert_awaited_once_with("archon-demo")
    service.compose_executor.get_logs.assert_awaited_once_with("archon-demo", 10)
    assert logs.logs == ["hello"]


async def test_renew_reloads_proxy(service, shell):
    _, reload = shell
    service.ssl_service = MagicMock()
    service.ssl_service.renew_certificates = AsyncMock(return_value="Congratulations, all renewals succeeded")

    result = await service.renew_certificates()

    assert "renewals succeeded" in result.message
    reload.assert_awaited_once()
