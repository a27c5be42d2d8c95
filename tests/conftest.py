import os
import sys
import uuid
from unittest.mock import MagicMock

import pytest

# 添加项目根目录到Python路径
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# 测试时不写日志文件, 不要求API密钥
os.environ["ARCHON_LOG_DIR"] = ""
os.environ["ARCHON_API_KEY"] = ""

from docker.errors import NotFound

from archon_node.schemas.deploy import DeployRequest
from archon_node.services.docker_client import LABEL_MANAGED_BY, LABEL_SITE_ID, MANAGED_BY_VALUE

SITE_ID = uuid.UUID("7c9e6679-7425-40de-944b-e07fc1f90ae7")


COMPOSE_CONTENT = """
services:
  web:
    image: nginx:alpine
    ports:
      - "8080:80"
  db:
    image: postgres:16
"""


def make_request(**overrides) -> DeployRequest:
    """默认为单容器站点 demo, 端口8080, 不启用SSL"""
    data = {
        "id": SITE_ID,
        "name": "demo",
        "site_type": "container",
        "docker": {"image": "nginx:alpine"},
        "domain_mappings": [{"domain": "demo.example.com", "port": 8080}],
        "ssl_enabled": False,
    }
    data.update(overrides)
    return DeployRequest(**data)


def make_container(name: str, site_id, host_ports=(), status: str = "running", labels=None):
    """模拟 docker SDK 的 Container 对象"""
    container = MagicMock()
    container.name = name
    container.id = f"{name}-id"
    container.status = status
    container.labels = {
        LABEL_MANAGED_BY: MANAGED_BY_VALUE,
        LABEL_SITE_ID: str(site_id),
        **(labels or {}),
    }
    container.attrs = {
        "HostConfig": {
            "PortBindings": {
                f"{port}/tcp": [{"HostIp": "0.0.0.0", "HostPort": str(port)}] for port in host_ports
            }
        },
        "NetworkSettings": {"Ports": {}},
    }
    return container


@pytest.fixture
def request_factory():
    return make_request


@pytest.fixture
def docker_sdk():
    """模拟 docker.DockerClient, 默认没有任何容器"""
    client = MagicMock()
    client.networks.list.return_value = []
    client.containers.list.return_value = []
    client.containers.get.side_effect = NotFound("No such container")
    created = MagicMock()
    created.id = "new-container-id"
    client.containers.create.return_value = created
    client.info.return_value = {"ContainersRunning": 2, "Images": 5}
    client.version.return_value = {"Version": "27.0.3"}
    return client


@pytest.fixture
def container_factory():
    return make_container


@pytest.fixture
def compose_content():
    return COMPOSE_CONTENT
