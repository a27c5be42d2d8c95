"""
Docker容器编排客户端

通过Docker Engine API管理单容器站点: 拉取镜像、创建/启动/停止/删除容器、
读取日志, 以及部署前的主机端口冲突检查。阻塞的SDK调用放到线程中执行。
"""

import os
from typing import Dict, Iterable, List, Optional, Set
from uuid import UUID

import aiofiles
import docker
from docker.errors import APIError, DockerException, NotFound

from archon_node.core.exceptions import ConflictError, ContainerError, ResourceNotFoundError
from archon_node.core.logger import setup_logger
from archon_node.schemas.deploy import (
    DeployRequest,
    DeployResponse,
    SiteStatus,
    SiteStatusResponse,
    SiteType,
)
from archon_node.schemas.health import DockerInfo
from archon_node.utils.async_docker import async_docker_call

logger = setup_logger(__name__)

LABEL_MANAGED_BY = "managed-by"
MANAGED_BY_VALUE = "archon"
LABEL_SITE_ID = "archon.site.id"
LABEL_SITE_NAME = "archon.site.name"
LABEL_SITE_DOMAIN = "archon.site.domain"
LABEL_COMPOSE_PROJECT = "com.docker.compose.project"

STOP_TIMEOUT = 10


def site_labels(request: DeployRequest) -> Dict[str, str]:
    """站点标识标签, 用于按站点ID查找容器和端口冲突检查"""
    return {
        LABEL_MANAGED_BY: MANAGED_BY_VALUE,
        LABEL_SITE_ID: str(request.id),
        LABEL_SITE_NAME: request.name,
        LABEL_SITE_DOMAIN: request.primary_domain or "",
    }


def published_ports(container) -> Set[int]:
    """容器绑定的主机端口(包括已停止容器的持久化绑定)"""
    ports = set()
    attrs = container.attrs or {}
    bindings = (attrs.get("HostConfig") or {}).get("PortBindings") or {}
    runtime = (attrs.get("NetworkSettings") or {}).get("Ports") or {}
    for source in (bindings, runtime):
        for entries in source.values():
            for entry in entries or []:
                host_port = str(entry.get("HostPort") or "")
                if host_port.isdigit() and int(host_port) > 0:
                    ports.add(int(host_port))
    return ports


class DockerClient:
    """Docker Engine客户端"""

    def __init__(self, base_url: Optional[str] = None, network_name: str = "archon-net", client=None):
        if client is None:
            try:
                client = docker.DockerClient(base_url=base_url) if base_url else docker.from_env()
            except DockerException as e:
                raise ContainerError(f"failed to create docker client: {e}")
        self.client = client
        self.network_name = network_name

    async def ensure_network(self) -> None:
        """创建托管网络(已存在时跳过)"""
        networks = await async_docker_call(self.client.networks.list, names=[self.network_name])
        if any(network.name == self.network_name for network in networks):
            return
        try:
            await async_docker_call(self.client.networks.create, self.network_name, driver="bridge")
            logger.info(f"已创建Docker网络: {self.network_name}")
        except APIError as e:
            # 并发创建时网络可能已存在
            if e.status_code != 409:
                raise ContainerError(f"failed to create network {self.network_name}: {e}")

    async def deploy_site(
        self,
        request: DeployRequest,
        data_dir: str,
        extra_labels: Optional[Dict[str, str]] = None,
    ) -> DeployResponse:
        """拉取镜像并以 archon-<站点名> 创建、启动容器"""
        await self.ensure_network()

        image = request.docker.image
        credentials = request.docker.credentials
        auth_config = None
        if credentials.username or credentials.password:
            auth_config = {"username": credentials.username, "password": credentials.password}

        logger.info(f"[容器部署] 拉取镜像: {image}")
        try:
            await async_docker_call(self.client.images.pull, image, auth_config=auth_config)
        except DockerException as e:
            raise ContainerError(f"Failed to pull image {image}: {e}")

        volumes = await self._write_config_files(request, data_dir)

        container_name = request.resource_name
        await self._remove_by_name(container_name)

        ports: Dict[str, list] = {}
        for mapping in request.domain_mappings:
            ports.setdefault(f"{mapping.port}/tcp", []).append(("0.0.0.0", mapping.effective_host_port))

        labels = site_labels(request)
        labels.update(request.traefik_labels)
        labels.update(extra_labels or {})

        try:
            container = await async_docker_call(
                self.client.containers.create,
                image,
                name=container_name,
                environment=dict(request.environment_vars),
                ports=ports,
                labels=labels,
                volumes=volumes or None,
                network=self.network_name,
                restart_policy={"Name": "unless-stopped"},
            )
        except DockerException as e:
            raise ContainerError(f"Failed to create container {container_name}: {e}")

        try:
            await async_docker_call(container.start)
        except DockerException as e:
            # 启动失败时不保留创建出的容器
            try:
                await async_docker_call(container.remove, force=True)
            except DockerException as cleanup_error:
                logger.warning(f"清理未启动的容器失败 {container_name}: {cleanup_error}")
            raise ContainerError(f"Failed to start container {container_name}: {e}")

        logger.info(f"[容器部署] 容器已启动: {container_name} ({container.id})")
        return DeployResponse(
            site_id=request.id,
            status=SiteStatus.RUNNING,
            container_id=container.id,
            message="Site deployed successfully",
        )

    async def _write_config_files(self, request: DeployRequest, data_dir: str) -> Dict[str, dict]:
        """写入配置文件并返回只读挂载"""
        if not request.config_files:
            return {}

        site_data_dir = os.path.join(data_dir, "sites", str(request.id))
        try:
            os.makedirs(site_data_dir, exist_ok=True)
        except OSError as e:
            raise ContainerError(f"Failed to create site data directory: {e}")

        volumes = {}
        for config_file in request.config_files:
            host_path = os.path.join(site_data_dir, os.path.basename(config_file.name))
            try:
                async with aiofiles.open(host_path, 'w') as f:
                    await f.write(config_file.content)
            except OSError as e:
                raise ContainerError(f"Failed to write config file {config_file.name}: {e}")
            volumes[host_path] = {"bind": config_file.container_path, "mode": "ro"}
        return volumes

    async def _remove_by_name(self, name: str) -> None:
        try:
            container = await async_docker_call(self.client.containers.get, name)
        except NotFound:
            return
        logger.info(f"移除已存在的容器: {name}")
        try:
            await async_docker_call(container.stop, timeout=STOP_TIMEOUT)
        except DockerException as e:
            logger.warning(f"停止容器失败 {name}: {e}")
        try:
            await async_docker_call(container.remove, force=True)
        except NotFound:
            pass
        except DockerException as e:
            raise ContainerError(f"Failed to remove existing container {name}: {e}")

    async def find_site_containers(self, site_id: UUID) -> list:
        """按站点ID标签查找容器(包括已停止的)"""
        try:
            return await async_docker_call(
                self.client.containers.list,
                all=True,
                filters={"label": f"{LABEL_SITE_ID}={site_id}"},
            )
        except DockerException as e:
            raise ContainerError(f"failed to list containers: {e}")

    async def get_site_status(self, site_id: UUID) -> SiteStatusResponse:
        """获取站点状态"""
        containers = await self.find_site_containers(site_id)
        if not containers:
            return SiteStatusResponse(
                site_id=site_id,
                status=SiteStatus.INACTIVE,
                is_running=False,
                message="Container not found",
            )

        is_running = any(container.status == "running" for container in containers)
        is_compose = any(LABEL_COMPOSE_PROJECT in (container.labels or {}) for container in containers)
        return SiteStatusResponse(
            site_id=site_id,
            status=SiteStatus.RUNNING if is_running else SiteStatus.STOPPED,
            site_type=SiteType.COMPOSE if is_compose else SiteType.CONTAINER,
            container_id=containers[0].id,
            is_running=is_running,
        )

    async def _get_site_container(self, site_id: UUID):
        containers = await self.find_site_containers(site_id)
        if not containers:
            raise ResourceNotFoundError(f"container not found for site {site_id}")
        return containers[0]

    async def stop_site(self, site_id: UUID) -> None:
        """停止站点容器"""
        container = await self._get_site_container(site_id)
        try:
            await async_docker_call(container.stop, timeout=STOP_TIMEOUT)
        except DockerException as e:
            raise ContainerError(f"failed to stop container: {e}")

    async def restart_site(self, site_id: UUID) -> None:
        """重启站点容器"""
        container = await self._get_site_container(site_id)
        try:
            await async_docker_call(container.restart, timeout=STOP_TIMEOUT)
        except DockerException as e:
            raise ContainerError(f"failed to restart container: {e}")

    async def delete_site(self, site_id: UUID) -> None:
        """停止并删除站点容器"""
        container = await self._get_site_container(site_id)
        try:
            await async_docker_call(container.stop, timeout=STOP_TIMEOUT)
        except DockerException as e:
            logger.warning(f"停止容器失败 {container.name}: {e}")
        try:
            await async_docker_call(container.remove, force=True)
        except NotFound:
            pass
        except DockerException as e:
            raise ContainerError(f"failed to remove container: {e}")

    async def get_container_logs(self, site_id: UUID, lines: int = 100) -> List[str]:
        """读取容器日志"""
        container = await self._get_site_container(site_id)
        try:
            raw = await async_docker_call(container.logs, stdout=True, stderr=True, tail=lines)
        except DockerException as e:
            raise ContainerError(f"failed to get logs: {e}")
        return raw.decode(errors="replace").splitlines()

    async def get_docker_info(self) -> DockerInfo:
        """Docker版本和容器统计"""
        try:
            info = await async_docker_call(self.client.info)
            version = await async_docker_call(self.client.version)
        except DockerException as e:
            raise ContainerError(f"failed to get docker info: {e}")
        return DockerInfo(
            version=version.get("Version", ""),
            containers_running=info.get("ContainersRunning", 0),
            images_count=info.get("Images", 0),
        )

    async def check_port_conflicts(self, host_ports: Iterable[int], exclude_site_id: UUID) -> None:
        """
        检查主机端口是否已被其他托管容器占用

        正在重新部署的站点(按站点ID标签匹配)不参与检查。

        Raises:
            ConflictError: 列出每个冲突端口及占用它的容器
        """
        try:
            containers = await async_docker_call(
                self.client.containers.list,
                all=True,
                filters={"label": f"{LABEL_MANAGED_BY}={MANAGED_BY_VALUE}"},
            )
        except DockerException as e:
            raise ContainerError(f"failed to list containers: {e}")

        used_ports: Dict[int, str] = {}
        exclude = str(exclude_site_id)
        for container in containers:
            if (container.labels or {}).get(LABEL_SITE_ID) == exclude:
                continue
            for port in published_ports(container):
                used_ports[port] = container.name

        conflicts = []
        for port in host_ports:
            if port in used_ports:
                conflicts.append(f"port {port} (used by {used_ports[port]})")

        if conflicts:
            raise ConflictError(f"port conflicts detected: {', '.join(conflicts)}")
