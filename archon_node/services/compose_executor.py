"""
Docker Compose编排执行器

每次部署把用户的Compose内容原样写入站点临时目录, archon标签写入单独的
覆盖文件, 然后调用 docker compose CLI。
项目名固定为 archon-<站点名>, 重新部署前会先 down 旧的项目。
"""

import json
import os
import shutil
from typing import Dict, List, Optional
from uuid import UUID

import aiofiles

from archon_node.core.exceptions import ContainerError, ExternalToolError
from archon_node.core.logger import setup_logger
from archon_node.schemas.deploy import DeployRequest, DeployResponse, SiteStatus, SiteStatusResponse, SiteType
from archon_node.services.docker_client import site_labels
from archon_node.utils.compose import ComposeParseError, build_label_override
from archon_node.utils.shell import run_command, run_command_with_status

logger = setup_logger(__name__)

COMPOSE_FILENAME = "docker-compose.yml"
OVERRIDE_FILENAME = "docker-compose.archon.yml"


class ComposeExecutor:
    """docker compose 执行器"""

    def __init__(self, data_dir: str, docker_binary: str = "docker", timeout: int = 1800):
        self.data_dir = data_dir
        self.docker_binary = docker_binary
        self.timeout = timeout

    def _site_dir(self, site_id: UUID) -> str:
        return os.path.join(self.data_dir, "compose", str(site_id))

    def _compose(self, *args: str) -> List[str]:
        return [self.docker_binary, "compose", *args]

    async def write_compose_file(self, site_id: UUID, content: str, filename: str = COMPOSE_FILENAME) -> str:
        """写入站点临时目录并返回文件路径"""
        site_dir = self._site_dir(site_id)
        try:
            os.makedirs(site_dir, exist_ok=True)
            compose_path = os.path.join(site_dir, filename)
            async with aiofiles.open(compose_path, 'w') as f:
                await f.write(content)
        except OSError as e:
            raise ContainerError(f"Failed to write compose file: {e}")
        return compose_path

    def cleanup(self, site_id: UUID) -> None:
        """删除站点临时目录"""
        shutil.rmtree(self._site_dir(site_id), ignore_errors=True)

    async def deploy_site(
        self,
        request: DeployRequest,
        service_labels: Optional[Dict[str, Dict[str, str]]] = None,
    ) -> DeployResponse:
        """部署Compose项目(up -d)"""
        if not request.is_compose:
            raise ContainerError("not a compose deployment")

        project_name = request.resource_name
        try:
            override = build_label_override(request.compose_content, site_labels(request), service_labels)
        except ComposeParseError as e:
            raise ContainerError(f"Invalid compose content: {e}")

        compose_path = await self.write_compose_file(request.id, request.compose_content)
        override_path = await self.write_compose_file(request.id, override, OVERRIDE_FILENAME)
        files = ("-f", compose_path, "-f", override_path)

        # 重新部署时先停掉旧的服务, 项目不存在时忽略错误
        returncode, output = await run_command_with_status(
            self._compose(*files, "-p", project_name, "down"),
            check=False,
            timeout=self.timeout,
        )
        if returncode != 0:
            logger.debug(f"docker compose down 忽略错误 ({project_name}): {output}")

        logger.info(f"[Compose部署] docker compose up: {project_name}")
        # 失败时保留临时目录中的Compose文件, 便于排查
        await run_command(
            self._compose(*files, "-p", project_name, "up", "-d"),
            timeout=self.timeout,
        )

        self.cleanup(request.id)

        return DeployResponse(
            site_id=request.id,
            status=SiteStatus.RUNNING,
            message="Compose deployment successful",
        )

    async def stop_site(self, project_name: str) -> None:
        await run_command(self._compose("-p", project_name, "stop"), timeout=self.timeout)

    async def restart_site(self, project_name: str) -> None:
        await run_command(self._compose("-p", project_name, "restart"), timeout=self.timeout)

    async def delete_site(self, project_name: str) -> None:
        """down 项目并删除命名卷和孤儿容器"""
        await run_command(
            self._compose("-p", project_name, "down", "--volumes", "--remove-orphans"),
            timeout=self.timeout,
        )

    async def get_status(self, site_id: UUID, project_name: str) -> SiteStatusResponse:
        """通过 docker compose ps 获取项目状态"""
        try:
            output = await run_command(self._compose("-p", project_name, "ps", "--all", "--format", "json"))
        except ExternalToolError:
            return SiteStatusResponse(
                site_id=site_id,
                status=SiteStatus.INACTIVE,
                site_type=SiteType.COMPOSE,
                message="Compose services not found",
            )

        services = parse_ps_output(output)
        if not services:
            return SiteStatusResponse(
                site_id=site_id,
                status=SiteStatus.INACTIVE,
                site_type=SiteType.COMPOSE,
                message="Compose services not found",
            )

        is_running = any(str(service.get("State", "")).lower() == "running" for service in services)
        return SiteStatusResponse(
            site_id=site_id,
            status=SiteStatus.RUNNING if is_running else SiteStatus.STOPPED,
            site_type=SiteType.COMPOSE,
            container_id=str(services[0].get("ID", "")),
            is_running=is_running,
        )

    async def get_logs(self, project_name: str, lines: int = 100) -> List[str]:
        output = await run_command(
            self._compose("-p", project_name, "logs", "--no-color", "--tail", str(lines)),
            timeout=self.timeout,
        )
        return output.splitlines()


def parse_ps_output(output: str) -> List[dict]:
    """解析 docker compose ps --format json (JSON数组或每行一个对象)"""
    output = output.strip()
    if not output:
        return []
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        return [data]

    services = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(item, dict):
            services.append(item)
    return services
