import asyncio
import os
import shutil
import weakref
from datetime import datetime
from functools import lru_cache
from typing import Optional
from uuid import UUID

from archon_node.core.config import Settings, settings
from archon_node.core.exceptions import ArchonError, ResourceNotFoundError
from archon_node.core.logger import setup_logger
from archon_node.pipeline.stages import StageDependencies, build_deployment_pipeline
from archon_node.pipeline.state import DeploymentState, ProgressCallback
from archon_node.schemas.deploy import (
    DeployRequest,
    DeployResponse,
    LogsResponse,
    MessageResponse,
    SiteStatus,
    SiteStatusResponse,
)
from archon_node.services.compose_executor import ComposeExecutor
from archon_node.services.docker_client import LABEL_COMPOSE_PROJECT, DockerClient
from archon_node.services.proxy import ProxyManager, create_proxy_manager
from archon_node.services.ssl_service import SSLService

logger = setup_logger(__name__)


class DeployService:
    """站点部署服务"""

    def __init__(
        self,
        docker_client: DockerClient,
        compose_executor: ComposeExecutor,
        ssl_service: SSLService,
        proxy_manager: ProxyManager,
        data_dir: str,
        **stage_options,
    ):
        self.docker_client = docker_client
        self.compose_executor = compose_executor
        self.ssl_service = ssl_service
        self.proxy_manager = proxy_manager
        self.data_dir = data_dir
        self.stage_options = stage_options
        # 同一站点的部署/停止/删除依次执行, 没有操作持有或等待时锁自动释放
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeployService":
        ssl_service = SSLService.from_settings(settings)
        return cls(
            docker_client=DockerClient(base_url=settings.DOCKER_HOST, network_name=settings.DOCKER_NETWORK),
            compose_executor=ComposeExecutor(settings.DATA_DIR),
            ssl_service=ssl_service,
            proxy_manager=create_proxy_manager(settings, ssl_lookup=ssl_service),
            data_dir=settings.DATA_DIR,
        )

    def _lock(self, site_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(site_id)
        if lock is None:
            lock = self._locks[site_id] = asyncio.Lock()
        return lock

    def _dependencies(self) -> StageDependencies:
        return StageDependencies(
            docker_client=self.docker_client,
            compose_executor=self.compose_executor,
            ssl_service=self.ssl_service,
            proxy_manager=self.proxy_manager,
            **self.stage_options,
        )

    async def deploy_site(
        self,
        request: DeployRequest,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DeployResponse:
        """执行部署流水线; 失败时返回 failed 状态和阶段错误信息"""
        state = DeploymentState(request=request, data_dir=self.data_dir, on_progress=on_progress)
        pipeline = build_deployment_pipeline(self._dependencies())

        async with self._lock(request.id):
            try:
                await pipeline.execute(state, cancel_event)
            except ArchonError as e:
                logger.error(f"[部署站点] 失败 - 站点: {request.name}, 原因: {e}")
                return DeployResponse(
                    site_id=request.id,
                    status=SiteStatus.FAILED,
                    message=str(e),
                )

        elapsed = (datetime.now() - state.started_at).total_seconds()
        logger.info(f"[部署站点] 成功 - 站点: {request.name}, 耗时: {elapsed:.1f}s")
        if state.response is not None:
            return state.response
        return DeployResponse(
            site_id=request.id,
            status=SiteStatus.RUNNING,
            container_id=state.container_id,
            message="Site deployed successfully",
        )

    async def _compose_project(self, site_id: UUID) -> Optional[str]:
        """站点是Compose部署时返回项目名"""
        for container in await self.docker_client.find_site_containers(site_id):
            project = (container.labels or {}).get(LABEL_COMPOSE_PROJECT)
            if project:
                return project
        return None

    async def get_site_status(self, site_id: UUID) -> SiteStatusResponse:
        project = await self._compose_project(site_id)
        if project:
            return await self.compose_executor.get_status(site_id, project)
        return await self.docker_client.get_site_status(site_id)

    async def stop_site(self, site_id: UUID) -> MessageResponse:
        async with self._lock(site_id):
            project = await self._compose_project(site_id)
            if project:
                await self.compose_executor.stop_site(project)
            else:
                await self.docker_client.stop_site(site_id)
        logger.info(f"[停止站点] 成功 - 站点: {site_id}")
        return MessageResponse(message="Site stopped")

    async def restart_site(self, site_id: UUID) -> MessageResponse:
        async with self._lock(site_id):
            project = await self._compose_project(site_id)
            if project:
                await self.compose_executor.restart_site(project)
            else:
                await self.docker_client.restart_site(site_id)
        logger.info(f"[重启站点] 成功 - 站点: {site_id}")
        return MessageResponse(message="Site restarted")

    async def delete_site(self, site_id: UUID, domain: Optional[str] = None) -> MessageResponse:
        """
        删除站点的容器/Compose项目、代理配置、证书和数据目录

        站点不存在时照常清理其余资源, 重复删除不会报错。
        """
        async with self._lock(site_id):
            project = await self._compose_project(site_id)
            if project:
                await self.compose_executor.delete_site(project)
            else:
                try:
                    await self.docker_client.delete_site(site_id)
                except ResourceNotFoundError:
                    logger.info(f"[删除站点] 容器不存在, 继续清理 - 站点: {site_id}")

            if domain:
                await self.proxy_manager.remove(site_id, domain)
                await self.proxy_manager.reload()

            await self.ssl_service.remove_certificate(site_id)
            shutil.rmtree(os.path.join(self.data_dir, "sites", str(site_id)), ignore_errors=True)

        logger.info(f"[删除站点] 成功 - 站点: {site_id}, 域名: {domain or '-'}")
        return MessageResponse(message="Site deleted")

    async def get_site_logs(self, site_id: UUID, lines: int = 100) -> LogsResponse:
        project = await self._compose_project(site_id)
        if project:
            logs = await self.compose_executor.get_logs(project, lines)
        else:
            logs = await self.docker_client.get_container_logs(site_id, lines)
        return LogsResponse(site_id=site_id, logs=logs)

    async def renew_certificates(self) -> MessageResponse:
        """续期证书并重新加载代理以使用新证书"""
        output = await self.ssl_service.renew_certificates()
        if output:
            await self.proxy_manager.reload()
        return MessageResponse(message=output or "Nothing to renew")


@lru_cache()
def get_deploy_service() -> DeployService:
    """进程内共享的部署服务(首次使用时连接Docker)"""
    return DeployService.from_settings(settings)
