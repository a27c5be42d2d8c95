from typing import Dict

from archon_node.core.exceptions import ResourceNotFoundError
from archon_node.core.logger import setup_logger
from archon_node.pipeline.stage import Stage
from archon_node.pipeline.state import DeploymentState
from archon_node.schemas.deploy import DeployRequest
from archon_node.utils.compose import match_services

logger = setup_logger(__name__)


class DeploymentStage(Stage):
    """按站点类型部署单容器或Compose项目"""

    name = "deployment"

    def __init__(self, docker_client, compose_executor, proxy_manager):
        self.docker_client = docker_client
        self.compose_executor = compose_executor
        self.proxy_manager = proxy_manager

    async def execute(self, state: DeploymentState) -> None:
        request = state.request
        if request.is_compose:
            response = await self.compose_executor.deploy_site(
                request,
                service_labels=self.compose_service_labels(request),
            )
            state.project_name = request.resource_name
        else:
            response = await self.docker_client.deploy_site(
                request,
                state.data_dir,
                extra_labels=self.proxy_manager.labels_for(request),
            )
            state.container_id = response.container_id
        state.response = response

    def compose_service_labels(self, request: DeployRequest) -> Dict[str, Dict[str, str]]:
        """代理标签写入暴露对应端口的服务, 请求自带的标签写入主域名所在服务"""
        service_labels: Dict[str, Dict[str, str]] = {}
        for service, indexes in match_services(request.compose_content, request.domain_mappings).items():
            labels = self.proxy_manager.labels_for(request, indexes)
            if 0 in indexes:
                labels.update(request.traefik_labels)
            if labels:
                service_labels[service] = labels
        return service_labels

    async def rollback(self, state: DeploymentState) -> None:
        request = state.request
        if request.is_compose:
            if state.project_name:
                await self.compose_executor.delete_site(state.project_name)
            return
        try:
            await self.docker_client.delete_site(request.id)
        except ResourceNotFoundError:
            logger.info(f"[ROLLBACK] 容器已不存在: {request.resource_name}")
