from archon_node.core.logger import setup_logger
from archon_node.pipeline.stage import Stage
from archon_node.pipeline.state import DeploymentState

logger = setup_logger(__name__)


class PortCheckStage(Stage):
    """部署前检查主机端口是否被其他站点占用"""

    name = "port-check"

    def __init__(self, docker_client):
        self.docker_client = docker_client

    async def execute(self, state: DeploymentState) -> None:
        request = state.request
        host_ports = [mapping.effective_host_port for mapping in request.domain_mappings]
        logger.info(f"[端口检查] {request.name}: {host_ports}")
        await self.docker_client.check_port_conflicts(host_ports, exclude_site_id=request.id)
