from dataclasses import dataclass

from archon_node.pipeline.pipeline import Pipeline
from archon_node.pipeline.stages.deployment import DeploymentStage
from archon_node.pipeline.stages.portcheck import PortCheckStage
from archon_node.pipeline.stages.proxy import ProxyStage
from archon_node.pipeline.stages.ssl import DNS_POLL_INTERVAL, DNS_TIMEOUT, SSLStage
from archon_node.pipeline.stages.validation import ValidationStage


@dataclass
class StageDependencies:
    """各阶段共用的服务"""
    docker_client: object
    compose_executor: object
    ssl_service: object
    proxy_manager: object
    dns_interval: float = DNS_POLL_INTERVAL
    dns_timeout: float = DNS_TIMEOUT


def build_deployment_pipeline(deps: StageDependencies) -> Pipeline:
    """按固定顺序组装部署流水线: 先做廉价的检查, 再做有副作用的操作"""
    return Pipeline([
        ValidationStage(),
        PortCheckStage(deps.docker_client),
        SSLStage(deps.ssl_service, deps.proxy_manager, deps.dns_interval, deps.dns_timeout),
        DeploymentStage(deps.docker_client, deps.compose_executor, deps.proxy_manager),
        ProxyStage(deps.proxy_manager),
    ])
