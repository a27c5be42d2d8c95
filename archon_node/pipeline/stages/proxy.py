from archon_node.core.logger import setup_logger
from archon_node.pipeline.stage import Stage
from archon_node.pipeline.state import DeploymentState

logger = setup_logger(__name__)


class ProxyStage(Stage):
    """生成反向代理配置并重新加载"""

    name = "proxy-config"

    def __init__(self, proxy_manager):
        self.proxy_manager = proxy_manager

    async def execute(self, state: DeploymentState) -> None:
        await self.proxy_manager.configure(state.request, state.cert_path, state.key_path)
        await self.proxy_manager.reload()

    async def rollback(self, state: DeploymentState) -> None:
        request = state.request
        if not request.primary_domain:
            return
        try:
            await self.proxy_manager.remove(request.id, request.primary_domain)
            await self.proxy_manager.reload()
        except Exception as e:
            logger.warning(f"[ROLLBACK] 清理代理配置失败(忽略): {e}")
