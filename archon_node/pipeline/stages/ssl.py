import asyncio
import time

from archon_node.core.exceptions import DNSPropagationTimeoutError
from archon_node.core.logger import setup_logger
from archon_node.pipeline.stage import Stage
from archon_node.pipeline.state import DeploymentState

logger = setup_logger(__name__)

DNS_POLL_INTERVAL = 2.0
DNS_TIMEOUT = 60.0


class SSLStage(Stage):
    """
    申请证书

    先安装只含HTTP的验证配置, 等待每个域名能被解析, 然后为全部域名申请
    一张SAN证书。未启用SSL时什么都不做。
    """

    name = "ssl-setup"

    def __init__(self, ssl_service, proxy_manager, dns_interval: float = DNS_POLL_INTERVAL, dns_timeout: float = DNS_TIMEOUT):
        self.ssl_service = ssl_service
        self.proxy_manager = proxy_manager
        self.dns_interval = dns_interval
        self.dns_timeout = dns_timeout

    async def execute(self, state: DeploymentState) -> None:
        request = state.request
        if not request.ssl_enabled:
            logger.info(f"[SSL] {request.name} 未启用SSL, 跳过")
            return

        try:
            await self.proxy_manager.configure_for_validation(request)
            await self.proxy_manager.reload()

            for domain in request.domains:
                await self.wait_for_dns(domain)

            info = await self.ssl_service.ensure_certificate(
                request.id,
                request.domains,
                cert_b64=request.ssl_cert,
                key_b64=request.ssl_key,
                email=request.ssl_email,
            )
        except Exception:
            # 本阶段未完成时不会被回滚, 在这里撤销验证配置
            await self.discard_validation_config(request)
            raise
        state.cert_path = info.cert_path
        state.key_path = info.key_path
        logger.info(f"[SSL] {request.name} 证书就绪: {info.cert_path or '(由代理管理)'}")

    async def discard_validation_config(self, request) -> None:
        """撤销验证配置, 恢复部署前的站点配置"""
        try:
            await self.proxy_manager.remove_validation_config(request)
            await self.proxy_manager.reload()
        except Exception as e:
            logger.warning(f"[SSL] 撤销验证配置失败(忽略): {e}")

    async def resolve(self, domain: str) -> None:
        await asyncio.get_running_loop().getaddrinfo(domain, None)

    async def wait_for_dns(self, domain: str) -> None:
        """轮询DNS直到域名可以解析"""
        deadline = time.monotonic() + self.dns_timeout
        while True:
            try:
                await self.resolve(domain)
                logger.info(f"[SSL] DNS已生效: {domain}")
                return
            except OSError as e:
                logger.debug(f"DNS尚未生效 {domain}: {e}")
            if time.monotonic() + self.dns_interval > deadline:
                raise DNSPropagationTimeoutError(domain, self.dns_timeout)
            await asyncio.sleep(self.dns_interval)

    async def rollback(self, state: DeploymentState) -> None:
        if not state.cert_path:
            return
        await self.ssl_service.remove_certificate(state.request.id)
