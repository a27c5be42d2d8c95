from typing import Dict, Iterable, Optional
from uuid import UUID

from archon_node.core.config import ProxyType
from archon_node.core.logger import setup_logger
from archon_node.schemas.deploy import DeployRequest
from archon_node.schemas.health import ProxyInfo
from archon_node.services.proxy.base import ProxyManager

logger = setup_logger(__name__)


class TraefikProxyManager(ProxyManager):
    """
    Traefik通过容器标签发现路由

    配置在部署阶段以标签形式写入容器/Compose服务, 容器删除后路由自动消失,
    所以 configure / remove / reload 都不需要做任何事情。
    """

    proxy_type = ProxyType.TRAEFIK

    def __init__(self, cert_resolver: str = "letsencrypt"):
        self.cert_resolver = cert_resolver

    async def configure_for_validation(self, request: DeployRequest) -> None:
        pass

    async def configure(self, request: DeployRequest, cert_path: str = "", key_path: str = "") -> None:
        logger.info(f"[代理配置] Traefik使用容器标签, 无需生成配置: {request.name}")

    async def remove(self, site_id: UUID, domain: str) -> None:
        pass

    async def reload(self) -> None:
        pass

    async def get_info(self) -> ProxyInfo:
        return ProxyInfo(type=self.proxy_type.value, version="auto-configured")

    def labels_for(self, request: DeployRequest, indexes: Optional[Iterable[int]] = None) -> Dict[str, str]:
        """
        每个域名一个router和service

        第一个域名的router名为站点名, 之后依次为 <站点名>-1, <站点名>-2 ...;
        启用SSL时额外生成 -secure router, 并把HTTP请求重定向到HTTPS。

        Args:
            indexes: 只生成这些域名映射下标的标签(Compose按服务分配时使用)
        """
        labels = {"traefik.enable": "true"}
        wanted = None if indexes is None else set(indexes)

        for i, mapping in enumerate(request.domain_mappings):
            if wanted is not None and i not in wanted:
                continue

            router = request.name if i == 0 else f"{request.name}-{i}"
            rule = f"Host(`{mapping.domain}`)"

            labels[f"traefik.http.routers.{router}.rule"] = rule
            labels[f"traefik.http.routers.{router}.entrypoints"] = "web"
            labels[f"traefik.http.routers.{router}.service"] = router
            labels[f"traefik.http.services.{router}.loadbalancer.server.port"] = str(mapping.port)

            if request.ssl_enabled:
                secure = f"{router}-secure"
                labels[f"traefik.http.routers.{secure}.rule"] = rule
                labels[f"traefik.http.routers.{secure}.entrypoints"] = "websecure"
                labels[f"traefik.http.routers.{secure}.service"] = router
                labels[f"traefik.http.routers.{secure}.tls"] = "true"
                labels[f"traefik.http.routers.{secure}.tls.certresolver"] = self.cert_resolver

                middleware = f"redirect-{router}"
                labels[f"traefik.http.routers.{router}.middlewares"] = middleware
                labels[f"traefik.http.middlewares.{middleware}.redirectscheme.scheme"] = "https"
                labels[f"traefik.http.middlewares.{middleware}.redirectscheme.permanent"] = "true"

        return labels
