"""
反向代理管理器接口

每种代理后端实现同一组操作, 启动时由工厂按配置选定一个实例,
流水线阶段只依赖这里的接口。
"""

import os
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional
from uuid import UUID

import aiofiles

from archon_node.core.config import ProxyType, SSLMode
from archon_node.core.exceptions import ExternalToolError, ProxyError
from archon_node.core.logger import setup_logger
from archon_node.schemas.deploy import DeployRequest
from archon_node.schemas.health import ProxyInfo
from archon_node.schemas.ssl import SSLInfo
from archon_node.utils.shell import run_command, run_command_with_status

logger = setup_logger(__name__)


class ProxyManager(ABC):
    """反向代理管理接口"""

    proxy_type: ProxyType

    @abstractmethod
    async def configure_for_validation(self, request: DeployRequest) -> None:
        """安装只含HTTP的临时配置, 供ACME域名验证使用"""

    @abstractmethod
    async def configure(self, request: DeployRequest, cert_path: str = "", key_path: str = "") -> None:
        """生成并启用站点配置"""

    async def remove_validation_config(self, request: DeployRequest) -> None:
        """撤销 configure_for_validation, 恢复之前的站点配置"""

    @abstractmethod
    async def remove(self, site_id: UUID, domain: str) -> None:
        """删除站点配置, 不存在时忽略"""

    @abstractmethod
    async def reload(self) -> None:
        """重新加载代理"""

    @abstractmethod
    async def get_info(self) -> ProxyInfo:
        """代理版本和站点数量(健康检查用)"""

    def labels_for(self, request: DeployRequest, indexes: Optional[Iterable[int]] = None) -> Dict[str, str]:
        """部署时附加到容器/服务上的路由标签"""
        return {}


class TemplatedProxyManager(ProxyManager):
    """
    基于配置文件模板的代理(nginx / apache)

    每个站点一个配置文件, 以主域名命名, 每次 configure 整体重新生成。
    """

    default_config_dir = ""
    default_reload_command = ""
    version_command = ()

    def __init__(
        self,
        config_dir: str = "",
        reload_command: str = "",
        ssl_mode: str = SSLMode.LETSENCRYPT.value,
        ssl_lookup=None,
        webroot: str = "/var/www/certbot",
    ):
        self.config_dir = config_dir or self.default_config_dir
        self.reload_command = reload_command or self.default_reload_command
        self.ssl_mode = ssl_mode
        # SSLService, TLS启用但未传入证书路径时用来查找证书
        self.ssl_lookup = ssl_lookup
        self.webroot = webroot
        # 主域名 -> 被验证配置替换掉的站点配置内容
        self._replaced: Dict[str, str] = {}

    def config_path(self, domain: str) -> str:
        return os.path.join(self.config_dir, f"{domain}.conf")

    def needs_validation_config(self, request: DeployRequest) -> bool:
        """只有letsencrypt模式且启用SSL的站点需要验证配置"""
        return self.ssl_mode == SSLMode.LETSENCRYPT.value and request.ssl_enabled and bool(request.domain_mappings)

    def resolve_certificate(self, request: DeployRequest, cert_path: str, key_path: str) -> SSLInfo:
        """确定配置中使用的证书路径"""
        if cert_path and key_path:
            return SSLInfo(cert_path=cert_path, key_path=key_path)
        if not request.ssl_enabled:
            return SSLInfo()

        primary_domain = request.primary_domain
        found = self.ssl_lookup.find_certificates(primary_domain) if self.ssl_lookup else None
        if found is None:
            raise ProxyError(f"SSL enabled but certificate not found for {primary_domain}")
        return found

    async def write_config(self, path: str, content: str) -> None:
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            async with aiofiles.open(path, 'w') as f:
                await f.write(content)
        except OSError as e:
            raise ProxyError(f"failed to write proxy config {path}: {e}")

    async def stash_config(self, domain: str) -> None:
        """安装验证配置前记录现有的站点配置"""
        path = self.config_path(domain)
        try:
            async with aiofiles.open(path) as f:
                self._replaced[domain] = await f.read()
        except FileNotFoundError:
            self._replaced.pop(domain, None)
        except OSError as e:
            raise ProxyError(f"failed to read proxy config {path}: {e}")

    async def restore_config(self, domain: str) -> bool:
        """写回 stash_config 记录的配置, 没有记录时返回 False"""
        previous = self._replaced.pop(domain, None)
        if previous is None:
            return False
        await self.write_config(self.config_path(domain), previous)
        logger.info(f"[验证配置] 已恢复原站点配置: {domain}")
        return True

    def remove_file(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ProxyError(f"failed to remove proxy config {path}: {e}")

    async def run_reload_command(self) -> None:
        try:
            await run_command(self.reload_command)
        except ExternalToolError as e:
            raise ProxyError(f"{self.proxy_type.value} reload failed: {e.output}")

    async def get_info(self) -> ProxyInfo:
        version = ""
        if self.version_command:
            _, version = await run_command_with_status(list(self.version_command), check=False)
        try:
            count = len([name for name in os.listdir(self.config_dir) if name.endswith(".conf")])
        except OSError as e:
            raise ProxyError(f"failed to read {self.proxy_type.value} config dir: {e}")
        return ProxyInfo(
            type=self.proxy_type.value,
            version=version,
            routers_count=count,
            services_count=count,
        )
