from typing import List
from uuid import UUID

from archon_node.core.config import ProxyType
from archon_node.core.exceptions import ProxyError
from archon_node.core.logger import setup_logger
from archon_node.schemas.deploy import DeployRequest, DomainMapping
from archon_node.schemas.ssl import SSLInfo
from archon_node.services.proxy.base import TemplatedProxyManager
from archon_node.utils.shell import run_command_with_status

logger = setup_logger(__name__)

SYNTAX_OK = "Syntax OK"

PROXY_BLOCK = """
    # 反向代理配置
    ProxyPreserveHost On
    ProxyPass / http://127.0.0.1:%(port)d/
    ProxyPassReverse / http://127.0.0.1:%(port)d/

    # WebSocket支持
    RewriteEngine On
    RewriteCond %%{HTTP:Upgrade} =websocket [NC]
    RewriteRule /(.*)           ws://127.0.0.1:%(port)d/$1 [P,L]

    RequestHeader set X-Forwarded-Proto "%(scheme)s"
    RequestHeader set X-Forwarded-Port "%(listen)d"
"""

REDIRECT_BLOCK = """
    # 重定向到HTTPS
    RewriteEngine On
    RewriteCond %{HTTPS} off
    RewriteRule ^ https://%{HTTP_HOST}%{REQUEST_URI} [R=301,L]
"""

HTTP_VHOST = """
<VirtualHost *:80>
    ServerName %(domain)s
%(body)s
    ErrorLog ${APACHE_LOG_DIR}/%(domain)s_error.log
    CustomLog ${APACHE_LOG_DIR}/%(domain)s_access.log combined
</VirtualHost>
"""

HTTPS_VHOST = """
<VirtualHost *:443>
    ServerName %(domain)s

    # SSL配置
    SSLEngine on
    SSLCertificateFile %(cert_path)s
    SSLCertificateKeyFile %(key_path)s
    SSLProtocol all -SSLv3 -TLSv1 -TLSv1.1
    SSLCipherSuite HIGH:!aNULL:!MD5
    SSLHonorCipherOrder on

    Header always set Strict-Transport-Security "max-age=31536000; includeSubDomains"
    Header always set X-Frame-Options "SAMEORIGIN"
    Header always set X-Content-Type-Options "nosniff"
%(body)s
    ErrorLog ${APACHE_LOG_DIR}/%(domain)s_error.log
    CustomLog ${APACHE_LOG_DIR}/%(domain)s_access.log combined
</VirtualHost>
"""


def configtest_passed(returncode: int, output: str) -> bool:
    """
    apache2ctl configtest 在配置正确时也可能返回非0(例如只有警告),
    此时以输出最后一行是否为 Syntax OK 为准。
    """
    if returncode == 0:
        return True
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    return bool(lines) and lines[-1] == SYNTAX_OK


class ApacheProxyManager(TemplatedProxyManager):
    """Apache站点配置管理"""

    proxy_type = ProxyType.APACHE
    default_config_dir = "/etc/apache2/sites-available"
    default_reload_command = "systemctl reload apache2"
    version_command = ("apache2", "-v")

    def _proxy_block(self, port: int, scheme: str, listen: int) -> str:
        return PROXY_BLOCK % {"port": port, "scheme": scheme, "listen": listen}

    def render_validation_config(self, mappings: List[DomainMapping]) -> str:
        # certbot的apache插件会自行加入验证路径
        return "".join(
            HTTP_VHOST % {
                "domain": mapping.domain,
                "body": self._proxy_block(mapping.effective_host_port, "http", 80),
            }
            for mapping in mappings
        )

    def render_config(self, mappings: List[DomainMapping], ssl_enabled: bool, ssl_info: SSLInfo) -> str:
        config = ""
        for mapping in mappings:
            port = mapping.effective_host_port
            if not ssl_enabled:
                config += HTTP_VHOST % {"domain": mapping.domain, "body": self._proxy_block(port, "http", 80)}
                continue
            config += HTTP_VHOST % {"domain": mapping.domain, "body": REDIRECT_BLOCK}
            config += HTTPS_VHOST % {
                "domain": mapping.domain,
                "cert_path": ssl_info.cert_path,
                "key_path": ssl_info.key_path,
                "body": self._proxy_block(port, "https", 443),
            }
        return config

    async def test_config(self) -> None:
        returncode, output = await run_command_with_status(["apache2ctl", "configtest"], check=False)
        if not configtest_passed(returncode, output):
            raise ProxyError(f"apache config test failed: {output}")

    async def enable_site(self, filename: str) -> None:
        returncode, output = await run_command_with_status(["a2ensite", filename], check=False)
        if returncode != 0:
            raise ProxyError(f"failed to enable apache site: {output}")
        logger.info(f"Apache站点已启用: {filename}")

    async def _install(self, request: DeployRequest, content: str) -> str:
        """写入配置, 检查语法并启用站点"""
        filename = f"{request.primary_domain}.conf"
        config_path = self.config_path(request.primary_domain)
        await self.write_config(config_path, content)
        try:
            await self.test_config()
        except ProxyError:
            logger.error(f"Apache配置测试失败, 删除配置: {config_path}")
            self.remove_file(config_path)
            raise
        await self.enable_site(filename)
        await self.run_reload_command()
        return config_path

    async def configure_for_validation(self, request: DeployRequest) -> None:
        if not self.needs_validation_config(request):
            logger.info(f"[验证配置] 跳过: {request.name} (ssl_mode={self.ssl_mode}, ssl={request.ssl_enabled})")
            return
        await self.stash_config(request.primary_domain)
        config_path = await self._install(request, self.render_validation_config(request.domain_mappings))
        logger.info(f"[验证配置] 已写入: {config_path}")

    async def remove_validation_config(self, request: DeployRequest) -> None:
        primary_domain = request.primary_domain
        if not self.needs_validation_config(request):
            return
        # 验证配置直接占用站点配置文件, 之前没有站点配置时整个删除
        if not await self.restore_config(primary_domain):
            await self.remove(request.id, primary_domain)

    async def configure(self, request: DeployRequest, cert_path: str = "", key_path: str = "") -> None:
        if not request.domain_mappings:
            raise ProxyError("no domain mappings to configure")
        self._replaced.pop(request.primary_domain, None)
        ssl_info = self.resolve_certificate(request, cert_path, key_path)
        content = self.render_config(request.domain_mappings, request.ssl_enabled, ssl_info)
        config_path = await self._install(request, content)
        logger.info(f"[代理配置] Apache站点配置完成: {config_path}")

    async def remove(self, site_id: UUID, domain: str) -> None:
        filename = f"{domain}.conf"
        returncode, output = await run_command_with_status(["a2dissite", filename], check=False)
        if returncode != 0:
            logger.warning(f"a2dissite {filename} 失败(忽略): {output}")
        self._replaced.pop(domain, None)
        self.remove_file(self.config_path(domain))
        logger.info(f"[代理配置] 已删除Apache配置: {domain} (站点 {site_id})")

    async def reload(self) -> None:
        await self.run_reload_command()
        logger.info("Apache重新加载成功")

