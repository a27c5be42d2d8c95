import os
from typing import List
from uuid import UUID

from archon_node.core.config import ProxyType
from archon_node.core.exceptions import ExternalToolError, ProxyError
from archon_node.core.logger import setup_logger
from archon_node.schemas.deploy import DeployRequest, DomainMapping
from archon_node.schemas.ssl import SSLInfo
from archon_node.services.proxy.base import TemplatedProxyManager
from archon_node.utils.shell import run_command

logger = setup_logger(__name__)

PROXY_LOCATION = """
    # 反向代理配置
    location / {
        proxy_pass http://127.0.0.1:%d;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;

        # WebSocket支持
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";

        # 超时设置
        proxy_connect_timeout 60s;
        proxy_send_timeout 60s;
        proxy_read_timeout 60s;
    }
"""

VALIDATION_SERVER = """
server {
    listen 80;
    listen [::]:80;
    server_name %s;

    # Let's Encrypt验证目录
    location /.well-known/acme-challenge/ {
        root %s;
        allow all;
    }
%s}
"""

HTTP_SERVER = """
server {
    listen 80;
    listen [::]:80;
    server_name %s;
%s
    access_log /var/log/nginx/%s_access.log;
    error_log /var/log/nginx/%s_error.log;
}
"""

HTTPS_SERVER = """
server {
    listen 443 ssl http2;
    listen [::]:443 ssl http2;
    server_name %s;

    # SSL配置
    ssl_certificate %s;
    ssl_certificate_key %s;
    ssl_protocols TLSv1.2 TLSv1.3;
    ssl_ciphers HIGH:!aNULL:!MD5;
    ssl_prefer_server_ciphers on;
    ssl_session_timeout 1d;
    ssl_session_cache shared:SSL:50m;

    add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;
    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-Content-Type-Options "nosniff" always;
%s
    access_log /var/log/nginx/%s_access.log;
    error_log /var/log/nginx/%s_error.log;
}
"""

REDIRECT_TO_HTTPS = """
    # 重定向到HTTPS
    return 301 https://$server_name$request_uri;
"""


class NginxProxyManager(TemplatedProxyManager):
    """Nginx站点配置管理"""

    proxy_type = ProxyType.NGINX
    default_config_dir = "/etc/nginx/sites-enabled"
    default_reload_command = "nginx -s reload"
    version_command = ("nginx", "-v")

    def validation_config_path(self, domain: str) -> str:
        return os.path.join(self.config_dir, f"{domain}-validation.conf")

    def render_validation_config(self, mappings: List[DomainMapping]) -> str:
        """只监听80端口的临时配置, 验证目录以外的请求照常转发"""
        return "".join(
            VALIDATION_SERVER % (mapping.domain, self.webroot, PROXY_LOCATION % mapping.effective_host_port)
            for mapping in mappings
        )

    def render_config(self, mappings: List[DomainMapping], ssl_enabled: bool, ssl_info: SSLInfo) -> str:
        """生成站点配置, 所有域名共用同一张SAN证书"""
        config = ""
        for mapping in mappings:
            location = PROXY_LOCATION % mapping.effective_host_port
            if ssl_enabled:
                config += HTTP_SERVER % (mapping.domain, REDIRECT_TO_HTTPS, mapping.domain, mapping.domain)
                config += HTTPS_SERVER % (
                    mapping.domain,
                    ssl_info.cert_path,
                    ssl_info.key_path,
                    location,
                    mapping.domain,
                    mapping.domain,
                )
            else:
                config += HTTP_SERVER % (mapping.domain, location, mapping.domain, mapping.domain)
        return config

    async def test_config(self) -> None:
        try:
            await run_command(["nginx", "-t"])
        except ExternalToolError as e:
            raise ProxyError(f"nginx config test failed: {e.output}")

    async def configure_for_validation(self, request: DeployRequest) -> None:
        if not self.needs_validation_config(request):
            logger.info(f"[验证配置] 跳过: {request.name} (ssl_mode={self.ssl_mode}, ssl={request.ssl_enabled})")
            return

        primary_domain = request.primary_domain
        # 旧的完整配置可能引用尚不存在的证书, 先移除; 申请失败时再恢复
        await self.stash_config(primary_domain)
        self.remove_file(self.config_path(primary_domain))

        config_path = self.validation_config_path(primary_domain)
        try:
            os.makedirs(self.webroot, exist_ok=True)
        except OSError as e:
            raise ProxyError(f"failed to create webroot {self.webroot}: {e}")
        await self.write_config(config_path, self.render_validation_config(request.domain_mappings))
        logger.info(f"[验证配置] 已写入: {config_path}")

    async def remove_validation_config(self, request: DeployRequest) -> None:
        primary_domain = request.primary_domain
        if not self.needs_validation_config(request):
            return
        self.remove_file(self.validation_config_path(primary_domain))
        await self.restore_config(primary_domain)

    async def configure(self, request: DeployRequest, cert_path: str = "", key_path: str = "") -> None:
        if not request.domain_mappings:
            raise ProxyError("no domain mappings to configure")

        primary_domain = request.primary_domain
        ssl_info = self.resolve_certificate(request, cert_path, key_path)
        self._replaced.pop(primary_domain, None)

        config_path = self.config_path(primary_domain)
        await self.write_config(
            config_path,
            self.render_config(request.domain_mappings, request.ssl_enabled, ssl_info),
        )
        self.remove_file(self.validation_config_path(primary_domain))

        try:
            await self.test_config()
        except ProxyError:
            logger.error(f"Nginx配置测试失败, 删除配置: {config_path}")
            self.remove_file(config_path)
            raise

        logger.info(f"[代理配置] Nginx站点配置完成: {config_path}")

    async def remove(self, site_id: UUID, domain: str) -> None:
        self._replaced.pop(domain, None)
        self.remove_file(self.config_path(domain))
        self.remove_file(self.validation_config_path(domain))
        logger.info(f"[代理配置] 已删除Nginx配置: {domain} (站点 {site_id})")

    async def reload(self) -> None:
        await self.test_config()
        await self.run_reload_command()
        logger.info("Nginx重新加载成功")
