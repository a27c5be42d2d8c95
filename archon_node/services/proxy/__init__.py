from archon_node.core.config import ProxyType, Settings
from archon_node.core.exceptions import ConfigurationError
from archon_node.services.proxy.apache import ApacheProxyManager
from archon_node.services.proxy.base import ProxyManager, TemplatedProxyManager
from archon_node.services.proxy.nginx import NginxProxyManager
from archon_node.services.proxy.traefik import TraefikProxyManager

__all__ = [
    "ApacheProxyManager",
    "NginxProxyManager",
    "ProxyManager",
    "TemplatedProxyManager",
    "TraefikProxyManager",
    "create_proxy_manager",
]


def create_proxy_manager(settings: Settings, ssl_lookup=None) -> ProxyManager:
    """按配置的代理类型创建管理器, 启动时调用一次"""
    try:
        proxy_type = ProxyType(settings.PROXY_TYPE)
    except ValueError:
        raise ConfigurationError(f"unsupported proxy type: {settings.PROXY_TYPE}")

    if proxy_type == ProxyType.TRAEFIK:
        return TraefikProxyManager(cert_resolver=settings.TRAEFIK_CERT_RESOLVER)

    manager_class = NginxProxyManager if proxy_type == ProxyType.NGINX else ApacheProxyManager
    return manager_class(
        config_dir=settings.PROXY_CONFIG_DIR,
        reload_command=settings.PROXY_RELOAD_COMMAND,
        ssl_mode=settings.SSL_MODE,
        ssl_lookup=ssl_lookup,
        webroot=settings.CERTBOT_WEBROOT,
    )
