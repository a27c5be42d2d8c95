from enum import Enum
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class ProxyType(str, Enum):
    """反向代理类型"""
    NGINX = "nginx"
    APACHE = "apache"
    TRAEFIK = "traefik"

class SSLMode(str, Enum):
    """证书模式"""
    MANUAL = "manual"              # 用户提供证书和私钥
    LETSENCRYPT = "letsencrypt"    # certbot自动申请
    TRAEFIK_AUTO = "traefik-auto"  # 由Traefik自行处理

class Settings(BaseSettings):
    """节点配置"""

    # 项目信息
    PROJECT_NAME: str = "Archon Node"
    API_V1_STR: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    API_KEY: str = ""

    # 路径配置
    DATA_DIR: str = "/var/lib/archon"
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"

    # 反向代理配置 (nginx / apache / traefik)
    PROXY_TYPE: str = "nginx"
    PROXY_CONFIG_DIR: str = ""        # 为空时使用各代理的默认目录
    PROXY_RELOAD_COMMAND: str = ""    # 为空时使用各代理的默认命令
    TRAEFIK_CERT_RESOLVER: str = "letsencrypt"

    # Docker配置
    DOCKER_HOST: str = "unix:///var/run/docker.sock"
    DOCKER_NETWORK: str = "archon-net"

    # SSL配置 (manual / letsencrypt / traefik-auto)
    SSL_MODE: str = "letsencrypt"
    SSL_CERT_DIR: str = "/etc/archon/ssl"
    SSL_EMAIL: str = ""
    LETSENCRYPT_LIVE_DIR: str = "/etc/letsencrypt/live"
    LETSENCRYPT_STAGING: bool = False
    CERTBOT_WEBROOT: str = "/var/www/certbot"
    CERT_RENEW_INTERVAL_HOURS: int = 12

    # CORS配置
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_prefix="ARCHON_",
        env_file=".env",
        extra="ignore",
    )

# 创建设置实例
settings = Settings()
