from pydantic import BaseModel
from typing import Optional, Dict

class DockerInfo(BaseModel):
    """Docker信息"""
    version: str = ""
    containers_running: int = 0
    images_count: int = 0

class ProxyInfo(BaseModel):
    """反向代理信息"""
    type: str
    version: str = ""
    routers_count: int = 0
    services_count: int = 0

class HealthCheck(BaseModel):
    """健康检查响应"""
    status: str
    docker: Optional[DockerInfo] = None
    proxy: Optional[ProxyInfo] = None
    system_info: Optional[Dict[str, float]] = None
    error: Optional[str] = None
