from pydantic import BaseModel, Field
from typing import List

class ComposePortsRequest(BaseModel):
    """Compose端口检测请求"""
    compose_content: str

class ComposePort(BaseModel):
    """检测到的端口"""
    service_name: str
    container_port: int
    host_port: int = 0
    protocol: str = "tcp"

class ComposePortsResponse(BaseModel):
    """Compose端口检测响应"""
    ports: List[ComposePort] = Field(default_factory=list)
    default_port: int = Field(default=0, description="第一个检测到的容器端口, 用于自动填充域名映射")
