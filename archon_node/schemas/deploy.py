from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from uuid import UUID

class SiteStatus(str, Enum):
    """站点状态"""
    INACTIVE = "inactive"
    DEPLOYING = "deploying"
    RUNNING = "running"
    FAILED = "failed"
    STOPPED = "stopped"

class SiteType(str, Enum):
    """站点类型"""
    CONTAINER = "container"
    COMPOSE = "compose"

class DomainMapping(BaseModel):
    """域名到容器端口的映射"""
    model_config = ConfigDict(frozen=True)

    domain: str
    port: int = Field(ge=1, le=65535, description="容器端口")
    host_port: Optional[int] = Field(default=None, ge=1, le=65535, description="主机端口, 默认与容器端口相同")

    @property
    def effective_host_port(self) -> int:
        return self.host_port or self.port

class DockerCredentials(BaseModel):
    """镜像仓库认证"""
    model_config = ConfigDict(frozen=True)

    username: str = ""
    password: str = ""

class DockerSpec(BaseModel):
    """容器镜像"""
    model_config = ConfigDict(frozen=True)

    image: str = ""
    credentials: DockerCredentials = Field(default_factory=DockerCredentials)

class ConfigFile(BaseModel):
    """挂载到容器中的配置文件"""
    model_config = ConfigDict(frozen=True)

    name: str
    content: str = ""
    container_path: str

class DeployRequest(BaseModel):
    """部署请求参数"""
    model_config = ConfigDict(frozen=True)

    id: UUID
    name: str = ""
    site_type: SiteType = SiteType.CONTAINER
    docker: DockerSpec = Field(default_factory=DockerSpec)
    compose_content: str = Field(default="", description="Docker Compose YAML内容")
    environment_vars: Dict[str, str] = Field(default_factory=dict)
    domain_mappings: List[DomainMapping] = Field(default_factory=list)
    ssl_enabled: bool = False
    ssl_email: Optional[str] = None
    ssl_cert: Optional[str] = Field(default=None, description="Base64编码的证书(manual模式)")
    ssl_key: Optional[str] = Field(default=None, description="Base64编码的私钥(manual模式)")
    config_files: List[ConfigFile] = Field(default_factory=list)
    traefik_labels: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_compose(self) -> bool:
        return self.site_type == SiteType.COMPOSE

    @property
    def primary_domain(self) -> Optional[str]:
        if not self.domain_mappings:
            return None
        return self.domain_mappings[0].domain

    @property
    def domains(self) -> List[str]:
        return [mapping.domain for mapping in self.domain_mappings]

    @property
    def resource_name(self) -> str:
        """容器名 / Compose项目名"""
        return f"archon-{self.name}"

class DeployResponse(BaseModel):
    """部署响应"""
    site_id: UUID
    status: SiteStatus
    container_id: str = ""
    message: str = ""

class SiteStatusResponse(BaseModel):
    """站点状态响应"""
    site_id: UUID
    status: SiteStatus
    site_type: Optional[SiteType] = None
    container_id: str = ""
    is_running: bool = False
    message: str = ""

class LogsResponse(BaseModel):
    """日志响应"""
    site_id: UUID
    logs: List[str] = Field(default_factory=list)

class MessageResponse(BaseModel):
    """通用操作响应"""
    success: bool = True
    message: str
