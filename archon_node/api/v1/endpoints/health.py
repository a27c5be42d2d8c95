from fastapi import APIRouter, Depends
import psutil

from archon_node.core.exceptions import ArchonError
from archon_node.core.logger import setup_logger
from archon_node.schemas.health import HealthCheck
from archon_node.services.deploy_service import DeployService, get_deploy_service

router = APIRouter()
logger = setup_logger(__name__)


@router.get("/health", response_model=HealthCheck)
async def health_check(service: DeployService = Depends(get_deploy_service)):
    """节点健康检查: Docker、反向代理和主机资源"""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage('/')
    system_info = {
        "cpu_percent": psutil.cpu_percent(),
        "memory_percent": memory.percent,
        "disk_percent": disk.percent,
    }

    try:
        docker_info = await service.docker_client.get_docker_info()
        proxy_info = await service.proxy_manager.get_info()
    except ArchonError as e:
        logger.error(f"健康检查失败: {e}")
        return HealthCheck(status="unhealthy", system_info=system_info, error=str(e))

    return HealthCheck(
        status="healthy",
        docker=docker_info,
        proxy=proxy_info,
        system_info=system_info,
    )
