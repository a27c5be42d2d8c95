from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from archon_node.core.logger import setup_logger
from archon_node.schemas.deploy import (
    DeployRequest,
    DeployResponse,
    LogsResponse,
    MessageResponse,
    SiteStatusResponse,
)
from archon_node.services.deploy_service import DeployService, get_deploy_service

router = APIRouter()
logger = setup_logger(__name__)


@router.post("/deploy", response_model=DeployResponse)
async def deploy_site(request: DeployRequest, service: DeployService = Depends(get_deploy_service)):
    """
    部署站点(单容器或Compose)

    请求示例:    ```json
    {
        "id": "7c9e6679-7425-40de-944b-e07fc1f90ae7",
        "name": "demo",
        "site_type": "container",
        "docker": {"image": "nginx:alpine"},
        "domain_mappings": [{"domain": "demo.example.com", "port": 80, "host_port": 8080}],
        "ssl_enabled": true,
        "ssl_email": "admin@example.com"
    }    ```

    阶段失败时返回 status=failed, message 为失败阶段的错误。
    """
    logger.info(f"[部署站点] 接收到请求 - 站点: {request.name}, 类型: {request.site_type.value}, "
                f"域名: {', '.join(request.domains)}, SSL: {request.ssl_enabled}")
    return await service.deploy_site(request)


@router.get("/{site_id}/status", response_model=SiteStatusResponse)
async def get_site_status(site_id: UUID, service: DeployService = Depends(get_deploy_service)):
    """站点运行状态"""
    return await service.get_site_status(site_id)


@router.post("/{site_id}/stop", response_model=MessageResponse)
async def stop_site(site_id: UUID, service: DeployService = Depends(get_deploy_service)):
    logger.info(f"[停止站点] 接收到请求 - 站点: {site_id}")
    return await service.stop_site(site_id)


@router.post("/{site_id}/restart", response_model=MessageResponse)
async def restart_site(site_id: UUID, service: DeployService = Depends(get_deploy_service)):
    logger.info(f"[重启站点] 接收到请求 - 站点: {site_id}")
    return await service.restart_site(site_id)


@router.delete("/{site_id}", response_model=MessageResponse)
async def delete_site(
    site_id: UUID,
    domain: Optional[str] = Query(None, description="主域名, 用于删除代理配置"),
    service: DeployService = Depends(get_deploy_service),
):
    """
    删除站点

    请求示例:
    DELETE /api/v1/sites/7c9e6679-7425-40de-944b-e07fc1f90ae7?domain=demo.example.com
    """
    logger.info(f"[删除站点] 接收到请求 - 站点: {site_id}, 域名: {domain}")
    return await service.delete_site(site_id, domain)


@router.get("/{site_id}/logs", response_model=LogsResponse)
async def get_site_logs(
    site_id: UUID,
    lines: int = Query(100, ge=1, le=10000),
    service: DeployService = Depends(get_deploy_service),
):
    return await service.get_site_logs(site_id, lines)
