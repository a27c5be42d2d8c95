from fastapi import APIRouter, Depends

from archon_node.core.logger import setup_logger
from archon_node.schemas.ssl import SSLResponse
from archon_node.services.deploy_service import DeployService, get_deploy_service

router = APIRouter()
logger = setup_logger(__name__)


@router.post("/renew", response_model=SSLResponse)
async def renew_certificates(service: DeployService = Depends(get_deploy_service)):
    """
    续期所有Let's Encrypt证书

    成功响应示例:    ```json
    {
        "success": true,
        "message": "Certificates renewed",
        "data": {"output": "No renewals were attempted."}
    }    ```
    """
    logger.info("[证书续期] 接收到请求")
    result = await service.renew_certificates()
    return SSLResponse(
        success=True,
        message="Certificates renewed",
        data={"output": result.message},
    )
