import secrets

from fastapi import Header, HTTPException

from archon_node.core.config import settings
from archon_node.core.logger import setup_logger

logger = setup_logger(__name__)


async def verify_api_key(
    authorization: str = Header(None),
    x_api_key: str = Header(None),
) -> None:
    """
    API密钥检查

    未配置 API_KEY 时不做检查; 否则接受 Authorization: Bearer <key>
    或 X-API-Key: <key>。
    """
    if not settings.API_KEY:
        return

    provided = x_api_key or ""
    if authorization and authorization.startswith("Bearer "):
        provided = authorization[7:]

    if not provided or not secrets.compare_digest(provided, settings.API_KEY):
        logger.warning("API密钥验证失败")
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
