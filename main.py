import asyncio
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from archon_node.api.v1 import api_router
from archon_node.api.v1.endpoints import health
from archon_node.core.config import settings
from archon_node.core.exceptions import ArchonError, ResourceNotFoundError, ValidationError
from archon_node.core.logger import setup_logger
from archon_node.services.deploy_service import get_deploy_service

logger = setup_logger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Archon node deployment agent",
    version="1.0.0"
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(health.router, tags=["健康检查"])
app.include_router(api_router, prefix=settings.API_V1_STR)


@app.exception_handler(ResourceNotFoundError)
async def not_found_handler(request: Request, exc: ResourceNotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(ArchonError)
async def archon_error_handler(request: Request, exc: ArchonError):
    logger.error(f"请求处理失败 {request.url.path}: {exc.message}")
    return JSONResponse(status_code=500, content={"detail": exc.message})


renewal_task: Optional[asyncio.Task] = None


async def renew_certificates():
    """续期证书"""
    try:
        result = await get_deploy_service().renew_certificates()
        logger.info(f"[证书续期] {result.message}")
    except ArchonError as e:
        logger.error(f"[证书续期] 失败: {e}")


# 定时续期证书
async def schedule_renewals(interval_hours: int):
    """定时执行证书续期"""
    while True:
        await asyncio.sleep(interval_hours * 3600)
        await renew_certificates()


@app.on_event("startup")
async def startup_event():
    """应用启动时的初始化"""
    global renewal_task

    # 确保必要目录存在
    os.makedirs(settings.DATA_DIR, exist_ok=True)
    if settings.LOG_DIR:
        os.makedirs(settings.LOG_DIR, exist_ok=True)

    try:
        await get_deploy_service().docker_client.ensure_network()
    except ArchonError as e:
        logger.error(f"初始化Docker网络失败: {e}")

    if settings.CERT_RENEW_INTERVAL_HOURS > 0:
        renewal_task = asyncio.create_task(schedule_renewals(settings.CERT_RENEW_INTERVAL_HOURS))

    logger.info(f"{settings.PROJECT_NAME} 已启动 (proxy={settings.PROXY_TYPE}, ssl={settings.SSL_MODE})")


@app.on_event("shutdown")
async def shutdown_event():
    if renewal_task is not None:
        renewal_task.cancel()


@app.get("/")
async def root():
    return {
        "message": f"{settings.PROJECT_NAME} is running",
        "docs_url": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
