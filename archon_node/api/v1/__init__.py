from fastapi import APIRouter, Depends
from archon_node.api.deps import verify_api_key
from archon_node.api.v1.endpoints import compose, deploy, ssl

api_router = APIRouter(dependencies=[Depends(verify_api_key)])

# 注册路由
api_router.include_router(deploy.router, prefix="/sites", tags=["站点部署"])
api_router.include_router(ssl.router, prefix="/ssl", tags=["SSL证书"])
api_router.include_router(compose.router, prefix="/compose", tags=["Compose"])
