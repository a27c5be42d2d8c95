from fastapi import APIRouter, HTTPException

from archon_node.core.logger import setup_logger
from archon_node.schemas.compose import ComposePort, ComposePortsRequest, ComposePortsResponse
from archon_node.utils.compose import ComposeParseError, get_first_port, parse_ports

router = APIRouter()
logger = setup_logger(__name__)


@router.post("/ports", response_model=ComposePortsResponse)
async def detect_ports(request: ComposePortsRequest):
    """
    检测Compose文件中暴露的端口

    default_port 为第一个检测到的容器端口, 用于自动填充域名映射的端口。
    """
    try:
        ports = parse_ports(request.compose_content)
    except ComposeParseError as e:
        logger.error(f"[端口检测] Compose解析失败: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return ComposePortsResponse(
        ports=[
            ComposePort(
                service_name=port.service_name,
                container_port=port.container_port,
                host_port=port.host_port,
                protocol=port.protocol,
            )
            for port in ports
        ],
        default_port=get_first_port(ports),
    )
