"""
Docker Compose端口解析

只解释 services.<name>.ports, 支持短格式和长格式:
- 3000
- "8000:8000"
- "127.0.0.1:8001:8001"
- "6060:6060/udp"
- "9090-9091:8080-8081" (取范围的第一个端口)
- {target: 80, published: 8080, protocol: udp}
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import re

import yaml

from archon_node.core.logger import setup_logger

logger = setup_logger(__name__)

BOOL_TAG = "tag:yaml.org,2002:bool"
INT_TAG = "tag:yaml.org,2002:int"
FLOAT_TAG = "tag:yaml.org,2002:float"


class ComposeLoader(yaml.SafeLoader):
    """
    按 YAML 1.2 core schema 识别标量, 与 docker compose 的解析结果一致

    53:53 是字符串而不是六十进制整数, yes/no/on/off 是字符串而不是布尔值。
    """


ComposeLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag not in (BOOL_TAG, INT_TAG, FLOAT_TAG)]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
ComposeLoader.add_implicit_resolver(
    BOOL_TAG,
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)
ComposeLoader.add_implicit_resolver(
    INT_TAG,
    re.compile(r"^(?:[-+]?(?:0|[1-9][0-9]*)|0o[0-7]+|0x[0-9a-fA-F]+)$"),
    list("-+0123456789"),
)
ComposeLoader.add_implicit_resolver(
    FLOAT_TAG,
    re.compile(r"""^(?:[-+]?(?:\.[0-9]+|[0-9]+\.[0-9]*)(?:[eE][-+]?[0-9]+)?
                |[-+]?[0-9]+[eE][-+]?[0-9]+
                |[-+]?\.(?:inf|Inf|INF)
                |\.(?:nan|NaN|NAN))$""", re.X),
    list("-+0123456789."),
)


class ComposeParseError(Exception):
    """Compose文件无法解析"""
    pass


@dataclass
class DetectedPort:
    """Compose中声明的端口"""
    service_name: str
    container_port: int
    host_port: int = 0
    protocol: str = "tcp"


def load_compose(content: str) -> Dict[str, Any]:
    """解析Compose YAML并检查基本结构"""
    try:
        data = yaml.load(content, Loader=ComposeLoader)
    except yaml.YAMLError as e:
        raise ComposeParseError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ComposeParseError("Compose file must be a YAML object")

    if 'services' not in data:
        raise ComposeParseError("Missing 'services' field")

    if data['services'] is not None and not isinstance(data['services'], dict):
        raise ComposeParseError("'services' must be a mapping")

    return data


def parse_ports(content: str) -> List[DetectedPort]:
    """
    提取Compose文档中暴露的端口

    单个格式错误的端口会被跳过; 文档结构错误时抛出 ComposeParseError。
    服务按文档中的顺序遍历。
    """
    data = load_compose(content)
    ports = []

    for service_name, service in (data['services'] or {}).items():
        if not isinstance(service, dict):
            continue
        for port_def in service.get('ports') or []:
            try:
                detected = parse_port_definition(str(service_name), port_def)
            except ValueError as e:
                logger.warning(f"跳过服务 {service_name} 的端口定义 {port_def!r}: {e}")
                continue
            ports.append(detected)

    return ports


def parse_port_definition(service_name: str, port_def: Any) -> DetectedPort:
    """解析单个端口定义(字符串 / 整数 / 长格式映射)"""
    if isinstance(port_def, bool):
        raise ValueError(f"unknown port definition type: {type(port_def).__name__}")
    if isinstance(port_def, int):
        return DetectedPort(service_name, _check_range(port_def))
    if isinstance(port_def, str):
        return _parse_short_form(service_name, port_def)
    if isinstance(port_def, dict):
        return _parse_long_form(service_name, port_def)
    raise ValueError(f"unknown port definition type: {type(port_def).__name__}")


def _parse_short_form(service_name: str, port_str: str) -> DetectedPort:
    detected = DetectedPort(service_name, 0)

    port_str = port_str.strip()
    if port_str.endswith("/udp"):
        detected.protocol = "udp"
        port_str = port_str[:-len("/udp")]
    elif port_str.endswith("/tcp"):
        port_str = port_str[:-len("/tcp")]

    parts = port_str.split(":")
    host_part: Optional[str] = None
    if len(parts) == 1:
        container_part = parts[0]
    elif len(parts) == 2:
        host_part, container_part = parts
    elif len(parts) == 3:
        # IP:HOST:CONTAINER
        _, host_part, container_part = parts
    else:
        raise ValueError(f"invalid port format: {port_str}")

    detected.container_port = parse_port_number(container_part)

    if host_part:
        # 主机端口无效时仍保留容器端口
        try:
            detected.host_port = parse_port_number(host_part)
        except ValueError:
            detected.host_port = 0

    return detected


def _parse_long_form(service_name: str, port_map: Dict[str, Any]) -> DetectedPort:
    if 'target' not in port_map:
        raise ValueError("long form port missing 'target' field")

    detected = DetectedPort(service_name, _coerce_port(port_map['target']))

    published = port_map.get('published')
    if published is not None:
        try:
            detected.host_port = _coerce_port(published)
        except ValueError:
            detected.host_port = 0

    protocol = port_map.get('protocol')
    if isinstance(protocol, str) and protocol:
        detected.protocol = protocol.lower()

    return detected


def _coerce_port(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"invalid port type: {type(value).__name__}")
    if isinstance(value, int):
        return _check_range(value)
    if isinstance(value, str):
        return parse_port_number(value)
    raise ValueError(f"invalid port type: {type(value).__name__}")


def parse_port_number(value: str) -> int:
    """解析端口号, 范围取第一个端口"""
    value = value.strip()
    idx = value.find("-")
    if idx > 0:
        value = value[:idx]
    try:
        port = int(value)
    except ValueError:
        raise ValueError(f"not a valid port number: {value}")
    return _check_range(port)


def _check_range(port: int) -> int:
    if port < 1 or port > 65535:
        raise ValueError(f"port out of range: {port}")
    return port


def get_first_port(ports: Optional[List[DetectedPort]]) -> int:
    """第一个检测到的容器端口, 没有时返回0"""
    if not ports:
        return 0
    return ports[0].container_port


def match_services(content: str, mappings) -> Dict[str, List[int]]:
    """
    把域名映射分配到暴露对应端口的服务

    映射的容器端口或主机端口与服务声明的端口一致即匹配;
    找不到时分配给第一个服务。

    Returns:
        服务名 -> 域名映射下标列表
    """
    data = load_compose(content)
    service_names = [str(name) for name in (data['services'] or {})]
    if not service_names:
        return {}

    detected = parse_ports(content)
    assigned: Dict[str, List[int]] = {}
    for index, mapping in enumerate(mappings):
        target = service_names[0]
        for port in detected:
            if port.container_port == mapping.port or (port.host_port and port.host_port == mapping.effective_host_port):
                target = port.service_name
                break
        assigned.setdefault(target, []).append(index)
    return assigned


def build_label_override(
    content: str,
    common_labels: Dict[str, str],
    service_labels: Optional[Dict[str, Dict[str, str]]] = None,
) -> str:
    """
    生成只包含标签的Compose覆盖文件

    用户的Compose文件原样保留, 覆盖文件作为第二个 -f 传给 docker compose,
    标签按键合并到服务原有的标签上(列表和映射写法都可以)。
    common_labels 写入每个服务, service_labels 只写入对应服务。
    """
    data = load_compose(content)
    services = {}
    for name, service in (data['services'] or {}).items():
        if not isinstance(service, dict):
            continue
        labels = dict(common_labels)
        labels.update((service_labels or {}).get(str(name), {}))
        services[str(name)] = {'labels': labels}
    return yaml.safe_dump({'services': services}, sort_keys=False, default_flow_style=False)
