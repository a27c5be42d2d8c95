import pytest
import yaml

from archon_node.schemas.deploy import DomainMapping
from archon_node.utils.compose import (
    ComposeParseError,
    DetectedPort,
    build_label_override,
    get_first_port,
    load_compose,
    match_services,
    parse_port_number,
    parse_ports,
)


def test_short_form_host_and_container():
    """测试 "8080:80" 格式"""
    ports = parse_ports('services:\n  web:\n    ports: ["8080:80"]\n')
    assert ports == [DetectedPort("web", 80, 8080, "tcp")]


def test_short_form_udp_suffix():
    ports = parse_ports('services:\n  dns:\n    ports: ["6060:6060/udp"]\n')
    assert len(ports) == 1
    assert ports[0].protocol == "udp"
    assert ports[0].container_port == 6060
    assert ports[0].host_port == 6060


def test_long_form_matches_short_form():
    """测试长格式与短格式UDP结果一致"""
    content = """
services:
  web:
    ports:
      - target: 80
        published: 8080
        protocol: udp
"""
    ports = parse_ports(content)
    assert ports == [DetectedPort("web", 80, 8080, "udp")]


@pytest.mark.parametrize("port_def,expected", [
    ('"3000"', DetectedPort("app", 3000, 0, "tcp")),
    ("3000", DetectedPort("app", 3000, 0, "tcp")),
    ('"127.0.0.1:8001:8001"', DetectedPort("app", 8001, 8001, "tcp")),
    ('"9090-9091:8080-8081"', DetectedPort("app", 8080, 9090, "tcp")),
    ('"8443:443/tcp"', DetectedPort("app", 443, 8443, "tcp")),
])
def test_short_form_variants(port_def, expected):
    ports = parse_ports(f"services:\n  app:\n    ports:\n      - {port_def}\n")
    assert ports == [expected]


def test_missing_services_is_error():
    with pytest.raises(ComposeParseError):
        parse_ports("version: '3'\n")


@pytest.mark.parametrize("content", [
    "services: [1, 2",
    "- just\n- a list\n",
    "services:\n  - web\n",
])
def test_invalid_documents(content):
    with pytest.raises(ComposeParseError):
        parse_ports(content)


def test_empty_ports_list():
    assert parse_ports("services:\n  web:\n    image: nginx\n    ports: []\n") == []


def test_malformed_entries_are_skipped():
    """测试单个格式错误的端口被跳过"""
    content = """
services:
  web:
    ports:
      - "abc"
      - "1:2:3:4"
      - "70000"
      - {published: 80}
      - true
      - "8080:80"
"""
    assert parse_ports(content) == [DetectedPort("web", 80, 8080, "tcp")]


def test_services_iterate_in_document_order():
    content = """
services:
  zeta:
    ports: ["9000"]
  alpha:
    ports: ["3000"]
"""
    ports = parse_ports(content)
    assert [p.service_name for p in ports] == ["zeta", "alpha"]
    assert get_first_port(ports) == 9000


def test_first_port_of_empty_list():
    assert get_first_port([]) == 0
    assert get_first_port(None) == 0


def test_parse_port_number_range():
    assert parse_port_number(" 5000-5010 ") == 5000
    with pytest.raises(ValueError):
        parse_port_number("0")


def test_match_services_by_port(compose_content):
    mappings = [
        DomainMapping(domain="web.example.com", port=80, host_port=8080),
        DomainMapping(domain="other.example.com", port=5432),
    ]
    # 5432 没有服务声明, 分配给第一个服务
    assert match_services(compose_content, mappings) == {"web": [0, 1]}


def test_unquoted_short_port_is_not_sexagesimal():
    """测试未加引号的 53:53 按端口映射解析"""
    content = """
services:
  dns:
    image: coredns/coredns
    ports:
      - 53:53
      - 8053:53/udp
"""
    assert parse_ports(content) == [
        DetectedPort("dns", 53, 53, "tcp"),
        DetectedPort("dns", 53, 8053, "udp"),
    ]


@pytest.mark.parametrize("value,expected", [
    ("yes", "yes"),
    ("off", "off"),
    ("true", True),
    ("8080", 8080),
    ("0755", "0755"),
    ("1.5", 1.5),
])
def test_scalars_follow_compose_rules(value, expected):
    data = load_compose(f"services:\n  web:\n    environment:\n      DEBUG: {value}\n")
    assert data["services"]["web"]["environment"]["DEBUG"] == expected


def test_label_override_only_contains_labels():
    """测试覆盖文件只包含标签, 不改动原服务定义"""
    content = """
services:
  web:
    image: nginx
    environment:
      DEBUG: yes
    ports:
      - 53:53
    labels:
      - "com.example.team=infra"
  worker:
    image: busybox
"""
    result = yaml.safe_load(build_label_override(content, {"managed-by": "archon"}, {"web": {"traefik.enable": "true"}}))

    assert result == {
        "services": {
            "web": {"labels": {"managed-by": "archon", "traefik.enable": "true"}},
            "worker": {"labels": {"managed-by": "archon"}},
        }
    }
