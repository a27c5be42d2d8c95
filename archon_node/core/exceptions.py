from typing import Optional

class ArchonError(Exception):
    """节点通用错误"""
    def __init__(self, message: str = "节点操作失败"):
        self.message = message
        super().__init__(self.message)

class ConfigurationError(ArchonError):
    """启动配置错误"""
    pass

class ValidationError(ArchonError):
    """部署请求不合法"""
    pass

class ConflictError(ArchonError):
    """端口已被其他站点占用"""
    pass

class ResourceNotFoundError(ArchonError):
    """容器或Compose项目不存在"""
    pass

class ExternalToolError(ArchonError):
    """外部命令(certbot / docker compose / nginx等)执行失败"""
    def __init__(self, command: str, output: str = "", returncode: Optional[int] = None):
        self.command = command
        self.output = output
        self.returncode = returncode
        message = f"命令执行失败 ({command}): {output}" if output else f"命令执行失败 ({command})"
        super().__init__(message)

class DNSPropagationTimeoutError(ArchonError, TimeoutError):
    """域名DNS解析等待超时"""
    def __init__(self, domain: str, timeout: float):
        self.domain = domain
        self.timeout = timeout
        super().__init__(f"DNS propagation timeout for {domain} after {timeout:g}s")

class CertificateError(ArchonError):
    """SSL证书相关错误"""
    pass

class ProxyError(ArchonError):
    """反向代理配置错误"""
    pass

class ContainerError(ArchonError):
    """容器操作错误"""
    pass

class StageError(ArchonError):
    """流水线阶段失败, 保留原始异常"""
    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"stage {stage} failed: {cause}")

class DeploymentCancelledError(ArchonError):
    """部署在阶段之间被取消"""
    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"deployment cancelled before stage {stage}")
