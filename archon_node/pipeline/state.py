from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from archon_node.schemas.deploy import DeployRequest, DeployResponse

# (阶段名, 事件, 说明)
ProgressCallback = Callable[[str, str, str], None]


@dataclass
class DeploymentState:
    """
    单次部署尝试的状态

    在各阶段之间传递, 部署结束后丢弃, 不会复用。
    completed_stages 决定回滚哪些阶段。
    """
    request: DeployRequest
    data_dir: str
    current_stage: str = ""
    completed_stages: List[str] = field(default_factory=list)

    # 阶段产出
    cert_path: str = ""
    key_path: str = ""
    container_id: str = ""
    project_name: str = ""

    response: Optional[DeployResponse] = None
    error: Optional[BaseException] = None
    started_at: datetime = field(default_factory=datetime.now)
    on_progress: Optional[ProgressCallback] = None

    def emit_progress(self, stage: str, event: str, message: str = "") -> None:
        if self.on_progress is not None:
            self.on_progress(stage, event, message)
