"""
部署流水线执行器

按顺序执行各阶段; 任一阶段失败时, 按相反顺序回滚已经完成的阶段。
回滚是尽力而为的: 回滚出错只记录日志, 不会中断其余回滚, 也不会替换原始错误。
"""

import asyncio
from typing import Dict, List, Optional

from archon_node.core.exceptions import DeploymentCancelledError, StageError
from archon_node.core.logger import setup_logger
from archon_node.pipeline.stage import Stage
from archon_node.pipeline.state import DeploymentState

logger = setup_logger(__name__)


class Pipeline:
    """有序、可回滚的阶段序列"""

    def __init__(self, stages: List[Stage]):
        self.stages = list(stages)
        self._by_name: Dict[str, Stage] = {stage.name: stage for stage in self.stages}

    async def execute(self, state: DeploymentState, cancel_event: Optional[asyncio.Event] = None) -> None:
        """
        执行全部阶段

        Raises:
            StageError: 阶段失败(已回滚完成的阶段), 消息为 stage <name> failed: <cause>
            DeploymentCancelledError: 在阶段之间收到取消信号(已回滚完成的阶段)
        """
        site = state.request.name
        for stage in self.stages:
            # 只在阶段边界检查取消, 正在执行的外部命令不会被中断
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"[部署流水线] {site} 在阶段 {stage.name} 之前被取消")
                error = DeploymentCancelledError(stage.name)
                state.error = error
                await self.rollback(state)
                raise error

            state.current_stage = stage.name
            state.emit_progress(stage.name, "started")
            logger.info(f"[部署流水线] {site} 开始阶段: {stage.name}")

            try:
                await stage.execute(state)
            except Exception as e:
                error = StageError(stage.name, e)
                state.error = error
                state.emit_progress(stage.name, "failed", str(e))
                logger.error(f"[部署流水线] {site} {error}")
                await self.rollback(state)
                raise error from e

            state.completed_stages.append(stage.name)
            state.emit_progress(stage.name, "completed")
            logger.info(f"[部署流水线] {site} 完成阶段: {stage.name}")

    async def rollback(self, state: DeploymentState) -> None:
        """按相反顺序回滚已完成的阶段"""
        for name in reversed(state.completed_stages):
            stage = self._by_name.get(name)
            if stage is None:
                continue
            logger.info(f"[ROLLBACK] 回滚阶段: {name}")
            state.emit_progress(name, "rollback")
            try:
                await stage.rollback(state)
            except Exception as e:
                logger.error(f"[ROLLBACK] 阶段 {name} 回滚失败(忽略): {e}")
