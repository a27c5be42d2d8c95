import asyncio
import uuid

import pytest

from archon_node.core.exceptions import DeploymentCancelledError, StageError
from archon_node.pipeline.pipeline import Pipeline
from archon_node.pipeline.stage import Stage
from archon_node.pipeline.state import DeploymentState
from archon_node.schemas.deploy import DeployRequest

class RecordingStage(Stage):
    """记录执行和回滚顺序的测试阶段"""

    def __init__(self, name, calls, fail=False, rollback_error=False, on_execute=None):
        self.name = name
        self.calls = calls
        self.fail = fail
        self.rollback_error = rollback_error
        self.on_execute = on_execute

    async def execute(self, state):
        self.calls.append(("execute", self.name))
        if self.on_execute:
            self.on_execute()
        if self.fail:
            raise RuntimeError(f"{self.name} broke")

    async def rollback(self, state):
        self.calls.append(("rollback", self.name))
        if self.rollback_error:
            raise RuntimeError(f"{self.name} rollback broke")

def new_state(events=None):
    on_progress = None
    if events is not None:
        on_progress = lambda stage, event, message: events.append((stage, event))
    return DeploymentState(request=DeployRequest(id=uuid.uuid4(), name="demo"), data_dir="/tmp", on_progress=on_progress)

async def test_all_stages_run_in_order():
    """测试阶段按顺序执行"""
    calls = []
    pipeline = Pipeline([RecordingStage(name, calls) for name in ("a", "b", "c")])
    state = new_state()

    await pipeline.execute(state)

    assert calls == [("execute", "a"), ("execute", "b"), ("execute", "c")]
    assert state.completed_stages == ["a", "b", "c"]
    assert state.error is None

async def test_failure_rolls_back_completed_stages_in_reverse():
    """测试C失败时只回滚B和A, 且顺序相反"""
    calls = []
    pipeline = Pipeline([
        RecordingStage("a", calls),
        RecordingStage("b", calls),
        RecordingStage("c", calls, fail=True),
    ])
    state = new_state()

    with pytest.raises(StageError) as exc_info:
        await pipeline.execute(state)

    assert str(exc_info.value) == "stage c failed: c broke"
    assert exc_info.value.stage == "c"
    assert isinstance(exc_info.value.cause, RuntimeError)
    assert calls[3:] == [("rollback", "b"), ("rollback", "a")]
    assert ("rollback", "c") not in calls
    assert state.error is exc_info.value

async def test_rollback_error_does_not_stop_other_rollbacks():
    """测试回滚出错时继续回滚更早的阶段, 并保留原始错误"""
    calls = []
    pipeline = Pipeline([
        RecordingStage("a", calls),
        RecordingStage("b", calls, rollback_error=True),
        RecordingStage("c", calls, fail=True),
    ])

    with pytest.raises(StageError) as exc_info:
        await pipeline.execute(new_state())

    assert exc_info.value.stage == "c"
    assert calls[3:] == [("rollback", "b"), ("rollback", "a")]

async def test_first_stage_failure_has_nothing_to_roll_back():
    calls = []
    pipeline = Pipeline([RecordingStage("a", calls, fail=True), RecordingStage("b", calls)])

    with pytest.raises(StageError):
        await pipeline.execute(new_state())

    assert calls == [("execute", "a")]

async def test_cancellation_checked_between_stages():
    """测试在B完成后取消: C不执行, A和B被回滚"""
    calls = []
    cancel_event = asyncio.Event()
    pipeline = Pipeline([
        RecordingStage("a", calls),
        RecordingStage("b", calls, on_execute=cancel_event.set),
        RecordingStage("c", calls),
    ])
    state = new_state()

    with pytest.raises(DeploymentCancelledError) as exc_info:
        await pipeline.execute(state, cancel_event)

    assert exc_info.value.stage == "c"
    assert ("execute", "c") not in calls
    assert calls[2:] == [("rollback", "b"), ("rollback", "a")]

async def test_cancelled_before_start_runs_nothing():
    calls = []
    cancel_event = asyncio.Event()
    cancel_event.set()
    pipeline = Pipeline([RecordingStage("a", calls)])

    with pytest.raises(DeploymentCancelledError):
        await pipeline.execute(new_state(), cancel_event)

    assert calls == []

async def test_progress_events():
    """测试进度回调"""
    events = []
    pipeline = Pipeline([RecordingStage("a", []), RecordingStage("b", [], fail=True)])

    with pytest.raises(StageError):
        await pipeline.execute(new_state(events))

    assert events == [
        ("a", "started"),
        ("a", "completed"),
        ("b", "started"),
        ("b", "failed"),
        ("a", "rollback"),
    ]
