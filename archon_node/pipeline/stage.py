from archon_node.pipeline.state import DeploymentState


class Stage:
    """
    流水线阶段

    execute 完成后该阶段才会被记入 completed_stages;
    rollback 只对已完成的阶段调用, 需要可重复执行。
    """

    name = ""

    async def execute(self, state: DeploymentState) -> None:
        raise NotImplementedError

    async def rollback(self, state: DeploymentState) -> None:
        pass
