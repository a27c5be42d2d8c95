from archon_node.core.exceptions import ValidationError
from archon_node.pipeline.stage import Stage
from archon_node.pipeline.state import DeploymentState


class ValidationStage(Stage):
    """检查部署请求, 不产生任何副作用"""

    name = "validation"

    async def execute(self, state: DeploymentState) -> None:
        request = state.request

        if not request.name.strip():
            raise ValidationError("site name is required")

        if not request.domain_mappings:
            raise ValidationError("at least one domain mapping is required")

        if request.is_compose:
            if not request.compose_content.strip():
                raise ValidationError("compose content is required for compose deployments")
        elif not request.docker.image.strip():
            raise ValidationError("docker image is required for container deployments")
