"""Content-drafting collaborator.

Writing the actual requirements, design and test prose is external. A
drafter returns a body for an artifact path, or None to keep the template.
"""

from abc import abstractmethod
from typing import Any

from schemas.workflow_state import ArtifactSpec, StageId

from .base import BaseTool, ToolResult


class ContentDrafter(BaseTool):
    """Fills artifact bodies given stage context."""

    name = "drafter"
    description = "Draft artifact content"

    def execute(
        self,
        stage: StageId = StageId.PRD,
        spec: ArtifactSpec | None = None,
        feature_name: str = "",
        **kwargs: Any,
    ) -> ToolResult:
        if spec is None:
            return ToolResult.failed("No artifact spec given")
        return ToolResult.ok(self.draft(stage, spec, feature_name))

    @abstractmethod
    def draft(self, stage: StageId, spec: ArtifactSpec, feature_name: str) -> str | None:
        ...

    def draft_stage(self, stage: StageId, specs: list[ArtifactSpec], feature_name: str) -> dict[str, str]:
        """Drafted bodies for every spec the drafter has content for."""
        contents = {}
        for spec in specs:
            result = self.execute(stage=stage, spec=spec, feature_name=feature_name)
            if result.success and result.output is not None:
                contents[spec.path] = result.output
        return contents


class TemplateDrafter(ContentDrafter):
    """Leaves every artifact at its template body."""

    name = "template-drafter"

    def draft(self, stage: StageId, spec: ArtifactSpec, feature_name: str) -> str | None:
        return None


class StaticDrafter(ContentDrafter):
    """Returns fixed bodies by artifact path."""

    name = "static-drafter"

    def __init__(self, contents: dict[str, str]) -> None:
        self.contents = dict(contents)

    def draft(self, stage: StageId, spec: ArtifactSpec, feature_name: str) -> str | None:
        return self.contents.get(spec.path)
