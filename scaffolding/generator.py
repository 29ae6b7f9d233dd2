"""Artifact scaffolder.

Writes the fixed file/folder layout of a stage (or a task) into the
feature workspace. Scaffolding is idempotent: identical content already on
disk is left alone, and divergent content is never overwritten unless the
caller resolves the conflict explicitly.
"""

import logging
from pathlib import Path

from schemas.workflow_state import Artifact, StageId

from .templates import get_layout, render, task_artifact_path

logger = logging.getLogger(__name__)


class ScaffoldConflict(Exception):
    """Raised when existing content differs from what a stage would write."""

    def __init__(self, paths: list[str], stage: str | None = None) -> None:
        self.paths = list(paths)
        self.stage = stage
        where = f" in stage {stage}" if stage else ""
        super().__init__(f"Scaffold conflict{where}: {', '.join(self.paths)}")


class ArtifactScaffolder:
    """Generates stage and task artifacts inside a workspace.

    Produces:
    - Stage directories
    - Stage files rendered from templates (or supplied content)
    - Per-task notes and test files
    """

    def __init__(self, workspace: Path | str) -> None:
        """Initialize the scaffolder.

        Args:
            workspace: Root directory the fixed layout is written under
        """
        self.workspace = Path(workspace)

    def expected(
        self,
        stage: StageId,
        feature_name: str,
        contents: dict[str, str] | None = None,
    ) -> list[Artifact]:
        """Artifacts a stage should produce, without touching the disk.

        Args:
            stage: Stage to scaffold
            feature_name: Feature slug used in templates
            contents: Optional path -> content overrides (e.g. drafted bodies)
        """
        contents = contents or {}
        layout = get_layout(stage)
        variables = {"feature_name": feature_name, "stage_title": stage.display_name}

        artifacts = []
        for path, kind in layout.files.items():
            body = contents.get(path)
            if body is None:
                body = render(kind, variables)
            artifacts.append(Artifact(path=path, template_kind=kind, content=body))
        return artifacts

    def scaffold(
        self,
        stage: StageId,
        feature_name: str,
        contents: dict[str, str] | None = None,
    ) -> list[Artifact]:
        """Create the stage's directories and files.

        Returns:
            The stage's artifacts, identical across repeated calls

        Raises:
            ScaffoldConflict: If any target already holds different content.
                Nothing is written in that case.
        """
        unknown = set(contents or {}) - set(get_layout(stage).files)
        if unknown:
            raise ValueError(f"Not part of stage {stage.value}: {', '.join(sorted(unknown))}")

        artifacts = self.expected(stage, feature_name, contents)
        self._write_all(artifacts, stage=stage.value)

        for directory in get_layout(stage).directories:
            (self.workspace / directory).mkdir(parents=True, exist_ok=True)

        return artifacts

    def scaffold_task(
        self,
        feature_name: str,
        task_name: str,
        kind: str,
        content: str | None = None,
    ) -> Artifact:
        """Create one per-task artifact ("task" or "task_tests").

        Raises:
            ScaffoldConflict: If the file exists with different content
        """
        path = task_artifact_path(kind, task_name)
        if content is None:
            content = render(kind, {"feature_name": feature_name, "task_name": task_name})
        artifact = Artifact(path=path, template_kind=kind, content=content)
        self._write_all([artifact], stage=f"task {task_name}")
        return artifact

    def resolve_conflict(self, artifact: Artifact) -> Path:
        """Explicitly overwrite a path with the given artifact content."""
        full_path = self.workspace / artifact.path
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_text(artifact.content, encoding="utf-8")
        logger.warning("SCAFFOLD: conflict resolved by overwriting %s", artifact.path)
        return full_path

    def exists(self, artifact_path: str, checksum: str | None = None) -> bool:
        """Check an artifact is on disk (and unchanged, if a checksum is given)."""
        full_path = self.workspace / artifact_path
        if not full_path.is_file():
            return False
        if checksum is None:
            return True
        content = full_path.read_text(encoding="utf-8")
        return Artifact(path=artifact_path, template_kind="", content=content).checksum == checksum

    def _write_all(self, artifacts: list[Artifact], stage: str) -> None:
        """Write every artifact, or none of them if any target conflicts."""
        conflicts = []
        to_write = []
        for artifact in artifacts:
            full_path = self.workspace / artifact.path
            if full_path.exists():
                if full_path.read_text(encoding="utf-8") != artifact.content:
                    conflicts.append(artifact.path)
                continue
            to_write.append(artifact)

        if conflicts:
            logger.warning("SCAFFOLD: conflict in %s: %s", stage, ", ".join(conflicts))
            raise ScaffoldConflict(conflicts, stage=stage)

        for artifact in to_write:
            full_path = self.workspace / artifact.path
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_text(artifact.content, encoding="utf-8")
            logger.info("SCAFFOLD: created %s", artifact.path)
