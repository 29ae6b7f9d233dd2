"""Artifact scaffolding for stagegate.

Creates the fixed per-stage documentation layout:
- Stage directories and markdown artifacts
- Per-task description and test files
- All-or-nothing writes with conflict detection
"""

from .generator import ArtifactScaffolder, ScaffoldConflict
from .templates import (
    STAGE_LAYOUTS,
    TASK_FILES,
    TEMPLATES,
    StageLayout,
    get_layout,
    render,
    task_artifact_path,
)

__all__ = [
    "ArtifactScaffolder",
    "ScaffoldConflict",
    "STAGE_LAYOUTS",
    "TASK_FILES",
    "TEMPLATES",
    "StageLayout",
    "get_layout",
    "render",
    "task_artifact_path",
]
