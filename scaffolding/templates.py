"""Stage layouts and artifact templates.

Each stage layout defines:
- Directories it needs
- Files it must produce (path -> template kind)

Template bodies use ``{variable}`` placeholders.
"""

from dataclasses import dataclass, field

from schemas.workflow_state import ArtifactSpec, StageId


@dataclass(frozen=True)
class StageLayout:
    """Fixed file/folder layout of one stage."""

    stage: StageId
    files: dict[str, str] = field(default_factory=dict)  # path -> template kind
    directories: list[str] = field(default_factory=list)

    @property
    def artifact_specs(self) -> list[ArtifactSpec]:
        return [
            ArtifactSpec(path=path, template_kind=kind)
            for path, kind in self.files.items()
        ]


# =============================================================================
# Templates
# =============================================================================

PRD_TEMPLATE = """# {feature_name}: Product Requirements

## Problem

_Describe the user problem this feature solves._

## Goals

-

## Non-goals

-

## User stories

- As a user, I want ...

## Acceptance criteria

- [ ]
"""

ARCHITECTURE_TEMPLATE = """# {feature_name}: Architecture

## Context

_How the feature fits into the existing system._

## Overview

_Main building blocks and how data flows between them._

## Decisions

| Decision | Rationale |
|----------|-----------|
|          |           |
"""

COMPONENTS_TEMPLATE = """# {feature_name}: Components

| Component | Responsibility | Depends on |
|-----------|----------------|------------|
|           |                |            |
"""

CLASSES_TEMPLATE = """# {feature_name}: Classes

## Classes

_One section per class: purpose, public methods, collaborators._
"""

DATA_MODELS_TEMPLATE = """# {feature_name}: Data Models

| Model | Field | Type | Notes |
|-------|-------|------|-------|
|       |       |      |       |
"""

UI_STRUCTURE_TEMPLATE = """# {feature_name}: UI Structure

## Screens

_Screen hierarchy and navigation._

## States

_Loading, empty, error and success states per screen._
"""

TEST_PLAN_TEMPLATE = """# {feature_name}: Test Plan

## Unit tests

-

## Integration tests

-

## End-to-end tests

-
"""

TASK_LIST_TEMPLATE = """# {feature_name}: Tasks

One task per line, as a checkbox item with a lowercase slug:

"""

TASK_TEMPLATE = """# {feature_name}/{task_name}

Branch: `task/{feature_name}/{task_name}`

## Scope

_What this task changes._

## Done when

- [ ] Build passes
- [ ] Unit tests pass
- [ ] End-to-end tests pass
"""

TASK_TESTS_TEMPLATE = """# {feature_name}/{task_name}: Tests

## Unit

-

## End-to-end

-
"""

TEMPLATES: dict[str, str] = {
    "prd": PRD_TEMPLATE,
    "architecture": ARCHITECTURE_TEMPLATE,
    "components": COMPONENTS_TEMPLATE,
    "classes": CLASSES_TEMPLATE,
    "data_models": DATA_MODELS_TEMPLATE,
    "ui_structure": UI_STRUCTURE_TEMPLATE,
    "test_plan": TEST_PLAN_TEMPLATE,
    "task_list": TASK_LIST_TEMPLATE,
    "task": TASK_TEMPLATE,
    "task_tests": TASK_TESTS_TEMPLATE,
}


# =============================================================================
# Stage layouts
# =============================================================================

STAGE_LAYOUTS: dict[StageId, StageLayout] = {
    StageId.INIT: StageLayout(
        stage=StageId.INIT,
        directories=["prd", "design/high_level", "design/low_level", "tests", "tasks"],
    ),
    StageId.PRD: StageLayout(
        stage=StageId.PRD,
        files={"prd/README.md": "prd"},
    ),
    StageId.HIGH_LEVEL_DESIGN: StageLayout(
        stage=StageId.HIGH_LEVEL_DESIGN,
        files={
            "design/high_level/architecture.md": "architecture",
            "design/high_level/components.md": "components",
        },
    ),
    StageId.LOW_LEVEL_DESIGN: StageLayout(
        stage=StageId.LOW_LEVEL_DESIGN,
        files={
            "design/low_level/classes.md": "classes",
            "design/low_level/data_models.md": "data_models",
            "design/low_level/ui_structure.md": "ui_structure",
        },
    ),
    StageId.TEST_PLAN: StageLayout(
        stage=StageId.TEST_PLAN,
        files={"tests/test_plan.md": "test_plan"},
    ),
    StageId.TASK_SPLIT: StageLayout(
        stage=StageId.TASK_SPLIT,
        files={"tasks/task_list.md": "task_list"},
    ),
    StageId.IMPLEMENTATION: StageLayout(stage=StageId.IMPLEMENTATION),
    StageId.INTEGRATION: StageLayout(stage=StageId.INTEGRATION),
    StageId.BUILD_VERIFY: StageLayout(stage=StageId.BUILD_VERIFY),
}

TASK_FILES: dict[str, str] = {
    "task": "tasks/{task_name}.md",
    "task_tests": "tests/tasks/{task_name}.md",
}


def get_layout(stage: StageId) -> StageLayout:
    return STAGE_LAYOUTS[stage]


def task_artifact_path(kind: str, task_name: str) -> str:
    """Workspace path of a per-task artifact ("task" or "task_tests")."""
    if kind not in TASK_FILES:
        raise ValueError(f"Unknown task artifact kind: {kind}. Available: {', '.join(TASK_FILES)}")
    return TASK_FILES[kind].replace("{task_name}", task_name)


def render(template_kind: str, variables: dict[str, str]) -> str:
    """Substitute ``{variable}`` placeholders in a template."""
    content = TEMPLATES[template_kind]
    for key, value in variables.items():
        content = content.replace("{" + key + "}", str(value))
    return content
