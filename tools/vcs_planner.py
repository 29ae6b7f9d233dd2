"""Version-control command planner.

Pure functions from a stage or task identity (and its artifact paths) to
the ordered command texts that would record it. Nothing is executed here:
each line carries a classifier prefix and goes back through classification
and gating when the dispatcher runs it.
"""

from dataclasses import dataclass, field

from schemas.workflow_state import (
    StageId,
    feature_branch_name,
    task_branch_name,
)

DEFAULT_REMOTE = "origin"


@dataclass(frozen=True)
class StageSubject:
    """A stage to plan commands for."""

    feature_name: str
    stage: StageId
    artifact_paths: tuple[str, ...] = ()
    task_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class TaskSubject:
    """A task to plan commands for."""

    feature_name: str
    task_name: str
    artifact_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class TaskPlan:
    """Task commands split by the step that runs them."""

    branch: list[str] = field(default_factory=list)
    commit: list[str] = field(default_factory=list)
    push: list[str] = field(default_factory=list)

    def all(self) -> list[str]:
        return [*self.branch, *self.commit, *self.push]


def _quote(message: str) -> str:
    return '"' + message.replace("\\", "\\\\").replace('"', '\\"') + '"'


def plan_stage(subject: StageSubject, remote: str = DEFAULT_REMOTE) -> list[str]:
    """Commands recording a completed stage on the feature branch."""
    branch = feature_branch_name(subject.feature_name)
    title = subject.stage.display_name

    if subject.stage == StageId.INIT:
        return [f"feature: git checkout -b {branch}"]

    commands = [f"commit: git checkout {branch}"]

    if subject.stage == StageId.INTEGRATION:
        for task_name in subject.task_names:
            task_branch = task_branch_name(subject.feature_name, task_name)
            message = _quote(f"{subject.feature_name}: integrate {task_name}")
            commands.append(f"commit: git merge --no-ff {task_branch} -m {message}")
        if not subject.task_names:
            message = _quote(f"{subject.feature_name}: {title}")
            commands.append(f"commit: git commit --allow-empty -m {message}")
    elif subject.artifact_paths:
        for path in sorted(subject.artifact_paths):
            commands.append(f"commit: git add {path}")
        message = _quote(f"{subject.feature_name}: {title}")
        commands.append(f"commit: git commit -m {message}")
    else:
        message = _quote(f"{subject.feature_name}: {title}")
        commands.append(f"commit: git commit --allow-empty -m {message}")

    commands.append(f"commit: git push {remote} {branch}")
    return commands


def plan_task(subject: TaskSubject, remote: str = DEFAULT_REMOTE) -> TaskPlan:
    """Commands for a task: branch from the feature branch, commit, push."""
    feature_branch = feature_branch_name(subject.feature_name)
    branch = task_branch_name(subject.feature_name, subject.task_name)
    message = _quote(f"{subject.feature_name}/{subject.task_name}: implement task")

    commit = [f"commit: git add {path}" for path in sorted(subject.artifact_paths)]
    commit.append(f"commit: git commit -m {message}")

    return TaskPlan(
        branch=[f"feature: git checkout -b {branch} {feature_branch}"],
        commit=commit,
        push=[f"commit: git push {remote} {branch}"],
    )


def plan(subject: StageSubject | TaskSubject, remote: str = DEFAULT_REMOTE) -> list[str]:
    """Ordered command texts for a stage or task subject."""
    if isinstance(subject, TaskSubject):
        return plan_task(subject, remote).all()
    return plan_stage(subject, remote)
