"""Tests for the VCS command planner."""

from orchestrator.classifier import classify
from schemas.command import CommandCategory
from schemas.workflow_state import StageId
from tools.vcs_planner import StageSubject, TaskSubject, plan, plan_stage, plan_task


class TestStagePlans:
    def test_init_creates_the_feature_branch(self):
        commands = plan_stage(StageSubject(feature_name="login-v2", stage=StageId.INIT))

        assert commands == ["feature: git checkout -b feature/login-v2"]

    def test_artifact_stage_adds_commits_and_pushes(self):
        subject = StageSubject(
            feature_name="login-v2",
            stage=StageId.HIGH_LEVEL_DESIGN,
            artifact_paths=("design/high_level/components.md", "design/high_level/architecture.md"),
        )

        commands = plan_stage(subject)

        assert commands == [
            "commit: git checkout feature/login-v2",
            "commit: git add design/high_level/architecture.md",
            "commit: git add design/high_level/components.md",
            'commit: git commit -m "login-v2: High-level design"',
            "commit: git push origin feature/login-v2",
        ]

    def test_stage_without_artifacts_commits_empty(self):
        commands = plan_stage(
            StageSubject(feature_name="login-v2", stage=StageId.BUILD_VERIFY),
            remote="upstream",
        )

        assert 'commit: git commit --allow-empty -m "login-v2: Build verification"' in commands
        assert commands[-1] == "commit: git push upstream feature/login-v2"

    def test_integration_merges_each_task(self):
        subject = StageSubject(
            feature_name="login-v2",
            stage=StageId.INTEGRATION,
            task_names=("login-form", "session-store"),
        )

        commands = plan_stage(subject)

        assert commands[1] == 'commit: git merge --no-ff task/login-v2/login-form -m "login-v2: integrate login-form"'
        assert commands[2].startswith("commit: git merge --no-ff task/login-v2/session-store")

    def test_planning_is_pure(self):
        subject = StageSubject(feature_name="f", stage=StageId.PRD, artifact_paths=("prd/README.md",))

        assert plan_stage(subject) == plan_stage(subject)

    def test_stage_commands_never_need_manual_approval(self):
        for stage in StageId:
            subject = StageSubject(feature_name="f", stage=stage, artifact_paths=("a.md",), task_names=("t",))
            for command in plan_stage(subject):
                assert classify(command).category != CommandCategory.UNCLASSIFIED
                assert classify(command).requires_approval is False


class TestTaskPlans:
    def test_branch_commit_push(self):
        task_plan = plan_task(
            TaskSubject(
                feature_name="login-v2",
                task_name="login-form",
                artifact_paths=("tasks/login-form.md", "tests/tasks/login-form.md"),
            )
        )

        assert task_plan.branch == ["feature: git checkout -b task/login-v2/login-form feature/login-v2"]
        assert task_plan.commit == [
            "commit: git add tasks/login-form.md",
            "commit: git add tests/tasks/login-form.md",
            'commit: git commit -m "login-v2/login-form: implement task"',
        ]
        assert task_plan.push == ["commit: git push origin task/login-v2/login-form"]

    def test_plan_dispatches_on_subject(self):
        task = TaskSubject(feature_name="f", task_name="t")
        stage = StageSubject(feature_name="f", stage=StageId.INIT)

        assert plan(task) == plan_task(task).all()
        assert plan(stage) == plan_stage(stage)
