"""Tests for the artifact scaffolder."""

import pytest

from scaffolding.generator import ArtifactScaffolder, ScaffoldConflict
from scaffolding.templates import STAGE_LAYOUTS, get_layout, render, task_artifact_path
from schemas.workflow_state import StageId


class TestLayouts:
    def test_every_stage_has_a_layout(self):
        assert set(STAGE_LAYOUTS) == set(StageId)

    def test_fixed_paths(self):
        assert get_layout(StageId.PRD).files == {"prd/README.md": "prd"}
        assert set(get_layout(StageId.HIGH_LEVEL_DESIGN).files) == {
            "design/high_level/architecture.md",
            "design/high_level/components.md",
        }
        assert set(get_layout(StageId.LOW_LEVEL_DESIGN).files) == {
            "design/low_level/classes.md",
            "design/low_level/data_models.md",
            "design/low_level/ui_structure.md",
        }
        assert set(get_layout(StageId.TEST_PLAN).files) == {"tests/test_plan.md"}
        assert set(get_layout(StageId.TASK_SPLIT).files) == {"tasks/task_list.md"}
        for stage in (StageId.INIT, StageId.IMPLEMENTATION, StageId.INTEGRATION, StageId.BUILD_VERIFY):
            assert get_layout(stage).files == {}

    def test_task_paths(self):
        assert task_artifact_path("task", "login-form") == "tasks/login-form.md"
        assert task_artifact_path("task_tests", "login-form") == "tests/tasks/login-form.md"
        with pytest.raises(ValueError):
            task_artifact_path("notes", "login-form")

    def test_render_substitutes_feature_name(self):
        assert "login-v2" in render("prd", {"feature_name": "login-v2"})


class TestScaffold:
    def test_init_creates_directories_only(self, workspace):
        artifacts = ArtifactScaffolder(workspace).scaffold(StageId.INIT, "login-v2")

        assert artifacts == []
        for directory in ("prd", "design/high_level", "design/low_level", "tests", "tasks"):
            assert (workspace / directory).is_dir()

    def test_stage_files_are_written(self, workspace):
        artifacts = ArtifactScaffolder(workspace).scaffold(StageId.LOW_LEVEL_DESIGN, "login-v2")

        assert sorted(a.path for a in artifacts) == [
            "design/low_level/classes.md",
            "design/low_level/data_models.md",
            "design/low_level/ui_structure.md",
        ]
        for artifact in artifacts:
            assert (workspace / artifact.path).read_text(encoding="utf-8") == artifact.content

    def test_supplied_content_replaces_template(self, workspace):
        scaffolder = ArtifactScaffolder(workspace)

        scaffolder.scaffold(StageId.PRD, "login-v2", {"prd/README.md": "# Login v2\n"})

        assert (workspace / "prd/README.md").read_text(encoding="utf-8") == "# Login v2\n"

    def test_content_for_unknown_path_is_refused(self, workspace):
        with pytest.raises(ValueError):
            ArtifactScaffolder(workspace).scaffold(StageId.PRD, "login-v2", {"prd/other.md": "x"})

    def test_scaffold_is_idempotent(self, workspace):
        scaffolder = ArtifactScaffolder(workspace)

        first = scaffolder.scaffold(StageId.HIGH_LEVEL_DESIGN, "login-v2")
        second = scaffolder.scaffold(StageId.HIGH_LEVEL_DESIGN, "login-v2")

        assert first == second
        assert [a.checksum for a in first] == [a.checksum for a in second]

    def test_divergent_content_conflicts_and_nothing_is_written(self, workspace):
        scaffolder = ArtifactScaffolder(workspace)
        edited = workspace / "design/high_level/components.md"
        edited.parent.mkdir(parents=True)
        edited.write_text("hand edited\n", encoding="utf-8")

        with pytest.raises(ScaffoldConflict) as exc_info:
            scaffolder.scaffold(StageId.HIGH_LEVEL_DESIGN, "login-v2")

        assert exc_info.value.paths == ["design/high_level/components.md"]
        assert edited.read_text(encoding="utf-8") == "hand edited\n"
        assert not (workspace / "design/high_level/architecture.md").exists()

    def test_resolve_conflict_overwrites(self, workspace):
        scaffolder = ArtifactScaffolder(workspace)
        target = workspace / "prd/README.md"
        target.parent.mkdir(parents=True)
        target.write_text("old\n", encoding="utf-8")

        [artifact] = scaffolder.expected(StageId.PRD, "login-v2")
        scaffolder.resolve_conflict(artifact)

        assert scaffolder.scaffold(StageId.PRD, "login-v2") == [artifact]

    def test_exists_checks_checksum(self, workspace):
        scaffolder = ArtifactScaffolder(workspace)
        [artifact] = scaffolder.scaffold(StageId.PRD, "login-v2")

        assert scaffolder.exists(artifact.path, artifact.checksum)
        (workspace / artifact.path).write_text("changed", encoding="utf-8")
        assert scaffolder.exists(artifact.path)
        assert not scaffolder.exists(artifact.path, artifact.checksum)
        assert not scaffolder.exists("prd/missing.md")


class TestScaffoldTask:
    def test_task_files(self, workspace):
        scaffolder = ArtifactScaffolder(workspace)

        notes = scaffolder.scaffold_task("login-v2", "login-form", "task")
        tests = scaffolder.scaffold_task("login-v2", "login-form", "task_tests")

        assert notes.path == "tasks/login-form.md"
        assert tests.path == "tests/tasks/login-form.md"
        assert "login-form" in (workspace / notes.path).read_text(encoding="utf-8")
        assert (workspace / tests.path).exists()

    def test_task_file_conflict(self, workspace):
        scaffolder = ArtifactScaffolder(workspace)
        (workspace / "tasks").mkdir()
        (workspace / "tasks/login-form.md").write_text("mine", encoding="utf-8")

        with pytest.raises(ScaffoldConflict):
            scaffolder.scaffold_task("login-v2", "login-form", "task")
