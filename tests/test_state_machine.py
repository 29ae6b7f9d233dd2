"""Tests for the workflow stage machine."""

import pytest

from orchestrator.errors import InvalidTransition, VerificationFailed
from orchestrator.state_machine import WorkflowStageMachine, parse_task_list
from schemas.approval import AuditKind, Decision, SubjectKind
from schemas.workflow_state import STAGE_ORDER, StageId, TaskState
from tools.vcs_tool import VcsExecutionFailed
from tools.verification import CheckKind, ScriptedDeviceTool, ScriptedVerificationTool

FEATURE = "login-v2"


class TestInitialize:
    def test_starts_at_init(self, machine, audit_log):
        state = machine.initialize(FEATURE)

        assert state.current_stage == StageId.INIT
        assert state.feature_branch == "feature/login-v2"
        assert list(state.stages) == ["init"]
        assert audit_log.filter(kind=AuditKind.STAGE_TRANSITION)[0].to_state == "init"

    @pytest.mark.parametrize("name", ["Login", "", "-login", "login v2", "login/v2", "login-v2\n"])
    def test_rejects_invalid_feature_names(self, machine, name):
        with pytest.raises(ValueError):
            machine.initialize(name)


class TestOrdering:
    def test_cannot_scaffold_a_later_stage(self, machine, workspace):
        state = machine.initialize(FEATURE)

        with pytest.raises(InvalidTransition):
            machine.scaffold(state, stage=StageId.PRD)

        assert not (workspace / "prd/README.md").exists()

    def test_advance_requires_scaffold_and_plan(self, machine):
        state = machine.initialize(FEATURE)

        with pytest.raises(InvalidTransition):
            machine.advance(state)

        state, _ = machine.scaffold(state)
        with pytest.raises(InvalidTransition):
            machine.advance(state)

    def test_plan_requires_scaffold(self, machine):
        with pytest.raises(InvalidTransition):
            machine.plan(machine.initialize(FEATURE))

    def test_next_stage_artifacts_only_after_approval(self, machine, workspace, complete_stage):
        state = machine.initialize(FEATURE)
        state = complete_stage(machine, state)

        assert state.current_stage == StageId.PRD
        assert state.stages["init"].approval_status == Decision.APPROVED
        assert not (workspace / "prd/README.md").exists()

        state, artifacts = machine.scaffold(state)
        assert [a.path for a in artifacts] == ["prd/README.md"]

    def test_operations_do_not_mutate_their_input(self, machine):
        state = machine.initialize(FEATURE)

        scaffolded, _ = machine.scaffold(state)

        assert state.current.scaffolded is False
        assert scaffolded.current.scaffolded is True

    def test_stages_are_approved_in_order(self, machine, advance_to, audit_log):
        state = advance_to(machine, machine.initialize(FEATURE), StageId.TASK_SPLIT)

        approved = [e.subject_id for e in audit_log.decisions(SubjectKind.STAGE)]
        assert approved == [s.value for s in STAGE_ORDER[: StageId.TASK_SPLIT.order]]
        assert state.approved_stages() == STAGE_ORDER[: StageId.TASK_SPLIT.order]

    def test_changed_artifact_blocks_advance(self, machine, workspace, complete_stage):
        state = complete_stage(machine, machine.initialize(FEATURE))
        state, _ = machine.scaffold(state)
        state = machine.plan(state)

        (workspace / "prd/README.md").write_text("edited after scaffolding", encoding="utf-8")

        with pytest.raises(InvalidTransition):
            machine.advance(state)

    def test_rescaffolding_with_new_content_requires_replanning(self, machine, workspace, complete_stage):
        state = complete_stage(machine, machine.initialize(FEATURE))
        state, _ = machine.scaffold(state)
        state = machine.plan(state)

        (workspace / "prd/README.md").unlink()
        state, _ = machine.scaffold(state, {"prd/README.md": "# Drafted\n"})

        assert state.current.vcs_commands is None


class TestDecisions:
    def test_rejected_stage_stays_current(self, machine, source, complete_stage, audit_log):
        source.answers["prd"] = False
        state = complete_stage(machine, machine.initialize(FEATURE))

        state = complete_stage(machine, state)

        assert state.current_stage == StageId.PRD
        assert state.current.approval_status == Decision.REJECTED
        assert StageId.HIGH_LEVEL_DESIGN.value not in state.stages
        assert audit_log.filter(kind=AuditKind.ERROR, subject_id="prd")

    def test_rejected_stage_can_be_resubmitted(self, machine, source, complete_stage):
        source.answers["prd"] = False
        state = complete_stage(machine, machine.initialize(FEATURE))
        state = complete_stage(machine, state)

        source.answers["prd"] = True
        state = machine.advance(state)

        assert state.current_stage == StageId.HIGH_LEVEL_DESIGN
        assert state.stages["prd"].approval_status == Decision.APPROVED

    def test_pending_stage_waits(self, machine, source, complete_stage, vcs):
        source.answers["init"] = None

        state = complete_stage(machine, machine.initialize(FEATURE))

        assert state.current_stage == StageId.INIT
        assert state.current.approval_status == Decision.PENDING
        assert vcs.executed == []

    def test_approved_stage_runs_its_planned_commands(self, machine, complete_stage, vcs):
        complete_stage(machine, machine.initialize(FEATURE))

        assert vcs.executed == ["git checkout -b feature/login-v2"]

    def test_failed_stage_command_keeps_the_approval_for_the_retry(
        self, machine, source, complete_stage, vcs, audit_log
    ):
        state = complete_stage(machine, machine.initialize(FEATURE))
        state, _ = machine.scaffold(state)
        state = machine.plan(state)
        vcs.fail_on = ["git commit"]

        with pytest.raises(VcsExecutionFailed):
            machine.advance(state)

        assert state.current.approval_status == Decision.PENDING
        assert audit_log.summary()["approved_stages"] == ["init"]

        vcs.fail_on = []
        asked_before = list(source.asked)
        state = machine.advance(state)

        assert state.current_stage == StageId.HIGH_LEVEL_DESIGN
        assert source.asked == asked_before
        prd_approvals = audit_log.filter(
            kind=AuditKind.GATE_DECISION, subject_id="prd", decision=Decision.APPROVED
        )
        assert len(prd_approvals) == 1
        assert audit_log.summary()["approved_stages"] == ["init", "prd"]

    def test_approval_after_a_rejection_is_asked_for(self, machine, source, complete_stage, vcs):
        state = complete_stage(machine, machine.initialize(FEATURE))
        state, _ = machine.scaffold(state)
        state = machine.plan(state)
        source.answers["prd"] = False
        state = machine.advance(state)
        vcs.fail_on = ["git commit"]
        source.answers["prd"] = True

        with pytest.raises(VcsExecutionFailed):
            machine.advance(state)

        assert source.asked.count("prd") == 2

    def test_stage_gate_text_is_ask_prefixed(self, machine, source, complete_stage):
        complete_stage(machine, machine.initialize(FEATURE))

        assert "ask: advance login-v2 past Init" in source.shown


class TestTaskSplit:
    def test_task_split_requires_tasks(self, machine, advance_to, complete_stage):
        state = advance_to(machine, machine.initialize(FEATURE), StageId.TASK_SPLIT)

        with pytest.raises(InvalidTransition):
            complete_stage(machine, state)

    def test_task_list_lines_become_the_plan(self, machine, advance_to, complete_stage):
        state = advance_to(machine, machine.initialize(FEATURE), StageId.TASK_SPLIT)
        content = "# Tasks\n\n- [ ] login-form: the form\n- session-store\n"

        state = complete_stage(machine, state, {"tasks/task_list.md": content})

        assert state.current_stage == StageId.IMPLEMENTATION
        assert state.task_plan == ["login-form", "session-store"]
        assert set(state.tasks) == {"login-form", "session-store"}
        assert state.tasks["login-form"].branch_name == "task/login-v2/login-form"

    def test_hand_edited_task_list_is_accepted(self, machine, advance_to, workspace):
        state = advance_to(machine, machine.initialize(FEATURE), StageId.TASK_SPLIT)
        state, _ = machine.scaffold(state)
        state = machine.plan(state)
        task_list = workspace / "tasks/task_list.md"
        task_list.write_text(task_list.read_text(encoding="utf-8") + "- [ ] login-form\n", encoding="utf-8")

        with pytest.raises(InvalidTransition):
            machine.advance(state)

        state, _ = machine.accept_edits(state)
        assert state.current.vcs_commands is None
        state = machine.advance(machine.plan(state))

        assert state.current_stage == StageId.IMPLEMENTATION
        assert state.task_plan == ["login-form"]
        assert "login-form" in task_list.read_text(encoding="utf-8")

    def test_accept_edits_requires_scaffold(self, machine):
        with pytest.raises(InvalidTransition):
            machine.accept_edits(machine.initialize(FEATURE))

    def test_set_task_plan_only_during_task_split(self, machine):
        with pytest.raises(InvalidTransition):
            machine.set_task_plan(machine.initialize(FEATURE), ["a"])

    @pytest.mark.parametrize("names", [[], ["Bad Name"], ["a", "a"], ["login-form\n"]])
    def test_set_task_plan_validates_names(self, machine, advance_to, names):
        state = advance_to(machine, machine.initialize(FEATURE), StageId.TASK_SPLIT)

        with pytest.raises(ValueError):
            machine.set_task_plan(state, names)

    def test_parse_task_list(self):
        content = "intro\n* alpha\n- [x] beta: done\n  - gamma\nnot-a-task\n- alpha\n"

        assert parse_task_list(content) == ["alpha", "beta", "gamma"]


class TestImplementation:
    def test_cannot_advance_until_tasks_are_pushed(self, machine, advance_to, complete_stage, source):
        source.answers["task/login-v2/login-form"] = None
        state = advance_to(
            machine, machine.initialize(FEATURE), StageId.IMPLEMENTATION, task_plan=["login-form"]
        )
        state, outcomes = machine.run_tasks(state)

        assert outcomes["login-form"].state == TaskState.APPROVAL_PENDING
        with pytest.raises(InvalidTransition):
            complete_stage(machine, state)

    def test_tasks_run_independently(self, workspace, gate, dispatcher, audit_log, advance_to):
        verifier = ScriptedVerificationTool(failures={"broken": {CheckKind.E2E}})
        machine = WorkflowStageMachine(
            workspace=workspace,
            gate=gate,
            dispatcher=dispatcher,
            audit_log=audit_log,
            verifier=verifier,
            device=ScriptedDeviceTool(),
        )
        state = advance_to(
            machine,
            machine.initialize(FEATURE),
            StageId.IMPLEMENTATION,
            task_plan=["alpha", "broken", "gamma"],
        )

        state, outcomes = machine.run_tasks(state)

        assert outcomes["alpha"].state == TaskState.PUSHED
        assert outcomes["gamma"].state == TaskState.PUSHED
        assert outcomes["broken"].state == TaskState.UNIT_TESTED
        assert outcomes["broken"].error_kind == "VerificationFailed"
        assert state.tasks["broken"].last_error is not None

        verifier.fix("broken")
        state, outcomes = machine.run_tasks(state, ["broken"])

        assert outcomes["broken"].ok
        assert state.tasks["broken"].sub_state == TaskState.PUSHED

    def test_run_tasks_outside_implementation_is_invalid(self, machine):
        with pytest.raises(InvalidTransition):
            machine.run_tasks(machine.initialize(FEATURE))

    def test_unknown_task_name(self, machine, advance_to):
        state = advance_to(machine, machine.initialize(FEATURE), StageId.IMPLEMENTATION, task_plan=["a"])

        with pytest.raises(KeyError):
            machine.run_tasks(state, ["missing"])

    def test_integration_merges_task_branches(self, machine, advance_to, vcs):
        advance_to(machine, machine.initialize(FEATURE), StageId.BUILD_VERIFY, task_plan=["a", "b"])

        merges = [c for c in vcs.executed if c.startswith("git merge")]
        assert merges[0].startswith("git merge --no-ff task/login-v2/a")
        assert merges[1].startswith("git merge --no-ff task/login-v2/b")


class TestBuildVerify:
    def test_device_failure_blocks_completion(self, workspace, gate, dispatcher, audit_log, verifier, advance_to, complete_stage):
        machine = WorkflowStageMachine(
            workspace=workspace,
            gate=gate,
            dispatcher=dispatcher,
            audit_log=audit_log,
            verifier=verifier,
            device=ScriptedDeviceTool(succeed=False),
        )
        state = advance_to(machine, machine.initialize(FEATURE), StageId.BUILD_VERIFY, task_plan=["a"])

        with pytest.raises(VerificationFailed):
            complete_stage(machine, state)

        assert audit_log.filter(kind=AuditKind.ERROR, subject_id="build_verify")

    def test_completed_workflow_is_closed(self, machine, advance_to, complete_stage, device):
        state = advance_to(machine, machine.initialize(FEATURE), StageId.BUILD_VERIFY, task_plan=["a"])
        state = complete_stage(machine, state)

        assert state.completed is True
        assert device.launches == ["feature/login-v2"]
        with pytest.raises(InvalidTransition):
            machine.advance(state)
        with pytest.raises(InvalidTransition):
            machine.scaffold(state)


class TestPersistence:
    def test_save_and_load_round_trip(self, machine, advance_to, source, gate, dispatcher, audit_log, verifier, device, workspace):
        source.answers["task/login-v2/a"] = None
        state = advance_to(machine, machine.initialize(FEATURE), StageId.IMPLEMENTATION, task_plan=["a"])
        state, _ = machine.run_tasks(state)
        machine.save_state(state)

        fresh = WorkflowStageMachine(
            workspace=workspace,
            gate=gate,
            dispatcher=dispatcher,
            audit_log=audit_log,
            verifier=verifier,
            device=device,
        )
        loaded = fresh.load_state()

        assert loaded.current_stage == StageId.IMPLEMENTATION
        assert loaded.tasks["a"].sub_state == TaskState.APPROVAL_PENDING
        assert fresh.task_flow("a").state == TaskState.APPROVAL_PENDING

        source.answers["task/login-v2/a"] = True
        loaded, outcomes = fresh.run_tasks(loaded)
        assert outcomes["a"].state == TaskState.PUSHED

    def test_load_without_state(self, machine):
        with pytest.raises(FileNotFoundError):
            machine.load_state()
