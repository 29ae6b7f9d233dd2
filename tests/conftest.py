"""Shared fixtures: a workspace, an audit log and a stage machine wired to
scripted collaborators."""

import pytest

from orchestrator.audit_log import AuditLog
from orchestrator.checkpoints import ApprovalGate, ScriptedConfirmationSource
from orchestrator.dispatcher import CommandDispatcher
from orchestrator.state_machine import WorkflowStageMachine
from scaffolding.generator import ArtifactScaffolder
from schemas.workflow_state import StageId
from tools.vcs_tool import RecordingVcsTool
from tools.verification import ScriptedDeviceTool, ScriptedVerificationTool


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def audit_log():
    return AuditLog()


@pytest.fixture
def source():
    """Approves everything unless a test scripts otherwise."""
    return ScriptedConfirmationSource(default=True)


@pytest.fixture
def gate(source, audit_log):
    return ApprovalGate(source, audit_log)


@pytest.fixture
def vcs():
    return RecordingVcsTool()


@pytest.fixture
def dispatcher(gate, audit_log, vcs):
    return CommandDispatcher(gate, audit_log, vcs)


@pytest.fixture
def verifier():
    return ScriptedVerificationTool()


@pytest.fixture
def device():
    return ScriptedDeviceTool()


@pytest.fixture
def scaffolder(workspace):
    return ArtifactScaffolder(workspace)


@pytest.fixture
def machine(workspace, gate, dispatcher, audit_log, verifier, device, scaffolder):
    return WorkflowStageMachine(
        workspace=workspace,
        gate=gate,
        dispatcher=dispatcher,
        audit_log=audit_log,
        verifier=verifier,
        device=device,
        scaffolder=scaffolder,
        max_parallel_tasks=4,
    )


def _complete_stage(machine, state, contents=None):
    state, _ = machine.scaffold(state, contents)
    state = machine.plan(state)
    return machine.advance(state)


@pytest.fixture
def complete_stage():
    """Scaffold, plan and advance the current stage."""
    return _complete_stage


@pytest.fixture
def advance_to():
    """Drive a state forward until ``stage`` is current."""

    def _advance_to(machine, state, stage, task_plan=None):
        while state.current_stage != stage:
            if state.current_stage == StageId.TASK_SPLIT and task_plan:
                state = machine.set_task_plan(state, task_plan)
            if state.current_stage == StageId.IMPLEMENTATION:
                state, _ = machine.run_tasks(state)
            state = _complete_stage(machine, state)
        return state

    return _advance_to
