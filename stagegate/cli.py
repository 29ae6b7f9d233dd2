"""CLI entrypoint for stagegate."""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from orchestrator import (
    ApprovalDenied,
    ApprovalGate,
    AuditLog,
    CommandDispatcher,
    ConsoleConfirmationSource,
    FeatureRunner,
    InvalidCommand,
    InvalidTransition,
    ScriptedConfirmationSource,
    VerificationFailed,
    WorkflowStageMachine,
    classify,
)
from orchestrator.state_machine import STATE_FILE
from scaffolding import ArtifactScaffolder, ScaffoldConflict
from schemas import AuditKind, Decision, StageId, WorkflowState
from stagegate import __version__
from stagegate.config import Config, reload_config
from stagegate.log import setup_logging
from tools import RecordingVcsTool, ScriptedDeviceTool, ScriptedVerificationTool, VcsExecutionFailed

app = typer.Typer(
    name="stagegate",
    help="Approval-gated feature workflow: stages, tasks and an audit trail.",
    add_completion=False,
)
console = Console()

WORKFLOW_ERRORS = (
    InvalidCommand,
    InvalidTransition,
    ApprovalDenied,
    VerificationFailed,
    ScaffoldConflict,
    VcsExecutionFailed,
    ValueError,
)


@dataclass
class Session:
    """Everything one command invocation works with."""

    config: Config
    audit_log: AuditLog
    gate: ApprovalGate
    dispatcher: CommandDispatcher
    executor: RecordingVcsTool
    machine: WorkflowStageMachine


_options: dict[str, object] = {}


@app.callback()
def main(
    workspace: Optional[Path] = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Feature workspace (default: workflow.workspace_dir from stagegate.toml)",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to stagegate.toml",
    ),
    auto_approve: bool = typer.Option(
        False,
        "--auto-approve",
        "-y",
        help="Approve every gated subject (non-interactive)",
    ),
) -> None:
    """Approval-gated feature workflow."""
    config = reload_config(config_file)
    if workspace is not None:
        config.workflow.workspace_dir = str(workspace)
    if auto_approve:
        config.gate.auto_approve = True

    setup_logging(config.logging.level)
    _options["config"] = config


def _open_session() -> Session:
    config = _options.get("config")
    if not isinstance(config, Config):
        config = reload_config()

    audit_log = AuditLog.load(config.audit_path)
    if config.gate.auto_approve:
        source = ScriptedConfirmationSource(default=True, decided_by="auto-approve")
    else:
        source = ConsoleConfirmationSource(
            console=console,
            workspace=config.workspace,
            approver=config.gate.approver,
        )

    gate = ApprovalGate(source, audit_log)
    executor = RecordingVcsTool()
    dispatcher = CommandDispatcher(gate, audit_log, executor)
    machine = WorkflowStageMachine(
        workspace=config.workspace,
        gate=gate,
        dispatcher=dispatcher,
        audit_log=audit_log,
        verifier=ScriptedVerificationTool(),
        device=ScriptedDeviceTool(),
        scaffolder=ArtifactScaffolder(config.workspace),
        remote=config.workflow.remote,
        max_parallel_tasks=config.workflow.max_parallel_tasks,
        state_dir=config.workflow.state_dir,
    )
    return Session(
        config=config,
        audit_log=audit_log,
        gate=gate,
        dispatcher=dispatcher,
        executor=executor,
        machine=machine,
    )


def _load_state(session: Session) -> WorkflowState:
    try:
        return session.machine.load_state()
    except FileNotFoundError:
        rprint("[red]No workflow found. Start one with:[/red] stagegate init <feature-name>")
        raise typer.Exit(1)


def _fail(error: Exception) -> None:
    rprint(f"[red]Error: {escape(str(error))}[/red]")
    raise typer.Exit(1)


def _print_executed(executor: RecordingVcsTool) -> None:
    for command in executor.executed:
        rprint(f"  [dim]ran[/dim] {escape(command)}")


@app.command()
def init(
    feature: str = typer.Argument(..., help="Feature name (lowercase slug, e.g. login-v2)"),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Replace an existing workflow state",
    ),
) -> None:
    """Start a workflow for a feature, positioned at Init.

    Examples:
        stagegate init login-v2
    """
    session = _open_session()
    state_file = session.machine.state_dir / STATE_FILE
    if state_file.exists() and not force:
        rprint(f"[red]A workflow already exists at {state_file}[/red]")
        rprint("[dim]Use --force to replace it.[/dim]")
        raise typer.Exit(1)

    rprint(f"[bold blue]stagegate v{__version__}[/bold blue]")
    try:
        state = session.machine.initialize(feature)
    except ValueError as e:
        _fail(e)
    session.machine.save_state(state)
    rprint(f"[green]Feature:[/green] {state.feature_name}")
    rprint(f"[green]Branch:[/green] {state.feature_branch}")
    rprint(f"[green]Stage:[/green] {state.current_stage.display_name}")


@app.command("classify")
def classify_command(
    text: str = typer.Argument(..., help="Instruction text, e.g. 'ask: drop table'"),
) -> None:
    """Show how an instruction is classified."""
    try:
        command = classify(text)
    except InvalidCommand as e:
        _fail(e)

    table = Table(title="Classification")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Prefix", command.prefix if command.prefix is not None else "-")
    table.add_row("Body", command.body)
    table.add_row("Category", command.category.value)
    table.add_row(
        "Requires approval",
        "[yellow]yes[/yellow]" if command.requires_approval else "[green]no[/green]",
    )
    console.print(table)


@app.command()
def submit(
    commands: List[str] = typer.Argument(..., help="One or more instructions, in order"),
) -> None:
    """Classify, gate and execute instructions.

    Examples:
        stagegate submit "commit: update README"
        stagegate submit "ask: delete production database"
    """
    session = _open_session()
    try:
        results = session.dispatcher.submit_all(commands)
    except WORKFLOW_ERRORS as e:
        _print_executed(session.executor)
        _fail(e)

    for result in results:
        style = {"approved": "green", "rejected": "red", "pending": "yellow"}[result.decision.value]
        rprint(f"[{style}]{result.decision.value}[/{style}] {escape(result.command.raw_text)}")
    _print_executed(session.executor)


@app.command()
def scaffold(
    accept_edits: bool = typer.Option(
        False,
        "--accept-edits",
        help="Keep hand edits to the stage's files and record them",
    ),
) -> None:
    """Create the current stage's directories and artifacts."""
    session = _open_session()
    state = _load_state(session)
    try:
        if accept_edits:
            state, artifacts = session.machine.accept_edits(state)
        else:
            state, artifacts = session.machine.scaffold(state)
    except ScaffoldConflict as e:
        rprint("[red]Conflicting files (left untouched):[/red]")
        for path in e.paths:
            rprint(f"  - {path}")
        raise typer.Exit(1)
    except WORKFLOW_ERRORS as e:
        _fail(e)

    session.machine.save_state(state)
    rprint(f"[bold]Scaffolded {state.current_stage.display_name}[/bold]")
    for artifact in artifacts:
        rprint(f"  [green]{artifact.path}[/green]")
    if not artifacts:
        rprint("  [dim]directories only[/dim]")


@app.command()
def plan() -> None:
    """Plan the VCS commands that record the current stage."""
    session = _open_session()
    state = _load_state(session)
    try:
        state = session.machine.plan(state)
    except WORKFLOW_ERRORS as e:
        _fail(e)

    session.machine.save_state(state)
    rprint(f"[bold]Planned commands for {state.current_stage.display_name}:[/bold]")
    for command in state.current.vcs_commands or []:
        rprint(f"  {escape(command)}")


@app.command()
def advance(
    task: Optional[str] = typer.Option(
        None,
        "--task",
        "-t",
        help="Step one task sub-workflow instead of the stage",
    ),
) -> None:
    """Ask for approval of the current stage (or step a task) and move on."""
    session = _open_session()
    state = _load_state(session)

    if task is not None:
        try:
            flow = session.machine.task_flow(task)
        except KeyError:
            _fail(ValueError(f"Unknown task: {task}"))
        before = flow.state
        try:
            after = flow.resubmit() if flow.unit.last_error else flow.step()
        except WORKFLOW_ERRORS as e:
            session.machine.save_state(state)
            _fail(e)
        session.machine.save_state(state)
        rprint(f"[green]{task}:[/green] {before.value} -> {after.value}")
        return

    stage = state.current_stage
    try:
        state = session.machine.advance(state)
    except WORKFLOW_ERRORS as e:
        _print_executed(session.executor)
        _fail(e)

    session.machine.save_state(state)
    _print_executed(session.executor)
    decision = state.stages[stage.value].approval_status
    if decision == Decision.REJECTED:
        rprint(f"[red]{stage.display_name} rejected; address the feedback and advance again[/red]")
        raise typer.Exit(1)
    if decision == Decision.PENDING:
        rprint(f"[yellow]{stage.display_name} is waiting for approval[/yellow]")
        return
    if state.completed:
        rprint(f"[bold green]Feature {state.feature_name} verified[/bold green]")
    else:
        rprint(f"[green]Approved {stage.display_name}[/green] -> {state.current_stage.display_name}")


@app.command()
def tasks(
    run_tasks: bool = typer.Option(
        False,
        "--run",
        "-r",
        help="Run task sub-workflows concurrently",
    ),
    names: Optional[List[str]] = typer.Option(
        None,
        "--name",
        "-n",
        help="Limit to these tasks (repeatable)",
    ),
    plan_names: Optional[str] = typer.Option(
        None,
        "--set",
        help="Set the task plan during task_split (comma-separated)",
    ),
) -> None:
    """List task sub-workflows, optionally running them."""
    session = _open_session()
    state = _load_state(session)

    if plan_names is not None:
        task_plan = [name.strip() for name in plan_names.split(",") if name.strip()]
        try:
            state = session.machine.set_task_plan(state, task_plan)
        except WORKFLOW_ERRORS as e:
            _fail(e)
        session.machine.save_state(state)
        rprint(f"[green]Task plan:[/green] {', '.join(state.task_plan)}")
        return

    errors: dict[str, str] = {}
    if run_tasks:
        try:
            state, outcomes = session.machine.run_tasks(state, names)
        except (InvalidTransition, KeyError) as e:
            _fail(e)
        session.machine.save_state(state)
        errors = {name: o.error for name, o in outcomes.items() if o.error}

    if not state.tasks:
        rprint("[dim]No tasks yet. Tasks are created on entering implementation.[/dim]")
        return

    table = Table(title=f"Tasks for {state.feature_name}")
    table.add_column("Task", style="cyan")
    table.add_column("Branch")
    table.add_column("State", style="green")
    table.add_column("Error", style="red")
    for name, unit in sorted(state.tasks.items()):
        if names and name not in names:
            continue
        table.add_row(name, unit.branch_name, unit.sub_state.value, errors.get(name) or unit.last_error or "")
    console.print(table)


@app.command()
def status() -> None:
    """Show stage and task status."""
    session = _open_session()
    state = _load_state(session)

    rprint(f"[bold blue]{state.feature_name}[/bold blue] on {state.feature_branch}")
    if state.completed:
        rprint("[bold green]Completed[/bold green]")

    table = Table(title="Stages")
    table.add_column("#", style="dim")
    table.add_column("Stage", style="cyan")
    table.add_column("Status")
    table.add_column("Artifacts")
    for stage in StageId:
        record = state.get_stage(stage)
        if record is None:
            table.add_row(str(stage.order), stage.display_name, "[dim]not started[/dim]", "")
            continue
        style = {"approved": "green", "rejected": "red", "pending": "yellow"}[record.approval_status.value]
        marker = " (current)" if stage == state.current_stage and not state.completed else ""
        table.add_row(
            str(stage.order),
            stage.display_name + marker,
            f"[{style}]{record.approval_status.value}[/{style}]",
            str(len(record.artifacts)),
        )
    console.print(table)

    if state.tasks:
        rprint()
        for name, unit in sorted(state.tasks.items()):
            rprint(f"  [cyan]{name}[/cyan]: {unit.sub_state.value}")


@app.command()
def audit(
    kind: Optional[str] = typer.Option(
        None,
        "--kind",
        "-k",
        help="Only entries of this kind (e.g. gate_decision)",
    ),
    summary: bool = typer.Option(
        False,
        "--summary",
        "-s",
        help="Show a summary built from the log",
    ),
) -> None:
    """Show the audit log."""
    session = _open_session()
    log = session.audit_log

    if summary:
        data = log.summary()
        rprint(f"[bold]Entries:[/bold] {data['entries']}")
        rprint(f"[bold]Approved stages:[/bold] {', '.join(data['approved_stages']) or '-'}")
        rprint(f"[bold]Rejected stages:[/bold] {', '.join(data['rejected_stages']) or '-'}")
        rprint(f"[bold]Decisions:[/bold] {data['decisions']}")
        rprint(f"[bold]Errors:[/bold] {data['errors']}")
        for subject, task_state in sorted(data["tasks"].items()):
            rprint(f"  [cyan]{subject}[/cyan]: {task_state}")
        return

    try:
        audit_kind = AuditKind(kind) if kind else None
    except ValueError:
        _fail(ValueError(f"Unknown kind: {kind}. Available: {', '.join(k.value for k in AuditKind)}"))

    entries = log.filter(kind=audit_kind)
    if not entries:
        rprint("[dim]No audit entries.[/dim]")
        return

    table = Table(title="Audit log")
    table.add_column("#", style="dim")
    table.add_column("Time")
    table.add_column("Kind", style="cyan")
    table.add_column("Subject")
    table.add_column("Decision / transition")
    for entry in entries:
        if entry.decision is not None:
            outcome = f"{entry.decision.value} ({entry.decided_by})"
        elif entry.to_state or entry.from_state:
            outcome = f"{entry.from_state or '-'} -> {entry.to_state or '-'}"
        else:
            outcome = ""
        table.add_row(
            str(entry.sequence),
            entry.timestamp.strftime("%H:%M:%S"),
            entry.kind.value,
            entry.subject_id,
            outcome,
        )
    console.print(table)


@app.command()
def run(
    feature: Optional[str] = typer.Argument(None, help="Feature name to start"),
    resume: bool = typer.Option(
        False,
        "--resume",
        help="Continue the persisted workflow",
    ),
    task_names: Optional[str] = typer.Option(
        None,
        "--tasks",
        "-t",
        help="Comma-separated task names to use at task split",
    ),
) -> None:
    """Drive a feature through every stage.

    Examples:
        stagegate run login-v2 --tasks login-form,session-store
        stagegate -y run login-v2 --tasks login-form
        stagegate run --resume
    """
    session = _open_session()
    rprint(f"[bold blue]stagegate v{__version__}[/bold blue]")

    plan_names = [n.strip() for n in task_names.split(",") if n.strip()] if task_names else None
    runner = FeatureRunner(session.machine, console=console, task_plan=plan_names)

    try:
        state = runner.run(feature_name=feature, resume=resume)
    except FileNotFoundError:
        rprint("[red]No workflow to resume.[/red]")
        raise typer.Exit(1)
    except WORKFLOW_ERRORS as e:
        _fail(e)
    except KeyboardInterrupt:
        rprint("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(130)

    if not state.completed:
        rprint("[yellow]Workflow paused. Resume with:[/yellow] stagegate run --resume")


if __name__ == "__main__":
    app()
