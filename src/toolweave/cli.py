"""
Command-line interface.

Usage:
    toolweave run workflow.json --db-dir .toolweave --tools tools.json
    toolweave trace .toolweave --workflow-id <id> --format timeline
    toolweave patterns export .toolweave -o patterns.json
    toolweave patterns import .toolweave patterns.json --strategy merge
    toolweave suggest .toolweave --intent "summarise the repo" --context read_file
    toolweave metrics .toolweave

The run command executes tools through the scripted mock executor; a tools
file maps tool names to outcomes:

    {
        "fetch": {"outputs": [{"error": "flaky"}, "page"], "delay": 0.1},
        "write_file": {"requires": "filesystem"}
    }
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from toolweave import __version__
from toolweave.application.suggester import PatternStrategy
from toolweave.config import load_config, load_workflow
from toolweave.domain.exceptions import ConfigurationError, InvalidDAG, ToolExecutionError
from toolweave.domain.hil import ApprovalMode
from toolweave.domain.models import PermissionSet, RunResult, RunStatus, TaskStatus
from toolweave.infrastructure.approvers import ConsoleApprover, StaticApprover
from toolweave.infrastructure.persistence import FilesystemDbClient, FilesystemEventStore
from toolweave.infrastructure.tools import MockToolExecutor
from toolweave.runtime import Runtime

logger = logging.getLogger("toolweave")

console = Console()
error_console = Console(stderr=True)

STATUS_STYLES = {
    TaskStatus.SUCCESS: "green",
    TaskStatus.ERROR: "red",
    TaskStatus.SKIPPED: "yellow",
}

TIMELINE_SYMBOLS = {
    "workflow_start": "[>]",
    "layer_start": "[=]",
    "task_start": "[.]",
    "task_complete": "[+]",
    "task_error": "[-]",
    "task_skipped": "[~]",
    "decision_required": "[?]",
    "decision_resolved": "[!]",
    "workflow_complete": "[#]",
    "workflow_aborted": "[x]",
}


def _configure_logging(verbose: bool) -> None:
    handler = RichHandler(console=error_console, rich_tracebacks=True, show_path=False)
    handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.setLevel(logging.DEBUG)
    logger.handlers = [handler]


def _build_tools(path: str | None) -> MockToolExecutor:
    if path is None:
        return MockToolExecutor()
    try:
        with open(path) as f:
            script = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    responses: dict[str, list[Any]] = {}
    delays: dict[str, float] = {}
    required: dict[str, PermissionSet] = {}
    for tool, entry in script.items():
        outcomes = []
        for outcome in entry.get("outputs", []):
            if isinstance(outcome, dict) and "error" in outcome:
                outcome = ToolExecutionError(
                    tool, outcome["error"], recoverable=outcome.get("recoverable", True)
                )
            outcomes.append(outcome)
        if outcomes:
            responses[tool] = outcomes
        if "delay" in entry:
            delays[tool] = float(entry["delay"])
        if "requires" in entry:
            required[tool] = PermissionSet(entry["requires"])
    return MockToolExecutor(responses, delays, required)


def _print_result(result: RunResult) -> None:
    table = Table(title=f"Workflow {result.workflow_id}")
    table.add_column("Layer", justify="right")
    table.add_column("Task", style="cyan")
    table.add_column("Tool")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Details")

    for task in sorted(result.results, key=lambda r: (r.layer_index, r.task_id)):
        style = STATUS_STYLES.get(task.status, "white")
        details = task.error or ""
        if task.reason is not None:
            details = f"{task.reason.value}: {details}"
        table.add_row(
            str(task.layer_index),
            task.task_id,
            task.tool,
            f"[{style}]{task.status.value}[/{style}]",
            str(task.attempts),
            f"{task.execution_time_ms:.1f}",
            details[:60],
        )
    console.print(table)

    colour = "green" if result.status is RunStatus.COMPLETED else "red"
    summary = f"[bold {colour}]{result.status.value}[/bold {colour}]"
    if result.abort_reason:
        summary += f" ({result.abort_reason})"
    console.print(f"Run {summary} in {result.trace.duration_ms:.0f}ms")


def _runtime(db_dir: str, config_path: str | None) -> Runtime:
    return Runtime.build(
        MockToolExecutor(),
        FilesystemDbClient(db_dir),
        config=load_config(config_path),
        event_store=FilesystemEventStore(Path(db_dir)),
    )


@click.group()
@click.version_option(__version__, prog_name="toolweave")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Adaptive DAG tool orchestration."""
    _configure_logging(verbose)


@main.command()
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False))
@click.option("--db-dir", default=".toolweave", type=click.Path(), help="State directory")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True))
@click.option("--tools", "tools_path", default=None, type=click.Path(exists=True))
@click.option("--workflow-id", default=None, help="Id for the run (random by default)")
@click.option("--hil", is_flag=True, help="Ask for approval after every layer")
@click.option(
    "--approver",
    type=click.Choice(["console", "approve", "reject"]),
    default="console",
    show_default=True,
    help="Who answers approval and escalation checkpoints",
)
def run(
    workflow: str,
    db_dir: str,
    config_path: str | None,
    tools_path: str | None,
    workflow_id: str | None,
    hil: bool,
    approver: str,
) -> None:
    """Execute a workflow DAG."""
    try:
        dag = load_workflow(workflow)
        tools = _build_tools(tools_path)
        config = load_config(config_path)
    except (ConfigurationError, InvalidDAG) as e:
        error_console.print(f"[bold red]ERROR:[/bold red] {e}")
        raise SystemExit(2) from e

    if hil:
        executor_config = dataclasses.replace(
            config.executor,
            hil=dataclasses.replace(
                config.executor.hil, enabled=True, approval_required=ApprovalMode.ALWAYS
            ),
        )
        config = dataclasses.replace(config, executor=executor_config)

    if approver == "console":
        answerer: ConsoleApprover | StaticApprover = ConsoleApprover(console=console)
    else:
        allow = approver == "approve"
        answerer = StaticApprover(allow, allow, feedback=f"--approver {approver}")

    runtime = Runtime.build(
        tools,
        FilesystemDbClient(db_dir),
        config=config,
        event_store=FilesystemEventStore(Path(db_dir)),
        approver=answerer,
    )

    async def execute() -> RunResult:
        await runtime.start()
        try:
            return await runtime.run(dag, workflow_id=workflow_id)
        finally:
            await runtime.shutdown()

    result = asyncio.run(execute())
    _print_result(result)
    if result.status is not RunStatus.COMPLETED:
        raise SystemExit(1)


@main.command()
@click.argument("db_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--workflow-id", default=None, help="Run to show (latest by default)")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["table", "timeline"]),
    default="table",
    show_default=True,
)
def trace(db_dir: str, workflow_id: str | None, fmt: str) -> None:
    """Show the stored events of a run."""
    store = FilesystemEventStore(Path(db_dir))
    if workflow_id is None:
        ids = store.workflow_ids()
        if not ids:
            error_console.print(f"No runs recorded in {db_dir}")
            raise SystemExit(1)
        workflow_id = ids[-1]

    events = store.get_events(workflow_id=workflow_id)
    if not events:
        error_console.print(f"No events found for workflow {workflow_id}")
        raise SystemExit(1)

    if fmt == "timeline":
        for event in events:
            timestamp = event.created_at[:19] if event.created_at else "?"
            symbol = TIMELINE_SYMBOLS.get(event.event_type.value, "[ ]")
            line = f"{timestamp} {symbol} {event.event_type.value}"
            task_id = event.payload.get("task_id") or event.payload.get("checkpoint_id")
            if task_id:
                line += f" {task_id}"
            if event.payload.get("error"):
                line += f": {str(event.payload['error'])[:50]}"
            console.print(line, markup=False, highlight=False)
        return

    table = Table(title=f"Events for {workflow_id}")
    table.add_column("#", justify="right")
    table.add_column("Event")
    table.add_column("Task / checkpoint")
    table.add_column("Details")
    for i, event in enumerate(events, 1):
        payload = dict(event.payload)
        subject = payload.pop("task_id", None) or payload.pop("checkpoint_id", "-")
        details = ", ".join(f"{key}={value}" for key, value in sorted(payload.items()))
        table.add_row(str(i), event.event_type.value, str(subject), details[:70])
    console.print(table)


@main.group()
def patterns() -> None:
    """Export or import learned tool-sequence patterns."""


@patterns.command("export")
@click.argument("db_dir", type=click.Path(exists=True, file_okay=False))
@click.option("-o", "--output", default=None, type=click.Path(), help="File (stdout if omitted)")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True))
def export_patterns(db_dir: str, output: str | None, config_path: str | None) -> None:
    """Write learned patterns as JSON."""
    runtime = _runtime(db_dir, config_path)
    asyncio.run(runtime.graph.sync_from_database())
    data = runtime.suggester.export_learned_patterns()
    text = json.dumps(data, indent=2)
    if output is None:
        click.echo(text)
    else:
        Path(output).write_text(text)
        console.print(f"Exported {len(data)} pattern(s) to {output}")


@patterns.command("import")
@click.argument("db_dir", type=click.Path(file_okay=False))
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in PatternStrategy]),
    default=PatternStrategy.MERGE.value,
    show_default=True,
)
@click.option("--config", "config_path", default=None, type=click.Path(exists=True))
def import_patterns(db_dir: str, source: str, strategy: str, config_path: str | None) -> None:
    """Load patterns from a JSON file into the stored graph."""
    try:
        data = json.loads(Path(source).read_text())
    except json.JSONDecodeError as e:
        error_console.print(f"[bold red]ERROR:[/bold red] Invalid JSON in {source}: {e}")
        raise SystemExit(2) from e
    if not isinstance(data, list):
        error_console.print("[bold red]ERROR:[/bold red] Expected a JSON array of patterns")
        raise SystemExit(2)

    runtime = _runtime(db_dir, config_path)

    async def load() -> int:
        await runtime.graph.sync_from_database()
        count = runtime.suggester.import_learned_patterns(data, strategy)
        await runtime.graph.persist_all()
        return count

    imported = asyncio.run(load())
    console.print(f"Imported {imported} of {len(data)} pattern(s) ({strategy})")


@main.command()
@click.argument("db_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--intent", required=True, help="What the next step should achieve")
@click.option("--context", "context_tools", multiple=True, help="Tools already run")
@click.option("-k", default=5, show_default=True, help="Number of suggestions")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True))
def suggest(
    db_dir: str, intent: str, context_tools: tuple[str, ...], k: int, config_path: str | None
) -> None:
    """Rank likely next tools or capabilities."""
    runtime = _runtime(db_dir, config_path)
    asyncio.run(runtime.start())
    for tool in context_tools:
        if not runtime.model.has_node(tool):
            runtime.index_node(tool)

    suggestions = runtime.suggester.suggest_for_intent(intent, list(context_tools), k)
    table = Table(title="Suggestions")
    table.add_column("Candidate", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Graph", justify="right")
    table.add_column("Learned", justify="right")
    table.add_column("Similarity", justify="right")
    table.add_column("Band")
    for suggestion in suggestions:
        table.add_row(
            suggestion.candidate_id,
            f"{suggestion.score:.3f}",
            f"{suggestion.graph_score:.3f}",
            f"{suggestion.learned_score:.3f}",
            f"{suggestion.similarity_score:.3f}",
            runtime.thresholds.classify(suggestion.score).value,
        )
    console.print(table)


@main.command()
@click.argument("db_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True))
def metrics(db_dir: str, as_json: bool, config_path: str | None) -> None:
    """Show graph, threshold and training metrics."""
    runtime = _runtime(db_dir, config_path)
    asyncio.run(runtime.start())
    data = runtime.metrics()
    data["topology"] = runtime.graph.get_metrics("day")
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return

    for section, values in data.items():
        table = Table(title=section.capitalize(), show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in values.items():
            table.add_row(key, f"{value:.4f}" if isinstance(value, float) else str(value))
        console.print(table)


if __name__ == "__main__":
    main()
