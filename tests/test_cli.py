"""Tests for the toolweave command-line interface."""

import asyncio
import json

import pytest
from click.testing import CliRunner

from toolweave import __version__
from toolweave.cli import main
from toolweave.domain.models import TaskStatus
from toolweave.infrastructure.persistence import FilesystemDbClient

SMALL_CONFIG = {"shgat": {"embedding_dim": 16, "hidden_dim": 8, "num_heads": 2}}

WORKFLOW = {
    "intent": "read parse and store a json file",
    "tasks": [
        {"id": "read", "tool": "read_file"},
        {"id": "parse", "tool": "parse_json", "depends_on": ["read"]},
        {"id": "store", "tool": "write_file", "depends_on": ["parse"]},
    ],
}


@pytest.fixture
def workspace(tmp_path):  # noqa: ANN001
    """Workflow, config and state directory paths."""
    (tmp_path / "workflow.json").write_text(json.dumps(WORKFLOW))
    (tmp_path / "config.json").write_text(json.dumps(SMALL_CONFIG))
    return tmp_path


def run_workflow(runner, workspace, *extra):  # noqa: ANN001
    return runner.invoke(
        main,
        [
            "run",
            str(workspace / "workflow.json"),
            "--db-dir",
            str(workspace / "db"),
            "--config",
            str(workspace / "config.json"),
            "--workflow-id",
            "wf-1",
            "--approver",
            "approve",
            *extra,
        ],
    )


class TestRun:
    """Tests for the run command."""

    def test_run_completes_and_persists(self, workspace):
        result = run_workflow(CliRunner(), workspace)

        assert result.exit_code == 0, result.output
        assert "completed" in result.output
        db = FilesystemDbClient(workspace / "db")
        traces = asyncio.run(db.load_traces())
        assert [t.workflow_id for t in traces] == ["wf-1"]
        assert (workspace / "db" / "events" / "wf-1.jsonl").exists()
        assert (workspace / "db" / "snapshots" / "shgat.json").exists()
        assert len(asyncio.run(db.load_edges())) == 2

    def test_scripted_tool_failure(self, workspace):
        """A failed task is reported in the trace; dependents are skipped."""
        tools = {"parse_json": {"outputs": [{"error": "bad json", "recoverable": False}]}}
        (workspace / "tools.json").write_text(json.dumps(tools))

        result = run_workflow(CliRunner(), workspace, "--tools", str(workspace / "tools.json"))

        assert result.exit_code == 0, result.output
        trace = asyncio.run(FilesystemDbClient(workspace / "db").load_traces())[0]
        statuses = {r.task_id: r.status for r in trace.task_results}
        assert statuses == {
            "read": TaskStatus.SUCCESS,
            "parse": TaskStatus.ERROR,
            "store": TaskStatus.SKIPPED,
        }

    def test_hil_rejection_aborts(self, workspace):
        runner = CliRunner()
        result = runner.invoke(
            main,
            [
                "run",
                str(workspace / "workflow.json"),
                "--db-dir",
                str(workspace / "db"),
                "--config",
                str(workspace / "config.json"),
                "--hil",
                "--approver",
                "reject",
            ],
        )

        assert result.exit_code == 1
        assert "aborted" in result.output

    def test_invalid_workflow_exits_2(self, workspace):
        (workspace / "bad.json").write_text(json.dumps({"tasks": [{"id": "a"}]}))
        result = CliRunner().invoke(main, ["run", str(workspace / "bad.json")])
        assert result.exit_code == 2


class TestTrace:
    def test_timeline(self, workspace):
        runner = CliRunner()
        run_workflow(runner, workspace)

        result = runner.invoke(main, ["trace", str(workspace / "db"), "--format", "timeline"])

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert "workflow_start" in lines[0]
        assert any("task_complete read" in line for line in lines)

    def test_table_for_named_run(self, workspace):
        runner = CliRunner()
        run_workflow(runner, workspace)

        result = runner.invoke(main, ["trace", str(workspace / "db"), "--workflow-id", "wf-1"])

        assert result.exit_code == 0, result.output
        assert "Events for wf-1" in result.output

    def test_no_runs(self, tmp_path):
        result = CliRunner().invoke(main, ["trace", str(tmp_path)])
        assert result.exit_code == 1


class TestPatterns:
    """Tests for pattern export and import."""

    def test_export_then_import(self, workspace):
        runner = CliRunner()
        run_workflow(runner, workspace)
        exported = workspace / "patterns.json"

        result = runner.invoke(
            main, ["patterns", "export", str(workspace / "db"), "-o", str(exported)]
        )
        assert result.exit_code == 0, result.output
        patterns = json.loads(exported.read_text())
        assert {(p["from"], p["to"]) for p in patterns} == {
            ("read_file", "parse_json"),
            ("parse_json", "write_file"),
        }

        result = runner.invoke(
            main,
            [
                "patterns",
                "import",
                str(workspace / "other"),
                str(exported),
                "--strategy",
                "replace",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Imported 2 of 2" in result.output
        edges = asyncio.run(FilesystemDbClient(workspace / "other").load_edges())
        assert len(edges) == 2

    def test_export_to_stdout(self, workspace):
        runner = CliRunner()
        run_workflow(runner, workspace)

        result = runner.invoke(main, ["patterns", "export", str(workspace / "db")])

        assert result.exit_code == 0, result.output
        assert len(json.loads(result.stdout)) == 2

    def test_import_rejects_non_array(self, workspace):
        (workspace / "patterns.json").write_text(json.dumps({"from": "a"}))
        result = CliRunner().invoke(
            main, ["patterns", "import", str(workspace / "db"), str(workspace / "patterns.json")]
        )
        assert result.exit_code == 2


class TestSuggestAndMetrics:
    def test_suggest_after_run(self, workspace):
        runner = CliRunner()
        run_workflow(runner, workspace)

        result = runner.invoke(
            main,
            [
                "suggest",
                str(workspace / "db"),
                "--intent",
                "parse a json file",
                "--context",
                "read_file",
                "--config",
                str(workspace / "config.json"),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Suggestions" in result.output
        assert "parse_json" in result.output

    def test_metrics_json(self, workspace):
        runner = CliRunner()
        run_workflow(runner, workspace)

        result = runner.invoke(
            main,
            ["metrics", str(workspace / "db"), "--json", "--config", str(workspace / "config.json")],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["graph"]["edge_count"] == 2
        assert data["topology"]["range"] == "day"
        assert data["training"]["model_updates"] == 0

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert __version__ in result.output
