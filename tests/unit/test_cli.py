"""Tests for CLI commands."""
import json
from unittest.mock import patch

import pytest

from flowmesh.cli import main


@pytest.fixture
def workflow_file(tmp_path):
    path = tmp_path / "greeting.json"
    path.write_text(json.dumps({
        "nodes": [
            {"id": "t", "type": "trigger", "data": {}},
            {"id": "greet", "type": "template", "data": {"template": "Hello {{trigger.name}}"}},
        ],
        "edges": [{"id": "e1", "source": "t", "target": "greet"}],
    }))
    return path


class TestCmdRun:
    """Test the run command."""

    @patch("flowmesh.cli.setup_logging")
    def test_run_prints_result(self, mock_logging, workflow_file, capsys):
        code = main(["run", str(workflow_file), "--input", '{"name": "Ada"}'])

        assert code == 0
        result = json.loads(capsys.readouterr().out)
        assert result["success"] is True
        assert result["workflowId"] == "greeting"
        assert result["output"]["data"] == "Hello Ada"
        mock_logging.assert_called_once()

    @patch("flowmesh.cli.setup_logging")
    def test_run_input_from_file_and_wrapped_export(self, mock_logging, workflow_file, tmp_path, capsys):
        exported = tmp_path / "export.json"
        exported.write_text(json.dumps({"name": "Export", "content": json.loads(workflow_file.read_text())}))
        payload = tmp_path / "input.json"
        payload.write_text('{"name": "Bob"}')

        code = main(["run", str(exported), "--input", f"@{payload}", "--workflow-id", "wf-42"])

        assert code == 0
        result = json.loads(capsys.readouterr().out)
        assert result["workflowId"] == "wf-42"
        assert result["output"]["data"] == "Hello Bob"

    @patch("flowmesh.cli.setup_logging")
    def test_failed_run_exits_nonzero(self, mock_logging, tmp_path, capsys):
        path = tmp_path / "empty.json"
        path.write_text('{"nodes": [], "edges": []}')

        assert main(["run", str(path)]) == 1
        assert json.loads(capsys.readouterr().out)["error"]["code"] == "EMPTY_WORKFLOW"

    @pytest.mark.parametrize("extra", [[], ["--input", "[1, 2]"], ["--input", "{bad"]])
    @patch("flowmesh.cli.setup_logging")
    def test_bad_files_and_input(self, mock_logging, tmp_path, workflow_file, capsys, extra):
        target = str(workflow_file) if extra else str(tmp_path / "missing.json")

        assert main(["run", target, *extra]) == 1
        assert capsys.readouterr().err.startswith("Error:")


class TestCmdNodes:
    """Test the nodes command."""

    def test_lists_node_types(self, capsys):
        assert main(["nodes"]) == 0
        out = capsys.readouterr().out
        assert any(line.split() == ["openaiChat", "openai", "chat.completion"] for line in out.splitlines())

    def test_json_output(self, capsys):
        assert main(["nodes", "--json"]) == 0
        entries = json.loads(capsys.readouterr().out)
        assert {"type": "sheetsFind", "provider": "google", "operation": "sheets.findRow"} in entries

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage: flowmesh" in capsys.readouterr().out
