"""Tests for the craftflow command line."""

import argparse
import json
from pathlib import Path

import pytest

import craftflow.observability
from craftflow import cli

HELLO = Path(__file__).resolve().parents[2] / "examples" / "workflows" / "hello.json"


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(craftflow.observability, "configure_logging", lambda **kwargs: None)


def run_args(workflow, headless=False, entry=None) -> argparse.Namespace:
    return argparse.Namespace(
        workflow=str(workflow),
        headless=headless,
        entry=entry,
        log_level="WARNING",
        log_format="human",
    )


class TestRunCommand:
    @pytest.mark.parametrize("headless", [False, True])
    def test_run_hello(self, capsys, headless):
        assert cli.cmd_run(run_args(HELLO, headless=headless)) == 0

        outputs = json.loads(capsys.readouterr().out)
        assert outputs["node_start"]["state"] == "complete"
        assert outputs["node_log"]["state"] == "complete"
        assert outputs["node_log"]["outputs"] == {"value": {"message": "hello"}}

    def test_missing_file(self, tmp_path, capsys):
        path = tmp_path / "nope.json"
        path.write_text("not json")

        assert cli.cmd_run(run_args(path)) == 1
        assert "Error" in capsys.readouterr().err


class TestValidateCommand:
    def test_valid(self, capsys):
        assert cli.cmd_validate(argparse.Namespace(workflow=str(HELLO))) == 0
        assert "wf_hello" in capsys.readouterr().out

    def test_invalid(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(
            json.dumps(
                {
                    "id": "wf_bad",
                    "version_id": "v1",
                    "nodes": [{"id": "node_a", "type": "Unknown", "context_id": "ctx_a"}],
                    "edges": [],
                }
            )
        )

        assert cli.cmd_validate(argparse.Namespace(workflow=str(path))) == 1
        assert "Unknown node type" in capsys.readouterr().err
