"""Tests for the jobdag command line interface."""

import json

import pytest
from typer.testing import CliRunner

from jobdag.cli.main import app

EXECUTORS = '''
async def succeed(job, context, options):
    return {"agent": job.agent, "seen": sorted(context)}


def fail_tests(job, context, options):
    if job.id == "test":
        raise RuntimeError("3 tests failed")
    return "ok"
'''

PIPELINE = """
name: build-and-test
jobs:
  - id: analyze
    agent: architect
    task: Analyze the codebase
  - id: test
    agent: tester
    dependsOn: analyze
"""


@pytest.fixture
def runner():
    """Fixture providing a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Working directory with a pipeline file and an importable executor module."""
    (tmp_path / "cli_executors.py").write_text(EXECUTORS)
    (tmp_path / "pipeline.yaml").write_text(PIPELINE)
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestValidate:
    def test_valid_pipeline(self, runner, project):
        """Test validate reports the execution order."""
        result = runner.invoke(app, ["validate", "pipeline.yaml"])

        assert result.exit_code == 0
        assert "Validation successful" in result.stdout
        assert "analyze → test" in result.stdout

    def test_valid_pipeline_json(self, runner, project):
        """Test validate emits a JSON summary."""
        result = runner.invoke(app, ["--json", "validate", "pipeline.yaml"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data == {
            "valid": True,
            "file": "pipeline.yaml",
            "pipeline": "build-and-test",
            "jobs": 2,
            "order": ["analyze", "test"],
        }

    def test_cycle_is_reported(self, runner, project):
        """Test validate fails on a cyclic pipeline."""
        (project / "cyclic.yaml").write_text(
            "name: loop\n"
            "jobs:\n"
            "  - {id: a, agent: x, dependsOn: [b]}\n"
            "  - {id: b, agent: x, dependsOn: [a]}\n"
        )

        result = runner.invoke(app, ["--json", "validate", "cyclic.yaml"])

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["valid"] is False
        assert "a -> b -> a" in data["error"]

    def test_invalid_yaml(self, runner, project):
        """Test validate fails on malformed YAML."""
        (project / "broken.yaml").write_text("name: [unclosed\n")

        result = runner.invoke(app, ["validate", "broken.yaml"])

        assert result.exit_code == 1
        assert "Validation failed" in result.stdout


class TestRun:
    def test_successful_run_json(self, runner, project):
        """Test run executes every job and prints the final state."""
        result = runner.invoke(
            app,
            [
                "--json",
                "run",
                "pipeline.yaml",
                "--executor",
                "cli_executors.succeed",
                "--state-dir",
                str(project / "state"),
            ],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["status"] == "completed"
        assert data["progress"] == 100
        assert data["jobs"]["test"]["output"] == {"agent": "tester", "seen": ["analyze"]}
        assert (project / "state" / "runs" / f"{data['runId']}.json").exists()

    def test_context_file(self, runner, project):
        """Test run passes the context file to executors."""
        (project / "ctx.json").write_text('{"branch": "main"}')

        result = runner.invoke(
            app,
            [
                "--json",
                "run",
                "pipeline.yaml",
                "-x",
                "cli_executors:succeed",
                "-c",
                "ctx.json",
                "--state-dir",
                str(project / "state"),
            ],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["context"] == {"branch": "main"}
        assert data["jobs"]["analyze"]["output"]["seen"] == ["branch"]

    def test_failed_run_exits_non_zero(self, runner, project):
        """Test a failing job makes the command exit with status 1."""
        result = runner.invoke(
            app,
            [
                "--log-level",
                "critical",
                "run",
                "pipeline.yaml",
                "--executor",
                "cli_executors.fail_tests",
                "--state-dir",
                str(project / "state"),
            ],
        )

        assert result.exit_code == 1
        assert "3 tests failed" in result.stdout
        assert "failed" in result.stdout

    def test_unknown_executor(self, runner, project):
        """Test an unresolvable executor path is reported."""
        result = runner.invoke(
            app,
            ["run", "pipeline.yaml", "-x", "cli_executors.missing", "--state-dir", str(project)],
        )

        assert result.exit_code == 1
        assert "missing" in result.stdout


class TestRuns:
    def run_pipeline(self, runner, project) -> str:
        result = runner.invoke(
            app,
            [
                "--json",
                "run",
                "pipeline.yaml",
                "-x",
                "cli_executors.succeed",
                "--state-dir",
                str(project / "state"),
            ],
        )
        return json.loads(result.stdout)["runId"]

    def test_list_runs(self, runner, project):
        """Test runs list shows persisted runs."""
        run_id = self.run_pipeline(runner, project)

        result = runner.invoke(app, ["--json", "runs", "list", "--state-dir", str(project / "state")])

        assert result.exit_code == 0
        assert [run["runId"] for run in json.loads(result.stdout)] == [run_id]

    def test_list_empty(self, runner, project):
        """Test runs list with no persisted runs."""
        result = runner.invoke(app, ["runs", "list", "--state-dir", str(project / "nothing")])

        assert result.exit_code == 0
        assert "No runs found" in result.stdout

    def test_show_run(self, runner, project):
        """Test runs show prints one run."""
        run_id = self.run_pipeline(runner, project)

        result = runner.invoke(app, ["runs", "show", run_id, "--state-dir", str(project / "state")])

        assert result.exit_code == 0
        assert "build-and-test" in result.stdout
        assert "analyze" in result.stdout

    def test_show_missing_run(self, runner, project):
        """Test runs show for an unknown id."""
        result = runner.invoke(
            app, ["runs", "show", "nope-1-0000000", "--state-dir", str(project / "state")]
        )

        assert result.exit_code == 1
        assert "not found" in result.stdout


class TestGlobalOptions:
    def test_version(self, runner):
        """Test --version prints the version."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "jobdag" in result.stdout

    def test_invalid_log_level(self, runner, project):
        """Test an unknown --log-level is rejected."""
        result = runner.invoke(app, ["--log-level", "loud", "validate", "pipeline.yaml"])

        assert result.exit_code != 0
