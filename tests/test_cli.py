import json
import sys

import pytest
import yaml
from loguru import logger
from typer.testing import CliRunner

from gaterun.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_logger():
    yield
    # The CLI callback rebinds loguru to the runner's (now closed) stderr.
    logger.remove()
    logger.add(sys.stderr)


def py_step(name, code):
    return {"name": name, "command": sys.executable, "args": ["-c", code]}


def write_pipeline(repo, steps, env=None):
    cfg = repo / ".gaterun" / "pipeline.yaml"
    cfg.parent.mkdir(parents=True, exist_ok=True)
    data = {"name": "ci", "steps": steps}
    if env:
        data["env"] = env
    cfg.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return cfg


def test_cli_help():
    res = runner.invoke(app, ["--help"])
    assert res.exit_code == 0
    assert "Sequential build gate" in res.output


def test_cli_version():
    res = runner.invoke(app, ["--version"])
    assert res.exit_code == 0
    assert "gaterun version" in res.output


def test_init_writes_template(tmp_path):
    res = runner.invoke(app, ["init", "--repo", str(tmp_path)])
    assert res.exit_code == 0
    assert (tmp_path / ".gaterun" / "pipeline.yaml").exists()

    again = runner.invoke(app, ["init", "--repo", str(tmp_path)])
    assert again.exit_code == 0
    assert "already present" in again.output


def test_run_pass(tmp_path):
    write_pipeline(
        tmp_path,
        [py_step("test", "pass"), py_step("fmt-check", "pass"), py_step("lint", "pass")],
    )
    res = runner.invoke(app, ["run", "--repo", str(tmp_path), "--quiet", "--run-id", "r1"])

    assert res.exit_code == 0, res.output
    assert "PASS" in res.output

    report = json.loads((tmp_path / ".gaterun" / "runs" / "r1" / "RUN_REPORT.json").read_text())
    assert report["status"] == "PASS"
    assert [s["name"] for s in report["steps"]] == ["test", "fmt-check", "lint"]
    assert (tmp_path / ".gaterun" / "runs" / "r1" / "logs" / "events.jsonl").exists()


def test_run_failure_surfaces_step_and_stderr(tmp_path):
    write_pipeline(
        tmp_path,
        [
            py_step("test", "import sys; sys.stderr.write('assertion [left == right] failed'); sys.exit(101)"),
            py_step("lint", "pass"),
        ],
    )
    res = runner.invoke(app, ["run", "--repo", str(tmp_path), "--quiet", "--no-artifacts"])

    assert res.exit_code == 1
    assert "first failing step" in res.output
    assert "assertion [left == right] failed" in res.output
    assert not (tmp_path / ".gaterun" / "runs").exists()


def test_run_pipeline_env_reaches_steps(tmp_path):
    code = "import os, sys; sys.exit(0 if os.environ['STRICT'] == 'yes' else 1)"
    write_pipeline(tmp_path, [py_step("test", code)], env={"STRICT": "yes"})
    res = runner.invoke(app, ["run", "--repo", str(tmp_path), "--quiet", "--no-artifacts"])
    assert res.exit_code == 0, res.output


def test_run_config_error_exit_code(tmp_path):
    write_pipeline(tmp_path, [{"name": "a", "command": "x"}, {"name": "a", "command": "y"}])
    res = runner.invoke(app, ["run", "--repo", str(tmp_path), "--no-artifacts"])
    assert res.exit_code == 2
    assert "Configuration error" in res.output


def test_run_missing_pipeline_file(tmp_path):
    res = runner.invoke(app, ["run", "--repo", str(tmp_path), "--no-artifacts"])
    assert res.exit_code == 2


def test_run_rejects_bad_run_id(tmp_path):
    res = runner.invoke(app, ["run", "--repo", str(tmp_path), "--run-id", "bad/id"])
    assert res.exit_code != 0


def test_status_prints_stored_report(tmp_path):
    write_pipeline(tmp_path, [py_step("test", "import sys; sys.exit(1)")])
    runner.invoke(app, ["run", "--repo", str(tmp_path), "--quiet", "--run-id", "r2"])

    res = runner.invoke(app, ["status", "--repo", str(tmp_path), "--run", "r2"])
    assert res.exit_code == 0
    assert '"first_failure": "test"' in res.output


def test_status_unknown_run(tmp_path):
    res = runner.invoke(app, ["status", "--repo", str(tmp_path), "--run", "nope"])
    assert res.exit_code != 0


def test_doctor(tmp_path):
    write_pipeline(tmp_path, [py_step("test", "pass")])
    res = runner.invoke(app, ["doctor", "--repo", str(tmp_path)])
    assert res.exit_code == 0
    assert "gaterun doctor" in res.output

    write_pipeline(tmp_path, [{"name": "lint", "command": "gaterun-missing-linter-xyz"}])
    res = runner.invoke(app, ["doctor", "--repo", str(tmp_path)])
    assert res.exit_code == 2


def test_status_reports_corrupt_record(tmp_path):
    run_dir = tmp_path / ".gaterun" / "runs" / "r3"
    run_dir.mkdir(parents=True)
    (run_dir / "RUN_REPORT.json").write_text('{"run_id": "r3"}', encoding="utf-8")

    res = runner.invoke(app, ["status", "--repo", str(tmp_path), "--run", "r3"])
    assert res.exit_code == 2
    assert "Corrupt report" in res.output

    (run_dir / "RUN_REPORT.json").write_text("{not json", encoding="utf-8")
    res = runner.invoke(app, ["status", "--repo", str(tmp_path), "--run", "r3"])
    assert res.exit_code == 2
