import pytest

from gaterun.artifacts.schemas import validate_run_report
from gaterun.artifacts.store import REPORT_FILE, ArtifactStore
from gaterun.config import Pipeline, Step
from gaterun.executor import Report, StepResult


def test_store_path_ok(tmp_path):
    store = ArtifactStore(tmp_path / "runs")
    p = store.path("subdir", "file.txt")
    assert p == tmp_path / "runs" / "subdir" / "file.txt"


def test_store_path_traversal(tmp_path):
    store = ArtifactStore(tmp_path / "runs")

    with pytest.raises(ValueError, match="Refusing to access path"):
        store.path("..", "secret.txt")

    with pytest.raises(ValueError, match="Refusing to access path"):
        store.path("subdir", "../../secret.txt")


def test_store_ensure(tmp_path):
    store = ArtifactStore(tmp_path / "runs")
    assert not (tmp_path / "runs").exists()
    store.ensure()
    assert (tmp_path / "runs" / "logs").is_dir()


def test_store_write_json(tmp_path):
    store = ArtifactStore(tmp_path / "runs")
    store.ensure()
    store.write_json("foo.json", {"a": 1})
    assert (tmp_path / "runs" / "foo.json").read_text().strip() == '{\n  "a": 1\n}'


def test_write_report_records_prefix_and_logs(tmp_path):
    pipeline = Pipeline(
        "ci",
        tmp_path,
        (
            Step(name="test", command="cargo", args=("test",)),
            Step(name="fmt-check", command="cargo", args=("fmt",)),
            Step(name="lint", command="cargo", args=("clippy",)),
        ),
    )
    report = Report(
        pipeline="ci",
        results=(
            StepResult("test", 0, b"ok\n", b"", 1.5),
            StepResult("fmt-check", 1, b"", b"Diff in src/lib.rs\n", 0.25),
        ),
        ok=False,
        first_failure="fmt-check",
        duration_s=1.75,
    )
    store = ArtifactStore(tmp_path / "runs" / "r1")
    store.ensure()

    record = store.write_report("r1", pipeline, report)

    assert record.status == "FAIL"
    assert record.first_failure == "fmt-check"
    assert record.not_run == ["lint"]
    assert [s.name for s in record.steps] == ["test", "fmt-check"]
    assert record.steps[1].failure_kind == "non_zero_exit"
    assert record.steps[1].argv == ["cargo", "fmt"]
    assert (store.run_dir / record.steps[1].stderr_log).read_bytes() == b"Diff in src/lib.rs\n"
    assert record.steps[0].stdout_bytes == 3

    ok, parsed, err = validate_run_report(store.read_json(REPORT_FILE))
    assert ok, err
    assert parsed == store.read_report()


def test_validate_run_report_rejects_bad_status():
    ok, parsed, err = validate_run_report(
        {"run_id": "r", "pipeline": "p", "root": "/", "status": "MAYBE"}
    )
    assert not ok
    assert parsed is None
    assert err


def test_write_report_keeps_logs_of_similar_names_apart(tmp_path):
    pipeline = Pipeline(
        "ci",
        tmp_path,
        (Step(name="a", command="x"), Step(name="a_", command="x"), Step(name="a.", command="x")),
    )
    report = Report(
        pipeline="ci",
        results=(
            StepResult("a", 0, b"out-a", b"", 0.1),
            StepResult("a_", 0, b"out-a_", b"", 0.1),
            StepResult("a.", 0, b"out-a.", b"", 0.1),
        ),
        ok=True,
    )
    store = ArtifactStore(tmp_path / "runs" / "r1")
    store.ensure()

    record = store.write_report("r1", pipeline, report)

    logs = [s.stdout_log for s in record.steps]
    assert len(set(logs)) == 3
    for step in record.steps:
        assert (store.run_dir / step.stdout_log).read_bytes() == f"out-{step.name}".encode()


def test_read_report_rejects_invalid_record(tmp_path):
    store = ArtifactStore(tmp_path / "runs" / "r1")
    store.ensure()
    store.write_json(REPORT_FILE, {"run_id": "r1", "status": "MAYBE"})

    with pytest.raises(ValueError, match="Invalid RUN_REPORT.json"):
        store.read_report()
