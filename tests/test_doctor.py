import sys
from pathlib import Path

from gaterun.config import Pipeline, Step
from gaterun.doctor import doctor_report


def _status(report, name):
    return next(i.status for i in report.items if i.name == name)


def test_doctor_ok(tmp_path):
    p = Pipeline("ci", tmp_path, (Step(name="py", command=sys.executable),))
    report = doctor_report(p)
    assert report.ok
    assert _status(report, "py: command") == "OK"
    assert _status(report, "py: cwd") == "OK"


def test_doctor_flags_missing_command_and_cwd(tmp_path):
    p = Pipeline(
        "ci",
        tmp_path,
        (
            Step(name="lint", command="gaterun-missing-linter-xyz"),
            Step(name="sub", command=sys.executable, cwd=Path("does-not-exist")),
        ),
    )
    report = doctor_report(p)
    assert not report.ok
    assert _status(report, "lint: command") == "FAIL"
    assert _status(report, "sub: cwd") == "FAIL"


def test_doctor_warns_on_empty_pipeline(tmp_path):
    report = doctor_report(Pipeline("ci", tmp_path, ()))
    assert report.ok
    assert _status(report, "steps") == "WARN"
