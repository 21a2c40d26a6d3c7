from __future__ import annotations

"""Pipeline preflight checks.

CONTRACT
- Inputs: Pipeline
- Outputs (required):
  - DoctorReport (ok=bool, items=[(name, status, details)])
- Invariants:
  - Checks: pipeline root exists, each step's command resolves, each
    step's working directory exists
  - Does not run any step (read-only checks)
- Failure:
  - Returns DoctorReport with ok=False if any check fails
"""

import os
from dataclasses import dataclass
from pathlib import Path

from .config import Pipeline
from .util.shell import which


@dataclass(frozen=True)
class DoctorItem:
    name: str
    status: str
    details: str


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    items: list[DoctorItem]


def doctor_report(pipeline: Pipeline) -> DoctorReport:
    items: list[DoctorItem] = []
    ok = True

    if pipeline.root.is_dir():
        items.append(DoctorItem("pipeline root", "OK", str(pipeline.root)))
    else:
        ok = False
        items.append(DoctorItem("pipeline root", "FAIL", f"Not a directory: {pipeline.root}"))

    if not pipeline.steps:
        items.append(DoctorItem("steps", "WARN", "Pipeline has no steps (run will PASS trivially)"))

    for step in pipeline.steps:
        # A relative command with a separator resolves against the step's cwd.
        cmd = step.command
        cwd = pipeline.step_cwd(step)
        if os.sep in cmd and not Path(cmd).is_absolute():
            cmd = str(cwd / cmd)
        resolved = which(cmd)
        if resolved:
            items.append(DoctorItem(f"{step.name}: command", "OK", resolved))
        else:
            ok = False
            items.append(DoctorItem(f"{step.name}: command", "FAIL", f"{cmd} not found in PATH"))

        if cwd.is_dir():
            items.append(DoctorItem(f"{step.name}: cwd", "OK", str(cwd)))
        else:
            ok = False
            items.append(DoctorItem(f"{step.name}: cwd", "FAIL", f"Missing directory: {cwd}"))

    return DoctorReport(ok=ok, items=items)
