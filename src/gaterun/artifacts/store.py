from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..util.paths import safe_filename
from .schemas import RunReportRecord, StepRecord, validate_run_report

if TYPE_CHECKING:
    from ..config import Pipeline
    from ..executor import Report

REPORT_FILE = "RUN_REPORT.json"
EVENTS_FILE = "logs/events.jsonl"


@dataclass(frozen=True)
class ArtifactStore:
    """Artifact storage manager.

    CONTRACT
    - Inputs: Run directory path
    - Outputs:
      - Writes files to .gaterun/runs/<id>/...
    - Invariants:
      - Enforces path safety (prevents traversal outside run_dir)
      - Ensures parent directories exist on write
    - Failure:
      - Raises ValueError on unsafe path access
    """
    run_dir: Path

    def ensure(self) -> None:
        self.run_dir.mkdir(parents=True, exist_ok=True)
        (self.run_dir / "logs").mkdir(exist_ok=True)

    def path(self, *parts: str) -> Path:
        p = self.run_dir.joinpath(*parts)
        base = self.run_dir.resolve(strict=False)
        try:
            p.resolve(strict=False).relative_to(base)
        except ValueError as exc:
            raise ValueError(f"Refusing to access path outside run_dir: {p}") from exc
        return p

    def write_json(self, rel: str, data: Any) -> Path:
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return p

    def read_json(self, rel: str) -> Any:
        p = self.path(rel)
        return json.loads(p.read_text(encoding="utf-8"))

    def write_bytes(self, rel: str, data: bytes) -> Path:
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return p

    def write_report(self, run_id: str, pipeline: Pipeline, report: Report) -> RunReportRecord:
        steps_by_name = {s.name: s for s in pipeline.steps}
        records: list[StepRecord] = []
        for i, r in enumerate(report.results, start=1):
            step = steps_by_name[r.name]
            # Index prefix keeps names unique even where sanitizing would merge them.
            stem = f"{i:02d}-{safe_filename(r.name, default='step')}"
            out = self.write_bytes(f"logs/{stem}.stdout.log", r.stdout)
            err = self.write_bytes(f"logs/{stem}.stderr.log", r.stderr)
            records.append(
                StepRecord(
                    name=r.name,
                    argv=step.argv(),
                    cwd=str(pipeline.step_cwd(step)),
                    exit_code=r.exit_code,
                    ok=r.ok,
                    failure_kind=r.failure_kind,
                    launch_error=r.launch_error,
                    duration_s=round(r.duration_s, 3),
                    stdout_log=str(out.relative_to(self.run_dir)),
                    stderr_log=str(err.relative_to(self.run_dir)),
                    stdout_bytes=len(r.stdout),
                    stderr_bytes=len(r.stderr),
                )
            )
        record = RunReportRecord(
            run_id=run_id,
            pipeline=report.pipeline,
            root=str(pipeline.root),
            status=report.status,
            first_failure=report.first_failure,
            duration_s=round(report.duration_s, 3),
            steps_total=len(pipeline.steps),
            not_run=[s.name for s in pipeline.steps[len(report.results):]],
            steps=records,
        )
        self.write_json(REPORT_FILE, record.model_dump())
        return record

    def read_report(self) -> RunReportRecord:
        ok, record, err = validate_run_report(self.read_json(REPORT_FILE))
        if not ok:
            raise ValueError(f"Invalid {REPORT_FILE}: {err}")
        return record
