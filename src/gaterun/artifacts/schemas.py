from __future__ import annotations

"""Artifact schemas.

CONTRACT
- Inputs: Pydantic models
- Outputs:
  - Validated JSON-serializable objects
- Invariants:
  - Defines the shape of RUN_REPORT.json
  - All schemas have schema_version int field
  - Captured output is referenced by log path, never embedded
- Failure:
  - Raises ValidationError on schema mismatch
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class StepRecord(BaseModel):
    schema_version: int = 1
    name: str
    argv: list[str] = Field(default_factory=list)
    cwd: str = ""
    exit_code: int
    ok: bool
    failure_kind: Literal["launch_failure", "non_zero_exit"] | None = None
    launch_error: str | None = None
    duration_s: float = 0.0
    stdout_log: str | None = None
    stderr_log: str | None = None
    stdout_bytes: int = 0
    stderr_bytes: int = 0


class RunReportRecord(BaseModel):
    schema_version: int = 1
    run_id: str
    pipeline: str
    root: str
    status: Literal["PASS", "FAIL"]
    first_failure: str | None = None
    duration_s: float = 0.0
    steps_total: int = 0
    not_run: list[str] = Field(default_factory=list)
    steps: list[StepRecord] = Field(default_factory=list)


def validate_run_report(data: dict[str, Any]) -> tuple[bool, RunReportRecord | None, str]:
    """Validate RUN_REPORT.json against schema.

    Returns: (is_valid, parsed_record, error_message)
    """
    try:
        return True, RunReportRecord(**data), ""
    except Exception as e:
        return False, None, str(e)
