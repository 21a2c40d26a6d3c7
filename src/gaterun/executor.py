from __future__ import annotations

"""Sequential pipeline executor.

CONTRACT
- Inputs: a fully-resolved Pipeline
- Outputs (required):
  - Report(results, ok, first_failure)
- Invariants:
  - Steps run one at a time, in declared order
  - Report.results is a prefix of Pipeline.steps; only the last may fail
  - Each step sees os.environ | pipeline.env | step.env
- Failure:
  - Step failures (launch failure, non-zero exit) are data in the Report,
    never raised
  - Faults of the process API other than launch errors propagate
"""

import os
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

from loguru import logger

from .config import Pipeline, Step
from .util.events import EventLog
from .util.shell import ExecResult, execute

FailureKind = Literal["launch_failure", "non_zero_exit"]


class Runner(Protocol):
    def __call__(
        self,
        command: str,
        args: list[str],
        env: Mapping[str, str],
        cwd: Path,
        *,
        mirror: bool = False,
        timeout_s: float | None = None,
    ) -> ExecResult: ...


@dataclass(frozen=True)
class StepResult:
    name: str
    exit_code: int
    stdout: bytes
    stderr: bytes
    duration_s: float
    launch_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.launch_error is None

    @property
    def failure_kind(self) -> FailureKind | None:
        if self.launch_error is not None:
            return "launch_failure"
        if self.exit_code != 0:
            return "non_zero_exit"
        return None


@dataclass(frozen=True)
class Report:
    pipeline: str
    results: tuple[StepResult, ...]
    ok: bool
    first_failure: str | None = None
    duration_s: float = 0.0

    @property
    def status(self) -> str:
        return "PASS" if self.ok else "FAIL"

    def result_for(self, name: str) -> StepResult | None:
        for r in self.results:
            if r.name == name:
                return r
        return None

    def failed_result(self) -> StepResult | None:
        if self.first_failure is None:
            return None
        return self.result_for(self.first_failure)


def effective_env(
    pipeline: Pipeline, step: Step, base: Mapping[str, str] | None = None
) -> dict[str, str]:
    inherited = os.environ if base is None else base
    return dict(inherited) | dict(pipeline.env) | dict(step.env)


def run(
    pipeline: Pipeline,
    *,
    runner: Runner = execute,
    mirror: bool = False,
    events: EventLog | None = None,
    timeout_s: float | None = None,
    base_env: Mapping[str, str] | None = None,
) -> Report:
    """Run every step of `pipeline` in order, stopping at the first failure."""
    results: list[StepResult] = []
    first_failure: str | None = None
    start_t = time.monotonic()
    total = len(pipeline.steps)

    for idx, step in enumerate(pipeline.steps, start=1):
        cwd = pipeline.step_cwd(step)
        logger.info(f"[{idx}/{total}] {step.name}: {' '.join(step.argv())} (cwd={cwd})")
        if events:
            events.emit("step_start", step=step.name, index=idx, argv=step.argv(), cwd=str(cwd))

        res = runner(
            step.command,
            list(step.args),
            effective_env(pipeline, step, base_env),
            cwd,
            mirror=mirror,
            timeout_s=timeout_s,
        )
        result = StepResult(
            name=step.name,
            exit_code=res.returncode,
            stdout=res.stdout,
            stderr=res.stderr,
            duration_s=res.elapsed_s,
            launch_error=res.launch_error,
        )
        results.append(result)

        if events:
            events.emit(
                "step_end",
                step=step.name,
                exit_code=result.exit_code,
                duration_s=round(result.duration_s, 3),
                failure_kind=result.failure_kind,
            )

        if not result.ok:
            first_failure = step.name
            if result.launch_error is not None:
                logger.warning(f"Step {step.name} could not be launched: {result.launch_error}")
            else:
                logger.warning(f"Step {step.name} failed with exit code {result.exit_code}")
            skipped = [s.name for s in pipeline.steps[idx:]]
            if skipped:
                logger.info(f"Not running remaining steps: {', '.join(skipped)}")
            break

        logger.debug(f"Step {step.name} passed in {result.duration_s:.2f}s")

    report = Report(
        pipeline=pipeline.name,
        results=tuple(results),
        ok=first_failure is None,
        first_failure=first_failure,
        duration_s=time.monotonic() - start_t,
    )
    if events:
        events.emit(
            "run_end",
            pipeline=pipeline.name,
            status=report.status,
            first_failure=report.first_failure,
            steps_run=len(results),
            steps_total=total,
        )
    return report
