"""gaterun package.

Simple API for callers that want a build gate without the CLI:

    import gaterun

    # Run <repo>/.gaterun/pipeline.yaml
    result = gaterun.check("/path/to/repo")
    if not result["ok"]:
        print(result["first_failure"], result["stderr"])
"""

from pathlib import Path
from typing import Optional

from .config import DEFAULT_PIPELINE_FILE, ConfigurationError, Pipeline, Step, load_pipeline_file
from .executor import Report, StepResult, effective_env, run

__version__ = "0.1.0"


def check(
    repo: str | Path,
    *,
    pipeline_file: Optional[str | Path] = None,
    mirror: bool = False,
) -> dict:
    """Load and run a pipeline. Returns structured result.

    Args:
        repo: Pipeline root; steps run here unless they set `cwd`
        pipeline_file: Optional path to pipeline.yaml
            (default: <repo>/.gaterun/pipeline.yaml)
        mirror: Copy step output to this process's stdout/stderr live

    Returns:
        dict with keys: status, ok, first_failure, stderr, steps

    Raises:
        ConfigurationError if the pipeline file is missing or invalid
    """
    root = Path(repo).resolve()
    path = Path(pipeline_file) if pipeline_file else root / DEFAULT_PIPELINE_FILE
    pipeline = load_pipeline_file(path, root=root)
    report = run(pipeline, mirror=mirror)

    failed = report.failed_result()
    return {
        "status": report.status,
        "ok": report.ok,
        "first_failure": report.first_failure,
        "stderr": failed.stderr.decode("utf-8", errors="replace") if failed else "",
        "steps": [
            {"name": r.name, "exit_code": r.exit_code, "duration_s": r.duration_s}
            for r in report.results
        ],
    }


__all__ = [
    "check",
    "run",
    "effective_env",
    "load_pipeline_file",
    "ConfigurationError",
    "Pipeline",
    "Step",
    "StepResult",
    "Report",
]
