from __future__ import annotations

"""Template initializer.

CONTRACT
- Inputs: Repo path
- Outputs (required):
  - Writes .gaterun/pipeline.yaml
- Invariants:
  - Creates .gaterun directory if missing
  - Does not overwrite existing files (by default)
- Failure:
  - Raises OSError on permission issues
"""

from pathlib import Path

from .config import CONFIG_DIR_NAME
from .util.paths import copy_template, ensure_dir


def write_templates(repo: Path, force: bool = False) -> list[Path]:
    cfg_dir = repo / CONFIG_DIR_NAME
    ensure_dir(cfg_dir)

    written: list[Path] = []
    dest = cfg_dir / "pipeline.yaml"
    if copy_template("pipeline.yaml", dest, overwrite=force):
        written.append(dest)
    return written
