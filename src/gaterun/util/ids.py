from __future__ import annotations

"""ID generation and validation.

CONTRACT
- Inputs: Run IDs, step names
- Outputs (required):
  - new_run_id() returns time-sortable string
  - validate_run_id() / validate_step_name() return the value or raise
- Invariants:
  - Run IDs match `[A-Za-z0-9][A-Za-z0-9_.-]{0,63}`
  - Step names match `[A-Za-z0-9][A-Za-z0-9_.-]{0,63}`
- Failure:
  - Raises ValueError on invalid IDs
"""

import datetime
import random
import re
import string

_RUN_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")
_STEP_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")


def new_run_id() -> str:
    # YYYYMMDD_HHMMSS_<rand4>
    ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d_%H%M%S")
    suffix = "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(4))
    return f"{ts}_{suffix}"


def validate_run_id(run_id: str) -> str:
    if not _RUN_ID_RE.fullmatch(run_id):
        raise ValueError(
            "Invalid run id. Use 1-64 chars: letters/digits, plus '._-'. Must start with a letter "
            "or digit."
        )
    return run_id


def validate_step_name(name: str) -> str:
    if not _STEP_NAME_RE.fullmatch(name):
        raise ValueError(
            f"Invalid step name {name!r}. Use 1-64 chars: letters/digits, plus '._-'. Must start "
            "with a letter or digit."
        )
    return name
