from __future__ import annotations

"""Pipeline configuration.

CONTRACT
- Inputs: YAML file path (pipeline.yaml) or dictionary data
- Outputs (required):
  - Validated, fully-resolved Pipeline made of Step objects
- Invariants:
  - Step order is exactly the declared order
  - Step names are unique and match `[A-Za-z0-9][A-Za-z0-9_.-]{0,63}`
  - `${NAME}` references in env overlays are resolved at load time:
    pipeline-level against the inherited environment, step-level against
    inherited + pipeline overlay. `$$` is a literal `$`.
- Failure:
  - Raises ConfigurationError (a ValueError) on invalid schema, duplicate or
    invalid names, empty commands, unresolved env references, env names that
    are empty or contain `=`, or a NUL byte anywhere the OS would reject it
"""

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from .util.ids import validate_step_name

CONFIG_DIR_NAME = ".gaterun"
DEFAULT_PIPELINE_FILE = Path(CONFIG_DIR_NAME) / "pipeline.yaml"


class ConfigurationError(ValueError):
    """Raised when a pipeline description cannot become a Pipeline."""


def _frozen(env: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(env))


@dataclass(frozen=True)
class Step:
    name: str
    command: str
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict, hash=False)
    cwd: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "env", _frozen(self.env))

    def argv(self) -> list[str]:
        return [self.command, *self.args]


@dataclass(frozen=True)
class Pipeline:
    name: str
    root: Path
    steps: tuple[Step, ...]
    env: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "env", _frozen(self.env))

    def step_cwd(self, step: Step) -> Path:
        if step.cwd is None:
            return self.root
        return step.cwd if step.cwd.is_absolute() else self.root / step.cwd


_SCALAR = {"type": ["string", "number", "boolean"]}

PIPELINE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "env": {"type": "object", "additionalProperties": _SCALAR},
        "steps": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "command": {"type": "string"},
                    "args": {"type": "array", "items": _SCALAR},
                    "env": {"type": "object", "additionalProperties": _SCALAR},
                    "cwd": {"type": "string"},
                },
                "required": ["name", "command"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["steps"],
}

_REF_RE = re.compile(r"\$\$|\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _scalar_str(value: Any) -> str:
    # YAML spells booleans lowercase; keep that rather than Python's "True".
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def expand_refs(value: str, scope: Mapping[str, str], *, where: str = "env") -> str:
    def _sub(m: re.Match) -> str:
        name = m.group(1)
        if name is None:
            return "$"
        if name not in scope:
            raise ConfigurationError(f"{where}: unresolved environment reference ${{{name}}}")
        return scope[name]

    return _REF_RE.sub(_sub, value)


def _check_no_nul(value: str, *, where: str) -> str:
    # The OS cannot pass a NUL inside argv, env or a path.
    if "\x00" in value:
        raise ConfigurationError(f"{where}: contains a NUL byte")
    return value


def _resolve_overlay(
    raw: Mapping[str, Any], scope: Mapping[str, str], *, where: str
) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in raw.items():
        key = str(k)
        if not key or "=" in key or "\x00" in key:
            raise ConfigurationError(f"{where}: invalid environment variable name {key!r}")
        value = expand_refs(_scalar_str(v), scope, where=f"{where}.{key}")
        out[key] = _check_no_nul(value, where=f"{where}.{key}")
    return out


def build_pipeline(
    data: Mapping[str, Any],
    root: Path,
    *,
    base_env: Mapping[str, str] | None = None,
    default_name: str = "pipeline",
) -> Pipeline:
    import jsonschema  # lazy import

    try:
        jsonschema.validate(instance=data, schema=PIPELINE_SCHEMA)
    except jsonschema.ValidationError as e:
        loc = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigurationError(f"Invalid pipeline schema at {loc}: {e.message}") from e

    inherited = dict(os.environ if base_env is None else base_env)
    pipeline_env = _resolve_overlay(data.get("env") or {}, inherited, where="env")
    step_scope = inherited | pipeline_env

    steps: list[Step] = []
    seen: set[str] = set()
    for i, raw in enumerate(data.get("steps") or []):
        try:
            name = validate_step_name(raw["name"])
        except ValueError as e:
            raise ConfigurationError(f"steps[{i}]: {e}") from e
        if name in seen:
            raise ConfigurationError(f"steps[{i}]: duplicate step name {name!r}")
        seen.add(name)

        where = f"steps[{i}] ({name})"
        command = _check_no_nul(raw["command"].strip(), where=f"{where}.command")
        if not command:
            raise ConfigurationError(f"{where}: command is empty")
        args = tuple(
            _check_no_nul(_scalar_str(a), where=f"{where}.args[{j}]")
            for j, a in enumerate(raw.get("args") or [])
        )
        cwd = _check_no_nul(raw.get("cwd") or "", where=f"{where}.cwd")
        steps.append(
            Step(
                name=name,
                command=command,
                args=args,
                env=_resolve_overlay(raw.get("env") or {}, step_scope, where=f"{name}.env"),
                cwd=Path(cwd) if cwd else None,
            )
        )

    return Pipeline(
        name=str(data.get("name") or default_name),
        root=root,
        steps=tuple(steps),
        env=pipeline_env,
    )


def default_root_for(path: Path) -> Path:
    parent = path.resolve().parent
    if parent.name == CONFIG_DIR_NAME:
        return parent.parent
    return parent


def load_pipeline_file(
    path: Path,
    *,
    root: Path | None = None,
    base_env: Mapping[str, str] | None = None,
) -> Pipeline:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read pipeline file {path}: {e}") from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")

    return build_pipeline(
        data,
        root=root if root is not None else default_root_for(path),
        base_env=base_env,
        default_name=path.stem,
    )


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Pipeline Loader CLI")
    parser.add_argument("--file", required=True, help="Path to pipeline.yaml")
    args = parser.parse_args()

    try:
        p = load_pipeline_file(Path(args.file))
        print(f"Loaded pipeline {p.name!r} with {len(p.steps)} steps (root: {p.root}).")
        for s in p.steps:
            print(f"  {s.name}: {' '.join(s.argv())}")
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
