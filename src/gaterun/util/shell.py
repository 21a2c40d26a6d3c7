from __future__ import annotations

"""External command execution.

CONTRACT
- Inputs: command, ordered args, full environment, cwd, optional timeout
- Outputs (required):
  - ExecResult(returncode, stdout, stderr, elapsed_s, launch_error)
- Invariants:
  - Never runs through a shell; argv is [command, *args]
  - stdout and stderr are captured as separate byte streams
  - mirror=True copies each stream to our own stdout/stderr as it arrives
- Failure:
  - Non-zero exit is returned, never raised
  - Launch errors (OSError) become a synthetic exit code: 127 not found,
    126 permission denied, 1 otherwise; the error text replaces stderr
  - Timeout kills the process and everything it spawned (POSIX process
    group), then returns 124
  - Any other exception from the process API propagates
"""

import os
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


def which(cmd: str) -> str | None:
    if os.sep in cmd or (os.altsep and os.altsep in cmd):
        p = Path(cmd)
        return str(p) if p.is_file() and os.access(p, os.X_OK) else None
    for p in os.environ.get("PATH", "").split(os.pathsep):
        if not p:
            continue
        candidate = Path(p) / cmd
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


@dataclass(frozen=True)
class ExecResult:
    returncode: int
    stdout: bytes
    stderr: bytes
    elapsed_s: float
    launch_error: str | None = None


def _launch_exit_code(exc: OSError) -> int:
    if isinstance(exc, FileNotFoundError):
        return EXIT_NOT_FOUND
    if isinstance(exc, PermissionError):
        return EXIT_NOT_EXECUTABLE
    return 1


def _kill(proc: subprocess.Popen, own_group: bool) -> None:
    if own_group:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    else:
        proc.kill()


def _pump(src: BinaryIO, sink: list[bytes], mirror_to: BinaryIO | None) -> None:
    for chunk in iter(lambda: src.read1(8192), b""):
        sink.append(chunk)
        if mirror_to is not None:
            mirror_to.write(chunk)
            mirror_to.flush()
    src.close()


def _communicate_mirrored(
    proc: subprocess.Popen, timeout_s: float | None, own_group: bool
) -> tuple[bytes, bytes, bool]:
    out_chunks: list[bytes] = []
    err_chunks: list[bytes] = []
    # Text-only stand-ins for sys.stdout (some test runners) have no .buffer.
    out_sink = getattr(sys.stdout, "buffer", None)
    err_sink = getattr(sys.stderr, "buffer", None)
    readers = [
        threading.Thread(target=_pump, args=(proc.stdout, out_chunks, out_sink), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, err_chunks, err_sink), daemon=True),
    ]
    for t in readers:
        t.start()
    timed_out = False
    try:
        proc.wait(timeout=timeout_s)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill(proc, own_group)
        proc.wait()
    for t in readers:
        t.join()
    return b"".join(out_chunks), b"".join(err_chunks), timed_out


def execute(
    command: str,
    args: Sequence[str],
    env: Mapping[str, str],
    cwd: Path,
    *,
    mirror: bool = False,
    timeout_s: float | None = None,
) -> ExecResult:
    """Run one external command and capture its output.

    `env` is the complete environment of the child, not an overlay.
    """
    argv = [command, *args]
    # A timed-out step is killed as a group so grandchildren release the pipes.
    own_group = timeout_s is not None and os.name == "posix"
    start_t = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd),
            env=dict(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=own_group,
        )
    except OSError as e:
        msg = f"Failed to launch {command!r}: {e}"
        return ExecResult(
            returncode=_launch_exit_code(e),
            stdout=b"",
            stderr=msg.encode("utf-8"),
            elapsed_s=time.monotonic() - start_t,
            launch_error=msg,
        )

    if mirror:
        out, err, timed_out = _communicate_mirrored(proc, timeout_s, own_group)
    else:
        timed_out = False
        try:
            out, err = proc.communicate(timeout=timeout_s)
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill(proc, own_group)
            out, err = proc.communicate()

    rc = proc.returncode
    if timed_out:
        rc = EXIT_TIMEOUT
        err += b"\nTimeout expired.\n"

    return ExecResult(
        returncode=rc,
        stdout=out,
        stderr=err,
        elapsed_s=time.monotonic() - start_t,
    )


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run one command and report its exit code")
    parser.add_argument("command", help="Executable to run")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments")
    parser.add_argument("--cwd", default=".", help="Working directory")
    parser.add_argument("--timeout", type=float, default=None, help="Timeout in seconds")
    ns = parser.parse_args()

    res = execute(
        ns.command, ns.args, os.environ, Path(ns.cwd), mirror=True, timeout_s=ns.timeout
    )
    print(f"Exit code: {res.returncode} ({res.elapsed_s:.2f}s)", file=sys.stderr)
    sys.exit(res.returncode)
