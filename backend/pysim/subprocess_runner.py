"""Helpers to run the interpreter in a small, controlled subprocess.

This module provides `run_code_in_subprocess`, a convenience wrapper that
launches the `_subprocess_worker` module (which follows a simple
JSON-over-stdin/stdout protocol). The function enforces a wall-clock timeout
and can apply light OS-level resource limits on POSIX systems (CPU seconds
and address-space / memory usage), so programs that would otherwise block a
worker (a `for` loop over a huge range, deep recursion) are cut off.

Behavior and guarantees:
  - On POSIX, optional RLIMIT_CPU and RLIMIT_AS limits are applied using a
    preexec function. On Windows these limits are no-ops.
  - The worker is launched as a short-lived process with closed file
    descriptors and a minimal environment.
  - The function returns (returncode, stdout, stderr). A returncode of -1
    indicates the process was terminated due to timeout.
"""

import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

# Directory that contains the `backend` package, so the worker can import it
# even when the project is not installed.
PROJECT_ROOT = Path(__file__).resolve().parents[2]
WORKER_MODULE = "backend.pysim._subprocess_worker"


def _make_posix_preexec(cpu_seconds: Optional[int], mem_limit_mb: Optional[int]):
    """Return a preexec_fn that applies resource limits on POSIX systems.

    If the `resource` module is unavailable the function is a no-op.
    """
    def preexec():
        try:
            import resource

            if cpu_seconds is not None:
                resource.setrlimit(resource.RLIMIT_CPU, (int(cpu_seconds), int(cpu_seconds)))

            if mem_limit_mb is not None:
                mem_bytes = int(mem_limit_mb) * 1024 * 1024
                resource.setrlimit(resource.RLIMIT_AS, (mem_bytes, mem_bytes))

            # Start a new session to isolate signals
            try:
                os.setsid()
            except OSError:
                pass
        except (ImportError, ValueError, OSError):
            return

    return preexec


def run_code_in_subprocess(
    code: str,
    timeout_s: float = 2,
    *,
    settings: Optional[Dict[str, Any]] = None,
    cpu_seconds: Optional[int] = 2,
    mem_limit_mb: Optional[int] = 200,
) -> Tuple[int, str, str]:
    """Run `code` through the interpreter in a worker process.

    Parameters:
      - code: program source sent to the worker via JSON on stdin.
      - timeout_s: wall-clock timeout for the whole operation (seconds).
      - settings: interpreter settings forwarded to `Interpreter.execute`.
      - cpu_seconds: optional RLIMIT_CPU (seconds) applied on POSIX.
      - mem_limit_mb: optional RLIMIT_AS (MB) applied on POSIX.

    Returns (returncode, stdout, stderr). On timeout the process is killed
    and (-1, "", "TIMEOUT") is returned.
    """
    # Keep the child's environment minimal to reduce accidental access to
    # host secrets. PYTHONPATH lets it import this package from a checkout.
    env = {
        "PATH": os.environ.get("PATH", ""),
        "PYTHONPATH": str(PROJECT_ROOT),
    }

    popen_kwargs: Dict[str, Any] = dict(
        args=[sys.executable, "-m", WORKER_MODULE],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
        cwd=str(PROJECT_ROOT),
        close_fds=True,
    )

    if os.name != "nt":
        popen_kwargs["preexec_fn"] = _make_posix_preexec(cpu_seconds, mem_limit_mb)

    proc = subprocess.Popen(**popen_kwargs)

    payload = json.dumps({"code": code, "settings": settings or {}})
    try:
        out, err = proc.communicate(payload, timeout=timeout_s)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.communicate()
        return -1, "", "TIMEOUT"

    return proc.returncode, out or "", err or ""
