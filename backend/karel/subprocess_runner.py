"""Record a Karel program in a short-lived, resource-limited subprocess.

`record_in_subprocess` launches `backend.karel._subprocess_worker` (a
JSON-over-stdin/stdout helper), enforces a wall-clock timeout and applies
light OS-level limits on POSIX systems (CPU seconds and address space) to
reduce the blast radius of a misbehaving program.

Behavior and guarantees:
  - On POSIX, RLIMIT_CPU and RLIMIT_AS are applied through a preexec
    function. On Windows these limits are no-ops.
  - The worker gets a minimal environment: PATH plus a PYTHONPATH pointing
    at this project so it can import the engine.
  - The result is always a `Recording`. A timeout becomes a TIMEOUT error and
    a crashed worker a SUBPROCESS_FAILED error; neither raises.

Note: this narrows, but does not replace, container/VM-level isolation.
"""

import json
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from . import config
from .runtime import Recording
from .world import World

logger = logging.getLogger(__name__)

WORKER_MODULE = "backend.karel._subprocess_worker"
PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _make_posix_preexec(cpu_seconds: Optional[int], mem_limit_mb: Optional[int]):
    """Return a preexec_fn that applies resource limits on POSIX systems.

    The returned function is safe to attach to `subprocess.Popen(...,
    preexec_fn=...)`. If the `resource` module is unavailable it silently
    becomes a no-op.
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


def _failed(code: str, message: str) -> Recording:
    return Recording(ticks=[], error={"code": code, "message": message, "line": None})


def record_in_subprocess(
    code: str,
    world: World,
    *,
    karel_commands: Optional[Iterable[str]] = None,
    python_features: Optional[Iterable[str]] = None,
    max_steps: int = config.MAX_STEPS,
    max_time_s: float = config.MAX_TIME_S,
    timeout_s: float = config.SUBPROCESS_TIMEOUT_S,
    cpu_seconds: Optional[int] = config.SUBPROCESS_CPU_SECONDS,
    mem_limit_mb: Optional[int] = config.SUBPROCESS_MEM_LIMIT_MB,
) -> Recording:
    """Validate and record `code` against `world` in a child process.

    Parameters:
      - code: student source text.
      - world: starting snapshot (sent as JSON, never shared).
      - karel_commands / python_features: lesson restrictions, re-checked by
        the worker before it executes anything.
      - max_steps / max_time_s: in-process budgets applied by the worker.
      - timeout_s: wall-clock timeout for the whole child process.
      - cpu_seconds / mem_limit_mb: optional POSIX rlimits.
    """
    env = {
        "PATH": os.environ.get("PATH", ""),
        "PYTHONPATH": str(PROJECT_ROOT),
    }

    popen_kwargs = dict(
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

    payload = json.dumps(
        {
            "code": code,
            "world": world.model_dump(mode="json"),
            "karel_commands": None if karel_commands is None else list(karel_commands),
            "python_features": None if python_features is None else list(python_features),
            "max_steps": max_steps,
            "max_time_s": max_time_s,
        }
    )

    proc = subprocess.Popen(**popen_kwargs)
    try:
        out, err = proc.communicate(payload, timeout=timeout_s)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.communicate()
        logger.warning("karel worker timed out after %ss", timeout_s)
        return _failed("TIMEOUT", f"Program ran longer than {timeout_s:g}s and was stopped.")

    if proc.returncode != 0:
        logger.warning("karel worker exited with %s: %s", proc.returncode, (err or "").strip()[-400:])
        return _failed("SUBPROCESS_FAILED", (err or "").strip() or f"worker exited with {proc.returncode}")
    try:
        return Recording.model_validate_json(out)
    except ValidationError as e:
        return _failed("SUBPROCESS_FAILED", f"bad worker output: {e}")
