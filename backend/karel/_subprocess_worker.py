"""Subprocess worker that records one Karel program.

Reads a single JSON object from stdin::

    {"code": "...", "world": {...}, "karel_commands": [...] | null,
     "python_features": [...] | null, "max_steps": int, "max_time_s": float}

validates the program, records it against the world and writes the
resulting `Recording` as JSON to stdout. Validation failures are reported
as a recording whose `error` carries the SYNTAX_ERROR / VALIDATION_ERROR
code, so the parent never has to interpret stderr for expected outcomes.

The parent process enforces the wall-clock timeout and resource caps.
"""

import json
import sys

from pydantic import ValidationError

from backend.karel import config
from backend.karel.runtime import Recording, record_program
from backend.karel.validator import validate
from backend.karel.world import World


def handle(payload: dict) -> Recording:
    code = payload.get("code", "")
    world = World.model_validate(payload["world"])
    karel_commands = payload.get("karel_commands")
    result = validate(code, karel_commands=karel_commands, python_features=payload.get("python_features"))
    if not result.valid:
        return Recording(ticks=[], error=result.to_error())
    return record_program(
        code,
        world,
        allowed=karel_commands,
        max_steps=int(payload.get("max_steps", config.MAX_STEPS)),
        max_time_s=float(payload.get("max_time_s", config.MAX_TIME_S)),
    )


def main() -> None:
    raw = sys.stdin.read()
    try:
        payload = json.loads(raw)
        recording = handle(payload)
    except (ValueError, KeyError, ValidationError) as e:
        # Communicate payload decoding errors through stderr + exit code
        sys.stderr.write(f"bad_payload: {e}\n")
        sys.exit(1)
    sys.stdout.write(recording.model_dump_json())


if __name__ == "__main__":
    main()
