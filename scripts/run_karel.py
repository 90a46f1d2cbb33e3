#!/usr/bin/env python3
"""
Run a Karel program from the command line.

Validates the program, runs it against a world (the default 10x10 world or
one loaded from JSON) and prints the final state, world and frames as JSON.

Usage:
  python scripts/run_karel.py --code prog.py
  python scripts/run_karel.py --code prog.py --world world.json --delay 300 --trace
  python scripts/run_karel.py --code prog.py --step    # one primitive per Enter key

World JSON follows the engine's model, e.g.
  {"dimensions": {"width": 5, "height": 5},
   "robot": {"position": {"x": 1, "y": 1}, "direction": "east", "beeper_bag": -1},
   "walls": [{"orientation": "vertical", "x": 2, "y": 1}],
   "beeper_piles": [{"x": 3, "y": 1, "count": 2}]}
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from backend.karel import config  # noqa: E402
from backend.karel.controller import ExecutionController  # noqa: E402
from backend.karel.state import ExecutionState, ExecutionStatus  # noqa: E402
from backend.karel.world import World, create_default_world  # noqa: E402


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run a Karel program")
    p.add_argument("--code", required=True, help="Path to the Karel program (.py)")
    p.add_argument("--world", type=str, default=None, help="Path to a world JSON file")
    p.add_argument("--delay", type=int, default=0, help="Delay between primitives [ms]")
    p.add_argument("--step", action="store_true", help="Advance one primitive per Enter key")
    p.add_argument("--trace", action="store_true", help="Print each primitive as it executes")
    p.add_argument("--subprocess", action="store_true", help="Record the program in a child process")
    p.add_argument("--max-steps", type=int, default=config.MAX_STEPS, help="Primitive budget")
    p.add_argument("--log-level", type=str, default=None, help="Logging level (default: KAREL_LOG_LEVEL or WARNING)")
    return p.parse_args()


def load_world(path: Optional[str]) -> World:
    if not path:
        return create_default_world()
    return World.model_validate_json(Path(path).read_text(encoding="utf-8"))


def main() -> int:
    ns = parse_args()
    config.configure_logging(ns.log_level)

    ctrl = ExecutionController(
        load_world(ns.world),
        Path(ns.code).read_text(encoding="utf-8"),
        step_delay_ms=ns.delay,
        max_steps=ns.max_steps,
        use_subprocess=ns.subprocess,
    )

    if ns.trace:
        def show(state: ExecutionState, world: World) -> None:
            pos = world.robot.position
            print(
                f"[{state.step_count:>5}] line {state.current_line}: "
                f"({pos.x}, {pos.y}) {world.robot.direction.value} {state.status.value}",
                file=sys.stderr,
            )

        ctrl.subscribe(show)

    if ns.step:
        state = ctrl.step()
        while state.status == ExecutionStatus.PAUSED:
            input()
            state = ctrl.step()
    else:
        state = ctrl.run()

    result = {
        "state": state.model_dump(mode="json"),
        "world": ctrl.world.model_dump(mode="json"),
        "frames": [
            {"step": t.index + 1, "line": t.line, "primitive": t.primitive}
            for t in ctrl.history
        ],
    }
    print(json.dumps(result, indent=2))
    return 0 if state.status == ExecutionStatus.SUCCESS else 1


if __name__ == "__main__":
    sys.exit(main())
