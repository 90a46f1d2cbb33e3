"""Host runtime: runs a validated program and records what Karel did.

The student's code is plain Python. It is compiled and executed with `exec`
in a namespace holding only the registered Karel primitives and ``range``.
Each primitive call goes through a `KarelCommands` capability object which
applies it to a working snapshot and appends a `Tick` to the recording. The
controller later replays those ticks one at a time, which is what makes
run / step / pause deterministic: the program itself never has to be
suspended mid-evaluation.

Budgets:
  - `max_steps` caps primitive invocations (STEP_LIMIT);
  - `max_time_s` caps wall-clock time through a line-level trace hook, so
    even loops that never call a primitive stop (TIMEOUT).
"""

import logging
import sys
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from pydantic import BaseModel

from . import config, executor
from .faults import (
    ExecutionTimeout,
    KarelFault,
    RuntimeFault,
    StepLimitExceeded,
)
from .world import World, clone_world

logger = logging.getLogger(__name__)

PROGRAM_FILENAME = "<karel>"
COUNTING_PRIMITIVE = "range"


class Tick(BaseModel):
    """One primitive invocation.

    `world` is the snapshot after an action (None for sensors, which never
    change the world), `value` the sensor reading, and `error` the structured
    fault when the primitive failed.
    """

    index: int
    primitive: str
    line: Optional[int] = None
    world: Optional[World] = None
    value: Optional[bool] = None
    error: Optional[Dict[str, Any]] = None


class Recording(BaseModel):
    """Every tick of one execution, plus a terminal error not tied to a tick."""

    ticks: List[Tick] = []
    error: Optional[Dict[str, Any]] = None

    @property
    def failed(self) -> bool:
        return self.error is not None or any(t.error for t in self.ticks)


class KarelCommands(Protocol):
    """The capability handed to the host runtime: the 22 Karel primitives."""

    def move(self) -> None: ...
    def turn_left(self) -> None: ...
    def pick_beeper(self) -> None: ...
    def put_beeper(self) -> None: ...
    def front_is_clear(self) -> bool: ...
    def front_is_blocked(self) -> bool: ...
    def left_is_clear(self) -> bool: ...
    def left_is_blocked(self) -> bool: ...
    def right_is_clear(self) -> bool: ...
    def right_is_blocked(self) -> bool: ...
    def beepers_present(self) -> bool: ...
    def no_beepers_present(self) -> bool: ...
    def beepers_in_bag(self) -> bool: ...
    def no_beepers_in_bag(self) -> bool: ...
    def facing_north(self) -> bool: ...
    def not_facing_north(self) -> bool: ...
    def facing_east(self) -> bool: ...
    def not_facing_east(self) -> bool: ...
    def facing_south(self) -> bool: ...
    def not_facing_south(self) -> bool: ...
    def facing_west(self) -> bool: ...
    def not_facing_west(self) -> bool: ...


def call_site_line() -> Optional[int]:
    """Line of the innermost frame currently executing student code."""
    frame = sys._getframe(1)
    while frame is not None:
        if frame.f_code.co_filename == PROGRAM_FILENAME:
            return frame.f_lineno
        frame = frame.f_back
    return None


def _traceback_line(exc: BaseException) -> Optional[int]:
    line = None
    tb = exc.__traceback__
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == PROGRAM_FILENAME:
            line = tb.tb_lineno
        tb = tb.tb_next
    return line


class RecordingCommands:
    """`KarelCommands` implemented against the executor.

    Owns a private working snapshot; every call reads it, computes the
    fault-or-new-snapshot, stores the result and returns.
    """

    def __init__(self, world: World, *, max_steps: int = config.MAX_STEPS):
        self.world = clone_world(world)
        self.max_steps = max_steps
        self.ticks: List[Tick] = []

    def _invoke(self, name: str):
        line = call_site_line()
        if len(self.ticks) >= self.max_steps:
            raise StepLimitExceeded(
                f"Karel took more than {self.max_steps} steps; is there an infinite loop?",
                line=line,
                hint="Make sure every loop eventually ends.",
            )
        index = len(self.ticks)
        if name in executor.SENSORS:
            value = executor.evaluate_sensor(self.world, name)
            self.ticks.append(Tick(index=index, primitive=name, line=line, value=value))
            return value
        try:
            self.world = executor.apply_action(self.world, name)
        except KarelFault as fault:
            fault.with_line(line)
            self.ticks.append(Tick(index=index, primitive=name, line=line, error=fault.to_error()))
            raise
        self.ticks.append(Tick(index=index, primitive=name, line=line, world=self.world))
        return None

    def move(self) -> None:
        self._invoke("move")

    def turn_left(self) -> None:
        self._invoke("turn_left")

    def pick_beeper(self) -> None:
        self._invoke("pick_beeper")

    def put_beeper(self) -> None:
        self._invoke("put_beeper")

    def front_is_clear(self) -> bool:
        return self._invoke("front_is_clear")

    def front_is_blocked(self) -> bool:
        return self._invoke("front_is_blocked")

    def left_is_clear(self) -> bool:
        return self._invoke("left_is_clear")

    def left_is_blocked(self) -> bool:
        return self._invoke("left_is_blocked")

    def right_is_clear(self) -> bool:
        return self._invoke("right_is_clear")

    def right_is_blocked(self) -> bool:
        return self._invoke("right_is_blocked")

    def beepers_present(self) -> bool:
        return self._invoke("beepers_present")

    def no_beepers_present(self) -> bool:
        return self._invoke("no_beepers_present")

    def beepers_in_bag(self) -> bool:
        return self._invoke("beepers_in_bag")

    def no_beepers_in_bag(self) -> bool:
        return self._invoke("no_beepers_in_bag")

    def facing_north(self) -> bool:
        return self._invoke("facing_north")

    def not_facing_north(self) -> bool:
        return self._invoke("not_facing_north")

    def facing_east(self) -> bool:
        return self._invoke("facing_east")

    def not_facing_east(self) -> bool:
        return self._invoke("not_facing_east")

    def facing_south(self) -> bool:
        return self._invoke("facing_south")

    def not_facing_south(self) -> bool:
        return self._invoke("not_facing_south")

    def facing_west(self) -> bool:
        return self._invoke("facing_west")

    def not_facing_west(self) -> bool:
        return self._invoke("not_facing_west")


class KarelRuntime:
    """Executes program text against a `KarelCommands` capability.

    The namespace is created once per runtime; `register()` installs the fixed
    callables and `clear_namespace()` drops whatever the program defined.
    """

    def __init__(
        self,
        commands: KarelCommands,
        *,
        allowed: Optional[Iterable[str]] = None,
        max_time_s: float = config.MAX_TIME_S,
    ):
        self.commands = commands
        self.allowed = tuple(executor.PRIMITIVE_NAMES if allowed is None else allowed)
        self.max_time_s = max_time_s
        self.globals: Dict[str, Any] = {}
        self.register()

    @property
    def fixed_names(self) -> List[str]:
        return ["__builtins__", *self.allowed]

    def register(self) -> None:
        self.globals["__builtins__"] = {COUNTING_PRIMITIVE: range}
        for name in self.allowed:
            if name not in executor.PRIMITIVE_NAMES:
                raise ValueError(f"unknown Karel primitive {name!r}")
            self.globals[name] = getattr(self.commands, name)

    def clear_namespace(self) -> None:
        keep = set(self.fixed_names)
        for name in [k for k in self.globals if k not in keep]:
            del self.globals[name]

    def _time_guard(self) -> Callable:
        deadline = time.monotonic() + self.max_time_s
        limit = self.max_time_s

        def local_trace(frame, event, arg):
            if event == "line" and time.monotonic() > deadline:
                raise ExecutionTimeout(
                    f"Program ran longer than {limit:g}s and was stopped.",
                    line=frame.f_lineno,
                    hint="Make sure every loop eventually ends.",
                )
            return local_trace

        def global_trace(frame, event, arg):
            if frame.f_code.co_filename == PROGRAM_FILENAME:
                return local_trace
            return None

        return global_trace

    def execute(self, code: str) -> None:
        """Run `code` to completion; raises a `KarelFault` on any failure."""
        previous = sys.gettrace()
        try:
            compiled = compile(code, PROGRAM_FILENAME, "exec")
            sys.settrace(self._time_guard())
            exec(compiled, self.globals)
        except KarelFault:
            raise
        except SyntaxError as e:
            # unvalidated code, e.g. 'break' outside a loop
            raise RuntimeFault(f"SyntaxError: {e.msg}", line=e.lineno) from e
        except RecursionError as e:
            raise RuntimeFault(
                "Too many nested function calls (does a function call itself forever?).",
                line=_traceback_line(e),
            ) from e
        except Exception as e:
            raise RuntimeFault(f"{type(e).__name__}: {e}", line=_traceback_line(e)) from e
        finally:
            sys.settrace(previous)
            self.clear_namespace()


def record_program(
    code: str,
    world: World,
    *,
    allowed: Optional[Iterable[str]] = None,
    max_steps: int = config.MAX_STEPS,
    max_time_s: float = config.MAX_TIME_S,
) -> Recording:
    """Execute an already-validated program against a clone of `world`.

    Never raises for program faults: they end up on the failing tick
    (executor faults) or on `Recording.error` (everything else).
    """
    commands = RecordingCommands(world, max_steps=max_steps)
    runtime = KarelRuntime(commands, allowed=allowed, max_time_s=max_time_s)
    error = None
    try:
        runtime.execute(code)
    except KarelFault as fault:
        last = commands.ticks[-1] if commands.ticks else None
        if last is None or last.error is None:
            error = fault.to_error()
    logger.debug("recorded %d ticks (error=%s)", len(commands.ticks), error and error.get("code"))
    return Recording(ticks=commands.ticks, error=error)
