"""Execution controller: the run / step / pause / reset state machine.

The controller owns the single authoritative `World` snapshot and the
`ExecutionState` of one environment. Starting a run validates the current
code, has the host runtime record it against a clone of the initial
snapshot, then replays that recording one tick (one primitive) at a time:

    idle --run/step--> running --pause / single step--> paused
      ^                   |  \\--fault--> error
      |                   \\--program finished--> success
      +------------------reset (from any state)

`tick()` is the only transition that applies effects; `run()` (blocking)
and `play()` (asyncio) are tick sources that sleep `step_delay_ms` between
ticks and stop as soon as the status leaves ``running``. Pause and reset are
therefore observed at tick boundaries and never interrupt a primitive.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Union

from . import config
from .lesson import AllowedFeatures, LessonConfig, TestCheck, TestReport, TestResult, TestSuite
from .runtime import Recording, Tick, record_program
from .state import TERMINAL_STATUSES, ExecutionState, ExecutionStatus
from .subprocess_runner import record_in_subprocess
from .validator import validate
from .world import World, clone_world, create_default_world

logger = logging.getLogger(__name__)

Listener = Callable[[ExecutionState, World], None]


class ExecutionController:
    """Drives one program over one world.

    Tunable attributes (defaults come from `config`):
    - max_steps: primitive invocations allowed per run
    - max_time_s: wall-clock budget for recording the program
    - use_subprocess: record in a resource-limited child process
    """

    def __init__(
        self,
        initial_world: Optional[World] = None,
        code: str = "",
        *,
        allowed_features: Optional[AllowedFeatures] = None,
        tests: Optional[TestSuite] = None,
        step_delay_ms: int = config.DEFAULT_STEP_DELAY_MS,
        max_steps: int = config.MAX_STEPS,
        max_time_s: float = config.MAX_TIME_S,
        use_subprocess: bool = False,
    ):
        self._initial_world = clone_world(initial_world if initial_world is not None else create_default_world())
        self.world = clone_world(self._initial_world)
        self.code = code
        self.allowed_features = allowed_features or AllowedFeatures()
        self.tests = tests
        self.max_steps = max_steps
        self.max_time_s = max_time_s
        self.use_subprocess = use_subprocess
        self.state = ExecutionState(step_delay_ms=self._checked_delay(step_delay_ms))
        self._recording: Optional[Recording] = None
        self._cursor = 0
        # bumped whenever a tick source must stop (pause, reset, restart)
        self._generation = 0
        self._listeners: List[Listener] = []

    @classmethod
    def from_lesson(cls, lesson: LessonConfig, **kwargs) -> "ExecutionController":
        return cls(
            lesson.initial_world,
            lesson.initial_code,
            allowed_features=lesson.allowed_features,
            tests=lesson.tests,
            **kwargs,
        )

    # --- observation -------------------------------------------------------
    @property
    def initial_world(self) -> World:
        return clone_world(self._initial_world)

    @property
    def history(self) -> List[Tick]:
        """Ticks applied so far in the current run."""
        if self._recording is None:
            return []
        return self._recording.ticks[: self._cursor]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener(state, world)` after every tick and transition."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        for listener in list(self._listeners):
            listener(self.state, self.world)

    # --- configuration -----------------------------------------------------
    @staticmethod
    def _checked_delay(delay_ms: int) -> int:
        delay_ms = int(delay_ms)
        if delay_ms < 0:
            raise ValueError("step delay must be non-negative")
        return min(delay_ms, config.MAX_STEP_DELAY_MS)

    def set_speed(self, speed: Union[int, str]) -> int:
        """Set the delay between ticks, in ms or by preset name ("Instant", "Slow", ...)."""
        if isinstance(speed, str):
            if speed not in config.SPEED_PRESETS:
                raise ValueError(f"unknown speed preset {speed!r}")
            speed = config.SPEED_PRESETS[speed]
        self.state.step_delay_ms = self._checked_delay(speed)
        self._notify()
        return self.state.step_delay_ms

    def load_code(self, code: str) -> None:
        # a recording of the old code must never be resumed
        if self.state.status != ExecutionStatus.IDLE:
            self.reset()
        self.code = code

    def load_world(self, world: World) -> None:
        """Replace the initial snapshot (e.g. with a test world) and reset."""
        self._initial_world = clone_world(world)
        self.reset()

    def load_test_world(self, name: str) -> None:
        if self.tests is None or not self.tests.is_loadable(name):
            raise KeyError(f"no loadable test world named {name!r}")
        self.load_world(self.tests.worlds[name])

    # --- transitions -------------------------------------------------------
    def _fail(self, error: Dict) -> None:
        self.state.status = ExecutionStatus.ERROR
        self.state.error = error.get("message")
        self.state.error_code = error.get("code")
        self.state.error_line = error.get("line")
        logger.info(
            "run failed: %s at line %s (%s)",
            self.state.error_code,
            self.state.error_line,
            self.state.error,
        )

    def _record(self) -> Recording:
        features = self.allowed_features
        if self.use_subprocess:
            return record_in_subprocess(
                self.code,
                self._initial_world,
                karel_commands=features.karel_commands,
                python_features=features.python_features,
                max_steps=self.max_steps,
                max_time_s=self.max_time_s,
            )
        return record_program(
            self.code,
            self._initial_world,
            allowed=features.karel_commands,
            max_steps=self.max_steps,
            max_time_s=self.max_time_s,
        )

    def _start(self) -> bool:
        """Enter ``running``; returns False when the program cannot run."""
        if self.state.status in TERMINAL_STATUSES:
            self.reset()
        self._generation += 1
        if self.state.status == ExecutionStatus.IDLE:
            result = validate(
                self.code,
                karel_commands=self.allowed_features.karel_commands,
                python_features=self.allowed_features.python_features,
            )
            if not result.valid:
                self._fail(result.to_error())
                self._notify()
                return False
            self._recording = self._record()
            self._cursor = 0
            if not self._recording.ticks and self._recording.error is not None:
                # nothing ran (subprocess validation/timeout): fail without ticking
                self._fail(self._recording.error)
                self._notify()
                return False
        self.state.status = ExecutionStatus.RUNNING
        self._notify()
        return True

    def _finish(self) -> None:
        if self._recording is not None and self._recording.error is not None:
            self._fail(self._recording.error)
        else:
            self.state.status = ExecutionStatus.SUCCESS
            logger.info("run finished after %d steps", self.state.step_count)

    def tick(self) -> ExecutionStatus:
        """Apply the next primitive. No-op unless the status is ``running``."""
        if self.state.status != ExecutionStatus.RUNNING or self._recording is None:
            return self.state.status
        ticks = self._recording.ticks
        if self._cursor >= len(ticks):
            self._finish()
            self._notify()
            return self.state.status
        tick = ticks[self._cursor]
        self._cursor += 1
        # line and count first so a failing primitive still reports its line
        self.state.current_line = tick.line
        self.state.step_count += 1
        if tick.error is not None:
            self._fail(tick.error)
        else:
            if tick.world is not None:
                self.world = clone_world(tick.world)
            if self._cursor >= len(ticks):
                self._finish()
        self._notify()
        return self.state.status

    def run(self, sleep: Callable[[float], None] = time.sleep) -> ExecutionState:
        """Run continuously until the program ends, faults, or is paused/reset."""
        if not self._start():
            return self.state
        generation = self._generation
        while self.state.status == ExecutionStatus.RUNNING and generation == self._generation:
            self.tick()
            if self.state.status != ExecutionStatus.RUNNING:
                break
            if self.state.step_delay_ms:
                sleep(self.state.step_delay_ms / 1000.0)
        return self.state

    async def play(self, sleep=asyncio.sleep) -> ExecutionState:
        """Asynchronous `run()`: other tasks may pause or reset between ticks."""
        if not self._start():
            return self.state
        generation = self._generation
        while self.state.status == ExecutionStatus.RUNNING and generation == self._generation:
            self.tick()
            if self.state.status != ExecutionStatus.RUNNING:
                break
            await sleep(self.state.step_delay_ms / 1000.0)
        return self.state

    def step(self) -> ExecutionState:
        """Execute exactly one primitive, then pause unless the run ended."""
        if self.state.status == ExecutionStatus.RUNNING:
            self.pause()
        if not self._start():
            return self.state
        self.tick()
        if self.state.status == ExecutionStatus.RUNNING:
            self.state.status = ExecutionStatus.PAUSED
            self._notify()
        return self.state

    def pause(self) -> ExecutionState:
        if self.state.status == ExecutionStatus.RUNNING:
            self._generation += 1
            self.state.status = ExecutionStatus.PAUSED
            self._notify()
        return self.state

    def reset(self) -> ExecutionState:
        """Back to ``idle`` with the initial snapshot restored."""
        self._generation += 1
        self._recording = None
        self._cursor = 0
        self.world = clone_world(self._initial_world)
        self.state = ExecutionState(step_delay_ms=self.state.step_delay_ms)
        self._notify()
        return self.state

    # --- test mode ---------------------------------------------------------
    def run_tests(self, suite: Optional[TestSuite] = None) -> TestReport:
        """Run the current code against every world of `suite`, one after another.

        Each world gets its own controller at zero delay, so this environment's
        own snapshot and state are untouched.
        """
        suite = suite or self.tests
        if suite is None or not suite.worlds:
            raise ValueError("no test worlds configured")
        results: List[TestResult] = []
        for name, world in suite.worlds.items():
            runner = ExecutionController(
                world,
                self.code,
                allowed_features=self.allowed_features,
                step_delay_ms=0,
                max_steps=self.max_steps,
                max_time_s=self.max_time_s,
                use_subprocess=self.use_subprocess,
            )
            state = runner.run()
            if state.status == ExecutionStatus.ERROR:
                results.append(
                    TestResult(
                        name=name,
                        passed=False,
                        message=state.error or "Program failed.",
                        status=state.status.value,
                        error_line=state.error_line,
                        step_count=state.step_count,
                        world=runner.world,
                    )
                )
                continue
            check = suite.validate(runner.world)
            if isinstance(check, bool):
                check = TestCheck(passed=check, message="Passed." if check else "Failed.")
            results.append(
                TestResult(
                    name=name,
                    passed=check.passed,
                    message=check.message,
                    status=state.status.value,
                    step_count=state.step_count,
                    world=runner.world,
                )
            )
        report = TestReport(results=results, passed=all(r.passed for r in results))
        logger.info("test run: %s", report.summary)
        return report
