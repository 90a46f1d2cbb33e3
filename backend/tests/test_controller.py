"""Execution controller tests: transitions, stepping, faults and test mode."""

import asyncio

import pytest

from backend.karel import lesson
from backend.karel.controller import ExecutionController
from backend.karel.state import ExecutionStatus, create_default_execution_state
from backend.karel.world import (
    BeeperPile,
    Dimensions,
    Direction,
    Position,
    Robot,
    Wall,
    WallOrientation,
    World,
    create_default_world,
)

COLLECT = (
    "def turn_right():\n"
    "    for i in range(3):\n"
    "        turn_left()\n"
    "\n"
    "while front_is_clear():\n"
    "    move()\n"
    "    if beepers_present():\n"
    "        pick_beeper()\n"
    "turn_right()\n"
)


def _corridor() -> World:
    return World(
        dimensions=Dimensions(width=6, height=3),
        robot=Robot(position=Position(x=1, y=2)),
        beeper_piles=[BeeperPile(x=3, y=2, count=1), BeeperPile(x=5, y=2, count=2)],
    )


def _ctrl(code, world=None, **kw) -> ExecutionController:
    kw.setdefault("step_delay_ms", 0)
    return ExecutionController(world if world is not None else create_default_world(), code, **kw)


def test_initial_state_is_idle():
    ctrl = _ctrl("move()")
    assert ctrl.state.status == ExecutionStatus.IDLE
    assert ctrl.state.current_line is None
    assert ctrl.state.step_count == 0
    assert ctrl.history == []


def test_default_execution_state():
    state = create_default_execution_state()
    assert state.status == ExecutionStatus.IDLE
    assert state.step_count == 0
    assert state.error is None and state.error_line is None
    assert state.step_delay_ms == 300


def test_empty_program_succeeds_without_steps():
    state = _ctrl("").run()
    assert state.status == ExecutionStatus.SUCCESS
    assert state.step_count == 0
    assert state.current_line is None


def test_run_single_move_succeeds():
    ctrl = _ctrl("move()")
    state = ctrl.run()
    assert state.status == ExecutionStatus.SUCCESS
    assert ctrl.world.robot.position == Position(x=2, y=1)
    assert state.step_count == 1
    assert state.current_line == 1
    assert state.error is None


def test_step_once_pauses():
    ctrl = _ctrl("move()\nturn_left()")
    state = ctrl.step()
    assert state.status == ExecutionStatus.PAUSED
    assert state.step_count == 1
    assert state.current_line == 1
    assert ctrl.world.robot.position == Position(x=2, y=1)
    state = ctrl.step()
    assert state.status == ExecutionStatus.SUCCESS
    assert state.current_line == 2
    assert ctrl.world.robot.direction == Direction.NORTH


def test_stepping_to_the_end_matches_run():
    stepped = _ctrl(COLLECT, _corridor())
    while stepped.step().status == ExecutionStatus.PAUSED:
        pass
    ran = _ctrl(COLLECT, _corridor())
    ran.run()
    assert stepped.state == ran.state
    assert stepped.world == ran.world
    assert ran.state.status == ExecutionStatus.SUCCESS
    assert ran.world.robot.beeper_bag == 2
    assert ran.world.robot.direction == Direction.SOUTH
    assert ran.world.pile_at(5, 2).count == 1


def test_step_counts_sensors_and_tracks_lines():
    ctrl = _ctrl("if front_is_clear():\n    move()")
    ctrl.step()
    assert ctrl.state.current_line == 1
    assert ctrl.world == create_default_world()
    ctrl.step()
    assert ctrl.state.current_line == 2
    assert [t.primitive for t in ctrl.history] == ["front_is_clear", "move"]


def test_fault_keeps_world_from_before_the_failing_primitive():
    world = World(dimensions=Dimensions(width=2, height=1), robot=Robot(position=Position(x=1, y=1)))
    ctrl = _ctrl("move()\nmove()\nturn_left()", world)
    state = ctrl.run()
    assert state.status == ExecutionStatus.ERROR
    assert state.error_code == "BOUNDARY_VIOLATION"
    assert state.error_line == 2
    assert state.current_line == 2
    assert state.step_count == 2
    assert ctrl.world.robot.position == Position(x=2, y=1)


def test_wall_collision_reported():
    world = World(
        dimensions=Dimensions(width=3, height=3),
        robot=Robot(position=Position(x=1, y=1)),
        walls=[Wall(orientation=WallOrientation.VERTICAL, x=1, y=1)],
    )
    state = _ctrl("for i in range(4):\n    turn_left()\nmove()", world).run()
    assert state.error_code == "WALL_COLLISION"
    assert state.error_line == 3
    assert state.step_count == 5


def test_validation_error_never_runs():
    ctrl = _ctrl("move()\nx = 5")
    state = ctrl.run()
    assert state.status == ExecutionStatus.ERROR
    assert state.error_code == "VALIDATION_ERROR"
    assert state.error_line == 2
    assert state.step_count == 0
    assert ctrl.world == create_default_world()


def test_runtime_error_before_any_primitive():
    state = _ctrl("jump()\ndef jump():\n    move()").run()
    assert state.status == ExecutionStatus.ERROR
    assert state.error_code == "RUNTIME_ERROR"
    assert state.error_line == 1


def test_reset_restores_initial_world_and_is_idempotent():
    ctrl = _ctrl("move()\nmove()", step_delay_ms=150)
    ctrl.step()
    first = ctrl.reset()
    assert first.status == ExecutionStatus.IDLE
    assert first.step_count == 0
    assert first.current_line is None
    assert first.step_delay_ms == 150
    assert ctrl.world == create_default_world()
    second = ctrl.reset()
    assert second == first
    assert ctrl.history == []


def test_run_after_success_starts_over():
    ctrl = _ctrl("move()")
    ctrl.run()
    state = ctrl.run()
    assert state.status == ExecutionStatus.SUCCESS
    assert state.step_count == 1
    assert ctrl.world.robot.position == Position(x=2, y=1)


def test_resume_after_pause():
    ctrl = _ctrl("for i in range(4):\n    move()")
    ctrl.step()
    ctrl.step()
    state = ctrl.run()
    assert state.status == ExecutionStatus.SUCCESS
    assert state.step_count == 4
    assert ctrl.world.robot.position == Position(x=5, y=1)


def test_pause_from_listener_stops_at_tick_boundary():
    ctrl = _ctrl("for i in range(10):\n    turn_left()")

    paused = []

    def listener(state, world):
        if state.status == ExecutionStatus.RUNNING and state.step_count == 3 and not paused:
            paused.append(state.step_count)
            ctrl.pause()

    ctrl.subscribe(listener)
    state = ctrl.run()
    assert state.status == ExecutionStatus.PAUSED
    assert state.step_count == 3
    state = ctrl.run()
    assert state.status == ExecutionStatus.SUCCESS
    assert state.step_count == 10


def test_unsubscribe_stops_notifications():
    seen = []
    ctrl = _ctrl("move()")
    unsubscribe = ctrl.subscribe(lambda state, world: seen.append(state.status))
    ctrl.run()
    assert seen[0] == ExecutionStatus.RUNNING
    assert seen[-1] == ExecutionStatus.SUCCESS
    unsubscribe()
    count = len(seen)
    ctrl.reset()
    assert len(seen) == count


def test_pause_and_step_are_noops_when_not_applicable():
    ctrl = _ctrl("move()")
    assert ctrl.pause().status == ExecutionStatus.IDLE
    assert ctrl.tick() == ExecutionStatus.IDLE


def test_play_can_be_paused_from_another_task():
    async def scenario():
        ctrl = _ctrl("for i in range(10):\n    turn_left()", step_delay_ms=10)
        task = asyncio.create_task(ctrl.play())
        while ctrl.state.step_count < 3:
            await asyncio.sleep(0)
        ctrl.pause()
        return ctrl, await task

    ctrl, state = asyncio.run(scenario())
    assert state.status == ExecutionStatus.PAUSED
    assert 3 <= state.step_count < 10


def test_reset_during_play_returns_to_idle():
    async def scenario():
        ctrl = _ctrl("for i in range(10):\n    move()", step_delay_ms=10)
        task = asyncio.create_task(ctrl.play())
        while ctrl.state.step_count < 2:
            await asyncio.sleep(0)
        ctrl.reset()
        await task
        return ctrl

    ctrl = asyncio.run(scenario())
    assert ctrl.state.status == ExecutionStatus.IDLE
    assert ctrl.world == create_default_world()


def test_load_code_resets_a_paused_run():
    ctrl = _ctrl("move()\nmove()")
    ctrl.step()
    ctrl.load_code("turn_left()")
    assert ctrl.state.status == ExecutionStatus.IDLE
    assert ctrl.run().status == ExecutionStatus.SUCCESS
    assert ctrl.world.robot.position == Position(x=1, y=1)
    assert ctrl.world.robot.direction == Direction.NORTH


def test_environments_are_independent():
    a = _ctrl("move()")
    b = _ctrl("turn_left()")
    a.run()
    assert b.world == create_default_world()
    assert b.state.status == ExecutionStatus.IDLE


def test_restricted_commands_are_enforced():
    ctrl = _ctrl("pick_beeper()", allowed_features=lesson.AllowedFeatures(karel_commands=["move"]))
    state = ctrl.run()
    assert state.error_code == "VALIDATION_ERROR"


def _suite(**kw):
    goal = lesson.WorldGoal(position=Position(x=3, y=1))
    worlds = {
        "wide": create_default_world(),
        "narrow": World(dimensions=Dimensions(width=2, height=2), robot=Robot(position=Position(x=1, y=1))),
    }
    return lesson.TestSuite(worlds=worlds, validate=lesson.goal_predicate(goal), **kw)


def test_run_tests_reports_each_world():
    ctrl = _ctrl("move()\nmove()", tests=_suite())
    report = ctrl.run_tests()
    assert not report.passed
    by_name = {r.name: r for r in report.results}
    assert by_name["wide"].passed
    assert not by_name["narrow"].passed
    assert by_name["narrow"].status == "error"
    assert by_name["narrow"].error_line == 2
    assert report.summary == "1/2 tests passed"
    # the environment itself was not touched
    assert ctrl.state.status == ExecutionStatus.IDLE
    assert ctrl.world == create_default_world()


def test_run_tests_accepts_bool_predicates():
    suite = lesson.TestSuite(
        worlds={"default": create_default_world()},
        validate=lambda world: world.robot.direction == Direction.NORTH,
    )
    report = _ctrl("turn_left()").run_tests(suite)
    assert report.passed
    assert report.results[0].message == "Passed."


def test_run_tests_without_worlds_raises():
    with pytest.raises(ValueError):
        _ctrl("move()").run_tests()


def test_goal_predicate_explains_failures():
    check = lesson.goal_predicate(
        lesson.WorldGoal(direction=Direction.WEST, beeper_bag=1, beeper_piles=[])
    )
    result = check(create_default_world())
    assert not result.passed
    assert "face west" in result.message
    assert "bag" in result.message


def test_load_test_world():
    ctrl = _ctrl("move()", tests=_suite(loadable_tests=["narrow"]))
    ctrl.load_test_world("narrow")
    assert ctrl.world.dimensions.width == 2
    assert ctrl.initial_world.dimensions.width == 2
    with pytest.raises(KeyError):
        ctrl.load_test_world("wide")
    with pytest.raises(KeyError):
        ctrl.load_test_world("missing")


def test_from_lesson():
    config = lesson.LessonConfig(
        initial_world=_corridor(),
        initial_code="move()",
        allowed_features=lesson.AllowedFeatures(python_features=[]),
    )
    ctrl = ExecutionController.from_lesson(config, step_delay_ms=0)
    assert ctrl.run().status == ExecutionStatus.SUCCESS
    assert ctrl.world.robot.position == Position(x=2, y=2)
    ctrl.load_code("for i in range(2):\n    move()")
    assert ctrl.run().error_code == "VALIDATION_ERROR"


@pytest.mark.parametrize(
    "code,line",
    [("move()\nbreak", 2), ("return", 1), ("continue", 1)],
)
def test_misplaced_control_statement_is_a_validation_error(code, line):
    ctrl = _ctrl(code)
    state = ctrl.run()
    assert state.status == ExecutionStatus.ERROR
    assert state.error_code == "VALIDATION_ERROR"
    assert state.error_line == line
    assert state.step_count == 0
    assert ctrl.world == create_default_world()


def test_deeply_nested_program_fails_validation():
    state = _ctrl("if " + "not " * 600 + "front_is_clear():\n    move()").step()
    assert state.status == ExecutionStatus.ERROR
    assert state.error_code in ("VALIDATION_ERROR", "SYNTAX_ERROR")
