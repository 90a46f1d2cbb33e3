"""Per-lesson configuration: restrictions, test worlds and goal checks."""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from .world import BeeperPile, Direction, Position, World, create_default_world


class AllowedFeatures(BaseModel):
    """Restrictions a lesson places on student code.

    `karel_commands` lists the primitive names the student may call and
    `python_features` the constructs they may use (see
    `validator.PYTHON_FEATURES`). None leaves that axis unrestricted.
    """

    karel_commands: Optional[List[str]] = None
    python_features: Optional[List[str]] = None


class TestCheck(BaseModel):
    passed: bool
    message: str = ""


class TestResult(BaseModel):
    name: str
    passed: bool
    message: str = ""
    status: str
    error_line: Optional[int] = None
    step_count: int = 0
    world: Optional[World] = None


class TestReport(BaseModel):
    results: List[TestResult]
    passed: bool

    @property
    def summary(self) -> str:
        ok = sum(1 for r in self.results if r.passed)
        return f"{ok}/{len(self.results)} tests passed"


WorldCheck = Callable[[World], Union[TestCheck, bool]]


@dataclass
class TestSuite:
    """Named starting worlds plus a predicate over the final world.

    `loadable_tests` names the worlds a student may load into the
    environment to try by hand; an empty list means all of them.
    """

    worlds: Dict[str, World]
    validate: WorldCheck
    loadable_tests: List[str] = field(default_factory=list)

    def is_loadable(self, name: str) -> bool:
        if name not in self.worlds:
            return False
        return not self.loadable_tests or name in self.loadable_tests


@dataclass
class LessonConfig:
    initial_world: World = field(default_factory=create_default_world)
    initial_code: str = ""
    allowed_features: AllowedFeatures = field(default_factory=AllowedFeatures)
    tests: Optional[TestSuite] = None
    show_world_editor: bool = False


class WorldGoal(BaseModel):
    """Declarative description of a finished world; unset fields are not checked."""

    position: Optional[Position] = None
    direction: Optional[Direction] = None
    beeper_piles: Optional[List[BeeperPile]] = None
    beeper_bag: Optional[int] = None


def goal_predicate(goal: WorldGoal) -> Callable[[World], TestCheck]:
    """Build a `TestSuite.validate` callable that compares a world to `goal`."""

    def check(world: World) -> TestCheck:
        problems: List[str] = []
        robot = world.robot
        if goal.position is not None and robot.position != goal.position:
            problems.append(
                f"Karel should end at ({goal.position.x}, {goal.position.y}) "
                f"but is at ({robot.position.x}, {robot.position.y})."
            )
        if goal.direction is not None and robot.direction != goal.direction:
            problems.append(
                f"Karel should face {goal.direction.value} but faces {robot.direction.value}."
            )
        if goal.beeper_piles is not None:
            want = {(p.x, p.y): p.count for p in goal.beeper_piles}
            have = {(p.x, p.y): p.count for p in world.beeper_piles}
            if want != have:
                problems.append("The beepers are not where they should be.")
        if goal.beeper_bag is not None and robot.beeper_bag != goal.beeper_bag:
            problems.append(
                f"Karel's bag should hold {goal.beeper_bag} beepers but holds {robot.beeper_bag}."
            )
        if problems:
            return TestCheck(passed=False, message=" ".join(problems))
        return TestCheck(passed=True, message="Goal reached.")

    return check
