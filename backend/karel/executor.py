"""Command & sensor executor.

Applies one primitive to a `World`. Actions return a new snapshot (the input
is never modified) or raise a `KarelFault`; sensors return a bool and never
fail. The module is stateless, so one import serves every environment.
"""

from typing import Callable, Dict, Optional

from .faults import BagEmpty, BoundaryViolation, NoBeeperPresent, WallCollision
from .world import (
    UNLIMITED_BEEPERS,
    BeeperPile,
    Direction,
    Position,
    WallOrientation,
    World,
    clone_world,
)

DELTAS = {
    Direction.NORTH: (0, 1),
    Direction.EAST: (1, 0),
    Direction.SOUTH: (0, -1),
    Direction.WEST: (-1, 0),
}

# counter-clockwise successor
LEFT_OF = {
    Direction.NORTH: Direction.WEST,
    Direction.WEST: Direction.SOUTH,
    Direction.SOUTH: Direction.EAST,
    Direction.EAST: Direction.NORTH,
}
RIGHT_OF = {v: k for k, v in LEFT_OF.items()}

WALL = "wall"
BOUNDARY = "boundary"


def blocker(world: World, position: Position, direction: Direction) -> Optional[str]:
    """Return what stops a move from `position` towards `direction`.

    ``"wall"`` if a wall segment sits on that boundary, ``"boundary"`` if the
    neighbouring cell is off the grid, otherwise None. Walls win when both
    apply.
    """
    x, y = position.x, position.y
    if direction == Direction.NORTH:
        walled = world.has_wall(WallOrientation.HORIZONTAL, x, y)
    elif direction == Direction.SOUTH:
        walled = world.has_wall(WallOrientation.HORIZONTAL, x, y - 1)
    elif direction == Direction.EAST:
        walled = world.has_wall(WallOrientation.VERTICAL, x, y)
    else:
        walled = world.has_wall(WallOrientation.VERTICAL, x - 1, y)
    if walled:
        return WALL
    dx, dy = DELTAS[direction]
    if not world.contains(x + dx, y + dy):
        return BOUNDARY
    return None


# --- Actions ---------------------------------------------------------------

def move(world: World) -> World:
    robot = world.robot
    reason = blocker(world, robot.position, robot.direction)
    if reason == WALL:
        raise WallCollision(
            f"Karel crashed into a wall while moving {robot.direction.value}.",
            hint="Check front_is_clear() before calling move().",
        )
    if reason == BOUNDARY:
        raise BoundaryViolation(
            f"Karel cannot move {robot.direction.value} off the edge of the world.",
            hint="Check front_is_clear() before calling move().",
        )
    dx, dy = DELTAS[robot.direction]
    new = clone_world(world)
    new.robot.position = Position(x=robot.position.x + dx, y=robot.position.y + dy)
    return new


def turn_left(world: World) -> World:
    new = clone_world(world)
    new.robot.direction = LEFT_OF[world.robot.direction]
    return new


def pick_beeper(world: World) -> World:
    pos = world.robot.position
    pile = world.pile_at(pos.x, pos.y)
    if pile is None or pile.count < 1:
        raise NoBeeperPresent(
            f"There is no beeper to pick up at ({pos.x}, {pos.y}).",
            hint="Check beepers_present() before calling pick_beeper().",
        )
    new = clone_world(world)
    new_pile = new.pile_at(pos.x, pos.y)
    new_pile.count -= 1
    if new_pile.count == 0:
        new.beeper_piles = [p for p in new.beeper_piles if p is not new_pile]
    if not new.robot.has_unlimited_beepers:
        new.robot.beeper_bag += 1
    return new


def put_beeper(world: World) -> World:
    if world.robot.beeper_bag == 0:
        raise BagEmpty(
            "Karel's beeper bag is empty.",
            hint="Check beepers_in_bag() before calling put_beeper().",
        )
    pos = world.robot.position
    new = clone_world(world)
    if not new.robot.has_unlimited_beepers:
        new.robot.beeper_bag -= 1
    pile = new.pile_at(pos.x, pos.y)
    if pile is None:
        new.beeper_piles.append(BeeperPile(x=pos.x, y=pos.y, count=1))
    else:
        pile.count += 1
    return new


# --- Sensors ---------------------------------------------------------------

def front_is_clear(world: World) -> bool:
    return blocker(world, world.robot.position, world.robot.direction) is None


def front_is_blocked(world: World) -> bool:
    return not front_is_clear(world)


def left_is_clear(world: World) -> bool:
    return blocker(world, world.robot.position, LEFT_OF[world.robot.direction]) is None


def left_is_blocked(world: World) -> bool:
    return not left_is_clear(world)


def right_is_clear(world: World) -> bool:
    return blocker(world, world.robot.position, RIGHT_OF[world.robot.direction]) is None


def right_is_blocked(world: World) -> bool:
    return not right_is_clear(world)


def beepers_present(world: World) -> bool:
    pos = world.robot.position
    pile = world.pile_at(pos.x, pos.y)
    return pile is not None and pile.count > 0


def no_beepers_present(world: World) -> bool:
    return not beepers_present(world)


def beepers_in_bag(world: World) -> bool:
    # unlimited (-1) counts as having beepers
    return world.robot.beeper_bag != 0


def no_beepers_in_bag(world: World) -> bool:
    return not beepers_in_bag(world)


def _facing(direction: Direction) -> Callable[[World], bool]:
    def sensor(world: World) -> bool:
        return world.robot.direction == direction

    sensor.__name__ = f"facing_{direction.value}"
    return sensor


def _not_facing(direction: Direction) -> Callable[[World], bool]:
    def sensor(world: World) -> bool:
        return world.robot.direction != direction

    sensor.__name__ = f"not_facing_{direction.value}"
    return sensor


facing_north = _facing(Direction.NORTH)
not_facing_north = _not_facing(Direction.NORTH)
facing_east = _facing(Direction.EAST)
not_facing_east = _not_facing(Direction.EAST)
facing_south = _facing(Direction.SOUTH)
not_facing_south = _not_facing(Direction.SOUTH)
facing_west = _facing(Direction.WEST)
not_facing_west = _not_facing(Direction.WEST)


ACTIONS: Dict[str, Callable[[World], World]] = {
    "move": move,
    "turn_left": turn_left,
    "pick_beeper": pick_beeper,
    "put_beeper": put_beeper,
}

SENSORS: Dict[str, Callable[[World], bool]] = {
    "front_is_clear": front_is_clear,
    "front_is_blocked": front_is_blocked,
    "left_is_clear": left_is_clear,
    "left_is_blocked": left_is_blocked,
    "right_is_clear": right_is_clear,
    "right_is_blocked": right_is_blocked,
    "beepers_present": beepers_present,
    "no_beepers_present": no_beepers_present,
    "beepers_in_bag": beepers_in_bag,
    "no_beepers_in_bag": no_beepers_in_bag,
    "facing_north": facing_north,
    "not_facing_north": not_facing_north,
    "facing_east": facing_east,
    "not_facing_east": not_facing_east,
    "facing_south": facing_south,
    "not_facing_south": not_facing_south,
    "facing_west": facing_west,
    "not_facing_west": not_facing_west,
}

# Sensor pairs that must disagree in every reachable state
COMPLEMENTS = (
    ("front_is_clear", "front_is_blocked"),
    ("left_is_clear", "left_is_blocked"),
    ("right_is_clear", "right_is_blocked"),
    ("beepers_present", "no_beepers_present"),
    ("beepers_in_bag", "no_beepers_in_bag"),
    ("facing_north", "not_facing_north"),
    ("facing_east", "not_facing_east"),
    ("facing_south", "not_facing_south"),
    ("facing_west", "not_facing_west"),
)

PRIMITIVE_NAMES = tuple(ACTIONS) + tuple(SENSORS)


def apply_action(world: World, name: str) -> World:
    try:
        action = ACTIONS[name]
    except KeyError:
        raise ValueError(f"unknown action {name!r}") from None
    return action(world)


def evaluate_sensor(world: World, name: str) -> bool:
    try:
        sensor = SENSORS[name]
    except KeyError:
        raise ValueError(f"unknown sensor {name!r}") from None
    return sensor(world)
