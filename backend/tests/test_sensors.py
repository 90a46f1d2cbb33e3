"""Sensor semantics and the complement invariant over reachable states."""

import itertools

import pytest

from backend.karel import executor
from backend.karel.world import (
    BeeperPile,
    Dimensions,
    Direction,
    Position,
    Robot,
    Wall,
    WallOrientation,
    World,
)

WALLS = [
    Wall(orientation=WallOrientation.VERTICAL, x=1, y=2),
    Wall(orientation=WallOrientation.HORIZONTAL, x=2, y=1),
    Wall(orientation=WallOrientation.HORIZONTAL, x=3, y=3),
]
PILES = [BeeperPile(x=2, y=2, count=1), BeeperPile(x=3, y=1, count=4)]


def _states():
    for x, y, direction, bag in itertools.product(range(1, 4), range(1, 4), list(Direction), (-1, 0, 1, 5)):
        yield World(
            dimensions=Dimensions(width=3, height=3),
            robot=Robot(position=Position(x=x, y=y), direction=direction, beeper_bag=bag),
            walls=WALLS,
            beeper_piles=PILES,
        )


def test_sensor_pairs_are_complements_everywhere():
    checked = 0
    for world in _states():
        for positive, negative in executor.COMPLEMENTS:
            a = executor.evaluate_sensor(world, positive)
            b = executor.evaluate_sensor(world, negative)
            assert isinstance(a, bool) and isinstance(b, bool)
            assert a == (not b), (positive, world.robot)
            checked += 1
    assert checked == 3 * 3 * 4 * 4 * len(executor.COMPLEMENTS)


def test_complements_cover_all_sensors():
    paired = {name for pair in executor.COMPLEMENTS for name in pair}
    assert paired == set(executor.SENSORS)


@pytest.mark.parametrize("direction", list(Direction))
def test_exactly_one_facing_sensor_is_true(direction):
    world = World(
        dimensions=Dimensions(width=2, height=2),
        robot=Robot(position=Position(x=1, y=1), direction=direction),
    )
    facing = [d for d in Direction if executor.evaluate_sensor(world, f"facing_{d.value}")]
    assert facing == [direction]


def test_front_left_right_relative_to_facing():
    # at (1,1) facing north in a 3x3 world: west edge on the left
    world = World(
        dimensions=Dimensions(width=3, height=3),
        robot=Robot(position=Position(x=1, y=1), direction=Direction.NORTH),
    )
    assert executor.front_is_clear(world)
    assert executor.left_is_blocked(world)
    assert executor.right_is_clear(world)


def test_sensors_see_walls():
    world = World(
        dimensions=Dimensions(width=3, height=3),
        robot=Robot(position=Position(x=2, y=2), direction=Direction.EAST),
        walls=[
            Wall(orientation=WallOrientation.VERTICAL, x=2, y=2),
            Wall(orientation=WallOrientation.HORIZONTAL, x=2, y=1),
        ],
    )
    assert executor.front_is_blocked(world)
    assert executor.left_is_clear(world)
    # the wall below (2,2) is on Karel's right when facing east
    assert executor.right_is_blocked(world)


def test_beeper_sensors():
    world = World(
        dimensions=Dimensions(width=2, height=2),
        robot=Robot(position=Position(x=2, y=2), beeper_bag=-1),
        beeper_piles=[BeeperPile(x=2, y=2, count=1)],
    )
    assert executor.beepers_present(world)
    assert executor.beepers_in_bag(world)
    world.robot.beeper_bag = 0
    assert executor.no_beepers_in_bag(world)
    world.beeper_piles = []
    assert executor.no_beepers_present(world)
