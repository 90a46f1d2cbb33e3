"""Karel world model.

A `World` is a snapshot of the grid: dimensions, the robot's pose and bag,
wall segments and beeper piles. Snapshots are immutable by convention: the
executor never edits one in place, it clones and returns a new one.

Coordinates are 1-indexed. ``y`` grows northwards, so a horizontal wall at
``(x, y)`` separates ``(x, y)`` from ``(x, y + 1)`` and a vertical wall at
``(x, y)`` separates ``(x, y)`` from ``(x + 1, y)``.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

MAX_WORLD_SIZE = 30

# Sentinel bag count meaning "Karel never runs out"
UNLIMITED_BEEPERS = -1


class Direction(str, Enum):
    NORTH = "north"
    EAST = "east"
    SOUTH = "south"
    WEST = "west"


class WallOrientation(str, Enum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


class Position(BaseModel):
    x: int
    y: int


class Dimensions(BaseModel):
    width: int = Field(ge=1, le=MAX_WORLD_SIZE)
    height: int = Field(ge=1, le=MAX_WORLD_SIZE)


class Wall(BaseModel):
    orientation: WallOrientation
    x: int
    y: int


class BeeperPile(BaseModel):
    x: int
    y: int
    count: int = Field(ge=1)


class Robot(BaseModel):
    position: Position
    direction: Direction = Direction.EAST
    beeper_bag: int = Field(default=0, ge=UNLIMITED_BEEPERS)

    @property
    def has_unlimited_beepers(self) -> bool:
        return self.beeper_bag == UNLIMITED_BEEPERS


class World(BaseModel):
    """One snapshot of the grid world."""

    dimensions: Dimensions
    robot: Robot
    walls: List[Wall] = []
    beeper_piles: List[BeeperPile] = []

    @model_validator(mode="after")
    def _normalize(self) -> "World":
        pos = self.robot.position
        if not self.contains(pos.x, pos.y):
            raise ValueError(
                f"robot position ({pos.x}, {pos.y}) lies outside the "
                f"{self.dimensions.width}x{self.dimensions.height} world"
            )
        # Repeated walls describe the same boundary; keep the first of each
        seen = set()
        walls: List[Wall] = []
        for wall in self.walls:
            key = (wall.orientation, wall.x, wall.y)
            if key in seen:
                continue
            seen.add(key)
            walls.append(wall)
        self.walls = walls
        # At most one pile per cell: merge by summing counts, first-seen order
        merged: Dict[Tuple[int, int], BeeperPile] = {}
        for pile in self.beeper_piles:
            key = (pile.x, pile.y)
            if key in merged:
                merged[key] = BeeperPile(x=pile.x, y=pile.y, count=merged[key].count + pile.count)
            else:
                merged[key] = pile
        self.beeper_piles = list(merged.values())
        return self

    def contains(self, x: int, y: int) -> bool:
        return 1 <= x <= self.dimensions.width and 1 <= y <= self.dimensions.height

    def has_wall(self, orientation: WallOrientation, x: int, y: int) -> bool:
        return any(w.orientation == orientation and w.x == x and w.y == y for w in self.walls)

    def pile_at(self, x: int, y: int) -> Optional[BeeperPile]:
        for pile in self.beeper_piles:
            if pile.x == x and pile.y == y:
                return pile
        return None


def create_default_world() -> World:
    """Return a 10x10 world with Karel at (1, 1) facing east and an empty bag."""
    return World(
        dimensions=Dimensions(width=10, height=10),
        robot=Robot(position=Position(x=1, y=1), direction=Direction.EAST, beeper_bag=0),
        walls=[],
        beeper_piles=[],
    )


def clone_world(world: World) -> World:
    """Return a fully independent deep copy of `world`."""
    return world.model_copy(deep=True)
