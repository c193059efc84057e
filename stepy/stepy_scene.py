"""
A headless grid-world scene controller.

Used by the command-line runner and the tests as a concrete host: a player
walks a bounded grid, cannot enter blocked cells and can pick up items.
"""
from typing import Dict, Iterable, List, Optional, Set, Tuple

from stepy.stepy_datatypes import ArgumentError
from stepy.stepy_runtime import StepyHost, action_command, predicate_command

Cell = Tuple[int, int]

DIRECTIONS: Dict[str, Cell] = {
    "up": (0, 1),
    "down": (0, -1),
    "left": (-1, 0),
    "right": (1, 0),
}


class GridSceneHost(StepyHost):
    def __init__(self, width: int = 5, height: int = 5, start: Cell = (0, 0),
                 blocks: Iterable[Cell] = (), items: Optional[Dict[Cell, str]] = None,
                 move_frames: int = 1):
        self.width = width
        self.height = height
        self.start = tuple(start)
        self.blocks: Set[Cell] = {tuple(b) for b in blocks}
        self.initial_items: Dict[Cell, str] = dict(items or {})
        # Frames a move animation spans; each frame is one driver step
        self.move_frames = move_frames
        self.position: Cell = self.start
        self.items: Dict[Cell, str] = dict(self.initial_items)
        self.inventory: List[str] = []
        self.moves = 0
        self.resets = 0
        super().__init__()

    def _direction(self, direction) -> Cell:
        key = str(direction).lower()
        if key not in DIRECTIONS:
            raise ValueError(f"Invalid direction: {direction}")
        return DIRECTIONS[key]

    def _in_bounds(self, cell: Cell) -> bool:
        x, y = cell
        return 0 <= x < self.width and 0 <= y < self.height

    def _target(self, direction) -> Cell:
        dx, dy = self._direction(direction)
        return (self.position[0] + dx, self.position[1] + dy)

    @action_command
    def move(self, direction):
        target = self._target(direction)
        if not self._in_bounds(target) or target in self.blocks:
            raise ValueError(f"Cannot move {direction} from {self.position}")
        for _ in range(max(0, self.move_frames - 1)):
            yield None
        self.position = target
        self.moves += 1

    @action_command
    def collect(self):
        item = self.items.pop(self.position, None)
        if item is not None:
            self.inventory.append(item)

    @predicate_command
    def can_move(self, direction):
        target = self._target(direction)
        return self._in_bounds(target) and target not in self.blocks

    @predicate_command
    def is_block(self, x, y):
        try:
            cell = (int(x), int(y))
        except (TypeError, ValueError):
            raise ArgumentError("is_block() expects two numbers") from None
        return cell in self.blocks

    def scene_reset(self):
        self.position = self.start
        self.items = dict(self.initial_items)
        self.inventory = []
        self.moves = 0
        self.resets += 1
        yield None
