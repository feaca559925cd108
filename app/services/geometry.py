"""
Board geometry shared by the simulation engine and the bots

Positions are tuples of ints, one entry per axis. Headings are named unit
vectors: four in 2D, six in 3D. Everything here is dimension-generic.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

Cell = Tuple[int, ...]

# Cells per axis for each board size class
BOARD_CELLS: Dict[str, int] = {
    "small": 20,
    "medium": 30,
    "large": 40,
}

HEADINGS_2D: Dict[str, Cell] = {
    "up": (0, -1),
    "down": (0, 1),
    "left": (-1, 0),
    "right": (1, 0),
}

HEADINGS_3D: Dict[str, Cell] = {
    "up": (0, -1, 0),
    "down": (0, 1, 0),
    "left": (-1, 0, 0),
    "right": (1, 0, 0),
    "forward": (0, 0, 1),
    "backward": (0, 0, -1),
}

OPPOSITES: Dict[str, str] = {
    "up": "down",
    "down": "up",
    "left": "right",
    "right": "left",
    "forward": "backward",
    "backward": "forward",
}


def manhattan(a: Iterable[float], b: Iterable[float]) -> float:
    return sum(abs(p - q) for p, q in zip(a, b))


def opposite(heading: str) -> Optional[str]:
    return OPPOSITES.get(heading)


def is_reversal(heading: str, current: str) -> bool:
    return OPPOSITES.get(heading) == current


@dataclass(frozen=True)
class Board:
    """Cubic grid of ``size`` cells along each of ``dimensions`` axes"""
    size: int
    dimensions: int = 2

    @classmethod
    def for_settings(cls, board_size: str, is_3d: bool) -> "Board":
        return cls(size=BOARD_CELLS[board_size], dimensions=3 if is_3d else 2)

    @property
    def headings(self) -> Dict[str, Cell]:
        return HEADINGS_3D if self.dimensions == 3 else HEADINGS_2D

    def heading_names(self) -> List[str]:
        return list(self.headings)

    def is_heading(self, heading: str) -> bool:
        return heading in self.headings

    def step(self, cell: Cell, heading: str) -> Cell:
        delta = self.headings[heading]
        return tuple(c + d for c, d in zip(cell, delta))

    def in_bounds(self, cell: Cell) -> bool:
        return all(0 <= c < self.size for c in cell)

    def neighbours(self, cell: Cell) -> Iterator[Cell]:
        for heading in self.headings:
            yield self.step(cell, heading)

    def center(self) -> Tuple[float, ...]:
        return tuple(self.size / 2 for _ in range(self.dimensions))

    def wall_distance(self, cell: Cell) -> int:
        """Cells between ``cell`` and the nearest wall on any axis"""
        return min(min(c, self.size - 1 - c) for c in cell)

    def heading_towards(self, origin: Cell, target: Cell) -> Optional[str]:
        """Axis heading along the largest delta; ties go to the lower axis"""
        deltas = [t - o for o, t in zip(origin, target)]
        if not any(deltas):
            return None
        axis = max(range(len(deltas)), key=lambda i: (abs(deltas[i]), -i))
        sign = 1 if deltas[axis] > 0 else -1
        for name, vector in self.headings.items():
            if vector[axis] == sign:
                return name
        return None
