"""
Bot AI service

Bots play through the same heading interface as humans. Every tick the engine
asks ``BotAI.decide`` for a heading; the decision scores every legal move on
food, free space, danger and a difficulty-specific strategy term, then picks
the best move most of the time.
"""
import heapq
import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Set, TYPE_CHECKING

from app.schemas.multiplayer import GameSettings
from app.services.geometry import Board, Cell, is_reversal, manhattan

if TYPE_CHECKING:
    from app.services.game_engine import PlayerSimState, SimulationState

logger = logging.getLogger(__name__)

# Minimum milliseconds between two fresh decisions
MOVE_DELAYS = {
    "easy": 150,
    "medium": 100,
    "hard": 50,
}

# Probability of taking the best scored move
BEST_MOVE_CHANCE = {
    "easy": 0.9,
    "medium": 0.85,
    "hard": 0.95,
}

BOT_NAMES = {
    "easy": ["Rookie", "Newbie", "Beginner", "Starter"],
    "medium": ["Hunter", "Tracker", "Seeker", "Chaser"],
    "hard": ["Viper", "Cobra", "Python", "Anaconda"],
}

DANGER_WEIGHT = 0.3
STRATEGY_WEIGHT = 0.5
PATH_SEARCH_LIMIT = 200


@dataclass(frozen=True)
class BotTuning:
    """Scoring constants for one board dimensionality"""
    food_distance_cost: int
    flood_fill_cap: int
    free_space_weight: int
    enemy_head_penalty: int
    intercept_penalty: int
    wall_penalty: int
    center_bonus: int
    lone_enemy_bonus: int
    crowd_penalty: int
    hunt_bonus: int
    territory_bonus: int
    territory_range: int


TUNING_2D = BotTuning(
    food_distance_cost=20,
    flood_fill_cap=15,
    free_space_weight=2,
    enemy_head_penalty=50,
    intercept_penalty=30,
    wall_penalty=20,
    center_bonus=20,
    lone_enemy_bonus=15,
    crowd_penalty=10,
    hunt_bonus=25,
    territory_bonus=40,
    territory_range=5,
)

TUNING_3D = BotTuning(
    food_distance_cost=15,
    flood_fill_cap=20,
    free_space_weight=3,
    enemy_head_penalty=40,
    intercept_penalty=25,
    wall_penalty=15,
    center_bonus=25,
    lone_enemy_bonus=12,
    crowd_penalty=8,
    hunt_bonus=20,
    territory_bonus=35,
    territory_range=6,
)


def tuning_for(board: Board) -> BotTuning:
    return TUNING_3D if board.dimensions == 3 else TUNING_2D


@dataclass
class BotRuntime:
    """Per-bot decision memory"""
    difficulty: str
    last_decision_at: Optional[float] = None
    last_heading: Optional[str] = None


# Scoring heuristics. All pure: inputs in, number out.

def nearest_food_distance(cell: Cell, food: Iterable[Cell]) -> Optional[int]:
    distances = [manhattan(cell, f) for f in food]
    return min(distances) if distances else None


def food_score(cell: Cell, food: List[Cell], tuning: BotTuning) -> float:
    distance = nearest_food_distance(cell, food)
    if distance is None:
        return 0
    return max(500, 1000 - distance * tuning.food_distance_cost)


def free_space(cell: Cell, board: Board, blocked: Set[Cell], cap: int) -> int:
    """Size of the open region reachable from ``cell``, counted up to ``cap``"""
    if not board.in_bounds(cell) or cell in blocked:
        return 0
    seen = {cell}
    queue = deque([cell])
    while queue and len(seen) < cap:
        current = queue.popleft()
        for neighbour in board.neighbours(current):
            if neighbour in seen or neighbour in blocked or not board.in_bounds(neighbour):
                continue
            seen.add(neighbour)
            queue.append(neighbour)
            if len(seen) >= cap:
                break
    return min(len(seen), cap)


def danger_score(cell: Cell, board: Board, enemies: List["PlayerSimState"], tuning: BotTuning) -> float:
    score = 0.0
    for enemy in enemies:
        distance = manhattan(cell, enemy.head)
        if distance <= 3:
            score -= (4 - distance) * tuning.enemy_head_penalty
        if len(enemy.snake) >= 3 and distance <= 5:
            predicted = board.step(enemy.head, enemy.heading)
            if manhattan(cell, predicted) <= 2:
                score -= tuning.intercept_penalty

    wall = board.wall_distance(cell)
    if wall <= 2:
        score -= (3 - wall) * tuning.wall_penalty
    return score


def medium_strategy(cell: Cell, board: Board, enemies: List["PlayerSimState"], tuning: BotTuning) -> float:
    center = max(0, tuning.center_bonus - manhattan(cell, board.center()))
    nearby = [e for e in enemies if manhattan(cell, e.head) <= 5]
    if len(nearby) == 1:
        pressure = tuning.lone_enemy_bonus
    elif nearby:
        pressure = -len(nearby) * tuning.crowd_penalty
    else:
        pressure = 0
    return STRATEGY_WEIGHT * (center + pressure)


def hard_strategy(cell: Cell, food: List[Cell], enemies: List["PlayerSimState"], tuning: BotTuning) -> float:
    score = 0.0
    for enemy in enemies:
        distance = manhattan(cell, enemy.head)
        if 3 <= distance <= 8:
            score += tuning.hunt_bonus
        for f in food:
            ours = manhattan(cell, f)
            if ours <= tuning.territory_range and ours < manhattan(enemy.head, f):
                score += tuning.territory_bonus
                break
    return STRATEGY_WEIGHT * score


def score_move(
    cell: Cell,
    difficulty: str,
    state: "SimulationState",
    enemies: List["PlayerSimState"],
    blocked: Set[Cell],
    tuning: BotTuning,
    jitter: float = 0.0,
) -> float:
    board = state.board
    score = food_score(cell, state.food, tuning)
    score += free_space(cell, board, blocked, tuning.flood_fill_cap) * tuning.free_space_weight
    score += danger_score(cell, board, enemies, tuning) * DANGER_WEIGHT

    if difficulty == "easy":
        score += jitter
    elif difficulty == "medium":
        score += medium_strategy(cell, board, enemies, tuning)
    elif difficulty == "hard":
        score += hard_strategy(cell, state.food, enemies, tuning)
    return score


def find_path(start: Cell, goal: Cell, state: "SimulationState", limit: int = PATH_SEARCH_LIMIT) -> Optional[List[Cell]]:
    """A* from ``start`` to ``goal`` around living snakes.

    Returns the cells after ``start`` up to and including ``goal``, or None when
    no path is found within ``limit`` expansions.
    """
    board = state.board
    blocked = state.occupied()
    blocked.discard(start)

    counter = 0
    frontier = [(manhattan(start, goal), counter, start)]
    came_from: Dict[Cell, Optional[Cell]] = {start: None}
    cost = {start: 0}

    for _ in range(limit):
        if not frontier:
            break
        _, _, current = heapq.heappop(frontier)
        if current == goal:
            path = []
            while current != start:
                path.append(current)
                current = came_from[current]
            return list(reversed(path))

        for neighbour in board.neighbours(current):
            if not board.in_bounds(neighbour):
                continue
            if neighbour in blocked and neighbour != goal:
                continue
            new_cost = cost[current] + 1
            if neighbour not in cost or new_cost < cost[neighbour]:
                cost[neighbour] = new_cost
                came_from[neighbour] = current
                counter += 1
                heapq.heappush(frontier, (new_cost + manhattan(neighbour, goal), counter, neighbour))
    return None


def generate_bot_name(difficulty: str, taken: Iterable[str], rng: random.Random) -> str:
    """``<Base><00-99>`` not already used in ``taken`` (case-insensitive)"""
    taken = {name.lower() for name in taken}
    bases = BOT_NAMES.get(difficulty, BOT_NAMES["medium"])

    for _ in range(50):
        name = f"{rng.choice(bases)}{rng.randrange(100):02d}"
        if name.lower() not in taken:
            return name

    for base in bases:
        for number in range(100):
            name = f"{base}{number:02d}"
            if name.lower() not in taken:
                return name
    return f"{bases[0]}{rng.randrange(100):02d}"


class BotAI:
    """Decision maker for every bot on the server"""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rng = rng or random.Random()
        self.clock = clock
        self.bots: Dict[str, BotRuntime] = {}

    def register(self, bot_id: str, difficulty: str) -> BotRuntime:
        runtime = BotRuntime(difficulty=difficulty)
        self.bots[bot_id] = runtime
        logger.info(f"Bot {bot_id} registered ({difficulty})")
        return runtime

    def forget(self, bot_id: str):
        self.bots.pop(bot_id, None)

    def is_registered(self, bot_id: str) -> bool:
        return bot_id in self.bots

    def decide(
        self,
        bot_id: str,
        state: "SimulationState",
        settings: Optional[GameSettings] = None,
    ) -> Optional[str]:
        """Heading for ``bot_id`` this tick, or None when it has nothing to steer"""
        runtime = self.bots.get(bot_id)
        if not runtime:
            return None

        me = state.player(bot_id)
        if not me or not me.alive or not me.snake:
            return None

        now = self.clock()
        delay = MOVE_DELAYS.get(runtime.difficulty, MOVE_DELAYS["medium"]) / 1000.0
        if runtime.last_decision_at is not None and now - runtime.last_decision_at < delay:
            return runtime.last_heading or me.heading

        heading = self._choose(me, runtime.difficulty, state)
        runtime.last_decision_at = now
        runtime.last_heading = heading
        return heading

    def _choose(self, me: "PlayerSimState", difficulty: str, state: "SimulationState") -> str:
        board = state.board
        blocked = state.occupied()
        enemies = [p for p in state.players if p.alive and p.id != me.id]

        candidates = [
            heading for heading in board.heading_names()
            if not is_reversal(heading, me.heading)
        ]
        safe = []
        for heading in candidates:
            cell = board.step(me.head, heading)
            if board.in_bounds(cell) and cell not in blocked:
                safe.append((heading, cell))

        if not safe:
            return self._emergency(me, state, candidates)

        tuning = tuning_for(board)
        scored = []
        for heading, cell in safe:
            jitter = self.rng.random() * 10 - 5 if difficulty == "easy" else 0.0
            scored.append((score_move(cell, difficulty, state, enemies, blocked, tuning, jitter), heading))
        scored.sort(key=lambda item: item[0], reverse=True)

        best = scored[0][1]
        if self.rng.random() < BEST_MOVE_CHANCE.get(difficulty, BEST_MOVE_CHANCE["medium"]):
            return best
        if difficulty == "easy":
            return self.rng.choice(safe)[0]
        return scored[1][1] if len(scored) > 1 else best

    def _emergency(self, me: "PlayerSimState", state: "SimulationState", candidates: List[str]) -> str:
        """Every move is fatal: aim at food, else anything that is not a reversal"""
        board = state.board
        if state.food:
            target = min(state.food, key=lambda f: manhattan(me.head, f))
            heading = board.heading_towards(me.head, target)
            if heading and not is_reversal(heading, me.heading):
                return heading
        if candidates:
            return self.rng.choice(candidates)
        return me.heading

    def get_debug_info(self) -> dict:
        return {
            "bots": {
                bot_id: {
                    "difficulty": runtime.difficulty,
                    "last_heading": runtime.last_heading,
                }
                for bot_id, runtime in self.bots.items()
            }
        }
