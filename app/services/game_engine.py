"""
Simulation engine: the authoritative per-room tick for 2D and 3D games
"""
import asyncio
import logging
import random
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set, TYPE_CHECKING

from app.core.exceptions import ConflictError
from app.schemas.multiplayer import (
    GameResult,
    GameSettings,
    GameStateSnapshot,
    PlayerGameState,
    Position,
)
from app.services.geometry import Board, Cell, is_reversal

if TYPE_CHECKING:
    from app.services.bot_service import BotAI

logger = logging.getLogger(__name__)

FOOD_REWARD = 10
FOOD_SPAWN_ATTEMPTS = 100
START_MARGIN = 3
INITIAL_FOOD = {2: 3, 3: 5}

PLAYING = "playing"
FINISHED = "finished"


@dataclass
class PlayerSimState:
    """One snake inside a running simulation"""
    id: str
    snake: List[Cell]
    heading: str
    score: int = 0
    alive: bool = True
    is_bot: bool = False
    # Heading requested since the last tick, applied when the next tick starts
    pending_heading: Optional[str] = None
    died_at: Optional[float] = None

    @property
    def head(self) -> Cell:
        return self.snake[0]

    def to_schema(self) -> PlayerGameState:
        return PlayerGameState(
            id=self.id,
            snake=[Position.from_tuple(cell) for cell in self.snake],
            direction=self.heading,
            score=self.score,
            alive=self.alive,
        )


@dataclass
class SimulationState:
    """Authoritative game state of one room"""
    room_id: str
    board: Board
    players: List[PlayerSimState]
    food: List[Cell] = field(default_factory=list)
    status: str = PLAYING
    tick_count: int = 0
    started_at: float = 0.0
    finished_at: Optional[float] = None

    def player(self, player_id: str) -> Optional[PlayerSimState]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def alive_players(self) -> List[PlayerSimState]:
        return [p for p in self.players if p.alive]

    def occupied(self, living_only: bool = True) -> Set[Cell]:
        cells: Set[Cell] = set()
        for player in self.players:
            if living_only and not player.alive:
                continue
            cells.update(player.snake)
        return cells

    def snapshot(self) -> GameStateSnapshot:
        return GameStateSnapshot(
            players=[p.to_schema() for p in self.players],
            food=[Position.from_tuple(cell) for cell in self.food],
            game_status=self.status,
        )


def tick_interval(settings: GameSettings) -> float:
    """Seconds between ticks. 3D runs slower to keep the extra axis readable."""
    if settings.is_3d:
        millis = max(150, 400 - settings.game_speed * 50)
    else:
        millis = max(100, 300 - settings.game_speed * 40)
    return millis / 1000.0


def start_layout(board: Board) -> List[tuple]:
    """(cell, heading) per player index, spread toward corners and edges"""
    n, m = board.size, START_MARGIN
    if board.dimensions == 2:
        return [
            ((m, m), "right"),
            ((n - m, n - m), "left"),
            ((n - m, m), "left"),
            ((m, n - m), "right"),
        ]
    c = n // 2
    return [
        ((m, m, c), "right"),
        ((n - m, n - m, c), "left"),
        ((n - m, m, c), "left"),
        ((m, n - m, c), "right"),
        ((c, m, m), "down"),
        ((c, n - m, n - m), "up"),
        ((c, m, n - m), "backward"),
        ((c, n - m, m), "forward"),
    ]


class SimulationEngine:
    """Runs one simulation per room, each on its own periodic task.

    Ticks are synchronous: a tick runs to completion before the event loop can
    schedule anything else, so one room's state is never mutated by two ticks
    (or a tick and a broadcast) at once.
    """

    def __init__(
        self,
        bot_ai: Optional["BotAI"] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bot_ai = bot_ai
        self.rng = rng or random.Random()
        self.clock = clock
        self.states: Dict[str, SimulationState] = {}
        self.settings: Dict[str, GameSettings] = {}
        self.tasks: Dict[str, asyncio.Task] = {}

    def start(
        self,
        room_id: str,
        players: Sequence,
        settings: GameSettings,
        autorun: bool = True,
    ) -> SimulationState:
        """Seed a new simulation and arm its tick task.

        ``players`` are objects with ``id`` and ``is_bot`` in room order.
        With ``autorun=False`` the caller drives ``tick`` itself.
        """
        self.stop(room_id)

        if len(players) < 2:
            raise ConflictError("At least 2 players are required to start")

        board = Board.for_settings(settings.board_size, settings.is_3d)
        layout = start_layout(board)

        sim_players = []
        for index, player in enumerate(players):
            cell, heading = layout[index % len(layout)]
            sim_players.append(PlayerSimState(
                id=player.id,
                snake=[cell],
                heading=heading,
                is_bot=getattr(player, "is_bot", False),
            ))

        state = SimulationState(
            room_id=room_id,
            board=board,
            players=sim_players,
            started_at=self.clock(),
        )
        state.food = self._spawn_food(state, INITIAL_FOOD[board.dimensions])

        self.states[room_id] = state
        self.settings[room_id] = settings

        if autorun:
            self.tasks[room_id] = asyncio.create_task(self._run(room_id, tick_interval(settings)))

        logger.info(
            f"Game started for room {room_id} with {len(players)} players "
            f"({board.dimensions}D, {board.size} cells)"
        )
        return state

    def stop(self, room_id: str):
        """Cancel the room's task and freeze its state. Safe to call twice."""
        task = self.tasks.pop(room_id, None)
        if task and task is not _current_task():
            task.cancel()

        state = self.states.get(room_id)
        if state and state.status != FINISHED:
            state.status = FINISHED
            state.finished_at = self.clock()
            logger.info(f"Game stopped for room {room_id}")

    def drop(self, room_id: str):
        """Stop and forget the room's simulation"""
        self.stop(room_id)
        self.states.pop(room_id, None)
        self.settings.pop(room_id, None)

    def shutdown(self):
        for room_id in list(self.states):
            self.drop(room_id)
        for task in self.tasks.values():
            task.cancel()
        self.tasks.clear()

    def is_running(self, room_id: str) -> bool:
        return room_id in self.tasks

    def get_state(self, room_id: str) -> Optional[SimulationState]:
        return self.states.get(room_id)

    def set_heading(self, room_id: str, player_id: str, heading: str) -> bool:
        """Buffer a heading for the next tick. Reversals are rejected."""
        state = self.states.get(room_id)
        if not state or state.status != PLAYING:
            return False

        if not state.board.is_heading(heading):
            return False

        player = state.player(player_id)
        if not player or not player.alive:
            return False

        if is_reversal(heading, player.heading):
            return False

        player.pending_heading = heading
        return True

    def eliminate(self, room_id: str, player_id: str) -> bool:
        """Take a departed player out of the running game"""
        state = self.states.get(room_id)
        if not state or state.status != PLAYING:
            return False
        player = state.player(player_id)
        if not player or not player.alive:
            return False
        player.alive = False
        player.died_at = self.clock()
        logger.info(f"Player {player_id} eliminated from room {room_id}")
        return True

    def tick(self, room_id: str) -> Optional[SimulationState]:
        """Process one game tick - move snakes, check collisions"""
        state = self.states.get(room_id)
        if not state or state.status != PLAYING:
            return state

        self._apply_bot_moves(state)

        alive = state.alive_players()
        for player in alive:
            if player.pending_heading:
                player.heading = player.pending_heading
                player.pending_heading = None

        board = state.board
        blocked = state.occupied()
        targets = {p.id: board.step(p.head, p.heading) for p in alive}
        contested = Counter(targets.values())
        now = self.clock()

        for player in alive:
            new_head = targets[player.id]

            if (
                not board.in_bounds(new_head)
                or new_head in blocked
                or contested[new_head] > 1
            ):
                player.alive = False
                player.died_at = now
                logger.info(f"Player {player.id} eliminated in room {room_id}")
                continue

            player.snake.insert(0, new_head)

            if new_head in state.food:
                player.score += FOOD_REWARD
                state.food.remove(new_head)
                state.food.extend(self._spawn_food(state, 1))
            else:
                player.snake.pop()

        state.tick_count += 1

        if len(state.alive_players()) <= 1:
            self.stop(room_id)
            logger.info(f"Game finished for room {room_id} after {state.tick_count} ticks")

        return state

    def get_results(self, room_id: str) -> List[GameResult]:
        """Ranking by score, then by how long each player survived"""
        state = self.states.get(room_id)
        if not state:
            return []

        end = state.finished_at if state.finished_at is not None else self.clock()

        def survival(player: PlayerSimState) -> float:
            died = player.died_at if player.died_at is not None else end
            return died - state.started_at

        ranked = sorted(state.players, key=lambda p: (-p.score, not p.alive, -survival(p)))
        return [
            GameResult(
                player_id=player.id,
                score=player.score,
                rank=index + 1,
                survival_time=round(survival(player) * 1000),
            )
            for index, player in enumerate(ranked)
        ]

    def get_duration(self, room_id: str) -> int:
        """Game length in milliseconds"""
        state = self.states.get(room_id)
        if not state:
            return 0
        end = state.finished_at if state.finished_at is not None else self.clock()
        return round((end - state.started_at) * 1000)

    async def _run(self, room_id: str, interval: float):
        while True:
            await asyncio.sleep(interval)
            state = self.states.get(room_id)
            if not state or state.status != PLAYING:
                break
            try:
                self.tick(room_id)
            except Exception:
                logger.exception(f"Tick failed for room {room_id}")

    def _apply_bot_moves(self, state: SimulationState):
        if not self.bot_ai:
            return
        settings = self.settings.get(state.room_id)
        for player in state.players:
            if not player.is_bot or not player.alive:
                continue
            try:
                heading = self.bot_ai.decide(player.id, state, settings)
            except Exception:
                logger.exception(f"Bot {player.id} failed to decide in room {state.room_id}")
                continue
            if heading:
                self.set_heading(state.room_id, player.id, heading)

    def _spawn_food(self, state: SimulationState, count: int) -> List[Cell]:
        """Random free cells; gives up on a piece after 100 misses"""
        board = state.board
        occupied = state.occupied(living_only=False)
        occupied.update(state.food)

        spawned = []
        for _ in range(count):
            for _ in range(FOOD_SPAWN_ATTEMPTS):
                cell = tuple(self.rng.randrange(board.size) for _ in range(board.dimensions))
                if cell not in occupied:
                    spawned.append(cell)
                    occupied.add(cell)
                    break
        return spawned

    def get_debug_info(self) -> dict:
        return {
            "active_games": len(self.states),
            "games": [
                {
                    "room_id": room_id,
                    "status": state.status,
                    "players": len(state.players),
                    "alive_players": len(state.alive_players()),
                    "food": len(state.food),
                    "ticks": state.tick_count,
                }
                for room_id, state in self.states.items()
            ],
        }


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
