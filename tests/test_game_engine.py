import asyncio
import random

import pytest

from app.core.exceptions import ConflictError
from app.schemas.multiplayer import GameSettings
from app.services.game_engine import (
    FINISHED,
    FOOD_REWARD,
    PLAYING,
    SimulationEngine,
    tick_interval,
)
from tests.conftest import make_players


def start(engine, count=2, settings=None, **kwargs):
    return engine.start("room", make_players(count, **kwargs), settings or GameSettings(), autorun=False)


def test_start_refuses_single_player(clock):
    engine = SimulationEngine(clock=clock)
    with pytest.raises(ConflictError):
        start(engine, count=1)
    assert engine.get_state("room") is None


def test_start_layout_2d():
    engine = SimulationEngine(rng=random.Random(1))
    state = start(engine, count=4)

    assert [p.snake for p in state.players] == [[(3, 3)], [(27, 27)], [(27, 3)], [(3, 27)]]
    assert [p.heading for p in state.players] == ["right", "left", "left", "right"]
    assert state.status == PLAYING
    assert len(state.food) == 3
    assert not set(state.food) & state.occupied()


def test_start_layout_3d(settings_3d):
    engine = SimulationEngine(rng=random.Random(1))
    state = start(engine, count=2, settings=settings_3d)

    assert state.board.dimensions == 3
    assert state.players[0].snake == [(3, 3, 10)]
    assert state.players[1].snake == [(17, 17, 10)]
    assert len(state.food) == 5
    assert all(len(cell) == 3 for cell in state.food)


def test_snapshot_wire_shape(settings_3d):
    engine = SimulationEngine(rng=random.Random(1))
    start(engine, count=2)
    wire = engine.get_state("room").snapshot().to_wire()

    assert wire["gameStatus"] == "playing"
    assert wire["players"][0] == {
        "id": "p1", "snake": [{"x": 3, "y": 3}], "direction": "right", "score": 0, "alive": True,
    }

    engine.start("cube", make_players(2), settings_3d, autorun=False)
    cube = engine.get_state("cube").snapshot().to_wire()
    assert cube["players"][0]["snake"] == [{"x": 3, "y": 3, "z": 10}]


def test_tick_interval():
    assert tick_interval(GameSettings(game_speed=1)) == pytest.approx(0.26)
    assert tick_interval(GameSettings(game_speed=5)) == pytest.approx(0.1)
    assert tick_interval(GameSettings(game_speed=1, is_3d=True)) == pytest.approx(0.35)
    assert tick_interval(GameSettings(game_speed=5, is_3d=True)) == pytest.approx(0.15)


def test_reversal_is_rejected():
    engine = SimulationEngine()
    state = start(engine)

    assert engine.set_heading("room", "p1", "left") is False
    assert state.players[0].pending_heading is None
    assert engine.set_heading("room", "p1", "forward") is False
    assert engine.set_heading("room", "nobody", "up") is False
    assert engine.set_heading("other", "p1", "up") is False


def test_heading_is_buffered_until_next_tick():
    engine = SimulationEngine()
    state = start(engine)
    state.food = []

    assert engine.set_heading("room", "p1", "down") is True
    assert state.players[0].heading == "right"
    assert state.players[0].snake == [(3, 3)]

    engine.tick("room")
    assert state.players[0].heading == "down"
    assert state.players[0].snake == [(3, 4)]


def test_reversal_checked_against_current_heading():
    engine = SimulationEngine()
    state = start(engine)
    state.food = []

    # a buffered turn does not change what counts as a reversal
    assert engine.set_heading("room", "p1", "up")
    assert engine.set_heading("room", "p1", "left") is False
    engine.tick("room")
    assert state.players[0].heading == "up"


def test_growth_on_food():
    engine = SimulationEngine(rng=random.Random(3))
    state = start(engine)
    state.food = [(4, 3)]

    engine.tick("room")

    player = state.players[0]
    assert player.snake == [(4, 3), (3, 3)]
    assert player.score == FOOD_REWARD
    assert len(state.food) == 1
    assert not set(state.food) & state.occupied()

    state.food = []
    engine.tick("room")
    assert player.snake == [(5, 3), (4, 3)]
    assert player.score == FOOD_REWARD


def test_dead_players_never_move_again():
    engine = SimulationEngine()
    state = start(engine, count=3)
    state.food = []
    engine.set_heading("room", "p1", "up")

    for _ in range(4):
        engine.tick("room")

    dead = state.players[0]
    assert not dead.alive
    frozen = list(dead.snake)
    assert engine.set_heading("room", "p1", "right") is False

    for _ in range(5):
        engine.tick("room")

    assert dead.snake == frozen
    assert dead.score == 0
    assert state.status == PLAYING


def test_contested_cell_kills_both():
    engine = SimulationEngine()
    state = start(engine, count=2)
    state.food = []
    state.players[1].snake = [(5, 3)]

    engine.tick("room")

    assert not state.players[0].alive
    assert not state.players[1].alive
    assert state.players[0].snake == [(3, 3)]
    assert state.status == FINISHED


def test_head_swap_kills_both():
    engine = SimulationEngine()
    state = start(engine, count=2)
    state.food = []
    state.players[1].snake = [(4, 3)]

    engine.tick("room")

    assert not state.players[0].alive
    assert not state.players[1].alive


def test_tick_is_deterministic():
    def run():
        engine = SimulationEngine(rng=random.Random(42))
        start(engine, count=3)
        moves = {3: ("p1", "down"), 7: ("p2", "up"), 12: ("p3", "down"), 15: ("p1", "right")}
        for i in range(25):
            if i in moves:
                engine.set_heading("room", *moves[i])
            engine.tick("room")
        return engine.get_state("room").snapshot().to_wire()

    assert run() == run()


def test_food_never_on_living_snake():
    engine = SimulationEngine(rng=random.Random(9))
    state = start(engine, count=4, settings=GameSettings(board_size="small"))
    rng = random.Random(5)

    for _ in range(60):
        for player in state.alive_players():
            engine.set_heading("room", player.id, rng.choice(["up", "down", "left", "right"]))
        engine.tick("room")
        assert not set(state.food) & state.occupied()
        assert len(set(state.food)) == len(state.food)


def test_opposite_corners_run_into_walls(clock):
    engine = SimulationEngine(rng=random.Random(1), clock=clock)
    state = start(engine, count=2, settings=GameSettings(board_size="small"))
    state.food = []

    ticks = 0
    while state.status == PLAYING and ticks < 100:
        clock.advance(0.1)
        engine.tick("room")
        ticks += 1

    assert state.status == FINISHED
    assert ticks == 17
    assert not state.players[0].alive
    assert state.players[1].alive

    results = engine.get_results("room")
    assert [r.player_id for r in results] == ["p2", "p1"]
    assert [r.rank for r in results] == [1, 2]
    assert results[1].survival_time == 1700
    assert engine.get_duration("room") == 1700


def test_results_rank_by_score_then_survival(clock):
    engine = SimulationEngine(clock=clock)
    state = start(engine, count=3)
    state.players[0].score = 10
    state.players[1].alive = False
    state.players[1].died_at = clock() + 1
    state.players[2].alive = False
    state.players[2].died_at = clock() + 2
    clock.advance(3)
    engine.stop("room")

    results = engine.get_results("room")
    assert [r.player_id for r in results] == ["p1", "p3", "p2"]
    assert results[1].survival_time == 2000


def test_3d_movement(settings_3d):
    engine = SimulationEngine()
    state = start(engine, count=2, settings=settings_3d)
    state.food = []

    assert engine.set_heading("room", "p1", "forward")
    engine.tick("room")
    assert state.players[0].snake == [(3, 3, 11)]


def test_3d_reversal_is_rejected(settings_3d):
    engine = SimulationEngine()
    state = start(engine, count=2, settings=settings_3d)
    state.food = []

    assert engine.set_heading("room", "p1", "backward")
    engine.tick("room")
    assert state.players[0].heading == "backward"

    assert engine.set_heading("room", "p1", "forward") is False
    assert engine.set_heading("room", "p1", "up") is True
    engine.tick("room")
    assert state.players[0].snake == [(3, 2, 9)]


def test_eliminate():
    engine = SimulationEngine()
    state = start(engine, count=3)

    assert engine.eliminate("room", "p2")
    assert not state.players[1].alive
    assert engine.eliminate("room", "p2") is False


def test_stop_is_idempotent(clock):
    engine = SimulationEngine(clock=clock)
    state = start(engine)

    engine.stop("room")
    finished_at = state.finished_at
    clock.advance(5)
    engine.stop("room")

    assert state.status == FINISHED
    assert state.finished_at == finished_at
    assert engine.tick("room") is state
    assert state.tick_count == 0


class ExplodingBots:
    def decide(self, bot_id, state, settings):
        raise RuntimeError("boom")


def test_bot_failure_is_treated_as_no_move():
    engine = SimulationEngine(bot_ai=ExplodingBots())
    state = start(engine, count=2, bots=(1,))
    state.food = []

    engine.tick("room")

    assert state.players[0].alive
    assert state.players[0].snake == [(4, 3)]


async def test_timer_ticks_and_leaves_no_task_behind():
    engine = SimulationEngine()
    engine.start("room", make_players(2), GameSettings(game_speed=5, board_size="large"))
    task = engine.tasks["room"]
    assert engine.is_running("room")

    await asyncio.sleep(0.35)
    ticks = engine.get_state("room").tick_count
    assert ticks >= 2

    engine.drop("room")
    await asyncio.gather(task, return_exceptions=True)

    assert task.cancelled()
    assert engine.tasks == {}
    assert engine.get_state("room") is None


async def test_game_finishing_releases_task():
    engine = SimulationEngine()
    state = engine.start("room", make_players(2), GameSettings(game_speed=5))
    task = engine.tasks["room"]
    state.players[1].snake = [(5, 3)]
    state.food = []

    await asyncio.wait_for(task, timeout=2)

    assert state.status == FINISHED
    assert not engine.is_running("room")
