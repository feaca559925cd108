from datetime import timedelta
from types import SimpleNamespace

import pytest

from app.services.player_service import PLAYER_COLORS, PlayerRegistry
from app.utils.time_utils import utc_now


@pytest.fixture
def registry():
    return PlayerRegistry()


@pytest.mark.parametrize("name,valid", [
    ("Alice", True),
    ("  Bob 2  ", True),
    ("A", False),
    ("", False),
    ("   ", False),
    ("x" * 21, False),
    ("Eve!", False),
    ("Zoë", False),
])
def test_validate_name(name, valid):
    result = PlayerRegistry.validate_name(name)
    assert result.valid is valid
    assert (result.error is None) is valid


def test_upsert_rebinding_keeps_ready_and_join_time(registry):
    player = registry.upsert("p1", "s1", "Alice", PLAYER_COLORS[0], "room")
    registry.set_ready("p1", True)
    joined_at = player.joined_at

    rebound = registry.upsert("p1", "s2", "Alice", PLAYER_COLORS[0], "room")

    assert rebound.ready is True
    assert rebound.joined_at == joined_at
    assert registry.get_by_session("s1") is None
    assert registry.get_by_session("s2").id == "p1"


def test_allocate_color(registry):
    assert registry.allocate_color("room") == PLAYER_COLORS[0]

    registry.upsert("p1", "s1", "Alice", PLAYER_COLORS[0], "room")
    assert registry.allocate_color("room") == PLAYER_COLORS[1]
    # preferred color honoured when free, ignored when taken or unknown
    assert registry.allocate_color("room", PLAYER_COLORS[3].upper()) == PLAYER_COLORS[3]
    assert registry.allocate_color("room", PLAYER_COLORS[0]) == PLAYER_COLORS[1]
    assert registry.allocate_color("room", "#123456") == PLAYER_COLORS[1]


def test_allocate_color_falls_back_when_palette_exhausted(registry):
    for i, color in enumerate(PLAYER_COLORS):
        registry.upsert(f"p{i}", f"s{i}", f"Player {i}", color, "room")
    assert registry.allocate_color("room") == PLAYER_COLORS[0]


def test_name_availability_is_case_insensitive(registry):
    registry.upsert("p1", "s1", "Alice", PLAYER_COLORS[0], "room")
    assert not registry.is_name_available("room", "ALICE")
    assert registry.is_name_available("room", "alice", exclude_player_id="p1")
    assert registry.is_name_available("other", "Alice")


def test_bots_and_real_players(registry):
    registry.upsert("p1", "s1", "Alice", PLAYER_COLORS[0], "room")
    bot = registry.add_bot("bot_1", "Viper07", PLAYER_COLORS[1], "room", "hard")

    assert bot.ready and bot.is_bot and bot.session_id is None
    assert [p.id for p in registry.bots_in_room("room")] == ["bot_1"]
    assert [p.id for p in registry.real_players_in_room("room")] == ["p1"]


def test_format_for_broadcast_uses_simulation_state(registry):
    registry.upsert("p1", "s1", "Alice", PLAYER_COLORS[0], "room")
    registry.upsert("p2", "s2", "Bob", PLAYER_COLORS[1], "room")
    sim = SimpleNamespace(players=[
        SimpleNamespace(id="p1", score=20, alive=True),
        SimpleNamespace(id="p2", score=0, alive=False),
    ])

    players = registry.format_for_broadcast("room", "p1", sim)
    wire = [p.to_wire() for p in players]

    assert wire[0] == {
        "id": "p1", "name": "Alice", "color": PLAYER_COLORS[0], "ready": False,
        "isHost": True, "score": 20, "alive": True, "isBot": False,
    }
    assert wire[1]["alive"] is False
    assert wire[1]["isHost"] is False
    assert all("sessionId" not in entry for entry in wire)


def test_remove_by_session(registry):
    registry.upsert("p1", "s1", "Alice", PLAYER_COLORS[0], "room")
    assert registry.remove_by_session("s1").id == "p1"
    assert registry.get("p1") is None
    assert registry.remove_by_session("s1") is None


def test_expire_inactive_sessions(registry):
    registry.upsert("p1", "s1", "Alice", PLAYER_COLORS[0], "room")
    registry.upsert("p2", "s2", "Bob", PLAYER_COLORS[1], "room")
    registry.get_session("s1").last_seen = utc_now() - timedelta(minutes=11)

    removed = registry.expire_inactive_sessions(timedelta(minutes=10))

    assert [p.id for p in removed] == ["p1"]
    assert registry.get("p1") is None
    assert registry.get("p2") is not None
