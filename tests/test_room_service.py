import re
from datetime import timedelta

import pytest

from app.core.exceptions import ConflictError
from app.schemas.multiplayer import GameSettings
from app.services.room_service import ROOM_CODE_ALPHABET, RoomRegistry, RoomStatus
from app.utils.time_utils import utc_now


@pytest.fixture
def registry():
    return RoomRegistry()


def test_create_room(registry):
    room_id, code = registry.create("host", GameSettings())
    assert re.fullmatch(r"[0-9a-f]{32}", room_id)
    assert len(code) == 6
    assert all(ch in ROOM_CODE_ALPHABET for ch in code)

    room = registry.get(room_id)
    assert room.host_id == "host"
    assert room.members == ["host"]
    assert room.status == RoomStatus.WAITING
    assert registry.room_of("host") == room_id


def test_room_codes_are_unique(registry):
    codes = {registry.create(f"host{i}", GameSettings())[1] for i in range(300)}
    assert len(codes) == 300


def test_join_by_code_is_case_insensitive_and_idempotent(registry):
    room_id, code = registry.create("host", GameSettings())

    room = registry.join("guest", code.lower())
    assert room.id == room_id
    assert registry.join("guest", code) is room
    assert room.members == ["host", "guest"]


def test_join_rejects_unknown_full_and_running_rooms(registry):
    assert registry.join("guest", "ZZZZZZ") is None

    room_id, code = registry.create("host", GameSettings(max_players=2))
    assert registry.join("guest", code)
    assert registry.join("third", code) is None

    other_id, other_code = registry.create("host2", GameSettings())
    registry.update_status(other_id, RoomStatus.PLAYING)
    assert registry.join("late", other_code) is None


def test_host_leaving_elects_next_member(registry):
    room_id, code = registry.create("host", GameSettings())
    registry.join("guest", code)

    result = registry.leave("host")
    assert not result.was_last_member
    assert result.host_changed
    assert result.host_id == "guest"
    assert registry.is_host("guest", room_id)


def test_host_election_skips_bots(registry):
    room_id, code = registry.create("host", GameSettings())
    registry.add_member(room_id, "bot_1", can_host=False)
    registry.join("guest", code)

    result = registry.leave("host")
    assert result.host_id == "guest"


def test_last_member_leaving_deletes_room(registry):
    room_id, code = registry.create("host", GameSettings())

    result = registry.leave("host")
    assert result.was_last_member
    assert registry.get(room_id) is None
    assert registry.get_by_code(code) is None
    assert registry.leave("host") is None


def test_update_settings_rejected_while_playing(registry):
    room_id, _ = registry.create("host", GameSettings())
    registry.update_settings(room_id, GameSettings(game_speed=5))
    assert registry.get(room_id).settings.game_speed == 5

    registry.update_status(room_id, RoomStatus.PLAYING)
    with pytest.raises(ConflictError):
        registry.update_settings(room_id, GameSettings(game_speed=1))


def test_list_joinable(registry):
    open_id, _ = registry.create("a", GameSettings())
    full_id, full_code = registry.create("b", GameSettings(max_players=2))
    registry.join("c", full_code)
    playing_id, _ = registry.create("d", GameSettings())
    registry.update_status(playing_id, RoomStatus.PLAYING)

    joinable = registry.list_joinable()
    assert [info.room_id for info in joinable] == [open_id]
    assert joinable[0].player_count == 1


def test_expire_inactive_rooms(registry):
    stale_id, code = registry.create("host", GameSettings())
    registry.join("guest", code)
    fresh_id, _ = registry.create("other", GameSettings())
    registry.get(stale_id).last_activity = utc_now() - timedelta(minutes=31)

    expired = registry.expire_inactive(timedelta(minutes=30))

    assert [room.id for room in expired] == [stale_id]
    assert registry.get(stale_id) is None
    assert registry.room_of("host") is None
    assert registry.room_of("guest") is None
    assert registry.get(fresh_id) is not None
