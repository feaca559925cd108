import random

import pytest

from app.schemas.multiplayer import GameSettings
from app.services.player_service import Player


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FixedRandom(random.Random):
    """Random whose ``random()`` always returns the same value"""

    def __init__(self, value: float = 0.0):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


class FakeConnection:
    """Records frames the way a WebSocket would receive them"""

    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    def events(self, event_type):
        return [frame["data"] for frame in self.sent if frame["type"] == event_type]

    def last(self, event_type):
        events = self.events(event_type)
        return events[-1] if events else None


def make_players(count, bots=()):
    return [
        Player(
            id=f"p{i}",
            name=f"Player {i}",
            color="#4ecdc4",
            room_id="room",
            is_bot=i in bots,
            difficulty="hard" if i in bots else None,
        )
        for i in range(1, count + 1)
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings_2d():
    return GameSettings(board_size="medium")


@pytest.fixture
def settings_3d():
    return GameSettings(board_size="small", is_3d=True)
