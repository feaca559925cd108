"""
Lobby service for bot lifecycle in rooms
"""
import logging
import random
import secrets
from typing import List, Optional

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.services.bot_service import BOT_NAMES, BotAI, generate_bot_name
from app.services.player_service import Player, PlayerRegistry
from app.services.room_service import RoomRegistry, RoomStatus

logger = logging.getLogger(__name__)


class LobbyService:
    """Adds and removes bots, keeping rooms, players and bot runtimes in step"""

    def __init__(
        self,
        rooms: RoomRegistry,
        players: PlayerRegistry,
        bot_ai: BotAI,
        rng: Optional[random.Random] = None,
    ):
        self.rooms = rooms
        self.players = players
        self.bot_ai = bot_ai
        self.rng = rng or random.Random()

    def add_bot(self, room_id: str, difficulty: str = "medium") -> Player:
        """Add a bot to a waiting room with a free slot"""
        if difficulty not in BOT_NAMES:
            raise ValidationError(f"Unknown bot difficulty: {difficulty}")

        room = self.rooms.get(room_id)
        if not room:
            raise NotFoundError("Room not found")
        if room.status == RoomStatus.PLAYING:
            raise ConflictError("Cannot add bots while a game is running")
        if room.is_full:
            raise ConflictError("Room is full")

        bot_id = f"bot_{secrets.token_hex(8)}"
        taken = [p.name for p in self.players.list_in_room(room_id)]
        name = generate_bot_name(difficulty, taken, self.rng)
        color = self.players.allocate_color(room_id)

        if not self.rooms.add_member(room_id, bot_id, can_host=False):
            raise ConflictError("Room is not accepting players")

        bot = self.players.add_bot(bot_id, name, color, room_id, difficulty)
        self.bot_ai.register(bot_id, difficulty)

        logger.info(f"Bot {name} ({bot_id}) added to room {room.code}")
        return bot

    def remove_bot(self, room_id: str, bot_id: str) -> bool:
        bot = self.players.get(bot_id)
        if not bot or not bot.is_bot or bot.room_id != room_id:
            return False

        self.rooms.leave(bot_id)
        self.players.remove(bot_id)
        self.bot_ai.forget(bot_id)

        logger.info(f"Bot {bot.name} ({bot_id}) removed from room {room_id}")
        return True

    def remove_all_bots_in_room(self, room_id: str) -> List[str]:
        removed = []
        for bot in self.players.bots_in_room(room_id):
            if self.remove_bot(room_id, bot.id):
                removed.append(bot.id)
        return removed

    def is_bot(self, player_id: str) -> bool:
        player = self.players.get(player_id)
        return bool(player and player.is_bot)

    def count_bots(self, room_id: str) -> int:
        return len(self.players.bots_in_room(room_id))

    def count_real_players(self, room_id: str) -> int:
        return len(self.players.real_players_in_room(room_id))
