"""
Game orchestrator: binds client events to the room, player, bot and
simulation services and streams game state to every room member
"""
import asyncio
import logging
import secrets
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    GameError,
    NotFoundError,
    ValidationError,
)
from app.schemas.multiplayer import (
    AddBotEvent,
    ChatMessageEvent,
    CreateRoomEvent,
    GameSettings,
    JoinRoomEvent,
    PlayerInputEvent,
    PlayerReadyEvent,
    RemoveBotEvent,
    UpdateGameSettingsEvent,
)
from app.services.bot_service import BotAI
from app.services.connection_manager import ConnectionManager
from app.services.game_engine import FINISHED, SimulationEngine
from app.services.lobby_service import LobbyService
from app.services.player_service import Player, PlayerRegistry
from app.services.room_service import ROOM_CODE_LENGTH, Room, RoomRegistry, RoomStatus
from app.utils.time_utils import now_ms

logger = logging.getLogger(__name__)

CHAT_MAX_LENGTH = 200
SYSTEM_SENDER = "system"

Handler = Callable[[str, Dict[str, Any]], Awaitable[None]]


class GameOrchestrator:
    """Single entry point for every client event.

    Handlers raise ``GameError`` subclasses; ``handle`` turns them into an
    ``error`` frame for the originating session.
    """

    def __init__(
        self,
        rooms: Optional[RoomRegistry] = None,
        players: Optional[PlayerRegistry] = None,
        bot_ai: Optional[BotAI] = None,
        engine: Optional[SimulationEngine] = None,
        lobby: Optional[LobbyService] = None,
        connections: Optional[ConnectionManager] = None,
        broadcast_fps: Optional[int] = None,
    ):
        self.rooms = rooms or RoomRegistry()
        self.players = players or PlayerRegistry()
        self.bot_ai = bot_ai or BotAI()
        self.engine = engine or SimulationEngine(bot_ai=self.bot_ai)
        self.lobby = lobby or LobbyService(self.rooms, self.players, self.bot_ai)
        self.connections = connections or ConnectionManager()
        self.broadcast_fps = broadcast_fps or settings.BROADCAST_FPS

        self.broadcast_tasks: Dict[str, asyncio.Task] = {}
        # player id -> display name, captured at game start for the results
        self.rosters: Dict[str, Dict[str, str]] = {}

        self.handlers: Dict[str, Handler] = {
            "create-room": self.on_create_room,
            "join-room": self.on_join_room,
            "player-ready": self.on_player_ready,
            "start-game": self.on_start_game,
            "restart-game": self.on_restart_game,
            "game-input": self.on_game_input,
            "game-input-3d": self.on_game_input,
            "chat-message": self.on_chat_message,
            "add-bot": self.on_add_bot,
            "remove-bot": self.on_remove_bot,
            "update-game-settings": self.on_update_game_settings,
        }

    # Connection lifecycle

    def connect(self, session_id: str, connection):
        self.connections.connect(session_id, connection)

    async def disconnect(self, session_id: str):
        """Leave path for a closed socket; lookups that miss are no-ops"""
        self.connections.disconnect(session_id)
        player = self.players.remove_by_session(session_id)
        if player:
            await self._remove_member(player)

    async def handle(self, session_id: str, event: str, data: Optional[Dict[str, Any]] = None):
        """Dispatch one client event, reporting failures to the sender"""
        handler = self.handlers.get(event)
        if not handler:
            await self._send_error(session_id, f"Unknown event: {event}")
            return

        self.players.touch_session(session_id)

        try:
            await handler(session_id, data or {})
        except PydanticValidationError as e:
            await self._send_error(session_id, _describe_validation_error(e))
        except GameError as e:
            logger.info(f"Event {event} from session {session_id} rejected: {e.message}")
            await self._send_error(session_id, e.message)
        except Exception:
            logger.exception(f"Event {event} from session {session_id} failed")
            await self._send_error(session_id, "Internal server error")

    # Event handlers

    async def on_create_room(self, session_id: str, data: Dict[str, Any]):
        event = CreateRoomEvent.model_validate(data)
        self._check_name(event.player_name)

        await self._leave_current_room(session_id)

        player_id = _generate_player_id()
        room_id, code = self.rooms.create(player_id, event.game_settings)
        color = self.players.allocate_color(room_id, event.player_color)
        player = self.players.upsert(player_id, session_id, event.player_name, color, room_id)
        self.connections.join_group(room_id, session_id)

        await self.connections.send(session_id, "room-joined", {
            "roomId": room_id,
            "playerId": player_id,
            "isHost": True,
            "gameSettings": event.game_settings.to_wire(),
        })
        await self.connections.send(session_id, "room-code", {"code": code})
        await self._broadcast_player_list(room_id)

        logger.info(f"Room {code} created by {player.name}")

    async def on_join_room(self, session_id: str, data: Dict[str, Any]):
        event = JoinRoomEvent.model_validate(data)
        self._check_name(event.player_name)

        if len(event.room_code) != ROOM_CODE_LENGTH:
            raise ValidationError(f"Room code must be {ROOM_CODE_LENGTH} characters")

        room = self.rooms.get_by_code(event.room_code)
        if not room or room.status != RoomStatus.WAITING or room.is_full:
            raise NotFoundError("Room not found or full")

        current = self.players.get_by_session(session_id)
        if current and current.room_id == room.id:
            raise ConflictError("Already in this room")

        if not self.players.is_name_available(room.id, event.player_name):
            raise ValidationError("Name already taken")

        await self._leave_current_room(session_id)

        player_id = _generate_player_id()
        room = self.rooms.join(player_id, event.room_code)
        if not room:
            raise NotFoundError("Room not found or full")

        color = self.players.allocate_color(room.id, event.player_color)
        player = self.players.upsert(player_id, session_id, event.player_name, color, room.id)
        self.connections.join_group(room.id, session_id)

        await self.connections.send(session_id, "room-joined", {
            "roomId": room.id,
            "playerId": player_id,
            "isHost": False,
            "gameSettings": room.settings.to_wire(),
        })
        await self._system_message(room.id, f"{player.name} joined the room")
        await self._broadcast_player_list(room.id)

    async def on_player_ready(self, session_id: str, data: Dict[str, Any]):
        event = PlayerReadyEvent.model_validate(data)
        player = self._require_player(session_id)
        room = self._require_room(player.room_id)

        if room.status == RoomStatus.PLAYING:
            raise ConflictError("Game already running")

        self.players.set_ready(player.id, event.ready)
        self.rooms.touch(room.id)
        await self._broadcast_player_list(room.id)

    async def on_start_game(self, session_id: str, data: Dict[str, Any]):
        player = self._require_player(session_id)
        room = self._require_room(player.room_id)
        self._require_host(player, room, "Only the host can start the game")

        if room.status == RoomStatus.PLAYING:
            raise ConflictError("Game already running")

        members = self._members_in_order(room)
        if not all(p.ready for p in members):
            raise ConflictError("Not all players are ready")
        if len(members) < 2:
            raise ConflictError("At least 2 players are required")

        state = self.engine.start(room.id, members, room.settings)
        self.rooms.update_status(room.id, RoomStatus.PLAYING)
        self.rosters[room.id] = {p.id: p.name for p in members}

        await self.connections.broadcast(room.id, "game-started", {
            "gameState": state.snapshot().to_wire(),
        })
        self._start_broadcast(room.id)

        logger.info(f"Game started in room {room.code}")

    async def on_restart_game(self, session_id: str, data: Dict[str, Any]):
        player = self._require_player(session_id)
        room = self._require_room(player.room_id)
        self._require_host(player, room, "Only the host can restart the game")

        self._stop_broadcast(room.id)
        self.engine.drop(room.id)
        self.rosters.pop(room.id, None)
        self.rooms.update_status(room.id, RoomStatus.WAITING)

        # Bots come back ready, humans have to confirm again
        for member in self.players.list_in_room(room.id):
            self.players.set_ready(member.id, member.is_bot)

        await self._broadcast_player_list(room.id)
        await self._system_message(
            room.id, "The game was restarted. All players need to get ready again."
        )

        logger.info(f"Game restarted in room {room.code}")

    async def on_game_input(self, session_id: str, data: Dict[str, Any]):
        event = PlayerInputEvent.model_validate(data)
        player = self._require_player(session_id)
        if not self.engine.set_heading(player.room_id, player.id, event.direction):
            logger.debug(f"Heading {event.direction} from {player.id} ignored")
            return
        self.rooms.touch(player.room_id)

    async def on_chat_message(self, session_id: str, data: Dict[str, Any]):
        event = ChatMessageEvent.model_validate(data)
        player = self._require_player(session_id)

        message = event.message.strip()
        if not message or len(message) > CHAT_MAX_LENGTH:
            raise ValidationError("Invalid message")

        self.rooms.touch(player.room_id)
        await self.connections.broadcast(player.room_id, "chat-message", {
            "playerId": player.id,
            "playerName": player.name,
            "message": message,
            "timestamp": now_ms(),
        })

    async def on_add_bot(self, session_id: str, data: Dict[str, Any]):
        event = AddBotEvent.model_validate(data)
        player = self._require_player(session_id)
        room = self._require_room(player.room_id)
        self._require_host(player, room, "Only the host can add bots")

        if room.status == RoomStatus.PLAYING:
            raise ConflictError("Bots cannot be added during a game")

        bot = self.lobby.add_bot(room.id, event.difficulty)
        public = self._public_player(room, bot.id)

        await self.connections.broadcast(room.id, "bot-added", {"bot": public})
        await self._system_message(room.id, f"Bot {bot.name} ({event.difficulty}) was added")
        await self._broadcast_player_list(room.id)

    async def on_remove_bot(self, session_id: str, data: Dict[str, Any]):
        event = RemoveBotEvent.model_validate(data)
        player = self._require_player(session_id)
        room = self._require_room(player.room_id)
        self._require_host(player, room, "Only the host can remove bots")

        if room.status == RoomStatus.PLAYING:
            raise ConflictError("Bots cannot be removed during a game")

        bot = self.players.get(event.bot_id)
        if not self.lobby.remove_bot(room.id, event.bot_id):
            raise NotFoundError("Bot not found")

        await self.connections.broadcast(room.id, "bot-removed", {"botId": event.bot_id})
        await self._system_message(room.id, f"Bot {bot.name} was removed")
        await self._broadcast_player_list(room.id)

    async def on_update_game_settings(self, session_id: str, data: Dict[str, Any]):
        event = UpdateGameSettingsEvent.model_validate(data)
        player = self._require_player(session_id)
        room = self._require_room(player.room_id)
        self._require_host(player, room, "Only the host can change the settings")

        if room.status == RoomStatus.PLAYING:
            raise ConflictError("Settings cannot be changed during a game")

        updated = GameSettings.model_validate({
            **room.settings.model_dump(),
            **event.game_settings.changes(),
        })

        if updated.max_players < len(room.members):
            raise ConflictError("More players in the room than the new maximum")

        self.rooms.update_settings(room.id, updated)
        await self.connections.broadcast(room.id, "game-settings-updated", {
            "gameSettings": updated.to_wire(),
        })

        logger.info(f"Game settings updated in room {room.code}")

    # Broadcast loop

    def _start_broadcast(self, room_id: str):
        self._stop_broadcast(room_id)
        self.broadcast_tasks[room_id] = asyncio.create_task(self._broadcast_loop(room_id))

    def _stop_broadcast(self, room_id: str):
        task = self.broadcast_tasks.pop(room_id, None)
        if task and task is not asyncio.current_task():
            task.cancel()

    async def _broadcast_loop(self, room_id: str):
        """Sample the simulation at a fixed rate until it finishes"""
        interval = 1.0 / self.broadcast_fps
        try:
            while True:
                state = self.engine.get_state(room_id)
                if not state:
                    break
                try:
                    await self.connections.broadcast(room_id, "game-state-update", {
                        "gameState": state.snapshot().to_wire(),
                        "timestamp": now_ms(),
                    })
                    if state.status == FINISHED:
                        await self._finish_game(room_id)
                        break
                except Exception:
                    logger.exception(f"State broadcast failed for room {room_id}")
                await asyncio.sleep(interval)
        finally:
            if self.broadcast_tasks.get(room_id) is asyncio.current_task():
                self.broadcast_tasks.pop(room_id, None)

    async def _finish_game(self, room_id: str):
        roster = self.rosters.pop(room_id, {})
        results = [
            result.model_copy(update={"player_name": roster.get(result.player_id, "Unknown")})
            for result in self.engine.get_results(room_id)
        ]
        duration = self.engine.get_duration(room_id)

        self.rooms.update_status(room_id, RoomStatus.FINISHED)
        await self.connections.broadcast(room_id, "game-ended", {
            "results": [r.to_wire() for r in results],
            "duration": duration,
        })
        await self._broadcast_player_list(room_id)

        logger.info(f"Game ended in room {room_id} after {duration} ms")

    # Leave path

    async def _leave_current_room(self, session_id: str):
        player = self.players.remove_by_session(session_id)
        if player:
            self.connections.leave_group(player.room_id, session_id)
            await self._remove_member(player)

    async def _remove_member(self, player: Player):
        room_id = player.room_id
        self.engine.eliminate(room_id, player.id)

        result = self.rooms.leave(player.id)
        if not result:
            return

        if result.was_last_member:
            self._teardown(room_id)
            return

        if self.lobby.count_real_players(room_id) == 0:
            self.lobby.remove_all_bots_in_room(room_id)
            self._teardown(room_id)
            return

        await self._system_message(room_id, f"{player.name} left the room")
        await self._broadcast_player_list(room_id)

    def _teardown(self, room_id: str):
        """Drop everything still attached to a room"""
        self._stop_broadcast(room_id)
        self.engine.drop(room_id)
        self.rosters.pop(room_id, None)
        for bot in self.players.bots_in_room(room_id):
            self.lobby.remove_bot(room_id, bot.id)
        self.rooms.delete(room_id)
        self.connections.drop_group(room_id)
        logger.info(f"Room {room_id} torn down")

    # Periodic sweeps

    async def sweep_inactive_rooms(self, max_idle: Optional[timedelta] = None) -> int:
        max_idle = max_idle or timedelta(minutes=settings.ROOM_IDLE_TIMEOUT_MINUTES)
        expired = self.rooms.expire_inactive(max_idle)
        for room in expired:
            await self.connections.broadcast(room.id, "error", {"message": "Room closed due to inactivity"})
            for member_id in room.members:
                self.players.remove(member_id)
                self.bot_ai.forget(member_id)
            self._teardown(room.id)
        if expired:
            logger.info(f"Cleaned up {len(expired)} inactive rooms")
        return len(expired)

    async def sweep_inactive_sessions(self, max_idle: Optional[timedelta] = None) -> int:
        max_idle = max_idle or timedelta(minutes=settings.SESSION_IDLE_TIMEOUT_MINUTES)
        removed = self.players.expire_inactive_sessions(max_idle)
        for player in removed:
            if player.session_id:
                self.connections.leave_group(player.room_id, player.session_id)
            await self._remove_member(player)
        if removed:
            logger.info(f"Cleaned up {len(removed)} inactive sessions")
        return len(removed)

    async def shutdown(self):
        for room_id in list(self.broadcast_tasks):
            self._stop_broadcast(room_id)
        self.engine.shutdown()

    # Helpers

    def _require_player(self, session_id: str) -> Player:
        player = self.players.get_by_session(session_id)
        if not player:
            raise NotFoundError("Player not found")
        return player

    def _require_room(self, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if not room:
            raise NotFoundError("Room not found")
        return room

    def _require_host(self, player: Player, room: Room, message: str):
        if room.host_id != player.id:
            raise AuthorizationError(message)

    def _check_name(self, name: str):
        validation = self.players.validate_name(name)
        if not validation.valid:
            raise ValidationError(validation.error)

    def _members_in_order(self, room: Room) -> List[Player]:
        members = []
        for member_id in room.members:
            player = self.players.get(member_id)
            if player:
                members.append(player)
        return members

    def _public_player(self, room: Room, player_id: str) -> Dict[str, Any]:
        for public in self.players.format_for_broadcast(room.id, room.host_id):
            if public.id == player_id:
                return public.to_wire()
        return {}

    async def _broadcast_player_list(self, room_id: str):
        room = self.rooms.get(room_id)
        if not room:
            return
        players = self.players.format_for_broadcast(room_id, room.host_id, self.engine.get_state(room_id))
        await self.connections.broadcast(room_id, "player-list-update", {
            "players": [p.to_wire() for p in players],
        })

    async def _system_message(self, room_id: str, message: str):
        await self.connections.broadcast(room_id, "chat-message", {
            "playerId": SYSTEM_SENDER,
            "playerName": "System",
            "message": message,
            "timestamp": now_ms(),
        })

    async def _send_error(self, session_id: str, message: str):
        await self.connections.send(session_id, "error", {"message": message})

    def get_debug_info(self) -> dict:
        return {
            "rooms": self.rooms.get_debug_info(),
            "players": self.players.get_debug_info(),
            "games": self.engine.get_debug_info(),
            "bots": self.bot_ai.get_debug_info(),
            "broadcast_loops": len(self.broadcast_tasks),
        }


def _generate_player_id() -> str:
    return secrets.token_hex(8)


def _describe_validation_error(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"Invalid {location}: {first.get('msg')}"
    return f"Invalid payload: {first.get('msg')}"
