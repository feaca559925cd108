"""
Room registry: room existence, codes, membership, host election and expiry
"""
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from app.core.exceptions import ConflictError
from app.schemas.multiplayer import GameSettings, RoomInfo
from app.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

# No 0/O, 1/I/L: codes are read aloud and typed by hand
ROOM_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 6


class RoomStatus(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


@dataclass
class Room:
    """A lobby plus whatever game is running in it"""
    id: str
    code: str
    host_id: str
    members: List[str]
    settings: GameSettings
    status: RoomStatus = RoomStatus.WAITING
    created_at: datetime = field(default_factory=utc_now)
    last_activity: datetime = field(default_factory=utc_now)
    # Members that may never become host (bots)
    no_host: Set[str] = field(default_factory=set)

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.settings.max_players

    def info(self) -> RoomInfo:
        return RoomInfo(
            room_id=self.id,
            player_count=len(self.members),
            max_players=self.settings.max_players,
            game_status=self.status.value,
            game_settings=self.settings,
        )


@dataclass
class LeaveResult:
    """Outcome of a member leaving"""
    room_id: str
    was_last_member: bool
    host_id: Optional[str] = None
    host_changed: bool = False


class RoomRegistry:
    """In-memory room table keyed by room id, with code and member indexes"""

    def __init__(self):
        self.rooms: Dict[str, Room] = {}
        self.room_codes: Dict[str, str] = {}  # code -> room id
        self.player_rooms: Dict[str, str] = {}  # member id -> room id

    def _generate_room_id(self) -> str:
        return secrets.token_hex(16)

    def _generate_room_code(self) -> str:
        """Generate a room code not used by any live room"""
        while True:
            code = "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))
            if code not in self.room_codes:
                return code

    def create(self, host_id: str, settings: GameSettings) -> Tuple[str, str]:
        """Create a room with ``host_id`` as its only member"""
        room_id = self._generate_room_id()
        code = self._generate_room_code()

        room = Room(id=room_id, code=code, host_id=host_id, members=[host_id], settings=settings)
        self.rooms[room_id] = room
        self.room_codes[code] = room_id
        self.player_rooms[host_id] = room_id

        logger.info(f"Room {code} ({room_id}) created by {host_id}")
        return room_id, code

    def join(self, player_id: str, code: str) -> Optional[Room]:
        """Join by code. None when unknown, full or not waiting."""
        room_id = self.room_codes.get(code.upper())
        room = self.rooms.get(room_id) if room_id else None
        if not room:
            logger.info(f"Room code not found: {code}")
            return None

        if player_id in room.members:
            return room

        if room.status != RoomStatus.WAITING:
            logger.info(f"Room {room.code} is not waiting ({room.status.value})")
            return None

        if room.is_full:
            logger.info(f"Room {room.code} is full")
            return None

        room.members.append(player_id)
        room.last_activity = utc_now()
        self.player_rooms[player_id] = room.id

        logger.info(f"Player {player_id} joined room {room.code}")
        return room

    def add_member(self, room_id: str, member_id: str, can_host: bool = True) -> bool:
        """Add a member directly (bots). Same capacity and status rules as join."""
        room = self.rooms.get(room_id)
        if not room or room.status == RoomStatus.PLAYING or room.is_full:
            return False
        if member_id not in room.members:
            room.members.append(member_id)
        if not can_host:
            room.no_host.add(member_id)
        room.last_activity = utc_now()
        self.player_rooms[member_id] = room_id
        return True

    def leave(self, player_id: str) -> Optional[LeaveResult]:
        """Remove a member, deleting the room if it empties"""
        room_id = self.player_rooms.pop(player_id, None)
        if not room_id:
            return None

        room = self.rooms.get(room_id)
        if not room:
            return None

        if player_id in room.members:
            room.members.remove(player_id)
        room.no_host.discard(player_id)
        room.last_activity = utc_now()

        logger.info(f"Player {player_id} left room {room.code}")

        if not room.members:
            self._delete(room)
            logger.info(f"Empty room {room.code} deleted")
            return LeaveResult(room_id=room_id, was_last_member=True)

        host_changed = False
        if room.host_id == player_id:
            room.host_id = self._elect_host(room)
            host_changed = True
            logger.info(f"New host for room {room.code}: {room.host_id}")

        return LeaveResult(
            room_id=room_id,
            was_last_member=False,
            host_id=room.host_id,
            host_changed=host_changed,
        )

    def _elect_host(self, room: Room) -> str:
        for member_id in room.members:
            if member_id not in room.no_host:
                return member_id
        return room.members[0]

    def _delete(self, room: Room):
        for member_id in room.members:
            self.player_rooms.pop(member_id, None)
        self.rooms.pop(room.id, None)
        self.room_codes.pop(room.code, None)

    def delete(self, room_id: str) -> Optional[Room]:
        """Drop a room and every member binding"""
        room = self.rooms.get(room_id)
        if room:
            self._delete(room)
            logger.info(f"Room {room.code} deleted")
        return room

    def get(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id)

    def get_by_code(self, code: str) -> Optional[Room]:
        room_id = self.room_codes.get(code.upper())
        return self.rooms.get(room_id) if room_id else None

    def get_info(self, room_id: str) -> Optional[RoomInfo]:
        room = self.rooms.get(room_id)
        return room.info() if room else None

    def list_joinable(self) -> List[RoomInfo]:
        """Waiting rooms with at least one free slot"""
        return [
            room.info()
            for room in self.rooms.values()
            if room.status == RoomStatus.WAITING and not room.is_full
        ]

    def update_status(self, room_id: str, status: RoomStatus):
        room = self.rooms.get(room_id)
        if room:
            room.status = status
            room.last_activity = utc_now()
            logger.info(f"Room {room.code} status: {status.value}")

    def update_settings(self, room_id: str, settings: GameSettings) -> Optional[Room]:
        room = self.rooms.get(room_id)
        if not room:
            return None
        if room.status == RoomStatus.PLAYING:
            raise ConflictError("Settings cannot be changed while a game is running")
        room.settings = settings
        room.last_activity = utc_now()
        logger.info(f"Room {room.code} settings updated")
        return room

    def touch(self, room_id: str):
        room = self.rooms.get(room_id)
        if room:
            room.last_activity = utc_now()

    def room_of(self, player_id: str) -> Optional[str]:
        return self.player_rooms.get(player_id)

    def is_host(self, player_id: str, room_id: str) -> bool:
        room = self.rooms.get(room_id)
        return bool(room and room.host_id == player_id)

    def members(self, room_id: str) -> List[str]:
        room = self.rooms.get(room_id)
        return list(room.members) if room else []

    def expire_inactive(self, max_idle: timedelta, now: Optional[datetime] = None) -> List[Room]:
        """Remove rooms untouched for longer than ``max_idle``"""
        now = now or utc_now()
        expired = [room for room in self.rooms.values() if now - room.last_activity > max_idle]
        for room in expired:
            self._delete(room)
            logger.info(f"Inactive room {room.code} cleaned up")
        return expired

    def get_debug_info(self) -> dict:
        return {
            "total_rooms": len(self.rooms),
            "total_members": len(self.player_rooms),
            "rooms": [
                {
                    "code": room.code,
                    "members": len(room.members),
                    "status": room.status.value,
                    "last_activity": room.last_activity.isoformat(),
                }
                for room in self.rooms.values()
            ],
        }
