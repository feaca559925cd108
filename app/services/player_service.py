"""
Player registry: identities, session bindings, readiness, names and colors
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, NamedTuple, Optional, TYPE_CHECKING

from app.schemas.multiplayer import PublicPlayer
from app.utils.time_utils import utc_now

if TYPE_CHECKING:
    from app.services.game_engine import SimulationState

logger = logging.getLogger(__name__)

# Player colors
PLAYER_COLORS = [
    "#4ecdc4",  # Turquoise
    "#ff6b6b",  # Red
    "#ffd93d",  # Yellow
    "#6bcf7f",  # Green
]

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 20
NAME_PATTERN = re.compile(r"^[A-Za-z0-9 ]+$")


class NameValidation(NamedTuple):
    valid: bool
    error: Optional[str] = None


@dataclass
class Player:
    """A room occupant; bots carry ``is_bot`` and a difficulty"""
    id: str
    name: str
    color: str
    room_id: str
    session_id: Optional[str] = None
    ready: bool = False
    joined_at: datetime = field(default_factory=utc_now)
    is_bot: bool = False
    difficulty: Optional[str] = None


@dataclass
class Session:
    """Network session bound to a player"""
    session_id: str
    player_id: str
    room_id: str
    connected_at: datetime = field(default_factory=utc_now)
    last_seen: datetime = field(default_factory=utc_now)


class PlayerRegistry:
    """In-memory player table plus session -> player index"""

    def __init__(self):
        self.players: Dict[str, Player] = {}
        self.sessions: Dict[str, Session] = {}

    def upsert(
        self,
        player_id: str,
        session_id: str,
        name: str,
        color: str,
        room_id: str,
    ) -> Player:
        """Create a player or re-bind an existing one to a new session.

        Re-binding keeps the ready flag and the original join time so a
        reconnecting client resumes where it left off.
        """
        existing = self.players.get(player_id)
        if existing and existing.session_id and existing.session_id != session_id:
            self.sessions.pop(existing.session_id, None)

        if existing:
            existing.name = name.strip()
            existing.color = color
            existing.room_id = room_id
            existing.session_id = session_id
            player = existing
        else:
            player = Player(
                id=player_id,
                name=name.strip(),
                color=color,
                room_id=room_id,
                session_id=session_id,
            )
            self.players[player_id] = player

        self.sessions[session_id] = Session(session_id=session_id, player_id=player_id, room_id=room_id)

        logger.info(f"Player {player.name} ({player_id}) bound to session {session_id}")
        return player

    def add_bot(self, bot_id: str, name: str, color: str, room_id: str, difficulty: str) -> Player:
        bot = Player(
            id=bot_id,
            name=name,
            color=color,
            room_id=room_id,
            ready=True,
            is_bot=True,
            difficulty=difficulty,
        )
        self.players[bot_id] = bot
        return bot

    def get(self, player_id: str) -> Optional[Player]:
        return self.players.get(player_id)

    def get_by_session(self, session_id: str) -> Optional[Player]:
        session = self.sessions.get(session_id)
        if not session:
            return None
        return self.players.get(session.player_id)

    def set_ready(self, player_id: str, ready: bool) -> Optional[Player]:
        player = self.players.get(player_id)
        if not player:
            return None
        player.ready = ready
        logger.info(f"Player {player.name} ready: {ready}")
        return player

    def remove(self, player_id: str) -> Optional[Player]:
        player = self.players.pop(player_id, None)
        if not player:
            return None
        if player.session_id:
            self.sessions.pop(player.session_id, None)
        logger.info(f"Player {player.name} ({player_id}) removed")
        return player

    def remove_by_session(self, session_id: str) -> Optional[Player]:
        session = self.sessions.get(session_id)
        if not session:
            return None
        return self.remove(session.player_id)

    def list_in_room(self, room_id: str) -> List[Player]:
        return [p for p in self.players.values() if p.room_id == room_id]

    def bots_in_room(self, room_id: str) -> List[Player]:
        return [p for p in self.list_in_room(room_id) if p.is_bot]

    def real_players_in_room(self, room_id: str) -> List[Player]:
        return [p for p in self.list_in_room(room_id) if not p.is_bot]

    def format_for_broadcast(
        self,
        room_id: str,
        host_id: str,
        sim_state: Optional["SimulationState"] = None,
    ) -> List[PublicPlayer]:
        """Public player list; score and alive come from a running game if any"""
        sim_players = {p.id: p for p in sim_state.players} if sim_state else {}
        formatted = []
        for player in self.list_in_room(room_id):
            sim = sim_players.get(player.id)
            formatted.append(PublicPlayer(
                id=player.id,
                name=player.name,
                color=player.color,
                ready=player.ready,
                is_host=player.id == host_id,
                score=sim.score if sim else 0,
                alive=sim.alive if sim else True,
                is_bot=player.is_bot,
            ))
        return formatted

    def allocate_color(
        self,
        room_id: str,
        preferred: Optional[str] = None,
        exclude_player_id: Optional[str] = None,
    ) -> str:
        """Pick a palette color unused in the room.

        ``preferred`` wins when it is a palette color nobody in the room has.
        Falls back to the first palette entry once the palette is exhausted.
        """
        used = {
            p.color for p in self.list_in_room(room_id)
            if p.id != exclude_player_id
        }
        if preferred:
            preferred = preferred.lower()
            if preferred in PLAYER_COLORS and preferred not in used:
                return preferred
        for color in PLAYER_COLORS:
            if color not in used:
                return color
        return PLAYER_COLORS[0]

    def is_name_available(self, room_id: str, name: str, exclude_player_id: Optional[str] = None) -> bool:
        wanted = name.strip().lower()
        return not any(
            p.name.lower() == wanted
            for p in self.list_in_room(room_id)
            if p.id != exclude_player_id
        )

    @staticmethod
    def validate_name(name: Optional[str]) -> NameValidation:
        trimmed = (name or "").strip()
        if not trimmed:
            return NameValidation(False, "Name must not be empty")
        if len(trimmed) < NAME_MIN_LENGTH:
            return NameValidation(False, f"Name must be at least {NAME_MIN_LENGTH} characters long")
        if len(trimmed) > NAME_MAX_LENGTH:
            return NameValidation(False, f"Name must be at most {NAME_MAX_LENGTH} characters long")
        if not NAME_PATTERN.match(trimmed):
            return NameValidation(False, "Name may only contain letters, digits and spaces")
        return NameValidation(True)

    def touch_session(self, session_id: str):
        session = self.sessions.get(session_id)
        if session:
            session.last_seen = utc_now()

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def expire_inactive_sessions(self, max_idle: timedelta, now: Optional[datetime] = None) -> List[Player]:
        """Remove players whose session has not been seen for ``max_idle``"""
        now = now or utc_now()
        stale = [s for s in self.sessions.values() if now - s.last_seen > max_idle]
        removed = []
        for session in stale:
            player = self.remove_by_session(session.session_id)
            if player:
                removed.append(player)
            logger.info(f"Inactive session {session.session_id} cleaned up")
        return removed

    def get_debug_info(self) -> dict:
        return {
            "total_players": len(self.players),
            "total_sessions": len(self.sessions),
            "bots": sum(1 for p in self.players.values() if p.is_bot),
        }
