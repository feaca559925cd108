"""
Multiplayer game schemas

Wire payloads use camelCase field names; the models accept either spelling on
input and are dumped with ``by_alias=True``.
"""
from typing import Optional, List, Literal, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


BoardSizeName = Literal["small", "medium", "large"]
GameMode = Literal["classic", "battle-royale"]
BotDifficulty = Literal["easy", "medium", "hard"]
RoomStatusName = Literal["waiting", "playing", "finished"]


class CamelModel(BaseModel):
    """Base model serialising to camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class GameSettings(CamelModel):
    """Room configuration chosen by the host"""
    max_players: int = Field(default=4, ge=2, le=4)
    game_speed: int = Field(default=3, ge=1, le=5)
    board_size: BoardSizeName = "medium"
    game_mode: GameMode = "classic"
    is_3d: bool = Field(default=False, alias="is3D")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class GameSettingsUpdate(CamelModel):
    """Partial settings change; only the fields sent are applied"""
    max_players: Optional[int] = Field(default=None, ge=2, le=4)
    game_speed: Optional[int] = Field(default=None, ge=1, le=5)
    board_size: Optional[BoardSizeName] = None
    game_mode: Optional[GameMode] = None
    is_3d: Optional[bool] = Field(default=None, alias="is3D")

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class Position(BaseModel):
    """Grid cell; ``z`` only present on 3D boards"""
    x: int
    y: int
    z: Optional[int] = None

    @classmethod
    def from_tuple(cls, cell: tuple) -> "Position":
        if len(cell) == 3:
            return cls(x=cell[0], y=cell[1], z=cell[2])
        return cls(x=cell[0], y=cell[1])


class PlayerGameState(CamelModel):
    """A snake as seen by clients"""
    id: str
    snake: List[Position]
    direction: str
    score: int = 0
    alive: bool = True


class GameStateSnapshot(CamelModel):
    """Full simulation snapshot pushed to clients"""
    players: List[PlayerGameState]
    food: List[Position]
    game_status: Literal["playing", "finished"]


class GameResult(CamelModel):
    """One line of the final ranking"""
    player_id: str
    player_name: str = ""
    score: int
    rank: int
    survival_time: int


class PublicPlayer(CamelModel):
    """Player list entry; never carries the session handle"""
    id: str
    name: str
    color: str
    ready: bool
    is_host: bool
    score: int = 0
    alive: bool = True
    is_bot: bool = False


class RoomInfo(CamelModel):
    """REST view of a room"""
    room_id: str
    player_count: int
    max_players: int
    game_status: RoomStatusName
    game_settings: GameSettings


class ActiveRoomsResponse(CamelModel):
    """Joinable rooms listing"""
    rooms: List[RoomInfo]
    total_rooms: int


# Client -> server payloads

class CreateRoomEvent(CamelModel):
    player_name: str
    player_color: Optional[str] = None
    game_settings: GameSettings = Field(default_factory=GameSettings)


class JoinRoomEvent(CamelModel):
    room_code: str
    player_name: str
    player_color: Optional[str] = None

    @field_validator("room_code")
    @classmethod
    def normalise_code(cls, value: str) -> str:
        return value.strip().upper()


class PlayerReadyEvent(CamelModel):
    ready: bool


class PlayerInputEvent(CamelModel):
    direction: str
    timestamp: Optional[int] = None


class ChatMessageEvent(CamelModel):
    message: str
    timestamp: Optional[int] = None


class AddBotEvent(CamelModel):
    difficulty: BotDifficulty = "medium"


class RemoveBotEvent(CamelModel):
    bot_id: str


class UpdateGameSettingsEvent(CamelModel):
    game_settings: GameSettingsUpdate


class WebSocketMessage(BaseModel):
    """WebSocket frame format, both directions"""
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
