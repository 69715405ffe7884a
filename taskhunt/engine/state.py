"""
Game and player state representation.
Lifecycle state is a closed enum with an explicit transition table; documents are plain
dataclasses with dict serialization for the JSON columns of the store.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class GameState(str, Enum):
    NOT_READY = "not-ready"
    READY = "ready"
    RUNNING = "running"
    ENDED = "ended"


class Role(str, Enum):
    HOST = "host"
    ADMIN = "admin"
    PLAYER = "player"


# Restart does not appear here: it creates a new game rather than moving this one
ALLOWED_TRANSITIONS: dict[GameState, frozenset[GameState]] = {
    GameState.NOT_READY: frozenset({GameState.READY}),
    GameState.READY: frozenset({GameState.RUNNING}),
    GameState.RUNNING: frozenset({GameState.ENDED}),
    GameState.ENDED: frozenset(),
}

DELETABLE_STATES = frozenset({GameState.NOT_READY, GameState.READY, GameState.ENDED})


def can_transition(current: GameState, target: GameState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def initial_state(min_players: int) -> GameState:
    """A game needing no players is ready as soon as it exists."""
    return GameState.READY if min_players == 0 else GameState.NOT_READY


def new_id() -> str:
    return str(uuid.uuid4())


def _int(v: Any, default: int = 0) -> int:
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default


@dataclass
class GameSettings:
    name: str
    duration: int = 0  # seconds, 0 = untimed
    start_time: int = 0  # epoch ms, 0 = unset
    end_time: int = 0  # epoch ms, 0 = unset
    ordered: bool = False
    min_players: int = 0
    max_players: int = 0
    join_mid_game: bool = False
    num_required_tasks: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "duration": self.duration,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "ordered": self.ordered,
            "min_players": self.min_players,
            "max_players": self.max_players,
            "join_mid_game": self.join_mid_game,
            "num_required_tasks": self.num_required_tasks,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GameSettings":
        return cls(
            name=str(data.get("name") or ""),
            duration=_int(data.get("duration")),
            start_time=_int(data.get("start_time")),
            end_time=_int(data.get("end_time")),
            ordered=bool(data.get("ordered", False)),
            min_players=_int(data.get("min_players")),
            max_players=_int(data.get("max_players")),
            join_mid_game=bool(data.get("join_mid_game", False)),
            num_required_tasks=_int(data.get("num_required_tasks")),
        )


@dataclass
class Task:
    """A task record embedded in a game. Scoring semantics live elsewhere."""
    name: str
    description: str = ""
    points: int = 0
    type: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "points": self.points,
            "type": self.type,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        extra = data.get("extra")
        return cls(
            id=data.get("id"),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            points=_int(data.get("points")),
            type=str(data.get("type") or ""),
            extra=dict(extra) if isinstance(extra, dict) else {},
        )


@dataclass
class Game:
    id: str
    settings: GameSettings
    tasks: list[Task]
    state: GameState
    host: str
    admins: list[str] = field(default_factory=list)
    players: list[str] = field(default_factory=list)
    stop_schedule_handle: str | None = None

    def membership(self, username: str) -> str | None:
        """Which roster the username belongs to, if any."""
        if username == self.host:
            return Role.HOST.value
        if username in self.admins:
            return Role.ADMIN.value
        if username in self.players:
            return Role.PLAYER.value
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "settings": self.settings.to_dict(),
            "tasks": [t.to_dict() for t in self.tasks],
            "state": self.state.value,
            "host": self.host,
            "admins": list(self.admins),
            "players": list(self.players),
            "stop_schedule_handle": self.stop_schedule_handle,
        }


@dataclass
class PublicGame:
    """The projection of a game anyone may read."""
    settings: GameSettings
    num_tasks: int
    state: GameState
    host: str
    admins: list[str]
    players: list[str]

    @classmethod
    def from_game(cls, game: Game) -> "PublicGame":
        return cls(
            settings=game.settings,
            num_tasks=len(game.tasks),
            state=game.state,
            host=game.host,
            admins=list(game.admins),
            players=list(game.players),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "settings": self.settings.to_dict(),
            "num_tasks": self.num_tasks,
            "state": self.state.value,
            "host": self.host,
            "admins": list(self.admins),
            "players": list(self.players),
        }


@dataclass
class Player:
    id: str
    game_id: str
    username: str
    points: int = 0
    tasks_submitted: list[str] = field(default_factory=list)
    done: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "game_id": self.game_id,
            "username": self.username,
            "points": self.points,
            "tasks_submitted": list(self.tasks_submitted),
            "done": self.done,
        }


@dataclass
class AccessCredentials:
    access_token: str
    refresh_token: str

    def to_dict(self) -> dict[str, str]:
        return {"access_token": self.access_token, "refresh_token": self.refresh_token}


@dataclass
class CreateGameConfirmation:
    creds: AccessCredentials
    game_id: str
    task_ids: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"creds": self.creds.to_dict(), "game_id": self.game_id, "task_ids": list(self.task_ids)}


@dataclass
class UpdateGameStateConfirmation:
    start_time: int
    end_time: int

    def to_dict(self) -> dict[str, int]:
        return {"start_time": self.start_time, "end_time": self.end_time}
