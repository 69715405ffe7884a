"""
Game and player stores over a SQLAlchemy session.
Each store works inside whatever transaction the caller holds; conditional updates
report the number of rows they touched so callers can detect lost races.
"""

import json
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from taskhunt.engine.state import Game, GameSettings, GameState, Player, Task

from .models import GameRow, PlayerRow

# Columns stored as JSON text; values for these are serialized on write
_JSON_COLUMNS = {"settings", "tasks", "admins", "players"}


def _dump(column: str, value: Any) -> Any:
    if column == "settings" and isinstance(value, GameSettings):
        return json.dumps(value.to_dict())
    if column == "tasks":
        return json.dumps([t.to_dict() if isinstance(t, Task) else t for t in value])
    if column in _JSON_COLUMNS:
        return json.dumps(value)
    if column == "state" and isinstance(value, GameState):
        return value.value
    return value


def _load_list(raw: str | None) -> list:
    try:
        value = json.loads(raw) if raw else []
    except (TypeError, json.JSONDecodeError):
        return []
    return value if isinstance(value, list) else []


def row_to_game(row: GameRow) -> Game:
    settings_raw = json.loads(row.settings) if row.settings else {}
    return Game(
        id=row.id,
        settings=GameSettings.from_dict(settings_raw if isinstance(settings_raw, dict) else {}),
        tasks=[Task.from_dict(t) for t in _load_list(row.tasks) if isinstance(t, dict)],
        state=GameState(row.state),
        host=row.host,
        admins=[str(u) for u in _load_list(row.admins)],
        players=[str(u) for u in _load_list(row.players)],
        stop_schedule_handle=row.stop_schedule_handle,
    )


def row_to_player(row: PlayerRow) -> Player:
    return Player(
        id=row.id,
        game_id=row.game_id,
        username=row.username,
        points=row.points or 0,
        tasks_submitted=[str(s) for s in _load_list(row.tasks_submitted)],
        done=bool(row.done),
    )


class GameStore:
    def __init__(self, session: Session):
        self.session = session

    def count(self) -> int:
        return self.session.scalar(select(func.count()).select_from(GameRow)) or 0

    def find(self, game_id: str, lock: bool = False) -> Game | None:
        """Fetch a game by id. lock=True takes a row lock on backends that support it."""
        stmt = select(GameRow).where(GameRow.id == game_id)
        if lock:
            stmt = stmt.with_for_update()
        row = self.session.scalars(stmt).first()
        return row_to_game(row) if row else None

    def find_all(self) -> list[Game]:
        rows = self.session.scalars(select(GameRow).order_by(GameRow.created_at)).all()
        return [row_to_game(r) for r in rows]

    def insert(self, game: Game) -> str:
        row = GameRow(
            id=game.id,
            state=game.state.value,
            host=game.host,
            settings=_dump("settings", game.settings),
            tasks=_dump("tasks", game.tasks),
            admins=_dump("admins", game.admins),
            players=_dump("players", game.players),
            stop_schedule_handle=game.stop_schedule_handle,
        )
        self.session.add(row)
        self.session.flush()
        return row.id

    def update(self, game_id: str, values: dict[str, Any], expect: dict[str, Any] | None = None) -> int:
        """
        Set columns on one game and return the number of rows modified.
        expect adds equality conditions (e.g. {"state": GameState.READY}); a row whose
        current values differ is left alone and the count comes back 0.
        """
        stmt = update(GameRow).where(GameRow.id == game_id)
        for column, value in (expect or {}).items():
            stmt = stmt.where(getattr(GameRow, column) == _dump(column, value))
        stmt = stmt.values({column: _dump(column, value) for column, value in values.items()})
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    def delete(self, game_id: str) -> int:
        result = self.session.execute(delete(GameRow).where(GameRow.id == game_id))
        return result.rowcount


class PlayerStore:
    def __init__(self, session: Session):
        self.session = session

    def insert(self, player: Player) -> str:
        row = PlayerRow(
            id=player.id,
            game_id=player.game_id,
            username=player.username,
            points=player.points,
            tasks_submitted=json.dumps(player.tasks_submitted),
            done=player.done,
        )
        self.session.add(row)
        self.session.flush()
        return row.id

    def find_by_game(self, game_id: str) -> list[Player]:
        rows = self.session.scalars(select(PlayerRow).where(PlayerRow.game_id == game_id)).all()
        return [row_to_player(r) for r in rows]

    def delete_many(self, game_id: str) -> int:
        result = self.session.execute(delete(PlayerRow).where(PlayerRow.game_id == game_id))
        return result.rowcount
