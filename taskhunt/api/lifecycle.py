"""
Game lifecycle coordinator.
Create, join, leave, start, stop, restart and delete games. Every operation re-reads the
game inside its own transaction before deciding on a transition; nothing is cached between
calls. Timed games register a one-shot schedule that later re-enters stop_game.
"""

import logging
import time
from dataclasses import replace
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy.orm import sessionmaker

from taskhunt.config import SCHEDULED_STOP_MISFIRE_SECONDS, SCHEDULED_STOP_TOKEN_MARGIN_SECONDS, LifecycleConfig
from taskhunt.engine.errors import (
    AdminCapacityReached,
    AlreadyMember,
    Forbidden,
    GameNotFound,
    InvalidAdminCode,
    InvalidState,
    MissingSchedulerConfig,
    PersistenceError,
    PlayerCapacityReached,
    ScheduleNotFound,
    SchedulerError,
    TooManyGames,
)
from taskhunt.engine.scheduler import SchedulerGateway, end_game_schedule_name, to_schedule_time
from taskhunt.engine.state import (
    ALLOWED_TRANSITIONS,
    DELETABLE_STATES,
    AccessCredentials,
    CreateGameConfirmation,
    Game,
    GameSettings,
    GameState,
    Player,
    PublicGame,
    Role,
    Task,
    UpdateGameStateConfirmation,
    can_transition,
    initial_state,
    new_id,
)

from .auth import Identity, decode_identity, sign_access_token, upgrade_credentials, verify_token
from .database import transaction
from .store import GameStore, PlayerStore

logger = logging.getLogger(__name__)

HOST_OR_ADMIN = (Role.HOST, Role.ADMIN)
PLAYER_OR_ADMIN = (Role.PLAYER, Role.ADMIN)

# Marker the scheduler payload carries so the re-entry skips schedule cleanup
SCHEDULER_SOURCE = "scheduler"

# Scheduled stops may fire late; their token must outlive the latest allowed fire time
SCHEDULED_TOKEN_GRACE = timedelta(seconds=SCHEDULED_STOP_MISFIRE_SECONDS + SCHEDULED_STOP_TOKEN_MARGIN_SECONDS)


def now_ms() -> int:
    return int(time.time() * 1000)


def _require_transition(game: Game, target: GameState) -> None:
    if not can_transition(game.state, target):
        required = [s.value for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]
        raise InvalidState("Invalid game state", game.state.value, required)


def _expect_one(count: int, message: str) -> None:
    if count != 1:
        raise PersistenceError(message, expected=1, actual=count)


def _load(games: GameStore, game_id: str, lock: bool = False) -> Game:
    game = games.find(game_id, lock=lock)
    if game is None:
        raise GameNotFound(game_id)
    return game


class LifecycleCoordinator:
    def __init__(
        self,
        session_factory: sessionmaker,
        config: LifecycleConfig,
        scheduler: SchedulerGateway | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.session_factory = session_factory
        self.config = config
        self.scheduler = scheduler
        self.clock = clock

    # ----- Create -----

    def create_game(self, token: str | None, settings: GameSettings, tasks: list[Task]) -> CreateGameConfirmation:
        """Create a game hosted by the token's user. Returns host credentials, the game id and task ids."""
        identity = decode_identity(token, self.config.access_token_key)

        tasks = [replace(t, id=new_id()) for t in tasks]
        end_time = settings.start_time + settings.duration if settings.duration > 0 else 0
        settings = replace(settings, end_time=end_time)
        game = Game(
            id=new_id(),
            settings=settings,
            tasks=tasks,
            state=initial_state(settings.min_players),
            host=identity.username,
        )

        with transaction(self.session_factory) as session:
            games = GameStore(session)
            if games.count() >= self.config.max_games:
                raise TooManyGames(self.config.max_games)
            inserted = games.insert(game)
            if inserted != game.id:
                raise PersistenceError("Create operation unsuccessful")

        logger.info(f"[create] game={game.id} host={game.host} state={game.state.value} tasks={len(tasks)}")
        creds = upgrade_credentials(identity, game.id, Role.HOST, self.config)
        return CreateGameConfirmation(creds=creds, game_id=game.id, task_ids=[t.id for t in tasks])

    # ----- Membership -----

    def join_game(self, token: str | None, game_id: str, role: Role | str, admin_code: str | None = None) -> AccessCredentials:
        """Join as player or admin. Admins must present one of the configured admin codes."""
        try:
            role = Role(role)
        except ValueError:
            raise Forbidden("Unknown role", {"role": role}) from None
        if role == Role.HOST:
            raise Forbidden("Cannot join a game as host", {"role": role.value})
        if role == Role.ADMIN and (not admin_code or admin_code not in self.config.admin_codes):
            raise InvalidAdminCode()

        identity = decode_identity(token, self.config.access_token_key)
        username = identity.username

        with transaction(self.session_factory) as session:
            games = GameStore(session)
            game = _load(games, game_id, lock=True)

            membership = game.membership(username)
            if membership is not None:
                raise AlreadyMember(username, membership)
            if role == Role.PLAYER and len(game.players) >= game.settings.max_players:
                raise PlayerCapacityReached(game.settings.max_players)
            if role == Role.ADMIN and len(game.admins) >= self.config.max_admins:
                raise AdminCapacityReached(self.config.max_admins)
            if role == Role.PLAYER and game.state == GameState.ENDED:
                raise InvalidState("This game has already ended; unable to join", game.state.value)

            values: dict[str, Any] = {}
            if role == Role.ADMIN:
                expect = {"state": game.state, "admins": game.admins}
                values["admins"] = game.admins + [username]
            else:
                expect = {"state": game.state, "players": game.players}
                PlayerStore(session).insert(Player(
                    id=new_id(),
                    game_id=game.id,
                    username=username,
                    done=game.settings.num_required_tasks == 0,
                ))
                values["players"] = game.players + [username]
                # The join that reaches min_players flips not-ready to ready in the same update
                if (
                    game.state == GameState.NOT_READY
                    and len(game.players) == game.settings.min_players - 1
                    and can_transition(game.state, GameState.READY)
                ):
                    values["state"] = GameState.READY

            _expect_one(games.update(game.id, values, expect=expect), "Operation unsuccessful")

        logger.info(
            f"[join] game={game_id} user={username} role={role.value} "
            f"state={values.get('state', game.state).value}"
        )
        return upgrade_credentials(identity, game_id, role, self.config)

    def leave_game(self, token: str | None, game_id: str) -> None:
        """Remove the caller from the roster their token is scoped to. Their player record stays."""
        identity = verify_token(token, game_id, PLAYER_OR_ADMIN, self.config)
        column = "admins" if identity.role == Role.ADMIN.value else "players"

        with transaction(self.session_factory) as session:
            games = GameStore(session)
            game = _load(games, game_id, lock=True)
            roster: list[str] = getattr(game, column)
            if identity.username not in roster:
                raise PersistenceError("No player removed", expected=1, actual=0)
            remaining = [u for u in roster if u != identity.username]
            _expect_one(games.update(game.id, {column: remaining}, expect={column: roster}), "No player removed")

        logger.info(f"[leave] game={game_id} user={identity.username} roster={column}")

    # ----- State machine -----

    def start_game(
        self,
        token: str | None,
        game_id: str,
        scheduler_target: str | None = None,
        trigger_payload: dict[str, Any] | None = None,
    ) -> UpdateGameStateConfirmation:
        """
        Move a ready game to running and stamp its start/end times.
        Timed games also get a one-shot schedule that will call back into stop_game. If that
        registration fails the game is still running; the SchedulerError is raised so the
        caller can stop it by hand.
        """
        identity = verify_token(token, game_id, HOST_OR_ADMIN, self.config)

        with transaction(self.session_factory) as session:
            games = GameStore(session)
            game = _load(games, game_id, lock=True)
            _require_transition(game, GameState.RUNNING)

            timed = game.settings.duration > 0
            if timed:
                missing = [
                    name for name, value in (
                        ("scheduler_target", scheduler_target),
                        ("trigger_payload", trigger_payload),
                        ("scheduler", self.scheduler),
                    ) if value is None
                ]
                if missing:
                    raise MissingSchedulerConfig(missing)

            start_time = self.clock()
            end_time = start_time + game.settings.duration * 1000 if timed else 0
            settings = replace(game.settings, start_time=start_time, end_time=end_time)
            count = games.update(
                game.id,
                {"state": GameState.RUNNING, "settings": settings},
                expect={"state": GameState.READY},
            )
            _expect_one(count, "Failed to start game")

        logger.info(f"[start] game={game_id} start={start_time} end={end_time}")

        if timed:
            handle = self._schedule_stop(identity, game_id, start_time, end_time, scheduler_target, trigger_payload)
            with transaction(self.session_factory) as session:
                count = GameStore(session).update(
                    game_id, {"stop_schedule_handle": handle}, expect={"state": GameState.RUNNING}
                )
            if count != 1:
                logger.info(f"[start] game={game_id} stopped before schedule handle was recorded")

        return UpdateGameStateConfirmation(start_time=start_time, end_time=end_time)

    def _schedule_stop(
        self,
        identity: Identity,
        game_id: str,
        start_time: int,
        end_time: int,
        target: str,
        trigger_payload: dict[str, Any],
    ) -> str:
        payload = dict(trigger_payload)
        # The caller's access token expires long before most games end
        lifetime = timedelta(milliseconds=end_time - start_time) + SCHEDULED_TOKEN_GRACE
        payload["token"] = sign_access_token(identity, lifetime, self.config)
        payload["game_id"] = game_id
        payload["source"] = SCHEDULER_SOURCE
        name = end_game_schedule_name(game_id)
        try:
            handle = self.scheduler.create(
                name,
                to_schedule_time(end_time),
                target,
                payload,
                self.config.scheduler_group,
            )
        except SchedulerError:
            logger.error(f"[schedule] game={game_id} registration failed; game left running")
            raise
        except Exception as exc:
            logger.error(f"[schedule] game={game_id} registration failed; game left running")
            raise SchedulerError(f"Unable to schedule end of game: {exc}", {"name": name}) from exc
        logger.info(f"[schedule] game={game_id} handle={handle}")
        return handle

    def stop_game(self, token: str | None, game_id: str, from_schedule: bool = False) -> UpdateGameStateConfirmation:
        """End a running game. Schedule cleanup is best effort and never fails the stop."""
        verify_token(token, game_id, HOST_OR_ADMIN, self.config)

        with transaction(self.session_factory) as session:
            games = GameStore(session)
            game = _load(games, game_id, lock=True)
            _require_transition(game, GameState.ENDED)

            end_time = self.clock()
            settings = replace(game.settings, end_time=end_time)
            count = games.update(
                game.id,
                {"state": GameState.ENDED, "settings": settings, "stop_schedule_handle": None},
                expect={"state": GameState.RUNNING},
            )
            _expect_one(count, "Failed to end game")

        logger.info(f"[stop] game={game_id} end={end_time} from_schedule={from_schedule}")

        if not from_schedule:
            self._cancel_stop_schedule(game_id)

        return UpdateGameStateConfirmation(start_time=game.settings.start_time, end_time=end_time)

    def _cancel_stop_schedule(self, game_id: str) -> None:
        if self.scheduler is None:
            return
        try:
            self.scheduler.delete(end_game_schedule_name(game_id), self.config.scheduler_group)
        except ScheduleNotFound:
            logger.info(f"[schedule] game={game_id} no schedule to destroy")
        except Exception as exc:
            # The game has already ended; only the timer cleanup failed
            logger.warning(f"[schedule] game={game_id} unable to destroy schedule, reason: {exc}")

    def handle_scheduled_stop(self, payload: dict[str, Any]) -> UpdateGameStateConfirmation:
        """Entry point for a fired end-of-game schedule."""
        if payload.get("source") != SCHEDULER_SOURCE:
            raise Forbidden("Payload did not originate from the scheduler", {"source": payload.get("source")})
        return self.stop_game(payload.get("token"), str(payload.get("game_id")), from_schedule=True)

    def restart_game(self, token: str | None, game_id: str) -> CreateGameConfirmation:
        """Create a new game from an ended game's settings and tasks. The ended game is not touched."""
        verify_token(token, game_id, HOST_OR_ADMIN, self.config)

        with transaction(self.session_factory) as session:
            game = _load(GameStore(session), game_id)
        if game.state != GameState.ENDED:
            raise InvalidState("Game hasn't ended, unable to restart", game.state.value, [GameState.ENDED.value])

        logger.info(f"[restart] game={game_id}")
        return self.create_game(token, game.settings, game.tasks)

    def delete_game(self, token: str | None, game_id: str) -> Game:
        """Delete a game that is not running, together with all of its player records."""
        verify_token(token, game_id, HOST_OR_ADMIN, self.config)

        with transaction(self.session_factory) as session:
            games = GameStore(session)
            game = _load(games, game_id, lock=True)
            if game.state not in DELETABLE_STATES:
                raise InvalidState(
                    "Game is still running, unable to delete",
                    game.state.value,
                    sorted(s.value for s in DELETABLE_STATES),
                )
            _expect_one(games.delete(game.id), "Unable to complete delete operation")
            removed = PlayerStore(session).delete_many(game.id)

        logger.info(f"[delete] game={game_id} players_removed={removed}")
        return game

    # ----- Reads -----

    def get_game(self, token: str | None, game_id: str) -> Game:
        verify_token(token, game_id, HOST_OR_ADMIN, self.config)
        with transaction(self.session_factory) as session:
            return _load(GameStore(session), game_id)

    def get_public_game(self, game_id: str) -> PublicGame:
        with transaction(self.session_factory) as session:
            return PublicGame.from_game(_load(GameStore(session), game_id))

    def list_public_games(self) -> list[PublicGame]:
        with transaction(self.session_factory) as session:
            return [PublicGame.from_game(g) for g in GameStore(session).find_all()]

    def get_players(self, token: str | None, game_id: str) -> list[Player]:
        """Player records for a game; host or admin only."""
        verify_token(token, game_id, HOST_OR_ADMIN, self.config)
        with transaction(self.session_factory) as session:
            _load(GameStore(session), game_id)
            return PlayerStore(session).find_by_game(game_id)
