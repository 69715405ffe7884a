"""
FastAPI backend for Task Hunt.
Thin HTTP adaptation over the lifecycle coordinator: parse the request, call one
coordinator operation, render the result or its typed failure.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Literal

from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import Depends, FastAPI, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from taskhunt.config import LifecycleConfig
from taskhunt.engine.errors import LifecycleError, MissingToken
from taskhunt.engine.scheduler import APSchedulerGateway
from taskhunt.engine.state import GameSettings, Task

from .auth import refresh_credentials
from .database import init_db, make_engine, make_session_factory, resolve_database_url
from .lifecycle import LifecycleCoordinator

logger = logging.getLogger(__name__)

config = LifecycleConfig.from_env()
engine = make_engine(resolve_database_url())
SessionLocal = make_session_factory(engine)
# End-of-game jobs live in the games database so they survive a restart
scheduler = BackgroundScheduler(jobstores={"default": SQLAlchemyJobStore(engine=engine)}, timezone="UTC")

_coordinator: LifecycleCoordinator | None = None


def get_coordinator() -> LifecycleCoordinator:
    """Process-wide coordinator; sessions are still opened per call."""
    global _coordinator
    if _coordinator is None:
        _coordinator = LifecycleCoordinator(SessionLocal, config, APSchedulerGateway(scheduler))
    return _coordinator


def run_scheduled_stop(payload: dict[str, Any]) -> None:
    """Target of end-of-game schedules (see LifecycleConfig.scheduler_target)."""
    try:
        result = get_coordinator().handle_scheduled_stop(payload)
    except LifecycleError as exc:
        logger.warning(f"[scheduled-stop] game={payload.get('game_id')} failed: {exc.code} {exc.message}")
        raise
    logger.info(f"[scheduled-stop] game={payload.get('game_id')} ended at {result.end_time}")


@asynccontextmanager
async def lifespan(app):
    init_db(engine)
    scheduler.start()
    try:
        yield
    finally:
        scheduler.shutdown(wait=False)
        logger.info("Stop Server")


app = FastAPI(
    title="Task Hunt API",
    description="Game lifecycle and membership API for Task Hunt",
    version="1.0.0",
    lifespan=lifespan,
)

CORS_ORIGINS = ["http://localhost:5173", "http://localhost:5174", "http://localhost:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request, call_next):
    """Log method and path so 500s can be traced to the failing endpoint."""
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(f"[500] {request.method} {request.url.path} (exception)")
        raise
    if response.status_code >= 500:
        logger.error(f"[500] {request.method} {request.url.path}")
    return response


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request, exc: LifecycleError):
    return JSONResponse(status_code=exc.status, content={"error": exc.to_dict()})


# ===== Pydantic Models =====

class GameSettingsModel(BaseModel):
    name: str
    duration: int = Field(default=0, ge=0)
    start_time: int = Field(default=0, ge=0)
    end_time: int = Field(default=0, ge=0)
    ordered: bool = False
    min_players: int = Field(default=0, ge=0)
    max_players: int = Field(default=0, ge=0)
    join_mid_game: bool = False
    num_required_tasks: int = Field(default=0, ge=0)

    def to_settings(self) -> GameSettings:
        return GameSettings(**self.model_dump())


class TaskModel(BaseModel):
    name: str
    description: str = ""
    points: int = 0
    type: str = ""
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_task(self) -> Task:
        return Task(**self.model_dump())


class CreateGameRequest(BaseModel):
    settings: GameSettingsModel
    tasks: list[TaskModel] = Field(default_factory=list)


class GameActionRequest(BaseModel):
    action: Literal["join", "leave", "start", "stop", "restart"]
    role: Literal["player", "admin"] = "player"
    code: str | None = None


class RefreshRequest(BaseModel):
    refresh_token: str


# ===== Helper Functions =====

def require_token(token: str | None) -> str:
    if not token:
        raise MissingToken()
    return token


# ===== API Endpoints =====

@app.get("/")
def root():
    return {"message": "Task Hunt API", "version": "1.0.0"}


@app.post("/auth/refresh")
def refresh(request: RefreshRequest):
    """Exchange a refresh token for a new access/refresh pair with the same scope."""
    return refresh_credentials(request.refresh_token, config).to_dict()


@app.get("/games")
def list_games(coordinator: LifecycleCoordinator = Depends(get_coordinator)):
    """Public view of every game."""
    return {"games": [g.to_dict() for g in coordinator.list_public_games()]}


@app.post("/games")
def create_game(
    request: CreateGameRequest,
    token: str | None = Header(default=None),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Create a game hosted by the caller. Returns host credentials, game_id and task_ids."""
    token = require_token(token)
    tasks = [t.to_task() for t in request.tasks]
    return coordinator.create_game(token, request.settings.to_settings(), tasks).to_dict()


@app.get("/games/{game_id}")
def get_game(
    game_id: str,
    public: bool = True,
    token: str | None = Header(default=None),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Public projection by default; ?public=false returns the full game for its host or admins."""
    if public:
        return coordinator.get_public_game(game_id).to_dict()
    token = require_token(token)
    return coordinator.get_game(token, game_id).to_dict()


@app.get("/games/{game_id}/players")
def get_players(
    game_id: str,
    token: str | None = Header(default=None),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    token = require_token(token)
    return {"players": [p.to_dict() for p in coordinator.get_players(token, game_id)]}


@app.post("/games/{game_id}")
def game_action(
    game_id: str,
    request: GameActionRequest,
    token: str | None = Header(default=None),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Join, leave, start, stop or restart a game."""
    token = require_token(token)
    if request.action == "join":
        return coordinator.join_game(token, game_id, request.role, request.code).to_dict()
    if request.action == "leave":
        coordinator.leave_game(token, game_id)
        return {"message": "Left game"}
    if request.action == "start":
        # The payload comes back to run_scheduled_stop when the game's time is up
        trigger_payload = {"action": "stop"}
        return coordinator.start_game(token, game_id, coordinator.config.scheduler_target, trigger_payload).to_dict()
    if request.action == "stop":
        return coordinator.stop_game(token, game_id).to_dict()
    return coordinator.restart_game(token, game_id).to_dict()


@app.delete("/games/{game_id}")
def delete_game(
    game_id: str,
    token: str | None = Header(default=None),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Delete a game that is not running, along with its player records."""
    token = require_token(token)
    return coordinator.delete_game(token, game_id).to_dict()
