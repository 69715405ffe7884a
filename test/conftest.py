import pytest
from fastapi.testclient import TestClient

from taskhunt.api import main as api_main
from taskhunt.api.auth import issue_credentials
from taskhunt.api.database import init_db, make_engine, make_session_factory
from taskhunt.api.lifecycle import LifecycleCoordinator
from taskhunt.config import LifecycleConfig
from taskhunt.engine.errors import ScheduleNotFound
from taskhunt.engine.state import GameSettings, Task

NOW_MS = 1_700_000_000_000
ADMIN_CODE = "letmein"


class FakeScheduler:
    """Records schedule calls instead of talking to a real scheduler."""

    def __init__(self):
        self.created = []
        self.deleted = []
        self.fail_create = None
        self.fail_delete = None
        self._live = set()

    def create(self, name, fire_at, target, payload, group):
        if self.fail_create is not None:
            raise self.fail_create
        self.created.append({"name": name, "fire_at": fire_at, "target": target, "payload": payload, "group": group})
        self._live.add((group, name))
        return f"{group}.{name}"

    def delete(self, name, group):
        self.deleted.append({"name": name, "group": group})
        if self.fail_delete is not None:
            raise self.fail_delete
        if (group, name) not in self._live:
            raise ScheduleNotFound(name, group)
        self._live.discard((group, name))


@pytest.fixture()
def config():
    return LifecycleConfig(
        access_token_key="test-access-key",
        refresh_token_key="test-refresh-key",
        admin_codes=(ADMIN_CODE,),
        max_games=10,
        max_admins=2,
        scheduler_group="test-group",
        scheduler_target="taskhunt.api.main:run_scheduled_stop",
    )


@pytest.fixture()
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def scheduler():
    return FakeScheduler()


@pytest.fixture()
def clock():
    class Clock:
        now = NOW_MS

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture()
def coordinator(session_factory, config, scheduler, clock):
    return LifecycleCoordinator(session_factory, config, scheduler, clock=clock)


@pytest.fixture()
def user_token(config):
    """Bare access token for a username: user_token("alice")."""

    def _token(username):
        return issue_credentials(f"id-{username}", username, config).access_token

    return _token


@pytest.fixture()
def make_settings():
    def _settings(**overrides):
        values = {
            "name": "test game",
            "duration": 0,
            "start_time": 0,
            "end_time": 0,
            "ordered": False,
            "min_players": 1,
            "max_players": 3,
            "join_mid_game": False,
            "num_required_tasks": 0,
        }
        values.update(overrides)
        return GameSettings(**values)

    return _settings


@pytest.fixture()
def sample_tasks():
    return [
        Task(name="find the statue", description="photo by the fountain", points=10, type="photo"),
        Task(name="riddle", points=5, type="text", extra={"answer": "echo"}),
    ]


@pytest.fixture()
def client(coordinator):
    api_main.app.dependency_overrides[api_main.get_coordinator] = lambda: coordinator
    test_client = TestClient(api_main.app)
    yield test_client
    api_main.app.dependency_overrides.clear()
