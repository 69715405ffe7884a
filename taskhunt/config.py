"""
Single place for lifecycle configuration.
Values come from the environment once, at startup, and the resulting LifecycleConfig is
passed to the coordinator. Nothing below the API layer reads os.environ directly.
"""

import os
from dataclasses import dataclass, field

ACCESS_TOKEN_EXPIRE_MINUTES = 15
REFRESH_TOKEN_EXPIRE_HOURS = 3

# A scheduled stop may fire this late; its token outlives the window by a margin
SCHEDULED_STOP_MISFIRE_SECONDS = 60 * 60
SCHEDULED_STOP_TOKEN_MARGIN_SECONDS = 10 * 60

# Defaults used when the matching environment variable is absent
DEFAULT_MAX_GAMES = 100
DEFAULT_MAX_ADMINS = 5
DEFAULT_SCHEDULER_GROUP = "taskhunt-games"
DEFAULT_SCHEDULER_TARGET = "taskhunt.api.main:run_scheduled_stop"


def _split_codes(raw: str | None) -> tuple[str, ...]:
    """Parse ADMIN_CODES ("abc,def") into a tuple; blanks are dropped."""
    if not raw:
        return ()
    return tuple(code.strip() for code in raw.split(",") if code.strip())


@dataclass(frozen=True)
class LifecycleConfig:
    access_token_key: str
    refresh_token_key: str
    admin_codes: tuple[str, ...] = field(default_factory=tuple)
    max_games: int = DEFAULT_MAX_GAMES
    max_admins: int = DEFAULT_MAX_ADMINS
    scheduler_group: str = DEFAULT_SCHEDULER_GROUP
    scheduler_target: str = DEFAULT_SCHEDULER_TARGET
    access_token_expire_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES
    refresh_token_expire_hours: int = REFRESH_TOKEN_EXPIRE_HOURS

    @classmethod
    def from_env(cls) -> "LifecycleConfig":
        return cls(
            access_token_key=os.environ.get("ACCESS_TOKEN_KEY", "change-me-access-key"),
            refresh_token_key=os.environ.get("REFRESH_TOKEN_KEY", "change-me-refresh-key"),
            admin_codes=_split_codes(os.environ.get("ADMIN_CODES")),
            max_games=int(os.environ.get("MAX_GAMES", str(DEFAULT_MAX_GAMES))),
            max_admins=int(os.environ.get("MAX_ADMINS", str(DEFAULT_MAX_ADMINS))),
            scheduler_group=os.environ.get("SCHEDULER_GROUP_NAME", DEFAULT_SCHEDULER_GROUP),
            scheduler_target=os.environ.get("SCHEDULER_TARGET", DEFAULT_SCHEDULER_TARGET),
        )
