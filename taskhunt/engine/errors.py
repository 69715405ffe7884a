"""
Failure taxonomy for lifecycle operations.
Every error carries a stable code, an HTTP-ish status and a details dict naming the
offending field, so the API layer can render it without inspecting messages.
"""

from typing import Any


class LifecycleError(Exception):
    code = "LIFECYCLE_ERROR"
    status = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class Unauthorized(LifecycleError):
    code = "UNAUTHORIZED"
    status = 401


class MissingToken(LifecycleError):
    code = "MISSING_TOKEN"
    status = 400

    def __init__(self):
        super().__init__("Must have a token for this operation", {"field": "token"})


class Forbidden(LifecycleError):
    code = "FORBIDDEN"
    status = 403


class NotFound(LifecycleError):
    code = "NOT_FOUND"
    status = 404


class GameNotFound(NotFound):
    code = "GAME_NOT_FOUND"

    def __init__(self, game_id: str):
        super().__init__(f"Game {game_id} not found", {"game_id": game_id})


class InvalidState(LifecycleError):
    code = "INVALID_STATE"
    status = 409

    def __init__(self, message: str, current: str, required: list[str] | None = None):
        details: dict[str, Any] = {"state": current}
        if required is not None:
            details["required"] = required
        super().__init__(message, details)


class CapacityExceeded(LifecycleError):
    code = "CAPACITY_EXCEEDED"
    status = 409

    def __init__(self, message: str, capacity: str, limit: int):
        super().__init__(message, {"capacity": capacity, "limit": limit})


class TooManyGames(CapacityExceeded):
    def __init__(self, limit: int):
        super().__init__("Max games reached", "games", limit)


class PlayerCapacityReached(CapacityExceeded):
    def __init__(self, limit: int):
        super().__init__("Maximum player capacity reached for this game", "players", limit)


class AdminCapacityReached(CapacityExceeded):
    def __init__(self, limit: int):
        super().__init__("Maximum admin capacity reached for this game", "admins", limit)


class AlreadyMember(LifecycleError):
    code = "ALREADY_MEMBER"
    status = 409

    def __init__(self, username: str, membership: str):
        super().__init__("User already in game", {"username": username, "membership": membership})


class InvalidAdminCode(LifecycleError):
    code = "INVALID_ADMIN_CODE"
    status = 403

    def __init__(self):
        super().__init__("Invalid admin creds", {"field": "admin_code"})


class MissingSchedulerConfig(LifecycleError):
    code = "MISSING_SCHEDULER_CONFIG"
    status = 400

    def __init__(self, missing: list[str]):
        super().__init__(
            "A scheduler target and trigger payload are required for games with a duration",
            {"missing": missing},
        )


class PersistenceError(LifecycleError):
    code = "PERSISTENCE_ERROR"
    status = 500

    def __init__(self, message: str, expected: int | None = None, actual: int | None = None):
        details: dict[str, Any] = {}
        if expected is not None:
            details = {"expected": expected, "actual": actual}
        super().__init__(message, details)


class SchedulerError(LifecycleError):
    code = "SCHEDULER_ERROR"
    status = 502


class ScheduleNotFound(SchedulerError):
    """Raised by a gateway when the named schedule does not exist."""
    code = "SCHEDULE_NOT_FOUND"
    status = 404

    def __init__(self, name: str, group: str):
        super().__init__(f"Schedule {name} not found", {"name": name, "group": group})
