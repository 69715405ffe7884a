"""
External scheduler gateway.
The coordinator only creates and deletes one-shot schedules; firing them is the
scheduler's business. The default gateway runs on APScheduler with a date trigger.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler

from taskhunt.config import SCHEDULED_STOP_MISFIRE_SECONDS

from .errors import ScheduleNotFound, SchedulerError

logger = logging.getLogger(__name__)


def end_game_schedule_name(game_id: str) -> str:
    return f"end-game-{game_id}"


def to_schedule_time(epoch_ms: int) -> str:
    """ISO-8601 UTC timestamp at second precision, without offset (e.g. 2024-08-01T12:30:00)."""
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


class SchedulerGateway(Protocol):
    def create(self, name: str, fire_at: str, target: str, payload: dict[str, Any], group: str) -> str:
        """Register a one-shot schedule and return its handle."""
        ...

    def delete(self, name: str, group: str) -> None:
        """Remove a schedule; raises ScheduleNotFound if it does not exist."""
        ...


class APSchedulerGateway:
    """
    Gateway backed by an APScheduler scheduler.
    Job ids are "<group>.<name>". The target is a textual "module:callable" reference,
    which APScheduler resolves when the job fires, called with payload=<payload>.
    A job that misses its fire time by more than misfire_grace_time seconds is dropped.
    """

    def __init__(self, scheduler: BaseScheduler, misfire_grace_time: int = SCHEDULED_STOP_MISFIRE_SECONDS):
        self.scheduler = scheduler
        self.misfire_grace_time = misfire_grace_time

    @staticmethod
    def job_id(name: str, group: str) -> str:
        return f"{group}.{name}"

    def create(self, name: str, fire_at: str, target: str, payload: dict[str, Any], group: str) -> str:
        run_date = datetime.fromisoformat(fire_at).replace(tzinfo=timezone.utc)
        job_id = self.job_id(name, group)
        try:
            job = self.scheduler.add_job(
                target,
                trigger="date",
                run_date=run_date,
                id=job_id,
                name=name,
                kwargs={"payload": payload},
                replace_existing=True,
                misfire_grace_time=self.misfire_grace_time,
            )
        except Exception as exc:
            raise SchedulerError(f"Unable to create schedule {name}: {exc}", {"name": name, "group": group}) from exc
        logger.info(f"[schedule-create] job={job.id} run_date={run_date.isoformat()}")
        return job.id

    def delete(self, name: str, group: str) -> None:
        job_id = self.job_id(name, group)
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError as exc:
            raise ScheduleNotFound(name, group) from exc
        logger.info(f"[schedule-delete] job={job_id}")
