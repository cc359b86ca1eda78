"""
Workload engine

Computes committed hours (production + appointments) for a day and keeps the
`daily_workload_cache` row for that day up to date. The cache row is never a
source of truth: it is recomputed after every mutation that can change a
day's load, and a missing or stale row is resolved by recomputation.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Union

from sqlalchemy.orm import Session

from ...models import Appointment, ScheduledTask
from .calendar import Calendar, SchedulingConfig, WorkloadThresholds
from .repository import ACTIVE_TASK_STATUSES, SchedulingRepository
from .transactions import run_in_transaction

logger = logging.getLogger(__name__)

WORKLOAD_CATEGORIES = ("light", "normal", "heavy", "overloaded")


@dataclass(frozen=True)
class DayWorkload:
    date: date
    total_production_hours: float
    total_appointment_hours: float
    total_scheduled_hours: float
    utilization: float
    task_count: int
    appointment_count: int

    def to_cache_values(self) -> dict:
        values = asdict(self)
        values.pop("date")
        return values


def categorize_workload(utilization: float, thresholds: WorkloadThresholds) -> str:
    if utilization < thresholds.light:
        return "light"
    if utilization < thresholds.normal:
        return "normal"
    if utilization < thresholds.heavy:
        return "heavy"
    return "overloaded"


def summarize_day(
    day: date,
    tasks: Iterable[ScheduledTask],
    appointments: Iterable[Appointment],
    max_daily_hours: float,
) -> DayWorkload:
    """Workload from already-loaded records; tasks must start on `day`"""
    active_tasks = [t for t in tasks if t.status in ACTIVE_TASK_STATUSES]
    booked = [a for a in appointments if a.status != "cancelled"]
    production = sum(t.estimated_hours for t in active_tasks)
    appointment_hours = sum(a.duration if a.duration is not None else 0.5 for a in booked)
    total = production + appointment_hours
    return DayWorkload(
        date=day,
        total_production_hours=production,
        total_appointment_hours=appointment_hours,
        total_scheduled_hours=total,
        utilization=total / max_daily_hours if max_daily_hours else 0.0,
        task_count=len(active_tasks),
        appointment_count=len(booked),
    )


class WorkloadEngine:
    """Service for day workload computation and the workload cache"""

    def __init__(self, db: Session, config: SchedulingConfig, calendar: Optional[Calendar] = None):
        self.db = db
        self.config = config
        self.calendar = calendar or Calendar(config)
        self.repo = SchedulingRepository()
        # (job name, args) for best-effort steps that failed and need an independent retry
        self.failed_side_effects: list[tuple[str, tuple]] = []

    @staticmethod
    def _as_date(day: Union[date, datetime]) -> date:
        return day.date() if isinstance(day, datetime) else day

    def calculate_day_workload(self, day: Union[date, datetime]) -> DayWorkload:
        day = self._as_date(day)
        return summarize_day(
            day,
            self.repo.day_tasks(self.db, day),
            self.repo.day_appointments(self.db, day),
            self.config.max_daily_hours,
        )

    def categorize_workload(self, utilization: float) -> str:
        return categorize_workload(utilization, self.config.thresholds)

    def refresh_workload_cache(self, day: Union[date, datetime]) -> DayWorkload:
        """Recompute and upsert the cache row; raises on failure"""
        day = self._as_date(day)

        def store(db: Session) -> DayWorkload:
            workload = self.calculate_day_workload(day)
            values = workload.to_cache_values()
            values["updated_at"] = self.calendar.now()
            self.repo.upsert_workload(db, day, values)
            return workload

        return run_in_transaction(
            self.db,
            store,
            attempts=self.config.retry_attempts,
            base_delay=self.config.retry_base_delay,
            description=f"workload cache refresh for {day}",
        )

    def update_workload_cache(self, day: Union[date, datetime]) -> bool:
        """Best-effort cache refresh; a failure is logged and queued for retry"""
        day = self._as_date(day)
        try:
            self.refresh_workload_cache(day)
            return True
        except Exception as e:
            logger.error(f"❌ Workload cache refresh failed for {day}: {e}")
            self.failed_side_effects.append(("refresh_workload_task", (day.isoformat(),)))
            return False

    def get_cached_workload(self, day: Union[date, datetime]) -> DayWorkload:
        """
        Workload for a day, reconciled against the tasks and appointments.

        A missing row, or one that disagrees with a fresh computation (for
        example after a refresh failed and its retry could not be queued), is
        rewritten. The fresh value is returned either way.
        """
        day = self._as_date(day)
        fresh = self.calculate_day_workload(day)
        row = self.repo.get_workload_row(self.db, day)
        if row is None:
            logger.debug(f"❌ Workload cache MISS: {day}")
            self.update_workload_cache(day)
            return fresh

        cached = DayWorkload(
            date=row.date,
            total_production_hours=row.total_production_hours,
            total_appointment_hours=row.total_appointment_hours,
            total_scheduled_hours=row.total_scheduled_hours,
            utilization=row.utilization,
            task_count=row.task_count,
            appointment_count=row.appointment_count,
        )
        if cached != fresh:
            logger.warning(
                f"⚠️ Stale workload cache for {day}: "
                f"{cached.utilization:.2f} cached, {fresh.utilization:.2f} actual"
            )
            self.update_workload_cache(day)
        return fresh
