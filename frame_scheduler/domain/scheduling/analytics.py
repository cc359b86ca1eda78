"""Scheduling analytics - read-only aggregation over tasks, appointments and the workload cache"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from .calendar import Calendar, SchedulingConfig
from .exceptions import ValidationError
from .repository import SchedulingRepository
from .workload import categorize_workload, summarize_day

logger = logging.getLogger(__name__)


def _range_bounds(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    """Inclusive date range as a half-open datetime interval"""
    if end_date < start_date:
        raise ValidationError("endDate", "must not be before startDate", end_date.isoformat())
    return (
        datetime.combine(start_date, time.min),
        datetime.combine(end_date + timedelta(days=1), time.min),
    )


def _rate(part: int, total: int) -> float:
    return round(part / total, 4) if total else 0.0


class SchedulingAnalytics:
    """Read-only reports; takes no locks and writes nothing"""

    def __init__(self, db: Session, config: SchedulingConfig):
        self.db = db
        self.config = config
        self.calendar = Calendar(config)
        self.repo = SchedulingRepository()

    def get_schedule_analytics(self, start_date: date, end_date: date) -> dict:
        """Task counts, completion and delay rates, and workload per day"""
        start, end = _range_bounds(start_date, end_date)
        tasks = self.repo.tasks_between(self.db, start, end)
        appointments = self.repo.appointments_between(self.db, start, end)

        status_counts: dict[str, int] = defaultdict(int)
        tasks_by_day = defaultdict(list)
        for task in tasks:
            status_counts[task.status] += 1
            tasks_by_day[task.start_time.date()].append(task)
        appointments_by_day = defaultdict(list)
        for appointment in appointments:
            appointments_by_day[appointment.appointment_time.date()].append(appointment)

        days = []
        for day in self.calendar.working_days(start_date, end_date + timedelta(days=1)):
            workload = summarize_day(
                day, tasks_by_day[day], appointments_by_day[day], self.config.max_daily_hours
            )
            days.append(
                {
                    "date": day.isoformat(),
                    "taskCount": len(tasks_by_day[day]),
                    "productionHours": workload.total_production_hours,
                    "appointmentHours": workload.total_appointment_hours,
                    "utilization": round(workload.utilization, 4),
                    "workloadLevel": categorize_workload(workload.utilization, self.config.thresholds),
                }
            )

        finished = [t for t in tasks if t.status == "completed" and t.actual_hours is not None]
        total = len(tasks)
        return {
            "startDate": start_date.isoformat(),
            "endDate": end_date.isoformat(),
            "totalTasks": total,
            "statusCounts": dict(status_counts),
            "completionRate": _rate(status_counts["completed"], total),
            "delayRate": _rate(status_counts["delayed"], total),
            "averageEstimatedHours": (
                round(sum(t.estimated_hours for t in tasks) / total, 2) if total else 0.0
            ),
            "averageActualHours": (
                round(sum(t.actual_hours for t in finished) / len(finished), 2) if finished else None
            ),
            "averageUtilization": (
                round(sum(d["utilization"] for d in days) / len(days), 4) if days else 0.0
            ),
            "days": days,
        }

    def get_appointment_analytics(self, start_date: date, end_date: date) -> dict:
        """Appointment counts by day and type, plus utilization from the workload cache"""
        start, end = _range_bounds(start_date, end_date)
        appointments = self.repo.appointments_between(self.db, start, end)

        groups: dict[tuple[date, str], dict] = {}
        for appointment in appointments:
            key = (appointment.appointment_time.date(), appointment.type)
            group = groups.setdefault(
                key,
                {"total": 0, "completed": 0, "no_show": 0, "cancelled": 0, "durations": []},
            )
            group["total"] += 1
            if appointment.status in ("completed", "no_show", "cancelled"):
                group[appointment.status] += 1
            group["durations"].append(appointment.duration)

        rows = []
        # Newest day first, then type name
        for (day, appointment_type) in sorted(groups, key=lambda k: (-k[0].toordinal(), k[1])):
            group = groups[(day, appointment_type)]
            rows.append(
                {
                    "date": day.isoformat(),
                    "type": appointment_type,
                    "totalAppointments": group["total"],
                    "completed": group["completed"],
                    "noShows": group["no_show"],
                    "cancelled": group["cancelled"],
                    "avgDuration": round(sum(group["durations"]) / len(group["durations"]), 2),
                }
            )

        cache_rows = self.repo.workload_rows_between(self.db, start_date, end_date)
        workload = [
            {
                "date": row.date.isoformat(),
                "utilization": round(row.utilization, 4),
                "appointmentHours": row.total_appointment_hours,
                "workloadLevel": categorize_workload(row.utilization, self.config.thresholds),
            }
            for row in cache_rows
        ]
        average = (
            round(sum(row.utilization for row in cache_rows) / len(cache_rows), 4)
            if cache_rows
            else 0.0
        )
        return {
            "startDate": start_date.isoformat(),
            "endDate": end_date.isoformat(),
            "appointments": rows,
            "workload": workload,
            "averageUtilization": average,
            "daysTracked": len(cache_rows),
        }
