"""Scheduling repository - Database operations for tasks, appointments and derived rows"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from ...models import (
    Appointment,
    AppointmentHistory,
    CalendarDayLock,
    DailyWorkload,
    ScheduledReminder,
    ScheduledTask,
)

ACTIVE_TASK_STATUSES = ("scheduled", "in_progress")


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _dialect_insert(db: Session):
    """Return the dialect-specific insert construct supporting ON CONFLICT, if any"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert

        return insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert

        return insert
    return None


class SchedulingRepository:
    """Repository for scheduling database operations"""

    # Locking

    @staticmethod
    def lock_day(db: Session, day: date) -> None:
        """
        Serialize writers for one calendar day until the current transaction ends.

        The row is created on first use, then bumped with an UPDATE: PostgreSQL
        takes a row lock (other days stay uncontended), SQLite takes its
        database write lock. Conflict checks issued after this call see every
        write committed by earlier holders.
        """
        insert = _dialect_insert(db)
        if insert is not None:
            db.execute(
                insert(CalendarDayLock)
                .values(date=day, version=0)
                .on_conflict_do_nothing(index_elements=["date"])
            )
        elif db.get(CalendarDayLock, day) is None:
            db.add(CalendarDayLock(date=day, version=0))
            db.flush()
        db.execute(
            update(CalendarDayLock)
            .where(CalendarDayLock.date == day)
            .values(version=CalendarDayLock.version + 1)
        )

    # Tasks

    @staticmethod
    def get_task(db: Session, task_id: str) -> Optional[ScheduledTask]:
        return db.get(ScheduledTask, task_id)

    @staticmethod
    def get_task_by_order(db: Session, order_id: str) -> Optional[ScheduledTask]:
        """Most recent task for an order"""
        return (
            db.query(ScheduledTask)
            .filter(ScheduledTask.order_id == order_id)
            .order_by(ScheduledTask.created_at.desc(), ScheduledTask.id)
            .first()
        )

    @staticmethod
    def find_dependency(db: Session, dependency_id: str) -> Optional[ScheduledTask]:
        """Dependencies may reference either a task id or an order id"""
        task = db.get(ScheduledTask, dependency_id)
        if task is not None:
            return task
        return SchedulingRepository.get_task_by_order(db, dependency_id)

    @staticmethod
    def day_tasks(
        db: Session, day: date, exclude_ids: Iterable[str] = ()
    ) -> list[ScheduledTask]:
        """Active tasks starting on `day`"""
        start, end = day_bounds(day)
        query = db.query(ScheduledTask).filter(
            ScheduledTask.start_time >= start,
            ScheduledTask.start_time < end,
            ScheduledTask.status.in_(ACTIVE_TASK_STATUSES),
        )
        exclude_ids = list(exclude_ids)
        if exclude_ids:
            query = query.filter(ScheduledTask.id.notin_(exclude_ids))
        return query.order_by(ScheduledTask.start_time).all()

    @staticmethod
    def movable_tasks(db: Session) -> list[ScheduledTask]:
        return db.query(ScheduledTask).filter(ScheduledTask.status == "scheduled").all()

    @staticmethod
    def dependent_tasks(db: Session, task: ScheduledTask) -> list[ScheduledTask]:
        """Scheduled tasks that list `task` (by id or order id) as a dependency"""
        candidates = db.query(ScheduledTask).filter(ScheduledTask.status == "scheduled").all()
        keys = {task.id, task.order_id}
        return [c for c in candidates if keys.intersection(c.dependencies or [])]

    @staticmethod
    def tasks_between(db: Session, start: datetime, end: datetime) -> list[ScheduledTask]:
        return (
            db.query(ScheduledTask)
            .filter(ScheduledTask.start_time >= start, ScheduledTask.start_time < end)
            .order_by(ScheduledTask.start_time)
            .all()
        )

    # Appointments

    @staticmethod
    def get_appointment(db: Session, appointment_id: str) -> Optional[Appointment]:
        return db.get(Appointment, appointment_id)

    @staticmethod
    def day_appointments(db: Session, day: date) -> list[Appointment]:
        """Non-cancelled appointments starting on `day`"""
        start, end = day_bounds(day)
        return (
            db.query(Appointment)
            .filter(
                Appointment.appointment_time >= start,
                Appointment.appointment_time < end,
                Appointment.status != "cancelled",
            )
            .order_by(Appointment.appointment_time)
            .all()
        )

    @staticmethod
    def appointments_between(db: Session, start: datetime, end: datetime) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.appointment_time >= start, Appointment.appointment_time < end)
            .order_by(Appointment.appointment_time)
            .all()
        )

    @staticmethod
    def add_history(
        db: Session,
        appointment_id: str,
        action: str,
        timestamp: datetime,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AppointmentHistory:
        entry = AppointmentHistory(
            appointment_id=appointment_id,
            action=action,
            old_value=old_value,
            new_value=new_value,
            reason=reason,
            timestamp=timestamp,
        )
        db.add(entry)
        return entry

    @staticmethod
    def get_history(db: Session, appointment_id: str) -> list[AppointmentHistory]:
        return (
            db.query(AppointmentHistory)
            .filter(AppointmentHistory.appointment_id == appointment_id)
            .order_by(AppointmentHistory.id)
            .all()
        )

    # Reminders

    @staticmethod
    def get_reminders(db: Session, appointment_id: str) -> list[ScheduledReminder]:
        return (
            db.query(ScheduledReminder)
            .filter(ScheduledReminder.appointment_id == appointment_id)
            .order_by(ScheduledReminder.reminder_time)
            .all()
        )

    @staticmethod
    def delete_reminders(db: Session, appointment_id: str, pending_only: bool = False) -> int:
        statement = delete(ScheduledReminder).where(
            ScheduledReminder.appointment_id == appointment_id
        )
        if pending_only:
            statement = statement.where(ScheduledReminder.status == "pending")
        return db.execute(statement).rowcount

    @staticmethod
    def due_reminders(db: Session, now: datetime, limit: int = 100) -> list[ScheduledReminder]:
        return (
            db.query(ScheduledReminder)
            .filter(ScheduledReminder.status == "pending", ScheduledReminder.reminder_time <= now)
            .order_by(ScheduledReminder.reminder_time)
            .limit(limit)
            .all()
        )

    # Workload cache

    @staticmethod
    def get_workload_row(db: Session, day: date) -> Optional[DailyWorkload]:
        return db.get(DailyWorkload, day)

    @staticmethod
    def upsert_workload(db: Session, day: date, values: dict) -> None:
        insert = _dialect_insert(db)
        if insert is None:
            db.merge(DailyWorkload(date=day, **values))
            return
        statement = insert(DailyWorkload).values(date=day, **values)
        db.execute(
            statement.on_conflict_do_update(index_elements=["date"], set_=values)
        )

    @staticmethod
    def workload_rows_between(db: Session, start: date, end: date) -> list[DailyWorkload]:
        """Cache rows with start <= date <= end"""
        return (
            db.query(DailyWorkload)
            .filter(DailyWorkload.date >= start, DailyWorkload.date <= end)
            .order_by(DailyWorkload.date.desc())
            .all()
        )


