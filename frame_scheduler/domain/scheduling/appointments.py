"""
Appointment slot generator & booking service

Generates candidate appointment slots scored against the day's workload, and
books/reschedules/cancels appointments. Every write re-checks the requested
interval against active appointments and production tasks while holding the
calendar day lock, so two concurrent bookings for one window cannot both
succeed. Reminder regeneration and workload cache refresh run after commit as
best-effort steps.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

from sqlalchemy.orm import Session

from ...models import Appointment, ScheduledReminder, generate_id
from .analytics import SchedulingAnalytics
from .calendar import AppointmentType, Calendar, SchedulingConfig, overlaps
from .exceptions import NotFound, SlotUnavailable, ValidationError
from .repository import SchedulingRepository
from .schemas import BookAppointmentRequest
from .transactions import run_in_transaction
from .workload import DayWorkload, WorkloadEngine, summarize_day

logger = logging.getLogger(__name__)

RECOMMENDED_SCORE = 80
OPTIMAL_SCORE = 90
OPTIMAL_RESULTS_LIMIT = 10
# Fixed estimate used when reporting the impact of one more booking
IMPACT_ESTIMATE_HOURS = 0.5

WORKLOAD_PRIORITY = {"light": 4, "normal": 3, "heavy": 2, "overloaded": 1}

WORKLOAD_INDICATORS = {
    "light": {"color": "green", "text": "Light day - Great availability", "icon": "🟢"},
    "normal": {"color": "blue", "text": "Normal day - Good availability", "icon": "🔵"},
    "heavy": {"color": "orange", "text": "Busy day - Limited availability", "icon": "🟠"},
    "overloaded": {"color": "red", "text": "Very busy - May experience delays", "icon": "🔴"},
}


def ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def format_slot_time(value: datetime) -> str:
    """e.g. Wednesday, November 5th, 10:00 AM"""
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{value:%A}, {value:%B} {ordinal(value.day)}, {hour}:{value:%M} {meridiem}"


@dataclass
class AppointmentSlot:
    start: datetime
    end: datetime
    type: str
    duration: float
    workload_level: str
    workload_score: float
    recommendation_score: int
    available_capacity: int

    @property
    def is_recommended(self) -> bool:
        return self.recommendation_score >= RECOMMENDED_SCORE

    def to_dict(self) -> dict:
        return {
            "datetime": self.start.isoformat(),
            "endTime": self.end.isoformat(),
            "type": self.type,
            "duration": self.duration,
            "availability": "available",
            "availableCapacity": self.available_capacity,
            "workloadLevel": self.workload_level,
            "workloadScore": round(self.workload_score, 4),
            "recommendationScore": self.recommendation_score,
            "isRecommended": self.is_recommended,
            "formattedTime": format_slot_time(self.start),
            "workloadIndicator": AppointmentBookingService.get_workload_indicator(self.workload_level),
        }


@dataclass
class DaySnapshot:
    """Active reservations of one day, loaded once per conflict check"""

    day: date
    tasks: list = field(default_factory=list)
    appointments: list = field(default_factory=list)


def generate_confirmation_number(prefix: str, appointment_id: str, appointment_time: datetime) -> str:
    """Display code, not a security token: prefix + MMDD + 4 hex chars of md5(id)"""
    digest = hashlib.md5(appointment_id.encode("utf-8")).hexdigest()[:4].upper()
    return f"{prefix}{appointment_time:%m%d}{digest}"


class AppointmentBookingService:
    """Service layer for appointment slots, bookings and reminders"""

    def __init__(
        self,
        db: Session,
        config: SchedulingConfig,
        workload: Optional[WorkloadEngine] = None,
    ):
        self.db = db
        self.config = config
        self.calendar = Calendar(config)
        self.workload = workload or WorkloadEngine(db, config, self.calendar)
        self.repo = SchedulingRepository()

    @property
    def failed_side_effects(self) -> list:
        return self.workload.failed_side_effects

    def _transaction(self, operation, description: str):
        return run_in_transaction(
            self.db,
            operation,
            attempts=self.config.retry_attempts,
            base_delay=self.config.retry_base_delay,
            description=description,
        )

    # ------------------------------------------------------------------
    # Conflict detection
    # ------------------------------------------------------------------

    def _snapshot(self, db: Session, day: date) -> DaySnapshot:
        return DaySnapshot(
            day=day,
            tasks=self.repo.day_tasks(db, day),
            appointments=self.repo.day_appointments(db, day),
        )

    def find_conflict(
        self,
        type_config: AppointmentType,
        start: datetime,
        snapshot: DaySnapshot,
        exclude_id: Optional[str] = None,
    ) -> tuple[Optional[dict], int]:
        """
        Check a candidate start against one day's reservations.

        Returns (conflict, same_start_count). The candidate reserves
        [start, start + duration + buffer); same-type appointments at the same
        start minute share capacity instead of conflicting.
        """
        end = start + type_config.reserved_length
        same_start = 0
        for appointment in snapshot.appointments:
            if appointment.id == exclude_id or appointment.status == "cancelled":
                continue
            if appointment.type == type_config.name and appointment.appointment_time == start:
                same_start += 1
                continue
            other_start, other_end = self.calendar.reserved_interval(appointment)
            if overlaps(start, end, other_start, other_end):
                return (
                    {
                        "kind": "appointment",
                        "id": appointment.id,
                        "start": other_start.isoformat(),
                        "end": other_end.isoformat(),
                    },
                    same_start,
                )
        for task in snapshot.tasks:
            if overlaps(start, end, task.start_time, task.end_time):
                return (
                    {
                        "kind": "production_task",
                        "id": task.id,
                        "start": task.start_time.isoformat(),
                        "end": task.end_time.isoformat(),
                    },
                    same_start,
                )
        if same_start >= type_config.capacity:
            return (
                {
                    "kind": "capacity",
                    "start": start.isoformat(),
                    "capacity": type_config.capacity,
                    "booked": same_start,
                },
                same_start,
            )
        return None, same_start

    def _validate_requested_time(self, type_config: AppointmentType, start: datetime) -> datetime:
        start = self.calendar.localize(start).replace(second=0, microsecond=0)
        if start <= self.calendar.now():
            raise ValidationError("appointmentTime", "must be in the future", start.isoformat())
        if not self.calendar.fits_working_window(start, start + type_config.reserved_length):
            raise ValidationError(
                "appointmentTime", "outside the working hours of a working day", start.isoformat()
            )
        return start

    def _check_daily_capacity(self, snapshot: DaySnapshot, extra_hours: float) -> None:
        if not self.config.enforce_daily_capacity:
            return
        load = summarize_day(
            snapshot.day, snapshot.tasks, snapshot.appointments, self.config.max_daily_hours
        )
        if load.total_scheduled_hours + extra_hours > self.config.max_daily_hours:
            raise SlotUnavailable(
                f"{snapshot.day.isoformat()} is fully booked",
                conflict={"kind": "daily_capacity", "utilization": round(load.utilization, 4)},
            )

    # ------------------------------------------------------------------
    # Slot generation
    # ------------------------------------------------------------------

    def calculate_day_workload(self, day: Union[date, datetime]) -> DayWorkload:
        return self.workload.calculate_day_workload(day)

    def calculate_recommendation_score(
        self, slot_time: datetime, workload: Union[DayWorkload, float], type_config: AppointmentType
    ) -> int:
        utilization = workload if isinstance(workload, (int, float)) else workload.utilization
        score = 100

        # Penalize busy days, reward light ones
        if utilization > 0.8:
            score -= 30
        elif utilization > 0.6:
            score -= 10
        elif utilization < 0.4:
            score += 20

        hour = slot_time.hour
        if type_config.duration >= 1:
            if 9 <= hour <= 11:
                score += 15
            if 14 <= hour <= 16:
                score += 10
            if hour >= 16:
                score -= 20
        elif 11 <= hour <= 14:
            score += 10

        weekday = slot_time.weekday()
        if weekday in (0, 4):  # Monday, Friday
            score += 5
        if weekday == 2:  # Wednesday
            score += 10

        return max(0, min(100, score))

    def generate_day_slots(self, day: date, type_config: AppointmentType) -> list[AppointmentSlot]:
        snapshot = self._snapshot(self.db, day)
        load = summarize_day(day, snapshot.tasks, snapshot.appointments, self.config.max_daily_hours)
        level = self.workload.categorize_workload(load.utilization)
        if (
            self.config.enforce_daily_capacity
            and load.total_scheduled_hours + type_config.duration > self.config.max_daily_hours
        ):
            return []

        slots = []
        for start in self.calendar.candidate_starts(
            day, type_config.reserved_length, self.calendar.now()
        ):
            conflict, same_start = self.find_conflict(type_config, start, snapshot)
            if conflict is not None:
                continue
            slots.append(
                AppointmentSlot(
                    start=start,
                    end=start + type_config.length,
                    type=type_config.name,
                    duration=type_config.duration,
                    workload_level=level,
                    workload_score=load.utilization,
                    recommendation_score=self.calculate_recommendation_score(
                        start, load, type_config
                    ),
                    available_capacity=type_config.capacity - same_start,
                )
            )
        return slots

    @staticmethod
    def prioritize_slots(slots: Iterable[AppointmentSlot]) -> list[AppointmentSlot]:
        """Score descending, then lighter days, then chronological"""
        return sorted(
            slots,
            key=lambda s: (
                -s.recommendation_score,
                -WORKLOAD_PRIORITY[s.workload_level],
                s.start,
            ),
        )

    def get_available_slots(
        self,
        appointment_type: str,
        preferred_date: Optional[date] = None,
        days_ahead: int = 14,
    ) -> list[AppointmentSlot]:
        type_config = self.calendar.appointment_type(appointment_type)
        if days_ahead < 1:
            raise ValidationError("daysAhead", "must be at least 1", days_ahead)
        start = preferred_date or self.calendar.now().date() + timedelta(days=1)

        slots = []
        for day in self.calendar.working_days(start, start + timedelta(days=days_ahead)):
            slots.extend(self.generate_day_slots(day, type_config))
        logger.info(f"📅 {len(slots)} {appointment_type} slots available from {start}")
        return self.prioritize_slots(slots)

    @staticmethod
    def get_slot_benefits(slot: AppointmentSlot) -> list[str]:
        benefits = []
        if slot.workload_level == "light":
            benefits.append("More attention and time available")
        if slot.recommendation_score >= OPTIMAL_SCORE:
            benefits.append("Optimal time for this service")
        if slot.workload_score < 0.5:
            benefits.append("Flexible scheduling if changes needed")
        return benefits

    def get_optimal_appointment_times(self, appointment_type: str, next_days: int = 7) -> list[dict]:
        slots = self.get_available_slots(appointment_type, None, next_days)
        recommended = [s for s in slots if s.is_recommended][:OPTIMAL_RESULTS_LIMIT]
        return [
            {
                "datetime": slot.start.isoformat(),
                "formattedTime": format_slot_time(slot.start),
                "workloadLevel": slot.workload_level,
                "recommendationScore": slot.recommendation_score,
                "benefits": self.get_slot_benefits(slot),
            }
            for slot in recommended
        ]

    @staticmethod
    def get_workload_indicator(level: str) -> dict:
        return WORKLOAD_INDICATORS[level]

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def calculate_workload_impact(self, workload: Union[DayWorkload, date, datetime]) -> dict:
        if not isinstance(workload, DayWorkload):
            workload = self.calculate_day_workload(workload)
        utilization = workload.utilization
        return {
            "utilizationBefore": round(utilization, 4),
            "newUtilization": round(
                utilization + IMPACT_ESTIMATE_HOURS / self.config.max_daily_hours, 4
            ),
            "impact": "high" if utilization > 0.8 else "low",
            "recommendation": (
                "Consider rescheduling non-urgent production tasks"
                if utilization > 0.9
                else "No adjustments needed"
            ),
        }

    def book_appointment(self, data: BookAppointmentRequest) -> dict:
        type_config = self.calendar.appointment_type(data.type)
        start = self._validate_requested_time(type_config, data.appointmentTime)
        reminder_hours = (
            list(data.reminderPreferences)
            if data.reminderPreferences is not None
            else list(self.config.default_reminder_hours)
        )
        logger.info(f"📥 Booking {type_config.name} for customer {data.customerId} at {start}")

        def book(db: Session) -> tuple[Appointment, dict]:
            self.repo.lock_day(db, start.date())
            snapshot = self._snapshot(db, start.date())
            load = summarize_day(
                start.date(), snapshot.tasks, snapshot.appointments, self.config.max_daily_hours
            )
            impact = self.calculate_workload_impact(load)

            conflict, _ = self.find_conflict(type_config, start, snapshot)
            if conflict is not None:
                raise SlotUnavailable(
                    "Time slot is no longer available",
                    start,
                    start + type_config.length,
                    conflict,
                )
            self._check_daily_capacity(snapshot, type_config.duration)

            now = self.calendar.now()
            appointment_id = generate_id()
            appointment = Appointment(
                id=appointment_id,
                customer_id=data.customerId,
                type=type_config.name,
                appointment_time=start,
                appointment_end=start + type_config.length,
                duration=type_config.duration,
                status="confirmed",
                notes=data.notes,
                contact_method=data.contactMethod,
                reminder_preferences=reminder_hours,
                confirmation_number=generate_confirmation_number(
                    self.config.confirmation_prefix, appointment_id, start
                ),
                created_at=now,
                updated_at=now,
            )
            db.add(appointment)
            self.repo.add_history(db, appointment_id, "created", now, new_value=start.isoformat())
            db.flush()
            return appointment, impact

        appointment, impact = self._transaction(book, f"booking {type_config.name} at {start}")
        logger.info(
            f"✅ Appointment {appointment.id} booked ({appointment.confirmation_number}), "
            f"impact: {impact['impact']}"
        )

        self.schedule_appointment_reminders(appointment.id)
        self.workload.update_workload_cache(start)
        return {
            "appointmentId": appointment.id,
            "confirmationNumber": appointment.confirmation_number,
            "appointment": appointment,
            "workloadImpact": impact,
        }

    def reschedule_appointment(
        self, appointment_id: str, new_datetime: datetime, reason: Optional[str] = None
    ) -> dict:
        existing = self.repo.get_appointment(self.db, appointment_id)
        if existing is None:
            raise NotFound("Appointment", appointment_id)
        type_config = self.calendar.appointment_type(existing.type)
        new_start = self._validate_requested_time(type_config, new_datetime)

        def move(db: Session) -> datetime:
            appointment = self.repo.get_appointment(db, appointment_id)
            if appointment is None:
                raise NotFound("Appointment", appointment_id)
            if appointment.status != "confirmed":
                raise ValidationError(
                    "status", f"cannot reschedule a {appointment.status} appointment", appointment.status
                )
            old_start = appointment.appointment_time
            for day in sorted({old_start.date(), new_start.date()}):
                self.repo.lock_day(db, day)

            snapshot = self._snapshot(db, new_start.date())
            conflict, _ = self.find_conflict(type_config, new_start, snapshot, exclude_id=appointment_id)
            if conflict is not None:
                raise SlotUnavailable(
                    "New time slot is not available",
                    new_start,
                    new_start + type_config.length,
                    conflict,
                )
            if old_start.date() != new_start.date():
                self._check_daily_capacity(snapshot, type_config.duration)

            now = self.calendar.now()
            appointment.appointment_time = new_start
            appointment.appointment_end = new_start + type_config.length
            appointment.updated_at = now
            self.repo.add_history(
                db,
                appointment_id,
                "rescheduled",
                now,
                old_value=old_start.isoformat(),
                new_value=new_start.isoformat(),
                reason=reason,
            )
            db.flush()
            return old_start

        old_start = self._transaction(move, f"rescheduling appointment {appointment_id}")
        logger.info(f"🔄 Appointment {appointment_id} moved {old_start} → {new_start}")

        self.schedule_appointment_reminders(appointment_id)
        for day in sorted({old_start.date(), new_start.date()}):
            self.workload.update_workload_cache(day)
        return {"success": True, "newTime": new_start.isoformat()}

    def cancel_appointment(self, appointment_id: str, reason: Optional[str] = None) -> Appointment:
        def cancel(db: Session) -> Appointment:
            appointment = self.repo.get_appointment(db, appointment_id)
            if appointment is None:
                raise NotFound("Appointment", appointment_id)
            if appointment.status != "confirmed":
                raise ValidationError(
                    "status", f"cannot cancel a {appointment.status} appointment", appointment.status
                )
            now = self.calendar.now()
            appointment.status = "cancelled"
            appointment.updated_at = now
            self.repo.add_history(
                db, appointment_id, "cancelled", now, old_value="confirmed", new_value="cancelled", reason=reason
            )
            db.flush()
            return appointment

        appointment = self._transaction(cancel, f"cancelling appointment {appointment_id}")
        logger.info(f"🗑️ Appointment {appointment_id} cancelled")
        self.schedule_appointment_reminders(appointment_id)
        self.workload.update_workload_cache(appointment.appointment_time)
        return appointment

    def update_appointment_status(self, appointment_id: str, status: str) -> Appointment:
        """Record the outcome of an appointment (completed or no_show)"""
        if status not in ("completed", "no_show"):
            raise ValidationError("status", "must be completed or no_show", status)

        def record(db: Session) -> Appointment:
            appointment = self.repo.get_appointment(db, appointment_id)
            if appointment is None:
                raise NotFound("Appointment", appointment_id)
            if appointment.status != "confirmed":
                raise ValidationError(
                    "status", f"appointment is already {appointment.status}", status
                )
            now = self.calendar.now()
            self.repo.add_history(
                db, appointment_id, status, now, old_value=appointment.status, new_value=status
            )
            appointment.status = status
            appointment.updated_at = now
            db.flush()
            return appointment

        appointment = self._transaction(record, f"status update for appointment {appointment_id}")
        self.schedule_appointment_reminders(appointment_id)
        return appointment

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def regenerate_reminders(self, appointment_id: str) -> list[ScheduledReminder]:
        """
        Rebuild reminders from the appointment's current time and preferences.

        Confirmed appointments get one pending reminder per lead time that is
        still in the future; anything else only loses its pending reminders.
        Raises on failure.
        """

        def rebuild(db: Session) -> list[ScheduledReminder]:
            appointment = self.repo.get_appointment(db, appointment_id)
            if appointment is None:
                raise NotFound("Appointment", appointment_id)
            if appointment.status != "confirmed":
                self.repo.delete_reminders(db, appointment_id, pending_only=True)
                return []

            self.repo.delete_reminders(db, appointment_id)
            now = self.calendar.now()
            reminders = []
            for hours in appointment.reminder_preferences or []:
                reminder_time = appointment.appointment_time - timedelta(hours=hours)
                if reminder_time <= now:
                    continue
                reminder = ScheduledReminder(
                    id=generate_id(),
                    appointment_id=appointment.id,
                    customer_id=appointment.customer_id,
                    reminder_time=reminder_time,
                    type="appointment",
                    method=appointment.contact_method,
                    status="pending",
                    created_at=now,
                )
                db.add(reminder)
                reminders.append(reminder)
            db.flush()
            return reminders

        return self._transaction(rebuild, f"reminders for appointment {appointment_id}")

    def schedule_appointment_reminders(self, appointment_id: str) -> bool:
        """Best-effort reminder regeneration; a failure is logged and queued for retry"""
        try:
            reminders = self.regenerate_reminders(appointment_id)
            logger.debug(f"⏰ {len(reminders)} reminders scheduled for appointment {appointment_id}")
            return True
        except Exception as e:
            logger.error(f"❌ Reminder regeneration failed for appointment {appointment_id}: {e}")
            self.failed_side_effects.append(("regenerate_reminders_task", (appointment_id,)))
            return False

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_appointment_analytics(self, start_date: date, end_date: date) -> dict:
        return SchedulingAnalytics(self.db, self.config).get_appointment_analytics(start_date, end_date)
