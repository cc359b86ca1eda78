"""
Scheduling models - production tasks, appointments and their derived records
All datetimes are naive wall-clock times in the configured scheduler time zone.
"""

import uuid

from sqlalchemy import JSON, Column, Date, DateTime, Float, Integer, String, Text
from sqlalchemy.sql import func

from .database import Base


def generate_id():
    return str(uuid.uuid4())


class ScheduledTask(Base):
    """One production unit of work tied to a framing order"""

    __tablename__ = "scheduled_tasks"

    id = Column(String(36), primary_key=True, default=generate_id)
    order_id = Column(String(64), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)  # includes the task buffer
    complexity = Column(Integer, nullable=False)  # 1 simple, 2 medium, 3 complex
    estimated_hours = Column(Float, nullable=False)
    actual_hours = Column(Float, nullable=True)
    # scheduled, in_progress, completed, delayed, cancelled
    status = Column(String(20), default="scheduled", nullable=False, index=True)
    priority = Column(Integer, default=5, nullable=False)  # lower = more urgent
    deadline = Column(DateTime, nullable=True)
    dependencies = Column(JSON, default=list, nullable=False)  # task or order ids
    customer_preferences = Column(JSON, default=list, nullable=False)  # preferred hours
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Appointment(Base):
    """A customer reservation on the shared calendar"""

    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_id)
    customer_id = Column(String(64), nullable=False, index=True)
    # consultation, pickup, delivery, frame_fitting, custom_consultation
    type = Column(String(40), nullable=False)
    appointment_time = Column(DateTime, nullable=False, index=True)
    appointment_end = Column(DateTime, nullable=False)
    duration = Column(Float, nullable=False)  # hours
    # confirmed, completed, cancelled, no_show
    status = Column(String(20), default="confirmed", nullable=False, index=True)
    notes = Column(Text, nullable=True)
    contact_method = Column(String(50), default="email", nullable=False)  # email, sms, discord
    reminder_preferences = Column(JSON, default=list, nullable=False)  # lead times in hours
    confirmation_number = Column(String(20), nullable=True, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class DailyWorkload(Base):
    """Cached workload per date - always recomputable from tasks and appointments"""

    __tablename__ = "daily_workload_cache"

    date = Column(Date, primary_key=True)
    total_production_hours = Column(Float, nullable=False, default=0)
    total_appointment_hours = Column(Float, nullable=False, default=0)
    total_scheduled_hours = Column(Float, nullable=False, default=0)
    utilization = Column(Float, nullable=False, default=0)
    task_count = Column(Integer, nullable=False, default=0)
    appointment_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False)


class AppointmentHistory(Base):
    """Append-only audit trail of appointment changes"""

    __tablename__ = "appointment_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    appointment_id = Column(String(36), nullable=False, index=True)
    # created, rescheduled, cancelled, completed, no_show
    action = Column(String(20), nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    reason = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False)


class ScheduledReminder(Base):
    """Reminder derived from an appointment, handed to the notification service when due"""

    __tablename__ = "scheduled_reminders"

    id = Column(String(36), primary_key=True, default=generate_id)
    appointment_id = Column(String(36), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False)
    reminder_time = Column(DateTime, nullable=False, index=True)
    type = Column(String(20), default="appointment", nullable=False)
    method = Column(String(20), nullable=False)
    status = Column(String(20), default="pending", nullable=False, index=True)  # pending, sent, failed
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)


class CalendarDayLock(Base):
    """One row per calendar day; writers bump `version` to serialize conflict checks"""

    __tablename__ = "calendar_day_locks"

    date = Column(Date, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
