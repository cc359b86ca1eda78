"""Scheduling router - FastAPI endpoints for production and appointment scheduling"""

import asyncio
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...config import default_scheduling_config
from ...database import get_db
from ...worker import enqueue_side_effects
from .appointments import AppointmentBookingService
from .calendar import SchedulingConfig
from .exceptions import ValidationError
from .production import ProductionScheduler
from .schemas import (
    AppointmentResponse,
    AppointmentStatusRequest,
    BookAppointmentRequest,
    CancelAppointmentRequest,
    RescheduleRequest,
    ScheduledTaskResponse,
    ScheduleOrderRequest,
    TaskProgressRequest,
    WorkloadResponse,
)
from .workload import WorkloadEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling", tags=["Scheduling"])


def get_scheduling_config() -> SchedulingConfig:
    """Dependency for the active scheduling configuration"""
    return default_scheduling_config()


def get_workload_engine(
    db: Session = Depends(get_db), config: SchedulingConfig = Depends(get_scheduling_config)
) -> WorkloadEngine:
    return WorkloadEngine(db, config)


def get_production_scheduler(
    db: Session = Depends(get_db),
    config: SchedulingConfig = Depends(get_scheduling_config),
    workload: WorkloadEngine = Depends(get_workload_engine),
) -> ProductionScheduler:
    """Dependency injection for ProductionScheduler"""
    return ProductionScheduler(db, config, workload)


def get_booking_service(
    db: Session = Depends(get_db),
    config: SchedulingConfig = Depends(get_scheduling_config),
    workload: WorkloadEngine = Depends(get_workload_engine),
) -> AppointmentBookingService:
    """Dependency injection for AppointmentBookingService"""
    return AppointmentBookingService(db, config, workload)


def _date_range(start_date: Optional[date], end_date: Optional[date]) -> tuple[date, date]:
    if start_date is None or end_date is None:
        raise ValidationError("startDate", "startDate and endDate are required")
    return start_date, end_date


async def _flush_side_effects(workload: WorkloadEngine) -> None:
    if workload.failed_side_effects:
        await enqueue_side_effects(workload.failed_side_effects)
        workload.failed_side_effects.clear()


# ============================================================================
# PRODUCTION SCHEDULING
# ============================================================================


@router.post("/schedule/order")
async def schedule_order(
    data: ScheduleOrderRequest,
    scheduler: ProductionScheduler = Depends(get_production_scheduler),
):
    """Place an order's production task in the earliest feasible slot"""
    task = await asyncio.to_thread(scheduler.schedule_order, data)
    await _flush_side_effects(scheduler.workload)
    return {"success": True, "task": ScheduledTaskResponse.from_task(task)}


@router.put("/schedule/task/{order_id}")
async def update_task_progress(
    order_id: str,
    data: TaskProgressRequest,
    scheduler: ProductionScheduler = Depends(get_production_scheduler),
):
    """Record actual hours and status for an order's task"""
    eligible = await asyncio.to_thread(
        scheduler.update_task_progress, order_id, data.actualHours, data.status
    )
    await _flush_side_effects(scheduler.workload)
    return {"success": True, "eligibleDependents": eligible}


@router.post("/schedule/optimize")
async def optimize_schedule(scheduler: ProductionScheduler = Depends(get_production_scheduler)):
    """Re-pack scheduled tasks into the earliest feasible slots"""
    summary = await asyncio.to_thread(scheduler.optimize_schedule)
    await _flush_side_effects(scheduler.workload)
    return {"success": True, "summary": summary}


# ============================================================================
# APPOINTMENTS
# ============================================================================


@router.get("/appointments/available")
async def get_available_slots(
    type: str = Query(..., description="Appointment type"),
    preferred_date: Optional[date] = Query(
        None, alias="date", description="First day to search (default tomorrow)"
    ),
    daysAhead: int = Query(14, ge=1, le=90),
    service: AppointmentBookingService = Depends(get_booking_service),
):
    """Available slots sorted by recommendation"""
    slots = await asyncio.to_thread(service.get_available_slots, type, preferred_date, daysAhead)
    return {"success": True, "slots": [slot.to_dict() for slot in slots]}


@router.get("/appointments/optimal")
async def get_optimal_times(
    type: str = Query(..., description="Appointment type"),
    days: int = Query(7, ge=1, le=90),
    service: AppointmentBookingService = Depends(get_booking_service),
):
    """Top recommended slots with their benefits"""
    recommendations = await asyncio.to_thread(service.get_optimal_appointment_times, type, days)
    return {"success": True, "recommendations": recommendations}


@router.post("/appointments/book")
async def book_appointment(
    data: BookAppointmentRequest,
    service: AppointmentBookingService = Depends(get_booking_service),
):
    """Book an appointment after re-checking the slot"""
    result = await asyncio.to_thread(service.book_appointment, data)
    await _flush_side_effects(service.workload)
    return {
        "success": True,
        "appointmentId": result["appointmentId"],
        "confirmationNumber": result["confirmationNumber"],
        "appointment": AppointmentResponse.model_validate(result["appointment"]),
        "workloadImpact": result["workloadImpact"],
    }


@router.put("/appointments/{appointment_id}/reschedule")
async def reschedule_appointment(
    appointment_id: str,
    data: RescheduleRequest,
    service: AppointmentBookingService = Depends(get_booking_service),
):
    """Move an appointment to a new time"""
    result = await asyncio.to_thread(
        service.reschedule_appointment, appointment_id, data.newDateTime, data.reason
    )
    await _flush_side_effects(service.workload)
    return result


@router.post("/appointments/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: str,
    data: CancelAppointmentRequest,
    service: AppointmentBookingService = Depends(get_booking_service),
):
    """Cancel an appointment and release its slot"""
    appointment = await asyncio.to_thread(service.cancel_appointment, appointment_id, data.reason)
    await _flush_side_effects(service.workload)
    return {"success": True, "appointment": AppointmentResponse.model_validate(appointment)}


@router.put("/appointments/{appointment_id}/status")
async def update_appointment_status(
    appointment_id: str,
    data: AppointmentStatusRequest,
    service: AppointmentBookingService = Depends(get_booking_service),
):
    """Record an appointment outcome (completed or no_show)"""
    appointment = await asyncio.to_thread(
        service.update_appointment_status, appointment_id, data.status
    )
    await _flush_side_effects(service.workload)
    return {"success": True, "appointment": AppointmentResponse.model_validate(appointment)}


# ============================================================================
# WORKLOAD & ANALYTICS
# ============================================================================


@router.get("/workload/daily/{day}")
async def get_daily_workload(
    day: date,
    workload: WorkloadEngine = Depends(get_workload_engine),
):
    """Workload for one day, from the cache when present"""
    result = await asyncio.to_thread(workload.get_cached_workload, day)
    await _flush_side_effects(workload)
    return {
        "success": True,
        "workload": WorkloadResponse(
            date=result.date,
            total_production_hours=result.total_production_hours,
            total_appointment_hours=result.total_appointment_hours,
            total_scheduled_hours=result.total_scheduled_hours,
            utilization=result.utilization,
            task_count=result.task_count,
            appointment_count=result.appointment_count,
            category=workload.categorize_workload(result.utilization),
        ),
    }


@router.get("/analytics/schedule")
async def get_schedule_analytics(
    startDate: Optional[date] = Query(None),
    endDate: Optional[date] = Query(None),
    scheduler: ProductionScheduler = Depends(get_production_scheduler),
):
    start, end = _date_range(startDate, endDate)
    analytics = await asyncio.to_thread(scheduler.get_schedule_analytics, start, end)
    return {"success": True, "analytics": analytics}


@router.get("/analytics/appointments")
async def get_appointment_analytics(
    startDate: Optional[date] = Query(None),
    endDate: Optional[date] = Query(None),
    service: AppointmentBookingService = Depends(get_booking_service),
):
    start, end = _date_range(startDate, endDate)
    analytics = await asyncio.to_thread(service.get_appointment_analytics, start, end)
    return {"success": True, "analytics": analytics}
