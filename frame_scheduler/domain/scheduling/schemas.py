"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, field_validator

CONTACT_METHODS = ("email", "sms", "discord")
APPOINTMENT_STATUS_UPDATES = ("completed", "no_show")


class ScheduleOrderRequest(BaseModel):
    """Schema for placing a framing order on the production calendar"""

    orderId: str
    complexity: Union[str, int] = "medium"
    estimatedHours: Optional[float] = None
    priority: Optional[int] = None
    deadline: Optional[datetime] = None
    dependencies: list[str] = []
    customerPreferences: list[int] = []

    @field_validator("orderId")
    @classmethod
    def validate_order_id(cls, v):
        if not v or not v.strip():
            raise ValueError("orderId is required")
        return v.strip()

    @field_validator("customerPreferences")
    @classmethod
    def validate_preferences(cls, v):
        for hour in v:
            if hour < 0 or hour > 23:
                raise ValueError("preferred hours must be between 0 and 23")
        return v


class ScheduledTaskResponse(BaseModel):
    """Schema for scheduled task response"""

    id: str
    orderId: str
    startTime: datetime
    endTime: datetime
    complexity: int
    estimatedHours: float
    actualHours: Optional[float] = None
    status: str
    priority: int
    deadline: Optional[datetime] = None
    dependencies: list[str] = []

    @classmethod
    def from_task(cls, task) -> "ScheduledTaskResponse":
        return cls(
            id=task.id,
            orderId=task.order_id,
            startTime=task.start_time,
            endTime=task.end_time,
            complexity=task.complexity,
            estimatedHours=task.estimated_hours,
            actualHours=task.actual_hours,
            status=task.status,
            priority=task.priority,
            deadline=task.deadline,
            dependencies=task.dependencies or [],
        )


class TaskProgressRequest(BaseModel):
    actualHours: Optional[float] = None
    status: Optional[str] = None


class BookAppointmentRequest(BaseModel):
    """Schema for booking an appointment"""

    customerId: str
    type: str
    appointmentTime: datetime
    notes: Optional[str] = None
    contactMethod: str = "email"
    # Either a list of lead times in hours or {"hours": [...]}
    reminderPreferences: Optional[Union[list[float], dict]] = None

    @field_validator("customerId")
    @classmethod
    def validate_customer_id(cls, v):
        if not v or not v.strip():
            raise ValueError("customerId is required")
        return v.strip()

    @field_validator("contactMethod")
    @classmethod
    def validate_contact_method(cls, v):
        v = (v or "email").lower()
        if v not in CONTACT_METHODS:
            raise ValueError(f"contactMethod must be one of {', '.join(CONTACT_METHODS)}")
        return v

    @field_validator("reminderPreferences")
    @classmethod
    def validate_reminder_preferences(cls, v):
        if v is None:
            return None
        hours = v.get("hours", []) if isinstance(v, dict) else v
        result = []
        for value in hours:
            value = float(value)
            if value <= 0:
                raise ValueError("reminder lead times must be positive")
            result.append(value)
        return result


class RescheduleRequest(BaseModel):
    newDateTime: datetime
    reason: Optional[str] = None


class CancelAppointmentRequest(BaseModel):
    reason: Optional[str] = None


class AppointmentStatusRequest(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in APPOINTMENT_STATUS_UPDATES:
            raise ValueError(f"status must be one of {', '.join(APPOINTMENT_STATUS_UPDATES)}")
        return v


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    id: str
    customer_id: str
    type: str
    appointment_time: datetime
    appointment_end: datetime
    duration: float
    status: str
    notes: Optional[str] = None
    contact_method: str
    reminder_preferences: list[float] = []
    confirmation_number: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WorkloadResponse(BaseModel):
    """Schema for a day's workload"""

    date: date
    total_production_hours: float
    total_appointment_hours: float
    total_scheduled_hours: float
    utilization: float
    task_count: int
    appointment_count: int
    category: str

    class Config:
        from_attributes = True
