from collections.abc import Generator
from datetime import datetime, timedelta
from itertools import count

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from frame_scheduler import models  # noqa: F401
from frame_scheduler.database import Base, build_engine
from frame_scheduler.domain.scheduling.appointments import AppointmentBookingService
from frame_scheduler.domain.scheduling.calendar import Calendar, SchedulingConfig
from frame_scheduler.domain.scheduling.production import ProductionScheduler
from frame_scheduler.domain.scheduling.workload import WorkloadEngine
from frame_scheduler.models import Appointment, ScheduledTask, generate_id

# Monday 9am, shop local time
NOW = datetime(2025, 11, 3, 9, 0)


class FrozenClock:
    """Callable clock pinned to a settable wall-clock time"""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def config(clock: FrozenClock) -> SchedulingConfig:
    return SchedulingConfig(clock=clock, retry_base_delay=0)


@pytest.fixture
def calendar(config: SchedulingConfig) -> Calendar:
    return Calendar(config)


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test"""
    test_engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db(engine) -> Generator[Session, None, None]:
    session = sessionmaker(autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def workload(db: Session, config: SchedulingConfig) -> WorkloadEngine:
    return WorkloadEngine(db, config)


@pytest.fixture
def scheduler(db: Session, config: SchedulingConfig, workload: WorkloadEngine) -> ProductionScheduler:
    return ProductionScheduler(db, config, workload)


@pytest.fixture
def booking(db: Session, config: SchedulingConfig, workload: WorkloadEngine) -> AppointmentBookingService:
    return AppointmentBookingService(db, config, workload)


@pytest.fixture
def make_task(db: Session):
    """Insert a task row directly, bypassing the scheduler"""
    sequence = count(1)

    def _make(start: datetime, hours: float, status: str = "scheduled", **fields) -> ScheduledTask:
        task = ScheduledTask(
            id=generate_id(),
            order_id=fields.pop("order_id", f"ORD-{next(sequence):03d}"),
            start_time=start,
            end_time=start + timedelta(hours=hours, minutes=15),
            complexity=fields.pop("complexity", 2),
            estimated_hours=hours,
            status=status,
            priority=fields.pop("priority", 5),
            dependencies=fields.pop("dependencies", []),
            customer_preferences=[],
            created_at=NOW,
            updated_at=NOW,
            **fields,
        )
        db.add(task)
        db.commit()
        return task

    return _make


@pytest.fixture
def make_appointment(db: Session, config: SchedulingConfig):
    """Insert an appointment row directly, bypassing the booking checks"""

    def _make(type: str, start: datetime, status: str = "confirmed", **fields) -> Appointment:
        type_config = config.appointment_types[type]
        appointment = Appointment(
            id=generate_id(),
            customer_id=fields.pop("customer_id", "CUST-1"),
            type=type,
            appointment_time=start,
            appointment_end=start + type_config.length,
            duration=type_config.duration,
            status=status,
            contact_method=fields.pop("contact_method", "email"),
            reminder_preferences=fields.pop("reminder_preferences", [24, 2]),
            created_at=NOW,
            updated_at=NOW,
            **fields,
        )
        db.add(appointment)
        db.commit()
        return appointment

    return _make
