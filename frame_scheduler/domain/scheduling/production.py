"""
Production task scheduler

Places framing orders onto the shared calendar. The search walks forward
from now in slot-interval steps across working days only and keeps a window
when it overlaps no active task or appointment, starts after every
dependency ends, and ends before the deadline. Windows that would push the
day past full capacity are only used when nothing else fits.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...models import ScheduledTask, generate_id
from .analytics import SchedulingAnalytics
from .calendar import Calendar, SchedulingConfig, overlaps
from .exceptions import DependencyUnmet, NotFound, SchedulingConflict, ValidationError
from .repository import SchedulingRepository
from .schemas import ScheduleOrderRequest
from .transactions import run_in_transaction
from .workload import WorkloadEngine, summarize_day

logger = logging.getLogger(__name__)

TASK_STATUSES = ("scheduled", "in_progress", "completed", "delayed", "cancelled")
TERMINAL_TASK_STATUSES = ("completed", "cancelled")


@dataclass(frozen=True)
class Placement:
    start: datetime
    end: datetime
    overloaded: bool
    day_utilization: float
    preferred: bool

    @property
    def sort_key(self):
        # Earliest day first; within that day a preferred hour beats an earlier start
        return (
            self.overloaded,
            self.start.date(),
            self.day_utilization,
            not self.preferred,
            self.start,
        )


class ProductionScheduler:
    """Service for placing, progressing and re-packing production tasks"""

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

    def _transaction(self, operation, description: str):
        return run_in_transaction(
            self.db,
            operation,
            attempts=self.config.retry_attempts,
            base_delay=self.config.retry_base_delay,
            description=description,
        )

    # ------------------------------------------------------------------
    # Slot search
    # ------------------------------------------------------------------

    def _dependencies_ready_at(self, db: Session, dependencies: Iterable[str]) -> Optional[datetime]:
        """Latest end time among unfinished dependencies"""
        ready_at = None
        for dependency_id in dependencies:
            task = self.repo.find_dependency(db, dependency_id)
            if task is None:
                raise DependencyUnmet(dependency_id, "unknown")
            if task.status == "cancelled":
                raise DependencyUnmet(dependency_id, "cancelled")
            if task.status == "completed":
                continue
            if ready_at is None or task.end_time > ready_at:
                ready_at = task.end_time
        return ready_at

    def _day_placements(
        self,
        day: date,
        hours: float,
        not_before: datetime,
        deadline: datetime,
        preferred_hours: set,
        exclude_ids: Iterable[str] = (),
    ) -> Optional[Placement]:
        """Best placement on one day, or None"""
        tasks = self.repo.day_tasks(self.db, day, exclude_ids)
        appointments = self.repo.day_appointments(self.db, day)
        busy = [(t.start_time, t.end_time) for t in tasks]
        busy.extend(self.calendar.reserved_interval(a) for a in appointments)

        load = summarize_day(day, tasks, appointments, self.config.max_daily_hours)
        post_utilization = (load.total_scheduled_hours + hours) / self.config.max_daily_hours
        overloaded = post_utilization > self.config.thresholds.heavy

        length = timedelta(hours=hours) + self.calendar.task_buffer
        best = None
        for start in self.calendar.candidate_starts(day, length, not_before):
            end = start + length
            if end > deadline:
                break
            if any(overlaps(start, end, b_start, b_end) for b_start, b_end in busy):
                continue
            placement = Placement(
                start=start,
                end=end,
                overloaded=overloaded,
                day_utilization=load.utilization,
                preferred=start.hour in preferred_hours,
            )
            if best is None or placement.sort_key < best.sort_key:
                best = placement
        return best

    def find_slot(
        self,
        hours: float,
        deadline: datetime,
        not_before: datetime,
        preferred_hours: Iterable[int] = (),
        exclude_ids: Iterable[str] = (),
    ) -> Placement:
        """
        Earliest feasible placement before `deadline`; raises SchedulingConflict.

        Earliness is decided per day: the first working day with a window that
        keeps the day within capacity wins. Inside that day a window starting
        in one of the customer's preferred hours is taken over an earlier one,
        otherwise the earliest window. Preferences never move work to a later day.
        """
        preferred = set(preferred_hours or ())
        exclude_ids = list(exclude_ids)
        fallback = None
        day = not_before.date()
        while day <= deadline.date():
            if self.calendar.is_working_day(day):
                placement = self._day_placements(
                    day, hours, not_before, deadline, preferred, exclude_ids
                )
                if placement is not None:
                    if not placement.overloaded:
                        return placement
                    if fallback is None:
                        fallback = placement
            day += timedelta(days=1)
        if fallback is not None:
            logger.warning(
                f"⚠️ Only overloaded days available before {deadline}, using {fallback.start}"
            )
            return fallback
        raise SchedulingConflict(
            f"No feasible slot for {hours}h of work before {deadline.isoformat()}",
            {"estimatedHours": hours, "deadline": deadline.isoformat()},
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def schedule_order(self, order: ScheduleOrderRequest) -> ScheduledTask:
        """Create a scheduled task for an order in the earliest feasible slot"""
        profile = self.calendar.complexity_profile(order.complexity)
        hours = order.estimatedHours if order.estimatedHours is not None else profile.max_hours
        if hours <= 0:
            raise ValidationError("estimatedHours", "must be positive", hours)
        priority = order.priority if order.priority is not None else profile.default_priority
        now = self.calendar.now()
        if order.deadline is not None:
            deadline = self.calendar.localize(order.deadline)
        else:
            deadline = now + timedelta(days=self.config.horizon_days)
        if deadline <= now:
            raise ValidationError("deadline", "must be in the future", deadline.isoformat())
        dependencies = list(order.dependencies or [])
        if order.orderId in dependencies:
            raise ValidationError("dependencies", "an order cannot depend on itself", order.orderId)
        preferences = [int(h) for h in order.customerPreferences or []]

        logger.info(f"📥 Scheduling order {order.orderId} ({profile.name}, {hours}h)")

        def place(db: Session) -> ScheduledTask:
            existing = self.repo.get_task_by_order(db, order.orderId)
            if existing is not None and existing.status != "cancelled":
                raise ValidationError("orderId", "order already has a scheduled task", order.orderId)

            ready_at = self._dependencies_ready_at(db, dependencies)
            not_before = max(now, ready_at) if ready_at else now

            placement = self.find_slot(hours, deadline, not_before, preferences)
            # Serialize with other writers on that day, then confirm the window is still free
            self.repo.lock_day(db, placement.start.date())
            confirmed = self._day_placements(
                placement.start.date(), hours, placement.start, placement.end, set()
            )
            if confirmed is None or confirmed.start != placement.start:
                placement = self.find_slot(hours, deadline, not_before, preferences)
                self.repo.lock_day(db, placement.start.date())

            task = ScheduledTask(
                id=generate_id(),
                order_id=order.orderId,
                start_time=placement.start,
                end_time=placement.end,
                complexity=profile.level,
                estimated_hours=hours,
                status="scheduled",
                priority=priority,
                deadline=deadline,
                dependencies=dependencies,
                customer_preferences=preferences,
                created_at=now,
                updated_at=now,
            )
            db.add(task)
            db.flush()
            return task

        task = self._transaction(place, f"schedule order {order.orderId}")
        logger.info(f"✅ Order {order.orderId} scheduled {task.start_time} → {task.end_time}")
        self.workload.update_workload_cache(task.start_time)
        return task

    def update_task_progress(
        self, order_id: str, actual_hours: Optional[float], status: Optional[str]
    ) -> list[str]:
        """
        Record progress for an order's task.

        Returns the ids of scheduled tasks that depend on this one and became
        eligible for re-evaluation; they are not moved automatically.
        """
        if status is not None and status not in TASK_STATUSES:
            raise ValidationError("status", f"must be one of {', '.join(TASK_STATUSES)}", status)
        if actual_hours is not None and actual_hours < 0:
            raise ValidationError("actualHours", "must not be negative", actual_hours)

        def record(db: Session) -> tuple[ScheduledTask, list[str]]:
            task = self.repo.get_task_by_order(db, order_id)
            if task is None:
                raise NotFound("Scheduled task", order_id)
            if status and task.status in TERMINAL_TASK_STATUSES and status != task.status:
                raise ValidationError(
                    "status", f"task is already {task.status}", status
                )
            if actual_hours is not None:
                task.actual_hours = actual_hours
            eligible = []
            if status and status != task.status:
                logger.info(f"🔄 Task for order {order_id}: {task.status} → {status}")
                task.status = status
                if status in TERMINAL_TASK_STATUSES:
                    eligible = [d.id for d in self.repo.dependent_tasks(db, task)]
            task.updated_at = self.calendar.now()
            db.flush()
            return task, eligible

        task, eligible = self._transaction(record, f"progress update for order {order_id}")
        if eligible:
            logger.info(f"📋 Dependents of order {order_id} eligible for re-evaluation: {eligible}")
        self.workload.update_workload_cache(task.start_time)
        return eligible

    def _packing_order(self, tasks: list[ScheduledTask]) -> list[ScheduledTask]:
        """Priority then deadline order, with dependencies always placed first"""
        far_future = datetime.max

        def key(task: ScheduledTask):
            return (task.priority, task.deadline or far_future, task.created_at or far_future, task.id)

        ordered = sorted(tasks, key=key)
        lookup = {}
        for task in ordered:
            lookup.setdefault(task.id, task)
            lookup.setdefault(task.order_id, task)

        result: list[ScheduledTask] = []
        visiting: set = set()
        placed: set = set()

        def visit(task: ScheduledTask):
            if task.id in placed or task.id in visiting:
                return
            visiting.add(task.id)
            for dependency_id in task.dependencies or []:
                dependency = lookup.get(dependency_id)
                if dependency is not None:
                    visit(dependency)
            visiting.discard(task.id)
            placed.add(task.id)
            result.append(task)

        for task in ordered:
            visit(task)
        return result

    def optimize_schedule(self) -> dict:
        """
        Re-pack every `scheduled` task into the earliest feasible slot.

        In-progress, completed and delayed tasks stay where they are. A task
        that has not been re-packed yet keeps blocking its current interval,
        so a move only ever lands in space that is free at that moment and
        tasks that cannot be re-placed keep their slot without overlap.
        Passes repeat until nothing moves, so running it again without
        intervening changes produces the same arrangement.
        """
        now = self.calendar.now()
        touched_days: set = set()

        def repack(db: Session) -> dict:
            tasks = self.repo.movable_tasks(db)
            if not tasks:
                return {"moved": 0, "unchanged": 0, "unplaceable": 0}

            latest = max(
                [t.deadline for t in tasks if t.deadline]
                + [now + timedelta(days=self.config.horizon_days)]
            )
            for day in self.calendar.working_days(now.date(), latest.date() + timedelta(days=1)):
                self.repo.lock_day(db, day)

            ordered = self._packing_order(tasks)
            moved: set = set()
            unplaceable: set = set()
            for _ in range(len(ordered) + 1):
                unplaceable = set()
                moves = 0
                for task in ordered:
                    deadline = task.deadline or now + timedelta(days=self.config.horizon_days)
                    try:
                        ready_at = self._dependencies_ready_at(db, task.dependencies or [])
                        not_before = max(now, ready_at) if ready_at else now
                        placement = self.find_slot(
                            task.estimated_hours,
                            deadline,
                            not_before,
                            task.customer_preferences or [],
                            exclude_ids=[task.id],
                        )
                    except (SchedulingConflict, DependencyUnmet) as e:
                        logger.warning(
                            f"⚠️ Keeping task for order {task.order_id} in place: {e.message}"
                        )
                        unplaceable.add(task.id)
                        continue

                    if placement.start == task.start_time:
                        continue
                    touched_days.update({task.start_time.date(), placement.start.date()})
                    task.start_time = placement.start
                    task.end_time = placement.end
                    task.updated_at = now
                    db.flush()
                    moved.add(task.id)
                    moves += 1
                if not moves:
                    break

            unplaceable -= moved
            return {
                "moved": len(moved),
                "unchanged": len(ordered) - len(moved) - len(unplaceable),
                "unplaceable": len(unplaceable),
            }

        summary = self._transaction(repack, "schedule optimization")
        logger.info(f"✅ Schedule optimized: {summary}")
        for day in sorted(touched_days):
            self.workload.update_workload_cache(day)
        return summary

    def get_schedule_analytics(self, start_date: date, end_date: date) -> dict:
        return SchedulingAnalytics(self.db, self.config).get_schedule_analytics(start_date, end_date)
