"""Production task scheduler"""

from datetime import datetime

import pytest

from frame_scheduler.domain.scheduling.exceptions import (
    DependencyUnmet,
    NotFound,
    SchedulingConflict,
    ValidationError,
)
from frame_scheduler.domain.scheduling.repository import SchedulingRepository
from frame_scheduler.domain.scheduling.schemas import ScheduleOrderRequest


def order(order_id, **fields):
    return ScheduleOrderRequest(orderId=order_id, **fields)


def arrangement(db):
    tasks = SchedulingRepository.tasks_between(
        db, datetime(2025, 11, 1), datetime(2026, 2, 1)
    )
    return sorted((t.order_id, t.start_time, t.end_time, t.status) for t in tasks)


def test_simple_order_uses_complexity_defaults(scheduler):
    task = scheduler.schedule_order(order("ORD-1", complexity="simple"))

    assert task.estimated_hours == 2.0
    assert task.priority == 5
    assert task.complexity == 1
    assert task.status == "scheduled"
    # Clock is Monday 09:00, so the first free half hour is now
    assert task.start_time == datetime(2025, 11, 3, 9, 0)
    assert task.end_time == datetime(2025, 11, 3, 11, 15)


def test_explicit_hours_and_priority_win(scheduler):
    task = scheduler.schedule_order(
        order("ORD-1", complexity="complex", estimatedHours=1.5, priority=1)
    )
    assert task.estimated_hours == 1.5
    assert task.priority == 1
    assert task.complexity == 3


def test_orders_do_not_overlap(scheduler):
    first = scheduler.schedule_order(order("ORD-1", complexity="simple"))
    second = scheduler.schedule_order(order("ORD-2", complexity="medium"))

    assert second.start_time >= first.end_time
    assert second.start_time == datetime(2025, 11, 3, 11, 30)


def test_order_avoids_appointments(scheduler, make_appointment):
    make_appointment("consultation", datetime(2025, 11, 3, 10, 0))

    task = scheduler.schedule_order(order("ORD-1", estimatedHours=2))

    # Consultation holds 10:00-11:15 including its buffer
    assert task.start_time == datetime(2025, 11, 3, 11, 30)


def test_customer_preferred_hour_breaks_ties_within_the_day(scheduler):
    task = scheduler.schedule_order(
        order("ORD-1", complexity="simple", customerPreferences=[14])
    )
    assert task.start_time == datetime(2025, 11, 3, 14, 0)


def test_overloading_day_is_skipped_when_a_later_day_fits(scheduler, make_task):
    make_task(datetime(2025, 11, 3, 8, 0), 6)

    task = scheduler.schedule_order(order("ORD-1", estimatedHours=2.25))

    assert task.start_time == datetime(2025, 11, 4, 8, 0)


def test_overloaded_day_is_used_when_nothing_else_fits(scheduler, make_task):
    make_task(datetime(2025, 11, 3, 8, 0), 6)

    task = scheduler.schedule_order(
        order("ORD-1", estimatedHours=2.25, deadline=datetime(2025, 11, 3, 17, 0))
    )

    assert task.start_time == datetime(2025, 11, 3, 14, 30)


def test_task_never_ends_after_deadline(scheduler, make_task):
    make_task(datetime(2025, 11, 4, 8, 0), 7)
    deadline = datetime(2025, 11, 5, 12, 0)

    task = scheduler.schedule_order(order("ORD-1", complexity="medium", deadline=deadline))

    assert task.end_time <= deadline
    assert task.deadline == deadline


def test_no_slot_before_deadline_is_a_scheduling_conflict(scheduler, db):
    with pytest.raises(SchedulingConflict):
        scheduler.schedule_order(
            order("ORD-1", complexity="medium", deadline=datetime(2025, 11, 3, 12, 0))
        )
    assert arrangement(db) == []


def test_weekend_is_skipped(scheduler, clock):
    clock.current = datetime(2025, 11, 7, 16, 0)  # Friday afternoon

    task = scheduler.schedule_order(order("ORD-1", complexity="simple"))

    assert task.start_time == datetime(2025, 11, 10, 8, 0)


def test_dependency_must_finish_first(scheduler):
    frame = scheduler.schedule_order(order("ORD-1", complexity="simple"))
    mat = scheduler.schedule_order(
        order("ORD-2", complexity="simple", dependencies=["ORD-1"], customerPreferences=[8, 9])
    )
    assert mat.start_time >= frame.end_time
    assert mat.dependencies == ["ORD-1"]


def test_completed_dependency_does_not_constrain(scheduler, make_task):
    done = make_task(datetime(2025, 11, 3, 8, 0), 1, status="completed")

    task = scheduler.schedule_order(order("ORD-2", complexity="simple", dependencies=[done.id]))

    assert task.start_time == datetime(2025, 11, 3, 9, 0)


def test_unknown_dependency(scheduler):
    with pytest.raises(DependencyUnmet) as exc:
        scheduler.schedule_order(order("ORD-2", dependencies=["ORD-404"]))
    assert exc.value.details == {"dependency": "ORD-404", "reason": "unknown"}


def test_cancelled_dependency(scheduler, make_task):
    make_task(datetime(2025, 11, 3, 8, 0), 1, status="cancelled", order_id="ORD-1")
    with pytest.raises(DependencyUnmet):
        scheduler.schedule_order(order("ORD-2", dependencies=["ORD-1"]))


def test_invalid_orders(scheduler):
    with pytest.raises(ValidationError):
        scheduler.schedule_order(order("ORD-1", complexity="epic"))
    with pytest.raises(ValidationError):
        scheduler.schedule_order(order("ORD-1", estimatedHours=0))
    with pytest.raises(ValidationError):
        scheduler.schedule_order(order("ORD-1", deadline=datetime(2025, 11, 1, 12, 0)))
    with pytest.raises(ValidationError):
        scheduler.schedule_order(order("ORD-1", dependencies=["ORD-1"]))


def test_order_cannot_be_scheduled_twice(scheduler):
    scheduler.schedule_order(order("ORD-1"))
    with pytest.raises(ValidationError):
        scheduler.schedule_order(order("ORD-1"))


def test_scheduling_refreshes_workload_cache(scheduler, db):
    task = scheduler.schedule_order(order("ORD-1", complexity="medium"))

    row = SchedulingRepository.get_workload_row(db, task.start_time.date())
    assert row.total_production_hours == 4.0
    assert row.utilization == pytest.approx(0.5)


def test_progress_for_unknown_order(scheduler):
    with pytest.raises(NotFound):
        scheduler.update_task_progress("ORD-404", 1.0, "in_progress")


def test_progress_records_hours_and_status(scheduler, db):
    scheduler.schedule_order(order("ORD-1", complexity="simple"))

    eligible = scheduler.update_task_progress("ORD-1", 1.5, "in_progress")

    task = SchedulingRepository.get_task_by_order(db, "ORD-1")
    assert eligible == []
    assert task.status == "in_progress"
    assert task.actual_hours == 1.5


def test_completion_makes_dependents_eligible(scheduler):
    scheduler.schedule_order(order("ORD-1", complexity="simple"))
    dependent = scheduler.schedule_order(order("ORD-2", dependencies=["ORD-1"]))

    eligible = scheduler.update_task_progress("ORD-1", 2.25, "completed")

    assert eligible == [dependent.id]
    assert dependent.start_time >= datetime(2025, 11, 3, 11, 15)


def test_cancelling_frees_workload(scheduler, db):
    task = scheduler.schedule_order(order("ORD-1", complexity="medium"))

    scheduler.update_task_progress("ORD-1", None, "cancelled")

    row = SchedulingRepository.get_workload_row(db, task.start_time.date())
    assert row.total_production_hours == 0


def test_terminal_status_cannot_change(scheduler):
    scheduler.schedule_order(order("ORD-1"))
    scheduler.update_task_progress("ORD-1", 4, "completed")

    with pytest.raises(ValidationError):
        scheduler.update_task_progress("ORD-1", None, "in_progress")


def test_unknown_status_is_rejected(scheduler):
    scheduler.schedule_order(order("ORD-1"))
    with pytest.raises(ValidationError):
        scheduler.update_task_progress("ORD-1", None, "paused")


def test_optimize_fills_freed_capacity(scheduler, db):
    scheduler.schedule_order(order("ORD-1", complexity="simple"))
    later = scheduler.schedule_order(order("ORD-2", complexity="simple"))
    assert later.start_time == datetime(2025, 11, 3, 11, 30)

    scheduler.update_task_progress("ORD-1", None, "cancelled")
    summary = scheduler.optimize_schedule()

    moved = SchedulingRepository.get_task_by_order(db, "ORD-2")
    assert summary["moved"] == 1
    assert moved.start_time == datetime(2025, 11, 3, 9, 0)
    assert moved.end_time == datetime(2025, 11, 3, 11, 15)


def test_optimize_is_idempotent(scheduler, db):
    for index, complexity in enumerate(["simple", "medium", "simple", "complex", "medium"]):
        scheduler.schedule_order(
            order(f"ORD-{index}", complexity=complexity, priority=5 - index % 3)
        )
    scheduler.update_task_progress("ORD-1", None, "cancelled")

    scheduler.optimize_schedule()
    first = arrangement(db)
    summary = scheduler.optimize_schedule()

    assert arrangement(db) == first
    assert summary["moved"] == 0


def test_optimize_keeps_dependency_order(scheduler, db):
    scheduler.schedule_order(order("ORD-1", complexity="simple", priority=5))
    scheduler.schedule_order(order("ORD-2", complexity="simple", priority=1, dependencies=["ORD-1"]))

    scheduler.optimize_schedule()

    first = SchedulingRepository.get_task_by_order(db, "ORD-1")
    second = SchedulingRepository.get_task_by_order(db, "ORD-2")
    assert second.start_time >= first.end_time


def test_optimize_does_not_move_started_work(scheduler, db, make_task):
    started = make_task(datetime(2025, 11, 4, 13, 0), 2, status="in_progress")
    scheduler.schedule_order(order("ORD-1", complexity="simple", customerPreferences=[15]))

    scheduler.optimize_schedule()

    db.refresh(started)
    assert started.start_time == datetime(2025, 11, 4, 13, 0)
    assert started.status == "in_progress"


def test_optimize_with_nothing_to_move(scheduler):
    assert scheduler.optimize_schedule() == {"moved": 0, "unchanged": 0, "unplaceable": 0}


def active_tasks_overlap(db):
    tasks = [
        t
        for t in SchedulingRepository.tasks_between(db, datetime(2025, 11, 1), datetime(2026, 2, 1))
        if t.status in ("scheduled", "in_progress")
    ]
    return [
        (a.order_id, b.order_id)
        for i, a in enumerate(tasks)
        for b in tasks[i + 1:]
        if a.start_time < b.end_time and b.start_time < a.end_time
    ]


def test_optimize_never_stacks_work_on_a_task_that_cannot_move(scheduler, db, clock, make_task):
    clock.current = datetime(2025, 11, 3, 8, 0)
    tight = make_task(
        datetime(2025, 11, 3, 8, 0), 2, priority=5, deadline=datetime(2025, 11, 3, 10, 15)
    )
    urgent = make_task(datetime(2025, 11, 4, 8, 0), 2, priority=1)

    summary = scheduler.optimize_schedule()

    db.refresh(tight)
    db.refresh(urgent)
    assert tight.start_time == datetime(2025, 11, 3, 8, 0)
    assert urgent.start_time == datetime(2025, 11, 3, 10, 30)
    assert summary == {"moved": 1, "unchanged": 1, "unplaceable": 0}
    assert active_tasks_overlap(db) == []


def test_optimize_keeps_unplaceable_tasks_clear_of_moved_work(scheduler, db, clock, make_task):
    clock.current = datetime(2025, 11, 3, 8, 0)
    # Deadline already behind its own end: it can only stay where it is
    stuck = make_task(
        datetime(2025, 11, 3, 8, 0), 2, priority=5, deadline=datetime(2025, 11, 3, 9, 0)
    )
    make_task(datetime(2025, 11, 5, 8, 0), 3, priority=1)
    make_task(datetime(2025, 11, 6, 8, 0), 1, priority=2)

    summary = scheduler.optimize_schedule()

    db.refresh(stuck)
    assert stuck.start_time == datetime(2025, 11, 3, 8, 0)
    assert summary["unplaceable"] == 1
    assert summary["moved"] == 2
    assert active_tasks_overlap(db) == []
    assert scheduler.optimize_schedule()["moved"] == 0


def test_preferred_hour_never_pushes_work_to_a_later_day(scheduler, make_task):
    make_task(datetime(2025, 11, 3, 14, 0), 2)  # Monday 14:00-16:15 is taken

    task = scheduler.schedule_order(
        order("ORD-1", complexity="simple", customerPreferences=[14])
    )

    assert task.start_time == datetime(2025, 11, 3, 9, 0)
