"""Calendar & capacity model"""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from frame_scheduler.domain.scheduling.calendar import (
    Calendar,
    SchedulingConfig,
    WorkloadThresholds,
    overlaps,
)
from frame_scheduler.domain.scheduling.exceptions import ValidationError


def test_working_days_default_to_monday_through_friday(calendar):
    assert calendar.is_working_day(date(2025, 11, 3))  # Monday
    assert calendar.is_working_day(date(2025, 11, 7))  # Friday
    assert not calendar.is_working_day(date(2025, 11, 8))  # Saturday
    assert not calendar.is_working_day(date(2025, 11, 9))  # Sunday


def test_working_days_iterates_half_open_range(calendar):
    days = list(calendar.working_days(date(2025, 11, 3), date(2025, 11, 10)))
    assert days == [date(2025, 11, d) for d in range(3, 8)]


def test_candidate_starts_fit_inside_working_window(calendar):
    starts = list(calendar.candidate_starts(date(2025, 11, 4), timedelta(hours=1)))
    assert starts[0] == datetime(2025, 11, 4, 8, 0)
    assert starts[-1] == datetime(2025, 11, 4, 16, 0)
    assert len(starts) == 17
    assert all(b - a == timedelta(minutes=30) for a, b in zip(starts, starts[1:]))


def test_candidate_starts_respect_not_before(calendar):
    starts = list(
        calendar.candidate_starts(
            date(2025, 11, 3), timedelta(hours=1), datetime(2025, 11, 3, 15, 10)
        )
    )
    assert starts == [datetime(2025, 11, 3, 15, 30), datetime(2025, 11, 3, 16, 0)]


def test_fits_working_window(calendar):
    assert calendar.fits_working_window(datetime(2025, 11, 4, 8, 0), datetime(2025, 11, 4, 17, 0))
    assert not calendar.fits_working_window(
        datetime(2025, 11, 4, 7, 30), datetime(2025, 11, 4, 8, 30)
    )
    assert not calendar.fits_working_window(
        datetime(2025, 11, 4, 16, 30), datetime(2025, 11, 4, 17, 30)
    )
    assert not calendar.fits_working_window(
        datetime(2025, 11, 8, 10, 0), datetime(2025, 11, 8, 11, 0)
    )


def test_custom_window_and_working_days():
    config = SchedulingConfig(
        working_days=frozenset({5}), day_start=time(10, 0), day_end=time(14, 0)
    )
    calendar = Calendar(config)
    assert calendar.is_working_day(date(2025, 11, 8))
    assert not calendar.is_working_day(date(2025, 11, 3))
    assert calendar.window(date(2025, 11, 8)) == (
        datetime(2025, 11, 8, 10, 0),
        datetime(2025, 11, 8, 14, 0),
    )


def test_localize_converts_aware_times_to_shop_time(calendar):
    # Central time is UTC-6 after the November DST change
    utc = datetime(2025, 11, 5, 16, 0, tzinfo=timezone.utc)
    assert calendar.localize(utc) == datetime(2025, 11, 5, 10, 0)
    naive = datetime(2025, 11, 5, 10, 0)
    assert calendar.localize(naive) is naive


def test_appointment_types_table(calendar):
    consultation = calendar.appointment_type("consultation")
    assert consultation.length == timedelta(hours=1)
    assert consultation.reserved_length == timedelta(hours=1, minutes=15)
    assert calendar.appointment_type("pickup").capacity == 4
    assert calendar.appointment_type("delivery").capacity == 2
    assert calendar.appointment_type("custom_consultation").duration == 1.5


def test_unknown_appointment_type_is_a_validation_error(calendar):
    with pytest.raises(ValidationError) as exc:
        calendar.appointment_type("haircut")
    assert exc.value.details["field"] == "type"


@pytest.mark.parametrize("value", ["medium", 2, "2"])
def test_complexity_profile_lookup(calendar, value):
    profile = calendar.complexity_profile(value)
    assert profile.name == "medium"
    assert profile.max_hours == 4.0
    assert profile.default_priority == 4


def test_unknown_complexity_is_a_validation_error(calendar):
    with pytest.raises(ValidationError):
        calendar.complexity_profile("epic")
    with pytest.raises(ValidationError):
        calendar.complexity_profile(9)


def test_configured_clock_is_used(calendar, clock):
    assert calendar.now() == clock.current
    clock.advance(hours=2)
    assert calendar.now() == datetime(2025, 11, 3, 11, 0)


def test_overlaps_is_half_open():
    a = datetime(2025, 11, 4, 10, 0)
    b = datetime(2025, 11, 4, 11, 0)
    c = datetime(2025, 11, 4, 12, 0)
    assert overlaps(a, c, b, c)
    assert not overlaps(a, b, b, c)


def test_thresholds_are_tunable():
    thresholds = WorkloadThresholds(light=0.5, normal=0.7, heavy=0.9)
    assert SchedulingConfig(thresholds=thresholds).thresholds.heavy == 0.9
