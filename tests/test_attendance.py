from datetime import date, datetime, time

import httpx
import pytest
from sqlalchemy import select

from ess import attendance, geocoding
from ess.attendance import (
    compute_overtime,
    list_auto_clock_outs,
    list_my_attendance,
    punch,
    review_auto_clock_out,
    today_status,
)
from ess.config import settings
from ess.errors import AuthorizationError, ConflictError, DependencyError, ValidationError
from ess.jobs import auto_clock_out
from ess.models import Notification

PHOTO = "https://files.example/selfie.jpg"
GPS = {"latitude": 3.139, "longitude": 101.6869}


@pytest.fixture
def crew(seed):
    company = seed.company()
    outlet = seed.outlet(company)
    return seed.employee(company, outlet=outlet)


def _punch(db, principal, freeze, moment, action, **extra):
    freeze(moment)
    fields = {"photo_url": PHOTO, **GPS}
    fields.update(extra)
    return punch(db, principal, action=action, **fields)


def _full_day(db, principal, freeze, day, *, end=time(19, 32)):
    _punch(db, principal, freeze, datetime.combine(day, time(9, 2)), "clock_in_1")
    _punch(db, principal, freeze, datetime.combine(day, time(13, 0)), "clock_out_1")
    _punch(db, principal, freeze, datetime.combine(day, time(14, 0)), "clock_in_2")
    return _punch(db, principal, freeze, datetime.combine(day, end), "clock_out_2")


def test_full_day_against_schedule_flags_overtime(db, seed, crew, freeze, principal_of):
    day = date(2025, 6, 2)
    schedule = seed.schedule(crew, day)
    record = _full_day(db, principal_of(crew), freeze, day)

    assert record.schedule_id == schedule.id
    assert record.within_schedule is True
    assert record.total_work_minutes == 570
    assert record.break_minutes == 60
    assert record.ot_minutes == 90
    assert record.ot_flagged is True
    assert record.ot_approved is None
    assert record.status == "completed"
    assert record.location_in_1 == "3.139000,101.686900"


def test_without_schedule_uses_company_threshold(db, crew, freeze, principal_of):
    record = _full_day(db, principal_of(crew), freeze, date(2025, 6, 2))
    assert record.schedule_id is None
    assert record.within_schedule is False
    assert record.ot_minutes == 60
    assert record.ot_flagged is True


def test_short_overtime_is_not_flagged(db, seed, crew, freeze, principal_of):
    day = date(2025, 6, 2)
    seed.schedule(crew, day)
    record = _full_day(db, principal_of(crew), freeze, day, end=time(18, 30))
    assert record.ot_minutes == 28
    assert record.ot_flagged is False


def test_part_timers_never_accrue_overtime(db, seed, freeze, principal_of):
    company = seed.company()
    part_timer = seed.employee(company, employment_type="Part-Time")
    record = _full_day(db, principal_of(part_timer), freeze, date(2025, 6, 2), end=time(23, 0))
    assert record.total_work_minutes > 600
    assert record.ot_minutes == 0
    assert record.ot_flagged is False


def test_clock_out_without_break(db, crew, freeze, principal_of):
    p = principal_of(crew)
    _punch(db, p, freeze, datetime(2025, 6, 2, 9, 0), "clock_in_1")
    record = _punch(db, p, freeze, datetime(2025, 6, 2, 17, 0), "clock_out_2")
    assert record.total_work_minutes == 480
    assert record.break_minutes == 0
    assert record.status == "completed"


def test_punch_order_is_enforced(db, crew, freeze, principal_of):
    p = principal_of(crew)
    freeze(datetime(2025, 6, 2, 9, 0))
    with pytest.raises(ValidationError, match="You must clock in first"):
        punch(db, p, action="clock_out_1", photo_url=PHOTO, **GPS)
    with pytest.raises(ValidationError, match="Invalid action"):
        punch(db, p, action="lunch", photo_url=PHOTO, **GPS)

    _punch(db, p, freeze, datetime(2025, 6, 2, 9, 0), "clock_in_1")
    with pytest.raises(ConflictError, match="already clocked in"):
        punch(db, p, action="clock_in_1", photo_url=PHOTO, **GPS)
    with pytest.raises(ValidationError, match="You must go on break first"):
        punch(db, p, action="clock_in_2", photo_url=PHOTO, **GPS)

    _punch(db, p, freeze, datetime(2025, 6, 2, 13, 0), "clock_out_1")
    with pytest.raises(ValidationError, match="You must return from break first"):
        punch(db, p, action="clock_out_2", photo_url=PHOTO, **GPS)


def test_clock_in_requires_photo_and_gps(db, crew, freeze, principal_of):
    p = principal_of(crew)
    freeze(datetime(2025, 6, 2, 9, 0))
    with pytest.raises(ValidationError, match="Photo is required"):
        punch(db, p, action="clock_in_1", photo_url="  ", **GPS)
    with pytest.raises(ValidationError, match="GPS location is required"):
        punch(db, p, action="clock_in_1", photo_url=PHOTO)
    assert today_status(db, p)["status"] == "not_started"


def test_geocoder_outage_does_not_block_punch(db, crew, freeze, principal_of, monkeypatch):
    def broken(latitude, longitude):
        raise DependencyError("Location lookup is unavailable, please retry")

    monkeypatch.setattr(attendance, "reverse_geocode", broken)
    record = _punch(db, principal_of(crew), freeze, datetime(2025, 6, 2, 9, 0), "clock_in_1")
    assert record.id is not None
    assert record.address_in_1 is None


def test_address_is_stored_when_geocoder_answers(db, crew, freeze, principal_of, monkeypatch):
    monkeypatch.setattr(attendance, "reverse_geocode", lambda latitude, longitude: "Jalan Ampang, Kuala Lumpur")
    record = _punch(db, principal_of(crew), freeze, datetime(2025, 6, 2, 9, 0), "clock_in_1")
    assert record.address_in_1 == "Jalan Ampang, Kuala Lumpur"


def test_today_status_reports_next_step_and_shift_code(db, seed, crew, freeze, principal_of):
    day = date(2025, 6, 2)
    company = crew.company
    seed.template(company, "M", time(9, 0), time(18, 0))
    seed.schedule(crew, day)
    p = principal_of(crew)

    freeze(datetime(2025, 6, 2, 8, 30))
    status = today_status(db, p)
    assert (status["status"], status["next_action"], status["shift_code"]) == ("not_started", "clock_in_1", "M")

    _punch(db, p, freeze, datetime(2025, 6, 2, 9, 0), "clock_in_1")
    _punch(db, p, freeze, datetime(2025, 6, 2, 13, 0), "clock_out_1")
    status = today_status(db, p)
    assert (status["status"], status["next_action"]) == ("on_break", "clock_in_2")
    assert status["record"].clock_out_1 == datetime(2025, 6, 2, 13, 0)


def test_monthly_history_summary(db, crew, freeze, principal_of):
    p = principal_of(crew)
    _full_day(db, p, freeze, date(2025, 6, 2))
    _punch(db, p, freeze, datetime(2025, 6, 3, 9, 0), "clock_in_1")
    _full_day(db, p, freeze, date(2025, 7, 1))

    history = list_my_attendance(db, p, year=2025, month=6)
    assert [r.work_date for r in history["records"]] == [date(2025, 6, 3), date(2025, 6, 2)]
    assert history["summary"]["total_days"] == 2
    assert history["summary"]["completed_days"] == 1
    assert history["summary"]["pending_completion"] == 1
    assert history["summary"]["total_ot_minutes"] == 60
    with pytest.raises(ValidationError):
        list_my_attendance(db, p, year=2025, month=13)


def test_compute_overtime_rules():
    assert compute_overtime(540, 480, 510, part_time=False) == (60, True)
    assert compute_overtime(540, None, 510, part_time=False) == (30, False)
    assert compute_overtime(400, 480, 510, part_time=False) == (0, False)
    assert compute_overtime(900, 480, 510, part_time=True) == (0, False)


def _mock_geocoder(monkeypatch, handler):
    real_client = httpx.Client
    monkeypatch.setattr(settings, "GEOCODER_URL", "https://geo.example/reverse")
    monkeypatch.setattr(
        geocoding.httpx,
        "Client",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )


def test_reverse_geocode_reads_display_name(monkeypatch):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["lat"] = request.url.params["lat"]
        return httpx.Response(200, json={"display_name": "  Menara KL, Kuala Lumpur  "})

    _mock_geocoder(monkeypatch, handler)
    assert geocoding.reverse_geocode(3.15, 101.7) == "Menara KL, Kuala Lumpur"
    assert seen["lat"] == "3.15"


def test_reverse_geocode_failure_is_a_dependency_error(monkeypatch):
    _mock_geocoder(monkeypatch, lambda request: httpx.Response(503))
    with pytest.raises(DependencyError):
        geocoding.reverse_geocode(3.15, 101.7)


def test_reverse_geocode_disabled_without_url(monkeypatch):
    monkeypatch.setattr(settings, "GEOCODER_URL", "")
    assert geocoding.reverse_geocode(3.15, 101.7) is None


def test_address_is_resolved_before_the_record_is_locked(db, crew, freeze, principal_of, monkeypatch):
    calls = []
    real_lock = attendance._today_record

    def geocode(latitude, longitude):
        calls.append("geocode")
        return "Jalan Ampang, Kuala Lumpur"

    def lock(db, employee_id, work_date):
        calls.append("lock")
        return real_lock(db, employee_id, work_date)

    monkeypatch.setattr(attendance, "reverse_geocode", geocode)
    monkeypatch.setattr(attendance, "_today_record", lock)
    p = principal_of(crew)
    _punch(db, p, freeze, datetime(2025, 6, 2, 9, 0), "clock_in_1")
    assert calls == ["geocode", "lock"]

    calls.clear()
    _punch(db, p, freeze, datetime(2025, 6, 2, 13, 0), "clock_out_1")
    assert calls == ["lock"]


def test_night_shift_clocks_out_after_midnight(db, seed, crew, freeze, principal_of):
    seed.schedule(crew, date(2025, 6, 2), start=time(22, 0), end=time(6, 0))
    p = principal_of(crew)
    _punch(db, p, freeze, datetime(2025, 6, 2, 22, 0), "clock_in_1")
    record = _punch(db, p, freeze, datetime(2025, 6, 3, 6, 5), "clock_out_2")

    assert record.work_date == date(2025, 6, 2)
    assert record.total_work_minutes == 485
    assert record.ot_minutes == 65
    assert record.ot_flagged is True
    assert record.status == "completed"


def test_night_shift_window_closes_an_hour_after_shift_end(db, seed, crew, freeze, principal_of):
    seed.schedule(crew, date(2025, 6, 2), start=time(22, 0), end=time(6, 0))
    p = principal_of(crew)
    _punch(db, p, freeze, datetime(2025, 6, 2, 22, 0), "clock_in_1")
    freeze(datetime(2025, 6, 3, 7, 30))
    with pytest.raises(ValidationError, match="You must clock in first"):
        punch(db, p, action="clock_out_2", photo_url=PHOTO, **GPS)


def test_auto_clock_out_caps_full_time_hours(db, seed, crew, freeze, principal_of):
    p = principal_of(crew)
    _punch(db, p, freeze, datetime(2025, 6, 2, 9, 0), "clock_in_1")
    _punch(db, p, freeze, datetime(2025, 6, 3, 9, 0), "clock_in_1")

    assert auto_clock_out(db, now=datetime(2025, 6, 3, 12, 0)) == 1
    db.expire_all()
    history = list_my_attendance(db, p, year=2025, month=6)["records"]
    today, forgotten = history
    assert today.status == "in_progress"
    assert forgotten.clock_out_2 == datetime(2025, 6, 3, 0, 0)
    assert forgotten.total_work_minutes == 510
    assert (forgotten.ot_minutes, forgotten.ot_flagged) == (0, False)
    assert (forgotten.status, forgotten.is_auto_clock_out, forgotten.needs_review) == ("completed", True, True)
    assert forgotten.auto_clock_out_reason == "forgot"
    message = db.execute(select(Notification).where(Notification.employee_id == crew.id)).scalar_one()
    assert message.type == "auto_clock_out"
    assert "8.50" in message.message

    assert auto_clock_out(db, now=datetime(2025, 6, 3, 12, 0)) == 0


def test_auto_clock_out_counts_scheduled_hours_for_part_timers(db, seed, freeze, principal_of):
    company = seed.company()
    part_timer = seed.employee(company, work_type="part_time")
    seed.schedule(part_timer, date(2025, 6, 2), start=time(10, 0), end=time(16, 0))
    _punch(db, principal_of(part_timer), freeze, datetime(2025, 6, 2, 10, 0), "clock_in_1")

    assert auto_clock_out(db, now=datetime(2025, 6, 3, 0, 5)) == 1
    db.expire_all()
    record = list_my_attendance(db, principal_of(part_timer), year=2025, month=6)["records"][0]
    assert record.total_work_minutes == 300
    assert record.ot_minutes == 0


def test_auto_clock_out_waits_for_night_shift_grace_hour(db, seed, crew, freeze, principal_of):
    seed.schedule(crew, date(2025, 6, 2), start=time(22, 0), end=time(6, 0))
    _punch(db, principal_of(crew), freeze, datetime(2025, 6, 2, 22, 0), "clock_in_1")

    assert auto_clock_out(db, now=datetime(2025, 6, 3, 0, 5)) == 0
    assert auto_clock_out(db, now=datetime(2025, 6, 3, 7, 30)) == 1
    db.expire_all()
    record = list_my_attendance(db, principal_of(crew), year=2025, month=6)["records"][0]
    assert record.clock_out_2 == datetime(2025, 6, 3, 7, 0)
    assert record.total_work_minutes == 510


def test_admin_reviews_auto_clock_outs(db, seed, crew, freeze, principal_of):
    admin = seed.admin(crew.company)
    _punch(db, principal_of(crew), freeze, datetime(2025, 6, 2, 9, 0), "clock_in_1")
    auto_clock_out(db, now=datetime(2025, 6, 3, 0, 5))

    with pytest.raises(AuthorizationError):
        list_auto_clock_outs(db, principal_of(crew))
    pending = list_auto_clock_outs(db, principal_of(admin))
    assert len(pending) == 1

    record = review_auto_clock_out(db, principal_of(admin), pending[0].id, adjusted_minutes=480)
    assert (record.total_work_minutes, record.needs_review) == (480, False)
    assert record.reviewed_by == f"admin:{admin.id}"
    assert list_auto_clock_outs(db, principal_of(admin)) == []
    with pytest.raises(ConflictError, match="already been reviewed"):
        review_auto_clock_out(db, principal_of(admin), record.id)
