from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from . import attendance, clock, schedules
from .authn import get_principal
from .db import get_db
from .schemas import (
    AttendanceHistoryOut,
    AutoClockOutReview,
    ClockRecordOut,
    PunchCreate,
    ScheduleBulkCreate,
    ScheduleBulkOut,
    ScheduleCreate,
    ScheduleOut,
    ScheduleUpdate,
    TodayStatusOut,
    WeeklyRowOut,
)
from .scope import Principal

router = APIRouter(prefix="/api", tags=["attendance"])


@router.post("/attendance/punch", response_model=ClockRecordOut)
def post_punch(payload: PunchCreate, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return attendance.punch(
        db,
        principal,
        action=payload.action,
        photo_url=payload.photo_url,
        latitude=payload.latitude,
        longitude=payload.longitude,
    )


@router.get("/attendance/today", response_model=TodayStatusOut)
def get_today(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return attendance.today_status(db, principal)


@router.get("/attendance/history", response_model=AttendanceHistoryOut)
def get_history(
    year: Optional[int] = Query(default=None, ge=2000, le=2100),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    today = clock.today()
    return attendance.list_my_attendance(db, principal, year=year or today.year, month=month or today.month)


@router.get("/attendance/auto-clock-outs", response_model=List[ClockRecordOut])
def get_auto_clock_outs(
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return attendance.list_auto_clock_outs(db, principal, company_id=company_id)


@router.post("/attendance/{record_id}/review", response_model=ClockRecordOut)
def post_auto_clock_out_review(
    record_id: int,
    payload: AutoClockOutReview,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return attendance.review_auto_clock_out(
        db, principal, record_id, adjusted_minutes=payload.adjusted_minutes, company_id=company_id
    )


@router.get("/schedules", response_model=List[ScheduleOut])
def get_schedules(
    start: date,
    end: date,
    employee_id: Optional[int] = Query(default=None),
    unit_id: Optional[int] = Query(default=None),
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return schedules.list_schedules(
        db,
        principal,
        start=start,
        end=end,
        employee_id=employee_id,
        unit_id=unit_id,
        company_id=company_id,
    )


@router.get("/schedules/weekly-validation", response_model=List[WeeklyRowOut])
def get_weekly_validation(
    week_start: date,
    unit_id: Optional[int] = Query(default=None),
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return schedules.weekly_validation(db, principal, week_start=week_start, unit_id=unit_id, company_id=company_id)


@router.post("/schedules", response_model=ScheduleOut, status_code=status.HTTP_201_CREATED)
def post_schedule(
    payload: ScheduleCreate,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return schedules.create_schedule(db, principal, company_id=company_id, **payload.model_dump())


@router.post("/schedules/bulk", response_model=ScheduleBulkOut)
def post_schedules_bulk(
    payload: ScheduleBulkCreate,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    entries = [entry.model_dump() for entry in payload.entries]
    return schedules.bulk_create_schedules(db, principal, entries, company_id=company_id)


@router.patch("/schedules/{schedule_id}", response_model=ScheduleOut)
def patch_schedule(
    schedule_id: int,
    payload: ScheduleUpdate,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return schedules.update_schedule(db, principal, schedule_id, company_id=company_id, **payload.model_dump())


@router.delete("/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_schedule(
    schedule_id: int,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    schedules.delete_schedule(db, principal, schedule_id, company_id=company_id)
    return None
