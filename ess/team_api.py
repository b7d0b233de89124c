from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from . import claims, extra_shifts, leave_requests, overtime, shift_swaps, team
from .authn import get_principal
from .db import get_db
from .schemas import (
    ClaimOut,
    ClockRecordOut,
    ExtraShiftOut,
    LeaveOut,
    OvertimeBatch,
    OvertimeBatchOut,
    OvertimeDecision,
    RejectBody,
    SwapCreate,
    SwapDecision,
    SwapOut,
    SwapResponse,
    TeamAttendanceRowOut,
    TeamMemberOut,
    TeamOverviewOut,
)
from .scope import Principal

router = APIRouter(prefix="/api", tags=["team"])


@router.get("/leave/team/pending", response_model=List[LeaveOut])
def get_team_pending_leave(
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return leave_requests.list_team_pending_leave(db, principal, company_id=company_id)


@router.post("/leave/{request_id}/approve", response_model=LeaveOut)
def post_leave_approve(
    request_id: int,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return leave_requests.approve_leave(db, principal, request_id, company_id=company_id)


@router.post("/leave/{request_id}/reject", response_model=LeaveOut)
def post_leave_reject(
    request_id: int,
    payload: RejectBody,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return leave_requests.reject_leave(db, principal, request_id, reason=payload.reason, company_id=company_id)


@router.get("/claims/team/pending", response_model=List[ClaimOut])
def get_team_pending_claims(
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return claims.list_team_pending_claims(db, principal, company_id=company_id)


@router.post("/claims/{claim_id}/approve", response_model=ClaimOut)
def post_claim_approve(
    claim_id: int,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return claims.approve_claim(db, principal, claim_id, company_id=company_id)


@router.post("/claims/{claim_id}/reject", response_model=ClaimOut)
def post_claim_reject(
    claim_id: int,
    payload: RejectBody,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return claims.reject_claim(db, principal, claim_id, reason=payload.reason, company_id=company_id)


@router.get("/extra-shifts/team/pending", response_model=List[ExtraShiftOut])
def get_team_pending_extra_shifts(
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return extra_shifts.list_team_pending_extra_shifts(db, principal, company_id=company_id)


@router.post("/extra-shifts/{request_id}/approve", response_model=ExtraShiftOut)
def post_extra_shift_approve(
    request_id: int,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return extra_shifts.approve_extra_shift(db, principal, request_id, company_id=company_id)


@router.post("/extra-shifts/{request_id}/reject", response_model=ExtraShiftOut)
def post_extra_shift_reject(
    request_id: int,
    payload: RejectBody,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return extra_shifts.reject_extra_shift(db, principal, request_id, reason=payload.reason, company_id=company_id)


@router.get("/overtime/pending", response_model=List[ClockRecordOut])
def get_pending_overtime(
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return overtime.list_pending_overtime(db, principal, company_id=company_id)


@router.post("/overtime/batch", response_model=OvertimeBatchOut)
def post_overtime_batch(
    payload: OvertimeBatch,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return overtime.batch_decide_overtime(
        db,
        principal,
        payload.record_ids,
        action=payload.action,
        reason=payload.reason,
        company_id=company_id,
    )


@router.post("/overtime/{record_id}/decide", response_model=ClockRecordOut)
def post_overtime_decide(
    record_id: int,
    payload: OvertimeDecision,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return overtime.decide_overtime(
        db,
        principal,
        record_id,
        approve=payload.approve,
        reason=payload.reason,
        company_id=company_id,
    )


@router.post("/swaps", response_model=SwapOut, status_code=status.HTTP_201_CREATED)
def post_swap(payload: SwapCreate, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return shift_swaps.request_swap(
        db,
        principal,
        requester_schedule_id=payload.requester_schedule_id,
        target_schedule_id=payload.target_schedule_id,
        reason=payload.reason,
    )


@router.get("/swaps", response_model=List[SwapOut])
def get_my_swaps(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return shift_swaps.list_my_swaps(db, principal)


@router.get("/swaps/pending", response_model=List[SwapOut])
def get_pending_swaps(
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return shift_swaps.list_pending_swaps(db, principal, company_id=company_id)


@router.post("/swaps/{swap_id}/respond", response_model=SwapOut)
def post_swap_respond(
    swap_id: int,
    payload: SwapResponse,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return shift_swaps.respond_to_swap(db, principal, swap_id, accept=payload.accept)


@router.post("/swaps/{swap_id}/cancel", response_model=SwapOut)
def post_swap_cancel(swap_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return shift_swaps.cancel_swap(db, principal, swap_id)


@router.post("/swaps/{swap_id}/decide", response_model=SwapOut)
def post_swap_decide(
    swap_id: int,
    payload: SwapDecision,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return shift_swaps.decide_swap(
        db,
        principal,
        swap_id,
        approve=payload.approve,
        reason=payload.reason,
        company_id=company_id,
    )


@router.get("/team/overview", response_model=TeamOverviewOut)
def get_team_overview(
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return team.team_overview(db, principal, company_id=company_id)


@router.get("/team/units/{unit_id}/staff", response_model=List[TeamMemberOut])
def get_unit_staff(
    unit_id: int,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return team.list_unit_staff(db, principal, unit_id, company_id=company_id)


@router.get("/team/units/{unit_id}/attendance", response_model=List[TeamAttendanceRowOut])
def get_unit_attendance(
    unit_id: int,
    day: Optional[date] = Query(default=None),
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return team.unit_attendance_report(db, principal, unit_id, day=day, company_id=company_id)
