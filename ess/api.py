from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from . import claims, extra_shifts, leave_requests, letters, notifications, profile
from .authn import get_principal
from .db import get_db
from .permissions import build_capabilities
from .schemas import (
    BalanceOut,
    CapabilitiesOut,
    ClaimCreate,
    ClaimOut,
    ExtraShiftCreate,
    ExtraShiftOut,
    LeaveApply,
    LeaveOut,
    LeaveTypeOut,
    LetterCreate,
    LetterOut,
    NotificationOut,
    ProfileOut,
    ProfileStatusOut,
    ProfileUpdate,
    UnreadCountOut,
)
from .scope import Principal, resolve_scope

router = APIRouter(prefix="/api")


@router.get("/capabilities", response_model=CapabilitiesOut)
def get_capabilities(
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    scope = resolve_scope(db, principal, company_id=company_id)
    return build_capabilities(scope)


@router.get("/leave/types", response_model=List[LeaveTypeOut])
def get_leave_types(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return leave_requests.list_leave_types(db, principal)


@router.get("/leave/balances", response_model=List[BalanceOut])
def get_leave_balances(
    year: Optional[int] = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return leave_requests.get_balances(db, principal, year=year)


@router.post("/leave/apply", response_model=LeaveOut, status_code=status.HTTP_201_CREATED)
def post_leave(payload: LeaveApply, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return leave_requests.apply_leave(
        db,
        principal,
        leave_type_id=payload.leave_type_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
        half_day=payload.half_day,
        mc_url=payload.mc_url,
    )


@router.get("/leave/history", response_model=List[LeaveOut])
def get_leave_history(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    year: Optional[int] = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return leave_requests.list_my_leave(db, principal, status_filter=status_filter, year=year)


@router.get("/leave/{request_id}", response_model=LeaveOut)
def get_leave(request_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return leave_requests.get_leave_request(db, principal, request_id)


@router.post("/leave/{request_id}/cancel", response_model=LeaveOut)
def post_leave_cancel(
    request_id: int,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return leave_requests.cancel_leave(db, principal, request_id, company_id=company_id)


@router.post("/leave/{request_id}/revert", response_model=LeaveOut)
def post_leave_revert(request_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return leave_requests.revert_leave(db, principal, request_id)


@router.post("/claims", response_model=ClaimOut, status_code=status.HTTP_201_CREATED)
def post_claim(payload: ClaimCreate, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return claims.submit_claim(
        db,
        principal,
        claim_date=payload.claim_date,
        category=payload.category,
        amount=payload.amount,
        description=payload.description,
        receipt_url=payload.receipt_url,
    )


@router.get("/claims", response_model=List[ClaimOut])
def get_claims(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    year: Optional[int] = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return claims.list_my_claims(db, principal, status_filter=status_filter, year=year)


@router.post("/claims/{claim_id}/cancel", response_model=ClaimOut)
def post_claim_cancel(claim_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return claims.cancel_claim(db, principal, claim_id)


@router.post("/extra-shifts", response_model=ExtraShiftOut, status_code=status.HTTP_201_CREATED)
def post_extra_shift(
    payload: ExtraShiftCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return extra_shifts.request_extra_shift(
        db,
        principal,
        request_date=payload.request_date,
        shift_template_id=payload.shift_template_id,
        shift_start=payload.shift_start,
        shift_end=payload.shift_end,
        reason=payload.reason,
    )


@router.get("/extra-shifts", response_model=List[ExtraShiftOut])
def get_extra_shifts(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return extra_shifts.list_my_extra_shifts(db, principal)


@router.post("/extra-shifts/{request_id}/cancel", response_model=ExtraShiftOut)
def post_extra_shift_cancel(
    request_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return extra_shifts.cancel_extra_shift(db, principal, request_id)


@router.get("/notifications", response_model=List[NotificationOut])
def get_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return notifications.list_notifications(db, principal, unread_only=unread_only, limit=limit)


@router.get("/notifications/unread-count", response_model=UnreadCountOut)
def get_unread_count(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return UnreadCountOut(unread=notifications.unread_count(db, principal))


@router.post("/notifications/read-all", response_model=UnreadCountOut)
def post_read_all(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    notifications.mark_all_read(db, principal)
    return UnreadCountOut(unread=0)


@router.post("/notifications/{notification_id}/read", response_model=NotificationOut)
def post_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return notifications.mark_read(db, principal, notification_id)


@router.post("/letters", response_model=LetterOut, status_code=status.HTTP_201_CREATED)
def post_letter(
    payload: LetterCreate,
    company_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return letters.issue_letter(
        db,
        principal,
        employee_id=payload.employee_id,
        letter_type=payload.letter_type,
        title=payload.title,
        content=payload.content,
        company_id=company_id,
    )


@router.get("/letters", response_model=List[LetterOut])
def get_letters(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return letters.list_my_letters(db, principal)


@router.get("/letters/{letter_id}", response_model=LetterOut)
def get_letter(letter_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return letters.open_letter(db, principal, letter_id)


@router.get("/profile", response_model=ProfileOut)
def get_my_profile(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return profile.get_profile(db, principal)


@router.put("/profile", response_model=ProfileOut)
def put_profile(payload: ProfileUpdate, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return profile.update_profile(db, principal, payload.model_dump(exclude_unset=True))


@router.get("/profile/completion-status", response_model=ProfileStatusOut)
def get_profile_completion(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return profile.get_profile(db, principal)["profile_status"]


@router.post("/profile/complete", response_model=ProfileStatusOut)
def post_profile_complete(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return profile.complete_profile(db, principal)
