from datetime import date

import pytest
from sqlalchemy import select

from ess.errors import AuthorizationError, ConflictError, ValidationError
from ess.models import AuditEvent, ClockInRecord, Notification
from ess.overtime import batch_decide_overtime, decide_overtime, list_pending_overtime


@pytest.fixture
def ot_team(seed):
    company = seed.company()
    outlet = seed.outlet(company)
    crew = seed.employee(company, role="staff", outlet=outlet)
    manager = seed.employee(company, role="manager", outlet=outlet)
    return {
        "company": company,
        "outlet": outlet,
        "supervisor": seed.employee(company, role="supervisor", outlet=outlet),
        "crew": crew,
        "manager": manager,
        "r1": seed.flagged_ot(crew, date(2025, 6, 2)),
        "r2": seed.flagged_ot(manager, date(2025, 6, 2)),
        "r3": seed.flagged_ot(crew, date(2025, 6, 3), approved=True),
    }


def _notifications(db) -> list[Notification]:
    db.expire_all()
    return db.execute(select(Notification)).scalars().all()


def test_batch_skips_hierarchy_and_processed_records(db, ot_team, principal_of):
    t = ot_team
    ids = [t["r1"].id, t["r2"].id, t["r3"].id]
    outcome = batch_decide_overtime(db, principal_of(t["supervisor"]), ids, action="approve")

    assert outcome["approved"] == [t["r1"].id]
    assert outcome["rejected"] == []
    assert outcome["skipped"] == [
        {"id": t["r2"].id, "reason": "Hierarchy restriction"},
        {"id": t["r3"].id, "reason": "Already processed"},
    ]

    db.expire_all()
    r1 = db.get(ClockInRecord, t["r1"].id)
    r2 = db.get(ClockInRecord, t["r2"].id)
    assert r1.ot_approved is True
    assert r1.ot_approved_by == f"employee:{t['supervisor'].id}"
    assert r2.ot_approved is None

    notes = _notifications(db)
    assert [(n.employee_id, n.type) for n in notes] == [(t["crew"].id, "ot_approved")]
    assert "1h 30m" in notes[0].message
    actions = db.execute(select(AuditEvent.action)).scalars().all()
    assert actions == ["overtime.approved"]


def test_second_batch_reports_everything_processed(db, ot_team, principal_of):
    t = ot_team
    batch_decide_overtime(db, principal_of(t["supervisor"]), [t["r1"].id], action="approve")
    outcome = batch_decide_overtime(db, principal_of(t["supervisor"]), [t["r1"].id], action="reject", reason="late")
    assert outcome["rejected"] == []
    assert outcome["skipped"] == [{"id": t["r1"].id, "reason": "Already processed"}]
    assert len(_notifications(db)) == 1


def test_batch_reports_missing_records(db, ot_team, principal_of):
    outcome = batch_decide_overtime(db, principal_of(ot_team["supervisor"]), [9999], action="approve")
    assert outcome["skipped"] == [{"id": 9999, "reason": "Record not found"}]


def test_batch_reject_requires_reason(db, ot_team, principal_of):
    with pytest.raises(ValidationError, match="Rejection reason is required"):
        batch_decide_overtime(db, principal_of(ot_team["supervisor"]), [ot_team["r1"].id], action="reject")
    with pytest.raises(ValidationError, match="action must be"):
        batch_decide_overtime(db, principal_of(ot_team["supervisor"]), [ot_team["r1"].id], action="maybe")


def test_batch_rejection_records_reason(db, ot_team, principal_of):
    t = ot_team
    outcome = batch_decide_overtime(db, principal_of(t["supervisor"]), [t["r1"].id], action="reject", reason="Not pre-approved")
    assert outcome["rejected"] == [t["r1"].id]
    db.expire_all()
    record = db.get(ClockInRecord, t["r1"].id)
    assert record.ot_approved is False
    assert record.ot_rejection_reason == "Not pre-approved"
    assert _notifications(db)[0].type == "ot_rejected"


def test_crew_cannot_decide(db, ot_team, principal_of):
    with pytest.raises(AuthorizationError):
        batch_decide_overtime(db, principal_of(ot_team["crew"]), [ot_team["r1"].id], action="approve")


def test_single_decision_enforces_hierarchy(db, ot_team, principal_of):
    t = ot_team
    with pytest.raises(AuthorizationError, match="Hierarchy restriction") as exc:
        decide_overtime(db, principal_of(t["supervisor"]), t["r2"].id, approve=True)
    assert exc.value.rule == "hierarchy"
    with pytest.raises(ConflictError, match="Already processed"):
        decide_overtime(db, principal_of(t["manager"]), t["r3"].id, approve=True)
    record = decide_overtime(db, principal_of(t["manager"]), t["r1"].id, approve=True)
    assert record.ot_approved is True


def test_pending_list_respects_scope_and_hierarchy(db, seed, ot_team, principal_of):
    t = ot_team
    elsewhere = seed.outlet(t["company"], "Elsewhere")
    stranger = seed.employee(t["company"], outlet=elsewhere)
    seed.flagged_ot(stranger, date(2025, 6, 2))

    rows = list_pending_overtime(db, principal_of(t["supervisor"]))
    assert [r.id for r in rows] == [t["r1"].id]
    assert list_pending_overtime(db, principal_of(t["crew"])) == []

    boss = seed.employee(t["company"], role="boss")
    assert len(list_pending_overtime(db, principal_of(boss))) == 3
