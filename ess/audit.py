import json

from sqlalchemy.orm import Session

from .clock import utc_now_naive
from .models import AuditEvent


def _to_payload_json(payload: dict | None) -> str | None:
    if not payload:
        return None
    try:
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)
    except TypeError:
        return json.dumps({"raw": str(payload)}, ensure_ascii=True)


def log_audit_event(
    db: Session,
    action: str,
    *,
    company_id: int | None = None,
    actor: str | None = None,
    entity: str | None = None,
    payload: dict | None = None,
) -> AuditEvent:
    row = AuditEvent(
        company_id=company_id,
        action=(action or "").strip()[:80],
        actor=(actor or "").strip()[:40] or None,
        entity=(entity or "").strip()[:120] or None,
        payload_json=_to_payload_json(payload),
        created_at=utc_now_naive(),
    )
    db.add(row)
    db.flush()
    return row
