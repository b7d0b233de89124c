from dataclasses import dataclass

from .config import settings
from .errors import ValidationError
from .models import Company

GROUPING_TYPES = {"outlet", "department"}
PRORATION_ROUNDING = {"up", "down", "nearest"}
WORKING_WEEKS = {
    "mon_sun": frozenset(range(7)),
    "mon_sat": frozenset(range(6)),
    "mon_fri": frozenset(range(5)),
}


@dataclass(frozen=True)
class CompanyProfile:
    company_id: int
    grouping: str
    working_weekdays: frozenset
    auto_approve_leave_codes: frozenset
    proration_rounding: str
    max_carry_forward: float
    ot_threshold_minutes: int
    indoor_sales_manager_ids: frozenset

    @property
    def is_outlet(self) -> bool:
        return self.grouping == "outlet"

    def is_working_day(self, day) -> bool:
        return day.weekday() in self.working_weekdays

    def auto_approves(self, leave_type) -> bool:
        return bool(leave_type.is_paid) and leave_type.code.upper() in self.auto_approve_leave_codes

    @classmethod
    def from_company(cls, company: Company) -> "CompanyProfile":
        grouping = (company.grouping_type or "").strip().lower()
        if grouping not in GROUPING_TYPES:
            raise ValidationError(f"Company {company.id} has unknown grouping type {company.grouping_type!r}")
        raw = dict(company.settings or {})
        is_outlet = grouping == "outlet"

        week_key = str(raw.get("working_week") or ("mon_sun" if is_outlet else "mon_fri")).lower()
        if week_key not in WORKING_WEEKS:
            raise ValidationError(f"Unknown working week {week_key!r}")

        rounding = str(raw.get("leave_proration_rounding") or "nearest").lower()
        if rounding not in PRORATION_ROUNDING:
            rounding = "nearest"

        default_auto = [] if is_outlet else ["AL"]
        auto_codes = raw.get("auto_approve_leave_types", default_auto) or []

        return cls(
            company_id=company.id,
            grouping=grouping,
            working_weekdays=WORKING_WEEKS[week_key],
            auto_approve_leave_codes=frozenset(str(code).upper() for code in auto_codes),
            proration_rounding=rounding,
            max_carry_forward=float(raw.get("max_carry_forward", settings.DEFAULT_MAX_CARRY_FORWARD)),
            ot_threshold_minutes=int(raw.get("ot_threshold_minutes", settings.OT_DEFAULT_THRESHOLD_MINUTES)),
            indoor_sales_manager_ids=frozenset(int(x) for x in raw.get("indoor_sales_manager_ids", []) or []),
        )
