"""
models.py
Domain types: status enums, plan snapshot, membership / installment / submission
records and the decision result returned by admin actions.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from errors import InvalidStatusError, ValidationError

SEASON_ALL = "all"
SEASON_RE = re.compile(r"^\d{4}$")
MONTH_DAY_RE = re.compile(r"^(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")

# Collections / tables
COL_MEMBERSHIPS = "memberships"
COL_INSTALLMENTS = "membership_installments"
COL_SUBMISSIONS = "membership_payment_submissions"


def to_money(value) -> Decimal:
    """Exact decimal for a stored float amount (None counts as zero)."""
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def sum_money(amounts) -> float:
    return float(sum((to_money(a) for a in amounts), Decimal("0")))


def _parse(enum_cls, kind: str, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except (ValueError, AttributeError):
        raise InvalidStatusError(kind, value) from None


class MembershipStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    VALIDATED = "validated"
    REJECTED = "rejected"

    @classmethod
    def parse(cls, value) -> "MembershipStatus":
        return _parse(cls, "membership", value)


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    VALIDATED = "validated"

    @classmethod
    def parse(cls, value) -> "InstallmentStatus":
        return _parse(cls, "installment", value)

    @property
    def settled(self) -> bool:
        return self is not InstallmentStatus.PENDING


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    VALIDATED = "validated"
    REJECTED = "rejected"
    ERROR = "error"

    @classmethod
    def parse(cls, value) -> "SubmissionStatus":
        return _parse(cls, "submission", value)

    @property
    def terminal(self) -> bool:
        return self in (SubmissionStatus.PAID, SubmissionStatus.VALIDATED, SubmissionStatus.REJECTED)


# Used by the duplicate guard: higher is preferred.
MEMBERSHIP_STATUS_RANK = {
    MembershipStatus.VALIDATED: 5,
    MembershipStatus.PAID: 4,
    MembershipStatus.PARTIAL: 3,
    MembershipStatus.PENDING: 2,
    MembershipStatus.REJECTED: 1,
}


def is_valid_season(season: str) -> bool:
    return season == SEASON_ALL or bool(SEASON_RE.match(season or ""))


def _loads(text, default):
    if text is None or text == "":
        return default
    return json.loads(text)


@dataclass(frozen=True)
class InstallmentTemplate:
    n: int
    due_month_day: str | None
    amount: float

    def to_dict(self) -> dict:
        return {"n": self.n, "dueMonthDay": self.due_month_day, "amount": self.amount}

    @classmethod
    def from_dict(cls, data: dict) -> "InstallmentTemplate":
        due = data.get("dueMonthDay") or None
        if due is not None and not MONTH_DAY_RE.match(due):
            raise ValidationError(f"Invalid dueMonthDay {due!r}, expected MM-DD.")
        amount = float(data.get("amount") or 0)
        if amount < 0:
            raise ValidationError("Installment amount must be non-negative.")
        return cls(n=int(data["n"]), due_month_day=due, amount=amount)


@dataclass(frozen=True)
class PlanSnapshot:
    """Plan terms frozen onto a membership at creation time."""

    plan_id: str
    name: str
    currency: str
    total_amount: float | None
    requires_validation: bool
    allow_partial: bool
    allow_custom_amount: bool
    installments_template: tuple[InstallmentTemplate, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.plan_id,
            "name": self.name,
            "currency": self.currency,
            "totalAmount": self.total_amount,
            "requiresValidation": self.requires_validation,
            "allowPartial": self.allow_partial,
            "allowCustomAmount": self.allow_custom_amount,
            "installmentsTemplate": [t.to_dict() for t in self.installments_template],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlanSnapshot":
        total = data.get("totalAmount")
        return cls(
            plan_id=str(data.get("id") or ""),
            name=data.get("name") or "",
            currency=data.get("currency") or "CRC",
            total_amount=float(total) if total is not None else None,
            requires_validation=bool(data.get("requiresValidation")),
            allow_partial=bool(data.get("allowPartial")),
            allow_custom_amount=bool(data.get("allowCustomAmount")),
            installments_template=tuple(
                InstallmentTemplate.from_dict(t) for t in (data.get("installmentsTemplate") or [])
            ),
        )


@dataclass(frozen=True)
class Membership:
    id: str
    associate_id: str
    season: str
    plan_id: str
    plan_snapshot: PlanSnapshot
    status: MembershipStatus
    total_amount: float | None
    currency: str
    pay_code: str
    pay_link_enabled: bool = True
    pay_link_disabled_reason: str | None = None
    installments_total: int = 0
    installments_settled: int = 0
    installments_pending: int = 0
    next_unpaid_n: int | None = None
    next_unpaid_due_date: str | None = None
    associate_snapshot: dict = field(default_factory=dict)
    last_payment_submission_id: str | None = None
    last_payment_at: str | None = None
    validated_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def requires_validation(self) -> bool:
        return self.plan_snapshot.requires_validation

    @property
    def needs_action(self) -> bool:
        return self.status in (MembershipStatus.PENDING, MembershipStatus.PARTIAL)

    @classmethod
    def from_row(cls, row) -> "Membership":
        return cls(
            id=row["id"],
            associate_id=row["associate_id"],
            season=row["season"],
            plan_id=row["plan_id"] or "",
            plan_snapshot=PlanSnapshot.from_dict(_loads(row["plan_snapshot"], {})),
            status=MembershipStatus.parse(row["status"]),
            total_amount=row["total_amount"],
            currency=row["currency"],
            pay_code=row["pay_code"] or "",
            pay_link_enabled=bool(row["pay_link_enabled"]),
            pay_link_disabled_reason=row["pay_link_disabled_reason"],
            installments_total=row["installments_total"] or 0,
            installments_settled=row["installments_settled"] or 0,
            installments_pending=row["installments_pending"] or 0,
            next_unpaid_n=row["next_unpaid_n"],
            next_unpaid_due_date=row["next_unpaid_due_date"],
            associate_snapshot=_loads(row["associate_snapshot"], {}),
            last_payment_submission_id=row["last_payment_submission_id"],
            last_payment_at=row["last_payment_at"],
            validated_at=row["validated_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class Installment:
    id: str
    membership_id: str
    season: str
    n: int
    due_date: str | None
    amount: float
    status: InstallmentStatus = InstallmentStatus.PENDING
    due_month_day: str | None = None
    payment_submission_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def settled(self) -> bool:
        return self.status.settled

    @classmethod
    def from_row(cls, row) -> "Installment":
        return cls(
            id=row["id"],
            membership_id=row["membership_id"],
            season=row["season"],
            n=row["n"],
            due_date=row["due_date"],
            amount=row["amount"],
            status=InstallmentStatus.parse(row["status"]),
            due_month_day=row["due_month_day"],
            payment_submission_id=row["payment_submission_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class PaymentSubmission:
    id: str
    membership_id: str
    installment_id: str | None
    payer_name: str
    amount_reported: float
    currency: str
    method: str
    status: SubmissionStatus = SubmissionStatus.PENDING
    season: str | None = None
    email: str | None = None
    phone: str | None = None
    note: str | None = None
    admin_note: str | None = None
    applied_installment_ids: tuple[str, ...] | None = None
    applied_total: float | None = None
    file_url: str | None = None
    file_path: str | None = None
    file_type: str | None = None
    decided_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    @classmethod
    def from_row(cls, row) -> "PaymentSubmission":
        applied = _loads(row["applied_installment_ids"], None)
        return cls(
            id=row["id"],
            membership_id=row["membership_id"],
            installment_id=row["installment_id"],
            payer_name=row["payer_name"],
            amount_reported=row["amount_reported"],
            currency=row["currency"],
            method=row["method"],
            status=SubmissionStatus.parse(row["status"]),
            season=row["season"],
            email=row["email"],
            phone=row["phone"],
            note=row["note"],
            admin_note=row["admin_note"],
            applied_installment_ids=tuple(applied) if applied is not None else None,
            applied_total=row["applied_total"],
            file_url=row["file_url"],
            file_path=row["file_path"],
            file_type=row["file_type"],
            decided_at=row["decided_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class DecisionResult:
    """
    Outcome of an engine write sequence.
    primary_ok covers the writes the caller asked for; side_effect_ok covers the
    secondary writes (pay link, status, rollup) that may fail independently.
    """

    primary_ok: bool
    submission: PaymentSubmission | None = None
    side_effect_ok: bool = True
    side_effect_error: str | None = None
    membership_status: MembershipStatus | None = None
    pay_link_enabled: bool | None = None
    pay_link_disabled_reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.primary_ok and not self.side_effect_ok
