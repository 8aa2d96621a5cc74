"""
memberships.py
Membership creation (schedule builder + duplicate guard), rollup counters and
pay-link administration.
"""

from __future__ import annotations

import json
import secrets
from typing import Sequence
from urllib.parse import urlencode

import db
import plans
from config import settings
from errors import NotFoundError, ValidationError
from logging_config import get_logger
from models import (
    COL_INSTALLMENTS,
    COL_MEMBERSHIPS,
    MEMBERSHIP_STATUS_RANK,
    SEASON_ALL,
    Installment,
    InstallmentStatus,
    InstallmentTemplate,
    Membership,
    MembershipStatus,
    PlanSnapshot,
    is_valid_season,
    sum_money,
)
from reconcile import best_effort, load_installments, load_membership

log = get_logger("memberships")

PAY_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REASON_ADMIN_BLOCKED = "Pay link blocked by admin."


def generate_pay_code(length: int | None = None) -> str:
    length = length or settings.pay_code_length
    return "".join(secrets.choice(PAY_CODE_ALPHABET) for _ in range(length))


def pay_url(membership_id: str, pay_code: str, base: str | None = None) -> str:
    base = (base or settings.base_url).rstrip("/")
    return f"{base}/membership_pay?{urlencode({'mid': membership_id, 'code': pay_code or ''})}"


def due_date_for(season: str, due_month_day: str | None) -> str | None:
    if season == SEASON_ALL or not due_month_day:
        return None
    return f"{season}-{due_month_day}"


def build_installment_schedule(
    template: Sequence[InstallmentTemplate], season: str, membership_id: str
) -> list[Installment]:
    """
    Expand a plan's installment template into pending installments.
    n must already run 1..count; it is never renumbered.
    """
    ordered = sorted(template, key=lambda t: t.n)
    ns = [t.n for t in ordered]
    if ns != list(range(1, len(ordered) + 1)):
        raise ValidationError(f"Installment template must number 1..{len(ordered)}, got {ns}.")

    return [
        Installment(
            id=db.new_id(),
            membership_id=membership_id,
            season=season,
            n=t.n,
            due_date=due_date_for(season, t.due_month_day),
            amount=t.amount,
            status=InstallmentStatus.PENDING,
            due_month_day=t.due_month_day,
        )
        for t in ordered
    ]


def _rank_key(m: Membership):
    return (MEMBERSHIP_STATUS_RANK[m.status], m.updated_at or m.created_at or "")


def find_existing_membership(associate_id: str, season: str) -> Membership | None:
    """
    Best existing membership for (associate, season): highest-ranked status,
    then most recently touched.
    """
    rows = db.fetch_all(
        f"SELECT * FROM {COL_MEMBERSHIPS} WHERE associate_id = ? AND season = ?",
        (associate_id, season),
    )
    if not rows:
        return None
    candidates = [Membership.from_row(r) for r in rows]
    if len(candidates) > 1:
        log.warning(
            "%d memberships found for associate %s season %s",
            len(candidates), associate_id, season,
        )
    return max(candidates, key=_rank_key)


def _initial_total(plan: PlanSnapshot) -> float | None:
    if plan.allow_custom_amount:
        return None
    if plan.total_amount is not None:
        return plan.total_amount
    return sum_money(t.amount for t in plan.installments_template)


def create_membership(
    associate_id: str,
    season: str,
    plan_id: str,
    associate_snapshot: dict | None = None,
) -> tuple[Membership, bool]:
    """
    Register an associate for a season under a plan.

    Returns (membership, created). When a membership already exists for the
    same associate and season it is returned with created=False and nothing is
    written. season "all" skips that lookup and always creates.

    The rollup counters are filled in best-effort after the inserts. A failed
    rollup is only logged: the membership comes back with zeroed counters and
    the next decision or recompute_membership_rollup() fills them in.
    """
    season = (season or "").strip()
    associate_id = (associate_id or "").strip()
    errors = []
    if not associate_id:
        errors.append("Associate is required.")
    if not is_valid_season(season):
        errors.append("Invalid season. Use a year (YYYY) or 'all'.")
    if errors:
        raise ValidationError(errors)

    plan = plans.get_plan(plan_id)

    # TODO: decide whether season "all" should be de-duplicated too.
    if season != SEASON_ALL:
        existing = find_existing_membership(associate_id, season)
        if existing is not None:
            log.info("reusing membership %s for associate %s season %s", existing.id, associate_id, season)
            return existing, False

    mid = db.new_id()
    now = db.server_timestamp()
    schedule = []
    if plan.allow_partial and plan.installments_template:
        schedule = build_installment_schedule(plan.installments_template, season, mid)

    db.insert(
        COL_MEMBERSHIPS,
        {
            "id": mid,
            "associate_id": associate_id,
            "associate_snapshot": json.dumps(associate_snapshot or {}),
            "season": season,
            "plan_id": plan.plan_id,
            "plan_snapshot": json.dumps(plan.to_dict()),
            "status": MembershipStatus.PENDING.value,
            "total_amount": _initial_total(plan),
            "currency": plan.currency,
            "pay_code": generate_pay_code(),
            "pay_link_enabled": 1,
            "pay_link_disabled_reason": None,
            "created_at": now,
            "updated_at": now,
        },
    )
    db.executemany(
        f"""
        INSERT INTO {COL_INSTALLMENTS}(id, membership_id, season, n, due_month_day, due_date,
            amount, status, created_at, updated_at)
        VALUES(?,?,?,?,?,?,?,?,?,?)
        """,
        [
            (i.id, mid, season, i.n, i.due_month_day, i.due_date, i.amount, i.status.value, now, now)
            for i in schedule
        ],
    )
    log.info(
        "created membership %s associate=%s season=%s plan=%s installments=%d",
        mid, associate_id, season, plan.plan_id, len(schedule),
    )

    best_effort("rollup", recompute_membership_rollup, mid)
    return load_membership(mid), True


def recompute_membership_rollup(membership_id: str) -> dict:
    """Recount installments onto the membership record. Idempotent."""
    installments = load_installments(membership_id)

    total = len(installments)
    settled = sum(1 for i in installments if i.settled)
    pending = total - settled

    dated = [i for i in installments if not i.settled and i.due_date]
    nxt = min(dated, key=lambda i: i.due_date) if dated else None

    rollup = {
        "installments_total": total,
        "installments_settled": settled,
        "installments_pending": pending,
        "next_unpaid_n": nxt.n if nxt else None,
        "next_unpaid_due_date": nxt.due_date if nxt else None,
    }
    if not db.update(COL_MEMBERSHIPS, membership_id, rollup):
        raise NotFoundError("membership", membership_id)
    return rollup


def set_pay_link(membership_id: str, enabled: bool, reason: str | None = None) -> None:
    fields = {
        "pay_link_enabled": 1 if enabled else 0,
        "pay_link_disabled_reason": None if enabled else (reason or REASON_ADMIN_BLOCKED),
    }
    if not db.update(COL_MEMBERSHIPS, membership_id, fields):
        raise NotFoundError("membership", membership_id)
    log.info("membership %s pay link %s", membership_id, "enabled" if enabled else "disabled")


def get_membership(membership_id: str) -> Membership:
    return load_membership(membership_id)


def list_memberships(
    season: str | None = None,
    status: MembershipStatus | str | None = None,
    needs_action: bool | None = None,
) -> list[Membership]:
    sql = f"SELECT * FROM {COL_MEMBERSHIPS} WHERE 1=1"
    params = []
    if season:
        sql += " AND season = ?"
        params.append(season)
    if status:
        sql += " AND status = ?"
        params.append(MembershipStatus.parse(status).value)
    sql += " ORDER BY created_at DESC"

    out = [Membership.from_row(r) for r in db.fetch_all(sql, tuple(params))]
    if needs_action is not None:
        out = [m for m in out if m.needs_action == needs_action]
    return out
