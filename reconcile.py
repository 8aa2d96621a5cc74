"""
reconcile.py
Membership status derivation, the greedy installment suggestion, and the
per-operation reconciliation context.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, Sequence

import db
from errors import DuesError, NotFoundError
from logging_config import get_logger
from models import (
    COL_INSTALLMENTS,
    COL_MEMBERSHIPS,
    COL_SUBMISSIONS,
    Installment,
    InstallmentStatus,
    Membership,
    MembershipStatus,
    PaymentSubmission,
    SubmissionStatus,
    to_money,
)

log = get_logger("reconcile")


def compute_membership_status(
    membership: Membership,
    installments: Sequence[Installment],
    submissions: Sequence[PaymentSubmission],
) -> MembershipStatus:
    """
    Derive the membership status from its installments, or from its
    submissions when the plan has no installments. Pure; reads nothing else.
    """
    requires_validation = membership.requires_validation

    if installments:
        statuses = [i.status for i in installments]
        any_settled = any(s.settled for s in statuses)
        if not any_settled:
            return MembershipStatus.PENDING
        if requires_validation:
            if all(s is InstallmentStatus.VALIDATED for s in statuses):
                return MembershipStatus.VALIDATED
            return MembershipStatus.PARTIAL
        if all(s.settled for s in statuses):
            return MembershipStatus.PAID
        return MembershipStatus.PARTIAL

    sub_statuses = {s.status for s in submissions}
    if requires_validation:
        if SubmissionStatus.VALIDATED in sub_statuses:
            return MembershipStatus.VALIDATED
        return MembershipStatus.PENDING
    if sub_statuses & {SubmissionStatus.PAID, SubmissionStatus.VALIDATED}:
        return MembershipStatus.PAID
    return MembershipStatus.PENDING


def greedy_suggest_installments(
    reported_amount: float, pending_installments: Iterable[Installment]
) -> list[str]:
    """
    Propose which pending installments a lump payment covers.

    Walks installments by ascending n and takes each one that still fits under
    the reported amount, skipping (not stopping at) those that don't. When
    nothing fits, falls back to the earliest pending installment. This is an
    order-biased heuristic, not a subset-sum solver.
    """
    ordered = sorted(pending_installments, key=lambda i: i.n)
    limit = to_money(reported_amount)
    picked: list[str] = []
    acc = Decimal("0")
    for inst in ordered:
        amount = to_money(inst.amount)
        if acc + amount <= limit:
            picked.append(inst.id)
            acc += amount
    if not picked and ordered:
        picked.append(ordered[0].id)
    return picked


@dataclass
class ReconcileContext:
    """
    Snapshot of one membership and its children, owned by a single operation.
    Never share an instance between operations.
    """

    membership: Membership
    installments: list[Installment]
    submissions: list[PaymentSubmission]

    @property
    def pending_installments(self) -> list[Installment]:
        return [i for i in self.installments if not i.settled]

    def installment(self, installment_id: str) -> Installment | None:
        return next((i for i in self.installments if i.id == installment_id), None)

    def submission(self, submission_id: str) -> PaymentSubmission | None:
        return next((s for s in self.submissions if s.id == submission_id), None)

    def applied_elsewhere(self, submission_id: str) -> set[str]:
        """Installment ids already consumed by other validated submissions."""
        used: set[str] = set()
        for s in self.submissions:
            if s.id != submission_id and s.status is SubmissionStatus.VALIDATED:
                used.update(s.applied_installment_ids or ())
        return used

    def refresh_children(self) -> None:
        self.installments = load_installments(self.membership.id)
        self.submissions = load_submissions(self.membership.id)


def load_membership(membership_id: str) -> Membership:
    row = db.fetch_one(f"SELECT * FROM {COL_MEMBERSHIPS} WHERE id = ?", (membership_id,))
    if row is None:
        raise NotFoundError("membership", membership_id)
    return Membership.from_row(row)


def load_installments(membership_id: str) -> list[Installment]:
    rows = db.fetch_all(
        f"SELECT * FROM {COL_INSTALLMENTS} WHERE membership_id = ? ORDER BY n ASC",
        (membership_id,),
    )
    return [Installment.from_row(r) for r in rows]


def load_submissions(membership_id: str) -> list[PaymentSubmission]:
    rows = db.fetch_all(
        f"SELECT * FROM {COL_SUBMISSIONS} WHERE membership_id = ? ORDER BY created_at DESC",
        (membership_id,),
    )
    return [PaymentSubmission.from_row(r) for r in rows]


def load_context(membership_id: str) -> ReconcileContext:
    membership = load_membership(membership_id)
    return ReconcileContext(
        membership=membership,
        installments=load_installments(membership_id),
        submissions=load_submissions(membership_id),
    )


def reconcile_membership_status(ctx: ReconcileContext) -> bool:
    """Write the derived status only when it differs. Returns True if it wrote."""
    computed = compute_membership_status(ctx.membership, ctx.installments, ctx.submissions)
    if computed is ctx.membership.status:
        return False

    db.update(COL_MEMBERSHIPS, ctx.membership.id, {"status": computed.value})
    log.info(
        "membership %s status %s -> %s",
        ctx.membership.id, ctx.membership.status.value, computed.value,
    )
    ctx.membership = replace(ctx.membership, status=computed)
    return True


def best_effort(step: str, fn, *args, **kwargs) -> str | None:
    """
    Run a follow-up write whose failure must not undo the primary operation.
    Returns None on success, or an error string after logging the failure.
    """
    try:
        fn(*args, **kwargs)
    except (DuesError, sqlite3.Error) as exc:
        log.warning("%s failed: %s", step, exc, exc_info=True)
        return f"{step}: {getattr(exc, 'code', type(exc).__name__)}: {exc}"
    return None
