"""
payments.py
Payer submissions behind the pay-link gate, and the admin decisions
(validate / mark paid / reject) applied to them.

Each operation is an ordered sequence of single-document writes: the
submission first, then its installments, then the membership (pay link,
status, rollup). Nothing wraps them in one transaction, so a failure part way
leaves the earlier writes in place. The membership-level writes are
best-effort: their failures are logged and returned in the DecisionResult
instead of being raised over a decision that already committed.
"""

from __future__ import annotations

import json
import secrets
import time
from dataclasses import replace

import db
import memberships
import utils
from errors import (
    InvalidCodeError,
    NotFoundError,
    PayLinkDisabledError,
    SubmissionLockedError,
    UploadError,
    ValidationError,
)
from logging_config import get_logger
from models import (
    COL_INSTALLMENTS,
    COL_MEMBERSHIPS,
    COL_SUBMISSIONS,
    DecisionResult,
    InstallmentStatus,
    Membership,
    PaymentSubmission,
    SubmissionStatus,
    sum_money,
)
from reconcile import (
    ReconcileContext,
    best_effort,
    greedy_suggest_installments,
    load_context,
    load_membership,
    reconcile_membership_status,
)
from storage import LocalProofStorage, ProofStorage

log = get_logger("payments")

REASON_UNDER_REVIEW = "Payment proof submitted. Under admin review."
REASON_UP_TO_DATE_VALIDATED = "Dues up to date: payment(s) validated."
REASON_UP_TO_DATE_PAID = "Dues up to date: payment recorded."
DEFAULT_REJECT_NOTE = "Rejected by admin"
REASON_INVALID_CODE = "Invalid payment code."
REASON_LINK_DISABLED = "This payment link is disabled."


# ---------- Pay-link gate ----------

def _code_matches(membership: Membership, code: str | None) -> bool:
    return bool(code) and secrets.compare_digest(membership.pay_code or "", code)


def pay_link_state(membership: Membership, code: str | None) -> tuple[bool, str | None]:
    """(allowed, reason) for a supplied code, without raising."""
    if not _code_matches(membership, code):
        return False, REASON_INVALID_CODE
    if not membership.pay_link_enabled:
        return False, membership.pay_link_disabled_reason or REASON_LINK_DISABLED
    return True, None


def check_pay_link(membership_id: str, code: str | None) -> Membership:
    """Load the membership behind a pay link, or raise why it can't be used."""
    membership = load_membership(membership_id)
    if not _code_matches(membership, code):
        raise InvalidCodeError(membership_id)
    if not membership.pay_link_enabled:
        raise PayLinkDisabledError(membership_id, membership.pay_link_disabled_reason)
    return membership


# ---------- Payer submission ----------

def get_submission(submission_id: str) -> PaymentSubmission:
    row = db.fetch_one(f"SELECT * FROM {COL_SUBMISSIONS} WHERE id = ?", (submission_id,))
    if row is None:
        raise NotFoundError("submission", submission_id)
    return PaymentSubmission.from_row(row)


def submit_payment(
    membership_id: str,
    code: str,
    payer_name: str,
    amount,
    method: str,
    file_name: str | None,
    file_bytes: bytes | None,
    content_type: str | None,
    installment_id: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    note: str | None = None,
    storage: ProofStorage | None = None,
) -> DecisionResult:
    membership = check_pay_link(membership_id, code)

    size = len(file_bytes) if file_bytes is not None else None
    errors = utils.validate_submission_inputs(payer_name, amount, file_name, content_type, size)
    if installment_id:
        ctx = load_context(membership_id)
        inst = ctx.installment(installment_id)
        if inst is None:
            errors.append("Selected installment does not belong to this membership.")
        elif inst.settled:
            errors.append(f"Installment #{inst.n} is already settled.")
    if errors:
        raise ValidationError(errors)

    # The link may have been closed since the form was opened.
    membership = check_pay_link(membership_id, code)

    sid = db.new_id()
    now = db.server_timestamp()
    db.insert(
        COL_SUBMISSIONS,
        {
            "id": sid,
            "membership_id": membership.id,
            "installment_id": installment_id or None,
            "season": membership.season,
            "payer_name": payer_name.strip(),
            "email": (email or "").strip() or None,
            "phone": (phone or "").strip() or None,
            "amount_reported": utils.parse_amount(amount),
            "currency": membership.currency,
            "method": method or "other",
            "note": (note or "").strip() or None,
            "admin_note": None,
            "status": SubmissionStatus.PENDING.value,
            "file_type": content_type,
            "created_at": now,
            "updated_at": now,
        },
    )
    log.info("submission %s created for membership %s", sid, membership.id)

    storage = storage or LocalProofStorage()
    path = f"membership_submissions/{membership.id}/{sid}/{int(time.time() * 1000)}_{utils.safe_file_name(file_name)}"
    try:
        stored = storage.upload_proof(path, file_bytes or b"", content_type)
    except UploadError as exc:
        log.warning("upload failed for submission %s: %s", sid, exc.storage_code)
        best_effort(
            "mark submission error",
            db.update,
            COL_SUBMISSIONS,
            sid,
            {"status": SubmissionStatus.ERROR.value, "admin_note": f"Upload error: {exc.storage_code}"},
        )
        raise

    db.update(
        COL_SUBMISSIONS,
        sid,
        {"file_url": stored.url, "file_path": stored.path, "file_type": stored.content_type},
    )

    err = best_effort("pay link auto-disable", memberships.set_pay_link, membership.id, False, REASON_UNDER_REVIEW)
    return DecisionResult(
        primary_ok=True,
        submission=get_submission(sid),
        side_effect_ok=err is None,
        side_effect_error=err,
        membership_status=membership.status,
        pay_link_enabled=membership.pay_link_enabled if err else False,
        pay_link_disabled_reason=membership.pay_link_disabled_reason if err else REASON_UNDER_REVIEW,
    )


# ---------- Admin decisions ----------

def _open_submission(submission_id: str) -> tuple[PaymentSubmission, ReconcileContext]:
    sub = get_submission(submission_id)
    if sub.terminal:
        raise SubmissionLockedError(sub.id, sub.status.value)
    return sub, load_context(sub.membership_id)


def suggest_for_submission(submission_id: str) -> list[str]:
    sub = get_submission(submission_id)
    ctx = load_context(sub.membership_id)
    return greedy_suggest_installments(sub.amount_reported, ctx.pending_installments)


def _select_installments(
    sub: PaymentSubmission,
    ctx: ReconcileContext,
    installment_ids,
    target: InstallmentStatus,
) -> list[str]:
    ids = list(dict.fromkeys(i for i in (installment_ids or []) if i))
    if not ctx.installments:
        if ids:
            raise ValidationError("This membership has no installments to apply.")
        return []

    if not ids and sub.installment_id:
        ids = [sub.installment_id]
    if not ids:
        raise ValidationError("Select at least one installment.")

    problems = []
    used = ctx.applied_elsewhere(sub.id)
    for iid in ids:
        inst = ctx.installment(iid)
        if inst is None:
            problems.append(f"Installment {iid} does not belong to this membership.")
        elif iid in used or inst.status is InstallmentStatus.VALIDATED:
            problems.append(f"Installment #{inst.n} is already validated.")
        elif target is InstallmentStatus.PAID and inst.settled:
            problems.append(f"Installment #{inst.n} is already paid.")
    if problems:
        raise ValidationError(problems)
    return ids


def _follow_up(ctx: ReconcileContext, submission_id: str, pay_link: dict) -> list[str]:
    """Membership-level writes after a decision; returns the failures."""
    failures = []

    def write_membership():
        db.update(COL_MEMBERSHIPS, ctx.membership.id, pay_link)
        ctx.membership = replace(
            ctx.membership,
            pay_link_enabled=bool(pay_link["pay_link_enabled"]),
            pay_link_disabled_reason=pay_link["pay_link_disabled_reason"],
        )

    for step, fn, args in (
        ("membership update", write_membership, ()),
        ("status reconcile", reconcile_membership_status, (ctx,)),
        ("rollup", memberships.recompute_membership_rollup, (ctx.membership.id,)),
    ):
        err = best_effort(step, fn, *args)
        if err:
            failures.append(err)
    if failures:
        log.warning("decision on submission %s left %d follow-up(s) failed", submission_id, len(failures))
    return failures


def _settle(submission_id: str, installment_ids, admin_note: str | None, target: SubmissionStatus) -> DecisionResult:
    inst_target = InstallmentStatus.VALIDATED if target is SubmissionStatus.VALIDATED else InstallmentStatus.PAID
    sub, ctx = _open_submission(submission_id)
    ids = _select_installments(sub, ctx, installment_ids, inst_target)
    applied_total = sum_money(ctx.installment(i).amount for i in ids)

    decided_at = db.server_timestamp()
    db.update(
        COL_SUBMISSIONS,
        sub.id,
        {
            "status": target.value,
            "admin_note": admin_note or None,
            "applied_installment_ids": json.dumps(ids),
            "applied_total": applied_total,
            "decided_at": decided_at,
        },
    )
    for iid in ids:
        db.update(
            COL_INSTALLMENTS,
            iid,
            {"status": inst_target.value, "payment_submission_id": sub.id},
        )
    log.info(
        "submission %s %s: installments=%s applied_total=%s",
        sub.id, target.value, ids, applied_total,
    )

    failures = []
    err = best_effort("reload", ctx.refresh_children)
    if err:
        failures.append(err)
    else:
        enable_again = bool(ctx.pending_installments)
        reason = None
        if not enable_again:
            reason = REASON_UP_TO_DATE_VALIDATED if target is SubmissionStatus.VALIDATED else REASON_UP_TO_DATE_PAID
        pay_link = {
            "pay_link_enabled": 1 if enable_again else 0,
            "pay_link_disabled_reason": reason,
            "last_payment_submission_id": sub.id,
            "last_payment_at": decided_at,
        }
        if target is SubmissionStatus.VALIDATED:
            pay_link["validated_at"] = decided_at
        failures.extend(_follow_up(ctx, sub.id, pay_link))

    return _result(sub.id, ctx, failures)


def validate_submission(submission_id: str, installment_ids=None, admin_note: str | None = None) -> DecisionResult:
    """Validate a pending submission against the chosen installments."""
    return _settle(submission_id, installment_ids, admin_note, SubmissionStatus.VALIDATED)


def mark_submission_paid(submission_id: str, installment_ids=None, admin_note: str | None = None) -> DecisionResult:
    """Record the payment without admin validation."""
    return _settle(submission_id, installment_ids, admin_note, SubmissionStatus.PAID)


def reject_submission(submission_id: str, admin_note: str | None = None) -> DecisionResult:
    """Reject a pending submission. Always reopens the pay link."""
    sub, ctx = _open_submission(submission_id)
    db.update(
        COL_SUBMISSIONS,
        sub.id,
        {
            "status": SubmissionStatus.REJECTED.value,
            "admin_note": (admin_note or "").strip() or DEFAULT_REJECT_NOTE,
            "decided_at": db.server_timestamp(),
        },
    )
    log.info("submission %s rejected", sub.id)

    failures = []
    err = best_effort("reload", ctx.refresh_children)
    if err:
        failures.append(err)
    pay_link = {"pay_link_enabled": 1, "pay_link_disabled_reason": None}
    failures.extend(_follow_up(ctx, sub.id, pay_link))
    return _result(sub.id, ctx, failures)


def update_admin_note(submission_id: str, admin_note: str | None) -> PaymentSubmission:
    """The one edit still allowed on a decided submission."""
    get_submission(submission_id)
    db.update(COL_SUBMISSIONS, submission_id, {"admin_note": (admin_note or "").strip() or None})
    return get_submission(submission_id)


# ---------- Review queue ----------

def _associate_labels() -> dict[str, str]:
    labels = {}
    for r in db.fetch_all(f"SELECT id, associate_id, associate_snapshot FROM {COL_MEMBERSHIPS}"):
        snapshot = json.loads(r["associate_snapshot"] or "{}")
        labels[r["id"]] = f"{snapshot.get('fullName') or ''} {r['associate_id']}".strip()
    return labels


def _search_text(sub: PaymentSubmission, labels: dict[str, str]) -> str:
    parts = [
        sub.id,
        sub.membership_id,
        labels.get(sub.membership_id),
        sub.payer_name,
        sub.email,
        sub.phone,
        sub.note,
        sub.season,
        sub.status.value,
    ]
    return " ".join(str(p) for p in parts if p).lower()


def list_submissions(
    season: str | None = None,
    status: SubmissionStatus | str | None = None,
    search: str | None = None,
) -> list[PaymentSubmission]:
    """
    Submissions across every membership, newest first. search matches the
    submission or membership id, the associate, the payer and the payer's note.
    """
    sql = f"SELECT * FROM {COL_SUBMISSIONS} WHERE 1=1"
    params = []
    if season:
        sql += " AND season = ?"
        params.append(season)
    if status:
        sql += " AND status = ?"
        params.append(SubmissionStatus.parse(status).value)
    sql += " ORDER BY created_at DESC"

    out = [PaymentSubmission.from_row(r) for r in db.fetch_all(sql, tuple(params))]
    needle = (search or "").strip().lower()
    if needle:
        labels = _associate_labels()
        out = [s for s in out if needle in _search_text(s, labels)]
    return out


def _result(submission_id: str, ctx: ReconcileContext, failures: list[str]) -> DecisionResult:
    return DecisionResult(
        primary_ok=True,
        submission=get_submission(submission_id),
        side_effect_ok=not failures,
        side_effect_error="; ".join(failures) or None,
        membership_status=ctx.membership.status,
        pay_link_enabled=ctx.membership.pay_link_enabled,
        pay_link_disabled_reason=ctx.membership.pay_link_disabled_reason,
    )
