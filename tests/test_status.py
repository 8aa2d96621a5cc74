import pytest

import db
from models import (
    Installment,
    InstallmentStatus,
    Membership,
    MembershipStatus,
    PaymentSubmission,
    PlanSnapshot,
    SubmissionStatus,
)
from reconcile import compute_membership_status, load_context, reconcile_membership_status

P = InstallmentStatus.PENDING
PD = InstallmentStatus.PAID
V = InstallmentStatus.VALIDATED


def make_membership(requires_validation, status=MembershipStatus.PENDING):
    plan = PlanSnapshot(
        plan_id="p",
        name="Plan",
        currency="CRC",
        total_amount=3000.0,
        requires_validation=requires_validation,
        allow_partial=True,
        allow_custom_amount=False,
    )
    return Membership(
        id="m1",
        associate_id="a1",
        season="2026",
        plan_id="p",
        plan_snapshot=plan,
        status=status,
        total_amount=3000.0,
        currency="CRC",
        pay_code="CODE123",
    )


def make_installments(*statuses):
    return [
        Installment(id=f"i{n}", membership_id="m1", season="2026", n=n, due_date=None, amount=1000.0, status=s)
        for n, s in enumerate(statuses, start=1)
    ]


def make_submissions(*statuses):
    return [
        PaymentSubmission(
            id=f"s{k}",
            membership_id="m1",
            installment_id=None,
            payer_name="x",
            amount_reported=100.0,
            currency="CRC",
            method="sinpe",
            status=s,
        )
        for k, s in enumerate(statuses)
    ]


@pytest.mark.parametrize(
    "requires_validation, statuses, expected",
    [
        (True, (V, V, V), MembershipStatus.VALIDATED),
        (True, (V, P, P), MembershipStatus.PARTIAL),
        (True, (PD, P, P), MembershipStatus.PARTIAL),
        (True, (V, V, PD), MembershipStatus.PARTIAL),
        (True, (PD, PD, PD), MembershipStatus.PARTIAL),
        (True, (P, P, P), MembershipStatus.PENDING),
        (False, (PD, PD, PD), MembershipStatus.PAID),
        (False, (V, PD, V), MembershipStatus.PAID),
        (False, (V, V, V), MembershipStatus.PAID),
        (False, (PD, P, P), MembershipStatus.PARTIAL),
        (False, (V, P, PD), MembershipStatus.PARTIAL),
        (False, (P, P, P), MembershipStatus.PENDING),
    ],
)
def test_status_with_installments(requires_validation, statuses, expected):
    m = make_membership(requires_validation)
    assert compute_membership_status(m, make_installments(*statuses), []) is expected


def test_installments_take_precedence_over_submissions():
    m = make_membership(True)
    subs = make_submissions(SubmissionStatus.VALIDATED)
    assert compute_membership_status(m, make_installments(P, P), subs) is MembershipStatus.PENDING


S = SubmissionStatus


@pytest.mark.parametrize(
    "requires_validation, statuses, expected",
    [
        (True, (S.VALIDATED,), MembershipStatus.VALIDATED),
        (True, (S.REJECTED, S.VALIDATED), MembershipStatus.VALIDATED),
        (True, (S.PAID,), MembershipStatus.PENDING),
        (True, (S.PENDING, S.REJECTED, S.ERROR), MembershipStatus.PENDING),
        (True, (), MembershipStatus.PENDING),
        (False, (S.PAID,), MembershipStatus.PAID),
        (False, (S.VALIDATED,), MembershipStatus.PAID),
        (False, (S.PENDING, S.REJECTED), MembershipStatus.PENDING),
        (False, (), MembershipStatus.PENDING),
    ],
)
def test_status_without_installments(requires_validation, statuses, expected):
    m = make_membership(requires_validation)
    assert compute_membership_status(m, [], make_submissions(*statuses)) is expected


def test_compute_is_pure():
    m = make_membership(False)
    inst = make_installments(PD, P)
    before = (m, list(inst))
    first = compute_membership_status(m, inst, [])
    second = compute_membership_status(m, inst, [])
    assert first is second is MembershipStatus.PARTIAL
    assert (m, inst) == before


def test_reconcile_writes_once_then_is_idempotent(annual3):
    inst = load_context(annual3.id).installments[0]
    db.update("membership_installments", inst.id, {"status": "validated"})

    ctx = load_context(annual3.id)
    assert reconcile_membership_status(ctx) is True
    assert ctx.membership.status is MembershipStatus.PARTIAL
    stamp = load_context(annual3.id).membership.updated_at

    again = load_context(annual3.id)
    assert reconcile_membership_status(again) is False
    assert reconcile_membership_status(again) is False
    after = load_context(annual3.id).membership
    assert after.status is MembershipStatus.PARTIAL
    assert after.updated_at == stamp
