from decimal import Decimal

import pytest

from errors import InvalidStatusError, ValidationError
from models import (
    InstallmentStatus,
    InstallmentTemplate,
    MembershipStatus,
    PlanSnapshot,
    SubmissionStatus,
    is_valid_season,
    sum_money,
    to_money,
)


def test_status_parse_normalizes_case():
    assert MembershipStatus.parse(" Validated ") is MembershipStatus.VALIDATED
    assert InstallmentStatus.parse("paid") is InstallmentStatus.PAID


@pytest.mark.parametrize("value", ["submitted", "", None, "archived"])
def test_status_parse_rejects_unknown_values(value):
    with pytest.raises(InvalidStatusError) as exc:
        MembershipStatus.parse(value)
    assert exc.value.code == "invalid_status"


def test_installment_status_rejects_rejected():
    with pytest.raises(InvalidStatusError):
        InstallmentStatus.parse("rejected")


def test_submission_terminal_states():
    assert {s for s in SubmissionStatus if s.terminal} == {
        SubmissionStatus.PAID,
        SubmissionStatus.VALIDATED,
        SubmissionStatus.REJECTED,
    }


@pytest.mark.parametrize("season, ok", [("2026", True), ("all", True), ("26", False), ("", False), ("ALL", False)])
def test_season_format(season, ok):
    assert is_valid_season(season) is ok


def test_plan_snapshot_dict_shape():
    plan = PlanSnapshot.from_dict(
        {
            "id": "x",
            "name": "X",
            "currency": "USD",
            "totalAmount": None,
            "requiresValidation": 1,
            "allowPartial": True,
            "installmentsTemplate": [{"n": 1, "dueMonthDay": "02-15", "amount": "50"}],
        }
    )
    assert plan.requires_validation is True
    assert plan.allow_custom_amount is False
    assert plan.installments_template == (InstallmentTemplate(1, "02-15", 50.0),)
    assert PlanSnapshot.from_dict(plan.to_dict()) == plan


@pytest.mark.parametrize("entry", [{"n": 1, "dueMonthDay": "13-01", "amount": 1}, {"n": 1, "amount": -5}])
def test_template_rejects_bad_entries(entry):
    with pytest.raises(ValidationError):
        InstallmentTemplate.from_dict(entry)


def test_money_sums_are_exact():
    assert sum_money([0.1, 0.2]) == 0.3
    assert sum_money([33.10, 33.20]) == 66.3
    assert sum_money([]) == 0
    assert to_money(None) == Decimal("0")
    assert to_money(1000) == Decimal("1000")
