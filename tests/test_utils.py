import pytest

import utils
from reconcile import load_context


@pytest.mark.parametrize(
    "content_type, ok",
    [("image/png", True), ("image/jpeg", True), ("application/pdf", True), ("text/html", False), (None, False)],
)
def test_allowed_proof_types(content_type, ok):
    assert utils.is_allowed_proof_type(content_type) is ok


def test_validate_submission_inputs_collects_all_problems():
    errors = utils.validate_submission_inputs("", "-3", "x.exe", "application/x-msdownload", 10)
    assert len(errors) == 3


def test_validate_submission_inputs_ok():
    assert utils.validate_submission_inputs("Ana", "1500", "p.pdf", "application/pdf", 1024) == []


@pytest.mark.parametrize("value", ["nan", "inf", "", None, "12a"])
def test_parse_amount_rejects_non_numbers(value):
    assert utils.parse_amount(value) is None


def test_safe_file_name():
    assert utils.safe_file_name("mi recibo #3.png") == "mi_recibo_3.png"
    assert utils.safe_file_name(None) == "proof"


def test_frames_label_installments(annual3, submit):
    ctx = load_context(annual3.id)
    first = ctx.installments[0]
    submit(annual3, 1000, installment_id=first.id)
    ctx = load_context(annual3.id)

    inst_df = utils.installments_frame(ctx.installments, annual3.currency)
    assert list(inst_df["n"]) == [1, 2, 3]
    sub_df = utils.submissions_frame(ctx.submissions, ctx.installments)
    assert list(sub_df["installments"]) == ["#1"]
    assert utils.submissions_frame([], []).empty


def test_sample_data_is_reused_on_rerun():
    first = utils.insert_sample_data()
    second = utils.insert_sample_data()
    assert len(first) == 3
    assert first == second


def test_review_queue_frame(annual3, submit):
    sub = submit(annual3, 1500)
    df = utils.review_queue_frame([sub])
    assert list(df["membership"]) == [annual3.id]
    assert list(df["status"]) == ["pending"]
    assert list(df["reported"]) == ["CRC 1,500"]
    empty = utils.review_queue_frame([])
    assert empty.empty
    assert "payer" in empty.columns
