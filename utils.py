"""
utils.py
Validation, formatting, table frames, sample data.
"""

from __future__ import annotations

import math
import re
from datetime import date

import pandas as pd

import memberships
from config import settings
from models import Installment, PaymentSubmission

ALLOWED_PROOF_TYPES = ("application/pdf",)
PAYMENT_METHODS = ["sinpe", "transfer", "cash", "card", "other"]


def parse_amount(value) -> float | None:
    try:
        amt = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(amt) or math.isinf(amt):
        return None
    return amt


def is_allowed_proof_type(content_type: str | None) -> bool:
    ct = (content_type or "").lower()
    return ct.startswith("image/") or ct in ALLOWED_PROOF_TYPES


def validate_submission_inputs(
    payer_name: str,
    amount,
    file_name: str | None,
    content_type: str | None,
    size_bytes: int | None,
) -> list[str]:
    errors: list[str] = []
    if not (payer_name or "").strip():
        errors.append("Payer name is required.")
    amt = parse_amount(amount)
    if amt is None:
        errors.append("Amount must be numeric.")
    elif amt <= 0:
        errors.append("Amount must be > 0.")
    if not file_name:
        errors.append("Attach a payment proof (image or PDF).")
    else:
        if not is_allowed_proof_type(content_type):
            errors.append("File type not allowed. Use an image or a PDF.")
        max_bytes = settings.max_upload_mb * 1024 * 1024
        if size_bytes is not None and size_bytes > max_bytes:
            errors.append(f"File too large. Maximum {settings.max_upload_mb}MB.")
    return errors


def safe_file_name(name: str | None) -> str:
    return re.sub(r"[^\w.\-()]+", "_", name or "proof")


def fmt_money(amount, currency: str = "CRC") -> str:
    if amount is None or amount == "":
        return "—"
    amt = parse_amount(amount)
    if amt is None:
        return "—"
    return f"{currency} {amt:,.0f}"


def installments_frame(installments: list[Installment], currency: str) -> pd.DataFrame:
    rows = [
        {
            "n": i.n,
            "due": i.due_date or "—",
            "amount": fmt_money(i.amount, currency),
            "status": i.status.value,
        }
        for i in installments
    ]
    if not rows:
        return pd.DataFrame(columns=["n", "due", "amount", "status"])
    return pd.DataFrame(rows)


def submissions_frame(submissions: list[PaymentSubmission], installments: list[Installment]) -> pd.DataFrame:
    by_id = {i.id: i for i in installments}
    rows = []
    for s in submissions:
        ids = list(s.applied_installment_ids or ([s.installment_id] if s.installment_id else []))
        labels = [f"#{by_id[i].n}" for i in ids if i in by_id]
        rows.append(
            {
                "id": s.id,
                "created": s.created_at,
                "payer": s.payer_name,
                "reported": fmt_money(s.amount_reported, s.currency),
                "installments": ", ".join(labels) or "General",
                "method": s.method,
                "status": s.status.value,
                "applied": fmt_money(s.applied_total, s.currency),
                "admin note": s.admin_note or "",
            }
        )
    if not rows:
        return pd.DataFrame(columns=["id", "created", "payer", "reported", "installments", "method", "status"])
    return pd.DataFrame(rows)


def review_queue_frame(submissions: list[PaymentSubmission]) -> pd.DataFrame:
    columns = ["created", "payer", "membership", "season", "reported", "method", "status"]
    rows = [
        {
            "created": s.created_at,
            "payer": s.payer_name,
            "membership": s.membership_id,
            "season": s.season or "—",
            "reported": fmt_money(s.amount_reported, s.currency),
            "method": s.method,
            "status": s.status.value,
        }
        for s in submissions
    ]
    return pd.DataFrame(rows, columns=columns)


def insert_sample_data() -> list[str]:
    """
    Create a few sample memberships (one per bundled plan) for 'sample-<n>'
    associates in the current year. Re-running reuses the existing ones.
    """
    season = str(date.today().year)
    associates = [
        ("sample-1", "annual-3", {"fullName": "Ana Mora", "email": "ana@example.com", "phone": "8888-0001"}),
        ("sample-2", "annual-single", {"fullName": "Luis Vargas", "email": None, "phone": "8888-0002"}),
        ("sample-3", "monthly-self", {"fullName": "Sofía Rojas", "email": "sofia@example.com", "phone": None}),
    ]
    ids = []
    for associate_id, plan_id, snapshot in associates:
        membership, _ = memberships.create_membership(
            associate_id, season, plan_id, associate_snapshot=snapshot
        )
        ids.append(membership.id)
    return ids
