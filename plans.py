"""
plans.py
Read-only plan catalog. Memberships copy a plan's terms at creation time and
never read the catalog again.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from config import settings
from errors import NotFoundError, ValidationError
from models import PlanSnapshot

# Bundled catalog used when DUES_PLANS_FILE is not set.
DEFAULT_PLANS = [
    {
        "id": "annual-3",
        "name": "Annual (3 installments)",
        "currency": "CRC",
        "totalAmount": 3000,
        "requiresValidation": True,
        "allowPartial": True,
        "allowCustomAmount": False,
        "installmentsTemplate": [
            {"n": 1, "dueMonthDay": "01-31", "amount": 1000},
            {"n": 2, "dueMonthDay": "05-31", "amount": 1000},
            {"n": 3, "dueMonthDay": "09-30", "amount": 1000},
        ],
    },
    {
        "id": "annual-single",
        "name": "Annual (single payment)",
        "currency": "CRC",
        "totalAmount": 2800,
        "requiresValidation": True,
        "allowPartial": False,
        "allowCustomAmount": False,
        "installmentsTemplate": [],
    },
    {
        "id": "monthly-self",
        "name": "Monthly (no validation)",
        "currency": "CRC",
        "totalAmount": None,
        "requiresValidation": False,
        "allowPartial": True,
        "allowCustomAmount": False,
        "installmentsTemplate": [
            {"n": m, "dueMonthDay": f"{m:02d}-05", "amount": 250} for m in range(1, 13)
        ],
    },
    {
        "id": "donation",
        "name": "Supporter (custom amount)",
        "currency": "CRC",
        "totalAmount": None,
        "requiresValidation": False,
        "allowPartial": False,
        "allowCustomAmount": True,
        "installmentsTemplate": [],
    },
]


def _read_plans_file(path: Path) -> list[dict]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("plans", [])
    if not isinstance(data, list):
        raise ValidationError(f"Plan catalog {path} must hold a list of plans.")
    return data


@lru_cache(maxsize=1)
def load_catalog() -> dict[str, PlanSnapshot]:
    raw = _read_plans_file(settings.plans_file) if settings.plans_file else DEFAULT_PLANS
    return {str(p["id"]): PlanSnapshot.from_dict(p) for p in raw}


def list_plans() -> list[PlanSnapshot]:
    return list(load_catalog().values())


def get_plan(plan_id: str) -> PlanSnapshot:
    plan = load_catalog().get(plan_id)
    if plan is None:
        raise NotFoundError("plan", plan_id)
    return plan
