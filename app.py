"""
app.py
Streamlit front end for club membership dues: admin back office plus the
public pay page (/membership_pay?mid=...&code=...).
Run: streamlit run app.py
"""

from __future__ import annotations

from datetime import date

import pandas as pd
import streamlit as st

import auth
import db
import memberships
import payments
import plans
import utils
from config import settings
from errors import (
    DuesError,
    NotFoundError,
    PayLinkDisabledError,
    UploadError,
    ValidationError,
)
from logging_config import configure_logging
from models import MembershipStatus, SubmissionStatus, sum_money
from reconcile import load_context, reconcile_membership_status

st.set_page_config(page_title="Club Dues", layout="wide")

UPLOAD_MESSAGES = {
    "unauthorized": "You are not allowed to upload this file.",
    "retry-limit-exceeded": "Upload failed after several retries. Try another network or a smaller file.",
    "canceled": "Upload canceled.",
    "invalid-checksum": "The file was corrupted during upload. Try again.",
}


def init_once():
    configure_logging(settings.log_level)
    if settings.seed_default_admin:
        auth.ensure_default_admin()
    else:
        db.init_db()


def require_login():
    if "logged_in" not in st.session_state:
        st.session_state.logged_in = False
    if "username" not in st.session_state:
        st.session_state.username = None


def logout():
    st.session_state.logged_in = False
    st.session_state.username = None
    st.success("Logged out.")


def show_result(result, ok_message: str):
    st.success(ok_message)
    if result.degraded:
        st.warning(
            "The decision was saved, but a follow-up update failed and will be "
            f"picked up on the next refresh: {result.side_effect_error}"
        )


def login_screen():
    st.title("🔐 Dues Admin Login")
    col1, col2 = st.columns([1, 1])
    with col1:
        username = st.text_input("Username", value=auth.DEFAULT_ADMIN_USERNAME)
        password = st.text_input("Password", type="password")
        if st.button("Login", type="primary"):
            if auth.authenticate(username, password):
                st.session_state.logged_in = True
                st.session_state.username = username.strip()
                st.rerun()
            else:
                st.error("Invalid username or password.")
    with col2:
        st.info(
            "First run creates a default admin "
            f"(**{auth.DEFAULT_ADMIN_USERNAME}** / **{auth.DEFAULT_ADMIN_PASSWORD}**). "
            "You will be asked to change the password on first login."
        )


def password_form(title: str):
    st.subheader(title)
    p1 = st.text_input("New password", type="password")
    p2 = st.text_input("Confirm new password", type="password")
    if st.button("Update password", type="primary"):
        try:
            auth.change_password(st.session_state.username, p1, p2)
        except ValidationError as exc:
            for e in exc.errors:
                st.error(e)
            return
        st.success("Password updated.")
        st.rerun()


# ---------- Memberships ----------

def memberships_page():
    st.header("🎫 Memberships")

    with st.sidebar:
        st.subheader("Filters")
        season = st.text_input("Season", value="")
        status = st.selectbox("Status", ["All"] + [s.value for s in MembershipStatus])
        action = st.selectbox("Action", ["All", "Needs action", "Up to date"])

    needs_action = {"All": None, "Needs action": True, "Up to date": False}[action]
    rows = memberships.list_memberships(
        season=season.strip() or None,
        status=None if status == "All" else status,
        needs_action=needs_action,
    )
    df = pd.DataFrame(
        [
            {
                "id": m.id,
                "associate": m.associate_snapshot.get("fullName") or m.associate_id,
                "season": m.season,
                "plan": m.plan_snapshot.name,
                "status": m.status.value,
                "settled": f"{m.installments_settled}/{m.installments_total}",
                "next due": m.next_unpaid_due_date or "—",
                "pay link": "on" if m.pay_link_enabled else "off",
            }
            for m in rows
        ]
    )
    st.dataframe(df, use_container_width=True, hide_index=True)

    counts = {s: sum(1 for m in rows if m.status is s) for s in MembershipStatus}
    cols = st.columns(len(counts))
    for col, (s, c) in zip(cols, counts.items()):
        col.metric(s.value.title(), c)

    st.divider()
    create_membership_form()


def create_membership_form():
    st.subheader("➕ New membership")
    catalog = plans.list_plans()
    c1, c2, c3 = st.columns(3)
    with c1:
        associate_id = st.text_input("Associate ID")
        full_name = st.text_input("Full name")
    with c2:
        email = st.text_input("Email (optional)")
        phone = st.text_input("Phone (optional)")
    with c3:
        season = st.text_input("Season (YYYY or 'all')", value=str(date.today().year))
        plan_label = st.selectbox("Plan", [f"{p.name} ({p.plan_id})" for p in catalog])

    if st.button("Create membership", type="primary"):
        plan = catalog[[f"{p.name} ({p.plan_id})" for p in catalog].index(plan_label)]
        snapshot = {
            "fullName": full_name.strip(),
            "email": email.strip() or None,
            "phone": phone.strip() or None,
        }
        try:
            membership, created = memberships.create_membership(
                associate_id, season, plan.plan_id, associate_snapshot=snapshot
            )
        except ValidationError as exc:
            for e in exc.errors:
                st.error(e)
            return
        except DuesError as exc:
            st.error(exc.message)
            return
        if created:
            st.success(f"Membership created: {membership.id}")
        else:
            st.info(f"This associate already has a membership for {season}: {membership.id}")
        st.code(memberships.pay_url(membership.id, membership.pay_code))
        st.session_state.detail_membership_id = membership.id


# ---------- Payments ----------

def payments_page():
    st.header("💳 Payments")

    with st.sidebar:
        st.subheader("Filters")
        season = st.text_input("Season", value="", key="pay_season")
        status = st.selectbox("Status", ["All"] + [s.value for s in SubmissionStatus], key="pay_status")
    search = st.text_input("Search", placeholder="Name, note, membership or submission ID")

    rows = payments.list_submissions(
        season=season.strip() or None,
        status=None if status == "All" else status,
        search=search,
    )
    c1, c2 = st.columns(2)
    c1.metric("Submissions", len(rows))
    c2.metric("Reported total", utils.fmt_money(sum_money(s.amount_reported for s in rows)))
    st.dataframe(utils.review_queue_frame(rows), use_container_width=True, hide_index=True)

    pending = [s for s in rows if not s.terminal]
    if not pending:
        return
    labels = {s.id: f"{s.payer_name} • {utils.fmt_money(s.amount_reported, s.currency)} • {s.season}" for s in pending}
    sid = st.selectbox("Review submission", list(labels), format_func=labels.get)
    if st.button("Open membership", type="primary"):
        st.session_state.detail_membership_id = next(s.membership_id for s in pending if s.id == sid)
        st.session_state.page = "Membership detail"
        st.rerun()


# ---------- Membership detail ----------

def membership_detail_page():
    st.header("🧾 Membership detail")

    mid = st.text_input("Membership ID", value=st.session_state.get("detail_membership_id", ""))
    if not mid.strip():
        st.caption("Pick a membership from the list or paste its ID.")
        return
    st.session_state.detail_membership_id = mid.strip()

    try:
        ctx = load_context(mid.strip())
    except NotFoundError:
        st.error("Membership not found.")
        return
    reconcile_membership_status(ctx)
    m = ctx.membership
    p = m.plan_snapshot

    a = m.associate_snapshot
    st.write(
        f"**{a.get('fullName') or m.associate_id}** | Season **{m.season}** | "
        f"Plan **{p.name}** | Status **{m.status.value}**"
    )
    total_txt = "Custom amount" if p.allow_custom_amount else utils.fmt_money(m.total_amount, m.currency)
    st.caption(
        f"{total_txt} • {'Installments' if p.allow_partial else 'Single payment'} • "
        f"{'Admin validation' if p.requires_validation else 'No validation'}"
    )

    url = memberships.pay_url(m.id, m.pay_code)
    st.code(url)
    c1, c2, c3 = st.columns(3)
    with c1:
        if m.pay_link_enabled:
            if st.button("Block pay link"):
                memberships.set_pay_link(m.id, False)
                st.rerun()
        else:
            st.warning(m.pay_link_disabled_reason or "Pay link disabled.")
            if st.button("Enable pay link"):
                memberships.set_pay_link(m.id, True)
                st.rerun()
    with c2:
        if st.button("Recompute rollup"):
            memberships.recompute_membership_rollup(m.id)
            st.rerun()
    with c3:
        st.metric("Settled installments", f"{m.installments_settled}/{m.installments_total}")

    st.subheader("Installments")
    if ctx.installments:
        st.dataframe(utils.installments_frame(ctx.installments, m.currency), use_container_width=True, hide_index=True)
    else:
        st.caption("This plan has no installments (single payment).")

    st.subheader("Payment submissions")
    st.dataframe(
        utils.submissions_frame(ctx.submissions, ctx.installments), use_container_width=True, hide_index=True
    )

    for sub in ctx.submissions:
        if sub.terminal:
            continue
        with st.expander(f"Decide: {sub.payer_name} • {utils.fmt_money(sub.amount_reported, sub.currency)} • {sub.status.value}"):
            decision_form(ctx, sub)


def decision_form(ctx, sub):
    if sub.file_url:
        st.markdown(f"[View proof]({sub.file_url})")
    if sub.note:
        st.caption(f"Payer note: {sub.note}")

    selected = []
    pending = ctx.pending_installments
    if ctx.installments:
        suggested = payments.suggest_for_submission(sub.id)
        labels = {i.id: f"#{i.n} • {i.due_date or '—'} • {utils.fmt_money(i.amount, sub.currency)}" for i in pending}
        selected = st.multiselect(
            "Installments covered",
            options=list(labels),
            default=[i for i in suggested if i in labels],
            format_func=labels.get,
            key=f"sel_{sub.id}",
        )
        st.caption(
            "Suggested total: "
            + utils.fmt_money(sum_money(i.amount for i in pending if i.id in suggested), sub.currency)
        )
    note = st.text_input("Admin note", key=f"note_{sub.id}")

    b1, b2, b3 = st.columns(3)
    validate = b1.button("Validate", type="primary", key=f"val_{sub.id}")
    mark_paid = b2.button("Mark paid", key=f"paid_{sub.id}")
    reject = b3.button("Reject", key=f"rej_{sub.id}")
    if not (validate or mark_paid or reject):
        return

    try:
        if validate:
            result, label = payments.validate_submission(sub.id, selected, note), "Submission validated."
        elif mark_paid:
            result, label = payments.mark_submission_paid(sub.id, selected, note), "Payment recorded."
        else:
            result, label = payments.reject_submission(sub.id, note), "Submission rejected."
    except ValidationError as exc:
        for e in exc.errors:
            st.error(e)
        return
    except DuesError as exc:
        st.error(exc.message)
        return
    show_result(result, label)


# ---------- Settings ----------

def settings_page():
    st.header("⚙️ Settings")
    password_form("Change password")

    st.divider()
    st.subheader("Sample data")
    st.caption("Create sample memberships for the bundled plans (re-running reuses them).")
    if st.button("Insert sample data"):
        ids = utils.insert_sample_data()
        st.success(f"{len(ids)} sample memberships ready.")


def admin_app():
    require_login()
    if not st.session_state.logged_in:
        login_screen()
        return
    if db.is_force_password_change():
        st.title("⚠️ Change Password (Required)")
        st.warning("You must change the default password before using the app.")
        password_form("New password")
        return

    st.sidebar.title("🎫 Club Dues")
    st.sidebar.caption(f"Logged in as: {st.session_state.username}")
    pages = ["Memberships", "Payments", "Membership detail", "Settings"]
    if "page" not in st.session_state:
        st.session_state.page = "Memberships"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))
    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    {
        "Memberships": memberships_page,
        "Payments": payments_page,
        "Membership detail": membership_detail_page,
        "Settings": settings_page,
    }[st.session_state.page]()


# ---------- Public pay page ----------

def pay_page():
    st.title("💳 Membership payment")
    mid = st.query_params.get("mid")
    code = st.query_params.get("code")
    if not mid or not code:
        st.error("Invalid link. Make sure you opened the full link (mid and code).")
        return

    try:
        membership = memberships.get_membership(mid)
    except NotFoundError:
        st.error("Could not load this membership. Check the link or contact the club.")
        return
    allowed, reason = payments.pay_link_state(membership, code)
    if not allowed:
        if reason == payments.REASON_INVALID_CODE:
            st.error(reason)
        else:
            st.warning(reason)
        return

    ctx = load_context(membership.id)
    a = membership.associate_snapshot
    p = membership.plan_snapshot
    st.write(f"**{a.get('fullName') or ''}** • {p.name} • Season {membership.season}")

    pending = ctx.pending_installments
    options = {"": "General payment (no specific installment)"}
    options.update(
        {i.id: f"#{i.n} • due {i.due_date or '—'} • {utils.fmt_money(i.amount, membership.currency)}" for i in pending}
    )

    with st.form("pay_form"):
        installment_id = st.selectbox("Installment", list(options), format_func=options.get)
        payer_name = st.text_input("Payer name", value=a.get("fullName") or "")
        c1, c2 = st.columns(2)
        email = c1.text_input("Email", value=a.get("email") or "")
        phone = c2.text_input("Phone", value=a.get("phone") or "")
        amount = st.text_input(
            "Amount paid",
            help="This plan accepts any amount." if p.allow_custom_amount else "Enter the exact amount you paid.",
        )
        method = st.selectbox("Method", utils.PAYMENT_METHODS)
        proof = st.file_uploader("Payment proof (image or PDF)", type=["png", "jpg", "jpeg", "webp", "pdf"])
        note = st.text_area("Note (optional)")
        submitted = st.form_submit_button("Send proof", type="primary")

    if not submitted:
        return

    try:
        result = payments.submit_payment(
            membership.id,
            code,
            payer_name,
            amount,
            method,
            proof.name if proof else None,
            proof.getvalue() if proof else None,
            proof.type if proof else None,
            installment_id=installment_id or None,
            email=email,
            phone=phone,
            note=note,
        )
    except ValidationError as exc:
        for e in exc.errors:
            st.warning(e)
        return
    except PayLinkDisabledError as exc:
        st.warning(exc.reason or "This link is disabled.")
        return
    except UploadError as exc:
        st.error(UPLOAD_MESSAGES.get(exc.storage_code, "Something went wrong uploading your proof. Try again or contact the club."))
        return

    st.success("✅ Proof sent. An admin will review it soon.")
    if result.submission and result.submission.status is SubmissionStatus.PENDING and result.degraded:
        st.caption("The link stays open until the admin reviews your proof.")


def main():
    init_once()
    nav = st.navigation(
        [
            st.Page(admin_app, title="Club Dues", default=True),
            st.Page(pay_page, title="Membership payment", url_path="membership_pay"),
        ],
        position="hidden",
    )
    nav.run()


main()
