"""
app.py
Streamlit committee dues portal (admin screens + member dashboard).
Run: streamlit run app.py
"""

from __future__ import annotations

from datetime import date

import pandas as pd
import streamlit as st

import auth
import config
import db
import gateway
import ledger
import utils
from errors import PortalError
from models import EXPENSE_CATEGORIES, MemberStatus

st.set_page_config(page_title="Committee Dues Portal", layout="wide")


def init_once():
    config.setup_logging()
    cfg = config.get_config()
    # Initialize DB + default admin if needed
    default_hash = auth.hash_password("admin123")
    db.init_db(default_hash, cfg.admin_username)
    return cfg


def require_login():
    for key, default in (("logged_in", False), ("username", None), ("role", None), ("member_id", None)):
        if key not in st.session_state:
            st.session_state[key] = default


def logout():
    st.session_state.logged_in = False
    st.session_state.username = None
    st.session_state.role = None
    st.session_state.member_id = None
    st.success("Logged out.")


def show_result(result):
    if result.success:
        st.success(result.message)
        st.rerun()
    else:
        st.error(result.message)


def login_screen():
    st.title("🔐 Committee Portal Login")

    admin_tab, member_tab = st.tabs(["Admin", "Member"])
    with admin_tab:
        username = st.text_input("Username", value="admin")
        password = st.text_input("Password", type="password", key="admin_pw")
        if st.button("Login", type="primary", key="admin_login"):
            if auth.login(username.strip(), password):
                st.session_state.logged_in = True
                st.session_state.role = "admin"
                st.session_state.username = username.strip()
                st.rerun()
            else:
                st.error("Invalid username or password.")
        st.caption("First run creates admin / admin123; you will be forced to change it.")

    with member_tab:
        email = st.text_input("Email")
        mpassword = st.text_input("Password", type="password", key="member_pw")
        if st.button("Login", type="primary", key="member_login"):
            member_id = auth.member_login(email, mpassword)
            if member_id is None:
                st.error("Invalid email or password.")
            else:
                st.session_state.logged_in = True
                st.session_state.role = "member"
                st.session_state.member_id = member_id
                st.session_state.username = email.strip()
                st.rerun()


def force_change_password_screen():
    st.title("⚠️ Change Password (Required)")

    st.warning("You must change the default password before using the app.")
    new1 = st.text_input("New password", type="password")
    new2 = st.text_input("Confirm new password", type="password")

    if st.button("Update password", type="primary"):
        if len(new1) < 6:
            st.error("Password must be at least 6 characters.")
            return
        if new1 != new2:
            st.error("Passwords do not match.")
            return
        auth.change_password(st.session_state.username, new1)
        st.success("Password updated. You can continue.")
        st.rerun()


def members_frame(members) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "id": m.id,
                "name": m.name,
                "email": m.email,
                "phone": m.phone,
                "joined": utils.fmt_date(m.joined_date),
                "total_paid": float(m.total_paid),
                "pending": float(m.pending),
                "status": m.status.value,
            }
            for m in members
        ],
        columns=["id", "name", "email", "phone", "joined", "total_paid", "pending", "status"],
    )


# ---------- Admin pages ----------

def dashboard_page():
    st.header("📊 Dashboard")

    kpis = utils.dashboard_kpis()
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total payments", utils.fmt_money(kpis["total_payments"]))
    c2.metric("Paid members", kpis["paid_members"])
    c3.metric("Members with dues", kpis["pending_members"])
    c4.metric("Total expenditure", utils.fmt_money(kpis["total_expenditure"]))

    st.divider()

    left, right = st.columns([2, 1])
    with left:
        st.subheader("Payments (last 6 months)")
        st.bar_chart(utils.payment_overview().set_index("month"))
    with right:
        st.subheader("Largest pending balances")
        df = utils.members_with_pending()
        if df.empty:
            st.caption("Nobody has pending dues.")
        else:
            st.dataframe(df, use_container_width=True, hide_index=True)

    drift = utils.balance_drift()
    if not drift.empty:
        with st.expander(f"Balance check: {len(drift)} member(s) differ from their unpaid bills"):
            st.dataframe(drift, use_container_width=True, hide_index=True)


def member_form(existing=None):
    if existing:
        st.subheader(f"✏️ Edit Member (ID: {existing.id})")
    else:
        st.subheader("➕ Add Member")

    col1, col2 = st.columns(2)
    with col1:
        name = st.text_input("Name", value=(existing.name if existing else ""))
        email = st.text_input("Email", value=(existing.email or "" if existing else ""))
        phone = st.text_input("Phone", value=(existing.phone or "" if existing else ""))
    with col2:
        joined = st.date_input(
            "Joining date",
            value=(existing.joined_date if existing else date.today()),
            min_value=date(2001, 5, 1),
            disabled=bool(existing),
        )
        password = None if existing else st.text_input("Password (for member login)", type="password")

    errors = utils.validate_member_inputs(name, email, phone, joined, password)
    if errors:
        for e in errors:
            st.error(e)

    if st.button("Save", type="primary", disabled=bool(errors)):
        if existing:
            show_result(ledger.run_action(ledger.update_member, existing.id, name, email, phone,
                                          message="Member details updated successfully."))
        else:
            show_result(ledger.run_action(
                ledger.register_member, name, email, phone, joined, password or None,
                message=lambda m: f"{m.name} has been added with {utils.fmt_money(m.pending)} accrued.",
            ))


def member_actions(member, cfg):
    st.subheader(f"{member.name}: {member.status.value}")
    c1, c2, c3 = st.columns(3)
    c1.metric("Total paid", utils.fmt_money(member.total_paid))
    c2.metric("Pending", utils.fmt_money(member.pending))
    c3.metric("Joined", utils.fmt_date(member.joined_date))

    pay_tab, bill_tab, bills_tab, recalc_tab, link_tab, admin_tab = st.tabs(
        ["Record payment", "Missed bill", "Pay bills", "Recalculate", "Payment link", "Manage"]
    )

    with pay_tab:
        amount = st.text_input("Amount", value="250", key="pay_amount")
        pay_date = st.date_input("Date", value=date.today(), key="pay_date")
        notes = st.text_input("Notes", key="pay_notes")
        b1, b2 = st.columns(2)
        if b1.button("Record payment", type="primary"):
            show_result(ledger.run_action(ledger.record_payment, member.id, amount, pay_date, notes,
                                          message="Payment recorded."))
        if b2.button("Reverse last payment"):
            show_result(ledger.run_action(ledger.reverse_last_payment, member.id,
                                          message="Last payment reversed."))

    with bill_tab:
        bill_amount = st.text_input("Amount", value="250", key="bill_amount")
        month = st.date_input("Billing month", value=date.today(), key="bill_month")
        bill_notes = st.text_input("Notes", key="bill_notes")
        b1, b2 = st.columns(2)
        if b1.button("Add missed bill", type="primary"):
            show_result(ledger.run_action(ledger.record_missed_bill, member.id, bill_amount, month, bill_notes,
                                          message="Missed bill added."))
        if b2.button("Reverse last bill"):
            show_result(ledger.run_action(ledger.reverse_last_bill, member.id, message="Last bill reversed."))

    with bills_tab:
        bills = ledger.pending_bills(member.id)
        if not bills:
            st.caption("No pending bills.")
        else:
            labels = {f"{utils.fmt_date(b.due_date)} · {utils.fmt_money(b.amount)} · {b.notes or ''}": b.id for b in bills}
            chosen = st.multiselect("Bills to mark as paid", list(labels.keys()))
            if st.button("Mark selected as paid", type="primary", disabled=not chosen):
                ids = [labels[c] for c in chosen]
                show_result(ledger.run_action(ledger.pay_bills, member.id, ids,
                                              message=f"{len(ids)} bill(s) marked as paid."))

    with recalc_tab:
        st.caption("Overwrites total paid and pending from the fee schedule. Bills and payments are not changed.")
        until = st.date_input("Paid until (month)", value=date.today(), key="recalc_until")
        if st.button("Recalculate balance"):
            show_result(ledger.run_action(ledger.recalculate_until_date, member.id, until,
                                          message=lambda m: f"Balance recalculated: pending {utils.fmt_money(m.pending)}."))

    with link_tab:
        if st.button("Create payment link", disabled=member.pending <= 0):
            try:
                url = gateway.create_payment_link(member, config.get_billing_settings(), cfg)
            except PortalError as exc:
                st.error(str(exc))
            else:
                st.success("Payment link created.")
                st.code(url)

    with admin_tab:
        deceased_notes = st.text_area("Notes", key="deceased_notes")
        if st.button("Mark as deceased", disabled=member.status is MemberStatus.DECEASED):
            show_result(ledger.run_action(ledger.mark_deceased, member.id, deceased_notes,
                                          message="Member marked as deceased."))
        new_pw = st.text_input("Set member password", type="password", key="member_new_pw")
        if st.button("Update member password"):
            if len(new_pw) < 6:
                st.error("Password must be at least 6 characters.")
            else:
                auth.set_member_password(member.id, new_pw)
                st.success("Password updated.")
        delete_confirm = st.checkbox("Confirm delete (removes all bills and payments)", value=False)
        if st.button("Delete member", disabled=not delete_confirm):
            show_result(ledger.run_action(ledger.delete_member, member.id, message="Member deleted."))


def members_page(cfg):
    st.header("👥 Members")

    with st.sidebar:
        st.subheader("Search & Filters")
        search = st.text_input("Search (name/phone/email)")
        status_filter = st.selectbox("Status", ["All"] + [s.value for s in MemberStatus])

    members = ledger.list_members(search=search, status_filter=status_filter)
    df = members_frame(members)
    st.dataframe(df, use_container_width=True, hide_index=True)

    st.divider()

    options = {f"{m.name} - ID {m.id}": m.id for m in members}
    chosen = st.selectbox("Select member", ["(none)"] + list(options.keys()))
    if chosen != "(none)":
        member = ledger.get_member(options[chosen])
        member_actions(member, cfg)
        st.divider()
        member_form(existing=member)
    else:
        member_form(existing=None)


def payments_page():
    st.header("💳 Bills & Payments")

    members = ledger.list_members()
    if not members:
        st.info("No members yet. Add a member first.")
        return

    options = {f"{m.name} ({m.phone or 'no phone'}) - ID {m.id}": m.id for m in members}
    member_id = options[st.selectbox("Member", list(options.keys()))]

    st.subheader("Pending bills")
    bills = ledger.pending_bills(member_id)
    if bills:
        st.dataframe(
            pd.DataFrame([{"due": utils.fmt_date(b.due_date), "amount": float(b.amount), "notes": b.notes} for b in bills]),
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("No pending bills.")

    st.subheader("Payment history")
    history = ledger.payment_history(member_id)
    if history:
        st.dataframe(
            pd.DataFrame(
                [
                    {"id": p.id, "date": utils.fmt_date(p.date), "amount": float(p.amount),
                     "source": p.source.value, "notes": p.notes}
                    for p in history
                ]
            ),
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("No payments for this member yet.")


def expenditure_page():
    st.header("🧾 Expenditure")

    c1, c2, c3, c4 = st.columns([1, 2, 1, 1])
    with c1:
        exp_date = st.date_input("Date", value=date.today(), key="exp_date")
    with c2:
        description = st.text_input("Description")
    with c3:
        amount = st.text_input("Amount", key="exp_amount")
    with c4:
        category = st.selectbox("Category", EXPENSE_CATEGORIES)

    if st.button("Add expense", type="primary"):
        try:
            utils.add_expense(exp_date, description, amount, category)
        except PortalError as exc:
            st.error(str(exc))
        else:
            st.success("Expense added successfully.")
            st.rerun()

    st.divider()
    df = utils.expenses_frame()
    if df.empty:
        st.caption("No expenses recorded.")
        return
    st.dataframe(df, use_container_width=True, hide_index=True)

    to_delete = st.selectbox("Delete expense", ["(none)"] + [str(i) for i in df["id"].tolist()])
    if to_delete != "(none)" and st.button("Delete"):
        try:
            utils.delete_expense(int(to_delete))
        except PortalError as exc:
            st.error(str(exc))
        else:
            st.success("Expense deleted successfully.")
            st.rerun()


def reports_page():
    st.header("📑 Reports")

    st.subheader("Export members to CSV")
    members = db.fetch_all(
        "SELECT id, name, email, phone, joined_date, total_paid, pending, status FROM members ORDER BY name ASC"
    )
    if members:
        st.download_button("Download members.csv", data=utils.members_to_csv_bytes(members),
                           file_name="members.csv", mime="text/csv")
    else:
        st.caption("No members to export.")

    st.divider()

    st.subheader("Export payments to CSV")
    payments = db.fetch_all(
        """
        SELECT p.id, p.member_id, m.name, p.amount, p.date, p.source, p.notes
        FROM payments p
        JOIN members m ON m.id = p.member_id
        ORDER BY p.date DESC, p.id DESC
        """
    )
    if payments:
        st.download_button("Download payments.csv", data=utils.payments_to_csv_bytes(payments),
                           file_name="payments.csv", mime="text/csv")
    else:
        st.caption("No payments to export.")

    st.download_button("Download expenditures.csv", data=utils.expenses_to_csv_bytes(),
                       file_name="expenditures.csv", mime="text/csv")

    st.divider()

    st.subheader("Revenue summary by month")
    st.dataframe(utils.revenue_summary_by_month(), use_container_width=True, hide_index=True)


def settings_page():
    st.header("⚙️ Settings")

    current = config.get_billing_settings()
    st.subheader("Billing")
    amount = st.text_input("Monthly bill amount (₹)", value=str(current.monthly_amount))
    reminders = st.toggle("Payment link reminders", value=current.reminders_enabled)
    if st.button("Save billing settings", type="primary"):
        try:
            saved = config.update_billing_settings(amount, reminders)
        except PortalError as exc:
            st.error(str(exc))
        else:
            st.success(f"Monthly bill amount updated to {utils.fmt_money(saved.monthly_amount)}.")

    if st.button("Run monthly billing now"):
        show_result(ledger.run_action(
            ledger.run_monthly_billing, config.get_billing_settings(),
            message=lambda n: f"Successfully billed {n} members.",
        ))

    st.divider()

    st.subheader("Change password")
    p1 = st.text_input("New password", type="password")
    p2 = st.text_input("Confirm new password", type="password")
    if st.button("Update password"):
        if len(p1) < 6:
            st.error("Password must be at least 6 characters.")
        elif p1 != p2:
            st.error("Passwords do not match.")
        else:
            auth.change_password(st.session_state.username, p1)
            st.success("Password updated.")

    st.divider()

    st.subheader("Sample data")
    st.caption("Register 3 sample members + a few payments for testing (adds new rows each run).")
    if st.button("Insert sample data"):
        utils.insert_sample_data()
        st.success("Sample data inserted.")
        st.rerun()


# ---------- Member pages ----------

def receipt_view(payment_id: int, cfg):
    receipt = utils.get_receipt(payment_id)
    if st.session_state.role == "member" and receipt["member_id"] != st.session_state.member_id:
        st.error("Receipt not found.")
        return
    st.subheader(f"Payment Receipt #{receipt['number']}")
    st.caption(cfg.committee_name)
    st.write(f"**Billed to:** {receipt['name']} ({receipt['email'] or 'No email'})")
    st.write(f"**Date:** {utils.fmt_date(receipt['date'])}")
    st.write(f"**Amount:** {utils.fmt_money(receipt['amount'])}")
    st.write(f"**Method:** {'Online (Razorpay)' if receipt['source'] == 'gateway' else 'Manual'}")
    if receipt["gateway_payment_id"]:
        st.write(f"**Transaction ID:** {receipt['gateway_payment_id']}")
    if receipt["notes"]:
        st.write(f"**Notes:** {receipt['notes']}")


def member_dashboard(cfg):
    member = ledger.get_member(st.session_state.member_id)
    st.header(f"Welcome, {member.name}")

    c1, c2 = st.columns(2)
    c1.metric("Total paid", utils.fmt_money(member.total_paid))
    c2.metric("Pending dues", utils.fmt_money(member.pending))

    if member.pending > 0 and st.button("Pay now", type="primary"):
        try:
            url = gateway.create_payment_link(member, config.get_billing_settings(), cfg)
        except PortalError as exc:
            st.error(str(exc))
        else:
            st.link_button("Continue to payment", url)

    st.subheader("Pending bills")
    bills = ledger.pending_bills(member.id)
    if bills:
        st.dataframe(
            pd.DataFrame([{"due": utils.fmt_date(b.due_date), "amount": float(b.amount), "notes": b.notes} for b in bills]),
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("You have no pending bills.")

    st.subheader("Payment history")
    history = ledger.payment_history(member.id)
    if not history:
        st.caption("No payments yet.")
        return
    st.dataframe(
        pd.DataFrame([{"id": p.id, "date": utils.fmt_date(p.date), "amount": float(p.amount), "notes": p.notes}
                      for p in history]),
        use_container_width=True,
        hide_index=True,
    )
    chosen = st.selectbox("View receipt", ["(none)"] + [str(p.id) for p in history])
    if chosen != "(none)":
        receipt_view(int(chosen), cfg)


def main_app(cfg):
    st.sidebar.title("🏛️ Committee Portal")
    st.sidebar.caption(f"Logged in as: {st.session_state.username}")

    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    if st.session_state.role == "member":
        member_dashboard(cfg)
        return

    pages = ["Dashboard", "Members", "Bills & Payments", "Expenditure", "Reports", "Settings"]
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.session_state.page == "Dashboard":
        dashboard_page()
    elif st.session_state.page == "Members":
        members_page(cfg)
    elif st.session_state.page == "Bills & Payments":
        payments_page()
    elif st.session_state.page == "Expenditure":
        expenditure_page()
    elif st.session_state.page == "Reports":
        reports_page()
    elif st.session_state.page == "Settings":
        settings_page()


# --------- App entry ---------

def run():
    cfg = init_once()
    require_login()

    if not st.session_state.logged_in:
        login_screen()
        return

    # Force password change on first admin login after DB creation
    if st.session_state.role == "admin" and db.is_force_password_change():
        force_change_password_screen()
        return

    main_app(cfg)


if __name__ == "__main__":
    run()
