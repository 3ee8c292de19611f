"""
utils.py
Validation, dates, expenditures, dashboard figures, exports, receipts, sample data.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

import pandas as pd

import db
import ledger
from errors import NotFound, ValidationError
from fees import add_months, month_start
from models import EXPENSE_CATEGORIES

logger = logging.getLogger(__name__)


def parse_iso(d: str) -> date:
    return date.fromisoformat(d)


def fmt_date(d: date | str | None) -> str:
    if not d:
        return "N/A"
    if isinstance(d, str):
        d = parse_iso(d[:10])
    return d.strftime("%d/%m/%Y")


def fmt_money(amount) -> str:
    return f"₹{Decimal(amount):,.2f}"


def validate_member_inputs(name: str, email: str, phone: str, joined_date: date,
                           password: str | None = None) -> list[str]:
    errors: list[str] = []
    if not name.strip():
        errors.append("Name is required.")
    if email.strip() and "@" not in email:
        errors.append("Email address looks invalid.")
    if not phone.strip():
        errors.append("Phone is required.")
    if joined_date > date.today():
        errors.append("Joining date cannot be in the future.")
    if password and len(password) < 6:
        errors.append("Password must be at least 6 characters.")
    return errors


# ---------- Expenditures ----------

def add_expense(expense_date: date, description: str, amount, category: str) -> int:
    if not description.strip():
        raise ValidationError("Description is required.")
    if category not in EXPENSE_CATEGORIES:
        raise ValidationError("Category is required.")
    value = ledger.to_amount(amount)
    expense_id = db.execute(
        "INSERT INTO expenditures(date, description, amount, category, created_at) VALUES(?,?,?,?,?)",
        (expense_date.isoformat(), description.strip(), str(value), category, db.now_iso()),
    )
    logger.info("Added expense %s: %s %s", expense_id, value, category)
    return expense_id


def delete_expense(expense_id: int) -> None:
    row = db.fetch_one("SELECT id FROM expenditures WHERE id = ?", (expense_id,))
    if not row:
        raise NotFound(f"Expense {expense_id} not found.")
    db.execute("DELETE FROM expenditures WHERE id = ?", (expense_id,))
    logger.info("Deleted expense %s", expense_id)


def expenses_frame() -> pd.DataFrame:
    rows = db.fetch_all("SELECT id, date, description, amount, category FROM expenditures ORDER BY date DESC, id DESC")
    df = pd.DataFrame([dict(r) for r in rows], columns=["id", "date", "description", "amount", "category"])
    df["amount"] = df["amount"].map(Decimal)
    return df


# ---------- Dashboard ----------

def _sum_column(sql: str, params: tuple = ()) -> Decimal:
    return sum((Decimal(r[0]) for r in db.fetch_all(sql, params)), Decimal("0"))


def dashboard_kpis() -> dict:
    members = db.fetch_all("SELECT pending, status FROM members")
    paid = sum(1 for m in members if Decimal(m["pending"]) <= 0)
    return {
        "total_payments": _sum_column("SELECT total_paid FROM members"),
        "paid_members": paid,
        "pending_members": len(members) - paid,
        "total_pending": _sum_column("SELECT pending FROM members"),
        "total_expenditure": _sum_column("SELECT amount FROM expenditures"),
    }


def payment_overview(today: date | None = None, months: int = 6) -> pd.DataFrame:
    """Payments received per month over the last `months` months, oldest first."""
    today = today or date.today()
    first = add_months(month_start(today), -(months - 1))
    labels = [add_months(first, i) for i in range(months)]

    rows = db.fetch_all("SELECT date, amount FROM payments WHERE date >= ?", (first.isoformat(),))
    paid = {m: Decimal("0") for m in labels}
    for r in rows:
        key = month_start(parse_iso(r["date"]))
        if key in paid:
            paid[key] += Decimal(r["amount"])

    return pd.DataFrame(
        {"month": [m.strftime("%b %Y") for m in labels], "paid": [float(paid[m]) for m in labels]}
    )


def members_with_pending(limit: int = 5) -> pd.DataFrame:
    rows = db.fetch_all("SELECT id, name, email, pending FROM members")
    df = pd.DataFrame([dict(r) for r in rows], columns=["id", "name", "email", "pending"])
    df["pending"] = df["pending"].map(Decimal)
    df = df[df["pending"] > 0]
    return df.sort_values("pending", ascending=False).head(limit).reset_index(drop=True)


def balance_drift() -> pd.DataFrame:
    """
    Members whose stored pending counter differs from the sum of their unpaid
    bills. Recalculation and manual payments make these two diverge.
    """
    members = db.fetch_all("SELECT id, name, pending FROM members")
    bills = db.fetch_all("SELECT member_id, amount FROM bills WHERE status = 'pending'")
    unpaid: dict[int, Decimal] = {}
    for b in bills:
        unpaid[b["member_id"]] = unpaid.get(b["member_id"], Decimal("0")) + Decimal(b["amount"])

    out = []
    for m in members:
        stored = Decimal(m["pending"])
        billed = unpaid.get(m["id"], Decimal("0"))
        if stored != billed:
            out.append({"id": m["id"], "name": m["name"], "pending": stored,
                        "unpaid_bills": billed, "difference": stored - billed})
    return pd.DataFrame(out, columns=["id", "name", "pending", "unpaid_bills", "difference"])


# ---------- Receipts ----------

def get_receipt(payment_id: int) -> dict:
    row = db.fetch_one(
        """
        SELECT p.id, p.amount, p.date, p.notes, p.source, p.gateway_payment_id,
               m.id AS member_id, m.name, m.email, m.phone
        FROM payments p
        JOIN members m ON m.id = p.member_id
        WHERE p.id = ?
        """,
        (payment_id,),
    )
    if not row:
        raise NotFound(f"Payment {payment_id} not found.")
    receipt = dict(row)
    receipt["amount"] = Decimal(receipt["amount"])
    receipt["number"] = f"R-{int(row['id']):06d}"
    return receipt


# ---------- Exports ----------

def members_to_csv_bytes(rows) -> bytes:
    df = pd.DataFrame([dict(r) for r in rows])
    return df.to_csv(index=False).encode("utf-8")


def payments_to_csv_bytes(rows) -> bytes:
    df = pd.DataFrame([dict(r) for r in rows])
    return df.to_csv(index=False).encode("utf-8")


def expenses_to_csv_bytes() -> bytes:
    return expenses_frame().to_csv(index=False).encode("utf-8")


def revenue_summary_by_month() -> pd.DataFrame:
    rows = db.fetch_all(
        """
        SELECT strftime('%Y-%m', date) AS month, amount
        FROM payments
        """
    )
    df = pd.DataFrame([dict(r) for r in rows])
    if df.empty:
        return pd.DataFrame(columns=["month", "revenue"])
    df["amount"] = df["amount"].map(Decimal)
    out = df.groupby("month", as_index=False)["amount"].sum().rename(columns={"amount": "revenue"})
    return out.sort_values("month", ascending=False).reset_index(drop=True)


# ---------- Sample data ----------

def insert_sample_data(today: date | None = None) -> None:
    """
    Register 3 members (with their accrued bills) and a couple of payments.
    Safe to run multiple times: adds new rows each time.
    """
    today = today or date.today()
    suffix = db.now_iso()[-6:]

    m1 = ledger.register_member("Ahmed Hassan", f"ahmed{suffix}@example.com", "9000000001",
                                add_months(today, -3), password="member123", today=today)
    m2 = ledger.register_member("Mona Ali", f"mona{suffix}@example.com", "9000000002",
                                add_months(today, -14), today=today)
    ledger.register_member("Omar Samy", f"omar{suffix}@example.com", "9000000003", today, today=today)

    ledger.record_payment(m1.id, Decimal("250"), today, "Sample payment")
    ledger.record_payment(m2.id, Decimal("500"), today, "Sample payment")
    add_expense(today, "Hall booking", Decimal("1200"), "Events")
