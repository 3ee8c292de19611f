"""
ledger.py
Member balances: registration, payments, bills, reversals, recalculation and the monthly sweep.

Every write runs inside one db.transaction(), so a member's counters and the
bill/payment rows that justify them are committed together or not at all.
`pending` and `total_paid` are stored running counters; bills and payments are
the audit trail beside them (utils.balance_drift reports any divergence).
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Callable

import auth
import db
from errors import (
    BillNotFound,
    MemberNotFound,
    NoBillsFound,
    NoPaymentsFound,
    NoTierMatched,
    PortalError,
    TransactionConflict,
    ValidationError,
)
from fees import calculate_dues, end_of_month, first_month_after, month_start
from models import (
    FEE_SCHEDULE,
    ActionResult,
    Bill,
    BillingSettings,
    BillStatus,
    Member,
    MemberStatus,
    Payment,
    PaymentSource,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ---------- Helpers ----------

def to_amount(value, field: str = "Amount") -> Decimal:
    """Parse a strictly positive currency amount."""
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be numeric.") from None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be numeric.")
    if amount <= 0:
        raise ValidationError(f"{field} must be > 0.")
    return amount


def derive_status(current: MemberStatus, pending: Decimal) -> MemberStatus:
    if current is MemberStatus.DECEASED:
        return current
    if pending <= 0:
        return MemberStatus.PAID
    # overdue and pending both settle back to the derived value
    return MemberStatus.PENDING


def forced_pending(current: MemberStatus) -> MemberStatus:
    if current is MemberStatus.DECEASED:
        return current
    return MemberStatus.PENDING


def _load_member(conn: sqlite3.Connection, member_id: int) -> Member:
    row = conn.execute("SELECT * FROM members WHERE id = ?", (member_id,)).fetchone()
    if not row:
        raise MemberNotFound(member_id)
    return Member.from_row(row)


def _save_balance(conn: sqlite3.Connection, member: Member, total_paid: Decimal,
                  pending: Decimal, status: MemberStatus) -> Member:
    conn.execute(
        "UPDATE members SET total_paid = ?, pending = ?, status = ? WHERE id = ?",
        (str(total_paid), str(pending), status.value, member.id),
    )
    return _load_member(conn, member.id)


def _insert_bill(conn: sqlite3.Connection, member_id: int, amount: Decimal, due_date: date,
                 notes: str | None, status: BillStatus = BillStatus.PENDING) -> int:
    cur = conn.execute(
        "INSERT INTO bills(member_id, amount, due_date, status, notes, created_at) VALUES(?,?,?,?,?,?)",
        (member_id, str(amount), due_date.isoformat(), status.value, notes, db.now_iso()),
    )
    return cur.lastrowid


def _insert_payment(conn: sqlite3.Connection, member_id: int, amount: Decimal, paid_on: date,
                    notes: str | None, source: PaymentSource, gateway_payment_id: str | None = None,
                    bill_id: int | None = None) -> Payment:
    cur = conn.execute(
        """
        INSERT INTO payments(member_id, amount, date, notes, source, gateway_payment_id, bill_id, created_at)
        VALUES(?,?,?,?,?,?,?,?)
        """,
        (member_id, str(amount), paid_on.isoformat(), notes, source.value, gateway_payment_id, bill_id, db.now_iso()),
    )
    row = conn.execute("SELECT * FROM payments WHERE id = ?", (cur.lastrowid,)).fetchone()
    return Payment.from_row(row)


def _apply_payment(conn: sqlite3.Connection, member: Member, amount: Decimal) -> Member:
    total_paid = member.total_paid + amount
    pending = max(ZERO, member.pending - amount)
    return _save_balance(conn, member, total_paid, pending, derive_status(member.status, pending))


def bill_note(month: date) -> str:
    return f"Bill for {month:%B %Y}"


def retry_once(operation: Callable, *args, **kwargs):
    """Run an operation, retrying a single time if its transaction collides."""
    try:
        return operation(*args, **kwargs)
    except TransactionConflict:
        logger.warning("Transaction conflict in %s, retrying once", operation.__name__)
        return operation(*args, **kwargs)


def run_action(operation: Callable, *args, message: str | Callable = "Done.", **kwargs) -> ActionResult:
    """
    Execute a ledger operation for a caller that only wants success + message
    (UI buttons, the cron route). Failures are logged, never raised.
    """
    try:
        result = retry_once(operation, *args, **kwargs)
    except NoTierMatched as exc:
        logger.error("%s failed: %s", operation.__name__, exc)
        return ActionResult(False, str(exc))
    except PortalError as exc:
        logger.info("%s rejected: %s", operation.__name__, exc)
        return ActionResult(False, str(exc))
    except sqlite3.Error:
        logger.exception("%s failed with a database error", operation.__name__)
        return ActionResult(False, "Operation failed. Please try again.")
    text = message(result) if callable(message) else message
    return ActionResult(True, text)


# ---------- Reads ----------

def get_member(member_id: int) -> Member:
    row = db.fetch_one("SELECT * FROM members WHERE id = ?", (member_id,))
    if not row:
        raise MemberNotFound(member_id)
    return Member.from_row(row)


def list_members(search: str = "", status_filter: str = "All") -> list[Member]:
    sql = "SELECT * FROM members WHERE 1=1"
    params = []

    if search.strip():
        sql += " AND (name LIKE ? OR phone LIKE ? OR email LIKE ?)"
        like = f"%{search.strip()}%"
        params.extend([like, like, like])

    if status_filter in {s.value for s in MemberStatus}:
        sql += " AND status = ?"
        params.append(status_filter)

    sql += " ORDER BY name ASC"
    return [Member.from_row(r) for r in db.fetch_all(sql, tuple(params))]


def pending_bills(member_id: int) -> list[Bill]:
    rows = db.fetch_all(
        "SELECT * FROM bills WHERE member_id = ? AND status = 'pending' ORDER BY due_date ASC, id ASC",
        (member_id,),
    )
    return [Bill.from_row(r) for r in rows]


def payment_history(member_id: int) -> list[Payment]:
    rows = db.fetch_all(
        "SELECT * FROM payments WHERE member_id = ? ORDER BY date DESC, created_at DESC, id DESC",
        (member_id,),
    )
    return [Payment.from_row(r) for r in rows]


# ---------- Member lifecycle ----------

def register_member(name: str, email: str | None, phone: str | None, joined_date: date,
                    password: str | None = None, today: date | None = None) -> Member:
    """
    Create a member and accrue dues from the joining month through the current
    month: one pending bill per month at that month's tier fee.
    """
    today = today or date.today()
    name = (name or "").strip()
    email = (email or "").strip().lower() or None
    if not name:
        raise ValidationError("Name is required.")
    if joined_date > today:
        raise ValidationError("Joining date cannot be in the future.")
    if month_start(joined_date) < FEE_SCHEDULE[0].start:
        raise ValidationError("Joining date must be on or after May 2001.")
    if password is not None and len(password) < 6:
        raise ValidationError("Password must be at least 6 characters.")

    dues = calculate_dues(joined_date, today)
    password_hash = auth.hash_password(password) if password else None
    status = derive_status(MemberStatus.PENDING, dues.total_dues)

    with db.transaction() as conn:
        try:
            cur = conn.execute(
                """
                INSERT INTO members(name, email, phone, password_hash, joined_date, total_paid, pending, status, created_at)
                VALUES(?,?,?,?,?,?,?,?,?)
                """,
                (name, email, (phone or "").strip() or None, password_hash, joined_date.isoformat(),
                 "0", str(dues.total_dues), status.value, db.now_iso()),
            )
        except sqlite3.IntegrityError:
            raise ValidationError("This email address is already in use by another account.") from None
        member_id = cur.lastrowid
        for month, fee in dues.monthly_breakdown:
            _insert_bill(conn, member_id, fee, month, bill_note(month))
        member = _load_member(conn, member_id)

    logger.info("Registered member %s (%s) with %s months accrued, pending=%s",
                member_id, name, len(dues.monthly_breakdown), dues.total_dues)
    return member


def update_member(member_id: int, name: str, email: str | None, phone: str | None) -> Member:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required.")
    with db.transaction() as conn:
        member = _load_member(conn, member_id)
        try:
            conn.execute(
                "UPDATE members SET name = ?, email = ?, phone = ? WHERE id = ?",
                (name, (email or "").strip().lower() or None, (phone or "").strip() or None, member.id),
            )
        except sqlite3.IntegrityError:
            raise ValidationError("This email address is already in use by another account.") from None
        return _load_member(conn, member_id)


def mark_deceased(member_id: int, notes: str | None = None, on: date | None = None) -> Member:
    on = on or date.today()
    with db.transaction() as conn:
        member = _load_member(conn, member_id)
        conn.execute(
            "UPDATE members SET status = ?, deceased_on = ?, deceased_notes = ? WHERE id = ?",
            (MemberStatus.DECEASED.value, on.isoformat(), (notes or "").strip() or None, member.id),
        )
        member = _load_member(conn, member_id)
    logger.info("Member %s marked deceased on %s", member_id, on.isoformat())
    return member


def delete_member(member_id: int) -> None:
    """Remove the member together with their bills, payments and credentials."""
    with db.transaction() as conn:
        member = _load_member(conn, member_id)
        conn.execute("DELETE FROM payments WHERE member_id = ?", (member.id,))
        conn.execute("DELETE FROM bills WHERE member_id = ?", (member.id,))
        conn.execute("DELETE FROM members WHERE id = ?", (member.id,))
    logger.info("Deleted member %s (%s)", member_id, member.name)


# ---------- Reconciliation ----------

def record_payment(member_id: int, amount, paid_on: date | None = None, notes: str | None = None,
                   source: PaymentSource = PaymentSource.MANUAL,
                   gateway_payment_id: str | None = None) -> Payment:
    """
    Credit a payment: total_paid grows, pending shrinks (never below zero).

    A gateway payment id that was already recorded is a no-op and returns the
    stored payment, so webhook redeliveries are safe.
    """
    amount = to_amount(amount)
    paid_on = paid_on or date.today()
    notes = (notes or "").strip() or None

    with db.transaction() as conn:
        if gateway_payment_id:
            existing = conn.execute(
                "SELECT * FROM payments WHERE gateway_payment_id = ?", (gateway_payment_id,)
            ).fetchone()
            if existing:
                logger.info("Gateway payment %s already recorded, ignoring", gateway_payment_id)
                return Payment.from_row(existing)
        member = _load_member(conn, member_id)
        member = _apply_payment(conn, member, amount)
        payment = _insert_payment(conn, member.id, amount, paid_on, notes, source, gateway_payment_id)

    logger.info("Recorded %s payment %s of %s for member %s (pending now %s)",
                source.value, payment.id, amount, member_id, member.pending)
    return payment


def record_missed_bill(member_id: int, amount, billing_month: date, notes: str | None = None) -> Member:
    amount = to_amount(amount)
    due = month_start(billing_month)
    notes = (notes or "").strip() or f"Missed bill for {due:%B %Y}"

    with db.transaction() as conn:
        member = _load_member(conn, member_id)
        _insert_bill(conn, member.id, amount, due, notes)
        pending = member.pending + amount
        member = _save_balance(conn, member, member.total_paid, pending, forced_pending(member.status))

    logger.info("Added missed bill of %s for %s to member %s", amount, due.isoformat(), member_id)
    return member


def reverse_last_payment(member_id: int) -> Member:
    """Delete the most recently created payment and undo its effect."""
    with db.transaction() as conn:
        member = _load_member(conn, member_id)
        row = conn.execute(
            "SELECT * FROM payments WHERE member_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (member.id,),
        ).fetchone()
        if not row:
            raise NoPaymentsFound(member_id)
        payment = Payment.from_row(row)

        conn.execute("DELETE FROM payments WHERE id = ?", (payment.id,))
        if payment.bill_id is not None:
            conn.execute(
                "UPDATE bills SET status = 'pending' WHERE id = ? AND member_id = ?",
                (payment.bill_id, member.id),
            )
        total_paid = max(ZERO, member.total_paid - payment.amount)
        pending = member.pending + payment.amount
        member = _save_balance(conn, member, total_paid, pending, forced_pending(member.status))

    logger.info("Reversed payment %s of %s for member %s", payment.id, payment.amount, member_id)
    return member


def reverse_last_bill(member_id: int) -> Member:
    """Delete the most recently created bill and take its amount off pending."""
    with db.transaction() as conn:
        member = _load_member(conn, member_id)
        row = conn.execute(
            "SELECT * FROM bills WHERE member_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (member.id,),
        ).fetchone()
        if not row:
            raise NoBillsFound(member_id)
        bill = Bill.from_row(row)

        conn.execute("DELETE FROM bills WHERE id = ?", (bill.id,))
        pending = max(ZERO, member.pending - bill.amount)
        member = _save_balance(conn, member, member.total_paid, pending, derive_status(member.status, pending))

    logger.info("Reversed bill %s of %s for member %s", bill.id, bill.amount, member_id)
    return member


def recalculate_until_date(member_id: int, paid_until_month: date, today: date | None = None) -> Member:
    """
    Overwrite the member's counters from the fee schedule alone: everything
    from joining through paid_until_month counts as paid, everything after it
    up to today as pending. Existing bills and payments are left as they are.
    """
    today = today or date.today()
    with db.transaction() as conn:
        member = _load_member(conn, member_id)
        total_paid = calculate_dues(member.joined_date, end_of_month(paid_until_month)).total_dues
        pending = calculate_dues(first_month_after(paid_until_month), today).total_dues
        member = _save_balance(conn, member, total_paid, pending, derive_status(member.status, pending))

    logger.info("Recalculated member %s paid until %s: total_paid=%s pending=%s",
                member_id, f"{paid_until_month:%Y-%m}", total_paid, pending)
    return member


def _settle_bill(conn: sqlite3.Connection, member: Member, bill_id: int, amount,
                 paid_on: date) -> tuple[Member, Payment]:
    row = conn.execute(
        "SELECT * FROM bills WHERE id = ? AND member_id = ?", (bill_id, member.id)
    ).fetchone()
    if not row:
        raise BillNotFound(bill_id)
    bill = Bill.from_row(row)
    if bill.status is BillStatus.PAID:
        raise ValidationError(f"Bill for {bill.due_date:%B %Y} is already paid.")
    amount = bill.amount if amount is None else to_amount(amount)

    conn.execute("UPDATE bills SET status = 'paid' WHERE id = ?", (bill.id,))
    member = _apply_payment(conn, member, amount)
    payment = _insert_payment(
        conn, member.id, amount, paid_on, f"Payment for {bill.notes or bill_note(bill.due_date)}",
        PaymentSource.MANUAL, bill_id=bill.id,
    )
    return member, payment


def mark_bill_paid(member_id: int, bill_id: int, amount=None, paid_on: date | None = None) -> Member:
    paid_on = paid_on or date.today()
    with db.transaction() as conn:
        member = _load_member(conn, member_id)
        member, payment = _settle_bill(conn, member, bill_id, amount, paid_on)

    logger.info("Bill %s paid (%s) for member %s", bill_id, payment.amount, member_id)
    return member


def pay_bills(member_id: int, bill_ids: list[int], paid_on: date | None = None) -> Member:
    """Settle several bills at once; either all of them are paid or none."""
    if not bill_ids:
        raise ValidationError("Select at least one bill.")
    paid_on = paid_on or date.today()
    with db.transaction() as conn:
        member = _load_member(conn, member_id)
        for bill_id in bill_ids:
            member, _ = _settle_bill(conn, member, bill_id, None, paid_on)

    logger.info("Paid %s bills for member %s", len(bill_ids), member_id)
    return member


# ---------- Monthly sweep ----------

def _bill_member_for_month(member_id: int, amount: Decimal, today: date) -> bool:
    with db.transaction() as conn:
        member = _load_member(conn, member_id)
        if member.status is MemberStatus.DECEASED:
            return False
        _insert_bill(conn, member.id, amount, today, f"Automatic monthly bill for {today:%B %Y}")
        _save_balance(conn, member, member.total_paid, member.pending + amount, MemberStatus.PENDING)
    return True


def run_monthly_billing(settings: BillingSettings, today: date | None = None) -> int:
    """
    Add one month's fee to every member who is not deceased.
    Each member is billed in its own transaction; a failure is logged and the
    sweep moves on. Returns the number of members billed.
    """
    today = today or date.today()
    amount = to_amount(settings.monthly_amount, "Monthly amount")
    rows = db.fetch_all("SELECT id FROM members WHERE status != 'deceased' ORDER BY id")
    logger.info("Monthly billing: %s members to bill %s each", len(rows), amount)

    billed = 0
    for row in rows:
        try:
            if retry_once(_bill_member_for_month, row["id"], amount, today):
                billed += 1
        except (PortalError, sqlite3.Error):
            logger.exception("Monthly billing failed for member %s", row["id"])

    logger.info("Monthly billing: billed %s members", billed)
    return billed
