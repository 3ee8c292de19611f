"""Billing settings, expenditures, dashboard figures, receipts and exports."""

from datetime import date
from decimal import Decimal

import pytest

import config
import db
import ledger
import utils
from errors import NotFound, ValidationError


def test_billing_settings_default_and_update():
    settings = config.get_billing_settings()
    assert settings.monthly_amount == Decimal("250")
    assert settings.reminders_enabled is True

    config.update_billing_settings("300.50", False)

    settings = config.get_billing_settings()
    assert settings.monthly_amount == Decimal("300.50")
    assert settings.reminders_enabled is False


@pytest.mark.parametrize("value", ["", "abc", "0", "-10"])
def test_billing_settings_rejects_bad_amount(value):
    with pytest.raises(ValidationError):
        config.update_billing_settings(value, True)
    assert config.get_billing_settings().monthly_amount == Decimal("250")


def test_malformed_stored_amount_falls_back():
    db.set_setting("monthly_amount", "lots")
    assert config.get_billing_settings().monthly_amount == Decimal("250")


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "nightly")
    monkeypatch.setenv("RAZORPAY_KEY_ID", "")
    monkeypatch.setenv("APP_URL", "https://dues.example.org/")
    monkeypatch.setenv("PORTAL_ADMIN_USERNAME", "treasurer")
    monkeypatch.setenv("PORTAL_COMMITTEE_NAME", "Lake View Committee")
    monkeypatch.setenv("PORTAL_LOG_LEVEL", "debug")

    cfg = config.Config(_env_file=None)

    assert cfg.cron_secret == "nightly"
    assert cfg.razorpay_key_id is None
    assert cfg.app_url == "https://dues.example.org"
    assert cfg.admin_username == "treasurer"
    assert cfg.committee_name == "Lake View Committee"
    assert cfg.log_level == "debug"
    assert cfg.currency == "INR"


def test_validate_member_inputs():
    assert utils.validate_member_inputs("Asha", "asha@example.com", "900", date(2020, 1, 1)) == []
    assert utils.validate_member_inputs("Asha", "", "900", date(2020, 1, 1), password="") == []
    errors = utils.validate_member_inputs(" ", "nope", "", date(2020, 1, 1), password="abc")
    assert errors == [
        "Name is required.",
        "Email address looks invalid.",
        "Phone is required.",
        "Password must be at least 6 characters.",
    ]


def test_expenses_add_list_delete(today):
    first = utils.add_expense(today, "Hall booking", "1200", "Events")
    utils.add_expense(date(2026, 9, 1), "Paint", Decimal("300.25"), "Maintenance")

    df = utils.expenses_frame()
    assert df["description"].tolist() == ["Hall booking", "Paint"]
    assert sum(df["amount"]) == Decimal("1500.25")

    utils.delete_expense(first)
    assert utils.expenses_frame()["description"].tolist() == ["Paint"]
    with pytest.raises(NotFound):
        utils.delete_expense(first)


def test_expense_validation(today):
    with pytest.raises(ValidationError):
        utils.add_expense(today, "", "10", "General")
    with pytest.raises(ValidationError):
        utils.add_expense(today, "Tea", "10", "Snacks")
    with pytest.raises(ValidationError):
        utils.add_expense(today, "Tea", "-1", "General")


def test_dashboard_kpis(make_member, today):
    a = make_member("A", months_ago=1)
    make_member("B")
    ledger.record_payment(a.id, "500", today)
    utils.add_expense(today, "Chairs", "75", "General")

    kpis = utils.dashboard_kpis()

    assert kpis["total_payments"] == Decimal("500")
    assert kpis["paid_members"] == 1
    assert kpis["pending_members"] == 1
    assert kpis["total_pending"] == Decimal("250")
    assert kpis["total_expenditure"] == Decimal("75")


def test_payment_overview_last_six_months(make_member, today):
    member = make_member(months_ago=3)
    ledger.record_payment(member.id, "300", today)
    ledger.record_payment(member.id, "200", date(2026, 6, 10))
    ledger.record_payment(member.id, "100", date(2025, 1, 10))

    df = utils.payment_overview(today)

    assert df["month"].tolist() == ["May 2026", "Jun 2026", "Jul 2026", "Aug 2026", "Sep 2026", "Oct 2026"]
    assert df["paid"].tolist() == [0.0, 200.0, 0.0, 0.0, 0.0, 300.0]


def test_members_with_pending_sorted(make_member, today):
    make_member("Small")
    big = make_member("Big", months_ago=4)
    settled = make_member("Settled")
    ledger.record_payment(settled.id, "250", today)

    df = utils.members_with_pending()

    assert df["name"].tolist() == ["Big", "Small"]
    assert df["pending"].iloc[0] == big.pending


def test_balance_drift_after_recalculation(make_member, today):
    member = make_member(months_ago=2)
    assert utils.balance_drift().empty

    ledger.recalculate_until_date(member.id, today, today=today)

    drift = utils.balance_drift()
    assert drift["id"].tolist() == [member.id]
    assert drift["difference"].iloc[0] == Decimal("-750")


def test_receipt(make_member, today):
    member = make_member()
    payment = ledger.record_payment(member.id, "250", today, "cash")

    receipt = utils.get_receipt(payment.id)

    assert receipt["name"] == member.name
    assert receipt["amount"] == Decimal("250")
    assert receipt["number"] == f"R-{payment.id:06d}"
    with pytest.raises(NotFound):
        utils.get_receipt(999)


def test_revenue_summary_and_csv(make_member, today):
    member = make_member(months_ago=2)
    ledger.record_payment(member.id, "100", date(2026, 9, 3))
    ledger.record_payment(member.id, "150", date(2026, 9, 20))
    ledger.record_payment(member.id, "50", today)

    df = utils.revenue_summary_by_month()
    assert df["month"].tolist() == ["2026-10", "2026-09"]
    assert df["revenue"].tolist() == [Decimal("50"), Decimal("250")]

    rows = db.fetch_all("SELECT id, amount FROM payments ORDER BY id")
    csv = utils.payments_to_csv_bytes(rows).decode("utf-8")
    assert csv.splitlines()[0] == "id,amount"
    assert len(csv.splitlines()) == 4


def test_revenue_summary_empty():
    assert utils.revenue_summary_by_month().empty


def test_sample_data(today):
    utils.insert_sample_data(today)
    members = ledger.list_members()
    assert len(members) == 3
    assert utils.dashboard_kpis()["total_payments"] == Decimal("750")
