"""
Pytest configuration and fixtures.
Every test gets its own SQLite file with the schema created.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# Modules live at the repository root
sys.path.insert(0, str(Path(__file__).parent.parent))

import db  # noqa: E402
import ledger  # noqa: E402
from config import Config  # noqa: E402

TODAY = date(2026, 10, 19)


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "portal-test.db")
    db.create_tables()
    yield tmp_path / "portal-test.db"


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def make_member(today):
    """Register a member joined `months_ago` months before TODAY (one bill per month)."""
    counter = {"n": 0}

    def _make(name="Member", months_ago=0, email=None, password=None):
        counter["n"] += 1
        joined = date(today.year, today.month, 1)
        for _ in range(months_ago):
            joined = date(joined.year - 1, 12, 1) if joined.month == 1 else date(joined.year, joined.month - 1, 1)
        return ledger.register_member(
            name,
            email or f"member{counter['n']}@example.com",
            f"90000000{counter['n']:02d}",
            joined,
            password=password,
            today=today,
        )

    return _make


@pytest.fixture
def cfg():
    return Config(
        cron_secret="cron-secret",
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret="rzp_test_secret",
        razorpay_webhook_secret="whsec",
        app_url="http://portal.test",
        admin_username="admin",
    )