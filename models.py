"""
models.py
Domain types (fee tiers, members, bills, payments) and the fixed fee schedule.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum


class MemberStatus(str, Enum):
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"
    DECEASED = "deceased"


class BillStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class PaymentSource(str, Enum):
    MANUAL = "manual"
    GATEWAY = "gateway"


@dataclass(frozen=True)
class FeeTier:
    start: date
    end: date
    fee: Decimal

    def covers(self, d: date) -> bool:
        return self.start <= d <= self.end


# Ordered, contiguous and non-overlapping
FEE_SCHEDULE: tuple[FeeTier, ...] = (
    FeeTier(date(2001, 5, 1), date(2007, 4, 30), Decimal("30")),
    FeeTier(date(2007, 5, 1), date(2014, 4, 30), Decimal("50")),
    FeeTier(date(2014, 5, 1), date(2019, 6, 30), Decimal("100")),
    FeeTier(date(2019, 7, 1), date(2024, 3, 31), Decimal("200")),
    FeeTier(date(2024, 4, 1), date(9999, 12, 31), Decimal("250")),
)

EXPENSE_CATEGORIES = ["General", "Maintenance", "Events", "Charity", "Utilities", "Other"]


@dataclass(frozen=True)
class Member:
    id: int | None
    name: str
    email: str | None
    phone: str | None
    joined_date: date
    total_paid: Decimal
    pending: Decimal
    status: MemberStatus
    deceased_on: date | None = None
    deceased_notes: str | None = None

    @classmethod
    def from_row(cls, row) -> "Member":
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            joined_date=date.fromisoformat(row["joined_date"]),
            total_paid=Decimal(row["total_paid"]),
            pending=Decimal(row["pending"]),
            status=MemberStatus(row["status"]),
            deceased_on=date.fromisoformat(row["deceased_on"]) if row["deceased_on"] else None,
            deceased_notes=row["deceased_notes"],
        )


@dataclass(frozen=True)
class Bill:
    id: int | None
    member_id: int
    amount: Decimal
    due_date: date
    status: BillStatus
    notes: str | None

    @classmethod
    def from_row(cls, row) -> "Bill":
        return cls(
            id=row["id"],
            member_id=row["member_id"],
            amount=Decimal(row["amount"]),
            due_date=date.fromisoformat(row["due_date"]),
            status=BillStatus(row["status"]),
            notes=row["notes"],
        )


@dataclass(frozen=True)
class Payment:
    id: int | None
    member_id: int
    amount: Decimal
    date: date
    notes: str | None
    source: PaymentSource
    gateway_payment_id: str | None = None
    bill_id: int | None = None

    @classmethod
    def from_row(cls, row) -> "Payment":
        return cls(
            id=row["id"],
            member_id=row["member_id"],
            amount=Decimal(row["amount"]),
            date=date.fromisoformat(row["date"]),
            notes=row["notes"],
            source=PaymentSource(row["source"]),
            gateway_payment_id=row["gateway_payment_id"],
            bill_id=row["bill_id"],
        )


@dataclass(frozen=True)
class BillingSettings:
    monthly_amount: Decimal = Decimal("250")
    reminders_enabled: bool = True


@dataclass(frozen=True)
class DuesResult:
    total_dues: Decimal
    monthly_breakdown: list[tuple[date, Decimal]] = field(default_factory=list)


@dataclass(frozen=True)
class ActionResult:
    success: bool
    message: str
