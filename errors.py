"""
errors.py
Exception types raised by billing, reconciliation and the payment gateway.
"""

from __future__ import annotations


class PortalError(Exception):
    """Base class; the message is shown to the admin or member as-is."""


class ValidationError(PortalError):
    pass


class NotFound(PortalError):
    pass


class MemberNotFound(NotFound):
    def __init__(self, member_id):
        super().__init__(f"Member {member_id} not found.")
        self.member_id = member_id


class BillNotFound(NotFound):
    def __init__(self, bill_id):
        super().__init__(f"Bill {bill_id} not found.")
        self.bill_id = bill_id


class NoPaymentsFound(NotFound):
    def __init__(self, member_id):
        super().__init__("No payments found for this member.")
        self.member_id = member_id


class NoBillsFound(NotFound):
    def __init__(self, member_id):
        super().__init__("No bills found for this member.")
        self.member_id = member_id


class NoTierMatched(PortalError):
    """The fee schedule has a gap. This is a configuration defect."""

    def __init__(self, month):
        super().__init__(f"No fee tier covers {month.isoformat()}.")
        self.month = month


class TransactionConflict(PortalError):
    pass


class GatewayError(PortalError):
    pass
