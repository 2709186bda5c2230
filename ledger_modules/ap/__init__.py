"""Accounts payable: vendor bills and bill payments."""

from ledger_modules.ap.models import Bill, BillItem, BillPayment
from ledger_modules.ap.orm import BillStatus
from ledger_modules.ap.service import BillService

__all__ = ["Bill", "BillItem", "BillPayment", "BillService", "BillStatus"]
