"""Accounts receivable: customer invoices, receipts and credit notes."""

from ledger_modules.ar.models import CreditNote, Invoice, InvoiceItem, Receipt
from ledger_modules.ar.orm import InvoiceStatus
from ledger_modules.ar.service import InvoiceService, format_credit_note_number

__all__ = [
    "CreditNote",
    "Invoice",
    "InvoiceItem",
    "InvoiceService",
    "InvoiceStatus",
    "Receipt",
    "format_credit_note_number",
]
