"""
Subsidiary document modules for the Book Explorer ledger.

- ``ledger_modules.ap``: vendor bills and bill payments.
- ``ledger_modules.ar``: customer invoices, receipts and credit notes.

Modules build balanced entries through ``JournalService`` and post them;
they never write ledger rows directly.
"""
