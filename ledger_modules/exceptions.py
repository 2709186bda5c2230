"""
Exceptions raised by the subsidiary document modules.

Both extend the kernel hierarchy, so callers catching
``LedgerKernelError`` (or a kind base) see them too.
"""

from decimal import Decimal

from ledger_kernel.exceptions import NotFoundError, ValidationError


class DocumentNotFoundError(NotFoundError):
    """Bill or invoice does not exist for this owner."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_type: str, document_id: str):
        self.document_type = document_type
        self.document_id = document_id
        super().__init__(f"{document_type} not found: {document_id}")


class OverpaymentError(ValidationError):
    """Payment or credit exceeds the document's outstanding balance."""

    code: str = "OVERPAYMENT"

    def __init__(
        self,
        document_type: str,
        document_id: str,
        amount: Decimal,
        outstanding: Decimal,
    ):
        self.document_type = document_type
        self.document_id = document_id
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(
            f"Amount {amount} exceeds outstanding balance {outstanding} "
            f"of {document_type} {document_id}"
        )
