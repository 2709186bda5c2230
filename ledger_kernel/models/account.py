"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the Chart of Accounts -- the target of
    every journal line.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is unique.
    - code and account_type are immutable once referenced by a posted
      JournalLine (ORM listener in db/immutability.py).
    - Accounts are soft-deactivated (is_active=False), never deleted once
      referenced (FK from journal lines).

Failure modes:
    - IntegrityError on duplicate code if the service-level check is raced.

Audit relevance:
    Changing the type or code of a referenced account would silently change
    the meaning of historical lines, so those fields are frozen.
"""

from enum import Enum

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


_DEBIT_NORMAL = frozenset({AccountType.ASSET, AccountType.EXPENSE})


def normal_balance_for(account_type: AccountType) -> NormalBalance:
    """Assets and expenses carry debit balances; everything else credit."""
    if AccountType(account_type) in _DEBIT_NORMAL:
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


ACCOUNT_STRUCTURAL_FIELDS = ("code", "account_type", "normal_balance")


class Account(TrackedBase):
    """
    Chart of Accounts entry.

    Contract:
        Account.code is globally unique.  Once referenced by a posted line,
        code, account_type and normal_balance MUST NOT change.

    Guarantees:
        - account_type is one of ASSET, LIABILITY, EQUITY, REVENUE, EXPENSE.
        - normal_balance is consistent with account_type.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
        Index("idx_account_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    normal_balance: Mapped[NormalBalance] = mapped_column(String(10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"
