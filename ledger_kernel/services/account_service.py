"""
AccountService -- chart-of-accounts registry.

Responsibility:
    Creates, upserts, deactivates and resolves accounts.  Resolution is
    the call the journal engine makes at posting time, so it always reads
    the active flag fresh from storage.

Architecture position:
    Kernel > Services -- imperative shell.  Called by LedgerOrchestrator,
    JournalService (resolution at post time) and the config seeder.

Invariants enforced:
    - Account.code is unique (service check plus uq_account_code).
    - Accounts are never deleted; deactivation is a soft flag.
    - Every create and deactivate writes an audit record in the same
      transaction.

Failure modes:
    - DuplicateCodeError, InvalidTypeError on create.
    - UnknownAccountError on resolve/deactivate of a missing code, and on
      resolve of an inactive account.
    - AccountInUseError on deactivate, only when the in-use policy is on.
    - PermissionDeniedError without MANAGE_ACCOUNTS.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.context import Permission, RequestContext, require_permission
from ledger_kernel.domain.dtos import AccountInfo, UpsertOutcome, UpsertResult
from ledger_kernel.exceptions import (
    AccountInUseError,
    DuplicateCodeError,
    InvalidTypeError,
    UnknownAccountError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType, normal_balance_for
from ledger_kernel.models.audit_log import AuditOperation
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account")


def parse_account_type(value: AccountType | str) -> AccountType:
    """Accept the enum or a case-insensitive type name."""
    if isinstance(value, AccountType):
        return value
    try:
        return AccountType(str(value).strip().lower())
    except ValueError:
        raise InvalidTypeError(
            account_type=str(value),
            allowed=tuple(t.value for t in AccountType),
        ) from None


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def account_snapshot(account: Account) -> dict[str, Any]:
    return {
        "code": account.code,
        "name": account.name,
        "account_type": _enum_value(account.account_type),
        "normal_balance": _enum_value(account.normal_balance),
        "is_active": account.is_active,
    }


class AccountService(BaseService):
    """
    Chart-of-accounts service.

    Contract:
        Mutations require ``Permission.MANAGE_ACCOUNTS`` and are audited.
        Reads need no context.

    Guarantees:
        - ``resolve_account`` never answers from the identity map; a
          deactivation committed by another session is seen immediately.
        - ``upsert_account`` reports which branch it took and never
          modifies an existing row.

    Non-goals:
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        block_deactivation_in_use: bool = False,
    ):
        super().__init__(session, clock)
        self._auditor = AuditorService(session, self.clock)
        self._block_deactivation_in_use = block_deactivation_in_use

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, code: str) -> Account | None:
        return self.session.execute(
            select(Account)
            .where(Account.code == code)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_account(self, code: str) -> AccountInfo:
        """Return the account regardless of its active flag."""
        account = self._load(code)
        if account is None:
            raise UnknownAccountError(code)
        return AccountInfo.from_model(account)

    def resolve_account(self, code: str) -> AccountInfo:
        """
        Return a postable account.

        Raises:
            UnknownAccountError: Not found, or inactive.
        """
        account = self._load(code)
        if account is None:
            raise UnknownAccountError(code)
        if not account.is_active:
            raise UnknownAccountError(code, reason="inactive")
        return AccountInfo.from_model(account)

    def list_accounts(self, active_only: bool = False) -> list[AccountInfo]:
        stmt = select(Account).order_by(Account.code)
        if active_only:
            stmt = stmt.where(Account.is_active.is_(True))
        return [AccountInfo.from_model(a) for a in self.session.execute(stmt).scalars()]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_account(
        self,
        ctx: RequestContext,
        code: str,
        name: str,
        account_type: AccountType | str,
    ) -> AccountInfo:
        """
        Create a new active account.

        Raises:
            DuplicateCodeError: If the code exists.
            InvalidTypeError: If the type is not one of the five types.
        """
        require_permission(ctx, Permission.MANAGE_ACCOUNTS)
        parsed_type = parse_account_type(account_type)

        if self._load(code) is not None:
            logger.warning("account_create_rejected_duplicate", extra={"account_code": code})
            raise DuplicateCodeError(code)

        account = self._insert(ctx, code, name, parsed_type)
        return AccountInfo.from_model(account)

    def upsert_account(
        self,
        ctx: RequestContext,
        code: str,
        name: str,
        account_type: AccountType | str,
    ) -> UpsertResult:
        """Create the account unless the code exists; report which happened."""
        require_permission(ctx, Permission.MANAGE_ACCOUNTS)
        parsed_type = parse_account_type(account_type)

        existing = self._load(code)
        if existing is not None:
            logger.debug("account_upsert_exists", extra={"account_code": code})
            return UpsertResult(UpsertOutcome.ALREADY_EXISTS, code, existing.id)

        try:
            account = self._insert(ctx, code, name, parsed_type)
        except DuplicateCodeError:
            existing = self._load(code)
            return UpsertResult(UpsertOutcome.ALREADY_EXISTS, code, existing.id)
        return UpsertResult(UpsertOutcome.CREATED, code, account.id)

    def _insert(
        self,
        ctx: RequestContext,
        code: str,
        name: str,
        account_type: AccountType,
    ) -> Account:
        account = Account(
            code=code,
            name=name,
            account_type=account_type.value,
            normal_balance=normal_balance_for(account_type).value,
            is_active=True,
            created_by_id=ctx.actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(account)
                self.session.flush()
                self._auditor.record(
                    ctx,
                    AuditorService.ACCOUNTS,
                    account.id,
                    AuditOperation.INSERT,
                    after=account_snapshot(account),
                )
        except IntegrityError:
            # Lost a race with a concurrent create of the same code
            raise DuplicateCodeError(code) from None

        logger.info(
            "account_created",
            extra={"account_code": code, "account_type": account_type.value},
        )
        return account

    def deactivate_account(self, ctx: RequestContext, code: str) -> AccountInfo:
        """
        Mark an account inactive.  Already-inactive accounts are returned
        unchanged without a new audit record.

        Raises:
            UnknownAccountError: Unknown code.
            AccountInUseError: Policy on and posted activity in an open period.
        """
        require_permission(ctx, Permission.MANAGE_ACCOUNTS)
        account = self._load(code)
        if account is None:
            raise UnknownAccountError(code)
        if not account.is_active:
            return AccountInfo.from_model(account)

        if self._block_deactivation_in_use:
            period_name = self._open_period_with_activity(ctx.owner_id, code)
            if period_name is not None:
                logger.warning(
                    "account_deactivation_blocked",
                    extra={"account_code": code, "period_name": period_name},
                )
                raise AccountInUseError(code, period_name)

        before = account_snapshot(account)
        account.is_active = False
        account.updated_by_id = ctx.actor_id
        self.session.flush()
        self._auditor.record(
            ctx,
            AuditorService.ACCOUNTS,
            account.id,
            AuditOperation.UPDATE,
            before=before,
            after=account_snapshot(account),
        )
        logger.info("account_deactivated", extra={"account_code": code})
        return AccountInfo.from_model(account)

    def _open_period_with_activity(self, owner_id: UUID, code: str) -> str | None:
        """Name of an open period holding posted lines on ``code``, if any."""
        return self.session.execute(
            select(FiscalPeriod.name)
            .join(
                JournalEntry,
                and_(
                    JournalEntry.owner_id == FiscalPeriod.owner_id,
                    JournalEntry.entry_date >= FiscalPeriod.start_date,
                    JournalEntry.entry_date <= FiscalPeriod.end_date,
                ),
            )
            .join(JournalLine, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                FiscalPeriod.owner_id == owner_id,
                FiscalPeriod.status == PeriodStatus.OPEN.value,
                JournalEntry.posted.is_(True),
                JournalLine.account_code == code,
            )
            .limit(1)
        ).scalar_one_or_none()
