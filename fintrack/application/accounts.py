"""
Account use cases - creation, cascading delete, balance reconciliation
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from fintrack.config import get_settings
from fintrack.domain.account import AccountType, parse_account_type, validate_currency
from fintrack.domain.errors import NotFoundError, ValidationError
from fintrack.domain.money import ZERO, to_decimal
from fintrack.infrastructure.db.models import Account, RecurringIncome, Transaction, utcnow
from fintrack.infrastructure.db.store import RecordStore
from fintrack.readmodels.daily_aggregations import DailyAggregationEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceReport:
    account_id: int
    stored: Decimal
    derived: Decimal

    @property
    def consistent(self) -> bool:
        return self.stored == self.derived


@dataclass
class AccountView:
    """Account plus its recurring incomes, derived from recurring_incomes on read"""
    account: Account
    recurring_incomes: list[RecurringIncome] = field(default_factory=list)


class AccountService:
    """
    Account CRUD

    `balance` is written here only at creation time (= initial balance) and by
    `reconcile_balance(repair=True)`; everything else goes through the ledger.
    """

    def __init__(self, db: Session, cache=None):
        self.db = db
        self.store = RecordStore(db)
        self.aggregations = DailyAggregationEngine(db, cache=cache)

    def create_account(
        self,
        owner_id: int,
        name: str,
        account_type,
        currency: Optional[str] = None,
        initial_balance="0",
    ) -> Account:
        """
        Create an account

        Args:
            owner_id: owner
            name: display name (required)
            account_type: Checking, Savings, Cash or Card
            currency: ISO code, settings.DEFAULT_CURRENCY when omitted
            initial_balance: opening balance, may be negative for cards

        Returns:
            The stored account
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Account name is required")
        acc_type = parse_account_type(account_type)
        currency = validate_currency(currency or get_settings().DEFAULT_CURRENCY)
        opening = to_decimal(initial_balance)

        if acc_type is AccountType.CARD and opening > 0:
            raise ValidationError("A card account cannot open with a positive balance (must be <= 0)")
        if acc_type is AccountType.SAVINGS and opening < 0:
            raise ValidationError("A savings account cannot open with a negative balance (must be >= 0)")

        with self.store.atomic():
            account = self.store.put(Account(
                owner_id=owner_id,
                name=name,
                account_type=acc_type.value,
                currency=currency,
                balance=opening,
                initial_balance=opening,
            ))

        logger.info(f"Created account #{account.id} ({acc_type.value}, {currency}) for owner {owner_id}")
        return account

    def get_account(self, owner_id: int, account_id: int) -> Account:
        account = self.store.get(Account, account_id)
        if account is None or account.owner_id != owner_id:
            raise NotFoundError(f"Account #{account_id} not found")
        return account

    def list_accounts(self, owner_id: int) -> list[Account]:
        return self.store.query(Account, Account.owner_id == owner_id, order_by=[Account.id.asc()])

    def update_account(
        self,
        owner_id: int,
        account_id: int,
        name: Optional[str] = None,
        account_type=None,
    ) -> Account:
        """Rename or retype an account. Balance and currency are not editable."""
        account = self.get_account(owner_id, account_id)
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Account name is required")
        acc_type = parse_account_type(account_type) if account_type is not None else None

        with self.store.atomic():
            if name is not None:
                account.name = name
            if acc_type is not None:
                account.account_type = acc_type.value
            account.updated_at = utcnow()
            self.db.flush()
        return account

    def delete_account(self, owner_id: int, account_id: int) -> None:
        """
        Delete an account with everything that depends on it:
        - its transactions; for a transfer the counterpart leg on the other
          account is deleted too and its balance effect reversed
        - its recurring incomes
        Then the owner's aggregation is rebuilt.
        """
        account = self.get_account(owner_id, account_id)
        transactions = self.store.query(Transaction, Transaction.account_id == account_id)
        groups = {tx.transfer_group for tx in transactions if tx.transfer_group}

        with self.store.atomic():
            counterparts = []
            if groups:
                counterparts = self.store.query(
                    Transaction,
                    Transaction.transfer_group.in_(sorted(groups)),
                    Transaction.account_id != account_id,
                )
            for leg in counterparts:
                self.store.increment(Account, leg.account_id, "balance", -Decimal(leg.amount), updated_at=utcnow())
                self.store.delete(leg)

            removed_tx = self.store.delete_where(Transaction, Transaction.account_id == account_id)
            removed_ri = self.store.delete_where(RecurringIncome, RecurringIncome.account_id == account_id)
            self.store.delete(account)

        logger.info(
            f"Deleted account #{account_id} for owner {owner_id}: "
            f"{removed_tx} transactions, {len(counterparts)} transfer counterparts, "
            f"{removed_ri} recurring incomes"
        )
        self.aggregations.rebuild_for_owner(owner_id)

    def reconcile_balance(self, owner_id: int, account_id: int, repair: bool = False) -> BalanceReport:
        """
        Compare the stored balance with initial_balance + sum(transactions).

        With repair=True an inconsistent balance is overwritten by the derived
        value.
        """
        account = self.get_account(owner_id, account_id)
        total = (
            self.db.query(func.coalesce(func.sum(Transaction.amount), 0))
            .filter(Transaction.account_id == account_id)
            .scalar()
        )
        derived = (Decimal(account.initial_balance) + Decimal(str(total))).quantize(ZERO)
        report = BalanceReport(account_id=account_id, stored=Decimal(account.balance).quantize(ZERO), derived=derived)

        if not report.consistent:
            logger.warning(
                f"Account #{account_id} balance drift: stored {report.stored}, derived {report.derived}"
            )
            if repair:
                with self.store.atomic():
                    account.balance = derived
                    account.updated_at = utcnow()
                    self.db.flush()
                logger.info(f"Repaired balance of account #{account_id} to {derived}")
        return report

    def get_account_view(self, owner_id: int, account_id: int) -> AccountView:
        account = self.get_account(owner_id, account_id)
        incomes = self.store.query(
            RecurringIncome,
            RecurringIncome.account_id == account_id,
            RecurringIncome.is_active.is_(True),
            order_by=[RecurringIncome.next_occurrence_date.asc(), RecurringIncome.id.asc()],
        )
        return AccountView(account=account, recurring_incomes=incomes)
