import json
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


QUANTITY_SCALE = 1_000_000


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class RecurringFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class InvestmentType(str, Enum):
    stocks = "stocks"
    crypto = "crypto"
    mutual_funds = "mutual_funds"
    bonds = "bonds"
    real_estate = "real_estate"
    gold = "gold"
    fixed_deposit = "fixed_deposit"
    provident_funds = "provident_funds"
    safe_keepings = "safe_keepings"
    other = "other"


# Valued by purchase/current price alone, not quantity x price.
LUMP_SUM_INVESTMENT_TYPES = frozenset(
    {
        InvestmentType.fixed_deposit,
        InvestmentType.provident_funds,
        InvestmentType.safe_keepings,
    }
)

# Held outside the bank; excluded from withheld-by-bank totals.
EXTERNAL_INVESTMENT_TYPES = frozenset(
    {
        InvestmentType.gold,
        InvestmentType.bonds,
        InvestmentType.mutual_funds,
        InvestmentType.crypto,
        InvestmentType.real_estate,
    }
)


class DebtStatus(str, Enum):
    active = "active"
    partially_paid = "partially_paid"
    fully_paid = "fully_paid"
    overdue = "overdue"
    defaulted = "defaulted"


class BudgetPeriod(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class SubscriberStatus(str, Enum):
    active = "active"
    unsubscribed = "unsubscribed"
    inactive = "inactive"


def scale_quantity(quantity_micros: int, price_cents: int) -> int:
    value = Decimal(quantity_micros) * Decimal(price_cents) / Decimal(QUANTITY_SCALE)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def investment_cost(
    investment_type: InvestmentType, quantity_micros: int, price_cents: int
) -> int:
    if investment_type in LUMP_SUM_INVESTMENT_TYPES:
        return price_cents
    return scale_quantity(quantity_micros, price_cents)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(120))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#6366f1")
    icon: Mapped[Optional[str]] = mapped_column(String(16))
    included_in_budget: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class Tag(Base, TimestampMixin):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_tag_user_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", secondary="transaction_tags", back_populates="tags"
    )


transaction_tags = Table(
    "transaction_tags",
    Base.metadata,
    Column("transaction_id", Integer, ForeignKey("transactions.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    holder_name: Mapped[str] = mapped_column(String(120), nullable=False)
    account_number: Mapped[Optional[str]] = mapped_column(String(64))
    bank_name: Mapped[str] = mapped_column(String(120), nullable=False)
    branch_name: Mapped[Optional[str]] = mapped_column(String(120))
    branch_code: Mapped[Optional[str]] = mapped_column(String(32))
    account_type: Mapped[Optional[str]] = mapped_column(String(40))
    swift: Mapped[Optional[str]] = mapped_column(String(16))
    bank_email: Mapped[Optional[str]] = mapped_column(String(255))
    nickname: Mapped[Optional[str]] = mapped_column(String(80))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    opening_date: Mapped[date] = mapped_column(Date, nullable=False)
    opening_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "account_number", name="uq_account_user_number"),
    )

    @property
    def label(self) -> str:
        return f"{self.holder_name} - {self.bank_name}"


class Transaction(Base, TimestampMixin):
    """An income or an expense; `type` tells them apart."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_frequency: Mapped[Optional[RecurringFrequency]] = mapped_column(
        SAEnum(RecurringFrequency)
    )

    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )
    account: Mapped[Optional["Account"]] = relationship("Account")
    tags: Mapped[list["Tag"]] = relationship(
        "Tag", secondary="transaction_tags", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        Index("ix_transactions_account", "account_id"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class Investment(Base, TimestampMixin):
    __tablename__ = "investments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[InvestmentType] = mapped_column(SAEnum(InvestmentType), nullable=False)
    symbol: Mapped[Optional[str]] = mapped_column(String(20))
    quantity_micros: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    interest_rate_bps: Mapped[Optional[int]] = mapped_column(Integer)
    maturity_date: Mapped[Optional[date]] = mapped_column(Date)

    account: Mapped["Account"] = relationship("Account")

    __table_args__ = (
        Index("ix_investments_user_type", "user_id", "type"),
        CheckConstraint("quantity_micros >= 0", name="ck_investments_quantity"),
        CheckConstraint(
            "purchase_price_cents >= 0", name="ck_investments_purchase_price"
        ),
    )

    @property
    def cost_cents(self) -> int:
        return investment_cost(
            self.type, self.quantity_micros, self.purchase_price_cents
        )

    @property
    def current_value_cents(self) -> int:
        if self.type in LUMP_SUM_INVESTMENT_TYPES:
            return self.current_price_cents
        return scale_quantity(self.quantity_micros, self.current_price_cents)


class InvestmentTarget(Base, TimestampMixin):
    __tablename__ = "investment_targets"
    __table_args__ = (
        UniqueConstraint("user_id", "investment_type", name="uq_investment_target"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    investment_type: Mapped[InvestmentType] = mapped_column(
        SAEnum(InvestmentType), nullable=False
    )
    target_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    target_completion_date: Mapped[Optional[date]] = mapped_column(Date)
    nickname: Mapped[Optional[str]] = mapped_column(String(80))


class Debt(Base, TimestampMixin):
    __tablename__ = "debts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    borrower_name: Mapped[str] = mapped_column(String(120), nullable=False)
    borrower_contact: Mapped[Optional[str]] = mapped_column(String(64))
    borrower_email: Mapped[Optional[str]] = mapped_column(String(255))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_rate_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lent_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[DebtStatus] = mapped_column(
        SAEnum(DebtStatus), nullable=False, default=DebtStatus.active
    )
    purpose: Mapped[Optional[str]] = mapped_column(String(200))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))

    account: Mapped[Optional["Account"]] = relationship("Account")
    repayments: Mapped[list["DebtRepayment"]] = relationship(
        "DebtRepayment",
        back_populates="debt",
        cascade="all, delete-orphan",
        order_by="DebtRepayment.repayment_date",
    )

    __table_args__ = (
        Index("ix_debts_user_status", "user_id", "status"),
        CheckConstraint("amount_cents > 0", name="ck_debts_amount_positive"),
        CheckConstraint("interest_rate_bps >= 0", name="ck_debts_rate_positive"),
    )


class DebtRepayment(Base, TimestampMixin):
    __tablename__ = "debt_repayments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    debt_id: Mapped[int] = mapped_column(
        ForeignKey("debts.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    repayment_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))

    debt: Mapped["Debt"] = relationship("Debt", back_populates="repayments")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_repayments_amount_positive"),
    )


class AccountTransfer(Base, TimestampMixin):
    __tablename__ = "account_transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    from_account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    to_account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_transfers_amount_positive"),
        CheckConstraint(
            "from_account_id != to_account_id", name="ck_transfers_distinct"
        ),
    )


class Note(Base, TimestampMixin):
    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#fbbf24")
    tags_json: Mapped[Optional[str]] = mapped_column(Text)
    reminder_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    related_expense_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )
    related_income_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )
    related_investment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("investments.id", ondelete="SET NULL")
    )
    related_debt_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("debts.id", ondelete="SET NULL")
    )
    related_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL")
    )

    __table_args__ = (
        Index("ix_notes_user_archived", "user_id", "is_archived"),
    )

    @property
    def tags(self) -> list[str]:
        if not self.tags_json:
            return []
        return list(json.loads(self.tags_json))

    @tags.setter
    def tags(self, value: list[str]) -> None:
        self.tags_json = json.dumps(value) if value else None


class BudgetTarget(Base, TimestampMixin):
    __tablename__ = "budget_targets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category_type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False, default=TransactionType.expense
    )
    target_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    period: Mapped[BudgetPeriod] = mapped_column(
        SAEnum(BudgetPeriod), nullable=False, default=BudgetPeriod.monthly
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "target_amount_cents >= 0", name="ck_budget_target_amount_positive"
        ),
        Index("ix_budget_targets_user_active", "user_id", "is_active"),
    )


class Subscriber(Base, TimestampMixin):
    __tablename__ = "subscribers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(120))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    status: Mapped[SubscriberStatus] = mapped_column(
        SAEnum(SubscriberStatus), nullable=False, default=SubscriberStatus.active
    )
    newsletter: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    marketing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    product_updates: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    weekly_digest: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    source: Mapped[str] = mapped_column(String(40), nullable=False, default="manual")
    tags_json: Mapped[Optional[str]] = mapped_column(Text)
    subscribed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    unsubscribed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    @property
    def tags(self) -> list[str]:
        if not self.tags_json:
            return []
        return list(json.loads(self.tags_json))

    @tags.setter
    def tags(self, value: list[str]) -> None:
        self.tags_json = json.dumps(value) if value else None
