import datetime as dt
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    BudgetPeriod,
    DebtStatus,
    InvestmentType,
    RecurringFrequency,
    SubscriberStatus,
    TransactionType,
)


class UserIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = Field(default=None, max_length=120)
    currency: str = Field(default="USD", min_length=3, max_length=3)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: str = Field(default="#6366f1", max_length=7)
    icon: Optional[str] = Field(default=None, max_length=16)
    included_in_budget: bool = True


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=7)
    icon: Optional[str] = Field(default=None, max_length=16)


class AccountIn(BaseModel):
    holder_name: str = Field(..., min_length=1, max_length=120)
    bank_name: str = Field(..., min_length=1, max_length=120)
    account_number: Optional[str] = Field(default=None, max_length=64)
    branch_name: Optional[str] = Field(default=None, max_length=120)
    branch_code: Optional[str] = Field(default=None, max_length=32)
    account_type: Optional[str] = Field(default=None, max_length=40)
    swift: Optional[str] = Field(default=None, max_length=16)
    bank_email: Optional[str] = Field(default=None, max_length=255)
    nickname: Optional[str] = Field(default=None, max_length=80)
    notes: Optional[str] = None
    opening_date: dt.date = Field(default_factory=dt.date.today)
    opening_balance_cents: int = 0


class AccountUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    holder_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    bank_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    account_number: Optional[str] = Field(default=None, max_length=64)
    branch_name: Optional[str] = Field(default=None, max_length=120)
    branch_code: Optional[str] = Field(default=None, max_length=32)
    account_type: Optional[str] = Field(default=None, max_length=40)
    swift: Optional[str] = Field(default=None, max_length=16)
    bank_email: Optional[str] = Field(default=None, max_length=255)
    nickname: Optional[str] = Field(default=None, max_length=80)
    notes: Optional[str] = None
    opening_date: Optional[dt.date] = None
    opening_balance_cents: Optional[int] = None


class TransferIn(BaseModel):
    from_account_id: int
    to_account_id: int
    amount_cents: int = Field(..., gt=0)
    date: Optional[dt.date] = None
    notes: Optional[str] = None


class TransactionIn(BaseModel):
    type: TransactionType
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    amount_cents: int = Field(..., ge=0)
    date: dt.date
    category_id: int
    account_id: Optional[int] = None
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    date: Optional[dt.date] = None
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    tags: Optional[list[str]] = None
    notes: Optional[str] = None
    is_recurring: Optional[bool] = None
    recurring_frequency: Optional[RecurringFrequency] = None


class InvestmentIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: InvestmentType
    symbol: Optional[str] = Field(default=None, max_length=20)
    quantity_micros: int = Field(..., ge=0)
    purchase_price_cents: int = Field(..., ge=0)
    current_price_cents: int = Field(..., ge=0)
    purchase_date: date
    account_id: int
    notes: Optional[str] = None
    interest_rate_bps: Optional[int] = Field(default=None, ge=0)
    maturity_date: Optional[date] = None


class InvestmentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    type: Optional[InvestmentType] = None
    symbol: Optional[str] = Field(default=None, max_length=20)
    quantity_micros: Optional[int] = Field(default=None, ge=0)
    purchase_price_cents: Optional[int] = Field(default=None, ge=0)
    current_price_cents: Optional[int] = Field(default=None, ge=0)
    purchase_date: Optional[date] = None
    account_id: Optional[int] = None
    notes: Optional[str] = None
    interest_rate_bps: Optional[int] = Field(default=None, ge=0)
    maturity_date: Optional[date] = None


class InvestmentTargetIn(BaseModel):
    investment_type: InvestmentType
    target_amount_cents: int = Field(..., gt=0)
    target_completion_date: Optional[date] = None
    nickname: Optional[str] = Field(default=None, max_length=80)


class InvestmentTargetUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_amount_cents: Optional[int] = Field(default=None, gt=0)
    target_completion_date: Optional[date] = None
    nickname: Optional[str] = Field(default=None, max_length=80)


class DebtIn(BaseModel):
    borrower_name: str = Field(..., min_length=1, max_length=120)
    borrower_contact: Optional[str] = Field(default=None, max_length=64)
    borrower_email: Optional[str] = Field(default=None, max_length=255)
    amount_cents: int = Field(..., gt=0)
    interest_rate_bps: int = Field(default=0, ge=0)
    lent_date: date
    due_date: Optional[date] = None
    status: DebtStatus = DebtStatus.active
    purpose: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None
    account_id: Optional[int] = None


class DebtUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    borrower_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    borrower_contact: Optional[str] = Field(default=None, max_length=64)
    borrower_email: Optional[str] = Field(default=None, max_length=255)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    interest_rate_bps: Optional[int] = Field(default=None, ge=0)
    lent_date: Optional[date] = None
    due_date: Optional[date] = None
    status: Optional[DebtStatus] = None
    purpose: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None
    account_id: Optional[int] = None


class RepaymentIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    repayment_date: Optional[date] = None
    notes: Optional[str] = None
    account_id: Optional[int] = None


class NoteIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = ""
    color: str = Field(default="#fbbf24", max_length=7)
    tags: list[str] = Field(default_factory=list)
    reminder_at: Optional[datetime] = None
    is_pinned: bool = False
    is_archived: bool = False
    related_expense_id: Optional[int] = None
    related_income_id: Optional[int] = None
    related_investment_id: Optional[int] = None
    related_debt_id: Optional[int] = None
    related_account_id: Optional[int] = None


class NoteUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=7)
    tags: Optional[list[str]] = None
    reminder_at: Optional[datetime] = None
    is_pinned: Optional[bool] = None
    is_archived: Optional[bool] = None


class BudgetTargetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category_type: TransactionType = TransactionType.expense
    target_amount_cents: int = Field(..., ge=0)
    current_amount_cents: int = Field(default=0, ge=0)
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: date
    end_date: date
    is_active: bool = True


class BudgetTargetUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    target_amount_cents: Optional[int] = Field(default=None, ge=0)
    current_amount_cents: Optional[int] = Field(default=None, ge=0)
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None


class SubscriberIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = Field(default=None, max_length=120)
    phone: Optional[str] = Field(default=None, max_length=32)
    newsletter: bool = True
    marketing: bool = False
    product_updates: bool = True
    weekly_digest: bool = True
    source: str = Field(default="manual", max_length=40)
    tags: list[str] = Field(default_factory=list)


class SubscriberUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, max_length=120)
    phone: Optional[str] = Field(default=None, max_length=32)
    status: Optional[SubscriberStatus] = None
    newsletter: Optional[bool] = None
    marketing: Optional[bool] = None
    product_updates: Optional[bool] = None
    weekly_digest: Optional[bool] = None
    tags: Optional[list[str]] = None


class BulkIdsIn(BaseModel):
    ids: list[int] = Field(..., min_length=1)


class CorrectedRowIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: TransactionType
    row: dict[str, str]
    default_account_id: Optional[int] = None


class BudgetInclusionIn(BaseModel):
    included: bool


class BudgetUpsertIn(BaseModel):
    category_name: str = Field(..., min_length=1, max_length=100)
    target_amount_cents: int = Field(..., ge=0)
    period: BudgetPeriod = BudgetPeriod.monthly
