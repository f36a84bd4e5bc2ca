from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from interest import calculate_interest, derive_status
from models import (
    EXTERNAL_INVESTMENT_TYPES,
    Account,
    AccountTransfer,
    BudgetPeriod,
    BudgetTarget,
    Category,
    Debt,
    DebtRepayment,
    DebtStatus,
    Investment,
    InvestmentTarget,
    InvestmentType,
    Note,
    RecurringFrequency,
    Subscriber,
    SubscriberStatus,
    Tag,
    Transaction,
    TransactionType,
    User,
    investment_cost,
    transaction_tags,
)
from periods import Period, add_months, month_end, month_start
from recurrence import RecurringProjector, local_today
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetTargetIn,
    BudgetTargetUpdate,
    CategoryIn,
    CategoryUpdate,
    DebtIn,
    DebtUpdate,
    InvestmentIn,
    InvestmentTargetIn,
    InvestmentTargetUpdate,
    InvestmentUpdate,
    NoteIn,
    NoteUpdate,
    RepaymentIn,
    SubscriberIn,
    SubscriberUpdate,
    TransactionIn,
    TransactionUpdate,
    TransferIn,
    UserIn,
)


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class DuplicateError(ValueError):
    pass


class InsufficientBalanceError(ValueError):
    pass


class CategoryAmbiguous(ValueError):
    pass


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"


def signed_amount(txn_type: TransactionType, amount_cents: int) -> int:
    if txn_type == TransactionType.income:
        return amount_cents
    return -amount_cents


class UserScopedService:
    """Base for services whose rows belong to one user.

    With ``autocommit=False`` writes are only flushed, so a caller (the bulk
    importers) can group several operations under one outer transaction or
    savepoint.
    """

    def __init__(
        self, session: Session, user_id: int, *, autocommit: bool = True
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.autocommit = autocommit

    def _owned(self, model, obj_id: Optional[int], label: str):
        obj = self.session.get(model, obj_id) if obj_id is not None else None
        if not obj or obj.user_id != self.user_id:
            raise NotFoundError(f"{label} not found")
        return obj

    def _save(self, *objs) -> None:
        if not self.autocommit:
            self.session.flush()
            return
        self.session.commit()
        for obj in objs:
            self.session.refresh(obj)


class BalanceLedger:
    """Applies signed effects to ``Account.balance_cents``.

    Every change happens on the caller's session, so the balance update is
    committed or rolled back together with the row that caused it.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def account(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def require(
        self, account_id: int, amount_cents: int, *, credit_cents: int = 0
    ) -> None:
        """Raise unless the account covers ``amount_cents``.

        ``credit_cents`` counts money that is about to be returned to the
        same account, such as the old cost of a row being edited.
        """
        account = self.account(account_id)
        available = account.balance_cents + credit_cents
        if available < amount_cents:
            raise InsufficientBalanceError(
                f"Insufficient balance in {account.label}: available "
                f"{format_cents(available)}, required "
                f"{format_cents(amount_cents)}"
            )

    def apply(self, account_id: Optional[int], delta: int, reason: str) -> None:
        if account_id is None or delta == 0:
            return
        account = self.account(account_id)
        account.balance_cents += delta
        logger.info(
            f"account_balance: account_id={account.id} delta={delta} reason={reason}"
        )


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: UserIn) -> User:
        email = data.email.strip().lower()
        if self.session.scalar(select(User).where(User.email == email)):
            raise DuplicateError("User with this email already exists")
        user = User(email=email, name=data.name, currency=data.currency.upper())
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def set_currency(self, user_id: int, code: str) -> User:
        clean = code.strip().upper()
        if len(clean) != 3 or not clean.isalpha():
            raise ValueError("Currency must be a three-letter ISO code")
        user = self.get(user_id)
        user.currency = clean
        self.session.commit()
        self.session.refresh(user)
        return user


class TagService(UserScopedService):
    def list_all(self) -> list[Tag]:
        stmt = select(Tag).where(Tag.user_id == self.user_id).order_by(Tag.name)
        return self.session.scalars(stmt).all()

    def get_or_create(self, name: str) -> Tag:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")

        stmt = select(Tag).where(
            Tag.user_id == self.user_id, func.lower(Tag.name) == clean_name.lower()
        )
        existing = self.session.scalar(stmt)
        if existing:
            return existing

        tag = Tag(user_id=self.user_id, name=clean_name)
        self.session.add(tag)
        self.session.flush()
        return tag

    def resolve(self, names: list[str]) -> list[Tag]:
        tags: list[Tag] = []
        tag_ids: set[int] = set()
        for name in names:
            if not name.strip():
                continue
            tag = self.get_or_create(name)
            if tag.id not in tag_ids:
                tags.append(tag)
                tag_ids.add(tag.id)
        return tags

    def delete(self, tag_id: int) -> None:
        tag = self._owned(Tag, tag_id, "Tag")
        self.session.execute(
            delete(transaction_tags).where(transaction_tags.c.tag_id == tag.id)
        )
        self.session.delete(tag)
        self._save()


class CategoryService(UserScopedService):
    def list_all(
        self,
        type: Optional[TransactionType] = None,
        include_archived: bool = False,
    ) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if type is not None:
            stmt = stmt.where(Category.type == type)
        if not include_archived:
            stmt = stmt.where(Category.archived_at.is_(None))
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        return self._owned(Category, category_id, "Category")

    def find_by_name(
        self, name: str, type: TransactionType, exclude_id: Optional[int] = None
    ) -> Optional[Category]:
        stmt = select(Category).where(
            Category.user_id == self.user_id,
            Category.type == type,
            func.lower(Category.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt)

    def create(self, data: CategoryIn) -> Category:
        if self.find_by_name(data.name, data.type):
            raise DuplicateError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            color=data.color,
            icon=data.icon,
            included_in_budget=data.included_in_budget,
        )
        self.session.add(category)
        self._save(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        fields = data.model_dump(exclude_unset=True)
        if fields.get("name"):
            if self.find_by_name(fields["name"], category.type, category.id):
                raise DuplicateError("Category with this name already exists")
            category.name = fields["name"].strip()
        if "color" in fields and fields["color"]:
            category.color = fields["color"]
        if "icon" in fields:
            category.icon = fields["icon"]
        self._save(category)
        return category

    def archive(self, category_id: int) -> None:
        category = self.get(category_id)
        category.archived_at = datetime.utcnow()
        self._save()

    def restore(self, category_id: int) -> None:
        category = self.get(category_id)
        category.archived_at = None
        self._save()

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        in_use = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id == category.id
                )
            ).scalar_one()
            or 0
        )
        if in_use:
            raise ValueError(
                f"Category is used by {in_use} transactions; archive it instead"
            )
        self.session.delete(category)
        self._save()

    def match(self, name: str, type: TransactionType) -> Category:
        """Resolve a free-text category name.

        Exact case-insensitive match first, then a unique active category
        within one edit. Two equally close candidates are ambiguous.
        """
        raw = (name or "").strip()
        if not raw:
            raise ValueError("Category is required")
        input_lower = raw.lower()
        categories = self.list_all(type=type)
        for category in categories:
            if category.name.strip().lower() == input_lower:
                return category

        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in categories:
            dist = int(Levenshtein.distance(input_lower, category.name.strip().lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted({c.name for c in best}))
                raise CategoryAmbiguous(
                    f"Category '{raw}' is ambiguous; matches: {options}"
                )
            return best[0]
        raise NotFoundError(f"Category '{raw}' not found for {type.value}")

    def set_budget_inclusion(self, name: str, included: bool) -> int:
        categories = self.session.scalars(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == name.strip().lower(),
            )
        ).all()
        if not categories:
            raise NotFoundError("Category not found")
        for category in categories:
            category.included_in_budget = included
        self._save()
        return len(categories)

    def list_with_budget_status(self) -> list[Category]:
        return self.list_all(type=TransactionType.expense)


class AccountService(UserScopedService):
    def __init__(
        self, session: Session, user_id: int, *, autocommit: bool = True
    ) -> None:
        super().__init__(session, user_id, autocommit=autocommit)
        self.ledger = BalanceLedger(session, user_id)

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.bank_name, Account.holder_name, Account.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        return self._owned(Account, account_id, "Account")

    def _clean_number(
        self, number: Optional[str], exclude_id: Optional[int] = None
    ) -> Optional[str]:
        clean = (number or "").strip() or None
        if clean is None:
            return None
        stmt = select(Account).where(
            Account.user_id == self.user_id, Account.account_number == clean
        )
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        if self.session.scalar(stmt):
            raise DuplicateError(f"Account number {clean} is already in use")
        return clean

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            holder_name=data.holder_name.strip(),
            bank_name=data.bank_name.strip(),
            account_number=self._clean_number(data.account_number),
            branch_name=data.branch_name,
            branch_code=data.branch_code,
            account_type=data.account_type,
            swift=data.swift,
            bank_email=data.bank_email,
            nickname=data.nickname,
            notes=data.notes,
            opening_date=data.opening_date,
            opening_balance_cents=data.opening_balance_cents,
            balance_cents=data.opening_balance_cents,
        )
        self.session.add(account)
        self._save(account)
        logger.info(
            f"account_create: account_id={account.id} "
            f"opening_balance={account.opening_balance_cents}"
        )
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        fields = data.model_dump(exclude_unset=True)
        if "account_number" in fields:
            account.account_number = self._clean_number(
                fields.pop("account_number"), exclude_id=account.id
            )
        new_opening = fields.pop("opening_balance_cents", None)
        if new_opening is not None and new_opening != account.opening_balance_cents:
            self.ledger.apply(
                account.id,
                new_opening - account.opening_balance_cents,
                "opening_balance_change",
            )
            account.opening_balance_cents = new_opening
        for key, value in fields.items():
            if key in ("holder_name", "bank_name", "opening_date") and value is None:
                continue
            setattr(account, key, value)
        self._save(account)
        return account

    def _reference_count(self, account_id: int) -> int:
        counts = [
            select(func.count(Transaction.id)).where(
                Transaction.account_id == account_id
            ),
            select(func.count(Investment.id)).where(
                Investment.account_id == account_id
            ),
            select(func.count(Debt.id)).where(Debt.account_id == account_id),
            select(func.count(DebtRepayment.id)).where(
                DebtRepayment.account_id == account_id
            ),
            select(func.count(AccountTransfer.id)).where(
                or_(
                    AccountTransfer.from_account_id == account_id,
                    AccountTransfer.to_account_id == account_id,
                )
            ),
        ]
        return sum(int(self.session.execute(stmt).scalar_one() or 0) for stmt in counts)

    def _delete_one(self, account: Account) -> None:
        refs = self._reference_count(account.id)
        if refs:
            raise ValueError(
                f"Account {account.label} is referenced by {refs} records; "
                "reassign or delete them first"
            )
        self.session.execute(
            Note.__table__.update()
            .where(Note.related_account_id == account.id)
            .values(related_account_id=None)
        )
        self.session.delete(account)

    def delete(self, account_id: int) -> None:
        self._delete_one(self.get(account_id))
        self._save()

    def bulk_delete(self, account_ids: list[int]) -> int:
        ids = set(account_ids)
        accounts = self.session.scalars(
            select(Account).where(Account.user_id == self.user_id, Account.id.in_(ids))
        ).all()
        if len(accounts) != len(ids):
            raise NotFoundError("Some accounts not found")
        for account in accounts:
            self._delete_one(account)
        self._save()
        logger.info(f"account_bulk_delete: user_id={self.user_id} count={len(ids)}")
        return len(ids)

    def transfer(self, data: TransferIn) -> AccountTransfer:
        if data.from_account_id == data.to_account_id:
            raise ValueError("Source and destination accounts cannot be the same")
        source = self.get(data.from_account_id)
        destination = self.get(data.to_account_id)
        self.ledger.require(source.id, data.amount_cents)
        self.ledger.apply(source.id, -data.amount_cents, "transfer_out")
        self.ledger.apply(destination.id, data.amount_cents, "transfer_in")
        transfer = AccountTransfer(
            user_id=self.user_id,
            from_account_id=source.id,
            to_account_id=destination.id,
            amount_cents=data.amount_cents,
            date=data.date or local_today(),
            notes=data.notes,
        )
        self.session.add(transfer)
        self._save(transfer)
        return transfer

    def transfers(self, limit: int = 50) -> list[AccountTransfer]:
        stmt = (
            select(AccountTransfer)
            .where(AccountTransfer.user_id == self.user_id)
            .order_by(AccountTransfer.date.desc(), AccountTransfer.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def total_balance(self) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Account.balance_cents), 0)).where(
                    Account.user_id == self.user_id
                )
            ).scalar_one()
            or 0
        )

    def withheld_by_bank(self) -> dict[str, int]:
        investments = self.session.scalars(
            select(Investment)
            .options(joinedload(Investment.account))
            .where(
                Investment.user_id == self.user_id,
                Investment.type.not_in(list(EXTERNAL_INVESTMENT_TYPES)),
            )
        ).all()
        withheld: dict[str, int] = {}
        for investment in investments:
            bank = investment.account.bank_name
            withheld[bank] = withheld.get(bank, 0) + investment.cost_cents
        return withheld

    def expected_balance(self, account: Account) -> int:
        """Opening balance plus the signed effect of every linked row."""
        ledger_stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount_cents,
                        ),
                        else_=-Transaction.amount_cents,
                    )
                ),
                0,
            )
        ).where(Transaction.account_id == account.id)
        total = account.opening_balance_cents
        total += int(self.session.execute(ledger_stmt).scalar_one() or 0)

        investments = self.session.scalars(
            select(Investment).where(Investment.account_id == account.id)
        ).all()
        total -= sum(inv.cost_cents for inv in investments)

        total -= int(
            self.session.execute(
                select(func.coalesce(func.sum(Debt.amount_cents), 0)).where(
                    Debt.account_id == account.id
                )
            ).scalar_one()
            or 0
        )
        total += int(
            self.session.execute(
                select(func.coalesce(func.sum(DebtRepayment.amount_cents), 0)).where(
                    DebtRepayment.account_id == account.id
                )
            ).scalar_one()
            or 0
        )
        total -= int(
            self.session.execute(
                select(func.coalesce(func.sum(AccountTransfer.amount_cents), 0)).where(
                    AccountTransfer.from_account_id == account.id
                )
            ).scalar_one()
            or 0
        )
        total += int(
            self.session.execute(
                select(func.coalesce(func.sum(AccountTransfer.amount_cents), 0)).where(
                    AccountTransfer.to_account_id == account.id
                )
            ).scalar_one()
            or 0
        )
        return total

    def verify_balances(self) -> list[dict[str, object]]:
        drifted: list[dict[str, object]] = []
        for account in self.list_all():
            expected = self.expected_balance(account)
            if expected != account.balance_cents:
                logger.warning(
                    f"account_drift: account_id={account.id} "
                    f"stored={account.balance_cents} expected={expected}"
                )
                drifted.append(
                    {
                        "account_id": account.id,
                        "label": account.label,
                        "stored_cents": account.balance_cents,
                        "expected_cents": expected,
                        "drift_cents": account.balance_cents - expected,
                    }
                )
        return drifted

    def find_by_reference(self, reference: str) -> Optional[Account]:
        """Find an account from a free-text import cell.

        Accepts the "holder - bank" label, a fragment of the holder or bank
        name, or the exact account number.
        """
        needle = (reference or "").strip().lower()
        if not needle:
            return None
        accounts = self.list_all()
        for account in accounts:
            if account.label.lower() == needle:
                return account
        for account in accounts:
            if (
                needle in account.holder_name.lower()
                or needle in account.bank_name.lower()
                or (account.account_number or "").lower() == needle
            ):
                return account
        return None


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    query: Optional[str] = None
    tag_id: Optional[int] = None
    start: Optional[date] = None
    end: Optional[date] = None


class TransactionService(UserScopedService):
    def __init__(
        self, session: Session, user_id: int, *, autocommit: bool = True
    ) -> None:
        super().__init__(session, user_id, autocommit=autocommit)
        self.ledger = BalanceLedger(session, user_id)

    def _category_for(self, category_id: int, txn_type: TransactionType) -> Category:
        category = self._owned(Category, category_id, "Category")
        if category.type != txn_type:
            raise ValueError("Category type mismatch")
        return category

    def create(self, data: TransactionIn) -> Transaction:
        self._category_for(data.category_id, data.type)
        if data.account_id is not None:
            self.ledger.account(data.account_id)
        frequency = None
        if data.is_recurring:
            frequency = data.recurring_frequency or RecurringFrequency.monthly
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            title=data.title.strip(),
            description=data.description,
            amount_cents=data.amount_cents,
            date=data.date,
            category_id=data.category_id,
            account_id=data.account_id,
            notes=data.notes,
            is_recurring=data.is_recurring,
            recurring_frequency=frequency,
        )
        if data.tags:
            txn.tags = TagService(self.session, self.user_id).resolve(data.tags)
        self.session.add(txn)
        self.ledger.apply(
            txn.account_id,
            signed_amount(txn.type, txn.amount_cents),
            f"{txn.type.value}_create",
        )
        self._save(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category),
                joinedload(Transaction.account),
                joinedload(Transaction.tags),
            )
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalars(stmt).unique().first()
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        fields = data.model_dump(exclude_unset=True)
        old_account_id = txn.account_id
        old_effect = signed_amount(txn.type, txn.amount_cents)

        if fields.get("category_id") is not None:
            self._category_for(fields["category_id"], txn.type)
        if fields.get("account_id") is not None:
            self.ledger.account(fields["account_id"])

        if fields.get("category_id") is not None:
            txn.category_id = fields["category_id"]
        if "account_id" in fields:
            txn.account_id = fields["account_id"]
        for key in ("title", "amount_cents", "date"):
            if fields.get(key) is not None:
                setattr(txn, key, fields[key])
        for key in ("description", "notes"):
            if key in fields:
                setattr(txn, key, fields[key])
        if fields.get("is_recurring") is not None:
            txn.is_recurring = fields["is_recurring"]
        if "recurring_frequency" in fields:
            txn.recurring_frequency = fields["recurring_frequency"]
        if not txn.is_recurring:
            txn.recurring_frequency = None
        elif txn.recurring_frequency is None:
            txn.recurring_frequency = RecurringFrequency.monthly
        if fields.get("tags") is not None:
            txn.tags = TagService(self.session, self.user_id).resolve(fields["tags"])

        new_effect = signed_amount(txn.type, txn.amount_cents)
        if old_account_id != txn.account_id or old_effect != new_effect:
            self.ledger.apply(old_account_id, -old_effect, f"{txn.type.value}_update")
            self.ledger.apply(txn.account_id, new_effect, f"{txn.type.value}_update")
        self._save(txn)
        return txn

    def _delete_one(self, txn: Transaction) -> None:
        self.ledger.apply(
            txn.account_id,
            -signed_amount(txn.type, txn.amount_cents),
            f"{txn.type.value}_delete",
        )
        self.session.execute(
            Note.__table__.update()
            .where(Note.related_expense_id == txn.id)
            .values(related_expense_id=None)
        )
        self.session.execute(
            Note.__table__.update()
            .where(Note.related_income_id == txn.id)
            .values(related_income_id=None)
        )
        self.session.delete(txn)

    def delete(self, transaction_id: int) -> None:
        self._delete_one(self.get(transaction_id))
        self._save()

    def bulk_delete(self, transaction_ids: list[int]) -> int:
        ids = set(transaction_ids)
        txns = self.session.scalars(
            select(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id.in_(ids)
            )
        ).all()
        if len(txns) != len(ids):
            raise NotFoundError("Some transactions not found")
        for txn in txns:
            self._delete_one(txn)
        self._save()
        return len(txns)

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.tags))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.account_id:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.start:
            stmt = stmt.where(Transaction.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Transaction.date <= filters.end)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Transaction.title).like(like),
                    func.lower(func.coalesce(Transaction.description, "")).like(like),
                )
            )
        if filters.tag_id:
            stmt = stmt.where(Transaction.tags.any(Tag.id == filters.tag_id))
        return self.session.scalars(stmt).unique().all()

    def by_category(self, category_id: int) -> list[Transaction]:
        self._owned(Category, category_id, "Category")
        return self.list(TransactionFilters(category_id=category_id), limit=1000)

    def by_date_range(
        self,
        start: date,
        end: date,
        txn_type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        if start > end:
            raise ValueError("Start date must be before end date")
        return self.list(
            TransactionFilters(type=txn_type, start=start, end=end), limit=10_000
        )

    def recent(self, limit: int = 10) -> list[Transaction]:
        return self.list(limit=limit)


class InvestmentService(UserScopedService):
    def __init__(
        self, session: Session, user_id: int, *, autocommit: bool = True
    ) -> None:
        super().__init__(session, user_id, autocommit=autocommit)
        self.ledger = BalanceLedger(session, user_id)

    def list_all(self, type: Optional[InvestmentType] = None) -> list[Investment]:
        stmt = (
            select(Investment)
            .options(joinedload(Investment.account))
            .where(Investment.user_id == self.user_id)
            .order_by(Investment.purchase_date.desc(), Investment.id.desc())
        )
        if type is not None:
            stmt = stmt.where(Investment.type == type)
        return self.session.scalars(stmt).all()

    def get(self, investment_id: int) -> Investment:
        return self._owned(Investment, investment_id, "Investment")

    def create(self, data: InvestmentIn) -> Investment:
        self.ledger.account(data.account_id)
        investment = Investment(user_id=self.user_id, **data.model_dump())
        cost = investment.cost_cents
        self.ledger.require(data.account_id, cost)
        self.session.add(investment)
        self.ledger.apply(data.account_id, -cost, "investment_create")
        self._save(investment)
        return investment

    def update(self, investment_id: int, data: InvestmentUpdate) -> Investment:
        investment = self.get(investment_id)
        fields = data.model_dump(exclude_unset=True)
        old_account_id = investment.account_id
        old_cost = investment.cost_cents

        changes = {
            key: value
            for key, value in fields.items()
            if value is not None
            or key in ("symbol", "notes", "interest_rate_bps", "maturity_date")
        }
        new_account_id = changes.get("account_id", old_account_id)
        new_cost = investment_cost(
            changes.get("type", investment.type),
            changes.get("quantity_micros", investment.quantity_micros),
            changes.get("purchase_price_cents", investment.purchase_price_cents),
        )
        moves_money = old_account_id != new_account_id or old_cost != new_cost
        if new_account_id != old_account_id:
            self.ledger.account(new_account_id)
        if moves_money:
            self.ledger.require(
                new_account_id,
                new_cost,
                credit_cents=old_cost if new_account_id == old_account_id else 0,
            )

        for key, value in changes.items():
            setattr(investment, key, value)
        if moves_money:
            self.ledger.apply(old_account_id, old_cost, "investment_update")
            self.ledger.apply(new_account_id, -new_cost, "investment_update")
        self._save(investment)
        return investment

    def delete(self, investment_id: int) -> None:
        investment = self.get(investment_id)
        self.ledger.apply(
            investment.account_id, investment.cost_cents, "investment_delete"
        )
        self.session.execute(
            Note.__table__.update()
            .where(Note.related_investment_id == investment.id)
            .values(related_investment_id=None)
        )
        self.session.delete(investment)
        self._save()

    def portfolio_summary(self) -> dict[str, object]:
        by_type: dict[InvestmentType, dict[str, object]] = {}
        total_cost = 0
        total_value = 0
        for investment in self.list_all():
            cost = investment.cost_cents
            value = investment.current_value_cents
            total_cost += cost
            total_value += value
            bucket = by_type.setdefault(
                investment.type,
                {
                    "type": investment.type.value,
                    "count": 0,
                    "cost_cents": 0,
                    "value_cents": 0,
                },
            )
            bucket["count"] = int(bucket["count"]) + 1
            bucket["cost_cents"] = int(bucket["cost_cents"]) + cost
            bucket["value_cents"] = int(bucket["value_cents"]) + value

        breakdown = sorted(
            by_type.values(), key=lambda b: int(b["value_cents"]), reverse=True
        )
        for bucket in breakdown:
            bucket["gain_cents"] = int(bucket["value_cents"]) - int(bucket["cost_cents"])
        gain = total_value - total_cost
        return {
            "total_cost_cents": total_cost,
            "total_value_cents": total_value,
            "gain_cents": gain,
            "gain_percent": (gain / total_cost * 100) if total_cost else 0.0,
            "by_type": breakdown,
        }


class InvestmentTargetService(UserScopedService):
    def list_targets(self) -> list[InvestmentTarget]:
        stmt = (
            select(InvestmentTarget)
            .where(InvestmentTarget.user_id == self.user_id)
            .order_by(InvestmentTarget.investment_type)
        )
        return self.session.scalars(stmt).all()

    def get(self, target_id: int) -> InvestmentTarget:
        return self._owned(InvestmentTarget, target_id, "Investment target")

    def create(self, data: InvestmentTargetIn) -> InvestmentTarget:
        existing = self.session.scalar(
            select(InvestmentTarget).where(
                InvestmentTarget.user_id == self.user_id,
                InvestmentTarget.investment_type == data.investment_type,
            )
        )
        if existing:
            raise DuplicateError(
                f"A target for {data.investment_type.value} already exists"
            )
        target = InvestmentTarget(user_id=self.user_id, **data.model_dump())
        self.session.add(target)
        self._save(target)
        return target

    def update(self, target_id: int, data: InvestmentTargetUpdate) -> InvestmentTarget:
        target = self.get(target_id)
        fields = data.model_dump(exclude_unset=True)
        if fields.get("target_amount_cents") is not None:
            target.target_amount_cents = fields["target_amount_cents"]
        if "target_completion_date" in fields:
            target.target_completion_date = fields["target_completion_date"]
        if "nickname" in fields:
            target.nickname = fields["nickname"]
        self._save(target)
        return target

    def delete(self, target_id: int) -> None:
        self.session.delete(self.get(target_id))
        self._save()

    def progress(self, today: Optional[date] = None) -> list[dict[str, object]]:
        today = today or local_today()
        values: dict[InvestmentType, int] = {}
        for investment in InvestmentService(self.session, self.user_id).list_all():
            values[investment.type] = (
                values.get(investment.type, 0) + investment.current_value_cents
            )

        out: list[dict[str, object]] = []
        for target in self.list_targets():
            current = values.get(target.investment_type, 0)
            goal = target.target_amount_cents
            percent = min(100.0, current / goal * 100) if goal else 100.0
            is_complete = current >= goal
            days_remaining = None
            is_overdue = False
            if target.target_completion_date:
                days_remaining = (target.target_completion_date - today).days
                is_overdue = days_remaining < 0 and not is_complete
            out.append(
                {
                    "id": target.id,
                    "investment_type": target.investment_type.value,
                    "nickname": target.nickname,
                    "target_amount_cents": goal,
                    "current_amount_cents": current,
                    "remaining_cents": max(0, goal - current),
                    "progress_percent": percent,
                    "is_complete": is_complete,
                    "target_completion_date": target.target_completion_date,
                    "days_remaining": days_remaining,
                    "is_overdue": is_overdue,
                }
            )
        out.sort(key=lambda item: float(item["progress_percent"]), reverse=True)
        return out


def mark_overdue_debts(
    session: Session, today: date, user_id: Optional[int] = None
) -> int:
    stmt = select(Debt).where(
        Debt.due_date.is_not(None),
        Debt.due_date < today,
        Debt.status.in_([DebtStatus.active, DebtStatus.partially_paid]),
    )
    if user_id is not None:
        stmt = stmt.where(Debt.user_id == user_id)
    debts = session.scalars(stmt).all()
    for debt in debts:
        debt.status = DebtStatus.overdue
    session.flush()
    return len(debts)


class DebtService(UserScopedService):
    def __init__(
        self, session: Session, user_id: int, *, autocommit: bool = True
    ) -> None:
        super().__init__(session, user_id, autocommit=autocommit)
        self.ledger = BalanceLedger(session, user_id)

    def list_all(self, status: Optional[DebtStatus] = None) -> list[Debt]:
        stmt = (
            select(Debt)
            .options(joinedload(Debt.repayments))
            .where(Debt.user_id == self.user_id)
            .order_by(Debt.lent_date.desc(), Debt.id.desc())
        )
        if status is not None:
            stmt = stmt.where(Debt.status == status)
        return self.session.scalars(stmt).unique().all()

    def get(self, debt_id: int) -> Debt:
        return self._owned(Debt, debt_id, "Debt")

    @staticmethod
    def repaid_cents(debt: Debt) -> int:
        return sum(r.amount_cents for r in debt.repayments)

    def summary(self, debt: Debt, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        calc = calculate_interest(
            debt.amount_cents, debt.interest_rate_bps, debt.lent_date, debt.due_date, today
        )
        repaid = self.repaid_cents(debt)
        return {
            "interest_cents": calc.interest_cents,
            "total_with_interest_cents": calc.total_cents,
            "repaid_cents": repaid,
            "remaining_cents": max(0, calc.total_cents - repaid),
            "remaining_principal_cents": max(0, debt.amount_cents - repaid),
            "days_elapsed": calc.days_elapsed,
            "days_total": calc.days_total,
            "is_overdue": bool(
                debt.due_date
                and debt.due_date < today
                and debt.status != DebtStatus.fully_paid
            ),
        }

    def refresh_status(self, debt: Debt, today: Optional[date] = None) -> DebtStatus:
        today = today or local_today()
        owed = debt.amount_cents
        if get_settings().debt_status_includes_interest:
            owed = calculate_interest(
                debt.amount_cents,
                debt.interest_rate_bps,
                debt.lent_date,
                debt.due_date,
                today,
            ).total_cents
        debt.status = derive_status(debt.status, self.repaid_cents(debt), owed)
        return debt.status

    def create(self, data: DebtIn, *, touch_balance: bool = True) -> Debt:
        if data.due_date and data.due_date < data.lent_date:
            raise ValueError("Due date cannot be before the lent date")
        if data.account_id is not None:
            self.ledger.account(data.account_id)
            if touch_balance:
                self.ledger.require(data.account_id, data.amount_cents)
        debt = Debt(user_id=self.user_id, **data.model_dump())
        self.session.add(debt)
        if touch_balance:
            self.ledger.apply(debt.account_id, -debt.amount_cents, "debt_create")
        self._save(debt)
        return debt

    def update(self, debt_id: int, data: DebtUpdate) -> Debt:
        debt = self.get(debt_id)
        fields = data.model_dump(exclude_unset=True)
        old_account_id = debt.account_id
        old_amount = debt.amount_cents

        status = fields.pop("status", None)
        changes = {
            key: value
            for key, value in fields.items()
            if value is not None
            or key not in ("borrower_name", "amount_cents", "interest_rate_bps", "lent_date")
        }
        new_account_id = changes.get("account_id", old_account_id)
        new_amount = changes.get("amount_cents", old_amount)
        due_date = changes.get("due_date", debt.due_date)
        if due_date and due_date < changes.get("lent_date", debt.lent_date):
            raise ValueError("Due date cannot be before the lent date")
        moves_money = old_account_id != new_account_id or old_amount != new_amount
        if new_account_id is not None:
            if new_account_id != old_account_id:
                self.ledger.account(new_account_id)
            if moves_money:
                self.ledger.require(
                    new_account_id,
                    new_amount,
                    credit_cents=(
                        old_amount if new_account_id == old_account_id else 0
                    ),
                )

        for key, value in changes.items():
            setattr(debt, key, value)
        if moves_money:
            self.ledger.apply(old_account_id, old_amount, "debt_update")
            self.ledger.apply(new_account_id, -new_amount, "debt_update")

        if status is not None:
            debt.status = status
        else:
            self.refresh_status(debt)
        self._save(debt)
        return debt

    def _reverse_balances(self, debt: Debt, deltas: dict[int, int]) -> None:
        if debt.account_id is not None:
            deltas[debt.account_id] = deltas.get(debt.account_id, 0) + debt.amount_cents
        for repayment in debt.repayments:
            if repayment.account_id is not None:
                deltas[repayment.account_id] = (
                    deltas.get(repayment.account_id, 0) - repayment.amount_cents
                )

    def _detach_notes(self, debt_ids: list[int]) -> None:
        self.session.execute(
            Note.__table__.update()
            .where(Note.related_debt_id.in_(debt_ids))
            .values(related_debt_id=None)
        )

    def delete(self, debt_id: int) -> None:
        debt = self.get(debt_id)
        deltas: dict[int, int] = {}
        self._reverse_balances(debt, deltas)
        for account_id, delta in deltas.items():
            self.ledger.apply(account_id, delta, "debt_delete")
        self._detach_notes([debt.id])
        self.session.delete(debt)
        self._save()

    def bulk_delete(self, debt_ids: list[int]) -> int:
        ids = set(debt_ids)
        debts = self.session.scalars(
            select(Debt)
            .options(joinedload(Debt.repayments))
            .where(Debt.user_id == self.user_id, Debt.id.in_(ids))
        ).unique().all()
        if len(debts) != len(ids):
            raise NotFoundError("Some debts not found")
        deltas: dict[int, int] = {}
        for debt in debts:
            self._reverse_balances(debt, deltas)
        for account_id, delta in deltas.items():
            self.ledger.apply(account_id, delta, "debt_bulk_delete")
        self._detach_notes([debt.id for debt in debts])
        for debt in debts:
            self.session.delete(debt)
        self._save()
        logger.info(f"debt_bulk_delete: user_id={self.user_id} count={len(debts)}")
        return len(debts)

    def add_repayment(
        self,
        debt_id: int,
        data: RepaymentIn,
        *,
        today: Optional[date] = None,
        touch_balance: bool = True,
    ) -> DebtRepayment:
        today = today or local_today()
        debt = self.get(debt_id)
        remaining = int(self.summary(debt, today)["remaining_cents"])
        if data.amount_cents > remaining:
            raise ValueError(
                "Repayment amount exceeds remaining balance of "
                f"{format_cents(remaining)}"
            )
        if data.account_id is not None:
            self.ledger.account(data.account_id)
        repayment = DebtRepayment(
            amount_cents=data.amount_cents,
            repayment_date=data.repayment_date or today,
            notes=data.notes,
            account_id=data.account_id,
        )
        debt.repayments.append(repayment)
        if touch_balance:
            self.ledger.apply(
                repayment.account_id, repayment.amount_cents, "repayment_create"
            )
        self.refresh_status(debt, today)
        self._save(repayment, debt)
        return repayment

    def delete_repayment(self, debt_id: int, repayment_id: int) -> Debt:
        debt = self.get(debt_id)
        repayment = self.session.get(DebtRepayment, repayment_id)
        if not repayment or repayment.debt_id != debt.id:
            raise NotFoundError("Repayment not found")
        self.ledger.apply(
            repayment.account_id, -repayment.amount_cents, "repayment_delete"
        )
        debt.repayments.remove(repayment)
        self.refresh_status(debt)
        self._save(debt)
        return debt

    def mark_overdue(self, today: Optional[date] = None) -> int:
        count = mark_overdue_debts(self.session, today or local_today(), self.user_id)
        self._save()
        return count


class NoteService(UserScopedService):
    _RELATED = {
        "related_expense_id": (Transaction, "Related expense"),
        "related_income_id": (Transaction, "Related income"),
        "related_investment_id": (Investment, "Related investment"),
        "related_debt_id": (Debt, "Related debt"),
        "related_account_id": (Account, "Related account"),
    }

    def get(self, note_id: int) -> Note:
        return self._owned(Note, note_id, "Note")

    def create(self, data: NoteIn) -> Note:
        fields = data.model_dump()
        for key, (model, label) in self._RELATED.items():
            if fields.get(key) is not None:
                self._owned(model, fields[key], label)
        tags = fields.pop("tags")
        note = Note(user_id=self.user_id, **fields)
        note.title = note.title.strip()
        note.tags = _dedupe(tags)
        self.session.add(note)
        self._save(note)
        return note

    def update(self, note_id: int, data: NoteUpdate) -> Note:
        note = self.get(note_id)
        fields = data.model_dump(exclude_unset=True)
        if "tags" in fields:
            note.tags = _dedupe(fields.pop("tags") or [])
        for key, value in fields.items():
            if value is None and key != "reminder_at":
                continue
            setattr(note, key, value)
        self._save(note)
        return note

    def delete(self, note_id: int) -> None:
        self.session.delete(self.get(note_id))
        self._save()

    def list_active(self) -> list[Note]:
        stmt = (
            select(Note)
            .where(Note.user_id == self.user_id, Note.is_archived.is_(False))
            .order_by(Note.is_pinned.desc(), Note.created_at.desc(), Note.id.desc())
        )
        return self.session.scalars(stmt).all()

    def list_archived(self) -> list[Note]:
        stmt = (
            select(Note)
            .where(Note.user_id == self.user_id, Note.is_archived.is_(True))
            .order_by(Note.updated_at.desc(), Note.id.desc())
        )
        return self.session.scalars(stmt).all()

    def toggle_pin(self, note_id: int) -> Note:
        note = self.get(note_id)
        note.is_pinned = not note.is_pinned
        self._save(note)
        return note

    def toggle_archive(self, note_id: int) -> Note:
        note = self.get(note_id)
        note.is_archived = not note.is_archived
        self._save(note)
        return note

    def reminders_between(self, start: date, end: date) -> list[Note]:
        stmt = (
            select(Note)
            .where(
                Note.user_id == self.user_id,
                Note.is_archived.is_(False),
                Note.reminder_at.is_not(None),
                func.date(Note.reminder_at) >= start.isoformat(),
                func.date(Note.reminder_at) <= end.isoformat(),
            )
            .order_by(Note.reminder_at.asc())
        )
        return self.session.scalars(stmt).all()


def _dedupe(names: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for name in names:
        clean = name.strip()
        if clean and clean.lower() not in seen:
            seen.add(clean.lower())
            out.append(clean)
    return out


def monthly_equivalent_cents(amount_cents: int, period: BudgetPeriod) -> int:
    factors = {
        BudgetPeriod.weekly: Decimal(52) / Decimal(12),
        BudgetPeriod.monthly: Decimal(1),
        BudgetPeriod.quarterly: Decimal(1) / Decimal(3),
        BudgetPeriod.yearly: Decimal(1) / Decimal(12),
    }
    value = Decimal(amount_cents) * factors[period]
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class BudgetTargetService(UserScopedService):
    VARIANCE_TOLERANCE_PERCENT = 10

    def list(self, period: Optional[BudgetPeriod] = None) -> list[BudgetTarget]:
        stmt = (
            select(BudgetTarget)
            .where(BudgetTarget.user_id == self.user_id, BudgetTarget.is_active.is_(True))
            .order_by(BudgetTarget.name, BudgetTarget.id)
        )
        if period is not None:
            stmt = stmt.where(BudgetTarget.period == period)
        return self.session.scalars(stmt).all()

    def get(self, target_id: int) -> BudgetTarget:
        return self._owned(BudgetTarget, target_id, "Budget target")

    def find_by_name(self, name: str) -> Optional[BudgetTarget]:
        return self.session.scalar(
            select(BudgetTarget).where(
                BudgetTarget.user_id == self.user_id,
                func.lower(BudgetTarget.name) == name.strip().lower(),
            )
        )

    def create(self, data: BudgetTargetIn) -> BudgetTarget:
        if data.start_date >= data.end_date:
            raise ValueError("Start date must be before end date")
        target = BudgetTarget(user_id=self.user_id, **data.model_dump())
        target.name = target.name.strip()
        self.session.add(target)
        self._save(target)
        return target

    def update(self, target_id: int, data: BudgetTargetUpdate) -> BudgetTarget:
        target = self.get(target_id)
        for key, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(target, key, value)
        if target.start_date >= target.end_date:
            raise ValueError("Start date must be before end date")
        self._save(target)
        return target

    def delete(self, target_id: int) -> None:
        self.session.delete(self.get(target_id))
        self._save()

    def delete_all(self) -> int:
        result = self.session.execute(
            delete(BudgetTarget).where(BudgetTarget.user_id == self.user_id)
        )
        self._save()
        return int(result.rowcount or 0)

    def upsert_for_category(
        self,
        category_name: str,
        target_amount_cents: int,
        period: BudgetPeriod = BudgetPeriod.monthly,
        *,
        today: Optional[date] = None,
    ) -> BudgetTarget:
        today = today or local_today()
        target = self.find_by_name(category_name)
        if target:
            target.target_amount_cents = target_amount_cents
            target.period = period
            target.is_active = True
        else:
            target = BudgetTarget(
                user_id=self.user_id,
                name=category_name.strip(),
                category_type=TransactionType.expense,
                target_amount_cents=target_amount_cents,
                period=period,
                start_date=month_start(today),
                end_date=month_end(today),
            )
            self.session.add(target)
        self._save(target)
        return target

    def comparison(
        self,
        period: Optional[BudgetPeriod] = None,
        today: Optional[date] = None,
    ) -> list[dict[str, object]]:
        """Current-month spending of each budgeted category against its target.

        With ``period`` set, only targets of that period count; categories
        whose target has another period are compared against zero.
        """
        today = today or local_today()
        start = month_start(today)
        end = month_end(today)

        categories = self.session.scalars(
            select(Category)
            .where(
                Category.user_id == self.user_id,
                Category.type == TransactionType.expense,
                Category.included_in_budget.is_(True),
                Category.archived_at.is_(None),
            )
            .order_by(Category.name)
        ).all()
        actual_rows = self.session.execute(
            select(
                Transaction.category_id,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(start, end),
            )
            .group_by(Transaction.category_id)
        ).all()
        actuals = {row.category_id: int(row.total or 0) for row in actual_rows}
        targets = {target.name.lower(): target for target in self.list(period)}

        out: list[dict[str, object]] = []
        for category in categories:
            actual = actuals.get(category.id, 0)
            target = targets.get(category.name.lower())
            monthly = (
                monthly_equivalent_cents(target.target_amount_cents, target.period)
                if target
                else 0
            )
            variance = actual - monthly
            if monthly == 0:
                variance_percent = 100.0 if actual > 0 else 0.0
                status = "over" if actual > 0 else "on-track"
            else:
                variance_percent = variance / monthly * 100
                if variance_percent > self.VARIANCE_TOLERANCE_PERCENT:
                    status = "over"
                elif variance_percent < -self.VARIANCE_TOLERANCE_PERCENT:
                    status = "under"
                else:
                    status = "on-track"
            out.append(
                {
                    "category_id": category.id,
                    "category": category.name,
                    "color": category.color,
                    "target_id": target.id if target else None,
                    "period": target.period.value if target else None,
                    "target_cents": monthly,
                    "actual_cents": actual,
                    "variance_cents": variance,
                    "variance_percent": variance_percent,
                    "status": status,
                }
            )
        return out


class SubscriberService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def _clean_email(email: str) -> str:
        clean = (email or "").strip().lower()
        local, _, domain = clean.partition("@")
        if not local or "." not in domain:
            raise ValueError("Invalid email address")
        return clean

    def list_all(self, status: Optional[SubscriberStatus] = None) -> list[Subscriber]:
        stmt = select(Subscriber).order_by(Subscriber.subscribed_at.desc(), Subscriber.id.desc())
        if status is not None:
            stmt = stmt.where(Subscriber.status == status)
        return self.session.scalars(stmt).all()

    def get(self, subscriber_id: int) -> Subscriber:
        subscriber = self.session.get(Subscriber, subscriber_id)
        if not subscriber:
            raise NotFoundError("Subscriber not found")
        return subscriber

    def get_by_email(self, email: str) -> Optional[Subscriber]:
        return self.session.scalar(
            select(Subscriber).where(Subscriber.email == self._clean_email(email))
        )

    def add(self, data: SubscriberIn) -> Subscriber:
        email = self._clean_email(data.email)
        fields = data.model_dump(exclude={"email", "tags"})
        subscriber = self.get_by_email(email)
        if subscriber and subscriber.status == SubscriberStatus.active:
            raise DuplicateError("Email is already subscribed")
        if subscriber:
            for key, value in fields.items():
                setattr(subscriber, key, value)
            subscriber.status = SubscriberStatus.active
            subscriber.subscribed_at = datetime.utcnow()
            subscriber.unsubscribed_at = None
            logger.info(f"subscriber_reactivated: subscriber_id={subscriber.id}")
        else:
            subscriber = Subscriber(email=email, **fields)
            self.session.add(subscriber)
        subscriber.tags = _dedupe(data.tags)
        self.session.commit()
        self.session.refresh(subscriber)
        return subscriber

    def update(self, subscriber_id: int, data: SubscriberUpdate) -> Subscriber:
        subscriber = self.get(subscriber_id)
        fields = data.model_dump(exclude_unset=True)
        if "tags" in fields:
            subscriber.tags = _dedupe(fields.pop("tags") or [])
        status = fields.pop("status", None)
        for key, value in fields.items():
            if value is None and key not in ("name", "phone"):
                continue
            setattr(subscriber, key, value)
        if status is not None and status != subscriber.status:
            subscriber.status = status
            if status == SubscriberStatus.unsubscribed:
                subscriber.unsubscribed_at = datetime.utcnow()
            elif status == SubscriberStatus.active:
                subscriber.unsubscribed_at = None
        self.session.commit()
        self.session.refresh(subscriber)
        return subscriber

    def delete(self, subscriber_id: int) -> None:
        self.session.delete(self.get(subscriber_id))
        self.session.commit()

    def bulk_unsubscribe(self, subscriber_ids: list[int]) -> int:
        subscribers = self.session.scalars(
            select(Subscriber).where(
                Subscriber.id.in_(set(subscriber_ids)),
                Subscriber.status != SubscriberStatus.unsubscribed,
            )
        ).all()
        now = datetime.utcnow()
        for subscriber in subscribers:
            subscriber.status = SubscriberStatus.unsubscribed
            subscriber.unsubscribed_at = now
        self.session.commit()
        return len(subscribers)

    def stats(self) -> dict[str, int]:
        row = self.session.execute(
            select(
                func.count(Subscriber.id).label("total"),
                func.coalesce(
                    func.sum(case((Subscriber.status == SubscriberStatus.active, 1), else_=0)), 0
                ).label("active"),
                func.coalesce(
                    func.sum(
                        case((Subscriber.status == SubscriberStatus.unsubscribed, 1), else_=0)
                    ),
                    0,
                ).label("unsubscribed"),
                func.coalesce(
                    func.sum(case((Subscriber.status == SubscriberStatus.inactive, 1), else_=0)),
                    0,
                ).label("inactive"),
            )
        ).one()
        stats = {
            "total": int(row.total or 0),
            "active": int(row.active or 0),
            "unsubscribed": int(row.unsubscribed or 0),
            "inactive": int(row.inactive or 0),
        }
        for flag in ("newsletter", "marketing", "product_updates", "weekly_digest"):
            column = getattr(Subscriber, flag)
            stats[flag] = int(
                self.session.execute(
                    select(func.count(Subscriber.id)).where(
                        column.is_(True), Subscriber.status == SubscriberStatus.active
                    )
                ).scalar_one()
                or 0
            )
        return stats


class MetricsService(UserScopedService):
    def _totals(self, start: date, end: date) -> tuple[int, int]:
        row = self.session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.type == TransactionType.income,
                                Transaction.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("income"),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.type == TransactionType.expense,
                                Transaction.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("expenses"),
            ).where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(start, end),
            )
        ).one()
        return int(row.income or 0), int(row.expenses or 0)

    def kpis(self, period: Period, *, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        income, expenses = self._totals(period.start, period.end)
        net = income - expenses
        debts = DebtService(self.session, self.user_id)
        receivable = 0
        for debt in debts.list_all():
            if debt.status == DebtStatus.fully_paid:
                continue
            receivable += int(debts.summary(debt, today)["remaining_cents"])
        investments_value = sum(
            inv.current_value_cents
            for inv in InvestmentService(self.session, self.user_id).list_all()
        )
        return {
            "income_cents": income,
            "expense_cents": expenses,
            "net_cents": net,
            "savings_rate": (net / income * 100) if income else 0.0,
            "total_balance_cents": AccountService(
                self.session, self.user_id
            ).total_balance(),
            "investments_value_cents": investments_value,
            "debts_receivable_cents": receivable,
        }

    def category_breakdown(
        self,
        period: Period,
        transaction_type: TransactionType = TransactionType.expense,
    ) -> list[dict[str, object]]:
        total_col = func.sum(Transaction.amount_cents).label("total")
        stmt = (
            select(Category.id, Category.name, Category.color, total_col)
            .join(Category, Category.id == Transaction.category_id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == transaction_type,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Category.id, Category.name, Category.color)
            .order_by(total_col.desc(), Category.name)
        )
        rows = self.session.execute(stmt).all()
        total = sum(int(row.total or 0) for row in rows)
        breakdown = []
        for row in rows:
            amount = int(row.total or 0)
            breakdown.append(
                {
                    "category_id": row.id,
                    "name": row.name,
                    "color": row.color,
                    "amount_cents": amount,
                    "percent": (amount / total * 100) if total else 0,
                }
            )
        return breakdown

    def monthly_series(
        self, months: int = 12, *, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        today = today or local_today()
        months = max(1, months)
        first = add_months(today, -(months - 1))
        buckets = [add_months(first, i) for i in range(months)]

        year = func.strftime("%Y", Transaction.date).label("year")
        month = func.strftime("%m", Transaction.date).label("month")
        stmt = (
            select(
                year,
                month,
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(first, month_end(today)),
            )
            .group_by("year", "month", Transaction.type)
        )
        totals: dict[tuple[int, int, TransactionType], int] = {}
        for row in self.session.execute(stmt):
            totals[(int(row.year), int(row.month), row.type)] = int(row.total or 0)

        out: list[dict[str, object]] = []
        for bucket in buckets:
            income = totals.get((bucket.year, bucket.month, TransactionType.income), 0)
            expense = totals.get((bucket.year, bucket.month, TransactionType.expense), 0)
            out.append(
                {
                    "year": bucket.year,
                    "month": bucket.month,
                    "label": f"{bucket.year:04d}-{bucket.month:02d}",
                    "income_cents": income,
                    "expense_cents": expense,
                    "net_cents": income - expense,
                }
            )
        return out

    def recent_transactions(self, limit: int = 10) -> list[Transaction]:
        return TransactionService(self.session, self.user_id).recent(limit)


class CalendarService(UserScopedService):
    def events(self, start: date, end: date) -> list[dict[str, object]]:
        if start > end:
            raise ValueError("Start date must be before end date")
        events: list[dict[str, object]] = []
        for note in NoteService(self.session, self.user_id).reminders_between(start, end):
            events.append(
                {
                    "date": note.reminder_at.date(),
                    "kind": "note_reminder",
                    "title": note.title,
                    "ref_id": note.id,
                    "amount_cents": None,
                }
            )

        debts = self.session.scalars(
            select(Debt).where(
                Debt.user_id == self.user_id,
                Debt.due_date.between(start, end),
                Debt.status != DebtStatus.fully_paid,
            )
        ).all()
        for debt in debts:
            events.append(
                {
                    "date": debt.due_date,
                    "kind": "debt_due",
                    "title": f"{debt.borrower_name} repayment due",
                    "ref_id": debt.id,
                    "amount_cents": debt.amount_cents,
                }
            )

        for occ in RecurringProjector(self.session, self.user_id).project(start, end):
            events.append(
                {
                    "date": occ.date,
                    "kind": f"recurring_{occ.type.value}",
                    "title": occ.title,
                    "ref_id": occ.transaction_id,
                    "amount_cents": occ.amount_cents,
                }
            )
        events.sort(key=lambda e: (e["date"], str(e["kind"]), int(e["ref_id"])))
        return events
