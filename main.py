import json
import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from database import get_db
from importers import ImportService
from models import (
    Account,
    AccountTransfer,
    BudgetPeriod,
    BudgetTarget,
    Category,
    Debt,
    DebtStatus,
    Investment,
    InvestmentTarget,
    Note,
    Subscriber,
    SubscriberStatus,
    Transaction,
    TransactionType,
    User,
)
from periods import Period, resolve_period
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetInclusionIn,
    BudgetTargetIn,
    BudgetTargetUpdate,
    BudgetUpsertIn,
    BulkIdsIn,
    CategoryIn,
    CategoryUpdate,
    CorrectedRowIn,
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
from services import (
    AccountService,
    BudgetTargetService,
    CalendarService,
    CategoryService,
    DebtService,
    InvestmentService,
    InvestmentTargetService,
    MetricsService,
    NotFoundError,
    NoteService,
    SubscriberService,
    TagService,
    TransactionFilters,
    TransactionService,
    UserService,
)


settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")

IMPORT_KINDS = (
    "incomes",
    "expenses",
    "notes",
    "investments",
    "budget-targets",
    "debts",
    "repayments",
    "accounts",
    "categories",
    "investment-targets",
)
MAX_UPLOAD_BYTES = 5 * 1024 * 1024


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> int:
    """Caller id forwarded by the authenticating proxy in front of the app."""
    if not x_user_id or not x_user_id.strip().isdigit():
        raise HTTPException(status_code=401, detail="Not authenticated")
    user_id = int(x_user_id.strip())
    if not db.get(User, user_id):
        raise HTTPException(status_code=401, detail="Unknown user")
    return user_id


def require_csrf(
    x_csrf_token: Optional[str] = Header(default=None),
    user_id: int = Depends(get_current_user_id),
) -> int:
    if not validate_csrf_token(x_csrf_token or "", user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return user_id


def http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFoundError) else 400
    return HTTPException(status_code=status, detail=str(exc))


def period_from_request(request: Request) -> Period:
    try:
        return resolve_period(
            request.query_params.get("period"),
            request.query_params.get("start"),
            request.query_params.get("end"),
            today=local_today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request, period: Optional[Period]) -> TransactionFilters:
    params = request.query_params
    try:
        txn_type = TransactionType(params["type"]) if params.get("type") else None
        category_id = int(params["category"]) if params.get("category") else None
        account_id = int(params["account"]) if params.get("account") else None
        tag_id = int(params["tag"]) if params.get("tag") else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TransactionFilters(
        type=txn_type,
        category_id=category_id,
        account_id=account_id,
        query=params.get("q") or None,
        tag_id=tag_id,
        start=period.start if period else None,
        end=period.end if period else None,
    )


def user_json(user: User) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name, "currency": user.currency}


def category_json(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
        "icon": category.icon,
        "included_in_budget": category.included_in_budget,
        "archived": category.archived_at is not None,
    }


def account_json(account: Account) -> dict:
    return {
        "id": account.id,
        "label": account.label,
        "holder_name": account.holder_name,
        "bank_name": account.bank_name,
        "account_number": account.account_number,
        "branch_name": account.branch_name,
        "branch_code": account.branch_code,
        "account_type": account.account_type,
        "swift": account.swift,
        "bank_email": account.bank_email,
        "nickname": account.nickname,
        "notes": account.notes,
        "opening_date": account.opening_date.isoformat(),
        "opening_balance_cents": account.opening_balance_cents,
        "balance_cents": account.balance_cents,
    }


def transfer_json(transfer: AccountTransfer) -> dict:
    return {
        "id": transfer.id,
        "from_account_id": transfer.from_account_id,
        "to_account_id": transfer.to_account_id,
        "amount_cents": transfer.amount_cents,
        "date": transfer.date.isoformat(),
        "notes": transfer.notes,
    }


def transaction_json(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "title": txn.title,
        "description": txn.description,
        "amount_cents": txn.amount_cents,
        "date": txn.date.isoformat(),
        "category_id": txn.category_id,
        "category": txn.category.name if txn.category else None,
        "account_id": txn.account_id,
        "tags": [tag.name for tag in txn.tags],
        "notes": txn.notes,
        "is_recurring": txn.is_recurring,
        "recurring_frequency": (
            txn.recurring_frequency.value if txn.recurring_frequency else None
        ),
    }


def investment_json(investment: Investment) -> dict:
    return {
        "id": investment.id,
        "name": investment.name,
        "type": investment.type.value,
        "symbol": investment.symbol,
        "quantity_micros": investment.quantity_micros,
        "purchase_price_cents": investment.purchase_price_cents,
        "current_price_cents": investment.current_price_cents,
        "cost_cents": investment.cost_cents,
        "current_value_cents": investment.current_value_cents,
        "purchase_date": investment.purchase_date.isoformat(),
        "account_id": investment.account_id,
        "notes": investment.notes,
        "interest_rate_bps": investment.interest_rate_bps,
        "maturity_date": (
            investment.maturity_date.isoformat() if investment.maturity_date else None
        ),
    }


def target_json(target: InvestmentTarget) -> dict:
    return {
        "id": target.id,
        "investment_type": target.investment_type.value,
        "target_amount_cents": target.target_amount_cents,
        "target_completion_date": (
            target.target_completion_date.isoformat()
            if target.target_completion_date
            else None
        ),
        "nickname": target.nickname,
    }


def debt_json(debt: Debt, service: DebtService) -> dict:
    return {
        "id": debt.id,
        "borrower_name": debt.borrower_name,
        "borrower_contact": debt.borrower_contact,
        "borrower_email": debt.borrower_email,
        "amount_cents": debt.amount_cents,
        "interest_rate_bps": debt.interest_rate_bps,
        "lent_date": debt.lent_date.isoformat(),
        "due_date": debt.due_date.isoformat() if debt.due_date else None,
        "status": debt.status.value,
        "purpose": debt.purpose,
        "notes": debt.notes,
        "account_id": debt.account_id,
        "repayments": [
            {
                "id": repayment.id,
                "amount_cents": repayment.amount_cents,
                "repayment_date": repayment.repayment_date.isoformat(),
                "notes": repayment.notes,
                "account_id": repayment.account_id,
            }
            for repayment in debt.repayments
        ],
        "summary": service.summary(debt),
    }


def note_json(note: Note) -> dict:
    return {
        "id": note.id,
        "title": note.title,
        "content": note.content,
        "color": note.color,
        "tags": note.tags,
        "reminder_at": note.reminder_at.isoformat() if note.reminder_at else None,
        "is_pinned": note.is_pinned,
        "is_archived": note.is_archived,
        "related_expense_id": note.related_expense_id,
        "related_income_id": note.related_income_id,
        "related_investment_id": note.related_investment_id,
        "related_debt_id": note.related_debt_id,
        "related_account_id": note.related_account_id,
        "created_at": note.created_at.isoformat(),
        "updated_at": note.updated_at.isoformat(),
    }


def budget_json(target: BudgetTarget) -> dict:
    return {
        "id": target.id,
        "name": target.name,
        "category_type": target.category_type.value,
        "target_amount_cents": target.target_amount_cents,
        "current_amount_cents": target.current_amount_cents,
        "period": target.period.value,
        "start_date": target.start_date.isoformat(),
        "end_date": target.end_date.isoformat(),
        "is_active": target.is_active,
    }


def subscriber_json(subscriber: Subscriber) -> dict:
    return {
        "id": subscriber.id,
        "email": subscriber.email,
        "name": subscriber.name,
        "phone": subscriber.phone,
        "status": subscriber.status.value,
        "newsletter": subscriber.newsletter,
        "marketing": subscriber.marketing,
        "product_updates": subscriber.product_updates,
        "weekly_digest": subscriber.weekly_digest,
        "source": subscriber.source,
        "tags": subscriber.tags,
        "subscribed_at": subscriber.subscribed_at.isoformat(),
        "unsubscribed_at": (
            subscriber.unsubscribed_at.isoformat() if subscriber.unsubscribed_at else None
        ),
    }


@app.post("/api/users", status_code=201)
def api_create_user(data: UserIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return user_json(user)


@app.get("/api/me")
def api_me(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return user_json(UserService(db).get(user_id))


@app.put("/api/me/currency")
def api_set_currency(
    currency: str = Form(...),
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        user = UserService(db).set_currency(user_id, currency)
    except ValueError as exc:
        raise http_error(exc) from exc
    return user_json(user)


@app.get("/api/csrf-token")
def api_csrf_token(user_id: int = Depends(get_current_user_id)):
    return {"csrf_token": generate_csrf_token(user_id)}


# Categories and tags


@app.get("/api/categories")
def api_categories(
    type: Optional[TransactionType] = None,
    include_archived: bool = False,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    categories = CategoryService(db, user_id).list_all(type, include_archived)
    return [category_json(category) for category in categories]


@app.get("/api/categories/budget-status")
def api_categories_budget_status(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    categories = CategoryService(db, user_id).list_with_budget_status()
    return [category_json(category) for category in categories]


@app.put("/api/categories/by-name/{name}/budget-inclusion")
def api_set_budget_inclusion(
    name: str,
    data: BudgetInclusionIn,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        updated = CategoryService(db, user_id).set_budget_inclusion(name, data.included)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"updated": updated}


@app.post("/api/categories", status_code=201)
def api_create_category(
    data: CategoryIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        category = CategoryService(db, user_id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_json(category)


@app.patch("/api/categories/{category_id}")
def api_update_category(
    category_id: int,
    data: CategoryUpdate,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).update(category_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_json(category)


@app.post("/api/categories/{category_id}/archive", status_code=204)
def api_archive_category(
    category_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        CategoryService(db, user_id).archive(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/categories/{category_id}/restore", status_code=204)
def api_restore_category(
    category_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        CategoryService(db, user_id).restore(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.delete("/api/categories/{category_id}", status_code=204)
def api_delete_category(
    category_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/tags")
def api_tags(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return [{"id": tag.id, "name": tag.name} for tag in TagService(db, user_id).list_all()]


@app.delete("/api/tags/{tag_id}", status_code=204)
def api_delete_tag(
    tag_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        TagService(db, user_id).delete(tag_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Accounts


@app.get("/api/accounts")
def api_accounts(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return [account_json(account) for account in AccountService(db, user_id).list_all()]


@app.get("/api/accounts/summary")
def api_accounts_summary(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    service = AccountService(db, user_id)
    return {
        "total_balance_cents": service.total_balance(),
        "withheld_by_bank": service.withheld_by_bank(),
    }


@app.get("/api/accounts/verify")
def api_accounts_verify(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return {"drifted": AccountService(db, user_id).verify_balances()}


@app.get("/api/accounts/transfers")
def api_transfers(
    limit: int = 50,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    limit = min(max(limit, 1), 200)
    return [transfer_json(t) for t in AccountService(db, user_id).transfers(limit)]


@app.post("/api/accounts/transfers", status_code=201)
def api_transfer(
    data: TransferIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        transfer = AccountService(db, user_id).transfer(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transfer_json(transfer)


@app.post("/api/accounts/bulk-delete")
def api_bulk_delete_accounts(
    data: BulkIdsIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        deleted = AccountService(db, user_id).bulk_delete(data.ids)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"deleted": deleted}


@app.post("/api/accounts", status_code=201)
def api_create_account(
    data: AccountIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        account = AccountService(db, user_id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_json(account)


@app.get("/api/accounts/{account_id}")
def api_account(
    account_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, user_id).get(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_json(account)


@app.patch("/api/accounts/{account_id}")
def api_update_account(
    account_id: int,
    data: AccountUpdate,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, user_id).update(account_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_json(account)


@app.delete("/api/accounts/{account_id}", status_code=204)
def api_delete_account(
    account_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        AccountService(db, user_id).delete(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Incomes and expenses


@app.get("/api/transactions")
def api_transactions(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request) if request.query_params.get("period") else None
    filters = filters_from_request(request, period)
    try:
        page = max(int(request.query_params.get("page", "1")), 1)
        limit = min(max(int(request.query_params.get("limit", "50")), 1), 100)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    offset = (page - 1) * limit
    items = TransactionService(db, user_id).list(filters, limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    return {
        "items": [transaction_json(txn) for txn in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.get("/api/transactions/recent")
def api_recent_transactions(
    limit: int = 10,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    limit = min(max(limit, 1), 50)
    txns = MetricsService(db, user_id).recent_transactions(limit)
    return [transaction_json(txn) for txn in txns]


@app.get("/api/transactions/by-category/{category_id}")
def api_transactions_by_category(
    category_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txns = TransactionService(db, user_id).by_category(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [transaction_json(txn) for txn in txns]


@app.post("/api/transactions/bulk-delete")
def api_bulk_delete_transactions(
    data: BulkIdsIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        deleted = TransactionService(db, user_id).bulk_delete(data.ids)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"deleted": deleted}


@app.post("/api/transactions", status_code=201)
def api_create_transaction(
    data: TransactionIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db, user_id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_json(txn)


@app.get("/api/transactions/{transaction_id}")
def api_transaction(
    transaction_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_json(txn)


@app.patch("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_json(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def api_delete_transaction(
    transaction_id: int,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Investments


@app.get("/api/investments")
def api_investments(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return [investment_json(inv) for inv in InvestmentService(db, user_id).list_all()]


@app.get("/api/investments/summary")
def api_portfolio_summary(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return InvestmentService(db, user_id).portfolio_summary()


@app.post("/api/investments", status_code=201)
def api_create_investment(
    data: InvestmentIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        investment = InvestmentService(db, user_id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return investment_json(investment)


@app.get("/api/investments/{investment_id}")
def api_investment(
    investment_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        investment = InvestmentService(db, user_id).get(investment_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return investment_json(investment)


@app.patch("/api/investments/{investment_id}")
def api_update_investment(
    investment_id: int,
    data: InvestmentUpdate,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        investment = InvestmentService(db, user_id).update(investment_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return investment_json(investment)


@app.delete("/api/investments/{investment_id}", status_code=204)
def api_delete_investment(
    investment_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        InvestmentService(db, user_id).delete(investment_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/investment-targets")
def api_investment_targets(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return [target_json(t) for t in InvestmentTargetService(db, user_id).list_targets()]


@app.get("/api/investment-targets/progress")
def api_investment_target_progress(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return InvestmentTargetService(db, user_id).progress()


@app.post("/api/investment-targets", status_code=201)
def api_create_investment_target(
    data: InvestmentTargetIn,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        target = InvestmentTargetService(db, user_id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return target_json(target)


@app.patch("/api/investment-targets/{target_id}")
def api_update_investment_target(
    target_id: int,
    data: InvestmentTargetUpdate,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        target = InvestmentTargetService(db, user_id).update(target_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return target_json(target)


@app.delete("/api/investment-targets/{target_id}", status_code=204)
def api_delete_investment_target(
    target_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        InvestmentTargetService(db, user_id).delete(target_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Debts


@app.get("/api/debts")
def api_debts(
    status: Optional[DebtStatus] = None,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    service = DebtService(db, user_id)
    return [debt_json(debt, service) for debt in service.list_all(status)]


@app.post("/api/debts/mark-overdue")
def api_mark_overdue(user_id: int = Depends(require_csrf), db: Session = Depends(get_db)):
    return {"marked": DebtService(db, user_id).mark_overdue()}


@app.post("/api/debts/bulk-delete")
def api_bulk_delete_debts(
    data: BulkIdsIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        deleted = DebtService(db, user_id).bulk_delete(data.ids)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"deleted": deleted}


@app.post("/api/debts", status_code=201)
def api_create_debt(
    data: DebtIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    service = DebtService(db, user_id)
    try:
        debt = service.create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return debt_json(debt, service)


@app.get("/api/debts/{debt_id}")
def api_debt(
    debt_id: int, user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    service = DebtService(db, user_id)
    try:
        debt = service.get(debt_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return debt_json(debt, service)


@app.patch("/api/debts/{debt_id}")
def api_update_debt(
    debt_id: int,
    data: DebtUpdate,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    service = DebtService(db, user_id)
    try:
        debt = service.update(debt_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return debt_json(debt, service)


@app.delete("/api/debts/{debt_id}", status_code=204)
def api_delete_debt(
    debt_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        DebtService(db, user_id).delete(debt_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/debts/{debt_id}/repayments", status_code=201)
def api_add_repayment(
    debt_id: int,
    data: RepaymentIn,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    service = DebtService(db, user_id)
    try:
        repayment = service.add_repayment(debt_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return debt_json(repayment.debt, service)


@app.delete("/api/debts/{debt_id}/repayments/{repayment_id}")
def api_delete_repayment(
    debt_id: int,
    repayment_id: int,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    service = DebtService(db, user_id)
    try:
        debt = service.delete_repayment(debt_id, repayment_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return debt_json(debt, service)


# Notes


@app.get("/api/notes")
def api_notes(
    archived: bool = False,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    service = NoteService(db, user_id)
    notes = service.list_archived() if archived else service.list_active()
    return [note_json(note) for note in notes]


@app.post("/api/notes", status_code=201)
def api_create_note(
    data: NoteIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        note = NoteService(db, user_id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return note_json(note)


@app.patch("/api/notes/{note_id}")
def api_update_note(
    note_id: int,
    data: NoteUpdate,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        note = NoteService(db, user_id).update(note_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return note_json(note)


@app.post("/api/notes/{note_id}/pin")
def api_toggle_pin(
    note_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        note = NoteService(db, user_id).toggle_pin(note_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return note_json(note)


@app.post("/api/notes/{note_id}/archive")
def api_toggle_archive(
    note_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        note = NoteService(db, user_id).toggle_archive(note_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return note_json(note)


@app.delete("/api/notes/{note_id}", status_code=204)
def api_delete_note(
    note_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        NoteService(db, user_id).delete(note_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Budget targets


@app.get("/api/budget-targets")
def api_budget_targets(
    period: Optional[BudgetPeriod] = None,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return [budget_json(t) for t in BudgetTargetService(db, user_id).list(period)]


@app.get("/api/budget-targets/comparison")
def api_budget_comparison(
    period: Optional[BudgetPeriod] = None,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return BudgetTargetService(db, user_id).comparison(period)


@app.put("/api/budget-targets/by-category")
def api_upsert_budget_target(
    data: BudgetUpsertIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        target = BudgetTargetService(db, user_id).upsert_for_category(
            data.category_name, data.target_amount_cents, data.period
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_json(target)


@app.post("/api/budget-targets", status_code=201)
def api_create_budget_target(
    data: BudgetTargetIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        target = BudgetTargetService(db, user_id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_json(target)


@app.delete("/api/budget-targets")
def api_delete_all_budget_targets(
    user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    return {"deleted": BudgetTargetService(db, user_id).delete_all()}


@app.patch("/api/budget-targets/{target_id}")
def api_update_budget_target(
    target_id: int,
    data: BudgetTargetUpdate,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        target = BudgetTargetService(db, user_id).update(target_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_json(target)


@app.delete("/api/budget-targets/{target_id}", status_code=204)
def api_delete_budget_target(
    target_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        BudgetTargetService(db, user_id).delete(target_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Subscribers


@app.get("/api/subscribers")
def api_subscribers(
    status: Optional[SubscriberStatus] = None,
    _user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return [subscriber_json(s) for s in SubscriberService(db).list_all(status)]


@app.get("/api/subscribers/stats")
def api_subscriber_stats(
    _user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    return SubscriberService(db).stats()


@app.post("/api/subscribers/bulk-unsubscribe")
def api_bulk_unsubscribe(
    data: BulkIdsIn, _user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    return {"unsubscribed": SubscriberService(db).bulk_unsubscribe(data.ids)}


@app.post("/api/subscribers", status_code=201)
def api_add_subscriber(
    data: SubscriberIn, _user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        subscriber = SubscriberService(db).add(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return subscriber_json(subscriber)


@app.get("/api/subscribers/{subscriber_id}")
def api_subscriber(
    subscriber_id: int,
    _user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        subscriber = SubscriberService(db).get(subscriber_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return subscriber_json(subscriber)


@app.patch("/api/subscribers/{subscriber_id}")
def api_update_subscriber(
    subscriber_id: int,
    data: SubscriberUpdate,
    _user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        subscriber = SubscriberService(db).update(subscriber_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return subscriber_json(subscriber)


@app.delete("/api/subscribers/{subscriber_id}", status_code=204)
def api_delete_subscriber(
    subscriber_id: int,
    _user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    try:
        SubscriberService(db).delete(subscriber_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Dashboard


@app.get("/api/kpis")
def api_kpis(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    return MetricsService(db, user_id).kpis(period)


@app.get("/api/category-breakdown")
def api_category_breakdown(
    request: Request,
    type: TransactionType = TransactionType.expense,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    return MetricsService(db, user_id).category_breakdown(period, type)


@app.get("/api/monthly-series")
def api_monthly_series(
    months: int = 12,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    months = min(max(months, 1), 60)
    return MetricsService(db, user_id).monthly_series(months)


@app.get("/api/calendar")
def api_calendar(
    start: date,
    end: date,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return CalendarService(db, user_id).events(start, end)
    except ValueError as exc:
        raise http_error(exc) from exc


# Bulk import


@app.post("/api/import/corrected-row")
def api_import_corrected_row(
    data: CorrectedRowIn, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)
):
    try:
        result = ImportService(db, user_id).import_corrected_row(
            data.type, data.row, data.default_account_id
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return result.as_dict()


@app.post("/api/import/{kind}")
async def api_import(
    kind: str,
    file: UploadFile = File(...),
    default_account_id: Optional[int] = Form(default=None),
    id_mapping: Optional[str] = Form(default=None),
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    if kind not in IMPORT_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown import type '{kind}'")
    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(raw) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="CSV file too large (max 5MB)")
    try:
        content = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8") from exc

    service = ImportService(db, user_id)
    try:
        if kind == "incomes":
            result = service.import_transactions(
                content, TransactionType.income, default_account_id
            )
        elif kind == "expenses":
            result = service.import_transactions(
                content, TransactionType.expense, default_account_id
            )
        elif kind == "notes":
            result = service.import_notes(content)
        elif kind == "investments":
            result = service.import_investments(content)
        elif kind == "budget-targets":
            result = service.import_budget_targets(content)
        elif kind == "debts":
            result = service.import_debts(content)
        elif kind == "repayments":
            mapping = json.loads(id_mapping) if id_mapping else None
            if mapping is not None and not isinstance(mapping, dict):
                raise ValueError("id_mapping must be a JSON object")
            result = service.import_repayments(content, mapping)
        elif kind == "categories":
            result = service.import_categories(content)
        elif kind == "investment-targets":
            result = service.import_investment_targets(content)
        else:
            result = service.import_accounts(content)
    except ValueError as exc:
        raise http_error(exc) from exc
    logger.info(
        f"import_request: kind={kind} user_id={user_id} "
        f"imported={result.imported_count} errors={len(result.errors)}"
    )
    return result.as_dict()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
