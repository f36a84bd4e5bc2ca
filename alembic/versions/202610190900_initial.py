"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("income", "expense", name="transactiontype")
INVESTMENT_TYPE = sa.Enum(
    "stocks",
    "crypto",
    "mutual_funds",
    "bonds",
    "real_estate",
    "gold",
    "fixed_deposit",
    "provident_funds",
    "safe_keepings",
    "other",
    name="investmenttype",
)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _owner():
    return sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120)),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#6366f1"),
        sa.Column("icon", sa.String(length=16)),
        sa.Column(
            "included_in_budget", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("archived_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("name", sa.String(length=50), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_tag_user_name"),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("holder_name", sa.String(length=120), nullable=False),
        sa.Column("account_number", sa.String(length=64)),
        sa.Column("bank_name", sa.String(length=120), nullable=False),
        sa.Column("branch_name", sa.String(length=120)),
        sa.Column("branch_code", sa.String(length=32)),
        sa.Column("account_type", sa.String(length=40)),
        sa.Column("swift", sa.String(length=16)),
        sa.Column("bank_email", sa.String(length=255)),
        sa.Column("nickname", sa.String(length=80)),
        sa.Column("notes", sa.Text()),
        sa.Column("opening_date", sa.Date(), nullable=False),
        sa.Column(
            "opening_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "account_number", name="uq_account_user_number"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("notes", sa.Text()),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "recurring_frequency",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="recurringfrequency"),
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "date"],
    )
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )
    op.create_index("ix_transactions_account", "transactions", ["account_id"])

    op.create_table(
        "transaction_tags",
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            primary_key=True,
        ),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
    )

    op.create_table(
        "investments",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", INVESTMENT_TYPE, nullable=False),
        sa.Column("symbol", sa.String(length=20)),
        sa.Column("quantity_micros", sa.Integer(), nullable=False),
        sa.Column("purchase_price_cents", sa.Integer(), nullable=False),
        sa.Column("current_price_cents", sa.Integer(), nullable=False),
        sa.Column("purchase_date", sa.Date(), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("interest_rate_bps", sa.Integer()),
        sa.Column("maturity_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("quantity_micros >= 0", name="ck_investments_quantity"),
        sa.CheckConstraint(
            "purchase_price_cents >= 0", name="ck_investments_purchase_price"
        ),
    )
    op.create_index("ix_investments_user_type", "investments", ["user_id", "type"])

    op.create_table(
        "investment_targets",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("investment_type", INVESTMENT_TYPE, nullable=False),
        sa.Column("target_amount_cents", sa.Integer(), nullable=False),
        sa.Column("target_completion_date", sa.Date()),
        sa.Column("nickname", sa.String(length=80)),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "investment_type", name="uq_investment_target"),
    )

    op.create_table(
        "debts",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("borrower_name", sa.String(length=120), nullable=False),
        sa.Column("borrower_contact", sa.String(length=64)),
        sa.Column("borrower_email", sa.String(length=255)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("interest_rate_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lent_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date()),
        sa.Column(
            "status",
            sa.Enum(
                "active",
                "partially_paid",
                "fully_paid",
                "overdue",
                "defaulted",
                name="debtstatus",
            ),
            nullable=False,
            server_default="active",
        ),
        sa.Column("purpose", sa.String(length=200)),
        sa.Column("notes", sa.Text()),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_debts_amount_positive"),
        sa.CheckConstraint("interest_rate_bps >= 0", name="ck_debts_rate_positive"),
    )
    op.create_index("ix_debts_user_status", "debts", ["user_id", "status"])

    op.create_table(
        "debt_repayments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "debt_id",
            sa.Integer(),
            sa.ForeignKey("debts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("repayment_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_repayments_amount_positive"),
    )

    op.create_table(
        "account_transfers",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column(
            "from_account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "to_account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transfers_amount_positive"),
        sa.CheckConstraint(
            "from_account_id != to_account_id", name="ck_transfers_distinct"
        ),
    )

    op.create_table(
        "notes",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#fbbf24"),
        sa.Column("tags_json", sa.Text()),
        sa.Column("reminder_at", sa.DateTime()),
        sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "related_expense_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "related_income_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "related_investment_id",
            sa.Integer(),
            sa.ForeignKey("investments.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "related_debt_id",
            sa.Integer(),
            sa.ForeignKey("debts.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "related_account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
    )
    op.create_index("ix_notes_user_archived", "notes", ["user_id", "is_archived"])

    op.create_table(
        "budget_targets",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("category_type", TRANSACTION_TYPE, nullable=False),
        sa.Column("target_amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "current_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "period",
            sa.Enum("weekly", "monthly", "quarterly", "yearly", name="budgetperiod"),
            nullable=False,
            server_default="monthly",
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "target_amount_cents >= 0", name="ck_budget_target_amount_positive"
        ),
    )
    op.create_index(
        "ix_budget_targets_user_active", "budget_targets", ["user_id", "is_active"]
    )

    op.create_table(
        "subscribers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120)),
        sa.Column("phone", sa.String(length=32)),
        sa.Column(
            "status",
            sa.Enum("active", "unsubscribed", "inactive", name="subscriberstatus"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("newsletter", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("marketing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "product_updates", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("weekly_digest", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("source", sa.String(length=40), nullable=False, server_default="manual"),
        sa.Column("tags_json", sa.Text()),
        sa.Column("subscribed_at", sa.DateTime(), nullable=False),
        sa.Column("unsubscribed_at", sa.DateTime()),
        *_timestamps(),
    )


def downgrade():
    op.drop_table("subscribers")
    op.drop_index("ix_budget_targets_user_active", table_name="budget_targets")
    op.drop_table("budget_targets")
    op.drop_index("ix_notes_user_archived", table_name="notes")
    op.drop_table("notes")
    op.drop_table("account_transfers")
    op.drop_table("debt_repayments")
    op.drop_index("ix_debts_user_status", table_name="debts")
    op.drop_table("debts")
    op.drop_table("investment_targets")
    op.drop_index("ix_investments_user_type", table_name="investments")
    op.drop_table("investments")
    op.drop_table("transaction_tags")
    op.drop_index("ix_transactions_account", table_name="transactions")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("accounts")
    op.drop_table("tags")
    op.drop_table("categories")
    op.drop_table("users")
