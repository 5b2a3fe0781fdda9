"""initial budget schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _transaction_columns():
    return [
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("account_id", sa.String(length=36), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column(
            "type",
            sa.Enum("expense", "transfer", "income", name="transactiontype"),
        ),
        sa.Column("bucket_id", sa.String(length=36)),
        sa.Column("category_main_id", sa.String(length=36)),
        sa.Column("category_sub_id", sa.String(length=36)),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column(
            "source",
            sa.Enum("manual", "import", name="transactionsource"),
            nullable=False,
            server_default="manual",
        ),
        sa.Column("linked_transaction_id", sa.String(length=36)),
        sa.Column("linked_expense_id", sa.String(length=36)),
        sa.Column("is_hidden", sa.Boolean(), nullable=False, server_default="0"),
        *_timestamps(),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("avatar", sa.String(length=200)),
        sa.Column("income_data", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("icon", sa.String(length=50)),
        sa.Column("start_balances", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "buckets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("account_id", sa.String(length=36), sa.ForeignKey("accounts.id")),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "type",
            sa.Enum("fixed", "daily", "goal", name="buckettype"),
            nullable=False,
        ),
        sa.Column("is_savings", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column(
            "payment_source", sa.Enum("income", "balance", name="paymentsource")
        ),
        sa.Column("archived_date", sa.String(length=7)),
        sa.Column("linked_goal_id", sa.String(length=36)),
        sa.Column("budget_group_id", sa.String(length=36)),
        sa.Column("target_amount", sa.Float()),
        sa.Column("target_date", sa.String(length=7)),
        sa.Column("start_saving_date", sa.String(length=7)),
        sa.Column("monthly_data", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "budget_groups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("icon", sa.String(length=50)),
        sa.Column("default_account_id", sa.String(length=36)),
        sa.Column("is_catch_all", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("monthly_data", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "main_categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "sub_categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "main_category_id",
            sa.String(length=36),
            sa.ForeignKey("main_categories.id"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("budget_group_id", sa.String(length=36)),
        sa.Column("account_id", sa.String(length=36)),
        sa.Column("is_savings", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("monthly_budget", sa.Float()),
        *_timestamps(),
    )

    op.create_table(
        "budget_templates",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("bucket_values", sa.JSON(), nullable=False),
        sa.Column("group_limits", sa.JSON(), nullable=False),
        sa.Column("sub_category_budgets", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "month_configs",
        sa.Column("month_key", sa.String(length=7), primary_key=True),
        sa.Column("template_id", sa.String(length=36)),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("bucket_overrides", sa.JSON(), nullable=False),
        sa.Column("group_overrides", sa.JSON(), nullable=False),
        sa.Column("sub_category_overrides", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table("transactions", *_transaction_columns())
    op.create_index("ix_transactions_date", "transactions", ["date"])
    op.create_index(
        "ix_transactions_account_description",
        "transactions",
        ["account_id", "description"],
    )

    op.create_table(
        "staged_transactions",
        *_transaction_columns(),
        sa.Column("match_type", sa.Enum("rule", "history", "ai", name="matchtype")),
        sa.Column(
            "is_manually_approved", sa.Boolean(), nullable=False, server_default="0"
        ),
    )
    op.create_index("ix_staged_transactions_date", "staged_transactions", ["date"])

    op.create_table(
        "import_rules",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("keyword", sa.String(length=200), nullable=False),
        sa.Column(
            "match_type",
            sa.Enum("contains", "exact", "starts_with", name="rulematchtype"),
            nullable=False,
        ),
        sa.Column("sign", sa.Enum("positive", "negative", name="rulesign")),
        sa.Column("account_id", sa.String(length=36)),
        sa.Column(
            "target_type",
            sa.Enum("expense", "transfer", "income", name="transactiontype"),
        ),
        sa.Column("target_bucket_id", sa.String(length=36)),
        sa.Column("target_category_main_id", sa.String(length=36)),
        sa.Column("target_category_sub_id", sa.String(length=36)),
        *_timestamps(),
    )
    op.create_index(
        "ix_import_rules_position", "import_rules", ["position", "created_at"]
    )

    op.create_table(
        "app_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payday", sa.Integer(), nullable=False, server_default="25"),
        sa.Column(
            "auto_approve_income", sa.Boolean(), nullable=False, server_default="0"
        ),
        sa.Column(
            "auto_approve_transfer", sa.Boolean(), nullable=False, server_default="0"
        ),
        sa.Column(
            "auto_approve_expense", sa.Boolean(), nullable=False, server_default="1"
        ),
        *_timestamps(),
        sa.CheckConstraint("payday >= 1 AND payday <= 31", name="ck_settings_payday"),
    )

    op.create_table(
        "import_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("account_id", sa.String(length=36)),
        sa.Column("transaction_count", sa.Integer(), nullable=False),
        sa.Column("duplicate_count", sa.Integer(), nullable=False),
        sa.Column(
            "status", sa.Enum("success", "error", name="importstatus"), nullable=False
        ),
        sa.Column("error", sa.Text()),
    )


def downgrade():
    op.drop_table("import_logs")
    op.drop_table("app_settings")
    op.drop_index("ix_import_rules_position", table_name="import_rules")
    op.drop_table("import_rules")
    op.drop_index("ix_staged_transactions_date", table_name="staged_transactions")
    op.drop_table("staged_transactions")
    op.drop_index("ix_transactions_account_description", table_name="transactions")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("month_configs")
    op.drop_table("budget_templates")
    op.drop_table("sub_categories")
    op.drop_table("main_categories")
    op.drop_table("budget_groups")
    op.drop_table("buckets")
    op.drop_table("accounts")
    op.drop_table("users")
