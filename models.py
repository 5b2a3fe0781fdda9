from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def new_id() -> str:
    return str(uuid4())


class BucketType(str, Enum):
    fixed = "FIXED"
    daily = "DAILY"
    goal = "GOAL"


class PaymentSource(str, Enum):
    income = "INCOME"
    balance = "BALANCE"


class TransactionType(str, Enum):
    expense = "EXPENSE"
    transfer = "TRANSFER"
    income = "INCOME"


class TransactionSource(str, Enum):
    manual = "manual"
    imported = "import"


class RuleMatchType(str, Enum):
    contains = "contains"
    exact = "exact"
    starts_with = "starts_with"


class RuleSign(str, Enum):
    positive = "positive"
    negative = "negative"


class MatchType(str, Enum):
    rule = "rule"
    history = "history"
    ai = "ai"


class DeleteScope(str, Enum):
    this_month = "THIS_MONTH"
    this_and_future = "THIS_AND_FUTURE"
    all = "ALL"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    avatar: Mapped[Optional[str]] = mapped_column(String(200))
    income_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(50))
    start_balances: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    buckets: Mapped[list["Bucket"]] = relationship("Bucket", back_populates="account")


class Bucket(Base, TimestampMixin):
    __tablename__ = "buckets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    account_id: Mapped[Optional[str]] = mapped_column(ForeignKey("accounts.id"))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[BucketType] = mapped_column(SAEnum(BucketType), nullable=False)
    is_savings: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_source: Mapped[Optional[PaymentSource]] = mapped_column(
        SAEnum(PaymentSource)
    )
    archived_date: Mapped[Optional[str]] = mapped_column(String(7))
    linked_goal_id: Mapped[Optional[str]] = mapped_column(String(36))
    budget_group_id: Mapped[Optional[str]] = mapped_column(String(36))
    target_amount: Mapped[Optional[float]] = mapped_column(Float)
    target_date: Mapped[Optional[str]] = mapped_column(String(7))
    start_saving_date: Mapped[Optional[str]] = mapped_column(String(7))
    monthly_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    account: Mapped[Optional["Account"]] = relationship(
        "Account", back_populates="buckets"
    )


class BudgetGroup(Base, TimestampMixin):
    __tablename__ = "budget_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(50))
    default_account_id: Mapped[Optional[str]] = mapped_column(String(36))
    is_catch_all: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    monthly_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


class MainCategory(Base, TimestampMixin):
    __tablename__ = "main_categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    sub_categories: Mapped[list["SubCategory"]] = relationship(
        "SubCategory", back_populates="main_category", cascade="all, delete-orphan"
    )


class SubCategory(Base, TimestampMixin):
    __tablename__ = "sub_categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    main_category_id: Mapped[str] = mapped_column(
        ForeignKey("main_categories.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    budget_group_id: Mapped[Optional[str]] = mapped_column(String(36))
    account_id: Mapped[Optional[str]] = mapped_column(String(36))
    is_savings: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    monthly_budget: Mapped[Optional[float]] = mapped_column(Float)

    main_category: Mapped["MainCategory"] = relationship(
        "MainCategory", back_populates="sub_categories"
    )


class BudgetTemplate(Base, TimestampMixin):
    __tablename__ = "budget_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    bucket_values: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    group_limits: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    sub_category_budgets: Mapped[dict] = mapped_column(
        JSON, default=dict, nullable=False
    )


class MonthConfig(Base, TimestampMixin):
    __tablename__ = "month_configs"

    month_key: Mapped[str] = mapped_column(String(7), primary_key=True)
    template_id: Mapped[Optional[str]] = mapped_column(String(36))
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    bucket_overrides: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    group_overrides: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    sub_category_overrides: Mapped[dict] = mapped_column(
        JSON, default=dict, nullable=False
    )


class _TransactionColumns(TimestampMixin):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(String(36), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    type: Mapped[Optional[TransactionType]] = mapped_column(SAEnum(TransactionType))
    bucket_id: Mapped[Optional[str]] = mapped_column(String(36))
    category_main_id: Mapped[Optional[str]] = mapped_column(String(36))
    category_sub_id: Mapped[Optional[str]] = mapped_column(String(36))
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    source: Mapped[TransactionSource] = mapped_column(
        SAEnum(TransactionSource, values_callable=lambda cls: [m.value for m in cls]),
        default=TransactionSource.manual,
        nullable=False,
    )
    linked_transaction_id: Mapped[Optional[str]] = mapped_column(String(36))
    linked_expense_id: Mapped[Optional[str]] = mapped_column(String(36))
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Transaction(Base, _TransactionColumns):
    __tablename__ = "transactions"

    __table_args__ = (
        Index("ix_transactions_date", "date"),
        Index("ix_transactions_account_description", "account_id", "description"),
    )


class StagedTransaction(Base, _TransactionColumns):
    __tablename__ = "staged_transactions"

    match_type: Mapped[Optional[MatchType]] = mapped_column(SAEnum(MatchType))
    is_manually_approved: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    __table_args__ = (Index("ix_staged_transactions_date", "date"),)


class ImportRule(Base, TimestampMixin):
    __tablename__ = "import_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    keyword: Mapped[str] = mapped_column(String(200), nullable=False)
    match_type: Mapped[RuleMatchType] = mapped_column(
        SAEnum(RuleMatchType), default=RuleMatchType.contains, nullable=False
    )
    sign: Mapped[Optional[RuleSign]] = mapped_column(SAEnum(RuleSign))
    account_id: Mapped[Optional[str]] = mapped_column(String(36))
    target_type: Mapped[Optional[TransactionType]] = mapped_column(
        SAEnum(TransactionType)
    )
    target_bucket_id: Mapped[Optional[str]] = mapped_column(String(36))
    target_category_main_id: Mapped[Optional[str]] = mapped_column(String(36))
    target_category_sub_id: Mapped[Optional[str]] = mapped_column(String(36))

    __table_args__ = (Index("ix_import_rules_position", "position", "created_at"),)


class AppSettings(Base, TimestampMixin):
    __tablename__ = "app_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payday: Mapped[int] = mapped_column(Integer, default=25, nullable=False)
    auto_approve_income: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    auto_approve_transfer: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    auto_approve_expense: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    __table_args__ = (
        CheckConstraint("payday >= 1 AND payday <= 31", name="ck_settings_payday"),
    )


class ImportStatus(str, Enum):
    success = "SUCCESS"
    error = "ERROR"


class ImportLog(Base):
    __tablename__ = "import_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_id: Mapped[Optional[str]] = mapped_column(String(36))
    transaction_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duplicate_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[ImportStatus] = mapped_column(SAEnum(ImportStatus), nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text)
