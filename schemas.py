import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models import (
    BucketType,
    DeleteScope,
    MatchType,
    PaymentSource,
    RuleMatchType,
    ImportStatus,
    RuleSign,
    TransactionSource,
    TransactionType,
)
from periods import is_valid_month_key


class CamelModel(BaseModel):
    """Domain model; reads ORM rows and snake_case dicts, serializes camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


def _check_month_key(value: str) -> str:
    if not is_valid_month_key(value):
        raise ValueError(f"Invalid month key: {value}")
    return value


def _check_optional_month_key(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    return _check_month_key(value)


class BucketMonthData(CamelModel):
    amount: float = 0
    daily_amount: float = 0
    active_days: list[int] = Field(default_factory=list)
    is_explicitly_deleted: bool = False

    @field_validator("active_days")
    @classmethod
    def _unique_weekdays(cls, value: list[int]) -> list[int]:
        days: list[int] = []
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError("Weekday must be between 0 (Sunday) and 6 (Saturday)")
            if day not in days:
                days.append(day)
        return days


class Bucket(CamelModel):
    id: str
    account_id: Optional[str] = None
    name: str
    type: BucketType
    is_savings: bool = False
    payment_source: Optional[PaymentSource] = None
    archived_date: Optional[str] = None
    linked_goal_id: Optional[str] = None
    budget_group_id: Optional[str] = None
    monthly_data: dict[str, BucketMonthData] = Field(default_factory=dict)
    target_amount: Optional[float] = None
    target_date: Optional[str] = None
    start_saving_date: Optional[str] = None


class BudgetGroupMonthData(CamelModel):
    limit: float = 0
    is_explicitly_deleted: bool = False


class BudgetGroup(CamelModel):
    id: str
    name: str
    icon: Optional[str] = None
    default_account_id: Optional[str] = None
    is_catch_all: bool = False
    monthly_data: dict[str, BudgetGroupMonthData] = Field(default_factory=dict)


class MainCategory(CamelModel):
    id: str
    name: str
    description: Optional[str] = None


class SubCategory(CamelModel):
    id: str
    main_category_id: str
    name: str
    description: Optional[str] = None
    budget_group_id: Optional[str] = None
    account_id: Optional[str] = None
    is_savings: bool = False
    monthly_budget: Optional[float] = None


class BudgetTemplate(CamelModel):
    id: str
    name: str
    is_default: bool = False
    bucket_values: dict[str, BucketMonthData] = Field(default_factory=dict)
    group_limits: dict[str, float] = Field(default_factory=dict)
    sub_category_budgets: dict[str, float] = Field(default_factory=dict)


class MonthConfig(CamelModel):
    month_key: str
    template_id: Optional[str] = None
    is_locked: bool = False
    bucket_overrides: dict[str, BucketMonthData] = Field(default_factory=dict)
    group_overrides: dict[str, float] = Field(default_factory=dict)
    sub_category_overrides: dict[str, float] = Field(default_factory=dict)


class Transaction(CamelModel):
    id: str
    account_id: str
    date: dt.date
    amount: float
    description: str = ""
    type: Optional[TransactionType] = None
    bucket_id: Optional[str] = None
    category_main_id: Optional[str] = None
    category_sub_id: Optional[str] = None
    is_verified: bool = False
    source: TransactionSource = TransactionSource.manual
    linked_transaction_id: Optional[str] = None
    linked_expense_id: Optional[str] = None
    is_hidden: bool = False


class StagedTransaction(Transaction):
    match_type: Optional[MatchType] = None
    is_manually_approved: bool = False


class ImportRule(CamelModel):
    id: str
    keyword: str
    match_type: RuleMatchType = RuleMatchType.contains
    sign: Optional[RuleSign] = None
    account_id: Optional[str] = None
    target_type: Optional[TransactionType] = None
    target_bucket_id: Optional[str] = None
    target_category_main_id: Optional[str] = None
    target_category_sub_id: Optional[str] = None


class AppSettings(CamelModel):
    payday: int = Field(25, ge=1, le=31)
    auto_approve_income: bool = False
    auto_approve_transfer: bool = False
    auto_approve_expense: bool = True


class IncomeMonthData(CamelModel):
    salary: float = 0
    child_benefit: float = 0
    insurance: float = 0
    vab_days: float = 0
    daily_deduction: float = 0


class User(CamelModel):
    id: str
    name: str
    avatar: Optional[str] = None
    income_data: dict[str, IncomeMonthData] = Field(default_factory=dict)


class Account(CamelModel):
    id: str
    name: str
    icon: Optional[str] = None
    start_balances: dict[str, float] = Field(default_factory=dict)


class ImportLog(CamelModel):
    id: int
    created_at: dt.datetime
    file_name: str
    account_id: Optional[str] = None
    transaction_count: int = 0
    duplicate_count: int = 0
    status: ImportStatus
    error: Optional[str] = None


class RawTransaction(BaseModel):
    """One normalized row produced by the bank file parser."""

    account_id: str
    date: dt.date
    amount: float
    description: str


class Snapshot(CamelModel):
    users: list[User] = Field(default_factory=list)
    accounts: list[Account] = Field(default_factory=list)
    buckets: list[Bucket] = Field(default_factory=list)
    settings: AppSettings = Field(default_factory=AppSettings)
    transactions: list[Transaction] = Field(default_factory=list)
    import_rules: list[ImportRule] = Field(default_factory=list)
    main_categories: list[MainCategory] = Field(default_factory=list)
    sub_categories: list[SubCategory] = Field(default_factory=list)
    budget_groups: list[BudgetGroup] = Field(default_factory=list)
    budget_templates: list[BudgetTemplate] = Field(default_factory=list)
    month_configs: list[MonthConfig] = Field(default_factory=list)


# --- API input models ---


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    avatar: Optional[str] = Field(None, max_length=200)


class IncomeIn(BaseModel):
    month_key: str
    salary: float = 0
    child_benefit: float = 0
    insurance: float = 0
    vab_days: float = Field(0, ge=0)
    daily_deduction: float = Field(0, ge=0)

    check_month = field_validator("month_key")(_check_month_key)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(None, max_length=50)


class StartBalanceIn(BaseModel):
    month_key: str
    balance: float

    check_month = field_validator("month_key")(_check_month_key)


class BucketIn(BaseModel):
    account_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=120)
    type: BucketType
    is_savings: bool = False
    payment_source: Optional[PaymentSource] = None
    budget_group_id: Optional[str] = None
    linked_goal_id: Optional[str] = None
    target_amount: Optional[float] = Field(None, ge=0)
    target_date: Optional[str] = None
    start_saving_date: Optional[str] = None

    check_months = field_validator("target_date", "start_saving_date")(
        _check_optional_month_key
    )


class BucketMonthIn(BaseModel):
    month_key: str
    amount: float = 0
    daily_amount: float = 0
    active_days: list[int] = Field(default_factory=list)

    check_month = field_validator("month_key")(_check_month_key)


class BudgetGroupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    icon: Optional[str] = Field(None, max_length=50)
    default_account_id: Optional[str] = None
    is_catch_all: bool = False


class GroupLimitIn(BaseModel):
    month_key: str
    limit: float = Field(..., ge=0)

    check_month = field_validator("month_key")(_check_month_key)


class MainCategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class SubCategoryIn(BaseModel):
    main_category_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    budget_group_id: Optional[str] = None
    account_id: Optional[str] = None
    is_savings: bool = False


class BudgetTemplateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    is_default: bool = False
    bucket_values: dict[str, BucketMonthData] = Field(default_factory=dict)
    group_limits: dict[str, float] = Field(default_factory=dict)
    sub_category_budgets: dict[str, float] = Field(default_factory=dict)


class MonthOverrideIn(BaseModel):
    """A single-month deviation from the active template. ``None`` clears it."""

    bucket: Optional[BucketMonthData] = None
    limit: Optional[float] = Field(None, ge=0)
    budget: Optional[float] = Field(None, ge=0)


class TransactionIn(BaseModel):
    account_id: str
    date: dt.date
    amount: float
    description: str = Field("", max_length=500)
    type: TransactionType = TransactionType.expense
    bucket_id: Optional[str] = None
    category_main_id: Optional[str] = None
    category_sub_id: Optional[str] = None
    linked_expense_id: Optional[str] = None
    is_hidden: bool = False


class ClassificationIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    bucket_id: Optional[str] = None
    category_main_id: Optional[str] = None
    category_sub_id: Optional[str] = None
    is_hidden: Optional[bool] = None


class StagedEditIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field: str
    value: Any = None


class ImportRuleIn(BaseModel):
    keyword: str = Field(..., min_length=1, max_length=200)
    match_type: RuleMatchType = RuleMatchType.contains
    sign: Optional[RuleSign] = None
    account_id: Optional[str] = None
    target_type: Optional[TransactionType] = None
    target_bucket_id: Optional[str] = None
    target_category_main_id: Optional[str] = None
    target_category_sub_id: Optional[str] = None


class DeleteIn(BaseModel):
    month_key: str
    scope: DeleteScope

    check_month = field_validator("month_key")(_check_month_key)


class MonthKeyIn(BaseModel):
    month_key: str

    check_month = field_validator("month_key")(_check_month_key)


class MonthTemplateIn(BaseModel):
    template_id: Optional[str] = None


class MonthLockIn(BaseModel):
    is_locked: bool


class TransferLinkIn(BaseModel):
    outgoing_id: str
    incoming_id: str


class BulkDeleteIn(BaseModel):
    ids: list[str] = Field(..., min_length=1)
