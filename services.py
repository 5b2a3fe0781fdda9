from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Sequence, Union
from zoneinfo import ZoneInfo

from pydantic.alias_generators import to_snake
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

import schemas
from ai_classifier import (
    ClassificationUniverse,
    Classifier,
    build_classifier,
    safe_suggest,
)
from backup import (
    BackupValidationError,
    BlobInfo,
    BlobStore,
    LocalBlobStore,
    backup_name,
    dump_snapshot,
    prune_backups,
    validate_snapshot,
)
from calculations import (
    INTERNAL_BUCKET_ID,
    UNALLOCATED_BUCKET_IDS,
    BudgetActuals,
    GroupProgress,
    aggregate_actuals,
    bucket_cost,
    budget_group_progress,
    calculate_daily_bucket_cost_so_far,
    calculate_saved_amount,
    sub_category_average,
    total_family_income,
    user_income,
)
from config import get_settings
from csv_utils import ImportParseError, export_transactions, parse_bank_file
from database import atomic, session_scope
from default_categories import seed_default_categories
from events import (
    BACKUP_RESTORED,
    STAGING_CHANGED,
    TRANSACTIONS_COMMITTED,
    event_bus,
    notify_changed,
)
from import_pipeline import (
    apply_ai_suggestions,
    apply_user_edit,
    approve,
    is_ready,
    needs_classification,
    partition_ready,
    run_import_pipeline,
    to_verified,
    unapprove,
)
from models import (
    Account,
    AppSettings,
    Bucket,
    BucketType,
    BudgetGroup,
    BudgetTemplate,
    DeleteScope,
    ImportLog,
    ImportRule,
    ImportStatus,
    MainCategory,
    MonthConfig,
    StagedTransaction,
    SubCategory,
    Transaction,
    TransactionSource,
    TransactionType,
    User,
)
from periods import (
    Period,
    add_months,
    budget_interval,
    current_month_key,
    is_valid_month_key,
)
from resolution import (
    EffectiveData,
    effective_sub_category_budget,
    is_bucket_active_in_month,
    resolve_bucket,
)
from schemas import (
    AccountIn,
    BucketIn,
    BucketMonthIn,
    BudgetGroupIn,
    BudgetTemplateIn,
    ClassificationIn,
    DeleteIn,
    GroupLimitIn,
    ImportRuleIn,
    IncomeIn,
    MainCategoryIn,
    MonthOverrideIn,
    StagedEditIn,
    StartBalanceIn,
    SubCategoryIn,
    TransactionIn,
    UserIn,
)
from subscriptions import SubscriptionCandidate, detect_subscriptions
from transfers import TransferPair, find_transfer_pairs, is_similar_pair

logger = logging.getLogger(__name__)


class MonthLockedError(ValueError):
    pass


def today_local() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def load_templates(session: Session) -> list[schemas.BudgetTemplate]:
    rows = session.scalars(
        select(BudgetTemplate).order_by(BudgetTemplate.created_at.asc())
    ).all()
    return [schemas.BudgetTemplate.model_validate(r) for r in rows]


def load_month_configs(session: Session) -> list[schemas.MonthConfig]:
    rows = session.scalars(select(MonthConfig).order_by(MonthConfig.month_key)).all()
    return [schemas.MonthConfig.model_validate(r) for r in rows]


def _month_config_row(session: Session, month_key: str) -> MonthConfig:
    config = session.get(MonthConfig, month_key)
    if config is None:
        config = MonthConfig(
            month_key=month_key,
            is_locked=False,
            bucket_overrides={},
            group_overrides={},
            sub_category_overrides={},
        )
        session.add(config)
    return config


def ensure_month_unlocked(session: Session, month_key: str) -> None:
    config = session.get(MonthConfig, month_key)
    if config is not None and config.is_locked:
        raise MonthLockedError(f"Month {month_key} is locked")


def _without_key(mapping: Optional[dict], key: str) -> dict:
    return {k: v for k, v in (mapping or {}).items() if k != key}


class SettingsService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_row(self) -> AppSettings:
        row = self.session.get(AppSettings, 1)
        if row is None:
            defaults = schemas.AppSettings()
            row = AppSettings(id=1, **defaults.model_dump())
            self.session.add(row)
            self.session.flush()
        return row

    def get(self) -> schemas.AppSettings:
        return schemas.AppSettings.model_validate(self.get_row())

    def update(self, data: schemas.AppSettings) -> schemas.AppSettings:
        row = self.get_row()
        row.payday = data.payday
        row.auto_approve_income = data.auto_approve_income
        row.auto_approve_transfer = data.auto_approve_transfer
        row.auto_approve_expense = data.auto_approve_expense
        self.session.commit()
        notify_changed("settings")
        return self.get()

    def current_month(self, today: Optional[date] = None) -> str:
        return current_month_key(today or today_local(), self.get_row().payday)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[User]:
        stmt = select(User).order_by(User.created_at.asc(), User.name.asc())
        return self.session.scalars(stmt).all()

    def get(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise ValueError("User not found")
        return user

    def create(self, data: UserIn) -> User:
        user = User(name=data.name.strip(), avatar=data.avatar, income_data={})
        self.session.add(user)
        self.session.commit()
        notify_changed("user", id=user.id)
        return user

    def update(self, user_id: str, data: UserIn) -> User:
        user = self.get(user_id)
        user.name = data.name.strip()
        user.avatar = data.avatar
        self.session.commit()
        notify_changed("user", id=user.id)
        return user

    def delete(self, user_id: str) -> None:
        user = self.get(user_id)
        self.session.delete(user)
        self.session.commit()
        notify_changed("user", id=user_id)

    def set_income(self, user_id: str, data: IncomeIn) -> User:
        user = self.get(user_id)
        entry = schemas.IncomeMonthData(**data.model_dump(exclude={"month_key"}))
        user.income_data = {
            **(user.income_data or {}),
            data.month_key: entry.model_dump(),
        }
        self.session.commit()
        notify_changed("user", id=user.id)
        return user


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Account]:
        stmt = select(Account).order_by(Account.created_at.asc(), Account.name.asc())
        return self.session.scalars(stmt).all()

    def get(self, account_id: str) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise ValueError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(name=data.name.strip(), icon=data.icon, start_balances={})
        self.session.add(account)
        self.session.commit()
        notify_changed("account", id=account.id)
        return account

    def update(self, account_id: str, data: AccountIn) -> Account:
        account = self.get(account_id)
        account.name = data.name.strip()
        account.icon = data.icon
        self.session.commit()
        notify_changed("account", id=account.id)
        return account

    def delete(self, account_id: str) -> None:
        account = self.get(account_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.account_id == account_id
            )
        )
        if in_use:
            raise ValueError("Account still has transactions")
        with atomic(self.session):
            for bucket in account.buckets:
                bucket.account_id = None
            for group in self.session.scalars(
                select(BudgetGroup).where(BudgetGroup.default_account_id == account_id)
            ).all():
                group.default_account_id = None
            for sub in self.session.scalars(
                select(SubCategory).where(SubCategory.account_id == account_id)
            ).all():
                sub.account_id = None
            self.session.delete(account)
        notify_changed("account", id=account_id)

    def set_start_balance(self, account_id: str, data: StartBalanceIn) -> Account:
        account = self.get(account_id)
        account.start_balances = {
            **(account.start_balances or {}),
            data.month_key: data.balance,
        }
        self.session.commit()
        notify_changed("account", id=account.id)
        return account


class BucketService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Bucket]:
        stmt = select(Bucket).order_by(Bucket.created_at.asc(), Bucket.name.asc())
        return self.session.scalars(stmt).all()

    def list_domain(self) -> list[schemas.Bucket]:
        return [schemas.Bucket.model_validate(b) for b in self.list_all()]

    def get(self, bucket_id: str) -> Bucket:
        bucket = self.session.get(Bucket, bucket_id)
        if not bucket:
            raise ValueError("Bucket not found")
        return bucket

    def _check_references(
        self, data: BucketIn, bucket_id: Optional[str] = None
    ) -> None:
        if data.account_id and not self.session.get(Account, data.account_id):
            raise ValueError("Account not found")
        if data.budget_group_id and not self.session.get(
            BudgetGroup, data.budget_group_id
        ):
            raise ValueError("Budget group not found")
        if data.linked_goal_id:
            goal = self.session.get(Bucket, data.linked_goal_id)
            if not goal or goal.type != BucketType.goal or goal.id == bucket_id:
                raise ValueError("Linked goal not found")
        if (
            data.type == BucketType.goal
            and data.start_saving_date
            and data.target_date
            and data.start_saving_date >= data.target_date
        ):
            raise ValueError("Goal target month must be after the start month")

    def _apply(self, bucket: Bucket, data: BucketIn) -> None:
        bucket.account_id = data.account_id
        bucket.name = data.name.strip()
        bucket.type = data.type
        bucket.is_savings = data.is_savings
        bucket.payment_source = data.payment_source
        bucket.budget_group_id = data.budget_group_id
        bucket.linked_goal_id = data.linked_goal_id
        is_goal = data.type == BucketType.goal
        bucket.target_amount = data.target_amount if is_goal else None
        bucket.target_date = data.target_date if is_goal else None
        bucket.start_saving_date = data.start_saving_date if is_goal else None

    def create(self, data: BucketIn) -> Bucket:
        self._check_references(data)
        bucket = Bucket(monthly_data={})
        self._apply(bucket, data)
        self.session.add(bucket)
        self.session.commit()
        notify_changed("bucket", id=bucket.id)
        return bucket

    def update(self, bucket_id: str, data: BucketIn) -> Bucket:
        bucket = self.get(bucket_id)
        self._check_references(data, bucket_id)
        self._apply(bucket, data)
        self.session.commit()
        notify_changed("bucket", id=bucket.id)
        return bucket

    def effective(self, bucket_id: str, month_key: str) -> EffectiveData:
        bucket = schemas.Bucket.model_validate(self.get(bucket_id))
        return resolve_bucket(
            bucket,
            month_key,
            load_templates(self.session),
            load_month_configs(self.session),
        )

    def set_month_data(self, bucket_id: str, data: BucketMonthIn) -> Bucket:
        bucket = self.get(bucket_id)
        ensure_month_unlocked(self.session, data.month_key)
        entry = schemas.BucketMonthData(
            amount=data.amount,
            daily_amount=data.daily_amount,
            active_days=data.active_days,
        )
        bucket.monthly_data = {
            **(bucket.monthly_data or {}),
            data.month_key: entry.model_dump(),
        }
        self.session.commit()
        notify_changed("bucket", id=bucket.id, month=data.month_key)
        return bucket

    def confirm_amount(self, bucket_id: str, month_key: str) -> Bucket:
        """Pin an inherited amount as the month's own data."""
        bucket = self.get(bucket_id)
        ensure_month_unlocked(self.session, month_key)
        effective = self.effective(bucket_id, month_key)
        if effective.is_inherited and effective.data is not None:
            entry = effective.data.model_copy(update={"is_explicitly_deleted": False})
            bucket.monthly_data = {
                **(bucket.monthly_data or {}),
                month_key: entry.model_dump(),
            }
            self.session.commit()
            notify_changed("bucket", id=bucket.id, month=month_key)
        return bucket

    def copy_from_next_month(self, month_key: str) -> int:
        """Fill months without own data from the following month."""
        ensure_month_unlocked(self.session, month_key)
        next_key = add_months(month_key, 1)
        changed = 0
        with atomic(self.session):
            for bucket in self.list_all():
                monthly = bucket.monthly_data or {}
                if month_key in monthly:
                    continue
                following = monthly.get(next_key)
                if following and not following.get("is_explicitly_deleted"):
                    bucket.monthly_data = {**monthly, month_key: dict(following)}
                    changed += 1
        if changed:
            notify_changed("bucket", month=month_key, count=changed)
        return changed

    def archive(self, bucket_id: str, month_key: str) -> Bucket:
        bucket = self.get(bucket_id)
        if bucket.type != BucketType.goal:
            raise ValueError("Only goal buckets can be archived")
        bucket.archived_date = month_key
        self.session.commit()
        notify_changed("bucket", id=bucket.id, archived=month_key)
        return bucket

    def delete(self, bucket_id: str, data: DeleteIn) -> None:
        """
        ALL removes the bucket. THIS_MONTH marks the month deleted and lets the
        bucket resume the month after. THIS_AND_FUTURE marks the month and every
        later recorded month deleted and puts an archive wall before the month.
        Templated buckets also get a deleted override in the month config,
        since templates take precedence over the bucket's own data.
        """
        bucket = self.get(bucket_id)
        if data.scope == DeleteScope.all:
            with atomic(self.session):
                self._purge_references(bucket.id)
                self.session.delete(bucket)
            notify_changed("bucket", id=bucket_id, deleted=data.scope.value)
            return

        month = data.month_key
        ensure_month_unlocked(self.session, month)
        effective = self.effective(bucket_id, month)
        current = effective.data or schemas.BucketMonthData()
        removed = current.model_copy(
            update={"amount": 0, "daily_amount": 0, "is_explicitly_deleted": True}
        ).model_dump()
        templated = bucket.type != BucketType.goal and not bucket.linked_goal_id

        monthly = dict(bucket.monthly_data or {})
        monthly[month] = removed
        with atomic(self.session):
            if data.scope == DeleteScope.this_month:
                next_key = add_months(month, 1)
                if next_key not in monthly:
                    monthly[next_key] = current.model_copy(
                        update={"is_explicitly_deleted": False}
                    ).model_dump()
                if templated:
                    config = _month_config_row(self.session, month)
                    config.bucket_overrides = {
                        **(config.bucket_overrides or {}),
                        bucket.id: removed,
                    }
            else:
                for key, entry in list(monthly.items()):
                    if key > month:
                        monthly[key] = {
                            **entry,
                            "amount": 0,
                            "daily_amount": 0,
                            "is_explicitly_deleted": True,
                        }
                if not bucket.linked_goal_id:
                    wall = add_months(month, -1)
                    if not bucket.archived_date or bucket.archived_date > wall:
                        bucket.archived_date = wall
            bucket.monthly_data = monthly
        notify_changed("bucket", id=bucket_id, deleted=data.scope.value, month=month)

    def _purge_references(self, bucket_id: str) -> None:
        for template in self.session.scalars(select(BudgetTemplate)).all():
            if bucket_id in (template.bucket_values or {}):
                template.bucket_values = _without_key(template.bucket_values, bucket_id)
        for config in self.session.scalars(select(MonthConfig)).all():
            if bucket_id in (config.bucket_overrides or {}):
                config.bucket_overrides = _without_key(
                    config.bucket_overrides, bucket_id
                )
        for payout in self.session.scalars(
            select(Bucket).where(Bucket.linked_goal_id == bucket_id)
        ).all():
            payout.linked_goal_id = None


class BudgetGroupService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[BudgetGroup]:
        stmt = select(BudgetGroup).order_by(
            BudgetGroup.is_catch_all.asc(), BudgetGroup.created_at.asc()
        )
        return self.session.scalars(stmt).all()

    def list_domain(self) -> list[schemas.BudgetGroup]:
        return [schemas.BudgetGroup.model_validate(g) for g in self.list_all()]

    def get(self, group_id: str) -> BudgetGroup:
        group = self.session.get(BudgetGroup, group_id)
        if not group:
            raise ValueError("Budget group not found")
        return group

    def _apply(self, group: BudgetGroup, data: BudgetGroupIn) -> None:
        if data.default_account_id and not self.session.get(
            Account, data.default_account_id
        ):
            raise ValueError("Account not found")
        group.name = data.name.strip()
        group.icon = data.icon
        group.default_account_id = data.default_account_id
        group.is_catch_all = data.is_catch_all
        if data.is_catch_all:
            for other in self.session.scalars(
                select(BudgetGroup).where(BudgetGroup.is_catch_all.is_(True))
            ).all():
                if other is not group:
                    other.is_catch_all = False

    def create(
        self, data: BudgetGroupIn, limit: Optional[GroupLimitIn] = None
    ) -> BudgetGroup:
        group = BudgetGroup(monthly_data={})
        self._apply(group, data)
        if limit is not None:
            group.monthly_data = {
                limit.month_key: schemas.BudgetGroupMonthData(
                    limit=limit.limit
                ).model_dump()
            }
        self.session.add(group)
        self.session.commit()
        notify_changed("budget_group", id=group.id)
        return group

    def update(self, group_id: str, data: BudgetGroupIn) -> BudgetGroup:
        group = self.get(group_id)
        self._apply(group, data)
        self.session.commit()
        notify_changed("budget_group", id=group.id)
        return group

    def set_limit(self, group_id: str, data: GroupLimitIn) -> BudgetGroup:
        group = self.get(group_id)
        ensure_month_unlocked(self.session, data.month_key)
        entry = schemas.BudgetGroupMonthData(limit=data.limit)
        group.monthly_data = {
            **(group.monthly_data or {}),
            data.month_key: entry.model_dump(),
        }
        self.session.commit()
        notify_changed("budget_group", id=group.id, month=data.month_key)
        return group

    def delete(self, group_id: str, data: DeleteIn) -> None:
        """
        Same scopes as buckets. Month-scoped deletes also zero the group's
        override in the affected month configs so a template limit does not
        bring it back for those months.
        """
        group = self.get(group_id)
        if data.scope == DeleteScope.all:
            with atomic(self.session):
                for sub in self.session.scalars(
                    select(SubCategory).where(SubCategory.budget_group_id == group_id)
                ).all():
                    sub.budget_group_id = None
                for bucket in self.session.scalars(
                    select(Bucket).where(Bucket.budget_group_id == group_id)
                ).all():
                    bucket.budget_group_id = None
                for template in self.session.scalars(select(BudgetTemplate)).all():
                    if group_id in (template.group_limits or {}):
                        template.group_limits = _without_key(
                            template.group_limits, group_id
                        )
                for config in self.session.scalars(select(MonthConfig)).all():
                    if group_id in (config.group_overrides or {}):
                        config.group_overrides = _without_key(
                            config.group_overrides, group_id
                        )
                self.session.delete(group)
            notify_changed("budget_group", id=group_id, deleted=data.scope.value)
            return

        month = data.month_key
        ensure_month_unlocked(self.session, month)
        domain = schemas.BudgetGroup.model_validate(group)
        previous = domain.monthly_data.get(month)
        if previous is None:
            for offset in range(1, 13):
                previous = domain.monthly_data.get(add_months(month, -offset))
                if previous is not None:
                    break
        limit = previous.limit if previous and not previous.is_explicitly_deleted else 0
        removed = {"limit": 0, "is_explicitly_deleted": True}

        monthly = dict(group.monthly_data or {})
        monthly[month] = removed
        with atomic(self.session):
            if data.scope == DeleteScope.this_month:
                next_key = add_months(month, 1)
                if next_key not in monthly:
                    monthly[next_key] = {"limit": limit, "is_explicitly_deleted": False}
                affected = [_month_config_row(self.session, month)]
            else:
                for key in list(monthly):
                    if key > month:
                        monthly[key] = removed
                affected = [_month_config_row(self.session, month)]
                affected.extend(
                    self.session.scalars(
                        select(MonthConfig).where(MonthConfig.month_key > month)
                    ).all()
                )
            for config in affected:
                config.group_overrides = {**(config.group_overrides or {}), group_id: 0}
            group.monthly_data = monthly
        notify_changed(
            "budget_group", id=group_id, deleted=data.scope.value, month=month
        )


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_main(self) -> list[MainCategory]:
        stmt = select(MainCategory).order_by(MainCategory.name)
        return self.session.scalars(stmt).all()

    def list_sub(self, main_category_id: Optional[str] = None) -> list[SubCategory]:
        stmt = select(SubCategory).order_by(SubCategory.name)
        if main_category_id:
            stmt = stmt.where(SubCategory.main_category_id == main_category_id)
        return self.session.scalars(stmt).all()

    def get_main(self, category_id: str) -> MainCategory:
        category = self.session.get(MainCategory, category_id)
        if not category:
            raise ValueError("Category not found")
        return category

    def get_sub(self, sub_id: str) -> SubCategory:
        sub = self.session.get(SubCategory, sub_id)
        if not sub:
            raise ValueError("Sub category not found")
        return sub

    def create_main(self, data: MainCategoryIn) -> MainCategory:
        category = MainCategory(name=data.name.strip(), description=data.description)
        self.session.add(category)
        self.session.commit()
        notify_changed("category", id=category.id)
        return category

    def update_main(self, category_id: str, data: MainCategoryIn) -> MainCategory:
        category = self.get_main(category_id)
        category.name = data.name.strip()
        category.description = data.description
        self.session.commit()
        notify_changed("category", id=category.id)
        return category

    def delete_main(self, category_id: str) -> None:
        category = self.get_main(category_id)
        self.session.delete(category)
        self.session.commit()
        notify_changed("category", id=category_id)

    def _apply_sub(self, sub: SubCategory, data: SubCategoryIn) -> None:
        self.get_main(data.main_category_id)
        if data.budget_group_id and not self.session.get(
            BudgetGroup, data.budget_group_id
        ):
            raise ValueError("Budget group not found")
        sub.main_category_id = data.main_category_id
        sub.name = data.name.strip()
        sub.description = data.description
        sub.budget_group_id = data.budget_group_id
        sub.account_id = data.account_id
        sub.is_savings = data.is_savings

    def create_sub(self, data: SubCategoryIn) -> SubCategory:
        sub = SubCategory()
        self._apply_sub(sub, data)
        self.session.add(sub)
        self.session.commit()
        notify_changed("sub_category", id=sub.id)
        return sub

    def update_sub(self, sub_id: str, data: SubCategoryIn) -> SubCategory:
        sub = self.get_sub(sub_id)
        self._apply_sub(sub, data)
        self.session.commit()
        notify_changed("sub_category", id=sub.id)
        return sub

    def set_monthly_budget(self, sub_id: str, amount: Optional[float]) -> SubCategory:
        sub = self.get_sub(sub_id)
        sub.monthly_budget = amount
        self.session.commit()
        notify_changed("sub_category", id=sub.id)
        return sub

    def delete_sub(self, sub_id: str) -> None:
        sub = self.get_sub(sub_id)
        self.session.delete(sub)
        self.session.commit()
        notify_changed("sub_category", id=sub_id)

    def seed_defaults(self) -> int:
        created = seed_default_categories(self.session)
        if created:
            logger.info(f"categories_seeded: created={created}")
            notify_changed("category", seeded=created)
        return created

    def reset_to_default(self) -> int:
        with atomic(self.session):
            self.session.execute(delete(SubCategory))
            self.session.execute(delete(MainCategory))
        return self.seed_defaults()


class TemplateService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[BudgetTemplate]:
        stmt = select(BudgetTemplate).order_by(
            BudgetTemplate.is_default.desc(), BudgetTemplate.created_at.asc()
        )
        return self.session.scalars(stmt).all()

    def get(self, template_id: str) -> BudgetTemplate:
        template = self.session.get(BudgetTemplate, template_id)
        if not template:
            raise ValueError("Template not found")
        return template

    def _make_default(self, template: BudgetTemplate) -> None:
        for other in self.session.scalars(
            select(BudgetTemplate).where(BudgetTemplate.is_default.is_(True))
        ).all():
            if other is not template:
                other.is_default = False
        template.is_default = True

    def _apply(self, template: BudgetTemplate, data: BudgetTemplateIn) -> None:
        template.name = data.name.strip()
        template.bucket_values = {
            k: v.model_dump() for k, v in data.bucket_values.items()
        }
        template.group_limits = dict(data.group_limits)
        template.sub_category_budgets = dict(data.sub_category_budgets)

    def create(self, data: BudgetTemplateIn) -> BudgetTemplate:
        has_default = self.session.scalar(
            select(func.count(BudgetTemplate.id)).where(
                BudgetTemplate.is_default.is_(True)
            )
        )
        template = BudgetTemplate(is_default=False)
        self._apply(template, data)
        self.session.add(template)
        if data.is_default or not has_default:
            self._make_default(template)
        self.session.commit()
        notify_changed("template", id=template.id)
        return template

    def update(self, template_id: str, data: BudgetTemplateIn) -> BudgetTemplate:
        template = self.get(template_id)
        self._apply(template, data)
        if data.is_default:
            self._make_default(template)
        self.session.commit()
        notify_changed("template", id=template.id)
        return template

    def set_default(self, template_id: str) -> BudgetTemplate:
        template = self.get(template_id)
        self._make_default(template)
        self.session.commit()
        notify_changed("template", id=template.id)
        return template

    def delete(self, template_id: str) -> None:
        template = self.get(template_id)
        was_default = template.is_default
        with atomic(self.session):
            for config in self.session.scalars(
                select(MonthConfig).where(MonthConfig.template_id == template_id)
            ).all():
                config.template_id = None
            self.session.delete(template)
            self.session.flush()
            if was_default:
                successor = self.session.scalar(
                    select(BudgetTemplate).order_by(BudgetTemplate.created_at.asc())
                )
                if successor is not None:
                    successor.is_default = True
        notify_changed("template", id=template_id)

    def get_config(self, month_key: str) -> schemas.MonthConfig:
        config = self.session.get(MonthConfig, month_key)
        if config is None:
            return schemas.MonthConfig(month_key=month_key)
        return schemas.MonthConfig.model_validate(config)

    def set_month_template(
        self, month_key: str, template_id: Optional[str]
    ) -> schemas.MonthConfig:
        ensure_month_unlocked(self.session, month_key)
        if template_id:
            self.get(template_id)
        config = _month_config_row(self.session, month_key)
        config.template_id = template_id or None
        self.session.commit()
        notify_changed("month_config", month=month_key)
        return self.get_config(month_key)

    def set_locked(self, month_key: str, is_locked: bool) -> schemas.MonthConfig:
        config = _month_config_row(self.session, month_key)
        config.is_locked = is_locked
        self.session.commit()
        logger.info(f"month_lock: month={month_key} locked={is_locked}")
        notify_changed("month_config", month=month_key)
        return self.get_config(month_key)

    def _set_override(
        self, month_key: str, attr: str, entity_id: str, value: object
    ) -> schemas.MonthConfig:
        ensure_month_unlocked(self.session, month_key)
        config = _month_config_row(self.session, month_key)
        current = getattr(config, attr) or {}
        if value is None:
            setattr(config, attr, _without_key(current, entity_id))
        else:
            setattr(config, attr, {**current, entity_id: value})
        self.session.commit()
        notify_changed("month_config", month=month_key)
        return self.get_config(month_key)

    def set_bucket_override(
        self, month_key: str, bucket_id: str, data: MonthOverrideIn
    ) -> schemas.MonthConfig:
        if not self.session.get(Bucket, bucket_id):
            raise ValueError("Bucket not found")
        value = data.bucket.model_dump() if data.bucket is not None else None
        return self._set_override(month_key, "bucket_overrides", bucket_id, value)

    def set_group_override(
        self, month_key: str, group_id: str, data: MonthOverrideIn
    ) -> schemas.MonthConfig:
        if not self.session.get(BudgetGroup, group_id):
            raise ValueError("Budget group not found")
        return self._set_override(month_key, "group_overrides", group_id, data.limit)

    def set_sub_category_override(
        self, month_key: str, sub_id: str, data: MonthOverrideIn
    ) -> schemas.MonthConfig:
        if not self.session.get(SubCategory, sub_id):
            raise ValueError("Sub category not found")
        return self._set_override(
            month_key, "sub_category_overrides", sub_id, data.budget
        )

    def clear_overrides(self, month_key: str) -> schemas.MonthConfig:
        """Reset the month to its template."""
        ensure_month_unlocked(self.session, month_key)
        config = _month_config_row(self.session, month_key)
        config.bucket_overrides = {}
        config.group_overrides = {}
        config.sub_category_overrides = {}
        self.session.commit()
        notify_changed("month_config", month=month_key)
        return self.get_config(month_key)


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, transaction_id: str) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def list(
        self,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
        account_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        stmt = select(Transaction).order_by(
            Transaction.date.desc(), Transaction.created_at.desc()
        )
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)
        if account_id:
            stmt = stmt.where(Transaction.account_id == account_id)
        if limit:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()

    def in_interval(self, start: date, end: date) -> list[schemas.Transaction]:
        """Transactions dated within ``[start, end]``."""
        return [
            schemas.Transaction.model_validate(t)
            for t in self.list(start=start, end=end)
        ]

    def all_domain(self) -> list[schemas.Transaction]:
        return [schemas.Transaction.model_validate(t) for t in self.list()]

    def create(self, data: TransactionIn) -> Transaction:
        if not self.session.get(Account, data.account_id):
            raise ValueError("Account not found")
        if data.linked_expense_id:
            self.get(data.linked_expense_id)
        txn = Transaction(
            account_id=data.account_id,
            date=data.date,
            amount=data.amount,
            description=data.description.strip(),
            type=data.type,
            is_verified=True,
            source=TransactionSource.manual,
            linked_expense_id=data.linked_expense_id,
            is_hidden=data.is_hidden,
        )
        self._classify(
            txn,
            data.type,
            data.bucket_id,
            data.category_main_id,
            data.category_sub_id,
        )
        self.session.add(txn)
        self.session.commit()
        notify_changed("transaction", id=txn.id)
        return txn

    @staticmethod
    def _classify(
        txn: Transaction,
        type_: Optional[TransactionType],
        bucket_id: Optional[str],
        category_main_id: Optional[str],
        category_sub_id: Optional[str],
    ) -> None:
        txn.type = type_
        if type_ == TransactionType.transfer:
            txn.bucket_id = bucket_id
            txn.category_main_id = None
            txn.category_sub_id = None
        else:
            txn.bucket_id = None
            txn.category_main_id = category_main_id
            txn.category_sub_id = category_sub_id if category_main_id else None

    def update_classification(
        self, transaction_id: str, data: ClassificationIn
    ) -> Transaction:
        txn = self.get(transaction_id)
        fields = data.model_fields_set
        type_ = data.type if "type" in fields else txn.type
        bucket_id = data.bucket_id if "bucket_id" in fields else txn.bucket_id
        main_id = txn.category_main_id
        if "category_main_id" in fields:
            main_id = data.category_main_id
        sub_id = txn.category_sub_id
        if "category_sub_id" in fields:
            sub_id = data.category_sub_id
        if main_id != txn.category_main_id and "category_sub_id" not in fields:
            sub_id = None
        self._classify(txn, type_, bucket_id, main_id, sub_id)
        if data.is_hidden is not None:
            txn.is_hidden = data.is_hidden
        self.session.commit()
        notify_changed("transaction", id=txn.id)
        return txn

    def _unlink(self, ids: Sequence[str]) -> None:
        for other in self.session.scalars(
            select(Transaction).where(
                or_(
                    Transaction.linked_transaction_id.in_(ids),
                    Transaction.linked_expense_id.in_(ids),
                )
            )
        ).all():
            if other.linked_transaction_id in ids:
                other.linked_transaction_id = None
            if other.linked_expense_id in ids:
                other.linked_expense_id = None

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        with atomic(self.session):
            self._unlink([txn.id])
            self.session.delete(txn)
        notify_changed("transaction", id=transaction_id)

    def bulk_delete(self, ids: Sequence[str]) -> int:
        ids = list(dict.fromkeys(ids))
        with atomic(self.session):
            self._unlink(ids)
            result = self.session.execute(
                delete(Transaction).where(Transaction.id.in_(ids))
            )
        count = result.rowcount or 0
        logger.info(f"transactions_deleted: requested={len(ids)} deleted={count}")
        notify_changed("transaction", deleted=count)
        return count

    def delete_all(self) -> int:
        with atomic(self.session):
            result = self.session.execute(delete(Transaction))
        count = result.rowcount or 0
        logger.info(f"transactions_deleted: all=True deleted={count}")
        notify_changed("transaction", deleted=count)
        return count

    def history_lookup(
        self, account_id: str, description: str
    ) -> Optional[schemas.Transaction]:
        """Most recent categorized transaction with the same account and text."""
        stmt = (
            select(Transaction)
            .where(
                Transaction.account_id == account_id,
                Transaction.description == description,
                Transaction.type.is_not(None),
                or_(
                    Transaction.bucket_id.is_not(None),
                    Transaction.category_main_id.is_not(None),
                ),
            )
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
            .limit(1)
        )
        txn = self.session.scalar(stmt)
        return schemas.Transaction.model_validate(txn) if txn else None

    def transfer_candidates(self) -> list[TransferPair]:
        return find_transfer_pairs(self.all_domain())

    def link_transfer_pair(self, outgoing_id: str, incoming_id: str) -> int:
        """
        Mark two rows as the two legs of one internal transfer. Other unlinked
        pairs with the same descriptions and amount are linked as well.
        Returns the number of pairs linked.
        """
        outgoing = self.get(outgoing_id)
        incoming = self.get(incoming_id)
        if outgoing.account_id == incoming.account_id:
            raise ValueError("Transfer legs must be on different accounts")
        if outgoing.amount != -incoming.amount:
            raise ValueError("Transfer legs must have opposite amounts")
        if outgoing.amount > 0:
            outgoing, incoming = incoming, outgoing

        pair = TransferPair(
            outgoing=schemas.Transaction.model_validate(outgoing),
            incoming=schemas.Transaction.model_validate(incoming),
        )
        ids = [(outgoing.id, incoming.id)]
        for candidate in self.transfer_candidates():
            legs = {candidate.outgoing.id, candidate.incoming.id}
            if legs & {outgoing.id, incoming.id}:
                continue
            if is_similar_pair(pair, candidate):
                ids.append((candidate.outgoing.id, candidate.incoming.id))

        with atomic(self.session):
            for out_id, in_id in ids:
                first, second = self.get(out_id), self.get(in_id)
                for txn, partner in ((first, second), (second, first)):
                    self._classify(
                        txn, TransactionType.transfer, INTERNAL_BUCKET_ID, None, None
                    )
                    txn.is_verified = True
                    txn.linked_transaction_id = partner.id
        logger.info(f"transfer_linked: pairs={len(ids)}")
        notify_changed("transaction", linked=len(ids))
        return len(ids)

    def actuals(self, period: Period) -> BudgetActuals:
        return aggregate_actuals(self.in_interval(period.start, period.end), period)

    def export(self, transactions: Sequence[Transaction]) -> str:
        return export_transactions(
            [schemas.Transaction.model_validate(t) for t in transactions]
        )


class RuleService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[ImportRule]:
        stmt = select(ImportRule).order_by(
            ImportRule.position.asc(), ImportRule.created_at.asc()
        )
        return self.session.scalars(stmt).all()

    def list_domain(self) -> list[schemas.ImportRule]:
        return [schemas.ImportRule.model_validate(r) for r in self.list_all()]

    def get(self, rule_id: str) -> ImportRule:
        rule = self.session.get(ImportRule, rule_id)
        if not rule:
            raise ValueError("Rule not found")
        return rule

    def _apply(self, rule: ImportRule, data: ImportRuleIn) -> None:
        bucket_id = data.target_bucket_id
        if (
            bucket_id
            and bucket_id not in UNALLOCATED_BUCKET_IDS
            and not self.session.get(Bucket, bucket_id)
        ):
            raise ValueError("Bucket not found")
        if data.target_category_main_id and not self.session.get(
            MainCategory, data.target_category_main_id
        ):
            raise ValueError("Category not found")
        rule.keyword = data.keyword.strip()
        rule.match_type = data.match_type
        rule.sign = data.sign
        rule.account_id = data.account_id
        rule.target_type = data.target_type
        rule.target_bucket_id = data.target_bucket_id
        rule.target_category_main_id = data.target_category_main_id
        rule.target_category_sub_id = data.target_category_sub_id

    def create(self, data: ImportRuleIn) -> ImportRule:
        last = self.session.scalar(select(func.max(ImportRule.position)))
        rule = ImportRule(position=(last if last is not None else -1) + 1)
        self._apply(rule, data)
        self.session.add(rule)
        self.session.commit()
        notify_changed("rule", id=rule.id)
        return rule

    def update(self, rule_id: str, data: ImportRuleIn) -> ImportRule:
        rule = self.get(rule_id)
        self._apply(rule, data)
        self.session.commit()
        notify_changed("rule", id=rule.id)
        return rule

    def delete(self, rule_id: str) -> None:
        rule = self.get(rule_id)
        self.session.delete(rule)
        self.session.commit()
        notify_changed("rule", id=rule_id)

    def reorder(self, rule_ids: Sequence[str]) -> list[ImportRule]:
        """Rules named in ``rule_ids`` come first, in that order."""
        rules = {r.id: r for r in self.list_all()}
        unknown = [rid for rid in rule_ids if rid not in rules]
        if unknown:
            raise ValueError("Rule not found")
        ordered = [rules[rid] for rid in rule_ids]
        ordered += [r for rid, r in rules.items() if rid not in set(rule_ids)]
        for position, rule in enumerate(ordered):
            rule.position = position
        self.session.commit()
        notify_changed("rule", reordered=len(ordered))
        return ordered


@dataclass(frozen=True)
class StageResult:
    staged: list[schemas.StagedTransaction]
    duplicates: int
    log_id: int


class ImportService:
    """Bank file staging, review and the commit gate."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _staged_rows(self) -> list[StagedTransaction]:
        stmt = (
            select(StagedTransaction)
            .order_by(StagedTransaction.date.desc(), StagedTransaction.created_at)
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).all()

    def list_staged(self) -> list[schemas.StagedTransaction]:
        rows = self._staged_rows()
        return [schemas.StagedTransaction.model_validate(r) for r in rows]

    def list_logs(self, limit: int = 50) -> list[ImportLog]:
        stmt = select(ImportLog).order_by(ImportLog.id.desc()).limit(limit)
        return self.session.scalars(stmt).all()

    def classification_universe(self) -> ClassificationUniverse:
        categories = CategoryService(self.session)
        return ClassificationUniverse(
            buckets=BucketService(self.session).list_domain(),
            main_categories=[
                schemas.MainCategory.model_validate(c) for c in categories.list_main()
            ],
            sub_categories=[
                schemas.SubCategory.model_validate(s) for s in categories.list_sub()
            ],
        )

    def _log(
        self,
        filename: str,
        account_id: str,
        status: ImportStatus,
        *,
        count: int = 0,
        duplicates: int = 0,
        error: Optional[str] = None,
    ) -> ImportLog:
        entry = ImportLog(
            file_name=filename,
            account_id=account_id,
            transaction_count=count,
            duplicate_count=duplicates,
            status=status,
            error=error,
        )
        self.session.add(entry)
        return entry

    def stage_file(self, filename: str, content: bytes, account_id: str) -> StageResult:
        """
        Parse a bank file and run the classification passes. The new rows are
        staged together with the import log entry, or not at all.
        """
        AccountService(self.session).get(account_id)
        try:
            raw = parse_bank_file(filename, content, account_id)
        except ImportParseError as exc:
            self._log(filename, account_id, ImportStatus.error, error=str(exc))
            self.session.commit()
            logger.warning(f"import_failed: file={filename!r} error={exc}")
            raise

        transactions = TransactionService(self.session)
        existing: list[schemas.Transaction] = transactions.all_domain()
        existing.extend(self.list_staged())
        staged = run_import_pipeline(
            raw,
            existing,
            RuleService(self.session).list_domain(),
            BucketService(self.session).list_domain(),
            transactions.history_lookup,
        )
        duplicates = len(raw) - len(staged)
        with atomic(self.session):
            for txn in staged:
                self.session.add(StagedTransaction(**txn.model_dump()))
            entry = self._log(
                filename,
                account_id,
                ImportStatus.success,
                count=len(staged),
                duplicates=duplicates,
            )
            self.session.flush()
            log_id = entry.id
        logger.info(
            f"import_staged: account={account_id} file={filename!r} "
            f"staged={len(staged)} duplicates={duplicates}"
        )
        event_bus.publish(STAGING_CHANGED, staged=len(staged))
        return StageResult(staged=staged, duplicates=duplicates, log_id=log_id)

    def _store(
        self,
        before: Sequence[schemas.StagedTransaction],
        after: Sequence[schemas.StagedTransaction],
    ) -> int:
        """Write back rows whose content changed; returns how many."""
        previous = {t.id: t for t in before}
        rows = {r.id: r for r in self._staged_rows()}
        changed = 0
        for txn in after:
            row = rows.get(txn.id)
            if row is None or previous.get(txn.id) == txn:
                continue
            for name, value in txn.model_dump(exclude={"id"}).items():
                setattr(row, name, value)
            changed += 1
        return changed

    def _update(self, changes) -> list[schemas.StagedTransaction]:
        current = self.list_staged()
        updated = changes(current)
        with atomic(self.session):
            changed = self._store(current, updated)
        if changed:
            event_bus.publish(STAGING_CHANGED, changed=changed)
        return updated

    def edit(self, txn_id: str, data: StagedEditIn) -> list[schemas.StagedTransaction]:
        settings = SettingsService(self.session).get()
        return self._update(
            lambda staged: apply_user_edit(
                staged, txn_id, to_snake(data.field), data.value, settings
            )
        )

    def approve(self, txn_id: str) -> list[schemas.StagedTransaction]:
        return self._update(lambda staged: approve(staged, txn_id))

    def unapprove(self, txn_id: str) -> list[schemas.StagedTransaction]:
        return self._update(lambda staged: unapprove(staged, txn_id))

    def readiness(self) -> dict[str, bool]:
        settings = SettingsService(self.session).get()
        return {t.id: is_ready(t, settings) for t in self.list_staged()}

    def discard(self, txn_id: str) -> None:
        row = self.session.get(StagedTransaction, txn_id)
        if not row:
            raise ValueError("Staged transaction not found")
        self.session.delete(row)
        self.session.commit()
        event_bus.publish(STAGING_CHANGED, discarded=1)

    def discard_all(self) -> int:
        with atomic(self.session):
            result = self.session.execute(delete(StagedTransaction))
        count = result.rowcount or 0
        event_bus.publish(STAGING_CHANGED, discarded=count)
        return count

    def commit(self) -> int:
        """
        Persist every ready staged row as a verified transaction and remove it
        from staging in one database transaction. Rows that are not ready stay
        staged untouched.
        """
        settings = SettingsService(self.session).get()
        ready, pending = partition_ready(self.list_staged(), settings)
        if not ready:
            return 0
        ids = [t.id for t in ready]
        with atomic(self.session):
            for txn in ready:
                self.session.add(Transaction(**to_verified(txn).model_dump()))
            self.session.execute(
                delete(StagedTransaction).where(StagedTransaction.id.in_(ids))
            )
        logger.info(f"import_committed: committed={len(ready)} pending={len(pending)}")
        event_bus.publish(TRANSACTIONS_COMMITTED, count=len(ready))
        notify_changed("transaction", committed=len(ready))
        return len(ready)

    def run_ai_pass(self, classifier: Classifier) -> int:
        """
        Ask the classifier about rows that are still unclassified. The staged
        rows are read again once the classifier answers and suggestions are
        only applied to rows nobody classified in the meantime.
        """
        candidates = [t for t in self.list_staged() if needs_classification(t)]
        universe = self.classification_universe()
        self.session.commit()
        if not candidates:
            return 0
        suggestions = safe_suggest(classifier, candidates, universe)
        if not suggestions:
            return 0

        current = self.list_staged()
        updated = apply_ai_suggestions(current, suggestions, universe)
        with atomic(self.session):
            changed = self._store(current, updated)
        logger.info(
            f"ai_pass: candidates={len(candidates)} suggestions={len(suggestions)} "
            f"applied={changed}"
        )
        if changed:
            event_bus.publish(STAGING_CHANGED, classified=changed)
        return changed


def run_ai_pass_in_background(classifier: Optional[Classifier] = None) -> int:
    classifier = classifier or build_classifier()
    with session_scope() as session:
        return ImportService(session).run_ai_pass(classifier)


@dataclass(frozen=True)
class BucketSummary:
    bucket_id: str
    name: str
    type: BucketType
    account_id: Optional[str]
    cost: float
    source: str
    is_inherited: bool
    template_name: Optional[str] = None
    cost_so_far: Optional[float] = None
    saved: Optional[float] = None
    funded: float = 0.0
    spent: float = 0.0


@dataclass
class MonthOverview:
    month_key: str
    period: Period
    is_locked: bool
    template_id: Optional[str]
    income: float
    income_by_user: dict[str, float]
    total_cost: float
    buckets: list[BucketSummary] = field(default_factory=list)
    groups: list[GroupProgress] = field(default_factory=list)
    sub_category_budgets: dict[str, float] = field(default_factory=dict)
    actuals: BudgetActuals = field(default_factory=BudgetActuals)


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def overview(self, month_key: str, today: Optional[date] = None) -> MonthOverview:
        settings = SettingsService(self.session).get()
        interval = budget_interval(month_key, settings.payday)
        if interval is None:
            raise ValueError(f"Invalid month key: {month_key}")
        today = today or today_local()
        templates = load_templates(self.session)
        configs = load_month_configs(self.session)
        config = next((c for c in configs if c.month_key == month_key), None)

        transactions = TransactionService(self.session).in_interval(
            interval.start, interval.end
        )
        actuals = aggregate_actuals(transactions, interval)

        lines: list[BucketSummary] = []
        for bucket in BucketService(self.session).list_domain():
            if not is_bucket_active_in_month(bucket, month_key, templates, configs):
                continue
            effective = resolve_bucket(bucket, month_key, templates, configs)
            is_goal = bucket.type == BucketType.goal and not bucket.linked_goal_id
            lines.append(
                BucketSummary(
                    bucket_id=bucket.id,
                    name=bucket.name,
                    type=bucket.type,
                    account_id=bucket.account_id,
                    cost=bucket_cost(
                        bucket, month_key, settings.payday, templates, configs
                    ),
                    source=effective.source,
                    is_inherited=effective.is_inherited,
                    template_name=effective.template_name,
                    cost_so_far=(
                        calculate_daily_bucket_cost_so_far(
                            bucket,
                            month_key,
                            settings.payday,
                            templates,
                            configs,
                            today=today,
                        )
                        if bucket.type == BucketType.daily
                        else None
                    ),
                    saved=(
                        calculate_saved_amount(bucket, month_key) if is_goal else None
                    ),
                    funded=actuals.funding_by_bucket.get(bucket.id, 0.0),
                    spent=actuals.consumption_by_bucket.get(bucket.id, 0.0),
                )
            )

        categories = CategoryService(self.session)
        subs = [schemas.SubCategory.model_validate(s) for s in categories.list_sub()]
        groups = budget_group_progress(
            BudgetGroupService(self.session).list_domain(),
            subs,
            transactions,
            month_key,
            settings.payday,
            templates,
            configs,
        )
        sub_budgets: dict[str, float] = {}
        for sub in subs:
            amount = effective_sub_category_budget(sub, month_key, templates, configs)
            if amount:
                sub_budgets[sub.id] = amount
        users = [
            schemas.User.model_validate(u)
            for u in UserService(self.session).list_all()
        ]
        return MonthOverview(
            month_key=month_key,
            period=interval,
            is_locked=bool(config and config.is_locked),
            template_id=config.template_id if config else None,
            income=total_family_income(users, month_key),
            income_by_user={u.id: user_income(u, month_key) for u in users},
            total_cost=sum(line.cost for line in lines),
            buckets=lines,
            groups=groups,
            sub_category_budgets=sub_budgets,
            actuals=actuals,
        )

    def sub_category_averages(self, month_key: str) -> dict[str, float]:
        """Three-month average expense per sub-category, zero averages left out."""
        if not is_valid_month_key(month_key):
            raise ValueError(f"Invalid month key: {month_key}")
        payday = SettingsService(self.session).get().payday
        transactions = TransactionService(self.session).all_domain()
        averages: dict[str, float] = {}
        for sub in CategoryService(self.session).list_sub():
            amount = sub_category_average(sub.id, month_key, payday, transactions)
            if amount:
                averages[sub.id] = amount
        return averages

    def subscriptions(self) -> list[SubscriptionCandidate]:
        return detect_subscriptions(TransactionService(self.session).all_domain())


class BackupService:
    def __init__(self, session: Session, store: Optional[BlobStore] = None) -> None:
        self.session = session
        self.store = store or LocalBlobStore(get_settings().backup_dir)

    def snapshot(self) -> schemas.Snapshot:
        def dump(model, rows):
            return [model.model_validate(r) for r in rows]

        session = self.session
        categories = CategoryService(session)
        return schemas.Snapshot(
            users=dump(schemas.User, UserService(session).list_all()),
            accounts=dump(schemas.Account, AccountService(session).list_all()),
            buckets=BucketService(session).list_domain(),
            settings=SettingsService(session).get(),
            transactions=TransactionService(session).all_domain(),
            import_rules=RuleService(session).list_domain(),
            main_categories=dump(schemas.MainCategory, categories.list_main()),
            sub_categories=dump(schemas.SubCategory, categories.list_sub()),
            budget_groups=BudgetGroupService(session).list_domain(),
            budget_templates=load_templates(session),
            month_configs=load_month_configs(session),
        )

    def export_json(self) -> str:
        return dump_snapshot(self.snapshot())

    def restore(self, payload: Union[str, bytes, dict]) -> schemas.Snapshot:
        """
        Replace all stored data with a backup. The document is validated before
        anything is touched and the replace runs as one database transaction.
        Staged rows are discarded.
        """
        result = validate_snapshot(payload)
        if not result.ok:
            logger.warning(f"backup_restore_rejected: error={result.error}")
            raise BackupValidationError(result.error)
        snapshot = result.snapshot

        with atomic(self.session):
            for model in (
                StagedTransaction,
                Transaction,
                ImportRule,
                SubCategory,
                MainCategory,
                Bucket,
                Account,
                BudgetGroup,
                MonthConfig,
                BudgetTemplate,
                User,
                AppSettings,
            ):
                self.session.execute(delete(model))
            self.session.expunge_all()

            self.session.add_all(User(**u.model_dump()) for u in snapshot.users)
            self.session.add_all(Account(**a.model_dump()) for a in snapshot.accounts)
            self.session.add_all(
                MainCategory(**c.model_dump()) for c in snapshot.main_categories
            )
            self.session.add_all(
                BudgetGroup(**g.model_dump()) for g in snapshot.budget_groups
            )
            self.session.flush()
            self.session.add_all(Bucket(**b.model_dump()) for b in snapshot.buckets)
            self.session.add_all(
                SubCategory(**s.model_dump()) for s in snapshot.sub_categories
            )
            self.session.add_all(
                Transaction(**t.model_dump()) for t in snapshot.transactions
            )
            self.session.add_all(
                ImportRule(position=index, **r.model_dump())
                for index, r in enumerate(snapshot.import_rules)
            )
            self.session.add_all(
                BudgetTemplate(**t.model_dump()) for t in snapshot.budget_templates
            )
            self.session.add_all(
                MonthConfig(**c.model_dump()) for c in snapshot.month_configs
            )
            self.session.add(AppSettings(id=1, **snapshot.settings.model_dump()))

        logger.info(
            f"backup_restored: transactions={len(snapshot.transactions)} "
            f"buckets={len(snapshot.buckets)} users={len(snapshot.users)}"
        )
        event_bus.publish(BACKUP_RESTORED)
        notify_changed("backup", restored=True)
        return snapshot

    def backup_to_store(self, now: Optional[datetime] = None) -> BlobInfo:
        info = self.store.create(backup_name(now or datetime.now()), self.export_json())
        logger.info(f"backup_written: name={info.name} size={info.size}")
        return info

    def list_backups(self) -> list[BlobInfo]:
        return self.store.list()

    def restore_from_store(self, name: str) -> schemas.Snapshot:
        return self.restore(self.store.read(name))

    def prune(self, keep: Optional[int] = None) -> list[str]:
        keep = get_settings().backup_keep if keep is None else keep
        removed = prune_backups(self.store, keep)
        if removed:
            logger.info(f"backups_pruned: removed={len(removed)} keep={keep}")
        return removed
