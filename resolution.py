"""
Effective month configuration for buckets, budget groups and sub-categories.

Each entity kind has an ordered chain of resolvers. A resolver returns ``None``
when it has no opinion, letting the next one try, or an ``EffectiveData``
which ends the search. An ``EffectiveData`` whose ``data`` is ``None`` is a
terminal "no data" answer (archive wall, deletion wall).
"""

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from models import BucketType
from periods import is_valid_month_key, previous_month
from schemas import (
    Bucket,
    BucketMonthData,
    BudgetGroup,
    BudgetGroupMonthData,
    BudgetTemplate,
    MonthConfig,
    SubCategory,
)

T = TypeVar("T")

BUCKET_LOOKBACK_MONTHS = 12
GOAL_LOOKBACK_MONTHS = 36
GROUP_LOOKBACK_MONTHS = 12


@dataclass(frozen=True)
class EffectiveData(Generic[T]):
    data: Optional[T]
    is_inherited: bool = False
    source: str = "none"  # "override" | "template" | "direct" | "inherited" | "none"
    template_name: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return bool(getattr(self.data, "is_explicitly_deleted", False))

    @property
    def is_live(self) -> bool:
        return self.data is not None and not self.is_deleted


NO_DATA: EffectiveData[Any] = EffectiveData(None)


@dataclass(frozen=True)
class ResolutionContext:
    month_key: str
    templates: Sequence[BudgetTemplate] = ()
    configs: Sequence[MonthConfig] = ()

    @property
    def config(self) -> Optional[MonthConfig]:
        for config in self.configs:
            if config.month_key == self.month_key:
                return config
        return None

    @property
    def template(self) -> Optional[BudgetTemplate]:
        """Template picked by the month config, else the default template."""
        config = self.config
        if config is not None and config.template_id:
            for template in self.templates:
                if template.id == config.template_id:
                    return template
            return None
        for template in self.templates:
            if template.is_default:
                return template
        return None


Resolver = Callable[[Any, ResolutionContext], Optional[EffectiveData]]


def run_chain(
    chain: Sequence[Resolver], entity: Any, ctx: ResolutionContext
) -> EffectiveData:
    if not is_valid_month_key(ctx.month_key):
        return NO_DATA
    for resolver in chain:
        result = resolver(entity, ctx)
        if result is not None:
            return result
    return NO_DATA


# --- shared resolvers ---


def archive_wall(bucket: Bucket, ctx: ResolutionContext) -> Optional[EffectiveData]:
    if (
        bucket.archived_date
        and is_valid_month_key(bucket.archived_date)
        and ctx.month_key > bucket.archived_date
    ):
        return NO_DATA
    return None


def direct_month(entity: Any, ctx: ResolutionContext) -> Optional[EffectiveData]:
    data = entity.monthly_data.get(ctx.month_key)
    if data is None:
        return None
    return EffectiveData(data, is_inherited=False, source="direct")


def backward_search(max_months: int) -> Resolver:
    def resolve(entity: Any, ctx: ResolutionContext) -> Optional[EffectiveData]:
        key = ctx.month_key
        for _ in range(max_months):
            key = previous_month(key)
            if key is None:
                return None
            found = entity.monthly_data.get(key)
            if found is None:
                continue
            if found.is_explicitly_deleted:
                return NO_DATA
            return EffectiveData(found, is_inherited=True, source="inherited")
        return None

    resolve.__name__ = f"backward_search_{max_months}"
    return resolve


# --- buckets ---


def bucket_override(bucket: Bucket, ctx: ResolutionContext) -> Optional[EffectiveData]:
    config = ctx.config
    if config is None or bucket.id not in config.bucket_overrides:
        return None
    return EffectiveData(
        config.bucket_overrides[bucket.id], is_inherited=False, source="override"
    )


def bucket_template(bucket: Bucket, ctx: ResolutionContext) -> Optional[EffectiveData]:
    template = ctx.template
    if template is None or bucket.id not in template.bucket_values:
        return None
    return EffectiveData(
        template.bucket_values[bucket.id],
        is_inherited=True,
        source="template",
        template_name=template.name,
    )


def exact_month_only(bucket: Bucket, ctx: ResolutionContext) -> EffectiveData:
    data = bucket.monthly_data.get(ctx.month_key)
    if data is None or data.is_explicitly_deleted:
        return NO_DATA
    return EffectiveData(data, is_inherited=False, source="direct")


TEMPLATED_BUCKET_CHAIN: tuple[Resolver, ...] = (
    archive_wall,
    bucket_override,
    bucket_template,
    direct_month,
    backward_search(BUCKET_LOOKBACK_MONTHS),
)

GOAL_BUCKET_CHAIN: tuple[Resolver, ...] = (
    archive_wall,
    direct_month,
    backward_search(GOAL_LOOKBACK_MONTHS),
)

PAYOUT_BUCKET_CHAIN: tuple[Resolver, ...] = (archive_wall, exact_month_only)


def bucket_chain(bucket: Bucket) -> tuple[Resolver, ...]:
    if bucket.linked_goal_id:
        return PAYOUT_BUCKET_CHAIN
    if bucket.type == BucketType.goal:
        return GOAL_BUCKET_CHAIN
    return TEMPLATED_BUCKET_CHAIN


def resolve_bucket(
    bucket: Bucket,
    month_key: str,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
) -> EffectiveData[BucketMonthData]:
    ctx = ResolutionContext(month_key, templates, configs)
    return run_chain(bucket_chain(bucket), bucket, ctx)


# --- budget groups ---


def group_override(
    group: BudgetGroup, ctx: ResolutionContext
) -> Optional[EffectiveData]:
    config = ctx.config
    if config is None or group.id not in config.group_overrides:
        return None
    data = BudgetGroupMonthData(limit=config.group_overrides[group.id])
    return EffectiveData(data, is_inherited=False, source="override")


def group_template(
    group: BudgetGroup, ctx: ResolutionContext
) -> Optional[EffectiveData]:
    template = ctx.template
    if template is None or group.id not in template.group_limits:
        return None
    data = BudgetGroupMonthData(limit=template.group_limits[group.id])
    return EffectiveData(
        data, is_inherited=True, source="template", template_name=template.name
    )


GROUP_CHAIN: tuple[Resolver, ...] = (
    group_override,
    group_template,
    direct_month,
    backward_search(GROUP_LOOKBACK_MONTHS),
)


def resolve_budget_group(
    group: BudgetGroup,
    month_key: str,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
) -> EffectiveData[BudgetGroupMonthData]:
    ctx = ResolutionContext(month_key, templates, configs)
    return run_chain(GROUP_CHAIN, group, ctx)


def effective_group_limit(
    group: BudgetGroup,
    month_key: str,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
) -> float:
    effective = resolve_budget_group(group, month_key, templates, configs)
    if not effective.is_live:
        return 0.0
    return effective.data.limit


# --- sub-categories ---


def sub_category_override(
    sub: SubCategory, ctx: ResolutionContext
) -> Optional[EffectiveData]:
    config = ctx.config
    if config is None or sub.id not in config.sub_category_overrides:
        return None
    return EffectiveData(
        config.sub_category_overrides[sub.id], is_inherited=False, source="override"
    )


def sub_category_template(
    sub: SubCategory, ctx: ResolutionContext
) -> Optional[EffectiveData]:
    template = ctx.template
    if template is None or sub.id not in template.sub_category_budgets:
        return None
    return EffectiveData(
        template.sub_category_budgets[sub.id],
        is_inherited=True,
        source="template",
        template_name=template.name,
    )


def sub_category_direct(
    sub: SubCategory, ctx: ResolutionContext
) -> Optional[EffectiveData]:
    if sub.monthly_budget is None:
        return None
    return EffectiveData(sub.monthly_budget, is_inherited=False, source="direct")


SUB_CATEGORY_CHAIN: tuple[Resolver, ...] = (
    sub_category_override,
    sub_category_template,
    sub_category_direct,
)


def resolve_sub_category(
    sub: SubCategory,
    month_key: str,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
) -> EffectiveData[float]:
    ctx = ResolutionContext(month_key, templates, configs)
    return run_chain(SUB_CATEGORY_CHAIN, sub, ctx)


def effective_sub_category_budget(
    sub: SubCategory,
    month_key: str,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
) -> float:
    effective = resolve_sub_category(sub, month_key, templates, configs)
    return effective.data or 0.0


# --- activity ---


def is_bucket_active_in_month(
    bucket: Bucket,
    month_key: str,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
) -> bool:
    if not is_valid_month_key(month_key):
        return False
    if bucket.type == BucketType.goal and not bucket.linked_goal_id:
        start, target = bucket.start_saving_date, bucket.target_date
        if not is_valid_month_key(start) or not is_valid_month_key(target):
            return False
        if archive_wall(bucket, ResolutionContext(month_key)) is not None:
            return False
        return start <= month_key < target
    return resolve_bucket(bucket, month_key, templates, configs).is_live
