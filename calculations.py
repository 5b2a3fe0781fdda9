from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Iterator, Optional, Sequence

from models import BucketType, PaymentSource, TransactionType
from periods import (
    Period,
    add_months,
    budget_interval,
    is_valid_month_key,
    months_between,
)
from resolution import effective_group_limit, is_bucket_active_in_month, resolve_bucket
from schemas import (
    Bucket,
    BucketMonthData,
    BudgetGroup,
    BudgetTemplate,
    MonthConfig,
    SubCategory,
    Transaction,
    User,
)

# Transfers not yet attributed to a real bucket.
INTERNAL_BUCKET_ID = "INTERNAL"
PAYOUT_BUCKET_ID = "PAYOUT"
UNALLOCATED_BUCKET_IDS = frozenset({INTERNAL_BUCKET_ID, PAYOUT_BUCKET_ID})


def weekday_number(day: date) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (day.weekday() + 1) % 7


def _count_active_days(data: BucketMonthData, start: date, end: date) -> int:
    active = set(data.active_days)
    if not active or start > end:
        return 0
    return sum(
        1 for day in Period("count", start, end).days() if weekday_number(day) in active
    )


def calculate_fixed_bucket_cost(
    bucket: Bucket,
    month_key: str,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
) -> float:
    if bucket.type != BucketType.fixed:
        return 0.0
    effective = resolve_bucket(bucket, month_key, templates, configs)
    if not effective.is_live:
        return 0.0
    return effective.data.amount


def calculate_daily_bucket_cost(
    bucket: Bucket,
    month_key: str,
    payday: int,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
) -> float:
    if bucket.type != BucketType.daily:
        return 0.0
    effective = resolve_bucket(bucket, month_key, templates, configs)
    interval = budget_interval(month_key, payday)
    if not effective.is_live or interval is None:
        return 0.0
    days = _count_active_days(effective.data, interval.start, interval.end)
    return days * effective.data.daily_amount


def calculate_daily_bucket_cost_so_far(
    bucket: Bucket,
    month_key: str,
    payday: int,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
    *,
    today: Optional[date] = None,
) -> float:
    if bucket.type != BucketType.daily:
        return 0.0
    today = today or date.today()
    effective = resolve_bucket(bucket, month_key, templates, configs)
    interval = budget_interval(month_key, payday)
    if not effective.is_live or interval is None:
        return 0.0
    if today < interval.start:
        return 0.0
    end = min(today, interval.end)
    days = _count_active_days(effective.data, interval.start, end)
    return days * effective.data.daily_amount


# --- goals ---


def _recorded_contribution(bucket: Bucket, month_key: str) -> Optional[float]:
    """An explicit amount the user set for the month; 0 when the month was deleted."""
    data = bucket.monthly_data.get(month_key)
    if data is None:
        return None
    if data.is_explicitly_deleted:
        return 0.0
    if data.amount > 0:
        return data.amount
    return None


def _required_rate(
    target_amount: float, saved: float, month_key: str, target: str
) -> float:
    months_left = months_between(month_key, target)
    if months_left <= 0:
        return max(0.0, target_amount - saved)
    return max(0.0, (target_amount - saved) / months_left)


def _goal_schedule(bucket: Bucket, until: str) -> Iterator[tuple[str, float]]:
    """
    Contribution per month from the start month through ``until``, stopping
    before the target month. A month without a recorded amount contributes
    whatever was still needed at that point, spread over the months left, so
    drift from earlier months is absorbed and the plan always sums to the
    target amount.
    """
    start, target = bucket.start_saving_date, bucket.target_date
    target_amount = bucket.target_amount or 0.0
    saved = 0.0
    key = start
    while key <= until and key < target:
        amount = _recorded_contribution(bucket, key)
        if amount is None:
            amount = _required_rate(target_amount, saved, key, target)
        yield key, amount
        saved += amount
        key = add_months(key, 1)


def _has_goal_window(bucket: Bucket) -> bool:
    return (
        bucket.type == BucketType.goal
        and is_valid_month_key(bucket.start_saving_date)
        and is_valid_month_key(bucket.target_date)
    )


def calculate_goal_bucket_cost(bucket: Bucket, month_key: str) -> float:
    """Contribution the goal requires in ``month_key``."""
    if not _has_goal_window(bucket) or not is_valid_month_key(month_key):
        return 0.0
    if not is_bucket_active_in_month(bucket, month_key):
        return 0.0
    if bucket.payment_source == PaymentSource.balance:
        return 0.0
    recorded = _recorded_contribution(bucket, month_key)
    if recorded is not None:
        return recorded
    amount = 0.0
    for _, amount in _goal_schedule(bucket, month_key):
        pass
    return amount


def calculate_saved_amount(bucket: Bucket, month_key: str) -> float:
    if not _has_goal_window(bucket) or not is_valid_month_key(month_key):
        return 0.0
    if bucket.payment_source == PaymentSource.balance:
        return bucket.target_amount or 0.0

    current = month_key
    if (
        bucket.archived_date
        and is_valid_month_key(bucket.archived_date)
        and current > bucket.archived_date
    ):
        current = bucket.archived_date
    if is_bucket_active_in_month(bucket, current):
        until = current
    else:
        until = add_months(current, -1)
    return sum(amount for _, amount in _goal_schedule(bucket, until))


def bucket_cost(
    bucket: Bucket,
    month_key: str,
    payday: int,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
) -> float:
    if bucket.type == BucketType.fixed:
        return calculate_fixed_bucket_cost(bucket, month_key, templates, configs)
    if bucket.type == BucketType.daily:
        return calculate_daily_bucket_cost(
            bucket, month_key, payday, templates, configs
        )
    if bucket.linked_goal_id:
        effective = resolve_bucket(bucket, month_key)
        return effective.data.amount if effective.is_live else 0.0
    return calculate_goal_bucket_cost(bucket, month_key)


# --- actuals ---


@dataclass
class BudgetActuals:
    spent_by_bucket: dict[str, float] = field(default_factory=dict)
    funding_by_bucket: dict[str, float] = field(default_factory=dict)
    consumption_by_bucket: dict[str, float] = field(default_factory=dict)
    spent_by_account: dict[str, float] = field(default_factory=dict)
    account_transfer_net: dict[str, float] = field(default_factory=dict)
    account_unallocated_net: dict[str, float] = field(default_factory=dict)


def _add(totals: dict[str, float], key: str, amount: float) -> None:
    totals[key] = totals.get(key, 0.0) + amount


def consumption_impact(amount: float) -> float:
    """Outflows count as spend; inflows (refunds) reduce it."""
    return abs(amount) if amount < 0 else -amount


def aggregate_actuals(
    transactions: Iterable[Transaction], interval: Optional[Period] = None
) -> BudgetActuals:
    actuals = BudgetActuals()
    for txn in transactions:
        if txn.is_hidden:
            continue
        if interval is not None and not interval.contains(txn.date):
            continue
        impact = consumption_impact(txn.amount)
        is_movement = txn.type in (TransactionType.transfer, TransactionType.income)

        if txn.bucket_id and txn.bucket_id not in UNALLOCATED_BUCKET_IDS:
            if is_movement:
                _add(actuals.funding_by_bucket, txn.bucket_id, abs(txn.amount))
            elif txn.type == TransactionType.expense:
                _add(actuals.consumption_by_bucket, txn.bucket_id, impact)
            _add(actuals.spent_by_bucket, txn.bucket_id, impact)
        elif is_movement and txn.account_id:
            _add(actuals.account_unallocated_net, txn.account_id, txn.amount)

        if txn.account_id:
            _add(actuals.spent_by_account, txn.account_id, impact)
            if is_movement:
                _add(actuals.account_transfer_net, txn.account_id, txn.amount)
    return actuals


def reimbursement_map(transactions: Iterable[Transaction]) -> dict[str, float]:
    """Total reimbursed per expense id, from visible reimbursement transactions."""
    totals: dict[str, float] = {}
    for txn in transactions:
        if not txn.is_hidden and txn.linked_expense_id:
            _add(totals, txn.linked_expense_id, txn.amount)
    return totals


def effective_amount(txn: Transaction, reimbursements: dict[str, float]) -> float:
    if txn.linked_expense_id:
        return 0.0
    return txn.amount + reimbursements.get(txn.id, 0.0)


@dataclass(frozen=True)
class GroupProgress:
    group_id: str
    name: str
    limit: float
    spent: float

    @property
    def remaining(self) -> float:
        return self.limit - self.spent


def budget_group_spend(
    groups: Sequence[BudgetGroup],
    sub_categories: Sequence[SubCategory],
    transactions: Iterable[Transaction],
    interval: Optional[Period] = None,
) -> dict[str, float]:
    """
    Expense spend per budget group, attributed through the sub-category's group.
    The catch-all group (if any) also takes spend no other group claims.
    """
    group_ids = {g.id for g in groups}
    catch_all = next((g.id for g in groups if g.is_catch_all), None)
    group_by_sub = {
        s.id: s.budget_group_id
        for s in sub_categories
        if s.budget_group_id in group_ids
    }
    txns = [t for t in transactions if not t.is_hidden]
    reimbursements = reimbursement_map(txns)

    spend: dict[str, float] = {g.id: 0.0 for g in groups}
    for txn in txns:
        if txn.type != TransactionType.expense:
            continue
        if interval is not None and not interval.contains(txn.date):
            continue
        group_id = group_by_sub.get(txn.category_sub_id or "")
        if group_id is None:
            if txn.bucket_id or catch_all is None:
                continue
            group_id = catch_all
        _add(spend, group_id, consumption_impact(effective_amount(txn, reimbursements)))
    return spend


def budget_group_progress(
    groups: Sequence[BudgetGroup],
    sub_categories: Sequence[SubCategory],
    transactions: Iterable[Transaction],
    month_key: str,
    payday: int,
    templates: Sequence[BudgetTemplate] = (),
    configs: Sequence[MonthConfig] = (),
) -> list[GroupProgress]:
    interval = budget_interval(month_key, payday)
    if interval is None:
        return []
    spend = budget_group_spend(groups, sub_categories, transactions, interval)
    return [
        GroupProgress(
            group_id=group.id,
            name=group.name,
            limit=effective_group_limit(group, month_key, templates, configs),
            spent=spend.get(group.id, 0.0),
        )
        for group in groups
    ]


def user_income(user: User, month_key: str) -> float:
    data = user.income_data.get(month_key)
    if data is None:
        return 0.0
    return data.salary + data.child_benefit + data.insurance


def total_family_income(users: Iterable[User], month_key: str) -> float:
    return sum(user_income(user, month_key) for user in users)


AVERAGE_MONTHS = 3


def sub_category_average(
    sub_id: str,
    month_key: str,
    payday: int,
    transactions: Iterable[Transaction],
) -> float:
    """
    Mean monthly expense on a sub-category over the three budget months before
    ``month_key``, after reimbursements. Months without spending count as zero.
    """
    if not is_valid_month_key(month_key):
        return 0.0
    first = budget_interval(add_months(month_key, -AVERAGE_MONTHS), payday)
    last = budget_interval(add_months(month_key, -1), payday)
    if first is None or last is None:
        return 0.0
    window = Period("average", first.start, last.end)

    txns = [t for t in transactions if not t.is_hidden]
    reimbursements = reimbursement_map(txns)
    total = 0.0
    for txn in txns:
        if txn.category_sub_id != sub_id or not window.contains(txn.date):
            continue
        is_expense = txn.type == TransactionType.expense or (
            txn.type is None and txn.amount < 0
        )
        if is_expense:
            total += abs(effective_amount(txn, reimbursements))
    return float(round(total / AVERAGE_MONTHS))
