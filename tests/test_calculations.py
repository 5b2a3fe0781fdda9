from datetime import date

import pytest

from calculations import (
    INTERNAL_BUCKET_ID,
    aggregate_actuals,
    bucket_cost,
    budget_group_progress,
    budget_group_spend,
    calculate_daily_bucket_cost,
    calculate_daily_bucket_cost_so_far,
    calculate_fixed_bucket_cost,
    calculate_goal_bucket_cost,
    calculate_saved_amount,
    sub_category_average,
    total_family_income,
    weekday_number,
)
from models import BucketType, PaymentSource, TransactionType
from periods import budget_interval, month_range
from schemas import (
    Bucket,
    BucketMonthData,
    BudgetGroup,
    BudgetGroupMonthData,
    IncomeMonthData,
    SubCategory,
    Transaction,
    User,
)

WEEKDAYS = [1, 2, 3, 4, 5]
MONTHS = ("2025-01", "2025-02", "2025-03")


def _goal(**extra) -> Bucket:
    return Bucket(
        id="trip",
        name="Trip",
        type=BucketType.goal,
        target_amount=6000,
        start_saving_date="2025-01",
        target_date="2025-04",
        **extra,
    )


def _txn(txn_id: str, amount: float, type_: TransactionType, **extra) -> Transaction:
    values = {"account_id": "a1", "date": date(2025, 3, 1), "description": txn_id}
    values.update(extra)
    return Transaction(id=txn_id, amount=amount, type=type_, **values)


def test_weekday_numbers_start_on_sunday() -> None:
    assert weekday_number(date(2025, 3, 2)) == 0
    assert weekday_number(date(2025, 3, 3)) == 1
    assert weekday_number(date(2025, 3, 1)) == 6


def test_goal_spreads_target_evenly() -> None:
    goal = _goal()
    costs = [calculate_goal_bucket_cost(goal, m) for m in MONTHS]
    assert costs == [2000, 2000, 2000]
    assert calculate_goal_bucket_cost(goal, "2025-04") == 0
    assert calculate_goal_bucket_cost(goal, "2024-12") == 0


def test_goal_reamortizes_after_recorded_contribution() -> None:
    goal = _goal(monthly_data={"2025-01": BucketMonthData(amount=1000)})
    costs = [calculate_goal_bucket_cost(goal, m) for m in MONTHS]
    assert costs == [1000, 2500, 2500]
    assert sum(costs) == 6000


def test_goal_deleted_month_contributes_nothing_and_later_months_catch_up() -> None:
    goal = _goal(
        monthly_data={"2025-02": BucketMonthData(amount=0, is_explicitly_deleted=True)}
    )
    costs = [calculate_goal_bucket_cost(goal, m) for m in MONTHS]
    assert costs == [2000, 0, 4000]


def test_goal_contributions_sum_to_target_around_a_recorded_month() -> None:
    goal = Bucket(
        id="car",
        name="Car",
        type=BucketType.goal,
        target_amount=12000,
        start_saving_date="2024-01",
        target_date="2025-01",
        monthly_data={"2024-06": BucketMonthData(amount=500)},
    )
    months = month_range("2024-01", "2024-12")
    costs = [calculate_goal_bucket_cost(goal, m) for m in months]

    assert costs[:5] == [1000] * 5
    assert costs[5] == 500
    assert costs[6:] == pytest.approx([6500 / 6] * 6)
    assert sum(costs) == pytest.approx(12000)
    assert calculate_goal_bucket_cost(goal, "2025-01") == 0
    assert calculate_saved_amount(goal, "2024-12") == pytest.approx(12000)


def test_saved_amount_accumulates_and_caps_at_target() -> None:
    goal = _goal()
    assert calculate_saved_amount(goal, "2025-02") == 4000
    assert calculate_saved_amount(goal, "2025-03") == 6000
    assert calculate_saved_amount(goal, "2025-09") == 6000


def test_balance_funded_goal_costs_nothing() -> None:
    goal = _goal(payment_source=PaymentSource.balance)
    assert calculate_goal_bucket_cost(goal, "2025-02") == 0
    assert calculate_saved_amount(goal, "2025-02") == 6000


def test_fixed_cost_is_zero_for_deleted_month() -> None:
    bucket = Bucket(
        id="rent",
        name="Rent",
        type=BucketType.fixed,
        monthly_data={
            "2025-01": BucketMonthData(amount=9000),
            "2025-03": BucketMonthData(is_explicitly_deleted=True),
        },
    )
    assert calculate_fixed_bucket_cost(bucket, "2025-02") == 9000
    assert calculate_fixed_bucket_cost(bucket, "2025-03") == 0


def test_daily_cost_counts_active_weekdays_in_budget_month() -> None:
    lunch = Bucket(
        id="lunch",
        name="Lunch",
        type=BucketType.daily,
        monthly_data={
            "2025-03": BucketMonthData(daily_amount=100, active_days=WEEKDAYS)
        },
    )
    # 2025-02-25 .. 2025-03-24 is exactly four weeks
    assert calculate_daily_bucket_cost(lunch, "2025-03", 25) == 2000
    assert bucket_cost(lunch, "2025-03", 25) == 2000

    so_far = calculate_daily_bucket_cost_so_far(
        lunch, "2025-03", 25, today=date(2025, 3, 2)
    )
    assert so_far == 400
    before = calculate_daily_bucket_cost_so_far(
        lunch, "2025-03", 25, today=date(2025, 2, 1)
    )
    assert before == 0


def test_payout_bucket_cost_uses_exact_month_only() -> None:
    payout = Bucket(
        id="payout",
        name="Trip payout",
        type=BucketType.goal,
        linked_goal_id="trip",
        monthly_data={"2025-04": BucketMonthData(amount=5500)},
    )
    assert bucket_cost(payout, "2025-04", 25) == 5500
    assert bucket_cost(payout, "2025-05", 25) == 0


def test_actuals_split_funding_consumption_and_unallocated() -> None:
    period = budget_interval("2025-03", 25)
    transactions = [
        _txn("groceries", -100, TransactionType.expense, bucket_id="food"),
        _txn("refund", 30, TransactionType.expense, bucket_id="food"),
        _txn("funding", 500, TransactionType.transfer, bucket_id="food"),
        _txn(
            "internal", -200, TransactionType.transfer, bucket_id=INTERNAL_BUCKET_ID
        ),
        _txn(
            "hidden", -999, TransactionType.expense, bucket_id="food", is_hidden=True
        ),
        _txn(
            "outside",
            -50,
            TransactionType.expense,
            bucket_id="food",
            date=date(2025, 4, 1),
        ),
    ]

    actuals = aggregate_actuals(transactions, period)

    assert actuals.consumption_by_bucket == {"food": 70}
    assert actuals.funding_by_bucket == {"food": 500}
    assert INTERNAL_BUCKET_ID not in actuals.spent_by_bucket
    assert actuals.account_unallocated_net == {"a1": -200}
    assert actuals.account_transfer_net == {"a1": 300}


def test_group_spend_nets_reimbursements_and_fills_catch_all() -> None:
    groups = [
        BudgetGroup(
            id="food",
            name="Food",
            monthly_data={"2025-03": BudgetGroupMonthData(limit=1000)},
        ),
        BudgetGroup(id="other", name="Other", is_catch_all=True),
    ]
    subs = [
        SubCategory(
            id="201", main_category_id="2", name="Groceries", budget_group_id="food"
        )
    ]
    transactions = [
        _txn(
            "dinner",
            -200,
            TransactionType.expense,
            category_main_id="2",
            category_sub_id="201",
        ),
        _txn("swish back", 50, TransactionType.income, linked_expense_id="dinner"),
        _txn("kiosk", -50, TransactionType.expense),
        _txn("bucket spend", -40, TransactionType.expense, bucket_id="lunch"),
    ]

    spend = budget_group_spend(groups, subs, transactions)
    assert spend == {"food": 150, "other": 50}

    progress = budget_group_progress(groups, subs, transactions, "2025-03", 25)
    food = next(p for p in progress if p.group_id == "food")
    assert food.limit == 1000
    assert food.remaining == 850


def test_family_income_sums_salary_benefits_and_insurance() -> None:
    users = [
        User(
            id="u1",
            name="Anna",
            income_data={
                "2025-03": IncomeMonthData(
                    salary=30000, child_benefit=1250, insurance=500
                )
            },
        ),
        User(
            id="u2",
            name="Erik",
            income_data={"2025-03": IncomeMonthData(salary=28000)},
        ),
    ]
    assert total_family_income(users, "2025-03") == 59750
    assert total_family_income(users, "2025-04") == 0


def test_sub_category_average_covers_three_budget_months_after_reimbursements() -> None:
    def grocery(txn_id: str, day: date, amount: float, **extra) -> Transaction:
        return _txn(
            txn_id,
            amount,
            TransactionType.expense,
            date=day,
            category_sub_id="201",
            **extra,
        )

    transactions = [
        grocery("before window", date(2024, 12, 24), -999),
        grocery("december", date(2024, 12, 25), -300),
        grocery("february", date(2025, 2, 10), -600),
        _txn(
            "swish back",
            300,
            TransactionType.income,
            date=date(2025, 2, 12),
            linked_expense_id="february",
        ),
        grocery("hidden", date(2025, 3, 1), -5000, is_hidden=True),
        grocery("after window", date(2025, 3, 25), -999),
        _txn(
            "refund",
            100,
            TransactionType.income,
            date=date(2025, 3, 1),
            category_sub_id="201",
        ),
    ]

    assert sub_category_average("201", "2025-04", 25, transactions) == 200
    assert sub_category_average("202", "2025-04", 25, transactions) == 0
    assert sub_category_average("201", "2025-4", 25, transactions) == 0
