from models import BucketType
from resolution import (
    effective_group_limit,
    effective_sub_category_budget,
    is_bucket_active_in_month,
    resolve_bucket,
)
from schemas import (
    Bucket,
    BucketMonthData,
    BudgetGroup,
    BudgetGroupMonthData,
    BudgetTemplate,
    MonthConfig,
    SubCategory,
)


def _fixed(monthly: dict[str, float]) -> Bucket:
    return Bucket(
        id="rent",
        name="Rent",
        type=BucketType.fixed,
        monthly_data={
            key: BucketMonthData(amount=amount)
            for key, amount in monthly.items()
        },
    )


def test_direct_month_data_wins_over_older_months() -> None:
    bucket = _fixed({"2025-01": 100, "2025-03": 150})
    effective = resolve_bucket(bucket, "2025-03")
    assert effective.source == "direct"
    assert not effective.is_inherited
    assert effective.data.amount == 150


def test_missing_month_inherits_from_last_recorded_month() -> None:
    bucket = _fixed({"2025-01": 100})
    effective = resolve_bucket(bucket, "2025-04")
    assert effective.source == "inherited"
    assert effective.is_inherited
    assert effective.data.amount == 100


def test_inheritance_stops_after_twelve_months() -> None:
    bucket = _fixed({"2025-01": 100})
    assert resolve_bucket(bucket, "2026-01").is_live
    assert resolve_bucket(bucket, "2026-02").data is None


def test_deleted_month_blocks_inheritance() -> None:
    bucket = _fixed({"2025-01": 100})
    bucket.monthly_data["2025-02"] = BucketMonthData(is_explicitly_deleted=True)

    deleted = resolve_bucket(bucket, "2025-02")
    assert deleted.is_deleted
    assert not deleted.is_live
    assert resolve_bucket(bucket, "2025-03").data is None


def test_default_template_beats_bucket_data_and_override_beats_template() -> None:
    bucket = _fixed({"2025-01": 100})
    template = BudgetTemplate(
        id="t1",
        name="Standard",
        is_default=True,
        bucket_values={"rent": BucketMonthData(amount=300)},
    )
    effective = resolve_bucket(bucket, "2025-03", [template])
    assert effective.source == "template"
    assert effective.template_name == "Standard"
    assert effective.data.amount == 300

    config = MonthConfig(
        month_key="2025-03", bucket_overrides={"rent": BucketMonthData(amount=50)}
    )
    effective = resolve_bucket(bucket, "2025-03", [template], [config])
    assert effective.source == "override"
    assert effective.data.amount == 50


def test_month_config_selects_template_and_unknown_template_means_none() -> None:
    bucket = _fixed({"2025-01": 100})
    default = BudgetTemplate(
        id="t1",
        name="Standard",
        is_default=True,
        bucket_values={"rent": BucketMonthData(amount=300)},
    )
    summer = BudgetTemplate(
        id="t2", name="Summer", bucket_values={"rent": BucketMonthData(amount=200)}
    )
    picked = MonthConfig(month_key="2025-06", template_id="t2")
    missing = MonthConfig(month_key="2025-07", template_id="gone")

    june = resolve_bucket(bucket, "2025-06", [default, summer], [picked, missing])
    assert june.template_name == "Summer"
    assert june.data.amount == 200

    july = resolve_bucket(bucket, "2025-07", [default, summer], [picked, missing])
    assert july.source == "inherited"
    assert july.data.amount == 100


def test_archive_wall_hides_later_months() -> None:
    bucket = _fixed({"2025-01": 100})
    bucket.archived_date = "2025-02"
    assert resolve_bucket(bucket, "2025-02").is_live
    assert resolve_bucket(bucket, "2025-03").data is None


def test_payout_bucket_only_uses_its_exact_month() -> None:
    payout = Bucket(
        id="payout",
        name="Trip payout",
        type=BucketType.fixed,
        linked_goal_id="trip",
        monthly_data={"2025-05": BucketMonthData(amount=4000)},
    )
    assert resolve_bucket(payout, "2025-05").data.amount == 4000
    assert resolve_bucket(payout, "2025-06").data is None


def test_goal_is_active_from_start_until_target_month() -> None:
    goal = Bucket(
        id="trip",
        name="Trip",
        type=BucketType.goal,
        target_amount=6000,
        start_saving_date="2025-01",
        target_date="2025-04",
    )
    assert not is_bucket_active_in_month(goal, "2024-12")
    assert is_bucket_active_in_month(goal, "2025-01")
    assert is_bucket_active_in_month(goal, "2025-03")
    assert not is_bucket_active_in_month(goal, "2025-04")

    goal.archived_date = "2025-01"
    assert not is_bucket_active_in_month(goal, "2025-02")


def test_group_limit_resolution_order() -> None:
    group = BudgetGroup(
        id="food",
        name="Food",
        monthly_data={"2025-01": BudgetGroupMonthData(limit=5000)},
    )
    assert effective_group_limit(group, "2025-03") == 5000

    template = BudgetTemplate(
        id="t1", name="Standard", is_default=True, group_limits={"food": 6000}
    )
    assert effective_group_limit(group, "2025-03", [template]) == 6000

    config = MonthConfig(month_key="2025-03", group_overrides={"food": 0})
    assert effective_group_limit(group, "2025-03", [template], [config]) == 0


def test_sub_category_budget_falls_back_to_static_budget() -> None:
    sub = SubCategory(id="201", main_category_id="2", name="Groceries")
    assert effective_sub_category_budget(sub, "2025-03") == 0

    sub.monthly_budget = 3000
    assert effective_sub_category_budget(sub, "2025-03") == 3000

    template = BudgetTemplate(
        id="t1", name="Standard", is_default=True, sub_category_budgets={"201": 3500}
    )
    assert effective_sub_category_budget(sub, "2025-03", [template]) == 3500

    config = MonthConfig(month_key="2025-03", sub_category_overrides={"201": 4000})
    assert effective_sub_category_budget(sub, "2025-03", [template], [config]) == 4000


def test_goal_inherits_for_thirty_six_months() -> None:
    goal = Bucket(
        id="trip",
        name="Trip",
        type=BucketType.goal,
        monthly_data={"2022-01": BucketMonthData(amount=700)},
    )
    assert resolve_bucket(goal, "2025-01").data.amount == 700
    assert resolve_bucket(goal, "2025-02").data is None

    rent = _fixed({"2022-01": 700})
    assert resolve_bucket(rent, "2025-01").data is None


def test_backward_search_stops_at_the_first_month() -> None:
    bucket = _fixed({"0001-01": 100})
    assert resolve_bucket(bucket, "0001-03").data.amount == 100
    assert resolve_bucket(_fixed({}), "0001-01").data is None
    assert not is_bucket_active_in_month(_fixed({}), "0001-01")
