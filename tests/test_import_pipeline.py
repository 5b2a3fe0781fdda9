from datetime import date

from ai_classifier import ClassificationUniverse, Suggestion
from import_pipeline import (
    apply_user_edit,
    deduplicate,
    is_ready,
    partition_ready,
    run_ai_pass,
    run_import_pipeline,
    to_verified,
)
from models import MatchType, RuleMatchType, RuleSign, TransactionType
from schemas import (
    AppSettings,
    Bucket,
    ImportRule,
    MainCategory,
    RawTransaction,
    StagedTransaction,
    SubCategory,
    Transaction,
)

SAVINGS = Bucket(id="b-save", name="Sparkonto", type="FIXED")
GROCERY_RULE = ImportRule(
    id="r1",
    keyword="ica",
    target_type=TransactionType.expense,
    target_category_main_id="2",
    target_category_sub_id="201",
)
UNIVERSE = ClassificationUniverse(
    buckets=[SAVINGS],
    main_categories=[
        MainCategory(id="2", name="Mat"),
        MainCategory(id="3", name="Resa"),
    ],
    sub_categories=[SubCategory(id="201", main_category_id="2", name="Matvaror")],
)


def _raw(description: str, amount: float, day: int = 1) -> RawTransaction:
    return RawTransaction(
        account_id="a1", date=date(2025, 3, day), amount=amount, description=description
    )


def _staged(txn_id: str, description: str, amount: float, **extra) -> StagedTransaction:
    return StagedTransaction(
        id=txn_id,
        account_id="a1",
        date=date(2025, 3, 1),
        amount=amount,
        description=description,
        **extra,
    )


def test_dedup_drops_rows_seen_before() -> None:
    existing = [
        Transaction(
            id="t1",
            account_id="a1",
            date=date(2025, 3, 1),
            amount=-45.5,
            description="ICA",
        )
    ]
    fresh = deduplicate([_raw("ICA", -45.5), _raw("ICA", -45.5, day=2)], existing)
    assert [r.date for r in fresh] == [date(2025, 3, 2)]


def test_reimport_of_staged_rows_is_idempotent() -> None:
    raw = [_raw("ICA Maxi", -450), _raw("Lön", 25000)]
    first = run_import_pipeline(raw, [], [GROCERY_RULE], [SAVINGS])
    second = run_import_pipeline(raw, first, [GROCERY_RULE], [SAVINGS])
    assert len(first) == 2
    assert second == []


def test_rule_wins_over_history() -> None:
    def history(account_id: str, description: str) -> Transaction:
        return Transaction(
            id="old",
            account_id=account_id,
            date=date(2025, 1, 1),
            amount=-10,
            description=description,
            type=TransactionType.expense,
            category_main_id="3",
        )

    raw = [_raw("ICA Maxi", -450)]
    [txn] = run_import_pipeline(raw, [], [GROCERY_RULE], [], history)
    assert txn.match_type == MatchType.rule
    assert txn.category_main_id == "2"
    assert txn.category_sub_id == "201"


def test_rule_sign_filter() -> None:
    refunds_only = GROCERY_RULE.model_copy(update={"sign": RuleSign.positive})
    [txn] = run_import_pipeline([_raw("ICA Maxi", -450)], [], [refunds_only], [])
    assert txn.match_type is None
    assert txn.type == TransactionType.expense


def test_rule_match_types() -> None:
    exact = ImportRule(
        id="r2",
        keyword="netflix",
        match_type=RuleMatchType.exact,
        target_type=TransactionType.expense,
        target_category_main_id="4",
    )
    raw = [_raw("Netflix", -129), _raw("Netflix Premium", -199)]
    matched = run_import_pipeline(raw, [], [exact], [])
    assert [t.match_type for t in matched] == [MatchType.rule, None]


def test_history_used_when_no_rule_matches() -> None:
    def history(account_id: str, description: str) -> Transaction:
        return Transaction(
            id="old",
            account_id=account_id,
            date=date(2025, 1, 1),
            amount=-99,
            description=description,
            type=TransactionType.expense,
            category_main_id="3",
            category_sub_id="301",
        )

    raw = [_raw("SL Access", -99)]
    [txn] = run_import_pipeline(raw, [], [GROCERY_RULE], [], history)
    assert txn.match_type == MatchType.history
    assert txn.category_main_id == "3"
    assert txn.category_sub_id == "301"


def test_failing_history_lookup_falls_through_to_heuristics() -> None:
    def history(account_id: str, description: str) -> Transaction:
        raise RuntimeError("database is locked")

    [txn] = run_import_pipeline([_raw("SL Access", -99)], [], [], [], history)
    assert txn.match_type is None
    assert txn.type == TransactionType.expense
    assert txn.category_main_id is None


def test_heuristics_by_keyword_and_sign() -> None:
    raw = [
        _raw("Överföring Sparkonto", -1000),
        _raw("Överföring okänd", -500),
        _raw("Swish från Erik", 200),
        _raw("Kiosken", -25),
    ]
    transfer, unknown, income, expense = run_import_pipeline(raw, [], [], [SAVINGS])

    assert transfer.type == TransactionType.transfer
    assert transfer.bucket_id == "b-save"
    assert transfer.match_type == MatchType.ai

    assert unknown.type == TransactionType.transfer
    assert unknown.bucket_id is None
    assert unknown.match_type is None

    assert income.type == TransactionType.income
    assert income.category_main_id == "9"

    assert expense.type == TransactionType.expense
    assert expense.category_main_id is None


class FailingClassifier:
    def suggest(self, batch, universe):
        raise RuntimeError("timeout")


class FixedClassifier:
    def __init__(self, answers):
        self.answers = answers
        self.seen = []

    def suggest(self, batch, universe):
        self.seen = [t.id for t in batch]
        return self.answers


def test_classifier_failure_leaves_rows_unchanged() -> None:
    staged = [_staged("s1", "Okänt köp", -80, type=TransactionType.expense)]
    assert run_ai_pass(staged, FailingClassifier(), UNIVERSE) == staged


def test_classifier_only_fills_unclassified_rows() -> None:
    staged = [
        _staged("s1", "Okänt köp", -80, type=TransactionType.expense),
        _staged(
            "s2",
            "ICA",
            -120,
            type=TransactionType.expense,
            category_main_id="2",
            category_sub_id="201",
            match_type=MatchType.rule,
        ),
        _staged("s3", "Något", -10, type=TransactionType.expense),
    ]
    classifier = FixedClassifier(
        {
            "s1": Suggestion(category_main_id="2", category_sub_id="201"),
            "s2": Suggestion(category_main_id="3"),
            "s3": Suggestion(bucket_id="no-such-bucket"),
        }
    )

    s1, s2, s3 = run_ai_pass(staged, classifier, UNIVERSE)

    assert classifier.seen == ["s1", "s3"]
    assert s1.match_type == MatchType.ai
    assert s1.category_sub_id == "201"
    assert s2 == staged[1]
    assert s3 == staged[2]


def test_classifier_sub_category_must_belong_to_main() -> None:
    staged = [_staged("s1", "Okänt köp", -80, type=TransactionType.expense)]
    classifier = FixedClassifier(
        {"s1": Suggestion(category_main_id="3", category_sub_id="201")}
    )
    [txn] = run_ai_pass(staged, classifier, UNIVERSE)
    assert txn.category_main_id == "3"
    assert txn.category_sub_id is None


def test_edit_approves_row_and_propagates_to_similar_rows() -> None:
    settings = AppSettings()
    staged = [
        _staged("s1", "Pressbyrån", -35, type=TransactionType.expense),
        _staged("s2", "Pressbyrån", -42, type=TransactionType.expense),
        _staged("s3", "Pressbyrån", 35, type=TransactionType.income),
    ]

    edited = apply_user_edit(staged, "s1", "category_main_id", "2", settings)

    assert edited[0].is_manually_approved
    assert edited[0].match_type is None
    assert edited[0].category_main_id == "2"
    assert edited[1].category_main_id == "2"
    assert edited[1].match_type == MatchType.history
    assert not edited[1].is_manually_approved
    assert edited[2] == staged[2]


def test_type_change_clears_inapplicable_fields() -> None:
    staged = [
        _staged(
            "s1",
            "Överföring",
            -500,
            type=TransactionType.expense,
            category_main_id="2",
            category_sub_id="201",
        )
    ]
    [txn] = apply_user_edit(staged, "s1", "type", "TRANSFER", AppSettings())
    assert txn.type == TransactionType.transfer
    assert txn.category_main_id is None
    assert txn.category_sub_id is None


def test_readiness_needs_data_and_approval() -> None:
    settings = AppSettings(auto_approve_expense=True, auto_approve_income=False)
    complete_rule = _staged(
        "s1",
        "ICA",
        -100,
        type=TransactionType.expense,
        category_main_id="2",
        category_sub_id="201",
        match_type=MatchType.rule,
    )
    missing_sub = _staged(
        "s2",
        "ICA",
        -100,
        type=TransactionType.expense,
        category_main_id="2",
        is_manually_approved=True,
    )
    history_income = _staged(
        "s3",
        "Lön",
        25000,
        type=TransactionType.income,
        category_main_id="9",
        match_type=MatchType.history,
    )
    ai_transfer = _staged(
        "s4",
        "Sparkonto",
        -500,
        type=TransactionType.transfer,
        bucket_id="b-save",
        match_type=MatchType.ai,
    )

    assert is_ready(complete_rule, settings)
    assert not is_ready(complete_rule, AppSettings(auto_approve_expense=False))
    assert not is_ready(missing_sub, settings)
    assert not is_ready(history_income, settings)
    assert not is_ready(ai_transfer, AppSettings(auto_approve_transfer=True))

    approved = ai_transfer.model_copy(update={"is_manually_approved": True})
    ready, pending = partition_ready(
        [complete_rule, missing_sub, history_income, approved], settings
    )
    assert [t.id for t in ready] == ["s1", "s4"]
    assert [t.id for t in pending] == ["s2", "s3"]


def test_verified_transaction_drops_staging_fields() -> None:
    txn = to_verified(
        _staged(
            "s1",
            "ICA",
            -100,
            type=TransactionType.expense,
            match_type=MatchType.rule,
            is_manually_approved=True,
        )
    )
    assert isinstance(txn, Transaction)
    assert not isinstance(txn, StagedTransaction)
    assert txn.is_verified
    assert "match_type" not in txn.model_dump()
