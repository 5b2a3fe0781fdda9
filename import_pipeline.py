"""
Classification of imported bank rows.

Passes run in a fixed order and a later pass never touches a row an earlier
pass already matched: dedup, rules, history, heuristics. The external
classifier runs afterwards as its own pass (``run_ai_pass``) so it can be
scheduled in the background and applied only to rows that are still
unclassified when it returns.
"""

import logging
from datetime import date
from typing import Callable, Iterable, Optional, Sequence
from uuid import uuid4

from rapidfuzz.distance import Levenshtein

from ai_classifier import (
    Classifier,
    ClassificationUniverse,
    Suggestion,
    safe_suggest,
)
from default_categories import GENERIC_INCOME_CATEGORY_ID
from models import (
    MatchType,
    RuleMatchType,
    RuleSign,
    TransactionSource,
    TransactionType,
)
from schemas import (
    AppSettings,
    Bucket,
    ImportRule,
    RawTransaction,
    StagedTransaction,
    Transaction,
)

logger = logging.getLogger(__name__)

TRANSFER_KEYWORDS = (
    "överföring",
    "till konto",
    "omsättning",
    "sparande",
    "flytt",
    "insättning",
    "girering",
)

CLASSIFICATION_FIELDS = ("type", "bucket_id", "category_main_id", "category_sub_id")

HistoryLookup = Callable[[str, str], Optional[Transaction]]


# --- dedup ---


def _format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return str(int(amount))
    return repr(float(amount))


def dedup_key(day: date, amount: float, description: str) -> str:
    """``date_amount_description``; identical same-day rows collide on purpose."""
    return f"{day.isoformat()}_{_format_amount(amount)}_{description}"


def deduplicate(
    raw: Sequence[RawTransaction], existing: Iterable[Transaction]
) -> list[RawTransaction]:
    seen = {dedup_key(t.date, t.amount, t.description) for t in existing}
    return [r for r in raw if dedup_key(r.date, r.amount, r.description) not in seen]


def stage(raw: RawTransaction) -> StagedTransaction:
    return StagedTransaction(
        id=str(uuid4()),
        account_id=raw.account_id,
        date=raw.date,
        amount=raw.amount,
        description=raw.description,
        source=TransactionSource.imported,
    )


def _classify(
    txn: StagedTransaction,
    type_: TransactionType,
    *,
    bucket_id: Optional[str] = None,
    category_main_id: Optional[str] = None,
    category_sub_id: Optional[str] = None,
    match_type: Optional[MatchType] = None,
) -> StagedTransaction:
    """Copy with a classification applied; fields not used by ``type_`` are cleared."""
    if type_ == TransactionType.transfer:
        category_main_id = category_sub_id = None
    else:
        bucket_id = None
    return txn.model_copy(
        update={
            "type": type_,
            "bucket_id": bucket_id,
            "category_main_id": category_main_id,
            "category_sub_id": category_sub_id,
            "match_type": match_type,
        }
    )


# --- rules ---


def rule_matches(rule: ImportRule, txn: StagedTransaction) -> bool:
    keyword = (rule.keyword or "").strip().lower()
    if not keyword:
        return False
    if rule.account_id and rule.account_id != txn.account_id:
        return False
    if rule.sign == RuleSign.positive and txn.amount <= 0:
        return False
    if rule.sign == RuleSign.negative and txn.amount >= 0:
        return False

    description = txn.description.lower()
    if rule.match_type == RuleMatchType.exact:
        return description == keyword
    if rule.match_type == RuleMatchType.starts_with:
        return description.startswith(keyword)
    return keyword in description


def find_rule(
    rules: Sequence[ImportRule], txn: StagedTransaction
) -> Optional[ImportRule]:
    for rule in rules:
        if rule_matches(rule, txn):
            return rule
    return None


def apply_rule(txn: StagedTransaction, rule: ImportRule) -> StagedTransaction:
    type_ = rule.target_type or (
        TransactionType.transfer if rule.target_bucket_id else TransactionType.expense
    )
    return _classify(
        txn,
        type_,
        bucket_id=rule.target_bucket_id,
        category_main_id=rule.target_category_main_id,
        category_sub_id=rule.target_category_sub_id,
        match_type=MatchType.rule,
    )


def apply_rules(
    staged: Sequence[StagedTransaction], rules: Sequence[ImportRule]
) -> list[StagedTransaction]:
    result: list[StagedTransaction] = []
    for txn in staged:
        rule = find_rule(rules, txn) if txn.match_type is None else None
        result.append(apply_rule(txn, rule) if rule else txn)
    return result


# --- history ---


def is_categorized(txn: Transaction) -> bool:
    return txn.type is not None and bool(txn.bucket_id or txn.category_main_id)


def apply_history(
    staged: Sequence[StagedTransaction], lookup: Optional[HistoryLookup]
) -> list[StagedTransaction]:
    if lookup is None:
        return list(staged)
    result: list[StagedTransaction] = []
    for txn in staged:
        if txn.match_type is not None:
            result.append(txn)
            continue
        try:
            previous = lookup(txn.account_id, txn.description)
        except Exception as exc:
            logger.warning(
                f"history_lookup_failed: description={txn.description!r} error={exc}"
            )
            previous = None
        if previous is None or not is_categorized(previous):
            result.append(txn)
            continue
        result.append(
            _classify(
                txn,
                previous.type,
                bucket_id=previous.bucket_id,
                category_main_id=previous.category_main_id,
                category_sub_id=previous.category_sub_id,
                match_type=MatchType.history,
            )
        )
    return result


# --- heuristics ---


def is_likely_transfer(description: str) -> bool:
    lower = description.lower()
    return any(keyword in lower for keyword in TRANSFER_KEYWORDS)


def guess_bucket(description: str, buckets: Sequence[Bucket]) -> Optional[Bucket]:
    """Bucket whose name appears in the description, else a unique near miss."""
    lower = description.lower()
    for bucket in buckets:
        name = bucket.name.strip().lower()
        if name and name in lower:
            return bucket

    words = [w for w in lower.replace(",", " ").split() if len(w) > 3]
    close: list[Bucket] = []
    for bucket in buckets:
        name = bucket.name.strip().lower()
        if not name or " " in name:
            continue
        if any(Levenshtein.distance(word, name) <= 1 for word in words):
            close.append(bucket)
    if len(close) == 1:
        return close[0]
    return None


def apply_heuristics(
    staged: Sequence[StagedTransaction], buckets: Sequence[Bucket]
) -> list[StagedTransaction]:
    result: list[StagedTransaction] = []
    for txn in staged:
        if txn.match_type is not None:
            result.append(txn)
        elif is_likely_transfer(txn.description):
            bucket = guess_bucket(txn.description, buckets)
            result.append(
                _classify(
                    txn,
                    TransactionType.transfer,
                    bucket_id=bucket.id if bucket else None,
                    match_type=MatchType.ai if bucket else None,
                )
            )
        elif txn.amount > 0:
            result.append(
                _classify(
                    txn,
                    TransactionType.income,
                    category_main_id=GENERIC_INCOME_CATEGORY_ID,
                )
            )
        else:
            result.append(_classify(txn, TransactionType.expense))
    return result


def run_import_pipeline(
    raw: Sequence[RawTransaction],
    existing: Iterable[Transaction],
    rules: Sequence[ImportRule],
    buckets: Sequence[Bucket],
    history_lookup: Optional[HistoryLookup] = None,
) -> list[StagedTransaction]:
    fresh = deduplicate(raw, existing)
    staged = [stage(r) for r in fresh]
    staged = apply_rules(staged, rules)
    staged = apply_history(staged, history_lookup)
    staged = apply_heuristics(staged, buckets)
    logger.info(
        "import_pipeline: "
        f"raw={len(raw)} duplicates={len(raw) - len(fresh)} "
        f"rule={sum(1 for t in staged if t.match_type == MatchType.rule)} "
        f"history={sum(1 for t in staged if t.match_type == MatchType.history)}"
    )
    return staged


# --- external classifier ---


def needs_classification(txn: StagedTransaction) -> bool:
    return (
        not txn.bucket_id
        and not txn.category_main_id
        and not txn.is_manually_approved
        and txn.match_type is None
    )


def _validated(
    suggestion: Suggestion, universe: ClassificationUniverse
) -> Optional[Suggestion]:
    if suggestion.bucket_id and suggestion.bucket_id in universe.bucket_ids:
        return Suggestion(bucket_id=suggestion.bucket_id)

    main_id = suggestion.category_main_id
    sub_id = suggestion.category_sub_id
    sub_parent = universe.sub_parent.get(sub_id or "")
    if sub_parent is None:
        sub_id = None
    elif not main_id:
        main_id = sub_parent
    elif sub_parent != main_id:
        sub_id = None
    if main_id and main_id in universe.main_ids:
        return Suggestion(category_main_id=main_id, category_sub_id=sub_id)
    return None


def apply_ai_suggestions(
    staged: Sequence[StagedTransaction],
    suggestions: dict[str, Optional[Suggestion]],
    universe: ClassificationUniverse,
) -> list[StagedTransaction]:
    result: list[StagedTransaction] = []
    for txn in staged:
        raw = suggestions.get(txn.id)
        suggestion = _validated(raw, universe) if raw else None
        if suggestion is None or not needs_classification(txn):
            result.append(txn)
        elif suggestion.bucket_id:
            result.append(
                _classify(
                    txn,
                    TransactionType.transfer,
                    bucket_id=suggestion.bucket_id,
                    match_type=MatchType.ai,
                )
            )
        else:
            type_ = (
                TransactionType.income
                if txn.type == TransactionType.income
                else TransactionType.expense
            )
            result.append(
                _classify(
                    txn,
                    type_,
                    category_main_id=suggestion.category_main_id,
                    category_sub_id=suggestion.category_sub_id,
                    match_type=MatchType.ai,
                )
            )
    return result


def run_ai_pass(
    staged: Sequence[StagedTransaction],
    classifier: Classifier,
    universe: ClassificationUniverse,
) -> list[StagedTransaction]:
    candidates = [t for t in staged if needs_classification(t)]
    if not candidates:
        return list(staged)
    suggestions = safe_suggest(classifier, candidates, universe)
    return apply_ai_suggestions(staged, suggestions, universe)


# --- user edits ---


def _edited(
    txn: StagedTransaction, field: str, value: object
) -> StagedTransaction:
    if field not in CLASSIFICATION_FIELDS:
        raise ValueError(f"Field '{field}' cannot be edited")
    update: dict[str, object] = {field: value or None}
    if field == "type":
        type_ = TransactionType(value) if value else None
        update["type"] = type_
        if type_ == TransactionType.transfer:
            update["category_main_id"] = None
            update["category_sub_id"] = None
        elif type_ is not None:
            update["bucket_id"] = None
    elif field == "category_main_id" and value != txn.category_main_id:
        update["category_sub_id"] = None
    return txn.model_copy(update=update)


def apply_user_edit(
    staged: Sequence[StagedTransaction],
    txn_id: str,
    field: str,
    value: object,
    settings: AppSettings,
) -> list[StagedTransaction]:
    """
    Apply a manual edit. The edited row becomes manually approved; other rows
    with the same description and sign that are not ready yet get the same
    change, tagged as a history match.
    """
    target = next((t for t in staged if t.id == txn_id), None)
    if target is None:
        raise ValueError("Staged transaction not found")

    result: list[StagedTransaction] = []
    for txn in staged:
        if txn.id == txn_id:
            edited = _edited(txn, field, value)
            result.append(
                edited.model_copy(
                    update={"match_type": None, "is_manually_approved": True}
                )
            )
        elif (
            txn.description == target.description
            and (txn.amount < 0) == (target.amount < 0)
            and not txn.is_verified
            and not is_ready(txn, settings)
        ):
            edited = _edited(txn, field, value)
            result.append(edited.model_copy(update={"match_type": MatchType.history}))
        else:
            result.append(txn)
    return result


def _set_approval(
    staged: Sequence[StagedTransaction], txn_id: str, approved: bool
) -> list[StagedTransaction]:
    if not any(t.id == txn_id for t in staged):
        raise ValueError("Staged transaction not found")
    update: dict[str, object] = {"is_manually_approved": approved}
    if not approved:
        update["match_type"] = None
    return [t.model_copy(update=update) if t.id == txn_id else t for t in staged]


def approve(
    staged: Sequence[StagedTransaction], txn_id: str
) -> list[StagedTransaction]:
    return _set_approval(staged, txn_id, True)


def unapprove(
    staged: Sequence[StagedTransaction], txn_id: str
) -> list[StagedTransaction]:
    return _set_approval(staged, txn_id, False)


# --- approval gate ---


def has_required_data(txn: Transaction) -> bool:
    if txn.type == TransactionType.transfer:
        return bool(txn.bucket_id)
    if txn.type == TransactionType.expense:
        return bool(txn.category_main_id and txn.category_sub_id)
    if txn.type == TransactionType.income:
        return bool(txn.category_main_id)
    return False


def auto_approve_enabled(
    type_: Optional[TransactionType], settings: AppSettings
) -> bool:
    if type_ == TransactionType.transfer:
        return settings.auto_approve_transfer
    if type_ == TransactionType.expense:
        return settings.auto_approve_expense
    if type_ == TransactionType.income:
        return settings.auto_approve_income
    return False


def is_ready(txn: StagedTransaction, settings: AppSettings) -> bool:
    if not has_required_data(txn):
        return False
    if txn.is_manually_approved:
        return True
    if txn.match_type not in (MatchType.rule, MatchType.history):
        return False
    return auto_approve_enabled(txn.type, settings)


def partition_ready(
    staged: Sequence[StagedTransaction], settings: AppSettings
) -> tuple[list[StagedTransaction], list[StagedTransaction]]:
    ready: list[StagedTransaction] = []
    pending: list[StagedTransaction] = []
    for txn in staged:
        (ready if is_ready(txn, settings) else pending).append(txn)
    return ready, pending


def to_verified(txn: StagedTransaction) -> Transaction:
    data = txn.model_dump(exclude={"match_type", "is_manually_approved"})
    data["is_verified"] = True
    return Transaction.model_validate(data)
