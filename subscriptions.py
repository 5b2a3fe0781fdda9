"""Spotting recurring card payments such as streaming or phone subscriptions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

import pandas as pd

from schemas import Transaction

MIN_OCCURRENCES = 3
MIN_AMOUNT = 10.0
# Relative spread of amounts (population std-dev / mean) still counted as stable.
STABLE_AMOUNT_SPREAD = 0.1
# More purchases per month than this is a habit (coffee, groceries).
MAX_PER_MONTH = 2.5
# Varying amounts only qualify when they come about once a month (power bills).
MAX_PER_MONTH_VARYING = 1.2
INTERVALS_CHECKED = 5

MONTHLY_GAP = (20, 45)
MONTHLY_AVERAGE = (25, 35)
YEARLY_GAP = (330, 400)


@dataclass
class SubscriptionCandidate:
    name: str
    avg_amount: float
    frequency: str  # "monthly" | "yearly"
    occurrences: int
    last_date: date
    account_id: str
    confidence: str  # "high" | "medium"
    transaction_ids: list[str] = field(default_factory=list)


def _outflow_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    rows = [
        {
            "id": t.id,
            "name": t.description.strip(),
            "date": t.date,
            "amount": abs(t.amount),
            "account_id": t.account_id,
        }
        for t in transactions
        if not t.is_hidden and t.amount < 0 and abs(t.amount) >= MIN_AMOUNT
    ]
    frame = pd.DataFrame(
        rows, columns=["id", "name", "date", "amount", "account_id"]
    )
    frame["date"] = pd.to_datetime(frame["date"])
    return frame


def _within(value: float, bounds: tuple[int, int]) -> bool:
    return bounds[0] <= value <= bounds[1]


def _frequency(gaps: pd.Series) -> Optional[str]:
    if gaps.empty:
        return None
    if all(_within(g, MONTHLY_GAP) for g in gaps) and _within(
        gaps.mean(), MONTHLY_AVERAGE
    ):
        return "monthly"
    if all(_within(g, YEARLY_GAP) for g in gaps):
        return "yearly"
    return None


def _assess(name: str, group: pd.DataFrame) -> Optional[SubscriptionCandidate]:
    if len(group) < MIN_OCCURRENCES:
        return None
    newest_first = group.sort_values("date", ascending=False)
    dates = newest_first["date"]
    span_days = (dates.iloc[0] - dates.iloc[-1]).days
    if span_days == 0:
        return None

    per_month = len(group) / max(1.0, span_days / 30)
    if per_month > MAX_PER_MONTH:
        return None

    amounts = newest_first["amount"]
    avg = float(amounts.mean())
    stable = float(amounts.std(ddof=0)) < avg * STABLE_AMOUNT_SPREAD
    gaps = (-dates.diff()).dropna().dt.days.head(INTERVALS_CHECKED)
    frequency = _frequency(gaps)

    if frequency is None:
        return None
    if stable:
        confidence = "high"
    elif frequency == "monthly" and per_month <= MAX_PER_MONTH_VARYING:
        confidence = "medium"
    else:
        return None

    newest = newest_first.iloc[0]
    return SubscriptionCandidate(
        name=name,
        avg_amount=float(round(avg)),
        frequency=frequency,
        occurrences=len(group),
        last_date=newest["date"].date(),
        account_id=newest["account_id"],
        confidence=confidence,
        transaction_ids=list(newest_first["id"]),
    )


def detect_subscriptions(
    transactions: Iterable[Transaction],
) -> list[SubscriptionCandidate]:
    """
    Outflows grouped by description. A group is a subscription when it has at
    least three payments, is not bought several times a month, and its gaps
    are roughly monthly or yearly. Stable amounts give high confidence; a
    monthly bill with varying amounts gives medium confidence. Most
    expensive first.
    """
    frame = _outflow_frame(transactions)
    if frame.empty:
        return []
    candidates = []
    for name, group in frame.groupby("name", sort=False):
        candidate = _assess(name, group)
        if candidate is not None:
            candidates.append(candidate)
    return sorted(candidates, key=lambda c: c.avg_amount, reverse=True)
