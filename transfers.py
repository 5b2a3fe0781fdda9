from dataclasses import dataclass
from typing import Iterable

from schemas import Transaction


@dataclass(frozen=True)
class TransferPair:
    outgoing: Transaction
    incoming: Transaction


def find_transfer_pairs(transactions: Iterable[Transaction]) -> list[TransferPair]:
    """
    Opposite-signed rows on the same day in two different accounts, each row used
    at most once. Rows already linked to a counterpart are ignored; for every
    row the first suitable counterpart in input order wins.
    """
    candidates = [t for t in transactions if not t.linked_transaction_id]
    used: set[str] = set()
    pairs: list[TransferPair] = []
    for first in candidates:
        if first.id in used:
            continue
        for second in candidates:
            if (
                second.id == first.id
                or second.id in used
                or second.account_id == first.account_id
                or second.date != first.date
                or second.amount != -first.amount
            ):
                continue
            if first.amount < 0:
                pairs.append(TransferPair(outgoing=first, incoming=second))
            else:
                pairs.append(TransferPair(outgoing=second, incoming=first))
            used.update({first.id, second.id})
            break
    return pairs


def is_similar_pair(a: TransferPair, b: TransferPair) -> bool:
    """Same descriptions and amount, e.g. a monthly standing transfer."""
    return (
        a.outgoing.description == b.outgoing.description
        and a.incoming.description == b.incoming.description
        and a.outgoing.amount == b.outgoing.amount
    )
