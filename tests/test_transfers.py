from datetime import date

from schemas import Transaction
from transfers import TransferPair, find_transfer_pairs, is_similar_pair


def _txn(txn_id: str, account_id: str, amount: float, **extra) -> Transaction:
    values = {"date": date(2025, 3, 1), "description": f"Överföring {txn_id}"}
    values.update(extra)
    return Transaction(id=txn_id, account_id=account_id, amount=amount, **values)


def test_pairs_opposite_amounts_on_other_accounts() -> None:
    out = _txn("out", "checking", -1000)
    into = _txn("in", "savings", 1000)
    same_account = _txn("same", "checking", 1000)
    other_day = _txn("later", "savings", 1000, date=date(2025, 3, 2))

    pairs = find_transfer_pairs([into, same_account, other_day, out])

    assert pairs == [TransferPair(outgoing=out, incoming=into)]


def test_each_row_is_paired_once_and_linked_rows_are_skipped() -> None:
    out = _txn("out", "checking", -500)
    first = _txn("in-1", "savings", 500)
    second = _txn("in-2", "buffer", 500)
    linked = _txn("old", "buffer", -500, linked_transaction_id="x")

    pairs = find_transfer_pairs([out, first, second, linked])

    assert len(pairs) == 1
    assert pairs[0].incoming.id == "in-1"


def test_similar_pairs_share_descriptions_and_amount() -> None:
    march = TransferPair(
        outgoing=_txn("o1", "checking", -2000, description="Spar"),
        incoming=_txn("i1", "savings", 2000, description="Från lönekonto"),
    )
    april = TransferPair(
        outgoing=_txn("o2", "checking", -2000, description="Spar"),
        incoming=_txn("i2", "savings", 2000, description="Från lönekonto"),
    )
    bigger = TransferPair(
        outgoing=_txn("o3", "checking", -3000, description="Spar"),
        incoming=_txn("i3", "savings", 3000, description="Från lönekonto"),
    )
    assert is_similar_pair(march, april)
    assert not is_similar_pair(march, bigger)
