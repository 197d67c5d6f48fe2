import re

import pytest

from payments.txn_ids import TransactionIdGenerator


def test_id_is_prefix_millis_and_suffix():
    gen = TransactionIdGenerator(clock=lambda: 1718000000.123)
    txn = gen.generate("QR")
    assert re.fullmatch(r"QR1718000000123[a-z0-9]{6}", txn)


def test_ids_are_unique_within_the_same_millisecond():
    gen = TransactionIdGenerator(clock=lambda: 1718000000.0)
    ids = {gen.generate("UPI") for _ in range(500)}
    assert len(ids) == 500


def test_timestamp_never_moves_backwards():
    ticks = iter([1718000001.0, 1718000000.0])
    gen = TransactionIdGenerator(clock=lambda: next(ticks))
    first = gen.generate("QR")
    second = gen.generate("QR")
    assert first[2:15] == second[2:15] == "1718000001000"


def test_short_suffix_is_rejected():
    with pytest.raises(ValueError):
        TransactionIdGenerator(suffix_length=3)
