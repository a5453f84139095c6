"""Nonce allocation across workers"""
import pytest

from txblaster.nonces import allocate


def _covered(ranges):
    nonces = []
    for r in ranges:
        nonces.extend(range(r.start, r.stop))
    return nonces


def test_two_workers_four_transactions():
    ranges = allocate(base_nonce=10, total_tx=4, worker_count=2)

    assert [(r.start, r.stop) for r in ranges] == [(10, 12), (12, 14)]
    assert [r.worker_index for r in ranges] == [0, 1]


@pytest.mark.parametrize("base", [0, 5, 1_000])
@pytest.mark.parametrize("workers,total", [(1, 1), (1, 9), (3, 9), (4, 100), (10, 10), (7, 70)])
def test_even_division_covers_range_exactly(base, workers, total):
    ranges = allocate(base, total, workers)

    covered = _covered(ranges)
    assert len(covered) == len(set(covered))
    assert sorted(covered) == list(range(base, base + total))
    assert all(r.count == total // workers for r in ranges)


def test_remainder_goes_to_last_worker():
    ranges = allocate(base_nonce=0, total_tx=10, worker_count=3)

    assert [r.count for r in ranges] == [3, 3, 4]
    assert sorted(_covered(ranges)) == list(range(10))


def test_ranges_are_disjoint_with_remainder():
    ranges = allocate(base_nonce=3, total_tx=17, worker_count=5)

    for i, a in enumerate(ranges):
        for b in ranges[i + 1:]:
            assert a.stop <= b.start
    assert ranges[-1].stop == 3 + 17


def test_nonce_range_membership():
    r = allocate(base_nonce=4, total_tx=4, worker_count=2)[1]

    assert 6 in r
    assert 7 in r
    assert 8 not in r
    assert 5 not in r


@pytest.mark.parametrize(
    "base,total,workers",
    [(-1, 4, 2), (0, 0, 1), (0, 4, 0), (0, 2, 3)],
)
def test_invalid_inputs_rejected(base, total, workers):
    with pytest.raises(ValueError):
        allocate(base, total, workers)
