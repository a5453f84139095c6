"""
Nonce allocation: splits a contiguous nonce range across workers.

Each worker gets total_tx // worker_count nonces. When the division is
uneven, the last worker also takes the remainder, so the union of all ranges
is always exactly [base_nonce, base_nonce + total_tx).
"""

from .models import NonceRange


def allocate(base_nonce: int, total_tx: int, worker_count: int) -> list[NonceRange]:
    """
    Partition [base_nonce, base_nonce + total_tx) into worker_count ranges.

    Args:
        base_nonce: Sender's pending nonce at launch
        total_tx: Number of transactions to send
        worker_count: Number of workers

    Returns:
        One NonceRange per worker, ordered by worker index
    """
    if base_nonce < 0:
        raise ValueError(f"base_nonce must be >= 0, got {base_nonce}")
    if total_tx < 1:
        raise ValueError(f"total_tx must be >= 1, got {total_tx}")
    if worker_count < 1:
        raise ValueError(f"worker_count must be >= 1, got {worker_count}")
    if worker_count > total_tx:
        raise ValueError(
            f"worker_count ({worker_count}) exceeds total_tx ({total_tx}); "
            "some workers would own no nonces"
        )

    per_worker = total_tx // worker_count
    remainder = total_tx % worker_count

    ranges = []
    for i in range(worker_count):
        count = per_worker
        if i == worker_count - 1:
            count += remainder
        ranges.append(
            NonceRange(worker_index=i, start=base_nonce + i * per_worker, count=count)
        )
    return ranges
