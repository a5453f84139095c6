"""End-to-end dispatcher runs over fake endpoints"""
import asyncio
import time

import pytest

from txblaster.errors import ChainMismatchError, SetupError
from txblaster.models import OutcomeStatus, RunSummary
from txblaster.pool.dispatcher import Dispatcher
from txblaster.pool.endpoint_pool import EndpointPool
from txblaster.pool.task_queue import TaskQueue

from conftest import CHAIN_ID, GAS_PRICE, FakeFactory, rpc_failure


def _dispatcher(urls, builder, factory, **kwargs):
    return Dispatcher(
        pool=EndpointPool(urls),
        builder=builder,
        factory=factory,
        payload=b"payload",
        stats_interval=60,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_run_sends_every_transaction_with_unique_nonces(urls, builder):
    factory = FakeFactory(base_nonce=20)
    dispatcher = _dispatcher(urls, builder, factory)

    summary = await dispatcher.run(total_tx=4, worker_count=2, pace_delay=0)

    assert summary.requested == 4
    assert summary.sent == 4
    assert not summary.cancelled
    assert [o.token for o in summary.outcomes] == [0, 1, 2, 3]
    assert sorted(o.nonce for o in summary.outcomes) == [20, 21, 22, 23]
    assert len(set(summary.tx_hashes)) == 4
    assert dispatcher.context.chain_id == CHAIN_ID
    assert dispatcher.context.gas_price == GAS_PRICE


@pytest.mark.asyncio
async def test_uneven_split_still_sends_all(urls, builder):
    factory = FakeFactory(base_nonce=0)
    dispatcher = _dispatcher(urls, builder, factory)

    summary = await dispatcher.run(total_tx=5, worker_count=2, pace_delay=0)

    assert summary.sent == 5
    assert sorted(o.nonce for o in summary.outcomes) == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_workers_stay_inside_their_ranges(urls, builder):
    factory = FakeFactory(base_nonce=100)
    dispatcher = _dispatcher(urls, builder, factory)

    summary = await dispatcher.run(total_tx=9, worker_count=3, pace_delay=0)

    by_worker = {}
    for o in summary.outcomes:
        by_worker.setdefault(o.worker_id, []).append(o.nonce)
    ranges = {"worker-1": range(100, 103), "worker-2": range(103, 106), "worker-3": range(106, 109)}
    for worker_id, nonces in by_worker.items():
        assert all(n in ranges[worker_id] for n in nonces)


@pytest.mark.asyncio
async def test_outcome_callback_sees_every_token(urls, builder):
    factory = FakeFactory(send_failures={urls[0]: [rpc_failure()], urls[1]: [rpc_failure()]})
    seen = []
    dispatcher = _dispatcher(urls, builder, factory, on_outcome=seen.append)

    summary = await dispatcher.run(total_tx=3, worker_count=1, pace_delay=0)

    assert sorted(o.token for o in seen) == [0, 1, 2]
    assert summary.skipped == 1
    assert summary.sent == 2


@pytest.mark.asyncio
async def test_gas_price_multiplier_applied(urls, builder):
    factory = FakeFactory()
    dispatcher = _dispatcher(urls, builder, factory, gas_price_multiplier=1.5)

    await dispatcher.run(total_tx=1, worker_count=1, pace_delay=0)

    assert dispatcher.context.gas_price == int(GAS_PRICE * 1.5)


@pytest.mark.asyncio
async def test_pacing_spaces_out_tokens(urls, builder):
    dispatcher = _dispatcher(urls, builder, FakeFactory())
    dispatcher.queue = TaskQueue(capacity=5)
    delay = 0.05

    started = time.monotonic()
    await dispatcher.feed_tasks(5, delay)
    elapsed = time.monotonic() - started

    assert elapsed >= 4 * delay
    assert dispatcher.queue.closed
    assert dispatcher.queue.get_stats().produced == 5


@pytest.mark.asyncio
async def test_bootstrap_failure_is_setup_error(urls, builder):
    factory = FakeFactory(unreachable=set(urls))
    dispatcher = _dispatcher(urls, builder, factory, max_setup_attempts=4)

    with pytest.raises(SetupError):
        await dispatcher.run(total_tx=2, worker_count=1, pace_delay=0)

    assert len(factory.dials) == 4


@pytest.mark.asyncio
async def test_too_many_workers_is_setup_error(urls, builder):
    dispatcher = _dispatcher(urls, builder, FakeFactory())

    with pytest.raises(SetupError):
        await dispatcher.run(total_tx=2, worker_count=3, pace_delay=0)


@pytest.mark.asyncio
async def test_chain_mismatch_aborts_run(urls, builder):
    factory = FakeFactory(send_failures={urls[0]: [rpc_failure()]}, chain_ids={urls[1]: 1})
    dispatcher = _dispatcher(urls, builder, factory)

    with pytest.raises(ChainMismatchError):
        await dispatcher.run(total_tx=4, worker_count=2, pace_delay=0.01)

    assert any(o.status == OutcomeStatus.ABORTED for o in dispatcher.outcomes)
    assert all(t.done() for t in dispatcher._worker_tasks)


@pytest.mark.asyncio
async def test_stop_cancels_run(urls, builder):
    dispatcher = _dispatcher(urls, builder, FakeFactory())

    run = asyncio.create_task(dispatcher.run(total_tx=50, worker_count=2, pace_delay=0.05))
    await asyncio.sleep(0.2)
    dispatcher.stop()
    summary = await asyncio.wait_for(run, timeout=5)

    assert summary.cancelled
    assert 0 < summary.sent < 50
    assert all(t.done() for t in dispatcher._worker_tasks)


@pytest.mark.asyncio
async def test_drain_timeout_cancels_workers(urls, builder):
    dispatcher = _dispatcher(urls, builder, FakeFactory(), drain_timeout=0.1)

    summary = await dispatcher.run(total_tx=20, worker_count=1, pace_delay=0.05)

    assert summary.cancelled
    assert summary.sent < 20


def test_summary_json():
    data = RunSummary(requested=3, elapsed_seconds=1.5).to_json()

    assert b'"requested":3' in data
    assert b'"sent":0' in data


class _RecordingLogger:
    def __init__(self):
        self.events = []

    def info(self, event, **kw):
        self.events.append((event, kw))

    debug = warning = error = info


@pytest.mark.asyncio
async def test_endpoint_stats_logged_at_end_of_run(monkeypatch, urls, builder):
    from txblaster.pool import dispatcher as dispatcher_module

    recorder = _RecordingLogger()
    monkeypatch.setattr(dispatcher_module, "logger", recorder)
    factory = FakeFactory(send_failures={urls[0]: [rpc_failure()]})
    dispatcher = _dispatcher(urls, builder, factory)

    await dispatcher.run(total_tx=2, worker_count=1, pace_delay=0)

    endpoint_stats = [kw for event, kw in recorder.events if event == "Endpoint stats"]
    assert [s["url"] for s in endpoint_stats] == urls
    assert [s["current"] for s in endpoint_stats] == [False, True, False]
    assert endpoint_stats[0]["failure_rate"] == "100.0%"
