"""
Dispatcher: orchestrates bootstrap, workers and paced task injection.

This is the main entry point for a broadcast run.
"""

import asyncio
import signal
import time
from typing import Optional
import structlog

from .connection import ConnectionFactory
from .endpoint_pool import EndpointPool
from .task_queue import TaskQueue
from .worker import OutcomeCallback, Worker
from ..builder import TransactionBuilder
from ..errors import SetupError
from ..models import ChainContext, NonceRange, OutcomeStatus, RunSummary, TxOutcome
from ..nonces import allocate

logger = structlog.get_logger()


class Dispatcher:
    """
    Runs one broadcast of a fixed number of transactions.

    Features:
    - Chain context and base nonce fetched once, before any worker starts
    - Workers bound to disjoint nonce ranges
    - Paced token injection as a client-side rate limiter
    - Graceful stop on SIGINT/SIGTERM and bounded wait for drain
    - Stats logging
    """

    def __init__(
        self,
        pool: EndpointPool,
        builder: TransactionBuilder,
        factory: Optional[ConnectionFactory] = None,
        payload: bytes = b"",
        gas_price_multiplier: float = 1.0,
        max_setup_attempts: Optional[int] = None,
        drain_timeout: Optional[float] = None,
        stats_interval: float = 10.0,
        on_outcome: Optional[OutcomeCallback] = None,
    ):
        self.pool = pool
        self.builder = builder
        self.factory = factory or ConnectionFactory()
        self.payload = payload
        self.gas_price_multiplier = gas_price_multiplier
        self.max_setup_attempts = max_setup_attempts
        self.drain_timeout = drain_timeout
        self.stats_interval = stats_interval
        self.on_outcome = on_outcome

        self.context: Optional[ChainContext] = None
        self.queue: Optional[TaskQueue] = None

        # Workers
        self._workers: list[Worker] = []
        self._worker_tasks: list[asyncio.Task] = []

        # State
        self._shutdown_event = asyncio.Event()

    async def run(self, total_tx: int, worker_count: int, pace_delay: float = 0.5) -> RunSummary:
        """
        Send total_tx transactions through worker_count workers.

        Raises SetupError if bootstrap fails and ChainMismatchError if an
        endpoint turns out to serve a different chain.
        """
        started = time.monotonic()
        self._setup_signal_handlers()
        cancelled = False

        try:
            bootstrapped = await self._until_shutdown(self.bootstrap())
            if bootstrapped is None:
                logger.warning("Interrupted during setup")
                return RunSummary(requested=total_tx, cancelled=True)
            self.context, base_nonce = bootstrapped
            try:
                ranges = allocate(base_nonce, total_tx, worker_count)
            except ValueError as e:
                raise SetupError(str(e)) from e

            logger.info(
                "Dispatcher starting",
                sender=self.builder.sender,
                chain_id=self.context.chain_id,
                gas_price=self.context.gas_price,
                base_nonce=base_nonce,
                total_tx=total_tx,
                workers=worker_count,
            )

            self.queue = TaskQueue(capacity=total_tx)
            self._spawn_workers(ranges)

            stats_task = asyncio.create_task(self._stats_logger_loop())
            try:
                cancelled = await self._feed_and_drain(total_tx, pace_delay)
            finally:
                stats_task.cancel()
                await asyncio.gather(stats_task, return_exceptions=True)
        finally:
            await self._shutdown()
            self._remove_signal_handlers()

        summary = RunSummary(
            requested=total_tx,
            outcomes=sorted(self.outcomes, key=lambda o: o.token),
            elapsed_seconds=time.monotonic() - started,
            cancelled=cancelled,
        )
        logger.info(
            "Dispatcher finished",
            sent=summary.sent,
            skipped=summary.skipped,
            aborted=summary.aborted,
            cancelled=summary.cancelled,
            elapsed=f"{summary.elapsed_seconds:.1f}s",
        )
        await self._log_endpoint_stats()
        return summary

    @property
    def outcomes(self) -> list[TxOutcome]:
        return [o for w in self._workers for o in w.outcomes]

    async def bootstrap(self) -> tuple[ChainContext, int]:
        """Fetch chain ID, gas price and the sender's pending nonce once."""
        connection = await self.factory.connect(self.pool, self.max_setup_attempts)
        try:
            gas_price = await connection.client.get_gas_price()
            base_nonce = await connection.client.get_pending_nonce(self.builder.sender)
        except Exception as e:
            raise SetupError(f"Failed to fetch chain parameters from {connection.url}: {e}") from e
        finally:
            await connection.close()

        if self.gas_price_multiplier != 1.0:
            gas_price = int(gas_price * self.gas_price_multiplier)

        context = ChainContext(chain_id=connection.chain_id, gas_price=gas_price)
        return context, base_nonce

    async def _until_shutdown(self, coro):
        """Await coro unless stop() comes first, in which case return None."""
        task = asyncio.create_task(coro)
        shutdown = asyncio.create_task(self._shutdown_event.wait())
        try:
            await asyncio.wait({task, shutdown}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            shutdown.cancel()
        if task.done():
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return None

    def stop(self) -> None:
        """Abort the run: stop feeding tokens and cancel every worker."""
        if not self._shutdown_event.is_set():
            logger.info("Shutdown signal received")
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self.stop)
        except (NotImplementedError, RuntimeError):
            # Windows, or not running in the main thread
            pass

    def _remove_signal_handlers(self) -> None:
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
        except (NotImplementedError, RuntimeError):
            pass

    def _spawn_workers(self, ranges: list[NonceRange]) -> None:
        for nonce_range in ranges:
            worker_id = f"worker-{nonce_range.worker_index + 1}"

            worker = Worker(
                worker_id=worker_id,
                queue=self.queue,
                pool=self.pool,
                factory=self.factory,
                builder=self.builder,
                context=self.context,
                nonce_range=nonce_range,
                payload=self.payload,
                on_outcome=self.on_outcome,
            )

            self._workers.append(worker)
            self._worker_tasks.append(asyncio.create_task(worker.start()))

            logger.debug("Spawned worker", worker_id=worker_id, nonce_start=nonce_range.start)

    async def _feed_and_drain(self, total_tx: int, pace_delay: float) -> bool:
        """
        Feed tokens, close the queue and wait for all workers.

        Returns True if the run was cut short by stop() or drain_timeout.
        Re-raises a worker's ChainMismatchError after cancelling the rest.
        """
        feeder = asyncio.create_task(self.feed_tasks(total_tx, pace_delay))
        workers = asyncio.gather(*self._worker_tasks)
        shutdown = asyncio.create_task(self._shutdown_event.wait())

        try:
            done, _ = await asyncio.wait(
                {workers, shutdown},
                timeout=self.drain_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            shutdown.cancel()

        if workers in done:
            feeder.cancel()
            await asyncio.gather(feeder, return_exceptions=True)
            # Raises the first worker error, e.g. ChainMismatchError
            workers.result()
            return False

        if not done:
            logger.warning("Workers didn't drain in time, cancelling", timeout=self.drain_timeout)

        feeder.cancel()
        await self._cancel_workers()
        await asyncio.gather(feeder, workers, return_exceptions=True)
        return True

    async def feed_tasks(self, total_tx: int, pace_delay: float) -> None:
        """Push total_tx tokens, pace_delay seconds apart, then close the queue."""
        for token in range(total_tx):
            if token > 0 and pace_delay > 0:
                await asyncio.sleep(pace_delay)
            await self.queue.put(token)
        await self.queue.close()
        logger.debug("All tasks queued", total_tx=total_tx)

    async def _cancel_workers(self) -> None:
        for task in self._worker_tasks:
            task.cancel()
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)

    async def _shutdown(self) -> None:
        """Make sure no worker outlives the run."""
        pending = [t for t in self._worker_tasks if not t.done()]
        if pending:
            await self._cancel_workers()

    async def _stats_logger_loop(self) -> None:
        """Periodically log stats."""
        while True:
            await asyncio.sleep(self.stats_interval)

            queue_stats = self.queue.get_stats()
            outcomes = self.outcomes
            logger.info(
                "Stats",
                queued=queue_stats.produced,
                pending=queue_stats.pending,
                sent=sum(1 for o in outcomes if o.status == OutcomeStatus.SENT),
                failed=sum(1 for o in outcomes if o.status != OutcomeStatus.SENT),
                endpoint=self.pool.current()[:50],
            )
            await self._log_endpoint_stats()

    async def _log_endpoint_stats(self) -> None:
        for stats in await self.pool.get_stats():
            logger.info("Endpoint stats", **stats)
