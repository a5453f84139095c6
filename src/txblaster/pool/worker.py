"""
Worker: takes task tokens from the queue and broadcasts one signed
transaction per token.
"""

import asyncio
from enum import Enum
from typing import Callable, Optional
import structlog
import aiohttp

from .connection import Connection, ConnectionFactory
from .endpoint_pool import EndpointPool
from .task_queue import TaskQueue
from ..builder import TransactionBuilder
from ..errors import ChainMismatchError, DialError, RateLimitError, RPCError, SubmissionError
from ..models import ChainContext, NonceRange, OutcomeStatus, SignedTx, TxOutcome
from ..rpc import is_already_known

logger = structlog.get_logger()

OutcomeCallback = Callable[[TxOutcome], None]


class WorkerState(Enum):
    IDLE = "idle"
    DIALING = "dialing"
    SUBMITTING = "submitting"
    RETRYING = "retrying"
    DONE = "done"


class Worker:
    """
    Worker bound to one exclusive nonce range.

    Lifecycle per token:
    1. Reuse or dial a connection to the pool's current endpoint
    2. Build, sign and submit with the worker's current nonce
    3. On failure, rotate the endpoint once and resubmit the same nonce
    4. Record the outcome and move to the next nonce

    A nonce is consumed by every submission attempt, successful or not.
    Failed tasks are never re-queued. The worker finishes when the queue is
    drained or its nonce range is used up.
    """

    def __init__(
        self,
        worker_id: str,
        queue: TaskQueue,
        pool: EndpointPool,
        factory: ConnectionFactory,
        builder: TransactionBuilder,
        context: ChainContext,
        nonce_range: NonceRange,
        payload: bytes = b"",
        max_dial_attempts: Optional[int] = None,
        on_outcome: Optional[OutcomeCallback] = None,
    ):
        self.worker_id = worker_id
        self.queue = queue
        self.pool = pool
        self.factory = factory
        self.builder = builder
        self.context = context
        self.nonce_range = nonce_range
        self.payload = payload
        self.max_dial_attempts = max_dial_attempts or len(pool)
        self.on_outcome = on_outcome

        self.state = WorkerState.IDLE
        self.outcomes: list[TxOutcome] = []
        self._nonce = nonce_range.start
        self._connection: Optional[Connection] = None

    @property
    def nonce(self) -> int:
        """Next nonce this worker will use."""
        return self._nonce

    @property
    def remaining(self) -> int:
        return self.nonce_range.stop - self._nonce

    async def start(self) -> list[TxOutcome]:
        """Run until the queue is drained or the nonce range is exhausted."""
        logger.info(
            "Worker starting",
            worker_id=self.worker_id,
            nonce_start=self.nonce_range.start,
            nonce_count=self.nonce_range.count,
        )

        try:
            while self.remaining > 0:
                self.state = WorkerState.IDLE
                token = await self.queue.get()
                if token is None:
                    break

                try:
                    outcome = await self._process_one_task(token)
                except ChainMismatchError as e:
                    self._emit(TxOutcome(
                        token=token,
                        worker_id=self.worker_id,
                        status=OutcomeStatus.ABORTED,
                        endpoint=e.url,
                        reason=str(e),
                    ))
                    raise
                self._emit(outcome)
        finally:
            self.state = WorkerState.DONE
            await self._cleanup()

        return self.outcomes

    async def _cleanup(self) -> None:
        await self._drop_connection()
        sent = sum(1 for o in self.outcomes if o.status == OutcomeStatus.SENT)
        logger.info(
            "Worker stopped",
            worker_id=self.worker_id,
            sent=sent,
            failed=len(self.outcomes) - sent,
            next_nonce=self._nonce,
        )

    def _emit(self, outcome: TxOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == OutcomeStatus.SENT:
            logger.info(
                "Transaction sent",
                worker_id=self.worker_id,
                nonce=outcome.nonce,
                tx_hash=outcome.tx_hash,
            )
        else:
            logger.error(
                "Transaction not sent",
                worker_id=self.worker_id,
                status=outcome.status.value,
                nonce=outcome.nonce,
                reason=outcome.reason,
            )
        if self.on_outcome is not None:
            self.on_outcome(outcome)

    async def _process_one_task(self, token: int) -> TxOutcome:
        """Dial, submit, retry once on failure. Consumes one nonce unless no endpoint answered."""
        connection = await self._ensure_connection()
        if connection is None:
            return TxOutcome(
                token=token,
                worker_id=self.worker_id,
                status=OutcomeStatus.SKIPPED,
                reason=f"no reachable endpoint after {self.max_dial_attempts} dials",
            )

        nonce = self._nonce
        try:
            signed = await self._submit(connection, nonce)
            outcome = TxOutcome.sent(token, self.worker_id, signed, connection.url, attempts=1)
        except SubmissionError as first_error:
            outcome = await self._retry(token, nonce, connection, first_error)

        self._nonce += 1
        return outcome

    async def _retry(
        self,
        token: int,
        nonce: int,
        failed: Connection,
        error: SubmissionError,
    ) -> TxOutcome:
        self.state = WorkerState.RETRYING
        logger.warning(
            "Submission failed, changing RPC",
            worker_id=self.worker_id,
            nonce=nonce,
            rpc_url=failed.url[:50],
            rate_limited=isinstance(error.__cause__, RateLimitError),
            error=str(error),
        )
        await self.pool.record(failed.url, success=False)
        await self._drop_connection()
        url = await self.pool.advance(seen=failed.url)

        attempts = 1
        try:
            connection = await self._dial(url)
            attempts = 2
            signed = await self._submit(connection, nonce)
            return TxOutcome.sent(token, self.worker_id, signed, connection.url, attempts=attempts)
        except (DialError, SubmissionError) as retry_error:
            if isinstance(retry_error, SubmissionError):
                await self.pool.record(url, success=False)
            return TxOutcome(
                token=token,
                worker_id=self.worker_id,
                status=OutcomeStatus.SKIPPED,
                nonce=nonce,
                endpoint=url,
                reason=str(retry_error),
                attempts=attempts,
            )

    async def _ensure_connection(self) -> Optional[Connection]:
        """Reuse the open connection if it still targets the pool's current endpoint."""
        url = self.pool.current()
        if self._connection is not None and self._connection.url == url:
            return self._connection

        await self._drop_connection()
        for _ in range(self.max_dial_attempts):
            try:
                return await self._dial(url)
            except DialError as e:
                logger.warning(
                    "Error connecting to RPC",
                    worker_id=self.worker_id,
                    rpc_url=url[:50],
                    error=e.reason,
                )
                url = await self.pool.advance(seen=url)
        return None

    async def _dial(self, url: str) -> Connection:
        self.state = WorkerState.DIALING
        try:
            connection = await self.factory.dial(url)
        except DialError:
            await self.pool.record_dial_failure(url)
            raise

        if connection.chain_id != self.context.chain_id:
            await connection.close()
            raise ChainMismatchError(url, self.context.chain_id, connection.chain_id)

        self._connection = connection
        return connection

    async def _drop_connection(self) -> None:
        if self._connection is not None:
            connection, self._connection = self._connection, None
            await connection.close()

    async def _submit(self, connection: Connection, nonce: int) -> SignedTx:
        """Build, sign and broadcast one transaction. Raises SubmissionError."""
        self.state = WorkerState.SUBMITTING
        signed = self.builder.build_and_sign(
            nonce, self.context.gas_price, self.payload, self.context.chain_id
        )

        try:
            tx_hash = await connection.send_raw_transaction(signed.raw)
        except RPCError as e:
            if is_already_known(e):
                logger.info(
                    "Transaction already known to node",
                    worker_id=self.worker_id,
                    nonce=nonce,
                    tx_hash=signed.tx_hash,
                )
                await self.pool.record(connection.url, success=True)
                return signed
            raise SubmissionError(str(e)) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SubmissionError(f"{type(e).__name__}: {e}") from e
        except Exception as e:
            # Malformed replies from public endpoints still go through failover
            logger.warning(
                "Unexpected submission error",
                worker_id=self.worker_id,
                rpc_url=connection.url[:50],
                error_type=type(e).__name__,
            )
            raise SubmissionError(f"{type(e).__name__}: {e}") from e

        if tx_hash.lower() != signed.tx_hash.lower():
            logger.warning(
                "Node reported a different transaction hash",
                worker_id=self.worker_id,
                expected=signed.tx_hash,
                reported=tx_hash,
            )
        await self.pool.record(connection.url, success=True)
        return signed
