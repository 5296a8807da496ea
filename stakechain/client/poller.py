# MIT License
# Copyright (c) 2025 Hashborn

"""
Confirmation poller.

Waits for block progress or for the inclusion of submitted transactions by
sampling the node every `interval_ms`. Two independent budgets bound every
wait:

    block_timeout   blocks that may pass before the wait gives up with a
                    TIMED_OUT (or NOT_FOUND) outcome; recoverable
    wall_timeout    seconds after which the chain is judged stalled;
                    ChainStalledError is raised and callers should stop

Background polls run on daemon threads (PollTask). A task can be cancelled;
it notices at its next interval and resolves to CANCELLED.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional
import logging
import queue
import threading
import time

from ..blockchain.observability.metrics import poll_outcomes_total
from ..protocol.config.params import PollSettings
from ..protocol.types.common import CodeType, TxStatus
from ..protocol.types.tx import TxHandle
from .rpc import HandleOrHash, RpcCollaborator, RpcError, tx_hash_of

logger = logging.getLogger(__name__)

KIND_BLOCKS = "blocks"
KIND_TRANSACTION = "transaction"


class PollStatus(str, Enum):
    COMPLETED = "completed"     # blocks wait reached its target
    INCLUDED = "included"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"


@dataclass
class PollOutcome:
    kind: str
    status: PollStatus
    tx_hash: Optional[str] = None
    block_height: Optional[int] = None      # Inclusion height (tx) or last sampled height (blocks)
    start_height: int = 0
    blocks_elapsed: int = 0
    seconds_elapsed: float = 0.0
    code: int = CodeType.OK
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (PollStatus.COMPLETED, PollStatus.INCLUDED)


class PollError(Exception):
    pass


class ChainStalledError(PollError):
    """The wall-clock budget ran out. Fatal: the chain is not making progress."""

    def __init__(self, kind: str, seconds_elapsed: float, start_height: Optional[int],
                 last_height: Optional[int], tx_hash: Optional[str] = None):
        target = f"tx {tx_hash[:8]}" if tx_hash else "blocks"
        super().__init__(f"Chain stalled waiting for {target}: {seconds_elapsed:.1f}s elapsed, "
                         f"height {start_height} -> {last_height}")
        self.kind = kind
        self.seconds_elapsed = seconds_elapsed
        self.start_height = start_height
        self.last_height = last_height
        self.tx_hash = tx_hash


class PollAggregateError(PollError):
    """Some polls of a wait_for_any() failed. Carries the finished outcomes as well."""

    def __init__(self, outcomes: Dict[str, PollOutcome], errors: Dict[str, Exception]):
        super().__init__(f"{len(errors)} of {len(outcomes) + len(errors)} polls failed: "
                         + "; ".join(f"{h[:8]}: {e}" for h, e in errors.items()))
        self.outcomes = outcomes
        self.errors = errors

    @property
    def fatal(self) -> bool:
        return any(isinstance(e, ChainStalledError) for e in self.errors.values())


class PollTask:
    """
    A poll running on its own daemon thread.

    The worker is the only writer of a one-slot queue; result() reads it once
    and caches the value for later calls.
    """

    _UNSET = object()

    def __init__(self, target: Callable[[threading.Event], PollOutcome], name: str = "poll"):
        self._target = target
        self._cancel = threading.Event()
        self._done = threading.Event()
        self._queue: "queue.Queue" = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self._value = self._UNSET
        self._error: Optional[BaseException] = None
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self):
        try:
            item = (self._target(self._cancel), None)
        except Exception as e:
            item = (None, e)
        self._queue.put(item)
        self._done.set()

    def result(self, timeout: Optional[float] = None) -> PollOutcome:
        """
        Blocks until the poll finishes and returns its outcome.

        Raises:
            TimeoutError: the poll did not finish within `timeout` seconds
            ChainStalledError, or any error the poll raised
        """
        # Waiters share the done event; the lock only guards the one-time drain
        if not self._done.wait(timeout):
            raise TimeoutError(f"{self._thread.name} still running after {timeout}s")
        with self._lock:
            if self._value is self._UNSET and self._error is None:
                self._value, self._error = self._queue.get_nowait()
        if self._error is not None:
            raise self._error
        return self._value

    def cancel(self):
        self._cancel.set()

    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def done(self) -> bool:
        return self._done.is_set()


class ConfirmationPoller:
    def __init__(self, rpc: RpcCollaborator, settings: Optional[PollSettings] = None):
        self.rpc = rpc
        self.settings = settings or PollSettings.from_env()

    def _budgets(self, block_timeout: Optional[int], wall_timeout: Optional[float]):
        bt = self.settings.block_timeout if block_timeout is None else block_timeout
        wt = self.settings.wait_timeout if wall_timeout is None else wall_timeout
        return bt, wt

    def _sample_height(self, fallback: Optional[int]) -> Optional[int]:
        try:
            return self.rpc.current_block_height()
        except RpcError as e:
            logger.warning(f"Height query failed, retrying: {e}")
            return fallback

    @staticmethod
    def _finish(outcome: PollOutcome) -> PollOutcome:
        poll_outcomes_total.labels(kind=outcome.kind, status=outcome.status.value).inc()
        if outcome.ok:
            logger.debug(f"Poll finished: {outcome}")
        else:
            logger.info(f"Poll finished without success: {outcome}")
        return outcome

    @staticmethod
    def _stalled(kind: str, started: float, start_height, last_height, tx_hash=None) -> ChainStalledError:
        poll_outcomes_total.labels(kind=kind, status="stalled").inc()
        err = ChainStalledError(kind, time.monotonic() - started, start_height, last_height, tx_hash)
        logger.error(str(err))
        return err

    # --- Blocks ---
    def _poll_blocks(self, target_delta: int, block_timeout: int, wall_timeout: float,
                     cancel: threading.Event) -> PollOutcome:
        interval = self.settings.interval_sec
        started = time.monotonic()
        start = None
        last = None

        while True:
            elapsed = time.monotonic() - started
            if cancel.is_set():
                return self._finish(PollOutcome(
                    kind=KIND_BLOCKS, status=PollStatus.CANCELLED, block_height=last,
                    start_height=start or 0, blocks_elapsed=(last - start) if start is not None else 0,
                    seconds_elapsed=elapsed))

            height = self._sample_height(last)
            if height is not None:
                if start is None:
                    start = height
                # Heights observed within one poll never go backwards
                last = height if last is None else max(last, height)
                delta = last - start
                if delta >= target_delta:
                    return self._finish(PollOutcome(
                        kind=KIND_BLOCKS, status=PollStatus.COMPLETED, block_height=last,
                        start_height=start, blocks_elapsed=delta, seconds_elapsed=elapsed))
                if delta > block_timeout:
                    return self._finish(PollOutcome(
                        kind=KIND_BLOCKS, status=PollStatus.TIMED_OUT, block_height=last,
                        start_height=start, blocks_elapsed=delta, seconds_elapsed=elapsed,
                        error=f"{delta} blocks passed without reaching +{target_delta}"))

            if elapsed > wall_timeout:
                raise self._stalled(KIND_BLOCKS, started, start, last)

            cancel.wait(interval)

    def wait_for_blocks(self, target_delta: int = 1, block_timeout: Optional[int] = None,
                        wall_timeout: Optional[float] = None) -> PollOutcome:
        """
        Waits until the chain advanced `target_delta` blocks past the height seen at call time.

        Raises:
            ChainStalledError: wall-clock budget spent
        """
        bt, wt = self._budgets(block_timeout, wall_timeout)
        return self._poll_blocks(target_delta, bt, wt, threading.Event())

    def start_wait_for_blocks(self, target_delta: int = 1, block_timeout: Optional[int] = None,
                              wall_timeout: Optional[float] = None) -> PollTask:
        bt, wt = self._budgets(block_timeout, wall_timeout)
        return PollTask(lambda cancel: self._poll_blocks(target_delta, bt, wt, cancel),
                        name=f"wait-blocks+{target_delta}")

    # --- Transactions ---
    def _poll_transaction(self, handle: HandleOrHash, block_timeout: int, wall_timeout: float,
                          cancel: threading.Event) -> PollOutcome:
        tx_hash = tx_hash_of(handle)
        if isinstance(handle, TxHandle) and not handle:
            return self._finish(PollOutcome(
                kind=KIND_TRANSACTION, status=PollStatus.REJECTED, tx_hash=tx_hash,
                code=handle.check_tx.code, error=handle.check_tx.log))

        interval = self.settings.interval_sec
        started = time.monotonic()
        start = None
        last = None
        seen = False

        while True:
            elapsed = time.monotonic() - started
            blocks = (last - start) if start is not None else 0
            if cancel.is_set():
                return self._finish(PollOutcome(
                    kind=KIND_TRANSACTION, status=PollStatus.CANCELLED, tx_hash=tx_hash,
                    start_height=start or 0, blocks_elapsed=blocks, seconds_elapsed=elapsed))

            report = None
            try:
                report = self.rpc.get_transaction_status(handle)
            except RpcError as e:
                logger.warning(f"Status query for {tx_hash[:8]} failed, retrying: {e}")

            height = self._sample_height(last)
            if height is not None:
                if start is None:
                    start = height
                last = height if last is None else max(last, height)
                blocks = last - start

            if report is not None:
                if report.status == TxStatus.INCLUDED:
                    return self._finish(PollOutcome(
                        kind=KIND_TRANSACTION, status=PollStatus.INCLUDED, tx_hash=tx_hash,
                        block_height=report.block_height, start_height=start or 0,
                        blocks_elapsed=blocks, seconds_elapsed=elapsed, code=report.code))
                if report.status == TxStatus.REJECTED:
                    return self._finish(PollOutcome(
                        kind=KIND_TRANSACTION, status=PollStatus.REJECTED, tx_hash=tx_hash,
                        start_height=start or 0, blocks_elapsed=blocks, seconds_elapsed=elapsed,
                        code=report.code, error=report.log))
                if report.status == TxStatus.PENDING:
                    seen = True

            if start is not None and blocks > block_timeout:
                status = PollStatus.TIMED_OUT if seen else PollStatus.NOT_FOUND
                return self._finish(PollOutcome(
                    kind=KIND_TRANSACTION, status=status, tx_hash=tx_hash, block_height=last,
                    start_height=start, blocks_elapsed=blocks, seconds_elapsed=elapsed,
                    error=f"not included after {blocks} blocks"))

            if elapsed > wall_timeout:
                raise self._stalled(KIND_TRANSACTION, started, start, last, tx_hash)

            cancel.wait(interval)

    def wait_for_transaction(self, handle: HandleOrHash, block_timeout: Optional[int] = None,
                             wall_timeout: Optional[float] = None) -> PollOutcome:
        """
        Waits until the node reports `handle` included or rejected.

        A falsy handle (refused at submission) resolves to REJECTED at once.

        Raises:
            ChainStalledError: wall-clock budget spent
        """
        bt, wt = self._budgets(block_timeout, wall_timeout)
        return self._poll_transaction(handle, bt, wt, threading.Event())

    def start_wait_for_transaction(self, handle: HandleOrHash, block_timeout: Optional[int] = None,
                                   wall_timeout: Optional[float] = None) -> PollTask:
        bt, wt = self._budgets(block_timeout, wall_timeout)
        return PollTask(lambda cancel: self._poll_transaction(handle, bt, wt, cancel),
                        name=f"wait-tx-{tx_hash_of(handle)[:8]}")

    def wait_for_any(self, handles: Iterable[Optional[HandleOrHash]], block_timeout: Optional[int] = None,
                     wall_timeout: Optional[float] = None) -> Dict[str, PollOutcome]:
        """
        Polls every truthy handle concurrently and joins all of them.

        Returns:
            tx_hash -> outcome, for every distinct handle
        Raises:
            PollAggregateError: one or more polls raised; `.outcomes` holds the rest
        """
        unique: Dict[str, HandleOrHash] = {}
        for handle in handles:
            if handle:
                unique.setdefault(tx_hash_of(handle), handle)

        tasks = {h: self.start_wait_for_transaction(handle, block_timeout, wall_timeout)
                 for h, handle in unique.items()}

        outcomes: Dict[str, PollOutcome] = {}
        errors: Dict[str, Exception] = {}
        for tx_hash, task in tasks.items():
            try:
                outcomes[tx_hash] = task.result()
            except Exception as e:
                errors[tx_hash] = e

        if errors:
            raise PollAggregateError(outcomes, errors)
        return outcomes
