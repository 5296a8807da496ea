# MIT License
# Copyright (c) 2025 Hashborn

"""
Transaction receipt tracking.

Stores the lifecycle status and result of every transaction the node has seen.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict
import time
import logging
from threading import RLock

from ...protocol.types.common import CodeType, TxStatus
from ...protocol.types.tx import CheckTxResult, DeliverTxResult, TxResult, TxStatusReport

logger = logging.getLogger(__name__)


@dataclass
class TxReceipt:
    """
    Transaction receipt.

    Attributes:
        tx_hash: Transaction hash
        status: TxStatus (pending, included, rejected)
        block_height: Block that included the tx (None unless included)
        timestamp: Last status change (unix seconds)
        check_tx: Result of the submission check
        deliver_tx: Result of the deliver step (default until the tx is in a block)
    """
    tx_hash: str
    status: TxStatus
    block_height: Optional[int] = None
    timestamp: float = 0.0
    check_tx: CheckTxResult = field(default_factory=CheckTxResult)
    deliver_tx: DeliverTxResult = field(default_factory=DeliverTxResult)

    def __post_init__(self):
        if self.timestamp == 0:
            self.timestamp = time.time()

    @property
    def code(self) -> int:
        if self.check_tx.code != CodeType.OK:
            return self.check_tx.code
        return self.deliver_tx.code

    @property
    def log(self) -> str:
        return self.check_tx.log or self.deliver_tx.log

    def to_status(self) -> TxStatusReport:
        return TxStatusReport(
            tx_hash=self.tx_hash,
            status=self.status,
            block_height=self.block_height,
            code=self.code,
            log=self.log,
        )

    def to_result(self) -> TxResult:
        return TxResult(
            hash=self.tx_hash,
            height=self.block_height if self.status == TxStatus.INCLUDED else 0,
            check_tx=self.check_tx,
            deliver_tx=self.deliver_tx,
        )


class TxReceiptStore:
    """
    In-memory store for transaction receipts.

    Thread-safe storage with automatic cleanup of old receipts.
    """

    def __init__(self, max_receipts: int = 10000):
        self.receipts: Dict[str, TxReceipt] = {}
        self.max_receipts = max_receipts
        self.lock = RLock()

    def add_pending(self, tx_hash: str) -> TxReceipt:
        with self.lock:
            existing = self.receipts.get(tx_hash)
            if existing and existing.status == TxStatus.INCLUDED:
                return existing

            receipt = TxReceipt(tx_hash=tx_hash, status=TxStatus.PENDING)
            self.receipts[tx_hash] = receipt

            if len(self.receipts) > self.max_receipts:
                self._cleanup_old_receipts()

            logger.debug(f"Added pending receipt: {tx_hash[:16]}...")
            return receipt

    def mark_included(self, tx_hash: str, block_height: int, deliver_tx: DeliverTxResult) -> TxReceipt:
        """
        Mark transaction as included at `block_height`.

        Returns:
            Updated receipt
        """
        with self.lock:
            receipt = self.receipts.get(tx_hash)
            confirmation_time = None

            if not receipt:
                receipt = TxReceipt(tx_hash=tx_hash, status=TxStatus.INCLUDED)
                self.receipts[tx_hash] = receipt
            else:
                confirmation_time = time.time() - receipt.timestamp
                receipt.status = TxStatus.INCLUDED
                receipt.timestamp = time.time()

            receipt.block_height = block_height
            receipt.deliver_tx = deliver_tx

            if confirmation_time is not None:
                from ..observability.metrics import tx_confirmation_time_seconds
                tx_confirmation_time_seconds.observe(confirmation_time)

            logger.debug(f"Marked included: {tx_hash[:16]}... at height {block_height}")
            return receipt

    def mark_rejected(self, tx_hash: str,
                      check_tx: Optional[CheckTxResult] = None,
                      deliver_tx: Optional[DeliverTxResult] = None) -> TxReceipt:
        """
        Mark transaction as rejected, either at submission (check_tx) or in a block (deliver_tx).
        """
        with self.lock:
            receipt = self.receipts.get(tx_hash)
            if not receipt:
                receipt = TxReceipt(tx_hash=tx_hash, status=TxStatus.REJECTED)
                self.receipts[tx_hash] = receipt
            receipt.status = TxStatus.REJECTED
            receipt.block_height = None
            receipt.timestamp = time.time()
            if check_tx is not None:
                receipt.check_tx = check_tx
            if deliver_tx is not None:
                receipt.deliver_tx = deliver_tx

            logger.debug(f"Marked rejected: {tx_hash[:16]}... - {receipt.log}")
            return receipt

    def mark_expired(self, tx_hash: str) -> TxReceipt:
        """Mark a transaction as rejected after its mempool TTL ran out."""
        return self.mark_rejected(
            tx_hash,
            deliver_tx=DeliverTxResult(code=CodeType.INTERNAL_ERROR, log="Transaction expired (TTL exceeded)"),
        )

    def get(self, tx_hash: str) -> Optional[TxReceipt]:
        with self.lock:
            return self.receipts.get(tx_hash)

    def get_confirmations(self, tx_hash: str, current_height: int) -> Optional[int]:
        """
        Number of confirmations for an included transaction, None otherwise.
        """
        with self.lock:
            receipt = self.receipts.get(tx_hash)
            if not receipt or receipt.status != TxStatus.INCLUDED or receipt.block_height is None:
                return None
            return current_height - receipt.block_height + 1

    def _cleanup_old_receipts(self) -> None:
        """Removes the oldest 10% of receipts."""
        num_to_remove = len(self.receipts) // 10

        sorted_receipts = sorted(self.receipts.items(), key=lambda x: x[1].timestamp)
        for tx_hash, _ in sorted_receipts[:num_to_remove]:
            del self.receipts[tx_hash]

        logger.info(f"Cleaned up {num_to_remove} old receipts (total: {len(self.receipts)})")
