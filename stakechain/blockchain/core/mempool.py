# MIT License
# Copyright (c) 2025 Hashborn

from typing import Dict, List, Tuple
import threading
import time
import logging

from ...protocol.types.tx import Transaction

logger = logging.getLogger(__name__)

MAX_TX_PER_SENDER = 64

class Mempool:
    def __init__(self, max_size: int = 5000, tx_ttl_seconds: int = 3600):
        self.transactions: Dict[str, Transaction] = {} # tx_hash -> Transaction
        self.tx_timestamps: Dict[str, float] = {}
        self.tx_ttl_seconds = tx_ttl_seconds
        self.max_size = max_size
        self._lock = threading.Lock()

    def add_transaction(self, tx: Transaction) -> Tuple[bool, str]:
        """
        Adds transaction to mempool.
        Returns (True, "added") if added.
        Returns (False, reason) if rejected.
        """
        with self._lock:
            tx_hash = tx.hash_hex

            if tx_hash in self.transactions:
                return False, "already_in_pool"

            if len(self.transactions) >= self.max_size:
                logger.warning("Mempool full, rejecting transaction")
                return False, "mempool_full"

            if self._sender_count(tx.from_address) >= MAX_TX_PER_SENDER:
                logger.warning(f"Reject tx {tx_hash[:8]}: sender {tx.from_address} exceeded limits")
                return False, "sender_limit_exceeded"

            self.transactions[tx_hash] = tx
            self.tx_timestamps[tx_hash] = time.time()
            logger.info(f"Tx added to mempool: {tx_hash[:8]}... ({tx.tx_type.value})")
            return True, "added"

    def _sender_count(self, address: str) -> int:
        return sum(1 for t in self.transactions.values() if t.from_address == address)

    def pending_count(self, address: str) -> int:
        """Number of queued transactions from `address`."""
        with self._lock:
            return self._sender_count(address.lower())

    def get_transactions(self, max_count: int) -> List[Transaction]:
        """
        Returns up to max_count transactions for block inclusion.
        FIFO; per-sender nonce order is preserved by insertion order.
        """
        with self._lock:
            return list(self.transactions.values())[:max_count]

    def remove_transactions(self, txs: List[Transaction]):
        """Removes transactions from pool (e.g. after block inclusion)."""
        with self._lock:
            for tx in txs:
                tx_hash = tx.hash_hex
                self.transactions.pop(tx_hash, None)
                self.tx_timestamps.pop(tx_hash, None)

    def size(self) -> int:
        with self._lock:
            return len(self.transactions)

    def cleanup_expired(self) -> List[str]:
        """
        Removes transactions that exceeded the TTL.

        Returns:
            Hashes of the removed transactions.
        """
        with self._lock:
            now = time.time()
            expired = [h for h, ts in self.tx_timestamps.items() if now - ts > self.tx_ttl_seconds]
            for tx_hash in expired:
                self.transactions.pop(tx_hash, None)
                self.tx_timestamps.pop(tx_hash, None)

            if expired:
                logger.info(f"Cleaned up {len(expired)} expired transactions from mempool (TTL={self.tx_ttl_seconds}s)")
            return expired
