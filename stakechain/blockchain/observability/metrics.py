# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports dev node and client metrics in Prometheus format.

Metrics:
- Block height, block time
- Transaction count by type and result
- Transaction lifecycle (confirmation time, pending count)
- Candidate and active validator counts, voting power
- Confirmation poll outcomes (client side)
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
import time

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# CHAIN METRICS
# ═══════════════════════════════════════════════════════════════════

block_height = Gauge(
    'stakechain_block_height',
    'Current block height',
    registry=metrics_registry
)

block_time_seconds = Histogram(
    'stakechain_block_time_seconds',
    'Time between blocks in seconds',
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
    registry=metrics_registry
)

blocks_total = Counter(
    'stakechain_blocks_total',
    'Total number of blocks produced',
    registry=metrics_registry
)

transactions_total = Counter(
    'stakechain_transactions_total',
    'Total number of transactions processed',
    ['tx_type', 'result'],
    registry=metrics_registry
)

transactions_per_block = Histogram(
    'stakechain_transactions_per_block',
    'Number of transactions per block',
    buckets=[0, 1, 5, 10, 20, 50, 100],
    registry=metrics_registry
)

mempool_size = Gauge(
    'stakechain_mempool_size',
    'Current mempool size',
    registry=metrics_registry
)

tx_confirmation_time_seconds = Histogram(
    'stakechain_tx_confirmation_time_seconds',
    'Time from transaction submission to inclusion',
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60],
    registry=metrics_registry
)

pending_transactions = Gauge(
    'stakechain_pending_transactions',
    'Number of pending transactions',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# VALIDATOR METRICS
# ═══════════════════════════════════════════════════════════════════

candidate_count_total = Gauge(
    'stakechain_candidate_count_total',
    'Total number of candidates',
    registry=metrics_registry
)

validator_count_active = Gauge(
    'stakechain_validator_count_active',
    'Number of candidates in the active set',
    registry=metrics_registry
)

total_voting_power = Gauge(
    'stakechain_total_voting_power',
    'Sum of voting power of the active set',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# CLIENT METRICS
# ═══════════════════════════════════════════════════════════════════

poll_outcomes_total = Counter(
    'stakechain_poll_outcomes_total',
    'Confirmation poll outcomes',
    ['kind', 'status'],
    registry=metrics_registry
)


# ═══════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════

_last_block_timestamp = None


def update_block_metrics(tx_count: int):
    """
    Update block-related counters and histograms.
    Should only be called when a new block is actually produced.
    """
    global _last_block_timestamp

    blocks_total.inc()
    transactions_per_block.observe(tx_count)

    current_time = time.time()
    if _last_block_timestamp is not None:
        block_time_seconds.observe(current_time - _last_block_timestamp)
    _last_block_timestamp = current_time


def update_transaction_metrics(tx, result: str):
    transactions_total.labels(tx_type=tx.tx_type.name, result=result).inc()


def update_metrics(chain):
    """
    Update gauges from the chain state.
    Called after each block and when metrics are scraped.

    Args:
        chain: LocalChain instance
    """
    from ...protocol.types.common import TxStatus

    block_height.set(chain.height)
    mempool_size.set(chain.mempool.size())

    with chain.receipts.lock:
        pending = sum(1 for r in chain.receipts.receipts.values() if r.status == TxStatus.PENDING)
    pending_transactions.set(pending)

    candidates = chain.list_validators()
    candidate_count_total.set(len(candidates))

    active = [c for c in candidates if c.is_validator]
    validator_count_active.set(len(active))
    total_voting_power.set(sum(c.voting_power for c in active))
