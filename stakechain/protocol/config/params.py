# MIT License
# Copyright (c) 2025 Hashborn

import os
from typing import Dict, Optional
from pydantic import BaseModel, Field
from ..types.common import TxType

# Global Constants
DENOM = "stc"
DECIMALS = 18

DEFAULT_NODE = "http://localhost:8000"

# Base Gas Costs (fee = gas * gas_price); unlisted types are free
GAS_PER_TYPE = {
    TxType.TRANSFER:                          21_000,
    TxType.DECLARE_CANDIDACY:              1_000_000,
    TxType.UPDATE_CANDIDACY:               1_000_000,
    TxType.UPDATE_CANDIDACY_ACCOUNT:       1_000_000,
    TxType.ACCEPT_CANDIDACY_ACCOUNT_UPDATE: 1_000_000,
}

class StakeParams(BaseModel):
    """Chain-wide staking parameters. Shipped in genesis and served at /params."""
    network_id: str = "devnet"
    chain_id: str = "stc-devnet-1"
    block_time_sec: float = 1.0
    gas_price: int = 1_000_000_000                  # 1 Gwei
    gas_per_type: Dict[TxType, int] = Field(default_factory=lambda: dict(GAS_PER_TYPE))
    foundation_address: str = "0x7eff122b94897ea5b0e2a9abf47b86337fafebdc"
    hold_account: str = "0x" + "f" * 40             # Collects gas fees
    max_validators: int = 5
    voting_power_per_unit: int = 1000               # voting_power = shares * this
    consensus_power_scale: int = 1                  # consensus power = voting_power // this
    max_tx_per_block: int = 500
    history_blocks: int = 100                       # Per-height snapshots kept for queries

    def gas_for(self, tx_type: TxType) -> int:
        return self.gas_per_type.get(tx_type, 0)

    def gas_fee(self, tx_type: TxType) -> int:
        return self.gas_for(tx_type) * self.gas_price

NETWORKS: Dict[str, StakeParams] = {
    "devnet": StakeParams(),
    "testnet": StakeParams(
        network_id="testnet",
        chain_id="stc-testnet-1",
        block_time_sec=10.0,
        gas_price=2_000_000_000,
        max_validators=21,
        history_blocks=1000,
    ),
}

# Default to devnet for now
CURRENT_NETWORK = NETWORKS[os.environ.get("STAKECHAIN_NETWORK", "devnet")]

def _env_number(name: str, default, cast):
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")

class PollSettings:
    def __init__(self,
                 block_timeout: int = 20,       # Blocks to wait before a recoverable timeout
                 wait_timeout: float = 60.0,    # Seconds before the chain is judged stalled
                 interval_ms: int = 100):       # Sampling interval
        if block_timeout < 0 or wait_timeout <= 0 or interval_ms <= 0:
            raise ValueError("poll budgets must be positive")
        self.block_timeout = block_timeout
        self.wait_timeout = wait_timeout
        self.interval_ms = interval_ms

    @property
    def interval_sec(self) -> float:
        return self.interval_ms / 1000.0

    @classmethod
    def from_env(cls) -> "PollSettings":
        return cls(
            block_timeout=_env_number("STAKECHAIN_BLOCK_TIMEOUT", 20, int),
            wait_timeout=_env_number("STAKECHAIN_WAIT_TIMEOUT", 60.0, float),
            interval_ms=_env_number("STAKECHAIN_INTERVAL_MS", 100, int),
        )

    def __repr__(self):
        return (f"PollSettings(block_timeout={self.block_timeout}, "
                f"wait_timeout={self.wait_timeout}, interval_ms={self.interval_ms})")

def node_url(explicit: Optional[str] = None) -> str:
    return explicit or os.environ.get("STAKECHAIN_NODE", DEFAULT_NODE)
