# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field
from typing import List
from ..crypto.hash import sha256_hex

class BlockHeader(BaseModel):
    height: int                 # block number (0 = genesis)
    prev_hash: str              # hex string of SHA256 of previous header
    timestamp: int              # unix time
    chain_id: str               # "stc-devnet-1"
    tx_root: str                # Merkle root of included tx hashes
    num_txs: int = 0
    gas_used: int = 0

    def hash(self) -> str:
        payload = (
            str(self.height)
            + self.prev_hash
            + str(self.timestamp)
            + self.chain_id
            + self.tx_root
            + str(self.num_txs)
            + str(self.gas_used)
        )
        return sha256_hex(payload.encode("utf-8"))

class Block(BaseModel):
    header: BlockHeader
    tx_hashes: List[str] = Field(default_factory=list)     # Included (delivered) txs only

    def hash(self) -> str:
        return self.header.hash()
