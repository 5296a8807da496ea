# MIT License
# Copyright (c) 2025 Hashborn

from collections import OrderedDict
from typing import Dict, List, Optional
import json
import logging
import os
import threading
import time

from ...client.rpc import HandleOrHash, RpcCollaborator, refused_handle, tx_hash_of
from ...protocol.config.params import CURRENT_NETWORK, StakeParams
from ...protocol.crypto.addresses import consensus_address
from ...protocol.crypto.hash import merkle_root
from ...protocol.types.block import Block, BlockHeader
from ...protocol.types.common import CodeType, StakeError, TxStatus
from ...protocol.types.tx import (
    CheckTxResult, DeliverTxResult, Transaction, TxHandle, TxResult, TxStatusReport,
)
from ...protocol.types.validator import (
    AccountUpdateRequest, Candidate, ConsensusValidator, Description, ValidatorSet,
)
from ..observability import metrics
from ..storage.db import StorageDB
from .accounts import Account
from .events import EventBus
from .mempool import Mempool
from .stake import StakeState
from .tx_receipt import TxReceiptStore

logger = logging.getLogger(__name__)

STATE_KEY = "stake_state"


def load_genesis(path: str) -> dict:
    with open(path, "r") as f:
        return json.load(f)


class LocalChain(RpcCollaborator):
    """
    Single-process dev node.

    Transactions are checked on submission, queued in the mempool and delivered
    by produce_block(), which then recomputes the active set. A BlockProducer
    calls produce_block() on a timer; tests may call it directly.
    """

    def __init__(self,
                 params: Optional[StakeParams] = None,
                 db_path: str = ":memory:",
                 genesis: Optional[dict] = None,
                 genesis_path: Optional[str] = None,
                 event_bus: Optional[EventBus] = None):
        if genesis is None and genesis_path and os.path.exists(genesis_path):
            genesis = load_genesis(genesis_path)
        self.genesis = genesis or {}

        if params is None:
            params = StakeParams.model_validate(self.genesis["params"]) if "params" in self.genesis else CURRENT_NETWORK
        self.params = params

        self.db = StorageDB(db_path)
        self._lock = threading.RLock()
        self.mempool = Mempool()
        self.receipts = TxReceiptStore()
        self.events = event_bus or EventBus()
        self.state = StakeState(self.params)

        self.height = 0
        self.last_hash = "0" * 64
        self.last_block_timestamp = 0
        # height -> candidate snapshot, oldest first
        self._history: "OrderedDict[int, Dict[int, Candidate]]" = OrderedDict()

        self._load_chain_state()

    # --- Startup ---
    def _load_chain_state(self):
        last = self.db.get_last_block()
        raw_state = self.db.get_state(STATE_KEY)
        if last and raw_state:
            self.height, self.last_hash, data = last
            self.last_block_timestamp = Block.model_validate_json(data).header.timestamp
            self.state = StakeState.from_dict(self.params, json.loads(raw_state))
            self._remember_height(self.height)
            logger.info(f"Chain restored at height {self.height}")
        else:
            self._apply_genesis()

    def _apply_genesis(self):
        alloc = self.genesis.get("alloc", {})
        for address, amount in alloc.items():
            acc = self.state.get_account(address)
            acc.balance = int(amount)
            self.state.set_account(acc)

        for v in self.genesis.get("validators", []):
            self.state.add_genesis_candidate(
                owner_address=v["owner_address"],
                pub_key=v["pub_key"],
                shares=int(v.get("shares", 1)),
                description=Description.model_validate(v["description"]) if "description" in v else None,
            )
        self.state.update_voting_power()

        header = BlockHeader(
            height=0,
            prev_hash="0" * 64,
            timestamp=int(self.genesis.get("genesis_time", time.time())),
            chain_id=self.params.chain_id,
            tx_root=merkle_root([]).hex(),
        )
        block = Block(header=header)
        self.height = 0
        self.last_hash = block.hash()
        self.last_block_timestamp = header.timestamp
        self._remember_height(0)
        self._persist(block)
        logger.info(f"Genesis applied: {len(alloc)} accounts, "
                    f"{len(self.state.get_all_candidates())} validators")

    # --- Transactions ---
    def submit_transaction(self, tx: Transaction) -> TxHandle:
        tx_hash = tx.hash_hex
        with self._lock:
            try:
                self.state.check(tx)
            except StakeError as e:
                return self._refuse(tx, tx_hash, e.code, e.message)

            added, reason = self.mempool.add_transaction(tx)
            if not added:
                return self._refuse(tx, tx_hash, CodeType.INTERNAL_ERROR, reason)

            self.receipts.add_pending(tx_hash)
        return TxHandle(tx_hash=tx_hash, accepted=True)

    def _refuse(self, tx: Transaction, tx_hash: str, code: int, log: str) -> TxHandle:
        logger.info(f"Tx {tx_hash[:8]} ({tx.tx_type.value}) refused: {log}")
        # A resubmission must not clobber the receipt of the original
        if self.receipts.get(tx_hash) is not None:
            return refused_handle(tx_hash, code, log)
        check = CheckTxResult(code=code, log=log)
        self.receipts.mark_rejected(tx_hash, check_tx=check)
        metrics.update_transaction_metrics(tx, "refused")
        self.events.emit("tx_rejected", tx_hash=tx_hash, code=code, log=log, height=0)
        return refused_handle(tx_hash, code, log)

    def get_transaction_status(self, handle: HandleOrHash) -> TxStatusReport:
        tx_hash = tx_hash_of(handle)
        receipt = self.receipts.get(tx_hash)
        if receipt is None:
            return TxStatusReport(tx_hash=tx_hash, status=TxStatus.NOT_FOUND)
        report = receipt.to_status()
        report.confirmations = self.receipts.get_confirmations(tx_hash, self.height)
        return report

    def get_transaction_result(self, handle: HandleOrHash) -> Optional[TxResult]:
        receipt = self.receipts.get(tx_hash_of(handle))
        if receipt is None or receipt.status == TxStatus.PENDING:
            return None
        return receipt.to_result()

    # --- Blocks ---
    def current_block_height(self) -> int:
        return self.height

    def get_block(self, height: int) -> Optional[Block]:
        data = self.db.get_block_by_height(height)
        if data:
            return Block.model_validate_json(data)
        return None

    def produce_block(self, timestamp: Optional[int] = None) -> Block:
        """Delivers queued transactions, recomputes the active set and seals the block."""
        included, rejected = [], []
        with self._lock:
            for tx_hash in self.mempool.cleanup_expired():
                self.receipts.mark_expired(tx_hash)

            height = self.height + 1
            ts = timestamp if timestamp is not None else int(time.time())
            txs = self.mempool.get_transactions(self.params.max_tx_per_block)
            gas_used = 0

            for tx in txs:
                tx_hash = tx.hash_hex
                try:
                    result = self.state.deliver(tx, height, ts)
                except StakeError as e:
                    logger.info(f"Tx {tx_hash[:8]} ({tx.tx_type.value}) failed in block {height}: {e.message}")
                    rejected.append((tx, e))
                    continue
                gas_used += result.gas_used
                included.append((tx, result))

            self.mempool.remove_transactions(txs)
            self.state.update_voting_power()

            tx_hashes = [tx.hash_hex for tx, _ in included]
            header = BlockHeader(
                height=height,
                prev_hash=self.last_hash,
                timestamp=ts,
                chain_id=self.params.chain_id,
                tx_root=merkle_root([bytes.fromhex(h) for h in tx_hashes]).hex(),
                num_txs=len(tx_hashes),
                gas_used=gas_used,
            )
            block = Block(header=header, tx_hashes=tx_hashes)

            self.height = height
            self.last_hash = block.hash()
            self.last_block_timestamp = ts
            self._remember_height(height)
            self._persist(block)

            # Receipts become visible only once the block's state is queryable
            for tx, result in included:
                self.receipts.mark_included(tx.hash_hex, height, result)
            for tx, err in rejected:
                self.receipts.mark_rejected(tx.hash_hex, deliver_tx=DeliverTxResult(code=err.code, log=err.message))

        logger.info(f"Block {height} produced. Hash: {self.last_hash[:8]}... "
                    f"({len(included)} included, {len(rejected)} rejected)")

        for tx, result in included:
            metrics.update_transaction_metrics(tx, "included")
            self.events.emit("tx_included", tx_hash=tx.hash_hex, height=height, result=result)
        for tx, err in rejected:
            metrics.update_transaction_metrics(tx, "rejected")
            self.events.emit("tx_rejected", tx_hash=tx.hash_hex, code=err.code, log=err.message, height=height)
        metrics.update_block_metrics(len(included))
        metrics.update_metrics(self)
        self.events.emit("block_created", block=block)
        return block

    def _remember_height(self, height: int):
        self._history[height] = self.state.snapshot_candidates()
        while len(self._history) > max(1, self.params.history_blocks):
            self._history.popitem(last=False)

    def _persist(self, block: Block):
        self.db.save_block(block.header.height, block.hash(), block.model_dump_json())
        self.db.set_state(STATE_KEY, json.dumps(self.state.to_dict()))

    # --- Queries ---
    def _candidates_at(self, height: int) -> Dict[int, Candidate]:
        """Candidate snapshot at `height` (0 = latest). Raises ValueError if not retained."""
        with self._lock:
            if height <= 0 or height == self.height:
                return self._history[self.height]
            if height > self.height:
                raise ValueError(f"Height {height} is above the chain tip {self.height}")
            if height not in self._history:
                raise ValueError(f"Height {height} is not retained (history: {self.params.history_blocks} blocks)")
            return self._history[height]

    def query_validator(self, address: str, height: int = 0) -> Optional[Candidate]:
        for cand in self._candidates_at(height).values():
            if cand.owner_address == address.lower():
                return cand.model_copy(deep=True)
        return None

    def list_validators(self, height: int = 0) -> List[Candidate]:
        return [c.model_copy(deep=True) for c in sorted(self._candidates_at(height).values(), key=lambda c: c.id)]

    def get_consensus_validators(self, height: int = 0) -> ValidatorSet:
        """Consensus-layer view: active set only, power as a decimal string."""
        cands = [c for c in self._candidates_at(height).values() if c.is_validator]
        vals = [
            ConsensusValidator(
                address=consensus_address(c.pub_key.value),
                pub_key=c.pub_key,
                voting_power=str(c.tendermint_voting_power),
            )
            for c in cands
        ]
        vals.sort(key=lambda v: (-int(v.voting_power), v.address))
        return ValidatorSet(block_height=height if height > 0 else self.height, validators=vals)

    def get_account(self, address: str) -> Account:
        with self._lock:
            return self.state.get_account(address).model_copy()

    def get_params(self) -> StakeParams:
        return self.params

    def get_account_update_request(self, request_id: int) -> Optional[AccountUpdateRequest]:
        with self._lock:
            req = self.state.get_request(request_id)
            return req.model_copy() if req else None


class BlockProducer:
    """Calls chain.produce_block() every `block_time` seconds on a daemon thread."""

    def __init__(self, chain: LocalChain, block_time: Optional[float] = None):
        self.chain = chain
        self.block_time = block_time if block_time is not None else chain.params.block_time_sec
        self.thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def start(self):
        self._stop.clear()
        self.thread = threading.Thread(target=self._run_loop, name="block-producer", daemon=True)
        self.thread.start()
        logger.info(f"BlockProducer started (block time {self.block_time}s)")

    def stop(self):
        self._stop.set()
        if self.thread:
            self.thread.join()
            self.thread = None

    def _run_loop(self):
        while not self._stop.wait(self.block_time):
            try:
                self.chain.produce_block()
            except Exception as e:
                logger.error(f"Error in producer loop: {e}", exc_info=True)
