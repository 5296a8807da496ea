# MIT License
# Copyright (c) 2025 Hashborn

from typing import Dict, Optional
import logging
import threading

from ..protocol.types.common import CodeType
from ..protocol.types.tx import (
    AcceptCandidacyAccountUpdate, ActivateCandidacy, CheckTxResult, DeactivateCandidacy,
    DeclareCandidacy, DeliverTxResult, StakeRequest, Transaction, Transfer, TxHandle,
    TxResult, UpdateCandidacy, UpdateCandidacyAccount, VerifyCandidacy, WithdrawCandidacy,
)
from ..protocol.types.validator import Candidate, Description
from .poller import ConfirmationPoller, PollOutcome, PollStatus
from .rpc import RpcCollaborator

logger = logging.getLogger(__name__)


class StakeClient:
    """
    Builds, submits and confirms staking transactions.

    Nonces are tracked locally per sender so that several transactions can be
    in flight; a sender's counter is resynced from the node after a rejection.
    """

    def __init__(self, rpc: RpcCollaborator, poller: Optional[ConfirmationPoller] = None):
        self.rpc = rpc
        self.poller = poller or ConfirmationPoller(rpc)
        self._nonces: Dict[str, int] = {}
        self._lock = threading.Lock()

    # --- Nonces ---
    def next_nonce(self, address: str) -> int:
        address = address.lower()
        chain_nonce = self.rpc.get_account(address).nonce
        with self._lock:
            return max(chain_nonce, self._nonces.get(address, 0))

    def reset_nonce(self, address: str):
        with self._lock:
            self._nonces.pop(address.lower(), None)

    # --- Submission ---
    def submit(self, from_address: str, request: StakeRequest) -> TxHandle:
        nonce = self.next_nonce(from_address)
        tx = Transaction(from_address=from_address, nonce=nonce, request=request)
        handle = self.rpc.submit_transaction(tx)
        if handle:
            with self._lock:
                self._nonces[tx.from_address] = nonce + 1
            logger.debug(f"Submitted {tx.tx_type.value} from {tx.from_address} nonce={nonce}: {handle.tx_hash[:8]}")
        else:
            logger.info(f"{tx.tx_type.value} from {tx.from_address} refused: {handle.check_tx.log}")
        return handle

    def commit(self, from_address: str, request: StakeRequest,
               block_timeout: Optional[int] = None, wall_timeout: Optional[float] = None) -> TxResult:
        """
        Submits `request` and waits for it.

        Returns:
            The node's TxResult; height > 0 on success, 0 on rejection or timeout
        Raises:
            ChainStalledError: the wall-clock budget ran out
        """
        handle = self.submit(from_address, request)
        outcome = self.poller.wait_for_transaction(handle, block_timeout, wall_timeout)
        if outcome.status == PollStatus.REJECTED and handle:
            self.reset_nonce(from_address)
        return self._result_for(handle, outcome)

    def _result_for(self, handle: TxHandle, outcome: PollOutcome) -> TxResult:
        result = self.rpc.get_transaction_result(handle)
        if result is not None:
            return result
        if not handle:
            return TxResult(hash=handle.tx_hash, check_tx=handle.check_tx)
        # Still pending or never seen by the node
        return TxResult(
            hash=handle.tx_hash,
            check_tx=CheckTxResult(),
            deliver_tx=DeliverTxResult(code=CodeType.INTERNAL_ERROR, log=outcome.error or outcome.status.value),
        )

    # --- Operations ---
    def transfer(self, from_address: str, to_address: str, amount: int, **wait) -> TxResult:
        return self.commit(from_address, Transfer(to_address=to_address, amount=amount), **wait)

    def declare_candidacy(self, from_address: str, pub_key: str,
                          description: Optional[Description] = None, shares: int = 1, **wait) -> TxResult:
        request = DeclareCandidacy(pub_key=pub_key, description=description or Description(), shares=shares)
        return self.commit(from_address, request, **wait)

    def update_candidacy(self, from_address: str, pub_key: Optional[str] = None,
                         description: Optional[Description] = None, **wait) -> TxResult:
        request = UpdateCandidacy(pub_key=pub_key, description=description or Description())
        return self.commit(from_address, request, **wait)

    def verify_candidacy(self, from_address: str, candidate_address: str, verified: bool = True, **wait) -> TxResult:
        request = VerifyCandidacy(candidate_address=candidate_address, verified=verified)
        return self.commit(from_address, request, **wait)

    def withdraw_candidacy(self, from_address: str, **wait) -> TxResult:
        return self.commit(from_address, WithdrawCandidacy(), **wait)

    def activate_candidacy(self, from_address: str, **wait) -> TxResult:
        return self.commit(from_address, ActivateCandidacy(), **wait)

    def deactivate_candidacy(self, from_address: str, **wait) -> TxResult:
        return self.commit(from_address, DeactivateCandidacy(), **wait)

    def update_candidacy_account(self, from_address: str, new_candidate_account: str, **wait) -> TxResult:
        """On success the request id is in result.data_text()."""
        return self.commit(from_address, UpdateCandidacyAccount(new_candidate_account=new_candidate_account), **wait)

    def accept_candidacy_account_update(self, from_address: str, request_id: int, **wait) -> TxResult:
        request = AcceptCandidacyAccountUpdate(account_update_request_id=request_id)
        return self.commit(from_address, request, **wait)

    # --- Queries ---
    def query_validator(self, address: str, height: int = 0) -> Optional[Candidate]:
        return self.rpc.query_validator(address, height)


def request_id_of(result: TxResult) -> int:
    """Account update request id carried in a successful update_candidacy_account result."""
    return int(result.data_text())
