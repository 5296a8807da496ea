# MIT License
# Copyright (c) 2025 Hashborn

"""
RPC collaborator interface and its HTTP implementation.

Everything the poller and the staking client need from a node goes through
RpcCollaborator. LocalChain implements it in process; HttpRpcClient talks to
a node's HTTP API.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Union
import logging

import requests

from ..protocol.config.params import StakeParams, node_url
from ..protocol.types.common import TxStatus
from ..protocol.types.tx import CheckTxResult, Transaction, TxHandle, TxResult, TxStatusReport
from ..protocol.types.validator import AccountUpdateRequest, Candidate, ValidatorSet
from ..blockchain.core.accounts import Account

logger = logging.getLogger(__name__)

HandleOrHash = Union[TxHandle, str]


class RpcError(Exception):
    """Transport or HTTP failure talking to a node."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def tx_hash_of(handle: HandleOrHash) -> str:
    return handle.tx_hash if isinstance(handle, TxHandle) else handle


class RpcCollaborator(ABC):
    @abstractmethod
    def submit_transaction(self, tx: Transaction) -> TxHandle:
        """Submits `tx`. The handle is falsy when the node refused it outright."""

    @abstractmethod
    def get_transaction_status(self, handle: HandleOrHash) -> TxStatusReport:
        pass

    @abstractmethod
    def get_transaction_result(self, handle: HandleOrHash) -> Optional[TxResult]:
        """Final result, or None while the transaction is pending or unknown."""

    @abstractmethod
    def current_block_height(self) -> int:
        pass

    @abstractmethod
    def query_validator(self, address: str, height: int = 0) -> Optional[Candidate]:
        """Candidate record owned by `address` (height 0 = latest), None if absent."""

    @abstractmethod
    def list_validators(self, height: int = 0) -> List[Candidate]:
        pass

    @abstractmethod
    def get_consensus_validators(self, height: int = 0) -> ValidatorSet:
        pass

    @abstractmethod
    def get_account(self, address: str) -> Account:
        pass

    @abstractmethod
    def get_params(self) -> StakeParams:
        pass

    @abstractmethod
    def get_account_update_request(self, request_id: int) -> Optional[AccountUpdateRequest]:
        pass


class HttpRpcClient(RpcCollaborator):
    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.base_url = node_url(base_url).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, allow_404: bool = False, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise RpcError(f"{method} {path} failed: {e}")

        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code != 200:
            raise RpcError(f"{method} {path} returned {resp.status_code}: {resp.text}", resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise RpcError(f"{method} {path} returned invalid JSON: {e}", resp.status_code)

    def _get(self, path: str, allow_404: bool = False, **params):
        return self._request("GET", path, allow_404=allow_404, params=params or None)

    def submit_transaction(self, tx: Transaction) -> TxHandle:
        data = self._request("POST", "/tx/send", json=tx.model_dump(mode="json"))
        handle = TxHandle.model_validate(data)
        if not handle:
            logger.debug(f"Tx {handle.tx_hash[:8]} refused: {handle.check_tx.log}")
        return handle

    def get_transaction_status(self, handle: HandleOrHash) -> TxStatusReport:
        tx_hash = tx_hash_of(handle)
        data = self._get(f"/tx/{tx_hash}/status", allow_404=True)
        if data is None:
            return TxStatusReport(tx_hash=tx_hash, status=TxStatus.NOT_FOUND)
        return TxStatusReport.model_validate(data)

    def get_transaction_result(self, handle: HandleOrHash) -> Optional[TxResult]:
        data = self._get(f"/tx/{tx_hash_of(handle)}/result", allow_404=True)
        return TxResult.model_validate(data) if data is not None else None

    def current_block_height(self) -> int:
        return int(self._get("/status")["height"])

    def query_validator(self, address: str, height: int = 0) -> Optional[Candidate]:
        data = self._get(f"/validator/{address}", allow_404=True, height=height)
        return Candidate.model_validate(data) if data is not None else None

    def list_validators(self, height: int = 0) -> List[Candidate]:
        data = self._get("/validators", height=height)
        return [Candidate.model_validate(c) for c in data["candidates"]]

    def get_consensus_validators(self, height: int = 0) -> ValidatorSet:
        data = self._get("/consensus/validators", height=height)
        result = data["result"]
        return ValidatorSet(block_height=int(result["block_height"]), validators=result["validators"])

    def get_account(self, address: str) -> Account:
        return Account.model_validate(self._get(f"/account/{address}"))

    def get_params(self) -> StakeParams:
        return StakeParams.model_validate(self._get("/params"))

    def get_account_update_request(self, request_id: int) -> Optional[AccountUpdateRequest]:
        data = self._get(f"/account_update_request/{request_id}", allow_404=True)
        return AccountUpdateRequest.model_validate(data) if data is not None else None

    def close(self):
        self.session.close()


def refused_handle(tx_hash: str, code: int, log: str) -> TxHandle:
    return TxHandle(tx_hash=tx_hash, accepted=False, check_tx=CheckTxResult(code=code, log=log))
