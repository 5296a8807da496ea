# MIT License
# Copyright (c) 2025 Hashborn

"""
Scenario harness.

ScenarioContext owns an address pool and the matching consensus keys. On entry
it tops the chain up to `target_validators` by declaring pool accounts; on exit
it withdraws every candidate except the first, whatever the outcome of the
scenario body.
"""

from typing import Dict, List, Optional
import logging

from ...client.poller import ConfirmationPoller, PollOutcome
from ...client.rpc import RpcCollaborator
from ...client.staking import StakeClient
from ...protocol.config.params import PollSettings
from ...protocol.crypto.keys import generate_consensus_pubkey
from ...protocol.types.common import TxType
from ...protocol.types.tx import DeclareCandidacy, TxResult, WithdrawCandidacy
from ...protocol.types.validator import Candidate, ValidatorSet
from ..generate_genesis import new_account

logger = logging.getLogger(__name__)


class ScenarioFailure(AssertionError):
    """A scenario expectation did not hold."""


class ScenarioContext:
    def __init__(self,
                 rpc: RpcCollaborator,
                 accounts: List[str],
                 pub_keys: Optional[List[str]] = None,
                 foundation: Optional[str] = None,
                 settings: Optional[PollSettings] = None,
                 target_validators: int = 4):
        self.rpc = rpc
        self.poller = ConfirmationPoller(rpc, settings)
        self.client = StakeClient(rpc, self.poller)
        self.accounts = [a.lower() for a in accounts]
        self.pub_keys = pub_keys or [generate_consensus_pubkey() for _ in self.accounts]
        if len(self.pub_keys) < len(self.accounts):
            raise ValueError("need one consensus key per pool account")
        self.params = rpc.get_params()
        self.foundation = (foundation or self.params.foundation_address).lower()
        self.target_validators = target_validators

    def __enter__(self) -> "ScenarioContext":
        self.add_fake_validators()
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            self.remove_fake_validators()
        except Exception:
            if exc_type is None:
                raise
            # Keep the scenario's own error as the one that propagates
            logger.error("Teardown failed after scenario error", exc_info=True)
        return False

    # --- Fixtures ---
    def add_fake_validators(self):
        existing = self.rpc.list_validators()
        to_add = self.target_validators - len(existing)
        if to_add <= 0:
            return
        if to_add > len(self.accounts):
            raise ScenarioFailure(f"pool has {len(self.accounts)} accounts, need {to_add}")

        handles = [
            self.client.submit(self.accounts[i], DeclareCandidacy(pub_key=self.pub_keys[i]))
            for i in range(to_add)
        ]
        outcomes = self.poller.wait_for_any(handles)
        self._expect_all_ok(outcomes, "add fake validators")
        logger.info(f"Added {to_add} fake validators")

    def remove_fake_validators(self):
        candidates = self.rpc.list_validators()
        handles = [self.client.submit(c.owner_address, WithdrawCandidacy()) for c in candidates[1:]]
        if not handles:
            return
        outcomes = self.poller.wait_for_any(handles)
        self._expect_all_ok(outcomes, "remove fake validators")
        logger.info(f"Removed {len(handles)} validators")

    @staticmethod
    def _expect_all_ok(outcomes: Dict[str, PollOutcome], what: str):
        failed = [o for o in outcomes.values() if not o.ok]
        if failed:
            raise ScenarioFailure(f"{what}: {len(failed)} transactions failed: {failed}")

    # --- Helpers ---
    def new_account(self, fund: int = 0) -> str:
        """Creates a fresh account, funded from the foundation when `fund` > 0."""
        address = new_account()
        if fund > 0:
            self.expect_tx_success(self.client.transfer(self.foundation, address, fund))
        return address

    def wait_blocks(self, n: int = 1) -> PollOutcome:
        outcome = self.poller.wait_for_blocks(n)
        if not outcome.ok:
            raise ScenarioFailure(f"waiting {n} blocks: {outcome.status.value} ({outcome.error})")
        return outcome

    def gas_fee(self, tx_type: TxType) -> int:
        return self.params.gas_fee(tx_type)

    def balance(self, address: str) -> int:
        return self.rpc.get_account(address).balance

    def query(self, address: str) -> Optional[Candidate]:
        return self.rpc.query_validator(address, 0)

    def candidates(self) -> List[Candidate]:
        return self.rpc.list_validators()

    def consensus_validators(self) -> ValidatorSet:
        return self.rpc.get_consensus_validators()

    # --- Expectations ---
    @staticmethod
    def expect_tx_success(result: TxResult) -> TxResult:
        logger.debug(result)
        if result.height <= 0:
            raise ScenarioFailure(
                f"tx {result.hash[:8]} expected to succeed: check_tx={result.check_tx.code} "
                f"({result.check_tx.log}) deliver_tx={result.deliver_tx.code} ({result.deliver_tx.log})")
        return result

    @staticmethod
    def expect_tx_fail(result: TxResult, check_code: Optional[int] = None,
                       deliver_code: Optional[int] = None) -> TxResult:
        logger.debug(result)
        if result.height != 0:
            raise ScenarioFailure(f"tx {result.hash[:8]} expected to fail, included at {result.height}")
        if check_code is not None and result.check_tx.code != check_code:
            raise ScenarioFailure(f"check_tx code {result.check_tx.code}, want {check_code}")
        if check_code is None and deliver_code is not None and result.deliver_tx.code != deliver_code:
            raise ScenarioFailure(f"deliver_tx code {result.deliver_tx.code}, want {deliver_code}")
        return result

    @staticmethod
    def expect(condition: bool, message: str):
        if not condition:
            raise ScenarioFailure(message)
