# MIT License
# Copyright (c) 2025 Hashborn

import base64
import logging
from typing import Dict, List, Optional, Tuple

from .accounts import Account
from ...protocol import lifecycle
from ...protocol.config.params import StakeParams
from ...protocol.crypto.addresses import is_empty_address, same_address
from ...protocol.types.common import (
    CandidateState, Flag, RequestState, StakeError, TxType,
    err_address_already_declared, err_bad_nonce, err_bad_request,
    err_bad_validator_addr, err_candidate_already_activated,
    err_candidate_already_deactivated, err_insufficient_funds,
    err_pubkey_already_declared, err_verification_disallowed,
)
from ...protocol.types.tx import (
    AcceptCandidacyAccountUpdate, DeclareCandidacy, DeliverTxResult, Transaction,
    Transfer, UpdateCandidacy, UpdateCandidacyAccount, VerifyCandidacy,
)
from ...protocol.types.validator import (
    AccountUpdateRequest, Candidate, Delegation, PendingAccountUpdate, PubKey,
)

logger = logging.getLogger(__name__)


class StakeState:
    """
    Accounts, candidates, delegations and account-update requests.

    check() validates a transaction against the current state without touching it;
    deliver() re-runs the same checks and then applies the effects. All checks
    run before the first mutation, so a refused transaction leaves no trace.
    """

    def __init__(self, params: StakeParams):
        self.params = params
        self._accounts: Dict[str, Account] = {}
        self._candidates: Dict[int, Candidate] = {}
        self._delegations: List[Delegation] = []
        self._requests: Dict[int, AccountUpdateRequest] = {}
        self.next_candidate_id = 1
        self.next_request_id = 1

    # --- Accounts ---
    def get_account(self, address: str) -> Account:
        key = address.lower()
        if key in self._accounts:
            return self._accounts[key]
        return Account(address=key)

    def set_account(self, account: Account):
        self._accounts[account.address] = account

    def _charge(self, address: str, fee: int):
        if fee <= 0:
            return
        acc = self.get_account(address)
        acc.balance -= fee
        self.set_account(acc)
        hold = self.get_account(self.params.hold_account)
        hold.balance += fee
        self.set_account(hold)

    def _require_balance(self, address: str, amount: int):
        acc = self.get_account(address)
        if acc.balance < amount:
            raise err_insufficient_funds(acc.balance, amount)

    # --- Lookups ---
    def get_candidate(self, candidate_id: int) -> Optional[Candidate]:
        return self._candidates.get(candidate_id)

    def get_candidate_by_address(self, address: str) -> Optional[Candidate]:
        for c in self._candidates.values():
            if same_address(c.owner_address, address):
                return c
        return None

    def get_candidate_by_pubkey(self, value: str) -> Optional[Candidate]:
        for c in self._candidates.values():
            if c.pub_key.value == value:
                return c
        return None

    def get_all_candidates(self) -> List[Candidate]:
        return sorted(self._candidates.values(), key=lambda c: c.id)

    def get_request(self, request_id: int) -> Optional[AccountUpdateRequest]:
        return self._requests.get(request_id)

    def requests_to(self, address: str) -> List[AccountUpdateRequest]:
        return [r for r in self._requests.values() if same_address(r.to_address, address)]

    def pending_request_from(self, candidate_id: int) -> Optional[AccountUpdateRequest]:
        for r in self._requests.values():
            if r.candidate_id == candidate_id and r.state == RequestState.PENDING:
                return r
        return None

    def is_delegator(self, address: str) -> bool:
        return any(same_address(d.delegator, address) for d in self._delegations)

    def delegations_of(self, candidate_id: int) -> List[Delegation]:
        return [d for d in self._delegations if d.candidate_id == candidate_id]

    def validators(self) -> List[Candidate]:
        """Active set, highest power first."""
        vals = [c for c in self._candidates.values() if c.state == CandidateState.VALIDATOR]
        return sorted(vals, key=lambda c: (-c.voting_power, c.block_height, c.id))

    # --- Genesis ---
    def add_genesis_candidate(self, owner_address: str, pub_key: str, shares: int = 1,
                              description=None) -> Candidate:
        if self.get_candidate_by_address(owner_address):
            raise err_address_already_declared()
        if self.get_candidate_by_pubkey(pub_key):
            raise err_pubkey_already_declared()
        cand = Candidate(
            id=self.next_candidate_id,
            owner_address=owner_address,
            pub_key=PubKey(value=pub_key),
            shares=shares,
            verified=Flag.NO,
            block_height=0,
        )
        if description is not None:
            cand.description = description
        self.next_candidate_id += 1
        self._candidates[cand.id] = cand
        self._delegations.append(Delegation(delegator=cand.owner_address, candidate_id=cand.id, shares=shares))
        return cand

    # --- Check ---
    def check(self, tx: Transaction, strict_nonce: bool = False) -> None:
        """
        Raises StakeError if the transaction cannot be applied.

        Args:
            tx: Transaction to validate
            strict_nonce: Require nonce == account nonce (deliver) instead of
                nonce >= account nonce (submission, where earlier txs may be pending)
        """
        sender = tx.from_address
        acc = self.get_account(sender)
        if tx.nonce < acc.nonce or (strict_nonce and tx.nonce != acc.nonce):
            raise err_bad_nonce(acc.nonce, tx.nonce)

        req = tx.request
        fee = self.params.gas_fee(tx.tx_type)

        if isinstance(req, Transfer):
            self._require_balance(sender, req.amount + fee)

        elif isinstance(req, DeclareCandidacy):
            if self.get_candidate_by_address(sender) or self.is_delegator(sender):
                raise err_address_already_declared()
            if self.get_candidate_by_pubkey(req.pub_key):
                raise err_pubkey_already_declared()
            if self.requests_to(sender):
                raise err_bad_request("Address has been used in an account update request")
            self._require_balance(sender, fee)

        elif isinstance(req, UpdateCandidacy):
            if not self.get_candidate_by_address(sender):
                raise err_bad_validator_addr()
            if req.pub_key and self.get_candidate_by_pubkey(req.pub_key):
                raise err_pubkey_already_declared()
            self._require_balance(sender, fee)

        elif isinstance(req, VerifyCandidacy):
            if not self.get_candidate_by_address(req.candidate_address):
                raise err_bad_validator_addr()
            if not same_address(sender, self.params.foundation_address):
                raise err_verification_disallowed()

        elif tx.tx_type == TxType.WITHDRAW_CANDIDACY:
            if not self.get_candidate_by_address(sender):
                raise err_bad_validator_addr()

        elif tx.tx_type == TxType.ACTIVATE_CANDIDACY:
            cand = self.get_candidate_by_address(sender)
            if not cand:
                raise err_bad_validator_addr()
            if not lifecycle.is_legal(TxType.ACTIVATE_CANDIDACY, cand):
                raise err_candidate_already_activated()

        elif tx.tx_type == TxType.DEACTIVATE_CANDIDACY:
            cand = self.get_candidate_by_address(sender)
            if not cand:
                raise err_bad_validator_addr()
            if not lifecycle.is_legal(TxType.DEACTIVATE_CANDIDACY, cand):
                raise err_candidate_already_deactivated()

        elif isinstance(req, UpdateCandidacyAccount):
            self._check_update_account(sender, req, fee)

        elif isinstance(req, AcceptCandidacyAccountUpdate):
            self._check_accept_account_update(sender, req, fee)

        else:
            raise err_bad_request(f"Unknown tx type {tx.tx_type}")

    def _check_update_account(self, sender: str, req: UpdateCandidacyAccount, fee: int):
        cand = self.get_candidate_by_address(sender)
        if cand is None:
            raise err_bad_request("Sender is not a candidate")
        target = req.new_candidate_account
        if is_empty_address(target) or same_address(target, cand.owner_address):
            raise err_bad_request("New address is empty or unchanged")
        if self.get_candidate_by_address(target):
            raise err_bad_request("New address already owns a candidacy")
        if self.is_delegator(target):
            raise err_bad_request("New address is an existing delegator")
        if self.requests_to(target):
            raise err_bad_request("New address has been used in an account update request")
        if self.pending_request_from(cand.id):
            raise err_bad_request("An account update request is already pending")
        self._require_balance(sender, fee)

    def _check_accept_account_update(self, sender: str, req: AcceptCandidacyAccountUpdate, fee: int):
        request = self.get_request(req.account_update_request_id)
        if request is None:
            raise err_bad_request("Unknown account update request")
        if self.get_candidate_by_address(request.to_address):
            raise err_bad_request("Target address already owns a candidacy")
        if not same_address(request.to_address, sender) or request.state != RequestState.PENDING:
            raise err_bad_request("Request is not pending for this sender")
        if self.get_candidate(request.candidate_id) is None:
            raise err_bad_request("Candidate of the request no longer exists")
        self._require_balance(sender, fee)

    # --- Deliver ---
    def deliver(self, tx: Transaction, height: int, timestamp: int = 0) -> DeliverTxResult:
        """Checks and applies `tx`. Raises StakeError without side effects on refusal."""
        self.check(tx, strict_nonce=True)

        sender = tx.from_address
        req = tx.request
        fee = self.params.gas_fee(tx.tx_type)
        data = ""

        if isinstance(req, Transfer):
            acc = self.get_account(sender)
            acc.balance -= req.amount
            self.set_account(acc)
            recipient = self.get_account(req.to_address)
            recipient.balance += req.amount
            self.set_account(recipient)

        elif isinstance(req, DeclareCandidacy):
            cand = Candidate(
                id=self.next_candidate_id,
                owner_address=sender,
                pub_key=PubKey(value=req.pub_key),
                description=req.description,
                shares=req.shares,
                verified=Flag.NO,
                block_height=height,
                created_at=timestamp,
            )
            self.next_candidate_id += 1
            self._candidates[cand.id] = cand
            self._delegations.append(Delegation(delegator=sender, candidate_id=cand.id, shares=req.shares))
            logger.info(f"Candidate {cand.id} declared by {sender}")

        elif isinstance(req, UpdateCandidacy):
            cand = self.get_candidate_by_address(sender)
            if not req.description.is_empty():
                cand.description = cand.description.merged_with(req.description)
                cand.verified = Flag.NO
            if req.pub_key:
                cand.pub_key = PubKey(value=req.pub_key)
                cand.verified = Flag.NO

        elif isinstance(req, VerifyCandidacy):
            cand = self.get_candidate_by_address(req.candidate_address)
            cand.verified = Flag.YES if req.verified else Flag.NO

        elif tx.tx_type == TxType.WITHDRAW_CANDIDACY:
            cand = self.get_candidate_by_address(sender)
            self._remove_candidate(cand)
            logger.info(f"Candidate {cand.id} ({sender}) withdrew")

        elif tx.tx_type == TxType.ACTIVATE_CANDIDACY:
            self.get_candidate_by_address(sender).deactivated = False

        elif tx.tx_type == TxType.DEACTIVATE_CANDIDACY:
            self.get_candidate_by_address(sender).deactivated = True

        elif isinstance(req, UpdateCandidacyAccount):
            cand = self.get_candidate_by_address(sender)
            request = AccountUpdateRequest(
                id=self.next_request_id,
                candidate_id=cand.id,
                from_address=sender,
                to_address=req.new_candidate_account,
                created_block_height=height,
            )
            self.next_request_id += 1
            self._requests[request.id] = request
            cand.pending_account_update_request = PendingAccountUpdate(
                id=request.id, from_address=request.from_address, to_address=request.to_address)
            data = base64.b64encode(str(request.id).encode("utf-8")).decode("ascii")

        elif isinstance(req, AcceptCandidacyAccountUpdate):
            request = self.get_request(req.account_update_request_id)
            cand = self.get_candidate(request.candidate_id)
            old_owner = cand.owner_address
            cand.owner_address = request.to_address
            cand.pending_account_update_request = None
            for d in self.delegations_of(cand.id):
                if same_address(d.delegator, old_owner):
                    d.delegator = request.to_address
            request.state = RequestState.COMPLETED
            request.accepted_block_height = height
            logger.info(f"Candidate {cand.id} moved from {old_owner} to {request.to_address}")

        self._charge(sender, fee)
        acc = self.get_account(sender)
        acc.nonce += 1
        self.set_account(acc)

        return DeliverTxResult(
            data=data,
            gas_used=self.params.gas_for(tx.tx_type),
            gas_fee=str(fee),
        )

    def _remove_candidate(self, cand: Candidate):
        del self._candidates[cand.id]
        self._delegations = [d for d in self._delegations if d.candidate_id != cand.id]
        # The request stays on record so its target remains spent
        for r in self._requests.values():
            if r.candidate_id == cand.id and r.state == RequestState.PENDING:
                r.state = RequestState.CANCELLED

    # --- End block ---
    def update_voting_power(self) -> Tuple[List[Candidate], List[Candidate]]:
        """
        Recomputes the active set. Returns (admitted, evicted) for this call.

        Eligible (not opted-out) candidates are ranked by shares, then by age
        (genesis first), then by id; the top max_validators become validators.
        """
        eligible = sorted(
            (c for c in self._candidates.values() if not c.deactivated),
            key=lambda c: (-c.shares, c.block_height, c.id),
        )
        chosen = {c.id for c in eligible[:self.params.max_validators]}

        admitted, evicted = [], []
        for cand in self._candidates.values():
            was_validator = cand.state == CandidateState.VALIDATOR
            if cand.id in chosen:
                cand.state = CandidateState.VALIDATOR
                cand.active = Flag.YES
                cand.voting_power = cand.shares * self.params.voting_power_per_unit
                cand.tendermint_voting_power = cand.voting_power // self.params.consensus_power_scale
                if not was_validator:
                    admitted.append(cand)
            else:
                cand.state = CandidateState.CANDIDATE
                cand.active = Flag.NO
                cand.voting_power = 0
                cand.tendermint_voting_power = 0
                if was_validator:
                    evicted.append(cand)

        for c in admitted:
            logger.info(f"Candidate {c.id} ({c.owner_address}) admitted to the active set")
        for c in evicted:
            logger.info(f"Candidate {c.id} ({c.owner_address}) left the active set")
        return admitted, evicted

    # --- Snapshots / persistence ---
    def snapshot_candidates(self) -> Dict[int, Candidate]:
        return {k: v.model_copy(deep=True) for k, v in self._candidates.items()}

    def to_dict(self) -> dict:
        return {
            "accounts": [a.model_dump(mode="json") for a in self._accounts.values()],
            "candidates": [c.model_dump(mode="json") for c in self._candidates.values()],
            "delegations": [d.model_dump(mode="json") for d in self._delegations],
            "requests": [r.model_dump(mode="json") for r in self._requests.values()],
            "next_candidate_id": self.next_candidate_id,
            "next_request_id": self.next_request_id,
        }

    @classmethod
    def from_dict(cls, params: StakeParams, data: dict) -> "StakeState":
        state = cls(params)
        for a in data.get("accounts", []):
            acc = Account.model_validate(a)
            state._accounts[acc.address] = acc
        for c in data.get("candidates", []):
            cand = Candidate.model_validate(c)
            state._candidates[cand.id] = cand
        state._delegations = [Delegation.model_validate(d) for d in data.get("delegations", [])]
        for r in data.get("requests", []):
            req = AccountUpdateRequest.model_validate(r)
            state._requests[req.id] = req
        state.next_candidate_id = data.get("next_candidate_id", 1)
        state.next_request_id = data.get("next_request_id", 1)
        return state
