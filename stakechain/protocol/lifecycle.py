# MIT License
# Copyright (c) 2025 Hashborn

"""
Validator lifecycle model.

A candidate occupies one of three states:

    NON_EXISTENT        no record for the address
    CANDIDATE_INACTIVE  registered, not in the active consensus set
    VALIDATOR_ACTIVE    registered and participating with voting power > 0

Each staking operation has a set of states it may be applied from and the
set of states it may leave the record in. The dev node consults this table
before applying an operation; observers use check_transition() to confirm
that a re-queried record matches what the operation should have produced.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .types.common import CandidateState, Flag, TxType, ValidationError
from .types.validator import Candidate
from .types.tx import (
    AcceptCandidacyAccountUpdate,
    DeclareCandidacy,
    UpdateCandidacy,
    VerifyCandidacy,
)


class LifecycleState(str, Enum):
    NON_EXISTENT = "NonExistent"
    CANDIDATE_INACTIVE = "Candidate-inactive"
    VALIDATOR_ACTIVE = "Validator-active"


NE = LifecycleState.NON_EXISTENT
CI = LifecycleState.CANDIDATE_INACTIVE
VA = LifecycleState.VALIDATOR_ACTIVE
REGISTERED = frozenset({CI, VA})


class LifecycleViolation(ValidationError):
    """An observed record contradicts the transition its operation implies."""


@dataclass(frozen=True)
class Transition:
    sources: FrozenSet[LifecycleState]
    # Empty targets: the operation leaves the state unchanged
    targets: FrozenSet[LifecycleState] = frozenset()


# Declare and activate land in VA only when the active set has room.
TRANSITIONS: Dict[TxType, Transition] = {
    TxType.DECLARE_CANDIDACY:               Transition(frozenset({NE}), frozenset({CI, VA})),
    TxType.VERIFY_CANDIDACY:                Transition(REGISTERED),
    TxType.UPDATE_CANDIDACY:                Transition(REGISTERED),
    TxType.DEACTIVATE_CANDIDACY:            Transition(REGISTERED, frozenset({CI})),
    TxType.ACTIVATE_CANDIDACY:              Transition(frozenset({CI}), frozenset({CI, VA})),
    TxType.UPDATE_CANDIDACY_ACCOUNT:        Transition(REGISTERED),
    TxType.ACCEPT_CANDIDACY_ACCOUNT_UPDATE: Transition(REGISTERED),
    TxType.WITHDRAW_CANDIDACY:              Transition(REGISTERED, frozenset({NE})),
}

# Attributes that survive an owner migration untouched
_MIGRATION_PRESERVED = ("id", "pub_key", "verified", "description", "shares",
                        "deactivated", "block_height", "created_at")


def state_of(record: Optional[Candidate]) -> LifecycleState:
    if record is None:
        return NE
    if record.state == CandidateState.VALIDATOR:
        return VA
    return CI


def is_legal(tx_type: TxType, record: Optional[Candidate]) -> bool:
    """True if `tx_type` may be applied to the record's current state."""
    transition = TRANSITIONS.get(tx_type)
    if transition is None:
        return False
    if state_of(record) not in transition.sources:
        return False
    # Opt-out flag gates the toggles independently of admission
    if tx_type == TxType.DEACTIVATE_CANDIDACY:
        return not record.deactivated
    if tx_type == TxType.ACTIVATE_CANDIDACY:
        return record.deactivated
    return True


def expected_states(tx_type: TxType, before: Optional[Candidate]) -> FrozenSet[LifecycleState]:
    transition = TRANSITIONS[tx_type]
    return transition.targets or frozenset({state_of(before)})


def _fail(tx_type: TxType, msg: str):
    raise LifecycleViolation(f"{tx_type.value}: {msg}")


def check_transition(tx_type: TxType,
                     before: Optional[Candidate],
                     after: Optional[Candidate],
                     request=None,
                     voting_power_per_unit: int = 1000) -> None:
    """
    Validates an observed (before, after) pair against the transition rules.

    Args:
        tx_type: Operation that was confirmed
        before: Record queried before submission (None if absent)
        after: Record queried after confirmation; for an accepted account
            update this is the record found under the new owner address
        request: The request model, for attribute checks (optional)
        voting_power_per_unit: Voting power granted per bonded share

    Raises:
        LifecycleViolation: on any mismatch
    """
    if tx_type == TxType.ACTIVATE_CANDIDACY and before is not None and before.is_validator:
        # Activation of an admitted candidate is never legal; nothing to compare
        _fail(tx_type, "record was already active")

    allowed = expected_states(tx_type, before)
    observed = state_of(after)
    if observed not in allowed:
        _fail(tx_type, f"expected {sorted(s.value for s in allowed)}, observed {observed.value}")

    if after is None:
        return

    # Derived flags must agree with the state
    if after.is_validator:
        if after.active != Flag.YES or after.voting_power <= 0:
            _fail(tx_type, f"validator with active={after.active.value} voting_power={after.voting_power}")
        if after.voting_power != after.shares * voting_power_per_unit:
            _fail(tx_type, f"voting_power {after.voting_power} != shares {after.shares} * {voting_power_per_unit}")
    elif after.active != Flag.NO or after.voting_power != 0:
        _fail(tx_type, f"candidate with active={after.active.value} voting_power={after.voting_power}")

    if tx_type == TxType.DEACTIVATE_CANDIDACY and not after.deactivated:
        _fail(tx_type, "opt-out flag not set")

    if tx_type == TxType.ACTIVATE_CANDIDACY and after.deactivated:
        _fail(tx_type, "opt-out flag still set")

    if tx_type == TxType.DECLARE_CANDIDACY:
        if after.verified != Flag.NO:
            _fail(tx_type, "new candidate must start unverified")
        if isinstance(request, DeclareCandidacy) and after.pub_key.value != request.pub_key:
            _fail(tx_type, "pub_key differs from the declared one")

    if tx_type == TxType.VERIFY_CANDIDACY and isinstance(request, VerifyCandidacy):
        want = Flag.YES if request.verified else Flag.NO
        if after.verified != want:
            _fail(tx_type, f"verified={after.verified.value}, want {want.value}")

    if tx_type == TxType.UPDATE_CANDIDACY and isinstance(request, UpdateCandidacy):
        changed = bool(request.pub_key) or not request.description.is_empty()
        if changed and after.verified != Flag.NO:
            _fail(tx_type, "verified must reset to N after an update")
        if request.pub_key and after.pub_key.value != request.pub_key:
            _fail(tx_type, "pub_key was not replaced")
        if before is not None:
            want_desc = before.description.merged_with(request.description)
            if after.description != want_desc:
                _fail(tx_type, "description was not applied")

    if tx_type == TxType.UPDATE_CANDIDACY_ACCOUNT and after.pending_account_update_request is None:
        _fail(tx_type, "no pending account update request recorded")

    if tx_type == TxType.ACCEPT_CANDIDACY_ACCOUNT_UPDATE:
        if before is not None:
            for name in _MIGRATION_PRESERVED:
                if getattr(before, name) != getattr(after, name):
                    _fail(tx_type, f"attribute {name!r} changed during migration")
            if after.owner_address == before.owner_address:
                _fail(tx_type, "owner address did not change")
        if after.pending_account_update_request is not None:
            _fail(tx_type, "request still pending")
        if isinstance(request, AcceptCandidacyAccountUpdate) and before is not None \
                and before.pending_account_update_request is not None \
                and before.pending_account_update_request.id != request.account_update_request_id:
            _fail(tx_type, "accepted request id does not match the pending one")
