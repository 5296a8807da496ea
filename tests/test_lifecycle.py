"""
Tests for the validator lifecycle model.

Tests:
- state classification of candidate records
- legality of each operation per source state
- check_transition() on consistent and contradicting observations
"""
import pytest

from stakechain.protocol import lifecycle
from stakechain.protocol.lifecycle import LifecycleState, LifecycleViolation
from stakechain.protocol.crypto.keys import generate_consensus_pubkey
from stakechain.protocol.types.common import CandidateState, Flag, TxType
from stakechain.protocol.types.tx import (
    AcceptCandidacyAccountUpdate, DeclareCandidacy, UpdateCandidacy, VerifyCandidacy,
)
from stakechain.protocol.types.validator import Candidate, Description, PendingAccountUpdate, PubKey
from stakechain.scripts.generate_genesis import new_account


def make_validator(**overrides) -> Candidate:
    data = dict(
        id=1,
        owner_address=new_account(),
        pub_key=PubKey(value=generate_consensus_pubkey()),
        state=CandidateState.VALIDATOR,
        active=Flag.YES,
        voting_power=1000,
        tendermint_voting_power=1000,
        shares=1,
        block_height=3,
    )
    data.update(overrides)
    return Candidate(**data)


def make_candidate(**overrides) -> Candidate:
    data = dict(state=CandidateState.CANDIDATE, active=Flag.NO, voting_power=0, tendermint_voting_power=0)
    data.update(overrides)
    return make_validator(**data)


# ═══════════════════════════════════════════════════════════════════
# STATES AND LEGALITY
# ═══════════════════════════════════════════════════════════════════

def test_state_of():
    assert lifecycle.state_of(None) == LifecycleState.NON_EXISTENT
    assert lifecycle.state_of(make_candidate()) == LifecycleState.CANDIDATE_INACTIVE
    assert lifecycle.state_of(make_validator()) == LifecycleState.VALIDATOR_ACTIVE


def test_declare_only_legal_for_unknown_address():
    assert lifecycle.is_legal(TxType.DECLARE_CANDIDACY, None)
    assert not lifecycle.is_legal(TxType.DECLARE_CANDIDACY, make_candidate())
    assert not lifecycle.is_legal(TxType.DECLARE_CANDIDACY, make_validator())


def test_operations_on_missing_record_are_illegal():
    for tx_type in (TxType.VERIFY_CANDIDACY, TxType.UPDATE_CANDIDACY, TxType.WITHDRAW_CANDIDACY,
                    TxType.ACTIVATE_CANDIDACY, TxType.DEACTIVATE_CANDIDACY,
                    TxType.UPDATE_CANDIDACY_ACCOUNT, TxType.ACCEPT_CANDIDACY_ACCOUNT_UPDATE):
        assert not lifecycle.is_legal(tx_type, None), tx_type


def test_activate_and_deactivate_follow_opt_out_flag():
    validator = make_validator()
    assert lifecycle.is_legal(TxType.DEACTIVATE_CANDIDACY, validator)
    assert not lifecycle.is_legal(TxType.ACTIVATE_CANDIDACY, validator)

    opted_out = make_candidate(deactivated=True)
    assert lifecycle.is_legal(TxType.ACTIVATE_CANDIDACY, opted_out)
    assert not lifecycle.is_legal(TxType.DEACTIVATE_CANDIDACY, opted_out)

    # Outside the active set for lack of room, not by choice
    crowded_out = make_candidate(deactivated=False)
    assert not lifecycle.is_legal(TxType.ACTIVATE_CANDIDACY, crowded_out)
    assert lifecycle.is_legal(TxType.DEACTIVATE_CANDIDACY, crowded_out)


def test_transfer_is_not_a_lifecycle_operation():
    assert not lifecycle.is_legal(TxType.TRANSFER, make_validator())


def test_expected_states():
    assert lifecycle.expected_states(TxType.WITHDRAW_CANDIDACY, make_validator()) == {LifecycleState.NON_EXISTENT}
    assert lifecycle.expected_states(TxType.VERIFY_CANDIDACY, make_validator()) == {LifecycleState.VALIDATOR_ACTIVE}
    assert lifecycle.expected_states(TxType.DECLARE_CANDIDACY, None) == {
        LifecycleState.CANDIDATE_INACTIVE, LifecycleState.VALIDATOR_ACTIVE}


# ═══════════════════════════════════════════════════════════════════
# CHECK_TRANSITION
# ═══════════════════════════════════════════════════════════════════

def test_declare_transition():
    key = generate_consensus_pubkey()
    after = make_validator(pub_key=PubKey(value=key))
    lifecycle.check_transition(TxType.DECLARE_CANDIDACY, None, after, DeclareCandidacy(pub_key=key))

    with pytest.raises(LifecycleViolation, match="observed NonExistent"):
        lifecycle.check_transition(TxType.DECLARE_CANDIDACY, None, None)

    with pytest.raises(LifecycleViolation, match="unverified"):
        lifecycle.check_transition(TxType.DECLARE_CANDIDACY, None, make_validator(verified=Flag.YES))

    with pytest.raises(LifecycleViolation, match="pub_key"):
        lifecycle.check_transition(TxType.DECLARE_CANDIDACY, None, after,
                                   DeclareCandidacy(pub_key=generate_consensus_pubkey()))


def test_deactivate_transition():
    before = make_validator()
    after = before.model_copy(update=dict(state=CandidateState.CANDIDATE, active=Flag.NO,
                                          voting_power=0, tendermint_voting_power=0, deactivated=True))
    lifecycle.check_transition(TxType.DEACTIVATE_CANDIDACY, before, after)

    # Still reported as a validator
    with pytest.raises(LifecycleViolation):
        lifecycle.check_transition(TxType.DEACTIVATE_CANDIDACY, before, before)

    # Inconsistent derived flags
    bad = after.model_copy(update=dict(voting_power=1000))
    with pytest.raises(LifecycleViolation, match="voting_power=1000"):
        lifecycle.check_transition(TxType.DEACTIVATE_CANDIDACY, before, bad)


def test_activate_transition():
    before = make_candidate(deactivated=True)
    after = make_validator(id=before.id, owner_address=before.owner_address, pub_key=before.pub_key)
    lifecycle.check_transition(TxType.ACTIVATE_CANDIDACY, before, after)

    with pytest.raises(LifecycleViolation, match="already active"):
        lifecycle.check_transition(TxType.ACTIVATE_CANDIDACY, after, after)

    with pytest.raises(LifecycleViolation, match="opt-out flag still set"):
        lifecycle.check_transition(TxType.ACTIVATE_CANDIDACY, before, after.model_copy(update=dict(deactivated=True)))


def test_activate_into_full_active_set_stays_candidate():
    before = make_candidate(deactivated=True)
    after = before.model_copy(update=dict(deactivated=False))
    assert LifecycleState.CANDIDATE_INACTIVE in lifecycle.expected_states(TxType.ACTIVATE_CANDIDACY, before)
    lifecycle.check_transition(TxType.ACTIVATE_CANDIDACY, before, after)

    # Still not admitted, but the derived flags must agree
    with pytest.raises(LifecycleViolation, match="candidate with active=Y"):
        lifecycle.check_transition(TxType.ACTIVATE_CANDIDACY, before, after.model_copy(update=dict(active=Flag.YES)))


def test_validator_power_must_match_shares():
    after = make_validator(shares=2, voting_power=1000)
    with pytest.raises(LifecycleViolation, match="shares"):
        lifecycle.check_transition(TxType.VERIFY_CANDIDACY, after, after)
    lifecycle.check_transition(TxType.VERIFY_CANDIDACY, after, after.model_copy(update=dict(voting_power=2000)))


def test_verify_transition():
    before = make_validator()
    after = before.model_copy(update=dict(verified=Flag.YES))
    request = VerifyCandidacy(candidate_address=before.owner_address, verified=True)
    lifecycle.check_transition(TxType.VERIFY_CANDIDACY, before, after, request)

    with pytest.raises(LifecycleViolation, match="verified=N"):
        lifecycle.check_transition(TxType.VERIFY_CANDIDACY, before, before, request)


def test_update_transition_resets_verified():
    before = make_validator(verified=Flag.YES, description=Description(name="old"))
    request = UpdateCandidacy(description=Description(website="http://aaa.com"))
    after = before.model_copy(update=dict(
        verified=Flag.NO, description=Description(name="old", website="http://aaa.com")))
    lifecycle.check_transition(TxType.UPDATE_CANDIDACY, before, after, request)

    with pytest.raises(LifecycleViolation, match="reset"):
        lifecycle.check_transition(TxType.UPDATE_CANDIDACY, before,
                                   after.model_copy(update=dict(verified=Flag.YES)), request)

    with pytest.raises(LifecycleViolation, match="description"):
        lifecycle.check_transition(TxType.UPDATE_CANDIDACY, before,
                                   after.model_copy(update=dict(description=Description(website="http://aaa.com"))),
                                   request)


def test_update_account_transition_requires_pending_request():
    record = make_validator()
    with pytest.raises(LifecycleViolation, match="pending"):
        lifecycle.check_transition(TxType.UPDATE_CANDIDACY_ACCOUNT, record, record)

    pending = PendingAccountUpdate(id=1, from_address=record.owner_address, to_address=new_account())
    with_request = record.model_copy(update=dict(pending_account_update_request=pending))
    lifecycle.check_transition(TxType.UPDATE_CANDIDACY_ACCOUNT, record, with_request)


def test_accept_transition_preserves_attributes():
    target = new_account()
    before = make_validator(
        verified=Flag.YES,
        pending_account_update_request=PendingAccountUpdate(id=7, from_address=new_account(), to_address=target),
    )
    after = before.model_copy(update=dict(owner_address=target, pending_account_update_request=None))
    request = AcceptCandidacyAccountUpdate(account_update_request_id=7)
    lifecycle.check_transition(TxType.ACCEPT_CANDIDACY_ACCOUNT_UPDATE, before, after, request)

    with pytest.raises(LifecycleViolation, match="'verified' changed"):
        lifecycle.check_transition(TxType.ACCEPT_CANDIDACY_ACCOUNT_UPDATE, before,
                                   after.model_copy(update=dict(verified=Flag.NO)), request)

    with pytest.raises(LifecycleViolation, match="owner address did not change"):
        lifecycle.check_transition(TxType.ACCEPT_CANDIDACY_ACCOUNT_UPDATE, before,
                                   before.model_copy(update=dict(pending_account_update_request=None)))

    with pytest.raises(LifecycleViolation, match="request id"):
        lifecycle.check_transition(TxType.ACCEPT_CANDIDACY_ACCOUNT_UPDATE, before, after,
                                   AcceptCandidacyAccountUpdate(account_update_request_id=8))


def test_withdraw_transition():
    before = make_validator()
    lifecycle.check_transition(TxType.WITHDRAW_CANDIDACY, before, None)
    with pytest.raises(LifecycleViolation):
        lifecycle.check_transition(TxType.WITHDRAW_CANDIDACY, before, before)
