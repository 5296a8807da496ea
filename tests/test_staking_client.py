"""
Tests for StakeClient against an in-process chain with a fast block producer.
"""
import threading

import pytest

from stakechain.blockchain.core.chain import BlockProducer, LocalChain
from stakechain.client.poller import ConfirmationPoller, PollStatus
from stakechain.client.staking import StakeClient, request_id_of
from stakechain.protocol.config.params import PollSettings, StakeParams
from stakechain.protocol.crypto.keys import generate_consensus_pubkey
from stakechain.protocol.types.common import CandidateState, CodeType, Flag, TxType
from stakechain.protocol.types.tx import DeclareCandidacy, Transfer
from stakechain.protocol.types.validator import Description
from stakechain.scripts.generate_genesis import build_genesis, new_account

SETTINGS = PollSettings(block_timeout=20, wait_timeout=10.0, interval_ms=5)


@pytest.fixture
def genesis():
    return build_genesis(StakeParams(), num_validators=1, num_accounts=3)


@pytest.fixture
def chain(genesis):
    c = LocalChain(genesis=genesis)
    producer = BlockProducer(c, block_time=0.02)
    producer.start()
    yield c
    producer.stop()
    c.db.close()


@pytest.fixture
def client(chain):
    return StakeClient(chain, ConfirmationPoller(chain, SETTINGS))


def test_declare_and_query(client, genesis):
    sender = genesis["accounts"][0]
    key = generate_consensus_pubkey()

    result = client.declare_candidacy(sender, key, Description(name="d"))

    assert result.succeeded
    assert result.deliver_tx.gas_used == 1_000_000
    record = client.query_validator(sender)
    assert record.pub_key.value == key
    assert record.state == CandidateState.VALIDATOR
    assert record.verified == Flag.NO


def test_refused_operation_returns_check_code(client, genesis):
    owner = genesis["validators"][0]["owner_address"]

    result = client.declare_candidacy(owner, generate_consensus_pubkey())

    assert result.height == 0
    assert not result.succeeded
    assert result.check_tx.code == CodeType.INVALID_OUTPUT
    assert client.next_nonce(owner) == 0


def test_local_nonces_allow_several_in_flight(client, chain, genesis):
    sender = genesis["accounts"][0]
    to = new_account()

    handles = [client.submit(sender, Transfer(to_address=to, amount=1)) for _ in range(3)]

    assert all(handles)
    assert len({h.tx_hash for h in handles}) == 3
    outcomes = client.poller.wait_for_any(handles)
    assert all(o.status == PollStatus.INCLUDED for o in outcomes.values())
    assert chain.get_account(to).balance == 3
    assert client.next_nonce(sender) == 3


def test_account_update_round_trip(client, chain, genesis):
    owner = genesis["validators"][0]["owner_address"]
    target = new_account()
    client.transfer(genesis["accounts"][0], target, 10 * chain.params.gas_fee(TxType.ACCEPT_CANDIDACY_ACCOUNT_UPDATE))

    result = client.update_candidacy_account(owner, target)
    assert result.succeeded
    request_id = request_id_of(result)
    assert request_id == 1
    assert chain.get_account_update_request(request_id).to_address == target

    accepted = client.accept_candidacy_account_update(target, request_id)
    assert accepted.succeeded
    assert client.query_validator(owner) is None
    assert client.query_validator(target).id == 1


def test_toggles_and_withdraw(client, genesis):
    sender = genesis["accounts"][1]
    client.declare_candidacy(sender, generate_consensus_pubkey())

    assert client.deactivate_candidacy(sender).succeeded
    assert client.query_validator(sender).state == CandidateState.CANDIDATE
    assert client.deactivate_candidacy(sender).check_tx.code == CodeType.INVALID_OUTPUT
    assert client.activate_candidacy(sender).succeeded
    assert client.query_validator(sender).state == CandidateState.VALIDATOR

    assert client.update_candidacy(sender, description=Description(website="http://aaa.com")).succeeded
    assert client.query_validator(sender).description.website == "http://aaa.com"

    assert client.withdraw_candidacy(sender).succeeded
    assert client.query_validator(sender) is None


def test_verify_by_foundation(client, chain, genesis):
    owner = genesis["validators"][0]["owner_address"]
    assert client.verify_candidacy(chain.params.foundation_address, owner).succeeded
    assert client.query_validator(owner).verified == Flag.YES
    assert client.verify_candidacy(genesis["accounts"][0], owner).check_tx.code == CodeType.UNAUTHORIZED


def test_deliver_rejection_resets_local_nonce(genesis):
    chain = LocalChain(genesis=genesis)
    client = StakeClient(chain, ConfirmationPoller(chain, SETTINGS))
    a, b = genesis["accounts"][0], genesis["accounts"][1]
    key = generate_consensus_pubkey()

    # Both pass the submission check; the second loses at deliver
    assert client.submit(a, DeclareCandidacy(pub_key=key))
    timer = threading.Timer(0.05, chain.produce_block)
    timer.start()
    try:
        result = client.commit(b, DeclareCandidacy(pub_key=key))
    finally:
        timer.join()

    assert result.height == 0
    assert result.check_tx.code == CodeType.OK
    assert result.deliver_tx.code == CodeType.INVALID_OUTPUT
    assert client.next_nonce(b) == 0
    assert client.next_nonce(a) == 1
    chain.db.close()
