"""
Tests for the node HTTP API handlers and the HTTP RPC client.

Handlers are awaited directly against an in-process chain; the client is
exercised with a mocked requests session.
"""
import asyncio
from unittest.mock import Mock

import pytest
import requests
from fastapi import HTTPException

from stakechain.blockchain.core.chain import LocalChain
from stakechain.blockchain.rpc import api
from stakechain.client.rpc import HttpRpcClient, RpcError
from stakechain.protocol.config.params import StakeParams
from stakechain.protocol.crypto.keys import generate_consensus_pubkey
from stakechain.protocol.types.common import CodeType, Flag, TxStatus
from stakechain.protocol.types.tx import DeclareCandidacy, Transaction, WithdrawCandidacy
from stakechain.scripts.generate_genesis import build_genesis, new_account


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def genesis():
    return build_genesis(StakeParams(history_blocks=2), num_validators=1, num_accounts=2)


@pytest.fixture
def node(genesis):
    chain = LocalChain(genesis=genesis)
    api.chain = chain
    yield chain
    api.chain = None
    chain.db.close()


# ═══════════════════════════════════════════════════════════════════
# API HANDLERS
# ═══════════════════════════════════════════════════════════════════

def test_uninitialized_node():
    api.chain = None
    with pytest.raises(HTTPException) as exc_info:
        run(api.get_status())
    assert exc_info.value.status_code == 503


def test_status_and_params(node):
    status = run(api.get_status())
    assert status["height"] == 0
    assert status["chain_id"] == node.params.chain_id
    assert status["mempool_size"] == 0

    params = run(api.get_params())
    assert params["history_blocks"] == 2
    assert params["foundation_address"] == node.params.foundation_address


def test_send_and_track_transaction(node, genesis):
    sender = genesis["accounts"][0]
    tx = Transaction(from_address=sender, nonce=0, request=DeclareCandidacy(pub_key=generate_consensus_pubkey()))

    handle = run(api.send_tx(tx))
    assert handle["accepted"] is True
    assert run(api.get_tx_status(handle["tx_hash"]))["status"] == "pending"
    with pytest.raises(HTTPException) as exc_info:
        run(api.get_tx_result(handle["tx_hash"]))
    assert exc_info.value.status_code == 404

    node.produce_block()

    status = run(api.get_tx_status(handle["tx_hash"]))
    assert status["status"] == "included"
    assert status["block_height"] == 1
    result = run(api.get_tx_result(handle["tx_hash"]))
    assert result["height"] == 1
    assert result["check_tx"]["code"] == 0


def test_refused_transaction(node, genesis):
    owner = genesis["validators"][0]["owner_address"]
    tx = Transaction(from_address=owner, nonce=0, request=DeclareCandidacy(pub_key=generate_consensus_pubkey()))

    handle = run(api.send_tx(tx))

    assert handle["accepted"] is False
    assert handle["check_tx"]["code"] == CodeType.INVALID_OUTPUT
    assert run(api.get_tx_result(handle["tx_hash"]))["height"] == 0


def test_unknown_transaction_status_is_404(node):
    with pytest.raises(HTTPException) as exc_info:
        run(api.get_tx_status("00" * 32))
    assert exc_info.value.status_code == 404


def test_validator_queries(node, genesis):
    owner = genesis["validators"][0]["owner_address"]

    record = run(api.get_validator(owner))
    assert record["owner_address"] == owner
    assert record["state"] == "Validator"
    assert record["active"] == Flag.YES.value

    listing = run(api.get_validators())
    assert listing["height"] == 0
    assert [c["owner_address"] for c in listing["candidates"]] == [owner]

    with pytest.raises(HTTPException) as exc_info:
        run(api.get_validator(new_account()))
    assert exc_info.value.status_code == 404

    with pytest.raises(HTTPException) as exc_info:
        run(api.get_validator("not-an-address"))
    assert exc_info.value.status_code == 400


def test_pruned_or_future_height_is_400(node, genesis):
    for _ in range(3):
        node.produce_block()
    with pytest.raises(HTTPException) as exc_info:
        run(api.get_validators(height=1))
    assert exc_info.value.status_code == 400

    with pytest.raises(HTTPException) as exc_info:
        run(api.get_consensus_validators(height=99))
    assert exc_info.value.status_code == 400


def test_consensus_validators_shape(node, genesis):
    data = run(api.get_consensus_validators())
    result = data["result"]
    assert result["block_height"] == "0"
    assert len(result["validators"]) == 1
    v = result["validators"][0]
    assert v["voting_power"] == "1000"
    assert v["pub_key"]["value"] == genesis["validators"][0]["pub_key"]
    assert v["pub_key"]["type"] == "tendermint/PubKeyEd25519"


def test_account_and_request_endpoints(node, genesis):
    account = run(api.get_account(genesis["accounts"][0].upper().replace("0X", "0x")))
    assert account["address"] == genesis["accounts"][0]
    assert account["nonce"] == 0
    assert account["pending_txs"] == 0

    sender = genesis["accounts"][0]
    assert node.submit_transaction(
        Transaction(from_address=sender, nonce=0, request=DeclareCandidacy(pub_key=generate_consensus_pubkey())))
    assert run(api.get_account(sender))["pending_txs"] == 1
    node.produce_block()
    assert run(api.get_account(sender))["pending_txs"] == 0

    with pytest.raises(HTTPException) as exc_info:
        run(api.get_account_update_request(1))
    assert exc_info.value.status_code == 404


def test_metrics_endpoint(node):
    node.produce_block()
    response = run(api.get_metrics())
    body = response.body.decode()
    assert "stakechain_block_height 1.0" in body
    assert "stakechain_validator_count_active 1.0" in body


# ═══════════════════════════════════════════════════════════════════
# HTTP CLIENT
# ═══════════════════════════════════════════════════════════════════

def response(status_code=200, payload=None):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    return HttpRpcClient("http://node:8000/", session=session)


def test_client_uses_env_node(monkeypatch, session):
    monkeypatch.setenv("STAKECHAIN_NODE", "http://elsewhere:9000")
    assert HttpRpcClient(session=session).base_url == "http://elsewhere:9000"


def test_client_height(client, session):
    session.request.return_value = response(payload={"height": 42})

    assert client.current_block_height() == 42
    method, url = session.request.call_args.args
    assert (method, url) == ("GET", "http://node:8000/status")
    assert session.request.call_args.kwargs["timeout"] == 10.0


def test_client_submit(client, session):
    tx = Transaction(from_address=new_account(), nonce=0, request=WithdrawCandidacy())
    session.request.return_value = response(payload={
        "tx_hash": tx.hash_hex, "accepted": False,
        "check_tx": {"code": CodeType.UNKNOWN_ADDRESS, "log": "Candidate does not exist for that address"},
    })

    handle = client.submit_transaction(tx)

    assert not handle
    assert handle.check_tx.code == CodeType.UNKNOWN_ADDRESS
    assert session.request.call_args.args == ("POST", "http://node:8000/tx/send")
    assert session.request.call_args.kwargs["json"]["request"]["type"] == "stake/withdrawCandidacy"


def test_client_maps_404(client, session):
    session.request.return_value = response(404, {"detail": "not found"})

    assert client.get_transaction_status("ab" * 32).status == TxStatus.NOT_FOUND
    assert client.get_transaction_result("ab" * 32) is None
    assert client.query_validator(new_account()) is None
    assert client.get_account_update_request(3) is None


def test_client_http_error(client, session):
    session.request.return_value = response(500, {"detail": "boom"})
    with pytest.raises(RpcError) as exc_info:
        client.current_block_height()
    assert exc_info.value.status_code == 500

    # 404 is only "absent" where the endpoint allows it
    session.request.return_value = response(404, {"detail": "nope"})
    with pytest.raises(RpcError):
        client.list_validators()


def test_client_transport_error(client, session):
    session.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(RpcError, match="refused"):
        client.current_block_height()


def test_client_parses_consensus_validators(client, session):
    key = generate_consensus_pubkey()
    session.request.return_value = response(payload={"result": {
        "block_height": "7",
        "validators": [{
            "address": "AB" * 20,
            "pub_key": {"type": "tendermint/PubKeyEd25519", "value": key},
            "voting_power": "1000",
            "proposer_priority": "0",
        }],
    }})

    vset = client.get_consensus_validators(height=7)

    assert vset.block_height == 7
    assert vset.find_by_pubkey(key).voting_power == "1000"
    assert session.request.call_args.kwargs["params"] == {"height": 7}


def test_client_against_handlers(node, genesis, session):
    """Client and server agree on payload shapes."""
    owner = genesis["validators"][0]["owner_address"]
    client = HttpRpcClient("http://node", session=session)

    session.request.return_value = response(payload=run(api.get_validators()))
    assert [c.owner_address for c in client.list_validators()] == [owner]

    session.request.return_value = response(payload=run(api.get_validator(owner)))
    assert client.query_validator(owner).voting_power == 1000

    session.request.return_value = response(payload=run(api.get_params()))
    assert client.get_params() == node.params

    session.request.return_value = response(payload=run(api.get_account(owner)))
    assert client.get_account(owner).balance == node.get_account(owner).balance
