# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import json
import logging
import sys
from dataclasses import asdict
from ..client.poller import ChainStalledError, ConfirmationPoller, PollAggregateError
from ..client.rpc import HttpRpcClient, RpcError
from ..client.staking import StakeClient
from ..protocol.config.params import DECIMALS, DENOM, PollSettings
from ..protocol.types.tx import (
    AcceptCandidacyAccountUpdate, ActivateCandidacy, DeactivateCandidacy, DeclareCandidacy,
    Transfer, UpdateCandidacy, UpdateCandidacyAccount, VerifyCandidacy, WithdrawCandidacy,
)
from ..protocol.types.validator import Description
from ..protocol.lifecycle import LifecycleViolation
from ..scripts.testing.harness import ScenarioFailure
from ..scripts.testing.validator_scenario import run_scenario

def _print(obj):
    print(json.dumps(obj, indent=2, default=str))

def _client(args) -> HttpRpcClient:
    return HttpRpcClient(args.node)

def _poller(args, rpc) -> ConfirmationPoller:
    settings = PollSettings.from_env()
    if args.interval_ms is not None:
        settings.interval_ms = args.interval_ms
    return ConfirmationPoller(rpc, settings)

def _description(args) -> Description:
    return Description(
        name=args.name or "",
        website=args.website or "",
        location=args.location or "",
        email=args.email or "",
        profile=args.profile or "",
    )

# --- Query Commands ---
def cmd_query_status(args):
    rpc = _client(args)
    print(f"Height: {rpc.current_block_height()}")

def cmd_query_validators(args):
    rpc = _client(args)
    cands = rpc.list_validators(args.height)
    print(f"{'Owner':<44} {'State':<10} {'Active':<7} {'Power':<8} {'Verified'}")
    print("-" * 80)
    for c in cands:
        print(f"{c.owner_address:<44} {c.state.value:<10} {c.active.value:<7} {c.voting_power:<8} {c.verified.value}")

def cmd_query_validator(args):
    cand = _client(args).query_validator(args.address, args.height)
    if cand is None:
        print(f"No candidate for {args.address}")
        sys.exit(1)
    _print(cand.model_dump(mode="json"))

def cmd_query_consensus(args):
    vset = _client(args).get_consensus_validators(args.height)
    _print(vset.model_dump(mode="json"))

def cmd_query_account(args):
    acc = _client(args).get_account(args.address)
    print(f"Balance: {acc.balance / 10**DECIMALS} {DENOM}")
    print(f"Nonce: {acc.nonce}")

def cmd_query_request(args):
    req = _client(args).get_account_update_request(args.request_id)
    if req is None:
        print(f"No account update request {args.request_id}")
        sys.exit(1)
    _print(req.model_dump(mode="json"))

# --- Tx Commands ---
def _build_request(args):
    if args.tx_command == "declare":
        return DeclareCandidacy(pub_key=args.pub_key, description=_description(args), shares=args.shares)
    if args.tx_command == "update":
        return UpdateCandidacy(pub_key=args.pub_key, description=_description(args))
    if args.tx_command == "verify":
        return VerifyCandidacy(candidate_address=args.candidate, verified=not args.unverify)
    if args.tx_command == "withdraw":
        return WithdrawCandidacy()
    if args.tx_command == "activate":
        return ActivateCandidacy()
    if args.tx_command == "deactivate":
        return DeactivateCandidacy()
    if args.tx_command == "update-account":
        return UpdateCandidacyAccount(new_candidate_account=args.new_account)
    if args.tx_command == "accept":
        return AcceptCandidacyAccountUpdate(account_update_request_id=args.request_id)
    if args.tx_command == "transfer":
        return Transfer(to_address=args.to_address, amount=int(float(args.amount) * 10**DECIMALS))
    raise ValueError(f"unknown tx command {args.tx_command}")

def cmd_tx(args):
    rpc = _client(args)
    client = StakeClient(rpc, _poller(args, rpc))
    request = _build_request(args)

    if args.no_wait:
        handle = client.submit(args.from_address, request)
        _print(handle.model_dump(mode="json"))
        if not handle:
            sys.exit(1)
        return

    result = client.commit(args.from_address, request, args.block_timeout, args.wall_timeout)
    _print(result.model_dump(mode="json"))
    if not result.succeeded:
        sys.exit(1)
    if args.tx_command == "update-account":
        print(f"Account update request id: {result.data_text()}")

# --- Wait Commands ---
def cmd_wait_blocks(args):
    rpc = _client(args)
    outcome = _poller(args, rpc).wait_for_blocks(args.count, args.block_timeout, args.wall_timeout)
    _print(asdict(outcome))
    if not outcome.ok:
        sys.exit(1)

def cmd_wait_tx(args):
    rpc = _client(args)
    poller = _poller(args, rpc)
    if len(args.tx_hashes) == 1:
        outcomes = {args.tx_hashes[0]: poller.wait_for_transaction(args.tx_hashes[0], args.block_timeout, args.wall_timeout)}
    else:
        outcomes = poller.wait_for_any(args.tx_hashes, args.block_timeout, args.wall_timeout)
    _print({h: asdict(o) for h, o in outcomes.items()})
    if not all(o.ok for o in outcomes.values()):
        sys.exit(1)

# --- Scenario ---
def cmd_scenario(args):
    with open(args.genesis, "r") as f:
        accounts = json.load(f)["accounts"]
    run_scenario(_client(args), accounts)
    print("Validator scenario passed")

def _add_wait_args(p):
    p.add_argument("--block-timeout", type=int, default=None, help="Blocks before giving up (default: $STAKECHAIN_BLOCK_TIMEOUT or 20)")
    p.add_argument("--wall-timeout", type=float, default=None, help="Seconds before the chain counts as stalled (default: $STAKECHAIN_WAIT_TIMEOUT or 60)")
    p.add_argument("--interval-ms", type=int, default=None, help="Polling interval")

def _add_description_args(p):
    p.add_argument("--name")
    p.add_argument("--website")
    p.add_argument("--location")
    p.add_argument("--email")
    p.add_argument("--profile")

def main():
    parser = argparse.ArgumentParser(description="StakeChain CLI")
    parser.add_argument("--node", help="Node URL (default: $STAKECHAIN_NODE or http://localhost:8000)")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Query
    query_parser = subparsers.add_parser("query", help="Query chain state")
    query_sub = query_parser.add_subparsers(dest="query_command", required=True)

    q = query_sub.add_parser("status", help="Current block height")
    q.set_defaults(func=cmd_query_status)

    q = query_sub.add_parser("validators", help="List candidates")
    q.add_argument("--height", type=int, default=0)
    q.set_defaults(func=cmd_query_validators)

    q = query_sub.add_parser("validator", help="Show one candidate")
    q.add_argument("address")
    q.add_argument("--height", type=int, default=0)
    q.set_defaults(func=cmd_query_validator)

    q = query_sub.add_parser("consensus", help="Consensus-layer validator set")
    q.add_argument("--height", type=int, default=0)
    q.set_defaults(func=cmd_query_consensus)

    q = query_sub.add_parser("account", help="Balance and nonce")
    q.add_argument("address")
    q.set_defaults(func=cmd_query_account)

    q = query_sub.add_parser("request", help="Account update request")
    q.add_argument("request_id", type=int)
    q.set_defaults(func=cmd_query_request)

    # Tx
    tx_parser = subparsers.add_parser("tx", help="Submit a transaction and wait for it")
    tx_sub = tx_parser.add_subparsers(dest="tx_command", required=True)

    def tx_command(name, help_text):
        p = tx_sub.add_parser(name, help=help_text)
        p.add_argument("--from", dest="from_address", required=True, help="Sender address")
        p.add_argument("--no-wait", action="store_true", help="Submit only, print the handle")
        _add_wait_args(p)
        p.set_defaults(func=cmd_tx)
        return p

    p = tx_command("declare", "Declare candidacy")
    p.add_argument("--pub-key", required=True, help="Base64 consensus public key")
    p.add_argument("--shares", type=int, default=1)
    _add_description_args(p)

    p = tx_command("update", "Update candidacy")
    p.add_argument("--pub-key", default=None)
    _add_description_args(p)

    p = tx_command("verify", "Verify a candidate (foundation only)")
    p.add_argument("--candidate", required=True)
    p.add_argument("--unverify", action="store_true")

    tx_command("withdraw", "Withdraw candidacy")
    tx_command("activate", "Activate candidacy")
    tx_command("deactivate", "Deactivate candidacy")

    p = tx_command("update-account", "Request an owner address change")
    p.add_argument("--new-account", required=True)

    p = tx_command("accept", "Accept an owner address change")
    p.add_argument("--request-id", type=int, required=True)

    p = tx_command("transfer", "Send coins")
    p.add_argument("to_address")
    p.add_argument("amount", help=f"Amount in {DENOM}")

    # Wait
    wait_parser = subparsers.add_parser("wait", help="Wait for blocks or transactions")
    wait_sub = wait_parser.add_subparsers(dest="wait_command", required=True)

    w = wait_sub.add_parser("blocks", help="Wait for N new blocks")
    w.add_argument("count", type=int, nargs="?", default=1)
    _add_wait_args(w)
    w.set_defaults(func=cmd_wait_blocks)

    w = wait_sub.add_parser("tx", help="Wait for transactions to be included")
    w.add_argument("tx_hashes", nargs="+")
    _add_wait_args(w)
    w.set_defaults(func=cmd_wait_tx)

    # Scenario
    s = subparsers.add_parser("scenario", help="Run the validator lifecycle scenario against the node")
    s.add_argument("--genesis", required=True, help="Genesis file providing the account pool")
    s.set_defaults(func=cmd_scenario)

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING,
                        format='%(asctime)s [%(levelname)s] %(message)s')

    try:
        args.func(args)
    except ChainStalledError as e:
        print(f"Chain stalled: {e}")
        sys.exit(1)
    except PollAggregateError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except RpcError as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    except (ScenarioFailure, LifecycleViolation) as e:
        print(f"[FAIL] {e}")
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
