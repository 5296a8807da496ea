#!/usr/bin/env python3
# MIT License
# Copyright (c) 2025 Hashborn
"""
Generate a devnet genesis for a StakeChain dev node.

The genesis carries the chain parameters, the genesis validators, the funded
account pool used by scenario drivers and the foundation account.

Usage:
    python -m stakechain.scripts.generate_genesis \
        --validators 1 \
        --accounts 10 \
        --genesis-output data/genesis.json \
        --keys-dir data/keys
"""

import argparse
import json
import logging
import os
import time
from typing import Optional

from ..protocol.config.params import CURRENT_NETWORK, DECIMALS, DENOM, StakeParams
from ..protocol.crypto.addresses import address_from_pubkey
from ..protocol.crypto.keys import generate_consensus_pubkey, generate_private_key, public_key_from_private

logger = logging.getLogger(__name__)

DEFAULT_BALANCE = 1_000_000 * 10**DECIMALS


def new_account(keys_dir: Optional[str] = None, name: Optional[str] = None) -> str:
    """Creates an account key pair and returns its address. Saves the key if keys_dir is given."""
    priv = generate_private_key()
    address = address_from_pubkey(public_key_from_private(priv))
    if keys_dir:
        key_path = os.path.join(keys_dir, f"{name or address}.hex")
        with open(key_path, "w") as f:
            f.write(priv.hex())
        os.chmod(key_path, 0o600)
    return address


def build_genesis(params: Optional[StakeParams] = None,
                  num_validators: int = 1,
                  num_accounts: int = 10,
                  balance: int = DEFAULT_BALANCE,
                  keys_dir: Optional[str] = None) -> dict:
    """
    Returns a genesis dict: {genesis_time, params, alloc, validators, accounts}.

    `accounts` is the ordered pool of funded addresses; genesis validators are
    owned by extra funded addresses outside that pool.
    """
    params = params or CURRENT_NETWORK
    if keys_dir:
        os.makedirs(keys_dir, exist_ok=True)

    alloc = {params.foundation_address: balance}

    validators = []
    for i in range(1, num_validators + 1):
        owner = new_account(keys_dir, f"validator_{i}")
        alloc[owner] = balance
        validators.append({
            "owner_address": owner,
            "pub_key": generate_consensus_pubkey(),
            "shares": 1,
            "description": {"name": f"genesis-{i}"},
        })

    accounts = []
    for i in range(num_accounts):
        address = new_account(keys_dir, f"account_{i}")
        alloc[address] = balance
        accounts.append(address)

    return {
        "genesis_time": int(time.time()),
        "params": params.model_dump(mode="json"),
        "alloc": alloc,
        "validators": validators,
        "accounts": accounts,
    }


def main():
    parser = argparse.ArgumentParser(description="Generate a StakeChain devnet genesis")
    parser.add_argument("--validators", "-n", type=int, default=1, help="Number of genesis validators (default: 1)")
    parser.add_argument("--accounts", "-a", type=int, default=10, help="Funded pool accounts (default: 10)")
    parser.add_argument("--balance", type=float, default=1_000_000, help=f"Balance per account in {DENOM}")
    parser.add_argument("--max-validators", type=int, default=None, help="Override the active set size")
    parser.add_argument("--keys-dir", "-k", default=None, help="Save account keys here")
    parser.add_argument("--genesis-output", "-o", default="./data/genesis.json", help="Genesis file output path")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(message)s')

    if args.validators < 1:
        parser.error("Number of validators must be at least 1")

    params = CURRENT_NETWORK
    if args.max_validators is not None:
        params = params.model_copy(update={"max_validators": args.max_validators})

    genesis = build_genesis(
        params=params,
        num_validators=args.validators,
        num_accounts=args.accounts,
        balance=int(args.balance * 10**DECIMALS),
        keys_dir=args.keys_dir,
    )

    os.makedirs(os.path.dirname(args.genesis_output) or '.', exist_ok=True)
    with open(args.genesis_output, "w") as f:
        json.dump(genesis, f, indent=2)

    logger.info(f"Genesis written to {args.genesis_output}: "
                f"{len(genesis['validators'])} validators, {len(genesis['accounts'])} accounts")


if __name__ == "__main__":
    main()
