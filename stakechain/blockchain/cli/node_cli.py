# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import asyncio
import json
import logging
import os
from uvicorn import Config, Server
from ...protocol.config.params import CURRENT_NETWORK
from ...scripts.generate_genesis import build_genesis
from ..core.chain import BlockProducer, LocalChain
from ..rpc import api

logger = logging.getLogger(__name__)

def cmd_init(args):
    """Initialize node: data dir and a devnet genesis."""
    data_dir = args.datadir
    os.makedirs(data_dir, exist_ok=True)

    genesis_path = os.path.join(data_dir, "genesis.json")
    if os.path.exists(genesis_path):
        print(f"Genesis already exists at {genesis_path}")
        return

    params = CURRENT_NETWORK
    if args.max_validators is not None:
        params = params.model_copy(update={"max_validators": args.max_validators})

    genesis = build_genesis(
        params=params,
        num_validators=args.validators,
        num_accounts=args.accounts,
        keys_dir=os.path.join(data_dir, "keys"),
    )
    with open(genesis_path, "w") as f:
        json.dump(genesis, f, indent=2)

    print(f"Genesis validators: {[v['owner_address'] for v in genesis['validators']]}")
    print(f"Funded accounts:    {len(genesis['accounts'])}")
    print(f"Foundation:         {params.foundation_address}")
    print(f"\nNode initialized in {data_dir}")

async def run_node_async(args):
    data_dir = args.datadir
    db_path = os.path.join(data_dir, "chain.db")
    genesis_path = os.path.join(data_dir, "genesis.json")

    print(f"Starting StakeChain dev node...")
    print(f"Data DB: {db_path}")
    print(f"RPC: {args.host}:{args.port}")

    chain = LocalChain(db_path=db_path, genesis_path=genesis_path)
    api.chain = chain

    producer = BlockProducer(chain, block_time=args.block_time)
    producer.start()

    config = Config(app=api.app, host=args.host, port=args.port, log_level="info")
    server = Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        pass
    finally:
        producer.stop()
        chain.db.close()

def cmd_run(args):
    """Wrapper to run async main."""
    try:
        asyncio.run(run_node_async(args))
    except KeyboardInterrupt:
        pass

def main():
    parser = argparse.ArgumentParser(description="StakeChain Dev Node CLI")
    parser.add_argument("--datadir", default="./.stakechain", help="Data directory")

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Initialize node configuration")
    init_parser.add_argument("--validators", type=int, default=1, help="Genesis validators")
    init_parser.add_argument("--accounts", type=int, default=10, help="Funded pool accounts")
    init_parser.add_argument("--max-validators", type=int, default=None, help="Override the active set size")

    run_parser = subparsers.add_parser("run", help="Run the node")
    run_parser.add_argument("--host", default="0.0.0.0", help="RPC Host")
    run_parser.add_argument("--port", type=int, default=8000, help="RPC Port")
    run_parser.add_argument("--block-time", type=float, default=None, help="Seconds between blocks")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        cmd_run(args)

if __name__ == "__main__":
    main()
