# MIT License
# Copyright (c) 2025 Hashborn

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from typing import Optional
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from ...protocol.crypto.addresses import is_valid_address
from ...protocol.types.common import TxStatus
from ...protocol.types.tx import Transaction
from ..core.chain import LocalChain
from ..observability.metrics import metrics_registry, update_metrics
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="StakeChain Node RPC")

chain: Optional[LocalChain] = None

def _chain() -> LocalChain:
    if not chain:
        raise HTTPException(status_code=503, detail="Node not initialized")
    return chain

def _address(address: str) -> str:
    if not is_valid_address(address):
        raise HTTPException(status_code=400, detail=f"Invalid address: {address}")
    return address.lower()

@app.get("/")
async def root():
    return {"message": "StakeChain Node RPC", "version": "1.0"}

@app.get("/status")
async def get_status():
    c = _chain()
    return {
        "height": c.height,
        "last_hash": c.last_hash,
        "network": c.params.network_id,
        "chain_id": c.params.chain_id,
        "mempool_size": c.mempool.size(),
    }

@app.get("/params")
async def get_params():
    return _chain().get_params().model_dump(mode="json")

@app.get("/account/{address}")
async def get_account(address: str):
    c = _chain()
    addr = _address(address)
    data = c.get_account(addr).model_dump(mode="json")
    data["pending_txs"] = c.mempool.pending_count(addr)
    return data

@app.post("/tx/send")
async def send_tx(tx: Transaction):
    handle = _chain().submit_transaction(tx)
    return handle.model_dump(mode="json")

@app.get("/tx/{tx_hash}/status")
async def get_tx_status(tx_hash: str):
    report = _chain().get_transaction_status(tx_hash)
    if report.status == TxStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return report.model_dump(mode="json")

@app.get("/tx/{tx_hash}/result")
async def get_tx_result(tx_hash: str):
    result = _chain().get_transaction_result(tx_hash)
    if result is None:
        raise HTTPException(status_code=404, detail="Transaction not found or still pending")
    return result.model_dump(mode="json")

@app.get("/validators")
async def get_validators(height: int = 0):
    c = _chain()
    try:
        cands = c.list_validators(height)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "height": height or c.height,
        "candidates": [x.model_dump(mode="json") for x in cands],
    }

@app.get("/validator/{address}")
async def get_validator(address: str, height: int = 0):
    try:
        cand = _chain().query_validator(_address(address), height)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not cand:
        raise HTTPException(status_code=404, detail="Candidate not found")
    return cand.model_dump(mode="json")

@app.get("/account_update_request/{request_id}")
async def get_account_update_request(request_id: int):
    req = _chain().get_account_update_request(request_id)
    if not req:
        raise HTTPException(status_code=404, detail="Request not found")
    return req.model_dump(mode="json")

@app.get("/consensus/validators")
async def get_consensus_validators(height: int = 0):
    """Consensus-layer validator set, in the shape a Tendermint /validators call returns."""
    try:
        vset = _chain().get_consensus_validators(height)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "result": {
            "block_height": str(vset.block_height),
            "validators": [v.model_dump(mode="json") for v in vset.validators],
        }
    }

@app.get("/metrics")
async def get_metrics():
    """Prometheus metrics in text format."""
    if chain:
        update_metrics(chain)
    return Response(content=generate_latest(metrics_registry), media_type=CONTENT_TYPE_LATEST)

def start_rpc_server(chain_instance: LocalChain, host: str = "0.0.0.0", port: int = 8000):
    global chain
    chain = chain_instance
    import uvicorn
    uvicorn.run(app, host=host, port=port)
