# MIT License
# Copyright (c) 2025 Hashborn

import base64
import json
from pydantic import BaseModel, Field
from typing import Annotated, Literal, Optional, Union
from ..crypto.hash import sha256_hex
from .common import CodeType, TxStatus, TxType
from .validator import Address, Description, PubKeyValue

# Note: one model per operation; each carries only the fields it needs.
# The "type" literals are TxType values.
class Transfer(BaseModel):
    type: Literal["TRANSFER"] = "TRANSFER"
    to_address: Address
    amount: int = Field(gt=0)

class DeclareCandidacy(BaseModel):
    type: Literal["stake/declareCandidacy"] = "stake/declareCandidacy"
    pub_key: PubKeyValue
    description: Description = Field(default_factory=Description)
    shares: int = Field(default=1, ge=1)

class UpdateCandidacy(BaseModel):
    type: Literal["stake/updateCandidacy"] = "stake/updateCandidacy"
    pub_key: Optional[PubKeyValue] = None   # None keeps the current key
    description: Description = Field(default_factory=Description)

class VerifyCandidacy(BaseModel):
    type: Literal["stake/verifyCandidacy"] = "stake/verifyCandidacy"
    candidate_address: Address
    verified: bool = True

class WithdrawCandidacy(BaseModel):
    type: Literal["stake/withdrawCandidacy"] = "stake/withdrawCandidacy"

class ActivateCandidacy(BaseModel):
    type: Literal["stake/activateCandidacy"] = "stake/activateCandidacy"

class DeactivateCandidacy(BaseModel):
    type: Literal["stake/deactivateCandidacy"] = "stake/deactivateCandidacy"

class UpdateCandidacyAccount(BaseModel):
    type: Literal["stake/updateCandidacyAccount"] = "stake/updateCandidacyAccount"
    new_candidate_account: Address

class AcceptCandidacyAccountUpdate(BaseModel):
    type: Literal["stake/acceptCandidacyAccountUpdate"] = "stake/acceptCandidacyAccountUpdate"
    account_update_request_id: int = Field(ge=1)

StakeRequest = Annotated[
    Union[
        Transfer,
        DeclareCandidacy,
        UpdateCandidacy,
        VerifyCandidacy,
        WithdrawCandidacy,
        ActivateCandidacy,
        DeactivateCandidacy,
        UpdateCandidacyAccount,
        AcceptCandidacyAccountUpdate,
    ],
    Field(discriminator="type"),
]

class Transaction(BaseModel):
    from_address: Address
    nonce: int = Field(ge=0)
    request: StakeRequest

    @property
    def tx_type(self) -> TxType:
        return TxType(self.request.type)

    def hash(self) -> str:
        body = {
            "from": self.from_address,
            "nonce": self.nonce,
            "request": self.request.model_dump(mode="json"),
        }
        return sha256_hex(json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8"))

    @property
    def hash_hex(self) -> str:
        return self.hash()

class CheckTxResult(BaseModel):
    code: int = CodeType.OK
    log: str = ""

class DeliverTxResult(BaseModel):
    code: int = CodeType.OK
    data: str = ""          # base64
    log: str = ""
    gas_used: int = 0
    gas_fee: str = "0"      # decimal string, wei

class TxResult(BaseModel):
    """
    Outcome of a transaction as surfaced to callers.

    height == 0 means rejected (see check_tx.code / deliver_tx.code),
    height > 0 is the block that included it.
    """
    hash: str
    height: int = 0
    check_tx: CheckTxResult = Field(default_factory=CheckTxResult)
    deliver_tx: DeliverTxResult = Field(default_factory=DeliverTxResult)

    @property
    def succeeded(self) -> bool:
        return self.height > 0

    def data_text(self) -> str:
        if not self.deliver_tx.data:
            return ""
        return base64.b64decode(self.deliver_tx.data).decode("utf-8")

class TxHandle(BaseModel):
    """Returned by submission. Falsy when the node refused the transaction outright."""
    tx_hash: str
    accepted: bool
    check_tx: CheckTxResult = Field(default_factory=CheckTxResult)

    def __bool__(self) -> bool:
        return self.accepted

class TxStatusReport(BaseModel):
    tx_hash: str
    status: TxStatus
    block_height: Optional[int] = None
    code: int = CodeType.OK
    log: str = ""
    confirmations: Optional[int] = None     # Included only: blocks since inclusion, counting it
