# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import AfterValidator, BaseModel, Field
from typing import Annotated, List, Optional
from .common import CandidateState, Flag, RequestState
from ..crypto.addresses import decode_pubkey, normalize_address

PUBKEY_TYPE = "tendermint/PubKeyEd25519"

def _check_pubkey(v: str) -> str:
    decode_pubkey(v)
    return v

# Lowercased 0x-prefixed 20-byte hex
Address = Annotated[str, AfterValidator(normalize_address)]
# Base64 32-byte consensus key
PubKeyValue = Annotated[str, AfterValidator(_check_pubkey)]

class PubKey(BaseModel):
    type: str = PUBKEY_TYPE
    value: PubKeyValue

class Description(BaseModel):
    """Human-readable candidate metadata. Empty strings mean "not set"."""
    name: str = ""
    website: str = ""
    location: str = ""
    email: str = ""
    profile: str = ""

    def is_empty(self) -> bool:
        return not any((self.name, self.website, self.location, self.email, self.profile))

    def merged_with(self, other: "Description") -> "Description":
        """Returns a copy with every non-empty field of `other` applied."""
        data = self.model_dump()
        for k, v in other.model_dump().items():
            if v:
                data[k] = v
        return Description(**data)

class Delegation(BaseModel):
    """Bonded shares from a delegator to a candidate."""
    delegator: str          # Delegator's address (0x...)
    candidate_id: int
    shares: int

class AccountUpdateRequest(BaseModel):
    """Two-step owner migration; accepted only by `to_address`."""
    id: int
    candidate_id: int
    from_address: str
    to_address: str
    created_block_height: int
    accepted_block_height: int = 0
    state: RequestState = RequestState.PENDING

class PendingAccountUpdate(BaseModel):
    id: int
    from_address: str
    to_address: str

class Candidate(BaseModel):
    id: int
    owner_address: Address
    pub_key: PubKey
    state: CandidateState = CandidateState.CANDIDATE
    active: Flag = Flag.NO
    voting_power: int = 0
    tendermint_voting_power: int = 0
    verified: Flag = Flag.NO
    description: Description = Field(default_factory=Description)
    pending_account_update_request: Optional[PendingAccountUpdate] = None

    shares: int = 1                   # Bonded units; voting power = shares * power per unit
    deactivated: bool = False         # Owner opted out of the active set
    block_height: int = 0             # Declared at (0 = genesis)
    created_at: int = 0               # Block timestamp of declaration

    @property
    def is_validator(self) -> bool:
        return self.state == CandidateState.VALIDATOR

class ConsensusValidator(BaseModel):
    """One entry of the consensus layer's validator set."""
    address: str
    pub_key: PubKey
    voting_power: str
    proposer_priority: str = "0"

class ValidatorSet(BaseModel):
    block_height: int
    validators: List[ConsensusValidator]

    def find_by_pubkey(self, value: str) -> Optional[ConsensusValidator]:
        for v in self.validators:
            if v.pub_key.value == value:
                return v
        return None
