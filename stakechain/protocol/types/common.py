# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum, IntEnum

class TxType(str, Enum):
    TRANSFER = "TRANSFER"

    # Candidacy lifecycle
    DECLARE_CANDIDACY = "stake/declareCandidacy"
    UPDATE_CANDIDACY = "stake/updateCandidacy"
    VERIFY_CANDIDACY = "stake/verifyCandidacy"
    WITHDRAW_CANDIDACY = "stake/withdrawCandidacy"
    ACTIVATE_CANDIDACY = "stake/activateCandidacy"
    DEACTIVATE_CANDIDACY = "stake/deactivateCandidacy"

    # Account migration (two-step)
    UPDATE_CANDIDACY_ACCOUNT = "stake/updateCandidacyAccount"
    ACCEPT_CANDIDACY_ACCOUNT_UPDATE = "stake/acceptCandidacyAccountUpdate"

class CodeType(IntEnum):
    """Result codes surfaced in check_tx / deliver_tx."""
    OK = 0
    INTERNAL_ERROR = 1
    UNAUTHORIZED = 4
    INSUFFICIENT_FUNDS = 5
    UNKNOWN_REQUEST = 6
    INVALID_ADDRESS = 7
    INVALID_PUBKEY = 8
    BAD_NONCE = 9
    INVALID_INPUT = 20
    INVALID_OUTPUT = 21
    UNKNOWN_ADDRESS = 22

class Flag(str, Enum):
    YES = "Y"
    NO = "N"

class CandidateState(str, Enum):
    CANDIDATE = "Candidate"
    VALIDATOR = "Validator"

class RequestState(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"     # Candidate withdrew before acceptance

class TxStatus(str, Enum):
    PENDING = "pending"
    INCLUDED = "included"
    REJECTED = "rejected"
    NOT_FOUND = "notFound"

class ProtocolError(Exception):
    pass

class ValidationError(ProtocolError):
    pass

class StakeError(ValidationError):
    """A staking rule refused the transaction. Carries the result code."""

    def __init__(self, code: CodeType, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self):
        return f"StakeError({self.code.name}, {self.message!r})"

# Named constructors, one per rule
def err_bad_validator_addr() -> StakeError:
    return StakeError(CodeType.UNKNOWN_ADDRESS, "Candidate does not exist for that address")

def err_address_already_declared() -> StakeError:
    return StakeError(CodeType.INVALID_OUTPUT, "Address has been declared")

def err_pubkey_already_declared() -> StakeError:
    return StakeError(CodeType.INVALID_OUTPUT, "PubKey has been declared")

def err_verification_disallowed() -> StakeError:
    return StakeError(CodeType.UNAUTHORIZED, "Verification disallowed")

def err_candidate_already_activated() -> StakeError:
    return StakeError(CodeType.INVALID_OUTPUT, "Candidate has been activated")

def err_candidate_already_deactivated() -> StakeError:
    return StakeError(CodeType.INVALID_OUTPUT, "Candidate has been deactivated")

def err_bad_request(reason: str = "Bad request") -> StakeError:
    return StakeError(CodeType.INVALID_OUTPUT, reason)

def err_insufficient_funds(have: int, need: int) -> StakeError:
    return StakeError(CodeType.INSUFFICIENT_FUNDS, f"Insufficient funds: have {have}, need {need}")

def err_bad_nonce(expected: int, got: int) -> StakeError:
    return StakeError(CodeType.BAD_NONCE, f"Invalid nonce: expected {expected}, got {got}")
