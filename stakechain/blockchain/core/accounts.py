# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel
from ...protocol.types.validator import Address

class Account(BaseModel):
    address: Address
    balance: int = 0
    nonce: int = 0
