# MIT License
# Copyright (c) 2025 Hashborn

import base64
import binascii
import re
from .hash import sha256

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
EMPTY_ADDRESS = "0x" + "0" * 40
PUBKEY_SIZE = 32

def address_from_pubkey(pub_bytes: bytes) -> str:
    """Creates a 0x-prefixed 20-byte account address from a public key."""
    return "0x" + sha256(pub_bytes)[:20].hex()

def normalize_address(addr: str) -> str:
    """Lowercases and validates an account address. Raises ValueError."""
    if not isinstance(addr, str) or not ADDRESS_RE.match(addr.strip()):
        raise ValueError(f"Invalid address: {addr!r}")
    return addr.strip().lower()

def is_valid_address(addr: str) -> bool:
    try:
        normalize_address(addr)
        return True
    except ValueError:
        return False

def is_empty_address(addr: str) -> bool:
    return not addr or addr.lower() == EMPTY_ADDRESS

def same_address(a: str, b: str) -> bool:
    """Case-insensitive address comparison."""
    if not a or not b:
        return False
    return a.lower() == b.lower()

def decode_pubkey(value: str) -> bytes:
    """Decodes a base64 consensus public key. Raises ValueError."""
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise ValueError(f"Invalid pubkey encoding: {e}")
    if len(raw) != PUBKEY_SIZE:
        raise ValueError(f"Invalid pubkey length: {len(raw)} (need {PUBKEY_SIZE})")
    return raw

def consensus_address(pub_key_value: str) -> str:
    """Upper-case hex address the consensus layer reports for a pubkey."""
    return sha256(decode_pubkey(pub_key_value))[:20].hex().upper()
