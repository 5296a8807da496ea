# MIT License
# Copyright (c) 2025 Hashborn

from ecdsa import SigningKey, SECP256k1 # type: ignore
import base64
import os

def generate_private_key() -> bytes:
    """Generates a random 32-byte private key."""
    return os.urandom(32)

def public_key_from_private(priv_bytes: bytes) -> bytes:
    """Returns compressed 33-byte public key from private key."""
    sk = SigningKey.from_string(priv_bytes, curve=SECP256k1)
    vk = sk.get_verifying_key()
    return vk.to_string("compressed")

def generate_consensus_pubkey() -> str:
    """
    Returns a fresh base64 consensus (ed25519-sized) public key.

    The dev node never verifies consensus signatures, so 32 random bytes
    stand in for a real key pair.
    """
    return base64.b64encode(os.urandom(32)).decode("ascii")
