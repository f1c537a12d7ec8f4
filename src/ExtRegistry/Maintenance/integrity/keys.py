"""Ed25519 key material for extension signatures.

Private keys are stored as the raw 32-byte seed, public keys as PEM
SubjectPublicKeyInfo so that clients can fetch and verify with stock tooling.
"""

from __future__ import annotations

from typing import Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

__all__ = ["generate_key_pair", "load_private_key", "load_public_key"]


def generate_key_pair() -> Tuple[bytes, str]:
    """Return ``(raw private key bytes, PEM public key)`` of a fresh Ed25519 pair."""
    private_key = Ed25519PrivateKey.generate()
    private_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_bytes, public_pem.decode("ascii")


def load_private_key(private_bytes: bytes) -> Ed25519PrivateKey:
    return Ed25519PrivateKey.from_private_bytes(private_bytes)


def load_public_key(public_pem: str) -> Ed25519PublicKey:
    key = serialization.load_pem_public_key(public_pem.encode("ascii"))
    if not isinstance(key, Ed25519PublicKey):
        raise ValueError(f"Expected an Ed25519 public key, got {type(key).__name__}")
    return key
