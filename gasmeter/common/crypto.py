"""
Hashing helpers used for address derivation.
"""

from __future__ import annotations

from Crypto.Hash import keccak as _keccak_mod
import rlp


def keccak256(data: bytes) -> bytes:
    """Compute Keccak-256 hash (NOT SHA3-256)."""
    h = _keccak_mod.new(digest_bits=256)
    h.update(data)
    return h.digest()


def label_address(label: str) -> bytes:
    """Deterministic 20-byte address for a harness-owned contract.

    address = keccak256(label)[12:]
    """
    return keccak256(label.encode())[12:]


def create_address(sender: bytes, nonce: int) -> bytes:
    """CREATE address: keccak256(rlp([sender, nonce]))[12:]"""
    return keccak256(rlp.encode([sender, nonce]))[12:]
