"""Test fixtures for gas metering tests."""

from .addresses import (
    ALICE_ADDRESS,
    BOB_ADDRESS,
    TOKEN_ADDRESS,
    VAULT_ADDRESS,
    FRESH_ADDRESS,
    ECRECOVER_ADDRESS,
    IDENTITY_ADDRESS,
)

__all__ = [
    "ALICE_ADDRESS",
    "BOB_ADDRESS",
    "TOKEN_ADDRESS",
    "VAULT_ADDRESS",
    "FRESH_ADDRESS",
    "ECRECOVER_ADDRESS",
    "IDENTITY_ADDRESS",
]
