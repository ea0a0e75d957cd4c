"""Pytest configuration and shared fixtures for all tests."""

import pytest

from gasmeter.accounting.engine import AccessAccountingEngine
from gasmeter.common.config import LONDON_FEES
from gasmeter.harness.memory import InMemoryHarness
from gasmeter.harness.meter import GasMeter

from tests.fixtures.addresses import ALICE_ADDRESS, TOKEN_ADDRESS


# =============================================================================
# Scripted contracts
# =============================================================================

def token_contract(ctx):
    """Tiny token: slot 1 holds Alice's balance, slot 2 Bob's."""
    if ctx.calldata == b"mint":
        ctx.sstore(1, 1000)
    elif ctx.calldata == b"transfer":
        balance = ctx.sload(1)
        ctx.sstore(1, balance - 100)
        ctx.sstore(2, 100)
        ctx.use_gas(500)
    elif ctx.calldata == b"clear":
        ctx.sstore(1, 0)
    elif ctx.calldata == b"fail":
        ctx.sstore(3, 7)
        ctx.revert(b"nope")
    return b"ok"


def batch_contract(ctx):
    """Writes 100 slots on "fill", clears all of them on "clear"."""
    if ctx.calldata == b"fill":
        for i in range(100):
            ctx.sstore(i, i + 1)
    elif ctx.calldata == b"clear":
        for i in range(100):
            ctx.sstore(i, 0)


# =============================================================================
# Core fixtures
# =============================================================================

@pytest.fixture
def fees():
    return LONDON_FEES


@pytest.fixture
def engine(fees):
    return AccessAccountingEngine(fees)


@pytest.fixture
def harness(fees):
    h = InMemoryHarness(fees)
    h.deploy(TOKEN_ADDRESS, token_contract)
    return h


@pytest.fixture
def meter(harness, fees):
    return GasMeter(harness, fees)


@pytest.fixture
def minted(harness, meter):
    """Setup phase: Alice's balance is minted with the counter paused."""
    harness.begin_trace()
    result = harness.raw_call(ALICE_ADDRESS, TOKEN_ADDRESS, b"mint")
    assert result.success
    meter.preprocess(harness.end_trace())
    return meter
