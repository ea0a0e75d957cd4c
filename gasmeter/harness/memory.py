"""
In-memory warm harness.

InMemoryHarness stands in for a test-runner EVM: contracts are Python
callables, world state lives in dicts, and every account/slot access is
charged to a pausable gas counter and optionally recorded as an
AccessRecord trace. Useful for exercising GasMeter end to end.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from gasmeter.accounting.engine import DEFAULT_PRECOMPILES
from gasmeter.accounting.gas import account_access_cost, sload_cost, sstore_cost
from gasmeter.common.config import FeeSchedule, LONDON_FEES
from gasmeter.common.crypto import create_address, label_address
from gasmeter.common.types import (
    AccessRecord,
    AccountAccessKind,
    StorageAccessRecord,
)
from gasmeter.harness.base import CallResult, MeteringHarness

logger = logging.getLogger(__name__)

MAX_CALL_DEPTH = 1024
DEFAULT_BURN_OVERHEAD = 400

TEST_CONTRACT_ADDRESS = label_address("gasmeter.test")

Handler = Callable[["CallContext"], Optional[bytes]]


class HarnessError(Exception):
    """Base class for errors that abort a harness call frame."""
    pass


class Revert(HarnessError):
    """Raised by a contract handler to revert its frame."""
    def __init__(self, data: bytes = b""):
        self.data = data
        super().__init__()


class WriteProtection(HarnessError):
    """State modification inside a static call."""
    pass


# ---------------------------------------------------------------------------
# Warm sets (EIP-2929)
# ---------------------------------------------------------------------------

class AccessSets:
    """Track warm/cold state for addresses and storage keys."""

    def __init__(self) -> None:
        self.warm_addresses: set[bytes] = set()
        self.warm_storage: set[tuple[bytes, int]] = set()

    def mark_warm_address(self, address: bytes) -> bool:
        """Mark address as warm. Returns True if it was already warm."""
        was_warm = address in self.warm_addresses
        self.warm_addresses.add(address)
        return was_warm

    def mark_warm_storage(self, address: bytes, key: int) -> bool:
        """Mark storage slot as warm. Returns True if it was already warm."""
        slot = (address, key)
        was_warm = slot in self.warm_storage
        self.warm_storage.add(slot)
        return was_warm

    def snapshot(self) -> tuple[frozenset[bytes], frozenset[tuple[bytes, int]]]:
        return frozenset(self.warm_addresses), frozenset(self.warm_storage)

    def restore(self, snap: tuple[frozenset[bytes], frozenset[tuple[bytes, int]]]) -> None:
        self.warm_addresses = set(snap[0])
        self.warm_storage = set(snap[1])


# ---------------------------------------------------------------------------
# Call context handed to contract handlers
# ---------------------------------------------------------------------------

@dataclass
class CallContext:
    """One frame of a harness call. Handlers touch state only through it."""

    harness: InMemoryHarness
    caller: bytes
    address: bytes
    value: int = 0
    calldata: bytes = b""
    depth: int = 0
    is_static: bool = False
    record: Optional[AccessRecord] = field(default=None, repr=False)

    def sload(self, key: int) -> int:
        return self.harness._sload(self, key)

    def sstore(self, key: int, value: int) -> None:
        self.harness._sstore(self, key, value)

    def call(self, to: bytes, data: bytes = b"", value: int = 0) -> CallResult:
        if value and self.is_static:
            raise WriteProtection("Value transfer in static call")
        return self.harness._subcall(self, to, data, value, AccountAccessKind.CALL)

    def static_call(self, to: bytes, data: bytes = b"") -> CallResult:
        return self.harness._subcall(self, to, data, 0, AccountAccessKind.STATICCALL)

    def balance(self, address: bytes) -> int:
        return self.harness._balance_query(self, address)

    def create(self, handler: Handler, value: int = 0) -> bytes:
        if self.is_static:
            raise WriteProtection("CREATE in static call")
        return self.harness._create(self, handler, value)

    def selfdestruct(self, beneficiary: bytes) -> None:
        if self.is_static:
            raise WriteProtection("SELFDESTRUCT in static call")
        self.harness._selfdestruct(self, beneficiary)

    def use_gas(self, amount: int) -> None:
        """Charge plain execution gas (arithmetic, memory, ...)."""
        self.harness._consume(amount)

    def revert(self, data: bytes = b"") -> None:
        raise Revert(data)


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------

class InMemoryHarness(MeteringHarness):
    """Warm test harness backed by in-memory state.

    The gas counter starts paused. Setup work done while it is paused still
    warms accounts and slots, which is exactly the situation GasMeter
    corrects for.
    """

    def __init__(
        self,
        fees: FeeSchedule = LONDON_FEES,
        test_address: bytes = TEST_CONTRACT_ADDRESS,
        burn_overhead: int = DEFAULT_BURN_OVERHEAD,
    ) -> None:
        self.fees = fees
        self.test_address = test_address
        self.burn_overhead = burn_overhead

        # State
        self._balances: dict[bytes, int] = {}
        self._nonces: dict[bytes, int] = {}
        self._code: dict[bytes, Handler] = {}
        self._storage: dict[tuple[bytes, int], int] = {}
        self._original_storage: dict[tuple[bytes, int], int] = {}

        # Warmth; the test contract and precompiles start warm
        self.access_sets = AccessSets()
        self.access_sets.mark_warm_address(test_address)
        for address in DEFAULT_PRECOMPILES:
            self.access_sets.mark_warm_address(address)

        # Counter
        self._counting = False
        self._gas_used = 0
        self._refund = 0

        # Trace
        self._tracing = False
        self._trace: list[AccessRecord] = []

        self._snapshots: list[dict] = []

    # -- State accessors --

    def deploy(self, address: bytes, handler: Handler, balance: int = 0) -> None:
        self._code[address] = handler
        self._nonces.setdefault(address, 1)
        if balance:
            self._balances[address] = balance

    def get_balance(self, address: bytes) -> int:
        return self._balances.get(address, 0)

    def set_balance(self, address: bytes, balance: int) -> None:
        self._balances[address] = balance

    def get_storage(self, address: bytes, key: int) -> int:
        return self._storage.get((address, key), 0)

    def set_storage(self, address: bytes, key: int, value: int) -> None:
        """Seed storage directly, outside of any call. Not charged or traced."""
        self._storage[(address, key)] = value

    def get_original_storage(self, address: bytes, key: int) -> int:
        slot = (address, key)
        return self._original_storage.get(slot, self._storage.get(slot, 0))

    def account_exists(self, address: bytes) -> bool:
        return (
            address in self._balances
            or address in self._nonces
            or address in self._code
        )

    # -- Snapshots for call-level rollback --

    def snapshot(self) -> int:
        snap = {
            "balances": dict(self._balances),
            "nonces": dict(self._nonces),
            "code": dict(self._code),
            "storage": dict(self._storage),
            "refund": self._refund,
            "access_sets": self.access_sets.snapshot(),
        }
        self._snapshots.append(snap)
        return len(self._snapshots) - 1

    def rollback(self, snap_id: int) -> None:
        snap = self._snapshots[snap_id]
        self._balances = snap["balances"]
        self._nonces = snap["nonces"]
        self._code = snap["code"]
        self._storage = snap["storage"]
        self._refund = snap["refund"]
        self.access_sets.restore(snap["access_sets"])
        self._snapshots = self._snapshots[:snap_id]

    def commit(self, snap_id: int) -> None:
        self._snapshots = self._snapshots[:snap_id]

    # -- MeteringHarness --

    def begin_trace(self) -> None:
        self._tracing = True
        self._trace = []

    def end_trace(self) -> list[AccessRecord]:
        self._tracing = False
        trace, self._trace = self._trace, []
        return trace

    def pause_counter(self) -> None:
        self._counting = False

    def resume_counter(self) -> None:
        self._counting = True

    def raw_call(
        self,
        sender: bytes,
        to: bytes,
        data: bytes = b"",
        value: int = 0,
        impersonate: bool = False,
        expect_revert: bool = False,
    ) -> CallResult:
        """Dispatch a top-level call from the test contract (or ``sender`` when impersonating).

        With expect_revert the result's success flag reports whether the
        call reverted as expected.
        """
        caller = sender if impersonate else self.test_address
        result = self._call(caller, to, data, value, 0, False, AccountAccessKind.CALL)
        if expect_revert:
            result.success = not result.success
        return result

    def burn_gas(self, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Cannot burn negative gas: {amount}")
        self._consume(amount + self.burn_overhead)

    @property
    def gas_used(self) -> int:
        return self._gas_used

    @property
    def refund(self) -> int:
        return self._refund

    def reported_gas(self, overhead: int = 0) -> int:
        """Counter total plus ``overhead``, less the refund capped by the schedule."""
        total = overhead + self._gas_used
        return total - min(self._refund, self.fees.max_refund(total))

    # -- Execution --

    def _consume(self, amount: int) -> None:
        if self._counting:
            self._gas_used += amount

    def _add_refund(self, amount: int) -> None:
        if self._counting:
            self._refund += amount

    def _record(self, record: AccessRecord) -> AccessRecord:
        if self._tracing:
            self._trace.append(record)
        return record

    def _mark_reverted(self, start: int) -> None:
        for record in self._trace[start:]:
            record.reverted = True
            for sa in record.storage_accesses:
                sa.reverted = True

    def _call(
        self,
        caller: bytes,
        to: bytes,
        data: bytes,
        value: int,
        depth: int,
        is_static: bool,
        kind: AccountAccessKind,
    ) -> CallResult:
        if depth > MAX_CALL_DEPTH:
            return CallResult(success=False)

        gas_before = self._gas_used
        start = len(self._trace)
        initialized = self.account_exists(to)
        snap = self.snapshot()

        record = self._record(AccessRecord(
            account=to, kind=kind, value=value, initialized=initialized,
        ))
        warm = self.access_sets.mark_warm_address(to)
        cost = account_access_cost(self.fees, warm)
        if record.initializes_account:
            cost += self.fees.new_account
        self._consume(cost)

        ctx = CallContext(
            harness=self,
            caller=caller,
            address=to,
            value=value,
            calldata=data,
            depth=depth,
            is_static=is_static,
            record=record,
        )
        try:
            if value:
                if self.get_balance(caller) < value:
                    raise Revert(b"insufficient balance")
                self._balances[caller] = self.get_balance(caller) - value
                self._balances[to] = self.get_balance(to) + value

            handler = self._code.get(to)
            if handler is not None:
                output = handler(ctx) or b""
            elif to in DEFAULT_PRECOMPILES:
                output = data
            else:
                output = b""
        except HarnessError as e:
            self.rollback(snap)
            self._mark_reverted(start)
            logger.debug("call to %s reverted at depth %d", to.hex(), depth)
            return CallResult(
                success=False,
                return_data=getattr(e, "data", b""),
                gas_consumed=self._gas_used - gas_before,
            )

        self.commit(snap)
        return CallResult(
            success=True,
            return_data=output,
            gas_consumed=self._gas_used - gas_before,
        )

    def _subcall(
        self,
        ctx: CallContext,
        to: bytes,
        data: bytes,
        value: int,
        kind: AccountAccessKind,
    ) -> CallResult:
        is_static = ctx.is_static or kind is AccountAccessKind.STATICCALL
        result = self._call(ctx.address, to, data, value, ctx.depth + 1, is_static, kind)
        # Accesses after the sub-call belong to the resumed frame
        ctx.record = self._record(AccessRecord(
            account=ctx.address, kind=AccountAccessKind.RESUME,
        ))
        return result

    def _sload(self, ctx: CallContext, key: int) -> int:
        value = self.get_storage(ctx.address, key)
        warm = self.access_sets.mark_warm_storage(ctx.address, key)
        self._consume(sload_cost(self.fees, warm))
        ctx.record.storage_accesses.append(StorageAccessRecord.read(key, value))
        return value

    def _sstore(self, ctx: CallContext, key: int, value: int) -> None:
        if ctx.is_static:
            raise WriteProtection("SSTORE in static call")
        slot = (ctx.address, key)
        current = self.get_storage(ctx.address, key)
        self._original_storage.setdefault(slot, current)
        original = self._original_storage[slot]

        warm = self.access_sets.mark_warm_storage(ctx.address, key)
        gas, refund = sstore_cost(self.fees, warm, original, current, value)
        self._consume(gas)
        self._add_refund(refund)
        self._storage[slot] = value
        ctx.record.storage_accesses.append(StorageAccessRecord.write(key, current, value))

    def _balance_query(self, ctx: CallContext, address: bytes) -> int:
        self._record(AccessRecord(
            account=address,
            kind=AccountAccessKind.BALANCE,
            initialized=self.account_exists(address),
        ))
        warm = self.access_sets.mark_warm_address(address)
        self._consume(account_access_cost(self.fees, warm))
        return self.get_balance(address)

    def _create(self, ctx: CallContext, handler: Handler, value: int) -> bytes:
        nonce = self._nonces.get(ctx.address, 0)
        address = create_address(ctx.address, nonce)
        self._nonces[ctx.address] = nonce + 1

        self._record(AccessRecord(
            account=address,
            kind=AccountAccessKind.CREATE,
            value=value,
            initialized=self.account_exists(address),
        ))
        self.access_sets.mark_warm_address(address)
        self._consume(self.fees.warm_access)

        if value:
            if self.get_balance(ctx.address) < value:
                raise Revert(b"insufficient balance")
            self._balances[ctx.address] -= value
            self._balances[address] = self.get_balance(address) + value
        self.deploy(address, handler)
        return address

    def _selfdestruct(self, ctx: CallContext, beneficiary: bytes) -> None:
        balance = self.get_balance(ctx.address)
        record = self._record(AccessRecord(
            account=beneficiary,
            kind=AccountAccessKind.SELFDESTRUCT,
            value=balance,
            initialized=self.account_exists(beneficiary),
        ))
        warm = self.access_sets.mark_warm_address(beneficiary)
        cost = account_access_cost(self.fees, warm)
        if record.initializes_account:
            cost += self.fees.new_account
        self._consume(cost)
        self._balances[ctx.address] = 0
        self._balances[beneficiary] = self.get_balance(beneficiary) + balance
