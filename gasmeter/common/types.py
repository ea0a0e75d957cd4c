"""
Core metering types: access records produced by a harness trace and the
gas measurement the accounting engine derives from them.

Records can be decoded from the JSON trace format via from_json().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Union

from eth_utils import is_hex_address, to_canonical_address


class TraceFormatError(ValueError):
    """Raised when a JSON trace cannot be decoded."""
    pass


# ---------------------------------------------------------------------------
# Access kinds
# ---------------------------------------------------------------------------

class AccountAccessKind(IntEnum):
    CALL = 0
    DELEGATECALL = 1
    CALLCODE = 2
    STATICCALL = 3
    CREATE = 4
    SELFDESTRUCT = 5
    RESUME = 6
    BALANCE = 7
    EXTCODESIZE = 8
    EXTCODEHASH = 9
    EXTCODECOPY = 10

    @property
    def exempt_from_cold(self) -> bool:
        """CREATE and RESUME never pay a cold account surcharge."""
        return self in (AccountAccessKind.CREATE, AccountAccessKind.RESUME)

    @property
    def can_initialize(self) -> bool:
        """Kinds that move value into the accessed account."""
        return self in (AccountAccessKind.CALL, AccountAccessKind.SELFDESTRUCT)

    @classmethod
    def parse(cls, raw: Union[str, int]) -> AccountAccessKind:
        try:
            if isinstance(raw, str) and not raw.isdigit():
                return cls[raw.upper()]
            return cls(int(raw))
        except (KeyError, ValueError, TypeError):
            raise TraceFormatError(f"Unknown access kind: {raw!r}") from None


# ---------------------------------------------------------------------------
# Access records
# ---------------------------------------------------------------------------

@dataclass
class StorageAccessRecord:
    slot: int
    is_write: bool = False
    previous_value: int = 0
    new_value: int = 0
    reverted: bool = False

    @classmethod
    def read(cls, slot: int, value: int, reverted: bool = False) -> StorageAccessRecord:
        return cls(slot=slot, is_write=False, previous_value=value,
                   new_value=value, reverted=reverted)

    @classmethod
    def write(cls, slot: int, previous: int, new: int,
              reverted: bool = False) -> StorageAccessRecord:
        return cls(slot=slot, is_write=True, previous_value=previous,
                   new_value=new, reverted=reverted)

    @classmethod
    def from_json(cls, data: dict) -> StorageAccessRecord:
        if not isinstance(data, dict):
            raise TraceFormatError(f"Storage access must be an object, got {data!r}")
        try:
            return cls(
                slot=parse_int(data["slot"]),
                is_write=parse_bool(data.get("isWrite", False)),
                previous_value=parse_int(data.get("previousValue", 0)),
                new_value=parse_int(data.get("newValue", data.get("previousValue", 0))),
                reverted=parse_bool(data.get("reverted", False)),
            )
        except KeyError as e:
            raise TraceFormatError(f"Storage access missing field {e}") from None


@dataclass
class AccessRecord:
    """One account touched by one frame, with its storage accesses in order."""

    account: bytes
    kind: AccountAccessKind = AccountAccessKind.CALL
    value: int = 0
    initialized: bool = True
    reverted: bool = False
    storage_accesses: list[StorageAccessRecord] = field(default_factory=list)

    @property
    def initializes_account(self) -> bool:
        return self.kind.can_initialize and self.value > 0 and not self.initialized

    @classmethod
    def from_json(cls, data: dict) -> AccessRecord:
        if not isinstance(data, dict):
            raise TraceFormatError(f"Access record must be an object, got {data!r}")
        try:
            account = parse_address(data["account"])
        except KeyError:
            raise TraceFormatError("Access record missing 'account'") from None
        return cls(
            account=account,
            kind=AccountAccessKind.parse(data.get("kind", "call")),
            value=parse_int(data.get("value", 0)),
            initialized=parse_bool(data.get("initialized", True)),
            reverted=parse_bool(data.get("reverted", False)),
            storage_accesses=[
                StorageAccessRecord.from_json(s)
                for s in parse_list(data.get("storageAccesses", []), "storageAccesses")
            ],
        )


# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------

@dataclass
class GasMeasurement:
    """Machine-observed and idealized gas/refund totals for one processed trace."""

    machine_gas: int = 0
    ideal_gas: int = 0
    machine_refund: int = 0
    ideal_refund: int = 0

    def __add__(self, other: GasMeasurement) -> GasMeasurement:
        return GasMeasurement(
            machine_gas=self.machine_gas + other.machine_gas,
            ideal_gas=self.ideal_gas + other.ideal_gas,
            machine_refund=self.machine_refund + other.machine_refund,
            ideal_refund=self.ideal_refund + other.ideal_refund,
        )

    @property
    def gas_delta(self) -> int:
        return self.ideal_gas - self.machine_gas

    def to_json(self) -> dict:
        return {
            "machineGas": self.machine_gas,
            "idealGas": self.ideal_gas,
            "machineRefund": self.machine_refund,
            "idealRefund": self.ideal_refund,
        }


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def parse_int(raw: Union[str, int]) -> int:
    """Parse a decimal or 0x-prefixed hex quantity."""
    if isinstance(raw, bool):
        raise TraceFormatError(f"Expected an integer, got {raw!r}")
    if isinstance(raw, int):
        return raw
    try:
        if raw.startswith(("0x", "0X")):
            return int(raw, 16)
        return int(raw)
    except (AttributeError, ValueError):
        raise TraceFormatError(f"Expected an integer, got {raw!r}") from None


def parse_bool(raw: bool) -> bool:
    if not isinstance(raw, bool):
        raise TraceFormatError(f"Expected true or false, got {raw!r}")
    return raw


def parse_list(raw: list, what: str) -> list:
    if not isinstance(raw, list):
        raise TraceFormatError(f"{what} must be a list, got {raw!r}")
    return raw


def parse_address(raw: str) -> bytes:
    if not isinstance(raw, str) or not is_hex_address(raw):
        raise TraceFormatError(f"Invalid address: {raw!r}")
    return to_canonical_address(raw)


def parse_access_list(raw: list) -> list[tuple[bytes, list[int]]]:
    """Decode an EIP-2930 style access list."""
    entries = []
    for item in parse_list(raw, "accessList"):
        try:
            address = parse_address(item["address"])
        except (KeyError, TypeError):
            raise TraceFormatError(f"Invalid access list entry: {item!r}") from None
        keys = parse_list(item.get("storageKeys", []), "storageKeys")
        entries.append((address, [parse_int(k) for k in keys]))
    return entries
