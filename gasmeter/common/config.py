"""
Fee schedule configuration.

A FeeSchedule holds the access, SSTORE, refund and transaction constants
the accounting engine prices against. One schedule is selected per meter.
Presets cover Berlin (EIP-2929) and London (EIP-3529) pricing.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Optional


class FeeScheduleError(ValueError):
    """Raised when a fee schedule carries unusable constants."""
    pass


# Refund constants are adjustments and may legitimately be negative.
REFUND_FIELDS = frozenset({
    "refund_clear",
    "refund_restore_zero_warm",
    "refund_restore_zero_cold",
    "refund_restore_nonzero_warm",
    "refund_restore_nonzero_cold",
})


# ---------------------------------------------------------------------------
# Fee schedule
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FeeSchedule:
    name: str = "london"

    # Account / slot access (EIP-2929)
    warm_access: int = 100
    cold_account_access: int = 2600    # surcharge on top of warm_access
    cold_sload: int = 2100             # surcharge on top of warm_access
    new_account: int = 25000

    # SSTORE tiers (EIP-2200)
    sstore_set: int = 20000
    sstore_reset: int = 2900           # 5000 - cold_sload
    sstore_dirty: int = 100

    # Refunds (EIP-3529)
    refund_clear: int = 4800
    refund_restore_zero_warm: int = 19900
    refund_restore_zero_cold: int = 19900
    refund_restore_nonzero_warm: int = 2800
    refund_restore_nonzero_cold: int = 2800
    refund_quotient: int = 5           # max refund = gas_used // quotient

    # Transaction overhead
    tx_base: int = 21000
    tx_data_zero: int = 4
    tx_data_nonzero: int = 16
    access_list_address: int = 2400
    access_list_storage_key: int = 1900

    def __post_init__(self) -> None:
        for f in fields(self):
            if f.name == "name":
                continue
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise FeeScheduleError(f"{f.name} must be an int, got {value!r}")
            if f.name not in REFUND_FIELDS and value < 0:
                raise FeeScheduleError(f"{f.name} must be non-negative, got {value}")
        if self.refund_quotient < 2:
            raise FeeScheduleError(
                f"refund_quotient must be at least 2, got {self.refund_quotient}"
            )

    def restore_refund(self, original_is_zero: bool, warm: bool) -> int:
        """Refund for a write that puts a dirty slot back to its original value."""
        if original_is_zero:
            return self.refund_restore_zero_warm if warm else self.refund_restore_zero_cold
        return self.refund_restore_nonzero_warm if warm else self.refund_restore_nonzero_cold

    def max_refund(self, gas_used: int) -> int:
        return gas_used // self.refund_quotient

    @classmethod
    def from_json(cls, data: dict, base: Optional[FeeSchedule] = None) -> FeeSchedule:
        """Build a schedule from a JSON object, overriding ``base`` field by field.

        Keys may be snake_case (``cold_sload``) or camelCase (``coldSload``).
        A ``"base"`` key names the preset to start from.
        """
        if not isinstance(data, dict):
            raise FeeScheduleError(f"Fee schedule must be a JSON object, got {data!r}")
        if base is None:
            base = get_fee_schedule(data.get("base", "london"))
        known = {f.name for f in fields(cls)}
        overrides = {}
        for key, value in data.items():
            if key == "base":
                continue
            name = _snake_case(key)
            if name not in known:
                raise FeeScheduleError(f"Unknown fee schedule field: {key}")
            overrides[name] = value
        return replace(base, **overrides)


def _snake_case(key: str) -> str:
    out = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

LONDON_FEES = FeeSchedule()

# Berlin: EIP-2929 access costs with pre-EIP-3529 refunds.
BERLIN_FEES = FeeSchedule(
    name="berlin",
    refund_clear=15000,
    refund_quotient=2,
)

FEE_SCHEDULES: dict[str, FeeSchedule] = {
    "berlin": BERLIN_FEES,
    "london": LONDON_FEES,
}


def get_fee_schedule(name: str) -> FeeSchedule:
    try:
        return FEE_SCHEDULES[name.lower()]
    except (KeyError, AttributeError):
        raise FeeScheduleError(
            f"Unknown fee schedule {name!r} (expected one of {sorted(FEE_SCHEDULES)})"
        ) from None
