"""
Gas cost calculations shared by the accounting engine and the harness.

Covers account/slot access costs (EIP-2929), SSTORE gas and refunds
(EIP-2200 / EIP-3529) and the static transaction overhead of a call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from gasmeter.common.config import FeeSchedule

AccessList = Sequence[tuple[bytes, Sequence[int]]]


# ---------------------------------------------------------------------------
# Account / slot access
# ---------------------------------------------------------------------------

def account_access_cost(fees: FeeSchedule, warm: bool) -> int:
    return fees.warm_access + (0 if warm else fees.cold_account_access)


def sload_cost(fees: FeeSchedule, warm: bool) -> int:
    return fees.warm_access + (0 if warm else fees.cold_sload)


# ---------------------------------------------------------------------------
# SSTORE gas (EIP-2200 + EIP-3529)
# ---------------------------------------------------------------------------

def sstore_cost(
    fees: FeeSchedule,
    warm: bool,
    original: int,
    current: int,
    new: int,
) -> tuple[int, int]:
    """Calculate SSTORE gas cost and refund delta.

    ``original`` is the slot value at the start of the call being priced,
    ``current`` the value before this write. The refund may be negative.

    Returns (gas_cost, refund_delta).
    """
    cold_cost = 0 if warm else fees.cold_sload

    if new == current:
        gas = fees.warm_access
    elif current == original:
        # Slot hasn't been changed yet in this call
        gas = fees.sstore_set if original == 0 else fees.sstore_reset
    else:
        gas = fees.sstore_dirty

    refund = 0
    if new != current:
        if current == original and original != 0 and new == 0:
            refund += fees.refund_clear
        elif original != 0:
            if current == 0:
                # Slot was cleared earlier in the call and is now re-dirtied
                refund -= fees.refund_clear
            if new == 0:
                refund += fees.refund_clear

        if new == original:
            refund += fees.restore_refund(original == 0, warm)

    return gas + cold_cost, refund


# ---------------------------------------------------------------------------
# Call overhead (calldata + access list)
# ---------------------------------------------------------------------------

class CallOverhead(ABC):
    """Static gas a standalone transaction pays before executing the call.

    Override calldata_cost() for networks that price calldata differently.
    """

    def __init__(self, fees: FeeSchedule) -> None:
        self.fees = fees

    @abstractmethod
    def calldata_cost(self, data: bytes) -> int:
        ...

    def access_list_cost(self, access_list: AccessList) -> int:
        gas = 0
        for _address, keys in access_list:
            gas += self.fees.access_list_address
            gas += len(keys) * self.fees.access_list_storage_key
        return gas

    def call_overhead(self, data: bytes, access_list: AccessList = ()) -> int:
        return (
            self.fees.tx_base
            + self.calldata_cost(data)
            + self.access_list_cost(access_list)
        )


class StandardCallOverhead(CallOverhead):
    """EIP-2028 calldata pricing: zero bytes are discounted."""

    def calldata_cost(self, data: bytes) -> int:
        zeros = data.count(0)
        return zeros * self.fees.tx_data_zero + (len(data) - zeros) * self.fees.tx_data_nonzero


class FlatCalldataOverhead(CallOverhead):
    """Every calldata byte priced as nonzero (no zero-byte discount)."""

    def calldata_cost(self, data: bytes) -> int:
        return len(data) * self.fees.tx_data_nonzero
