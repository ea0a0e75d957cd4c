"""
Warmth tracking for metered accounts and storage slots.

The store records, per account and per (account, slot), whether the entry
is warm going forward, whether its warmth only comes from pre-measurement
setup or from a declared access list, and the original slot values as
seen by the executing machine and by the idealized cold-start model.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence


@dataclass
class AccountState:
    is_warm: bool = False
    warmed_by_setup: bool = False
    warmed_by_access_list: bool = False

    @property
    def machine_warm(self) -> bool:
        """Warm as far as the executing (already warmed-up) machine is concerned."""
        return self.is_warm or self.warmed_by_setup

    @property
    def ideal_warm(self) -> bool:
        """Warm in a standalone transaction against all-cold state."""
        return self.is_warm or self.warmed_by_access_list

    def warm_up(self) -> None:
        self.is_warm = True
        self.warmed_by_setup = False
        self.warmed_by_access_list = False


@dataclass
class SlotState(AccountState):
    touched: bool = False
    machine_original_value: int = 0
    ideal_original_value: int = 0

    def record_original(self, value: int) -> None:
        """Snapshot both original values on first observation."""
        if self.touched:
            return
        self.touched = True
        self.machine_original_value = value
        self.ideal_original_value = value


class WarmthStore:
    """Owned warmth table for one metered scenario.

    Call reset() between scenarios: state left over from a previous
    measurement makes cold accesses look warm.
    """

    def __init__(self) -> None:
        self.accounts: dict[bytes, AccountState] = {}
        self.slots: dict[tuple[bytes, int], SlotState] = {}

    def account(self, address: bytes) -> AccountState:
        state = self.accounts.get(address)
        if state is None:
            state = self.accounts[address] = AccountState()
        return state

    def slot(self, address: bytes, key: int) -> SlotState:
        state = self.slots.get((address, key))
        if state is None:
            state = self.slots[(address, key)] = SlotState()
        return state

    def mark_account_warm(self, address: bytes) -> None:
        self.account(address).warm_up()

    def apply_access_list(self, access_list: Iterable[tuple[bytes, Sequence[int]]]) -> None:
        """Mark declared accounts and slots as access-list warm (EIP-2930)."""
        for address, keys in access_list:
            self.account(address).warmed_by_access_list = True
            for key in keys:
                self.slot(address, key).warmed_by_access_list = True

    def reset(self) -> None:
        self.accounts.clear()
        self.slots.clear()

    def __contains__(self, address: bytes) -> bool:
        return address in self.accounts

    def __len__(self) -> int:
        return len(self.accounts) + len(self.slots)
