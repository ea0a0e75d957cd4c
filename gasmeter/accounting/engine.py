"""
Access accounting engine.

preprocess() replays setup-phase accesses into the warmth store without
charging anything. process() walks the metered accesses in execution order
and prices each one twice: once as the warmed-up machine saw it and once as
a standalone transaction against cold state would have.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from eth_utils import to_checksum_address

from gasmeter.accounting.gas import account_access_cost, sload_cost, sstore_cost
from gasmeter.accounting.warmth import WarmthStore
from gasmeter.common.config import FeeSchedule, LONDON_FEES
from gasmeter.common.types import (
    AccessRecord,
    AccountAccessKind,
    GasMeasurement,
    StorageAccessRecord,
)

logger = logging.getLogger(__name__)

# 0x01 .. 0x11 (ecrecover through the BLS12-381 precompiles)
DEFAULT_PRECOMPILES = frozenset(i.to_bytes(20, "big") for i in range(1, 0x12))


class AccessAccountingEngine:
    """Prices access traces against a fee schedule using a WarmthStore."""

    def __init__(
        self,
        fees: FeeSchedule = LONDON_FEES,
        store: Optional[WarmthStore] = None,
        special_addresses: Iterable[bytes] = (),
        precompiles: Iterable[bytes] = DEFAULT_PRECOMPILES,
    ) -> None:
        self.fees = fees
        self.store = store if store is not None else WarmthStore()
        self.special_addresses = frozenset(special_addresses)
        self.precompiles = frozenset(precompiles)
        self._target_seen = False

    def reset(self) -> None:
        self.store.reset()
        self._target_seen = False

    # -- Setup phase --

    def preprocess(self, accesses: Iterable[AccessRecord]) -> None:
        """Record setup-phase warmth and original values. Charges nothing."""
        for access in accesses:
            if access.account in self.special_addresses or access.account in self.precompiles:
                continue
            self.store.account(access.account).warmed_by_setup = True

            for sa in access.storage_accesses:
                if sa.reverted:
                    continue
                slot = self.store.slot(access.account, sa.slot)
                if not slot.touched and not slot.warmed_by_access_list:
                    slot.touched = True
                    slot.warmed_by_setup = True
                    slot.machine_original_value = sa.previous_value
                # The last setup write is what the measured call starts from
                slot.ideal_original_value = sa.new_value

    # -- Measurement phase --

    def process(
        self,
        target: Optional[bytes],
        accesses: Iterable[AccessRecord],
    ) -> GasMeasurement:
        """Price metered accesses in order. Returns the summed measurement."""
        total = GasMeasurement()
        for access in accesses:
            if access.account in self.special_addresses:
                continue
            total = total + self._process_account(target, access)
            for sa in access.storage_accesses:
                total = total + self._process_storage(access.account, sa)
        return total

    def _process_account(self, target: Optional[bytes], access: AccessRecord) -> GasMeasurement:
        fees = self.fees
        state = self.store.account(access.account)
        result = GasMeasurement()

        if access.account in self.precompiles:
            # Precompiles are warm from the start of every transaction
            result.machine_gas = result.ideal_gas = fees.warm_access
            return result

        if target is not None and not self._target_seen and access.account == target:
            self._target_seen = True
            # Entry into the target is part of the transaction's own overhead
            result.machine_gas = account_access_cost(fees, state.machine_warm)
            if access.initializes_account:
                result.machine_gas += fees.new_account
            logger.debug(
                "target %s first access: machine=%d ideal=0",
                to_checksum_address(access.account), result.machine_gas,
            )
        else:
            result.machine_gas = result.ideal_gas = fees.warm_access
            if access.initializes_account:
                result.machine_gas += fees.new_account
                result.ideal_gas += fees.new_account
            if not access.kind.exempt_from_cold:
                if not state.ideal_warm:
                    result.ideal_gas += fees.cold_account_access
                if not state.machine_warm:
                    result.machine_gas += fees.cold_account_access
            logger.debug(
                "%s %s%s: machine=%d ideal=%d",
                access.kind.name, to_checksum_address(access.account),
                " (reverted)" if access.reverted else "",
                result.machine_gas, result.ideal_gas,
            )

        if not access.reverted or access.kind is AccountAccessKind.CREATE:
            state.warm_up()
        return result

    def _process_storage(self, address: bytes, sa: StorageAccessRecord) -> GasMeasurement:
        fees = self.fees
        slot = self.store.slot(address, sa.slot)
        slot.record_original(sa.previous_value)
        result = GasMeasurement()

        if sa.is_write:
            result.machine_gas, result.machine_refund = sstore_cost(
                fees, slot.machine_warm,
                slot.machine_original_value, sa.previous_value, sa.new_value,
            )
            result.ideal_gas, result.ideal_refund = sstore_cost(
                fees, slot.ideal_warm,
                slot.ideal_original_value, sa.previous_value, sa.new_value,
            )
            if sa.reverted:
                # Gas stays spent, the refund counter is rolled back
                result.machine_refund = result.ideal_refund = 0
        else:
            result.machine_gas = sload_cost(fees, slot.machine_warm)
            result.ideal_gas = sload_cost(fees, slot.ideal_warm)

        if not sa.reverted:
            slot.warm_up()
        return result
