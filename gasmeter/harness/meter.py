"""
Metering orchestrator.

GasMeter runs one call under a harness, prices the recorded accesses as a
standalone cold-start transaction would have paid them, and burns the
difference so that the harness's own counter reports the idealized gas.

Only one metered call per scenario is supported. Warmth left behind by a
first metered call is not undone; call reset() before measuring again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from eth_utils import to_checksum_address

from gasmeter.accounting.engine import AccessAccountingEngine
from gasmeter.accounting.gas import AccessList, CallOverhead, StandardCallOverhead
from gasmeter.accounting.solver import BurnSolution, solve_burn
from gasmeter.common.config import FeeSchedule, LONDON_FEES
from gasmeter.common.crypto import label_address
from gasmeter.common.types import AccessRecord, GasMeasurement
from gasmeter.harness.base import CallResult, MeteringHarness

logger = logging.getLogger(__name__)

BURNER_ADDRESS = label_address("gasmeter.burner")


class CallFailed(Exception):
    """The metered call reverted without expect_revert. Carries its return data."""
    def __init__(self, return_data: bytes = b""):
        self.return_data = return_data
        super().__init__(f"Metered call failed: 0x{return_data.hex()}")


class MissingRevert(Exception):
    """expect_revert was requested but the metered call succeeded."""
    pass


@dataclass
class MeteredCall:
    result: CallResult = field(default_factory=CallResult)
    measurement: GasMeasurement = field(default_factory=GasMeasurement)
    solution: BurnSolution = field(default_factory=BurnSolution)
    overhead: int = 0

    @property
    def target_gas(self) -> int:
        return self.solution.target_gas

    @property
    def final_refund(self) -> int:
        return self.solution.final_refund


class GasMeter:
    """Meter a single call as if it were the first thing executed on cold state."""

    def __init__(
        self,
        harness: MeteringHarness,
        fees: FeeSchedule = LONDON_FEES,
        overhead_model: Optional[CallOverhead] = None,
        harness_overhead: Optional[int] = None,
        special_addresses: Iterable[bytes] = (),
        burner_address: bytes = BURNER_ADDRESS,
    ) -> None:
        self.harness = harness
        self.fees = fees
        self.overhead_model = overhead_model or StandardCallOverhead(fees)
        if harness_overhead is None:
            harness_overhead = harness.burn_overhead
        self.harness_overhead = harness_overhead
        self.burner_address = burner_address
        self.engine = AccessAccountingEngine(fees, special_addresses=special_addresses)

    def preprocess(self, accesses: Iterable[AccessRecord]) -> None:
        """Feed setup-phase accesses so their warmth can be discounted later."""
        self.engine.preprocess(accesses)

    def reset(self) -> None:
        self.engine.reset()

    def meter_call(
        self,
        sender: bytes,
        to: bytes,
        data: bytes = b"",
        value: int = 0,
        impersonate: bool = False,
        expect_revert: bool = False,
        access_list: AccessList = (),
    ) -> MeteredCall:
        """Execute ``to`` under the harness counter and burn up to the idealized gas.

        Raises CallFailed (after accounting and burning) if the call failed
        and expect_revert was not set, MissingRevert if it was set and the
        call succeeded.
        """
        harness = self.harness
        # The burner must not show up as a cold access of the metered call
        self.engine.store.mark_account_warm(self.burner_address)
        self.engine.store.apply_access_list(access_list)

        harness.begin_trace()
        harness.resume_counter()
        result = harness.raw_call(sender, to, data, value, impersonate, expect_revert)
        harness.pause_counter()
        accesses = harness.end_trace()

        measurement = self.engine.process(to, accesses)
        overhead = self.overhead_model.call_overhead(data, access_list)
        solution = solve_burn(
            overhead=overhead,
            observed=result.gas_consumed,
            machine_gas=measurement.machine_gas,
            ideal_gas=measurement.ideal_gas,
            machine_refund=measurement.machine_refund,
            ideal_refund=measurement.ideal_refund,
            harness_overhead=self.harness_overhead,
            refund_quotient=self.fees.refund_quotient,
        )

        harness.resume_counter()
        harness.burn_gas(solution.burn)
        harness.pause_counter()

        logger.info(
            "Metered call to %s: target gas %d (observed %d, burned %d, refund %d%s)",
            to_checksum_address(to),
            solution.target_gas,
            result.gas_consumed,
            solution.burn,
            solution.final_refund,
            ", capped" if solution.refund_capped else "",
        )
        logger.debug(
            "accesses=%d machine_gas=%d ideal_gas=%d machine_refund=%d ideal_refund=%d",
            len(accesses),
            measurement.machine_gas,
            measurement.ideal_gas,
            measurement.machine_refund,
            measurement.ideal_refund,
        )

        if not result.success:
            if expect_revert:
                raise MissingRevert(f"Call to {to_checksum_address(to)} did not revert")
            raise CallFailed(result.return_data)

        return MeteredCall(
            result=result,
            measurement=measurement,
            solution=solution,
            overhead=overhead,
        )
