"""
Refund-capped burn solver.

Finds how much extra gas a harness has to burn so that, after the
environment caps the refund at total_gas // quotient, the harness reports
the idealized gas of the metered call instead of what it actually charged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class BurnSolution:
    burn: int = 0
    final_refund: int = 0
    target_gas: int = 0
    refund_capped: bool = False
    clamped: bool = False


def reported_gas(
    overhead: int,
    observed: int,
    burn: int,
    harness_overhead: int,
    machine_refund: int,
    refund_quotient: int,
) -> int:
    """Net gas the environment reports once the refund cap is applied."""
    total = overhead + observed + burn + harness_overhead
    return total - min(machine_refund, total // refund_quotient)


def solve_burn(
    overhead: int,
    observed: int,
    machine_gas: int,
    ideal_gas: int,
    machine_refund: int,
    ideal_refund: int,
    harness_overhead: int,
    refund_quotient: int,
) -> BurnSolution:
    """Solve for the burn amount that makes the reported gas hit the target.

    Args:
        overhead: static call overhead (intrinsic gas, calldata, access list)
        observed: gas the harness counted while executing the call
        machine_gas / machine_refund: access costs as the machine charged them
        ideal_gas / ideal_refund: access costs against cold state
        harness_overhead: fixed cost of invoking the burner itself
        refund_quotient: refund cap denominator
    """
    target = overhead + observed + ideal_gas - machine_gas - ideal_refund
    solution = BurnSolution(target_gas=target)

    # Case 1: the machine refund is credited in full
    burn = ideal_gas - machine_gas - ideal_refund + machine_refund - harness_overhead
    cap = (overhead + observed + burn + harness_overhead) // refund_quotient
    if machine_refund > cap:
        # Case 2: the refund is capped at total // quotient, so
        #   total - total // q == target  =>  total == q * target // (q - 1)
        solution.refund_capped = True
        burn = (
            refund_quotient * (ideal_gas - machine_gas - ideal_refund - harness_overhead)
            + observed + overhead + harness_overhead
        ) // (refund_quotient - 1)

    if burn < 0:
        logger.warning(
            "Idealized gas %d is below what the harness can report; clamping burn %d to 0",
            target, burn,
        )
        burn = 0
        solution.clamped = True
    solution.burn = burn

    total = overhead + observed + burn + harness_overhead
    final_refund = min(machine_refund, total // refund_quotient)
    if final_refund < 0:
        logger.warning("Negative final refund %d clamped to 0", final_refund)
        final_refund = 0
        solution.clamped = True
    solution.final_refund = final_refund
    return solution
