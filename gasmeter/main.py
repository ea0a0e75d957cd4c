"""
gasmeter: replay a recorded access trace.

Reads a JSON trace (setup accesses, metered accesses, observed gas and
calldata), runs the accounting engine and the burn solver, and prints the
idealized gas the metered call would have cost as a standalone transaction.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from eth_utils import decode_hex, to_checksum_address

from gasmeter.accounting.engine import AccessAccountingEngine
from gasmeter.accounting.gas import FlatCalldataOverhead, StandardCallOverhead
from gasmeter.accounting.solver import solve_burn
from gasmeter.common.config import FeeSchedule, FeeScheduleError, get_fee_schedule
from gasmeter.common.types import (
    AccessRecord,
    TraceFormatError,
    parse_access_list,
    parse_address,
    parse_int,
    parse_list,
)


logger = logging.getLogger("gasmeter")

OVERHEAD_MODELS = {
    "standard": StandardCallOverhead,
    "flat": FlatCalldataOverhead,
}


def load_fees(args: argparse.Namespace, trace: dict) -> FeeSchedule:
    """Preset from --fees, then the trace's "fees" entry, then --fees-file."""
    fees = get_fee_schedule(args.fees)
    trace_fees = trace.get("fees")
    if isinstance(trace_fees, str):
        fees = get_fee_schedule(trace_fees)
    elif isinstance(trace_fees, dict):
        fees = FeeSchedule.from_json(trace_fees, base=fees)
    if args.fees_file:
        with open(args.fees_file) as f:
            fees = FeeSchedule.from_json(json.load(f), base=fees)
    return fees


def replay(trace: dict, fees: FeeSchedule, overhead_model: str = "standard",
           harness_overhead: Optional[int] = None) -> dict:
    """Run one recorded scenario through the engine and solver."""
    target = parse_address(trace["target"]) if trace.get("target") else None
    try:
        setup = [AccessRecord.from_json(a) for a in parse_list(trace.get("setup", []), "setup")]
        measured = [
            AccessRecord.from_json(a) for a in parse_list(trace.get("measured", []), "measured")
        ]
        observed = parse_int(trace["observed"])
    except KeyError as e:
        raise TraceFormatError(f"Trace missing field {e}") from None
    try:
        calldata = decode_hex(trace.get("calldata", "0x"))
    except (ValueError, TypeError):
        raise TraceFormatError(f"Invalid calldata: {trace.get('calldata')!r}") from None
    access_list = parse_access_list(trace.get("accessList", []))
    if harness_overhead is None:
        harness_overhead = parse_int(trace.get("harnessOverhead", 0))

    engine = AccessAccountingEngine(fees)
    engine.preprocess(setup)
    # After preprocess, so setup-touched slots keep their machine originals
    engine.store.apply_access_list(access_list)
    measurement = engine.process(target, measured)

    overhead = OVERHEAD_MODELS[overhead_model](fees).call_overhead(calldata, access_list)
    solution = solve_burn(
        overhead=overhead,
        observed=observed,
        machine_gas=measurement.machine_gas,
        ideal_gas=measurement.ideal_gas,
        machine_refund=measurement.machine_refund,
        ideal_refund=measurement.ideal_refund,
        harness_overhead=harness_overhead,
        refund_quotient=fees.refund_quotient,
    )
    logger.info(
        "Replayed %d setup / %d metered accesses against %s fees",
        len(setup), len(measured), fees.name,
    )
    return {
        "target": to_checksum_address(target) if target else None,
        "fees": fees.name,
        "overhead": overhead,
        "observed": observed,
        "measurement": measurement.to_json(),
        "targetGas": solution.target_gas,
        "burn": solution.burn,
        "finalRefund": solution.final_refund,
        "refundCapped": solution.refund_capped,
        "clamped": solution.clamped,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gasmeter",
        description="Compute cold-start gas for a call recorded in a warm harness",
    )
    parser.add_argument(
        "trace",
        help="Path to a JSON trace file",
    )
    parser.add_argument(
        "--fees",
        default="london",
        help="Fee schedule preset: berlin or london (default: london)",
    )
    parser.add_argument(
        "--fees-file",
        type=str,
        default=None,
        help="JSON file overriding individual fee schedule constants",
    )
    parser.add_argument(
        "--overhead-model",
        choices=sorted(OVERHEAD_MODELS),
        default="standard",
        help="Calldata pricing for the static call overhead (default: standard)",
    )
    parser.add_argument(
        "--harness-overhead",
        type=int,
        default=None,
        help="Fixed gas of one burn call (default: taken from the trace, else 0)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    trace_path = Path(args.trace)
    if not trace_path.exists():
        logger.error("Trace file not found: %s", args.trace)
        return 1

    try:
        with open(trace_path) as f:
            trace = json.load(f)
        if not isinstance(trace, dict):
            raise TraceFormatError("Trace must be a JSON object")
        fees = load_fees(args, trace)
        report = replay(trace, fees, args.overhead_model, args.harness_overhead)
    except (OSError, json.JSONDecodeError, TraceFormatError, FeeScheduleError) as e:
        logger.error("Cannot replay %s: %s", args.trace, e)
        return 1

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        m = report["measurement"]
        print(f"target gas:     {report['targetGas']}")
        print(f"observed gas:   {report['observed']}")
        print(f"call overhead:  {report['overhead']}")
        print(f"machine gas:    {m['machineGas']} (refund {m['machineRefund']})")
        print(f"idealized gas:  {m['idealGas']} (refund {m['idealRefund']})")
        print(f"burn:           {report['burn']}")
        print(f"final refund:   {report['finalRefund']}"
              + (" (capped)" if report["refundCapped"] else ""))
    return 0


if __name__ == "__main__":
    sys.exit(main())
