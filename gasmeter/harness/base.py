"""
Harness collaborator interface.

The meter drives a test harness through these calls only: trace capture,
pausing its gas counter, dispatching the metered call and burning gas.
Subclass MeteringHarness to connect a real execution environment.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from gasmeter.common.types import AccessRecord


@dataclass
class CallResult:
    success: bool = True
    return_data: bytes = b""
    gas_consumed: int = 0


class MeteringHarness(ABC):
    """Abstract harness interface.

    burn_overhead is the fixed gas a burn_gas() call costs on top of the
    requested amount.
    """

    burn_overhead: int = 0

    # -----------------------------------------------------------------
    # Trace capture
    # -----------------------------------------------------------------

    @abstractmethod
    def begin_trace(self) -> None:
        """Start recording account and storage accesses."""
        ...

    @abstractmethod
    def end_trace(self) -> list[AccessRecord]:
        """Stop recording and return every access since begin_trace(), in execution order."""
        ...

    # -----------------------------------------------------------------
    # Gas counter
    # -----------------------------------------------------------------

    @abstractmethod
    def pause_counter(self) -> None:
        ...

    @abstractmethod
    def resume_counter(self) -> None:
        ...

    @property
    @abstractmethod
    def gas_used(self) -> int:
        """Gas counted so far, before refunds."""
        ...

    @property
    @abstractmethod
    def refund(self) -> int:
        ...

    # -----------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------

    @abstractmethod
    def raw_call(
        self,
        sender: bytes,
        to: bytes,
        data: bytes = b"",
        value: int = 0,
        impersonate: bool = False,
        expect_revert: bool = False,
    ) -> CallResult:
        """Dispatch a call and report the gas it consumed.

        With expect_revert, success reports whether the call reverted.
        """
        ...

    @abstractmethod
    def burn_gas(self, amount: int) -> None:
        """Consume ``amount`` additional gas, plus burn_overhead."""
        ...
