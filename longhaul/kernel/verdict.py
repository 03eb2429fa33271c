"""Pass/fail evaluation of a delivery summary."""

from __future__ import annotations

from dataclasses import dataclass

from longhaul.kernel.exceptions import VerdictFailure
from longhaul.kernel.statistics import DeliverySummary


@dataclass(frozen=True, slots=True)
class Verdict:
    """Outcome of a longhaul run for one category."""

    summary: DeliverySummary
    max_travel_time: float
    reasons: tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.reasons

    def raise_for_failure(self) -> None:
        """Raise ``VerdictFailure`` if any threshold was violated."""
        if self.reasons:
            raise VerdictFailure(self.summary.category.value, self.reasons)


def evaluate(summary: DeliverySummary, max_travel_time: float) -> Verdict:
    """Apply the delivery thresholds to *summary*.

    A run fails if nothing was sent, if the received count differs from the
    sent count, or if the slowest delivery exceeded *max_travel_time*
    seconds.  All violations are reported, not just the first.
    """
    reasons: list[str] = []
    if summary.count_sent == 0:
        reasons.append("no operations were sent")
    if summary.count_received != summary.count_sent:
        reasons.append(
            f"received {summary.count_received} of {summary.count_sent} sent"
        )
    if summary.max_travel_time is not None and summary.max_travel_time > max_travel_time:
        reasons.append(
            f"max travel time {summary.max_travel_time:.3f}s exceeds "
            f"{max_travel_time:g}s"
        )
    return Verdict(summary=summary, max_travel_time=max_travel_time, reasons=tuple(reasons))
