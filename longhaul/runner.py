"""Entry point for the test-runner collaborator.

``run`` maps one longhaul run to a process-style exit status: ``0`` when
the verdict passes, ``1`` for any failure (fatal fault or verdict).
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from longhaul.engine.orchestrators import ORCHESTRATORS
from longhaul.kernel.exceptions import LonghaulError
from longhaul.kernel.statistics import Category

if TYPE_CHECKING:
    from collections.abc import Callable

    from longhaul.engine.resources import LonghaulRun

log = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def run(
    longhaul_run: LonghaulRun,
    category: Category | str,
    iteration_seconds: float | None = None,
    total_seconds: float | None = None,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Run one category against *longhaul_run* and return an exit status."""
    category = Category(category)
    orchestrator = ORCHESTRATORS[category](longhaul_run, clock=clock, sleep=sleep)
    try:
        verdict = orchestrator.run(iteration_seconds, total_seconds)
        verdict.raise_for_failure()
    except LonghaulError as exc:
        log.error("Longhaul %s run failed: %s", category.value, exc)
        return EXIT_FAILURE
    return EXIT_SUCCESS
