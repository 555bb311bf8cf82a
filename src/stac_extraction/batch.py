"""Bounded, order-preserving execution of independent units of work."""

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Generic, TypeVar

from dagster import get_dagster_logger

from stac_extraction.config.constants import BATCH_CANCELLED
from stac_extraction.errors import StacExtractionError
from stac_extraction.models.models import UnitFailure

logger = get_dagster_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class UnitOutcome(Generic[R]):
    """Result of one unit: either ``value`` or ``error`` is set, or it was cancelled."""

    index: int
    value: R | None = None
    error: StacExtractionError | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled


def run_ordered(
    func: Callable[[T], R],
    units: Sequence[T],
    max_workers: int = 1,
    cancel_event: threading.Event | None = None,
) -> list[UnitOutcome[R]]:
    """Run ``func`` over units and return outcomes in input order.

    Library errors raised by a unit are captured in its outcome; any other exception
    propagates. Units not started when ``cancel_event`` is set are marked cancelled.

    :param func: Work function for one unit
    :param units: Units of work
    :param max_workers: Pool bound; 1 runs sequentially in the caller's thread
    :param cancel_event: Optional event checked before each unit starts
    :returns: One outcome per unit, in input order
    """

    def _run(index: int, unit: T) -> UnitOutcome[R]:
        if cancel_event is not None and cancel_event.is_set():
            return UnitOutcome(index=index, cancelled=True)
        try:
            return UnitOutcome(index=index, value=func(unit))
        except StacExtractionError as e:
            return UnitOutcome(index=index, error=e)

    if max_workers <= 1 or len(units) <= 1:
        outcomes = [_run(index, unit) for index, unit in enumerate(units)]
    else:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(units))) as executor:
            futures = [executor.submit(_run, index, unit) for index, unit in enumerate(units)]
            outcomes = [future.result() for future in futures]

    cancelled = sum(1 for outcome in outcomes if outcome.cancelled)
    if cancelled:
        logger.warning(f"Batch cancelled: {cancelled} of {len(units)} unit(s) not run")
    return outcomes


def split_outcomes(outcomes: list[UnitOutcome[R]], hrefs: Sequence[str]) -> tuple[list[R | None], list[UnitFailure]]:
    """Split outcomes into per-unit values and failure records.

    :param outcomes: Outcomes from ``run_ordered``
    :param hrefs: Href or URL of each unit, in the same order
    :returns: Tuple of (values with None for failed units, failures)
    """
    values: list[R | None] = []
    failures: list[UnitFailure] = []
    for outcome in outcomes:
        values.append(outcome.value if outcome.ok else None)
        href = hrefs[outcome.index]
        if outcome.cancelled:
            failures.append(
                UnitFailure(index=outcome.index, href=href, error=BATCH_CANCELLED, message="cancelled before start")
            )
        elif outcome.error is not None:
            logger.warning(f"Unit {outcome.index} ({href}) failed: {outcome.error}")
            failures.append(UnitFailure.from_exception(outcome.index, href, outcome.error))
    return values, failures
