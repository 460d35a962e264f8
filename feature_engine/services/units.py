"""Bounded-concurrency execution of independent pipeline units."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from feature_engine.errors import FeatureEngineError
from feature_engine.models import StageReport, UnitFailure
from feature_engine.observability import record_unit_failure

T = TypeVar("T")
R = TypeVar("R")


async def run_units(
    units: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    limit: int,
    report: StageReport,
    unit_name: Callable[[T], str],
    logger: logging.Logger,
) -> list[R]:
    """Run ``worker`` over ``units`` with at most ``limit`` in flight.

    Engine errors become UnitFailure entries on ``report``; any other
    exception is re-raised after all units settle. Returns the successful
    results in unit order.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(unit: T) -> R:
        async with semaphore:
            return await worker(unit)

    outcomes = await asyncio.gather(*(_run(unit) for unit in units), return_exceptions=True)

    results: list[R] = []
    unexpected: BaseException | None = None
    for unit, outcome in zip(units, outcomes):
        if isinstance(outcome, FeatureEngineError):
            name = unit_name(unit)
            logger.warning("%s unit %s failed: %s", report.stage, name, outcome)
            report.failures.append(
                UnitFailure(unit=name, reason=str(outcome), errorType=type(outcome).__name__)
            )
            record_unit_failure(report.stage, type(outcome).__name__)
        elif isinstance(outcome, BaseException):
            unexpected = unexpected or outcome
        else:
            results.append(outcome)
    if unexpected is not None:
        raise unexpected
    return results
