# leadflow/batch_runner.py
"""Bounded-concurrency batch execution with per-item failure isolation."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar, Union

from leadflow.errors import RunCancelled
from leadflow.rate_governor import RateGovernor

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class Succeeded(Generic[R]):
    value: R

    @property
    def ok(self) -> bool:
        return True


@dataclass
class Failed:
    error: Exception

    @property
    def ok(self) -> bool:
        return False


@dataclass
class Skipped:
    """Never launched because the caller's stop condition held."""

    @property
    def ok(self) -> bool:
        return False


Outcome = Union[Succeeded, Failed, Skipped]


class BatchRunner:
    """Runs ``operation(item)`` over items in consecutive groups of ``batch_size``.

    Every operation in a group is launched at once and the group is awaited as
    a whole. An exception from one operation becomes ``Failed(error)`` for that
    item and never touches its siblings or later groups. Between groups (not
    after the last) the runner sleeps ``inter_batch_delay`` seconds; this is
    separate from the per-call ``governor``, which is acquired right before
    each operation.

    Cancellation is checked before each group is launched. A launched group
    always runs to completion. ``stop_when`` is checked at the same point; once
    it returns True the remaining items are tagged ``Skipped`` and the run
    returns normally.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep

    async def _guarded(
        self,
        item: T,
        operation: Callable[[T], Awaitable[R]],
        governor: Optional[RateGovernor],
    ) -> Outcome:
        try:
            if governor is not None:
                await governor.acquire()
            return Succeeded(await operation(item))
        except Exception as e:
            logger.warning("Batch item failed (%s): %s", type(e).__name__, e)
            return Failed(e)

    async def run(
        self,
        items: Sequence[T],
        operation: Callable[[T], Awaitable[R]],
        *,
        batch_size: int,
        inter_batch_delay: float = 0.0,
        governor: Optional[RateGovernor] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_result: Optional[Callable[[T, Outcome], Any]] = None,
        stop_when: Optional[Callable[[], bool]] = None,
    ) -> list[Outcome]:
        """Return one outcome per item, in input order."""
        if batch_size <= 0:
            raise ValueError("batch_size must be a positive integer")

        items = list(items)
        results: list[Outcome] = []
        total_groups = (len(items) + batch_size - 1) // batch_size

        for group_index, start in enumerate(range(0, len(items), batch_size)):
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled(
                    f"Cancelled before group {group_index + 1}/{total_groups} "
                    f"({len(results)} of {len(items)} items done)",
                    completed=results,
                )
            if stop_when is not None and stop_when():
                logger.info("Stop condition met, skipping %d remaining items", len(items) - start)
                results.extend(Skipped() for _ in items[start:])
                break

            group = items[start:start + batch_size]
            logger.debug("Running group %d/%d (%d items)", group_index + 1, total_groups, len(group))

            async def run_one(item):
                outcome = await self._guarded(item, operation, governor)
                if on_result is not None:
                    on_result(item, outcome)
                return outcome

            # gather preserves argument order regardless of completion order
            results.extend(await asyncio.gather(*[run_one(item) for item in group]))

            if group_index < total_groups - 1 and inter_batch_delay > 0:
                if stop_when is not None and stop_when():
                    continue
                await self._sleep(inter_batch_delay)

        return results
