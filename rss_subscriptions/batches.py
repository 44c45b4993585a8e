"""Partitioning of record sets into fixed-size identifier ranges for bulk jobs."""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, List, Optional

from .models import BatchRange

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1_000


class PartitionInputError(ValueError):
    """Raised when a partition is requested with invalid sizes."""


def _check_sizes(total_records: int, batch_size: int) -> None:
    if batch_size <= 0:
        raise PartitionInputError(f"batch_size must be positive, got {batch_size}")
    if total_records < 0:
        raise PartitionInputError(
            f"total_records must not be negative, got {total_records}"
        )


def partition(
    total_records: int, batch_size: int = DEFAULT_BATCH_SIZE
) -> List[BatchRange]:
    """Split ``[1, total_records]`` into ascending ranges of at most ``batch_size``."""
    _check_sizes(total_records, batch_size)
    batch_count = math.ceil(total_records / batch_size)
    return [
        BatchRange(
            start=(batch - 1) * batch_size + 1,
            finish=min(batch * batch_size, total_records),
        )
        for batch in range(1, batch_count + 1)
    ]


def job_args(total_records: int, batch_size: int = DEFAULT_BATCH_SIZE) -> List[int]:
    """Return one 1-indexed batch number per range."""
    return list(range(1, len(partition(total_records, batch_size)) + 1))


def batch_for(
    batch: int,
    batch_size: int = DEFAULT_BATCH_SIZE,
    total_records: Optional[int] = None,
) -> BatchRange:
    """Rebuild the range addressed by a batch number.

    Without ``total_records`` the range is always full-width; jobs querying
    ids in that window simply find fewer rows in the last batch.
    """
    if batch < 1:
        raise PartitionInputError(f"batch numbers start at 1, got {batch}")
    start = (batch - 1) * batch_size + 1
    finish = batch * batch_size
    if total_records is not None:
        _check_sizes(total_records, batch_size)
        if start > total_records:
            raise PartitionInputError(
                f"batch {batch} is beyond {total_records} records"
            )
        finish = min(finish, total_records)
    elif batch_size <= 0:
        raise PartitionInputError(f"batch_size must be positive, got {batch_size}")
    return BatchRange(start=start, finish=finish)


def dispatch(
    queue: Any,
    job: Callable[..., Any],
    total_records: int,
    *args: Any,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> list:
    """Enqueue ``job(*args, start, finish)`` once per range and return the futures."""
    ranges = partition(total_records, batch_size)
    logger.info(
        "Dispatching %d batches of %s over %d records",
        len(ranges),
        getattr(job, "__name__", job),
        total_records,
    )
    return [queue.enqueue(job, *args, batch.start, batch.finish) for batch in ranges]
