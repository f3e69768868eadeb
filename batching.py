import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchReport(Generic[T, R]):
    succeeded: list[tuple[T, R]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.errors)


def _attempt(worker: Callable[[T], R], item: T, label: str) -> tuple[T, bool, Any]:
    try:
        return item, True, worker(item)
    except Exception as exc:
        logger.exception(f"{label}_item_failed: item={item} error={exc}")
        return item, False, str(exc)


def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], R],
    *,
    batch_size: int,
    max_workers: int = 1,
    delay_secs: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "batch",
) -> BatchReport[T, R]:
    """Run ``worker`` over ``items`` in fixed-size groups.

    Items inside a group run on up to ``max_workers`` threads; groups run one
    after another with ``delay_secs`` between them. A failing item is logged
    and reported, never raised.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    report: BatchReport[T, R] = BatchReport()
    for offset in range(0, len(items), batch_size):
        batch = list(items[offset : offset + batch_size])
        if max_workers <= 1 or len(batch) == 1:
            outcomes = [_attempt(worker, item, label) for item in batch]
        else:
            with ThreadPoolExecutor(max_workers=min(max_workers, len(batch))) as pool:
                outcomes = list(
                    pool.map(lambda item: _attempt(worker, item, label), batch)
                )
        for item, ok, value in outcomes:
            if ok:
                report.succeeded.append((item, value))
            else:
                report.errors.append({"item": item, "error": value})
        if delay_secs and offset + batch_size < len(items):
            sleep(delay_secs)
    return report
