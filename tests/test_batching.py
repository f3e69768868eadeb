import pytest

from batching import run_in_batches


def test_groups_run_in_order_with_delay_between_groups() -> None:
    seen: list[int] = []
    sleeps: list[float] = []

    report = run_in_batches(
        list(range(7)),
        lambda item: seen.append(item) or item * 2,
        batch_size=3,
        delay_secs=1.0,
        sleep=sleeps.append,
    )

    assert seen == list(range(7))
    assert sleeps == [1.0, 1.0]
    assert [value for _item, value in report.succeeded] == [0, 2, 4, 6, 8, 10, 12]
    assert report.attempted == 7


def test_one_failure_does_not_stop_the_rest() -> None:
    def worker(item: int) -> int:
        if item == 2:
            raise ValueError("bad item")
        return item

    report = run_in_batches([1, 2, 3, 4], worker, batch_size=2, max_workers=2)

    assert sorted(item for item, _value in report.succeeded) == [1, 3, 4]
    assert report.errors == [{"item": 2, "error": "bad item"}]
    assert report.attempted == 4


def test_no_delay_after_last_group() -> None:
    sleeps: list[float] = []
    run_in_batches([1, 2], lambda item: item, batch_size=2, delay_secs=5, sleep=sleeps.append)
    assert sleeps == []


def test_batch_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        run_in_batches([1], lambda item: item, batch_size=0)
