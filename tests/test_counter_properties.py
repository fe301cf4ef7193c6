"""
Property-based tests for the processing Counter.
"""

import threading

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from certwatch.counter import Counter
from certwatch.enums import Metric


metric_strategy = st.sampled_from(list(Metric))


class TestCounterValues:
    """Tests for increment, get and snapshot."""

    def test_all_metrics_start_at_zero(self) -> None:
        snapshot = Counter().snapshot()

        assert set(snapshot) == {metric.value for metric in Metric}
        assert all(value == 0 for value in snapshot.values())

    @given(increments=st.lists(st.tuples(metric_strategy, st.integers(0, 1000)), max_size=50))
    @settings(max_examples=100)
    def test_values_equal_sum_of_increments(self, increments) -> None:
        """
        *For any* sequence of increments, each counter SHALL equal the sum of
        the amounts applied to it.
        """
        counter = Counter()
        expected = {metric.value: 0 for metric in Metric}

        for metric, amount in increments:
            counter.increment(metric, amount)
            expected[metric.value] += amount

        assert counter.snapshot() == expected

    @given(increments=st.lists(st.tuples(metric_strategy, st.integers(0, 10)), min_size=1))
    @settings(max_examples=50)
    def test_values_never_decrease(self, increments) -> None:
        """
        *For any* sequence of increments, no counter SHALL ever go down.
        """
        counter = Counter()
        previous = counter.snapshot()

        for metric, amount in increments:
            counter.increment(metric, amount)
            current = counter.snapshot()
            assert all(current[k] >= previous[k] for k in previous)
            previous = current

    def test_increment_returns_new_value(self) -> None:
        counter = Counter()
        assert counter.increment(Metric.CONSUMED) == 1
        assert counter.increment(Metric.CONSUMED, 4) == 5
        assert counter.get(Metric.CONSUMED) == 5
        assert counter.get("consumed") == 5

    def test_negative_amount_is_rejected(self) -> None:
        counter = Counter()
        with pytest.raises(ValueError):
            counter.increment(Metric.MATCHED, -1)
        assert counter.get(Metric.MATCHED) == 0

    def test_snapshot_is_a_copy(self) -> None:
        counter = Counter()
        snapshot = counter.snapshot()
        snapshot["consumed"] = 99

        assert counter.get(Metric.CONSUMED) == 0

    def test_to_dict_wraps_values(self) -> None:
        counter = Counter()
        counter.increment(Metric.STREAM_ERRORS)

        assert counter.to_dict()["values"]["stream_errors"] == 1

    def test_concurrent_increments_are_not_lost(self) -> None:
        counter = Counter()

        def work() -> None:
            for _ in range(1000):
                counter.increment(Metric.CONSUMED)

        threads = [threading.Thread(target=work) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert counter.get(Metric.CONSUMED) == 8000
