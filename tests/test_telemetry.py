import threading
from unittest.mock import Mock

import pytest

from edgeroute.telemetry import (
    NullTelemetrySink,
    Sample,
    TelemetrySink,
    emit,
    emit_observation,
    emit_sample,
)


def test_counters_are_summed_across_threads():
    sink = TelemetrySink()

    def worker():
        for _ in range(1000):
            sink.increment("router.requests", "*", "200")

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sink.count("router.requests", "*", "200") == 4000
    assert sink.count("router.requests", "*", "404") == 0


def test_shards_stay_bounded_with_many_short_lived_threads():
    sink = TelemetrySink(shard_count=4)

    threads = [
        threading.Thread(target=sink.increment, args=("router.requests",)) for _ in range(200)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sink.shard_count == 4
    assert len(sink._shards) == 4
    assert sink.count("router.requests") == 200


def test_observe_tracks_sum_and_count():
    sink = TelemetrySink()

    sink.observe("origin.latency_ms", "api", value=10)
    sink.observe("origin.latency_ms", "api", value=30)

    assert sink.snapshot() == {
        ("origin.latency_ms.sum", "api"): 40,
        ("origin.latency_ms.count", "api"): 2,
    }


def test_sample_buffer_drops_newest_when_full():
    sink = TelemetrySink(sample_capacity=2)
    samples = [Sample("waf", {"n": str(i)}) for i in range(3)]

    assert [sink.sample(s) for s in samples] == [True, True, False]
    assert sink.dropped_samples == 1
    assert sink.drain_samples() == samples[:2]
    assert sink.drain_samples() == []


def test_sample_capacity_must_be_positive():
    with pytest.raises(ValueError, match="at least 1"):
        TelemetrySink(sample_capacity=0)
    with pytest.raises(ValueError, match="at least 1"):
        TelemetrySink(shard_count=0)


def test_null_sink_discards_everything():
    sink = NullTelemetrySink()

    sink.increment("a")
    sink.observe("b", value=1)

    assert sink.sample(Sample("waf", {})) is False
    assert sink.snapshot() == {}


def test_emit_helpers_swallow_sink_failures():
    sink = Mock(spec=TelemetrySink)
    sink.increment.side_effect = RuntimeError("down")
    sink.observe.side_effect = OSError("down")
    sink.sample.side_effect = RuntimeError("down")

    emit(sink, "router.requests", "*", "200")
    emit_observation(sink, "origin.latency_ms", "api", value=1.5)
    emit_sample(sink, Sample("waf", {}))

    sink.increment.assert_called_once_with("router.requests", "*", "200", value=1)
    sink.observe.assert_called_once_with("origin.latency_ms", "api", value=1.5)


def test_concurrent_drops_are_all_counted():
    sink = TelemetrySink(sample_capacity=1)
    sink.sample(Sample("waf", {}))
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        for _ in range(500):
            sink.sample(Sample("waf", {}))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sink.dropped_samples == 4000
    assert len(sink.drain_samples()) == 1
