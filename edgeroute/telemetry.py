"""Fire-and-forget telemetry for the edge layer.

Counters live in a fixed number of shards picked by thread identity, so
concurrent writers rarely contend on the same lock and the shard count never
grows with the number of threads. Readers sum the shards on demand. Samples go
into a bounded queue; when it is full the newest sample is dropped so the
request path never waits on telemetry.
"""

import logging
import queue
import threading
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, final

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_CAPACITY = 1000
DEFAULT_SHARD_COUNT = 16

type MetricKey = tuple[str, ...]


@final
@dataclass(frozen=True)
class Sample:
    """A request recorded for later inspection."""

    source: str
    labels: Mapping[str, str]
    request: Mapping[str, Any] = field(default_factory=dict)


@final
class _Shard:
    __slots__ = ("counter", "dropped_samples", "lock")

    def __init__(self) -> None:
        self.counter: Counter = Counter()
        self.dropped_samples = 0
        self.lock = threading.Lock()


class TelemetrySink:
    def __init__(
        self,
        sample_capacity: int = DEFAULT_SAMPLE_CAPACITY,
        shard_count: int = DEFAULT_SHARD_COUNT,
    ) -> None:
        if sample_capacity < 1:
            raise ValueError("sample_capacity must be at least 1")
        if shard_count < 1:
            raise ValueError("shard_count must be at least 1")
        self._shards = tuple(_Shard() for _ in range(shard_count))
        self._samples: queue.Queue[Sample] = queue.Queue(maxsize=sample_capacity)

    @property
    def shard_count(self) -> int:
        return len(self._shards)

    def _shard(self) -> _Shard:
        return self._shards[threading.get_ident() % len(self._shards)]

    def increment(self, name: str, *labels: str, value: float = 1) -> None:
        shard = self._shard()
        with shard.lock:
            shard.counter[(name, *labels)] += value

    def observe(self, name: str, *labels: str, value: float) -> None:
        """Record a measurement as a running sum and count."""
        shard = self._shard()
        with shard.lock:
            shard.counter[(f"{name}.sum", *labels)] += value
            shard.counter[(f"{name}.count", *labels)] += 1

    def sample(self, sample: Sample) -> bool:
        try:
            self._samples.put_nowait(sample)
        except queue.Full:
            shard = self._shard()
            with shard.lock:
                shard.dropped_samples += 1
            return False
        return True

    @property
    def dropped_samples(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += shard.dropped_samples
        return total

    def snapshot(self) -> dict[MetricKey, float]:
        total: Counter = Counter()
        for shard in self._shards:
            with shard.lock:
                total.update(dict(shard.counter))
        return dict(total)

    def count(self, name: str, *labels: str) -> float:
        return self.snapshot().get((name, *labels), 0)

    def drain_samples(self) -> list[Sample]:
        drained = []
        while True:
            try:
                drained.append(self._samples.get_nowait())
            except queue.Empty:
                return drained


class NullTelemetrySink(TelemetrySink):
    """Sink that discards everything."""

    def increment(self, name: str, *labels: str, value: float = 1) -> None:
        pass

    def observe(self, name: str, *labels: str, value: float) -> None:
        pass

    def sample(self, sample: Sample) -> bool:  # noqa: ARG002
        return False


def emit(sink: TelemetrySink, name: str, *labels: str, value: float = 1) -> None:
    """Increment a counter, never letting a sink failure reach the caller."""
    try:
        sink.increment(name, *labels, value=value)
    except Exception:
        logger.debug("Dropping metric %s%r after sink failure", name, labels, exc_info=True)


def emit_observation(sink: TelemetrySink, name: str, *labels: str, value: float) -> None:
    try:
        sink.observe(name, *labels, value=value)
    except Exception:
        logger.debug("Dropping observation %s%r after sink failure", name, labels, exc_info=True)


def emit_sample(sink: TelemetrySink, sample: Sample) -> None:
    try:
        if not sink.sample(sample):
            logger.debug("Sample buffer full, dropping sample from %s", sample.source)
    except Exception:
        logger.debug("Dropping sample from %s after sink failure", sample.source, exc_info=True)
