"""
Prometheus metrics for the MMR accumulator.

Counters, gauges and histograms for:
- appends (count by outcome, duration, current leaf count and node count)
- proof generation by outcome
- proof verification by outcome and duration

Typical usage:

    from mmr.metrics import get_metrics

    METRICS = get_metrics()

    with METRICS.time_verify() as t:
        try:
            verify(root, leaf, proof)
        except RootMismatch:
            t.fail("root_mismatch")
            raise

Tests build isolated instances with ``MMRMetrics(registry=CollectorRegistry())``
so repeated construction never collides on the default registry.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from prometheus_client import REGISTRY as _DEFAULT_REGISTRY
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

_FAST_BUCKETS = (0.0001, 0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0)


class _Mark:
    """Outcome holder yielded by the timing context managers."""

    __slots__ = ("outcome",)

    def __init__(self) -> None:
        self.outcome = "ok"

    def ok(self) -> None:
        self.outcome = "ok"

    def fail(self, outcome: str = "error") -> None:
        self.outcome = outcome


class MMRMetrics:
    """
    Concrete metrics backed by prometheus_client.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        reg = registry or _DEFAULT_REGISTRY
        self.registry = reg

        self.appends_total = Counter(
            "mmr_appends_total",
            "Leaf appends grouped by outcome",
            ["outcome"],
            registry=reg,
        )
        self.append_duration = Histogram(
            "mmr_append_duration_seconds",
            "Time to append one leaf (hashing + storage commit)",
            registry=reg,
            buckets=_FAST_BUCKETS,
        )
        self.leaf_count = Gauge(
            "mmr_leaf_count",
            "Leaves committed to the range",
            registry=reg,
        )
        self.size = Gauge(
            "mmr_size",
            "Nodes committed to the range",
            registry=reg,
        )
        self.proofs_total = Counter(
            "mmr_proofs_generated_total",
            "Inclusion proofs requested, grouped by outcome",
            ["outcome"],
            registry=reg,
        )
        self.verify_total = Counter(
            "mmr_proof_verify_total",
            "Proof verifications grouped by outcome",
            ["outcome"],
            registry=reg,
        )
        self.verify_duration = Histogram(
            "mmr_proof_verify_duration_seconds",
            "Proof verification duration (seconds)",
            registry=reg,
            buckets=_FAST_BUCKETS,
        )

    # ------------------------------- appends --------------------------------

    @contextmanager
    def time_append(self) -> Iterator[_Mark]:
        """
        Time one append. An escaping exception records outcome "error"
        unless the body already marked a more specific one.
        """
        mark = _Mark()
        start = time.perf_counter()
        try:
            yield mark
        except BaseException:
            if mark.outcome == "ok":
                mark.fail("error")
            raise
        finally:
            self.appends_total.labels(mark.outcome).inc()
            self.append_duration.observe(max(0.0, time.perf_counter() - start))

    def note_state(self, *, leaf_count: int, size: int) -> None:
        self.leaf_count.set(leaf_count)
        self.size.set(size)

    # -------------------------------- proofs --------------------------------

    def note_proof(self, outcome: str = "ok") -> None:
        self.proofs_total.labels(outcome).inc()

    @contextmanager
    def time_verify(self) -> Iterator[_Mark]:
        mark = _Mark()
        start = time.perf_counter()
        try:
            yield mark
        except BaseException:
            if mark.outcome == "ok":
                mark.fail("error")
            raise
        finally:
            self.verify_total.labels(mark.outcome).inc()
            self.verify_duration.observe(max(0.0, time.perf_counter() - start))

    # ------------------------------- helpers --------------------------------

    def sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample in this instance's registry (0.0 if absent)."""
        v = self.registry.get_sample_value(name, labels or {})
        return 0.0 if v is None else v


# ------------------------------- public API ----------------------------------

_METRICS_SINGLETON: Optional[MMRMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> MMRMetrics:
    """
    Process-wide MMRMetrics singleton. The first call may inject a registry;
    later calls ignore the parameter.
    """
    global _METRICS_SINGLETON
    if _METRICS_SINGLETON is None:
        _METRICS_SINGLETON = MMRMetrics(registry=registry)
    return _METRICS_SINGLETON


__all__ = ["MMRMetrics", "get_metrics"]
