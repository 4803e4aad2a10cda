"""
Per-run outcome counters and histograms.

Tracks, for one Simulation:
- node updates attempted, EKF/LS updates applied, epochs run
- skipped updates by drop reason
- LS solver histograms (iterations, residual RMS)

The simulation is single-threaded; a collector belongs to exactly one run.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional
import numpy as np

logger = logging.getLogger(__name__)

ESTIMATOR_COUNTERS = {
    'kf': 'kf_updates',
    'ls': 'ls_updates',
}


@dataclass(frozen=True)
class CounterSnapshot:
    """Copy of a collector's state."""

    counters: Dict[str, int]
    drop_reasons: Dict[str, int]
    histograms: Dict[str, List[float]]

    def total_dropped(self) -> int:
        """Skipped updates across all reasons."""
        return sum(self.drop_reasons.values())


class MetricsCollector:
    """
    Outcome counters for one simulation run.

    Usage:
        metrics = MetricsCollector()
        metrics.increment('node_updates')
        metrics.increment_drop('insufficient_counterparts')
        metrics.record_histogram('ls_iterations', 3)
        metrics.print_summary()
    """

    # Drop reason codes, one per RecoverableUpdateError subclass family
    DROP_REASONS = {
        'insufficient_counterparts': 'Fewer in-range counterparts than measurements per update',
        'kf_update_failed': 'Innovation covariance not positive definite / invalid EKF state',
        'ls_update_failed': 'Singular normal equations / too few measurements for LS',
        'update_failed': 'Other recoverable node update failure',
    }

    STANDARD_COUNTERS = ('epochs', 'node_updates', 'kf_updates', 'ls_updates', 'updates_dropped')

    def __init__(self):
        self._counters = Counter({name: 0 for name in self.STANDARD_COUNTERS})
        self._drop_reasons = Counter({reason: 0 for reason in self.DROP_REASONS})
        self._histograms: Dict[str, List[float]] = {}

    def increment(self, counter_name: str, value: int = 1):
        self._counters[counter_name] += value

    def increment_drop(self, reason: str, value: int = 1):
        """Count a skipped update under reason (unknown reasons are kept but flagged)."""
        if reason not in self.DROP_REASONS:
            logger.warning(f"Unknown drop reason '{reason}'")
        self._drop_reasons[reason] += value
        self._counters['updates_dropped'] += value

    def get_counter(self, counter_name: str) -> int:
        return self._counters.get(counter_name, 0)

    def record_histogram(self, histogram_name: str, value: float):
        self._histograms.setdefault(histogram_name, []).append(float(value))

    def get_histogram_stats(self, histogram_name: str) -> Optional[Dict[str, float]]:
        """
        Summary of one histogram.

        Returns:
            Dict with count, min, max, mean, median, p95 (None if empty)
        """
        samples = self._histograms.get(histogram_name)
        if not samples:
            return None

        values = np.asarray(samples)
        return {
            'count': int(values.size),
            'min': float(values.min()),
            'max': float(values.max()),
            'mean': float(values.mean()),
            'median': float(np.median(values)),
            'p95': float(np.percentile(values, 95)),
        }

    def snapshot(self) -> CounterSnapshot:
        return CounterSnapshot(
            counters=dict(self._counters),
            drop_reasons=dict(self._drop_reasons),
            histograms={name: list(values) for name, values in self._histograms.items()},
        )

    def print_summary(self):
        """Print per-estimator outcomes, drop reasons and LS histograms."""
        attempted = self.get_counter('node_updates')

        print("\n" + "=" * 70)
        print(f"  UPDATE SUMMARY ({self.get_counter('epochs')} epochs, "
              f"{attempted} node updates)")
        print("=" * 70)

        print("\nESTIMATORS:")
        for estimator, counter in ESTIMATOR_COUNTERS.items():
            applied = self.get_counter(counter)
            share = (applied / attempted) * 100 if attempted else 0.0
            print(f"  {estimator:4s} applied: {applied:8d} ({share:5.1f}%)")

        dropped = self.get_counter('updates_dropped')
        if dropped > 0:
            print("\nSKIPPED UPDATES:")
            for reason, count in sorted(self._drop_reasons.items()):
                if count > 0:
                    print(f"  {reason:30s}: {count:8d}")

        for name in ('ls_iterations', 'ls_residual_rms_s'):
            stats = self.get_histogram_stats(name)
            if stats:
                print(f"\n{name}: count={stats['count']}, mean={stats['mean']:.3g}, "
                      f"median={stats['median']:.3g}, p95={stats['p95']:.3g}, "
                      f"max={stats['max']:.3g}")

        print("=" * 70 + "\n")
