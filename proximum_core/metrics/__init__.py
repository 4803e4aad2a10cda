"""
Metrics Module: Counters and histograms for simulation diagnostics.

Every skipped node-epoch update is recorded with a drop reason code, so a
run never fails silently.

Usage:
    from proximum_core.metrics import MetricsCollector
    
    metrics = MetricsCollector()
    metrics.increment('kf_updates')
    metrics.increment_drop('insufficient_counterparts')
    metrics.record_histogram('ls_iterations', 3)
    metrics.print_summary()
"""

from .counters import MetricsCollector, CounterSnapshot

__all__ = ['MetricsCollector', 'CounterSnapshot']
