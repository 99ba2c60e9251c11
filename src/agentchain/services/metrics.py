"""
Prometheus metrics for the reasoning pipeline.

Tracks stage invocations, durations, complexity routing and loop activity.
"""

from __future__ import annotations

from typing import cast

from prometheus_client import REGISTRY, Counter, Histogram

# Module-level cache to prevent duplicate registration
_metrics_cache: dict[str, Counter | Histogram] = {}


def _find_registered(name: str) -> Counter | Histogram | None:
    # Counters register without their _total suffix
    candidates = {name, name.removesuffix("_total")}
    for collector in list(REGISTRY._collector_to_names.keys()):
        if getattr(collector, "_name", None) in candidates:
            return collector
    return None


def _get_or_create_counter(name: str, description: str, labelnames: list[str] | None = None) -> Counter:
    """Get existing counter or create new one, handling duplicates."""
    if name in _metrics_cache:
        return cast(Counter, _metrics_cache[name])

    try:
        counter = Counter(name, description, labelnames or [])
    except ValueError:
        # Metric already exists in registry
        existing = _find_registered(name)
        if existing is None:
            raise
        counter = cast(Counter, existing)
    _metrics_cache[name] = counter
    return counter


def _get_or_create_histogram(
    name: str, description: str, buckets: list[float], labelnames: list[str] | None = None
) -> Histogram:
    """Get existing histogram or create new one, handling duplicates."""
    if name in _metrics_cache:
        return cast(Histogram, _metrics_cache[name])

    try:
        histogram = Histogram(name, description, labelnames or [], buckets=buckets)
    except ValueError:
        existing = _find_registered(name)
        if existing is None:
            raise
        histogram = cast(Histogram, existing)
    _metrics_cache[name] = histogram
    return histogram


# Stage counters
stage_invocations_total = _get_or_create_counter(
    "agentchain_stage_invocations_total",
    "Total number of stage invocations",
    ["stage", "status"],  # completed, failed
)

stage_errors_total = _get_or_create_counter(
    "agentchain_stage_errors_total",
    "Total number of stage errors by type",
    ["stage", "error_type"],
)

recovered_parse_failures_total = _get_or_create_counter(
    "agentchain_recovered_parse_failures_total",
    "Malformed upstream outputs recovered with defaults",
    ["stage"],
)

# Routing
complexity_detections_total = _get_or_create_counter(
    "agentchain_complexity_detections_total",
    "Complexity verdicts by detection method and pass count",
    ["method", "passes"],
)

# Feedback loop
pipeline_loops_total = _get_or_create_counter(
    "agentchain_pipeline_loops_total",
    "Replan and deepen iterations",
    ["kind"],  # replan, deepen
)

pipeline_runs_total = _get_or_create_counter(
    "agentchain_pipeline_runs_total",
    "Pipeline runs by outcome",
    ["status"],  # completed, failed, halted
)

# Performance histograms
stage_duration_seconds = _get_or_create_histogram(
    "agentchain_stage_duration_seconds",
    "Duration of stage invocations in seconds",
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    labelnames=["stage"],
)


def record_stage(stage: str, status: str, duration_seconds: float) -> None:
    """Record one stage invocation."""
    stage_invocations_total.labels(stage=stage, status=status).inc()
    stage_duration_seconds.labels(stage=stage).observe(duration_seconds)


def record_stage_error(stage: str, error_type: str) -> None:
    """Record a stage failure by exception type."""
    stage_errors_total.labels(stage=stage, error_type=error_type).inc()


def record_parse_recovery(stage: str) -> None:
    """Record a malformed LLM response that was replaced with defaults."""
    recovered_parse_failures_total.labels(stage=stage).inc()


def record_complexity(method: str, passes: int) -> None:
    """Record a complexity verdict."""
    complexity_detections_total.labels(method=method, passes=str(passes)).inc()


def record_loop(kind: str) -> None:
    """Record a replan or deepen iteration."""
    pipeline_loops_total.labels(kind=kind).inc()


def record_pipeline_run(status: str) -> None:
    """Record a pipeline outcome."""
    pipeline_runs_total.labels(status=status).inc()
