"""Prometheus metrics for template compilation.

Usage:
    from notification_engine.features.templates.metrics import template_compile_total

    template_compile_total.labels(channel="email", outcome="compiled").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

template_compile_total = Counter(
    "notification_template_compile_total",
    "Compile requests by channel and outcome",
    labelnames=["channel", "outcome"],
)
"""
Counter for compile requests.

Labels:
    channel: Delivery channel of the compiled entry
    outcome: hit (cache row reused), compiled (leader computed), shared
        (follower reused an in-flight compile), error
"""

template_compile_duration_seconds = Histogram(
    "notification_template_compile_duration_seconds",
    "Time spent building and persisting a compiled template",
    labelnames=["channel"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

template_render_total = Counter(
    "notification_template_render_total",
    "Recipient renderings by channel and outcome",
    labelnames=["channel", "outcome"],
)
"""
Counter for renderings.

Labels:
    channel: Delivery channel
    outcome: success, missing_variable, schema_error
"""

template_cache_invalidated_total = Counter(
    "notification_template_cache_invalidated_total",
    "Compiled cache rows removed by explicit invalidation",
)
