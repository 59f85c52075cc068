"""Prometheus metrics for the policy gate."""

from __future__ import annotations

from prometheus_client import Counter

policy_decision_total = Counter(
    "notification_policy_decision_total",
    "Policy gate outcomes per channel",
    labelnames=["channel", "outcome", "reason"],
)
"""
Counter for policy gate evaluations.

Labels:
    channel: Delivery channel evaluated
    outcome: allowed, blocked, deferred
    reason: Block reason (suppression reason, global-opt-out, channel-disabled,
        category-disabled, rate-limited), quiet-hours for deferrals, or none
"""

suppression_added_total = Counter(
    "notification_suppression_added_total",
    "Suppression entries added or reactivated",
    labelnames=["channel", "reason"],
)
