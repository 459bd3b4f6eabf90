from __future__ import annotations

from collections import Counter
from typing import Dict

from prometheus_client import Counter as PromCounter

# In-process counters, cheap to assert on in tests
_NAMED = Counter()

GUARD_REJECTIONS_TOTAL = PromCounter(
    "warden_guard_rejections_total",
    "Guarded calls rejected before the operation body ran",
    ["stage", "guard"],
)

GUARDED_CALLS_TOTAL = PromCounter(
    "warden_guarded_calls_total",
    "Guarded calls by outcome",
    ["entrypoint", "outcome"],
)

UPGRADES_TOTAL = PromCounter(
    "warden_upgrades_total",
    "Lifecycle transitions by kind and outcome",
    ["kind", "outcome"],
)


def reset_metrics() -> None:
    """
    Test helper: clears in-process counters to avoid cross-test leakage.
    Prometheus counters are process-global and only ever increase.
    """
    _NAMED.clear()


def inc_guard_rejection(stage: str, guard: str) -> None:
    _NAMED[f"guard_rejected|{stage}|{guard}"] += 1
    GUARD_REJECTIONS_TOTAL.labels(stage=stage, guard=guard).inc()


def inc_guarded_call(entrypoint: str, outcome: str) -> None:
    _NAMED[f"call|{entrypoint}|{outcome}"] += 1
    GUARDED_CALLS_TOTAL.labels(entrypoint=entrypoint, outcome=outcome).inc()


def inc_lifecycle(kind: str, outcome: str) -> None:
    _NAMED[f"lifecycle|{kind}|{outcome}"] += 1
    UPGRADES_TOTAL.labels(kind=kind, outcome=outcome).inc()


def snapshot_named() -> Dict[str, int]:
    return dict(_NAMED)
