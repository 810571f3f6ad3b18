"""Metrics and lifecycle events of the process engine."""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

# counters
TRANSITIONS_TOTAL = "transitions_total"  # labels: action, mode
SLA_TIMEOUTS_TOTAL = "sla_timeouts_total"
JOINS_TOTAL = "joins_total"  # labels: rule
# histograms
STATE_DWELL_SECONDS = "state_dwell_seconds"  # labels: state_id

LIFECYCLE_EVENTS = ("instance_started", "instance_finished", "join_merged", "sla_breached")

_NO_LABELS = "__no_labels__"


class MetricsRecorder:
    """In-memory counters and histograms of engine activity.

    The engine counts every applied transition per action and execution
    mode, every SLA timeout and every merged join per completion rule, and
    observes how long each token stayed on its state when it leaves.
    Series are keyed by metric name and a canonical rendering of the label
    set, so ``{"mode": "decision", "action": "auto"}`` and the same labels in
    another order address one series.
    """

    def __init__(self) -> None:
        self.counters: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self.histograms: Dict[str, Dict[str, List[float]]] = defaultdict(dict)

    def inc(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 1) -> None:
        self.counters[name][self._series(labels)] += value

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        self.histograms[name].setdefault(self._series(labels), []).append(value)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self.counters[name].get(self._series(labels), 0.0)

    def get_observations(self, name: str, labels: Optional[Dict[str, str]] = None) -> List[float]:
        return list(self.histograms[name].get(self._series(labels), []))

    @staticmethod
    def _series(labels: Optional[Dict[str, str]]) -> str:
        if not labels:
            return _NO_LABELS
        return "|".join(f"{key}={value}" for key, value in sorted(labels.items()))


class EventLogger:
    """Emits instance lifecycle events as structured log records.

    The event name is the log message and is repeated in ``extra`` together
    with the payload (instance ID, state ID, target, status), so a JSON log
    formatter can index them.
    """

    def __init__(self, logger_name: str = "process_engine.events") -> None:
        self.logger = logging.getLogger(logger_name)

    def log(self, event: str, **payload: Any) -> None:
        if event not in LIFECYCLE_EVENTS:
            self.logger.debug(f"Unregistered lifecycle event '{event}'")
        self.logger.info(event, extra={"event": event, **payload})
