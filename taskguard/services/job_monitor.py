import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from taskguard.config import QUEUE_HEALTH_THRESHOLDS
from taskguard.models.enums import CircuitStatus

logger = logging.getLogger(__name__)

STALLED_SAGA_SCAN_LIMIT = 500

class JobMonitor:
    """
    Rolls dead-letter, circuit and saga state into one health report.

    The report is ``healthy`` while every watched value is at or below its
    threshold and ``warning`` with one alert per exceeded threshold otherwise.
    """

    def __init__(self, dead_letters, breaker, sagas, thresholds: Optional[Dict[str, int]] = None):
        self.dead_letters = dead_letters
        self.breaker = breaker
        self.sagas = sagas
        self.thresholds = dict(QUEUE_HEALTH_THRESHOLDS)
        if thresholds:
            for key, value in thresholds.items():
                self.set_threshold(key, value)

    def set_threshold(self, key: str, value: int):
        if key not in self.thresholds:
            raise ValueError(f"Unknown health threshold: {key}")
        self.thresholds[key] = int(value)

    def throughput(self) -> Dict[str, int]:
        now = time.time()
        return {
            "dead_lettered_last_hour": self.dead_letters.count_since(now - 3600),
            "dead_lettered_last_day": self.dead_letters.count_since(now - 86400),
        }

    def open_circuits(self) -> List[Dict[str, Any]]:
        return [m for m in self.breaker.all_metrics() if m["state"] != CircuitStatus.CLOSED.value]

    def health_status(self) -> Dict[str, Any]:
        dead_letter = self.dead_letters.stats()
        circuits = self.open_circuits()
        stalled = len(self.sagas.get_stalled(limit=STALLED_SAGA_SCAN_LIMIT))
        throughput = self.throughput()

        alerts = self._check_alerts({
            "dlq_pending": dead_letter["pending"],
            "dead_lettered_per_hour": throughput["dead_lettered_last_hour"],
            "open_circuits": len(circuits),
            "stalled_sagas": stalled,
        })
        if alerts:
            logger.warning("Queue health degraded", extra={"alerts": alerts})

        return {
            "status": "warning" if alerts else "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "dead_letter": dead_letter,
            "circuits": {"open": circuits},
            "sagas": {"stalled": stalled},
            "throughput": throughput,
            "thresholds": dict(self.thresholds),
            "alerts": alerts,
        }

    def _check_alerts(self, observed: Dict[str, int]) -> List[str]:
        messages = {
            "dlq_pending": "Dead letter queue has {value} pending entries (threshold: {limit})",
            "dead_lettered_per_hour": "High failure rate: {value} jobs dead-lettered in the last hour (threshold: {limit})",
            "open_circuits": "{value} circuit(s) not closed (threshold: {limit})",
            "stalled_sagas": "{value} saga(s) have stopped progressing (threshold: {limit})",
        }
        return [
            messages[key].format(value=value, limit=self.thresholds[key])
            for key, value in observed.items()
            if value > self.thresholds[key]
        ]
