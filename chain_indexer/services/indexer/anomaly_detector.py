"""
Anomaly detector.

Flags per-chunk log counts that deviate from a contract's recent baseline.
"""

import math
from collections import deque
from dataclasses import dataclass

from chain_indexer.config.constants import (
    ANOMALY_MIN_SAMPLES,
    ANOMALY_SAMPLE_LIMIT,
    ANOMALY_SIGMA_THRESHOLD,
)


@dataclass(frozen=True)
class AnomalyResult:
    is_anomaly: bool
    value: float
    mean: float | None = None
    std_dev: float | None = None
    deviation: float | None = None


class AnomalyDetector:
    """Rolling mean/stddev baseline per key."""

    def __init__(
        self,
        sample_limit: int = ANOMALY_SAMPLE_LIMIT,
        min_samples: int = ANOMALY_MIN_SAMPLES,
        sigma_threshold: float = ANOMALY_SIGMA_THRESHOLD,
    ) -> None:
        self.sample_limit = sample_limit
        self.min_samples = min_samples
        self.sigma_threshold = sigma_threshold
        self._samples: dict[str, deque[float]] = {}

    def observe(self, key: str, value: float) -> AnomalyResult:
        """
        Score ``value`` against the baseline, then add it to the baseline.

        Returns:
            Result; never anomalous before min_samples observations
        """
        samples = self._samples.setdefault(key, deque(maxlen=self.sample_limit))
        result = self._score(samples, value)
        samples.append(value)
        return result

    def _score(self, samples: deque[float], value: float) -> AnomalyResult:
        if len(samples) < self.min_samples:
            return AnomalyResult(is_anomaly=False, value=value)

        mean = sum(samples) / len(samples)
        std_dev = math.sqrt(sum((s - mean) ** 2 for s in samples) / len(samples))
        if std_dev == 0:
            deviation = 0.0 if value == mean else math.inf
        else:
            deviation = abs(value - mean) / std_dev

        return AnomalyResult(
            is_anomaly=deviation > self.sigma_threshold,
            value=value,
            mean=mean,
            std_dev=std_dev,
            deviation=deviation,
        )

    def sample_count(self, key: str) -> int:
        return len(self._samples.get(key, ()))
