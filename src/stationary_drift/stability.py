import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np

GRAVITY = 9.8


class SensorFault(ValueError):
    """Raised when an accelerometer sample carries a non-finite axis value."""


class DetectorState(Enum):
    PENDING = "pending"
    MOVING = "moving"
    STATIONARY = "stationary"


@dataclass(frozen=True)
class DeviationSample:
    value: float
    timestamp_ms: int


@dataclass(frozen=True)
class DetectionResult:
    is_stationary: bool
    mean: float
    standard_deviation: float
    duration_ms: int
    state_changed: bool


NEUTRAL_RESULT = DetectionResult(False, 0.0, 0.0, 0, False)


@dataclass
class DetectorConfig:
    history_duration_ms: int = 2000
    mean_threshold: float = 0.3
    std_threshold: float = 0.2
    stationary_duration_ms: int = 2000
    min_sample_count: int = 10

    @classmethod
    def from_dict(cls, values):
        known = {k: v for k, v in (values or {}).items() if k in cls.__dataclass_fields__}
        return cls(**known)


def monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


class StationaryDetector:
    """Debounced stationary/moving classifier over a time-bounded window.

    Each accelerometer sample is reduced to its deviation from gravity. Once
    ``min_sample_count`` samples are inside the window, the device counts as
    quiet while both the rolling mean and the population standard deviation
    stay under their thresholds. Quiet must hold for ``stationary_duration_ms``
    before the detector reports stationary; leaving the quiet condition flips
    back to moving on the same sample.
    """

    def __init__(
        self,
        history_duration_ms=2000,
        mean_threshold=0.3,
        std_threshold=0.2,
        stationary_duration_ms=2000,
        min_sample_count=10,
        clock: Optional[Callable[[], int]] = None,
        on_state_change: Optional[Callable[[DetectionResult], None]] = None,
    ):
        self.history_duration_ms = history_duration_ms
        self.mean_threshold = mean_threshold
        self.std_threshold = std_threshold
        self.stationary_duration_ms = stationary_duration_ms
        self.min_sample_count = min_sample_count
        self.clock = clock or monotonic_ms
        self.on_state_change = on_state_change

        self._lock = threading.Lock()
        self._history = deque()
        self._is_stationary = False
        self._stationary_since_ms = None
        self._classified = False

    @classmethod
    def from_config(cls, config: DetectorConfig, **kwargs):
        return cls(
            history_duration_ms=config.history_duration_ms,
            mean_threshold=config.mean_threshold,
            std_threshold=config.std_threshold,
            stationary_duration_ms=config.stationary_duration_ms,
            min_sample_count=config.min_sample_count,
            **kwargs,
        )

    def _add_deviation(self, deviation, now):
        self._history.append(DeviationSample(deviation, now))
        # Timestamps are monotonic, so expired samples are always at the left
        while self._history and now - self._history[0].timestamp_ms > self.history_duration_ms:
            self._history.popleft()

    def detect_stationary(self, x, y, z) -> DetectionResult:
        if not all(math.isfinite(v) for v in (x, y, z)):
            raise SensorFault(f"non-finite accelerometer sample: ({x}, {y}, {z})")

        magnitude = math.sqrt(x * x + y * y + z * z)
        deviation = abs(magnitude - GRAVITY)

        with self._lock:
            now = self.clock()
            self._add_deviation(deviation, now)

            if len(self._history) < self.min_sample_count:
                return NEUTRAL_RESULT

            values = np.fromiter((s.value for s in self._history), dtype=np.float64)
            mean = float(np.mean(values))
            std = float(np.std(values))

            was_stationary = self._is_stationary
            state_changed = False
            self._classified = True

            if mean < self.mean_threshold and std < self.std_threshold:
                if self._stationary_since_ms is None:
                    self._stationary_since_ms = now
                if now - self._stationary_since_ms >= self.stationary_duration_ms:
                    state_changed = not was_stationary
                    self._is_stationary = True
            else:
                state_changed = was_stationary
                self._is_stationary = False
                self._stationary_since_ms = None

            duration = now - self._stationary_since_ms if self._stationary_since_ms is not None else 0
            result = DetectionResult(self._is_stationary, mean, std, duration, state_changed)

        if state_changed and self.on_state_change:
            self.on_state_change(result)
        return result

    def get_is_stationary(self) -> bool:
        with self._lock:
            return self._is_stationary

    @property
    def state(self) -> DetectorState:
        with self._lock:
            if not self._classified:
                return DetectorState.PENDING
            return DetectorState.STATIONARY if self._is_stationary else DetectorState.MOVING

    @property
    def stationary_since_ms(self) -> Optional[int]:
        with self._lock:
            return self._stationary_since_ms

    def __len__(self):
        with self._lock:
            return len(self._history)

    def reset(self):
        with self._lock:
            self._history.clear()
            self._is_stationary = False
            self._stationary_since_ms = None
            self._classified = False
