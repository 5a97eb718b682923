import dataclasses
import heapq
import json
import os
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Union

import numpy as np
import zstandard as zstd

from stationary_drift.drift import GpsFix
from stationary_drift.stability import GRAVITY

IMU_NAME = "imu.jsonl"
GPS_NAME = "gps.jsonl"


class SessionFormatError(ValueError):
    pass


@dataclass(frozen=True)
class AccelSample:
    ts: int
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class SessionEvent:
    ts: int
    payload: Union[AccelSample, GpsFix]

    @property
    def is_accel(self):
        return isinstance(self.payload, AccelSample)


def _read_jsonl(path, dctx=None) -> List[Dict]:
    if path.endswith(".zst"):
        with open(path, "rb") as f:
            compressed = f.read()
        try:
            text = (dctx or zstd.ZstdDecompressor()).decompress(compressed).decode("utf-8")
        except (zstd.ZstdError, UnicodeDecodeError) as e:
            raise SessionFormatError(f"{path}: {e}") from e
    else:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()

    records = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            raise SessionFormatError(f"{path}:{lineno}: {e}") from e
        if not isinstance(record, dict):
            raise SessionFormatError(f"{path}:{lineno}: expected a JSON object, got {type(record).__name__}")
        records.append(record)
    return records


def _write_jsonl(path, records, compress=False):
    data = "".join(json.dumps(r) + "\n" for r in records).encode("utf-8")
    if compress:
        path += ".zst"
        data = zstd.ZstdCompressor(level=3).compress(data)
    with open(path, "wb") as f:
        f.write(data)
    return path


class SessionLoader:
    def __init__(self, session_path: str):
        self.session_path = session_path
        if not os.path.isdir(session_path):
            raise ValueError(f"Session path does not exist: {session_path}")

        self.config = {}
        config_path = os.path.join(session_path, "config.json")
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                self.config = json.load(f)

        self.dctx = zstd.ZstdDecompressor()
        self.accel = [self._to_accel(r) for r in self._load(IMU_NAME) if r.get("type", "accel") == "accel"]
        self.fixes = [self._to_fix(r) for r in self._load(GPS_NAME)]

    def _load(self, name):
        for candidate in (name, name + ".zst"):
            path = os.path.join(self.session_path, candidate)
            if os.path.exists(path):
                return _read_jsonl(path, self.dctx)
        return []

    @staticmethod
    def _to_accel(record):
        try:
            return AccelSample(int(record["ts"]), float(record["x"]), float(record["y"]), float(record["z"]))
        except (KeyError, TypeError, ValueError) as e:
            raise SessionFormatError(f"Malformed accelerometer record {record!r}: {e}") from e

    @staticmethod
    def _to_fix(record):
        try:
            ts = int(record["ts"])
        except (KeyError, TypeError, ValueError) as e:
            raise SessionFormatError(f"GPS record without a valid timestamp: {record!r}") from e
        speed = record.get("speed")
        if speed is not None:
            try:
                speed = float(speed)
            except (TypeError, ValueError) as e:
                raise SessionFormatError(f"GPS record with a non-numeric speed: {record!r}") from e
        return dataclasses.replace(GpsFix.from_record(record), timestamp_ms=ts, speed=speed)

    def __len__(self):
        return len(self.accel) + len(self.fixes)

    @property
    def duration_ms(self):
        stamps = [s.ts for s in self.accel] + [f.timestamp_ms for f in self.fixes]
        return max(stamps) - min(stamps) if stamps else 0

    def events(self) -> Iterator[SessionEvent]:
        """Both streams merged in timestamp order (accelerometer first on ties)."""
        accel = (SessionEvent(s.ts, s) for s in sorted(self.accel, key=lambda s: s.ts))
        fixes = (SessionEvent(f.timestamp_ms, f) for f in sorted(self.fixes, key=lambda f: f.timestamp_ms))
        return heapq.merge(accel, fixes, key=lambda e: (e.ts, 0 if e.is_accel else 1))


def write_session(session_path, accel, fixes, metadata=None, compress=False):
    os.makedirs(session_path, exist_ok=True)
    imu_records = [{"ts": s.ts, "type": "accel", "x": s.x, "y": s.y, "z": s.z} for s in accel]
    gps_records = [
        {
            "ts": f.timestamp_ms,
            "speed": f.speed,
            "latitude": f.latitude,
            "longitude": f.longitude,
            "accuracy": f.accuracy,
            "altitude": f.altitude,
            "heading": f.heading,
        }
        for f in fixes
    ]
    _write_jsonl(os.path.join(session_path, IMU_NAME), imu_records, compress)
    _write_jsonl(os.path.join(session_path, GPS_NAME), gps_records, compress)
    with open(os.path.join(session_path, "config.json"), "w") as f:
        json.dump(metadata or {}, f, indent=2)


def simulate_session(
    moving_seconds=5.0,
    still_seconds=10.0,
    drift_speed=0.8,
    accel_interval_ms=100,
    gps_interval_ms=2000,
    start_ms=0,
    seed: Optional[int] = None,
):
    """Synthesize a moving -> still -> moving recording.

    While still, the accelerometer only carries sensor noise but the GPS
    speed wanders around ``drift_speed``, which is what a drifting receiver
    looks like on a device left on a table.
    """
    rng = np.random.default_rng(seed)
    phases = [("moving", moving_seconds), ("still", still_seconds), ("moving", moving_seconds)]

    accel, fixes = [], []
    ts = start_ms
    lat, lon = 35.681236, 139.767125
    for name, seconds in phases:
        end = ts + int(seconds * 1000)
        still = name == "still"
        for t in range(ts, end, accel_interval_ms):
            noise = rng.normal(0, 0.02 if still else 1.5, 3)
            accel.append(AccelSample(t, float(noise[0]), float(noise[1]), float(GRAVITY + noise[2])))
        for t in range(ts, end, gps_interval_ms):
            if still:
                speed = abs(float(rng.normal(drift_speed, 0.1)))
            else:
                speed = float(rng.uniform(1.0, 2.0))
                lat += speed * gps_interval_ms / 1000 / 111_000
            fixes.append(
                GpsFix(
                    speed=round(speed, 3),
                    latitude=round(lat + float(rng.normal(0, 1e-5)), 7),
                    longitude=round(lon + float(rng.normal(0, 1e-5)), 7),
                    accuracy=round(float(rng.uniform(3, 15)), 1),
                    altitude=40.0,
                    heading=0.0 if not still else None,
                    timestamp_ms=t,
                )
            )
        ts = end
    return accel, fixes
