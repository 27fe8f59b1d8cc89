"""Envelope data model and decoding of its JSON form."""

from __future__ import annotations

import base64
import enum
import json
from dataclasses import dataclass, field
from typing import Any, Union


class LogType(enum.IntEnum):
    OUT = 0
    ERR = 1


@dataclass
class Log:
    payload: bytes = b""
    type: int = LogType.OUT


@dataclass
class GaugeValue:
    unit: str = ""
    value: float = 0.0


@dataclass
class Gauge:
    metrics: dict[str, GaugeValue] = field(default_factory=dict)


@dataclass
class Counter:
    name: str = ""
    delta: int = 0
    total: int = 0


@dataclass
class Timer:
    name: str = ""
    start: int = 0
    stop: int = 0


Payload = Union[Log, Gauge, Counter, Timer, None]


@dataclass
class Envelope:
    source_id: str = ""
    instance_id: str = ""
    timestamp: int = 0
    tags: dict[str, str] = field(default_factory=dict)
    message: Payload = None


def _load(data: Any) -> Any:
    if isinstance(data, (bytes, bytearray, str)):
        return json.loads(data)
    return data


def _log_type(value: Any) -> int:
    if value is None:
        return LogType.OUT
    if isinstance(value, str):
        try:
            return LogType[value]
        except KeyError:
            raise ValueError(f"unknown log type: {value}") from None
    return int(value)


def _from_dict(raw: dict) -> Envelope:
    if not isinstance(raw, dict):
        raise ValueError("envelope must be a JSON object")
    env = Envelope(
        source_id=raw.get("sourceId", raw.get("source_id", "")),
        instance_id=raw.get("instanceId", raw.get("instance_id", "")),
        timestamp=int(raw.get("timestamp", 0)),
        tags=dict(raw.get("tags") or {}),
    )
    if "log" in raw:
        log = raw["log"] or {}
        env.message = Log(
            payload=base64.b64decode(log.get("payload", "")),
            type=_log_type(log.get("type")),
        )
    elif "gauge" in raw:
        metrics = (raw["gauge"] or {}).get("metrics") or {}
        env.message = Gauge(
            {
                name: GaugeValue(unit=v.get("unit", ""), value=float(v.get("value", 0)))
                for name, v in metrics.items()
            }
        )
    elif "counter" in raw:
        c = raw["counter"] or {}
        env.message = Counter(
            name=c.get("name", ""), delta=int(c.get("delta", 0)), total=int(c.get("total", 0))
        )
    elif "timer" in raw:
        t = raw["timer"] or {}
        env.message = Timer(
            name=t.get("name", ""), start=int(t.get("start", 0)), stop=int(t.get("stop", 0))
        )
    return env


def envelope_from_json(data: Any) -> Envelope:
    """Decode one envelope from its JSON form (text, bytes or a parsed dict)."""
    return _from_dict(_load(data))


def batch_from_json(data: Any) -> list[Envelope]:
    """Decode an envelope batch of the form {"batch": [...]}."""
    raw = _load(data)
    if not isinstance(raw, dict):
        raise ValueError("batch must be a JSON object")
    return [_from_dict(item) for item in raw.get("batch") or []]