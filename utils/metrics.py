import threading
from typing import Dict, Tuple

_LOCK = threading.Lock()
_COUNTERS: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}
_TIMINGS: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], dict] = {}


def _key(name: str, labels: dict) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
    return name, tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def incr(name: str, value: int = 1, **labels) -> None:
    key = _key(name, labels)
    with _LOCK:
        _COUNTERS[key] = _COUNTERS.get(key, 0) + int(value)


def observe_ms(name: str, duration_ms: float, **labels) -> None:
    key = _key(name, labels)
    with _LOCK:
        entry = _TIMINGS.setdefault(key, {"count": 0, "sum_ms": 0.0, "max_ms": 0.0})
        entry["count"] += 1
        entry["sum_ms"] += float(duration_ms)
        entry["max_ms"] = max(entry["max_ms"], float(duration_ms))


def snapshot() -> dict:
    with _LOCK:
        counters = [
            {"name": name, "labels": dict(labels), "value": value}
            for (name, labels), value in sorted(_COUNTERS.items())
        ]
        timings = [
            {"name": name, "labels": dict(labels), **entry}
            for (name, labels), entry in sorted(_TIMINGS.items())
        ]
    return {"counters": counters, "timings": timings}


def reset() -> None:
    with _LOCK:
        _COUNTERS.clear()
        _TIMINGS.clear()
