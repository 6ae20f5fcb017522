# qrlens/result_store.py

"""
Single last-result slot shared with other surfaces (popup, CLI, API).

Entries older than the staleness horizon (5 minutes by default) are
treated as absent and cleared on read.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional

import redis

from . import config

logger = logging.getLogger("qrlens.store")

RESULT_KEY = "qrlens:last_result"


@dataclass(frozen=True)
class StoredResult:
    success: bool
    data: Optional[str]
    error: Optional[str]
    timestamp: int  # epoch milliseconds
    action: str = "scanResult"

    def age_seconds(self, now: float) -> float:
        return now - self.timestamp / 1000.0

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, text: str) -> Optional["StoredResult"]:
        try:
            raw = json.loads(text)
            return cls(
                success=bool(raw["success"]),
                data=raw.get("data"),
                error=raw.get("error"),
                timestamp=int(raw["timestamp"]),
                action=raw.get("action", "scanResult"),
            )
        except (ValueError, KeyError, TypeError):
            return None


class ResultStore:
    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.ttl_seconds = config.RESULT_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.clock = clock

    # backend hooks
    def _save(self, text: str) -> None:
        raise NotImplementedError

    def _load(self) -> Optional[str]:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def write(self, entry: StoredResult) -> None:
        self._save(entry.to_json())
        logger.info(json.dumps({"event": "result_stored", "success": entry.success}))

    def record_success(self, data: str) -> StoredResult:
        entry = StoredResult(success=True, data=data, error=None, timestamp=int(self.clock() * 1000))
        self.write(entry)
        return entry

    def record_error(self, error: str) -> StoredResult:
        entry = StoredResult(success=False, data=None, error=error, timestamp=int(self.clock() * 1000))
        self.write(entry)
        return entry

    def read(self) -> Optional[StoredResult]:
        text = self._load()
        if not text:
            return None
        entry = StoredResult.from_json(text)
        if entry is None or entry.age_seconds(self.clock()) >= self.ttl_seconds:
            self.clear()
            return None
        return entry


class MemoryResultStore(ResultStore):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._slot: Optional[str] = None

    def _save(self, text: str) -> None:
        self._slot = text

    def _load(self) -> Optional[str]:
        return self._slot

    def clear(self) -> None:
        self._slot = None


class FileResultStore(ResultStore):
    def __init__(self, path: Optional[Path] = None, **kwargs):
        super().__init__(**kwargs)
        self.path = Path(path or config.RESULT_FILE)

    def _save(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(text)

    def _load(self) -> Optional[str]:
        try:
            return self.path.read_text()
        except FileNotFoundError:
            return None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class RedisResultStore(ResultStore):
    def __init__(self, client: "redis.Redis", key: str = RESULT_KEY, **kwargs):
        super().__init__(**kwargs)
        self.client = client
        self.key = key

    def _save(self, text: str) -> None:
        self.client.set(self.key, text, ex=max(int(self.ttl_seconds), 1))

    def _load(self) -> Optional[str]:
        raw = self.client.get(self.key)
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return raw

    def clear(self) -> None:
        self.client.delete(self.key)


def build_result_store(kind: Optional[str] = None) -> ResultStore:
    kind = kind or config.RESULT_STORE
    if kind == "memory":
        return MemoryResultStore()
    if kind == "redis":
        if not config.REDIS_URL:
            raise RuntimeError("REDIS_URL must be set for the redis result store.")
        return RedisResultStore(redis.Redis.from_url(config.REDIS_URL))
    if kind == "file":
        return FileResultStore()
    raise ValueError(f"Unknown result store '{kind}'")
