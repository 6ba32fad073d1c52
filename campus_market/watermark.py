"""
Device-local "last seen" timestamps per listing.

Watermarks are never synchronised: another device of the same user keeps its
own values, so unread badges are a per-device heuristic.
"""

import json
import logging
import os
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from .subscriptions import Subscription

logger = logging.getLogger(__name__)

KEY_PREFIX = "lastSeen_"

WatermarkCallback = Callable[[str, int], None]


class WatermarkStore:
    """Key/value store of epoch-millisecond watermarks with change listeners."""

    def __init__(self):
        self._callbacks: Dict[Subscription, WatermarkCallback] = {}

    def _read(self, key: str) -> Optional[int]:
        raise NotImplementedError

    def _write(self, key: str, value: int) -> None:
        raise NotImplementedError

    def get(self, listing_id: str) -> Optional[int]:
        return self._read(KEY_PREFIX + listing_id)

    def get_or_zero(self, listing_id: str) -> int:
        return self.get(listing_id) or 0

    def set(self, listing_id: str, timestamp: int) -> None:
        self._write(KEY_PREFIX + listing_id, int(timestamp))
        logger.debug(f"Watermark {listing_id} -> {timestamp}")
        for callback in list(self._callbacks.values()):
            callback(listing_id, int(timestamp))

    def subscribe(self, callback: WatermarkCallback) -> Subscription:
        subscription = Subscription(name="watermarks")
        self._callbacks[subscription] = subscription.guard(callback)
        subscription.bind(lambda: self._callbacks.pop(subscription, None))
        return subscription


class MemoryWatermarkStore(WatermarkStore):
    def __init__(self, initial: Optional[Dict[str, int]] = None):
        super().__init__()
        self._values: Dict[str, int] = {}
        for listing_id, timestamp in (initial or {}).items():
            self._values[KEY_PREFIX + listing_id] = int(timestamp)

    def _read(self, key: str) -> Optional[int]:
        return self._values.get(key)

    def _write(self, key: str, value: int) -> None:
        self._values[key] = value


class FileWatermarkStore(WatermarkStore):
    """
    Watermarks persisted as one JSON object in ``path``.

    The file is loaded lazily and rewritten through a temporary file plus
    :func:`os.replace`, so a crash never leaves a truncated file behind.
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self._values: Optional[Dict[str, int]] = None

    def _load(self) -> Dict[str, int]:
        if self._values is None:
            if self.path.exists():
                try:
                    raw = json.loads(self.path.read_text(encoding="utf-8"))
                except ValueError:
                    logger.warning(f"Ignoring unreadable watermark file {self.path}")
                    raw = {}
                self._values = {
                    k: int(v) for k, v in raw.items()
                    if k.startswith(KEY_PREFIX) and str(v).lstrip("-").isdigit()
                }
            else:
                self._values = {}
        return self._values

    def _read(self, key: str) -> Optional[int]:
        return self._load().get(key)

    def _write(self, key: str, value: int) -> None:
        values = self._load()
        values[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(values, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)
