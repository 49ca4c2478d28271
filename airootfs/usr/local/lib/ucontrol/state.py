"""Ultimate Control - Last known device state.

Written by background workers, read by the consumer thread.  Every access
takes the lock and reads hand out copies, so no live list ever crosses the
thread boundary.
"""

import threading
from typing import Callable, List, Optional

from .interfaces import DeviceRecord


class StateCache:
    """Mutex-guarded device list and radio flag."""

    def __init__(self, enabled: bool = False):
        self._lock = threading.Lock()
        self._devices: List[DeviceRecord] = []
        self._enabled = enabled

    def devices(self) -> List[DeviceRecord]:
        with self._lock:
            return list(self._devices)

    def store_scan(self, devices: List[DeviceRecord],
                   publish: Optional[Callable[[List[DeviceRecord]], None]] = None
                   ) -> List[DeviceRecord]:
        """Store scan results unless the radio is off, and return what was kept.

        The flag check and the store happen under one lock, so a ``disable``
        can land before or after a scan but never in between.  ``publish``
        is called with the stored list while the lock is still held; it must
        not block or touch the cache.
        """
        with self._lock:
            self._devices = list(devices) if self._enabled else []
            snapshot = list(self._devices)
            if publish is not None:
                publish(list(snapshot))
        return snapshot

    def disable(self) -> None:
        """Clear the radio flag and the device list together."""
        with self._lock:
            self._enabled = False
            self._devices = []

    def find(self, identifier: str) -> Optional[DeviceRecord]:
        with self._lock:
            for device in self._devices:
                if device.identifier == identifier:
                    return device
        return None

    def is_enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._enabled = enabled
