"""Ultimate Control - Background scheduling and result delivery.

Scans and operations run in short-lived daemon threads so the consumer's
event loop never blocks on nmcli or D-Bus.  Workers only write to the
``StateCache`` and post to the ``DeliveryChannel``; consumer callbacks run
when the consumer drains the channel on its own thread.
"""

import logging
import queue
import threading
import time
from typing import Callable, List, Optional

from .executor import OperationExecutor, OperationTokens
from .interfaces import (
    CatalogInterface,
    CompletionCallback,
    DeviceRecord,
    OperationKind,
    Outcome,
)
from .state import StateCache

logger = logging.getLogger(__name__)


class DeliveryChannel:
    """Thread-safe hand-off from workers to the consumer thread.

    ``post`` may be called from any thread.  ``drain`` must be called from
    the consumer thread; it runs each pending item exactly once.  The
    optional ``wakeup`` hook is called after every post so an event loop
    can schedule a drain (see ``glib_loop.attach``).
    """

    def __init__(self, wakeup: Optional[Callable[[], None]] = None):
        self._queue: 'queue.Queue' = queue.Queue()
        self._wakeup = wakeup

    def set_wakeup(self, wakeup: Optional[Callable[[], None]]) -> None:
        self._wakeup = wakeup

    def post(self, callback: Callable, *args) -> None:
        self._queue.put((callback, args))
        if self._wakeup is not None:
            self._wakeup()

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> int:
        """Run every pending delivery and return how many ran."""
        count = 0
        while True:
            try:
                callback, args = self._queue.get_nowait()
            except queue.Empty:
                return count
            try:
                callback(*args)
            except Exception:
                logger.exception('Delivery callback %r failed', callback)
            count += 1


class AsyncScheduler:
    """Runs catalog scans and executor operations off the consumer thread.

    Args:
        catalog: Produces device lists.
        executor: Performs operations.
        cache: Shared state written by workers.
        channel: Delivery path back to the consumer.
        on_devices: Consumer-side handler for a new device list.
        on_state: Consumer-side handler for a radio state change.
        on_outcome: Consumer-side handler for an operation outcome.
        subsystem: Token identifier used for enable/disable.
    """

    def __init__(self, catalog: CatalogInterface, executor: OperationExecutor,
                 cache: StateCache, channel: DeliveryChannel,
                 on_devices: Callable[[List[DeviceRecord]], None],
                 on_state: Callable[[bool], None],
                 on_outcome: Callable[[Outcome, Optional[CompletionCallback]], None],
                 tokens: Optional[OperationTokens] = None,
                 subsystem: str = ''):
        self._catalog = catalog
        self._executor = executor
        self._cache = cache
        self._channel = channel
        self._on_devices = on_devices
        self._on_state = on_state
        self._on_outcome = on_outcome
        self.tokens = tokens or OperationTokens()
        self.subsystem = subsystem
        self._threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()

    def _spawn(self, worker: Callable[[], None], name: str) -> None:
        thread = threading.Thread(target=worker, name=name, daemon=True)
        with self._threads_lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def schedule_scan(self) -> None:
        """Refresh the device list in the background."""
        def _worker():
            devices = self._catalog.scan()
            # Posting under the cache lock keeps this update ordered before
            # the empty list of any disable that lands afterwards
            self._cache.store_scan(
                devices, publish=lambda snapshot: self._channel.post(self._on_devices, snapshot))

        self._spawn(_worker, f'{self.subsystem or "ucontrol"}-scan')

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def schedule_operation(self, kind: OperationKind, identifier: str,
                           credentials: Optional[str] = None,
                           on_done: Optional[CompletionCallback] = None) -> bool:
        """Start an operation unless the same one is already in flight.

        Returns:
            False when rejected; nothing is delivered for a rejected call.
        """
        if not self.tokens.acquire(identifier, kind):
            logger.info('Rejecting %s %s: already in flight', kind.value, identifier)
            return False

        def _worker():
            try:
                outcome = self._executor.execute(kind, identifier, credentials)
            except Exception:
                logger.exception('%s %s crashed', kind.value, identifier)
                outcome = Outcome(success=False, identifier=identifier, kind=kind,
                                  message='internal error')
            finally:
                self.tokens.release(identifier, kind)

            if outcome.success and not kind.targeted:
                self._channel.post(self._on_state, kind is OperationKind.ENABLE)
                if kind is OperationKind.DISABLE:
                    self._channel.post(self._on_devices, [])
            self._channel.post(self._on_outcome, outcome, on_done)
            self.schedule_scan()

        self._spawn(_worker, f'{self.subsystem or "ucontrol"}-{kind.value}')
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no worker is running.  For tests and shutdown.

        Refresh scans started by finishing operations are waited for too.
        Returns False if ``timeout`` expired first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._threads_lock:
                alive = [t for t in self._threads if t.is_alive()]
            if not alive:
                return True
            for thread in alive:
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False
                thread.join(remaining)
