"""Ultimate Control - Bluetooth and WiFi managers.

The consumer-facing API.  A manager wires a catalog, resolver, executor and
scheduler around one gateway and keeps a single subscriber per callback
kind.  All callbacks run on the thread that calls ``poll()`` (or on the
GLib main loop when ``glib_loop.attach`` is used).

Usage::

    manager = create_bluetooth_manager()
    manager.on_devices_updated(show_devices)
    manager.scan()
    ...
    manager.poll()   # from the event loop tick
"""

import logging
from typing import Dict, List, Optional

from .catalog import BluetoothCatalog, WifiCatalog
from .errors import GatewayError
from .executor import (
    BluetoothActions,
    OperationExecutor,
    PhaseListener,
    WifiActions,
)
from .interfaces import (
    ActionsInterface,
    BluetoothGatewayInterface,
    CatalogInterface,
    CompletionCallback,
    DeviceManagerInterface,
    DeviceRecord,
    DevicesCallback,
    OperationKind,
    Outcome,
    ResolverInterface,
    StateCallback,
    WifiGatewayInterface,
)
from .resolver import BluezAddressResolver, NmProfileResolver
from .scheduler import AsyncScheduler, DeliveryChannel
from .state import StateCache

logger = logging.getLogger(__name__)


class DeviceManager(DeviceManagerInterface):
    """Shared wiring; subclasses pick the catalog, resolver and actions."""

    subsystem = ''

    def __init__(self, gateway, channel: Optional[DeliveryChannel] = None,
                 listener: Optional[PhaseListener] = None):
        self._gateway = gateway
        self.channel = channel or DeliveryChannel()
        self._cache = StateCache(enabled=self._read_radio_state())

        self._devices_cb: Optional[DevicesCallback] = None
        self._state_cb: Optional[StateCallback] = None
        self._complete_cb: Optional[CompletionCallback] = None
        self._outcomes: Dict[str, Outcome] = {}

        executor = OperationExecutor(self._make_resolver(), self._make_actions(),
                                     self._cache, listener=listener)
        self._scheduler = AsyncScheduler(
            self._make_catalog(), executor, self._cache, self.channel,
            on_devices=self._deliver_devices,
            on_state=self._deliver_state,
            on_outcome=self._deliver_outcome,
            subsystem=self.subsystem,
        )

    def _make_catalog(self) -> CatalogInterface:
        raise NotImplementedError

    def _make_resolver(self) -> ResolverInterface:
        raise NotImplementedError

    def _make_actions(self) -> ActionsInterface:
        raise NotImplementedError

    def _normalize(self, identifier: str) -> str:
        """Return ``identifier`` in the form scans report it."""
        return identifier

    def _read_radio_state(self) -> bool:
        try:
            return self._gateway.get_radio_enabled()
        except GatewayError as exc:
            logger.warning('Could not read %s radio state: %s', self.subsystem, exc)
            return False

    # ------------------------------------------------------------------
    # Deliveries (consumer thread only)
    # ------------------------------------------------------------------

    def _deliver_devices(self, devices: List[DeviceRecord]) -> None:
        if self._devices_cb is not None:
            self._devices_cb(list(devices))

    def _deliver_state(self, enabled: bool) -> None:
        if self._state_cb is not None:
            self._state_cb(enabled)

    def _deliver_outcome(self, outcome: Outcome,
                         on_done: Optional[CompletionCallback]) -> None:
        self._outcomes[outcome.identifier] = outcome
        # Each callback is isolated; one raising must not hide the outcome
        # from the other
        for callback in (on_done, self._complete_cb):
            if callback is None:
                continue
            try:
                callback(outcome.success, outcome.identifier)
            except Exception:
                logger.exception('Completion callback %r failed for %s',
                                 callback, outcome.identifier)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def on_devices_updated(self, callback: Optional[DevicesCallback]) -> None:
        self._devices_cb = callback
        if callback is not None:
            callback(self._cache.devices())

    def on_radio_state_changed(self, callback: Optional[StateCallback]) -> None:
        self._state_cb = callback
        if callback is not None:
            callback(self._cache.is_enabled())

    def on_operation_complete(self, callback: Optional[CompletionCallback]) -> None:
        self._complete_cb = callback

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def scan(self) -> None:
        self._scheduler.schedule_scan()

    def connect(self, identifier: str, credentials: Optional[str] = None,
                on_done: Optional[CompletionCallback] = None) -> bool:
        return self._scheduler.schedule_operation(
            OperationKind.CONNECT, self._normalize(identifier), credentials, on_done)

    def disconnect(self, identifier: str,
                   on_done: Optional[CompletionCallback] = None) -> bool:
        return self._scheduler.schedule_operation(
            OperationKind.DISCONNECT, self._normalize(identifier), on_done=on_done)

    def forget(self, identifier: str,
               on_done: Optional[CompletionCallback] = None) -> bool:
        return self._scheduler.schedule_operation(
            OperationKind.FORGET, self._normalize(identifier), on_done=on_done)

    def enable(self, on_done: Optional[CompletionCallback] = None) -> bool:
        return self._scheduler.schedule_operation(
            OperationKind.ENABLE, self.subsystem, on_done=on_done)

    def disable(self, on_done: Optional[CompletionCallback] = None) -> bool:
        return self._scheduler.schedule_operation(
            OperationKind.DISABLE, self.subsystem, on_done=on_done)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_enabled(self) -> bool:
        return self._cache.is_enabled()

    def devices(self) -> List[DeviceRecord]:
        return self._cache.devices()

    def last_outcome(self, identifier: str) -> Optional[Outcome]:
        """Return the last delivered outcome for ``identifier``.

        Lets a completion callback check ``needs_credentials`` before
        prompting for a passphrase.
        """
        return self._outcomes.get(self._normalize(identifier))

    def is_busy(self, identifier: str, kind: OperationKind) -> bool:
        return self._scheduler.tokens.is_busy(self._normalize(identifier), kind)

    def poll(self) -> int:
        return self.channel.drain()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        return self._scheduler.wait_idle(timeout)


class BluetoothManager(DeviceManager):
    """Bluetooth devices through BlueZ."""

    subsystem = 'bluetooth'

    def __init__(self, gateway: BluetoothGatewayInterface,
                 channel: Optional[DeliveryChannel] = None,
                 listener: Optional[PhaseListener] = None):
        super().__init__(gateway, channel=channel, listener=listener)

    def _normalize(self, identifier: str) -> str:
        # MAC addresses are case-insensitive; scans report them upper-case
        return identifier.upper()

    def _make_catalog(self) -> CatalogInterface:
        return BluetoothCatalog(self._gateway, self._cache.is_enabled)

    def _make_resolver(self) -> ResolverInterface:
        return BluezAddressResolver(self._gateway)

    def _make_actions(self) -> ActionsInterface:
        return BluetoothActions(self._gateway)


class WifiManager(DeviceManager):
    """WiFi networks through NetworkManager."""

    subsystem = 'wifi'

    def __init__(self, gateway: WifiGatewayInterface,
                 channel: Optional[DeliveryChannel] = None,
                 listener: Optional[PhaseListener] = None):
        super().__init__(gateway, channel=channel, listener=listener)

    def _make_catalog(self) -> CatalogInterface:
        return WifiCatalog(self._gateway, self._cache.is_enabled)

    def _make_resolver(self) -> ResolverInterface:
        return NmProfileResolver(self._gateway)

    def _make_actions(self) -> ActionsInterface:
        return WifiActions(self._gateway)

    def active_network(self) -> Optional[DeviceRecord]:
        """Return the connected network from the last scan, if any."""
        for network in self._cache.devices():
            if network.connected:
                return network
        return None

    def disconnect_active(self, on_done: Optional[CompletionCallback] = None) -> bool:
        """Disconnect whichever network the last scan saw as connected."""
        network = self.active_network()
        if network is None:
            return False
        return self.disconnect(network.identifier, on_done=on_done)
