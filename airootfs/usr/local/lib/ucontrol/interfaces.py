"""Ultimate Control - Abstract interfaces and shared records.

Defines the contracts between the device core and the external tools it
drives, so every layer can be tested against in-memory gateways without
real hardware, D-Bus or GTK.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeviceRecord:
    """One Bluetooth device or WiFi network seen by a scan.

    ``signal`` is 0-100.  When ``signal_estimated`` is True the value is a
    heuristic derived from the connection state, not a measurement.
    """

    identifier: str
    name: str = ''
    signal: int = 0
    connected: bool = False
    secured: bool = False
    signal_estimated: bool = False
    path: str = ''

    @property
    def display_name(self) -> str:
        """Return user-friendly display name."""
        return self.name if self.name else self.identifier

    @property
    def paired(self) -> bool:
        """Bluetooth name for ``secured``."""
        return self.secured


@dataclass(frozen=True)
class ResolvedTarget:
    """Addressable handle for one operation.  Never cached."""

    identifier: str
    path: str
    parent: str = ''
    saved: bool = True


class OperationKind(enum.Enum):
    CONNECT = 'connect'
    DISCONNECT = 'disconnect'
    FORGET = 'forget'
    ENABLE = 'enable'
    DISABLE = 'disable'

    @property
    def targeted(self) -> bool:
        """True for operations that act on a single device or network."""
        return self not in (OperationKind.ENABLE, OperationKind.DISABLE)


@dataclass(frozen=True)
class Outcome:
    """Terminal result of one operation."""

    success: bool
    identifier: str
    kind: OperationKind
    needs_credentials: bool = False
    message: str = ''


DevicesCallback = Callable[[List[DeviceRecord]], None]
StateCallback = Callable[[bool], None]
CompletionCallback = Callable[[bool, str], None]


# ---------------------------------------------------------------------------
# Gateways
# ---------------------------------------------------------------------------

class BluetoothGatewayInterface(ABC):
    """Blocking calls against BlueZ on the system bus.

    Every method raises a ``GatewayError`` subclass on failure.
    """

    @abstractmethod
    def list_names(self) -> List[str]:
        """Return the well-known names currently owned on the bus."""

    @abstractmethod
    def introspect(self, path: str) -> str:
        """Return the introspection XML for an object path."""

    @abstractmethod
    def get_properties(self, path: str, interface: str) -> Dict[str, object]:
        """Return all properties of ``interface`` on ``path``."""

    @abstractmethod
    def connect(self, path: str) -> None:
        """Connect the device at ``path``."""

    @abstractmethod
    def disconnect(self, path: str) -> None:
        """Disconnect the device at ``path``."""

    @abstractmethod
    def remove_device(self, adapter_path: str, path: str) -> None:
        """Remove (unpair) ``path`` from its adapter."""

    @abstractmethod
    def set_radio_enabled(self, on: bool) -> None:
        """Power the adapter on or off."""

    @abstractmethod
    def get_radio_enabled(self) -> bool:
        """Return True if the adapter is powered."""


class WifiGatewayInterface(ABC):
    """Blocking calls against NetworkManager.

    Every method raises a ``GatewayError`` subclass on failure.
    """

    @abstractmethod
    def list_networks(self) -> str:
        """Return terse ``IN-USE:SSID:SIGNAL:SECURITY`` lines."""

    @abstractmethod
    def list_profiles(self) -> str:
        """Return terse ``NAME:UUID:TYPE`` lines for saved profiles."""

    @abstractmethod
    def activate_profile(self, uuid: str) -> None:
        """Bring up a saved profile."""

    @abstractmethod
    def connect_network(self, ssid: str, password: Optional[str] = None) -> None:
        """Connect to a visible network, creating a profile if needed."""

    @abstractmethod
    def deactivate_profile(self, uuid: str) -> None:
        """Take down an active profile."""

    @abstractmethod
    def delete_profile(self, uuid: str) -> None:
        """Delete a saved profile by UUID."""

    @abstractmethod
    def delete_profile_by_name(self, name: str) -> None:
        """Delete a saved profile by its connection name."""

    @abstractmethod
    def set_radio_enabled(self, on: bool) -> None:
        """Turn the WiFi radio on or off."""

    @abstractmethod
    def get_radio_enabled(self) -> bool:
        """Return True if the WiFi radio is on."""


# ---------------------------------------------------------------------------
# Core components
# ---------------------------------------------------------------------------

class ResolverInterface(ABC):
    @abstractmethod
    def resolve(self, identifier: str) -> Optional[ResolvedTarget]:
        """Map an identifier to a target, or None when it cannot be found."""


class CatalogInterface(ABC):
    @abstractmethod
    def scan(self) -> List[DeviceRecord]:
        """Return a fresh device list.  Never raises."""


class ActionsInterface(ABC):
    """Subsystem-specific actions used by the operation executor."""

    # True when connect() accepts a passphrase as a second attempt
    uses_credentials = False

    @abstractmethod
    def connect(self, target: ResolvedTarget,
                credentials: Optional[str] = None) -> None:
        """Connect to a resolved target."""

    @abstractmethod
    def disconnect(self, target: ResolvedTarget) -> None:
        """Disconnect a resolved target."""

    @abstractmethod
    def remove(self, target: ResolvedTarget) -> None:
        """Delete the stored association of a resolved target."""

    @abstractmethod
    def remove_by_name(self, name: str) -> None:
        """Delete a stored association by display name."""

    @abstractmethod
    def set_radio_enabled(self, on: bool) -> None:
        """Toggle the subsystem radio."""


class DeviceManagerInterface(ABC):
    """Consumer-facing contract of a Bluetooth or WiFi manager."""

    @abstractmethod
    def scan(self) -> None:
        """Refresh the device list in the background."""

    @abstractmethod
    def connect(self, identifier: str, credentials: Optional[str] = None,
                on_done: Optional[CompletionCallback] = None) -> bool:
        """Connect asynchronously.  Returns False if rejected as busy."""

    @abstractmethod
    def disconnect(self, identifier: str,
                   on_done: Optional[CompletionCallback] = None) -> bool:
        """Disconnect asynchronously.  Returns False if rejected as busy."""

    @abstractmethod
    def forget(self, identifier: str,
               on_done: Optional[CompletionCallback] = None) -> bool:
        """Forget asynchronously.  Returns False if rejected as busy."""

    @abstractmethod
    def enable(self, on_done: Optional[CompletionCallback] = None) -> bool:
        """Turn the radio on asynchronously."""

    @abstractmethod
    def disable(self, on_done: Optional[CompletionCallback] = None) -> bool:
        """Turn the radio off asynchronously."""

    @abstractmethod
    def is_enabled(self) -> bool:
        """Return the cached radio flag."""

    @abstractmethod
    def devices(self) -> List[DeviceRecord]:
        """Return a copy of the last known device list."""

    @abstractmethod
    def poll(self) -> int:
        """Run pending deliveries on the calling (consumer) thread."""

    @abstractmethod
    def on_devices_updated(self, callback: Optional[DevicesCallback]) -> None:
        """Register the device list subscriber."""

    @abstractmethod
    def on_radio_state_changed(self, callback: Optional[StateCallback]) -> None:
        """Register the radio state subscriber."""

    @abstractmethod
    def on_operation_complete(self, callback: Optional[CompletionCallback]) -> None:
        """Register the operation completion subscriber."""
