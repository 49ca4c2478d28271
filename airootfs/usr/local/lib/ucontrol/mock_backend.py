"""Ultimate Control - Mock gateways for testing and demo mode.

Simulate BlueZ and NetworkManager in memory so the whole device core can
run without hardware, a system bus, nmcli or GTK.  Every gateway call is
appended to ``calls`` so tests can assert on traffic.
"""

import threading
import uuid as uuid_lib
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .config import BLUEZ_ROOT, BLUEZ_SERVICE
from .errors import ActionRejected, GatewayUnavailable
from .interfaces import BluetoothGatewayInterface, WifiGatewayInterface


def _node_xml(children: List[str]) -> str:
    nodes = ''.join(f'  <node name="{name}"/>\n' for name in children)
    return ('<!DOCTYPE node PUBLIC "-//freedesktop//DTD D-BUS Object '
            'Introspection 1.0//EN">\n<node>\n'
            '  <interface name="org.freedesktop.DBus.Introspectable"/>\n'
            f'{nodes}</node>\n')


class _Recorder:
    """Call log plus optional gate that holds actions until released."""

    def __init__(self):
        self._lock = threading.Lock()
        self.calls: List[tuple] = []
        self.fail_on: Set[str] = set()
        self.gate: Optional[threading.Event] = None

    def _record(self, method: str, *args) -> None:
        with self._lock:
            self.calls.append((method,) + args)
        if method in self.fail_on:
            raise ActionRejected(f'{method} rejected (simulated)')

    def _wait_gate(self) -> None:
        if self.gate is not None:
            self.gate.wait(timeout=5)

    def count(self, method: str) -> int:
        with self._lock:
            return sum(1 for call in self.calls if call[0] == method)

    def reset_calls(self) -> None:
        with self._lock:
            self.calls = []


# ---------------------------------------------------------------------------
# Bluetooth
# ---------------------------------------------------------------------------

@dataclass
class MockBluetoothDevice:
    address: str
    name: str = ''
    paired: bool = False
    connected: bool = False
    rssi: Optional[int] = None
    reachable: bool = True


class MockBluetoothGateway(_Recorder, BluetoothGatewayInterface):
    """In-memory BlueZ with adapters ``hci0``.. holding devices."""

    def __init__(self, adapters: int = 1, powered: bool = True):
        super().__init__()
        self.powered = powered
        self.bluez_running = True
        self.broken_properties: Set[str] = set()
        self._adapters: Dict[str, Dict[str, MockBluetoothDevice]] = {
            f'hci{i}': {} for i in range(adapters)
        }

    @staticmethod
    def _node(address: str) -> str:
        return 'dev_' + address.upper().replace(':', '_')

    def add_device(self, device: MockBluetoothDevice, adapter: str = 'hci0') -> None:
        """Manually add a device for testing."""
        with self._lock:
            self._adapters.setdefault(adapter, {})[device.address.upper()] = device

    def device(self, address: str) -> Optional[MockBluetoothDevice]:
        with self._lock:
            for devices in self._adapters.values():
                if address.upper() in devices:
                    return devices[address.upper()]
        return None

    def _lookup(self, path: str) -> MockBluetoothDevice:
        parts = path[len(BLUEZ_ROOT) + 1:].split('/')
        if len(parts) == 2:
            with self._lock:
                for address, dev in self._adapters.get(parts[0], {}).items():
                    if self._node(address) == parts[1]:
                        return dev
        raise ActionRejected(f'org.freedesktop.DBus.Error.UnknownObject: {path}')

    def list_names(self) -> List[str]:
        self._record('list_names')
        if not self.bluez_running:
            return ['org.freedesktop.DBus']
        return ['org.freedesktop.DBus', BLUEZ_SERVICE]

    def introspect(self, path: str) -> str:
        self._record('introspect', path)
        if not self.bluez_running:
            raise GatewayUnavailable('org.bluez is not running')
        with self._lock:
            if path == BLUEZ_ROOT:
                return _node_xml(sorted(self._adapters))
            adapter = path[len(BLUEZ_ROOT) + 1:]
            if adapter in self._adapters:
                return _node_xml([self._node(a) for a in self._adapters[adapter]])
        return _node_xml([])

    def get_properties(self, path: str, interface: str) -> Dict[str, object]:
        self._record('get_properties', path, interface)
        if path in self.broken_properties:
            raise ActionRejected(f'GetAll failed on {path} (simulated)')
        dev = self._lookup(path)
        props: Dict[str, object] = {
            'Address': dev.address,
            'Paired': dev.paired,
            'Connected': dev.connected,
        }
        if dev.name:
            props['Name'] = dev.name
        if dev.rssi is not None:
            props['RSSI'] = dev.rssi
        return props

    def connect(self, path: str) -> None:
        self._record('connect', path)
        self._wait_gate()
        dev = self._lookup(path)
        if not dev.reachable:
            raise ActionRejected('org.bluez.Error.Failed: Page Timeout')
        dev.connected = True

    def disconnect(self, path: str) -> None:
        self._record('disconnect', path)
        self._wait_gate()
        dev = self._lookup(path)
        if not dev.connected:
            raise ActionRejected('org.bluez.Error.NotConnected')
        dev.connected = False

    def remove_device(self, adapter_path: str, path: str) -> None:
        self._record('remove_device', adapter_path, path)
        self._wait_gate()
        dev = self._lookup(path)
        with self._lock:
            self._adapters[adapter_path.rsplit('/', 1)[-1]].pop(dev.address.upper(), None)

    def set_radio_enabled(self, on: bool) -> None:
        self._record('set_radio_enabled', on)
        self.powered = on
        if not on:
            with self._lock:
                for devices in self._adapters.values():
                    for dev in devices.values():
                        dev.connected = False

    def get_radio_enabled(self) -> bool:
        self._record('get_radio_enabled')
        return self.powered


# ---------------------------------------------------------------------------
# WiFi
# ---------------------------------------------------------------------------

@dataclass
class MockNetwork:
    ssid: str
    signal: int = 70
    password: str = ''

    @property
    def secured(self) -> bool:
        return bool(self.password)


@dataclass
class MockProfile:
    name: str
    password: str = ''
    uuid: str = field(default_factory=lambda: str(uuid_lib.uuid4()))


def _escape(value: str) -> str:
    return value.replace('\\', '\\\\').replace(':', '\\:')


class MockWifiGateway(_Recorder, WifiGatewayInterface):
    """In-memory NetworkManager speaking nmcli terse output."""

    def __init__(self, radio: bool = True):
        super().__init__()
        self.radio = radio
        self.running = True
        self.active: Optional[str] = None
        self._networks: Dict[str, MockNetwork] = {}
        self._profiles: Dict[str, MockProfile] = {}

    def add_network(self, network: MockNetwork) -> None:
        with self._lock:
            self._networks[network.ssid] = network

    def add_profile(self, profile: MockProfile) -> MockProfile:
        with self._lock:
            self._profiles[profile.name] = profile
        return profile

    def profile(self, name: str) -> Optional[MockProfile]:
        with self._lock:
            return self._profiles.get(name)

    def _check_running(self) -> None:
        if not self.running:
            raise GatewayUnavailable('NetworkManager is not running')

    def _by_uuid(self, uuid: str) -> MockProfile:
        with self._lock:
            for profile in self._profiles.values():
                if profile.uuid == uuid:
                    return profile
        raise ActionRejected(f"unknown connection '{uuid}'")

    def list_networks(self) -> str:
        self._record('list_networks')
        self._check_running()
        if not self.radio:
            return ''
        with self._lock:
            lines = [
                ':'.join([
                    '*' if net.ssid == self.active else ' ',
                    _escape(net.ssid),
                    str(net.signal),
                    'WPA2' if net.secured else '',
                ])
                for net in self._networks.values()
            ]
        return '\n'.join(lines) + '\n'

    def list_profiles(self) -> str:
        self._record('list_profiles')
        self._check_running()
        with self._lock:
            lines = [f'{_escape(p.name)}:{p.uuid}:802-11-wireless'
                     for p in self._profiles.values()]
        return '\n'.join(lines) + '\n'

    def _join(self, ssid: str, password: Optional[str]) -> None:
        if not self.radio:
            raise ActionRejected('Wi-Fi radio is disabled')
        network = self._networks.get(ssid)
        if network is None:
            raise ActionRejected(f"No network with SSID '{ssid}' found.")
        if network.secured and password != network.password:
            raise ActionRejected('Secrets were required, but not provided.')
        self.active = ssid

    def activate_profile(self, uuid: str) -> None:
        self._record('activate_profile', uuid)
        self._check_running()
        self._wait_gate()
        profile = self._by_uuid(uuid)
        self._join(profile.name, profile.password)

    def connect_network(self, ssid: str, password: Optional[str] = None) -> None:
        self._record('connect_network', ssid, password)
        self._check_running()
        self._wait_gate()
        saved = self._profiles.get(ssid)
        if not password and saved is not None:
            password = saved.password
        self._join(ssid, password)
        with self._lock:
            if saved is None:
                self._profiles[ssid] = MockProfile(name=ssid, password=password or '')
            else:
                saved.password = password or ''

    def deactivate_profile(self, uuid: str) -> None:
        self._record('deactivate_profile', uuid)
        self._check_running()
        profile = self._by_uuid(uuid)
        if self.active != profile.name:
            raise ActionRejected(f"'{profile.name}' is not an active connection")
        self.active = None

    def delete_profile(self, uuid: str) -> None:
        self._record('delete_profile', uuid)
        self._check_running()
        self._wait_gate()
        profile = self._by_uuid(uuid)
        self._remove(profile.name)

    def delete_profile_by_name(self, name: str) -> None:
        self._record('delete_profile_by_name', name)
        self._check_running()
        if name not in self._profiles:
            raise ActionRejected(f"unknown connection '{name}'")
        self._remove(name)

    def _remove(self, name: str) -> None:
        with self._lock:
            self._profiles.pop(name, None)
            if self.active == name:
                self.active = None

    def set_radio_enabled(self, on: bool) -> None:
        self._record('set_radio_enabled', on)
        self._check_running()
        self.radio = on
        if not on:
            self.active = None

    def get_radio_enabled(self) -> bool:
        self._record('get_radio_enabled')
        self._check_running()
        return self.radio
