"""Ultimate Control - Gateways to BlueZ and NetworkManager.

Bluetooth objects are reached over the system D-Bus with Gio; radio power
goes through bluetoothctl.  WiFi is driven entirely by nmcli.  Every call
blocks, so these classes are only used from background threads.
"""

import logging
import subprocess
from typing import Dict, List, Optional

import gi
gi.require_version('Gio', '2.0')
from gi.repository import Gio, GLib

from .config import (
    BLUEZ_ADAPTER_IFACE,
    BLUEZ_DEVICE_IFACE,
    BLUEZ_SERVICE,
    DEFAULT_BUS_TIMEOUT_MS,
    DEFAULT_COMMAND_TIMEOUT,
)
from .errors import ActionRejected, GatewayError, GatewayUnavailable
from .interfaces import BluetoothGatewayInterface, WifiGatewayInterface

logger = logging.getLogger(__name__)

DBUS_SERVICE = 'org.freedesktop.DBus'
DBUS_PATH = '/org/freedesktop/DBus'
INTROSPECTABLE_IFACE = 'org.freedesktop.DBus.Introspectable'
PROPERTIES_IFACE = 'org.freedesktop.DBus.Properties'

# nmcli exits with 8 when the NetworkManager daemon is not running
NMCLI_NOT_RUNNING = 8

# Remote D-Bus errors meaning the callee is not on the bus at all
_UNAVAILABLE_ERRORS = frozenset((
    'org.freedesktop.DBus.Error.ServiceUnknown',
    'org.freedesktop.DBus.Error.NameHasNoOwner',
))


# ---------------------------------------------------------------------------
# Helper: run commands
# ---------------------------------------------------------------------------

def _run_command(cmd: List[str], timeout: int = DEFAULT_COMMAND_TIMEOUT) -> subprocess.CompletedProcess:
    """Execute a command and return the CompletedProcess result.

    Args:
        cmd: Command and arguments to execute.
        timeout: Maximum seconds to wait.

    Raises:
        GatewayUnavailable: If the command is not installed.
        GatewayError: If the command times out.
    """
    logger.debug('Running %s', cmd[:3])
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise GatewayUnavailable(f'{cmd[0]} not found') from exc
    except subprocess.TimeoutExpired as exc:
        raise GatewayError(f'{cmd[0]} timed out after {timeout}s') from exc


def _run_check(cmd: List[str], timeout: int = DEFAULT_COMMAND_TIMEOUT) -> str:
    """Run a command, raise on failure, and return stripped stdout."""
    result = _run_command(cmd, timeout=timeout)
    if result.returncode != 0:
        message = (result.stderr or '').strip() or \
            f'{cmd[0]} exited with code {result.returncode}'
        raise ActionRejected(message)
    return result.stdout.strip()


# ---------------------------------------------------------------------------
# BlueZ over D-Bus
# ---------------------------------------------------------------------------

class BluezGateway(BluetoothGatewayInterface):
    """BlueZ access through a Gio system bus connection.

    The connection is opened on first use so constructing the gateway never
    blocks.  A failed open is retried on the next call.
    """

    def __init__(self, connection=None,
                 bus_timeout_ms: int = DEFAULT_BUS_TIMEOUT_MS,
                 command_timeout: int = DEFAULT_COMMAND_TIMEOUT):
        self._connection = connection
        self._bus_timeout_ms = bus_timeout_ms
        self._command_timeout = command_timeout

    def _bus(self):
        if self._connection is None:
            try:
                self._connection = Gio.bus_get_sync(Gio.BusType.SYSTEM, None)
            except GLib.Error as exc:
                raise GatewayUnavailable(f'system bus unavailable: {exc}') from exc
        return self._connection

    def _call(self, service: str, path: str, interface: str, method: str,
              parameters=None) -> tuple:
        bus = self._bus()
        logger.debug('D-Bus call %s.%s on %s', interface, method, path)
        try:
            reply = bus.call_sync(
                service, path, interface, method, parameters,
                None, Gio.DBusCallFlags.NONE, self._bus_timeout_ms, None,
            )
        except GLib.Error as exc:
            message = f'{interface}.{method} on {path}: {exc}'
            if Gio.DBusError.get_remote_error(exc) in _UNAVAILABLE_ERRORS:
                raise GatewayUnavailable(message) from exc
            raise ActionRejected(message) from exc
        return reply.unpack() if reply is not None else ()

    def list_names(self) -> List[str]:
        reply = self._call(DBUS_SERVICE, DBUS_PATH, DBUS_SERVICE, 'ListNames')
        return list(reply[0]) if reply else []

    def introspect(self, path: str) -> str:
        reply = self._call(BLUEZ_SERVICE, path, INTROSPECTABLE_IFACE, 'Introspect')
        return reply[0] if reply else ''

    def get_properties(self, path: str, interface: str) -> Dict[str, object]:
        reply = self._call(BLUEZ_SERVICE, path, PROPERTIES_IFACE, 'GetAll',
                           GLib.Variant('(s)', (interface,)))
        return dict(reply[0]) if reply else {}

    def connect(self, path: str) -> None:
        self._call(BLUEZ_SERVICE, path, BLUEZ_DEVICE_IFACE, 'Connect')

    def disconnect(self, path: str) -> None:
        self._call(BLUEZ_SERVICE, path, BLUEZ_DEVICE_IFACE, 'Disconnect')

    def remove_device(self, adapter_path: str, path: str) -> None:
        self._call(BLUEZ_SERVICE, adapter_path, BLUEZ_ADAPTER_IFACE,
                   'RemoveDevice', GLib.Variant('(o)', (path,)))

    def set_radio_enabled(self, on: bool) -> None:
        _run_check(['bluetoothctl', 'power', 'on' if on else 'off'],
                   timeout=self._command_timeout)

    def get_radio_enabled(self) -> bool:
        output = _run_check(['bluetoothctl', 'show'], timeout=self._command_timeout)
        if 'Controller' not in output:
            raise GatewayUnavailable('no Bluetooth controller available')
        for line in output.splitlines():
            if 'Powered:' in line:
                return 'yes' in line.lower()
        return False


# ---------------------------------------------------------------------------
# NetworkManager via nmcli
# ---------------------------------------------------------------------------

class NmcliGateway(WifiGatewayInterface):
    """NetworkManager access through nmcli in terse mode."""

    def __init__(self, command_timeout: int = DEFAULT_COMMAND_TIMEOUT):
        self._timeout = command_timeout

    def _nmcli(self, args: List[str], timeout: Optional[int] = None) -> str:
        result = _run_command(['nmcli'] + args, timeout=timeout or self._timeout)
        if result.returncode == NMCLI_NOT_RUNNING:
            raise GatewayUnavailable('NetworkManager is not running')
        if result.returncode != 0:
            message = (result.stderr or '').strip() or \
                f'nmcli exited with code {result.returncode}'
            raise ActionRejected(message)
        return result.stdout

    def list_networks(self) -> str:
        return self._nmcli(['-t', '-f', 'IN-USE,SSID,SIGNAL,SECURITY',
                            'device', 'wifi', 'list'])

    def list_profiles(self) -> str:
        return self._nmcli(['-t', '-f', 'NAME,UUID,TYPE', 'connection', 'show'])

    def activate_profile(self, uuid: str) -> None:
        # Activation waits for DHCP, so allow three times the usual budget
        self._nmcli(['connection', 'up', 'uuid', uuid], timeout=self._timeout * 3)

    def connect_network(self, ssid: str, password: Optional[str] = None) -> None:
        args = ['device', 'wifi', 'connect', ssid]
        if password:
            args += ['password', password]
        self._nmcli(args, timeout=self._timeout * 3)

    def deactivate_profile(self, uuid: str) -> None:
        self._nmcli(['connection', 'down', 'uuid', uuid])

    def delete_profile(self, uuid: str) -> None:
        self._nmcli(['connection', 'delete', 'uuid', uuid])

    def delete_profile_by_name(self, name: str) -> None:
        self._nmcli(['connection', 'delete', 'id', name])

    def set_radio_enabled(self, on: bool) -> None:
        self._nmcli(['radio', 'wifi', 'on' if on else 'off'])

    def get_radio_enabled(self) -> bool:
        return self._nmcli(['radio', 'wifi']).strip() == 'enabled'
