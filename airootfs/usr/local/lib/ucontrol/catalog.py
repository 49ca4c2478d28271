"""Ultimate Control - Device catalog.

Turns raw gateway output into normalized ``DeviceRecord`` lists.  Scans run
on background threads only; they never raise and return an empty list when
the subsystem is disabled or its service cannot be reached.

Signal strength is taken from the hardware when it is reported.  Otherwise
it is *estimated* from the connection state (connected 75, paired 60, seen
50) and the record is flagged with ``signal_estimated``.
"""

import logging
import re
from typing import Callable, Dict, List, Optional

from .config import BLUEZ_DEVICE_IFACE, BLUEZ_ROOT, BLUEZ_SERVICE
from .errors import GatewayError, PartialDataLoss
from .interfaces import (
    BluetoothGatewayInterface,
    CatalogInterface,
    DeviceRecord,
    WifiGatewayInterface,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SIGNAL_CONNECTED_ESTIMATE = 75
SIGNAL_PAIRED_ESTIMATE = 60
SIGNAL_PRESENT_ESTIMATE = 50

# Typical BlueZ RSSI range in dBm
RSSI_FLOOR = -100
RSSI_CEILING = -40

ADAPTER_PREFIX = 'hci'
DEVICE_PREFIX = 'dev_'

_NODE_RE = re.compile(r'<node\s+name="([^"]+)"')


# ---------------------------------------------------------------------------
# Signal helpers
# ---------------------------------------------------------------------------

def rssi_to_percent(rssi: int) -> int:
    """Map an RSSI in dBm linearly onto 0-100, clamped."""
    if rssi <= RSSI_FLOOR:
        return 0
    if rssi >= RSSI_CEILING:
        return 100
    return (rssi - RSSI_FLOOR) * 100 // (RSSI_CEILING - RSSI_FLOOR)


def estimate_signal(connected: bool, paired: bool) -> int:
    """Guess a signal figure when the hardware reports none.

    Connected devices are assumed close; paired ones were recently in range.
    """
    if connected:
        return SIGNAL_CONNECTED_ESTIMATE
    if paired:
        return SIGNAL_PAIRED_ESTIMATE
    return SIGNAL_PRESENT_ESTIMATE


def build_record(identifier: str, name: str = '', connected: bool = False,
                 secured: bool = False, signal: Optional[int] = None,
                 path: str = '') -> DeviceRecord:
    """Create a record, estimating the signal when ``signal`` is None."""
    if signal is None:
        return DeviceRecord(
            identifier=identifier,
            name=name,
            signal=estimate_signal(connected, secured),
            connected=connected,
            secured=secured,
            signal_estimated=True,
            path=path,
        )
    return DeviceRecord(
        identifier=identifier,
        name=name,
        signal=max(0, min(100, signal)),
        connected=connected,
        secured=secured,
        path=path,
    )


# ---------------------------------------------------------------------------
# Internal parsing helpers
# ---------------------------------------------------------------------------

def child_nodes(xml: str) -> List[str]:
    """Return the child node names of an introspection document.

    Only ``<node name="...">`` attributes are extracted; malformed or empty
    documents simply yield no children.
    """
    if not xml:
        return []
    return _NODE_RE.findall(xml)


def address_from_node(node: str) -> str:
    """Decode a BlueZ ``dev_AA_BB_...`` node name back into a MAC address."""
    if node.startswith(DEVICE_PREFIX):
        node = node[len(DEVICE_PREFIX):]
    return node.replace('_', ':')


def split_nmcli_line(line: str) -> List[str]:
    """Split an nmcli terse-mode output line on unescaped colons.

    nmcli escapes literal colons in values as '\\:' and backslashes as
    '\\\\'.  A backslash always escapes the character after it.

    Args:
        line: A single line of nmcli -t output.

    Returns:
        A list of field values.
    """
    parts: List[str] = []
    current: List[str] = []
    i = 0
    while i < len(line):
        char = line[i]
        if char == '\\' and i + 1 < len(line):
            current.append(line[i + 1])
            i += 2
        elif char == ':':
            parts.append(''.join(current))
            current = []
            i += 1
        else:
            current.append(char)
            i += 1
    parts.append(''.join(current))
    return parts


def parse_network_lines(output: str) -> List[DeviceRecord]:
    """Parse ``IN-USE:SSID:SIGNAL:SECURITY`` lines into records.

    Hidden networks (empty SSID) are skipped.  When an SSID is broadcast by
    several access points only the connected or strongest entry is kept.
    """
    best: Dict[str, DeviceRecord] = {}
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = split_nmcli_line(line)
        if len(fields) < 4:
            logger.debug('Skipping short nmcli line: %r', line)
            continue

        in_use, ssid, signal_str, security = fields[:4]
        # SSIDs may legitimately carry surrounding spaces; keep them as-is
        if not ssid.strip():
            continue

        try:
            signal: Optional[int] = int(signal_str)
        except ValueError:
            signal = None

        record = build_record(
            identifier=ssid,
            connected=in_use.strip() == '*',
            secured=security.strip() not in ('', '--'),
            signal=signal,
        )
        previous = best.get(ssid)
        if previous is None or (record.connected, record.signal) > \
                (previous.connected, previous.signal):
            best[ssid] = record

    return list(best.values())


def parse_profile_lines(output: str) -> List[tuple]:
    """Parse ``NAME:UUID:TYPE`` lines into (name, uuid) for WiFi profiles."""
    profiles = []
    for line in output.splitlines():
        fields = split_nmcli_line(line)
        if len(fields) < 3:
            continue
        name, uuid, conn_type = fields[:3]
        if 'wireless' in conn_type and name and uuid:
            profiles.append((name, uuid))
    return profiles


def sort_bluetooth(devices: List[DeviceRecord]) -> List[DeviceRecord]:
    """Connected first, then paired, then by name."""
    return sorted(devices, key=lambda d: (not d.connected, not d.paired,
                                          d.display_name.lower()))


def sort_networks(networks: List[DeviceRecord]) -> List[DeviceRecord]:
    """Connected first, then strongest signal."""
    return sorted(networks, key=lambda n: (n.connected, n.signal), reverse=True)


# ---------------------------------------------------------------------------
# Catalogs
# ---------------------------------------------------------------------------

class BluetoothCatalog(CatalogInterface):
    """Enumerates BlueZ devices by walking adapters and their children."""

    def __init__(self, gateway: BluetoothGatewayInterface,
                 is_enabled: Callable[[], bool]):
        self._gateway = gateway
        self._is_enabled = is_enabled

    def scan(self) -> List[DeviceRecord]:
        if not self._is_enabled():
            return []

        try:
            if BLUEZ_SERVICE not in self._gateway.list_names():
                logger.warning('%s not found on the system bus; is bluetoothd running?',
                               BLUEZ_SERVICE)
                return []
            paths = self._device_paths()
        except GatewayError as exc:
            logger.warning('Bluetooth scan failed: %s', exc)
            return []

        devices = [self._read_device(path) for path in paths]
        logger.info('Bluetooth scan found %d device(s)', len(devices))
        return sort_bluetooth(devices)

    def _device_paths(self) -> List[str]:
        paths = []
        for adapter in child_nodes(self._gateway.introspect(BLUEZ_ROOT)):
            if not adapter.startswith(ADAPTER_PREFIX):
                continue
            adapter_path = f'{BLUEZ_ROOT}/{adapter}'
            try:
                adapter_xml = self._gateway.introspect(adapter_path)
            except GatewayError as exc:
                logger.warning('Skipping adapter %s: %s', adapter_path, exc)
                continue
            for node in child_nodes(adapter_xml):
                if node.startswith(DEVICE_PREFIX):
                    paths.append(f'{adapter_path}/{node}')
        return paths

    def _fetch_properties(self, path: str) -> Dict[str, object]:
        try:
            return self._gateway.get_properties(path, BLUEZ_DEVICE_IFACE)
        except GatewayError as exc:
            raise PartialDataLoss(f'properties of {path}: {exc}') from exc

    def _read_device(self, path: str) -> DeviceRecord:
        address = address_from_node(path.rsplit('/', 1)[-1])
        try:
            props = self._fetch_properties(path)
        except PartialDataLoss as exc:
            logger.warning('Keeping %s with fallback details: %s', address, exc)
            props = {}

        rssi = props.get('RSSI')
        return build_record(
            identifier=str(props.get('Address') or address).upper(),
            name=str(props.get('Name') or ''),
            connected=bool(props.get('Connected', False)),
            secured=bool(props.get('Paired', False)),
            signal=rssi_to_percent(int(rssi)) if rssi is not None else None,
            path=path,
        )


class WifiCatalog(CatalogInterface):
    """Lists visible WiFi networks through NetworkManager."""

    def __init__(self, gateway: WifiGatewayInterface,
                 is_enabled: Callable[[], bool]):
        self._gateway = gateway
        self._is_enabled = is_enabled

    def scan(self) -> List[DeviceRecord]:
        if not self._is_enabled():
            return []

        try:
            output = self._gateway.list_networks()
        except GatewayError as exc:
            logger.warning('WiFi scan failed: %s', exc)
            return []

        networks = parse_network_lines(output)
        logger.info('WiFi scan found %d network(s)', len(networks))
        return sort_networks(networks)
