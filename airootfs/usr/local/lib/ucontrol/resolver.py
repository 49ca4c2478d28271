"""Ultimate Control - Address resolution.

BlueZ exposes devices by opaque object path, not by MAC address, and has no
direct address index.  ``BluezAddressResolver`` finds the path with a
two-level walk: introspect ``/org/bluez`` for adapters, then each adapter
for its ``dev_*`` children.  With N adapters that is at most N + 1
introspection calls.

Results are never cached: a rescan on the BlueZ side may invalidate paths.
"""

import logging
import re
from typing import Optional

from .catalog import (
    ADAPTER_PREFIX,
    DEVICE_PREFIX,
    child_nodes,
    parse_network_lines,
    parse_profile_lines,
)
from .config import BLUEZ_ROOT
from .errors import GatewayError
from .interfaces import (
    BluetoothGatewayInterface,
    ResolvedTarget,
    ResolverInterface,
    WifiGatewayInterface,
)

logger = logging.getLogger(__name__)

_UNSAFE_RE = re.compile(r'[^A-Za-z0-9]')


def escape_address(address: str) -> str:
    """Escape an address the way BlueZ builds node names (AA:BB -> AA_BB)."""
    return _UNSAFE_RE.sub('_', address.strip()).upper()


def device_node(address: str) -> str:
    return DEVICE_PREFIX + escape_address(address)


class BluezAddressResolver(ResolverInterface):
    """Maps a MAC address to ``/org/bluez/hciN/dev_...``."""

    def __init__(self, gateway: BluetoothGatewayInterface):
        self._gateway = gateway

    def resolve(self, identifier: str) -> Optional[ResolvedTarget]:
        wanted = device_node(identifier)
        try:
            adapters = [node for node in child_nodes(self._gateway.introspect(BLUEZ_ROOT))
                        if node.startswith(ADAPTER_PREFIX)]
            for adapter in adapters:
                adapter_path = f'{BLUEZ_ROOT}/{adapter}'
                children = child_nodes(self._gateway.introspect(adapter_path))
                for node in children:
                    if node.upper() == wanted.upper():
                        path = f'{adapter_path}/{node}'
                        logger.debug('Resolved %s to %s', identifier, path)
                        return ResolvedTarget(identifier=identifier, path=path,
                                              parent=adapter_path)
        except GatewayError as exc:
            logger.warning('Resolution of %s aborted: %s', identifier, exc)
            return None

        logger.info('No object path found for %s', identifier)
        return None


class NmProfileResolver(ResolverInterface):
    """Maps an SSID to a saved NetworkManager profile or a visible network.

    A saved profile wins and its UUID becomes the path.  Otherwise a network
    that is currently visible resolves to an unsaved target keyed by SSID.
    """

    def __init__(self, gateway: WifiGatewayInterface):
        self._gateway = gateway

    def resolve(self, identifier: str) -> Optional[ResolvedTarget]:
        try:
            for name, uuid in parse_profile_lines(self._gateway.list_profiles()):
                if name == identifier:
                    return ResolvedTarget(identifier=identifier, path=uuid)

            visible = parse_network_lines(self._gateway.list_networks())
        except GatewayError as exc:
            logger.warning('Resolution of %s aborted: %s', identifier, exc)
            return None

        if any(net.identifier == identifier for net in visible):
            return ResolvedTarget(identifier=identifier, path=identifier, saved=False)

        logger.info('No profile or visible network named %s', identifier)
        return None
