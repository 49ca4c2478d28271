"""Ultimate Control - Manager factory.

Picks real or mock gateways based on the configured mode so callers and
tests can inject dependencies without touching the managers.

Environment:
    UCONTROL_BACKEND_MODE: 'production' (default) or 'test'
"""

import logging
from typing import Optional

from .config import Config, load_config
from .manager import BluetoothManager, WifiManager
from .scheduler import DeliveryChannel

logger = logging.getLogger(__name__)


def create_bluetooth_gateway(config: Optional[Config] = None):
    """Create a Bluetooth gateway for the configured mode."""
    config = config or load_config()
    if config.is_test:
        from .mock_backend import MockBluetoothGateway

        return MockBluetoothGateway()

    # Production mode: Gio is only imported when it is actually needed
    from .gateway import BluezGateway

    return BluezGateway(bus_timeout_ms=config.bus_timeout_ms,
                        command_timeout=config.command_timeout)


def create_wifi_gateway(config: Optional[Config] = None):
    """Create a WiFi gateway for the configured mode."""
    config = config or load_config()
    if config.is_test:
        from .mock_backend import MockWifiGateway

        return MockWifiGateway()

    from .gateway import NmcliGateway

    return NmcliGateway(command_timeout=config.command_timeout)


def create_bluetooth_manager(config: Optional[Config] = None,
                             channel: Optional[DeliveryChannel] = None) -> BluetoothManager:
    """Create a BluetoothManager.

    Returns:
        A manager backed by BlueZ, or by the in-memory mock in test mode.
    """
    config = config or load_config()
    logger.debug('Creating Bluetooth manager in %s mode', config.mode)
    return BluetoothManager(create_bluetooth_gateway(config), channel=channel)


def create_wifi_manager(config: Optional[Config] = None,
                        channel: Optional[DeliveryChannel] = None) -> WifiManager:
    """Create a WifiManager.

    Returns:
        A manager backed by nmcli, or by the in-memory mock in test mode.
    """
    config = config or load_config()
    logger.debug('Creating WiFi manager in %s mode', config.mode)
    return WifiManager(create_wifi_gateway(config), channel=channel)
