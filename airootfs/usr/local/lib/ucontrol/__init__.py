"""Ultimate Control device core.

Asynchronous WiFi and Bluetooth management for the Ultimate Control panel.
Scans and operations run on background threads and results come back
through a delivery channel drained on the consumer's thread.

Usage:
    from ucontrol import create_wifi_manager

    wifi = create_wifi_manager()
    wifi.on_devices_updated(print)
    wifi.scan()
    wifi.poll()
"""

__version__ = "1.0.0"
__app_id__ = "ultimate-control"

from .errors import (
    ActionRejected,
    GatewayError,
    GatewayUnavailable,
    PartialDataLoss,
    ResolutionFailed,
    UControlError,
)
from .factory import create_bluetooth_manager, create_wifi_manager
from .interfaces import DeviceRecord, OperationKind, Outcome, ResolvedTarget
from .manager import BluetoothManager, DeviceManager, WifiManager
from .scheduler import AsyncScheduler, DeliveryChannel

__all__ = [
    '__version__',
    '__app_id__',
    'ActionRejected',
    'AsyncScheduler',
    'BluetoothManager',
    'DeliveryChannel',
    'DeviceManager',
    'DeviceRecord',
    'GatewayError',
    'GatewayUnavailable',
    'OperationKind',
    'Outcome',
    'PartialDataLoss',
    'ResolutionFailed',
    'ResolvedTarget',
    'UControlError',
    'WifiManager',
    'create_bluetooth_manager',
    'create_wifi_manager',
]
