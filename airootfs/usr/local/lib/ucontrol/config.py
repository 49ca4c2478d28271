"""Ultimate Control - Runtime configuration.

Settings come from environment variables so the same code runs on a real
desktop, in CI and in demo mode:

    UCONTROL_BACKEND_MODE     'production' (default) or 'test'
    UCONTROL_LOG_LEVEL        logging level name (default 'WARNING')
    UCONTROL_COMMAND_TIMEOUT  seconds allowed for nmcli/bluetoothctl calls
    UCONTROL_BUS_TIMEOUT_MS   milliseconds allowed for D-Bus calls
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BLUEZ_SERVICE = 'org.bluez'
BLUEZ_ROOT = '/org/bluez'
BLUEZ_DEVICE_IFACE = 'org.bluez.Device1'
BLUEZ_ADAPTER_IFACE = 'org.bluez.Adapter1'

DEFAULT_MODE = 'production'
DEFAULT_LOG_LEVEL = 'WARNING'
DEFAULT_COMMAND_TIMEOUT = 15
DEFAULT_BUS_TIMEOUT_MS = 10000

LOG_FORMAT = '%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s'


@dataclass(frozen=True)
class Config:
    """Settings for one process."""
    mode: str = DEFAULT_MODE
    log_level: str = DEFAULT_LOG_LEVEL
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT
    bus_timeout_ms: int = DEFAULT_BUS_TIMEOUT_MS

    @property
    def is_test(self) -> bool:
        return self.mode == 'test'


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning('Ignoring %s=%r: not an integer', name, raw)
        return default
    if value <= 0:
        logger.warning('Ignoring %s=%r: must be positive', name, raw)
        return default
    return value


def load_config() -> Config:
    """Build a Config from the current environment."""
    mode = os.environ.get('UCONTROL_BACKEND_MODE', DEFAULT_MODE).strip().lower()
    if mode not in ('production', 'test'):
        logger.warning('Unknown UCONTROL_BACKEND_MODE %r, using production', mode)
        mode = DEFAULT_MODE

    return Config(
        mode=mode,
        log_level=os.environ.get('UCONTROL_LOG_LEVEL', DEFAULT_LOG_LEVEL).upper(),
        command_timeout=_int_from_env('UCONTROL_COMMAND_TIMEOUT',
                                      DEFAULT_COMMAND_TIMEOUT),
        bus_timeout_ms=_int_from_env('UCONTROL_BUS_TIMEOUT_MS',
                                     DEFAULT_BUS_TIMEOUT_MS),
    )


def configure_logging(config: Config = None) -> None:
    """Set up root logging for an application entry point.

    Library modules only create loggers; call this once from the program
    that owns the process.
    """
    config = config or load_config()
    level = getattr(logging, config.log_level, logging.WARNING)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)
