#!/usr/bin/env python3
"""Ultimate Control - Headless device monitor.

Runs one WiFi and one Bluetooth scan on a GLib main loop, prints what the
managers deliver, and exits.
"""

import logging

import gi
gi.require_version('GLib', '2.0')
from gi.repository import GLib

from . import glib_loop
from .config import configure_logging, load_config
from .factory import create_bluetooth_manager, create_wifi_manager

logger = logging.getLogger(__name__)

RUN_SECONDS = 20


def _printer(label):
    def _show(devices):
        print(f"{label}: {len(devices)} found")
        for dev in devices:
            marker = '*' if dev.connected else ' '
            hint = '~' if dev.signal_estimated else ''
            print(f"  {marker} {dev.display_name} ({hint}{dev.signal}%)")
    return _show


def main():
    """Launch the monitor."""
    config = load_config()
    configure_logging(config)

    loop = GLib.MainLoop()
    managers = [
        ('WiFi', create_wifi_manager(config)),
        ('Bluetooth', create_bluetooth_manager(config)),
    ]
    for label, manager in managers:
        glib_loop.attach(manager.channel)
        manager.on_radio_state_changed(
            lambda on, label=label: print(f"{label} radio: {'on' if on else 'off'}"))
        manager.on_devices_updated(_printer(label))
        manager.scan()

    GLib.timeout_add_seconds(RUN_SECONDS, loop.quit)
    try:
        loop.run()
    except KeyboardInterrupt:
        logger.info('Interrupted')


if __name__ == '__main__':
    main()
