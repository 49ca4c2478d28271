"""Ultimate Control - GLib main loop integration.

Workers never touch the UI.  ``attach`` makes every post on a delivery
channel schedule a drain with ``GLib.idle_add``, so callbacks run on the
thread that owns the default main context.
"""

import gi
gi.require_version('GLib', '2.0')
from gi.repository import GLib

from .scheduler import DeliveryChannel


def attach(channel: DeliveryChannel) -> None:
    """Drain ``channel`` on the default GLib main context."""
    def _drain():
        channel.drain()
        return GLib.SOURCE_REMOVE

    def _wakeup():
        GLib.idle_add(_drain)

    channel.set_wakeup(_wakeup)


def detach(channel: DeliveryChannel) -> None:
    """Stop scheduling drains; pending items stay queued for ``poll()``."""
    channel.set_wakeup(None)
