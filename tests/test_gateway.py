#!/usr/bin/env python3
"""
Tests for the BlueZ and nmcli gateways.

nmcli and bluetoothctl are replaced by patching the command runner, and the
system bus by a fake Gio connection, so these tests need neither
NetworkManager, bluetoothd nor a D-Bus daemon.
"""

import subprocess
import unittest
from unittest.mock import MagicMock, patch

from test_helpers import add_lib_path, install_gi_mocks

install_gi_mocks(use_setdefault=True)
add_lib_path()

from ucontrol import gateway
from ucontrol.errors import ActionRejected, GatewayError, GatewayUnavailable
from ucontrol.gateway import BluezGateway, NmcliGateway, _run_command


# ---------------------------------------------------------------------------
# Fake Gio / GLib
# ---------------------------------------------------------------------------
class _FakeGLibError(Exception):
    pass


class _FakeVariant:
    def __init__(self, signature, value):
        self.signature = signature
        self.value = value

    def unpack(self):
        return self.value


class _FakeGLib:
    Error = _FakeGLibError
    Variant = _FakeVariant


class _FakeGio:
    class BusType:
        SYSTEM = "system"

    class DBusCallFlags:
        NONE = 0

    class DBusError:
        @staticmethod
        def get_remote_error(error):
            # GDBus prefixes remote errors as "GDBus.Error:<name>: <message>"
            text = str(error)
            if not text.startswith("GDBus.Error:"):
                return None
            return text[len("GDBus.Error:"):].split(":", 1)[0]

    bus_get_sync = MagicMock()


class _FakeConnection:
    """Answers call_sync from a {(interface, method): reply} table."""

    def __init__(self, replies=None, error=None):
        self.replies = replies or {}
        self.error = error
        self.calls = []

    def call_sync(self, service, path, interface, method, parameters,
                  reply_type, flags, timeout, cancellable):
        self.calls.append((service, path, interface, method, parameters, timeout))
        if self.error is not None:
            raise _FakeGLibError(self.error)
        reply = self.replies.get((interface, method))
        return _FakeVariant("()", reply) if reply is not None else None


def _completed(stdout="", returncode=0, stderr=""):
    return MagicMock(stdout=stdout, returncode=returncode, stderr=stderr)


class _GioPatched(unittest.TestCase):

    def setUp(self):
        for name, fake in (("Gio", _FakeGio), ("GLib", _FakeGLib)):
            patcher = patch.object(gateway, name, fake)
            patcher.start()
            self.addCleanup(patcher.stop)
        _FakeGio.bus_get_sync.reset_mock(side_effect=True, return_value=True)


# ═══════════════════════════════════════════════════════════════════════════
# Command runner
# ═══════════════════════════════════════════════════════════════════════════
class TestRunCommand(unittest.TestCase):
    """Verify _run_command() maps subprocess failures to gateway errors."""

    @patch("ucontrol.gateway.subprocess.run")
    def test_passes_timeout_and_captures(self, mock_run):
        mock_run.return_value = _completed("ok")
        _run_command(["nmcli", "radio", "wifi"], timeout=7)
        _, kwargs = mock_run.call_args
        self.assertEqual(kwargs["timeout"], 7)
        self.assertTrue(kwargs["capture_output"])
        self.assertTrue(kwargs["text"])

    @patch("ucontrol.gateway.subprocess.run", side_effect=FileNotFoundError)
    def test_missing_binary_is_unavailable(self, mock_run):
        with self.assertRaises(GatewayUnavailable):
            _run_command(["nmcli"])

    @patch("ucontrol.gateway.subprocess.run",
           side_effect=subprocess.TimeoutExpired(cmd="nmcli", timeout=1))
    def test_timeout_is_gateway_error(self, mock_run):
        with self.assertRaises(GatewayError) as ctx:
            _run_command(["nmcli"], timeout=1)
        self.assertNotIsInstance(ctx.exception, GatewayUnavailable)


# ═══════════════════════════════════════════════════════════════════════════
# nmcli gateway
# ═══════════════════════════════════════════════════════════════════════════
class TestNmcliGateway(unittest.TestCase):
    """Verify nmcli argument lists and exit-code handling."""

    def setUp(self):
        self.gw = NmcliGateway(command_timeout=10)

    @patch("ucontrol.gateway._run_command")
    def test_list_networks_terse_fields(self, mock_run):
        mock_run.return_value = _completed("*:Home:80:WPA2\n")
        self.assertEqual(self.gw.list_networks(), "*:Home:80:WPA2\n")
        cmd = mock_run.call_args[0][0]
        self.assertEqual(cmd, ["nmcli", "-t", "-f", "IN-USE,SSID,SIGNAL,SECURITY",
                               "device", "wifi", "list"])

    @patch("ucontrol.gateway._run_command")
    def test_connect_with_password(self, mock_run):
        mock_run.return_value = _completed()
        self.gw.connect_network("Home", "secret")
        cmd = mock_run.call_args[0][0]
        self.assertEqual(cmd[-2:], ["password", "secret"])
        self.assertEqual(mock_run.call_args[1]["timeout"], 30)

    @patch("ucontrol.gateway._run_command")
    def test_connect_without_password(self, mock_run):
        mock_run.return_value = _completed()
        self.gw.connect_network("Home")
        self.assertNotIn("password", mock_run.call_args[0][0])

    @patch("ucontrol.gateway._run_command")
    def test_profile_operations_use_uuid(self, mock_run):
        mock_run.return_value = _completed()
        self.gw.activate_profile("u-1")
        self.assertEqual(mock_run.call_args[0][0][-3:], ["up", "uuid", "u-1"])
        self.gw.deactivate_profile("u-1")
        self.assertEqual(mock_run.call_args[0][0][-3:], ["down", "uuid", "u-1"])
        self.gw.delete_profile("u-1")
        self.assertEqual(mock_run.call_args[0][0][-3:], ["delete", "uuid", "u-1"])

    @patch("ucontrol.gateway._run_command")
    def test_delete_by_name_uses_id(self, mock_run):
        mock_run.return_value = _completed()
        self.gw.delete_profile_by_name("Office")
        self.assertEqual(mock_run.call_args[0][0][-3:], ["delete", "id", "Office"])

    @patch("ucontrol.gateway._run_command")
    def test_failure_is_rejected_with_stderr(self, mock_run):
        mock_run.return_value = _completed(returncode=4, stderr="Error: Secrets were required.\n")
        with self.assertRaises(ActionRejected) as ctx:
            self.gw.activate_profile("u-1")
        self.assertIn("Secrets were required", str(ctx.exception))

    @patch("ucontrol.gateway._run_command")
    def test_daemon_down_is_unavailable(self, mock_run):
        mock_run.return_value = _completed(returncode=8)
        with self.assertRaises(GatewayUnavailable):
            self.gw.list_profiles()

    @patch("ucontrol.gateway._run_command")
    def test_radio(self, mock_run):
        mock_run.return_value = _completed("enabled\n")
        self.assertTrue(self.gw.get_radio_enabled())
        mock_run.return_value = _completed("disabled\n")
        self.assertFalse(self.gw.get_radio_enabled())
        self.gw.set_radio_enabled(False)
        self.assertEqual(mock_run.call_args[0][0], ["nmcli", "radio", "wifi", "off"])


# ═══════════════════════════════════════════════════════════════════════════
# BlueZ gateway
# ═══════════════════════════════════════════════════════════════════════════
class TestBluezGatewayBus(_GioPatched):
    """Verify D-Bus calls made through the Gio connection."""

    def test_introspect(self):
        conn = _FakeConnection({
            ("org.freedesktop.DBus.Introspectable", "Introspect"): ("<node/>",),
        })
        gw = BluezGateway(connection=conn, bus_timeout_ms=1234)
        self.assertEqual(gw.introspect("/org/bluez"), "<node/>")
        service, path, _, method, _, timeout = conn.calls[0]
        self.assertEqual((service, path, method, timeout),
                         ("org.bluez", "/org/bluez", "Introspect", 1234))

    def test_list_names(self):
        conn = _FakeConnection({
            ("org.freedesktop.DBus", "ListNames"): (["org.freedesktop.DBus", "org.bluez"],),
        })
        self.assertIn("org.bluez", BluezGateway(connection=conn).list_names())

    def test_get_properties_passes_interface(self):
        conn = _FakeConnection({
            ("org.freedesktop.DBus.Properties", "GetAll"): ({"Name": "Buds"},),
        })
        props = BluezGateway(connection=conn).get_properties("/org/bluez/hci0/dev_X",
                                                             "org.bluez.Device1")
        self.assertEqual(props, {"Name": "Buds"})
        params = conn.calls[0][4]
        self.assertEqual((params.signature, params.value), ("(s)", ("org.bluez.Device1",)))

    def test_remove_device_targets_adapter(self):
        conn = _FakeConnection()
        BluezGateway(connection=conn).remove_device("/org/bluez/hci0", "/org/bluez/hci0/dev_X")
        _, path, interface, method, params, _ = conn.calls[0]
        self.assertEqual((path, interface, method),
                         ("/org/bluez/hci0", "org.bluez.Adapter1", "RemoveDevice"))
        self.assertEqual(params.value, ("/org/bluez/hci0/dev_X",))

    def test_connect_and_disconnect_target_device(self):
        conn = _FakeConnection()
        gw = BluezGateway(connection=conn)
        gw.connect("/org/bluez/hci0/dev_X")
        gw.disconnect("/org/bluez/hci0/dev_X")
        self.assertEqual([(c[2], c[3]) for c in conn.calls],
                         [("org.bluez.Device1", "Connect"),
                          ("org.bluez.Device1", "Disconnect")])

    def test_call_error_is_rejected(self):
        conn = _FakeConnection(error="GDBus.Error:org.bluez.Error.Failed: Page Timeout")
        with self.assertRaises(ActionRejected) as ctx:
            BluezGateway(connection=conn).connect("/org/bluez/hci0/dev_X")
        self.assertIn("Page Timeout", str(ctx.exception))

    def test_missing_service_is_unavailable(self):
        conn = _FakeConnection(
            error="GDBus.Error:org.freedesktop.DBus.Error.ServiceUnknown: "
                  "The name org.bluez was not provided by any .service files")
        with self.assertRaises(GatewayUnavailable):
            BluezGateway(connection=conn).introspect("/org/bluez")

    def test_local_error_is_rejected(self):
        conn = _FakeConnection(error="Timeout was reached")
        with self.assertRaises(ActionRejected):
            BluezGateway(connection=conn).disconnect("/org/bluez/hci0/dev_X")

    def test_bus_opened_lazily(self):
        conn = _FakeConnection({("org.freedesktop.DBus", "ListNames"): ([],)})
        _FakeGio.bus_get_sync.return_value = conn
        gw = BluezGateway()
        _FakeGio.bus_get_sync.assert_not_called()
        gw.list_names()
        gw.list_names()
        _FakeGio.bus_get_sync.assert_called_once_with("system", None)

    def test_bus_unavailable(self):
        _FakeGio.bus_get_sync.side_effect = _FakeGLibError("no system bus")
        with self.assertRaises(GatewayUnavailable):
            BluezGateway().introspect("/org/bluez")


class TestBluezGatewayRadio(unittest.TestCase):
    """Verify bluetoothctl power handling."""

    @patch("ucontrol.gateway._run_command")
    def test_powered_yes(self, mock_run):
        mock_run.return_value = _completed("Controller 00:11:22:33:44:55 (public)\n\tPowered: yes\n")
        self.assertTrue(BluezGateway().get_radio_enabled())

    @patch("ucontrol.gateway._run_command")
    def test_powered_no(self, mock_run):
        mock_run.return_value = _completed("Controller 00:11:22:33:44:55 (public)\n\tPowered: no\n")
        self.assertFalse(BluezGateway().get_radio_enabled())

    @patch("ucontrol.gateway._run_command")
    def test_no_controller(self, mock_run):
        mock_run.return_value = _completed("No default controller available\n")
        with self.assertRaises(GatewayUnavailable):
            BluezGateway().get_radio_enabled()

    @patch("ucontrol.gateway._run_command")
    def test_power_off(self, mock_run):
        mock_run.return_value = _completed()
        BluezGateway().set_radio_enabled(False)
        self.assertEqual(mock_run.call_args[0][0], ["bluetoothctl", "power", "off"])

    @patch("ucontrol.gateway._run_command")
    def test_power_failure_rejected(self, mock_run):
        mock_run.return_value = _completed(returncode=1, stderr="Failed to set power on: org.bluez.Error.Blocked")
        with self.assertRaises(ActionRejected):
            BluezGateway().set_radio_enabled(True)


if __name__ == "__main__":
    unittest.main()
