#!/usr/bin/env python3
"""
Tests for background scheduling and the delivery channel.

Workers run on real daemon threads against the mock gateways; the test
thread plays the consumer by draining the channel.
"""

import threading
import time
import unittest
from unittest.mock import patch

from test_helpers import Recorder, add_lib_path

add_lib_path()

from ucontrol.catalog import BluetoothCatalog
from ucontrol.executor import BluetoothActions, OperationExecutor
from ucontrol.interfaces import OperationKind
from ucontrol.mock_backend import MockBluetoothDevice, MockBluetoothGateway
from ucontrol.resolver import BluezAddressResolver
from ucontrol.scheduler import AsyncScheduler, DeliveryChannel
from ucontrol.state import StateCache

ADDR = "AA:BB:CC:DD:EE:FF"


class TestDeliveryChannel(unittest.TestCase):
    """Posts run exactly once, on the draining thread."""

    def test_each_post_runs_once(self):
        channel = DeliveryChannel()
        seen = Recorder()
        channel.post(seen, 1)
        channel.post(seen, 2)

        self.assertEqual(channel.pending(), 2)
        self.assertEqual(channel.drain(), 2)
        self.assertEqual(channel.drain(), 0)
        self.assertEqual(seen.calls, [(1,), (2,)])

    def test_runs_on_draining_thread(self):
        channel = DeliveryChannel()
        threads = []
        poster = threading.Thread(
            target=channel.post,
            args=(lambda: threads.append(threading.current_thread()),))
        poster.start()
        poster.join()

        self.assertEqual(threads, [])
        channel.drain()
        self.assertIs(threads[0], threading.current_thread())

    def test_wakeup_called_per_post(self):
        wakeups = Recorder()
        channel = DeliveryChannel(wakeup=wakeups)
        channel.post(lambda: None)
        channel.post(lambda: None)
        self.assertEqual(len(wakeups.calls), 2)

    def test_failing_callback_does_not_block_others(self):
        channel = DeliveryChannel()
        seen = Recorder()

        def _boom():
            raise RuntimeError("consumer bug")

        channel.post(_boom)
        channel.post(seen, "after")
        with self.assertLogs("ucontrol.scheduler", level="ERROR"):
            self.assertEqual(channel.drain(), 2)
        self.assertEqual(seen.calls, [("after",)])


class _SchedulerFixture(unittest.TestCase):

    def setUp(self):
        self.gateway = MockBluetoothGateway()
        self.cache = StateCache(enabled=True)
        self.channel = DeliveryChannel()
        self.devices = Recorder()
        self.states = Recorder()
        self.outcomes = Recorder()
        executor = OperationExecutor(
            BluezAddressResolver(self.gateway), BluetoothActions(self.gateway), self.cache)
        self.scheduler = AsyncScheduler(
            BluetoothCatalog(self.gateway, self.cache.is_enabled), executor,
            self.cache, self.channel,
            on_devices=self.devices, on_state=self.states, on_outcome=self.outcomes,
            subsystem="bluetooth")

    def tearDown(self):
        if self.gateway.gate is not None:
            self.gateway.gate.set()
        self.scheduler.wait_idle(timeout=5)

    def finish(self):
        self.assertTrue(self.scheduler.wait_idle(timeout=5))
        self.channel.drain()


class TestScheduleScan(_SchedulerFixture):
    """Scan results reach the cache and the consumer."""

    def test_scan_delivers_and_caches(self):
        self.gateway.add_device(MockBluetoothDevice(ADDR, "Buds"))
        self.scheduler.schedule_scan()
        self.finish()

        self.assertEqual([d.identifier for d in self.devices.last[0]], [ADDR])
        self.assertEqual([d.identifier for d in self.cache.devices()], [ADDR])

    def test_nothing_delivered_before_drain(self):
        self.scheduler.schedule_scan()
        self.assertTrue(self.scheduler.wait_idle(timeout=5))
        self.assertEqual(self.devices.calls, [])
        self.assertEqual(self.channel.pending(), 1)

    def test_disable_mid_scan_wins(self):
        self.gateway.add_device(MockBluetoothDevice(ADDR, "Buds"))
        original = self.gateway.list_names

        def _slow_list_names():
            names = original()
            self.cache.disable()
            return names

        self.gateway.list_names = _slow_list_names
        self.scheduler.schedule_scan()
        self.finish()

        self.assertEqual(self.devices.last, ([],))
        self.assertEqual(self.cache.devices(), [])

    def test_disable_finishing_after_enumeration_wins(self):
        """Results read while enabled are dropped if a disable completes first."""
        self.gateway.add_device(MockBluetoothDevice(ADDR, "Buds"))
        original = self.gateway.get_properties
        disabled = threading.Event()

        def _properties_then_disable(path, interface):
            props = original(path, interface)
            if not disabled.is_set():
                disabled.set()
                self.scheduler.schedule_operation(OperationKind.DISABLE, "bluetooth")
                deadline = time.monotonic() + 5
                while self.scheduler.tokens.is_busy("bluetooth", OperationKind.DISABLE) \
                        and time.monotonic() < deadline:
                    time.sleep(0.01)
            return props

        self.gateway.get_properties = _properties_then_disable
        self.scheduler.schedule_scan()
        self.finish()

        self.assertFalse(self.cache.is_enabled())
        self.assertEqual(self.cache.devices(), [])
        self.assertTrue(self.devices.calls)
        self.assertTrue(all(call == ([],) for call in self.devices.calls))


class TestScheduleOperation(_SchedulerFixture):
    """Token rejection, outcome delivery and the follow-up scan."""

    def test_duplicate_rejected_while_in_flight(self):
        self.gateway.add_device(MockBluetoothDevice(ADDR, "Buds"))
        self.gateway.gate = threading.Event()

        self.assertTrue(self.scheduler.schedule_operation(OperationKind.CONNECT, ADDR))
        self.assertFalse(self.scheduler.schedule_operation(OperationKind.CONNECT, ADDR))
        self.assertTrue(self.scheduler.tokens.is_busy(ADDR, OperationKind.CONNECT))

        self.gateway.gate.set()
        self.finish()

        self.assertEqual(self.gateway.count("connect"), 1)
        self.assertEqual(len(self.outcomes.calls), 1)
        self.assertEqual(len(self.scheduler.tokens), 0)

    def test_different_kind_not_rejected(self):
        self.gateway.add_device(MockBluetoothDevice(ADDR, "Buds"))
        self.gateway.gate = threading.Event()
        self.assertTrue(self.scheduler.schedule_operation(OperationKind.CONNECT, ADDR))
        self.assertTrue(self.scheduler.schedule_operation(OperationKind.FORGET, ADDR))
        self.gateway.gate.set()
        self.finish()
        self.assertEqual(len(self.outcomes.calls), 2)

    def test_token_released_after_completion(self):
        self.gateway.add_device(MockBluetoothDevice(ADDR, "Buds"))
        self.scheduler.schedule_operation(OperationKind.CONNECT, ADDR)
        self.finish()
        self.assertTrue(self.scheduler.schedule_operation(OperationKind.CONNECT, ADDR))
        self.finish()

    def test_outcome_carries_on_done_and_scan_follows(self):
        self.gateway.add_device(MockBluetoothDevice(ADDR, "Buds"))
        on_done = Recorder()
        self.scheduler.schedule_operation(OperationKind.CONNECT, ADDR, on_done=on_done)
        self.finish()

        outcome, callback = self.outcomes.last
        self.assertTrue(outcome.success)
        self.assertIs(callback, on_done)
        self.assertTrue(self.devices.last[0][0].connected)

    def test_disable_posts_state_then_empty_list(self):
        self.gateway.add_device(MockBluetoothDevice(ADDR, "Buds"))
        self.scheduler.schedule_operation(OperationKind.DISABLE, "bluetooth")
        self.finish()

        self.assertEqual(self.states.calls, [(False,)])
        self.assertEqual(self.devices.calls[0], ([],))
        self.assertTrue(all(call == ([],) for call in self.devices.calls))

    def test_failed_toggle_posts_no_state(self):
        self.gateway.fail_on.add("set_radio_enabled")
        self.scheduler.schedule_operation(OperationKind.ENABLE, "bluetooth")
        self.finish()
        self.assertEqual(self.states.calls, [])
        self.assertFalse(self.outcomes.last[0].success)

    def test_executor_crash_becomes_failed_outcome(self):
        executor = self.scheduler._executor
        with patch.object(executor, "execute", side_effect=RuntimeError("unexpected")), \
                self.assertLogs("ucontrol.scheduler", level="ERROR"):
            self.scheduler.schedule_operation(OperationKind.CONNECT, ADDR)
            self.finish()

        outcome = self.outcomes.last[0]
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.message, "internal error")
        self.assertFalse(self.scheduler.tokens.is_busy(ADDR, OperationKind.CONNECT))


if __name__ == "__main__":
    unittest.main()
