"""Tests for the Supervisor facade with the watchdog fork replaced by a plain pipe."""

import sys
import unittest
from types import SimpleNamespace
from unittest import mock

from childwatch.exceptions import AlreadyRunningError, InvalidIdentifierError, WatchdogStartError
from childwatch.supervisor import supervisor as supervisor_module
from childwatch.supervisor.protocol import Mode
from childwatch.supervisor.registry import LaunchSpec
from childwatch.supervisor.supervisor import Supervisor, SupervisorState

from tests._fakes import FakeFork, replay


class SupervisorRegistrationTests(unittest.TestCase):
    """Validate registration before the watchdog starts."""

    def test_identifiers_queue_until_start(self) -> None:
        supervisor = Supervisor()
        supervisor.register_identifier(100)
        supervisor.register_identifier(200)
        self.assertEqual(supervisor.registry.pending, (100, 200))
        self.assertIs(supervisor.state, SupervisorState.NOT_RUNNING)

    def test_zero_is_rejected(self) -> None:
        supervisor = Supervisor()
        with self.assertRaises(InvalidIdentifierError):
            supervisor.register_identifier(0)
        self.assertEqual(supervisor.registry.pending, ())

    def test_external_process_uses_its_pid(self) -> None:
        supervisor = Supervisor()
        supervisor.register_external_process(SimpleNamespace(pid=321))
        self.assertEqual(supervisor.registry.pending, (321,))

    def test_unparsable_external_identifier_is_logged_and_dropped(self) -> None:
        supervisor = Supervisor()
        for handle in (SimpleNamespace(pid="12ab"), SimpleNamespace(pid=None), object()):
            with self.subTest(handle=handle):
                with self.assertLogs("childwatch.supervisor.supervisor", level="WARNING"):
                    supervisor.register_external_process(handle)
        self.assertEqual(supervisor.registry.pending, ())

    def test_stop_when_not_running_is_a_no_op(self) -> None:
        supervisor = Supervisor()
        supervisor.stop()
        self.assertIs(supervisor.state, SupervisorState.NOT_RUNNING)


class SupervisorLifecycleTests(unittest.IsolatedAsyncioTestCase):
    """Validate start/stop and what is written to the watchdog."""

    def setUp(self) -> None:
        self.fork = FakeFork()
        patcher = mock.patch.object(supervisor_module.watchdog, "fork_watchdog", self.fork)
        patcher.start()
        self.addCleanup(patcher.stop)
        reaper_patcher = mock.patch.object(supervisor_module.watchdog, "reap_in_background")
        self.reap_in_background = reaper_patcher.start()
        self.addCleanup(reaper_patcher.stop)
        self.addCleanup(self.fork.close)

    async def test_pending_ids_reach_the_live_set_exactly_once(self) -> None:
        supervisor = Supervisor()
        for pid in (100, 200, 300):
            supervisor.register_identifier(pid)
        await supervisor.start()

        self.assertTrue(supervisor.is_running)
        self.assertEqual(supervisor.watchdog_pid, 4242)
        self.assertEqual(supervisor.registry.pending, ())

        supervisor.stop()
        data = self.fork.read_all()
        self.assertEqual(data, b"a 100\na 200\na 300\n")
        self.assertEqual(sorted(replay(data)), [100, 200, 300])

    async def test_scenario_remove_then_close(self) -> None:
        supervisor = Supervisor()
        for pid in (100, 200, 300):
            supervisor.register_identifier(pid)
        await supervisor.start()
        # Process 200 exited.
        supervisor.send_command(Mode.REMOVE, 200)
        supervisor.stop()
        self.assertEqual(sorted(replay(self.fork.read_all())), [100, 300])

    async def test_register_while_running_writes_immediately(self) -> None:
        supervisor = Supervisor()
        await supervisor.start()
        supervisor.register_identifier(55)
        supervisor.register_external_process(SimpleNamespace(pid=66))
        supervisor.stop()
        self.assertEqual(self.fork.lines(), [b"a 55\n", b"a 66\n"])

    async def test_zero_is_never_transmitted(self) -> None:
        supervisor = Supervisor()
        await supervisor.start()
        with self.assertRaises(InvalidIdentifierError):
            supervisor.register_identifier(0)
        supervisor.stop()
        self.assertEqual(self.fork.read_all(), b"")

    async def test_second_start_fails_without_side_effects(self) -> None:
        supervisor = Supervisor()
        await supervisor.start()
        with self.assertRaises(AlreadyRunningError):
            await supervisor.start()
        self.assertEqual(self.fork.calls, 1)
        self.assertIs(supervisor.state, SupervisorState.RUNNING)
        supervisor.stop()

    async def test_stop_closes_channel_and_allows_restart(self) -> None:
        supervisor = Supervisor()
        await supervisor.start()
        supervisor.stop()
        self.assertIs(supervisor.state, SupervisorState.NOT_RUNNING)
        self.assertIsNone(supervisor.watchdog_pid)
        self.assertEqual(self.fork.read_all(), b"")

        second = FakeFork(pid=5151)
        self.addCleanup(second.close)
        with mock.patch.object(supervisor_module.watchdog, "fork_watchdog", second):
            await supervisor.start()
            self.assertEqual(supervisor.watchdog_pid, 5151)
            supervisor.stop()

    async def test_start_hands_the_watchdog_to_a_reaper(self) -> None:
        supervisor = Supervisor()
        self.assertIsNone(supervisor.wait_watchdog_exit(0))
        self.reap_in_background.return_value.is_alive.return_value = False
        self.reap_in_background.return_value.exit_code = 0

        await supervisor.start()
        supervisor.stop()

        self.reap_in_background.assert_called_once_with(4242)
        self.assertEqual(supervisor.wait_watchdog_exit(1), 0)
        self.reap_in_background.return_value.join.assert_called_once_with(1)

    async def test_commands_after_stop_are_dropped(self) -> None:
        supervisor = Supervisor()
        await supervisor.start()
        supervisor.stop()
        supervisor.send_command(Mode.REMOVE, 10)
        supervisor.register_identifier(11)
        self.assertEqual(supervisor.registry.pending, (11,))

    async def test_broken_channel_is_logged_not_raised(self) -> None:
        supervisor = Supervisor()
        await supervisor.start()
        self.fork.break_pipe()
        with self.assertLogs("childwatch.supervisor.supervisor", level="ERROR"):
            supervisor.register_identifier(12)
        supervisor.stop()

    async def test_close_drops_registry(self) -> None:
        supervisor = Supervisor()
        await supervisor.register_launch(LaunchSpec(), [sys.executable, "-c", "pass"])
        supervisor.register_identifier(9)
        supervisor.close()
        self.assertEqual(len(supervisor.registry), 0)
        self.assertEqual(supervisor.registry.pending, ())


class SupervisorStartFailureTests(unittest.IsolatedAsyncioTestCase):
    """Validate that a failed fork leaves the supervisor untouched."""

    async def test_fork_failure_is_raised_and_state_kept(self) -> None:
        supervisor = Supervisor()
        supervisor.register_identifier(77)
        with mock.patch.object(
            supervisor_module.watchdog, "fork_watchdog", side_effect=WatchdogStartError("fork failed")
        ):
            with self.assertRaises(WatchdogStartError):
                await supervisor.start()
        self.assertIs(supervisor.state, SupervisorState.NOT_RUNNING)
        self.assertIsNone(supervisor.watchdog_pid)
        self.assertEqual(supervisor.registry.pending, (77,))


if __name__ == "__main__":
    unittest.main()
