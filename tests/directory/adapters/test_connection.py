import asyncio
import time
import unittest
from unittest.mock import AsyncMock

from prometheus_client import CollectorRegistry

from directory.adapters.connection import ConnectionState, ManagedConnection
from directory.exceptions import DirectoryConnectionError
from directory.metrics import MetricsRecorder


class TestManagedConnection(unittest.IsolatedAsyncioTestCase):
    """Test cases for the shared connection state machine."""

    def setUp(self):
        self.registry = CollectorRegistry()
        self.metrics = MetricsRecorder(self.registry)
        self.opened = 0
        self.gate = None
        self.failures_left = 0
        self.closer = AsyncMock()

    async def opener(self):
        self.opened += 1
        number = self.opened
        if self.gate is not None:
            await self.gate.wait()
        if self.failures_left:
            self.failures_left -= 1
            raise OSError("connection refused")
        return f"handle-{number}"

    def make_connection(self, connect_timeout=5.0):
        return ManagedConnection("openldap", self.opener, self.closer, connect_timeout, self.metrics)

    def connections(self, outcome):
        value = self.registry.get_sample_value(
            "directory_connections_total", {"backend": "openldap", "outcome": outcome}
        )
        return value or 0

    async def test_lazy_establishment(self):
        connection = self.make_connection()
        self.assertEqual(connection.state, ConnectionState.UNCONNECTED)
        self.assertEqual(self.opened, 0)

        handle = await connection.get()
        self.assertEqual(handle, "handle-1")
        self.assertTrue(connection.is_ready)
        self.assertEqual(self.connections("established"), 1)

    async def test_concurrent_callers_share_one_establishment(self):
        self.gate = asyncio.Event()
        connection = self.make_connection()

        waiters = [asyncio.ensure_future(connection.get()) for _ in range(10)]
        await asyncio.sleep(0)
        self.assertEqual(connection.state, ConnectionState.CONNECTING)
        self.gate.set()
        handles = await asyncio.gather(*waiters)

        self.assertEqual(self.opened, 1)
        self.assertEqual(set(handles), {"handle-1"})

    async def test_ready_connection_is_reused(self):
        connection = self.make_connection()
        await connection.get()
        await connection.get()
        self.assertEqual(self.opened, 1)

    async def test_failure_then_retry(self):
        self.failures_left = 1
        connection = self.make_connection()

        with self.assertRaises(DirectoryConnectionError) as context:
            await connection.get()
        self.assertIsInstance(context.exception.__cause__, OSError)
        self.assertEqual(connection.state, ConnectionState.FAILED)
        self.assertIsInstance(connection.last_error, OSError)
        self.assertEqual(self.connections("failed"), 1)

        handle = await connection.get()
        self.assertEqual(handle, "handle-2")
        self.assertEqual(connection.state, ConnectionState.READY)
        self.assertIsNone(connection.last_error)

    async def test_all_waiters_see_the_same_failure(self):
        self.gate = asyncio.Event()
        self.failures_left = 1
        connection = self.make_connection()

        waiters = [asyncio.ensure_future(connection.get()) for _ in range(3)]
        await asyncio.sleep(0)
        self.gate.set()
        outcomes = await asyncio.gather(*waiters, return_exceptions=True)

        self.assertEqual(self.opened, 1)
        for outcome in outcomes:
            self.assertIsInstance(outcome, DirectoryConnectionError)

    async def test_cancelled_caller_does_not_cancel_establishment(self):
        self.gate = asyncio.Event()
        connection = self.make_connection()

        first = asyncio.ensure_future(connection.get())
        second = asyncio.ensure_future(connection.get())
        await asyncio.sleep(0)
        first.cancel()
        await asyncio.sleep(0)
        self.gate.set()

        self.assertEqual(await second, "handle-1")
        self.assertTrue(first.cancelled())
        self.assertEqual(self.opened, 1)
        self.assertTrue(connection.is_ready)

    async def test_connect_timeout(self):
        self.gate = asyncio.Event()
        connection = self.make_connection(connect_timeout=0.01)

        with self.assertRaises(DirectoryConnectionError) as context:
            await connection.get()
        self.assertIn("timed out", str(context.exception))
        self.assertEqual(connection.state, ConnectionState.FAILED)

    async def test_handle_opened_after_timeout_is_closed(self):
        self.gate = asyncio.Event()
        connection = self.make_connection(connect_timeout=0.01)

        with self.assertRaises(DirectoryConnectionError):
            await connection.get()
        self.gate.set()
        for _ in range(5):
            await asyncio.sleep(0)
        await connection.close()

        self.assertEqual(self.opened, 1)
        self.closer.assert_awaited_once_with("handle-1")

    async def test_blocking_opener_finishing_after_timeout_is_closed(self):
        def open_slowly():
            time.sleep(0.2)
            return "socket"

        async def opener():
            return await asyncio.get_running_loop().run_in_executor(None, open_slowly)

        connection = ManagedConnection("openldap", opener, self.closer, 0.05, self.metrics)
        with self.assertRaises(DirectoryConnectionError):
            await connection.get()
        await asyncio.sleep(0.4)
        await connection.close()

        self.closer.assert_awaited_once_with("socket")

    async def test_close_while_connecting_does_not_disturb_new_establishment(self):
        self.gate = asyncio.Event()
        connection = self.make_connection()

        first = asyncio.ensure_future(connection.get())
        for _ in range(3):
            await asyncio.sleep(0)
        self.assertEqual(self.opened, 1)
        await connection.close()
        second = asyncio.ensure_future(connection.get())
        for _ in range(3):
            await asyncio.sleep(0)

        self.assertEqual(connection.state, ConnectionState.CONNECTING)
        third = asyncio.ensure_future(connection.get())
        await asyncio.sleep(0)
        self.gate.set()

        self.assertEqual(await asyncio.gather(second, third), ["handle-2", "handle-2"])
        with self.assertRaises(asyncio.CancelledError):
            await first
        self.assertEqual(self.opened, 2)

        for _ in range(5):
            await asyncio.sleep(0)
        await connection.close()
        self.closer.assert_any_await("handle-1")
        self.closer.assert_any_await("handle-2")

    async def test_close_returns_to_unconnected(self):
        connection = self.make_connection()
        await connection.get()
        await connection.close()

        self.closer.assert_awaited_once_with("handle-1")
        self.assertEqual(connection.state, ConnectionState.UNCONNECTED)
        self.assertEqual(await connection.get(), "handle-2")

    async def test_close_before_connect_is_noop(self):
        connection = self.make_connection()
        await connection.close()
        self.closer.assert_not_awaited()


if __name__ == '__main__':
    unittest.main()
