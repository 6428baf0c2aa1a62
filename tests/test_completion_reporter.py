"""
Unit tests for the CompletionReporter class.
"""

import threading
import unittest
from completion_reporter import CompletionReporter, UnknownRequestError
from reindex_models import ReindexHandle, ReindexState


class TestCompletionReporter(unittest.TestCase):
    """Test cases for the CompletionReporter class."""

    def setUp(self):
        self.reporter = CompletionReporter()
        self.handle = self.reporter.register(ReindexHandle.new())
        self.request_id = self.handle.request_id

    def test_register_returns_copy(self):
        self.handle.read = 99
        self.assertEqual(self.reporter.status(self.request_id).read, 0)

    def test_register_twice_fails(self):
        with self.assertRaises(ValueError):
            self.reporter.register(ReindexHandle(request_id=self.request_id))

    def test_update_and_status_snapshot(self):
        def mutate(handle):
            handle.read += 10
            handle.written += 9
            handle.failed += 1

        self.reporter.update(self.request_id, mutate)
        snapshot = self.reporter.status(self.request_id)
        snapshot.errors.append({'error_kind': 'x'})

        self.assertEqual((snapshot.read, snapshot.written, snapshot.failed), (10, 9, 1))
        self.assertEqual(self.reporter.status(self.request_id).errors, [])

    def test_finish(self):
        snapshot = self.reporter.finish(self.request_id, ReindexState.COMPLETED)

        self.assertEqual(snapshot.state, ReindexState.COMPLETED)
        self.assertIsNotNone(snapshot.finished_at)
        self.assertTrue(self.reporter.acknowledge(self.request_id))

    def test_terminal_handle_is_immutable(self):
        self.reporter.finish(self.request_id, ReindexState.FAILED, cancelled=True)

        with self.assertRaises(RuntimeError):
            self.reporter.update(self.request_id, lambda handle: None)
        with self.assertRaises(RuntimeError):
            self.reporter.finish(self.request_id, ReindexState.COMPLETED)
        self.assertTrue(self.reporter.status(self.request_id).cancelled)

    def test_finish_requires_terminal_state(self):
        with self.assertRaises(ValueError):
            self.reporter.finish(self.request_id, ReindexState.RUNNING)

    def test_acknowledge_running(self):
        self.assertFalse(self.reporter.acknowledge(self.request_id))

    def test_unknown_request(self):
        with self.assertRaises(UnknownRequestError):
            self.reporter.status('nope')
        with self.assertRaises(KeyError):
            self.reporter.acknowledge('nope')

    def test_wait(self):
        timer = threading.Timer(0.05, self.reporter.finish, args=(self.request_id, ReindexState.COMPLETED))
        timer.start()

        snapshot = self.reporter.wait(self.request_id, timeout=5)
        timer.join()

        self.assertEqual(snapshot.state, ReindexState.COMPLETED)

    def test_wait_timeout_returns_running_snapshot(self):
        self.assertEqual(self.reporter.wait(self.request_id, timeout=0.01).state, ReindexState.RUNNING)

    def test_list_running_and_forget(self):
        other = self.reporter.register(ReindexHandle.new())
        self.reporter.finish(other.request_id, ReindexState.COMPLETED)

        self.assertEqual(self.reporter.list_running(), [self.request_id])

        with self.assertRaises(RuntimeError):
            self.reporter.forget(self.request_id)
        self.reporter.forget(other.request_id)
        with self.assertRaises(UnknownRequestError):
            self.reporter.status(other.request_id)

    def test_finished_handles_are_evicted_oldest_first(self):
        reporter = CompletionReporter(retain_finished=2)
        running = reporter.register(ReindexHandle.new())
        finished = [reporter.register(ReindexHandle.new()).request_id for _ in range(3)]
        for request_id in finished:
            reporter.finish(request_id, ReindexState.COMPLETED)

        with self.assertRaises(UnknownRequestError):
            reporter.status(finished[0])
        self.assertEqual(reporter.status(finished[1]).state, ReindexState.COMPLETED)
        self.assertEqual(reporter.status(finished[2]).state, ReindexState.COMPLETED)
        self.assertEqual(reporter.list_running(), [running.request_id])
        self.assertEqual(len(reporter._handles), 3)
        self.assertEqual(len(reporter._done), 3)

    def test_forgotten_handle_leaves_retention_queue(self):
        reporter = CompletionReporter(retain_finished=1)
        first = reporter.register(ReindexHandle.new()).request_id
        reporter.finish(first, ReindexState.COMPLETED)
        reporter.forget(first)
        second = reporter.register(ReindexHandle.new()).request_id
        reporter.finish(second, ReindexState.FAILED)

        self.assertEqual(reporter.status(second).state, ReindexState.FAILED)


if __name__ == '__main__':
    unittest.main()
