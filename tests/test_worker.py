"""Tests for the worker polling loop and wiring."""

import signal
import threading
from unittest.mock import MagicMock

import pytest

from bookpress.jobs import JobService
from bookpress.models import WorkerConfig
from bookpress.queue import QueueMessage, SQLiteQueueClient
from bookpress.worker import Worker, build_worker

from fakes import FakeContentSource, FakePackager, flat_book


def message(job_id: str) -> QueueMessage:
    return QueueMessage(job_id=job_id, receipt_token=f"rh-{job_id}")


@pytest.fixture
def queue():
    queue = MagicMock()
    queue.receive.return_value = [message("a"), message("b")]
    return queue


@pytest.fixture
def jobs():
    jobs = MagicMock()
    jobs.worker_id = "test-worker"
    return jobs


class TestWorker:
    def test_run_once_processes_batch_in_order(self, queue, jobs):
        worker = Worker(queue, jobs)

        assert worker.run_once() == 2
        assert [c.args[0].job_id for c in jobs.run.call_args_list] == ["a", "b"]

    def test_shutdown_mid_batch_stops_taking_messages(self, queue, jobs):
        worker = Worker(queue, jobs)
        jobs.run.side_effect = lambda msg: worker.request_shutdown()

        assert worker.run_once() == 1
        assert worker.stopping

    def test_run_forever_exits_on_shutdown(self, queue, jobs):
        worker = Worker(queue, jobs)
        queue.receive.side_effect = [[message("a")], [message("b")]]
        calls = []

        def handle(msg):
            calls.append(msg.job_id)
            if len(calls) == 2:
                worker.request_shutdown(signal.SIGTERM)

        jobs.run.side_effect = handle

        worker.run_forever()

        assert calls == ["a", "b"]

    def test_polling_errors_back_off(self, queue, jobs):
        sleeps = []
        worker = Worker(queue, jobs, error_backoff_s=5, sleep=sleeps.append)
        queue.receive.side_effect = [RuntimeError("network down"), []]

        def stop_after_backoff(seconds):
            sleeps.append(seconds)
            worker.request_shutdown()

        worker._sleep = stop_after_backoff
        worker.run_forever()

        assert sleeps == [5]

    def test_shares_shutdown_event(self, queue, jobs):
        event = threading.Event()
        worker = Worker(queue, jobs, shutdown_event=event)

        worker.request_shutdown()

        assert event.is_set()

    def test_install_signal_handlers(self, queue, jobs, monkeypatch):
        installed = {}
        monkeypatch.setattr(signal, "signal", lambda signum, handler: installed.setdefault(signum, handler))

        worker = Worker(queue, jobs)
        worker.install_signal_handlers()

        assert set(installed) == {signal.SIGTERM, signal.SIGINT}
        installed[signal.SIGTERM](signal.SIGTERM, None)
        assert worker.stopping


class TestBuildWorker:
    def test_wires_from_config(self, tmp_path):
        config = WorkerConfig.from_dict({
            "environment": "test",
            "queue": {"backend": "sqlite", "sqlite_path": str(tmp_path / "queue.db"), "wait_time_s": 0},
            "job_store": {"sqlite_path": str(tmp_path / "jobs.db")},
            "conversion": {"work_root": str(tmp_path / "work")},
        })

        worker = build_worker(FakeContentSource(flat_book(2)), FakePackager(), config=config)

        assert isinstance(worker.queue, SQLiteQueueClient)
        assert isinstance(worker.jobs, JobService)
        assert worker.jobs.environment == "test"
        assert worker.jobs.pipeline.shutdown_event is worker.shutdown_event
        assert worker.run_once() == 0
