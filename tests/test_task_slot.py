from __future__ import annotations

import logging
import threading

import pytest

from breweri_core import CancelToken, JobCancelled
from breweri_state import JobKind, TaskSlot


class FakeProcess:
    def __init__(self, running: bool = True) -> None:
        self.running = running
        self.killed = False

    def poll(self):
        return None if self.running else 0

    def kill(self) -> None:
        self.killed = True
        self.running = False


def test_submit_cancels_the_previous_job() -> None:
    slot = TaskSlot()
    started = threading.Event()

    def slow(job):
        started.set()
        job.token.sleep(10)

    first = slot.submit(JobKind.CATALOG_SEARCH, slow)
    assert started.wait(5)
    second = slot.submit(JobKind.INFO_FETCH, lambda job: None)

    first.join(5)
    second.join(5)
    assert first.finished
    assert first.token.cancelled
    assert not slot.is_current(first)
    assert slot.is_current(second)
    assert slot.current is second


def test_generations_increase() -> None:
    slot = TaskSlot()

    jobs = [slot.submit(JobKind.INFO_FETCH, lambda job: None) for _ in range(3)]
    for job in jobs:
        job.join(5)

    assert [job.generation for job in jobs] == [1, 2, 3]


def test_submit_passes_arguments_and_subject() -> None:
    slot = TaskSlot()
    seen = []

    job = slot.submit(JobKind.INFO_FETCH, lambda job, a, b: seen.append((a, b)), 4, "x", subject=4)
    job.join(5)

    assert seen == [(4, "x")]
    assert job.subject == 4


def test_cancel_empties_the_slot() -> None:
    slot = TaskSlot()
    job = slot.submit(JobKind.CATALOG_SEARCH, lambda job: job.token.sleep(10))

    slot.cancel()
    job.join(5)

    assert slot.current is None
    assert job.finished
    assert not slot.is_current(job)


def test_failing_job_is_logged_and_finishes(caplog: pytest.LogCaptureFixture) -> None:
    slot = TaskSlot()

    def boom(job):
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR):
        job = slot.submit(JobKind.INFO_FETCH, boom)
        job.join(5)

    assert job.finished
    assert "failed" in caplog.text


def test_token_sleep_returns_when_not_cancelled() -> None:
    CancelToken().sleep(0)


def test_token_sleep_raises_once_cancelled() -> None:
    token = CancelToken()
    token.cancel()

    with pytest.raises(JobCancelled):
        token.sleep(10)
    with pytest.raises(JobCancelled):
        token.check()


def test_cancel_kills_bound_process() -> None:
    token = CancelToken()
    process = FakeProcess()
    token.bind(process)

    token.cancel()

    assert process.killed


def test_binding_after_cancel_kills_immediately() -> None:
    token = CancelToken()
    token.cancel()
    process = FakeProcess()

    token.bind(process)

    assert process.killed


def test_finished_process_is_not_killed() -> None:
    token = CancelToken()
    process = FakeProcess(running=False)
    token.bind(process)

    token.cancel()

    assert not process.killed


def test_unbound_process_is_left_alone() -> None:
    token = CancelToken()
    process = FakeProcess()
    token.bind(process)
    token.unbind()

    token.cancel()

    assert not process.killed
