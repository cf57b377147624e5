"""Tests for RequestSerializer ordering, exclusivity and disconnect handling."""

import threading

import pytest

from modbus_tester.errors import DeviceError, NotConnected
from modbus_tester.serializer import RequestSerializer


@pytest.fixture
def link() -> dict:
    return {"connected": True}


@pytest.fixture
def serializer(link: dict):
    s = RequestSerializer(lambda: link["connected"])
    yield s
    s.shutdown()


def test_runs_in_submission_order(serializer: RequestSerializer) -> None:
    seen: list[int] = []
    futures = [serializer.submit(lambda i=i: seen.append(i) or i) for i in range(20)]
    assert serializer.join(timeout=5)
    assert seen == list(range(20))
    assert [f.result() for f in futures] == list(range(20))


def test_one_job_at_a_time_under_concurrent_submitters(serializer: RequestSerializer) -> None:
    lock = threading.Lock()
    state = {"active": 0, "max": 0, "count": 0}

    def job() -> None:
        with lock:
            state["active"] += 1
            state["max"] = max(state["max"], state["active"])
            state["count"] += 1
        threading.Event().wait(0.001)
        with lock:
            state["active"] -= 1

    def submitter() -> None:
        for _ in range(10):
            serializer.submit(job)

    threads = [threading.Thread(target=submitter) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert serializer.join(timeout=5)
    assert state["count"] == 40
    assert state["max"] == 1


def test_queued_job_fails_when_disconnected(serializer: RequestSerializer, link: dict) -> None:
    gate = threading.Event()
    ran: list[str] = []

    def first() -> None:
        gate.wait(5)
        link["connected"] = False

    f1 = serializer.submit(first)
    f2 = serializer.submit(lambda: ran.append("second"))
    gate.set()
    f1.result(timeout=5)
    with pytest.raises(NotConnected):
        f2.result(timeout=5)
    assert ran == []


def test_errors_propagate_to_future(serializer: RequestSerializer) -> None:
    def boom() -> None:
        raise DeviceError("Illegal data address", exception_code=2)

    future = serializer.submit(boom)
    with pytest.raises(DeviceError):
        future.result(timeout=5)
    # The worker keeps going after a failed job
    assert serializer.submit(lambda: 7).result(timeout=5) == 7


def test_pending_and_join(serializer: RequestSerializer) -> None:
    gate = threading.Event()
    serializer.submit(lambda: gate.wait(5))
    serializer.submit(lambda: None)
    assert serializer.pending == 2
    assert serializer.join(timeout=0.05) is False
    gate.set()
    assert serializer.join(timeout=5) is True
    assert serializer.pending == 0


def test_submit_after_shutdown_rejected(link: dict) -> None:
    s = RequestSerializer(lambda: link["connected"])
    s.submit(lambda: None).result(timeout=5)
    s.shutdown()
    with pytest.raises(NotConnected, match="closed"):
        s.submit(lambda: None)
