import threading
import time

import pytest

from application.mutation_serializer import TaskMutationSerializer


def _wait_until(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def test_with_lock_returns_action_result_and_evicts_key():
    serializer = TaskMutationSerializer()
    assert serializer.with_lock("t1", lambda: 42) == 42
    assert serializer.pending("t1") == 0
    assert serializer.active_keys() == 0


def test_same_key_runs_in_arrival_order():
    serializer = TaskMutationSerializer()
    order = []
    gate = threading.Event()

    def first():
        with serializer.lock("t1"):
            gate.wait(2)
            order.append("first")

    threads = [threading.Thread(target=first)]
    threads[0].start()
    assert _wait_until(lambda: serializer.pending("t1") == 1)

    for name in ("second", "third", "fourth"):
        t = threading.Thread(target=lambda n=name: serializer.with_lock("t1", lambda: order.append(n)))
        threads.append(t)
        t.start()
        expected = len(threads)
        assert _wait_until(lambda: serializer.pending("t1") == expected)

    gate.set()
    for t in threads:
        t.join(2)

    assert order == ["first", "second", "third", "fourth"]
    assert serializer.active_keys() == 0


def test_failure_releases_queue_for_next_caller():
    serializer = TaskMutationSerializer()

    def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        serializer.with_lock("t1", boom)

    assert serializer.pending("t1") == 0
    assert serializer.with_lock("t1", lambda: "next") == "next"


def test_failure_while_others_wait_does_not_block_them():
    serializer = TaskMutationSerializer()
    gate = threading.Event()
    results = []
    errors = []

    def failing():
        try:
            with serializer.lock("t1"):
                gate.wait(2)
                raise ValueError("first failed")
        except ValueError as exc:
            errors.append(str(exc))

    t1 = threading.Thread(target=failing)
    t1.start()
    assert _wait_until(lambda: serializer.pending("t1") == 1)
    t2 = threading.Thread(target=lambda: results.append(serializer.with_lock("t1", lambda: "ran")))
    t2.start()
    assert _wait_until(lambda: serializer.pending("t1") == 2)

    gate.set()
    t1.join(2)
    t2.join(2)

    assert errors == ["first failed"]
    assert results == ["ran"]
    assert serializer.active_keys() == 0


def test_different_keys_do_not_block_each_other():
    serializer = TaskMutationSerializer()
    gate = threading.Event()

    holder = threading.Thread(target=lambda: serializer.with_lock("busy", lambda: gate.wait(2)))
    holder.start()
    assert _wait_until(lambda: serializer.pending("busy") == 1)

    assert serializer.with_lock("other", lambda: "free") == "free"

    gate.set()
    holder.join(2)
