"""Unit tests for the server lifecycle state machine."""

import logging
import threading

import pytest

from reactor_http.lifecycle.state import ServerLifecycle, ServerState


def test_new_lifecycle_is_created():
    lifecycle = ServerLifecycle()
    assert lifecycle.state is ServerState.CREATED
    assert not lifecycle.is_running()


def test_start_then_stop_walks_every_state():
    lifecycle = ServerLifecycle()

    lifecycle.mark_started()
    assert lifecycle.is_running()
    assert lifecycle.begin_stopping()
    assert lifecycle.state is ServerState.STOPPING
    lifecycle.mark_stopped()

    assert lifecycle.state is ServerState.STOPPED
    assert lifecycle.wait_stopped(0)


def test_second_start_is_refused():
    """A server instance is never restarted."""
    lifecycle = ServerLifecycle()
    lifecycle.mark_started()

    with pytest.raises(RuntimeError):
        lifecycle.mark_started()


def test_start_after_stop_is_refused():
    lifecycle = ServerLifecycle()
    lifecycle.mark_started()
    lifecycle.begin_stopping()
    lifecycle.mark_stopped()

    with pytest.raises(RuntimeError, match="stopped"):
        lifecycle.mark_started()


def test_stop_before_start_goes_straight_to_stopped():
    lifecycle = ServerLifecycle()

    assert not lifecycle.begin_stopping()
    assert lifecycle.state is ServerState.STOPPED
    assert lifecycle.wait_stopped(0)


def test_only_one_caller_owns_the_shutdown():
    lifecycle = ServerLifecycle()
    lifecycle.mark_started()
    results = []
    barrier = threading.Barrier(8)

    def claim():
        barrier.wait()
        results.append(lifecycle.begin_stopping())

    threads = [threading.Thread(target=claim) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1


def test_begin_stopping_logs_event(caplog):
    caplog.set_level(logging.INFO)
    lifecycle = ServerLifecycle()
    lifecycle.mark_started()

    lifecycle.begin_stopping()

    assert any(getattr(r, "event", None) == "server_stopping" for r in caplog.records)


def test_wait_stopped_times_out_while_running():
    lifecycle = ServerLifecycle()
    lifecycle.mark_started()
    assert not lifecycle.wait_stopped(0.01)
