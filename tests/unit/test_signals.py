"""
Unit tests for the ready signal.
"""

import threading

import pytest

from httppush.core.signals import ReadySignal


def test_wait_times_out_before_fire():
    ready = ReadySignal()

    assert ready.wait(timeout=0.01) is False
    assert ready.fired is False


def test_fire_records_address():
    ready = ReadySignal()
    ready.fire(("127.0.0.1", 8443))

    assert ready.fired is True
    assert ready.wait(timeout=0) is True
    assert ready.address == ("127.0.0.1", 8443)


def test_fires_only_once():
    ready = ReadySignal()
    ready.fire()

    with pytest.raises(RuntimeError):
        ready.fire()

    with pytest.raises(RuntimeError):
        ready.fail(OSError("late"))


def test_fail_reraises_in_waiter():
    ready = ReadySignal()
    ready.fail(OSError("address in use"))

    with pytest.raises(OSError, match="address in use"):
        ready.wait(timeout=1)

    assert ready.fired is True
    assert ready.address is None


def test_wakes_waiter_on_another_thread():
    ready = ReadySignal()
    results = []

    waiter = threading.Thread(target=lambda: results.append(ready.wait(timeout=5)))
    waiter.start()
    ready.fire(("::1", 1))
    waiter.join(timeout=5)

    assert results == [True]
