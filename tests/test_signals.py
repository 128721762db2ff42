import asyncio
import os
import signal

import pytest

from storyteller.lifecycle.signals import HANDLED_SIGNALS, ShutdownSignal, install_signal_handlers


def test_exactly_two_signals_are_handled():
    assert set(HANDLED_SIGNALS) == {signal.SIGINT, signal.SIGTERM}


async def test_first_request_wins():
    shutdown = ShutdownSignal()
    seen = []
    shutdown.subscribe(lambda reason, first: seen.append((reason, first)))

    assert shutdown.request("SIGTERM") is True
    assert shutdown.request("SIGINT") is False

    assert shutdown.reason == "SIGTERM"
    assert shutdown.request_count == 2
    assert seen == [("SIGTERM", True), ("SIGINT", False)]
    assert await shutdown.wait() == "SIGTERM"


async def test_wait_for_times_out_without_request():
    shutdown = ShutdownSignal()

    assert await shutdown.wait_for(0.01) is False
    assert await shutdown.wait_for(0) is False


async def test_wait_for_wakes_early_on_request():
    shutdown = ShutdownSignal()
    asyncio.get_running_loop().call_later(0.01, shutdown.request, "SIGINT")

    assert await shutdown.wait_for(5) is True


@pytest.mark.skipif(os.name == "nt", reason="POSIX signals only")
async def test_os_signal_reaches_shutdown_context():
    shutdown = ShutdownSignal()
    uninstall = install_signal_handlers(shutdown)
    try:
        os.kill(os.getpid(), signal.SIGTERM)
        reason = await asyncio.wait_for(shutdown.wait(), timeout=2)
    finally:
        uninstall()

    assert reason == "SIGTERM"
