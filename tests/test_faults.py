import asyncio
import sys
import threading

from storyteller.lifecycle.base import LifecycleState
from storyteller.lifecycle.faults import FaultReporter


async def test_fault_after_ready_is_reported_not_fatal(make_manager, shutdown_signal):
    manager = make_manager()
    await manager.start()
    reporter = FaultReporter(shutdown_signal).install()
    try:
        reporter.report("event_loop", RuntimeError("boom"))
    finally:
        reporter.uninstall()

    assert reporter.fault_count == 1
    assert not shutdown_signal.requested
    assert manager.state is LifecycleState.READY


async def test_fault_can_request_shutdown_when_enabled(make_manager, shutdown_signal):
    manager = make_manager()
    await manager.start()
    reporter = FaultReporter(shutdown_signal, request_shutdown=True).install()
    try:
        reporter.report("thread", ValueError("bad"))
        exit_code = await manager.shutdown()
    finally:
        reporter.uninstall()

    assert shutdown_signal.reason == "fault:thread"
    assert exit_code == 0


async def test_loop_exception_handler_catches_orphaned_task(shutdown_signal):
    loop = asyncio.get_running_loop()
    reporter = FaultReporter(shutdown_signal)
    reporter.install(loop)
    try:
        loop.call_exception_handler({"message": "Task exception was never retrieved", "exception": RuntimeError("x")})
    finally:
        reporter.uninstall()

    assert reporter.fault_count == 1


async def test_thread_exceptions_are_reported(shutdown_signal):
    reporter = FaultReporter(shutdown_signal).install()
    try:
        thread = threading.Thread(target=lambda: 1 / 0, name="worker")
        thread.start()
        thread.join()
    finally:
        reporter.uninstall()

    assert reporter.fault_count == 1


async def test_thread_fault_requests_shutdown_on_the_loop(make_manager, shutdown_signal):
    manager = make_manager()
    await manager.start()
    reporter = FaultReporter(shutdown_signal, request_shutdown=True).install()
    try:
        thread = threading.Thread(target=lambda: 1 / 0, name="worker")
        thread.start()
        thread.join()
        # The request is queued for the loop, not run on the worker thread
        assert manager.state is LifecycleState.READY

        await asyncio.wait_for(shutdown_signal.wait(), timeout=1.0)
        exit_code = await manager.shutdown()
    finally:
        reporter.uninstall()

    assert reporter.fault_count == 1
    assert shutdown_signal.reason == "fault:thread"
    assert exit_code == 0
    assert manager.state is LifecycleState.STOPPED
    assert manager.event_kinds().count("shutdown_begin") == 1
    assert "dependency_closed" in manager.event_kinds()


async def test_uninstall_restores_hooks(shutdown_signal):
    previous_hook = sys.excepthook
    loop = asyncio.get_running_loop()
    previous_handler = loop.get_exception_handler()

    FaultReporter(shutdown_signal).install(loop).uninstall()

    assert sys.excepthook is previous_hook
    assert loop.get_exception_handler() is previous_handler
