import asyncio
import socket

import httpx
import pytest

from storyteller.api.main import create_app
from storyteller.api.middleware import InFlightTracker
from storyteller.api.server import UvicornListener
from storyteller.core.exceptions import ListenerStartError


@pytest.fixture
def listener(settings, health_registry):
    tracker = InFlightTracker()
    app = create_app(settings, tracker=tracker, health_registry=health_registry)
    return UvicornListener(app, host="127.0.0.1", port=0, tracker=tracker, log_level="warning")


async def test_open_serve_stop_drain(listener):
    await listener.open()
    try:
        assert listener.is_accepting
        port = listener.metadata["port"]
        assert port > 0

        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as client:
            response = await client.get("/api/v1/health/live")
        assert response.status_code == 200

        await listener.stop_accepting()
        assert not listener.is_accepting
        assert listener.tracker.draining

        with pytest.raises(httpx.ConnectError):
            async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as client:
                await client.get("/api/v1/health/live")

        await listener.drain()
        assert listener.tracker.count == 0
    finally:
        await listener.close()


async def test_drain_lets_inflight_request_finish(listener):
    finished = []

    @listener.app.get("/slow")
    async def slow():
        await asyncio.sleep(0.3)
        finished.append(True)
        return {"ok": True}

    await listener.open()
    try:
        port = listener.metadata["port"]
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as client:
            request = asyncio.ensure_future(client.get("/slow"))
            for _ in range(100):
                if listener.tracker.count:
                    break
                await asyncio.sleep(0.01)
            assert listener.tracker.count == 1

            await listener.stop_accepting()
            await listener.drain()

            assert finished == [True]
            response = await asyncio.wait_for(request, timeout=1.0)
        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert listener.tracker.count == 0
    finally:
        await listener.close()


async def test_port_in_use_raises_listener_start_error(settings, health_registry):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen()
        port = taken.getsockname()[1]

        listener = UvicornListener(
            create_app(settings, health_registry=health_registry),
            host="127.0.0.1",
            port=port,
        )
        with pytest.raises(ListenerStartError):
            await listener.open()

    assert not listener.is_accepting
