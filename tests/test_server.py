"""Tests for the service shutdown sequence."""

import threading
import time
import urllib.request

import pytest

import netsim.server
from netsim.config import Settings
from netsim.server import Service


class StubServer:
    """Blocks in serve_forever until shutdown()."""

    def __init__(self):
        self._stopped = threading.Event()
        self.closed = False

    def serve_forever(self):
        self._stopped.wait()

    def shutdown(self):
        self._stopped.set()

    def server_close(self):
        self.closed = True


@pytest.fixture
def events(mocker):
    """Records the order of request completion and the cleanup sweep."""
    recorded = []
    manager = mocker.patch("netsim.server.LifecycleManager")
    manager.return_value.sweep.side_effect = lambda: recorded.append("sweep")
    mocker.patch("netsim.server.list_usable_interfaces", return_value=[])
    return recorded


def _service(compiler, **settings):
    service = Service(Settings(**settings))
    service.compiler = compiler
    return service


def test_sweep_waits_for_in_flight_request(mocker, compiler, events):
    mocker.patch("netsim.server.make_server", return_value=StubServer())
    service = _service(compiler, shutdown_timeout=5)
    service.in_flight.enter()

    def finish_request():
        time.sleep(0.3)
        events.append("request done")
        service.in_flight.leave()

    worker = threading.Thread(target=finish_request)
    worker.start()
    service.stop()
    service.serve()
    worker.join()

    assert events == ["request done", "sweep"]


def test_sweep_runs_after_shutdown_timeout(mocker, compiler, events):
    """Test that a stuck request delays cleanup only up to the timeout."""
    server = StubServer()
    mocker.patch("netsim.server.make_server", return_value=server)
    service = _service(compiler, shutdown_timeout=0.2)
    service.in_flight.enter()

    started = time.monotonic()
    service.stop()
    service.serve()

    assert events == ["sweep"]
    assert time.monotonic() - started < 2
    assert server.closed


def test_real_server_drains_slow_request(mocker, compiler, events):
    servers = []
    real_make_server = netsim.server.make_server

    def capture(*args, **kwargs):
        server = real_make_server(*args, **kwargs)
        servers.append(server)
        return server

    mocker.patch("netsim.server.make_server", side_effect=capture)

    handling = threading.Event()

    def slow_reset(interface, timeout=None):
        handling.set()
        time.sleep(0.5)
        events.append("request done")

    mocker.patch.object(compiler, "reset", side_effect=slow_reset)
    service = _service(compiler, listen_host="127.0.0.1", listen_port=0, shutdown_timeout=5)

    serving = threading.Thread(target=service.serve)
    serving.start()
    for _ in range(100):
        if servers:
            break
        time.sleep(0.05)
    port = servers[0].server_port

    responses = []
    client = threading.Thread(
        target=lambda: responses.append(
            urllib.request.urlopen(
                f"http://127.0.0.1:{port}/tc/api/v2/config/reset?iface=eth0", timeout=5
            ).status
        )
    )
    client.start()
    assert handling.wait(5)

    service.stop()
    serving.join(10)
    client.join(5)

    assert not serving.is_alive()
    assert events == ["request done", "sweep"]
    assert responses == [200]
