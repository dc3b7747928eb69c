"""
HTTP API for netsim.

Thin Flask layer over the rule compiler: decodes query parameters, maps
errors to JSON responses and logs every request.
"""

import logging
import threading
import time
from typing import Callable, Optional

from flask import Flask, Response, g, jsonify, request

from . import __version__
from .compiler import RuleCompiler
from .config import Settings
from .exceptions import (
    CapabilityUnavailableError,
    InvalidSpecError,
    NetSimError,
    ProfileNotFoundError,
)
from .impairment import ImpairmentSpec
from .inventory import HostInterface, list_usable_interfaces
from .profile import ProfileStore

logger = logging.getLogger(__name__)

API_VERSION = "v2"
CONFIG_PREFIX = f"/tc/api/{API_VERSION}/config"


class InFlightRequests:
    """
    Counts requests currently being handled.

    werkzeug's threaded server runs requests on daemon threads that its
    shutdown never joins, so the service waits on this counter instead
    before removing rules.
    """

    def __init__(self):
        self._count = 0
        self._idle = threading.Condition()

    @property
    def count(self) -> int:
        with self._idle:
            return self._count

    def enter(self) -> None:
        with self._idle:
            self._count += 1

    def leave(self) -> None:
        with self._idle:
            self._count -= 1
            if self._count <= 0:
                self._count = 0
                self._idle.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no request is in flight.

        Returns:
            False if requests were still running when the timeout expired.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._count == 0, timeout=timeout)


def _error(message: str, code: int) -> tuple[Response, int]:
    logger.error(f"API Error: {message}")
    return jsonify({"code": code, "message": message}), code


def create_app(
    compiler: RuleCompiler,
    settings: Settings,
    profiles: Optional[ProfileStore] = None,
    inventory: Callable[[], list[HostInterface]] = list_usable_interfaces,
    in_flight: Optional[InFlightRequests] = None,
) -> Flask:
    """
    Build the Flask application.

    Args:
        compiler: Compiler that applies and resets rules.
        settings: Service settings (control-plane port, request timeout).
        profiles: Named impairment presets usable with ``profile=<name>``.
        inventory: Lists the interfaces offered to clients.
        in_flight: Counter of running requests, drained on shutdown.
    """
    app = Flask(__name__)
    profiles = profiles or ProfileStore()
    in_flight = in_flight or InFlightRequests()

    @app.before_request
    def _start_timer():
        in_flight.enter()
        g.counted = True
        g.start = time.monotonic()

    @app.teardown_request
    def _finish(exc):
        if g.pop("counted", False):
            in_flight.leave()

    @app.after_request
    def _access_log(response):
        latency = time.monotonic() - g.get("start", time.monotonic())
        logger.info(
            f"[ACCESS] {request.method} {request.full_path.rstrip('?')} "
            f"- {response.status_code} ({latency * 1000:.1f}ms)"
        )
        return response

    @app.errorhandler(InvalidSpecError)
    def _invalid_spec(e):
        return _error(str(e), 400)

    @app.errorhandler(ProfileNotFoundError)
    def _profile_not_found(e):
        return _error(str(e), 400)

    @app.errorhandler(CapabilityUnavailableError)
    def _capability_unavailable(e):
        return _error(str(e), 409)

    @app.errorhandler(NetSimError)
    def _netsim_error(e):
        return _error(str(e), 500)

    @app.get("/tc/api/version")
    def version():
        return jsonify({"software_version": __version__, "api_version": API_VERSION})

    @app.get(f"{CONFIG_PREFIX}/init")
    def init():
        ifaces = inventory()
        if not ifaces:
            return _error(
                "No active (non-loopback, up) network interfaces with valid IPs found.",
                500,
            )
        return jsonify({"ifaces": [iface.to_dict() for iface in ifaces]})

    @app.get(f"{CONFIG_PREFIX}/setup")
    def setup():
        base = None
        profile_name = request.args.get("profile")
        if profile_name:
            base = profiles.get(profile_name).spec

        spec = ImpairmentSpec.from_query(
            request.args, control_plane_port=settings.control_plane_port, base=base
        )
        compiler.apply(spec, timeout=settings.request_timeout)
        return jsonify(None)

    @app.get(f"{CONFIG_PREFIX}/reset")
    def reset():
        compiler.reset(request.args.get("iface", ""), timeout=settings.request_timeout)
        return jsonify(None)

    @app.get(f"{CONFIG_PREFIX}/status")
    def status():
        return jsonify(compiler.status(request.args.get("iface", "")))

    @app.get(f"{CONFIG_PREFIX}/profiles")
    def list_profiles():
        return jsonify(
            {"profiles": [profiles.get(name).to_dict() for name in profiles.list_profiles()]}
        )

    return app
