#!/usr/bin/env python3
"""
netsim service entry point.

Runs preflight checks, serves the HTTP API and, on SIGINT/SIGTERM, drains
the server and removes the tc rules from every interface.
"""

import logging
import signal
import sys
import threading
from typing import Optional

from werkzeug.serving import make_server

from . import __version__
from .api import InFlightRequests, create_app
from .compiler import RuleCompiler
from .config import Settings
from .exceptions import NetSimError
from .executor import CommandExecutor, Deadline
from .gateway import enable_gateway_mode
from .inventory import HostInterface, list_usable_interfaces
from .lifecycle import LifecycleManager
from .preflight import detect_capabilities, log_checks, preflight_ok, run_preflight_checks
from .profile import ProfileStore

logger = logging.getLogger("netsim")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def log_startup_info(port: int, ifaces: list[HostInterface]) -> None:
    """Print where the API can be reached."""
    logger.info("----------------------------------------------------------")
    logger.info(f"netsim is READY (v{__version__})")
    logger.info(f"  - Web API: http://localhost:{port}")
    logger.info("Available host IPs:")
    if ifaces:
        for iface in ifaces:
            if iface.ipv4:
                logger.info(f"  - http://{iface.ipv4}:{port} (Interface: {iface.name})")
    else:
        logger.info("  - (No other non-loopback IPs found)")
    logger.info("----------------------------------------------------------")


class Service:
    """Wires settings, compiler and HTTP server together."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.executor = CommandExecutor(
            use_sudo=settings.use_sudo, command_timeout=settings.command_timeout
        )
        self.compiler: Optional[RuleCompiler] = None
        self.in_flight = InFlightRequests()
        self._stop = threading.Event()

    def prepare(self) -> None:
        """
        Run preflight checks and build the compiler.

        Raises:
            NetSimError: If a required check fails or gateway mode fails.
        """
        self.executor.require_sudo()

        logger.info("Running Preflight Checks...")
        checks = run_preflight_checks(self.executor)
        log_checks(checks)
        if not preflight_ok(checks):
            failures = [f"{c.name}: {c.message}" for c in checks if c.required and not c.status]
            raise NetSimError(f"preflight checks failed: {'; '.join(failures)}")
        logger.info("Preflight checks passed successfully.")

        capabilities = detect_capabilities(checks, self.settings.redirect_device)
        self.compiler = RuleCompiler(
            self.executor, capabilities, self.settings.control_plane_port
        )

        if self.settings.gateway_mode:
            enable_gateway_mode(self.executor, self.settings.reconfigure_firewall)
        else:
            logger.info("DEFAULT_GATEWAY_MODE=false. Skipping gateway setup.")

    def stop(self, signum=None, frame=None) -> None:
        if signum is not None:
            logger.warning(
                f"Received signal: {signal.Signals(signum).name}. Starting graceful shutdown..."
            )
        self._stop.set()

    def serve(self) -> None:
        """Serve until stop() is called, then drain and clean up."""
        profiles = ProfileStore(self.settings.profiles_path)
        app = create_app(self.compiler, self.settings, profiles, in_flight=self.in_flight)

        try:
            ifaces = list_usable_interfaces()
        except NetSimError as e:
            logger.warning(f"Could not query host interfaces for startup message: {e}")
            ifaces = []
        log_startup_info(self.settings.listen_port, ifaces)

        try:
            server = make_server(
                self.settings.listen_host, self.settings.listen_port, app, threaded=True
            )
        except OSError as e:
            raise NetSimError(f"cannot listen on port {self.settings.listen_port}: {e}")
        thread = threading.Thread(target=server.serve_forever, name="http", daemon=True)
        logger.info(
            f"HTTP server starting at {self.settings.listen_host}:{self.settings.listen_port}"
        )
        thread.start()

        self._stop.wait()

        logger.info("HTTP server shutting down...")
        deadline = Deadline(self.settings.shutdown_timeout)
        server.shutdown()
        thread.join(timeout=deadline.remaining())
        if thread.is_alive():
            logger.error("HTTP server did not stop within the shutdown timeout")
        server.server_close()

        logger.info(f"Waiting for {self.in_flight.count} in-flight request(s) to finish...")
        if not self.in_flight.wait_idle(deadline.remaining()):
            logger.error(
                f"{self.in_flight.count} request(s) still running after "
                f"{self.settings.shutdown_timeout}s, cleaning up anyway"
            )

        logger.info("Running graceful cleanup of all TC rules...")
        LifecycleManager(
            self.compiler, reset_timeout=self.settings.command_timeout * 3
        ).sweep()
        logger.info("Cleanup complete. Exiting.")


def main() -> int:
    try:
        settings = Settings.from_env()
    except NetSimError as e:
        configure_logging()
        logger.critical(f"Invalid configuration: {e}")
        return 1

    configure_logging(settings.log_level)
    logger.info("netsim - Web API for Linux traffic control")

    service = Service(settings)
    signal.signal(signal.SIGINT, service.stop)
    signal.signal(signal.SIGTERM, service.stop)

    try:
        service.prepare()
        service.serve()
    except NetSimError as e:
        logger.critical(f"Application failed to start: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
