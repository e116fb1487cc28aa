"""
Health check endpoint for monitoring the polling engine.
"""

from __future__ import annotations
import json
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from threading import Thread
from typing import Callable, Optional

from mailwatch.logging import logger

SERVICE_NAME = "mailwatch"


class HealthCheckHandler(BaseHTTPRequestHandler):
    """HTTP handler for health check endpoint."""

    # set per server class in HealthCheckServer
    health_func: Optional[Callable[[], dict]] = None

    def do_GET(self) -> None:
        path = self.path.rstrip("/") or "/"
        if path == "/health":
            self._handle_health()
        elif path in ("/", "/status"):
            self._send_response(200, {"service": SERVICE_NAME, "status": "running"})
        else:
            self._send_response(404, {"error": "Not found"})

    def _handle_health(self) -> None:
        health_func = type(self).health_func
        if health_func is None:
            self._send_response(503, {"status": "unavailable", "message": "Health check not configured"})
            return
        try:
            health_data = health_func()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            self._send_response(500, {"status": "error", "error": str(e)})
            return
        status_code = 200 if health_data.get("status") == "healthy" else 503
        self._send_response(status_code, health_data)

    def _send_response(self, status_code: int, data: dict) -> None:
        """Send JSON response."""
        try:
            body = json.dumps(data, indent=2, default=str).encode("utf-8")
            self.send_response(status_code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        except BrokenPipeError:
            # client went away before the response was written
            pass

    def log_message(self, format: str, *args) -> None:
        logger.debug(f"HTTP {format % args}")


class HealthCheckServer:
    """
    Small HTTP server for health checks, run in a daemon thread.

    Endpoints:
    - GET /health - engine health (200 when healthy, 503 otherwise)
    - GET /status - static service descriptor
    """

    def __init__(
        self,
        port: int = 8080,
        health_func: Optional[Callable[[], dict]] = None,
        host: str = "0.0.0.0",
    ) -> None:
        self.host = host
        self.port = port
        self.server: Optional[ThreadingHTTPServer] = None
        self.thread: Optional[Thread] = None
        # private handler subclass so two servers never share a health function
        self._handler = type("BoundHealthCheckHandler", (HealthCheckHandler,), {"health_func": None})
        self.set_health_func(health_func)

    def set_health_func(self, health_func: Optional[Callable[[], dict]]) -> None:
        self._handler.health_func = staticmethod(health_func) if health_func else None

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when started with port 0)."""
        return self.server.server_address[1] if self.server else self.port

    def start(self) -> None:
        """Start health check server in background thread."""
        if self.server:
            logger.warning("Health check server is already running")
            return

        self.server = ThreadingHTTPServer((self.host, self.port), self._handler)
        self.thread = Thread(target=self.server.serve_forever, name="mailwatch-health", daemon=True)
        self.thread.start()
        logger.info(f"Health check server started on port {self.bound_port}")

    def stop(self) -> None:
        """Stop health check server."""
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
            logger.info("Health check server stopped")
