"""
Status HTTP server for route-radio.

Exposes the coordinator's diagnostics for monitoring and for display nodes
that want to poll "now playing" instead of subscribing in-process.

Endpoints:
    GET /health     - Basic health check (200 OK if running)
    GET /status     - JSON coordinator state
    GET /metrics    - Prometheus-compatible metrics

Usage:
    from route_radio.output.status_server import StatusServer

    server = StatusServer(port=8080)
    server.set_coordinator(coordinator)
    server.start()
"""

import json
import logging
import threading
import time
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class StatusRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for status endpoints."""

    get_status: Optional[Callable[[], Dict[str, Any]]] = None

    def log_message(self, format, *args):
        """Route request logs to debug instead of stderr."""
        logger.debug(f"{self.address_string()} {format % args}")

    def do_GET(self):
        path = self.path.split('?', 1)[0]
        if path == '/health':
            self._handle_health()
        elif path == '/status':
            self._handle_status()
        elif path == '/metrics':
            self._handle_metrics()
        else:
            self.send_error(404, "Not Found")

    def _respond(self, code: int, content_type: str, body: bytes):
        self.send_response(code)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _handle_health(self):
        self._respond(200, 'text/plain', b'OK\n')

    def _handle_status(self):
        if not self.get_status:
            self._respond(503, 'application/json',
                          json.dumps({'error': 'No coordinator connected'}).encode())
            return
        try:
            status = self.get_status()
            self._respond(200, 'application/json', json.dumps(status, indent=2).encode())
        except Exception as e:
            logger.exception(f"Status request failed: {e}")
            self._respond(500, 'application/json', json.dumps({'error': str(e)}).encode())

    def _handle_metrics(self):
        if not self.get_status:
            self._respond(503, 'text/plain', b'# No coordinator connected\n')
            return
        try:
            metrics = format_prometheus_metrics(self.get_status())
            self._respond(200, 'text/plain; version=0.0.4', metrics.encode())
        except Exception as e:
            logger.exception(f"Metrics request failed: {e}")
            self._respond(500, 'text/plain', f'# Error: {e}\n'.encode())


_STATE_VALUES = {'IDLE': 0, 'READY': 1, 'RUNNING': 2, 'PAUSED': 3, 'STOPPED': 4}


def _metric(lines, name: str, kind: str, help_text: str, value: str):
    lines.extend([
        f'# HELP route_radio_{name} {help_text}',
        f'# TYPE route_radio_{name} {kind}',
        f'route_radio_{name} {value}',
        '',
    ])


def format_prometheus_metrics(status: Dict[str, Any]) -> str:
    """Format coordinator state as Prometheus metrics."""
    clock = status.get('clock', {})
    audio_stats = status.get('audio', {}).get('stats', {})
    media_stats = status.get('media', {}).get('stats', {})

    lines = []
    _metric(lines, 'position_seconds', 'gauge', 'Current cycle position in seconds',
            f'{status.get("position", 0):.3f}')
    _metric(lines, 'progress', 'gauge', 'Fraction of the cycle elapsed',
            f'{status.get("progress", 0):.6f}')
    _metric(lines, 'segment_index', 'gauge', 'Index of the current segment',
            f'{status.get("segment", {}).get("index", 0)}')
    _metric(lines, 'clock_drift_seconds', 'gauge', 'Last measured timeline drift in seconds',
            f'{clock.get("last_drift", 0):.6f}')
    _metric(lines, 'clock_resyncs_total', 'counter', 'Timeline resyncs from time of day',
            f'{clock.get("resync_count", 0)}')
    _metric(lines, 'audio_seeks_total', 'counter', 'Audio drift corrections by seeking',
            f'{audio_stats.get("sync_seeks", 0)}')
    _metric(lines, 'audio_reloads_total', 'counter', 'Audio reloads on resource mismatch',
            f'{audio_stats.get("sync_reloads", 0)}')
    _metric(lines, 'audio_handoffs_total', 'counter', 'Gapless handoffs to a preloaded resource',
            f'{audio_stats.get("handoffs", 0)}')
    _metric(lines, 'audio_load_failures_total', 'counter', 'Audio resources that failed to load',
            f'{audio_stats.get("load_failures", 0)}')
    _metric(lines, 'media_draws_total', 'counter', 'Visual media items drawn',
            f'{media_stats.get("draws", 0)}')
    _metric(lines, 'uptime_seconds', 'gauge', 'Radio uptime in seconds',
            f'{status.get("uptime_seconds", 0):.1f}')
    _metric(lines, 'state', 'gauge',
            'Session state (0=IDLE, 1=READY, 2=RUNNING, 3=PAUSED, 4=STOPPED)',
            f'{_STATE_VALUES.get(status.get("state", "IDLE"), 0)}')

    return '\n'.join(lines)


class StatusServer:
    """
    HTTP server for status monitoring.

    Runs in a background thread; handlers only read the coordinator's
    state snapshot.
    """

    def __init__(self, port: int = 8080, bind_address: str = '127.0.0.1'):
        """
        Args:
            port: HTTP port to listen on
            bind_address: Address to bind to (default: loopback only)
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.coordinator = None
        self._running = False

    def set_coordinator(self, coordinator):
        """Report the state of ``coordinator`` (a RadioCoordinator)."""
        self.coordinator = coordinator
        StatusRequestHandler.get_status = self._get_status

    def _get_status(self) -> Dict[str, Any]:
        if not self.coordinator:
            return {'error': 'No coordinator connected'}
        status = self.coordinator.snapshot()
        status['timestamp'] = time.time()
        return status

    def start(self):
        """Start the status server in a background thread."""
        if self._running:
            logger.warning("Status server already running")
            return

        try:
            self.server = HTTPServer((self.bind_address, self.port), StatusRequestHandler)
            self.server.timeout = 1.0
        except OSError as e:
            logger.error(f"Failed to start status server: {e}")
            return

        self._running = True
        self.thread = threading.Thread(target=self._serve, name="StatusServer", daemon=True)
        self.thread.start()

        logger.info(f"Status server started on http://{self.bind_address}:{self.port}")
        logger.info(f"  GET /health  - Health check")
        logger.info(f"  GET /status  - JSON status")
        logger.info(f"  GET /metrics - Prometheus metrics")

    def _serve(self):
        while self._running:
            try:
                self.server.handle_request()
            except Exception as e:
                if self._running:
                    logger.debug(f"Status request error: {e}")

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self):
        """Stop the status server."""
        self._running = False
        if self.thread:
            self.thread.join(timeout=2.0)
            self.thread = None
        if self.server:
            self.server.server_close()
            self.server = None
        StatusRequestHandler.get_status = None
        logger.info("Status server stopped")
