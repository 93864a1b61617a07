"""
HTTP server for the OPRF evaluation API.

Uses stdlib http.server — zero external dependencies.
Routes requests to handler functions in handlers.py.
"""

from __future__ import annotations

import json
import logging
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

from gperm import API_DEFAULT_HOST, API_DEFAULT_PORT, API_MAX_REQUEST_BYTES
from gperm.api.auth import check_auth
from gperm.api.handlers import handle_evaluate, handle_status
from gperm.voprf.protocol import VOPRFServer

logger = logging.getLogger(__name__)


class EvaluationAPIHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the evaluation API.

    The VOPRFServer, api_key and require_auth flag are attached to the
    server instance and accessed via self.server.
    """

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug(format, *args)

    def _send_json(self, status: int, data: dict) -> None:
        body = json.dumps(data).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _read_body(self) -> bytes | None:
        """Read the request body. Returns None if it exceeds the size limit."""
        try:
            length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            length = 0
        if length > API_MAX_REQUEST_BYTES:
            return None
        if length <= 0:
            return b""
        return self.rfile.read(length)

    def _require_auth(self) -> bool:
        """Check Bearer auth. Returns True if authorized, sends 401 if not."""
        if not self.server.require_auth:  # type: ignore[attr-defined]
            return True
        api_key = self.server.api_key  # type: ignore[attr-defined]
        auth_header = self.headers.get("Authorization", "")
        if not check_auth(auth_header, api_key):
            self._send_json(401, {"error": "Unauthorized — provide Authorization: Bearer <key>"})
            return False
        return True

    def do_GET(self) -> None:
        path = self.path.split("?")[0]

        if path == "/status":
            code, data = handle_status(self.server.oprf)  # type: ignore[attr-defined]
            self._send_json(code, data)
            return

        self._send_json(404, {"error": "Not found"})

    def do_POST(self) -> None:
        path = self.path.split("?")[0]

        # Always read the body first to avoid connection resets
        body = self._read_body()
        if body is None:
            self.close_connection = True
            self._send_json(413, {"error": f"Payload too large (max {API_MAX_REQUEST_BYTES} bytes)"})
            return

        if path != "/evaluate":
            self._send_json(404, {"error": "Not found"})
            return
        if not self._require_auth():
            return

        code, data = handle_evaluate(body, self.server.oprf)  # type: ignore[attr-defined]
        self._send_json(code, data)


class EvaluationAPIServer(HTTPServer):
    """HTTPServer subclass that carries the VOPRFServer and API key."""

    def __init__(
        self,
        address: tuple[str, int],
        oprf: VOPRFServer,
        api_key: str = "",
        require_auth: bool = True,
    ) -> None:
        super().__init__(address, EvaluationAPIHandler)
        self.oprf = oprf
        self.api_key = api_key
        self.require_auth = require_auth


def run_api(
    oprf: VOPRFServer,
    host: str = API_DEFAULT_HOST,
    port: int = API_DEFAULT_PORT,
    api_key: str = "",
    require_auth: bool = True,
) -> None:
    """Start the evaluation API server (blocking)."""
    server = EvaluationAPIServer((host, port), oprf, api_key, require_auth)

    if not require_auth:
        logger.warning("Authentication disabled; /evaluate accepts unauthenticated requests")
    elif not api_key:
        logger.warning(
            "No API key configured; /evaluate will reject all requests. "
            "Set GPERM_API_KEY or create ~/.gperm/api/api_key"
        )

    print(f"gperm OPRF evaluation API listening on http://{host}:{port}")
    print(f"  POST /evaluate  — blind-evaluate a request{' (auth required)' if require_auth else ''}")
    print(f"  GET  /status    — service health and public key")
    print(f"  public key: {oprf.public_key.hex()}")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        server.server_close()
