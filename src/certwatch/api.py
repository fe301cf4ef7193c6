"""
HTTP API for the certwatch system.

A thin mapping of HTTP requests onto the storage interface and the
processing counters:

- GET /domain            watch-list
- POST /domain           add {"domain": "..."} to the watch-list
- GET /domain/<name>     match history of a domain
- DELETE /domain/<name>  remove a domain and its history
- GET /matches           match history of all domains
- GET /stats             counter snapshot

Storage failures become 500 responses; they never stop the server.
"""

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional
from urllib.parse import unquote, urlsplit

from .audit_logger import AuditLogger
from .config import ApiConfig
from .counter import Counter
from .domain_resolver import DomainResolver
from .exceptions import DomainParseError, StorageError
from .storage import Storage
from .wire import entry_to_dict


MAX_BODY_BYTES = 64 * 1024


class ApiServer(ThreadingHTTPServer):
    """Threaded HTTP server carrying the components the handlers need."""

    daemon_threads = True

    def __init__(
        self,
        address: tuple[str, int],
        storage: Storage,
        counter: Counter,
        resolver: DomainResolver,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self.storage = storage
        self.counter = counter
        self.resolver = resolver
        self.logger = logger
        super().__init__(address, ApiRequestHandler)


class ApiRequestHandler(BaseHTTPRequestHandler):
    """Routes requests to storage operations."""

    server: ApiServer
    server_version = "certwatch"

    def do_GET(self) -> None:
        self._dispatch("GET")

    def do_POST(self) -> None:
        self._dispatch("POST")

    def do_DELETE(self) -> None:
        self._dispatch("DELETE")

    def _dispatch(self, method: str) -> None:
        path = urlsplit(self.path).path.rstrip("/") or "/"
        try:
            if path == "/domain":
                if method == "GET":
                    return self._send_json(200, sorted(self.server.storage.domains()))
                if method == "POST":
                    return self._add_domain()
                return self._send_error(405, "method_not_allowed", "Method not allowed")

            if path.startswith("/domain/"):
                name = unquote(path[len("/domain/"):])
                if not name or "/" in name:
                    return self._send_error(404, "not_found", "Not found")
                if method == "GET":
                    matches = self.server.storage.matches(name)
                    return self._send_json(200, [entry_to_dict(e) for e in matches])
                if method == "DELETE":
                    self.server.storage.remove(name)
                    return self._send_text(200, "OK")
                return self._send_error(405, "method_not_allowed", "Method not allowed")

            if path == "/matches" and method == "GET":
                matches = self.server.storage.all_matches()
                return self._send_json(200, [entry_to_dict(e) for e in matches])

            if path == "/stats" and method == "GET":
                return self._send_json(200, self.server.counter.to_dict())

            return self._send_error(404, "not_found", "Not found")
        except StorageError as e:
            if self.server.logger is not None:
                self.server.logger.log_error(
                    component="ApiServer",
                    message="Storage failure while handling request",
                    error=e,
                    additional_data={"method": method, "path": path},
                )
            return self._send_json(500, e.to_dict())

    def _add_domain(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        if length <= 0 or length > MAX_BODY_BYTES:
            return self._send_error(400, "invalid_body", "Request body is missing or too large")

        try:
            data = json.loads(self.rfile.read(length))
        except (json.JSONDecodeError, UnicodeDecodeError):
            return self._send_error(400, "invalid_body", "Request body is not valid JSON")

        if not isinstance(data, dict) or not isinstance(data.get("domain"), str):
            return self._send_error(400, "invalid_body", "Expected {\"domain\": string}")

        try:
            domain = self.server.resolver.validate(data["domain"])
        except DomainParseError as e:
            return self._send_json(400, e.to_dict())

        self.server.storage.monitor(domain)
        return self._send_json(201, {"domain": domain})

    def _send_json(self, status: int, payload: Any) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_text(self, status: int, text: str) -> None:
        body = text.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_error(self, status: int, code: str, message: str) -> None:
        self._send_json(status, {"code": code, "message": message})

    def log_message(self, format: str, *args: Any) -> None:
        if self.server.logger is not None:
            self.server.logger.debug(
                "ApiServer",
                format % args,
                {"client": self.client_address[0]},
            )


def start_api_server(
    config: ApiConfig,
    storage: Storage,
    counter: Counter,
    resolver: DomainResolver,
    logger: Optional[AuditLogger] = None,
) -> tuple[ApiServer, threading.Thread]:
    """
    Bind the API server and serve it from a background thread.

    Returns:
        The server (call shutdown() and server_close() to stop it) and its thread
    """
    server = ApiServer((config.host, config.port), storage, counter, resolver, logger)
    thread = threading.Thread(target=server.serve_forever, daemon=True, name="ApiServer")
    thread.start()

    if logger is not None:
        host, port = server.server_address[:2]
        logger.info("ApiServer", "API server listening", {"host": host, "port": port})
    return server, thread
