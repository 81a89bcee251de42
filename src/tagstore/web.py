"""JSON HTTP API over a TagStore.

Routes (prefix defaults to /tags):
    GET  <prefix>/<group>   → 200 sorted JSON array
                              400 invalid group id, 404 [] for an unknown group
    POST <prefix>/<group>   → body: JSON array of tags
                              200 {"message", "addedCount", "addedTags"}
                              400 malformed body or invalid group id
                              503 group file lock busy (tags kept in memory)
    anything else           → 404 {"error": "Not Found"}
"""

from __future__ import annotations

import json
import logging
import socketserver
import urllib.parse
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any

from tagstore.errors import InvalidGroupId, StoreNotReady
from tagstore.models import normalize_tags

if TYPE_CHECKING:
    from tagstore.config import TagStoreConfig
    from tagstore.store import TagStore

logger = logging.getLogger("tagstore.web")

_MAX_BODY = 1_000_000


class _Handler(BaseHTTPRequestHandler):
    store: TagStore   # injected via make_handler()
    prefix: str = "/tags"

    def _group_from_path(self) -> str | None:
        """Raw group segment for a path under the prefix, None if outside it."""
        path = urllib.parse.urlparse(self.path).path
        base = self.prefix + "/"
        if not path.startswith(base):
            return None
        return urllib.parse.unquote(path[len(base):])

    def do_GET(self) -> None:
        group_id = self._group_from_path()
        if group_id is None:
            self._json({"error": "Not Found"}, 404)
            return
        try:
            tags = self.store.find(group_id)
        except InvalidGroupId:
            self._json({"error": "Invalid group ID format."}, 400)
            return
        except StoreNotReady:
            self._json({"error": "Tag store is starting up."}, 503)
            return
        if tags is None:
            self._json([], 404)
        else:
            self._json(tags)

    def do_POST(self) -> None:
        group_id = self._group_from_path()
        if group_id is None:
            self._json({"error": "Not Found"}, 404)
            return
        body = self._read_json()
        if body is _MALFORMED:
            self._json({"error": "Missing or malformed request body. Expected JSON array."}, 400)
            return
        if not isinstance(body, list):
            self._json({"error": "Request body must be an array of tags."}, 400)
            return
        try:
            result = self.store.add_tags(group_id, body)
        except InvalidGroupId:
            self._json({"error": "Invalid group ID format."}, 400)
            return
        except StoreNotReady:
            self._json({"error": "Tag store is starting up."}, 503)
            return

        payload = result.to_dict()
        if result.warning is not None and result.warning.contended:
            payload["error"] = "Server busy processing tags for this group."
            self._json(payload, 503)
            return
        candidates = normalize_tags(body)
        if not candidates:
            payload["message"] = "No valid tags provided."
        else:
            payload["message"] = f"Processed {len(candidates)} tags. Added {result.added_count} new unique tags."
        self._json(payload)

    def _read_json(self) -> Any:
        try:
            length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            return _MALFORMED
        if length <= 0 or length > _MAX_BODY:
            return _MALFORMED
        raw = self.rfile.read(length)
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _MALFORMED

    def _json(self, payload: Any, status: int = 200) -> None:
        encoded = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("%s - " + format, self.address_string(), *args)


_MALFORMED = object()


class _ThreadingHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    daemon_threads = True


def make_handler(store: TagStore, prefix: str = "/tags") -> type[_Handler]:
    class _Bound(_Handler):
        pass
    _Bound.store = store
    _Bound.prefix = prefix.rstrip("/")
    return _Bound


def make_server(store: TagStore, host: str, port: int, prefix: str = "/tags") -> HTTPServer:
    """Bind a threading HTTP server for *store* (port 0 picks a free port)."""
    return _ThreadingHTTPServer((host, port), make_handler(store, prefix))


def serve(cfg: TagStoreConfig, host: str | None = None, port: int | None = None) -> None:
    """Open the store, wait for it to be ready, then serve (blocking until Ctrl+C)."""
    from tagstore.store import open_store

    store, ready = open_store(config=cfg)
    ready.result()
    host = host or cfg.server.host
    port = port if port is not None else cfg.server.port
    server = make_server(store, host, port, cfg.server.prefix)
    print(f"tagstore  →  http://{host}:{server.server_port}{cfg.server.prefix}/<group>  (Ctrl+C to stop)")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
        store.close()
