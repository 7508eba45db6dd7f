"""Preview server for Stheno.

Renders content on demand instead of building the site up front:
- Keeps snapshots of the contents, templates, views and locals and reloads
  each one when its files change.
- Answers each request by looking up the content node for the URL, running
  generators against the current snapshot and rendering the node's view.
- Injects a live reload script into HTML responses and tells connected
  browsers to reload after every change.
- Restarts itself when the config file changes, reapplying command-line
  overrides.

Key classes:
- PreviewEngine: Snapshots, reload flags, file watchers and request handling.
- PreviewServer: HTTP and websocket servers plus the config watcher.
- _PreviewHandler: HTTP request handler forwarding to the engine.
"""

from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
import os
import shutil
import threading
import time
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote, urlsplit

import click
import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .builder import build_tree
from .config import Config
from .content import ContentPlugin, ContentTree, flatten
from .errors import ConfigParseError
from .generator import merge_trees, run_generator
from .renderer import PAYLOAD_TYPES, check_result, render_view
from .templates import load_templates
from .utils import glob_match

if TYPE_CHECKING:
    from .environment import Environment

logger = logging.getLogger(__name__)

WATCHED_EVENTS = {"created", "modified", "deleted", "moved"}

RELOAD_SCRIPT_TEMPLATE = """
<script>
(() => {{
  const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
  ws.onmessage = (event) => {{
    const data = JSON.parse(event.data || '{{}}');
    if (data.type === 'reload') location.reload();
  }};
}})();
</script>
"""


def normalize_url(url: str) -> str:
    """Map a request path to the URL of the file it refers to.

    A trailing ``/`` gets ``index.html`` appended; a final segment without a
    ``.`` is treated as a directory and gets ``/index.html``. The result is
    percent-decoded, and the rules are applied again until the decoded form
    is stable, so ``normalize_url(normalize_url(u)) == normalize_url(u)``.
    """
    while True:
        if url.endswith("/"):
            url += "index.html"
        elif "." not in url.rsplit("/", 1)[-1]:
            url += "/index.html"
        decoded = unquote(url)
        if decoded == url:
            return url
        url = decoded


def url_equal(a: str, b: str) -> bool:
    return normalize_url(a) == normalize_url(b)


def build_lookup_map(contents: ContentTree | list[ContentTree]) -> dict[str, ContentPlugin]:
    """Map the normalized URL path of every node to the node.

    Later trees (and later nodes) win when two nodes share a URL.
    """
    trees = contents if isinstance(contents, list) else [contents]
    lookup: dict[str, ContentPlugin] = {}
    for tree in trees:
        for item in flatten(tree):
            lookup[normalize_url(urlsplit(item.url).path)] = item
    return lookup


def lookup_charset(mimetype: str) -> str | None:
    if mimetype.startswith("text/") or mimetype in ("application/javascript", "application/json"):
        return "UTF-8"
    return None


def content_type_for(filename: str, uri: str) -> str:
    """Guess the Content-Type from the output filename, falling back to the URI."""
    mimetype = mimetypes.guess_type(filename)[0] or mimetypes.guess_type(uri)[0]
    if mimetype is None:
        return "application/octet-stream"
    charset = lookup_charset(mimetype)
    return f"{mimetype}; charset={charset}" if charset else mimetype


def inject_reload_script(body: bytes, ws_port: int) -> bytes:
    script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=ws_port).encode("utf-8")
    if b"</body>" in body:
        return body.replace(b"</body>", script + b"</body>", 1)
    return body + script


@dataclass
class Response:
    """Outcome of a preview request.

    Attributes:
        status: HTTP status code.
        uri: Normalized request URI.
        body: Response body, unless ``stream`` is set.
        stream: Readable binary stream to copy to the client.
        content_type: Content-Type header value.
        plugin_name: Handler class that served the request, if any.
    """

    status: int
    uri: str
    body: bytes | None = None
    stream: Any = None
    content_type: str = "text/plain; charset=UTF-8"
    plugin_name: str | None = None


def _status_color(status: int) -> str:
    if status >= 500:
        return "red"
    if status >= 400:
        return "yellow"
    return "green"


class _WatchHandler(FileSystemEventHandler):
    """Forwards file changes under a watched directory to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, callback):
        super().__init__()
        self.loop = loop
        self.callback = callback

    def on_any_event(self, event):
        if event.event_type not in WATCHED_EVENTS:
            return
        if event.is_directory and event.event_type == "modified":
            return
        path = os.fsdecode(getattr(event, "dest_path", "") or event.src_path)
        self.loop.call_soon_threadsafe(self.callback, path)


class PreviewEngine:
    """Serves requests from snapshots that are reloaded as files change.

    Each snapshot has a reloading flag. Requests wait until no flag is set
    before reading the snapshots; a failed reload leaves the previous
    snapshot in place.

    Attributes:
        env: Environment being previewed.
        contents: Last successfully built content tree.
        templates: Last successfully loaded templates.
        locals: Last successfully loaded template locals.
        lookup: Normalized URL to node, for ``contents``.
        reloading: Reloading flag per snapshot.
    """

    poll_interval = 0.005
    max_poll_interval = 0.1

    def __init__(self, env: Environment):
        self.env = env
        self.contents: ContentTree | None = None
        self.templates: dict[str, Any] | None = None
        self.locals: dict[str, Any] | None = None
        self.lookup: dict[str, ContentPlugin] = {}
        self.reloading = {"contents": False, "templates": False, "views": False, "locals": False}
        self._observer: Observer | None = None
        self._tasks: set[asyncio.Task] = set()
        self._busy = {"contents": False, "templates": False, "views": False}
        self._dirty = {"contents": False, "templates": False, "views": False}

    def is_ready(self) -> bool:
        return not any(self.reloading.values())

    async def wait_ready(self) -> None:
        """Wait until no snapshot is being reloaded."""
        delay = self.poll_interval
        while not self.is_ready():
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_poll_interval)

    # reloading

    async def reload_contents(self) -> None:
        self.reloading["contents"] = True
        try:
            contents = await build_tree(self.env)
            self.contents = contents
            self.lookup = build_lookup_map(contents)
        finally:
            self.reloading["contents"] = False

    async def reload_templates(self) -> None:
        self.reloading["templates"] = True
        try:
            self.templates = await load_templates(self.env)
        finally:
            self.reloading["templates"] = False

    async def reload_views(self, path: str | None = None) -> None:
        """Reload the view module at ``path``, or every view module."""
        self.reloading["views"] = True
        try:
            if path is not None and path.endswith(".py") and os.path.exists(path):
                self.env.load_view_module(self.env.relative_path(path))
            else:
                self.env.load_views()
        finally:
            self.reloading["views"] = False

    async def reload_locals(self) -> None:
        self.reloading["locals"] = True
        try:
            self.env.setup_locals()
            self.locals = self.env.get_locals()
        finally:
            self.reloading["locals"] = False

    async def setup(self) -> None:
        """Load every snapshot, logging failures."""
        results = await asyncio.gather(
            self.reload_contents(),
            self.reload_templates(),
            self.reload_views(),
            self.reload_locals(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error("%s", result, exc_info=result)

    # requests

    async def handle(self, path: str) -> Response:
        """Render the content node for ``path``.

        Returns:
            A 200 response with the rendered output, or a 404 response when no
            node matches or the view produced nothing.

        Raises:
            SthenoError: On any load or render failure.
        """
        uri = normalize_url(urlsplit(path).path)
        if self.contents is None and not self.reloading["contents"]:
            await self.reload_contents()
        if self.templates is None and not self.reloading["templates"]:
            await self.reload_templates()
        await self.wait_ready()

        contents = self.contents
        if contents is None:
            raise RuntimeError("contents are not loaded")
        templates = self.templates or {}
        locals = self.locals if self.locals is not None else self.env.get_locals()
        lookup = self.lookup

        generated = [
            await run_generator(self.env, contents, registration)
            for registration in self.env.generators
        ]
        tree = contents
        if generated:
            lookup = {**build_lookup_map(generated), **lookup}
            tree = merge_trees(self.env, generated, contents)

        content = lookup.get(uri)
        if content is None:
            return Response(404, uri, body=f"404 Not Found: {uri}\n".encode("utf-8"))
        plugin_name = type(content).__name__
        result = await render_view(self.env, content, locals, tree, templates)
        check_result(content, result)
        if result is None:
            return Response(404, uri, body=b"404 Not Found\n", plugin_name=plugin_name)
        content_type = content_type_for(content.filename, uri)
        if isinstance(result, PAYLOAD_TYPES):
            return Response(200, uri, body=bytes(result), content_type=content_type, plugin_name=plugin_name)
        return Response(200, uri, stream=result, content_type=content_type, plugin_name=plugin_name)

    async def respond(self, path: str) -> Response:
        """Handle a request, turning failures into a 500 response, and log it."""
        start = time.monotonic()
        try:
            response = await self.handle(path)
        except Exception as exc:
            logger.error("%s", exc, exc_info=exc)
            response = Response(500, normalize_url(urlsplit(path).path), body=str(exc).encode("utf-8"))
        elapsed = round((time.monotonic() - start) * 1000)
        logger.info(
            "%s %s %s %s",
            click.style(str(response.status), fg=_status_color(response.status)),
            click.style(response.uri, bold=True),
            click.style(response.plugin_name or "", fg="bright_black"),
            click.style(f"{elapsed}ms", fg="bright_black"),
        )
        return response

    # watching

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _schedule(self, slot: str, reload, filename_for=None) -> None:
        # one watcher reload per slot at a time; changes arriving meanwhile rerun it once
        if self._busy[slot]:
            self._dirty[slot] = True
            return
        self._busy[slot] = True
        self._spawn(self._run_and_notify(slot, reload, filename_for))

    async def _run_and_notify(self, slot: str, reload, filename_for=None) -> None:
        try:
            while self.reloading[slot]:
                await asyncio.sleep(self.poll_interval)
            while True:
                self._dirty[slot] = False
                try:
                    await reload()
                except Exception as exc:
                    logger.error("%s", exc, exc_info=exc)
                else:
                    self.env.emit("change", filename_for() if filename_for else None, False)
                if not self._dirty[slot]:
                    return
                logger.debug("%s changed while reloading, reloading again", slot)
                reload, filename_for = getattr(self, f"reload_{slot}"), None
        finally:
            self._busy[slot] = False

    def content_changed(self, path: str) -> None:
        relpath = self.env.relative_contents_path(path)
        for pattern in self.env.config.ignore or []:
            if glob_match(relpath, pattern):
                self.env.emit("change", relpath, True)
                return

        def changed_filename() -> str | None:
            source = Path(path).resolve()
            for content in flatten(self.contents) if self.contents is not None else []:
                if content.source == source:
                    return content.filename
            return None

        self._schedule("contents", self.reload_contents, changed_filename)

    def template_changed(self, path: str) -> None:
        self._schedule("templates", self.reload_templates)

    def view_changed(self, path: str) -> None:
        self._schedule("views", lambda: self.reload_views(path))

    def start_watchers(self) -> None:
        """Watch contents, templates and views for changes."""
        loop = asyncio.get_running_loop()
        observer = Observer()
        watched = [
            (self.env.contents_path, self.content_changed),
            (self.env.templates_path, self.template_changed),
        ]
        if self.env.config.views is not None:
            watched.append((self.env.resolve_path(self.env.config.views), self.view_changed))
        for directory, callback in watched:
            if directory.is_dir():
                observer.schedule(_WatchHandler(loop, callback), str(directory), recursive=True)
        observer.start()
        self._observer = observer

    def destroy(self) -> None:
        """Stop watching and cancel pending reloads."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()


class _PreviewHandler(BaseHTTPRequestHandler):
    """HTTP request handler forwarding requests to the running preview engine."""

    preview: PreviewServer

    def do_GET(self):
        self._respond(head=False)

    def do_HEAD(self):
        self._respond(head=True)

    def _respond(self, head: bool) -> None:
        preview = self.preview
        future = asyncio.run_coroutine_threadsafe(preview.engine.respond(self.path), preview.loop)
        response = future.result()
        body, stream = response.body, response.stream
        if preview.ws_port is not None and response.content_type.startswith("text/html"):
            if stream is not None:
                try:
                    body = stream.read()
                finally:
                    stream.close()
                stream = None
            body = inject_reload_script(body or b"", preview.ws_port)

        self.send_response(response.status)
        self.send_header("Content-Type", response.content_type)
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        if body is not None:
            self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        try:
            if head:
                return
            if body is not None:
                self.wfile.write(body)
            elif stream is not None:
                shutil.copyfileobj(stream, self.wfile)
        finally:
            if stream is not None:
                stream.close()

    def log_message(self, format, *args):
        # requests are logged by the engine
        pass


class _ConfigWatchHandler(FileSystemEventHandler):
    def __init__(self, loop: asyncio.AbstractEventLoop, filename: Path, callback):
        super().__init__()
        self.loop = loop
        self.filename = filename
        self.callback = callback

    def on_any_event(self, event):
        if event.event_type not in WATCHED_EVENTS or event.is_directory:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(p and Path(os.fsdecode(p)).resolve() == self.filename for p in paths):
            self.loop.call_soon_threadsafe(self.callback)


class PreviewServer:
    """HTTP preview server with live reload and config restarts.

    Attributes:
        env: Environment being previewed.
        engine: Engine answering requests, replaced on every start.
        loop: Event loop the engine runs on.
        ws_port: Port of the live reload websocket server, if running.
        exit_code: Set to 1 when an unhandled error stops the server.
    """

    def __init__(self, env: Environment):
        self.env = env
        self.engine: PreviewEngine | None = None
        self.loop: asyncio.AbstractEventLoop | None = None
        self.ws_port: int | None = None
        self.exit_code = 0
        self._httpd: ThreadingHTTPServer | None = None
        self._http_thread: threading.Thread | None = None
        self._ws_server = None
        self._ws_clients: set = set()
        self._config_observer: Observer | None = None
        self._restarting = False
        self._config_dirty = False

    @property
    def address(self) -> tuple[str, int]:
        """Host and port the HTTP server is bound to."""
        if self._httpd is None:
            raise RuntimeError("server is not running")
        return self._httpd.server_address[:2]

    async def start(self) -> None:
        """Load plugins, set up the engine and start listening."""
        self.loop = asyncio.get_running_loop()
        config = self.env.config
        self.env.load_plugins()
        engine = PreviewEngine(self.env)
        await engine.setup()
        engine.start_watchers()
        self.engine = engine

        handler_cls = type("_PreviewHandlerBound", (_PreviewHandler,), {"preview": self})
        try:
            self._httpd = ThreadingHTTPServer((config.hostname or "", int(config.port)), handler_cls)
        except OSError:
            engine.destroy()
            raise
        self._httpd.daemon_threads = True
        self._http_thread = threading.Thread(target=self._httpd.serve_forever, daemon=True)
        self._http_thread.start()

        if config.livereload:
            port = int(config.port)
            ws_port = config.ws_port if config.ws_port is not None else (port + 1 if port else 0)
            self._ws_server = await websockets.serve(self._ws_handler, config.hostname or "0.0.0.0", ws_port)
            self.ws_port = self._ws_server.sockets[0].getsockname()[1]

        self.env.on("change", self._on_change)
        _, port = self.address
        base_url = config.base_url if config.base_url.startswith("/") else "/"
        logger.info("server running on: %s", click.style(f"http://{config.hostname or 'localhost'}:{port}{base_url}", bold=True))

    async def stop(self) -> None:
        """Close the servers, stop the engine and reset the environment."""
        self.env.off("change", self._on_change)
        if self._httpd is not None:
            await asyncio.to_thread(self._httpd.shutdown)
            self._httpd.server_close()
            self._httpd = None
        if self._http_thread is not None:
            self._http_thread.join()
            self._http_thread = None
        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None
            self.ws_port = None
        self._ws_clients.clear()
        if self.engine is not None:
            self.engine.destroy()
            self.engine = None
        self.env.reset()

    async def restart(self) -> None:
        logger.info("restarting server")
        await self.stop()
        await self.start()

    async def reload_config(self) -> bool:
        """Reread the config file and restart with it.

        Command-line overrides are reapplied to the new config. A config file
        that cannot be parsed is logged and the server keeps running.

        Returns:
            True if the server restarted.
        """
        filename = self.env.config.filename
        try:
            config = Config.from_file(filename)
        except ConfigParseError as exc:
            logger.error("Error reloading config: %s", exc)
            return False
        config.apply_overrides(self.env.config.cli_overrides)
        self.env.set_config(config)
        await self.restart()
        logger.debug("config file change detected, server reloaded")
        self.env.emit("change", None, False)
        return True

    def _config_changed(self) -> None:
        if self._restarting:
            self._config_dirty = True
            return
        self._restarting = True
        task = asyncio.ensure_future(self.reload_config())
        task.add_done_callback(self._config_reloaded)

    def _config_reloaded(self, task: asyncio.Task) -> None:
        self._restarting = False
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._fatal(exc)
            return
        if self._config_dirty:
            self._config_dirty = False
            self._config_changed()

    def watch_config(self) -> None:
        """Restart when the config file changes, if enabled."""
        filename = self.env.config.filename
        if not self.env.config.restart_on_conf_change or filename is None:
            return
        filename = Path(filename).resolve()
        observer = Observer()
        observer.schedule(_ConfigWatchHandler(self.loop, filename, self._config_changed), str(filename.parent))
        observer.start()
        self._config_observer = observer

    def unwatch_config(self) -> None:
        if self._config_observer is not None:
            self._config_observer.stop()
            self._config_observer.join()
            self._config_observer = None

    # live reload

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _on_change(self, path: str | None, ignored: bool = False) -> None:
        logger.debug("change detected: %s", path or "all")
        if not self._ws_clients:
            return
        message = json.dumps({"type": "reload", "path": path})
        asyncio.ensure_future(self._broadcast(message))

    async def _broadcast(self, message: str) -> None:
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except Exception:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)

    # lifecycle

    def _fatal(self, exc: BaseException) -> None:
        logger.error("%s", exc, exc_info=exc)
        self.exit_code = 1
        if self.loop is not None:
            self.loop.stop()

    def _on_loop_error(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is None:
            logger.error("%s", context.get("message", "unhandled error"))
            self.exit_code = 1
            loop.stop()
            return
        self._fatal(exc)

    def run(self) -> None:  # pragma: no cover - integration path
        """Serve until interrupted.

        Raises:
            SystemExit: With status 1 if an unhandled error stopped the server.
        """
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        loop.set_exception_handler(self._on_loop_error)
        try:
            loop.run_until_complete(self.start())
            self.watch_config()
            loop.run_forever()
        except KeyboardInterrupt:
            pass
        finally:
            self.unwatch_config()
            loop.run_until_complete(self.stop())
            loop.close()
        if self.exit_code:
            raise SystemExit(self.exit_code)
