"""server.py — The HTTP surface.

Routes:
    POST /users                 create a user (multi-user only)
    POST /update                append an entry (X-Auth-Token required)
    GET  /initial[/{username}]  today's entries, oldest first
    GET  /stream                live entries as Server-Sent Events
    GET  /user/{username}       viewer page, 404 for unknown users
    GET  /                      viewer page
    GET  /health                liveness

WorklogServer wires the pieces together and owns their lifecycle. The
broadcaster starts with the application and stops after it: on shutdown
every mailbox is closed first, which ends the open streams, then the
intake is drained.

Lifecycle:
    server = WorklogServer(config)
    await server.start()
    ...
    await server.stop()

Or hand server.app to anything that runs aiohttp applications.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any

import logfire
from aiohttp import web

from .auth import Authenticator, DirectoryAuth, SharedTokenAuth
from .broadcast import Broadcaster
from .config import ServerConfig
from .errors import NotFoundError, ValidationError, WorklogError
from .pipeline import IngestPipeline, ReadPipeline
from .registry import ClientRegistry
from .sse import SSEResponse, pump
from .store import Database, EntryStore
from .users import UserDirectory

AUTH_HEADER = "X-Auth-Token"


# -- Error mapping ------------------------------------------------------------


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Render WorklogError as {"error": ...} with its status."""
    try:
        return await handler(request)
    except WorklogError as e:
        if e.status >= 500:
            logfire.error(
                "{method} {path} failed: {error}",
                method=request.method,
                path=request.path,
                error=e.message,
            )
        return web.json_response({"error": e.message}, status=e.status)
    except web.HTTPException:
        raise
    except Exception:
        logfire.exception("Unhandled error on {method} {path}", method=request.method, path=request.path)
        return web.json_response({"error": "internal error"}, status=500)


async def _read_json_object(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError("bad request") from e
    if not isinstance(body, dict):
        raise ValidationError("bad request")
    return body


# -- Server -------------------------------------------------------------------


class WorklogServer:
    """Status-log service: store, directory, registry, broadcaster, routes."""

    def __init__(self, config: ServerConfig):
        self._config = config

        self._db = Database(config.db_path)
        self._store = EntryStore(self._db)
        self._directory: UserDirectory | None = None
        auth: Authenticator
        if config.multi_user:
            self._directory = UserDirectory(self._db)
            auth = DirectoryAuth(self._directory)
        else:
            auth = SharedTokenAuth(config.token)
        self._auth = auth

        self._registry = ClientRegistry()
        self._broadcaster = Broadcaster(
            self._registry,
            intake_size=config.intake_size,
            retry_timeout=config.retry_timeout,
        )
        self._ingest = IngestPipeline(
            self._store,
            self._broadcaster,
            auth,
            normalize=config.normalize_tags,
        )
        self._reader = ReadPipeline(self._store)

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    # -- Properties -----------------------------------------------------------

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def store(self) -> EntryStore:
        return self._store

    @property
    def directory(self) -> UserDirectory | None:
        return self._directory

    @property
    def registry(self) -> ClientRegistry:
        return self._registry

    @property
    def broadcaster(self) -> Broadcaster:
        return self._broadcaster

    @property
    def app(self) -> web.Application:
        if self._app is None:
            self._app = self._make_app()
        return self._app

    # -- Application ----------------------------------------------------------

    def _make_app(self) -> web.Application:
        app = web.Application(middlewares=[error_middleware])
        app.router.add_post("/users", self._handle_create_user)
        app.router.add_post("/update", self._handle_update)
        app.router.add_get("/initial", self._handle_initial)
        app.router.add_get("/initial/{username}", self._handle_initial)
        app.router.add_get("/stream", self._handle_stream)
        app.router.add_get("/user/{username}", self._handle_user_page)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/", self._handle_index)
        if self._config.static_dir.is_dir():
            app.router.add_static("/static/", self._config.static_dir)

        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        await asyncio.to_thread(self._db.init)
        self._broadcaster.start()
        logfire.info(
            "Worklog ready ({mode}, tags {tags})",
            mode="multi-user" if self._config.multi_user else "single-user",
            tags="normalized" if self._config.normalize_tags else "raw",
        )

    async def _on_shutdown(self, app: web.Application) -> None:
        closed = self._registry.close_all()
        logfire.info("Closed {count} live streams", count=closed)

    async def _on_cleanup(self, app: web.Application) -> None:
        await self._broadcaster.stop()

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Bind and serve on config.host:config.port."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await self._site.start()
        logfire.info("Listening on {addr}", addr=self._config.addr)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._site = None

    async def run_forever(self) -> None:
        """Serve until SIGINT/SIGTERM, then shut down cleanly."""
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass

        await self.start()
        try:
            await stop.wait()
        finally:
            logfire.info("Shutting down")
            await self.stop()

    # -- Handlers -------------------------------------------------------------

    async def _handle_create_user(self, request: web.Request) -> web.Response:
        if self._directory is None:
            raise NotFoundError("not found")
        body = await _read_json_object(request)
        username = body.get("username")
        if not isinstance(username, str) or not username.strip():
            raise ValidationError("username required")

        user = await asyncio.to_thread(self._directory.create_user, username)
        return web.json_response(user.to_dict(), status=201)

    async def _handle_update(self, request: web.Request) -> web.Response:
        token = request.headers.get(AUTH_HEADER)
        try:
            body = await _read_json_object(request)
        except ValidationError:
            # An unauthenticated caller learns nothing about the body.
            await self._ingest.authenticate(token)
            raise

        with logfire.span("ingest"):
            entry = await self._ingest.submit(body.get("message"), body.get("tags"), token=token)
        return web.json_response(entry.to_dict(), status=201)

    async def _handle_initial(self, request: web.Request) -> web.Response:
        username = request.match_info.get("username", "").strip() or None
        entries = await self._reader.snapshot(username)
        return web.json_response([entry.to_dict() for entry in entries])

    async def _handle_stream(self, request: web.Request) -> web.StreamResponse:
        sink = await SSEResponse.open(request)
        mailbox = self._broadcaster.subscribe(capacity=self._config.mailbox_capacity)
        logfire.info("Viewer connected ({count} live)", count=self._registry.count)
        try:
            await pump(mailbox, sink, heartbeat=self._config.heartbeat)
        except ConnectionError:
            logfire.debug("Viewer went away mid-write")
        finally:
            self._broadcaster.unsubscribe(mailbox)
            logfire.info("Viewer disconnected ({count} live)", count=self._registry.count)
        return sink.response

    async def _handle_user_page(self, request: web.Request) -> web.StreamResponse:
        if self._directory is None:
            raise NotFoundError("user not found")
        await asyncio.to_thread(self._directory.lookup_by_username, request.match_info["username"])
        return self._index_page()

    async def _handle_index(self, request: web.Request) -> web.StreamResponse:
        return self._index_page()

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.Response(text="ok")

    def _index_page(self) -> web.StreamResponse:
        index = self._config.static_dir / "index.html"
        if not index.is_file():
            raise NotFoundError("viewer page not installed")
        return web.FileResponse(index)
