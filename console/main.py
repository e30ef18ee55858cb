"""
Mosquitto Manager - FastAPI Application
=========================================
Creates the management console application and wires the brokerctl core
into it.

Responsibilities:
    - Build every core object from the settings (store, controller, secure
      sync, password writer, reconciler, session tracker, stats aggregator)
    - Register API routes and the /ws push endpoint
    - Lifespan: run the startup reconciliation, then start the background
      tasks (session tracker, raw log streamer, stats subscriber); cancel
      them on shutdown

The internal service account is generated here, once per process. Its
password never leaves memory except through mosquitto_passwd.
"""

import asyncio
import contextlib
import logging
import os

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from brokerctl.control import ProcessController
from brokerctl.credentials import InternalAccount, PasswordFileWriter
from brokerctl.errors import BrokerCtlError
from brokerctl.paths import INTERNAL_LISTENER_ADDRESS
from brokerctl.pipeline import Reconciler
from brokerctl.secure import SecureSync
from brokerctl.stats import StatsAggregator
from brokerctl.store import DocumentStore
from brokerctl.tail import LogTailer
from brokerctl.tracker import SessionTracker
from console.routes import create_router
from console.settings import SettingsManager, command
from console.websocket import WebSocketManager, clients_message, stats_message


logger = logging.getLogger(__name__)


async def stream_logs(tailer: LogTailer, ws_manager: WebSocketManager) -> None:
    """Forward every new broker log line to WebSocket clients."""
    async for line in tailer.follow():
        await ws_manager.send_log(line)


async def run_startup(reconciler: Reconciler) -> None:
    """
    Startup reconciliation. Failures are logged, not fatal: the console must
    come up so the operator can see and fix the problem.
    """
    try:
        result = await reconciler.run_startup_reconciliation()
    except BrokerCtlError as e:
        logger.error("[STARTUP] Reconciliation failed: %s", e)
        return
    if result.credential_failures:
        logger.warning("[STARTUP] Users without credentials: %s", ", ".join(result.credential_failures))


def create_app(
    project_dir: str | None = None,
    settings_manager: SettingsManager | None = None,
    start_services: bool = True,
) -> FastAPI:
    """
    Application factory.

    Args:
        project_dir:      Installation root. Auto-detected if None.
        settings_manager: Pre-built settings (tests); built from project_dir if None.
        start_services:   Run startup reconciliation and background tasks
                          in the lifespan. Tests turn this off.

    Returns:
        Configured FastAPI application ready to run with uvicorn.
    """
    # -- Resolve settings ------------------------------------------------------
    if settings_manager is None:
        if project_dir is None:
            project_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        settings_manager = SettingsManager(project_dir)

    config = settings_manager.load()
    if "_config_error" in config:
        logger.error("[CONFIG] config.yaml unreadable, using defaults: %s", config["_config_error"])
    broker = config["broker"]
    paths = settings_manager.broker_paths(config)

    # -- Build the core --------------------------------------------------------
    internal = InternalAccount()
    store = DocumentStore(paths.state_file)
    controller = ProcessController(paths.pid_file)
    secure = SecureSync(paths, uid=int(broker["broker_uid"]), gid=int(broker["broker_gid"]))
    passwords = PasswordFileWriter(paths.staging_password_file, command(broker["passwd_command"]))
    reconciler = Reconciler(
        store=store,
        paths=paths,
        controller=controller,
        secure=secure,
        passwords=passwords,
        internal=internal,
        bootstrap=settings_manager.bootstrap_credentials(),
        openssl_command=command(broker["openssl_command"]),
    )
    poll_interval = float(broker["log_poll_interval"])
    tracker = SessionTracker(paths.log_file, poll_interval=poll_interval)
    stats = StatsAggregator(
        internal,
        host=INTERNAL_LISTENER_ADDRESS,
        port=paths.internal_port,
        reconnect_interval=float(broker["stats_reconnect_interval"]),
    )
    ws_manager = WebSocketManager()
    tracker.subscribe(ws_manager.send_clients)
    stats.subscribe(ws_manager.send_stats)

    # -- Lifespan --------------------------------------------------------------
    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        tasks: list[asyncio.Task] = []
        if start_services:
            secure.ensure_secure_dir()
            await run_startup(reconciler)
            tasks = [
                asyncio.create_task(tracker.run(), name="session-tracker"),
                asyncio.create_task(
                    stream_logs(LogTailer(paths.log_file, interval=poll_interval), ws_manager),
                    name="log-streamer",
                ),
                asyncio.create_task(stats.run(), name="stats-subscriber"),
            ]
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            for task in tasks:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    # -- Create FastAPI app ----------------------------------------------------
    app = FastAPI(
        title="Mosquitto Manager",
        description="Management console for a Mosquitto MQTT broker",
        version="1.0.0",
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Store core objects on app state ---------------------------------------
    app.state.settings_manager = settings_manager
    app.state.paths = paths
    app.state.store = store
    app.state.controller = controller
    app.state.reconciler = reconciler
    app.state.tracker = tracker
    app.state.stats = stats
    app.state.ws_manager = ws_manager

    # -- Register API routes ---------------------------------------------------
    app.include_router(create_router(
        store=store,
        reconciler=reconciler,
        controller=controller,
        tracker=tracker,
        stats=stats,
    ))

    # -- WebSocket endpoint ----------------------------------------------------
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        Live push channel. New connections get the current clients and
        stats snapshots immediately, then every update as it happens.
        """
        await ws_manager.connect(websocket)
        try:
            await ws_manager.send_to(websocket, clients_message(tracker.sessions()))
            if stats.has_data:
                await ws_manager.send_to(websocket, stats_message(stats.snapshot))
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            ws_manager.disconnect(websocket)

    return app
