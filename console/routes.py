"""
Mosquitto Manager - REST API Routes
=====================================
HTTP endpoints of the management console. Every handler is a thin call into
the brokerctl core.

Route groups:
    /api/state           - Read / replace the configuration document
    /api/apply           - Run the apply reconciliation (regenerate + restart)
    /api/reload          - Send the broker a config reload signal
    /api/clients         - Connected clients (session tracker snapshot)
    /api/stats           - Broker stats snapshot
    /api/logs            - Last lines of the broker log
    /api/certs/generate  - Generate a CA/server/client certificate bundle
    /api/certs/upload    - Store an uploaded certificate or key in the cert dir
    /api/certs/download  - Download a file from the cert dir
    /api/backup/*        - Export / import the document as JSON
    /api/import/conf     - Take over an existing mosquitto.conf

Writes never apply anything by themselves; the user reviews and calls
/api/apply.

Error mapping:
    DocumentValidationError -> 400
    NotRunningError         -> 409
    other BrokerCtlError    -> 500
"""

import json
import os
from collections import deque
from typing import Any

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse, JSONResponse

from brokerctl.control import ProcessController
from brokerctl.errors import BrokerCtlError, DocumentValidationError, NotRunningError
from brokerctl.importer import merge_imported, parse_mosquitto_conf
from brokerctl.pipeline import Reconciler
from brokerctl.stats import StatsAggregator
from brokerctl.store import DocumentStore
from brokerctl.tracker import SessionTracker


MAX_LOG_LINES = 2000


def _http_error(e: BrokerCtlError) -> HTTPException:
    if isinstance(e, DocumentValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, NotRunningError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def read_last_lines(path: str, count: int) -> list[str]:
    """Return up to ``count`` trailing lines of a text file."""
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]


# =============================================================================
# Router Factory
# =============================================================================

def create_router(
    store: DocumentStore,
    reconciler: Reconciler,
    controller: ProcessController,
    tracker: SessionTracker,
    stats: StatsAggregator,
) -> APIRouter:
    """
    Create the API router.

    Args:
        store:      Configuration document store.
        reconciler: Startup/apply pipeline.
        controller: Broker process controller.
        tracker:    Live session tracker.
        stats:      Broker stats aggregator.

    Returns:
        Configured APIRouter with all endpoints registered.
    """
    router = APIRouter(prefix="/api")

    # =========================================================================
    # DOCUMENT
    # =========================================================================

    @router.get("/state")
    async def get_state():
        try:
            return store.load().to_dict()
        except BrokerCtlError as e:
            raise _http_error(e)

    @router.put("/state")
    async def replace_state(body: dict[str, Any]):
        """Full-document replace. Nothing is applied until /api/apply."""
        try:
            doc = store.replace(body)
        except BrokerCtlError as e:
            raise _http_error(e)
        return {"success": True, "state": doc.to_dict()}

    # =========================================================================
    # BROKER CONTROL
    # =========================================================================

    @router.post("/apply")
    async def apply_config():
        """
        Regenerate all artifacts from the document and restart the broker.
        """
        try:
            result = await reconciler.run_apply_reconciliation()
        except BrokerCtlError as e:
            raise _http_error(e)
        return {
            "success": True,
            "message": "Configuration applied. Mosquitto is restarting...",
            "result": result.to_dict(),
        }

    @router.post("/reload")
    async def reload_broker():
        """SIGHUP the broker. Only for changes that add/remove no listener."""
        try:
            sent = controller.reload()
        except BrokerCtlError as e:
            raise _http_error(e)
        if not sent:
            return {"success": True, "message": "Mosquitto is not running; nothing to reload."}
        return {"success": True, "message": "Mosquitto reloaded."}

    # =========================================================================
    # LIVE VIEW
    # =========================================================================

    @router.get("/clients")
    async def get_clients():
        return [session.to_dict() for session in tracker.sessions()]

    @router.get("/stats")
    async def get_stats():
        return stats.snapshot.to_dict()

    @router.get("/logs")
    async def get_logs(lines: int = Query(MAX_LOG_LINES, ge=1, le=MAX_LOG_LINES)):
        try:
            return {"logs": read_last_lines(tracker.log_file, lines)}
        except OSError as e:
            raise HTTPException(status_code=500, detail=str(e))

    # =========================================================================
    # CERTIFICATES
    # =========================================================================

    @router.post("/certs/generate")
    async def generate_certs():
        try:
            bundle = await reconciler.generate_certificate_bundle()
        except BrokerCtlError as e:
            raise _http_error(e)
        return {"success": True, "paths": bundle.to_dict()}

    @router.post("/certs/upload")
    async def upload_cert(file: UploadFile = File(...)):
        """
        Save an uploaded CA, certificate or key under the cert directory.
        Only the base name of the upload is kept.

        Returns:
            The stored path, to be put into global_settings.certificates.
        """
        cert_dir = reconciler.paths.cert_dir
        name = os.path.basename(file.filename or "")
        dest = os.path.join(cert_dir, name)
        if name in ("", ".", "..") or not reconciler.paths.is_cert(dest):
            raise HTTPException(status_code=400, detail="Invalid file name")

        content = await file.read()
        try:
            os.makedirs(cert_dir, exist_ok=True)
            with open(dest, "wb") as f:
                f.write(content)
        except OSError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"success": True, "path": dest}

    @router.get("/certs/download")
    async def download_cert(path: str = Query("")):
        """Serve a generated or uploaded file. Nothing outside the cert dir."""
        if not path:
            raise HTTPException(status_code=400, detail="Missing path parameter")
        if not reconciler.paths.is_cert(path):
            raise HTTPException(status_code=403, detail="Access denied")
        if not os.path.isfile(path):
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(path, filename=os.path.basename(path))

    # =========================================================================
    # BACKUP & IMPORT
    # =========================================================================

    @router.get("/backup/export")
    async def export_backup():
        try:
            doc = store.load()
        except BrokerCtlError as e:
            raise _http_error(e)
        return JSONResponse(
            content=doc.to_dict(),
            headers={
                "Content-Disposition": 'attachment; filename="mosquitto-manager-config.json"',
            },
        )

    @router.post("/backup/import")
    async def import_backup(file: UploadFile = File(...)):
        """
        Replace the document with an uploaded backup. Not applied.
        """
        content = await file.read()
        try:
            data = json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise HTTPException(status_code=400, detail="Invalid JSON file")

        try:
            store.replace(data)
        except BrokerCtlError as e:
            raise _http_error(e)
        return {
            "success": True,
            "message": 'Configuration imported successfully. Please review and click "Apply Config".',
        }

    @router.post("/import/conf")
    async def import_conf(file: UploadFile = File(...)):
        """
        Convert an uploaded mosquitto.conf into listeners and global settings.
        Users, access profiles and administrators are kept. Not applied.
        """
        content = await file.read()
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError:
            raise HTTPException(status_code=400, detail="mosquitto.conf must be UTF-8 text")

        imported = parse_mosquitto_conf(text, internal_port=reconciler.paths.internal_port)
        try:
            doc = merge_imported(store.load(), imported)
            store.save(doc)
        except BrokerCtlError as e:
            raise _http_error(e)
        return {
            "success": True,
            "message": f"Imported {len(imported.listeners)} listener(s). Review and apply.",
            "state": doc.to_dict(),
        }

    return router
