"""FastAPI application exposing Telegram-backed file storage"""

import time
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from tgdrive import __version__
from tgdrive.config import settings
from tgdrive.context import AppContext, create_context
from tgdrive.exceptions import ExpiredError, KVStoreError, StorageError
from tgdrive.models.file_record import utc_now
from tgdrive.utils.logger import get_logger
from tgdrive.utils.mime_types import create_content_disposition, get_mime_type

logger = get_logger(__name__)


class ShortLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_id: Optional[str] = Field(default=None, alias="fileId")
    expires_in: int = Field(default=3600, alias="expiresIn", gt=0)


class DeleteQueueRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_id: Optional[str] = Field(default=None, alias="fileId")


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": message})


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the FastAPI application

    Args:
        context: Pre-built services (built from settings on startup when omitted)
    """
    app = FastAPI(
        title="tgdrive",
        description="File storage on top of Telegram",
        version=__version__,
    )
    app.state.context = context
    app.state.started_at = None

    @app.on_event("startup")
    async def startup_event():
        """Initialize services on startup"""
        app.state.started_at = time.time()
        logger.debug(f"Starting tgdrive v{__version__}")
        if app.state.context is None:
            app.state.context = create_context(settings)
        await app.state.context.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        logger.debug("Shutting down tgdrive")
        if app.state.context is not None:
            try:
                await app.state.context.stop()
            except Exception as e:
                logger.error(f"Error during storage services shutdown: {e}")

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, error: StorageError):
        status_code = 410 if isinstance(error, ExpiredError) else error.hint.status_code
        payload = error.to_dict()
        diagnostics = getattr(error, "diagnostics", None)
        if diagnostics:
            payload["diagnostics"] = diagnostics
        return JSONResponse(status_code=status_code, content=payload)

    @app.exception_handler(KVStoreError)
    async def kv_error_handler(request: Request, error: KVStoreError):
        logger.error(f"KV index failure on {request.url.path}: {error}")
        return JSONResponse(
            status_code=503,
            content={"success": False, "error": "File index is temporarily unavailable", "retryable": True},
        )

    @app.get("/api/files")
    async def list_files(forceRefresh: bool = False, ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        files = await ctx.storage.list_files(force_refresh=forceRefresh)
        return {"success": True, "files": [f.to_index() for f in files]}

    @app.post("/api/files")
    async def upload_file(file: UploadFile = File(...), ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        data = await file.read()
        if not file.filename:
            return bad_request("No file name provided")
        result = await ctx.storage.upload_file(data, file.filename)
        return {"success": True, **result}

    @app.delete("/api/files/{message_id}")
    async def delete_file(message_id: str, ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        await ctx.storage.delete_file(message_id)
        return {"success": True, "messageId": message_id}

    @app.get("/api/download")
    async def download(
        fileId: Optional[str] = None,
        s: Optional[str] = None,
        ctx: AppContext = Depends(get_context),
    ):
        file_id = fileId
        if s:
            file_id = await ctx.short_links.resolve(s)
        if not file_id:
            return bad_request("No file id provided")

        record = await ctx.storage.get_file_info(file_id)
        content = await ctx.storage.download_bytes(file_id)
        file_name = record.file_name or "download"

        return Response(
            content=content,
            media_type=get_mime_type(file_name),
            headers={
                "Content-Disposition": create_content_disposition(file_name),
                "Cache-Control": "public, max-age=3600",
            },
        )

    @app.post("/api/short-link")
    async def create_short_link(body: ShortLinkRequest, ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        if not body.file_id:
            return bad_request("No file id provided")
        result = await ctx.short_links.issue(body.file_id, body.expires_in)
        return {"success": True, **result.model_dump(by_alias=True, mode="json")}

    @app.post("/api/cleanup-short-links")
    async def cleanup_short_links(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        result = await ctx.short_links.cleanup_legacy_links()
        return {"success": True, **result, "environment": ctx.settings.environment}

    @app.post("/api/admin/migrate-short-links")
    async def migrate_short_links(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        result = await ctx.short_links.migrate_legacy_links()
        return {"success": True, **result}

    @app.post("/api/admin/sync-files")
    async def sync_files(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        files = await ctx.storage.list_files(force_refresh=True)
        stats = await ctx.storage.get_storage_stats(files)
        return {
            "success": True,
            "message": f"Synced {len(files)} files",
            "syncedCount": len(files),
            "stats": stats,
        }

    @app.get("/api/admin/stats")
    async def admin_stats(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        stats = await ctx.storage.get_storage_stats()
        return {
            "success": True,
            "stats": stats,
            "deleteQueue": ctx.delete_queue.get_queue_status(),
            "network": ctx.monitor.get_status().model_dump(by_alias=True, mode="json"),
        }

    @app.get("/api/delete-queue")
    async def delete_queue_status(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        return {"success": True, **ctx.delete_queue.get_queue_status()}

    @app.post("/api/delete-queue")
    async def enqueue_delete(body: DeleteQueueRequest, ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        if not body.file_id:
            return bad_request("No file id provided")
        record = await ctx.storage.get_file_info(body.file_id)
        task_id = await ctx.delete_queue.add_task(record)
        return {"success": True, "taskId": task_id}

    @app.post("/api/delete-queue/retry")
    async def retry_deletes(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        reset = await ctx.delete_queue.retry_failed_tasks()
        return {"success": True, "resetCount": reset}

    @app.delete("/api/delete-queue")
    async def clear_deletes(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        ctx.delete_queue.clear_queue()
        return {"success": True}

    @app.api_route("/api/health", methods=["GET", "HEAD"])
    async def health_check(ctx: AppContext = Depends(get_context)):
        """Health check endpoint with minimal logging"""
        started_at = app.state.started_at
        checks: Dict[str, Any] = {
            "status": "ok",
            "timestamp": utc_now().isoformat(),
            "uptime": (time.time() - started_at) if started_at else 0,
            "version": __version__,
            "kvBackend": ctx.kv.backend,
            "database": await ctx.database.health_check(),
        }

        if not checks["database"]:
            checks["status"] = "error"
            logger.warning("Health check failed", checks=checks)
            return JSONResponse(status_code=503, content=checks)

        logger.debug("Health check passed")
        return checks

    @app.get("/api/network-diagnostics")
    async def network_diagnostics(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        diagnostics = await ctx.storage.diagnose_network_connection()
        status = await ctx.monitor.force_check()
        return {
            "success": True,
            "diagnostics": diagnostics,
            "network": status.model_dump(by_alias=True, mode="json"),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
