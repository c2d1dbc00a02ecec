from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from splitbill.config import Settings
from splitbill.extraction_service import ExtractionError, VisionClient, build_client, extract_bill
from splitbill.telemetry import NullReporter, Reporter

logger = logging.getLogger(__name__)

RECEIPT_FIELD = "receipt"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(
    settings: Settings | None = None,
    *,
    client: VisionClient | None = None,
    model_name: str = "auto",
    reporter: Reporter | None = None,
) -> FastAPI:
    active = settings or Settings()
    tracker: Reporter = reporter or NullReporter()
    app = FastAPI(title="Split Bill API", version=active.service_version)

    def _track(event: str, **params: Any) -> None:
        try:
            tracker.track(event, params)
        except Exception:  # noqa: BLE001
            logger.warning("Telemetry delivery failed for event %s", event, exc_info=True)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.get("/health")
    def health() -> dict[str, str]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": active.service_name,
            "version": active.service_version,
        }

    @app.post("/api/process-receipt")
    async def process_receipt(request: Request) -> JSONResponse:
        content_type = request.headers.get("content-type")
        if not content_type or "multipart/form-data" not in content_type:
            logger.error("Invalid Content-Type for receipt upload: %s", content_type)
            return _error(
                415,
                f"Server requires 'multipart/form-data' but received '{content_type}'.",
            )

        if client is None and not active.has_any_api_key:
            logger.error("No API key configured for provider %s", active.extraction_provider)
            return _error(500, "API key for the extraction model is not configured on the server.")

        form = await request.form()
        upload = form.get(RECEIPT_FIELD)
        if not isinstance(upload, UploadFile):
            return _error(400, "No receipt image provided.")
        image_bytes = await upload.read()
        if not image_bytes:
            return _error(400, "No receipt image provided.")
        if len(image_bytes) > active.max_upload_bytes:
            return _error(413, f"Receipt image too large. Max {active.max_upload_bytes} bytes.")

        mime_type = upload.content_type or ""
        _track("receipt_upload_start", file_size_kb=round(len(image_bytes) / 1024), file_type=mime_type)
        started = time.monotonic()
        try:
            if client is not None:
                active_client, active_model = client, model_name
            else:
                active_client, active_model = build_client(active)
            bill = await run_in_threadpool(
                extract_bill,
                image_bytes,
                mime_type,
                client=active_client,
                model_name=active_model,
                allowed_mime_types=active.allowed_mime_types,
            )
        except ExtractionError as exc:
            logger.error("Receipt extraction failed code=%s: %s", exc.code, exc)
            _track("receipt_processing_failed", error_message=str(exc), error_type=exc.code)
            return _error(exc.status_code, str(exc))

        elapsed_ms = int((time.monotonic() - started) * 1000)
        _track(
            "receipt_processed",
            item_count=len(bill.items),
            total_amount=bill.total,
            processing_time_ms=elapsed_ms,
            currency="IDR",
        )
        logger.info("Receipt processed items=%d in %dms", len(bill.items), elapsed_ms)
        return JSONResponse(bill.model_dump(mode="json"))

    return app
