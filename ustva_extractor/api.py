from __future__ import annotations

import base64
import binascii
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import DEFAULT_CONFIG, load_config
from .models import FeedbackEvent, FeedbackRequest, IngestionRecord, IngestRequest, TextIngestRequest
from .ocr import LocalOcr
from .routing import Dispatch, ingest_document, route_text
from .store import NullStore, build_store

logger = logging.getLogger(__name__)

router = APIRouter()


def new_id() -> str:
    return uuid.uuid4().hex


def _store(request: Request) -> NullStore:
    return request.app.state.store


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ())[1:]) or "body"
        messages.append(f"{field}: {err.get('msg')}")
    return _error("; ".join(messages) or "invalid request")


def _decode_base64(value: str) -> Optional[bytes]:
    # data:application/pdf;base64,....
    if value.startswith("data:") and "," in value:
        value = value.split(",", 1)[1]
    try:
        # Zeilenumbrüche aus MIME-Base64 erlaubt, sonst nur das Alphabet
        return base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError):
        return None


def _persist(
    request: Request,
    result: Dispatch,
    request_id: str,
    file_name: str,
    mime: Optional[str],
    tenant_id: Optional[str],
    user_id: Optional[str],
) -> None:
    record = IngestionRecord(
        id=new_id(),
        created_at=datetime.now(timezone.utc),
        tenant_id=tenant_id,
        user_id=user_id,
        file_name=file_name,
        mime=mime,
        raw_text=result.raw_text,
        fields=result.normalized,
        route=result.route.value,
        last_request_id=request_id,
    )
    store = _store(request)
    if store.enabled and not store.save_receipt(record):
        logger.warning("Beleg nicht gespeichert", extra={"request_id": request_id})


def _response(result: Dispatch, request_id: str) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "requestId": request_id,
        "route": result.route.value,
        "normalized": result.normalized.model_dump() if result.normalized else None,
    }
    if result.hint:
        body["hint"] = result.hint
    return body


@router.get("/healthz")
def healthz(request: Request):
    store = _store(request)
    return {"ok": True, "db": store.enabled, "dbPing": store.ping()}


@router.get("/_debug/receipts/count")
def receipts_count(request: Request):
    store = _store(request)
    return {"count": store.count_receipts(), "db": store.enabled}


@router.post("/ingest")
def ingest(payload: IngestRequest, request: Request):
    data = _decode_base64(payload.data_base64)
    if data is None:
        return _error("dataBase64 is not valid base64")

    request_id = new_id()
    result = ingest_document(
        payload.file_name,
        payload.mime,
        data,
        recognizer=request.app.state.recognizer,
    )
    logger.info(
        "ingest %s → %s",
        payload.file_name,
        result.route.value,
        extra={"request_id": request_id, "route": result.route.value, "file_name": payload.file_name},
    )
    _persist(request, result, request_id, payload.file_name, payload.mime, payload.tenant_id, payload.user_id)
    return _response(result, request_id)


@router.post("/ingest/text")
def ingest_text(payload: TextIngestRequest, request: Request):
    request_id = new_id()
    result = route_text(payload.text)
    logger.info(
        "ingest/text %s → %s",
        payload.file_name,
        result.route.value,
        extra={"request_id": request_id, "route": result.route.value, "file_name": payload.file_name},
    )
    _persist(request, result, request_id, payload.file_name, "text/plain", payload.tenant_id, payload.user_id)
    return _response(result, request_id)


@router.post("/feedback")
def feedback(payload: FeedbackRequest, request: Request):
    event = FeedbackEvent(
        id=new_id(),
        created_at=datetime.now(timezone.utc),
        request_id=payload.request_id,
        file_name=payload.file_name,
        verdict=payload.verdict,
        original=payload.original,
        corrected=payload.corrected,
    )
    persisted = _store(request).save_feedback(event)
    return {"ok": True, "persisted": persisted}


@router.get("/receipts/recent")
def recent_receipts(request: Request, limit: Optional[int] = Query(None)):
    cfg = request.app.state.config
    if limit is None:
        limit = cfg["recent_default_limit"]
    limit = max(1, min(limit, cfg["recent_max_limit"]))
    records = _store(request).recent_receipts(limit)
    return [r.model_dump(mode="json") for r in records]


def create_app(config: Optional[Dict[str, Any]] = None, store: Optional[NullStore] = None) -> FastAPI:
    cfg = dict(DEFAULT_CONFIG, **config) if config is not None else load_config()

    app = FastAPI(title="UStVA Beleg-Extractor")
    app.state.config = cfg
    app.state.store = store if store is not None else build_store(cfg)
    app.state.recognizer = LocalOcr.from_config(cfg) if cfg.get("local_ocr") else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.get("cors_origins") or [],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.include_router(router)
    return app


app = create_app()
