"""
FastAPI backend for Phone Archive.

Thin HTTP surface over the ingestion pipeline and the read queries. Every
request opens its own store connection; nothing is shared between requests
except the process configuration.

Authentication:
    When PHONE_ARCHIVE_API_KEY is set, every route except /health requires a
    matching X-API-Key header. Without a key the API runs open (dev mode).

Error Mapping:
    ArchiveFormatError -> 400, missing rows -> 404, anything else -> 500 with
    a generic message.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from phone_archive import queries
from phone_archive.config import get_config
from phone_archive.database import ArchiveStore, open_store
from phone_archive.etl.extractors import ArchiveFormatError
from phone_archive.etl.loaders import (
    deactivate_subscription,
    discover_subscriptions,
    upsert_subscription,
)
from phone_archive.etl.normalizers import normalize_phone
from phone_archive.etl.pipeline import ingest_archive, ingest_forwarded_sms
from phone_archive.sync import sync_from_drive

logger = logging.getLogger(__name__)

XML_CONTENT_TYPES = ("application/xml", "text/xml")


def get_store() -> Iterator[ArchiveStore]:
    """Per-request store, schema created on first use."""
    store = open_store(get_config().db_path)
    try:
        yield store
    finally:
        store.close()


app = FastAPI(
    title="Phone Archive API",
    version="0.1.0",
    description="Ingest phone backup archives and query messages and calls by phone.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def require_api_key(request: Request, call_next):
    """Reject requests without the configured X-API-Key."""
    config = get_config()
    if request.url.path == "/health" or not config.auth_enabled:
        return await call_next(request)

    provided = request.headers.get("X-API-Key") or ""
    if not secrets.compare_digest(provided.encode(), config.api_key.encode()):
        return JSONResponse(status_code=401, content={"detail": "Unauthorized"})

    return await call_next(request)


@app.exception_handler(ArchiveFormatError)
async def archive_format_error_handler(request: Request, exc: ArchiveFormatError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": f"Invalid archive: {exc}"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _page(limit: int, offset: int, count: int) -> Dict[str, int]:
    return {"limit": queries.clamp_limit(limit), "offset": queries.clamp_offset(offset), "count": count}


# =============================================================================
# Health
# =============================================================================


@app.get("/health")
def health() -> Dict[str, Any]:
    """Liveness check; never requires the API key."""
    return {
        "status": "ok",
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        "archive_db_exists": get_config().validate(),
    }


# =============================================================================
# Ingestion
# =============================================================================


@app.post("/upload")
async def upload(request: Request, store: ArchiveStore = Depends(get_store)) -> Dict[str, Any]:
    """
    Ingest a messages or calls archive.

    Accepts a multipart form with a 'file' field, or the raw XML as an
    application/xml or text/xml body. The archive kind is sniffed.
    """
    content_type = request.headers.get("content-type", "")

    if "multipart/form-data" in content_type:
        form = await request.form()
        upload_file = form.get("file")
        if upload_file is None or isinstance(upload_file, str):
            raise HTTPException(status_code=400, detail="No file uploaded")
        content = await upload_file.read()
        source = upload_file.filename or "upload"
    elif any(xml_type in content_type for xml_type in XML_CONTENT_TYPES):
        content = await request.body()
        source = "upload"
    else:
        raise HTTPException(
            status_code=400,
            detail="Invalid content type. Use multipart/form-data or application/xml",
        )

    if not content:
        raise HTTPException(status_code=400, detail="Empty archive")

    config = get_config()
    result = await run_in_threadpool(
        ingest_archive,
        store,
        content,
        source,
        config.insert_batch_size,
        config.stats_batch_size,
    )
    return result.to_dict()


class ForwardedSms(BaseModel):
    """Payload pushed by an SMS forwarding app."""

    model_config = ConfigDict(populate_by_name=True)

    sender: Optional[str] = Field(default=None, alias="from")
    content: Optional[str] = None
    timestamp: Optional[Union[int, str]] = None
    sim_slot: Optional[Union[int, str]] = None


def _optional_int(value: Optional[Union[int, str]], field_name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{field_name} must be an integer")


@app.post("/webhook")
def webhook(payload: ForwardedSms, store: ArchiveStore = Depends(get_store)) -> Dict[str, Any]:
    """Store one incoming SMS pushed by a forwarding app."""
    if not payload.sender or not payload.content:
        raise HTTPException(status_code=400, detail="Missing required fields: from, content")

    try:
        inserted, message = ingest_forwarded_sms(
            store,
            payload.sender,
            payload.content,
            timestamp=_optional_int(payload.timestamp, "timestamp"),
            sim_slot=_optional_int(payload.sim_slot, "sim_slot"),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "inserted": inserted, "id": message.id, "phone": message.phone}


@app.post("/sync")
def sync(store: ArchiveStore = Depends(get_store)) -> Dict[str, Any]:
    """Run the remote archive sync now."""
    return sync_from_drive(store, get_config()).to_dict()


# =============================================================================
# Reads
# =============================================================================


@app.get("/phones")
def phones(
    limit: int = Query(default=queries.DEFAULT_PAGE_SIZE),
    offset: int = Query(default=0),
    store: ArchiveStore = Depends(get_store),
) -> Dict[str, Any]:
    """Phones ordered by last activity."""
    rows = queries.get_phones(store, limit, offset)
    return {"success": True, "data": rows, "pagination": _page(limit, offset, len(rows))}


@app.get("/phones/{phone}")
def phone_detail(phone: str, store: ArchiveStore = Depends(get_store)) -> Dict[str, Any]:
    """Aggregate row of one phone; the phone is normalized before lookup."""
    row = queries.get_phone(store, normalize_phone(phone).normalized)
    if row is None:
        raise HTTPException(status_code=404, detail="Phone not found")
    return {"success": True, "data": row}


@app.get("/messages")
def messages(
    phone: Optional[str] = None,
    limit: int = Query(default=queries.DEFAULT_PAGE_SIZE),
    offset: int = Query(default=0),
    subscription: Optional[str] = None,
    store: ArchiveStore = Depends(get_store),
) -> Dict[str, Any]:
    """Messages with one phone; the phone is normalized before lookup."""
    if not phone:
        raise HTTPException(status_code=400, detail="phone query parameter is required")

    normalized = normalize_phone(phone).normalized
    rows = queries.get_messages_by_phone(store, normalized, limit, offset, subscription)
    return {
        "success": True,
        "phone": normalized,
        "subscription_id": subscription,
        "data": rows,
        "pagination": _page(limit, offset, len(rows)),
    }


@app.get("/messages/{message_id}")
def message_detail(message_id: str, store: ArchiveStore = Depends(get_store)) -> Dict[str, Any]:
    row = queries.get_message_by_id(store, message_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return {"success": True, "data": row}


@app.get("/calls")
def calls(
    phone: Optional[str] = None,
    limit: int = Query(default=queries.DEFAULT_PAGE_SIZE),
    offset: int = Query(default=0),
    include: Optional[str] = None,
    subscription: Optional[str] = None,
    store: ArchiveStore = Depends(get_store),
) -> Dict[str, Any]:
    """
    Calls, optionally for one phone.

    With a phone, include=messages returns the combined history and
    subscription filters by device line.
    """
    if not phone:
        rows = queries.get_calls(store, limit, offset)
        return {"success": True, "data": rows, "pagination": _page(limit, offset, len(rows))}

    normalized = normalize_phone(phone).normalized

    if include == "messages":
        history = queries.get_phone_history(store, normalized, subscription, limit, offset)
        counts = history["counts"]
        return {
            "success": True,
            "phone": normalized,
            "subscription_id": subscription,
            "data": {"messages": history["messages"], "calls": history["calls"]},
            "pagination": {
                "limit": queries.clamp_limit(limit),
                "offset": queries.clamp_offset(offset),
                "messageCount": counts["messages"],
                "callCount": counts["calls"],
                "totalCount": counts["total"],
            },
        }

    rows = queries.get_calls_by_phone(store, normalized, limit, offset, subscription)
    return {
        "success": True,
        "phone": normalized,
        "subscription_id": subscription,
        "data": rows,
        "pagination": _page(limit, offset, len(rows)),
    }


@app.get("/calls/{call_id}")
def call_detail(call_id: str, store: ArchiveStore = Depends(get_store)) -> Dict[str, Any]:
    row = queries.get_call_by_id(store, call_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Call not found")
    return {"success": True, "data": row}


# =============================================================================
# Subscriptions
# =============================================================================


class SubscriptionUpdate(BaseModel):
    """Body of PUT /subscriptions/{id}."""

    label: Optional[str] = None
    phone_number: Optional[str] = None
    is_active: bool = True


@app.get("/subscriptions")
def list_subscriptions(
    active: bool = Query(default=True),
    store: ArchiveStore = Depends(get_store),
) -> Dict[str, Any]:
    """Registered device lines; active=false includes deactivated ones."""
    rows = queries.get_subscriptions(store, active_only=active)
    return {"success": True, "data": rows, "count": len(rows)}


@app.post("/subscriptions/discover")
def discover(store: ArchiveStore = Depends(get_store)) -> Dict[str, Any]:
    """Register every subscription id present in the data."""
    discovered = discover_subscriptions(store)
    return {
        "success": True,
        "discovered": discovered,
        "count": len(discovered),
        "message": "Subscriptions auto-discovered and registered",
    }


@app.get("/subscriptions/{subscription_id}")
def subscription_detail(
    subscription_id: str, store: ArchiveStore = Depends(get_store)
) -> Dict[str, Any]:
    row = queries.get_subscription(store, subscription_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return {"success": True, "data": row}


@app.put("/subscriptions/{subscription_id}")
def put_subscription(
    subscription_id: str,
    body: SubscriptionUpdate,
    store: ArchiveStore = Depends(get_store),
) -> Dict[str, Any]:
    """Create or update a subscription."""
    if not body.label:
        raise HTTPException(status_code=400, detail="label is required")

    updated = upsert_subscription(
        store,
        subscription_id,
        body.label,
        phone_number=body.phone_number,
        is_active=body.is_active,
    )
    return {"success": True, "updated": updated, "subscription_id": subscription_id}


@app.delete("/subscriptions/{subscription_id}")
def delete_subscription(
    subscription_id: str, store: ArchiveStore = Depends(get_store)
) -> Dict[str, Any]:
    """Soft delete: the subscription is deactivated, never removed."""
    if not deactivate_subscription(store, subscription_id):
        raise HTTPException(status_code=404, detail="Subscription not found")
    return {"success": True, "message": "Subscription deactivated"}
