"""
Legal Link Scanner API Server

FastAPI server that starts and stops live scanning sessions and doubles as
the link consumer: scanners POST their link batches to /api/links and always
get an acknowledgement back.

Usage:
    python -m uvicorn api_server:app --host 0.0.0.0 --port 8080
"""

import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import yaml
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, ValidationError

from browser_document import open_browser_document
from delivery import HttpConsumer, MemoryConsumer
from link_models import DeliveryAck, LinksMessage, TriggerResponse
from link_watcher import build_watcher
from page_document import ObservationUnavailableError
from profile_loader import ScanProfile, load_profile

logger = logging.getLogger(__name__)

# --- Configuration ---

CONSUMER_URL = os.environ.get("LINK_CONSUMER_URL", "")
DEFAULT_PROFILE = os.environ.get("SCAN_PROFILE", "")

# --- In-memory storage ---

scan_sessions: dict[str, dict] = {}
received_batches: list[dict] = []


async def _close_session(s: dict) -> None:
    """Stop a running session and release its page, watcher and consumer."""
    if s["status"] != "running":
        return
    watcher = s["watcher"]
    watcher.stop()
    try:
        await watcher.drain()
        await s["document"].close()
    finally:
        s["summary"] = _watcher_counters(watcher)
        s["links"] = _memory_links(s["consumer"])
        s["watcher"] = s["document"] = s["consumer"] = None
        s["status"] = "stopped"
        s["stopped_at"] = datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app):
    yield
    for s in list(scan_sessions.values()):
        try:
            await _close_session(s)
        except Exception as e:
            logger.warning(f"Could not close scan session {s['session_id']}: {e}")


app = FastAPI(
    title="Legal Link Scanner API",
    description="HTTP API for watching pages for privacy policy and terms links",
    version="1.0.0",
    lifespan=lifespan,
)


# --- Request/Response models ---


class ScanRequest(BaseModel):
    url: str
    headless: bool = True
    profile_path: Optional[str] = None
    consumer_url: Optional[str] = None


# --- Helpers ---


def _load_profile(path: Optional[str]) -> ScanProfile:
    path = path or DEFAULT_PROFILE
    return load_profile(path) if path else ScanProfile()


def _watcher_counters(watcher) -> dict:
    outcomes = watcher.delivery_outcomes
    return {
        "state": watcher.state.value,
        "scans": watcher.scan_count,
        "links_found": watcher.links_found,
        "deliveries_ok": sum(1 for o in outcomes if o.delivered),
        "deliveries_failed": sum(1 for o in outcomes if not o.delivered),
    }


def _memory_links(consumer) -> Optional[list[dict]]:
    if not isinstance(consumer, MemoryConsumer):
        return None
    return [link.model_dump(mode="json", by_alias=True, exclude_none=True) for link in consumer.links]


def _session_info(s: dict) -> dict:
    # Stopped sessions only keep the counters captured when they were closed
    counters = _watcher_counters(s["watcher"]) if s["watcher"] is not None else s["summary"]
    return {
        "session_id": s["session_id"],
        "url": s["url"],
        "status": s["status"],
        "started_at": s["started_at"],
        "stopped_at": s["stopped_at"],
        "consumer": s["consumer_url"] or "memory",
        **counters,
    }


# --- Endpoints ---


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/api/scan", response_model=TriggerResponse, response_model_exclude_none=True)
async def start_scan(req: ScanRequest):
    """Open the page and start watching it. Failures come back as status=failure."""
    try:
        profile = _load_profile(req.profile_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        return TriggerResponse(status="failure", error=f"Could not load profile: {e}")

    consumer_url = req.consumer_url or profile.consumer_url or CONSUMER_URL
    consumer = HttpConsumer(consumer_url) if consumer_url else MemoryConsumer()

    try:
        document = await open_browser_document(req.url, headless=req.headless)
    except Exception as e:
        return TriggerResponse(status="failure", error=f"Could not open page: {e}")

    watcher = build_watcher(document, consumer, profile)
    try:
        await watcher.start()
    except ObservationUnavailableError as e:
        await document.close()
        return TriggerResponse(status="failure", error=str(e))
    except Exception as e:
        watcher.stop()
        await document.close()
        return TriggerResponse(status="failure", error=f"Could not start watcher: {e}")

    session_id = str(uuid.uuid4())[:8]
    scan_sessions[session_id] = {
        "session_id": session_id,
        "url": req.url,
        "status": "running",
        "started_at": datetime.now(timezone.utc).isoformat(),
        "stopped_at": None,
        "consumer_url": consumer_url,
        "consumer": consumer,
        "document": document,
        "watcher": watcher,
        "summary": None,
        "links": None,
    }
    return TriggerResponse(status="success", session_id=session_id)


@app.get("/api/scan")
async def list_scans():
    """List all scan sessions."""
    return [_session_info(s) for s in scan_sessions.values()]


@app.get("/api/scan/{session_id}")
async def get_scan(session_id: str):
    """Get scan session status and counters."""
    if session_id not in scan_sessions:
        raise HTTPException(status_code=404, detail="Session not found")
    s = scan_sessions[session_id]
    info = _session_info(s)
    links = _memory_links(s["consumer"]) if s["status"] == "running" else s["links"]
    if links is not None:
        info["links"] = links
    return info


@app.delete("/api/scan/{session_id}")
async def stop_scan(session_id: str):
    """Stop watching, wait for pending deliveries and close the page."""
    if session_id not in scan_sessions:
        raise HTTPException(status_code=404, detail="Session not found")
    s = scan_sessions[session_id]
    await _close_session(s)
    return _session_info(s)


@app.post("/api/links", response_model=DeliveryAck, response_model_exclude_none=True)
async def receive_links(request: Request):
    """
    Consumer endpoint for link batches.

    Always answers with an acknowledgement, including for malformed bodies,
    so the sender never waits on an unresolved response.
    """
    try:
        payload = await request.json()
    except ValueError:
        return DeliveryAck(status="failure", error="Body is not valid JSON")

    try:
        message = LinksMessage.model_validate(payload)
    except ValidationError as e:
        return DeliveryAck(status="failure", error=f"Invalid links message: {e.error_count()} errors")

    received_batches.append({
        "received_at": datetime.now(timezone.utc).isoformat(),
        "links": message.to_payload()["links"],
    })
    return DeliveryAck(received=len(message.links))


@app.get("/api/links")
async def list_links(tail: int = 50):
    """Recently received link batches."""
    return {
        "batch_count": len(received_batches),
        "batches": received_batches[-tail:],
    }
