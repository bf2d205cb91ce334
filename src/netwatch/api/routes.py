"""REST API endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from netwatch.config import settings
from netwatch.database import get_session
from netwatch.flags.store import UnknownSettingError, list_flags, set_flag
from netwatch.registry.audit import recent_downtime, recent_logs
from netwatch.registry.models import Device, DeviceCategory, LogEntry
from netwatch.registry.store import DeviceStore, create_device, delete_device
from netwatch.reports.reconciler import InvalidReportBatch, ReconciliationError, ReportReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

MAX_LOG_LIMIT = 500


def get_store(request: Request) -> DeviceStore:
    return request.app.state.store


def get_reconciler(request: Request) -> ReportReconciler:
    return request.app.state.reconciler


# Request models
class CreateDeviceRequest(BaseModel):
    name: str
    address: str
    category: DeviceCategory
    location: str | None = None


class UpdateSettingRequest(BaseModel):
    key: str
    value: bool


# --- Devices ---


@router.get("/devices")
def list_devices(store: DeviceStore = Depends(get_store)) -> list[Device]:
    return store.get_all()


@router.get("/devices/{device_id}")
def device_detail(device_id: int, store: DeviceStore = Depends(get_store)) -> Device:
    device = store.get(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


@router.post("/devices", status_code=201)
def create_new_device(
    request: CreateDeviceRequest,
    session: Session = Depends(get_session),
) -> Device:
    return create_device(
        session,
        name=request.name,
        address=request.address.strip(),
        category=request.category,
        location=request.location,
    )


@router.delete("/devices/{device_id}")
def delete_existing_device(
    device_id: int,
    session: Session = Depends(get_session),
) -> dict[str, bool]:
    if not delete_device(session, device_id):
        raise HTTPException(status_code=404, detail="Device not found")
    return {"success": True}


# --- Audit log ---


@router.get("/logs/{device_id}")
def device_history(
    device_id: int,
    limit: int | None = Query(default=None, ge=1, le=MAX_LOG_LIMIT),
    session: Session = Depends(get_session),
) -> list[LogEntry]:
    return recent_logs(session, device_id, limit=limit or settings.log_limit)


@router.get("/logs-global/downtime")
def global_downtime(
    limit: int | None = Query(default=None, ge=1, le=MAX_LOG_LIMIT),
    session: Session = Depends(get_session),
) -> list[dict[str, Any]]:
    rows = recent_downtime(session, limit=limit or settings.downtime_feed_limit)
    return [
        {**entry.model_dump(), "device_name": name, "device_address": address}
        for entry, name, address in rows
    ]


# --- Settings ---


@router.get("/settings")
def get_settings(session: Session = Depends(get_session)) -> dict[str, bool]:
    return list_flags(session)


@router.post("/settings")
def update_setting(
    request: UpdateSettingRequest,
    session: Session = Depends(get_session),
) -> dict[str, bool]:
    try:
        set_flag(session, request.key, request.value)
    except UnknownSettingError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True}


# --- Agent ingestion ---


@router.post("/agent/report")
async def agent_report(
    request: Request,
    reconciler: ReportReconciler = Depends(get_reconciler),
) -> Any:
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload: body is not JSON")

    try:
        # Store writes block on SQLite and the write lock; keep them off the loop.
        result = await run_in_threadpool(reconciler.ingest, payload)
    except InvalidReportBatch as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReconciliationError as e:
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "details": str(e)},
        )
    except Exception as e:
        logger.exception("Error in /api/agent/report")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "details": str(e)},
        )

    return {
        "success": True,
        "applied": result.applied,
        "skipped": result.skipped,
        "unmatched": result.unmatched,
    }
