"""
FastAPI Backend - Roster API v1.

One RosterSession per process, started in the lifespan. Every mutating
endpoint goes through the session, so local state only changes when the
store pushes the written value back.

Endpoints:
  GET    /health                     - liveness + backend mode
  GET    /state                      - units, personnelByUnit, currentUnitId
  GET    /units                      - display-ordered units
  POST   /units                      - create
  PATCH  /units/{id}                 - rename / reparent / reorder
  DELETE /units/{id}?reassign_to=    - delete, moving personnel
  GET    /units/{id}/personnel       - subtree view, filtered, rank sorted
  POST   /personnel                  - add
  PATCH  /personnel/{id}             - partial update
  POST   /personnel/{id}/reassign    - move to another unit
  DELETE /personnel/{id}             - remove
  PUT    /current-unit               - select unit
  GET    /export  POST /import       - JSON snapshot
  GET    /passkey POST /passkey  POST /passkey/verify
  GET    /metrics
  WS     /ws/roster                  - state pushed after every change
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from dotenv import load_dotenv

env_path = os.path.join(os.path.dirname(__file__), ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from roster_kernel.domain_types import UNASSIGNED_UNIT_ID
from roster_kernel.filters import FilterCriteria
from roster_kernel.invariants import (
    CircularReferenceError,
    DuplicateIdError,
    DuplicateNameError,
    ProtectedUnitError,
    UnitTreeError,
)
from roster_kernel.roster_index import InvalidPersonnelError
from roster_kernel.snapshot import ImportValidationError
from roster_runtime.adapter import StoreAdapter
from roster_runtime.config import StoreConfig
from roster_runtime.credentials import IncorrectPasskeyError, PasskeyError
from roster_runtime.mock_store import MockStore
from roster_runtime.session import RosterSession
from roster_runtime.store import WriteError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")

# ---------------------------------------------------------------------------
# Realtime push channel
# ---------------------------------------------------------------------------

_connections: Set[WebSocket] = set()
_connections_lock = asyncio.Lock()
_pending_broadcasts: Set[asyncio.Task] = set()


async def broadcast_state(message: dict) -> None:
    """Send ``message`` to every /ws/roster connection; drop dead ones."""
    async with _connections_lock:
        connections = _connections.copy()
    if not connections:
        return

    # Serialize once
    message_json = json.dumps(message)

    failed = []
    for websocket in connections:
        try:
            await websocket.send_text(message_json)
        except Exception as exc:
            logger.debug("WebSocket send failed: %s", exc)
            failed.append(websocket)

    if failed:
        async with _connections_lock:
            for websocket in failed:
                _connections.discard(websocket)


def _on_roster_change(session: RosterSession) -> None:
    message = {"type": "roster_updated", "state": session.state.to_dict()}
    task = asyncio.get_running_loop().create_task(broadcast_state(message))
    _pending_broadcasts.add(task)
    task.add_done_callback(_pending_broadcasts.discard)

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def _build_session() -> RosterSession:
    config = StoreConfig.from_env()
    mock = MockStore(config.local_db_path)
    return RosterSession(StoreAdapter(config, mock))


@asynccontextmanager
async def lifespan(app: FastAPI):
    session = _build_session()
    await session.initialize_defaults()
    await session.start()
    remove_observer = session.on_change(_on_roster_change)
    app.state.session = session
    logger.info("Roster session started (mode=%s)", session.mode)
    try:
        yield
    finally:
        remove_observer()
        await session.stop()
        await session.adapter.close()
        logger.info("Roster session stopped")


app = FastAPI(
    title="Roster API",
    version="1.0.0",
    description="Unit hierarchy and personnel roster over a synced key-value store",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        FRONTEND_URL,
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_session(request: Request) -> RosterSession:
    return request.app.state.session

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class UnitCreateRequest(BaseModel):
    name: str
    parent_id: Optional[str] = None
    sort_order: Optional[int] = None


class UnitUpdateRequest(BaseModel):
    name: Optional[str] = None
    parent_id: Optional[str] = None
    sort_order: Optional[int] = None


class PersonnelCreateRequest(BaseModel):
    unit_id: str
    personnel: Dict[str, Any]


class ReassignRequest(BaseModel):
    target_unit_id: str


class CurrentUnitRequest(BaseModel):
    unit_id: str


class PasskeySetRequest(BaseModel):
    passkey: str
    confirm: str
    current: Optional[str] = None


class PasskeyVerifyRequest(BaseModel):
    passkey: str

# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_CONFLICT_ERRORS = (
    DuplicateNameError,
    DuplicateIdError,
    CircularReferenceError,
    ProtectedUnitError,
)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, _CONFLICT_ERRORS):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (UnitTreeError, InvalidPersonnelError)):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, ImportValidationError):
        return HTTPException(status_code=400, detail=exc.reason)
    if isinstance(exc, IncorrectPasskeyError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, PasskeyError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, WriteError):
        logger.error("write rejected by backend: %s", exc)
        return HTTPException(status_code=502, detail=str(exc))
    raise exc


def _unit_view(session: RosterSession) -> List[dict]:
    tree = session.tree
    counts = session.index.unit_counts()
    return [
        {
            **unit.to_dict(),
            "depth": tree.depth(unit.id),
            "path": tree.path(unit.id),
            "personnelCount": counts.get(unit.id, 0),
        }
        for unit in tree.ordered_list()
    ]

# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
def health(session: RosterSession = Depends(get_session)):
    return {"status": "ok", "version": "1.0.0", "mode": session.mode}


@app.get("/state")
def get_state(session: RosterSession = Depends(get_session)):
    return session.state.to_dict()


@app.get("/units")
def list_units(session: RosterSession = Depends(get_session)):
    return _unit_view(session)


@app.post("/units", status_code=201)
async def create_unit(req: UnitCreateRequest, session: RosterSession = Depends(get_session)):
    try:
        unit = await session.create_unit(req.name, req.parent_id, req.sort_order)
    except (UnitTreeError, WriteError) as exc:
        raise _http_error(exc)
    return unit.to_dict()


@app.patch("/units/{unit_id}")
async def update_unit(
    unit_id: str,
    req: UnitUpdateRequest,
    session: RosterSession = Depends(get_session),
):
    """Only fields present in the body change; ``parent_id: null`` makes it top-level."""
    changes = {k: getattr(req, k) for k in req.model_fields_set}
    try:
        unit = await session.update_unit(unit_id, **changes)
    except (UnitTreeError, WriteError) as exc:
        raise _http_error(exc)
    if unit is None:
        raise HTTPException(status_code=404, detail=f"Unit {unit_id!r} not found")
    return unit.to_dict()


@app.delete("/units/{unit_id}")
async def delete_unit(
    unit_id: str,
    reassign_to: str = Query(UNASSIGNED_UNIT_ID),
    session: RosterSession = Depends(get_session),
):
    try:
        removed = await session.delete_unit(unit_id, reassign_to=reassign_to)
    except (UnitTreeError, WriteError) as exc:
        raise _http_error(exc)
    if removed is None:
        raise HTTPException(status_code=404, detail=f"Unit {unit_id!r} not found")
    return {"status": "deleted", "unit": removed.to_dict(), "reassigned_to": reassign_to}


@app.get("/units/{unit_id}/personnel")
def unit_personnel(
    unit_id: str,
    q: str = "",
    status: List[str] = Query(default=[]),
    rank_category: List[str] = Query(default=[]),
    specialty: List[str] = Query(default=[]),
    character_type: List[str] = Query(default=[]),
    assigned_unit: List[str] = Query(default=[]),
    secondment: List[str] = Query(default=[]),
    show_inactive: bool = False,
    rank_sort: bool = True,
    session: RosterSession = Depends(get_session),
):
    if session.tree.get(unit_id) is None:
        raise HTTPException(status_code=404, detail=f"Unit {unit_id!r} not found")
    criteria = FilterCriteria(
        query=q,
        statuses=set(status),
        rank_categories=set(rank_category),
        specialties=set(specialty),
        character_types=set(character_type),
        assigned_units=set(assigned_unit),
        secondments=set(secondment),
        show_inactive=show_inactive,
    )
    people = session.roster_view(unit_id, criteria, rank_sort=rank_sort)
    return [p.to_dict() for p in people]


@app.post("/personnel", status_code=201)
async def add_personnel(req: PersonnelCreateRequest, session: RosterSession = Depends(get_session)):
    try:
        person = await session.add_personnel(req.unit_id, req.personnel)
    except (InvalidPersonnelError, WriteError) as exc:
        raise _http_error(exc)
    if person is None:
        raise HTTPException(status_code=404, detail=f"Unit {req.unit_id!r} not found")
    return person.to_dict()


@app.patch("/personnel/{personnel_id}")
async def update_personnel(
    personnel_id: str,
    patch: Dict[str, Any],
    session: RosterSession = Depends(get_session),
):
    try:
        person = await session.update_personnel(personnel_id, patch)
    except (InvalidPersonnelError, WriteError) as exc:
        raise _http_error(exc)
    if person is None:
        raise HTTPException(status_code=404, detail=f"Personnel {personnel_id!r} not found")
    return person.to_dict()


@app.post("/personnel/{personnel_id}/reassign")
async def reassign_personnel(
    personnel_id: str,
    req: ReassignRequest,
    session: RosterSession = Depends(get_session),
):
    try:
        moved = await session.reassign_personnel(personnel_id, req.target_unit_id)
    except WriteError as exc:
        raise _http_error(exc)
    if not moved:
        raise HTTPException(status_code=404, detail="Personnel or target unit not found")
    return {"status": "reassigned", "unit_id": req.target_unit_id}


@app.delete("/personnel/{personnel_id}")
async def delete_personnel(personnel_id: str, session: RosterSession = Depends(get_session)):
    try:
        removed = await session.delete_personnel(personnel_id)
    except WriteError as exc:
        raise _http_error(exc)
    if removed is None:
        raise HTTPException(status_code=404, detail=f"Personnel {personnel_id!r} not found")
    return {"status": "deleted", "id": personnel_id}


@app.put("/current-unit")
async def set_current_unit(req: CurrentUnitRequest, session: RosterSession = Depends(get_session)):
    try:
        selected = await session.set_current_unit(req.unit_id)
    except WriteError as exc:
        raise _http_error(exc)
    if not selected:
        raise HTTPException(status_code=404, detail=f"Unit {req.unit_id!r} not found")
    return {"currentUnitId": req.unit_id}


@app.get("/export")
def export_roster(session: RosterSession = Depends(get_session)):
    stamp = datetime.now(timezone.utc).date().isoformat()
    return Response(
        content=session.export_json(),
        media_type="application/json",
        headers={
            "Content-Disposition": f'attachment; filename="dreadmarch-personnel-{stamp}.json"',
        },
    )


@app.post("/import")
async def import_roster(request: Request, session: RosterSession = Depends(get_session)):
    """Body is an export document. Replaces units and personnel wholesale."""
    body = await request.body()
    try:
        imported = await session.import_json(body.decode("utf-8", errors="replace"))
    except (ImportValidationError, WriteError) as exc:
        raise _http_error(exc)
    return {
        "status": "imported",
        "units": len(imported.units),
        "personnel": sum(len(g) for g in imported.personnel_by_unit.values()),
    }


@app.get("/passkey")
async def passkey_status(session: RosterSession = Depends(get_session)):
    return {"configured": await session.credentials.has_passkey()}


@app.post("/passkey")
async def set_passkey(req: PasskeySetRequest, session: RosterSession = Depends(get_session)):
    try:
        await session.credentials.set_passkey(req.passkey, req.confirm, current=req.current)
    except (PasskeyError, WriteError) as exc:
        raise _http_error(exc)
    return {"status": "ok"}


@app.post("/passkey/verify")
async def verify_passkey(req: PasskeyVerifyRequest, session: RosterSession = Depends(get_session)):
    if not await session.credentials.verify_passkey(req.passkey):
        raise HTTPException(status_code=401, detail="Incorrect passkey")
    return {"status": "ok"}


@app.get("/metrics")
def metrics(session: RosterSession = Depends(get_session)):
    return asdict(session.get_metrics())


@app.websocket("/ws/roster")
async def roster_websocket(websocket: WebSocket):
    """Pushes the full state on connect and after every applied change."""
    await websocket.accept()
    async with _connections_lock:
        _connections.add(websocket)
    session: RosterSession = websocket.app.state.session
    try:
        await websocket.send_json({"type": "roster_state", "state": session.state.to_dict()})
        while True:
            # Client messages are ignored; receiving detects disconnects.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        async with _connections_lock:
            _connections.discard(websocket)
