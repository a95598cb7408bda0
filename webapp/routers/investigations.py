"""Investigation API router for chaintrace.

Endpoints:
- POST   /api/investigations          - start a new investigation (?wait=true to block)
- GET    /api/graph                   - nodes/edges + selection state for the renderer
- POST   /api/select/{entity_id}      - selection callback from the renderer
- POST   /api/deep-trace/{entity_id}  - forced depth-2 trace (second call cancels)
- POST   /api/stop                    - cancel running traversals
- POST   /api/reset                   - clear graph, memo and all caches
- DELETE /api/entities/{entity_id}    - remove a node and purge its cache entries
- GET    /api/report-data             - snapshot + cache counters for reports
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from chaintrace.forensics.errors import AllProvidersFailed, InputRejected, NotFound
from chaintrace.forensics.investigation import Investigation
from chaintrace.settings import Settings

log = logging.getLogger("chaintrace.api.investigations")

router = APIRouter()

_investigation: Optional[Investigation] = None


def get_investigation() -> Investigation:
    global _investigation
    if _investigation is None:
        from chaintrace.settings_store import load_settings

        _investigation = Investigation(settings=load_settings())
    return _investigation


def set_investigation(inv: Optional[Investigation]) -> None:
    """Swap the process-wide session (tests inject fakes here)."""
    global _investigation
    _investigation = inv


def apply_settings(settings: Settings) -> None:
    """Push saved settings into the live session, if one exists."""
    if _investigation is not None:
        _investigation.apply_settings(settings)


def _error_response(e: Exception) -> JSONResponse:
    if isinstance(e, InputRejected):
        return JSONResponse({"status": "error", "error": str(e)}, status_code=400)
    if isinstance(e, KeyError):
        return JSONResponse({"status": "error", "error": f"unknown entity: {e.args[0] if e.args else ''}"}, status_code=404)
    if isinstance(e, NotFound):
        return JSONResponse({"status": "error", "error": str(e)}, status_code=404)
    if isinstance(e, AllProvidersFailed):
        return JSONResponse({"status": "error", "error": str(e)}, status_code=502)
    log.exception("Investigation API error")
    return JSONResponse({"status": "error", "error": str(e)}, status_code=500)


# ============================================================
# INVESTIGATIONS
# ============================================================

@router.post("/api/investigations")
async def start_investigation(payload: Dict[str, Any], wait: bool = Query(False)):
    """Reset the graph and investigate a new identifier."""
    inv = get_investigation()
    query = str(payload.get("query") or "").strip()
    date_from = payload.get("date_from") or None
    date_to = payload.get("date_to") or None

    try:
        if wait:
            result = await inv.start(query, date_from, date_to)
            return {"status": "done", **result}
        inv.launch(query, date_from, date_to)
        return {"status": "started", "query": query}
    except Exception as e:
        return _error_response(e)


@router.get("/api/graph")
async def graph_state():
    return get_investigation().graph_state()


@router.post("/api/select/{entity_id}")
async def select_entity(entity_id: str):
    try:
        return get_investigation().select(entity_id)
    except Exception as e:
        return _error_response(e)


@router.post("/api/deep-trace/{entity_id}")
async def deep_trace(entity_id: str, wait: bool = Query(False)):
    """Forced depth-2 expansion from one node; toggles off if one is running."""
    inv = get_investigation()
    try:
        if wait:
            return await inv.deep_trace(entity_id)
        return inv.launch_deep_trace(entity_id)
    except Exception as e:
        return _error_response(e)


@router.post("/api/stop")
async def stop():
    return get_investigation().stop()


@router.post("/api/reset")
async def reset():
    await get_investigation().reset()
    return {"ok": True}


@router.delete("/api/entities/{entity_id}")
async def delete_entity(entity_id: str):
    try:
        return get_investigation().delete_entity(entity_id)
    except Exception as e:
        return _error_response(e)


# ============================================================
# REPORTS
# ============================================================

@router.get("/api/report-data")
async def report_data():
    return get_investigation().report_data()
