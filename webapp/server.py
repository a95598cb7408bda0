from __future__ import annotations

import logging
import os
from dataclasses import asdict, fields
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from chaintrace.settings import APP_NAME, APP_VERSION
from chaintrace.settings_store import coerce_value, load_settings, save_settings

from webapp.routers import investigations

logging.basicConfig(
    level=(os.environ.get("CHAINTRACE_LOG_LEVEL") or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("chaintrace.api")

app = FastAPI(title=f"{APP_NAME} Web", version=APP_VERSION)
app.include_router(investigations.router)


@app.on_event("shutdown")
async def _close_session() -> None:
    inv = investigations._investigation
    if inv is not None:
        await inv.aclose()


@app.get("/api/health")
def api_health() -> Any:
    return {"status": "ok", "app": APP_NAME, "version": APP_VERSION}


# ---------- API: settings ----------

@app.get("/api/settings")
def api_get_settings() -> Any:
    return asdict(load_settings())


@app.post("/api/settings")
def api_save_settings(payload: Dict[str, Any]) -> Any:
    """Update tunables; saved to disk and applied to the running session."""
    s = load_settings()
    known = {f.name for f in fields(s)}
    unknown = sorted(k for k in payload if k not in known)
    if unknown:
        return JSONResponse({"ok": False, "error": f"unknown settings: {', '.join(unknown)}"}, status_code=400)
    for k, v in payload.items():
        try:
            setattr(s, k, coerce_value(getattr(s, k), v))
        except (TypeError, ValueError):
            return JSONResponse({"ok": False, "error": f"invalid value for {k}"}, status_code=400)
    save_settings(s)
    investigations.apply_settings(s)
    log.info("Settings updated: %s", ", ".join(sorted(payload)))
    return {"ok": True}
