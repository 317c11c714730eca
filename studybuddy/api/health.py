"""
Health endpoints.

- /healthz: liveness, no dependencies
- /readyz: database reachable, every table in metadata present; reports
  which catalog snapshot is being served (fallback is still "ready":
  limits can be evaluated, just conservatively)
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from studybuddy.core.database import check_connection, get_engine, metadata
from studybuddy.features.tiers.service import get_catalog_provider

logger = logging.getLogger("studybuddy")

root_router = APIRouter(tags=["health"])


def _not_ready(detail: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "error", "detail": detail})


@root_router.get("/healthz")
def healthz():
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    if not check_connection():
        return _not_ready("database unreachable")

    try:
        inspector = inspect(get_engine())
        missing = sorted(name for name in metadata.tables if not inspector.has_table(name))
    except Exception as e:
        logger.error("[readyz] table probe failed", extra={"error": str(e)})
        return _not_ready("database unreachable")

    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return _not_ready(detail)

    catalog = get_catalog_provider().catalog
    return {"status": "ok", "catalog": {"source": catalog.source, "is_fallback": catalog.is_fallback}}
