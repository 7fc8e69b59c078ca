from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from salesorg.api.routers import hierarchy, registry
from salesorg.infra.audit import AuditMiddleware
from salesorg.infra.db import check_db_ready
from salesorg.infra.log_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="salesorg",
    description="Hierarchy lifecycle and scope resolution for the sales organization.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(hierarchy.router, prefix="/api/hierarchies", tags=["hierarchies"])
app.include_router(registry.router, prefix="/api/registry", tags=["registry"])


@app.exception_handler(OperationalError)
async def store_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("Store unavailable path=%s error=%s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "store unavailable"},
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
