import logging
import sys
from pathlib import Path
from typing import Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

try:
    from backend import app_context
    from backend.app.feature_gates import FeatureGateError
    from backend.app.routes.organization import licensing_router, router as organization_router
    from backend.app.services.quota import get_settings
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]
    from app.feature_gates import FeatureGateError  # type: ignore[no-redef]
    from app.routes.organization import licensing_router, router as organization_router  # type: ignore[no-redef]
    from app.services.quota import get_settings  # type: ignore[no-redef]


load_dotenv()

SETTINGS = get_settings()

logging.basicConfig(
    level=getattr(logging, SETTINGS.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("quota")


def get_conn():
    return psycopg2.connect(**SETTINGS.database.to_connect_kwargs())


def resolve_organization_id(x_organization_id: Optional[str] = None) -> int:
    """Read the caller's organization from the ``X-Organization-Id`` header.

    Authentication lives in front of this service; it forwards the tenant id.
    """

    if not x_organization_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing organization context",
        )
    try:
        organization_id = int(x_organization_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid organization id",
        ) from exc
    if organization_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid organization id",
        )
    return organization_id


async def feature_gate_error_handler(request: Request, exc: FeatureGateError) -> JSONResponse:
    """Return gating failures as ``{"code", "message", ...}`` bodies."""

    logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=dict(exc.payload))


app = FastAPI(title="Quota Gate API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(FeatureGateError, feature_gate_error_handler)

app.include_router(organization_router)
app.include_router(licensing_router)

app_context.configure(
    get_conn=get_conn,
    get_current_organization_id=resolve_organization_id,
)


@app.get("/api/health")
def health() -> dict:
    return {"status": "ok", "environment": SETTINGS.environment}
