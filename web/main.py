from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from core.env import env_csv
from core.logging import get_logger
from database import init_db
from web import routers

logger = get_logger(__name__)

app = FastAPI(
    title="FavColor Chooser",
    description="Federated login orchestrator in front of the FavColor demo app.",
    version="0.1.0",
)

origins = list(env_csv("CHOOSER_CORS_ORIGINS", ("http://localhost:3000",)))

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def prepare_database() -> None:
    """Create tables on first boot."""
    init_db()
    logger.info("Chooser database ready.")


@app.get("/healthz", include_in_schema=False)
def liveness_check():
    """Lightweight liveness check with a database round trip."""
    db_ok, db_error = routers.health.ping_database()
    payload = {"status": "ok" if db_ok else "unhealthy", "database": {"ok": db_ok}}
    if db_error:
        payload["database"]["error"] = db_error
    status_code = status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=payload)


@app.get("/metrics", include_in_schema=False)
def prometheus_metrics():
    """Expose Prometheus metrics."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(routers.chooser.router)
