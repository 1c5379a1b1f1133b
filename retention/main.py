"""
Retention Engine — FastAPI Application Entry Point

POST /v1/risk/score                 → churn risk scoring
POST /v1/playbooks/{id}/enroll      → playbook enrollment
POST /v1/playbooks/execute          → run due playbook steps
GET  /v1/risk/health                → health check
GET  /docs                          → OpenAPI / Swagger UI
"""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from retention.api.admin_endpoint import router as admin_router
from retention.api.playbook_endpoint import router as playbook_router
from retention.api.risk_endpoint import router as risk_router
from retention.core.config import get_settings
from retention.core.logging import configure_logging
from retention.scoring.engine import MODEL_VERSION

configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("retention_engine_starting", model_version=MODEL_VERSION, env=get_settings().app_env)
    yield
    logger.info("retention_engine_shutting_down")


app = FastAPI(
    title="Retention Engine",
    description="Churn risk scoring and retention playbook automation",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (dashboard) ──
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)

# ── Prometheus metrics ──
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── Routes ──
app.include_router(risk_router)
app.include_router(playbook_router)
app.include_router(admin_router)


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": get_settings().app_name,
        "version": "1.0.0",
        "docs": "/docs",
        "score": "POST /v1/risk/score",
    }
